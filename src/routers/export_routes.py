"""Spreadsheet export endpoints."""

from typing import Literal

from fastapi import APIRouter, Query, Response

from src.routers.deps import CurrentUserDep, ExportServiceDep
from src.services.user_service import UserTab

router = APIRouter(prefix="/export", tags=["Export"])


@router.get("/{kind}")
async def export_spreadsheet(
    kind: Literal["users", "health_history"],
    exports: ExportServiceDep,
    current_user: CurrentUserDep,
    tab: UserTab = Query(default="patient", description="User tab for users exports"),
) -> Response:
    """Download users of one tab, or all health-history records, as .xlsx."""
    export = await exports.export(kind, tab=tab)
    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{export.filename}"',
            "X-Row-Count": str(export.row_count),
        },
    )
