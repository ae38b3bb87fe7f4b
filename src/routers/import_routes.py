"""Spreadsheet import endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status

from src.exceptions import ValidationError
from src.import_.engine import ImportEngine, default_options
from src.import_.profiles import get_profile
from src.import_.spreadsheet import read_rows
from src.routers.deps import CurrentUserDep, RecordStoreDep, SmsServiceDep
from src.schemas.import_schemas import (
    ImportKind,
    ImportRequest,
    ImportResponse,
    PreviewResponse,
    PreviewRow,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/import", tags=["Import"])


def _read_upload(request: ImportRequest) -> list[dict[str, Any]]:
    try:
        content = request.decoded()
    except ValueError as e:
        raise ValidationError(str(e)) from e

    rows = read_rows(content, request.filename)
    if not rows:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="File is empty or contains no data rows",
        )
    return rows


@router.post("/{kind}/preview", response_model=PreviewResponse)
async def preview_import(
    kind: ImportKind,
    request: ImportRequest,
    store: RecordStoreDep,
    current_user: CurrentUserDep,
) -> PreviewResponse:
    """
    Classify every row of a spreadsheet without writing anything.

    Each row is reported as create, update (with the matched record and the
    reason it matched) or error, so the operator can confirm before importing.
    """
    rows = _read_upload(request)
    engine = ImportEngine(get_profile(kind.value), store)
    entries = await engine.preview(rows)

    preview_rows = [PreviewRow.from_entry(entry) for entry in entries]
    return PreviewResponse(
        total_rows=len(preview_rows),
        to_create=sum(1 for r in preview_rows if r.action == "create"),
        to_update=sum(1 for r in preview_rows if r.action == "update"),
        errors=sum(1 for r in preview_rows if r.action == "error"),
        rows=preview_rows,
    )


@router.post(
    "/{kind}", response_model=ImportResponse, status_code=status.HTTP_201_CREATED
)
async def import_spreadsheet(
    kind: ImportKind,
    request: ImportRequest,
    store: RecordStoreDep,
    sms: SmsServiceDep,
    current_user: CurrentUserDep,
) -> ImportResponse:
    """
    Import a spreadsheet into the users, population or health-history table.

    Matched rows update their existing record, new rows are created with the
    next identifier. Failed rows do not stop the import; they are reported in
    `errors`. New non-admin users receive a welcome SMS (best-effort).
    """
    rows = _read_upload(request)
    options = default_options()
    engine = ImportEngine(get_profile(kind.value), store, notifier=sms, options=options)

    logger.info(
        "Import of %d %s rows from %s requested by %s",
        len(rows),
        kind.value,
        request.filename,
        current_user.service_name,
    )
    summary = await engine.apply(rows)
    return ImportResponse.from_summary(summary, options.error_preview_limit)
