"""Dashboard statistics endpoint."""

from dataclasses import asdict

from fastapi import APIRouter

from src.routers.deps import CurrentUserDep, DashboardServiceDep
from src.schemas.dashboard import DashboardStatsResponse

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("/stats", response_model=DashboardStatsResponse)
async def dashboard_stats(
    dashboard: DashboardServiceDep, current_user: CurrentUserDep
) -> DashboardStatsResponse:
    stats = await dashboard.get_stats()
    return DashboardStatsResponse(**asdict(stats))
