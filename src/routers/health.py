"""Health check endpoint."""

from fastapi import APIRouter

from src.routers.deps import RecordStoreDep
from src.schemas.health import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(store: RecordStoreDep) -> HealthResponse:
    """Check service health including record store connectivity."""
    record_store_healthy = await store.health_check()

    return HealthResponse(
        status="healthy" if record_store_healthy else "degraded",
        record_store=record_store_healthy,
    )
