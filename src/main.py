"""mHealth Admin - administration API for the mHealth community health program."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from src.clients.record_store import close_record_store
from src.clients.sms import close_sms_service
from src.exceptions import (
    BatchSetupError,
    ImportRowError,
    NotFoundError,
    NotificationError,
    StoreError,
    ValidationError,
)
from src.routers import (
    dashboard,
    export_routes,
    health,
    import_routes,
    requests,
    users,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan management."""
    # Startup
    yield
    # Shutdown - close HTTP clients
    await close_record_store()
    await close_sms_service()


app = FastAPI(
    title="mHealth Admin",
    description="mHealth Barangay San Cristobal administration API - users, account requests, spreadsheet import/export and statistics",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware - the admin dashboard and localhost for development
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^(http://(localhost|127\.0\.0\.1)(:\d+)?|https://([a-zA-Z0-9-]+\.)*vercel\.app)$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    """Bad input (unsupported file, unknown tab, missing contact details)."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc)},
    )


@app.exception_handler(ImportRowError)
async def handle_row_error(request: Request, exc: ImportRowError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": str(exc)},
    )


@app.exception_handler(NotFoundError)
async def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)},
    )


@app.exception_handler(BatchSetupError)
async def handle_batch_setup_error(
    request: Request, exc: BatchSetupError
) -> JSONResponse:
    """Nothing was written: identifiers could not be assigned safely."""
    logger.error("Batch setup failed: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc)},
    )


@app.exception_handler(StoreError)
async def handle_store_error(request: Request, exc: StoreError) -> JSONResponse:
    """Record store failures outside of a batch."""
    logger.warning("Record store error: %s (status=%s)", exc, exc.status_code)
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": str(exc)},
    )


@app.exception_handler(NotificationError)
async def handle_notification_error(
    request: Request, exc: NotificationError
) -> JSONResponse:
    """SMS failures on explicit send requests."""
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": str(exc)},
    )


@app.exception_handler(PydanticValidationError)
async def handle_pydantic_validation_error(
    request: Request, exc: PydanticValidationError
) -> JSONResponse:
    """Handle Pydantic ValidationError and return 422."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors()},
    )


@app.exception_handler(Exception)
async def handle_unhandled_exceptions(request: Request, exc: Exception) -> JSONResponse:
    """Catch and log all unhandled exceptions."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Register routers
app.include_router(health.router)
app.include_router(import_routes.router)
app.include_router(export_routes.router)
app.include_router(users.router)
app.include_router(requests.router)
app.include_router(dashboard.router)


@app.get("/")
def root() -> dict[str, str]:
    """Root endpoint."""
    return {"service": "mhealth-admin", "version": "0.1.0"}
