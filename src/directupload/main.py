"""Main application entrypoint for the direct upload service."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from directupload.api.v1 import routes_health
from directupload.api.v1.routes_local_storage import router as local_storage_router
from directupload.api.v1.routes_upload import router as upload_router
from directupload.core.config import settings
from directupload.core.exceptions import (
    IntegrityError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    UploadError,
    ValidationError,
)
from directupload.core.logging import setup_logging
from directupload.core.middleware import HTTPErrorLoggingMiddleware

logger = logging.getLogger(__name__)

# Checked in order; the first matching class wins
ERROR_STATUS_CODES: list[tuple[type[UploadError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (IntegrityError, 422),
    (StorageError, 502),
]


async def upload_error_handler(request: Request, exc: UploadError) -> JSONResponse:
    """Render the upload error taxonomy as ``{"error", "detail"}``."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES if isinstance(exc, error_type)), 500
    )
    if status_code >= 500:
        logger.error(
            f"Upload request failed: {exc}",
            extra={"path": request.url.path, "error_kind": exc.kind},
            exc_info=exc,
        )
    return JSONResponse(status_code=status_code, content={"error": exc.kind, "detail": str(exc)})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies with the same shape as other validation errors."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(
        status_code=400,
        content={"error": ValidationError.kind, "detail": "; ".join(messages)},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    # Initialize logging first
    setup_logging()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
    )

    app.add_middleware(HTTPErrorLoggingMiddleware)
    app.add_exception_handler(UploadError, upload_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Register routers
    app.include_router(routes_health.router, tags=["health"])
    app.include_router(upload_router)
    # Answers 404 unless STORAGE_BACKEND=local
    app.include_router(local_storage_router)

    return app


# Export app instance for ASGI servers
app = create_app()
