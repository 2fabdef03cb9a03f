"""Error Handlers — global exception handlers for the sync control API.

Invariants:
    - SyncError → structured JSON with error code, message, severity (its own http_status),
      logged at the error's severity; ConnectivityError adds Retry-After
    - RequestValidationError → field-level error details
    - Exception (catch-all) → never leaks internal details

Design Decisions:
    - Three-layer handler: domain (SyncError), validation (Pydantic), catch-all (Exception)
    - Extracted from main.py (ADR: import fan-out < 10)
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from clinisync.core.errors import ConnectivityError, ErrorSeverity, SyncError

logger = logging.getLogger(__name__)


_LOG_LEVELS = {
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}

# seconds a client should wait before retrying while the remote is unreachable
CONNECTIVITY_RETRY_AFTER = "30"


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""
    _register_sync_error_handler(app)
    _register_validation_error_handler(app)
    _register_generic_error_handler(app)


def _register_sync_error_handler(app: FastAPI) -> None:
    """Register sync domain/infrastructure error handler."""

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError):
        """Log at the error's own severity; the store's code and detail go to the client."""
        logger.log(
            _LOG_LEVELS[exc.severity],
            f"SyncError on {request.url.path}: {exc.message}",
            extra={
                "error_code": exc.code,
                "store_code": exc.context.store_code,
                "table": exc.context.table,
            },
        )
        headers = None
        if isinstance(exc, ConnectivityError):
            headers = {"Retry-After": CONNECTIVITY_RETRY_AFTER}
        return JSONResponse(
            status_code=exc.http_status, content=exc.to_response(),
            headers=headers,
        )


def _register_validation_error_handler(app: FastAPI) -> None:
    """Register Pydantic validation error handler."""

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError,
    ):
        logger.warning(
            f"Validation error on {request.url.path}: {exc.errors()}",
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_build_validation_error_response(exc),
        )


def _register_generic_error_handler(app: FastAPI) -> None:
    """Register catch-all error handler."""

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        """Catch-all — never leaks internal details."""
        logger.error(
            f"Unhandled exception on {request.url.path}: {exc}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                    "category": "internal",
                    "severity": ErrorSeverity.CRITICAL.value,
                },
            },
        )


def _build_validation_error_response(exc: RequestValidationError) -> dict:
    return {
        "error": {
            "code": "VALIDATION_ERROR",
            "message": "Invalid request data",
            "category": "validation",
            "severity": ErrorSeverity.ERROR.value,
            "details": [
                {
                    "field": ".".join(str(loc) for loc in e["loc"]),
                    "message": e["msg"],
                    "type": e["type"],
                }
                for e in exc.errors()
            ],
        },
    }
