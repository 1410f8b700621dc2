"""Error Handlers — map TapLinkError, validation failures and crashes to JSON.

Invariants:
    - Every error body has the same {"error": {code, message, category, severity}} shape
    - Resolution codes (MALFORMED_ID, NOT_FOUND, TRANSIENT_ERROR) keep their own status
      (400, 404, 503), so web fallback pages can tell a bad tag from an outage
    - Retryable errors carry a Retry-After header
    - Unhandled exceptions never leak internals

Design Decisions:
    - Client errors (<500) log at WARNING: a scanned stale tag is not a server fault
"""

import logging
import math

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from taplink.core.errors import ErrorSeverity, TapLinkError

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 1


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TapLinkError, handle_taplink_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)


async def handle_taplink_error(request: Request, exc: TapLinkError) -> JSONResponse:
    level = logging.ERROR if exc.http_status >= 500 else logging.WARNING
    logger.log(
        level, f"{request.method} {request.url.path}: {exc.message}",
        extra={"error_code": exc.code, "automation_id": exc.context.automation_id},
    )
    headers = None
    if exc.retryable:
        retry_ms = exc.context.retry_after_ms
        seconds = math.ceil(retry_ms / 1000) if retry_ms else DEFAULT_RETRY_AFTER_SECONDS
        headers = {"Retry-After": str(seconds)}
    return JSONResponse(
        status_code=exc.http_status, content=exc.to_response(), headers=headers,
    )


async def handle_validation_error(
    request: Request, exc: RequestValidationError,
) -> JSONResponse:
    logger.warning(
        f"Validation error on {request.url.path}: {exc.errors()}",
        extra={"error_code": "VALIDATION_ERROR"},
    )
    details = [
        {
            "field": ".".join(str(loc) for loc in e["loc"]),
            "message": e["msg"],
            "type": e["type"],
        }
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Invalid request data",
                "category": "validation",
                "severity": ErrorSeverity.ERROR.value,
                "details": details,
            },
        },
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all. The body says nothing about the cause."""
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
