"""
FastAPI exception handlers.

WHY: Every failure (domain errors, bad request bodies, unknown routes and
unexpected crashes) reaches the caller as the same JSON shape:

    {"error": <class name>, "message": str, "status_code": int, "details": dict | null}

Paystack retries webhook deliveries on any non-2xx, and the dashboard shows
`message` to the user, so neither may ever see a stack trace.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from boinvit.core.exceptions import AppException, AuthenticationError, RateLimitExceeded
from boinvit.middleware.request_context import get_request_context

logger = logging.getLogger(__name__)


def _error_body(error: str, message: str, status_code: int, details: Optional[Dict[str, Any]] = None) -> dict:
    return {"error": error, "message": message, "status_code": status_code, "details": details}


def _request_id() -> Optional[str]:
    context = get_request_context()
    return context.request_id if context else None


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Render an AppException with its own status code.

    Server-side failures are logged with the request id; rate limiting and
    bearer-token failures get their standard response headers.
    """
    if exc.status_code >= 500:
        logger.error(
            f"{exc.__class__.__name__} on {request.method} {request.url.path} "
            f"[{_request_id()}]: {exc.message}"
        )

    headers = {}
    if isinstance(exc, RateLimitExceeded) and exc.context.get("retry_after") is not None:
        headers["Retry-After"] = str(exc.context["retry_after"])
    if isinstance(exc, AuthenticationError):
        headers["WWW-Authenticate"] = "Bearer"

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers or None)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body/parameter errors as 400 with one entry per field."""
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=_error_body("ValidationError", "Request validation failed", 400, {"errors": errors}),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """404/405 raised by routing before any endpoint runs."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body("HTTPException", str(exc.detail), exc.status_code),
        headers=getattr(exc, "headers", None),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected: full traceback in the log, generic 500 to the caller."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path} [{_request_id()}]")
    return JSONResponse(
        status_code=500,
        content=_error_body("InternalServerError", "An unexpected error occurred", 500),
    )
