"""
Request context middleware.

WHAT: Captures request id, client IP and user agent for every request and
exposes them through a ContextVar.

WHY: Security events written deep inside the webhook service need the
caller's IP without threading the Request object through every call.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


@dataclass
class RequestContext:
    """What the current request looks like to logging and security events."""

    request_id: str
    ip_address: str
    user_agent: Optional[str]
    path: str
    method: str


_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)


def get_request_context() -> Optional[RequestContext]:
    """The active request's context, or None outside a request (e.g. scheduler jobs)."""
    return _request_context.get()


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP address from a request.

    HOW: Checks, in order:
    1. X-Forwarded-For (first entry is the original client)
    2. X-Real-IP
    3. request.client.host

    Security Note:
        These headers can be spoofed unless the proxy in front of the API
        overwrites them.
    """
    forwarded = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if forwarded:
        return forwarded

    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


def get_user_agent(request: Request) -> Optional[str]:
    return request.headers.get("User-Agent")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Populates RequestContext for each request.

    Context is stored on `request.state.context` for handlers and in a
    ContextVar for services; the request id is echoed back as X-Request-ID.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        context = RequestContext(
            request_id=request_id,
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
            path=request.url.path,
            method=request.method,
        )

        request.state.context = context
        token = _request_context.set(context)

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

        finally:
            _request_context.reset(token)
