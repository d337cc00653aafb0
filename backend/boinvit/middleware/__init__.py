"""
HTTP middleware.

Registered in main.create_app: request context innermost, then rate
limiting, then security headers.
"""

from boinvit.middleware.rate_limiter import RateLimitMiddleware
from boinvit.middleware.request_context import RequestContextMiddleware
from boinvit.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "RateLimitMiddleware",
    "RequestContextMiddleware",
    "SecurityHeadersMiddleware",
]
