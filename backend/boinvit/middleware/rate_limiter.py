"""
Per-IP rate limits for the Paystack webhook and payment initiation.

WHY: The webhook is public, and each request costs an HMAC computation plus
database work. Payment initiation calls Paystack and, for M-Pesa, rings
someone's phone. Neither may be hammered from a single address.

HOW: Redis fixed window. The counter key is INCRemented per request and
gets its expiry only when the window opens, so steady traffic cannot keep
a window alive. If Redis is unreachable the request goes through: losing a
payment confirmation is worse than a burst of extra requests.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import redis.asyncio as aioredis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from boinvit.core.config import settings
from boinvit.core.exceptions import RateLimitExceeded
from boinvit.middleware.request_context import get_client_ip


logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    requests_per_window: int = 30
    window_seconds: int = 60
    key_prefix: str = "ratelimit"


WEBHOOK_RATE_LIMIT = RateLimitConfig(
    requests_per_window=settings.WEBHOOK_RATE_LIMIT_REQUESTS,
    window_seconds=settings.WEBHOOK_RATE_LIMIT_WINDOW_SECONDS,
    key_prefix="ratelimit:webhook",
)

PAYMENT_RATE_LIMIT = RateLimitConfig(requests_per_window=10, window_seconds=60, key_prefix="ratelimit:payment")

# Exact request path -> limit
RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "/api/webhooks/paystack": WEBHOOK_RATE_LIMIT,
    "/api/payments/mpesa/stk-push": PAYMENT_RATE_LIMIT,
    "/api/payments/client-to-business": PAYMENT_RATE_LIMIT,
}


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_after: int
    limit: int

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_after),
        }


class RateLimiter:
    """Fixed-window counters in Redis; the limit is chosen per call."""

    def __init__(self, redis_client: aioredis.Redis, config: Optional[RateLimitConfig] = None):
        self._redis = redis_client
        self._config = config or RateLimitConfig()

    def _build_key(self, identifier: str, endpoint: str, config: RateLimitConfig) -> str:
        """ratelimit:webhook:api:webhooks:paystack:<ip>"""
        return f"{config.key_prefix}:{endpoint.strip('/').replace('/', ':')}:{identifier}"

    async def check_rate_limit(
        self,
        identifier: str,
        endpoint: str,
        config: Optional[RateLimitConfig] = None,
    ) -> RateLimitResult:
        """
        Count one request from `identifier` against `endpoint`'s window.

        Returns:
            RateLimitResult; `remaining` is -1 when Redis could not be asked
        """
        config = config or self._config
        key = self._build_key(identifier, endpoint, config)
        limit = config.requests_per_window

        try:
            pipe = self._redis.pipeline()
            pipe.incr(key)
            pipe.ttl(key)
            count, ttl = await pipe.execute()

            if ttl is None or ttl < 0:
                await self._redis.expire(key, config.window_seconds)
                ttl = config.window_seconds
        except Exception as e:
            logger.error(f"Rate limit check for {identifier} on {endpoint} failed, allowing: {e}")
            return RateLimitResult(allowed=True, remaining=-1, reset_after=config.window_seconds, limit=limit)

        return RateLimitResult(
            allowed=count <= limit,
            remaining=max(0, limit - count),
            reset_after=int(ttl),
            limit=limit,
        )


_rate_limiter: Optional[RateLimiter] = None


async def get_rate_limiter() -> RateLimiter:
    global _rate_limiter

    if _rate_limiter is None:
        client = aioredis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        _rate_limiter = RateLimiter(redis_client=client)
    return _rate_limiter


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies RATE_LIMITS by exact path and reports X-RateLimit-* headers."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        config = RATE_LIMITS.get(path)
        if config is None or request.method == "OPTIONS":
            return await call_next(request)

        client_ip = get_client_ip(request)
        try:
            limiter = await get_rate_limiter()
            result = await limiter.check_rate_limit(client_ip, path, config)
        except Exception as e:
            logger.error(f"Rate limiter unavailable, allowing {path}: {e}")
            return await call_next(request)

        if not result.allowed:
            logger.warning(f"Rate limit exceeded for {client_ip} on {path}")
            error = RateLimitExceeded(
                message=f"Rate limit exceeded. Try again in {result.reset_after} seconds.",
                retry_after=result.reset_after,
            )
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_dict(),
                headers={**result.headers(), "Retry-After": str(result.reset_after)},
            )

        response = await call_next(request)
        response.headers.update(result.headers())
        return response
