"""
Unit tests for rate limiting middleware.

WHY: The Paystack webhook and the payment initiation endpoints are public:
1. Every webhook request costs an HMAC computation and database work
2. Every STK push puts a prompt on someone's phone
3. Redis outages must not take payments down (fail-open)

Test scenarios:
- Requests under limit are allowed
- Requests over limit are blocked with 429 status
- Only a fresh key gets an expiry (fixed window)
- Redis errors allow the request
- Paths without a configured limit are untouched
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient

from boinvit.middleware import rate_limiter as rate_limiter_module
from boinvit.middleware.rate_limiter import (
    RATE_LIMITS,
    WEBHOOK_RATE_LIMIT,
    RateLimitConfig,
    RateLimiter,
    RateLimitResult,
)


def _pipeline(count: int, ttl: int) -> MagicMock:
    """Redis pipeline whose execute() returns [INCR result, TTL result]."""
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[count, ttl])
    return pipe


class TestRateLimitConfig:
    """Tests for RateLimitConfig dataclass."""

    def test_default_values(self):
        config = RateLimitConfig()

        assert config.requests_per_window == 30
        assert config.window_seconds == 60
        assert config.key_prefix == "ratelimit"

    def test_webhook_limit(self):
        """
        WHY: Paystack retries are bursty but far below 30 a minute from
        a single address.
        """
        assert WEBHOOK_RATE_LIMIT.requests_per_window == 30
        assert WEBHOOK_RATE_LIMIT.window_seconds == 60
        assert RATE_LIMITS["/api/webhooks/paystack"] is WEBHOOK_RATE_LIMIT

    def test_payment_paths_limited(self):
        assert "/api/payments/mpesa/stk-push" in RATE_LIMITS
        assert "/api/payments/client-to-business" in RATE_LIMITS


class TestRateLimiter:
    """Tests for RateLimiter service."""

    @pytest.fixture
    def mock_redis(self):
        """
        Create mock Redis client.

        WHY: Unit tests should not depend on real Redis.
        """
        redis = MagicMock()
        redis.expire = AsyncMock(return_value=True)
        return redis

    @pytest.fixture
    def rate_limiter(self, mock_redis):
        return RateLimiter(
            redis_client=mock_redis,
            config=RateLimitConfig(requests_per_window=5, window_seconds=60),
        )

    @pytest.mark.asyncio
    async def test_first_request_allowed_and_expiry_set(self, rate_limiter, mock_redis):
        """
        First request starts the window.

        WHY: A new key has no TTL (-1); the limiter must set one or the
        counter would never reset.
        """
        mock_redis.pipeline = MagicMock(return_value=_pipeline(1, -1))

        result = await rate_limiter.check_rate_limit("192.168.1.1", "/api/webhooks/paystack")

        assert result.allowed is True
        assert result.remaining == 4
        assert result.reset_after == 60
        mock_redis.expire.assert_awaited_once_with("ratelimit:api:webhooks:paystack:192.168.1.1", 60)

    @pytest.mark.asyncio
    async def test_existing_window_not_extended(self, rate_limiter, mock_redis):
        """
        WHY: Re-setting the expiry on every hit would turn the fixed
        window into one that never closes under steady traffic.
        """
        mock_redis.pipeline = MagicMock(return_value=_pipeline(3, 42))

        result = await rate_limiter.check_rate_limit("192.168.1.1", "/api/webhooks/paystack")

        assert result.allowed is True
        assert result.remaining == 2
        assert result.reset_after == 42
        mock_redis.expire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_at_limit_allowed(self, rate_limiter, mock_redis):
        mock_redis.pipeline = MagicMock(return_value=_pipeline(5, 30))

        result = await rate_limiter.check_rate_limit("192.168.1.1", "/api/webhooks/paystack")

        assert result.allowed is True
        assert result.remaining == 0

    @pytest.mark.asyncio
    async def test_over_limit_denied(self, rate_limiter, mock_redis):
        mock_redis.pipeline = MagicMock(return_value=_pipeline(6, 30))

        result = await rate_limiter.check_rate_limit("192.168.1.1", "/api/webhooks/paystack")

        assert result.allowed is False
        assert result.remaining == 0

    @pytest.mark.asyncio
    async def test_redis_error_fails_open(self, rate_limiter, mock_redis):
        """
        WHY: A Redis outage must not block Paystack from confirming payments.
        """
        pipe = MagicMock()
        pipe.execute = AsyncMock(side_effect=ConnectionError("Redis down"))
        mock_redis.pipeline = MagicMock(return_value=pipe)

        result = await rate_limiter.check_rate_limit("192.168.1.1", "/api/webhooks/paystack")

        assert result.allowed is True
        assert result.remaining == -1

    @pytest.mark.asyncio
    async def test_per_call_config_overrides_default(self, rate_limiter, mock_redis):
        mock_redis.pipeline = MagicMock(return_value=_pipeline(11, 10))
        config = RateLimitConfig(requests_per_window=10, window_seconds=60, key_prefix="ratelimit:payment")

        result = await rate_limiter.check_rate_limit("10.0.0.1", "/api/payments/mpesa/stk-push", config)

        assert result.allowed is False
        assert result.limit == 10

    def test_key_format(self, rate_limiter):
        key = rate_limiter._build_key("1.2.3.4", "/api/webhooks/paystack", WEBHOOK_RATE_LIMIT)

        assert key == "ratelimit:webhook:api:webhooks:paystack:1.2.3.4"


class TestRateLimitMiddleware:
    """Middleware behavior through the real app."""

    @pytest.mark.asyncio
    async def test_limited_path_returns_429(self, client: AsyncClient, disable_rate_limiting):
        disable_rate_limiting.check_rate_limit.return_value = RateLimitResult(
            allowed=False, remaining=0, reset_after=45, limit=30
        )

        response = await client.post("/api/webhooks/paystack", content=b"{}")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "45"
        assert response.headers["X-RateLimit-Limit"] == "30"
        assert response.json()["error"] == "RateLimitExceeded"
        assert response.json()["message"] == "Rate limit exceeded. Try again in 45 seconds."

    @pytest.mark.asyncio
    async def test_allowed_request_gets_headers(self, client: AsyncClient, disable_rate_limiting):
        response = await client.post("/api/webhooks/paystack", content=b"{}")

        # No signature, so the webhook itself rejects it
        assert response.status_code == 401
        assert response.headers["X-RateLimit-Remaining"] == "29"

    @pytest.mark.asyncio
    async def test_uses_forwarded_client_ip(self, client: AsyncClient, disable_rate_limiting):
        await client.post(
            "/api/webhooks/paystack",
            content=b"{}",
            headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
        )

        args = disable_rate_limiting.check_rate_limit.await_args.args
        assert args[0] == "203.0.113.9"
        assert args[1] == "/api/webhooks/paystack"

    @pytest.mark.asyncio
    async def test_unlimited_path_skipped(self, client: AsyncClient, disable_rate_limiting):
        response = await client.get("/health")

        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers
        disable_rate_limiting.check_rate_limit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_limiter_failure_passes_request(self, client: AsyncClient, monkeypatch):
        async def broken():
            raise RuntimeError("cannot build limiter")

        monkeypatch.setattr(rate_limiter_module, "get_rate_limiter", broken)

        response = await client.post("/api/webhooks/paystack", content=b"{}")

        assert response.status_code == 401
