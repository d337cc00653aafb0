"""
Unit tests for the Redis query cache.

WHY: Dashboard stats are served from this cache; a stale entry after a
payment is a visible bug, and a Redis outage must degrade to a cache miss
rather than a failed request.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from boinvit.services.query_cache import QueryCache, build_cache_key


@pytest.fixture
def mock_redis():
    redis = MagicMock()
    redis.get = AsyncMock(return_value=None)
    redis.setex = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)

    async def scan_iter(match=None):
        for key in redis.stored_keys:
            yield key

    redis.stored_keys = []
    redis.scan_iter = MagicMock(side_effect=scan_iter)
    return redis


@pytest.fixture
def cache(mock_redis):
    return QueryCache(mock_redis, default_ttl=300)


def test_build_cache_key():
    assert build_cache_key(("dashboard-stats", "b1")) == "qc:dashboard-stats:b1"
    assert build_cache_key(("booking", 42)) == "qc:booking:42"


class TestGetSet:
    @pytest.mark.asyncio
    async def test_hit_decodes_json(self, cache, mock_redis):
        mock_redis.get.return_value = json.dumps({"total_clients": 3})

        assert await cache.get(("dashboard-stats", "b1")) == {"total_clients": 3}
        mock_redis.get.assert_awaited_once_with("qc:dashboard-stats:b1")

    @pytest.mark.asyncio
    async def test_miss(self, cache):
        assert await cache.get(("dashboard-stats", "b1")) is None

    @pytest.mark.asyncio
    async def test_redis_error_is_miss(self, cache, mock_redis):
        mock_redis.get.side_effect = ConnectionError("Redis down")

        assert await cache.get(("dashboard-stats", "b1")) is None

    @pytest.mark.asyncio
    async def test_set_uses_ttl(self, cache, mock_redis):
        assert await cache.set(("dashboard-stats", "b1"), {"a": 1}) is True
        mock_redis.setex.assert_awaited_once_with("qc:dashboard-stats:b1", 300, '{"a": 1}')

        await cache.set(("dashboard-stats", "b1"), {"a": 1}, ttl=10)
        assert mock_redis.setex.await_args.args[1] == 10

    @pytest.mark.asyncio
    async def test_set_error_returns_false(self, cache, mock_redis):
        mock_redis.setex.side_effect = ConnectionError("Redis down")

        assert await cache.set(("x",), 1) is False


class TestGetOrLoad:
    @pytest.mark.asyncio
    async def test_loads_and_caches_on_miss(self, cache, mock_redis):
        loader = AsyncMock(return_value={"total_clients": 5})

        assert await cache.get_or_load(("dashboard-stats", "b1"), loader) == {"total_clients": 5}
        loader.assert_awaited_once()
        mock_redis.setex.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hit_skips_loader(self, cache, mock_redis):
        mock_redis.get.return_value = "7"
        loader = AsyncMock()

        assert await cache.get_or_load(("count",), loader) == 7
        loader.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_none_not_cached(self, cache, mock_redis):
        assert await cache.get_or_load(("x",), AsyncMock(return_value=None)) is None
        mock_redis.setex.assert_not_awaited()


class TestInvalidate:
    @pytest.mark.asyncio
    async def test_prefix_invalidation(self, cache, mock_redis):
        """
        WHY: ("bookings", business_id) must also drop paginated and
        filtered variants stored under longer keys.
        """
        mock_redis.stored_keys = ["qc:bookings:b1:page:1", "qc:bookings:b1:page:2"]
        mock_redis.delete.return_value = 3

        deleted = await cache.invalidate(("bookings", "b1"))

        assert deleted == 3
        mock_redis.scan_iter.assert_called_once_with(match="qc:bookings:b1:*")
        mock_redis.delete.assert_awaited_once_with(
            "qc:bookings:b1", "qc:bookings:b1:page:1", "qc:bookings:b1:page:2"
        )

    @pytest.mark.asyncio
    async def test_exact(self, cache, mock_redis):
        await cache.invalidate(("bookings", "b1"), exact=True)

        mock_redis.scan_iter.assert_not_called()
        mock_redis.delete.assert_awaited_once_with("qc:bookings:b1")

    @pytest.mark.asyncio
    async def test_errors_propagate(self, cache, mock_redis):
        """WHY: Callers (Realtime invalidation) retry on failure."""
        mock_redis.delete.side_effect = ConnectionError("Redis down")

        with pytest.raises(ConnectionError):
            await cache.invalidate(("bookings", "b1"))
