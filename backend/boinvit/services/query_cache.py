"""
Redis-backed query cache with key-prefix invalidation.

WHAT: Caches JSON-serializable query results (dashboard stats, revenue
summaries) under structured keys like ("dashboard-stats", business_id).

WHY: Dashboards re-read the same aggregates on every render. Realtime
events and payment processing invalidate by key prefix, so one call drops
every cached variant of a business's stats.

HOW: A key tuple maps to "qc:part1:part2"; invalidation deletes the exact
key plus everything under "qc:part1:part2:*". Redis errors are logged and
treated as a cache miss.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

import redis.asyncio as aioredis

from boinvit.core.config import settings

logger = logging.getLogger(__name__)


QueryKey = Sequence[Any]

KEY_PREFIX = "qc"


def build_cache_key(query_key: QueryKey) -> str:
    """("dashboard-stats", "abc") -> "qc:dashboard-stats:abc" """
    return ":".join([KEY_PREFIX, *(str(part) for part in query_key)])


class QueryCache:
    """Async JSON cache over Redis."""

    def __init__(self, redis_client: aioredis.Redis, default_ttl: Optional[int] = None):
        self._redis = redis_client
        self.default_ttl = default_ttl or settings.DASHBOARD_CACHE_TTL_SECONDS

    async def get(self, query_key: QueryKey) -> Optional[Any]:
        key = build_cache_key(query_key)
        try:
            value = await self._redis.get(key)
        except Exception as e:
            logger.error(f"Cache get error for {key}: {e}")
            return None

        if value is None:
            logger.debug(f"Cache MISS: {key}")
            return None

        logger.debug(f"Cache HIT: {key}")
        return json.loads(value)

    async def set(self, query_key: QueryKey, value: Any, ttl: Optional[int] = None) -> bool:
        key = build_cache_key(query_key)
        try:
            await self._redis.setex(key, ttl or self.default_ttl, json.dumps(value))
            return True
        except Exception as e:
            logger.error(f"Cache set error for {key}: {e}")
            return False

    async def get_or_load(
        self,
        query_key: QueryKey,
        loader: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> Any:
        """Return the cached value or run `loader` and cache its result."""
        cached = await self.get(query_key)
        if cached is not None:
            return cached

        value = await loader()
        if value is not None:
            await self.set(query_key, value, ttl)
        return value

    async def invalidate(self, query_key: QueryKey, exact: bool = False) -> int:
        """
        Drop a key and, unless `exact`, every key it prefixes.

        Returns:
            Number of keys deleted

        Raises:
            redis.RedisError: Propagated so callers can retry
        """
        key = build_cache_key(query_key)
        keys = [key]
        if not exact:
            async for matched in self._redis.scan_iter(match=f"{key}:*"):
                keys.append(matched)

        deleted = await self._redis.delete(*keys)
        logger.debug(f"Cache invalidated {key} ({deleted} keys)")
        return deleted


_query_cache: Optional[QueryCache] = None


def get_query_cache() -> QueryCache:
    """Get or create the global query cache."""
    global _query_cache

    if _query_cache is None:
        redis_client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
        _query_cache = QueryCache(redis_client)

    return _query_cache
