"""
Redis cache implementation for search results.

Provides a shared cache for multi-process deployments with:
- TTL enforced by Redis (SETEX)
- Bounded size: a sorted set scored by insertion time indexes live entries,
  and the earliest-inserted entry is evicted when the cache is full
- Owner invalidation via SCAN + DELETE
- JSON serialization of ranked results

Any Redis error is logged and treated as a miss (reads) or a no-op (writes).
"""

import json
import logging
import re
import time
from collections.abc import Callable
from typing import Any

from redis.asyncio import ConnectionPool, Redis

from ..models.memo import MemoRecord, ScoredMemo
from .search_cache import KEY_NAMESPACE, owner_prefix

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _escape_glob(value: str) -> str:
    return _GLOB_SPECIAL.sub(r"\\\1", value)


def serialize_results(results: list[ScoredMemo]) -> str:
    return json.dumps(
        [
            {
                "memo": r.memo.model_dump(mode="json"),
                "relevance_score": r.relevance_score,
                "debug_info": r.debug_info,
            }
            for r in results
        ]
    )


def deserialize_results(raw: str) -> list[ScoredMemo]:
    return [
        ScoredMemo(
            memo=MemoRecord.model_validate(item["memo"]),
            relevance_score=item["relevance_score"],
            debug_info=item.get("debug_info") or {},
        )
        for item in json.loads(raw)
    ]


class RedisSearchCache:
    """
    Redis-based cache for search results.

    Same interface as the in-memory ``SearchCache``.
    """

    backend = "redis"

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        ttl_seconds: int = 300,
        max_entries: int = 100,
        key_prefix: str = "memos:cache:",
        max_connections: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize Redis cache.

        Args:
            url: Redis connection URL
            ttl_seconds: TTL for cache entries (default 300 = 5 minutes)
            max_entries: Entries kept before the earliest-inserted is evicted
            key_prefix: Prefix for all cache keys
            max_connections: Maximum Redis connections in pool
            clock: Wall-clock source for insertion scores
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.url = url
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self.key_prefix = key_prefix
        self.max_connections = max_connections

        self._pool: ConnectionPool | None = None
        self._redis: Redis | None = None
        self._initialized = False

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    async def initialize(self) -> None:
        """Initialize Redis connection pool."""
        if self._initialized:
            return

        self._pool = ConnectionPool.from_url(
            self.url,
            max_connections=self.max_connections,
            decode_responses=True,
        )
        self._redis = Redis(connection_pool=self._pool)

        try:
            await self._redis.ping()
            self._initialized = True
            logger.info(f"RedisSearchCache initialized: {self.url} (TTL={self.ttl_seconds}s)")
        except Exception as e:
            logger.error(f"RedisSearchCache initialization failed: {e}")
            await self.close()
            raise

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

        if self._pool:
            await self._pool.aclose()
            self._pool = None

        self._initialized = False

    def _make_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    @property
    def _index_key(self) -> str:
        # Outside the ``search:`` namespace so entry scans never see it
        return f"{self.key_prefix}index"

    def _entry_pattern(self, owner_id: str | None = None) -> str:
        prefix = owner_prefix(owner_id) if owner_id is not None else f"{KEY_NAMESPACE}:"
        return _escape_glob(self._make_key(prefix)) + "*"

    async def get(self, key: str) -> list[ScoredMemo] | None:
        if not self._initialized or not self._redis:
            return None

        try:
            value = await self._redis.get(self._make_key(key))
            if value is None:
                self._misses += 1
                return None
            results = deserialize_results(value)
        except Exception as e:
            logger.warning(f"Cache get failed for key {key}: {e}")
            self._misses += 1
            return None

        self._hits += 1
        return results

    async def set(self, key: str, results: list[ScoredMemo]) -> None:
        """Store results, evicting the earliest-inserted entries when at capacity."""
        if not self._initialized or not self._redis:
            return

        full_key = self._make_key(key)
        now = self._clock()
        try:
            # Index members older than the TTL belong to keys Redis already expired
            await self._redis.zremrangebyscore(self._index_key, "-inf", now - self.ttl_seconds)
            # Re-inserting a key moves it to the newest position
            await self._redis.zrem(self._index_key, full_key)

            overflow = await self._redis.zcard(self._index_key) - self.max_entries + 1
            if overflow > 0:
                oldest = [member for member, _ in await self._redis.zpopmin(self._index_key, overflow)]
                if oldest:
                    await self._redis.delete(*oldest)
                    self._evictions += len(oldest)
                    logger.debug(f"Evicted {len(oldest)} cache entries")

            await self._redis.setex(full_key, self.ttl_seconds, serialize_results(results))
            await self._redis.zadd(self._index_key, {full_key: now})
        except Exception as e:
            logger.warning(f"Cache set failed for key {key}: {e}")

    async def _delete_matching(self, pattern: str) -> int:
        if not self._initialized or not self._redis:
            return 0

        try:
            keys = [k async for k in self._redis.scan_iter(match=pattern)]
            if not keys:
                return 0
            deleted = await self._redis.delete(*keys)
            await self._redis.zrem(self._index_key, *keys)
            logger.debug(f"Cache invalidated {deleted} keys matching pattern: {pattern}")
            return deleted
        except Exception as e:
            logger.warning(f"Cache invalidation failed for pattern {pattern}: {e}")
            return 0

    async def invalidate_owner(self, owner_id: str) -> int:
        return await self._delete_matching(self._entry_pattern(owner_id))

    async def clear(self) -> int:
        return await self._delete_matching(self._entry_pattern())

    async def stats(self, owner_id: str | None = None) -> dict[str, Any]:
        """Entry counts (for one owner when given) and process-local lookup counters."""
        total: int | None = None
        if self._initialized and self._redis:
            try:
                total = 0
                async for _ in self._redis.scan_iter(match=self._entry_pattern(owner_id)):
                    total += 1
            except Exception as e:
                logger.warning(f"Cache stats scan failed: {e}")
                total = None

        lookups = self._hits + self._misses
        return {
            "backend": self.backend,
            "connected": self._initialized,
            # Redis expires keys itself, so every visible key is valid
            "total_entries": total,
            "valid_entries": total,
            "expired_entries": 0,
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            "evictions": self._evictions,
        }
