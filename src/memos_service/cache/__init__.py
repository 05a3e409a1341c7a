"""Search result caches (in-memory and Redis)."""

import logging
from typing import Protocol

from ..config import CacheSettings
from ..models.memo import ScoredMemo
from .redis_cache import RedisSearchCache
from .search_cache import SearchCache, generate_cache_key, make_search_key

logger = logging.getLogger(__name__)


class ResultCache(Protocol):
    """Interface shared by the cache backends."""

    backend: str

    async def initialize(self) -> None: ...

    async def close(self) -> None: ...

    async def get(self, key: str) -> list[ScoredMemo] | None: ...

    async def set(self, key: str, results: list[ScoredMemo]) -> None: ...

    async def invalidate_owner(self, owner_id: str) -> int: ...

    async def clear(self) -> int: ...

    async def stats(self, owner_id: str | None = None) -> dict: ...


def create_cache(config: CacheSettings | None = None) -> ResultCache | None:
    """Build the configured cache backend, or None when caching is disabled."""
    if config is None:
        from ..config import settings

        config = settings.cache

    if not config.enabled:
        logger.info("Search cache disabled")
        return None
    if config.backend == "redis":
        return RedisSearchCache(
            url=config.redis_url,
            ttl_seconds=config.ttl_seconds,
            max_entries=config.max_entries,
            key_prefix=config.key_prefix,
        )
    return SearchCache(
        ttl_seconds=config.ttl_seconds,
        max_entries=config.max_entries,
        sweep_interval_seconds=config.sweep_interval_seconds,
    )


__all__ = ["RedisSearchCache", "ResultCache", "SearchCache", "create_cache", "generate_cache_key", "make_search_key"]
