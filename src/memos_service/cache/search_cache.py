"""
In-memory search result cache.

Entries live for a fixed TTL after insertion and the cache holds a bounded
number of them. When full, the entry inserted earliest is evicted; reads do
not refresh an entry's position. Expired entries are dropped lazily on lookup
and proactively by a periodic sweeper task.

Keys embed the percent-encoded owner id (``search:{owner}:{digest}``) so that
every entry belonging to an owner can be purged after a mutation. Encoding
keeps ``:`` out of the owner segment; owner ``a`` never matches ``a:b``.
"""

import asyncio
import hashlib
import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from ..models.memo import ScoredMemo
from ..models.search import SearchQuery

logger = logging.getLogger(__name__)

KEY_NAMESPACE = "search"


def make_search_key(params: dict[str, Any]) -> str:
    """
    Build a cache key from canonical search parameters.

    Args:
        params: Every parameter affecting the result set; must include ``owner_id``

    Returns:
        Key in the form ``search:{owner}:{sha256 hex}``
    """
    canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{owner_prefix(params['owner_id'])}{digest}"


def generate_cache_key(query: SearchQuery) -> str:
    """Cache key for a validated search query."""
    return make_search_key(query.cache_params())


def owner_prefix(owner_id: str) -> str:
    """Key prefix shared by every entry of ``owner_id``."""
    return f"{KEY_NAMESPACE}:{quote(owner_id, safe='')}:"


@dataclass(slots=True)
class CacheEntry:
    results: list[ScoredMemo]
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class SearchCache:
    """Bounded TTL cache for ranked search results."""

    backend = "memory"

    def __init__(
        self,
        ttl_seconds: float = 300,
        max_entries: int = 100,
        sweep_interval_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock

        # dict preserves insertion order, which is the eviction order
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

        self._sweeper_task: asyncio.Task | None = None

    async def initialize(self) -> None:
        self.start_sweeper()

    async def close(self) -> None:
        await self.stop_sweeper()

    async def get(self, key: str) -> list[ScoredMemo] | None:
        """Return cached results, or None on a miss or an expired entry."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            with self._lock:
                # Re-check under the lock; a concurrent set may have replaced it
                current = self._entries.get(key)
                if current is entry:
                    del self._entries[key]
            self._misses += 1
            return None

        self._hits += 1
        return list(entry.results)

    async def set(self, key: str, results: list[ScoredMemo]) -> None:
        """Insert results, evicting the oldest entry when at capacity."""
        entry = CacheEntry(results=list(results), expires_at=self._clock() + self.ttl_seconds)
        with self._lock:
            # Re-inserting moves the key to the end: its insertion time is now
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                self._evictions += 1
                logger.debug(f"Evicted cache entry {oldest}")
            self._entries[key] = entry

    async def invalidate_owner(self, owner_id: str) -> int:
        """Drop every entry belonging to ``owner_id``. Returns the number removed."""
        prefix = owner_prefix(owner_id)
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries for owner {owner_id}")
        return len(doomed)

    async def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def sweep_expired(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    async def stats(self, owner_id: str | None = None) -> dict[str, Any]:
        """Entry counts (for one owner when given) and lookup counters."""
        now = self._clock()
        prefix = owner_prefix(owner_id) if owner_id is not None else ""
        with self._lock:
            entries = [e for k, e in self._entries.items() if k.startswith(prefix)]
        total = len(entries)
        expired = sum(1 for e in entries if e.is_expired(now))
        lookups = self._hits + self._misses
        return {
            "backend": self.backend,
            "total_entries": total,
            "valid_entries": total - expired,
            "expired_entries": expired,
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            "evictions": self._evictions,
        }

    # ------------------------------------------------------------------
    # Periodic sweep
    # ------------------------------------------------------------------

    def start_sweeper(self) -> None:
        """Start the background sweep task. Requires a running event loop."""
        if self._sweeper_task is not None and not self._sweeper_task.done():
            return
        self._sweeper_task = asyncio.create_task(self._sweep_loop())
        logger.info(f"Search cache sweeper started (interval={self.sweep_interval_seconds}s)")

    async def stop_sweeper(self) -> None:
        if self._sweeper_task is None:
            return
        self._sweeper_task.cancel()
        try:
            await self._sweeper_task
        except asyncio.CancelledError:
            pass
        self._sweeper_task = None
        logger.info("Search cache sweeper stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.sweep_expired()
            except Exception as e:
                logger.error(f"Cache sweep failed: {e}")
