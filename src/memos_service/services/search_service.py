"""
Search Service - hybrid memo search orchestration.

One call runs: validate -> cache lookup -> query embedding -> filtered
candidate fetch -> scoring -> sort -> truncate -> cache store. The embedding
provider is optional at request time (its failure only removes the semantic
term), while a record store failure fails the whole search.
"""

import asyncio
import logging
import time
from collections import Counter, deque
from typing import Any

from ..cache import ResultCache, generate_cache_key
from ..config import SearchSettings, settings
from ..embeddings.base import EmbeddingProvider
from ..errors import EmbeddingError, InputValidationError, StoreError
from ..models.memo import MemoRecord, ScoredMemo
from ..models.search import SearchFilters, SearchQuery
from ..models.search_log import SearchLog
from ..storage.base import MemoStore
from ..utils.filters import Predicate, build_predicates
from ..utils.scoring import ScoringWeights, rank_results, score_candidates

logger = logging.getLogger(__name__)


class SearchService:
    """
    Orchestrates ranked memo search for a single owner per call.

    The service owns no mutable state apart from the search log; the cache is
    an injected component with its own lifecycle.
    """

    # Maximum search logs to keep in memory (circular buffer)
    _MAX_SEARCH_LOGS = 10000

    def __init__(
        self,
        store: MemoStore,
        embedder: EmbeddingProvider | None,
        cache: ResultCache | None = None,
        weights: ScoringWeights | None = None,
        config: SearchSettings | None = None,
    ):
        self.store = store
        self.embedder = embedder
        self.cache = cache
        self.weights = weights or ScoringWeights.from_settings(settings.scoring)
        self.config = config or settings.search
        self._search_logs: deque[SearchLog] = deque(maxlen=self._MAX_SEARCH_LOGS)

    async def search(
        self,
        owner_id: str,
        query: str,
        filters: SearchFilters | dict[str, Any] | None = None,
        sort_by: str = "relevance",
        limit: int | None = None,
    ) -> list[ScoredMemo]:
        """
        Run a ranked search over one owner's memos.

        Args:
            owner_id: Owner whose memos are searched
            query: Free-text query (trimmed; length-checked)
            filters: Hard filters and the popularity toggle
            sort_by: relevance | importance | recency | popularity
            limit: Maximum results (default from settings)

        Returns:
            At most ``limit`` scored memos in the requested order

        Raises:
            InputValidationError: Invalid query, limit or filters
            StoreError: Record store failed or timed out
        """
        start_time = time.time()
        try:
            search_query = SearchQuery.build(
                owner_id, query, filters=filters, sort_by=sort_by, limit=limit, config=self.config
            )
            if search_query.limit > self.config.max_limit:
                raise InputValidationError(f"limit: must be at most {self.config.max_limit}")
        except InputValidationError as e:
            self._log_search(owner_id, query, start_time, 0, sort_by=sort_by, error=str(e))
            raise

        cache_key = generate_cache_key(search_query)
        cached = await self._cache_get(cache_key)
        if cached is not None:
            logger.debug(f"Search cache hit for owner {owner_id}")
            self._log_search(
                owner_id,
                search_query.query,
                start_time,
                len(cached),
                sort_by=search_query.sort_by,
                tags=search_query.filters.tags,
                cache_hit=True,
            )
            return cached

        query_embedding = await self._embed_query(search_query.query)
        predicates = build_predicates(owner_id, search_query.filters)

        try:
            candidates = await self._fetch_candidates(owner_id, predicates)
            similarities = None
            if query_embedding is not None and self.config.semantic_pushdown and self.store.supports_vector_search:
                similarities = await self._pushdown_similarities(owner_id, query_embedding, predicates)
        except StoreError as e:
            self._log_search(
                owner_id,
                search_query.query,
                start_time,
                0,
                sort_by=search_query.sort_by,
                tags=search_query.filters.tags,
                embedding_available=query_embedding is not None,
                error=str(e),
            )
            raise

        survivors, dropped = score_candidates(
            search_query.query,
            candidates,
            # With pushdown the similarities are already known; skip local cosine
            query_embedding=query_embedding if similarities is None else None,
            requested_tags=search_query.filters.tags,
            weights=self.weights,
            include_popular=search_query.filters.include_popular,
            similarities=similarities,
        )
        results = rank_results(survivors, search_query.sort_by, search_query.limit)

        # Only successful, complete searches are cached
        await self._cache_set(cache_key, results)

        self._log_search(
            owner_id,
            search_query.query,
            start_time,
            len(results),
            sort_by=search_query.sort_by,
            tags=search_query.filters.tags,
            embedding_available=query_embedding is not None,
            candidate_count=len(candidates),
            filtered_below_threshold=dropped,
            pushdown=similarities is not None,
        )
        logger.debug(
            f"Search for owner {owner_id}: {len(candidates)} candidates, {dropped} below threshold, "
            f"{len(results)} returned in {(time.time() - start_time) * 1000:.1f}ms"
        )
        return results

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    async def _embed_query(self, text: str) -> list[float] | None:
        """Query embedding, or None when the provider fails or times out."""
        if self.embedder is None:
            return None
        try:
            return await asyncio.wait_for(self.embedder.embed(text), timeout=self.config.embedding_timeout_seconds)
        except TimeoutError:
            logger.warning(
                f"Query embedding timed out after {self.config.embedding_timeout_seconds}s; "
                "continuing without semantic scoring"
            )
        except EmbeddingError as e:
            logger.warning(f"Query embedding failed ({e}); continuing without semantic scoring")
        return None

    async def _fetch_candidates(self, owner_id: str, predicates: list[Predicate]) -> list[MemoRecord]:
        limit = self.config.candidate_limit
        try:
            candidates = await asyncio.wait_for(
                self.store.query_records(owner_id, predicates, limit=limit),
                timeout=self.config.store_timeout_seconds,
            )
        except TimeoutError as e:
            logger.error(f"Candidate fetch timed out after {self.config.store_timeout_seconds}s")
            raise StoreError(f"Record store timed out after {self.config.store_timeout_seconds}s") from e
        except StoreError:
            raise
        except Exception as e:
            logger.error(f"Candidate fetch failed: {e}")
            raise StoreError(f"Record store query failed: {e}") from e

        if len(candidates) >= limit:
            logger.warning(f"Candidate set for owner {owner_id} truncated at {limit} records")
        return candidates

    async def _pushdown_similarities(
        self, owner_id: str, embedding: list[float], predicates: list[Predicate]
    ) -> dict[int, float] | None:
        """Store-side similarity prefilter. Falls back to local scoring on failure."""
        try:
            return await asyncio.wait_for(
                self.store.vector_similarities(
                    owner_id,
                    embedding,
                    predicates,
                    min_similarity=self.weights.semantic_threshold,
                    limit=self.config.candidate_limit,
                ),
                timeout=self.config.store_timeout_seconds,
            )
        except (TimeoutError, StoreError, NotImplementedError) as e:
            logger.warning(f"Similarity pushdown failed ({type(e).__name__}: {e}); scoring similarity locally")
            return None

    async def _cache_get(self, key: str) -> list[ScoredMemo] | None:
        if self.cache is None:
            return None
        try:
            return await self.cache.get(key)
        except Exception as e:
            logger.warning(f"Search cache lookup failed, searching uncached: {e}")
            return None

    async def _cache_set(self, key: str, results: list[ScoredMemo]) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set(key, results)
        except Exception as e:
            logger.warning(f"Search cache store failed: {e}")

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    async def invalidate_owner(self, owner_id: str) -> int:
        if self.cache is None:
            return 0
        try:
            return await self.cache.invalidate_owner(owner_id)
        except Exception as e:
            logger.warning(f"Search cache invalidation failed for owner {owner_id}: {e}")
            return 0

    async def cache_stats(self, owner_id: str | None = None) -> dict[str, Any]:
        """
        Cache statistics, process-wide or scoped to one owner.

        Backend hit counters cover every owner, so owner-scoped hits and misses
        come from that owner's search log instead.
        """
        if self.cache is None:
            return {"enabled": False}
        stats = await self.cache.stats(owner_id=owner_id)
        if owner_id is not None:
            lookups = [log for log in self._search_logs if log.owner_id == owner_id and log.error is None]
            hits = sum(1 for log in lookups if log.cache_hit)
            stats.pop("evictions", None)
            stats.update(
                owner_id=owner_id,
                hits=hits,
                misses=len(lookups) - hits,
                hit_rate=round(hits / len(lookups), 4) if lookups else 0.0,
            )
        return {"enabled": True, **stats}

    async def clear_cache(self) -> int:
        if self.cache is None:
            return 0
        return await self.cache.clear()

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def _log_search(
        self,
        owner_id: str,
        query: str,
        start_time: float,
        result_count: int,
        sort_by: str = "relevance",
        tags: list[str] | None = None,
        cache_hit: bool = False,
        embedding_available: bool = True,
        candidate_count: int = 0,
        filtered_below_threshold: int = 0,
        pushdown: bool = False,
        error: str | None = None,
    ) -> None:
        """
        Log a search for analytics tracking.

        Non-blocking, stores in circular buffer (last 10K searches).
        """
        self._search_logs.append(
            SearchLog(
                owner_id=owner_id,
                query=query,
                timestamp=time.time(),
                response_time_ms=(time.time() - start_time) * 1000,
                result_count=result_count,
                sort_by=sort_by,
                tags=list(tags) if tags else None,
                cache_hit=cache_hit,
                embedding_available=embedding_available,
                candidate_count=candidate_count,
                filtered_below_threshold=filtered_below_threshold,
                error=error,
                metadata={"pushdown": pushdown},
            )
        )

    def get_search_analytics(self, limit: int = 1000, owner_id: str | None = None) -> dict[str, Any]:
        """
        Get aggregated search analytics from recent searches.

        Returns statistics about search patterns, performance and cache use.
        """
        logs = [log for log in self._search_logs if owner_id is None or log.owner_id == owner_id]
        if not logs:
            return {
                "total_searches": 0,
                "avg_response_time_ms": None,
                "cache_hit_rate": 0.0,
                "embedding_fallback_rate": 0.0,
                "error_rate": 0.0,
                "popular_queries": [],
                "popular_tags": [],
                "searches_by_sort": {},
                "queries_per_hour": 0.0,
            }

        recent_logs = logs[-limit:]
        total = len(recent_logs)

        response_times = [log.response_time_ms for log in recent_logs if log.error is None]
        avg_response_time = sum(response_times) / len(response_times) if response_times else None

        query_counts = Counter(log.query.lower() for log in recent_logs)
        popular_queries = [{"query": q, "count": c} for q, c in query_counts.most_common(10)]

        tag_counts: Counter[str] = Counter()
        for log in recent_logs:
            if log.tags:
                tag_counts.update(log.tags)
        popular_tags = [{"tag": t, "count": c} for t, c in tag_counts.most_common(10)]

        errors = sum(1 for log in recent_logs if log.error is not None)
        cache_hits = sum(1 for log in recent_logs if log.cache_hit)
        # Cache hits never reach the embedder; only count computed searches
        computed = [log for log in recent_logs if not log.cache_hit and log.error is None]
        fallbacks = sum(1 for log in computed if not log.embedding_available)

        if total > 1:
            time_span_hours = (recent_logs[-1].timestamp - recent_logs[0].timestamp) / 3600
            queries_per_hour = total / time_span_hours if time_span_hours > 0 else 0.0
        else:
            queries_per_hour = 0.0

        return {
            "total_searches": total,
            "avg_response_time_ms": round(avg_response_time, 2) if avg_response_time is not None else None,
            "cache_hit_rate": round(cache_hits / total * 100, 2),
            "embedding_fallback_rate": round(fallbacks / len(computed) * 100, 2) if computed else 0.0,
            "error_rate": round(errors / total * 100, 2),
            "popular_queries": popular_queries,
            "popular_tags": popular_tags,
            "searches_by_sort": dict(Counter(log.sort_by for log in recent_logs)),
            "queries_per_hour": round(queries_per_hour, 2),
        }
