"""
Shared service manager for the Memos service.

Provides a singleton set of components (record store, embedding provider,
result cache, services, backfill worker) that the HTTP and MCP servers share
when running in the same process.
"""

import asyncio
import logging
from threading import Lock
from typing import Optional

from .cache import ResultCache, create_cache
from .config import Settings, settings
from .embeddings import EmbeddingProvider, create_embedding_provider
from .services import EmbeddingBackfillWorker, MemoService, SearchService
from .storage import MemoStore, create_store_instance
from .utils.scoring import ScoringWeights

logger = logging.getLogger(__name__)


class ServiceManager:
    """Owns the lifecycle of every shared component."""

    _instance: Optional["ServiceManager"] = None
    _lock: Lock = Lock()

    def __init__(self, config: Settings | None = None, embedder: EmbeddingProvider | None = None):
        self.config = config or settings
        self._store: MemoStore | None = None
        # A provider passed in here is used instead of the configured one
        self._embedder: EmbeddingProvider | None = embedder
        self._cache: ResultCache | None = None
        self._search_service: SearchService | None = None
        self._memo_service: MemoService | None = None
        self._backfill: EmbeddingBackfillWorker | None = None
        self._initialization_lock: asyncio.Lock = asyncio.Lock()
        self._initialized: bool = False

    @classmethod
    def get_instance(cls) -> "ServiceManager":
        """Get singleton instance of ServiceManager."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
                    logger.info("Created new ServiceManager singleton instance")
        return cls._instance

    async def initialize(self) -> None:
        """Create and start all components. Idempotent."""
        if self._initialized:
            return

        async with self._initialization_lock:
            if self._initialized:
                return

            logger.info("Initializing shared services...")
            self._store = await create_store_instance(self.config.qdrant)
            if self._embedder is None:
                self._embedder = create_embedding_provider(self.config.embedding)

            cache = create_cache(self.config.cache)
            if cache is not None:
                try:
                    await cache.initialize()
                    self._cache = cache
                except Exception as e:
                    logger.warning(f"Search cache initialization failed (non-fatal, searches run uncached): {e}")
                    self._cache = None

            self._search_service = SearchService(
                self._store,
                self._embedder,
                cache=self._cache,
                weights=ScoringWeights.from_settings(self.config.scoring),
                config=self.config.search,
            )
            self._memo_service = MemoService(
                self._store, self._embedder, search_service=self._search_service, config=self.config.search
            )

            if self.config.backfill.enabled:
                self._backfill = EmbeddingBackfillWorker(
                    self._memo_service,
                    interval_seconds=self.config.backfill.interval_seconds,
                    batch_size=self.config.backfill.batch_size,
                )
                await self._backfill.start()

            self._initialized = True
            logger.info(
                f"Shared services initialized: store={type(self._store).__name__}, "
                f"cache={self._cache.backend if self._cache else 'disabled'}"
            )

    def _require(self, component):
        if not self._initialized or component is None:
            raise RuntimeError("Shared services are not initialized")
        return component

    @property
    def store(self) -> MemoStore:
        return self._require(self._store)

    @property
    def search_service(self) -> SearchService:
        return self._require(self._search_service)

    @property
    def memo_service(self) -> MemoService:
        return self._require(self._memo_service)

    @property
    def backfill(self) -> EmbeddingBackfillWorker | None:
        return self._backfill

    def is_initialized(self) -> bool:
        return self._initialized

    async def close(self) -> None:
        """Stop background work and release resources. Safe to call repeatedly."""
        if self._backfill is not None:
            try:
                await self._backfill.stop()
            except Exception as e:
                logger.warning(f"Error stopping embedding backfill worker: {e}")
            self._backfill = None

        if self._cache is not None:
            try:
                await self._cache.close()
            except Exception as e:
                logger.warning(f"Error closing search cache: {e}")
            self._cache = None

        if self._embedder is not None:
            try:
                await self._embedder.close()
            except Exception as e:
                logger.warning(f"Error closing embedding provider: {e}")
            self._embedder = None

        if self._store is not None:
            try:
                await self._store.close()
            except Exception as e:
                logger.error(f"Error closing record store: {e}")
            self._store = None

        self._search_service = None
        self._memo_service = None
        self._initialized = False
        logger.info("Shared services closed")


def get_service_manager() -> ServiceManager:
    return ServiceManager.get_instance()
