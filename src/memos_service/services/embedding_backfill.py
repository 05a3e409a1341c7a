"""
Background worker that fills in missing memo embeddings.

Memos created or updated while the embedding provider was unavailable are
stored without a vector. This worker periodically embeds them in small
batches so they regain the semantic score.
"""

import asyncio
import logging
from typing import Any

from .memo_service import MemoService

logger = logging.getLogger(__name__)


class EmbeddingBackfillWorker:
    """Runs ``MemoService.regenerate_embeddings`` on a fixed interval."""

    def __init__(self, memo_service: MemoService, interval_seconds: float = 10.0, batch_size: int = 10):
        self.memo_service = memo_service
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size

        self._running = False
        self._task: asyncio.Task | None = None
        self._cycle_lock = asyncio.Lock()
        self._stats: dict[str, Any] = {"cycles": 0, "skipped": 0, "embedded": 0, "failed": 0, "errors": 0}

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, Any]:
        return dict(self._stats)

    async def start(self) -> None:
        """Start the background loop."""
        if self._running:
            logger.warning("Embedding backfill worker already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Embedding backfill worker started (interval={self.interval_seconds}s, batch={self.batch_size})")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Embedding backfill worker stopped")

    async def run_once(self) -> dict[str, int] | None:
        """
        Process one batch.

        Returns None without doing anything while a previous cycle is still
        in progress.
        """
        if self._cycle_lock.locked():
            self._stats["skipped"] += 1
            logger.debug("Embedding backfill cycle still running, skipping")
            return None

        async with self._cycle_lock:
            result = await self.memo_service.regenerate_embeddings(batch_size=self.batch_size)
            self._stats["cycles"] += 1
            self._stats["embedded"] += result["succeeded"]
            self._stats["failed"] += result["failed"]
            return result

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._stats["errors"] += 1
                logger.error(f"Embedding backfill cycle failed: {e}")
            await asyncio.sleep(self.interval_seconds)
