"""
Memo Service - shared business logic for memo CRUD.

Both the HTTP API and the MCP tools go through this service so validation,
embedding generation and cache invalidation behave identically everywhere.
Every mutation purges the owner's cached search results.
"""

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from ..config import SearchSettings, settings
from ..embeddings.base import EmbeddingProvider
from ..errors import EmbeddingError, InputValidationError, MemoNotFoundError
from ..models.memo import MemoCreate, MemoRecord, MemoUpdate
from ..models.search import format_validation_error
from ..storage.base import MemoStore
from .search_service import SearchService

logger = logging.getLogger(__name__)


class MemoService:
    """CRUD operations on memos, scoped per owner."""

    def __init__(
        self,
        store: MemoStore,
        embedder: EmbeddingProvider | None,
        search_service: SearchService | None = None,
        config: SearchSettings | None = None,
    ):
        self.store = store
        self.embedder = embedder
        self.search_service = search_service
        self.config = config or settings.search

    async def _generate_embedding(self, text: str) -> list[float] | None:
        """Embedding for memo text, or None if the provider fails."""
        if self.embedder is None:
            return None
        try:
            return await asyncio.wait_for(self.embedder.embed(text), timeout=self.config.embedding_timeout_seconds)
        except TimeoutError:
            logger.warning("Memo embedding timed out; storing without embedding for later backfill")
        except EmbeddingError as e:
            logger.warning(f"Memo embedding failed ({e}); storing without embedding for later backfill")
        return None

    async def _invalidate(self, owner_id: str) -> None:
        if self.search_service is not None:
            await self.search_service.invalidate_owner(owner_id)

    async def create_memo(self, owner_id: str, data: MemoCreate | dict[str, Any]) -> MemoRecord:
        """
        Create a memo and embed ``summary + content``.

        Raises:
            InputValidationError: Invalid payload
            StoreError: Record store failure
        """
        payload = _validate(MemoCreate, data)
        embedding = await self._generate_embedding(payload.embedding_text())
        record = await self.store.create(owner_id, payload.model_dump(), embedding=embedding)
        await self._invalidate(owner_id)
        logger.info(f"Created memo {record.id} for owner {owner_id}")
        return record

    async def get_memo(self, owner_id: str, memo_id: int) -> MemoRecord:
        """
        Fetch a memo and count the access.

        Raises:
            MemoNotFoundError: Missing or owned by someone else
        """
        record = await self.store.increment_access_count(owner_id, memo_id)
        if record is None:
            raise MemoNotFoundError(memo_id)
        return record

    async def list_memos(
        self, owner_id: str, session_id: str | None = None, limit: int = 50, offset: int = 0
    ) -> list[MemoRecord]:
        if limit < 1 or limit > self.config.max_limit:
            raise InputValidationError(f"limit: must be between 1 and {self.config.max_limit}")
        if offset < 0:
            raise InputValidationError("offset: must be non-negative")
        return await self.store.list(owner_id, session_id=session_id, limit=limit, offset=offset)

    async def update_memo(self, owner_id: str, memo_id: int, data: MemoUpdate | dict[str, Any]) -> MemoRecord:
        """
        Apply a partial update.

        A content or summary change regenerates the embedding; if that fails
        the old vector is dropped so the backfill picks the memo up.

        Raises:
            InputValidationError: Invalid or empty payload
            MemoNotFoundError: Missing or owned by someone else
        """
        update = _validate(MemoUpdate, data)
        changes = update.changes()
        if not changes:
            raise InputValidationError("No fields to update")

        embedding = None
        clear_embedding = False
        if update.touches_embedding_text:
            current = await self.store.get(owner_id, memo_id)
            if current is None:
                raise MemoNotFoundError(memo_id)
            merged = current.model_copy(update=changes)
            embedding = await self._generate_embedding(merged.embedding_text())
            clear_embedding = embedding is None

        record = await self.store.update(
            owner_id, memo_id, changes, embedding=embedding, clear_embedding=clear_embedding
        )
        if record is None:
            raise MemoNotFoundError(memo_id)

        await self._invalidate(owner_id)
        logger.info(f"Updated memo {memo_id} for owner {owner_id}: {', '.join(sorted(changes))}")
        return record

    async def delete_memo(self, owner_id: str, memo_id: int) -> None:
        if not await self.store.delete(owner_id, memo_id):
            raise MemoNotFoundError(memo_id)
        await self._invalidate(owner_id)
        logger.info(f"Deleted memo {memo_id} for owner {owner_id}")

    async def regenerate_embeddings(self, batch_size: int = 10) -> dict[str, int]:
        """
        Embed one batch of memos that have no embedding.

        Returns:
            Counts of processed, succeeded and failed records
        """
        pending = await self.store.list_missing_embeddings(limit=batch_size)
        if not pending:
            return {"processed": 0, "succeeded": 0, "failed": 0}

        succeeded = 0
        owners: set[str] = set()
        for record in pending:
            text = record.embedding_text()
            embedding = await self._generate_embedding(text)
            if embedding is None:
                continue
            # Skipped when the memo was edited while its embedding was generated
            if await self.store.set_embedding(record.id, embedding, source_text=text):
                succeeded += 1
                owners.add(record.owner_id)

        for owner_id in owners:
            await self._invalidate(owner_id)

        failed = len(pending) - succeeded
        logger.info(f"Embedding backfill: {succeeded}/{len(pending)} succeeded, {failed} failed")
        return {"processed": len(pending), "succeeded": succeeded, "failed": failed}


def _validate(model: type, data: Any) -> Any:
    """Coerce a dict into ``model``, raising InputValidationError on failure."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InputValidationError(format_validation_error(e)) from e
