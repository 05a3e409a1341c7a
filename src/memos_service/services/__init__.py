"""Service layer shared by the HTTP API and the MCP server."""

from .embedding_backfill import EmbeddingBackfillWorker
from .memo_service import MemoService
from .search_service import SearchService

__all__ = ["EmbeddingBackfillWorker", "MemoService", "SearchService"]
