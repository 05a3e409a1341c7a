"""
Error taxonomy for the Memos service.

Only ``InputValidationError``, ``MemoNotFoundError`` and ``StoreError`` are
meant to reach callers. ``EmbeddingError`` and ``CacheError`` are caught in
the service layer and degrade to an embedding-less or uncached search.
"""


class MemosError(Exception):
    """Base class for all service errors."""


class InputValidationError(MemosError, ValueError):
    """Client-side rejection: bad query length, limit, filter or update payload."""


class MemoNotFoundError(MemosError, LookupError):
    """A memo does not exist or belongs to a different owner."""

    def __init__(self, memo_id: int):
        super().__init__(f"Memo not found: {memo_id}")
        self.memo_id = memo_id


class DependencyError(MemosError):
    """An external collaborator failed."""


class StoreError(DependencyError):
    """Record store failure. Fatal for the current request."""


class EmbeddingError(DependencyError):
    """Embedding provider failure. Search continues without the semantic term."""


class CacheError(MemosError):
    """Result cache failure. Never propagated past the service layer."""
