"""Record store backends."""

from .base import MemoStore
from .factory import create_store_instance
from .qdrant_store import QdrantMemoStore

__all__ = ["MemoStore", "QdrantMemoStore", "create_store_instance"]
