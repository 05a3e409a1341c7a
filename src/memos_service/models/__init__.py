"""Pydantic models shared by the service, HTTP and MCP layers."""

from .memo import MemoCreate, MemoRecord, MemoUpdate, ScoredMemo
from .search import DateRange, SearchFilters, SearchQuery

__all__ = [
    "DateRange",
    "MemoCreate",
    "MemoRecord",
    "MemoUpdate",
    "ScoredMemo",
    "SearchFilters",
    "SearchQuery",
]
