"""MCP tool input models.

Each MCP tool function validates its inputs by constructing the corresponding
model. Range clamping and enum checking live here as declarative constraints
instead of inline in ``mcp_server.py``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from .search import DateRange, SearchFilters
from .validators import AuthorRole, SortBy, Tags, UnitFloat

# Tool-facing upper bound on result count
FIND_MEMORIES_MAX_LIMIT = 50


class MemorizeParams(BaseModel):
    """Validated input for the ``memorize`` MCP tool."""

    content: str = Field(min_length=1)
    session_id: str | None = None
    summary: str | None = None
    author_role: AuthorRole = "user"
    importance: UnitFloat = 1.0
    tags: Tags = []


class FindMemoriesParams(BaseModel):
    """Validated input for the ``find_memories`` MCP tool."""

    query: str = Field(min_length=1)
    session_id: str | None = None
    limit: int = Field(default=10, ge=1, le=FIND_MEMORIES_MAX_LIMIT)
    tags: Tags = []
    author_role: AuthorRole | None = None
    min_importance: UnitFloat | None = None
    max_importance: UnitFloat | None = None
    sort_by: SortBy = "relevance"
    include_popular: bool = False
    start_date: str | None = None
    end_date: str | None = None

    def to_filters(self) -> SearchFilters:
        date_range = None
        if self.start_date or self.end_date:
            date_range = DateRange(start=self.start_date, end=self.end_date)
        return SearchFilters(
            session_id=self.session_id,
            tags=self.tags,
            author_role=self.author_role,
            min_importance=self.min_importance,
            max_importance=self.max_importance,
            date_range=date_range,
            include_popular=self.include_popular,
        )

    def filter_summary(self) -> list[str]:
        """Human-readable description of the active filters."""
        parts: list[str] = []
        if self.tags:
            parts.append(f"tags: {', '.join(self.tags)}")
        if self.author_role:
            parts.append(f"author: {self.author_role}")
        if self.min_importance is not None or self.max_importance is not None:
            lo = self.min_importance if self.min_importance is not None else 0
            hi = self.max_importance if self.max_importance is not None else 1
            parts.append(f"importance: {lo}-{hi}")
        if self.start_date or self.end_date:
            parts.append(f"date: {self.start_date or 'start'} to {self.end_date or 'end'}")
        return parts


class MemoIdParams(BaseModel):
    """Validated input for tools addressing a single memo."""

    memo_id: int = Field(ge=1)


def tool_error(message: str, **extra: Any) -> dict[str, Any]:
    """Uniform error payload for MCP tools."""
    return {"success": False, "error": message, **extra}
