"""Search query models.

``SearchQuery`` is the validated, ephemeral description of one search call.
Construction via ``SearchQuery.build`` turns pydantic validation failures into
``InputValidationError`` so callers only ever see the service taxonomy.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timezone
from typing import Any, Self

from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator, model_validator

from ..config import SearchSettings, settings
from ..errors import InputValidationError
from .validators import AuthorRole, SortBy, Tags, UnitFloat

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _search_config(info: ValidationInfo) -> SearchSettings:
    context = info.context or {}
    return context.get("search_config") or settings.search


def _parse_bound(v: Any, end_of_day: bool) -> Any:
    """``YYYY-MM-DD`` strings become the start (or end) of that UTC day."""
    if isinstance(v, str) and _DATE_ONLY.match(v.strip()):
        day = date.fromisoformat(v.strip())
        return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=timezone.utc)
    if isinstance(v, date) and not isinstance(v, datetime):
        return datetime.combine(v, time.max if end_of_day else time.min, tzinfo=timezone.utc)
    return v


class DateRange(BaseModel):
    """Inclusive ``created_at`` window. Either bound may be open."""

    start: datetime | None = None
    end: datetime | None = None

    @field_validator("start", mode="before")
    @classmethod
    def parse_start(cls, v: Any) -> Any:
        return _parse_bound(v, end_of_day=False)

    @field_validator("end", mode="before")
    @classmethod
    def parse_end(cls, v: Any) -> Any:
        return _parse_bound(v, end_of_day=True)

    @field_validator("start", "end")
    @classmethod
    def aware(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def ordered(self) -> Self:
        if self.start and self.end and self.start > self.end:
            raise ValueError("date range start must not be after end")
        return self


class SearchFilters(BaseModel):
    """Hard filters applied before scoring, plus the popularity toggle."""

    session_id: str | None = None
    tags: Tags = []
    author_role: AuthorRole | None = None
    min_importance: UnitFloat | None = None
    max_importance: UnitFloat | None = None
    date_range: DateRange | None = None
    include_popular: bool = False

    @model_validator(mode="after")
    def importance_bounds(self) -> Self:
        if (
            self.min_importance is not None
            and self.max_importance is not None
            and self.min_importance > self.max_importance
        ):
            raise ValueError("min_importance must not exceed max_importance")
        return self


class SearchQuery(BaseModel):
    """One search request, scoped to a single owner."""

    owner_id: str = Field(min_length=1)
    query: str
    filters: SearchFilters = Field(default_factory=SearchFilters)
    sort_by: SortBy = "relevance"
    limit: int = Field(default=10, ge=1)

    @field_validator("query")
    @classmethod
    def query_length(cls, v: str, info: ValidationInfo) -> str:
        v = v.strip()
        config = _search_config(info)
        lo, hi = config.min_query_length, config.max_query_length
        if len(v) < lo:
            raise ValueError(f"query must be at least {lo} characters")
        if len(v) > hi:
            raise ValueError(f"query must be at most {hi} characters")
        return v

    @classmethod
    def build(
        cls,
        owner_id: str,
        query: str,
        filters: SearchFilters | dict[str, Any] | None = None,
        sort_by: str = "relevance",
        limit: int | None = None,
        config: SearchSettings | None = None,
    ) -> SearchQuery:
        """
        Validate raw parameters, raising ``InputValidationError`` on bad input.

        Query length bounds and the default limit come from ``config``, falling
        back to the process settings.
        """
        config = config or settings.search
        try:
            return cls.model_validate(
                {
                    "owner_id": owner_id,
                    "query": query,
                    "filters": filters if filters is not None else SearchFilters(),
                    "sort_by": sort_by,
                    "limit": limit if limit is not None else config.default_limit,
                },
                context={"search_config": config},
            )
        except ValidationError as e:
            raise InputValidationError(format_validation_error(e)) from e

    @property
    def normalized_query(self) -> str:
        """Lowercased query used for matching; ``query`` keeps the caller's casing."""
        return self.query.lower()

    def cache_params(self) -> dict[str, Any]:
        """Every parameter that affects the result set, in canonical form."""
        f = self.filters
        dr = f.date_range
        return {
            "owner_id": self.owner_id,
            "query": self.normalized_query,
            "session_id": f.session_id,
            "limit": self.limit,
            "tags": sorted(set(f.tags)),
            "author_role": f.author_role,
            "min_importance": f.min_importance,
            "max_importance": f.max_importance,
            "date_start": dr.start.isoformat() if dr and dr.start else None,
            "date_end": dr.end.isoformat() if dr and dr.end else None,
            "sort_by": self.sort_by,
            "include_popular": f.include_popular,
        }


def format_validation_error(e: ValidationError) -> str:
    """Compact one-line summary of a pydantic ValidationError."""
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)
