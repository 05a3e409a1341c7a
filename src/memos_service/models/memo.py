"""Memo data models.

``MemoRecord`` is the persisted entity; ``MemoCreate`` / ``MemoUpdate`` are the
write payloads accepted by the service layer; ``ScoredMemo`` pairs a record
with its relevance score for search results.
"""

import logging
from datetime import datetime, timezone
from typing import Annotated, Any, Self

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

from ..config import EMBEDDING_DIMENSIONS
from .validators import AuthorRole, NonNegativeInt, Tags, UnitFloat

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _ensure_aware(v: datetime) -> datetime:
    """Interpret naive datetimes as UTC."""
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


def validate_embedding(v: list[float] | None) -> list[float] | None:
    """Reject vectors that don't match the store's fixed dimensionality."""
    if v is None:
        return None
    if len(v) != EMBEDDING_DIMENSIONS:
        raise ValueError(f"embedding must have {EMBEDDING_DIMENSIONS} dimensions, got {len(v)}")
    return [float(x) for x in v]


Embedding = Annotated[list[float] | None, AfterValidator(validate_embedding)]
"""Optional fixed-length vector, checked against the store dimensionality."""


def build_embedding_text(content: str, summary: str | None) -> str:
    """Text fed to the embedding model for a memo: ``summary + " " + content``."""
    if summary:
        return f"{summary} {content}"
    return content


# ---------------------------------------------------------------------------
# Memo record
# ---------------------------------------------------------------------------


class MemoRecord(BaseModel):
    """A single stored memo."""

    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(ge=1)
    owner_id: str = Field(min_length=1)
    content: str = Field(min_length=1)
    summary: str | None = None
    tags: Tags = []
    author_role: AuthorRole = "user"
    importance: UnitFloat = 1.0
    access_count: NonNegativeInt = 0
    session_id: str | None = None

    # Derived from summary + content; absent until first generated. Never serialised.
    embedding: Embedding = Field(default=None, exclude=True, repr=False)
    # Survives serialisation and reads that skip the vector
    has_embedding: bool = False

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "updated_at")
    @classmethod
    def aware_timestamps(cls, v: datetime) -> datetime:
        return _ensure_aware(v)

    @model_validator(mode="after")
    def embedding_flag(self) -> Self:
        if self.embedding is not None:
            self.has_embedding = True
        return self

    def embedding_text(self) -> str:
        return build_embedding_text(self.content, self.summary)

    def touch(self) -> None:
        """Refresh ``updated_at`` to the current time."""
        self.updated_at = utcnow()

    def to_response(self) -> dict[str, Any]:
        """Plain-data projection returned to API and tool callers."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "session_id": self.session_id,
            "content": self.content,
            "summary": self.summary,
            "author_role": self.author_role,
            "importance": self.importance,
            "access_count": self.access_count,
            "tags": list(self.tags),
            "has_embedding": self.has_embedding,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Write payloads
# ---------------------------------------------------------------------------


class MemoCreate(BaseModel):
    """Fields accepted when creating a memo."""

    content: str = Field(min_length=1)
    author_role: AuthorRole
    summary: str | None = None
    tags: Tags = []
    importance: UnitFloat = 1.0
    session_id: str | None = None

    def embedding_text(self) -> str:
        return build_embedding_text(self.content, self.summary)


class MemoUpdate(BaseModel):
    """Partial update. Only fields explicitly set are applied."""

    content: str | None = Field(default=None, min_length=1)
    summary: str | None = None
    tags: Tags | None = None
    author_role: AuthorRole | None = None
    importance: UnitFloat | None = None
    session_id: str | None = None

    def changes(self) -> dict[str, Any]:
        """Explicitly provided fields, excluding ``None`` for non-clearable ones."""
        data = self.model_dump(exclude_unset=True)
        # summary and session_id may be cleared with an explicit null
        return {k: v for k, v in data.items() if v is not None or k in {"summary", "session_id"}}

    @property
    def touches_embedding_text(self) -> bool:
        changed = self.changes()
        return "content" in changed or "summary" in changed


# ---------------------------------------------------------------------------
# Search results
# ---------------------------------------------------------------------------


class ScoredMemo(BaseModel):
    """Search hit: a memo together with its relevance score and score breakdown."""

    memo: MemoRecord
    relevance_score: float
    debug_info: dict[str, Any] = Field(default_factory=dict)

    def to_response(self, include_score: bool = False) -> dict[str, Any]:
        data = self.memo.to_response()
        if include_score:
            data["relevance_score"] = self.relevance_score
            data["score_breakdown"] = self.debug_info
        return data
