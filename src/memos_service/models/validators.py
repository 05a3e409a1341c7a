"""Shared Pydantic types and validators for reuse across models.

Centralises tag normalisation, range-clamped floats and Literal enums so
every model speaks the same language.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BeforeValidator, Field

# ---------------------------------------------------------------------------
# Tag normalisation
# ---------------------------------------------------------------------------


def normalize_tags(v: Any) -> list[str]:
    """Accept ``str | list | None`` and return a clean, lowercase ``list[str]``.

    * ``"a, B, c"`` → ``["a", "b", "c"]``
    * ``["a", None, " b ", "A"]`` → ``["a", "b"]``
    * ``None`` → ``[]``

    Order of first appearance is kept; duplicates are dropped.
    """
    if v is None:
        return []
    if isinstance(v, str):
        items: list[Any] = v.split(",")
    elif isinstance(v, (list, tuple, set, frozenset)):
        items = list(v)
    else:
        return []

    seen: set[str] = set()
    tags: list[str] = []
    for item in items:
        if item is None:
            continue
        tag = str(item).strip().lower()
        if tag and tag not in seen:
            seen.add(tag)
            tags.append(tag)
    return tags


Tags = Annotated[list[str], BeforeValidator(normalize_tags)]
"""Flexible tag input (str, list or None). Always a lowercase list[str]."""


# ---------------------------------------------------------------------------
# Numeric types
# ---------------------------------------------------------------------------

UnitFloat = Annotated[float, Field(ge=0.0, le=1.0)]
"""Float clamped to [0.0, 1.0], used for importance and score bounds."""

NonNegativeInt = Annotated[int, Field(ge=0)]
"""Non-negative integer for counts and offsets."""


# ---------------------------------------------------------------------------
# Literal enums
# ---------------------------------------------------------------------------

AuthorRole = Literal["user", "agent", "system"]
SortBy = Literal["relevance", "importance", "recency", "popularity"]
