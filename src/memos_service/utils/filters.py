"""
Filter predicates for candidate retrieval.

Search filters are translated into a flat list of ``(column, operator, value)``
triples. Store adapters apply the list uniformly; nothing above the storage
layer builds query syntax.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..models.search import SearchFilters


class Operator(str, Enum):
    EQ = "eq"
    GTE = "gte"
    LTE = "lte"
    # Array column shares at least one element with the value list
    OVERLAPS = "overlaps"


@dataclass(frozen=True, slots=True)
class Predicate:
    column: str
    op: Operator
    value: Any


def build_predicates(owner_id: str, filters: SearchFilters | None = None) -> list[Predicate]:
    """
    Translate search filters into store predicates.

    The owner predicate is always first; every other filter is optional.
    """
    predicates = [Predicate("owner_id", Operator.EQ, owner_id)]
    if filters is None:
        return predicates

    if filters.session_id is not None:
        predicates.append(Predicate("session_id", Operator.EQ, filters.session_id))
    if filters.author_role is not None:
        predicates.append(Predicate("author_role", Operator.EQ, filters.author_role))
    if filters.min_importance is not None:
        predicates.append(Predicate("importance", Operator.GTE, filters.min_importance))
    if filters.max_importance is not None:
        predicates.append(Predicate("importance", Operator.LTE, filters.max_importance))
    if filters.date_range is not None:
        if filters.date_range.start is not None:
            predicates.append(Predicate("created_at", Operator.GTE, filters.date_range.start))
        if filters.date_range.end is not None:
            predicates.append(Predicate("created_at", Operator.LTE, filters.date_range.end))
    if filters.tags:
        predicates.append(Predicate("tags", Operator.OVERLAPS, list(filters.tags)))
    return predicates
