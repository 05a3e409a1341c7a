"""
Hybrid relevance scoring and result ordering for memo search.

Each candidate memo receives a weighted sum of independent signals:

    score = keyword + tag + semantic + importance [+ popularity]

    keyword     full weight for a whole-word match of the query in content or
                summary, half weight for a plain substring match, else 0.
                The two tiers never stack.
    tag         full weight when any requested tag is a substring of the
                memo's tags joined with spaces.
    semantic    similarity * weight, counted only when the raw cosine
                similarity exceeds the semantic threshold (0.7 by default).
                0 when either side has no embedding.
    importance  importance * weight, always applied.
    popularity  min(access_count, cap) / cap * bonus, only on request.

Candidates whose total falls below ``min_relevance`` are dropped; this keeps
memos that only carry the importance term out of the results.

Scoring is a pure function of (query, memo, query embedding, weights). Sorting
uses Python's stable sort so equal keys keep the store's retrieval order.
"""

from __future__ import annotations

import functools
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass
from typing import Any

import numpy as np

from ..config import ScoringSettings
from ..models.memo import MemoRecord, ScoredMemo

# Keyword match tiers
MATCH_WORD = "word"
MATCH_SUBSTRING = "substring"
MATCH_NONE = "none"

SUBSTRING_FACTOR = 0.5


@dataclass(frozen=True, slots=True)
class ScoringWeights:
    """Weights and thresholds for one scoring pass."""

    keyword: float = 0.4
    tag: float = 0.2
    semantic: float = 0.3
    importance: float = 0.1
    semantic_threshold: float = 0.7
    min_relevance: float = 0.15
    popularity_bonus: float = 0.05
    popularity_cap: int = 100

    @classmethod
    def from_settings(cls, s: ScoringSettings) -> ScoringWeights:
        return cls(
            keyword=s.keyword_weight,
            tag=s.tag_weight,
            semantic=s.semantic_weight,
            importance=s.importance_weight,
            semantic_threshold=s.semantic_threshold,
            min_relevance=s.min_relevance,
            popularity_bonus=s.popularity_bonus,
            popularity_cap=s.popularity_cap,
        )

    def max_score(self, include_popular: bool = False) -> float:
        """Upper bound of any total produced with these weights."""
        total = self.keyword + self.tag + self.semantic + self.importance
        return total + (self.popularity_bonus if include_popular else 0.0)


DEFAULT_WEIGHTS = ScoringWeights()


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    """Per-signal contributions for one candidate."""

    keyword: float = 0.0
    tag: float = 0.0
    semantic: float = 0.0
    importance: float = 0.0
    popularity: float = 0.0
    similarity: float | None = None
    keyword_match: str = MATCH_NONE

    @property
    def total(self) -> float:
        return self.keyword + self.tag + self.semantic + self.importance + self.popularity

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["total"] = self.total
        return data


# ---------------------------------------------------------------------------
# Vector math
# ---------------------------------------------------------------------------


def cosine_distance(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """
    Cosine distance ``1 - cos(a, b)`` in [0, 2].

    A zero vector has no direction; its distance to anything is 1.0
    (similarity 0), which keeps it below any positive semantic threshold.

    Raises:
        ValueError: if the vectors differ in length
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector dimension mismatch: {va.shape} vs {vb.shape}")

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 1.0

    similarity = float(np.dot(va, vb) / (norm_a * norm_b))
    similarity = max(-1.0, min(1.0, similarity))
    return 1.0 - similarity


# ---------------------------------------------------------------------------
# Individual signals
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=256)
def _word_pattern(term: str) -> re.Pattern[str]:
    # Lookarounds instead of \b so queries starting or ending in punctuation ("c++") still match
    return re.compile(rf"(?<!\w){re.escape(term)}(?!\w)", re.IGNORECASE)


def keyword_score(query: str, content: str, summary: str | None, weight: float) -> tuple[float, str]:
    """
    Score a literal query match in content or summary.

    Returns:
        (score, tier) where tier is ``"word"``, ``"substring"`` or ``"none"``
    """
    term = query.strip().lower()
    if not term:
        return 0.0, MATCH_NONE

    texts = [t for t in (content, summary) if t]
    pattern = _word_pattern(term)
    if any(pattern.search(t) for t in texts):
        return weight, MATCH_WORD
    if any(term in t.lower() for t in texts):
        return weight * SUBSTRING_FACTOR, MATCH_SUBSTRING
    return 0.0, MATCH_NONE


def tag_score(requested_tags: Iterable[str], memo_tags: Iterable[str], weight: float) -> float:
    """Full weight if any requested tag occurs in the memo's space-joined tags."""
    haystack = " ".join(memo_tags).lower()
    if not haystack:
        return 0.0
    for tag in requested_tags:
        needle = tag.strip().lower()
        if needle and needle in haystack:
            return weight
    return 0.0


def semantic_score(similarity: float | None, weight: float, threshold: float) -> float:
    """Similarity-weighted score, zero at or below the threshold."""
    if similarity is None or similarity <= threshold:
        return 0.0
    return max(0.0, similarity) * weight


def importance_score(importance: float, weight: float) -> float:
    return importance * weight


def popularity_bonus(access_count: int, bonus: float, cap: int) -> float:
    """Linear bonus saturating at ``cap`` accesses."""
    return min(max(access_count, 0), cap) / cap * bonus


# ---------------------------------------------------------------------------
# Composite score
# ---------------------------------------------------------------------------


def score_memo(
    query: str,
    memo: MemoRecord,
    query_embedding: Sequence[float] | np.ndarray | None = None,
    requested_tags: Iterable[str] = (),
    weights: ScoringWeights = DEFAULT_WEIGHTS,
    include_popular: bool = False,
    similarity: float | None = None,
) -> ScoreBreakdown:
    """
    Compute the full score breakdown for one candidate.

    Args:
        query: Raw query text (matching is case-insensitive)
        memo: Candidate record
        query_embedding: Query vector, or None when embedding failed
        requested_tags: Tag filters from the search request
        weights: Weights and thresholds
        include_popular: Add the access-count bonus
        similarity: Precomputed cosine similarity (store pushdown). Takes
            precedence over computing it from the embeddings.

    Returns:
        ScoreBreakdown; use ``.total`` for the final score
    """
    if similarity is None and query_embedding is not None and memo.embedding is not None:
        similarity = 1.0 - cosine_distance(query_embedding, memo.embedding)

    kw, tier = keyword_score(query, memo.content, memo.summary, weights.keyword)
    return ScoreBreakdown(
        keyword=kw,
        tag=tag_score(requested_tags, memo.tags, weights.tag),
        semantic=semantic_score(similarity, weights.semantic, weights.semantic_threshold),
        importance=importance_score(memo.importance, weights.importance),
        popularity=(
            popularity_bonus(memo.access_count, weights.popularity_bonus, weights.popularity_cap)
            if include_popular
            else 0.0
        ),
        similarity=similarity,
        keyword_match=tier,
    )


def is_relevant(breakdown: ScoreBreakdown, weights: ScoringWeights = DEFAULT_WEIGHTS) -> bool:
    return breakdown.total >= weights.min_relevance


def score_candidates(
    query: str,
    candidates: Iterable[MemoRecord],
    query_embedding: Sequence[float] | np.ndarray | None = None,
    requested_tags: Sequence[str] = (),
    weights: ScoringWeights = DEFAULT_WEIGHTS,
    include_popular: bool = False,
    similarities: Mapping[int, float] | None = None,
) -> tuple[list[ScoredMemo], int]:
    """
    Score every candidate and drop those below the relevance threshold.

    Survivors keep the input (store) order.

    Returns:
        (survivors, number dropped below threshold)
    """
    q_vec = np.asarray(query_embedding, dtype=np.float64) if query_embedding is not None else None

    survivors: list[ScoredMemo] = []
    dropped = 0
    for memo in candidates:
        precomputed = similarities.get(memo.id) if similarities is not None else None
        breakdown = score_memo(
            query,
            memo,
            query_embedding=q_vec,
            requested_tags=requested_tags,
            weights=weights,
            include_popular=include_popular,
            similarity=precomputed,
        )
        if not is_relevant(breakdown, weights):
            dropped += 1
            continue
        survivors.append(ScoredMemo(memo=memo, relevance_score=breakdown.total, debug_info=breakdown.to_dict()))
    return survivors, dropped


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

SORT_KEYS: dict[str, Callable[[ScoredMemo], tuple[float, ...]]] = {
    "relevance": lambda r: (-r.relevance_score,),
    "importance": lambda r: (-r.memo.importance, -r.relevance_score),
    "recency": lambda r: (-r.memo.created_at.timestamp(),),
    "popularity": lambda r: (-r.memo.access_count, -r.relevance_score),
}


def sort_results(results: Iterable[ScoredMemo], sort_by: str = "relevance") -> list[ScoredMemo]:
    """
    Order results by the requested policy (descending).

    ``sorted`` is stable, so ties keep their incoming order.

    Raises:
        ValueError: on an unknown sort policy
    """
    try:
        key = SORT_KEYS[sort_by]
    except KeyError:
        raise ValueError(f"Unknown sort policy: {sort_by}") from None
    return sorted(results, key=key)


def rank_results(results: Iterable[ScoredMemo], sort_by: str, limit: int) -> list[ScoredMemo]:
    """Sort then truncate to ``limit``."""
    return sort_results(results, sort_by)[:limit]
