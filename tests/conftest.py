import os
import sys

# Tests always run against an in-process Qdrant and never start the backfill loop
os.environ.pop("MEMOS_QDRANT_URL", None)
os.environ.pop("MEMOS_QDRANT_STORAGE_PATH", None)
os.environ.pop("MEMOS_EMBEDDING_API_KEY", None)
os.environ["MEMOS_BACKFILL_ENABLED"] = "false"
os.environ.setdefault("MEMOS_OWNER_ID", "owner-test")

# Add src directory to Python path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

import itertools  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402

from memos_service.config import EMBEDDING_DIMENSIONS  # noqa: E402
from memos_service.errors import EmbeddingError  # noqa: E402
from memos_service.models.memo import MemoRecord  # noqa: E402

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)

# Words sharing an axis embed to the same direction
TOPICS = {
    "invoice": 0,
    "invoices": 0,
    "billing": 0,
    "payment": 0,
    "receipt": 0,
    "cat": 1,
    "dog": 1,
    "pets": 1,
    "deploy": 2,
    "release": 2,
    "rollout": 2,
}


def topic_embedding(text: str, dimensions: int = EMBEDDING_DIMENSIONS) -> list[float]:
    """Deterministic bag-of-topics vector; text with no known topic gets its own axis."""
    vector = [0.0] * dimensions
    words = [w.strip(".,!?:;\"'").lower() for w in text.split()]
    hits = [TOPICS[w] for w in words if w in TOPICS]
    if not hits:
        vector[16 + sum(ord(c) for c in text) % (dimensions - 16)] = 1.0
        return vector
    for axis in hits:
        vector[axis] += 1.0
    return vector


class FakeEmbedder:
    """In-process embedding provider with switchable failure modes."""

    def __init__(self, dimensions: int = EMBEDDING_DIMENSIONS):
        self.dimensions = dimensions
        self.fail = False
        self.delay: float | None = None
        self.calls: list[str] = []
        self.closed = False

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.delay is not None:
            import asyncio

            await asyncio.sleep(self.delay)
        if self.fail:
            raise EmbeddingError("provider unavailable")
        return topic_embedding(text, self.dimensions)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def topic_vector():
    return topic_embedding


@pytest.fixture
def make_memo():
    """Factory for MemoRecords with sequential ids and increasing created_at."""
    counter = itertools.count(1)

    def _make(content: str = "memo content", **overrides) -> MemoRecord:
        memo_id = overrides.pop("id", None) or next(counter)
        fields = {
            "id": memo_id,
            "owner_id": "owner-1",
            "content": content,
            "author_role": "user",
            "importance": 1.0,
            "created_at": BASE_TIME + timedelta(minutes=memo_id),
            "updated_at": BASE_TIME + timedelta(minutes=memo_id),
        }
        fields.update(overrides)
        return MemoRecord(**fields)

    return _make
