# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Abstract record store interface for the Memos service.

Every operation that touches a single memo is scoped by ``owner_id``; a record
belonging to another owner is indistinguishable from a missing one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from ..models.memo import MemoRecord
from ..utils.filters import Predicate


class MemoStore(ABC):
    """Abstract base class for memo record stores."""

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections and create collections/indexes if needed."""

    async def close(self) -> None:
        """Release resources. Default is a no-op."""
        return None

    @property
    def supports_vector_search(self) -> bool:
        """Whether ``vector_similarities`` is implemented natively."""
        return False

    @abstractmethod
    async def create(self, owner_id: str, fields: dict[str, Any], embedding: list[float] | None = None) -> MemoRecord:
        """
        Persist a new memo and assign it the next id.

        Args:
            owner_id: Owning user
            fields: Validated memo fields (content, summary, tags, ...)
            embedding: Vector for summary + content, or None

        Returns:
            The stored record
        """

    @abstractmethod
    async def get(self, owner_id: str, memo_id: int) -> MemoRecord | None:
        """Fetch one memo, or None if it does not exist for this owner."""

    @abstractmethod
    async def list(
        self, owner_id: str, session_id: str | None = None, limit: int = 50, offset: int = 0
    ) -> list[MemoRecord]:
        """Page through an owner's memos, most recently updated first."""

    @abstractmethod
    async def update(
        self,
        owner_id: str,
        memo_id: int,
        changes: dict[str, Any],
        embedding: list[float] | None = None,
        clear_embedding: bool = False,
    ) -> MemoRecord | None:
        """
        Apply field changes and refresh ``updated_at``.

        ``embedding`` replaces the stored vector; ``clear_embedding`` removes it.

        Returns:
            The updated record, or None if not found
        """

    @abstractmethod
    async def delete(self, owner_id: str, memo_id: int) -> bool:
        """Delete a memo. Returns False if it did not exist."""

    @abstractmethod
    async def increment_access_count(self, owner_id: str, memo_id: int) -> MemoRecord | None:
        """Bump ``access_count`` by one and return the updated record."""

    @abstractmethod
    async def query_records(self, owner_id: str, predicates: list[Predicate], limit: int | None = None) -> list[MemoRecord]:
        """
        Return every record matching all predicates, in ascending id order.

        Records carry their embeddings so callers can score similarity locally.
        """

    async def vector_similarities(
        self,
        owner_id: str,
        embedding: list[float],
        predicates: list[Predicate],
        min_similarity: float,
        limit: int,
    ) -> dict[int, float]:
        """
        Cosine similarity for records above ``min_similarity``, keyed by memo id.

        Only available when ``supports_vector_search`` is True.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support vector search")

    @abstractmethod
    async def list_missing_embeddings(self, limit: int) -> list[MemoRecord]:
        """Records of any owner that have no embedding, oldest first."""

    @abstractmethod
    async def set_embedding(self, memo_id: int, embedding: list[float], source_text: str | None = None) -> bool:
        """
        Attach an embedding without touching ``updated_at``.

        With ``source_text`` the write only happens while the record still has
        no embedding and its embedding text equals ``source_text``.
        """

    @abstractmethod
    async def get_stats(self) -> dict[str, Any]:
        """Backend statistics for the health endpoint."""
