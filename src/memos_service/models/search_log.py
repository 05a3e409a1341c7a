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

"""Search query logging models for analytics."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class SearchLog:
    """Represents a single search operation for analytics tracking."""

    owner_id: str
    query: str
    timestamp: float
    response_time_ms: float
    result_count: int
    sort_by: str = "relevance"
    tags: list[str] | None = None
    cache_hit: bool = False
    embedding_available: bool = True
    candidate_count: int = 0
    filtered_below_threshold: int = 0
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "owner_id": self.owner_id,
            "query": self.query,
            "timestamp": self.timestamp,
            "response_time_ms": self.response_time_ms,
            "result_count": self.result_count,
            "sort_by": self.sort_by,
            "tags": self.tags,
            "cache_hit": self.cache_hit,
            "embedding_available": self.embedding_available,
            "candidate_count": self.candidate_count,
            "filtered_below_threshold": self.filtered_below_threshold,
            "error": self.error,
            "metadata": self.metadata,
        }
