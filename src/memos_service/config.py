"""
Configuration for the Memos service.

Each concern gets its own ``BaseSettings`` class with a dedicated environment
prefix, so a single value can be overridden without touching the others::

    MEMOS_SCORING_SEMANTIC_THRESHOLD=0.75
    MEMOS_CACHE_BACKEND=redis
    MEMOS_QDRANT_URL=http://localhost:6333

The aggregate ``settings`` object is created once at import time.
"""

import logging
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSIONS = 1536


class ScoringSettings(BaseSettings):
    """Weights and thresholds for the hybrid relevance score."""

    model_config = SettingsConfigDict(env_prefix="MEMOS_SCORING_", extra="ignore")

    keyword_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    tag_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    semantic_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    importance_weight: float = Field(default=0.1, ge=0.0, le=1.0)

    # Raw cosine similarity must exceed this before the semantic term counts
    semantic_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    # Candidates scoring below this are dropped
    min_relevance: float = Field(default=0.15, ge=0.0, le=1.0)

    popularity_bonus: float = Field(default=0.05, ge=0.0, le=1.0)
    popularity_cap: int = Field(default=100, ge=1)


class SearchSettings(BaseSettings):
    """Search orchestration limits and dependency timeouts."""

    model_config = SettingsConfigDict(env_prefix="MEMOS_SEARCH_", extra="ignore")

    default_limit: int = Field(default=10, ge=1)
    max_limit: int = Field(default=100, ge=1)
    min_query_length: int = Field(default=2, ge=1)
    max_query_length: int = Field(default=500, ge=1)
    candidate_limit: int = Field(default=1000, ge=1)
    embedding_timeout_seconds: float = Field(default=10.0, gt=0.0)
    store_timeout_seconds: float = Field(default=30.0, gt=0.0)
    semantic_pushdown: bool = False

    @model_validator(mode="after")
    def check_bounds(self) -> Self:
        if self.min_query_length > self.max_query_length:
            raise ValueError("min_query_length must not exceed max_query_length")
        if self.default_limit > self.max_limit:
            raise ValueError("default_limit must not exceed max_limit")
        return self


class CacheSettings(BaseSettings):
    """Search result cache."""

    model_config = SettingsConfigDict(env_prefix="MEMOS_CACHE_", extra="ignore")

    enabled: bool = True
    backend: Literal["memory", "redis"] = "memory"
    ttl_seconds: int = Field(default=300, ge=1)
    max_entries: int = Field(default=100, ge=1)
    sweep_interval_seconds: float = Field(default=60.0, gt=0.0)
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "memos:cache:"


class EmbeddingSettings(BaseSettings):
    """Embedding provider (Gemini embedContent REST API)."""

    model_config = SettingsConfigDict(env_prefix="MEMOS_EMBEDDING_", extra="ignore")

    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    model: str = "gemini-embedding-001"
    api_key: SecretStr | None = None
    dimensions: int = Field(default=EMBEDDING_DIMENSIONS, ge=1)
    timeout_seconds: float = Field(default=10.0, gt=0.0)
    max_retries: int = Field(default=3, ge=1)


class QdrantSettings(BaseSettings):
    """Record store location. Server mode (url) or embedded mode (storage_path)."""

    model_config = SettingsConfigDict(env_prefix="MEMOS_QDRANT_", extra="ignore")

    url: str | None = None
    storage_path: str | None = None
    collection_name: str = "memos"

    @model_validator(mode="after")
    def check_mode(self) -> Self:
        if self.url and self.storage_path:
            raise ValueError("Cannot specify both url and storage_path. Choose server OR embedded mode.")
        return self

    @property
    def location(self) -> str:
        """Where the store lives, ``:memory:`` when nothing is configured."""
        return self.url or self.storage_path or ":memory:"


class BackfillSettings(BaseSettings):
    """Background regeneration of missing embeddings."""

    model_config = SettingsConfigDict(env_prefix="MEMOS_BACKFILL_", extra="ignore")

    enabled: bool = True
    interval_seconds: float = Field(default=10.0, gt=0.0)
    batch_size: int = Field(default=10, ge=1, le=500)


class ServerSettings(BaseSettings):
    """HTTP and MCP entry points."""

    model_config = SettingsConfigDict(env_prefix="MEMOS_", extra="ignore")

    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    log_level: str = "INFO"
    mcp_transport: Literal["stdio", "http"] = "stdio"
    mcp_port: int = Field(default=8001, ge=1, le=65535)
    # Owner that MCP tool calls act on behalf of
    owner_id: str | None = None


class Settings(BaseSettings):
    """Aggregate of all settings groups."""

    model_config = SettingsConfigDict(extra="ignore")

    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)
    backfill: BackfillSettings = Field(default_factory=BackfillSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


settings = Settings()
