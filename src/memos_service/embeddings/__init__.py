"""Embedding providers."""

import logging

from ..config import EmbeddingSettings
from .base import EmbeddingProvider
from .gemini import GeminiEmbeddingProvider

logger = logging.getLogger(__name__)


def create_embedding_provider(config: EmbeddingSettings | None = None) -> EmbeddingProvider:
    """Build the configured embedding provider."""
    if config is None:
        from ..config import settings

        config = settings.embedding

    if config.api_key is None:
        logger.warning("No embedding API key configured; searches will fall back to keyword scoring")
    return GeminiEmbeddingProvider.from_settings(config)


__all__ = ["EmbeddingProvider", "GeminiEmbeddingProvider", "create_embedding_provider"]
