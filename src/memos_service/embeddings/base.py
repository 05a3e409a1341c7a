"""Embedding provider interface."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Turns text into a fixed-length vector.

    Implementations raise ``EmbeddingError`` on any failure; callers decide
    whether that is fatal.
    """

    dimensions: int

    async def embed(self, text: str) -> list[float]: ...

    async def close(self) -> None: ...
