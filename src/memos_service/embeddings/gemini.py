"""
Gemini embedding provider.

Calls the ``models/{model}:embedContent`` REST endpoint with a fixed
``outputDimensionality`` so every vector matches the record store.
Transient failures (network errors, 429 and 5xx responses) are retried with
exponential backoff; everything else surfaces as ``EmbeddingError``.
"""

import logging

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..config import EmbeddingSettings
from ..errors import EmbeddingError

logger = logging.getLogger(__name__)


def is_retryable_error(exception: BaseException) -> bool:
    """Network errors, rate limits and 5xx responses are transient."""
    if isinstance(exception, httpx.TransportError):
        return True
    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        return status == 429 or 500 <= status < 600
    return False


class GeminiEmbeddingProvider:
    """Embedding provider backed by the Gemini embedContent API."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "gemini-embedding-001",
        dimensions: int = 1536,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 10.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.dimensions = dimensions
        self.max_retries = max_retries
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, config: EmbeddingSettings, transport: httpx.AsyncBaseTransport | None = None) -> "GeminiEmbeddingProvider":
        return cls(
            api_key=config.api_key.get_secret_value() if config.api_key else None,
            model=config.model,
            dimensions=config.dimensions,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
            transport=transport,
        )

    async def _request(self, text: str) -> dict:
        response = await self._client.post(
            f"/models/{self.model}:embedContent",
            json={
                "model": f"models/{self.model}",
                "content": {"parts": [{"text": text}]},
                "outputDimensionality": self.dimensions,
            },
            headers={"x-goog-api-key": self.api_key or ""},
        )
        response.raise_for_status()
        return response.json()

    async def embed(self, text: str) -> list[float]:
        """
        Embed one text.

        Raises:
            EmbeddingError: missing API key, empty text, HTTP failure after
                retries, malformed response or dimension mismatch
        """
        if not self.api_key:
            raise EmbeddingError("Gemini API key is not configured")
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(is_retryable_error),
                stop=stop_after_attempt(self.max_retries),
                wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
                reraise=True,
            ):
                with attempt:
                    data = await self._request(text)
        except httpx.TimeoutException as e:
            raise EmbeddingError(f"Gemini embedding timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise EmbeddingError(f"Gemini embedding HTTP error {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Gemini embedding request failed: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise EmbeddingError(f"Gemini embedding returned invalid JSON: {e}") from e

        values = (data.get("embedding") or {}).get("values")
        if not values:
            raise EmbeddingError("Gemini embedding response contained no values")
        if len(values) != self.dimensions:
            raise EmbeddingError(f"Embedding dimension mismatch: expected {self.dimensions}, got {len(values)}")
        return [float(v) for v in values]

    async def close(self) -> None:
        await self._client.aclose()
