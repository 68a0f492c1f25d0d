"""Embedding provider abstractions, HTTP client and deterministic baseline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hybrid_qa.config import ProviderConfig
from hybrid_qa.errors import ProviderError, TransientProviderError

logger = structlog.get_logger(__name__)

_MAX_INPUT_CHARS = 200_000


class EmbeddingProvider(ABC):
    """Turns query text into a dense vector."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed one text. Raises `ProviderError` on failure."""


class HttpEmbeddingProvider(EmbeddingProvider):
    """Client for OpenAI/Mistral-compatible `/embeddings` endpoints.

    Retries with exponential backoff only on transient failures: timeouts,
    transport errors, HTTP 429 and 5xx. Authentication and validation errors
    (other 4xx) and malformed payloads fail immediately.
    """

    def __init__(
        self,
        config: ProviderConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or ProviderConfig()
        self._client = client or httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.request_timeout_ms / 1000.0),
        )

    async def embed(self, text: str) -> list[float]:
        if not self.config.api_key:
            raise ProviderError("embedding provider api key is not configured")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(
                multiplier=self.config.backoff_min_ms / 1000.0,
                min=self.config.backoff_min_ms / 1000.0,
                max=self.config.backoff_max_ms / 1000.0,
            ),
            retry=retry_if_exception_type(TransientProviderError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._request(text)
        raise ProviderError("embedding retries exhausted")  # pragma: no cover

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, text: str) -> list[float]:
        payload = {"model": self.config.model, "input": (text or "")[:_MAX_INPUT_CHARS]}
        headers = {"Authorization": f"Bearer {self.config.api_key}"}
        try:
            response = await self._client.post("/embeddings", json=payload, headers=headers)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            logger.warning("embedding request failed", error=str(exc))
            raise TransientProviderError(str(exc)) from exc

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning("embedding provider unavailable", status=response.status_code)
            raise TransientProviderError(f"HTTP {response.status_code}")
        if response.status_code >= 400:
            logger.error(
                "embedding request rejected",
                status=response.status_code,
                response=response.text[:200],
            )
            raise ProviderError(f"HTTP {response.status_code}")

        return _parse_embedding(response.json())


class HashingEmbeddingProvider(EmbeddingProvider):
    """Deterministic sparse-like embedding without external model calls.

    Used for local runs and tests. Documents indexed with the same instance are
    directly comparable with its query vectors.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text)

    def embed_sync(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


def _parse_embedding(body: Any) -> list[float]:
    # { "data": [ { "embedding": [...] } ] }
    try:
        vector = body["data"][0]["embedding"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ProviderError("malformed embedding response") from exc
    if not isinstance(vector, list) or not vector:
        raise ProviderError("empty embedding in response")
    return [float(value) for value in vector]
