"""Embedding providers — turn text into fixed-length vectors.

The provider is a black box with latency and rate limits. Every call is
bounded by a timeout, concurrent calls are capped by a semaphore, and
transient failures (timeouts, dropped connections, 429/5xx) are retried
with exponential backoff before surfacing as EmbeddingProviderError.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from types import TracebackType

import httpx

from artcade.exceptions import (
    EmbeddingConnectionError,
    EmbeddingProviderError,
    EmbeddingTimeoutError,
)

logger = logging.getLogger(__name__)

_RATE_LIMITED = 429


class BaseEmbeddingProvider(ABC):
    dimension: int

    @abstractmethod
    async def embed(self, text: str) -> list[float]: ...


class HttpEmbeddingProvider(BaseEmbeddingProvider):
    """Client for an OpenAI-compatible ``POST {base_url}/embeddings`` endpoint.

    Keeps one ``httpx.AsyncClient`` open for connection reuse. Usable as
    an async context manager or with explicit ``connect()``/``close()``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        model: str = "text-embedding-3-small",
        dimension: int = 1536,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        retry_base_delay: float = 0.5,
        max_concurrency: int = 4,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self.dimension = dimension
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def embed_url(self) -> str:
        return f"{self._base_url}/embeddings"

    async def connect(self) -> None:
        if self._client is not None:
            return
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            headers=headers,
            transport=self._transport,
        )
        logger.debug("Embedding provider connected to %s", self._base_url)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpEmbeddingProvider:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def embed(self, text: str) -> list[float]:
        """Embed one text. Retries transient failures, never 4xx (except 429)."""
        if not text or not text.strip():
            raise EmbeddingProviderError("Text cannot be empty", retryable=False)

        await self.connect()
        last_error: EmbeddingProviderError | None = None

        for attempt in range(self._max_retries + 1):
            try:
                async with self._semaphore:
                    return await asyncio.wait_for(
                        self._request(text), timeout=self._timeout
                    )
            except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
                last_error = EmbeddingTimeoutError(
                    f"Embedding timed out after {self._timeout}s: {exc}"
                )
            except httpx.ConnectError as exc:
                last_error = EmbeddingConnectionError(
                    f"Connection to {self._base_url} failed: {exc}"
                )
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if 400 <= status < 500 and status != _RATE_LIMITED:
                    raise EmbeddingProviderError(
                        f"Embedding request rejected: {status} - {exc.response.text}",
                        retryable=False,
                    ) from exc
                last_error = EmbeddingProviderError(f"Embedding server error: {status}")

            logger.warning(
                "Embedding attempt %d/%d failed: %s",
                attempt + 1, self._max_retries + 1, last_error,
            )
            if attempt < self._max_retries:
                await asyncio.sleep(self._retry_base_delay * (2 ** attempt))

        assert last_error is not None
        raise last_error

    async def _request(self, text: str) -> list[float]:
        assert self._client is not None
        response = await self._client.post(
            self.embed_url,
            json={"model": self._model, "input": text, "encoding_format": "float"},
        )
        response.raise_for_status()
        data = response.json()
        try:
            vector = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as exc:
            raise EmbeddingProviderError(
                "Malformed embedding response", retryable=False
            ) from exc
        if len(vector) != self.dimension:
            raise EmbeddingProviderError(
                f"Expected {self.dimension} dimensions, got {len(vector)}",
                retryable=False,
            )
        return [float(v) for v in vector]
