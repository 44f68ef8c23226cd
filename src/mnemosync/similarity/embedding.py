"""Embedding providers and the retrying, batching ``Embedder`` wrapper."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from time import perf_counter
from typing import Protocol
from typing import runtime_checkable
from urllib.error import HTTPError
from urllib.error import URLError
from urllib.request import Request
from urllib.request import urlopen

from mnemosync.config import EmbeddingConfig
from mnemosync.errors import ExternalServiceError
from mnemosync.observability import record_latency
from mnemosync.similarity.kernel import fallback_embedding

logger = logging.getLogger(__name__)


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Protocol for embedding backends. Returns one vector per input text."""

    async def embed(self, texts: list[str]) -> list[list[float]]: ...


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class HashEmbeddingProvider:
    """Offline provider producing deterministic content-seeded vectors."""

    def __init__(self, dimensions: int = 1536) -> None:
        self._dimensions = dimensions

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [fallback_embedding(text, self._dimensions) for text in texts]


class OpenAIEmbeddingProvider:
    """OpenAI-compatible ``/embeddings`` client."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 30.0,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return await asyncio.to_thread(self._embed_sync, texts)

    def _embed_sync(self, texts: list[str]) -> list[list[float]]:
        payload = {"model": self._model, "input": texts}
        request = Request(
            url=f"{self._base_url}/embeddings",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=self._timeout_seconds) as response:
                raw = response.read().decode("utf-8")
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise ExternalServiceError(
                f"provider HTTP {exc.code}: {detail[:200]}"
            ) from exc
        except URLError as exc:
            raise ExternalServiceError(f"provider network error: {exc.reason}") from exc
        except OSError as exc:
            raise ExternalServiceError(f"provider IO error: {exc}") from exc

        try:
            data = json.loads(raw)
            items = sorted(data["data"], key=lambda item: item["index"])
            return [list(map(float, item["embedding"])) for item in items]
        except (KeyError, TypeError, ValueError) as exc:
            raise ExternalServiceError(
                "provider response missing data[].embedding"
            ) from exc


def build_embedding_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """Create a concrete provider from ``EmbeddingConfig``."""
    provider = config.provider.strip().lower()
    if provider == "openai":
        if not config.api_key:
            raise ValueError(
                "embedding_config.api_key is required when provider='openai'"
            )
        return OpenAIEmbeddingProvider(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
        )
    if provider == "offline":
        return HashEmbeddingProvider(config.dimensions)
    raise ValueError(
        f"Unsupported embedding_config.provider '{config.provider}'. "
        "Supported providers: openai, offline."
    )


# ---------------------------------------------------------------------------
# Embedder
# ---------------------------------------------------------------------------


class Embedder:
    """Wraps a provider with bounded retries, pacing and a fallback.

    ``embed`` and ``embed_batch`` never raise for provider failures: after
    ``max_retries`` attempts the deterministic fallback vector is used.
    """

    def __init__(
        self,
        provider: EmbeddingProvider | None = None,
        config: EmbeddingConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._config = config or EmbeddingConfig()
        self._sleep = sleep

    @property
    def dimensions(self) -> int:
        return self._config.dimensions

    def fallback(self, text: str) -> list[float]:
        return fallback_embedding(text, self._config.dimensions)

    async def embed(self, text: str) -> list[float]:
        vectors = await self._call_provider([text])
        if vectors is None:
            return self.fallback(text)
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in sequential chunks of ``batch_size``.

        Chunks are never issued concurrently; ``inter_chunk_delay_seconds``
        separates consecutive chunks. A failed chunk is re-embedded text by
        text.
        """
        results: list[list[float]] = []
        size = max(1, self._config.batch_size)
        for index, start in enumerate(range(0, len(texts), size)):
            if index:
                await self._sleep(self._config.inter_chunk_delay_seconds)
            chunk = texts[start : start + size]
            vectors = await self._call_provider(chunk)
            if vectors is None:
                vectors = [await self.embed(text) for text in chunk]
            results.extend(vectors)
        return results

    async def _call_provider(self, texts: list[str]) -> list[list[float]] | None:
        if self._provider is None or not texts:
            return None
        limit = self._config.max_input_chars
        payload = [text[:limit] for text in texts]

        attempts = max(1, self._config.max_retries)
        for attempt in range(1, attempts + 1):
            start = perf_counter()
            ok = False
            try:
                vectors = await asyncio.wait_for(
                    self._provider.embed(payload), self._config.timeout_seconds
                )
                self._check_shape(vectors, len(payload))
                ok = True
                return vectors
            except TimeoutError:
                logger.warning(
                    "Embedding attempt %d/%d timed out after %.1fs",
                    attempt,
                    attempts,
                    self._config.timeout_seconds,
                )
            except Exception as exc:
                logger.warning(
                    "Embedding attempt %d/%d failed: %s", attempt, attempts, exc
                )
            finally:
                record_latency(
                    operation="embedding.provider",
                    duration_ms=(perf_counter() - start) * 1000,
                    ok=ok,
                )
            if attempt < attempts:
                await self._sleep(self._config.retry_backoff_seconds * attempt)
        logger.warning("Embedding provider exhausted retries; using fallback vectors")
        return None

    def _check_shape(self, vectors: list[list[float]], expected: int) -> None:
        if len(vectors) != expected:
            raise ExternalServiceError(
                f"provider returned {len(vectors)} vectors for {expected} inputs"
            )
        for vector in vectors:
            if len(vector) != self._config.dimensions:
                raise ExternalServiceError(
                    f"provider returned {len(vector)}-dim vector, "
                    f"expected {self._config.dimensions}"
                )
