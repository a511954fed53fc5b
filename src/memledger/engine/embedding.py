"""Embedding generation.

Providers return whatever length the model produces; ``EmbeddingGenerator``
fits that to the deployment dimension D by zero-padding or truncating.
Truncation keeps every vector comparable; it does not preserve the
model's semantics.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from collections.abc import Sequence
from typing import Protocol
from urllib.error import HTTPError
from urllib.error import URLError
from urllib.request import Request
from urllib.request import urlopen

from memledger.config import EmbeddingConfig
from memledger.errors import EmbeddingFailure

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    """Narrow interface to an external embedding model."""

    async def embed(self, text: str) -> list[float]: ...


class OpenAICompatibleEmbeddingProvider:
    """OpenAI-compatible ``/embeddings`` adapter."""

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

    async def embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self._embed_sync, text)

    def _embed_sync(self, text: str) -> list[float]:
        payload = {"model": self._model, "input": text}
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
            raise EmbeddingFailure(f"provider HTTP {exc.code}: {detail[:200]}") from exc
        except URLError as exc:
            raise EmbeddingFailure(f"provider network error: {exc.reason}") from exc
        except OSError as exc:
            raise EmbeddingFailure(f"provider IO error: {exc}") from exc

        try:
            data = json.loads(raw)
            vector = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise EmbeddingFailure("provider response missing data[0].embedding") from exc
        if not isinstance(vector, list):
            raise EmbeddingFailure("provider embedding must be a list")
        return vector


def build_embedding_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """Create a concrete provider from ``EmbeddingConfig``."""
    provider = config.provider.strip().lower()
    if provider == "openai":
        if not config.api_key:
            raise ValueError("embedding_config.api_key is required when provider='openai'")
        return OpenAICompatibleEmbeddingProvider(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
        )
    raise ValueError(f"Unsupported embedding_config.provider: {config.provider}")


def fit_to_dimension(vector: Sequence[float], dimensions: int) -> list[float]:
    """Zero-pad or truncate *vector* to exactly *dimensions* entries."""
    values = [float(value) for value in vector[:dimensions]]
    if len(values) < dimensions:
        values.extend([0.0] * (dimensions - len(values)))
    return values


class EmbeddingGenerator:
    """Produces fixed-dimension vectors and rejects unusable output."""

    def __init__(self, provider: EmbeddingProvider, *, dimensions: int = 1536) -> None:
        if dimensions < 1:
            raise ValueError("dimensions must be >= 1")
        self._provider = provider
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed(self, text: str) -> list[float]:
        """Embed *text*, raising ``EmbeddingFailure`` rather than defaulting."""
        if not text or not text.strip():
            raise EmbeddingFailure("cannot embed empty text")
        try:
            raw = await self._provider.embed(text)
        except EmbeddingFailure:
            raise
        except Exception as exc:
            raise EmbeddingFailure(f"embedding provider failed: {exc}") from exc

        if not raw:
            raise EmbeddingFailure("embedding provider returned an empty vector")
        try:
            values = [float(value) for value in raw]
        except (TypeError, ValueError) as exc:
            raise EmbeddingFailure("embedding provider returned non-numeric values") from exc
        if any(not math.isfinite(value) for value in values):
            raise EmbeddingFailure("embedding provider returned non-finite values")
        if len(values) != self._dimensions:
            logger.debug(
                "Fitting embedding of length %d to %d dimensions",
                len(values),
                self._dimensions,
            )
        fitted = fit_to_dimension(values, self._dimensions)
        if not any(fitted):
            raise EmbeddingFailure("embedding is all zeros after fitting")
        return fitted
