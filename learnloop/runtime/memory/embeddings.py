"""
Embedding Provider - OpenAI-compatible embeddings with deterministic fallback

WHAT: Turns text into fixed-length vectors via an HTTP embeddings endpoint
WHERE: learnloop/runtime/memory/embeddings.py - vectorization layer
WHO: MemoryManager embedding new records and retrieval queries
TIME: One HTTP round trip per call; fallback is O(len(text) + D)

Targets any OpenAI-compatible ``/v1/embeddings`` endpoint (LM Studio, Ollama's
OpenAI shim, vLLM...). ``embed`` never raises: on any failure it derives a
pseudo-embedding from a hash of the text so that every record always has a
vector of the configured dimensionality.

Notes:
- No caching here; the memory manager owns the vector cache
- A vector whose length differs from ``dimensions`` is treated as malformed
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import Any, List, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:1234/v1"
DEFAULT_EMBEDDING_MODEL = "text-embedding-nomic-embed-text-v1.5"
DEFAULT_DIMENSIONS = 768


class EmbeddingResponseError(ValueError):
    """Raised internally when the endpoint answers with an unusable payload."""


def normalize_base_url(base_url: str) -> str:
    """Return ``base_url`` without a trailing slash, always ending in ``/v1``."""
    trimmed = base_url.rstrip("/")
    if trimmed.endswith("/v1"):
        return trimmed
    return f"{trimmed}/v1"


def _text_hash(text: str) -> int:
    # 32-bit signed rolling hash (h * 31 + code) over UTF-16 code units
    h = 0
    units = text.encode("utf-16-le")
    for i in range(0, len(units), 2):
        code = units[i] | (units[i + 1] << 8)
        h = ((h << 5) - h + code) & 0xFFFFFFFF
    return h - 0x100000000 if h >= 0x80000000 else h


def fallback_embedding(text: str, dimensions: int = DEFAULT_DIMENSIONS) -> List[float]:
    """Deterministic pseudo-embedding with every component in [0, 1]."""
    h = _text_hash(text)
    return [math.sin(h * (i + 1)) * 0.5 + 0.5 for i in range(dimensions)]


@dataclass(slots=True)
class EmbeddingConfig:
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_EMBEDDING_MODEL
    api_key: Optional[str] = None
    dimensions: int = DEFAULT_DIMENSIONS
    timeout_s: float = 30.0

    @staticmethod
    def from_env() -> "EmbeddingConfig":
        return EmbeddingConfig(
            base_url=os.environ.get("LEARNLOOP_BASE_URL", DEFAULT_BASE_URL),
            model=os.environ.get("LEARNLOOP_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            api_key=os.environ.get("LEARNLOOP_API_KEY"),
            dimensions=int(os.environ.get("LEARNLOOP_EMBEDDING_DIMENSIONS", DEFAULT_DIMENSIONS)),
        )


class EmbeddingProvider:
    """Async client for an OpenAI-compatible embeddings endpoint."""

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or EmbeddingConfig()
        self._client = client
        self._owns_client = client is None

    @property
    def dimensions(self) -> int:
        return self.config.dimensions

    @property
    def endpoint(self) -> str:
        return f"{normalize_base_url(self.config.base_url)}/embeddings"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_s)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def embed(self, text: str) -> List[float]:
        """Embed ``text``; falls back to :func:`fallback_embedding` on any failure."""
        try:
            response = await self._get_client().post(
                self.endpoint,
                json={
                    "model": self.config.model,
                    "input": text,
                    "encoding_format": "float",
                },
                headers={"Authorization": f"Bearer {self.config.api_key or 'not-needed'}"},
            )
            response.raise_for_status()
            return self._extract_vector(response.json())
        except Exception as e:
            logger.warning(f"Embedding request failed, using fallback vector: {type(e).__name__}: {e}")
            return fallback_embedding(text, self.config.dimensions)

    def _extract_vector(self, payload: Any) -> List[float]:
        vector: Any = None
        if isinstance(payload, dict):
            data = payload.get("data")
            if isinstance(data, list) and data and isinstance(data[0], dict):
                vector = data[0].get("embedding")
            elif "embedding" in payload:
                vector = payload["embedding"]

        if not isinstance(vector, list) or not vector:
            raise EmbeddingResponseError("Unexpected embedding response format")
        if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in vector):
            raise EmbeddingResponseError("Embedding contains non-numeric values")
        if len(vector) != self.config.dimensions:
            raise EmbeddingResponseError(
                f"Embedding has {len(vector)} dimensions, expected {self.config.dimensions}"
            )
        return [float(v) for v in vector]


__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_DIMENSIONS",
    "EmbeddingConfig",
    "EmbeddingProvider",
    "fallback_embedding",
    "normalize_base_url",
]
