"""
Embedding Generation Service with a bounded in-process cache.

Supports:
- OpenAI-compatible embedding endpoints (bearer token authentication)
- Ollama local embedding endpoint
- Insertion-order bounded cache keyed by (model, trimmed text)
- Zero vectors for blank input without any remote call

Embedding failures are never papered over: a missing credential, a network
error, a non-2xx response or a malformed body all raise EmbeddingError.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from pgvector_mcp.core.exceptions import EmbeddingError, embedding_error

logger = logging.getLogger(__name__)


class EmbeddingProvider(str, Enum):
    """Supported embedding providers."""

    OPENAI = "openai"
    OLLAMA = "ollama"


DEFAULT_API_URLS = {
    EmbeddingProvider.OPENAI: "https://api.openai.com/v1",
    EmbeddingProvider.OLLAMA: "http://localhost:11434",
}


class EmbeddingConfig(BaseModel):
    """Configuration for embedding generation service."""

    model_config = ConfigDict(frozen=True)

    provider: EmbeddingProvider = EmbeddingProvider.OPENAI
    api_url: str | None = None
    api_key: str | None = None
    model: str = "text-embedding-3-small"
    dimensions: int = Field(default=1536, gt=0)
    timeout: float = Field(default=30.0, gt=0.0)
    cache_size: int = Field(default=1000, ge=1)

    @property
    def base_url(self) -> str:
        return (self.api_url or DEFAULT_API_URLS[self.provider]).rstrip("/")


@dataclass(frozen=True)
class EmbeddingResult:
    """An embedding plus how it was obtained."""

    embedding: list[float]
    model: str
    cached: bool = False
    duration_ms: int = 0


class EmbeddingCache:
    """
    Bounded embedding cache with oldest-insertion eviction.

    Shared by every concurrent search served by the process. Entries are
    never invalidated, only evicted; a lock keeps size accounting sound when
    the cache is touched from several threads.
    """

    def __init__(self, max_size: int = 1000):
        if max_size < 1:
            raise ValueError("Cache max_size must be at least 1")
        self.max_size = max_size
        self._entries: dict[str, tuple[float, ...]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(model: str, text: str) -> str:
        return f"{model}:{text.strip()}"

    def get(self, key: str) -> list[float] | None:
        with self._lock:
            vector = self._entries.get(key)
            if vector is None:
                self.misses += 1
                return None
            self.hits += 1
            return list(vector)

    def put(self, key: str, vector: list[float]) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                logger.debug("Embedding cache full, evicted oldest entry")
            self._entries[key] = tuple(vector)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0
        logger.info("Embedding cache cleared")

    def stats(self) -> dict[str, Any]:
        with self._lock:
            lookups = self.hits + self.misses
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / lookups, 4) if lookups else None,
            }

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class EmbeddingService:
    """
    Text-to-vector generation through a remote embedding endpoint.

    The cache is injected so tests (and multiple services in one process)
    can decide whether they share it.
    """

    def __init__(self, config: EmbeddingConfig, cache: EmbeddingCache | None = None):
        self.config = config
        self.cache = cache if cache is not None else EmbeddingCache(config.cache_size)

        logger.info(
            f"Embedding service initialized: provider={config.provider.value}, "
            f"model={config.model}, dimensions={config.dimensions}, "
            f"cache_size={self.cache.max_size}"
        )

    async def embed(
        self,
        text: str,
        *,
        model: str | None = None,
        use_cache: bool = True,
        dimensions: int | None = None,
    ) -> list[float]:
        """
        Generate an embedding for one text.

        Args:
            text: Text to embed (trimmed before use)
            model: Model identifier (defaults to the configured model)
            use_cache: Read from and write to the embedding cache
            dimensions: Vector size for blank input and for models that
                accept a dimensions parameter

        Returns:
            Embedding vector

        Raises:
            EmbeddingError: If the remote call fails
        """
        result = await self.embed_with_metadata(
            text, model=model, use_cache=use_cache, dimensions=dimensions
        )
        return result.embedding

    async def embed_with_metadata(
        self,
        text: str,
        *,
        model: str | None = None,
        use_cache: bool = True,
        dimensions: int | None = None,
    ) -> EmbeddingResult:
        """Same as :meth:`embed` but reports cache usage and timing."""
        model = model or self.config.model
        start_time = time.time()
        normalized = text.strip()

        if not normalized:
            size = dimensions or self.config.dimensions
            return EmbeddingResult(embedding=[0.0] * size, model=model)

        key = EmbeddingCache.make_key(model, normalized)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"Embedding served from cache: '{normalized[:50]}'")
                return EmbeddingResult(
                    embedding=cached,
                    model=model,
                    cached=True,
                    duration_ms=int((time.time() - start_time) * 1000),
                )

        embedding = await self._request_embedding(normalized, model, dimensions)

        if use_cache:
            self.cache.put(key, embedding)

        duration_ms = int((time.time() - start_time) * 1000)
        logger.debug(
            f"Embedding generated: model={model}, dimensions={len(embedding)}, "
            f"duration_ms={duration_ms}"
        )
        return EmbeddingResult(
            embedding=embedding, model=model, duration_ms=duration_ms
        )

    async def _request_embedding(
        self, text: str, model: str, dimensions: int | None
    ) -> list[float]:
        provider = self.config.provider

        if provider == EmbeddingProvider.OPENAI:
            if not self.config.api_key:
                raise EmbeddingError(
                    "EMBEDDING_API_KEY is not set; cannot call the embedding API",
                    provider=provider.value,
                    model=model,
                )
            url = f"{self.config.base_url}/embeddings"
            payload: dict[str, Any] = {"model": model, "input": text}
            if dimensions:
                payload["dimensions"] = dimensions
            headers = {"Authorization": f"Bearer {self.config.api_key}"}
        else:
            url = f"{self.config.base_url}/api/embeddings"
            payload = {"model": model, "prompt": text}
            headers = {}

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Embedding API error: provider={provider.value}, error={e}")
            raise embedding_error(
                f"Failed to generate embedding: {e}",
                provider.value,
                model,
                text_length=len(text),
            ) from e
        except ValueError as e:
            logger.error(f"Embedding API returned invalid JSON: {e}")
            raise EmbeddingError(
                f"Invalid embedding response: {e}",
                provider=provider.value,
                model=model,
            ) from e

        return self._parse_response(data, model)

    def _parse_response(self, data: Any, model: str) -> list[float]:
        provider = self.config.provider
        try:
            if provider == EmbeddingProvider.OPENAI:
                vector = data["data"][0]["embedding"]
            else:
                vector = data["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error(f"Unexpected embedding response format: {e}")
            raise EmbeddingError(
                f"Invalid embedding response: missing {e}",
                provider=provider.value,
                model=model,
            ) from e

        if not isinstance(vector, list) or not vector:
            raise EmbeddingError(
                "Invalid embedding response: embedding is empty",
                provider=provider.value,
                model=model,
            )
        try:
            return [float(x) for x in vector]
        except (TypeError, ValueError) as e:
            raise EmbeddingError(
                f"Invalid embedding response: non-numeric value ({e})",
                provider=provider.value,
                model=model,
            ) from e

    async def health_check(self) -> bool:
        """
        Check if the embedding endpoint answers.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            await self.embed("health check", use_cache=False)
            return True
        except EmbeddingError as e:
            logger.warning(f"Embedding service health check failed: error={e!s}")
            return False


def random_vector(
    dimensions: int,
    low: float = -1.0,
    high: float = 1.0,
    normalize: bool = True,
    seed: int | None = None,
) -> list[float]:
    """
    Generate a random vector for tests and experiments.

    Never used as a substitute for a real embedding.
    """
    if dimensions < 1:
        raise ValueError("dimensions must be positive")
    if high <= low:
        raise ValueError("high must be greater than low")

    rng = np.random.default_rng(seed)
    vector = rng.uniform(low, high, dimensions)
    if normalize:
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
    return vector.tolist()


NORMALIZATION_METHODS = ("l2", "max", "minmax", "sum")


def normalize_vector(
    vector: list[float], method: str = "l2", decimals: int = 6
) -> list[float]:
    """
    Rescale a vector.

    Methods:
        l2: unit euclidean norm
        max: largest absolute value becomes 1
        minmax: values mapped onto [0, 1]
        sum: absolute values sum to 1

    Raises:
        ValueError: On an unknown method, an empty vector or a zero scale
    """
    if method not in NORMALIZATION_METHODS:
        raise ValueError(
            f"Unknown normalization method '{method}', "
            f"expected one of: {', '.join(NORMALIZATION_METHODS)}"
        )
    if not vector:
        raise ValueError("Cannot normalize an empty vector")

    values = np.asarray(vector, dtype=float)
    if method == "l2":
        scale = np.linalg.norm(values)
    elif method == "max":
        scale = np.abs(values).max()
    elif method == "minmax":
        scale = values.max() - values.min()
        values = values - values.min()
    else:
        scale = np.abs(values).sum()

    if scale == 0:
        raise ValueError(f"Cannot normalize with method '{method}': scale is 0")
    return np.round(values / scale, decimals).tolist()


def create_embedding_service(
    config: EmbeddingConfig | None = None, cache: EmbeddingCache | None = None
) -> EmbeddingService:
    """
    Factory function to create embedding service.

    Args:
        config: Embedding configuration (defaults apply when omitted)
        cache: Shared cache; a fresh one sized from config when omitted

    Returns:
        Configured EmbeddingService instance
    """
    return EmbeddingService(config or EmbeddingConfig(), cache=cache)
