"""
Services package for the pgvector MCP server.

Contains external service integrations:
- embeddings: Embedding generation (OpenAI-compatible or Ollama) with cache
"""

from .embeddings import (
    EmbeddingCache,
    EmbeddingConfig,
    EmbeddingProvider,
    EmbeddingResult,
    EmbeddingService,
    NORMALIZATION_METHODS,
    create_embedding_service,
    normalize_vector,
    random_vector,
)

__all__ = [
    "EmbeddingCache",
    "EmbeddingConfig",
    "EmbeddingProvider",
    "EmbeddingResult",
    "EmbeddingService",
    "NORMALIZATION_METHODS",
    "create_embedding_service",
    "normalize_vector",
    "random_vector",
]
