"""
Database package for the pgvector MCP server.

Raw asyncpg queries for retrieval and vector store administration, plus
diagnostics for store errors and vectors about to be written.
"""

from .queries import SearchQueries, VectorQueries, quote_identifier
from .diagnostics import (
    EMBEDDING_MODELS_GUIDE,
    describe_dimensions,
    describe_store_error,
    parse_dimension_mismatch,
    validate_vectors,
)

__all__ = [
    "EMBEDDING_MODELS_GUIDE",
    "SearchQueries",
    "VectorQueries",
    "describe_dimensions",
    "describe_store_error",
    "parse_dimension_mismatch",
    "quote_identifier",
    "validate_vectors",
]
