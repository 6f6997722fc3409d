"""Core search logic: mode routing, hybrid fusion and exceptions."""

from .exceptions import (
    ConfigurationError,
    DatabaseError,
    EmbeddingError,
    PgVectorMCPError,
    SearchError,
    ValidationError,
)
from .router import QueryRouter, RoutingRule, analyze_query, decide_mode

__all__ = [
    "ConfigurationError",
    "DatabaseError",
    "EmbeddingError",
    "PgVectorMCPError",
    "QueryRouter",
    "RoutingRule",
    "SearchError",
    "ValidationError",
    "analyze_query",
    "decide_mode",
]
