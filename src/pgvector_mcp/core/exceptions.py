"""
Custom exceptions for the pgvector MCP server.

This module defines the exceptions raised by the search core, the
embedding generator and the vector store tools. None of them are retried
automatically; every failure surfaces to the immediate caller.
"""

from typing import Any


class PgVectorMCPError(Exception):
    """Base exception for all pgvector MCP server errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class ValidationError(PgVectorMCPError):
    """Raised when input validation fails."""


class ConfigurationError(PgVectorMCPError):
    """Raised when configuration is invalid or missing."""


class EmbeddingError(PgVectorMCPError):
    """Raised when embedding generation fails."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        model: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.provider = provider
        self.model = model
        if provider:
            self.details["provider"] = provider
        if model:
            self.details["model"] = model


class DatabaseError(PgVectorMCPError):
    """Raised when vector store administration fails."""

    def __init__(self, message: str, operation: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        if operation:
            self.details["operation"] = operation


class SearchError(PgVectorMCPError):
    """Raised when a search request cannot be served."""

    def __init__(
        self,
        message: str,
        query: str | None = None,
        search_type: str | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.query = query
        self.search_type = search_type
        if query:
            self.details["query"] = query
        if search_type:
            self.details["search_type"] = search_type


# Convenience functions for creating specific error types


def validation_error(
    message: str, field: str | None = None, value: Any | None = None
) -> ValidationError:
    """Create a validation error with field information."""
    details = {}
    if field:
        details["field"] = field
    if value is not None:
        details["value"] = str(value)
    return ValidationError(message, details=details)


def embedding_error(
    message: str, provider: str, model: str, text_length: int | None = None
) -> EmbeddingError:
    """Create an embedding error with provider information."""
    details = {}
    if text_length:
        details["text_length"] = text_length
    return EmbeddingError(message, provider=provider, model=model, details=details)


def database_error(
    message: str, operation: str, table: str | None = None
) -> DatabaseError:
    """Create a database error with operation information."""
    details = {}
    if table:
        details["table"] = table
    return DatabaseError(message, operation=operation, details=details)
