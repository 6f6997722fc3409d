"""
Diagnostics for errors raised by the vector store.

Turns PostgreSQL/pgvector error messages into DatabaseError details an
LLM client can act on, most importantly for vector dimension mismatches.
"""

import re
from typing import Any

import numpy as np

from pgvector_mcp.core.exceptions import DatabaseError, database_error

EMBEDDING_MODELS_GUIDE: dict[int, dict[str, str]] = {
    256: {"model": "nomic-embed-text-v1 (truncated)", "provider": "Nomic AI"},
    384: {"model": "all-MiniLM-L6-v2", "provider": "Sentence Transformers"},
    768: {"model": "nomic-embed-text / all-mpnet-base-v2", "provider": "Ollama / Sentence Transformers"},
    1024: {"model": "mxbai-embed-large / embed-english-v3.0", "provider": "Ollama / Cohere"},
    1536: {"model": "text-embedding-3-small / text-embedding-ada-002", "provider": "OpenAI"},
    3072: {"model": "text-embedding-3-large", "provider": "OpenAI"},
    4096: {"model": "qwen3-embedding-8b", "provider": "Qwen"},
}

_DIMENSION_PATTERNS = (
    re.compile(r"expected\s+(\d+)\s+dimensions?,\s+(?:not|got)\s+(\d+)", re.IGNORECASE),
    re.compile(r"different vector dimensions\s+(\d+)\s+and\s+(\d+)", re.IGNORECASE),
)

_HINTS = (
    ("extension \"vector\" does not exist", "Install pgvector with pgvector_check_extension(auto_install=true)"),
    ("dimension", "The vector size does not match the column; use the embedding model the column was created for"),
    ("does not exist", "Check the table and column names, or create them with pgvector_create_column"),
    ("invalid input syntax for type vector", "Vectors must be lists of numbers, e.g. [0.1, 0.2, 0.3]"),
)


def parse_dimension_mismatch(message: str) -> tuple[int | None, int | None]:
    """Extract ``(expected, actual)`` dimensions from a pgvector error message."""
    for pattern in _DIMENSION_PATTERNS:
        match = pattern.search(message)
        if match:
            return int(match.group(1)), int(match.group(2))
    return None, None


def describe_store_error(
    error: Exception, operation: str, table: str | None = None
) -> DatabaseError:
    """Wrap a store error raised by an administration tool."""
    message = str(error)
    wrapped = database_error(f"{operation} failed: {message}", operation, table)
    details = wrapped.details
    details["store_error"] = type(error).__name__

    lowered = message.lower()
    for needle, hint in _HINTS:
        if needle in lowered:
            details["hint"] = hint
            break

    expected, actual = parse_dimension_mismatch(message)
    if expected is not None:
        details["expected_dimensions"] = expected
        details["actual_dimensions"] = actual
        for key, dims in (("expected_model", expected), ("actual_model", actual)):
            model = describe_dimensions(dims)
            if model:
                details[key] = model

    return wrapped


def describe_dimensions(dimensions: int | None) -> str | None:
    """Common embedding model producing vectors of this size, if known."""
    guide = EMBEDDING_MODELS_GUIDE.get(dimensions) if dimensions else None
    if not guide:
        return None
    return f"{guide['model']} ({guide['provider']})"


def validate_vectors(
    vectors: list[list[float]], expected_dimensions: int | None = None
) -> dict[str, Any]:
    """
    Check vectors before they are written to a column.

    Reports empty vectors, non-finite values, mixed sizes and a size
    different from ``expected_dimensions`` (the column's declared size).
    The check never raises on bad vectors; ``compatible`` is False instead.
    """
    issues: list[str] = []
    suggestions: list[str] = []
    sizes: set[int] = set()
    empty = 0
    non_finite = 0

    for index, vector in enumerate(vectors, start=1):
        if not vector:
            empty += 1
            issues.append(f"Vector #{index} is empty")
            continue
        sizes.add(len(vector))
        if not np.isfinite(np.asarray(vector, dtype=float)).all():
            non_finite += 1

    if empty:
        suggestions.append("Remove empty vectors or generate their embeddings")
    if len(sizes) > 1:
        issues.append(
            f"Inconsistent dimensions: {', '.join(str(s) for s in sorted(sizes))}"
        )
        suggestions.append("Every vector must have the same number of dimensions")
    if non_finite:
        issues.append(f"NaN or infinite values in {non_finite} vector(s)")
        suggestions.append("Replace NaN and infinite values before inserting")

    if expected_dimensions is not None:
        if not sizes:
            issues.append("Cannot determine dimensions: every vector is empty")
        else:
            mismatched = sorted(s for s in sizes if s != expected_dimensions)
            if mismatched:
                issues.append(
                    f"Dimensions {', '.join(str(s) for s in mismatched)} do not match "
                    f"the column ({expected_dimensions})"
                )
                model = describe_dimensions(expected_dimensions)
                suggestions.append(
                    f"Use {expected_dimensions}-dimensional vectors"
                    + (f", e.g. from {model}" if model else "")
                )

    return {
        "total": len(vectors),
        "dimensions": sorted(sizes),
        "expected_dimensions": expected_dimensions,
        "compatible": bool(vectors) and not issues,
        "issues": issues,
        "suggestions": suggestions,
    }
