"""Unit tests for store error diagnostics."""

import asyncpg
import pytest

from pgvector_mcp.core.exceptions import DatabaseError
from pgvector_mcp.db.diagnostics import (
    EMBEDDING_MODELS_GUIDE,
    describe_dimensions,
    describe_store_error,
    parse_dimension_mismatch,
    validate_vectors,
)


class TestParseDimensionMismatch:
    """Test dimension extraction from pgvector messages."""

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("expected 1536 dimensions, not 768", (1536, 768)),
            ("Expected 3 dimensions, got 2", (3, 2)),
            ("different vector dimensions 384 and 1024", (384, 1024)),
            ("relation \"documents\" does not exist", (None, None)),
        ],
    )
    def test_parse(self, message: str, expected: tuple) -> None:
        assert parse_dimension_mismatch(message) == expected


class TestDescribeStoreError:
    """Test DatabaseError construction for administration tools."""

    def test_dimension_mismatch(self) -> None:
        error = asyncpg.PostgresError("expected 1536 dimensions, not 768")

        wrapped = describe_store_error(error, "insert_vector", "documents")

        assert isinstance(wrapped, DatabaseError)
        assert wrapped.operation == "insert_vector"
        assert wrapped.message.startswith("insert_vector failed:")
        assert wrapped.details["table"] == "documents"
        assert wrapped.details["operation"] == "insert_vector"
        assert wrapped.details["expected_dimensions"] == 1536
        assert wrapped.details["actual_dimensions"] == 768
        assert "OpenAI" in wrapped.details["expected_model"]
        assert "actual_model" in wrapped.details
        assert "embedding model" in wrapped.details["hint"]

    def test_missing_relation(self) -> None:
        error = asyncpg.PostgresError('relation "documents" does not exist')

        wrapped = describe_store_error(error, "vector_stats")

        assert "pgvector_create_column" in wrapped.details["hint"]
        assert "table" not in wrapped.details
        assert "expected_dimensions" not in wrapped.details

    def test_unknown_dimensions_have_no_model(self) -> None:
        error = asyncpg.PostgresError("expected 5 dimensions, not 7")

        details = describe_store_error(error, "insert_vector").details

        assert details["expected_dimensions"] == 5
        assert "expected_model" not in details

    def test_serializable(self) -> None:
        wrapped = describe_store_error(ValueError("boom"), "create_index", "documents")

        data = wrapped.to_dict()
        assert data["error_type"] == "DatabaseError"
        assert data["details"]["store_error"] == "ValueError"


def test_models_guide_covers_common_sizes() -> None:
    for dimensions in (384, 768, 1024, 1536, 3072):
        assert dimensions in EMBEDDING_MODELS_GUIDE


class TestValidateVectors:
    """Test the pre-insert vector report."""

    def test_compatible(self) -> None:
        report = validate_vectors([[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]], expected_dimensions=3)

        assert report["compatible"] is True
        assert report["total"] == 2
        assert report["dimensions"] == [3]
        assert report["issues"] == []

    def test_size_differs_from_column(self) -> None:
        report = validate_vectors([[0.1] * 768], expected_dimensions=1536)

        assert report["compatible"] is False
        assert report["issues"] == ["Dimensions 768 do not match the column (1536)"]
        assert "text-embedding-3-small" in report["suggestions"][0]

    def test_mixed_sizes(self) -> None:
        report = validate_vectors([[0.1, 0.2], [0.1, 0.2, 0.3]])

        assert report["compatible"] is False
        assert report["dimensions"] == [2, 3]
        assert "Inconsistent dimensions: 2, 3" in report["issues"]

    def test_non_finite_values(self) -> None:
        report = validate_vectors([[0.1, float("nan")], [float("inf"), 0.2], [0.1, 0.2]])

        assert report["compatible"] is False
        assert report["issues"] == ["NaN or infinite values in 2 vector(s)"]

    def test_empty_vectors(self) -> None:
        report = validate_vectors([[], []], expected_dimensions=3)

        assert report["compatible"] is False
        assert "Vector #2 is empty" in report["issues"]
        assert "Cannot determine dimensions: every vector is empty" in report["issues"]

    def test_no_vectors_is_not_compatible(self) -> None:
        assert validate_vectors([])["compatible"] is False


@pytest.mark.parametrize(
    "dimensions,expected",
    [
        (3072, "text-embedding-3-large (OpenAI)"),
        (5, None),
        (None, None),
    ],
)
def test_describe_dimensions(dimensions, expected) -> None:
    assert describe_dimensions(dimensions) == expected
