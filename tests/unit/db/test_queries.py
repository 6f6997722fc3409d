"""
Unit tests for the retrieval and vector store queries.

The asyncpg connection is mocked; tests check the generated SQL, the bound
parameters and how rows are turned into records.
"""

from unittest.mock import AsyncMock

import pytest

from pgvector_mcp.db.queries import (
    SearchQueries,
    VectorQueries,
    qualified_table,
    quote_identifier,
    vector_literal,
)
from pgvector_mcp.models.search import DistanceMetric, IndexType


class TestIdentifiers:
    """Test identifier validation and quoting."""

    @pytest.mark.parametrize("name", ["documents", "_private", "Table2", "a" * 63])
    def test_valid_identifiers(self, name: str) -> None:
        assert quote_identifier(name) == f'"{name}"'

    @pytest.mark.parametrize(
        "name",
        [
            "",
            "2tables",
            "docs; DROP TABLE users",
            'docs"',
            "my-table",
            "schema.table",
            None,
            42,
        ],
    )
    def test_invalid_identifiers(self, name) -> None:
        with pytest.raises(ValueError, match="Invalid"):
            quote_identifier(name)

    def test_identifier_too_long(self) -> None:
        with pytest.raises(ValueError, match="maximum length"):
            quote_identifier("a" * 64)

    def test_qualified_table(self) -> None:
        assert qualified_table("documents") == '"documents"'
        assert qualified_table("documents", "public") == '"public"."documents"'

    def test_vector_literal(self) -> None:
        assert vector_literal([0.1, 2, -3.5]) == "[0.1,2,-3.5]"


class TestTextSearch:
    """Test full-text retrieval."""

    @pytest.mark.asyncio
    async def test_text_search_sql_and_records(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetch = AsyncMock(
            return_value=[
                {"id": 1, "content": "AI basics", "embedding": "[1,2]", "text_rank": 0.6},
                {"id": 2, "content": "AI ethics", "embedding": "[3,4]", "text_rank": 0.2},
            ]
        )

        records = await SearchQueries.text_search(mock_conn, "AI", "documents", top_k=5)

        sql, query, limit = mock_conn.fetch.call_args.args
        assert "plainto_tsquery('english', $1)" in sql
        assert "ORDER BY text_rank DESC" in sql
        assert 'FROM "documents" t' in sql
        assert query == "AI"
        assert limit == 5

        assert [r.id for r in records] == [1, 2]
        assert records[0].text_rank == 0.6
        assert records[0].fields == {"content": "AI basics"}
        assert records[0].similarity is None

    @pytest.mark.asyncio
    async def test_text_search_empty(self, mock_conn: AsyncMock) -> None:
        assert await SearchQueries.text_search(mock_conn, "nothing", "documents") == []

    @pytest.mark.asyncio
    async def test_text_search_language_and_columns(self, mock_conn: AsyncMock) -> None:
        await SearchQueries.text_search(
            mock_conn,
            "chiffrement",
            "articles",
            "body",
            language="french",
            schema="content",
        )

        sql = mock_conn.fetch.call_args.args[0]
        assert "to_tsvector('french', COALESCE(t.\"body\", ''))" in sql
        assert 'FROM "content"."articles" t' in sql

    @pytest.mark.asyncio
    @pytest.mark.parametrize("language", ["english'; --", "Eng lish", ""])
    async def test_text_search_rejects_language(
        self, mock_conn: AsyncMock, language: str
    ) -> None:
        with pytest.raises(ValueError, match="language"):
            await SearchQueries.text_search(mock_conn, "AI", "documents", language=language)

        mock_conn.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("top_k", [0, 1001, "10", True])
    async def test_text_search_rejects_top_k(self, mock_conn: AsyncMock, top_k) -> None:
        with pytest.raises(ValueError):
            await SearchQueries.text_search(mock_conn, "AI", "documents", top_k=top_k)


class TestVectorSearch:
    """Test nearest-neighbour retrieval."""

    @pytest.mark.asyncio
    async def test_cosine_reports_similarity(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetch = AsyncMock(
            return_value=[{"id": 3, "content": "c", "embedding": "[..]", "distance": 0.1}]
        )

        records = await SearchQueries.vector_search(mock_conn, [0.1, 0.2], "documents")

        sql, literal, limit = mock_conn.fetch.call_args.args
        assert '(t."embedding" <=> $1::vector)' in sql
        assert 'WHERE t."embedding" IS NOT NULL' in sql
        assert "ANY(" not in sql
        assert literal == "[0.1,0.2]"
        assert limit == 10

        assert records[0].distance == pytest.approx(0.1)
        assert records[0].similarity == pytest.approx(0.9)
        assert "embedding" not in records[0].fields

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "metric,operator",
        [(DistanceMetric.L2, "<->"), (DistanceMetric.INNER_PRODUCT, "<#>")],
    )
    async def test_other_metrics_report_distance_only(
        self, mock_conn: AsyncMock, metric: DistanceMetric, operator: str
    ) -> None:
        mock_conn.fetch = AsyncMock(return_value=[{"id": 1, "distance": 1.5}])

        records = await SearchQueries.vector_search(
            mock_conn, [1.0], "documents", metric=metric
        )

        assert operator in mock_conn.fetch.call_args.args[0]
        assert records[0].distance == 1.5
        assert records[0].similarity is None

    @pytest.mark.asyncio
    async def test_restrict_to_ids(self, mock_conn: AsyncMock) -> None:
        await SearchQueries.vector_search(
            mock_conn, [1.0], "documents", top_k=3, restrict_to_ids=[4, 5]
        )

        args = mock_conn.fetch.call_args.args
        assert 't."id" = ANY($3)' in args[0]
        assert args[2:] == (3, [4, 5])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("embedding", [[], ["a"], [True], "0.1,0.2"])
    async def test_rejects_invalid_embedding(self, mock_conn: AsyncMock, embedding) -> None:
        with pytest.raises(ValueError):
            await SearchQueries.vector_search(mock_conn, embedding, "documents")

    @pytest.mark.asyncio
    async def test_rejects_invalid_table(self, mock_conn: AsyncMock) -> None:
        with pytest.raises(ValueError, match="table name"):
            await SearchQueries.vector_search(mock_conn, [1.0], "docs; DROP TABLE x")


class TestSuggestions:
    """Test auto-completion suggestions."""

    @pytest.mark.asyncio
    async def test_wildcards_are_escaped(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetch = AsyncMock(return_value=[{"suggestion": "100% done"}])

        suggestions = await SearchQueries.suggestions(mock_conn, "100%_", "documents")

        sql, pattern, limit = mock_conn.fetch.call_args.args
        assert "ILIKE $1" in sql
        assert pattern == "%100\\%\\_%"
        assert limit == 5
        assert suggestions == ["100% done"]


class TestVectorAdministration:
    """Test extension, column, CRUD and index queries."""

    @pytest.mark.asyncio
    async def test_check_extension_installed(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetchval = AsyncMock(return_value="0.7.4")

        result = await VectorQueries.check_extension(mock_conn)

        assert result == {"installed": True, "version": "0.7.4", "installed_now": False}
        mock_conn.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_check_extension_auto_install(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetchval = AsyncMock(side_effect=[None, "0.7.4"])

        result = await VectorQueries.check_extension(mock_conn, auto_install=True)

        assert result["installed_now"] is True
        mock_conn.execute.assert_awaited_once_with("CREATE EXTENSION IF NOT EXISTS vector")

    @pytest.mark.asyncio
    async def test_create_column_on_existing_table(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetchval = AsyncMock(side_effect=[True, False])

        result = await VectorQueries.create_vector_column(mock_conn, "documents", 768)

        mock_conn.execute.assert_awaited_once_with(
            'ALTER TABLE "public"."documents" ADD COLUMN "embedding" vector(768)'
        )
        assert result["created_table"] is False
        assert result["dimensions"] == 768

    @pytest.mark.asyncio
    async def test_create_column_missing_table(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetchval = AsyncMock(return_value=False)

        with pytest.raises(ValueError, match="create_table=true"):
            await VectorQueries.create_vector_column(mock_conn, "documents", 768)

    @pytest.mark.asyncio
    async def test_create_column_creates_table(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetchval = AsyncMock(return_value=False)

        result = await VectorQueries.create_vector_column(
            mock_conn, "documents", 3, create_table=True
        )

        sql = mock_conn.execute.call_args.args[0]
        assert 'CREATE TABLE "public"."documents"' in sql
        assert '"embedding" vector(3)' in sql
        assert result["created_table"] is True

    @pytest.mark.asyncio
    async def test_create_column_already_exists(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetchval = AsyncMock(side_effect=[True, True])

        with pytest.raises(ValueError, match="already exists"):
            await VectorQueries.create_vector_column(mock_conn, "documents", 3)

    @pytest.mark.asyncio
    async def test_insert_vector(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetchval = AsyncMock(return_value=11)

        record_id = await VectorQueries.insert_vector(
            mock_conn, "documents", [0.1, 0.2], content="hi", metadata={"k": "v"}
        )

        sql, *values = mock_conn.fetchval.call_args.args
        assert sql == (
            'INSERT INTO "public"."documents" ("embedding", "content", "metadata") '
            'VALUES ($1::vector, $2, $3::jsonb) RETURNING "id"'
        )
        assert values == ["[0.1,0.2]", "hi", '{"k": "v"}']
        assert record_id == 11

    @pytest.mark.asyncio
    async def test_insert_vectors_in_transaction(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetchval = AsyncMock(side_effect=[1, 2])

        ids = await VectorQueries.insert_vectors(
            mock_conn,
            "documents",
            [{"vector": [0.1]}, {"vector": [0.2], "content": "b"}],
        )

        assert ids == [1, 2]
        mock_conn.transaction.assert_called_once()

    @pytest.mark.asyncio
    async def test_insert_vectors_requires_vector(self, mock_conn: AsyncMock) -> None:
        with pytest.raises(ValueError, match="vector"):
            await VectorQueries.insert_vectors(mock_conn, "documents", [{"content": "x"}])

    @pytest.mark.asyncio
    async def test_update_vector(self, mock_conn: AsyncMock) -> None:
        mock_conn.execute = AsyncMock(return_value="UPDATE 1")

        updated = await VectorQueries.update_vector(
            mock_conn, "documents", 7, embedding=[1.0], content="new"
        )

        sql, *values = mock_conn.execute.call_args.args
        assert sql == (
            'UPDATE "public"."documents" SET "embedding" = $1::vector, "content" = $2 '
            'WHERE "id" = $3'
        )
        assert values == ["[1.0]", "new", 7]
        assert updated is True

    @pytest.mark.asyncio
    async def test_update_vector_no_match(self, mock_conn: AsyncMock) -> None:
        mock_conn.execute = AsyncMock(return_value="UPDATE 0")

        assert await VectorQueries.update_vector(
            mock_conn, "documents", 7, metadata={}
        ) is False

    @pytest.mark.asyncio
    async def test_update_vector_nothing_to_update(self, mock_conn: AsyncMock) -> None:
        with pytest.raises(ValueError, match="Nothing to update"):
            await VectorQueries.update_vector(mock_conn, "documents", 7)

    @pytest.mark.asyncio
    async def test_delete_vectors(self, mock_conn: AsyncMock) -> None:
        mock_conn.execute = AsyncMock(return_value="DELETE 2")

        deleted = await VectorQueries.delete_vectors(mock_conn, "documents", [1, 2, 3])

        assert deleted == 2
        assert mock_conn.execute.call_args.args == (
            'DELETE FROM "public"."documents" WHERE "id" = ANY($1)',
            [1, 2, 3],
        )

    @pytest.mark.asyncio
    async def test_create_hnsw_index(self, mock_conn: AsyncMock) -> None:
        result = await VectorQueries.create_index(mock_conn, "documents")

        sql = mock_conn.execute.call_args.args[0]
        assert sql == (
            'CREATE INDEX IF NOT EXISTS "documents_embedding_hnsw_idx" '
            'ON "public"."documents" USING hnsw ("embedding" vector_cosine_ops) '
            "WITH (m = 16, ef_construction = 64)"
        )
        assert result["operator_class"] == "vector_cosine_ops"

    @pytest.mark.asyncio
    async def test_create_ivfflat_index(self, mock_conn: AsyncMock) -> None:
        await VectorQueries.create_index(
            mock_conn,
            "documents",
            index_type=IndexType.IVFFLAT,
            metric=DistanceMetric.L2,
            ivfflat_lists=100,
        )

        sql = mock_conn.execute.call_args.args[0]
        assert "USING ivfflat" in sql
        assert "vector_l2_ops" in sql
        assert sql.endswith("WITH (lists = 100)")

    @pytest.mark.asyncio
    async def test_vector_stats(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetchrow = AsyncMock(
            return_value={
                "total_rows": 10,
                "null_vectors": 1,
                "min_dimensions": 3,
                "max_dimensions": 3,
            }
        )

        stats = await VectorQueries.vector_stats(mock_conn, "documents")

        assert stats["total_rows"] == 10
        assert stats["table"] == "public.documents"
        assert "vector_dims(\"embedding\")" in mock_conn.fetchrow.call_args.args[0]

    @pytest.mark.asyncio
    async def test_list_vector_tables(self, mock_conn: AsyncMock) -> None:
        row = {
            "table_schema": "public",
            "table_name": "documents",
            "column_name": "embedding",
            "column_type": "vector(3)",
        }
        mock_conn.fetch = AsyncMock(return_value=[row])

        assert await VectorQueries.list_vector_tables(mock_conn) == [row]


class TestRowText:
    """Test the queries feeding row vectorization."""

    @pytest.mark.asyncio
    async def test_column_dimensions(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetchval = AsyncMock(return_value=768)

        dimensions = await VectorQueries.column_dimensions(mock_conn, "documents", "vec")

        assert dimensions == 768
        sql, table, column = mock_conn.fetchval.call_args.args
        assert "atttypmod" in sql
        assert "$1::regclass" in sql
        assert table == '"public"."documents"'
        assert column == "vec"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("typmod", [None, -1])
    async def test_column_dimensions_unknown(self, mock_conn: AsyncMock, typmod) -> None:
        mock_conn.fetchval = AsyncMock(return_value=typmod)

        assert await VectorQueries.column_dimensions(mock_conn, "documents") is None

    @pytest.mark.asyncio
    async def test_fetch_row_text(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetchrow = AsyncMock(return_value={"combined_text": "Title Body"})

        text = await VectorQueries.fetch_row_text(
            mock_conn, "documents", 4, ["title", "body"], id_column="doc_id"
        )

        assert text == "Title Body"
        sql, record_id = mock_conn.fetchrow.call_args.args
        assert """concat_ws(' ', t."title"::text, t."body"::text)""" in sql
        assert 'WHERE t."doc_id" = $1' in sql
        assert record_id == 4

    @pytest.mark.asyncio
    async def test_fetch_row_text_missing_row(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetchrow = AsyncMock(return_value=None)

        assert await VectorQueries.fetch_row_text(mock_conn, "documents", 4, ["body"]) is None

    @pytest.mark.asyncio
    async def test_fetch_row_text_null_columns(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetchrow = AsyncMock(return_value={"combined_text": None})

        assert await VectorQueries.fetch_row_text(mock_conn, "documents", 4, ["body"]) == ""

    @pytest.mark.asyncio
    async def test_fetch_row_text_requires_columns(self, mock_conn: AsyncMock) -> None:
        with pytest.raises(ValueError, match="At least one text column"):
            await VectorQueries.fetch_row_text(mock_conn, "documents", 4, [])

        mock_conn.fetchrow.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rows_missing_vectors(self, mock_conn: AsyncMock) -> None:
        mock_conn.fetch = AsyncMock(
            return_value=[
                {"row_id": 1, "combined_text": "first"},
                {"row_id": 2, "combined_text": None},
            ]
        )

        rows = await VectorQueries.rows_missing_vectors(
            mock_conn, "documents", ["content"], limit=50, vector_column="vec"
        )

        assert rows == [(1, "first"), (2, "")]
        sql, limit = mock_conn.fetch.call_args.args
        assert 'WHERE t."vec" IS NULL' in sql
        assert 'ORDER BY t."id"' in sql
        assert limit == 50

    @pytest.mark.asyncio
    async def test_rows_missing_vectors_rejects_limit(self, mock_conn: AsyncMock) -> None:
        with pytest.raises(ValueError, match="limit must be between"):
            await VectorQueries.rows_missing_vectors(
                mock_conn, "documents", ["content"], limit=5000
            )
