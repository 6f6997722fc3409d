"""
Database query utilities for the pgvector MCP server.

This module provides the retrieval queries used by the search core
(full-text ranking, nearest-neighbour ordering) and the vector store
administration queries used by the MCP tools.

Table and column names cannot be bound as parameters, so every identifier
goes through ``quote_identifier`` before it is interpolated. All values are
bound parameters.
"""

import json
import logging
import re
from typing import Any

import asyncpg

from pgvector_mcp.models.search import DistanceMetric, IndexType, RetrievedRecord

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
TEXT_LANGUAGE_RE = re.compile(r"^[a-z_]+$")
MAX_IDENTIFIER_LENGTH = 63  # PostgreSQL NAMEDATALEN - 1
MAX_LIMIT = 1000

SCORE_COLUMNS = ("similarity", "text_rank", "distance")


def quote_identifier(name: Any, field_name: str = "identifier") -> str:
    """Validate a SQL identifier and return it double-quoted."""
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid {field_name}: {name!r}")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"{field_name} exceeds maximum length of {MAX_IDENTIFIER_LENGTH}"
        )
    return f'"{name}"'


def qualified_table(table: str, schema: str | None = None) -> str:
    """Return ``"schema"."table"`` (or just ``"table"``) with validation."""
    quoted = quote_identifier(table, "table name")
    if schema:
        return f"{quote_identifier(schema, 'schema name')}.{quoted}"
    return quoted


def _validate_integer(
    value: Any, field_name: str, minimum: int = 1, maximum: int = MAX_LIMIT
) -> int:
    """Validate an integer parameter and its range."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Invalid {field_name} parameter")
    if value < minimum or value > maximum:
        raise ValueError(f"{field_name} must be between {minimum} and {maximum}")
    return value


def _validate_language(language: str) -> str:
    """Validate a text search configuration name (e.g. ``english``)."""
    if not isinstance(language, str) or not TEXT_LANGUAGE_RE.match(language):
        raise ValueError(f"Invalid text search language: {language!r}")
    return language


def _validate_embedding(embedding: list[float]) -> list[float]:
    """Validate embedding values. Dimensions are checked by the store."""
    if not isinstance(embedding, (list, tuple)) or not embedding:
        raise ValueError("Embedding must be a non-empty list of floats")
    if not all(
        isinstance(x, (int, float)) and not isinstance(x, bool) for x in embedding
    ):
        raise ValueError("All embedding values must be numeric")
    return list(embedding)


def vector_literal(embedding: list[float]) -> str:
    """Format a vector in pgvector's text input format."""
    return "[" + ",".join(map(str, embedding)) + "]"


def _text_expression(text_columns: list[str]) -> str:
    """``concat_ws`` over text columns; NULL columns are skipped."""
    if not text_columns:
        raise ValueError("At least one text column is required")
    columns = ", ".join(
        f"t.{quote_identifier(column, 'text column')}::text" for column in text_columns
    )
    return f"concat_ws(' ', {columns})"


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _to_record(
    row: Any, id_column: str, exclude: tuple[str, ...] = ()
) -> RetrievedRecord:
    data = dict(row)
    fields = {
        key: value
        for key, value in data.items()
        if key != id_column and key not in SCORE_COLUMNS and key not in exclude
    }
    text_rank = data.get("text_rank")
    distance = data.get("distance")
    similarity = data.get("similarity")
    return RetrievedRecord(
        id=data.get(id_column),
        fields=fields,
        similarity=float(similarity) if similarity is not None else None,
        text_rank=float(text_rank) if text_rank is not None else None,
        distance=float(distance) if distance is not None else None,
    )


class SearchQueries:
    """Retrieval queries used by the search core."""

    @staticmethod
    async def text_search(
        conn: asyncpg.Connection,
        query: str,
        table: str,
        content_column: str = "content",
        top_k: int = 10,
        *,
        id_column: str = "id",
        vector_column: str | None = "embedding",
        language: str = "english",
        schema: str | None = None,
    ) -> list[RetrievedRecord]:
        """
        Rank rows with PostgreSQL full-text search.

        Args:
            conn: Database connection
            query: Search query string (parsed with plainto_tsquery)
            table: Table to search
            content_column: Text column to rank
            top_k: Maximum rows to return
            id_column: Primary key column
            vector_column: Vector column left out of the returned payload
            language: Text search configuration
            schema: Optional schema of the table

        Returns:
            Records ordered by descending ``text_rank``; empty when nothing matches
        """
        top_k = _validate_integer(top_k, "top_k")
        language = _validate_language(language)
        table_sql = qualified_table(table, schema)
        content_sql = quote_identifier(content_column, "content column")
        quote_identifier(id_column, "id column")

        document = f"to_tsvector('{language}', COALESCE(t.{content_sql}, ''))"
        ts_query = f"plainto_tsquery('{language}', $1)"
        sql = f"""
            SELECT t.*, ts_rank({document}, {ts_query}) AS text_rank
            FROM {table_sql} t
            WHERE {document} @@ {ts_query}
            ORDER BY text_rank DESC
            LIMIT $2
        """

        rows = await conn.fetch(sql, query, top_k)
        exclude = (vector_column,) if vector_column else ()
        return [_to_record(row, id_column, exclude) for row in rows]

    @staticmethod
    async def vector_search(
        conn: asyncpg.Connection,
        embedding: list[float],
        table: str,
        vector_column: str = "embedding",
        top_k: int = 10,
        metric: DistanceMetric = DistanceMetric.COSINE,
        *,
        id_column: str = "id",
        restrict_to_ids: list[Any] | None = None,
        schema: str | None = None,
    ) -> list[RetrievedRecord]:
        """
        Nearest-neighbour search ordered by the metric's distance operator.

        ``similarity`` is reported as ``1 - distance`` for cosine only.
        A vector whose size does not match the column makes PostgreSQL raise;
        that error is not caught here.

        Args:
            conn: Database connection
            embedding: Query vector
            table: Table to search
            vector_column: Vector column to order by
            top_k: Maximum rows to return
            metric: Distance metric
            id_column: Primary key column
            restrict_to_ids: Only consider rows with these primary keys
            schema: Optional schema of the table

        Returns:
            Records ordered by ascending distance
        """
        embedding = _validate_embedding(embedding)
        top_k = _validate_integer(top_k, "top_k")
        metric = DistanceMetric(metric)
        table_sql = qualified_table(table, schema)
        vector_sql = quote_identifier(vector_column, "vector column")
        id_sql = quote_identifier(id_column, "id column")

        distance = f"(t.{vector_sql} {metric.operator} $1::vector)"
        params: list[Any] = [vector_literal(embedding), top_k]
        where = f"WHERE t.{vector_sql} IS NOT NULL"
        if restrict_to_ids is not None:
            params.append(list(restrict_to_ids))
            where += f" AND t.{id_sql} = ANY($3)"

        sql = f"""
            SELECT t.*, {distance} AS distance
            FROM {table_sql} t
            {where}
            ORDER BY {distance}
            LIMIT $2
        """

        rows = await conn.fetch(sql, *params)
        records = [_to_record(row, id_column, (vector_column,)) for row in rows]
        if metric is DistanceMetric.COSINE:
            for record in records:
                if record.distance is not None:
                    record.similarity = 1 - record.distance
        return records

    @staticmethod
    async def suggestions(
        conn: asyncpg.Connection,
        partial_query: str,
        table: str,
        content_column: str = "content",
        limit: int = 5,
        schema: str | None = None,
    ) -> list[str]:
        """Distinct content values containing ``partial_query``."""
        limit = _validate_integer(limit, "limit", maximum=100)
        table_sql = qualified_table(table, schema)
        content_sql = quote_identifier(content_column, "content column")

        sql = f"""
            SELECT DISTINCT {content_sql} AS suggestion
            FROM {table_sql}
            WHERE {content_sql} ILIKE $1 ESCAPE '\\'
            LIMIT $2
        """
        rows = await conn.fetch(sql, f"%{_escape_like(partial_query)}%", limit)
        return [row["suggestion"] for row in rows]


class VectorQueries:
    """Vector store administration: extension, columns, CRUD, indexes."""

    @staticmethod
    async def check_extension(
        conn: asyncpg.Connection, auto_install: bool = False
    ) -> dict[str, Any]:
        """Report whether pgvector is installed, optionally installing it."""
        version = await conn.fetchval(
            "SELECT extversion FROM pg_extension WHERE extname = 'vector'"
        )
        installed_now = False
        if version is None and auto_install:
            await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
            version = await conn.fetchval(
                "SELECT extversion FROM pg_extension WHERE extname = 'vector'"
            )
            installed_now = True
            logger.info("pgvector extension installed")

        return {
            "installed": version is not None,
            "version": version,
            "installed_now": installed_now,
        }

    @staticmethod
    async def create_vector_column(
        conn: asyncpg.Connection,
        table: str,
        dimensions: int,
        vector_column: str = "embedding",
        schema: str = "public",
        create_table: bool = False,
    ) -> dict[str, Any]:
        """
        Add a ``vector(dimensions)`` column, creating the table if asked.

        A created table has the layout the search tools expect:
        ``id BIGSERIAL PRIMARY KEY, content TEXT, metadata JSONB, <vector>``.

        Raises:
            ValueError: If the table is missing and ``create_table`` is false,
                or the column already exists
        """
        dimensions = _validate_integer(dimensions, "dimensions", maximum=16000)
        table_sql = qualified_table(table, schema)
        vector_sql = quote_identifier(vector_column, "vector column")

        table_exists = await conn.fetchval(
            """
            SELECT EXISTS(
                SELECT 1 FROM information_schema.tables
                WHERE table_schema = $1 AND table_name = $2
            )
            """,
            schema,
            table,
        )

        if not table_exists:
            if not create_table:
                raise ValueError(
                    f"Table {schema}.{table} does not exist; "
                    "pass create_table=true to create it"
                )
            await conn.execute(
                f"""
                CREATE TABLE {table_sql} (
                    id BIGSERIAL PRIMARY KEY,
                    content TEXT,
                    metadata JSONB,
                    {vector_sql} vector({dimensions})
                )
                """
            )
            logger.info(f"Created table {schema}.{table} with vector({dimensions})")
            return {
                "table": f"{schema}.{table}",
                "created_table": True,
                "column": vector_column,
                "dimensions": dimensions,
            }

        column_exists = await conn.fetchval(
            """
            SELECT EXISTS(
                SELECT 1 FROM information_schema.columns
                WHERE table_schema = $1 AND table_name = $2 AND column_name = $3
            )
            """,
            schema,
            table,
            vector_column,
        )
        if column_exists:
            raise ValueError(
                f"Column {vector_column} already exists in {schema}.{table}"
            )

        await conn.execute(
            f"ALTER TABLE {table_sql} ADD COLUMN {vector_sql} vector({dimensions})"
        )
        logger.info(f"Added vector({dimensions}) column to {schema}.{table}")
        return {
            "table": f"{schema}.{table}",
            "created_table": False,
            "column": vector_column,
            "dimensions": dimensions,
        }

    @staticmethod
    async def insert_vector(
        conn: asyncpg.Connection,
        table: str,
        embedding: list[float],
        content: str | None = None,
        metadata: dict[str, Any] | None = None,
        vector_column: str = "embedding",
        schema: str = "public",
        id_column: str = "id",
    ) -> Any:
        """Insert one row and return its primary key."""
        embedding = _validate_embedding(embedding)
        table_sql = qualified_table(table, schema)
        columns = [quote_identifier(vector_column, "vector column")]
        placeholders = ["$1::vector"]
        values: list[Any] = [vector_literal(embedding)]

        if content is not None:
            columns.append('"content"')
            values.append(content)
            placeholders.append(f"${len(values)}")
        if metadata is not None:
            columns.append('"metadata"')
            values.append(json.dumps(metadata))
            placeholders.append(f"${len(values)}::jsonb")

        sql = (
            f"INSERT INTO {table_sql} ({', '.join(columns)}) "
            f"VALUES ({', '.join(placeholders)}) "
            f"RETURNING {quote_identifier(id_column, 'id column')}"
        )
        return await conn.fetchval(sql, *values)

    @staticmethod
    async def insert_vectors(
        conn: asyncpg.Connection,
        table: str,
        items: list[dict[str, Any]],
        vector_column: str = "embedding",
        schema: str = "public",
        id_column: str = "id",
    ) -> list[Any]:
        """
        Insert several rows in one transaction.

        Each item is ``{"vector": [...], "content": ..., "metadata": {...}}``.
        Either every row is inserted or none is.
        """
        if not items:
            return []
        ids = []
        async with conn.transaction():
            for item in items:
                if "vector" not in item:
                    raise ValueError("Every item needs a 'vector'")
                ids.append(
                    await VectorQueries.insert_vector(
                        conn,
                        table,
                        item["vector"],
                        content=item.get("content"),
                        metadata=item.get("metadata"),
                        vector_column=vector_column,
                        schema=schema,
                        id_column=id_column,
                    )
                )
        return ids

    @staticmethod
    async def update_vector(
        conn: asyncpg.Connection,
        table: str,
        record_id: Any,
        embedding: list[float] | None = None,
        content: str | None = None,
        metadata: dict[str, Any] | None = None,
        vector_column: str = "embedding",
        schema: str = "public",
        id_column: str = "id",
    ) -> bool:
        """Update a row by primary key. Returns False if no row matched."""
        assignments = []
        values: list[Any] = []
        if embedding is not None:
            values.append(vector_literal(_validate_embedding(embedding)))
            assignments.append(
                f"{quote_identifier(vector_column, 'vector column')} = ${len(values)}::vector"
            )
        if content is not None:
            values.append(content)
            assignments.append(f'"content" = ${len(values)}')
        if metadata is not None:
            values.append(json.dumps(metadata))
            assignments.append(f'"metadata" = ${len(values)}::jsonb')
        if not assignments:
            raise ValueError("Nothing to update: pass a vector, content or metadata")

        values.append(record_id)
        sql = (
            f"UPDATE {qualified_table(table, schema)} SET {', '.join(assignments)} "
            f"WHERE {quote_identifier(id_column, 'id column')} = ${len(values)}"
        )
        status = await conn.execute(sql, *values)
        return _affected_rows(status) > 0

    @staticmethod
    async def delete_vectors(
        conn: asyncpg.Connection,
        table: str,
        ids: list[Any],
        schema: str = "public",
        id_column: str = "id",
    ) -> int:
        """Delete rows by primary key and return how many were removed."""
        if not ids:
            raise ValueError("At least one id is required")
        sql = (
            f"DELETE FROM {qualified_table(table, schema)} "
            f"WHERE {quote_identifier(id_column, 'id column')} = ANY($1)"
        )
        status = await conn.execute(sql, list(ids))
        return _affected_rows(status)

    @staticmethod
    async def create_index(
        conn: asyncpg.Connection,
        table: str,
        vector_column: str = "embedding",
        index_type: IndexType = IndexType.HNSW,
        metric: DistanceMetric = DistanceMetric.COSINE,
        schema: str = "public",
        index_name: str | None = None,
        hnsw_m: int = 16,
        hnsw_ef_construction: int = 64,
        ivfflat_lists: int | None = None,
    ) -> dict[str, Any]:
        """Create an HNSW or IVFFlat index on a vector column."""
        index_type = IndexType(index_type)
        metric = DistanceMetric(metric)
        name = index_name or f"{table}_{vector_column}_{index_type.value}_idx"

        sql = (
            f"CREATE INDEX IF NOT EXISTS {quote_identifier(name, 'index name')} "
            f"ON {qualified_table(table, schema)} "
            f"USING {index_type.value} "
            f"({quote_identifier(vector_column, 'vector column')} {metric.index_ops})"
        )
        if index_type is IndexType.HNSW:
            m = _validate_integer(hnsw_m, "hnsw_m", minimum=2, maximum=100)
            ef = _validate_integer(
                hnsw_ef_construction, "hnsw_ef_construction", minimum=4, maximum=1000
            )
            sql += f" WITH (m = {m}, ef_construction = {ef})"
        elif ivfflat_lists is not None:
            lists = _validate_integer(ivfflat_lists, "ivfflat_lists", maximum=32768)
            sql += f" WITH (lists = {lists})"

        await conn.execute(sql)
        logger.info(f"Vector index {name} ensured on {schema}.{table}")
        return {
            "index_name": name,
            "table": f"{schema}.{table}",
            "column": vector_column,
            "index_type": index_type.value,
            "operator_class": metric.index_ops,
        }

    @staticmethod
    async def list_vector_tables(conn: asyncpg.Connection) -> list[dict[str, Any]]:
        """List every column of type ``vector`` outside system schemas."""
        rows = await conn.fetch(
            """
            SELECT c.table_schema, c.table_name, c.column_name,
                   format_type(a.atttypid, a.atttypmod) AS column_type
            FROM information_schema.columns c
            JOIN pg_catalog.pg_attribute a
              ON a.attrelid = (quote_ident(c.table_schema) || '.' ||
                               quote_ident(c.table_name))::regclass
             AND a.attname = c.column_name
            WHERE c.udt_name = 'vector'
              AND c.table_schema NOT IN ('pg_catalog', 'information_schema')
            ORDER BY c.table_schema, c.table_name, c.column_name
            """
        )
        return [dict(row) for row in rows]

    @staticmethod
    async def vector_stats(
        conn: asyncpg.Connection,
        table: str,
        vector_column: str = "embedding",
        schema: str = "public",
    ) -> dict[str, Any]:
        """Row count, missing vectors and stored dimensions for a column."""
        vector_sql = quote_identifier(vector_column, "vector column")
        row = await conn.fetchrow(
            f"""
            SELECT COUNT(*) AS total_rows,
                   COUNT(*) FILTER (WHERE {vector_sql} IS NULL) AS null_vectors,
                   MIN(vector_dims({vector_sql})) AS min_dimensions,
                   MAX(vector_dims({vector_sql})) AS max_dimensions
            FROM {qualified_table(table, schema)}
            """
        )
        stats = dict(row) if row else {}
        stats["table"] = f"{schema}.{table}"
        stats["column"] = vector_column
        return stats

    @staticmethod
    async def column_dimensions(
        conn: asyncpg.Connection,
        table: str,
        vector_column: str = "embedding",
        schema: str = "public",
    ) -> int | None:
        """
        Declared size of a ``vector(n)`` column.

        Returns None when the column does not exist or was declared without
        a size. A missing table makes PostgreSQL raise.
        """
        typmod = await conn.fetchval(
            """
            SELECT a.atttypmod
            FROM pg_catalog.pg_attribute a
            WHERE a.attrelid = $1::regclass
              AND a.attname = $2
              AND NOT a.attisdropped
            """,
            qualified_table(table, schema),
            vector_column,
        )
        if typmod is None or typmod < 1:
            return None
        return typmod

    @staticmethod
    async def fetch_row_text(
        conn: asyncpg.Connection,
        table: str,
        record_id: Any,
        text_columns: list[str],
        schema: str = "public",
        id_column: str = "id",
    ) -> str | None:
        """Text columns of one row joined by spaces; None if no row matches."""
        sql = f"""
            SELECT {_text_expression(text_columns)} AS combined_text
            FROM {qualified_table(table, schema)} t
            WHERE t.{quote_identifier(id_column, 'id column')} = $1
        """
        row = await conn.fetchrow(sql, record_id)
        if row is None:
            return None
        return row["combined_text"] or ""

    @staticmethod
    async def rows_missing_vectors(
        conn: asyncpg.Connection,
        table: str,
        text_columns: list[str],
        limit: int = 100,
        vector_column: str = "embedding",
        schema: str = "public",
        id_column: str = "id",
    ) -> list[tuple[Any, str]]:
        """``(id, text)`` of rows whose vector is NULL, in primary key order."""
        limit = _validate_integer(limit, "limit")
        id_sql = quote_identifier(id_column, "id column")
        vector_sql = quote_identifier(vector_column, "vector column")
        sql = f"""
            SELECT t.{id_sql} AS row_id, {_text_expression(text_columns)} AS combined_text
            FROM {qualified_table(table, schema)} t
            WHERE t.{vector_sql} IS NULL
            ORDER BY t.{id_sql}
            LIMIT $1
        """
        rows = await conn.fetch(sql, limit)
        return [(row["row_id"], row["combined_text"] or "") for row in rows]


def _affected_rows(status: str) -> int:
    """Parse asyncpg command status such as ``'DELETE 3'``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0
