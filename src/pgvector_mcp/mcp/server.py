"""
FastMCP server for pgvector search.

Exposes intelligent search (automatic text / vector / hybrid routing), query
analysis, embeddings and vector store administration tools over any
PostgreSQL table carrying a pgvector column.

All configuration comes from MCP client environment variables.
No .env file required.
"""

import logging
import sys
import time
from collections.abc import Awaitable, Callable
from typing import Any

import asyncpg
from fastmcp import Context, FastMCP

from pgvector_mcp import __version__
from pgvector_mcp.core.exceptions import ConfigurationError, validation_error
from pgvector_mcp.core.router import QueryRouter
from pgvector_mcp.core.search_engine import BENCHMARK_MODES, SearchService
from pgvector_mcp.db.diagnostics import describe_store_error, validate_vectors
from pgvector_mcp.db.queries import VectorQueries
from pgvector_mcp.models.search import (
    DistanceMetric,
    IndexType,
    SearchMode,
    SearchRequest,
)
from pgvector_mcp.services.embeddings import (
    EmbeddingService,
    create_embedding_service,
    normalize_vector,
)

from .config import MCPConfig
from .context import DatabasePool

# Initialize configuration from environment
try:
    config = MCPConfig.from_env()
    config.validate()
except ConfigurationError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    print("\nRequired environment variables:", file=sys.stderr)
    print("  DATABASE_URL: PostgreSQL connection string", file=sys.stderr)
    print("  EMBEDDING_API_KEY: Bearer token for the embedding API", file=sys.stderr)
    sys.exit(1)

# Setup logging (stderr, stdout belongs to the stdio transport)
logging.basicConfig(
    level=config.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastMCP server
mcp = FastMCP(
    name="pgvector-mcp",
    version=__version__,
)

router = QueryRouter()

# Process-wide state, created lazily
db_pool: DatabasePool | None = None
embedding_service: EmbeddingService | None = None


async def ensure_db_pool() -> DatabasePool:
    """
    Ensure database pool is initialized.

    Lazy initialization on first use.
    """
    global db_pool

    if db_pool is None or not db_pool.is_connected():
        logger.info(f"Initializing database pool for {config.database_host}")
        pool = DatabasePool(config)
        try:
            await pool.connect()
            if not await pool.health_check():
                logger.error("Database health check failed")
                raise RuntimeError("Database connection failed")
        except Exception:
            await pool.disconnect()
            raise

        db_pool = pool
        logger.info("Database pool initialized")

    return db_pool


def get_embedding_service() -> EmbeddingService:
    """Embedding service shared by every tool, owning the embedding cache."""
    global embedding_service

    if embedding_service is None:
        embedding_service = create_embedding_service(config.embedding_config())
    return embedding_service


async def get_search_service() -> SearchService:
    pool = await ensure_db_pool()
    return SearchService(
        pool, get_embedding_service(), router, config.search_settings()
    )


def _resolve_collection(collection: str | None) -> str:
    collection = collection or config.search_default_collection
    if not collection:
        raise validation_error(
            "collection is required (or set SEARCH_DEFAULT_COLLECTION)",
            field="collection",
        )
    return collection


def _resolve_top_k(top_k: int | None) -> int:
    if top_k is None:
        return config.search_default_limit
    if top_k < 1 or top_k > config.search_max_limit:
        raise validation_error(
            f"top_k must be between 1 and {config.search_max_limit}, got {top_k}",
            field="top_k",
            value=top_k,
        )
    return top_k


def _require_text(value: str | None, field: str) -> str:
    if not value or not value.strip():
        raise validation_error(f"{field} is required and cannot be empty", field=field)
    return value


def _parse_metric(metric: str) -> DistanceMetric:
    try:
        return DistanceMetric.from_operator(metric)
    except ValueError as e:
        raise validation_error(str(e), field="metric", value=metric) from e


async def _report_failure(action: str, error: Exception, ctx: Context | None) -> None:
    logger.error(f"{action} failed: {error}", exc_info=True)
    if ctx:
        await ctx.error(f"{action} failed: {error}")


async def _run_store_operation(
    operation: str,
    table: str | None,
    call: Callable[[asyncpg.Connection], Awaitable[Any]],
) -> Any:
    """Run an administration query, wrapping store errors with diagnostics."""
    pool = await ensure_db_pool()
    try:
        async with pool.acquire() as conn:
            return await call(conn)
    except asyncpg.PostgresError as e:
        raise describe_store_error(e, operation, table) from e


# ---------------------------------------------------------------------------
# Search tools
# ---------------------------------------------------------------------------


async def _search_impl(
    query: str,
    mode: str,
    collection: str | None,
    top_k: int | None,
    enable_cache: bool,
    ctx: Context | None,
) -> dict[str, Any]:
    """
    Core implementation shared by intelligent_search and search_with_mode.

    Raises:
        pydantic.ValidationError: On a blank query, an unknown mode or a
            top_k outside 1..1000
        ValidationError: When top_k exceeds SEARCH_MAX_LIMIT or no
            collection can be resolved
    """
    request = SearchRequest(
        query=query,
        collection=_resolve_collection(collection),
        mode=mode,
        top_k=config.search_default_limit if top_k is None else top_k,
        enable_cache=enable_cache,
    )
    _resolve_top_k(request.top_k)

    if ctx:
        await ctx.info(
            f"Searching {request.collection} for: '{request.query}' "
            f"(mode={request.mode.value}, top_k={request.top_k})"
        )
    logger.info(
        f"Search request: query='{request.query[:50]}', "
        f"collection={request.collection}, mode={request.mode.value}, "
        f"top_k={request.top_k}"
    )

    try:
        service = await get_search_service()
        response = await service.search(
            request.query,
            request.collection,
            mode=request.mode,
            top_k=request.top_k,
            enable_cache=request.enable_cache,
        )
        return response.to_dict()
    except Exception as e:
        await _report_failure("Search", e, ctx)
        raise


async def _intelligent_search_impl(
    query: str,
    collection: str | None = None,
    top_k: int | None = None,
    enable_cache: bool = True,
    ctx: Context | None = None,
) -> dict[str, Any]:
    """Core implementation of intelligent_search for testing."""
    return await _search_impl(
        query, SearchMode.AUTO.value, collection, top_k, enable_cache, ctx
    )


@mcp.tool()
async def intelligent_search(
    query: str,
    collection: str | None = None,
    top_k: int | None = None,
    enable_cache: bool = True,
    ctx: Context | None = None,
) -> dict[str, Any]:
    """
    Search a table, automatically choosing text, vector or hybrid search.

    Short queries use full-text search, questions and long queries use
    hybrid search (full-text pre-filter re-ranked by vector similarity),
    other descriptive queries use vector search.

    Args:
        query: Search query (required)
        collection: Table to search (default: SEARCH_DEFAULT_COLLECTION)
        top_k: Maximum number of results (default: 10)
        enable_cache: Reuse cached query embeddings
        ctx: FastMCP context for logging

    Returns:
        Dictionary containing:
        - results: Rows with their scores (text_rank, similarity, distance,
          and final_score / rank for hybrid results)
        - metadata: requested_mode, actual_mode, execution_time_ms,
          total_results, embedding_generated, cache_hit and stage timings
    """
    return await _intelligent_search_impl(
        query=query,
        collection=collection,
        top_k=top_k,
        enable_cache=enable_cache,
        ctx=ctx,
    )


async def _search_with_mode_impl(
    query: str,
    mode: str,
    collection: str | None = None,
    top_k: int | None = None,
    enable_cache: bool = True,
    ctx: Context | None = None,
) -> dict[str, Any]:
    """Core implementation of search_with_mode for testing."""
    return await _search_impl(query, mode, collection, top_k, enable_cache, ctx)


@mcp.tool()
async def search_with_mode(
    query: str,
    mode: str,
    collection: str | None = None,
    top_k: int | None = None,
    enable_cache: bool = True,
    ctx: Context | None = None,
) -> dict[str, Any]:
    """
    Search with an explicit mode: auto, text, vector or hybrid.

    Args:
        query: Search query (required)
        mode: Search mode (required)
        collection: Table to search (default: SEARCH_DEFAULT_COLLECTION)
        top_k: Maximum number of results (default: 10)
        enable_cache: Reuse cached query embeddings
        ctx: FastMCP context for logging

    Returns:
        Same shape as intelligent_search
    """
    return await _search_with_mode_impl(
        query=query,
        mode=mode,
        collection=collection,
        top_k=top_k,
        enable_cache=enable_cache,
        ctx=ctx,
    )


async def _analyze_query_impl(query: str) -> dict[str, Any]:
    """Core implementation of analyze_query for testing."""
    query = _require_text(query, "query")
    analysis = router.analyze_query(query)
    return {"query": query, **analysis.to_dict()}


@mcp.tool()
async def analyze_query(query: str) -> dict[str, Any]:
    """
    Explain which search mode a query would use and why.

    Returns:
        recommended_mode, confidence (a hint, not a probability),
        rationale and suggestions
    """
    return await _analyze_query_impl(query)


async def _benchmark_search_impl(
    queries: list[str],
    collection: str | None = None,
    iterations: int = 3,
    ctx: Context | None = None,
) -> dict[str, Any]:
    """Core implementation of benchmark_search for testing."""
    collection = _resolve_collection(collection)
    if not queries:
        raise validation_error("At least one query is required", field="queries")
    if iterations < 1 or iterations > 10:
        raise validation_error(
            f"iterations must be between 1 and 10, got {iterations}",
            field="iterations",
            value=iterations,
        )

    if ctx:
        await ctx.info(f"Benchmarking {len(queries)} queries on {collection}")

    try:
        service = await get_search_service()
        start_time = time.time()
        report = await service.benchmark(queries, collection, iterations)
        return {
            "collection": collection,
            "queries": len(queries),
            "iterations": iterations,
            "modes": {mode.value: report[mode.value] for mode in BENCHMARK_MODES},
            "fastest_mode": report["fastest"],
            "benchmark_duration_ms": int((time.time() - start_time) * 1000),
        }
    except Exception as e:
        await _report_failure("Benchmark", e, ctx)
        raise


@mcp.tool()
async def benchmark_search(
    queries: list[str],
    collection: str | None = None,
    iterations: int = 3,
    ctx: Context | None = None,
) -> dict[str, Any]:
    """
    Compare the speed and success rate of text, vector and hybrid search.

    Args:
        queries: Queries to run through every mode
        collection: Table to search (default: SEARCH_DEFAULT_COLLECTION)
        iterations: Repetitions per query (1-10, default: 3)
        ctx: FastMCP context for logging
    """
    return await _benchmark_search_impl(
        queries=queries, collection=collection, iterations=iterations, ctx=ctx
    )


async def _get_search_suggestions_impl(
    partial_query: str,
    collection: str | None = None,
    limit: int = 5,
) -> dict[str, Any]:
    """Core implementation of get_search_suggestions for testing."""
    collection = _resolve_collection(collection)
    if not partial_query or len(partial_query.strip()) < 2:
        raise validation_error(
            "partial_query needs at least 2 characters", field="partial_query"
        )

    service = await get_search_service()
    suggestions = await service.suggestions(partial_query.strip(), collection, limit)
    return {"partial_query": partial_query, "suggestions": suggestions}


@mcp.tool()
async def get_search_suggestions(
    partial_query: str,
    collection: str | None = None,
    limit: int = 5,
) -> dict[str, Any]:
    """
    Auto-complete a query from the content of a table.

    Args:
        partial_query: Beginning of a query (at least 2 characters)
        collection: Table to search (default: SEARCH_DEFAULT_COLLECTION)
        limit: Maximum suggestions (default: 5)
    """
    return await _get_search_suggestions_impl(
        partial_query=partial_query, collection=collection, limit=limit
    )


async def _pgvector_search_impl(
    collection: str | None = None,
    query: str | None = None,
    vector: list[float] | None = None,
    use_random_vector: bool = False,
    top_k: int | None = None,
    metric: str = "cosine",
    vector_column: str | None = None,
    dimensions: int | None = None,
    ctx: Context | None = None,
) -> dict[str, Any]:
    """Core implementation of pgvector_search for testing."""
    collection = _resolve_collection(collection)
    top_k = _resolve_top_k(top_k)
    distance_metric = _parse_metric(metric)

    sources = sum(
        (bool(query and query.strip()), vector is not None, use_random_vector)
    )
    if sources != 1:
        raise validation_error(
            "Provide exactly one of query, vector or use_random_vector=true"
        )

    try:
        service = await get_search_service()
        start_time = time.time()
        if use_random_vector:
            size = dimensions or config.embedding_dimensions
            if ctx:
                await ctx.info(f"Random vector search ({size} dimensions)")
            results = await service.random_vector_search(
                collection, size, top_k, distance_metric, vector_column
            )
            source = "random"
        else:
            results = await service.vector_search(
                query if vector is None else vector,
                collection,
                top_k,
                distance_metric,
                vector_column=vector_column,
            )
            source = "query" if vector is None else "vector"

        return {
            "results": [record.to_dict() for record in results],
            "total_results": len(results),
            "metric": distance_metric.value,
            "vector_source": source,
            "search_duration_ms": int((time.time() - start_time) * 1000),
        }
    except Exception as e:
        await _report_failure("Vector search", e, ctx)
        raise


@mcp.tool()
async def pgvector_search(
    collection: str | None = None,
    query: str | None = None,
    vector: list[float] | None = None,
    use_random_vector: bool = False,
    top_k: int | None = None,
    metric: str = "cosine",
    vector_column: str | None = None,
    dimensions: int | None = None,
    ctx: Context | None = None,
) -> dict[str, Any]:
    """
    Nearest-neighbour search from a query, a vector or a random vector.

    use_random_vector is a debugging aid for exercising indexes; results
    from a random vector carry no meaning.

    Args:
        collection: Table to search (default: SEARCH_DEFAULT_COLLECTION)
        query: Text embedded before searching
        vector: Precomputed query vector
        use_random_vector: Search around a random unit vector
        top_k: Maximum number of results (default: 10)
        metric: cosine, l2 or inner_product (or <=>, <->, <#>)
        vector_column: Vector column (default: SEARCH_VECTOR_COLUMN)
        dimensions: Size of the random vector (default: EMBEDDING_DIMENSIONS)
        ctx: FastMCP context for logging
    """
    return await _pgvector_search_impl(
        collection=collection,
        query=query,
        vector=vector,
        use_random_vector=use_random_vector,
        top_k=top_k,
        metric=metric,
        vector_column=vector_column,
        dimensions=dimensions,
        ctx=ctx,
    )


# ---------------------------------------------------------------------------
# Embedding tools
# ---------------------------------------------------------------------------


async def _generate_embedding_impl(
    text: str,
    model: str | None = None,
    use_cache: bool = True,
    ctx: Context | None = None,
) -> dict[str, Any]:
    """Core implementation of generate_embedding for testing."""
    _require_text(text, "text")

    try:
        result = await get_embedding_service().embed_with_metadata(
            text, model=model, use_cache=use_cache
        )
    except Exception as e:
        await _report_failure("Embedding generation", e, ctx)
        raise

    return {
        "embedding": result.embedding,
        "dimensions": len(result.embedding),
        "model": result.model,
        "cached": result.cached,
        "duration_ms": result.duration_ms,
    }


@mcp.tool()
async def generate_embedding(
    text: str,
    model: str | None = None,
    use_cache: bool = True,
    ctx: Context | None = None,
) -> dict[str, Any]:
    """
    Generate an embedding with the configured provider.

    Args:
        text: Text to embed
        model: Model override (default: EMBEDDING_MODEL)
        use_cache: Reuse and populate the embedding cache
        ctx: FastMCP context for logging
    """
    return await _generate_embedding_impl(
        text=text, model=model, use_cache=use_cache, ctx=ctx
    )


async def _embedding_cache_stats_impl(clear: bool = False) -> dict[str, Any]:
    """Core implementation of embedding_cache_stats for testing."""
    cache = get_embedding_service().cache
    stats = cache.stats()
    if clear:
        cache.clear()
        stats["cleared"] = True
    return stats


@mcp.tool()
async def embedding_cache_stats(clear: bool = False) -> dict[str, Any]:
    """
    Report embedding cache usage (size, hits, misses, hit rate).

    Args:
        clear: Empty the cache after reporting
    """
    return await _embedding_cache_stats_impl(clear=clear)


# ---------------------------------------------------------------------------
# Vector store administration tools
# ---------------------------------------------------------------------------


async def _pgvector_check_extension_impl(auto_install: bool = False) -> dict[str, Any]:
    """Core implementation of pgvector_check_extension for testing."""
    return await _run_store_operation(
        "check_extension",
        None,
        lambda conn: VectorQueries.check_extension(conn, auto_install),
    )


@mcp.tool()
async def pgvector_check_extension(auto_install: bool = False) -> dict[str, Any]:
    """
    Check whether the pgvector extension is installed.

    Args:
        auto_install: Run CREATE EXTENSION when it is missing
    """
    return await _pgvector_check_extension_impl(auto_install=auto_install)


async def _pgvector_create_column_impl(
    table: str,
    dimensions: int | None = None,
    column: str | None = None,
    schema: str = "public",
    create_table: bool = False,
) -> dict[str, Any]:
    """Core implementation of pgvector_create_column for testing."""
    dimensions = dimensions or config.embedding_dimensions
    column = column or config.search_vector_column
    return await _run_store_operation(
        "create_vector_column",
        table,
        lambda conn: VectorQueries.create_vector_column(
            conn, table, dimensions, column, schema, create_table
        ),
    )


@mcp.tool()
async def pgvector_create_column(
    table: str,
    dimensions: int | None = None,
    column: str | None = None,
    schema: str = "public",
    create_table: bool = False,
) -> dict[str, Any]:
    """
    Add a vector column to a table, optionally creating the table.

    A created table has the columns id, content, metadata and the vector.

    Args:
        table: Table name
        dimensions: Vector size (default: EMBEDDING_DIMENSIONS)
        column: Column name (default: SEARCH_VECTOR_COLUMN)
        schema: Schema name (default: public)
        create_table: Create the table when it does not exist
    """
    return await _pgvector_create_column_impl(
        table=table,
        dimensions=dimensions,
        column=column,
        schema=schema,
        create_table=create_table,
    )


async def _pgvector_insert_vector_impl(
    table: str,
    vector: list[float],
    content: str | None = None,
    metadata: dict[str, Any] | None = None,
    column: str | None = None,
    schema: str = "public",
) -> dict[str, Any]:
    """Core implementation of pgvector_insert_vector for testing."""
    record_id = await _run_store_operation(
        "insert_vector",
        table,
        lambda conn: VectorQueries.insert_vector(
            conn,
            table,
            vector,
            content=content,
            metadata=metadata,
            vector_column=column or config.search_vector_column,
            schema=schema,
            id_column=config.search_id_column,
        ),
    )
    return {"id": record_id, "dimensions": len(vector)}


@mcp.tool()
async def pgvector_insert_vector(
    table: str,
    vector: list[float],
    content: str | None = None,
    metadata: dict[str, Any] | None = None,
    column: str | None = None,
    schema: str = "public",
) -> dict[str, Any]:
    """
    Insert a row with a precomputed vector.

    Args:
        table: Table name
        vector: Vector values (size must match the column)
        content: Optional text content
        metadata: Optional JSON metadata
        column: Vector column (default: SEARCH_VECTOR_COLUMN)
        schema: Schema name (default: public)
    """
    return await _pgvector_insert_vector_impl(
        table=table,
        vector=vector,
        content=content,
        metadata=metadata,
        column=column,
        schema=schema,
    )


async def _pgvector_insert_with_embedding_impl(
    table: str,
    content: str,
    metadata: dict[str, Any] | None = None,
    column: str | None = None,
    schema: str = "public",
    ctx: Context | None = None,
) -> dict[str, Any]:
    """Core implementation of pgvector_insert_with_embedding for testing."""
    service = await get_search_service()
    try:
        return await service.insert_with_embedding(
            table, content, metadata, vector_column=column, schema=schema
        )
    except asyncpg.PostgresError as e:
        error = describe_store_error(e, "insert_with_embedding", table)
        await _report_failure("Insert with embedding", error, ctx)
        raise error from e


@mcp.tool()
async def pgvector_insert_with_embedding(
    table: str,
    content: str,
    metadata: dict[str, Any] | None = None,
    column: str | None = None,
    schema: str = "public",
    ctx: Context | None = None,
) -> dict[str, Any]:
    """
    Embed text with the configured provider and insert it with its vector.

    Args:
        table: Table name
        content: Text to embed and store
        metadata: Optional JSON metadata
        column: Vector column (default: SEARCH_VECTOR_COLUMN)
        schema: Schema name (default: public)
        ctx: FastMCP context for logging
    """
    return await _pgvector_insert_with_embedding_impl(
        table=table,
        content=content,
        metadata=metadata,
        column=column,
        schema=schema,
        ctx=ctx,
    )


async def _pgvector_batch_insert_impl(
    table: str,
    items: list[dict[str, Any]],
    column: str | None = None,
    schema: str = "public",
) -> dict[str, Any]:
    """Core implementation of pgvector_batch_insert for testing."""
    if not items:
        raise validation_error("items cannot be empty", field="items")

    ids = await _run_store_operation(
        "insert_vectors",
        table,
        lambda conn: VectorQueries.insert_vectors(
            conn,
            table,
            items,
            vector_column=column or config.search_vector_column,
            schema=schema,
            id_column=config.search_id_column,
        ),
    )
    return {"ids": ids, "inserted": len(ids)}


@mcp.tool()
async def pgvector_batch_insert(
    table: str,
    items: list[dict[str, Any]],
    column: str | None = None,
    schema: str = "public",
) -> dict[str, Any]:
    """
    Insert several rows in one transaction.

    Args:
        table: Table name
        items: Rows as {"vector": [...], "content": "...", "metadata": {...}}
        column: Vector column (default: SEARCH_VECTOR_COLUMN)
        schema: Schema name (default: public)
    """
    return await _pgvector_batch_insert_impl(
        table=table, items=items, column=column, schema=schema
    )


async def _pgvector_update_impl(
    table: str,
    record_id: Any,
    vector: list[float] | None = None,
    content: str | None = None,
    metadata: dict[str, Any] | None = None,
    column: str | None = None,
    schema: str = "public",
) -> dict[str, Any]:
    """Core implementation of pgvector_update for testing."""
    updated = await _run_store_operation(
        "update_vector",
        table,
        lambda conn: VectorQueries.update_vector(
            conn,
            table,
            record_id,
            embedding=vector,
            content=content,
            metadata=metadata,
            vector_column=column or config.search_vector_column,
            schema=schema,
            id_column=config.search_id_column,
        ),
    )
    return {"id": record_id, "updated": updated}


@mcp.tool()
async def pgvector_update(
    table: str,
    record_id: Any,
    vector: list[float] | None = None,
    content: str | None = None,
    metadata: dict[str, Any] | None = None,
    column: str | None = None,
    schema: str = "public",
) -> dict[str, Any]:
    """
    Update the vector, content or metadata of a row by primary key.

    Args:
        table: Table name
        record_id: Primary key of the row
        vector: New vector values
        content: New text content
        metadata: New JSON metadata
        column: Vector column (default: SEARCH_VECTOR_COLUMN)
        schema: Schema name (default: public)
    """
    return await _pgvector_update_impl(
        table=table,
        record_id=record_id,
        vector=vector,
        content=content,
        metadata=metadata,
        column=column,
        schema=schema,
    )


async def _pgvector_delete_impl(
    table: str, ids: list[Any], schema: str = "public"
) -> dict[str, Any]:
    """Core implementation of pgvector_delete for testing."""
    if not ids:
        raise validation_error("ids cannot be empty", field="ids")

    deleted = await _run_store_operation(
        "delete_vectors",
        table,
        lambda conn: VectorQueries.delete_vectors(
            conn, table, ids, schema=schema, id_column=config.search_id_column
        ),
    )
    return {"requested": len(ids), "deleted": deleted}


@mcp.tool()
async def pgvector_delete(
    table: str, ids: list[Any], schema: str = "public"
) -> dict[str, Any]:
    """
    Delete rows by primary key.

    Args:
        table: Table name
        ids: Primary keys to delete
        schema: Schema name (default: public)
    """
    return await _pgvector_delete_impl(table=table, ids=ids, schema=schema)


async def _pgvector_create_index_impl(
    table: str,
    column: str | None = None,
    index_type: str = "hnsw",
    metric: str = "cosine",
    schema: str = "public",
    index_name: str | None = None,
    m: int = 16,
    ef_construction: int = 64,
    lists: int | None = None,
    ctx: Context | None = None,
) -> dict[str, Any]:
    """Core implementation of pgvector_create_index for testing."""
    try:
        kind = IndexType(index_type.lower())
    except ValueError as e:
        raise validation_error(
            f"index_type must be 'hnsw' or 'ivfflat', got '{index_type}'",
            field="index_type",
            value=index_type,
        ) from e
    distance_metric = _parse_metric(metric)

    if ctx:
        await ctx.info(f"Creating {kind.value} index on {schema}.{table}")

    return await _run_store_operation(
        "create_index",
        table,
        lambda conn: VectorQueries.create_index(
            conn,
            table,
            column or config.search_vector_column,
            kind,
            distance_metric,
            schema=schema,
            index_name=index_name,
            hnsw_m=m,
            hnsw_ef_construction=ef_construction,
            ivfflat_lists=lists,
        ),
    )


@mcp.tool()
async def pgvector_create_index(
    table: str,
    column: str | None = None,
    index_type: str = "hnsw",
    metric: str = "cosine",
    schema: str = "public",
    index_name: str | None = None,
    m: int = 16,
    ef_construction: int = 64,
    lists: int | None = None,
    ctx: Context | None = None,
) -> dict[str, Any]:
    """
    Create an HNSW or IVFFlat index on a vector column.

    Args:
        table: Table name
        column: Vector column (default: SEARCH_VECTOR_COLUMN)
        index_type: hnsw or ivfflat (default: hnsw)
        metric: Distance metric the index serves (default: cosine)
        schema: Schema name (default: public)
        index_name: Index name (default: <table>_<column>_<type>_idx)
        m: HNSW max connections per layer
        ef_construction: HNSW candidate list size during build
        lists: IVFFlat number of lists
        ctx: FastMCP context for logging
    """
    return await _pgvector_create_index_impl(
        table=table,
        column=column,
        index_type=index_type,
        metric=metric,
        schema=schema,
        index_name=index_name,
        m=m,
        ef_construction=ef_construction,
        lists=lists,
        ctx=ctx,
    )


async def _pgvector_list_tables_impl() -> dict[str, Any]:
    """Core implementation of pgvector_list_tables for testing."""
    columns = await _run_store_operation(
        "list_vector_tables", None, VectorQueries.list_vector_tables
    )
    return {"vector_columns": columns, "total": len(columns)}


@mcp.tool()
async def pgvector_list_tables() -> dict[str, Any]:
    """List every table column of type vector."""
    return await _pgvector_list_tables_impl()


async def _pgvector_stats_impl(
    table: str, column: str | None = None, schema: str = "public"
) -> dict[str, Any]:
    """Core implementation of pgvector_stats for testing."""
    return await _run_store_operation(
        "vector_stats",
        table,
        lambda conn: VectorQueries.vector_stats(
            conn, table, column or config.search_vector_column, schema
        ),
    )


@mcp.tool()
async def pgvector_stats(
    table: str, column: str | None = None, schema: str = "public"
) -> dict[str, Any]:
    """
    Row count, missing vectors and stored dimensions of a vector column.

    Args:
        table: Table name
        column: Vector column (default: SEARCH_VECTOR_COLUMN)
        schema: Schema name (default: public)
    """
    return await _pgvector_stats_impl(table=table, column=column, schema=schema)


async def _vectorize_row_impl(
    table: str,
    record_id: Any,
    text_columns: list[str] | None = None,
    column: str | None = None,
    schema: str = "public",
    ctx: Context | None = None,
) -> dict[str, Any]:
    """Core implementation of vectorize_row for testing."""
    service = await get_search_service()
    try:
        return await service.vectorize_row(
            table, record_id, text_columns, vector_column=column, schema=schema
        )
    except ValueError as e:
        raise validation_error(str(e)) from e
    except asyncpg.PostgresError as e:
        error = describe_store_error(e, "vectorize_row", table)
        await _report_failure("Vectorize row", error, ctx)
        raise error from e


@mcp.tool()
async def vectorize_row(
    table: str,
    record_id: Any,
    text_columns: list[str] | None = None,
    column: str | None = None,
    schema: str = "public",
    ctx: Context | None = None,
) -> dict[str, Any]:
    """
    Embed the text of an existing row and save the vector on that row.

    Args:
        table: Table name
        record_id: Primary key of the row
        text_columns: Columns joined into the text to embed
            (default: SEARCH_CONTENT_COLUMN)
        column: Vector column (default: SEARCH_VECTOR_COLUMN)
        schema: Schema name (default: public)
        ctx: FastMCP context for logging
    """
    return await _vectorize_row_impl(
        table=table,
        record_id=record_id,
        text_columns=text_columns,
        column=column,
        schema=schema,
        ctx=ctx,
    )


async def _backfill_embeddings_impl(
    table: str,
    limit: int = 100,
    text_columns: list[str] | None = None,
    column: str | None = None,
    schema: str = "public",
    ctx: Context | None = None,
) -> dict[str, Any]:
    """Core implementation of backfill_embeddings for testing."""
    if ctx:
        await ctx.info(f"Backfilling up to {limit} rows of {schema}.{table}")

    service = await get_search_service()
    start_time = time.time()
    try:
        report = await service.backfill_embeddings(
            table, limit, text_columns, vector_column=column, schema=schema
        )
    except ValueError as e:
        raise validation_error(str(e)) from e
    except asyncpg.PostgresError as e:
        error = describe_store_error(e, "backfill_embeddings", table)
        await _report_failure("Backfill", error, ctx)
        raise error from e

    report["duration_ms"] = int((time.time() - start_time) * 1000)
    return report


@mcp.tool()
async def backfill_embeddings(
    table: str,
    limit: int = 100,
    text_columns: list[str] | None = None,
    column: str | None = None,
    schema: str = "public",
    ctx: Context | None = None,
) -> dict[str, Any]:
    """
    Generate embeddings for rows whose vector column is still NULL.

    Processes at most ``limit`` rows per call; call again until
    ``selected`` is 0. Rows whose embedding fails stay NULL and are listed
    in ``failed_ids``.

    Args:
        table: Table name
        limit: Maximum rows to process (default: 100)
        text_columns: Columns joined into the text to embed
            (default: SEARCH_CONTENT_COLUMN)
        column: Vector column (default: SEARCH_VECTOR_COLUMN)
        schema: Schema name (default: public)
        ctx: FastMCP context for logging
    """
    return await _backfill_embeddings_impl(
        table=table,
        limit=limit,
        text_columns=text_columns,
        column=column,
        schema=schema,
        ctx=ctx,
    )


async def _pgvector_validate_impl(
    vectors: list[list[float]],
    table: str | None = None,
    column: str | None = None,
    schema: str = "public",
) -> dict[str, Any]:
    """Core implementation of pgvector_validate for testing."""
    if not vectors:
        raise validation_error("vectors cannot be empty", field="vectors")

    expected = None
    if table:
        column = column or config.search_vector_column
        expected = await _run_store_operation(
            "column_dimensions",
            table,
            lambda conn: VectorQueries.column_dimensions(conn, table, column, schema),
        )

    report = validate_vectors(vectors, expected)
    if table:
        report["table"] = f"{schema}.{table}"
        report["column"] = column
    return report


@mcp.tool()
async def pgvector_validate(
    vectors: list[list[float]],
    table: str | None = None,
    column: str | None = None,
    schema: str = "public",
) -> dict[str, Any]:
    """
    Check vectors before inserting them.

    Reports empty vectors, NaN or infinite values, mixed sizes and, when a
    table is given, a size different from the column's declared dimensions.

    Args:
        vectors: Vectors to check
        table: Table whose vector column the vectors are meant for
        column: Vector column (default: SEARCH_VECTOR_COLUMN)
        schema: Schema name (default: public)
    """
    return await _pgvector_validate_impl(
        vectors=vectors, table=table, column=column, schema=schema
    )


async def _pgvector_normalize_impl(
    vector: list[float], method: str = "l2", decimals: int = 6
) -> dict[str, Any]:
    """Core implementation of pgvector_normalize for testing."""
    try:
        normalized = normalize_vector(vector, method.lower(), decimals)
    except ValueError as e:
        raise validation_error(str(e), field="vector") from e

    return {
        "vector": normalized,
        "method": method.lower(),
        "dimensions": len(normalized),
        "l2_norm": round(sum(x * x for x in normalized) ** 0.5, 6),
    }


@mcp.tool()
async def pgvector_normalize(
    vector: list[float], method: str = "l2", decimals: int = 6
) -> dict[str, Any]:
    """
    Normalize a vector before storing or searching with it.

    Args:
        vector: Vector values
        method: l2 (unit length), max (largest absolute value is 1),
            minmax (values in [0, 1]) or sum (absolute values sum to 1)
        decimals: Decimal places kept (default: 6)
    """
    return await _pgvector_normalize_impl(
        vector=vector, method=method, decimals=decimals
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


async def _health_check_impl(check_embeddings: bool = False) -> dict[str, Any]:
    """Core implementation of health_check for testing."""
    try:
        pool = await ensure_db_pool()
    except (ConnectionError, RuntimeError) as e:
        database: dict[str, Any] = {"healthy": False, "error": str(e)}
    else:
        database = {
            "healthy": await pool.health_check(),
            **await pool.get_pool_stats(),
        }

    service = get_embedding_service()
    report: dict[str, Any] = {
        "version": __version__,
        "database": database,
        "embedding_cache": service.cache.stats(),
    }
    healthy = database["healthy"]

    if check_embeddings:
        embeddings_healthy = await service.health_check()
        report["embeddings"] = {
            "healthy": embeddings_healthy,
            "provider": service.config.provider.value,
            "model": service.config.model,
        }
        healthy = healthy and embeddings_healthy

    report["status"] = "healthy" if healthy else "degraded"
    return report


@mcp.tool()
async def health_check(check_embeddings: bool = False) -> dict[str, Any]:
    """
    Report database pool and embedding cache status.

    Args:
        check_embeddings: Also call the embedding endpoint once
    """
    return await _health_check_impl(check_embeddings=check_embeddings)


def main() -> None:
    logger.info(f"Starting pgvector-mcp server {__version__}")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
