"""
Search engine for text, vector and hybrid search operations.

The SearchService is the single entry point: it resolves the search mode
with the QueryRouter and dispatches to full-text ranking, nearest-neighbour
search (embedding the query first) or the HybridSearchEngine. Errors from
the store or the embedding endpoint propagate unmodified; nothing here
retries or falls back to another mode.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import asyncpg

from pgvector_mcp.core.exceptions import EmbeddingError, PgVectorMCPError, SearchError
from pgvector_mcp.core.router import QueryRouter
from pgvector_mcp.db.queries import SearchQueries, VectorQueries
from pgvector_mcp.models.search import (
    DistanceMetric,
    FusedRecord,
    QueryAnalysis,
    RetrievedRecord,
    SearchMetadata,
    SearchMode,
    SearchResponse,
)
from pgvector_mcp.services.embeddings import EmbeddingService, random_vector

logger = logging.getLogger(__name__)

DEFAULT_VECTOR_WEIGHT = 0.7
DEFAULT_TEXT_WEIGHT = 0.3
BENCHMARK_MODES = (SearchMode.TEXT, SearchMode.VECTOR, SearchMode.HYBRID)
MIN_VECTORIZE_TEXT_LENGTH = 5
MAX_EMBED_TEXT_LENGTH = 8000


class ConnectionSource(Protocol):
    """Anything handing out asyncpg connections (see mcp.context.DatabasePool)."""

    def acquire(self) -> Any: ...


@dataclass(frozen=True)
class SearchSettings:
    """Table layout and tuning shared by every search call."""

    id_column: str = "id"
    content_column: str = "content"
    vector_column: str = "embedding"
    schema: str | None = None
    text_language: str = "english"
    text_prefilter_limit: int = 100
    vector_weight: float = DEFAULT_VECTOR_WEIGHT
    text_weight: float = DEFAULT_TEXT_WEIGHT


@dataclass
class HybridResult:
    """Fused records and per-stage timings of one hybrid search."""

    results: list[FusedRecord]
    text_candidates: int = 0
    embedding_generated: bool = False
    cache_hit: bool = False
    timings: dict[str, int] = field(default_factory=dict)


def _elapsed_ms(start_time: float) -> int:
    return int((time.time() - start_time) * 1000)


def fuse_scores(
    records: list[RetrievedRecord],
    vector_weight: float = DEFAULT_VECTOR_WEIGHT,
    text_weight: float = DEFAULT_TEXT_WEIGHT,
) -> list[FusedRecord]:
    """
    Blend similarity and text rank into a final score and rank the records.

    ``final_score = vector_weight * similarity + text_weight * text_rank``.
    The sort is stable, so ties keep their nearest-neighbour order.
    Ranks are 1-based and contiguous.
    """
    fused = []
    for record in records:
        similarity = record.similarity or 0.0
        text_rank = record.text_rank or 0.0
        fused.append(
            FusedRecord(
                id=record.id,
                fields=record.fields,
                similarity=record.similarity,
                text_rank=record.text_rank,
                distance=record.distance,
                final_score=vector_weight * similarity + text_weight * text_rank,
            )
        )

    fused.sort(key=lambda r: r.final_score, reverse=True)
    for rank, record in enumerate(fused, start=1):
        record.rank = rank
    return fused


class HybridSearchEngine:
    """
    Two-stage retrieval: full-text pre-filter, then vector re-rank.

    Rows with no lexical overlap with the query are never returned, even if
    they would be close in vector space.
    """

    def __init__(
        self,
        pool: ConnectionSource,
        embedding_service: EmbeddingService,
        settings: SearchSettings | None = None,
    ):
        self.pool = pool
        self.embedding_service = embedding_service
        self.settings = settings or SearchSettings()

    async def search(
        self,
        query: str,
        collection: str,
        top_k: int = 10,
        text_prefilter_limit: int | None = None,
        use_cache: bool = True,
    ) -> HybridResult:
        """
        Run the hybrid pipeline.

        Args:
            query: Search query
            collection: Table to search
            top_k: Maximum fused results
            text_prefilter_limit: Size of the full-text candidate set
            use_cache: Use the embedding cache for the query vector

        Returns:
            HybridResult with records sorted by descending final score

        Raises:
            SearchError: If the candidate set size is not positive
        """
        settings = self.settings
        prefilter_limit = (
            settings.text_prefilter_limit
            if text_prefilter_limit is None
            else text_prefilter_limit
        )
        if prefilter_limit < 1:
            raise SearchError(
                f"text_prefilter_limit must be at least 1, got {prefilter_limit}",
                query=query,
                search_type=SearchMode.HYBRID.value,
            )

        # Stage 1: lexical candidates
        start_time = time.time()
        async with self.pool.acquire() as conn:
            candidates = await SearchQueries.text_search(
                conn,
                query,
                collection,
                settings.content_column,
                prefilter_limit,
                id_column=settings.id_column,
                vector_column=settings.vector_column,
                language=settings.text_language,
                schema=settings.schema,
            )
        timings = {"text_search_time_ms": _elapsed_ms(start_time)}
        logger.debug(f"Hybrid pre-filter: {len(candidates)} candidates")

        if not candidates:
            timings.update(embedding_time_ms=0, vector_search_time_ms=0)
            return HybridResult(results=[], timings=timings)

        # Stage 2: query embedding
        start_time = time.time()
        embedded = await self.embedding_service.embed_with_metadata(
            query, use_cache=use_cache
        )
        timings["embedding_time_ms"] = _elapsed_ms(start_time)

        # Stage 3: nearest neighbours among the candidates
        text_ranks = {record.id: record.text_rank for record in candidates}
        start_time = time.time()
        async with self.pool.acquire() as conn:
            neighbours = await SearchQueries.vector_search(
                conn,
                embedded.embedding,
                collection,
                settings.vector_column,
                top_k,
                DistanceMetric.COSINE,
                id_column=settings.id_column,
                restrict_to_ids=list(text_ranks),
                schema=settings.schema,
            )
        timings["vector_search_time_ms"] = _elapsed_ms(start_time)

        for record in neighbours:
            record.text_rank = text_ranks.get(record.id)

        # Stage 4: fusion
        results = fuse_scores(neighbours, settings.vector_weight, settings.text_weight)
        return HybridResult(
            results=results,
            text_candidates=len(candidates),
            embedding_generated=True,
            cache_hit=embedded.cached,
            timings=timings,
        )


class SearchService:
    """Main search entry point with automatic mode detection."""

    def __init__(
        self,
        pool: ConnectionSource,
        embedding_service: EmbeddingService,
        router: QueryRouter | None = None,
        settings: SearchSettings | None = None,
    ):
        self.pool = pool
        self.embedding_service = embedding_service
        self.router = router or QueryRouter()
        self.settings = settings or SearchSettings()
        self.hybrid_engine = HybridSearchEngine(
            pool, embedding_service, self.settings
        )

    async def search(
        self,
        query: str,
        collection: str,
        mode: SearchMode = SearchMode.AUTO,
        top_k: int = 10,
        enable_cache: bool = True,
    ) -> SearchResponse:
        """
        Search a collection, picking the mode automatically unless forced.

        Args:
            query: Search query
            collection: Table to search
            mode: Requested mode; ``auto`` lets the router decide
            top_k: Maximum results
            enable_cache: Use the embedding cache

        Returns:
            SearchResponse whose metadata reports the mode actually used
        """
        start_time = time.time()
        requested = SearchMode(mode)
        actual = self.router.decide_mode(query, requested)
        logger.debug(f"Search mode {actual.value} for query '{query[:50]}'")

        metadata = SearchMetadata(
            query=query, requested_mode=requested, actual_mode=actual
        )

        if actual is SearchMode.TEXT:
            results = await self.text_search(query, collection, top_k)
            metadata.text_search_time_ms = _elapsed_ms(start_time)
        elif actual is SearchMode.VECTOR:
            embed_start = time.time()
            embedded = await self.embedding_service.embed_with_metadata(
                query, use_cache=enable_cache
            )
            metadata.embedding_time_ms = _elapsed_ms(embed_start)
            metadata.embedding_generated = True
            metadata.cache_hit = embedded.cached

            vector_start = time.time()
            results = await self.vector_search(embedded.embedding, collection, top_k)
            metadata.vector_search_time_ms = _elapsed_ms(vector_start)
        else:
            hybrid = await self.hybrid_engine.search(
                query, collection, top_k, use_cache=enable_cache
            )
            results = hybrid.results
            metadata.embedding_generated = hybrid.embedding_generated
            metadata.cache_hit = hybrid.cache_hit
            metadata.text_candidates = hybrid.text_candidates
            metadata.text_search_time_ms = hybrid.timings.get("text_search_time_ms")
            metadata.embedding_time_ms = hybrid.timings.get("embedding_time_ms")
            metadata.vector_search_time_ms = hybrid.timings.get(
                "vector_search_time_ms"
            )

        metadata.total_results = len(results)
        metadata.execution_time_ms = _elapsed_ms(start_time)

        logger.info(
            f"Search completed ({actual.value}): {len(results)} results "
            f"in {metadata.execution_time_ms}ms"
        )
        return SearchResponse(results=results, metadata=metadata)

    async def text_search(
        self, query: str, collection: str, top_k: int = 10
    ) -> list[RetrievedRecord]:
        """Full-text search only."""
        async with self.pool.acquire() as conn:
            return await SearchQueries.text_search(
                conn,
                query,
                collection,
                self.settings.content_column,
                top_k,
                id_column=self.settings.id_column,
                vector_column=self.settings.vector_column,
                language=self.settings.text_language,
                schema=self.settings.schema,
            )

    async def vector_search(
        self,
        query: str | list[float],
        collection: str,
        top_k: int = 10,
        metric: DistanceMetric = DistanceMetric.COSINE,
        use_cache: bool = True,
        vector_column: str | None = None,
    ) -> list[RetrievedRecord]:
        """
        Nearest-neighbour search from a query string or a precomputed vector.
        """
        if isinstance(query, str):
            embedding = await self.embedding_service.embed(query, use_cache=use_cache)
        else:
            embedding = query

        async with self.pool.acquire() as conn:
            return await SearchQueries.vector_search(
                conn,
                embedding,
                collection,
                vector_column or self.settings.vector_column,
                top_k,
                metric,
                id_column=self.settings.id_column,
                schema=self.settings.schema,
            )

    async def random_vector_search(
        self,
        collection: str,
        dimensions: int,
        top_k: int = 5,
        metric: DistanceMetric = DistanceMetric.COSINE,
        vector_column: str | None = None,
    ) -> list[RetrievedRecord]:
        """
        Nearest neighbours of a random unit vector.

        A debugging aid for exercising indexes; never reached through mode
        routing.
        """
        logger.info(f"Random vector search on {collection} ({dimensions} dims)")
        return await self.vector_search(
            random_vector(dimensions),
            collection,
            top_k,
            metric,
            vector_column=vector_column,
        )

    def analyze_query(self, query: str) -> QueryAnalysis:
        return self.router.analyze_query(query)

    async def insert_with_embedding(
        self,
        collection: str,
        content: str,
        metadata: dict[str, Any] | None = None,
        vector_column: str | None = None,
        schema: str = "public",
    ) -> dict[str, Any]:
        """
        Embed ``content`` and store it with its vector.

        Raises:
            ValueError: If content is blank
            EmbeddingError: If the embedding cannot be generated
        """
        if not content or not content.strip():
            raise ValueError("Content is required to generate an embedding")

        embedding = await self.embedding_service.embed(content)
        async with self.pool.acquire() as conn:
            record_id = await VectorQueries.insert_vector(
                conn,
                collection,
                embedding,
                content=content,
                metadata=metadata,
                vector_column=vector_column or self.settings.vector_column,
                schema=schema,
                id_column=self.settings.id_column,
            )

        logger.info(f"Inserted record {record_id} into {collection} with embedding")
        return {"id": record_id, "dimensions": len(embedding)}

    async def vectorize_row(
        self,
        collection: str,
        record_id: Any,
        text_columns: list[str] | None = None,
        vector_column: str | None = None,
        schema: str = "public",
    ) -> dict[str, Any]:
        """
        Embed the text of an existing row and store the vector on it.

        Args:
            collection: Table holding the row
            record_id: Primary key of the row
            text_columns: Columns joined into the text to embed
                (default: the content column)
            vector_column: Column receiving the vector
            schema: Schema of the table

        Raises:
            ValueError: If the row does not exist or its text is too short
            EmbeddingError: If the embedding cannot be generated
        """
        text_columns = text_columns or [self.settings.content_column]
        async with self.pool.acquire() as conn:
            text = await VectorQueries.fetch_row_text(
                conn,
                collection,
                record_id,
                text_columns,
                schema=schema,
                id_column=self.settings.id_column,
            )
        if text is None:
            raise ValueError(f"No row with id {record_id} in {schema}.{collection}")
        text = text.strip()
        if len(text) < MIN_VECTORIZE_TEXT_LENGTH:
            raise ValueError(
                f"Row {record_id} has too little text to vectorize "
                f"({len(text)} characters)"
            )

        embedding = await self.embedding_service.embed(text[:MAX_EMBED_TEXT_LENGTH])
        async with self.pool.acquire() as conn:
            updated = await VectorQueries.update_vector(
                conn,
                collection,
                record_id,
                embedding=embedding,
                vector_column=vector_column or self.settings.vector_column,
                schema=schema,
                id_column=self.settings.id_column,
            )

        logger.info(f"Vectorized row {record_id} of {collection}")
        return {
            "id": record_id,
            "dimensions": len(embedding),
            "text_length": len(text),
            "updated": updated,
        }

    async def backfill_embeddings(
        self,
        collection: str,
        limit: int = 100,
        text_columns: list[str] | None = None,
        vector_column: str | None = None,
        schema: str = "public",
    ) -> dict[str, Any]:
        """
        Embed up to ``limit`` rows whose vector is still NULL.

        Rows without usable text are skipped. A row whose embedding fails is
        counted and left NULL; store errors abort the run.
        """
        text_columns = text_columns or [self.settings.content_column]
        vector_column = vector_column or self.settings.vector_column
        async with self.pool.acquire() as conn:
            rows = await VectorQueries.rows_missing_vectors(
                conn,
                collection,
                text_columns,
                limit,
                vector_column=vector_column,
                schema=schema,
                id_column=self.settings.id_column,
            )

        logger.info(f"Backfilling {len(rows)} rows of {collection}")
        vectorized = 0
        skipped = []
        failed = []
        for record_id, text in rows:
            text = text.strip()
            if len(text) < MIN_VECTORIZE_TEXT_LENGTH:
                skipped.append(record_id)
                continue
            try:
                embedding = await self.embedding_service.embed(
                    text[:MAX_EMBED_TEXT_LENGTH], use_cache=False
                )
            except EmbeddingError as e:
                logger.error(f"Backfill failed for row {record_id}: {e}")
                failed.append(record_id)
                continue

            async with self.pool.acquire() as conn:
                await VectorQueries.update_vector(
                    conn,
                    collection,
                    record_id,
                    embedding=embedding,
                    vector_column=vector_column,
                    schema=schema,
                    id_column=self.settings.id_column,
                )
            vectorized += 1

        logger.info(
            f"Backfill of {collection} done: {vectorized} vectorized, "
            f"{len(skipped)} skipped, {len(failed)} failed"
        )
        return {
            "selected": len(rows),
            "vectorized": vectorized,
            "skipped_ids": skipped,
            "failed_ids": failed,
        }

    async def suggestions(
        self, partial_query: str, collection: str, limit: int = 5
    ) -> list[str]:
        """Content values containing the partial query, for auto-completion."""
        async with self.pool.acquire() as conn:
            return await SearchQueries.suggestions(
                conn,
                partial_query,
                collection,
                self.settings.content_column,
                limit,
                schema=self.settings.schema,
            )

    async def benchmark(
        self, queries: list[str], collection: str, iterations: int = 3
    ) -> dict[str, Any]:
        """
        Time every explicit mode over the same queries.

        Failures count against the mode's success rate instead of aborting
        the benchmark.
        """
        if not queries:
            raise ValueError("At least one query is required")
        if iterations < 1:
            raise ValueError("iterations must be at least 1")

        logger.info(
            f"Benchmarking {len(queries)} queries x {iterations} iterations "
            f"on {collection}"
        )
        attempts = len(queries) * iterations
        report: dict[str, Any] = {}

        for mode in BENCHMARK_MODES:
            total_ms = 0.0
            successes = 0
            for _ in range(iterations):
                for query in queries:
                    start_time = time.time()
                    try:
                        await self.search(query, collection, mode=mode)
                    except (PgVectorMCPError, asyncpg.PostgresError, ValueError) as e:
                        logger.warning(
                            f"Benchmark {mode.value} failed for '{query}': {e}"
                        )
                        continue
                    total_ms += (time.time() - start_time) * 1000
                    successes += 1

            report[mode.value] = {
                "avg_time_ms": round(total_ms / successes, 2) if successes else None,
                "success_rate": round(successes / attempts * 100, 1),
            }

        timed = {
            name: stats["avg_time_ms"]
            for name, stats in report.items()
            if stats["avg_time_ms"] is not None
        }
        report["fastest"] = min(timed, key=timed.get) if timed else None
        return report
