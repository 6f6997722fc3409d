"""
Search models shared by the router, the retrieval queries and the MCP tools.

Requests are validated Pydantic models. Records coming back from the store
are plain dataclasses: the ranking code only ever reads the primary key,
``similarity`` and ``text_rank``; every other column travels untouched in
``fields``.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SearchMode(str, Enum):
    """Search modes understood by the search service."""

    AUTO = "auto"
    TEXT = "text"
    VECTOR = "vector"
    HYBRID = "hybrid"


class DistanceMetric(str, Enum):
    """pgvector distance operators."""

    COSINE = "cosine"
    L2 = "l2"
    INNER_PRODUCT = "inner_product"

    @property
    def operator(self) -> str:
        return {
            DistanceMetric.COSINE: "<=>",
            DistanceMetric.L2: "<->",
            DistanceMetric.INNER_PRODUCT: "<#>",
        }[self]

    @property
    def index_ops(self) -> str:
        """Operator class used when indexing a column for this metric."""
        return {
            DistanceMetric.COSINE: "vector_cosine_ops",
            DistanceMetric.L2: "vector_l2_ops",
            DistanceMetric.INNER_PRODUCT: "vector_ip_ops",
        }[self]

    @classmethod
    def from_operator(cls, value: str) -> "DistanceMetric":
        """Accept either a metric name or its SQL operator (``<=>``)."""
        for metric in cls:
            if value in (metric.value, metric.operator):
                return metric
        raise ValueError(f"Unsupported distance metric: {value}")


class IndexType(str, Enum):
    """Approximate nearest-neighbour index types."""

    HNSW = "hnsw"
    IVFFLAT = "ivfflat"


class SearchRequest(BaseModel):
    """A single search call. Immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    query: str = Field(..., min_length=1, description="Search query text")
    collection: str = Field(..., min_length=1, description="Target table")
    mode: SearchMode = Field(default=SearchMode.AUTO)
    top_k: int = Field(default=10, ge=1, le=1000)
    enable_cache: bool = Field(default=True)

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        """Reject blank queries."""
        if not v.strip():
            raise ValueError("Query cannot be empty")
        return v


@dataclass
class RetrievedRecord:
    """A row returned by a text or vector retrieval call."""

    id: Any
    fields: dict[str, Any] = field(default_factory=dict)
    similarity: float | None = None
    text_rank: float | None = None
    distance: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Flatten payload columns and scores into one mapping."""
        data = {"id": self.id, **self.fields}
        for key in ("similarity", "text_rank", "distance"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass
class FusedRecord(RetrievedRecord):
    """A hybrid result carrying the blended score and its 1-based rank."""

    final_score: float = 0.0
    rank: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["final_score"] = self.final_score
        data["rank"] = self.rank
        return data


@dataclass(frozen=True)
class QueryAnalysis:
    """Advisory classification of a query. Not a calibrated probability."""

    recommended_mode: SearchMode
    confidence: float
    rationale: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommended_mode": self.recommended_mode.value,
            "confidence": self.confidence,
            "rationale": list(self.rationale),
            "suggestions": list(self.suggestions),
        }


@dataclass
class SearchMetadata:
    """Execution metadata returned alongside search results."""

    query: str
    requested_mode: SearchMode
    actual_mode: SearchMode
    execution_time_ms: int = 0
    total_results: int = 0
    embedding_generated: bool = False
    cache_hit: bool = False
    embedding_time_ms: int | None = None
    text_search_time_ms: int | None = None
    vector_search_time_ms: int | None = None
    text_candidates: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["requested_mode"] = self.requested_mode.value
        data["actual_mode"] = self.actual_mode.value
        return {key: value for key, value in data.items() if value is not None}


@dataclass
class SearchResponse:
    """Results plus metadata for one search call."""

    results: list[RetrievedRecord]
    metadata: SearchMetadata

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [record.to_dict() for record in self.results],
            "metadata": self.metadata.to_dict(),
        }
