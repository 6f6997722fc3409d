"""
Data models for the pgvector MCP server.

Search requests, retrieved records and search metadata.
"""

from pgvector_mcp.models.search import (
    DistanceMetric,
    FusedRecord,
    IndexType,
    QueryAnalysis,
    RetrievedRecord,
    SearchMetadata,
    SearchMode,
    SearchRequest,
    SearchResponse,
)

__all__ = [
    "DistanceMetric",
    "FusedRecord",
    "IndexType",
    "QueryAnalysis",
    "RetrievedRecord",
    "SearchMetadata",
    "SearchMode",
    "SearchRequest",
    "SearchResponse",
]
