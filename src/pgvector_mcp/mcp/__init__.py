"""
MCP (Model Context Protocol) server for pgvector search.

Provides intelligent text / vector / hybrid search and pgvector
administration tools. All configuration comes from MCP client
environment variables.

Usage:
    python -m pgvector_mcp.mcp

Configuration:
    Set environment variables in your MCP client configuration:
    - DATABASE_URL (required): PostgreSQL connection string
    - EMBEDDING_API_KEY: Bearer token for OpenAI-compatible endpoints
    - SEARCH_DEFAULT_COLLECTION (optional): Table searched by default
    - See config.py for full list of options
"""

from .config import MCPConfig
from .context import DatabasePool

__all__ = ["MCPConfig", "DatabasePool"]
