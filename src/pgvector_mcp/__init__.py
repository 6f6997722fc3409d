"""
pgvector MCP Server

A Model Context Protocol server giving LLM clients text, vector and hybrid
search over PostgreSQL tables with the pgvector extension.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
