"""
Main entry point for MCP server.

Run with: python -m pgvector_mcp.mcp
"""

from .server import main

if __name__ == "__main__":
    main()
