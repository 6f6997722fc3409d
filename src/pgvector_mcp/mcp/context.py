"""
Database connection pool management for MCP server.

Provides async connection pool lifecycle management using asyncpg.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import asyncpg

from .config import MCPConfig

logger = logging.getLogger(__name__)

STATEMENT_TIMEOUT = "60s"
COMMAND_TIMEOUT = 60


class DatabasePool:
    """
    Manages the PostgreSQL connection pool for the MCP server.

    One pool per process, created lazily by the server on first use and
    shared by the search service and the vector store tools.
    """

    def __init__(self, config: MCPConfig) -> None:
        self.config = config
        self.pool: asyncpg.Pool | None = None
        self.pgvector_version: str | None = None

    async def connect(self) -> None:
        """
        Initialize the connection pool.

        Raises:
            ConnectionError: If unable to connect to database
        """
        logger.info(
            f"Creating database pool (min={self.config.db_pool_min_size}, "
            f"max={self.config.db_pool_max_size})"
        )
        try:
            self.pool = await asyncpg.create_pool(
                dsn=self.config.database_url,
                min_size=self.config.db_pool_min_size,
                max_size=self.config.db_pool_max_size,
                timeout=self.config.db_pool_timeout,
                command_timeout=COMMAND_TIMEOUT,
                init=self._init_connection,
            )
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Failed to create database pool: {e}")
            raise ConnectionError(f"Database connection failed: {e}") from e

        try:
            async with self.acquire() as conn:
                self.pgvector_version = await conn.fetchval(
                    "SELECT extversion FROM pg_extension WHERE extname = 'vector'"
                )
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Failed to query the new database pool: {e}")
            await self.disconnect()
            raise ConnectionError(f"Database connection failed: {e}") from e

        if self.pgvector_version:
            logger.info(f"Database pool ready, pgvector {self.pgvector_version}")
        else:
            logger.warning(
                "Database pool ready but the pgvector extension is not installed"
            )

    async def _init_connection(self, conn: asyncpg.Connection) -> None:
        await conn.execute(f"SET statement_timeout = '{STATEMENT_TIMEOUT}'")

    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self.pool:
            logger.info("Closing database pool")
            await self.pool.close()
            self.pool = None

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Acquire a connection from the pool.

        Usage:
            async with db_pool.acquire() as conn:
                rows = await conn.fetch("SELECT * FROM documents")

        Raises:
            RuntimeError: If pool is not initialized
        """
        if not self.pool:
            raise RuntimeError("Database pool not initialized. Call connect() first.")

        async with self.pool.acquire() as conn:
            yield conn

    async def health_check(self) -> bool:
        """
        Check if database connection is healthy.

        Returns:
            True if database is accessible, False otherwise
        """
        if not self.pool:
            return False
        try:
            async with self.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def is_connected(self) -> bool:
        return self.pool is not None

    async def get_pool_stats(self) -> dict[str, object]:
        """Connection pool statistics."""
        if not self.pool:
            return {"status": "not_connected"}

        return {
            "status": "connected",
            "min_size": self.pool.get_min_size(),
            "max_size": self.pool.get_max_size(),
            "size": self.pool.get_size(),
            "free_size": self.pool.get_idle_size(),
            "pgvector_version": self.pgvector_version,
        }
