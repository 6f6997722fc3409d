"""
MCP server configuration module.

Reads ONLY from environment variables passed by MCP client.
No .env file dependency - all configuration comes from MCP client settings.
"""

import os
from dataclasses import dataclass
from typing import ClassVar
from urllib.parse import quote

from pgvector_mcp.core.exceptions import ConfigurationError
from pgvector_mcp.core.search_engine import SearchSettings
from pgvector_mcp.db.queries import MAX_LIMIT, TEXT_LANGUAGE_RE
from pgvector_mcp.services.embeddings import EmbeddingConfig, EmbeddingProvider


def _build_database_url() -> str | None:
    """Assemble a DSN from the POSTGRES_* variables, if any are set."""
    host = os.getenv("POSTGRES_HOST")
    if not host:
        return None
    port = os.getenv("POSTGRES_PORT", "5432")
    user = os.getenv("POSTGRES_USER", "postgres")
    password = os.getenv("POSTGRES_PASSWORD", "")
    database = os.getenv("POSTGRES_DATABASE", "postgres")

    credentials = quote(user, safe="")
    if password:
        credentials += f":{quote(password, safe='')}"
    return f"postgresql://{credentials}@{host}:{port}/{database}"


@dataclass
class MCPConfig:
    """
    Configuration for the MCP server.

    All settings loaded from environment variables passed by MCP client.
    No .env file required.

    Database (one of):
        DATABASE_URL: PostgreSQL connection string
        POSTGRES_HOST, POSTGRES_PORT, POSTGRES_USER, POSTGRES_PASSWORD,
        POSTGRES_DATABASE: Parts of the connection string

    Optional Environment Variables:
        DB_POOL_MIN_SIZE: Minimum connection pool size (default: 2)
        DB_POOL_MAX_SIZE: Maximum connection pool size (default: 10)
        DB_POOL_TIMEOUT: Connection acquisition timeout in seconds (default: 30)
        EMBEDDING_PROVIDER: openai or ollama (default: openai)
        EMBEDDING_API_URL: Embedding endpoint base URL (provider default)
        EMBEDDING_API_KEY: Bearer token (falls back to OPENAI_API_KEY)
        EMBEDDING_MODEL: Embedding model (default: text-embedding-3-small)
        EMBEDDING_DIMENSIONS: Vector size (default: 1536)
        EMBEDDING_TIMEOUT: Embedding request timeout in seconds (default: 30)
        EMBEDDING_CACHE_SIZE: Cached query embeddings (default: 1000)
        SEARCH_DEFAULT_COLLECTION: Table searched when none is given
        SEARCH_ID_COLUMN: Primary key column (default: id)
        SEARCH_CONTENT_COLUMN: Text column (default: content)
        SEARCH_VECTOR_COLUMN: Vector column (default: embedding)
        SEARCH_DEFAULT_LIMIT: Default number of search results (default: 10)
        SEARCH_MAX_LIMIT: Maximum number of search results (default: 100)
        SEARCH_TEXT_PREFILTER_LIMIT: Hybrid candidate set size (default: 100)
        SEARCH_TEXT_LANGUAGE: Full-text configuration (default: english)
        HYBRID_VECTOR_WEIGHT: Weight of similarity in hybrid score (default: 0.7)
        HYBRID_TEXT_WEIGHT: Weight of text rank in hybrid score (default: 0.3)
        MCP_LOG_LEVEL: Logging level (default: INFO)
    """

    # Required settings
    database_url: str

    # Optional settings with defaults
    db_pool_min_size: int = 2
    db_pool_max_size: int = 10
    db_pool_timeout: int = 30
    embedding_provider: str = "openai"
    embedding_api_url: str | None = None
    embedding_api_key: str | None = None
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_timeout: float = 30.0
    embedding_cache_size: int = 1000
    search_default_collection: str | None = None
    search_id_column: str = "id"
    search_content_column: str = "content"
    search_vector_column: str = "embedding"
    search_default_limit: int = 10
    search_max_limit: int = 100
    search_text_prefilter_limit: int = 100
    search_text_language: str = "english"
    hybrid_vector_weight: float = 0.7
    hybrid_text_weight: float = 0.3
    log_level: str = "INFO"

    # Class constants
    VALID_LOG_LEVELS: ClassVar[tuple[str, ...]] = (
        "DEBUG",
        "INFO",
        "WARNING",
        "ERROR",
        "CRITICAL",
    )

    @classmethod
    def from_env(cls) -> "MCPConfig":
        """
        Load configuration from environment variables.

        Raises:
            ConfigurationError: If required environment variables are missing
            ConfigurationError: If configuration values are invalid

        Returns:
            MCPConfig instance with validated settings
        """
        database_url = os.getenv("DATABASE_URL") or _build_database_url()
        if not database_url:
            raise ConfigurationError(
                "DATABASE_URL environment variable is required "
                "(or POSTGRES_HOST and friends). "
                "Set it in your MCP client configuration."
            )

        try:
            db_pool_min_size = int(os.getenv("DB_POOL_MIN_SIZE", "2"))
            db_pool_max_size = int(os.getenv("DB_POOL_MAX_SIZE", "10"))
            db_pool_timeout = int(os.getenv("DB_POOL_TIMEOUT", "30"))
            embedding_dimensions = int(os.getenv("EMBEDDING_DIMENSIONS", "1536"))
            embedding_timeout = float(os.getenv("EMBEDDING_TIMEOUT", "30"))
            embedding_cache_size = int(os.getenv("EMBEDDING_CACHE_SIZE", "1000"))
            search_default_limit = int(os.getenv("SEARCH_DEFAULT_LIMIT", "10"))
            search_max_limit = int(os.getenv("SEARCH_MAX_LIMIT", "100"))
            search_text_prefilter_limit = int(
                os.getenv("SEARCH_TEXT_PREFILTER_LIMIT", "100")
            )
            hybrid_vector_weight = float(os.getenv("HYBRID_VECTOR_WEIGHT", "0.7"))
            hybrid_text_weight = float(os.getenv("HYBRID_TEXT_WEIGHT", "0.3"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration value: {e}") from e

        # Validate pool sizes
        if db_pool_min_size < 1:
            raise ConfigurationError("DB_POOL_MIN_SIZE must be at least 1")
        if db_pool_max_size < db_pool_min_size:
            raise ConfigurationError(
                f"DB_POOL_MAX_SIZE ({db_pool_max_size}) must be >= "
                f"DB_POOL_MIN_SIZE ({db_pool_min_size})"
            )

        # Validate search limits
        if search_default_limit < 1 or search_default_limit > search_max_limit:
            raise ConfigurationError(
                f"SEARCH_DEFAULT_LIMIT ({search_default_limit}) must be "
                f"between 1 and SEARCH_MAX_LIMIT ({search_max_limit})"
            )

        search_text_language = os.getenv("SEARCH_TEXT_LANGUAGE", "english").lower()
        if not TEXT_LANGUAGE_RE.match(search_text_language):
            raise ConfigurationError(
                f"SEARCH_TEXT_LANGUAGE ({search_text_language!r}) must be a text "
                "search configuration name such as english or french"
            )

        return cls(
            database_url=database_url,
            db_pool_min_size=db_pool_min_size,
            db_pool_max_size=db_pool_max_size,
            db_pool_timeout=db_pool_timeout,
            embedding_provider=os.getenv("EMBEDDING_PROVIDER", "openai").lower(),
            embedding_api_url=os.getenv("EMBEDDING_API_URL") or None,
            embedding_api_key=(
                os.getenv("EMBEDDING_API_KEY") or os.getenv("OPENAI_API_KEY") or None
            ),
            embedding_model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
            embedding_dimensions=embedding_dimensions,
            embedding_timeout=embedding_timeout,
            embedding_cache_size=embedding_cache_size,
            search_default_collection=os.getenv("SEARCH_DEFAULT_COLLECTION") or None,
            search_id_column=os.getenv("SEARCH_ID_COLUMN", "id"),
            search_content_column=os.getenv("SEARCH_CONTENT_COLUMN", "content"),
            search_vector_column=os.getenv("SEARCH_VECTOR_COLUMN", "embedding"),
            search_default_limit=search_default_limit,
            search_max_limit=search_max_limit,
            search_text_prefilter_limit=search_text_prefilter_limit,
            search_text_language=search_text_language,
            hybrid_vector_weight=hybrid_vector_weight,
            hybrid_text_weight=hybrid_text_weight,
            log_level=os.getenv("MCP_LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> None:
        """
        Validate configuration after loading.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        # Validate database URL format
        if not self.database_url.startswith(("postgresql://", "postgres://")):
            raise ConfigurationError("DATABASE_URL must start with 'postgresql://'")

        # Validate embedding settings
        valid_providers = [provider.value for provider in EmbeddingProvider]
        if self.embedding_provider not in valid_providers:
            raise ConfigurationError(
                f"EMBEDDING_PROVIDER must be one of: {', '.join(valid_providers)}"
            )
        if self.embedding_api_url and not self.embedding_api_url.startswith(
            ("http://", "https://")
        ):
            raise ConfigurationError("EMBEDDING_API_URL must be a valid HTTP(S) URL")
        if self.embedding_dimensions < 1:
            raise ConfigurationError("EMBEDDING_DIMENSIONS must be at least 1")
        if self.embedding_timeout <= 0:
            raise ConfigurationError("EMBEDDING_TIMEOUT must be positive")
        if self.embedding_cache_size < 1:
            raise ConfigurationError("EMBEDDING_CACHE_SIZE must be at least 1")

        # Validate hybrid weights
        for name, weight in (
            ("HYBRID_VECTOR_WEIGHT", self.hybrid_vector_weight),
            ("HYBRID_TEXT_WEIGHT", self.hybrid_text_weight),
        ):
            if not 0.0 <= weight <= 1.0:
                raise ConfigurationError(
                    f"{name} ({weight}) must be between 0.0 and 1.0"
                )

        # Validate search limits against what the queries accept
        for name, limit in (
            ("SEARCH_MAX_LIMIT", self.search_max_limit),
            ("SEARCH_TEXT_PREFILTER_LIMIT", self.search_text_prefilter_limit),
        ):
            if not 1 <= limit <= MAX_LIMIT:
                raise ConfigurationError(
                    f"{name} ({limit}) must be between 1 and {MAX_LIMIT}"
                )
        if not 1 <= self.search_default_limit <= self.search_max_limit:
            raise ConfigurationError(
                f"SEARCH_DEFAULT_LIMIT ({self.search_default_limit}) must be "
                f"between 1 and SEARCH_MAX_LIMIT ({self.search_max_limit})"
            )

        # Validate log level
        if self.log_level not in self.VALID_LOG_LEVELS:
            raise ConfigurationError(
                f"MCP_LOG_LEVEL must be one of: {', '.join(self.VALID_LOG_LEVELS)}"
            )

    @property
    def database_host(self) -> str:
        """Database URL without credentials, safe to log."""
        return self.database_url.rsplit("@", 1)[-1]

    def embedding_config(self) -> EmbeddingConfig:
        return EmbeddingConfig(
            provider=EmbeddingProvider(self.embedding_provider),
            api_url=self.embedding_api_url,
            api_key=self.embedding_api_key,
            model=self.embedding_model,
            dimensions=self.embedding_dimensions,
            timeout=self.embedding_timeout,
            cache_size=self.embedding_cache_size,
        )

    def search_settings(self) -> SearchSettings:
        return SearchSettings(
            id_column=self.search_id_column,
            content_column=self.search_content_column,
            vector_column=self.search_vector_column,
            text_language=self.search_text_language,
            text_prefilter_limit=self.search_text_prefilter_limit,
            vector_weight=self.hybrid_vector_weight,
            text_weight=self.hybrid_text_weight,
        )
