"""Centralized configuration using Pydantic BaseSettings"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application configuration with environment variable support"""

    # Database
    db_path: str = Field(default="./data/books.db", description="SQLite database file path")
    vector_distance_metric: str = Field(
        default="cosine", description="Distance metric for vector similarity (cosine, l2)"
    )

    # Embedding (Local model using fastembed)
    embedding_model: str = Field(
        default="BAAI/bge-small-en-v1.5", description="Local embedding model name (fastembed)"
    )
    fastembed_cache_dir: str = Field(
        default="./data/models", description="Directory to cache embedding model"
    )
    embedding_batch_size: int = Field(
        default=32, ge=1, le=256, description="Batch size for embedding generation"
    )
    embedding_dimension: int = Field(
        default=384, description="Embedding vector dimension (384 for bge-small-en-v1.5)"
    )
    embedding_threads: int = Field(
        default=6, ge=1, le=64, description="Threads used by the embedding model"
    )

    # Search
    search_oversampling_factor: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Nearest-neighbor candidates fetched per requested result before filtering",
    )
    search_max_candidates: int = Field(
        default=1000, ge=1, le=4096, description="Upper bound on nearest-neighbor candidates"
    )
    search_default_limit: int = Field(
        default=10, ge=1, le=50, description="Default maximum number of search results"
    )
    search_max_limit: int = Field(
        default=50, ge=1, le=50, description="Largest result limit a caller may request"
    )

    # Catalog
    list_default_limit: int = Field(
        default=100, ge=1, le=1000, description="Default page size when listing books"
    )
    default_language: str = Field(default="English", description="Language assigned when omitted")
    seed_file: str = Field(
        default="./data/books.json", description="JSON file with books to import when seeding"
    )

    # Server
    server_host: str = Field(default="0.0.0.0", description="Server bind address")
    server_port: int = Field(default=3000, ge=1024, le=65535, description="Server port")
    service_version: str = Field(default="1.0.0", description="Version reported by health checks")

    # OpenTelemetry
    otel_logging_enabled: bool = Field(default=False, description="Enable OpenTelemetry logging")
    otel_tracing_enabled: bool = Field(
        default=False, description="Enable OpenTelemetry tracing for requests"
    )
    otel_endpoint: str = Field(
        default="http://localhost:4318",
        description="OpenTelemetry collector endpoint (HTTP/protobuf)",
    )
    otel_service_name: str = Field(
        default="bookfinder", description="Service name for OpenTelemetry"
    )
    otel_service_version: str = Field(
        default="1.0.0", description="Service version for OpenTelemetry"
    )
    otel_log_full_results: bool = Field(
        default=False,
        description="Include full search results in telemetry logs (needed for analytics)",
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )


# Global config instance
config = AppConfig()
