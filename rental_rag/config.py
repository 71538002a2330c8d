"""
Configuration management for the Rental RAG system.
Loads environment variables and provides typed configuration objects.
"""

from typing import Literal
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main application settings loaded from environment variables with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True
    )

    # Embeddings (Voyage AI REST endpoint)
    voyage_api_key: str = Field(default="", description="Voyage AI API key for embeddings")
    embedding_api_url: str = Field(
        default="https://api.voyageai.com/v1/embeddings",
        description="Embedding endpoint accepting {model, input}"
    )
    embedding_model: str = Field(default="voyage-3.5", description="Embedding model name")
    embedding_dimension: int = Field(default=1024, description="Embedding vector dimensionality")
    embedding_timeout_seconds: float = Field(default=30.0, description="Embedding request timeout")
    embedding_max_concurrency: int = Field(default=4, ge=1, description="Concurrent embedding requests")

    # Chat completion (Anthropic)
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    chat_model: str = Field(default="claude-sonnet-4-5", description="Chat completion model")
    chat_temperature: float = Field(default=0.7, ge=0.0, le=1.0, description="Chat temperature")
    chat_max_tokens: int = Field(default=2048, description="Max tokens for chat completion")
    chat_timeout_seconds: float = Field(default=60.0, description="Chat completion timeout")

    # Vector index
    index_backend: Literal["pinecone", "memory"] = Field(default="memory", description="Index store backend")
    pinecone_api_key: str = Field(default="", description="Pinecone API key")
    pinecone_index_name: str = Field(default="rental-rag", description="Pinecone index name")
    pinecone_cloud: str = Field(default="aws", description="Pinecone serverless cloud")
    pinecone_region: str = Field(default="us-east-1", description="Pinecone serverless region")
    pinecone_namespace_prefix: str = Field(default="tenant_", description="Namespace prefix per tenant")

    # Source database
    database_url: str = Field(default="sqlite:///./rental_rag.db", description="Database URL")
    store_timeout_seconds: float = Field(default=15.0, description="Database and index call timeout")

    # Pipeline tuning
    reindex_batch_size: int = Field(default=50, ge=1, description="Records per embedding batch")
    reindex_max_concurrent_tenants: int = Field(default=1, ge=1, description="Tenants reindexed in parallel")
    sync_batch_limit: int = Field(default=100, ge=1, description="Queue items per drain")
    sync_interval_seconds: float = Field(default=30.0, description="Scheduled drain interval")
    retrieval_similarity_floor: float = Field(default=0.7, description="Minimum cosine similarity")
    retrieval_top_k: int = Field(default=8, ge=1, description="Documents retrieved per query")
    history_window: int = Field(default=10, ge=0, description="Conversation turns sent to the model")
    chart_strip_malformed: bool = Field(
        default=True,
        description="Remove a chart block that fails to parse; when false the raw reply is kept"
    )

    # Celery Task Queue
    celery_broker_url: str = Field(default="redis://localhost:6379/1", description="Celery broker URL")
    celery_result_backend: str = Field(default="redis://localhost:6379/2", description="Celery result backend")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL for job locks")
    sync_lock_timeout_seconds: int = Field(default=300, description="Drain lock expiry")

    # Application Settings
    api_secret_key: str = Field(default="dev-secret-change-in-production", description="Bearer token for the API")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    log_level: str = Field(default="INFO", description="Logging level")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"


# Global settings instance
settings = Settings()
