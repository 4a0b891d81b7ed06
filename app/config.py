"""Application configuration."""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_env: str = "development"
    database_url: str = "sqlite:///./vector_import.db"
    log_file: str = "app.log"

    # Redis (job store, vector sets and Celery broker)
    redis_url: str = "redis://localhost:6379/0"

    # Import processing
    export_dir: str = "./exports"
    import_log_max_entries: int = 100
    pause_poll_interval: float = 1.0
    error_backoff: float = 1.0
    # Seconds a worker claim on a job lives without being refreshed
    worker_lease_ttl: int = 60
    max_upload_bytes: int = 100 * 1024 * 1024

    # Embedding providers
    openai_api_url: str = "https://api.openai.com/v1/embeddings"
    openai_api_key: Optional[str] = None
    embedding_timeout: float = 30.0

    # Webhooks
    webhook_timeout: float = 5.0

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
