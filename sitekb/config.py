"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Google Cloud
    google_cloud_project: str = ""

    # Gemini API
    gemini_region: str = "europe-west1"
    gemini_model: str = "gemini-2.0-flash"

    # Cloud Storage
    gcs_bucket_name: str = ""

    # Pub/Sub ingestion queue
    pubsub_topic: str = ""

    # Application
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8080
    log_level: str = "INFO"

    # CORS
    cors_origins: str = "http://localhost:3000,http://localhost:8080"

    # Rate limiting
    chat_rate_limit: str = "30/minute"

    # Fetcher
    fetch_timeout_seconds: float = 15.0
    fetch_max_attempts: int = 3
    fetch_retry_delay_seconds: float = 1.0
    fetch_forbidden_cooldown_seconds: float = 5.0

    # Crawler
    crawl_max_pages: int = 50
    crawl_max_depth: int = 3
    crawl_max_seconds: float = 300.0
    crawl_politeness_delay_seconds: float = 1.0

    # Page cache
    page_cache_ttl_hours: float = 24.0

    # Retrieval
    context_max_chars: int = 8000
    retrieval_top_n: int = 5
    snippet_max_chars: int = 1500

    # Extracted text kept on a record, under the Firestore document size limit
    stored_text_max_chars: int = 200_000

    # Housekeeping
    stale_processing_minutes: int = 60

    # Admin endpoints (housekeeping)
    admin_api_token: str = ""

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",")]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
