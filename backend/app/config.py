"""Application configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings are loaded in this priority order (highest to lowest):
    1. Environment variables
    2. .env file (for local development)
    3. Default values

    For local development, copy .env.example to .env and fill in your values.
    For production, set environment variables directly.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # Application
    # =========================================================================
    app_name: str = "Practice Timelines API"
    debug: bool = False

    # =========================================================================
    # Database
    # =========================================================================
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/practice",
        description="PostgreSQL connection URL",
    )

    # =========================================================================
    # CORS
    # =========================================================================
    cors_origins: list[str] = ["http://localhost:3000"]

    # =========================================================================
    # API Settings
    # =========================================================================
    api_v1_prefix: str = "/api/v1"

    # =========================================================================
    # Timeline generation
    # =========================================================================
    # One-time obligations are due this many days after they are assigned.
    one_time_grace_days: int = Field(default=30, ge=0)

    # =========================================================================
    # Bulk import
    # =========================================================================
    import_chunk_size: int = Field(default=100, ge=1)
    import_chunk_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Budget for persisting one chunk of imported records",
    )
    storage_retry_attempts: int = Field(default=3, ge=1)

    # =========================================================================
    # Duplicate reconciliation
    # =========================================================================
    reconcile_delete_batch_size: int = Field(default=500, ge=1)

    # =========================================================================
    # Scheduler
    # =========================================================================
    # Disable in environments where another instance owns the timers. Running
    # it in several instances is still safe (generation is idempotent).
    scheduler_enabled: bool = True
    scheduler_timezone: str = "Asia/Kolkata"


settings = Settings()
