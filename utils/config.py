"""
Configuration Utility - Environment Variables Management

Centralized configuration loading from .env files using pydantic-settings.
Type-safe access to all environment variables with validation. Settings are
validated once, the first time get_settings() is called.

Usage:
    from utils.config import get_settings

    settings = get_settings()
    origin = settings.API_ORIGIN
    db_path = settings.SQLITE_PATH
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Feed API Configuration
    API_ORIGIN: str = Field(default="http://localhost:3000")
    TARGET_API_KEY: str = Field(..., min_length=1)
    FEED_LIMIT: int = Field(default=5000, gt=0)
    REQUEST_TIMEOUT_MS: int = Field(default=30_000, gt=0)

    # Ingestion Configuration
    PROGRESS_NAME: str = Field(default="events", min_length=1)
    INGEST_SCHEDULE_CRON: str = Field(default="*/15 * * * *")
    RUN_ONCE: bool = Field(default=False)

    # Database Configuration
    SQLITE_PATH: str = Field(default="/app/data/db/ingestion.db")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")

    # Application Metadata
    ENVIRONMENT: str = Field(default="production")
    APP_NAME: str = Field(default="datasync-ingestor")
    APP_VERSION: str = Field(default="0.1.0")

    @field_validator("API_ORIGIN")
    @classmethod
    def strip_origin(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("API_ORIGIN must be an http(s) URL")
        return v

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance

    Raises:
        pydantic.ValidationError: If a required variable is missing or invalid
    """
    return Settings()
