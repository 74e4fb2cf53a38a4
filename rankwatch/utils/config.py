"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.
"""

from typing import Optional
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Database (PostgreSQL in production, SQLite fallback)
    DATABASE_URL: Optional[str] = None
    SQLITE_PATH: str = "rankwatch_dev.db"
    SQL_DEBUG: bool = False

    # Rank-check provider
    RANK_API_PROVIDER: str = "dataforseo"
    DATAFORSEO_LOGIN: Optional[str] = None
    DATAFORSEO_PASSWORD: Optional[str] = None
    DEFAULT_LOCATION: str = "United States"
    DEFAULT_LOCATION_CODE: int = 2840
    DEFAULT_LANGUAGE: str = "en"
    RANK_CHECK_DEPTH: int = 100
    API_TIMEOUT: int = 90

    # Store upsert bounds
    STORE_TIMEOUT_SECONDS: float = 10.0
    STORE_MAX_ATTEMPTS: int = 4
    STORE_RETRY_INITIAL_DELAY: float = 0.5
    STORE_RETRY_MAX_DELAY: float = 8.0

    # Collector
    COLLECTOR_CONCURRENCY: int = 5

    # Application Settings
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False  # Allow both UPPERCASE and lowercase


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
