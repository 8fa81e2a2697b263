"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Server
    API_BASE_URL: str = "http://localhost:5000"

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Persisted auth cache (survives process restarts)
    AUTH_CACHE_PATH: str = str(Path.home() / ".salesboost" / "auth.json")
    AUTH_CACHE_KEY: str = "salesSpark_auth"
    AUTH_CACHE_MAX_AGE_MS: int = 24 * 60 * 60 * 1000

    # HTTP transport
    HTTP_TIMEOUT: float = 10.0

    # Delay before the post-login session verification round-trip
    SESSION_VERIFY_DELAY: float = 0.1


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
