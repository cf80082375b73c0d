"""Application configuration management using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "telo-auth"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # Identity service
    api_base_url: str = "http://localhost:3000/api"
    request_timeout: float = 10.0

    # Token storage
    session_store_path: str = ".telo/session.json"
    storage_key_prefix: str = "telo_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
