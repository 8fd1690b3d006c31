"""Application settings loaded from environment variables and .env file."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the profile aggregator."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    github_token: str | None = None
    max_batch_size: int = Field(default=10, gt=0)
    # None launches one worker per batch
    max_concurrent_batches: int | None = Field(default=None, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)
    language_colors_path: Path | None = None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
