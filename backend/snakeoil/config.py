"""Application Configuration - environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache) - single instance per process

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - Defaults provided for all non-secret settings: works out-of-the-box with docker-compose
    - feed_transport=memory is single-process only; multi-worker deployments
      must use postgres (LISTEN/NOTIFY on the same database)
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from snakeoil.core.domain_types import ROLES_PER_ROUND, WORDS_PER_ROUND


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str = (
        "postgresql+asyncpg://snakeoil:snakeoil@db:5432/snakeoil"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosted providers hand out postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Change feed
    feed_transport: Literal["memory", "postgres"] = "memory"
    feed_max_retries: int = Field(5, ge=0)
    feed_base_delay_ms: int = Field(250, ge=1)
    feed_max_delay_ms: int = Field(10_000, ge=1)

    # Game content
    roles_per_round: int = Field(ROLES_PER_ROUND, ge=1)
    words_per_round: int = Field(WORDS_PER_ROUND, ge=2)
    chat_max_length: int = Field(500, ge=1)

    # API
    cors_origins: list[str] = ["http://localhost:5173"]

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
