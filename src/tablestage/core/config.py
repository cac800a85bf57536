"""Configuration management.

Uses pydantic-settings for type-safe configuration from environment variables.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class IdentityFallback(str, Enum):
    """What to do when a table has no known primary key.

    Without a primary key, updates and deletes identify a row by every one of
    its column values, which can hit several duplicate rows at once.
    """

    ALLOW = "allow"  # Use the whole row silently
    WARN = "warn"  # Use the whole row and log a warning
    REFUSE = "refuse"  # Reject the edit


class Settings(BaseSettings):
    """Engine settings.

    All settings can be overridden via environment variables.
    Prefix: TABLESTAGE_
    """

    model_config = SettingsConfigDict(
        env_prefix="TABLESTAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Pagination
    default_page_size: int = Field(
        default=200,
        ge=1,
        description="Rows per page for a freshly opened table",
    )

    # Row counting
    exact_count_threshold: int = Field(
        default=500_000,
        ge=0,
        description="Estimated row count at or below which an exact COUNT(*) is run automatically",
    )

    # Staging
    identity_fallback: IdentityFallback = Field(
        default=IdentityFallback.WARN,
        description="Policy for tables without a primary key",
    )

    # Query history
    history_limit: int = Field(
        default=500,
        ge=1,
        description="Maximum number of entries kept in the query history",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")  # 'json' or 'console'


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
