"""
Application settings using Pydantic.

Provides environment-based configuration loading with STACKPLAN_ prefix.
CLI flags override these values for a single invocation.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="STACKPLAN_",
    )

    # Configuration document used when -c/--config is not given
    default_config: str = "stack.yaml"

    # Executor
    parallelism: int = 10
    max_retries: int = 3
    retry_backoff_min: float = 1.0
    retry_backoff_max: float = 30.0
    retry_backoff_multiplier: float = 2.0

    # State locking (lock_timeout=0 means fail fast)
    lock_timeout: float = 0.0
    lock_poll_interval: float = 1.0

    # Remote state
    redis_url: str = "redis://localhost:6379/0"

    # Provider lock file written by `init`
    provider_lock_path: str = ".stackplan.lock.json"

    # Logging
    log_level: str = "WARNING"
    log_format: str = "json"  # json, console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
