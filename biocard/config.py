"""
Configuration and settings for the bio card backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Sessions
    token_max_per_account: int = Field(default=10, ge=1)
    token_lifetime_days: int = Field(default=7, ge=1)
    token_cleanup_enabled: bool = Field(default=True)
    token_cleanup_interval_seconds: int = Field(default=3600, ge=1)

    # Cache
    cache_enabled: bool = Field(default=True)
    cache_expiration_minutes: int = Field(default=30)
    cache_sliding_expiration_minutes: int = Field(default=5)
    cache_size_limit: int = Field(default=1024)
    cache_compaction_percentage: float = Field(default=0.2)
    cache_fail_safe_max_duration_minutes: int = Field(default=120)
    cache_fail_safe_throttle_seconds: int = Field(default=30)
    cache_factory_soft_timeout_ms: int = Field(default=500)
    cache_factory_workers: int = Field(default=8, ge=1)

    # Distributed cache tier + backplane (Redis)
    cache_use_redis: bool = Field(default=False)
    redis_url: Optional[str] = Field(default=None)
    cache_instance_name: str = Field(default="biocard:")
    cache_backplane_channel: str = Field(default="biocard:backplane")
    redis_socket_timeout_ms: int = Field(default=1000, ge=1)
    redis_connect_timeout_ms: int = Field(default=1000, ge=1)

    # Bootstrap
    root_username: str = Field(default="root")
    root_password: Optional[str] = Field(default=None)
    default_site_title: str = Field(default="OpenBioCard")
    default_avatar: str = Field(default="👤")

    @model_validator(mode="after")
    def _validate(self) -> "Settings":
        failures: list[str] = []

        if self.cache_enabled:
            if self.cache_size_limit <= 0:
                failures.append("cache_size_limit must be greater than 0.")
            if self.cache_expiration_minutes <= 0:
                failures.append("cache_expiration_minutes must be greater than 0.")
            if self.cache_sliding_expiration_minutes <= 0:
                failures.append(
                    "cache_sliding_expiration_minutes must be greater than 0."
                )
            if not 0 <= self.cache_compaction_percentage <= 1:
                failures.append("cache_compaction_percentage must be between 0 and 1.")
            if self.cache_factory_soft_timeout_ms <= 0:
                failures.append("cache_factory_soft_timeout_ms must be greater than 0.")
            if self.cache_use_redis and not self.redis_url:
                failures.append("redis_url cannot be empty when cache_use_redis is true.")
            if self.cache_use_redis and not self.cache_instance_name.strip():
                failures.append(
                    "cache_instance_name cannot be empty when cache_use_redis is true."
                )

        if not self.root_username.strip():
            failures.append("root_username is required.")
        if self.root_password is not None and 0 < len(self.root_password) < 6:
            failures.append("root_password must be at least 6 characters long.")

        if failures:
            raise ValueError(" ".join(failures))
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
