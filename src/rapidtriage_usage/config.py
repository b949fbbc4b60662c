"""
Configuration for the RapidTriage usage tracker.

Each concern is a ``BaseSettings`` class with its own environment prefix:

- ``RT_USAGE_*``: cache freshness, sync cadence, alert thresholds, store keys
- ``RT_API_*``:   backend base URL, timeout, retry attempts, bearer token
- ``RT_STORE_*``: key/value store backend (memory or redis)

``settings`` is the process-wide aggregate.
"""

from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class UsageSettings(BaseSettings):
    """Usage tracking behaviour."""

    model_config = SettingsConfigDict(env_prefix="RT_USAGE_", extra="ignore")

    cache_ttl_seconds: int = Field(default=900, ge=1, description="Freshness window for cached usage stats")
    batch_sync_interval_seconds: int = Field(
        default=300, ge=1, description="Seconds between background syncs of pending events"
    )
    enable_real_time_sync: bool = Field(default=True, description="Send each event to the backend as it is tracked")
    warning_threshold: int = Field(default=80, ge=0, le=100, description="Percentage used that raises a warning alert")
    critical_threshold: int = Field(default=95, ge=0, le=100, description="Percentage used that raises a critical alert")
    pending_events_key: str = Field(default="usage_pending_events", min_length=1)
    stats_snapshot_prefix: str = Field(default="usage_stats_cache", min_length=1)

    @model_validator(mode="after")
    def _thresholds_ordered(self) -> Self:
        if self.warning_threshold > self.critical_threshold:
            raise ValueError(
                f"warning_threshold ({self.warning_threshold}) must not exceed "
                f"critical_threshold ({self.critical_threshold})"
            )
        return self


class ApiSettings(BaseSettings):
    """RapidTriage backend connection."""

    model_config = SettingsConfigDict(env_prefix="RT_API_", extra="ignore")

    base_url: str = Field(default="https://us-central1-rapidtriageme.cloudfunctions.net/api/v1")
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts per request for transient failures")
    token: SecretStr | None = Field(default=None, description="Bearer token sent with every request")


class StoreSettings(BaseSettings):
    """Persisted state backend."""

    model_config = SettingsConfigDict(env_prefix="RT_STORE_", extra="ignore")

    backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "rt:usage:"
    max_connections: int = Field(default=10, ge=1)


class Settings(BaseSettings):
    """Aggregate settings."""

    model_config = SettingsConfigDict(extra="ignore")

    usage: UsageSettings = Field(default_factory=UsageSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)


settings = Settings()
