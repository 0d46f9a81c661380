"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables (or a local .env file).
"""

import json
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Assembly Constituencies that have provisioned shard collections.
# 103-107 are out of scope and have no collections.
DEFAULT_SHARD_KEYS = "101,102,108,109,110,111,112,113,114,115,116,117,118,119,120,121,122,123,124,125,126"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "FieldOps"
    APP_ENV: str = "development"
    DEBUG: bool = False

    # Database - MongoDB
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DATABASE: str = "fieldops"
    MONGODB_SERVER_SELECTION_TIMEOUT_MS: int = 5000

    # Sharding
    # Ordered AC enumeration - stored as comma-separated string to avoid
    # pydantic-settings JSON parsing issues. Order is the probe order for
    # cross-shard point lookups and the stats job.
    ALL_SHARD_KEYS: str = DEFAULT_SHARD_KEYS
    SHARD_TIMEOUT_SECONDS: float = 5.0

    # Process-local cache TTLs (seconds)
    CACHE_TTL_SHORT_SECONDS: int = 60
    CACHE_TTL_MEDIUM_SECONDS: int = 5 * 60
    CACHE_TTL_LONG_SECONDS: int = 30 * 60
    CACHE_TTL_DASHBOARD_SECONDS: int = 5 * 60
    CACHE_TTL_BOOTH_LIST_SECONDS: int = 15 * 60
    CACHE_MAX_ENTRIES: int = 1000
    CACHE_SWEEP_INTERVAL_SECONDS: int = 5 * 60

    # Precomputed statistics
    PRECOMPUTED_STATS_MAX_AGE_SECONDS: int = 10 * 60
    STATS_JOB_ENABLED: bool = True
    STATS_JOB_INTERVAL_SECONDS: int = 10 * 60
    STATS_JOB_SHARD_DELAY_SECONDS: float = 15.0  # Pacing between ACs to bound DB load
    STATS_JOB_STARTUP_DELAY_SECONDS: int = 30
    # Aggregations over a whole AC run far longer than serving-path reads
    STATS_COMPUTE_TIMEOUT_SECONDS: float = 60.0

    @field_validator("ALL_SHARD_KEYS")
    @classmethod
    def validate_shard_keys(cls, v: str) -> str:
        """Validate that the shard key list parses to positive integers."""
        keys = _parse_shard_keys(v)
        if not keys:
            raise ValueError("ALL_SHARD_KEYS must contain at least one AC id")
        if any(k <= 0 for k in keys):
            raise ValueError("ALL_SHARD_KEYS entries must be positive integers")
        if len(set(keys)) != len(keys):
            raise ValueError("ALL_SHARD_KEYS must not contain duplicates")
        return v

    @field_validator("SHARD_TIMEOUT_SECONDS", "STATS_JOB_SHARD_DELAY_SECONDS")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @property
    def shard_keys_list(self) -> list[int]:
        """Get the configured shard keys as an ordered list."""
        return _parse_shard_keys(self.ALL_SHARD_KEYS)


def _parse_shard_keys(raw: str) -> list[int]:
    try:
        parsed = json.loads(raw)
        if isinstance(parsed, int):
            return [parsed]
        if isinstance(parsed, list):
            return [int(k) for k in parsed]
    except json.JSONDecodeError:
        pass
    try:
        return [int(part.strip()) for part in raw.split(",") if part.strip()]
    except ValueError as e:
        raise ValueError(f"ALL_SHARD_KEYS is not a list of integers: {raw!r}") from e


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
