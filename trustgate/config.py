from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the session and device-trust service."""

    database_url: str = env_field(
        "postgresql://localhost:5432/trustgate", "DATABASE_URL"
    )
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    shared_fs_root: str = env_field("/srv/trustgate", "SHARED_FS_ROOT")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    persist_memory_store: bool = env_field(
        True,
        "PERSIST_MEMORY_STORE",
        description="Write the in-memory store to SHARED_FS_ROOT/state after each mutation",
    )
    cache_enabled: bool = env_field(
        True,
        "CACHE_ENABLED",
        description="Master switch for the session cache; disabled means every read goes to the store",
    )
    cache_ttl_seconds: int = env_field(
        1800,
        "CACHE_TTL_SECONDS",
        description="Lifetime of cached account and device snapshots",
    )
    recovery_ttl_minutes: int = env_field(
        60,
        "RECOVERY_TTL_MINUTES",
        description="How long a password recovery token stays redeemable",
    )
    email_change_ttl_minutes: int = env_field(
        60,
        "EMAIL_CHANGE_TTL_MINUTES",
        description="How long an email change request stays redeemable",
    )
    inactive_device_ttl_days: int = env_field(
        60,
        "INACTIVE_DEVICE_TTL_DAYS",
        description="Age after which never-activated devices are swept",
    )
    housekeeping_enabled: bool = env_field(True, "HOUSEKEEPING_ENABLED")
    housekeeping_interval_seconds: int = env_field(
        3600,
        "HOUSEKEEPING_INTERVAL_SECONDS",
        description="Interval between sweeps of expired recovery, email change and device rows",
    )
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Use the synchronous Redis client and allow in-memory cache fallback",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("redis_url")
    @classmethod
    def _blank_redis_url(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value

    @field_validator(
        "cache_ttl_seconds",
        "recovery_ttl_minutes",
        "email_change_ttl_minutes",
        "inactive_device_ttl_days",
        "housekeeping_interval_seconds",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
