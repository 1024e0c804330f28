from __future__ import annotations

import asyncio
import threading
from datetime import timedelta
from typing import Optional
from urllib.parse import urlparse, urlunparse

from trustgate.config import Settings, get_settings, reset_settings_cache
from trustgate.logging import get_logger
from trustgate.service.accounts import AccountManager
from trustgate.service.auth import AuthService
from trustgate.service.credentials import CredentialHasher
from trustgate.service.devices import DeviceTrustManager
from trustgate.service.housekeeping import HousekeepingWorker
from trustgate.service.recovery import RecoveryManager
from trustgate.service.session_cache import SessionCache
from trustgate.storage.base import CacheBackend, Store
from trustgate.storage.memory import MemoryCache, MemoryStore
from trustgate.storage.postgres import PostgresStore
from trustgate.storage.redis_cache import RedisCache, SyncRedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


def _build_store(settings: Settings) -> Store:
    if settings.use_memory_store:
        fs_root = settings.shared_fs_root if settings.persist_memory_store else None
        return MemoryStore(fs_root=fs_root)
    return PostgresStore(settings.database_url)


def _build_cache_backend(settings: Settings) -> Optional[CacheBackend]:
    if not settings.cache_enabled:
        return None
    redis_error: Exception | None = None
    if settings.redis_url:
        try:
            # sync client in test mode avoids binding to pytest's event loops
            cache: CacheBackend = (
                SyncRedisCache(settings.redis_url)
                if settings.test_mode
                else RedisCache(settings.redis_url)
            )
            cache.verify_connection()
            return cache
        except Exception as exc:
            redis_error = exc
    if not settings.test_mode and not settings.allow_redis_fallback_dev:
        raise RuntimeError(
            "Redis is required for the session cache; start Redis, set CACHE_ENABLED=false, "
            "or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for a local fallback."
        ) from redis_error
    logger.warning(
        "redis_disabled_fallback",
        redis_url=_mask_url_password(settings.redis_url),
        error=str(redis_error) if redis_error else "redis_url_missing",
        mode="TEST_MODE" if settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV",
    )
    return MemoryCache()


class Runtime:
    """Holds the singleton store, cache and services."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store = _build_store(self.settings)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.cache = _build_cache_backend(self.settings)
        self.session_cache = SessionCache(
            self.cache,
            ttl_seconds=self.settings.cache_ttl_seconds,
            enabled=self.settings.cache_enabled,
        )
        self.hasher = CredentialHasher()
        self.accounts = AccountManager(self.store, self.session_cache, self.hasher)
        self.devices = DeviceTrustManager(self.store, self.session_cache)
        recovery_ttl = timedelta(minutes=self.settings.recovery_ttl_minutes)
        email_change_ttl = timedelta(minutes=self.settings.email_change_ttl_minutes)
        self.recovery = RecoveryManager(
            self.store,
            self.accounts,
            recovery_ttl=recovery_ttl,
            email_change_ttl=email_change_ttl,
        )
        self.auth = AuthService(self.accounts, self.devices, self.recovery, self.hasher)
        self.housekeeping = HousekeepingWorker(
            self.store,
            self.devices,
            interval=self.settings.housekeeping_interval_seconds,
            recovery_ttl=recovery_ttl,
            email_change_ttl=email_change_ttl,
            inactive_device_ttl=timedelta(days=self.settings.inactive_device_ttl_days),
        )

    async def start(self) -> None:
        if self.settings.housekeeping_enabled:
            await self.housekeeping.start()

    async def shutdown(self) -> None:
        await self.housekeeping.stop()
        if self.cache is not None:
            await self.cache.close()
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and runtime.cache is not None:
            if isinstance(runtime.cache, SyncRedisCache):
                runtime.cache._sync_client.close()
            elif isinstance(runtime.cache, RedisCache):
                try:
                    loop = asyncio.get_running_loop()
                    loop.create_task(runtime.cache.close())
                except RuntimeError:
                    asyncio.run(runtime.cache.close())

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
