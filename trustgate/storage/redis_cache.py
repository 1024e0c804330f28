from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis
from redis import Redis


class RedisCache:
    """Thin Redis wrapper holding serialized account and device snapshots."""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling the cache."""
        # Short-lived sync client so the async one is not bound to a startup loop.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.set(key, value, ex=max(1, int(ttl_seconds)))

    async def delete(self, *keys: str) -> None:
        if keys:
            await self.client.delete(*keys)

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.close()
        await self.client.connection_pool.disconnect()


class SyncRedisCache:
    """Synchronous Redis wrapper for use in tests.

    Uses a synchronous client to avoid event loop binding issues under pytest
    while exposing the same awaitable surface as ``RedisCache``.
    """

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self._sync_client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        self._sync_client.ping()

    async def get(self, key: str) -> Optional[str]:
        return self._sync_client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._sync_client.set(key, value, ex=max(1, int(ttl_seconds)))

    async def delete(self, *keys: str) -> None:
        if keys:
            self._sync_client.delete(*keys)

    async def close(self) -> None:
        self._sync_client.close()
