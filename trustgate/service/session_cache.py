"""Cache-aside helpers for account and device snapshots.

Accounts are keyed by their current session token and devices by id. The
cache is never authoritative: every failure here degrades to a store read at
the call site, so nothing in this module raises for backend trouble.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from redis.exceptions import RedisError

from trustgate.logging import get_logger
from trustgate.storage.base import CacheBackend
from trustgate.storage.models import Account, Device, as_utc

logger = get_logger(__name__)

T = TypeVar("T")

ACCOUNT_KEY_PREFIX = "auth:account:"
DEVICE_KEY_PREFIX = "auth:device:"

_BACKEND_ERRORS = (RedisError, OSError)


class CacheStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class CacheLookup(Generic[T]):
    status: CacheStatus
    value: Optional[T] = None

    @property
    def hit(self) -> bool:
        return self.status is CacheStatus.HIT


def account_key(token: str) -> str:
    return f"{ACCOUNT_KEY_PREFIX}{token}"


def device_key(device_id: str) -> str:
    return f"{DEVICE_KEY_PREFIX}{device_id}"


def _account_to_json(account: Account) -> str:
    # password_hash is never cached
    return json.dumps(
        {
            "id": account.id,
            "user_name": account.user_name,
            "email": account.email,
            "name": account.name,
            "phone": account.phone,
            "role": account.role,
            "token": account.token,
            "two_fa": account.two_fa,
            "created": account.created.isoformat(),
        }
    )


def _account_from_json(raw: str) -> Account:
    data = json.loads(raw)
    return Account(
        id=data["id"],
        user_name=data["user_name"],
        email=data["email"],
        name=data.get("name", ""),
        phone=data.get("phone", ""),
        role=int(data.get("role", 0)),
        token=data.get("token", ""),
        two_fa=bool(data.get("two_fa", False)),
        created=as_utc(datetime.fromisoformat(data["created"])),
    )


def _device_to_json(device: Device) -> str:
    return json.dumps(
        {
            "id": device.id,
            "account_id": device.account_id,
            "code": device.code,
            "active": device.active,
            "created": device.created.isoformat(),
        }
    )


def _device_from_json(raw: str) -> Device:
    data = json.loads(raw)
    return Device(
        id=data["id"],
        account_id=data["account_id"],
        code=data["code"],
        active=bool(data.get("active", False)),
        created=as_utc(datetime.fromisoformat(data["created"])),
    )


class SessionCache:
    def __init__(
        self,
        backend: Optional[CacheBackend],
        *,
        ttl_seconds: int = 1800,
        enabled: bool = True,
    ) -> None:
        self.backend = backend
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled and backend is not None

    async def _get(self, key: str, decode) -> CacheLookup[Any]:
        if not self.enabled:
            return CacheLookup(CacheStatus.UNAVAILABLE)
        try:
            raw = await self.backend.get(key)
        except _BACKEND_ERRORS as exc:
            logger.warning("session_cache_get_failed", key_prefix=key.split(":")[1], error=str(exc))
            return CacheLookup(CacheStatus.UNAVAILABLE)
        if raw is None:
            return CacheLookup(CacheStatus.MISS)
        try:
            return CacheLookup(CacheStatus.HIT, decode(raw))
        except (ValueError, KeyError, TypeError) as exc:
            # json.JSONDecodeError is a ValueError
            logger.warning("session_cache_entry_unreadable", error=str(exc))
            await self.delete_keys(key)
            return CacheLookup(CacheStatus.MISS)

    async def _set(self, key: str, payload: str) -> bool:
        if not self.enabled:
            return False
        try:
            await self.backend.set(key, payload, self.ttl_seconds)
        except _BACKEND_ERRORS as exc:
            logger.warning("session_cache_set_failed", error=str(exc))
            return False
        return True

    async def delete_keys(self, *keys: str) -> bool:
        keys = tuple(k for k in keys if k)
        if not self.enabled or not keys:
            return False
        try:
            await self.backend.delete(*keys)
        except _BACKEND_ERRORS as exc:
            logger.warning("session_cache_delete_failed", error=str(exc))
            return False
        return True

    async def get_account(self, token: str) -> CacheLookup[Account]:
        if not token:
            return CacheLookup(CacheStatus.MISS)
        return await self._get(account_key(token), _account_from_json)

    async def set_account(self, account: Account) -> bool:
        if not account.token:
            return False
        return await self._set(account_key(account.token), _account_to_json(account))

    async def delete_account(self, token: str) -> bool:
        if not token:
            return False
        return await self.delete_keys(account_key(token))

    async def get_device(self, device_id: str) -> CacheLookup[Device]:
        if not device_id:
            return CacheLookup(CacheStatus.MISS)
        return await self._get(device_key(device_id), _device_from_json)

    async def set_device(self, device: Device) -> bool:
        return await self._set(device_key(device.id), _device_to_json(device))

    async def delete_devices(self, *device_ids: str) -> bool:
        return await self.delete_keys(*(device_key(d) for d in device_ids if d))
