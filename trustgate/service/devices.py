from __future__ import annotations

import hmac
from typing import List, Optional

from trustgate.logging import get_logger
from trustgate.service.credentials import new_device_code, new_token
from trustgate.service.errors import (
    DeviceAccountMismatchError,
    DeviceAlreadyActiveError,
    DeviceNotFoundError,
    InvalidCodeError,
)
from trustgate.service.session_cache import SessionCache
from trustgate.storage.base import DeviceStore
from trustgate.storage.models import Device

logger = get_logger(__name__)


class DeviceTrustManager:
    """Lifecycle of trusted devices: mint, look up, prove with a code."""

    def __init__(self, store: DeviceStore, cache: SessionCache) -> None:
        self.store = store
        self.cache = cache

    def create_device(self, account_id: str) -> Device:
        device = Device(id=new_token(), account_id=account_id, code=new_device_code())
        self.store.create_device(device)
        logger.info("device_created", account_id=account_id)
        return device

    async def get_device(self, device_id: str) -> Optional[Device]:
        if not device_id:
            return None
        lookup = await self.cache.get_device(device_id)
        if lookup.hit:
            return lookup.value
        device = self.store.get_device(device_id)
        if device:
            await self.cache.set_device(device)
        return device

    async def activate_device(self, account_id: str, device_id: str, code: str) -> Device:
        device = await self.get_device(device_id)
        if not device:
            raise DeviceNotFoundError()
        if device.active:
            raise DeviceAlreadyActiveError()
        if device.account_id != account_id:
            raise DeviceAccountMismatchError()
        if not hmac.compare_digest(device.code.encode(), (code or "").encode()):
            logger.warning("device_code_rejected", account_id=account_id)
            raise InvalidCodeError()
        self.store.set_device_active(device.id)
        device.active = True
        await self.cache.set_device(device)
        logger.info("device_activated", account_id=account_id)
        return device

    async def delete_account_devices(self, account_id: str) -> List[str]:
        removed = self.store.delete_account_devices(account_id)
        await self.cache.delete_devices(*removed)
        return removed

    async def sweep_stale(self, created_before) -> List[str]:
        removed = self.store.delete_stale_devices(created_before)
        await self.cache.delete_devices(*removed)
        return removed
