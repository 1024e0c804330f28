from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Protocol

from trustgate.storage.models import Account, Device, EmailChange, Recovery


class AccountStore(Protocol):
    def get_account(self, account_id: str) -> Optional[Account]: ...

    def get_account_by_token(self, token: str) -> Optional[Account]: ...

    def get_account_by_login(self, login: str) -> Optional[Account]: ...

    def get_account_by_email(self, email: str) -> Optional[Account]: ...

    def list_accounts(self, roles: Optional[Iterable[int]] = None) -> List[Account]: ...

    def find_account_conflict(
        self, user_name: Optional[str], email: Optional[str], exclude_id: Optional[str] = None
    ) -> Optional[str]: ...

    def create_account(self, account: Account) -> Account: ...

    def update_account_token(self, account_id: str, token: str) -> None: ...

    def update_account_profile(self, account_id: str, name: str, phone: str) -> None: ...

    def update_account_admin(self, account: Account) -> None: ...

    def update_account_password(self, account_id: str, password_hash: str) -> None: ...

    def update_account_email(self, account_id: str, email: str) -> None: ...

    def set_account_two_fa(self, account_id: str, enabled: bool) -> None: ...

    def delete_account(self, account_id: str) -> bool: ...


class DeviceStore(Protocol):
    def get_device(self, device_id: str) -> Optional[Device]: ...

    def create_device(self, device: Device) -> Device: ...

    def set_device_active(self, device_id: str) -> None: ...

    def delete_account_devices(self, account_id: str) -> List[str]: ...

    def delete_stale_devices(self, created_before: datetime) -> List[str]: ...


class RecoveryStore(Protocol):
    def get_recovery(self, recovery_id: str) -> Optional[Recovery]: ...

    def create_recovery(self, recovery: Recovery) -> Recovery: ...

    def delete_recovery(self, recovery_id: str) -> bool: ...

    def delete_expired_recoveries(self, created_before: datetime) -> int: ...


class EmailChangeStore(Protocol):
    def get_email_change(self, change_id: str) -> Optional[EmailChange]: ...

    def create_email_change(self, change: EmailChange) -> EmailChange: ...

    def delete_email_change(self, change_id: str) -> bool: ...

    def delete_expired_email_changes(self, created_before: datetime) -> int: ...


class Store(AccountStore, DeviceStore, RecoveryStore, EmailChangeStore, Protocol):
    """Everything the services need from durable storage."""


class CacheBackend(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, *keys: str) -> None: ...

    def verify_connection(self) -> None: ...

    async def close(self) -> None: ...
