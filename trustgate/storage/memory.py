from __future__ import annotations

import json
import threading
import time
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from trustgate.logging import get_logger
from trustgate.storage.errors import ConstraintViolation
from trustgate.storage.models import Account, Device, EmailChange, Recovery, as_utc


class MemoryStore:
    """In-memory backing store for development and tests.

    Rows are copied on the way in and out so callers can never mutate stored
    state without going through a store method. When ``fs_root`` is given the
    whole state is written to ``<fs_root>/state/memory_store.json`` after every
    mutation and reloaded on start-up.
    """

    def __init__(self, fs_root: str | None = None) -> None:
        self.logger = get_logger(__name__)
        self.accounts: Dict[str, Account] = {}
        self.devices: Dict[str, Device] = {}
        self.recoveries: Dict[str, Recovery] = {}
        self.email_changes: Dict[str, EmailChange] = {}
        # RLock so helpers can be called while a mutation holds the lock
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        assert self.fs_root is not None
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    @staticmethod
    def _serialize_datetime(dt: datetime) -> str:
        return dt.isoformat()

    @staticmethod
    def _deserialize_datetime(raw: str) -> datetime:
        return as_utc(datetime.fromisoformat(raw))

    # accounts
    def _conflict_locked(
        self, user_name: Optional[str], email: Optional[str], exclude_id: Optional[str]
    ) -> Optional[str]:
        for existing in self.accounts.values():
            if existing.id == exclude_id:
                continue
            if user_name and existing.user_name == user_name:
                return "user_name"
            if email and existing.email == email:
                return "email"
        return None

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._data_lock:
            account = self.accounts.get(account_id)
            return replace(account) if account else None

    def get_account_by_token(self, token: str) -> Optional[Account]:
        if not token:
            return None
        with self._data_lock:
            account = next((a for a in self.accounts.values() if a.token == token), None)
            return replace(account) if account else None

    def get_account_by_login(self, login: str) -> Optional[Account]:
        with self._data_lock:
            # a user name may look like another account's email; the user name wins
            account = next(
                (a for a in self.accounts.values() if a.user_name == login),
                None,
            ) or next((a for a in self.accounts.values() if a.email == login), None)
            return replace(account) if account else None

    def get_account_by_email(self, email: str) -> Optional[Account]:
        with self._data_lock:
            account = next((a for a in self.accounts.values() if a.email == email), None)
            return replace(account) if account else None

    def list_accounts(self, roles: Optional[Iterable[int]] = None) -> List[Account]:
        wanted = set(roles) if roles is not None else None
        with self._data_lock:
            results = [
                replace(a)
                for a in self.accounts.values()
                if wanted is None or a.role in wanted
            ]
        return sorted(results, key=lambda a: a.name)

    def find_account_conflict(
        self, user_name: Optional[str], email: Optional[str], exclude_id: Optional[str] = None
    ) -> Optional[str]:
        with self._data_lock:
            return self._conflict_locked(user_name, email, exclude_id)

    def create_account(self, account: Account) -> Account:
        with self._data_lock:
            if account.id in self.accounts:
                raise ConstraintViolation("account already exists", {"field": "id"})
            field = self._conflict_locked(account.user_name, account.email, None)
            if field:
                raise ConstraintViolation(f"{field} already exists", {"field": field})
            self.accounts[account.id] = replace(account)
            self._persist_state()
            return replace(account)

    def _require_account(self, account_id: str) -> Account:
        account = self.accounts.get(account_id)
        if not account:
            raise ConstraintViolation("account not found", {"account_id": account_id})
        return account

    def update_account_token(self, account_id: str, token: str) -> None:
        with self._data_lock:
            self._require_account(account_id).token = token
            self._persist_state()

    def update_account_profile(self, account_id: str, name: str, phone: str) -> None:
        with self._data_lock:
            account = self._require_account(account_id)
            account.name = name
            account.phone = phone
            self._persist_state()

    def update_account_admin(self, account: Account) -> None:
        with self._data_lock:
            stored = self._require_account(account.id)
            field = self._conflict_locked(account.user_name, account.email, account.id)
            if field:
                raise ConstraintViolation(f"{field} already exists", {"field": field})
            stored.name = account.name
            stored.user_name = account.user_name
            stored.email = account.email
            stored.phone = account.phone
            stored.role = account.role
            self._persist_state()

    def update_account_password(self, account_id: str, password_hash: str) -> None:
        with self._data_lock:
            self._require_account(account_id).password_hash = password_hash
            self._persist_state()

    def update_account_email(self, account_id: str, email: str) -> None:
        with self._data_lock:
            stored = self._require_account(account_id)
            if self._conflict_locked(None, email, account_id):
                raise ConstraintViolation("email already exists", {"field": "email"})
            stored.email = email
            self._persist_state()

    def set_account_two_fa(self, account_id: str, enabled: bool) -> None:
        with self._data_lock:
            self._require_account(account_id).two_fa = enabled
            self._persist_state()

    def delete_account(self, account_id: str) -> bool:
        with self._data_lock:
            if self.accounts.pop(account_id, None) is None:
                return False
            for table in (self.devices, self.recoveries, self.email_changes):
                for row_id in [k for k, v in table.items() if v.account_id == account_id]:
                    table.pop(row_id, None)
            self._persist_state()
            return True

    # devices
    def get_device(self, device_id: str) -> Optional[Device]:
        with self._data_lock:
            device = self.devices.get(device_id)
            return replace(device) if device else None

    def create_device(self, device: Device) -> Device:
        with self._data_lock:
            self._require_account(device.account_id)
            if device.id in self.devices:
                raise ConstraintViolation("device already exists", {"field": "id"})
            self.devices[device.id] = replace(device)
            self._persist_state()
            return replace(device)

    def set_device_active(self, device_id: str) -> None:
        with self._data_lock:
            device = self.devices.get(device_id)
            if not device:
                raise ConstraintViolation("device not found", {"device_id": device_id})
            device.active = True
            self._persist_state()

    def delete_account_devices(self, account_id: str) -> List[str]:
        with self._data_lock:
            removed = [d.id for d in self.devices.values() if d.account_id == account_id]
            for device_id in removed:
                self.devices.pop(device_id, None)
            if removed:
                self._persist_state()
            return removed

    def delete_stale_devices(self, created_before: datetime) -> List[str]:
        cutoff = as_utc(created_before)
        with self._data_lock:
            removed = [
                d.id
                for d in self.devices.values()
                if not d.active and as_utc(d.created) < cutoff
            ]
            for device_id in removed:
                self.devices.pop(device_id, None)
            if removed:
                self._persist_state()
            return removed

    # recovery
    def get_recovery(self, recovery_id: str) -> Optional[Recovery]:
        with self._data_lock:
            recovery = self.recoveries.get(recovery_id)
            return replace(recovery) if recovery else None

    def create_recovery(self, recovery: Recovery) -> Recovery:
        with self._data_lock:
            self._require_account(recovery.account_id)
            self.recoveries[recovery.id] = replace(recovery)
            self._persist_state()
            return replace(recovery)

    def delete_recovery(self, recovery_id: str) -> bool:
        with self._data_lock:
            removed = self.recoveries.pop(recovery_id, None) is not None
            if removed:
                self._persist_state()
            return removed

    def delete_expired_recoveries(self, created_before: datetime) -> int:
        return self._delete_older(self.recoveries, created_before)

    # email change
    def get_email_change(self, change_id: str) -> Optional[EmailChange]:
        with self._data_lock:
            change = self.email_changes.get(change_id)
            return replace(change) if change else None

    def create_email_change(self, change: EmailChange) -> EmailChange:
        with self._data_lock:
            self._require_account(change.account_id)
            self.email_changes[change.id] = replace(change)
            self._persist_state()
            return replace(change)

    def delete_email_change(self, change_id: str) -> bool:
        with self._data_lock:
            removed = self.email_changes.pop(change_id, None) is not None
            if removed:
                self._persist_state()
            return removed

    def delete_expired_email_changes(self, created_before: datetime) -> int:
        return self._delete_older(self.email_changes, created_before)

    def _delete_older(self, table: Dict, created_before: datetime) -> int:
        cutoff = as_utc(created_before)
        with self._data_lock:
            stale = [k for k, v in table.items() if as_utc(v.created) < cutoff]
            for key in stale:
                table.pop(key, None)
            if stale:
                self._persist_state()
            return len(stale)

    # persistence
    def _persist_state(self) -> None:
        if not self.fs_root:
            return
        state = {
            "accounts": [self._serialize_account(a) for a in self.accounts.values()],
            "devices": [self._serialize_device(d) for d in self.devices.values()],
            "recoveries": [self._serialize_recovery(r) for r in self.recoveries.values()],
            "email_changes": [
                self._serialize_email_change(c) for c in self.email_changes.values()
            ],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.accounts = {
            a["id"]: self._deserialize_account(a) for a in data.get("accounts", [])
        }
        self.devices = {
            d["id"]: self._deserialize_device(d) for d in data.get("devices", [])
        }
        self.recoveries = {
            r["id"]: self._deserialize_recovery(r) for r in data.get("recoveries", [])
        }
        self.email_changes = {
            c["id"]: self._deserialize_email_change(c)
            for c in data.get("email_changes", [])
        }
        self.logger.info(
            "memory_store_loaded",
            accounts=len(self.accounts),
            devices=len(self.devices),
        )
        return True

    def _serialize_account(self, account: Account) -> dict:
        return {
            "id": account.id,
            "user_name": account.user_name,
            "email": account.email,
            "password_hash": account.password_hash,
            "name": account.name,
            "phone": account.phone,
            "role": account.role,
            "token": account.token,
            "two_fa": account.two_fa,
            "created": self._serialize_datetime(account.created),
        }

    def _deserialize_account(self, data: dict) -> Account:
        return Account(
            id=data["id"],
            user_name=data["user_name"],
            email=data["email"],
            password_hash=data.get("password_hash"),
            name=data.get("name", ""),
            phone=data.get("phone", ""),
            role=int(data.get("role", 0)),
            token=data.get("token", ""),
            two_fa=bool(data.get("two_fa", False)),
            created=self._deserialize_datetime(data["created"]),
        )

    def _serialize_device(self, device: Device) -> dict:
        return {
            "id": device.id,
            "account_id": device.account_id,
            "code": device.code,
            "active": device.active,
            "created": self._serialize_datetime(device.created),
        }

    def _deserialize_device(self, data: dict) -> Device:
        return Device(
            id=data["id"],
            account_id=data["account_id"],
            code=data["code"],
            active=bool(data.get("active", False)),
            created=self._deserialize_datetime(data["created"]),
        )

    def _serialize_recovery(self, recovery: Recovery) -> dict:
        return {
            "id": recovery.id,
            "account_id": recovery.account_id,
            "email": recovery.email,
            "user_name": recovery.user_name,
            "created": self._serialize_datetime(recovery.created),
        }

    def _deserialize_recovery(self, data: dict) -> Recovery:
        return Recovery(
            id=data["id"],
            account_id=data["account_id"],
            email=data["email"],
            user_name=data["user_name"],
            created=self._deserialize_datetime(data["created"]),
        )

    def _serialize_email_change(self, change: EmailChange) -> dict:
        return {
            "id": change.id,
            "account_id": change.account_id,
            "old_email": change.old_email,
            "new_email": change.new_email,
            "created": self._serialize_datetime(change.created),
        }

    def _deserialize_email_change(self, data: dict) -> EmailChange:
        return EmailChange(
            id=data["id"],
            account_id=data["account_id"],
            old_email=data["old_email"],
            new_email=data["new_email"],
            created=self._deserialize_datetime(data["created"]),
        )


class MemoryCache:
    """Process-local key/value cache used when Redis is unavailable.

    Mirrors the ``RedisCache`` surface so the session cache can use either.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def verify_connection(self) -> None:
        return None

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                return None
            value, expires_at = entry
            if expires_at <= time.monotonic():
                self._entries.pop(key, None)
                return None
            return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        now = time.monotonic()
        with self._lock:
            # abandoned session keys are never read again
            expired = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
            for stale in expired:
                del self._entries[stale]
            self._entries[key] = (value, now + max(1, ttl_seconds))

    async def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()
