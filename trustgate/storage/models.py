from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import FrozenSet, Optional

ADMIN_ROLE = 999
DEFAULT_ROLE = 0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize naive timestamps (older rows, some drivers) to aware UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Capability(str, Enum):
    ADMIN = "ADMIN"
    DEFAULT = "DEFAULT"
    NONE = "NONE"


_ROLE_CAPABILITIES: dict[int, FrozenSet[Capability]] = {
    ADMIN_ROLE: frozenset({Capability.ADMIN, Capability.DEFAULT}),
    DEFAULT_ROLE: frozenset({Capability.DEFAULT}),
}


def capabilities_for(role: int) -> FrozenSet[Capability]:
    """Derive the capability set for a role level.

    Unknown levels get ``NONE`` rather than an empty set so callers can tell a
    deliberately unprivileged account from a missing role.
    """
    return _ROLE_CAPABILITIES.get(role, frozenset({Capability.NONE}))


@dataclass
class Account:
    id: str
    user_name: str
    email: str
    password_hash: Optional[str] = None
    name: str = ""
    phone: str = ""
    role: int = DEFAULT_ROLE
    token: str = ""
    two_fa: bool = False
    created: datetime = field(default_factory=utcnow)

    @property
    def roles(self) -> FrozenSet[Capability]:
        # Never stored; always recomputed from ``role``.
        return capabilities_for(self.role)

    @property
    def is_admin(self) -> bool:
        return Capability.ADMIN in self.roles

    @property
    def requires_device(self) -> bool:
        """Whether sessions for this account must also prove a trusted device."""
        return self.is_admin or self.two_fa


@dataclass
class Device:
    id: str
    account_id: str
    code: str
    active: bool = False
    created: datetime = field(default_factory=utcnow)


@dataclass
class Recovery:
    id: str
    account_id: str
    email: str
    user_name: str
    created: datetime = field(default_factory=utcnow)

    def is_expired(self, ttl: timedelta, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) - as_utc(self.created) > ttl


@dataclass
class EmailChange:
    id: str
    account_id: str
    old_email: str
    new_email: str
    created: datetime = field(default_factory=utcnow)

    def is_expired(self, ttl: timedelta, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) - as_utc(self.created) > ttl


@dataclass(frozen=True)
class Session:
    """Transient ``(token, device_id)`` pair presented by a caller."""

    token: str = ""
    device_id: str = ""
