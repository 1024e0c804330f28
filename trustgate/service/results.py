from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class Rejection(str, Enum):
    """Expected business outcomes the caller branches on, not failures."""

    USERNAME_TAKEN = "username_taken"
    EMAIL_TAKEN = "email_taken"
    VALIDATION_FAILED = "validation_failed"


@dataclass(frozen=True)
class MutationResult:
    rejection: Optional[Rejection] = None
    reason: Optional[str] = None
    value: Any = None

    @property
    def ok(self) -> bool:
        return self.rejection is None

    @classmethod
    def success(cls, value: Any = None) -> "MutationResult":
        return cls(value=value)

    @classmethod
    def rejected(cls, rejection: Rejection, reason: str) -> "MutationResult":
        return cls(rejection=rejection, reason=reason)
