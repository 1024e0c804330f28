from __future__ import annotations

import secrets

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from trustgate.logging import get_logger

logger = get_logger(__name__)

TOKEN_BYTES = 48
DEVICE_CODE_DIGITS = 6


def new_token() -> str:
    """Opaque, unguessable identifier used for session tokens and row ids."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def new_device_code() -> str:
    return f"{secrets.randbelow(10 ** DEVICE_CODE_DIGITS):0{DEVICE_CODE_DIGITS}d}"


class CredentialHasher:
    """One-way password hashing backed by argon2id."""

    algorithm = "argon2id"

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._pwd_hasher = hasher or PasswordHasher(type=Type.ID)

    def hash(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def verify(self, password_hash: str | None, password: str) -> bool:
        if not password_hash:
            logger.warning("password_record_missing")
            return False
        try:
            return self._pwd_hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            logger.warning("password_hash_unreadable")
            return False

    def needs_rehash(self, password_hash: str) -> bool:
        try:
            return self._pwd_hasher.check_needs_rehash(password_hash)
        except InvalidHash:
            return True
