"""Format and strength rules for account fields.

Each check returns ``None`` when the value is acceptable, or a short
user-facing reason. Reasons are safe to show to the caller; they only
echo back what the caller sent.
"""

from __future__ import annotations

import re
from typing import Optional

MIN_USER_NAME_LENGTH = 6
MIN_PASSWORD_LENGTH = 7

_WHITESPACE = re.compile(r"\s")
_DIGIT = re.compile(r"[0-9]")
_LETTER = re.compile(r"[a-zA-Z]")
_EMAIL = re.compile(
    r'^(([^<>()\[\]\\.,;:\s@"]+(\.[^<>()\[\]\\.,;:\s@"]+)*)|(".+"))@'
    r"((\[[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\])|(([a-zA-Z\-0-9]+\.)+[a-zA-Z]{2,}))$"
)
_PHONE = re.compile(r"^[+]?[(]?[0-9]{3}[)]?[-\s.]?[0-9]{3}[-\s.]?[0-9]{4,6}$")


def check_user_name(user_name: str) -> Optional[str]:
    if not user_name or len(user_name) < MIN_USER_NAME_LENGTH:
        return f"Invalid UserName: {user_name}"
    if _WHITESPACE.search(user_name):
        return f"UserName cannot have spaces: {user_name}"
    return None


def check_password(password: str) -> Optional[str]:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        return f"Password must be {MIN_PASSWORD_LENGTH} or more characters"
    if not _DIGIT.search(password):
        return "Password must contain a number"
    if not _LETTER.search(password):
        return "Password must contain a letter"
    return None


def check_email(email: str) -> Optional[str]:
    if not _EMAIL.match(email or ""):
        return f"Invalid email address: {email}"
    return None


def check_phone(phone: str) -> Optional[str]:
    if not _PHONE.match(phone or ""):
        return f"Invalid phone number: {phone}"
    return None


def first_failure(*reasons: Optional[str]) -> Optional[str]:
    """Return the first non-empty reason, preserving check order."""
    return next((reason for reason in reasons if reason), None)


__all__ = [
    "check_user_name",
    "check_password",
    "check_email",
    "check_phone",
    "first_failure",
]
