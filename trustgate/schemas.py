from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from trustgate.storage.models import DEFAULT_ROLE, Account

MAX_FIELD_LENGTH = 256


class Credentials(BaseModel):
    """Login input. ``user_name_or_email`` is matched exactly against either column."""

    user_name_or_email: str = Field(..., max_length=MAX_FIELD_LENGTH)
    password: str = Field(..., max_length=MAX_FIELD_LENGTH)


class NewAccount(BaseModel):
    # derived capabilities are never accepted from clients
    model_config = ConfigDict(extra="ignore")

    user_name: str = Field(..., max_length=MAX_FIELD_LENGTH)
    email: str = Field(..., max_length=MAX_FIELD_LENGTH)
    password: str = Field(..., max_length=MAX_FIELD_LENGTH)
    name: str = Field(default="", max_length=MAX_FIELD_LENGTH)
    phone: str = Field(..., max_length=64)
    role: int = DEFAULT_ROLE
    two_fa: bool = False


class AccountUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    user_name: str = Field(..., max_length=MAX_FIELD_LENGTH)
    email: str = Field(..., max_length=MAX_FIELD_LENGTH)
    name: str = Field(default="", max_length=MAX_FIELD_LENGTH)
    phone: str = Field(..., max_length=64)
    role: int = DEFAULT_ROLE


class AccountView(BaseModel):
    """Public projection of an account; password hash and session token are hidden."""

    id: str
    user_name: str
    email: str
    name: str
    phone: str
    role: int
    roles: List[str]
    two_fa: bool
    created: datetime

    @classmethod
    def from_account(cls, account: Account) -> "AccountView":
        return cls(
            id=account.id,
            user_name=account.user_name,
            email=account.email,
            name=account.name,
            phone=account.phone,
            role=account.role,
            roles=sorted(c.value for c in account.roles),
            two_fa=account.two_fa,
            created=account.created,
        )

