from __future__ import annotations

from typing import Iterable, List, Optional

from trustgate.logging import get_logger
from trustgate.service.credentials import CredentialHasher, new_token
from trustgate.service.results import MutationResult, Rejection
from trustgate.service.session_cache import SessionCache
from trustgate.service.validation import (
    check_email,
    check_password,
    check_phone,
    check_user_name,
    first_failure,
)
from trustgate.storage.base import AccountStore
from trustgate.storage.errors import ConstraintViolation
from trustgate.storage.models import Account

logger = get_logger(__name__)

_FIELD_REJECTIONS = {
    "user_name": (Rejection.USERNAME_TAKEN, "Username already in use"),
    "email": (Rejection.EMAIL_TAKEN, "Email address already in use"),
}


def _conflict_result(field: Optional[str]) -> Optional[MutationResult]:
    if not field:
        return None
    rejection, reason = _FIELD_REJECTIONS.get(
        field, (Rejection.VALIDATION_FAILED, f"{field} already in use")
    )
    return MutationResult.rejected(rejection, reason)


class AccountManager:
    """Account reads and writes with cache-aside for token lookups."""

    def __init__(
        self, store: AccountStore, cache: SessionCache, hasher: CredentialHasher
    ) -> None:
        self.store = store
        self.cache = cache
        self.hasher = hasher

    async def get_by_token(self, token: str) -> Optional[Account]:
        if not token:
            return None
        lookup = await self.cache.get_account(token)
        if lookup.hit:
            return lookup.value
        account = self.store.get_account_by_token(token)
        if account:
            await self.cache.set_account(account)
        return account

    def get_by_login(self, login: str) -> Optional[Account]:
        # always the store: the caller needs the password hash
        if not login:
            return None
        return self.store.get_account_by_login(login)

    def get(self, account_id: str) -> Optional[Account]:
        return self.store.get_account(account_id)

    def get_by_email(self, email: str) -> Optional[Account]:
        return self.store.get_account_by_email(email)

    def list(self, roles: Optional[Iterable[int]] = None) -> List[Account]:
        return self.store.list_accounts(roles)

    async def refresh_cache(self, account: Account) -> bool:
        return await self.cache.set_account(account)

    async def rotate_token(self, account: Account, *, cache_new: bool = True) -> str:
        """Persist a fresh session token and swap the cache entry over to it.

        Returns the previous token, which no longer resolves once this returns.
        """
        old_token = account.token
        account.token = new_token()
        self.store.update_account_token(account.id, account.token)
        await self.cache.delete_account(old_token)
        if cache_new:
            await self.cache.set_account(account)
        return old_token

    def rehash_if_needed(self, account: Account, password: str) -> None:
        if account.password_hash and self.hasher.needs_rehash(account.password_hash):
            account.password_hash = self.hasher.hash(password)
            self.store.update_account_password(account.id, account.password_hash)

    def check_duplicates(
        self, user_name: Optional[str], email: Optional[str], exclude_id: Optional[str] = None
    ) -> Optional[MutationResult]:
        return _conflict_result(self.store.find_account_conflict(user_name, email, exclude_id))

    def create(
        self,
        *,
        user_name: str,
        email: str,
        password: str,
        phone: str,
        name: str = "",
        role: int = 0,
        two_fa: bool = False,
    ) -> MutationResult:
        reason = first_failure(
            check_user_name(user_name),
            check_password(password),
            check_email(email),
            check_phone(phone),
        )
        if reason:
            return MutationResult.rejected(Rejection.VALIDATION_FAILED, reason)
        duplicate = self.check_duplicates(user_name, email)
        if duplicate:
            return duplicate
        account = Account(
            id=new_token(),
            user_name=user_name,
            email=email,
            password_hash=self.hasher.hash(password),
            name=name,
            phone=phone,
            role=role,
            token=new_token(),
            two_fa=two_fa,
        )
        try:
            self.store.create_account(account)
        except ConstraintViolation as exc:
            return _conflict_result(exc.field or "user_name")
        logger.info("account_created", account_id=account.id, role=role)
        return MutationResult.success(account)

    async def update_admin(self, account: Account) -> MutationResult:
        reason = first_failure(
            check_phone(account.phone),
            check_email(account.email),
            check_user_name(account.user_name),
        )
        if reason:
            return MutationResult.rejected(Rejection.VALIDATION_FAILED, reason)
        duplicate = self.check_duplicates(account.user_name, account.email, account.id)
        if duplicate:
            return duplicate
        try:
            self.store.update_account_admin(account)
        except ConstraintViolation as exc:
            return _conflict_result(exc.field or "user_name")
        await self.refresh_cache(account)
        logger.info("account_updated", account_id=account.id, role=account.role)
        return MutationResult.success(account)

    async def update_settings(self, account: Account, name: str, phone: str) -> MutationResult:
        reason = check_phone(phone)
        if reason:
            return MutationResult.rejected(Rejection.VALIDATION_FAILED, reason)
        self.store.update_account_profile(account.id, name, phone)
        account.name = name
        account.phone = phone
        await self.refresh_cache(account)
        return MutationResult.success(account)

    async def set_two_fa(self, account: Account, enabled: bool) -> Account:
        self.store.set_account_two_fa(account.id, enabled)
        account.two_fa = enabled
        await self.refresh_cache(account)
        logger.info("account_two_fa_changed", account_id=account.id, enabled=enabled)
        return account

    async def set_password(self, account: Account, password: str) -> None:
        account.password_hash = self.hasher.hash(password)
        self.store.update_account_password(account.id, account.password_hash)
        await self.refresh_cache(account)

    async def delete(self, account: Account) -> bool:
        removed = self.store.delete_account(account.id)
        await self.cache.delete_account(account.token)
        if removed:
            logger.info("account_deleted", account_id=account.id)
        return removed
