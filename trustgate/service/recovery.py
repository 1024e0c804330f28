from __future__ import annotations

from datetime import timedelta
from typing import Optional, Protocol

from trustgate.logging import get_logger
from trustgate.service.accounts import AccountManager
from trustgate.service.credentials import new_token
from trustgate.service.results import MutationResult, Rejection
from trustgate.service.validation import check_password
from trustgate.storage.base import EmailChangeStore, RecoveryStore
from trustgate.storage.errors import ConstraintViolation
from trustgate.storage.models import Account, EmailChange, Recovery

logger = get_logger(__name__)


class RecoveryStores(RecoveryStore, EmailChangeStore, Protocol):
    pass


class RecoveryManager:
    """Time-boxed, single-use password recovery and email change tokens.

    Expiry is enforced when a token is read; the housekeeping sweep only
    reclaims space.
    """

    def __init__(
        self,
        store: RecoveryStores,
        accounts: AccountManager,
        *,
        recovery_ttl: timedelta = timedelta(hours=1),
        email_change_ttl: timedelta = timedelta(hours=1),
    ) -> None:
        self.store = store
        self.accounts = accounts
        self.recovery_ttl = recovery_ttl
        self.email_change_ttl = email_change_ttl

    # password recovery
    def create_recovery(self, account: Account) -> Recovery:
        recovery = Recovery(
            id=new_token(),
            account_id=account.id,
            email=account.email,
            user_name=account.user_name,
        )
        self.store.create_recovery(recovery)
        logger.info("recovery_created", account_id=account.id)
        return recovery

    def get_recovery(self, recovery_id: str) -> Optional[Recovery]:
        if not recovery_id:
            return None
        recovery = self.store.get_recovery(recovery_id)
        if recovery and recovery.is_expired(self.recovery_ttl):
            return None
        return recovery

    async def finish_recovery(
        self, account: Account, new_password: str, recovery: Recovery
    ) -> MutationResult:
        reason = check_password(new_password)
        if reason:
            return MutationResult.rejected(Rejection.VALIDATION_FAILED, reason)
        await self.accounts.set_password(account, new_password)
        if not self.store.delete_recovery(recovery.id):
            logger.warning("recovery_delete_failed", account_id=account.id)
        logger.info("recovery_finished", account_id=account.id)
        return MutationResult.success(account)

    # email change
    def request_email_change(self, account: Account, new_email: str) -> EmailChange:
        change = EmailChange(
            id=new_token(),
            account_id=account.id,
            old_email=account.email,
            new_email=new_email,
        )
        self.store.create_email_change(change)
        logger.info("email_change_requested", account_id=account.id, new_email=new_email)
        return change

    def get_email_change(self, change_id: str) -> Optional[EmailChange]:
        if not change_id:
            return None
        change = self.store.get_email_change(change_id)
        if change and change.is_expired(self.email_change_ttl):
            return None
        return change

    async def finish_email_change(self, account: Account, change: EmailChange) -> MutationResult:
        # the address may have been claimed while the change was pending
        taken = self.accounts.check_duplicates(None, change.new_email, account.id)
        if taken:
            self.store.delete_email_change(change.id)
            logger.info("email_change_collision", account_id=account.id)
            return taken
        try:
            self.store.update_account_email(account.id, change.new_email)
        except ConstraintViolation:
            self.store.delete_email_change(change.id)
            logger.info("email_change_collision", account_id=account.id)
            return MutationResult.rejected(Rejection.EMAIL_TAKEN, "Email address already in use")
        account.email = change.new_email
        await self.accounts.refresh_cache(account)
        if not self.store.delete_email_change(change.id):
            logger.warning("email_change_delete_failed", account_id=account.id)
        logger.info("email_change_finished", account_id=account.id)
        return MutationResult.success(account)
