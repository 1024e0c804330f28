from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from trustgate.logging import get_logger
from trustgate.schemas import AccountUpdate, Credentials, NewAccount
from trustgate.service.accounts import AccountManager
from trustgate.service.credentials import CredentialHasher
from trustgate.service.devices import DeviceTrustManager
from trustgate.service.errors import (
    AccountNotFoundError,
    DeviceNotActiveError,
    EmailChangeNotFoundError,
    InsufficientPrivilegeError,
    InvalidCredentialsError,
    InvalidSessionError,
    NoDeviceFoundError,
    RecoveryNotFoundError,
    SessionNotFoundError,
    TwoFactorRequiredError,
    ValidationError,
)
from trustgate.service.recovery import RecoveryManager
from trustgate.service.results import MutationResult, Rejection
from trustgate.service.validation import check_email
from trustgate.storage.models import Account, Device, EmailChange, Recovery, Session

logger = get_logger(__name__)


class AuthService:
    """Session issuance and validation with device trust escalation.

    Accounts that are administrators or have opted into two-factor login must
    present an activated device on top of a valid session token. Every
    privileged operation validates the session first and only then checks the
    caller's capabilities.
    """

    def __init__(
        self,
        accounts: AccountManager,
        devices: DeviceTrustManager,
        recovery: RecoveryManager,
        hasher: CredentialHasher,
    ) -> None:
        self.accounts = accounts
        self.devices = devices
        self.recovery = recovery
        self.hasher = hasher

    # sessions
    async def login(
        self, credentials: Credentials, session: Session
    ) -> Tuple[Account, Optional[Device]]:
        account = self.accounts.get_by_login(credentials.user_name_or_email)
        if not account or not self.hasher.verify(account.password_hash, credentials.password):
            logger.warning("login_rejected")
            raise InvalidCredentialsError()
        self.accounts.rehash_if_needed(account, credentials.password)

        if not account.requires_device:
            await self.accounts.rotate_token(account)
            logger.info("login_succeeded", account_id=account.id)
            return account, None

        device = await self.devices.get_device(session.device_id)
        if not device or device.account_id != account.id:
            device = self.devices.create_device(account.id)
        await self.accounts.rotate_token(account)
        await self.devices.cache.set_device(device)
        logger.info(
            "login_succeeded",
            account_id=account.id,
            device_active=device.active,
        )
        return account, device

    async def _account_for_token(self, session: Session) -> Account:
        if not session.token:
            raise InvalidSessionError()
        account = await self.accounts.get_by_token(session.token)
        if not account:
            raise SessionNotFoundError()
        return account

    async def check_account_session(self, session: Session) -> Account:
        account = await self._account_for_token(session)
        if account.requires_device:
            device = await self.devices.get_device(session.device_id)
            if not device or device.account_id != account.id:
                raise NoDeviceFoundError()
            if not device.active:
                raise DeviceNotActiveError()
        return account

    async def _require_admin(self, session: Session) -> Account:
        account = await self.check_account_session(session)
        if not account.is_admin:
            logger.warning("privilege_denied", account_id=account.id)
            raise InsufficientPrivilegeError()
        return account

    async def logout(self, session: Session) -> bool:
        if not session.token:
            return False
        account = await self.accounts.get_by_token(session.token)
        if not account:
            return False
        # the replacement token is never handed out
        await self.accounts.rotate_token(account, cache_new=False)
        if session.device_id:
            await self.devices.cache.delete_devices(session.device_id)
        logger.info("logout", account_id=account.id)
        return True

    # devices
    async def activate_device(self, session: Session, device_id: str, code: str) -> Device:
        account = await self._account_for_token(session)
        return await self.devices.activate_device(account.id, device_id, code)

    # password recovery
    async def recover_account(self, email: str) -> Recovery:
        account = self.accounts.get_by_email(email) if email else None
        if not account:
            logger.info("recovery_unknown_email", email=email)
            raise AccountNotFoundError()
        return self.recovery.create_recovery(account)

    async def get_recovery(self, recovery_id: str) -> Recovery:
        recovery = self.recovery.get_recovery(recovery_id)
        if not recovery:
            raise RecoveryNotFoundError()
        return recovery

    async def finish_recovery(self, recovery_id: str, new_password: str) -> MutationResult:
        recovery = await self.get_recovery(recovery_id)
        account = self.accounts.get(recovery.account_id)
        if not account:
            raise AccountNotFoundError()
        return await self.recovery.finish_recovery(account, new_password, recovery)

    # email change
    async def change_email(self, session: Session, new_email: str) -> MutationResult:
        account = await self.check_account_session(session)
        reason = check_email(new_email)
        if reason:
            return MutationResult.rejected(Rejection.VALIDATION_FAILED, reason)
        duplicate = self.accounts.check_duplicates(None, new_email, account.id)
        if duplicate:
            return duplicate
        return MutationResult.success(self.recovery.request_email_change(account, new_email))

    async def get_email_change(self, change_id: str) -> EmailChange:
        change = self.recovery.get_email_change(change_id)
        if not change:
            raise EmailChangeNotFoundError()
        return change

    async def finish_email_change(self, change_id: str) -> MutationResult:
        change = await self.get_email_change(change_id)
        account = self.accounts.get(change.account_id)
        if not account:
            raise AccountNotFoundError()
        return await self.recovery.finish_email_change(account, change)

    # administration
    async def list_accounts(
        self, session: Session, roles: Optional[Iterable[int]] = None
    ) -> List[Account]:
        await self._require_admin(session)
        if roles is not None:
            roles = list(roles)
            if not roles:
                raise ValidationError("roles filter cannot be empty")
        accounts = self.accounts.list(roles)
        for account in accounts:
            account.password_hash = None
            account.token = ""
        return accounts

    async def register_account(self, session: Session, new_account: NewAccount) -> MutationResult:
        admin = await self._require_admin(session)
        result = self.accounts.create(
            user_name=new_account.user_name,
            email=new_account.email,
            password=new_account.password,
            name=new_account.name,
            phone=new_account.phone,
            role=new_account.role,
            two_fa=new_account.two_fa,
        )
        if result.ok:
            logger.info("account_registered", account_id=result.value.id, by=admin.id)
        return result

    async def update_other_account(self, session: Session, update: AccountUpdate) -> MutationResult:
        await self._require_admin(session)
        target = self.accounts.get(update.id)
        if not target:
            raise AccountNotFoundError()
        target.user_name = update.user_name
        target.email = update.email
        target.name = update.name
        target.phone = update.phone
        target.role = update.role
        return await self.accounts.update_admin(target)

    async def delete_account(self, session: Session, account_id: str) -> None:
        admin = await self._require_admin(session)
        target = self.accounts.get(account_id)
        if not target:
            raise AccountNotFoundError()
        await self.devices.delete_account_devices(target.id)
        await self.accounts.delete(target)
        logger.info("account_removed", account_id=target.id, by=admin.id)

    # self service
    async def update_account_settings(
        self, session: Session, name: str, phone: str
    ) -> MutationResult:
        account = await self.check_account_session(session)
        return await self.accounts.update_settings(account, name, phone)

    async def enable_two_fa(self, session: Session) -> Account:
        account = await self.check_account_session(session)
        return await self.accounts.set_two_fa(account, True)

    async def disable_two_fa(self, session: Session) -> Account:
        account = await self.check_account_session(session)
        if account.is_admin:
            raise TwoFactorRequiredError()
        account = await self.accounts.set_two_fa(account, False)
        await self.devices.delete_account_devices(account.id)
        return account
