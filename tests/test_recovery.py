"""Password recovery and email change flows."""

from datetime import timedelta

import pytest

from trustgate.schemas import Credentials
from trustgate.service.errors import (
    AccountNotFoundError,
    EmailChangeNotFoundError,
    InvalidCredentialsError,
    RecoveryNotFoundError,
)
from trustgate.service.results import Rejection
from trustgate.service.session_cache import account_key
from trustgate.storage.models import EmailChange, Recovery, Session, utcnow


async def _login(auth, login, password):
    account, _ = await auth.login(
        Credentials(user_name_or_email=login, password=password), Session()
    )
    return account


class TestPasswordRecovery:
    async def test_recovery_snapshots_identity(self, auth, make_account):
        account = make_account("alice1", "secret12", email="alice@example.com")

        recovery = await auth.recover_account("alice@example.com")

        assert recovery.account_id == account.id
        assert recovery.email == "alice@example.com"
        assert recovery.user_name == "alice1"
        assert (await auth.get_recovery(recovery.id)).id == recovery.id

    async def test_unknown_email(self, auth):
        with pytest.raises(AccountNotFoundError):
            await auth.recover_account("ghost@example.com")

    async def test_finish_is_single_use(self, auth, make_account):
        make_account("alice1", "secret12", email="alice@example.com")
        recovery = await auth.recover_account("alice@example.com")

        result = await auth.finish_recovery(recovery.id, "newpass99")

        assert result.ok
        with pytest.raises(RecoveryNotFoundError):
            await auth.get_recovery(recovery.id)
        with pytest.raises(RecoveryNotFoundError):
            await auth.finish_recovery(recovery.id, "another77")

    async def test_new_password_replaces_old(self, auth, make_account):
        make_account("alice1", "secret12", email="alice@example.com")
        recovery = await auth.recover_account("alice@example.com")

        await auth.finish_recovery(recovery.id, "newpass99")

        with pytest.raises(InvalidCredentialsError):
            await _login(auth, "alice1", "secret12")
        assert (await _login(auth, "alice1", "newpass99")).user_name == "alice1"

    async def test_weak_password_keeps_recovery_usable(self, auth, make_account):
        make_account("alice1", "secret12", email="alice@example.com")
        recovery = await auth.recover_account("alice@example.com")

        result = await auth.finish_recovery(recovery.id, "short")

        assert not result.ok
        assert result.rejection is Rejection.VALIDATION_FAILED
        assert (await auth.get_recovery(recovery.id)).id == recovery.id

    async def test_expired_recovery_reads_as_missing(self, auth, make_account, store):
        account = make_account("alice1", "secret12")
        stale = Recovery(
            id="stale-recovery",
            account_id=account.id,
            email=account.email,
            user_name=account.user_name,
            created=utcnow() - timedelta(hours=1, minutes=1),
        )
        store.create_recovery(stale)

        with pytest.raises(RecoveryNotFoundError):
            await auth.get_recovery("stale-recovery")

    async def test_finish_refreshes_cached_account(self, auth, make_account, cache_backend):
        make_account("alice1", "secret12", email="alice@example.com")
        account = await _login(auth, "alice1", "secret12")
        recovery = await auth.recover_account("alice@example.com")

        await auth.finish_recovery(recovery.id, "newpass99")

        cached = await cache_backend.get(account_key(account.token))
        assert cached is not None
        assert "password_hash" not in cached


class TestEmailChange:
    async def test_change_and_finish(self, auth, make_account, store):
        make_account("alice1", "secret12", email="alice@example.com")
        account = await _login(auth, "alice1", "secret12")
        session = Session(token=account.token)

        result = await auth.change_email(session, "alice@new.example.com")
        assert result.ok
        change = result.value
        assert change.old_email == "alice@example.com"

        result = await auth.finish_email_change(change.id)

        assert result.ok
        updated = result.value
        assert updated.email == "alice@new.example.com"
        assert store.get_account(account.id).email == "alice@new.example.com"
        current = await auth.check_account_session(session)
        assert current.email == "alice@new.example.com"
        with pytest.raises(EmailChangeNotFoundError):
            await auth.finish_email_change(change.id)

    async def test_invalid_format_is_rejected(self, auth, make_account):
        make_account("alice1", "secret12")
        account = await _login(auth, "alice1", "secret12")

        result = await auth.change_email(Session(token=account.token), "not-an-email")

        assert result.rejection is Rejection.VALIDATION_FAILED

    async def test_duplicate_at_request_time(self, auth, make_account):
        make_account("alice1", "secret12")
        make_account("bobby22", "secret12", email="bob@example.com")
        account = await _login(auth, "alice1", "secret12")

        result = await auth.change_email(Session(token=account.token), "bob@example.com")

        assert result.rejection is Rejection.EMAIL_TAKEN

    async def test_email_taken_between_request_and_finish(self, auth, make_account, store):
        make_account("alice1", "secret12", email="alice@example.com")
        bob = make_account("bobby22", "secret12", email="bob@example.com")
        alice = await _login(auth, "alice1", "secret12")
        change = (await auth.change_email(Session(token=alice.token), "x@example.com")).value

        store.update_account_email(bob.id, "x@example.com")

        result = await auth.finish_email_change(change.id)

        assert result.rejection is Rejection.EMAIL_TAKEN
        assert store.get_email_change(change.id) is None
        assert store.get_account(alice.id).email == "alice@example.com"

    async def test_store_constraint_at_finish_is_email_taken(
        self, auth, make_account, store, monkeypatch
    ):
        make_account("alice1", "secret12", email="alice@example.com")
        make_account("bobby22", "secret12", email="bob@example.com")
        alice = await _login(auth, "alice1", "secret12")
        change = store.create_email_change(
            EmailChange(
                id="pending", account_id=alice.id, old_email=alice.email, new_email="bob@example.com"
            )
        )
        # simulate the address being claimed after the duplicate check ran
        monkeypatch.setattr(auth.accounts, "check_duplicates", lambda *args: None)

        result = await auth.finish_email_change(change.id)

        assert result.rejection is Rejection.EMAIL_TAKEN
        assert store.get_email_change(change.id) is None
        assert store.get_account(alice.id).email == "alice@example.com"
