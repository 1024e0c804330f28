import importlib.util
from pathlib import Path

import pytest

from trustgate.schemas import Credentials
from trustgate.service.errors import NoDeviceFoundError
from trustgate.service.runtime import get_runtime
from trustgate.storage.models import ADMIN_ROLE, Session

_SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "bootstrap_admin.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("bootstrap_admin", _SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def bootstrap():
    return _load_script()


class TestBootstrapAdmin:
    async def test_creates_admin_with_two_factor(self, bootstrap):
        result = await bootstrap.bootstrap_admin(
            "rootadmin", "admin@example.com", "changeme42", "555-555-5555"
        )

        assert result["status"] == "created"
        runtime = get_runtime()
        account = runtime.store.get_account(result["account_id"])
        assert account.role == ADMIN_ROLE
        assert account.two_fa
        _, device = await runtime.auth.login(
            Credentials(user_name_or_email="rootadmin", password="changeme42"), Session()
        )
        assert device is not None and not device.active

    async def test_invalid_phone_is_reported(self, bootstrap):
        with pytest.raises(RuntimeError, match="phone"):
            await bootstrap.bootstrap_admin(
                "rootadmin", "admin@example.com", "changeme42", ""
            )

        assert get_runtime().store.get_account_by_email("admin@example.com") is None

    async def test_dry_run_creates_nothing(self, bootstrap):
        result = await bootstrap.bootstrap_admin(
            "rootadmin", "admin@example.com", "changeme42", "555-555-5555", dry_run=True
        )

        assert result["status"] == "dry_run"
        assert get_runtime().store.get_account_by_email("admin@example.com") is None

    async def test_promotion_refreshes_cached_session(self, bootstrap):
        runtime = get_runtime()
        created = runtime.accounts.create(
            user_name="plainuser",
            email="plain@example.com",
            password="secret12",
            phone="555-555-5555",
        )
        assert created.ok
        account, _ = await runtime.auth.login(
            Credentials(user_name_or_email="plainuser", password="secret12"), Session()
        )
        session = Session(token=account.token)
        assert (await runtime.auth.check_account_session(session)).role == 0

        result = await bootstrap.bootstrap_admin(
            "ignored1", "plain@example.com", "unused12", "555-555-5555"
        )

        assert result["status"] == "promoted"
        assert runtime.store.get_account(account.id).role == ADMIN_ROLE
        # the cached entry now carries the admin role, so the device gate applies
        with pytest.raises(NoDeviceFoundError):
            await runtime.auth.check_account_session(session)

    async def test_existing_admin_is_left_alone(self, bootstrap):
        await bootstrap.bootstrap_admin(
            "rootadmin", "admin@example.com", "changeme42", "555-555-5555"
        )

        again = await bootstrap.bootstrap_admin(
            "rootadmin", "admin@example.com", "changeme42", "555-555-5555"
        )

        assert again["status"] == "already_admin"
