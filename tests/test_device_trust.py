import pytest

from trustgate.schemas import Credentials
from trustgate.service.errors import (
    DeviceAccountMismatchError,
    DeviceAlreadyActiveError,
    DeviceNotFoundError,
    InvalidCodeError,
    InvalidSessionError,
)
from trustgate.service.session_cache import device_key
from trustgate.storage.models import ADMIN_ROLE, Session


class TestDeviceTrustManager:
    async def test_create_device_is_inactive_with_six_digit_code(self, devices, make_account, store):
        account = make_account("alice1", "secret12")

        device = devices.create_device(account.id)

        assert device.active is False
        assert len(device.code) == 6 and device.code.isdigit()
        assert store.get_device(device.id).account_id == account.id

    async def test_get_device_empty_id_returns_none(self, devices):
        assert await devices.get_device("") is None

    async def test_get_device_writes_back_to_cache(self, devices, make_account, cache_backend):
        account = make_account("alice1", "secret12")
        device = devices.create_device(account.id)

        assert await cache_backend.get(device_key(device.id)) is None
        fetched = await devices.get_device(device.id)

        assert fetched.id == device.id
        assert await cache_backend.get(device_key(device.id)) is not None

    async def test_activate_then_replay(self, devices, make_account, store):
        account = make_account("alice1", "secret12")
        device = devices.create_device(account.id)

        activated = await devices.activate_device(account.id, device.id, device.code)

        assert activated.active
        assert store.get_device(device.id).active
        assert (await devices.get_device(device.id)).active
        with pytest.raises(DeviceAlreadyActiveError):
            await devices.activate_device(account.id, device.id, device.code)

    async def test_missing_device(self, devices):
        with pytest.raises(DeviceNotFoundError):
            await devices.activate_device("acct", "missing", "123456")

    async def test_mismatched_account(self, devices, make_account):
        owner = make_account("alice1", "secret12")
        intruder = make_account("mallory", "secret12")
        device = devices.create_device(owner.id)

        with pytest.raises(DeviceAccountMismatchError):
            await devices.activate_device(intruder.id, device.id, device.code)

    async def test_wrong_code_leaves_device_inactive(self, devices, make_account, store):
        account = make_account("alice1", "secret12")
        device = devices.create_device(account.id)
        wrong = "000000" if device.code != "000000" else "111111"

        with pytest.raises(InvalidCodeError):
            await devices.activate_device(account.id, device.id, wrong)
        assert not store.get_device(device.id).active

    async def test_already_active_checked_before_account(self, devices, make_account):
        owner = make_account("alice1", "secret12")
        other = make_account("mallory", "secret12")
        device = devices.create_device(owner.id)
        await devices.activate_device(owner.id, device.id, device.code)

        with pytest.raises(DeviceAlreadyActiveError):
            await devices.activate_device(other.id, device.id, "bad")

    async def test_delete_account_devices_drops_cache(self, devices, make_account, cache_backend, store):
        account = make_account("alice1", "secret12")
        device = devices.create_device(account.id)
        await devices.get_device(device.id)

        removed = await devices.delete_account_devices(account.id)

        assert removed == [device.id]
        assert store.get_device(device.id) is None
        assert await cache_backend.get(device_key(device.id)) is None


class TestActivateThroughAuthService:
    async def test_activation_uses_session_without_device_gate(self, auth, make_account):
        make_account("rootadmin", "admin123", role=ADMIN_ROLE)
        account, device = await auth.login(
            Credentials(user_name_or_email="rootadmin", password="admin123"), Session()
        )

        activated = await auth.activate_device(Session(token=account.token), device.id, device.code)

        assert activated.active
        trusted = await auth.check_account_session(Session(token=account.token, device_id=device.id))
        assert trusted.is_admin

    async def test_activation_requires_a_session(self, auth):
        with pytest.raises(InvalidSessionError):
            await auth.activate_device(Session(token=""), "device", "123456")
