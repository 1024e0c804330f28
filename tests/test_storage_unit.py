import time
from datetime import timedelta

import pytest

from trustgate.storage.errors import ConstraintViolation
from trustgate.storage.memory import MemoryCache, MemoryStore
from trustgate.storage.models import Account, Device, EmailChange, Recovery, utcnow


def _account(account_id="a1", user_name="alice1", email="alice@example.com", **kwargs):
    return Account(id=account_id, user_name=user_name, email=email, password_hash="h", **kwargs)


class TestMemoryStoreAccounts:
    def test_create_and_lookup(self):
        store = MemoryStore()
        store.create_account(_account(token="tok"))

        assert store.get_account("a1").user_name == "alice1"
        assert store.get_account_by_token("tok").id == "a1"
        assert store.get_account_by_login("alice1").id == "a1"
        assert store.get_account_by_login("alice@example.com").id == "a1"
        assert store.get_account_by_token("") is None

    def test_login_prefers_user_name_over_email(self):
        store = MemoryStore()
        store.create_account(_account("a1", "bob@example.com", "first@example.com"))
        store.create_account(_account("a2", "bobby22", "bob@example.com"))

        assert store.get_account_by_login("bob@example.com").id == "a1"
        assert store.get_account_by_login("first@example.com").id == "a1"

    def test_returned_rows_are_copies(self):
        store = MemoryStore()
        store.create_account(_account())

        fetched = store.get_account("a1")
        fetched.email = "changed@example.com"

        assert store.get_account("a1").email == "alice@example.com"

    def test_uniqueness_is_enforced(self):
        store = MemoryStore()
        store.create_account(_account())

        with pytest.raises(ConstraintViolation) as by_name:
            store.create_account(_account("a2", email="other@example.com"))
        with pytest.raises(ConstraintViolation) as by_email:
            store.create_account(_account("a3", user_name="other11"))

        assert by_name.value.field == "user_name"
        assert by_email.value.field == "email"

    def test_find_account_conflict_excludes_self(self):
        store = MemoryStore()
        store.create_account(_account())

        assert store.find_account_conflict("alice1", "alice@example.com", "a1") is None
        assert store.find_account_conflict("alice1", None) == "user_name"
        assert store.find_account_conflict(None, "alice@example.com") == "email"

    def test_list_filters_roles(self):
        store = MemoryStore()
        store.create_account(_account(name="Bea", role=999))
        store.create_account(_account("a2", "bobby22", "bob@example.com", name="Al"))

        assert [a.name for a in store.list_accounts()] == ["Al", "Bea"]
        assert [a.id for a in store.list_accounts([999])] == ["a1"]

    def test_delete_cascades(self):
        store = MemoryStore()
        store.create_account(_account())
        store.create_device(Device(id="d1", account_id="a1", code="123456"))
        store.create_recovery(Recovery(id="r1", account_id="a1", email="e", user_name="u"))
        store.create_email_change(
            EmailChange(id="c1", account_id="a1", old_email="o", new_email="n")
        )

        assert store.delete_account("a1") is True

        assert store.get_device("d1") is None
        assert store.get_recovery("r1") is None
        assert store.get_email_change("c1") is None
        assert store.delete_account("a1") is False

    def test_device_requires_account(self):
        store = MemoryStore()
        with pytest.raises(ConstraintViolation):
            store.create_device(Device(id="d1", account_id="missing", code="123456"))


class TestMemoryStoreSweeps:
    def test_stale_devices_keep_active(self):
        store = MemoryStore()
        store.create_account(_account())
        old = utcnow() - timedelta(days=61)
        store.create_device(Device(id="old-inactive", account_id="a1", code="1", created=old))
        store.create_device(
            Device(id="old-active", account_id="a1", code="2", active=True, created=old)
        )
        store.create_device(Device(id="fresh", account_id="a1", code="3"))

        removed = store.delete_stale_devices(utcnow() - timedelta(days=60))

        assert removed == ["old-inactive"]
        assert store.get_device("old-active") is not None
        assert store.get_device("fresh") is not None

    def test_expired_recoveries(self):
        store = MemoryStore()
        store.create_account(_account())
        store.create_recovery(
            Recovery(
                id="old",
                account_id="a1",
                email="e",
                user_name="u",
                created=utcnow() - timedelta(hours=2),
            )
        )
        store.create_recovery(Recovery(id="new", account_id="a1", email="e", user_name="u"))

        assert store.delete_expired_recoveries(utcnow() - timedelta(hours=1)) == 1
        assert store.get_recovery("new") is not None


class TestMemoryStorePersistence:
    def test_state_survives_restart(self, tmp_path):
        store = MemoryStore(fs_root=str(tmp_path))
        store.create_account(_account(two_fa=True, role=999))
        store.create_device(Device(id="d1", account_id="a1", code="123456", active=True))

        reloaded = MemoryStore(fs_root=str(tmp_path))

        account = reloaded.get_account("a1")
        assert account.two_fa and account.is_admin
        assert reloaded.get_device("d1").active
        assert (tmp_path / "state" / "memory_store.json").exists()


class TestMemoryCache:
    async def test_set_get_delete(self):
        cache = MemoryCache()
        await cache.set("k", "v", 60)

        assert await cache.get("k") == "v"
        await cache.delete("k", "missing")
        assert await cache.get("k") is None

    async def test_entries_expire(self):
        cache = MemoryCache()
        await cache.set("k", "v", 5)
        value, _ = cache._entries["k"]
        cache._entries["k"] = (value, time.monotonic() - 1)

        assert await cache.get("k") is None

    async def test_set_drops_expired_entries(self):
        cache = MemoryCache()
        await cache.set("abandoned", "v", 5)
        await cache.set("live", "v", 60)
        value, _ = cache._entries["abandoned"]
        cache._entries["abandoned"] = (value, time.monotonic() - 1)

        await cache.set("other", "v", 60)

        assert set(cache._entries) == {"live", "other"}
