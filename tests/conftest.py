import asyncio
import inspect
import os
import sys
import tempfile
from pathlib import Path

# Create temp directory for tests before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="trustgate_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("PERSIST_MEMORY_STORE", "false")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("HOUSEKEEPING_ENABLED", "false")
# Blank REDIS_URL keeps tests on the in-process MemoryCache
os.environ.setdefault("REDIS_URL", "")

import pytest  # noqa: E402
from argon2 import PasswordHasher, Type  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from trustgate.service.accounts import AccountManager  # noqa: E402
from trustgate.service.auth import AuthService  # noqa: E402
from trustgate.service.credentials import CredentialHasher, new_token  # noqa: E402
from trustgate.service.devices import DeviceTrustManager  # noqa: E402
from trustgate.service.recovery import RecoveryManager  # noqa: E402
from trustgate.service.runtime import reset_runtime_for_tests  # noqa: E402
from trustgate.service.session_cache import SessionCache  # noqa: E402
from trustgate.storage.memory import MemoryCache, MemoryStore  # noqa: E402
from trustgate.storage.models import Account  # noqa: E402


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def hasher():
    # Cheap argon2id parameters; production defaults are far slower
    return CredentialHasher(
        PasswordHasher(time_cost=1, memory_cost=8, parallelism=1, type=Type.ID)
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def cache_backend():
    return MemoryCache()


@pytest.fixture
def session_cache(cache_backend):
    return SessionCache(cache_backend, ttl_seconds=1800)


@pytest.fixture
def accounts(store, session_cache, hasher):
    return AccountManager(store, session_cache, hasher)


@pytest.fixture
def devices(store, session_cache):
    return DeviceTrustManager(store, session_cache)


@pytest.fixture
def recovery(store, accounts):
    return RecoveryManager(store, accounts)


@pytest.fixture
def auth(accounts, devices, recovery, hasher):
    return AuthService(accounts, devices, recovery, hasher)


@pytest.fixture
def make_account(store, hasher):
    """Insert an account straight into the store with a hashed password."""

    def _make(
        user_name: str,
        password: str,
        *,
        email: str | None = None,
        role: int = 0,
        two_fa: bool = False,
        name: str = "",
    ) -> Account:
        account = Account(
            id=new_token(),
            user_name=user_name,
            email=email or f"{user_name}@example.com",
            password_hash=hasher.hash(password),
            name=name or user_name.title(),
            phone="555-555-5555",
            role=role,
            two_fa=two_fa,
        )
        return store.create_account(account)

    return _make


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
