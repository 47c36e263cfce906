import asyncio
import inspect
import os
import sys
import tempfile
import uuid
from collections import Counter
from pathlib import Path

# Isolate tests from the developer's real state dir before anything reads settings
_test_tmp_dir = tempfile.mkdtemp(prefix="usersession_test_")
os.environ.setdefault("STATE_DIR", _test_tmp_dir)
os.environ.setdefault("CREDENTIAL_BACKEND", "memory")
os.environ.setdefault("IDENTITY_BACKEND", "local")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from usersession.logging import get_logger  # noqa: E402
from usersession.service.coordinator import SessionCoordinator  # noqa: E402
from usersession.service.local_identity import LocalIdentityClient  # noqa: E402
from usersession.service.runtime import reset_runtime_for_tests  # noqa: E402
from usersession.storage.credentials import MemoryCredentialStore  # noqa: E402

TEST_CLIENT_ID = "usersession-test-client"
TEST_PASSWORD = "correct-horse-battery-staple"

logger = get_logger(__name__)


class CountingIdentityClient:
    """Wraps an identity client and counts calls per operation."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = Counter()

    async def register(self, details):
        self.calls["register"] += 1
        return await self.inner.register(details)

    async def login(self, strategy, credentials):
        self.calls["login"] += 1
        return await self.inner.login(strategy, credentials)

    async def fetch_profile(self, id_token):
        self.calls["fetch_profile"] += 1
        return await self.inner.fetch_profile(id_token)

    async def refresh(self, refresh_token):
        self.calls["refresh"] += 1
        return await self.inner.refresh(refresh_token)

    async def delete_current_user(self, id_token):
        self.calls["delete_current_user"] += 1
        return await self.inner.delete_current_user(id_token)

    def reset(self):
        self.calls.clear()


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def local_identity():
    # Non-zero latency so concurrent callers genuinely overlap
    return LocalIdentityClient(latency=0.01)


@pytest.fixture
def identity(local_identity):
    return CountingIdentityClient(local_identity)


@pytest.fixture
def credential_store():
    return MemoryCredentialStore()


@pytest.fixture
def make_coordinator(identity, credential_store):
    def _make(store=None, client_identity=TEST_CLIENT_ID, **kwargs):
        coordinator = SessionCoordinator(identity, store or credential_store, **kwargs)
        coordinator.initialize(client_identity)
        return coordinator

    return _make


@pytest.fixture
def registered_user(identity, make_coordinator):
    """Register a throwaway account, then log out so tests start clean."""
    username = f"usersession-test-{uuid.uuid4().hex[:10]}"
    coordinator = make_coordinator(store=MemoryCredentialStore())

    async def _register():
        user = await coordinator.register(
            {
                "username": username,
                "password": TEST_PASSWORD,
                "email": f"{username}@example.com",
                "given_name": "Session",
                "family_name": "Test User",
            }
        )
        await coordinator.logout()
        return user

    user = asyncio.run(_register())
    identity.reset()
    yield {"username": user.username, "password": TEST_PASSWORD, "user": user}

    async def _cleanup():
        await coordinator.login("user-pass", {"username": username, "password": TEST_PASSWORD})
        await coordinator.delete_current_user()

    try:
        asyncio.run(_cleanup())
    except Exception as exc:
        logger.warning("test_account_cleanup_failed", username=username, error=str(exc))


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
