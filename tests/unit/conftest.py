"""Pytest configuration and fixtures for unit tests."""

import pytest

from src.core.document_store import InMemoryDocumentStore
from src.core.field_codec import FieldCodec
from src.core.local_store import InMemoryLocalStore
from src.core.synced_collection import WritePolicy
from src.core.trusted_clock import TrustedClock
from src.domain.user import User
from src.services.workspace import Workspace
from tests.unit.mocks import FlakyDocumentStore, FrozenTime, RecordingNotifier


TEST_SECRET = "test-app-secret"
TEST_USER_ID = "user1"
TEST_DEVICE_ID = "device1"


@pytest.fixture
def frozen_time() -> FrozenTime:
    """Device clock fixed at 2024-03-10 09:00 UTC."""
    return FrozenTime()


@pytest.fixture
def clock(frozen_time: FrozenTime) -> TrustedClock:
    """Unresolved trusted clock that follows the frozen device time."""
    return TrustedClock([], device_time=frozen_time)


@pytest.fixture
def codec() -> FieldCodec:
    return FieldCodec(app_secret=TEST_SECRET)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def store() -> FlakyDocumentStore:
    """In-memory document store that succeeds unless told to fail."""
    return FlakyDocumentStore()


@pytest.fixture
def memory_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def local_store() -> InMemoryLocalStore:
    return InMemoryLocalStore()


@pytest.fixture
def write_policy() -> WritePolicy:
    """Fast retry policy so failure tests do not sleep."""
    return WritePolicy(max_retries=2, base_delay=0, timeout_seconds=1.0)


@pytest.fixture
def user() -> User:
    return User(id=TEST_USER_ID, email="alex@example.com", name="Alex")


@pytest.fixture
def workspace(user, store, local_store, clock, codec, notifier, write_policy) -> Workspace:
    """Workspace for ``user1`` on ``device1``; not opened."""
    return Workspace(
        user=user,
        store=store,
        local_store=local_store,
        clock=clock,
        codec=codec,
        notifier=notifier,
        device_id=TEST_DEVICE_ID,
        user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0 Safari/537.36",
        write_policy=write_policy,
        backup_namespace="test_lifesync_",
    )


@pytest.fixture
async def open_workspace(workspace: Workspace):
    """Opened workspace, closed again after the test."""
    await workspace.open()
    yield workspace
    if workspace.is_open:
        await workspace.close()
