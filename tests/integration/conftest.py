"""Pytest configuration and fixtures for integration tests.

Integration tests run workspaces against the SQLite document store on disk.
"""

import logging
from collections.abc import AsyncIterator, Callable

import pytest

from src.core.document_store import SqliteDocumentStore
from src.core.field_codec import FieldCodec
from src.core.local_store import InMemoryLocalStore
from src.core.synced_collection import WritePolicy
from src.core.trusted_clock import TrustedClock
from src.domain.user import User
from src.services.workspace import Workspace
from tests.unit.mocks import FrozenTime, RecordingNotifier


logger = logging.getLogger(__name__)


@pytest.fixture
def frozen_time() -> FrozenTime:
    return FrozenTime()


@pytest.fixture
def local_store() -> InMemoryLocalStore:
    return InMemoryLocalStore()


@pytest.fixture
def make_workspace(
    sqlite_store: SqliteDocumentStore, local_store: InMemoryLocalStore, frozen_time: FrozenTime
) -> Callable[..., Workspace]:
    """Factory for workspaces sharing one SQLite store; each call is a separate device."""

    def _make(*, device_id: str, user_id: str = "user1", user_agent: str | None = None) -> Workspace:
        return Workspace(
            user=User(id=user_id, email=f"{user_id}@example.com", name=user_id),
            store=sqlite_store,
            local_store=local_store,
            clock=TrustedClock([], device_time=frozen_time),
            codec=FieldCodec(app_secret="integration-secret"),
            notifier=RecordingNotifier(),
            device_id=device_id,
            user_agent=user_agent,
            write_policy=WritePolicy(max_retries=2, base_delay=0, timeout_seconds=5.0),
            backup_namespace=f"it_{device_id}_",
        )

    return _make


@pytest.fixture
async def phone(make_workspace: Callable[..., Workspace]) -> AsyncIterator[Workspace]:
    workspace = make_workspace(
        device_id="phone",
        user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 17_0) Version/17.0 Safari/604.1",
    )
    await workspace.open()
    yield workspace
    if workspace.is_open:
        await workspace.close()


@pytest.fixture
async def laptop(make_workspace: Callable[..., Workspace]) -> AsyncIterator[Workspace]:
    workspace = make_workspace(
        device_id="laptop",
        user_agent="Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/537.36 Chrome/120.0 Safari/537.36",
    )
    await workspace.open()
    yield workspace
    if workspace.is_open:
        await workspace.close()
