"""Pytest configuration and shared fixtures."""

import logging
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from src.core.config import Settings
from src.core.document_store import SqliteDocumentStore
from src.main import app


logger = logging.getLogger(__name__)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    return Settings(
        _env_file=None,
        app_secret="test-app-secret",
        sqlite_db_path=str(tmp_path / "store.db"),
        redis_url=None,
        logfire_token=None,
        write_max_retries=2,
        write_retry_base_delay=0,
    )


@pytest.fixture
async def sqlite_store(test_settings: Settings) -> AsyncIterator[SqliteDocumentStore]:
    """SQLite document store in a temporary directory."""
    store = SqliteDocumentStore(test_settings.sqlite_db_path)
    yield store
    await store.close()


@pytest.fixture
def test_client() -> TestClient:
    """Test client that does not run the lifespan (no scheduler, no network)."""
    return TestClient(app)
