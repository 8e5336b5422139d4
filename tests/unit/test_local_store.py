"""Unit tests for local key/value stores and the per-user backup."""

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.core.field_codec import FieldCodec
from src.core.local_backup import BackupProfile, LocalBackup
from src.core.local_store import InMemoryLocalStore, RedisLocalStore, backup_key, create_local_store, with_retry
from src.domain.task import Task
from src.domain.user import AppSettings


@pytest.mark.unit
class TestInMemoryLocalStore:
    """Tests for InMemoryLocalStore."""

    async def test_set_get_delete(self, local_store: InMemoryLocalStore):
        """Values round-trip and can be removed."""
        assert await local_store.set("k", "v") is True
        assert await local_store.get("k") == "v"

        assert await local_store.delete("k") is True
        assert await local_store.get("k") is None

    async def test_delete_without_keys(self, local_store: InMemoryLocalStore):
        """Deleting nothing reports False."""
        assert await local_store.delete() is False

    def test_backup_key_uses_prefix(self):
        """Backup keys are the namespace followed by the user ID."""
        assert backup_key("user1") == "lifesync_data_user1"
        assert backup_key("user1", "custom_") == "custom_user1"

    def test_factory_defaults_to_memory(self, monkeypatch):
        """Without a Redis URL the in-memory store is used."""
        monkeypatch.setattr("src.core.local_store.settings.redis_url", None)

        assert isinstance(create_local_store(), InMemoryLocalStore)


@pytest.mark.unit
class TestRedisLocalStore:
    """Tests for RedisLocalStore with a mocked client."""

    async def test_get_and_set(self):
        """Calls go to the Redis client."""
        client = AsyncMock()
        client.get = AsyncMock(return_value="stored")
        store = RedisLocalStore(client=client)

        assert await store.get("k") == "stored"
        assert await store.set("k", "v") is True
        client.set.assert_awaited_once_with("k", "v")

    async def test_get_retries_then_succeeds(self):
        """Transient Redis errors are retried."""
        client = AsyncMock()
        client.get = AsyncMock(side_effect=[RedisConnectionError("blip"), "stored"])
        store = RedisLocalStore(client=client)

        assert await store.get("k") == "stored"
        assert client.get.await_count == 2

    async def test_persistent_failure_degrades_to_miss(self):
        """After all retries a read is a miss and a write reports False."""
        client = AsyncMock()
        client.get = AsyncMock(side_effect=RedisConnectionError("down"))
        client.set = AsyncMock(side_effect=RedisConnectionError("down"))
        store = RedisLocalStore(client=client)

        assert await store.get("k") is None
        assert await store.set("k", "v") is False
        assert client.get.await_count == 3

    async def test_without_client_everything_misses(self):
        """A store with no URL and no client is inert."""
        store = RedisLocalStore(redis_url=None)
        store._client = None

        assert store.is_available is False
        assert await store.get("k") is None
        assert await store.set("k", "v") is False
        assert await store.delete("k") is False
        assert await store.ping() is False

    async def test_ping_reports_connectivity(self):
        """ping returns False instead of raising on Redis errors."""
        client = AsyncMock()
        client.ping = AsyncMock(side_effect=RedisConnectionError("down"))
        store = RedisLocalStore(client=client)

        assert await store.ping() is False


@pytest.mark.unit
class TestWithRetry:
    """Tests for the with_retry decorator."""

    async def test_raises_after_max_retries(self):
        """The last Redis error is re-raised once retries are exhausted."""
        calls = []

        @with_retry(max_retries=2, base_delay=0)
        async def always_fails() -> None:
            calls.append(1)
            raise RedisConnectionError("down")

        with pytest.raises(RedisConnectionError):
            await always_fails()

        assert len(calls) == 2


def _task(**overrides) -> Task:
    data = {
        "id": "t1",
        "user_id": "user1",
        "name": "Run",
        "why": "Stay fit",
        "penalty": "No dessert",
        "start_date": "2024-03-01",
        "end_date": "2024-12-31",
        "completed_dates": ["2024-03-09"],
        "streaks": 1,
        "max_streaks": 1,
    }
    data.update(overrides)
    return Task(**data)


@pytest.mark.unit
class TestLocalBackup:
    """Tests for LocalBackup."""

    async def test_save_then_load(self, local_store: InMemoryLocalStore, codec: FieldCodec):
        """A saved backup loads back with decrypted tasks, settings and profile."""
        backup = LocalBackup(local_store, codec, "user1")
        settings = AppSettings(sound_enabled=False, dark_mode=True)
        profile = BackupProfile(bio="Runner", gender="F", dob="1990-01-01")

        assert await backup.save(tasks=[_task()], settings=settings, profile=profile) is True
        blob = await backup.load()

        assert blob is not None
        assert blob.tasks == [_task()]
        assert blob.settings == settings
        assert blob.profile == profile

    async def test_sensitive_task_fields_are_encrypted_at_rest(
        self, local_store: InMemoryLocalStore, codec: FieldCodec
    ):
        """The stored blob never contains sensitive task fields in plaintext."""
        backup = LocalBackup(local_store, codec, "user1")
        await backup.save(tasks=[_task()], settings=AppSettings(), profile=BackupProfile())

        raw = json.loads(await local_store.get("lifesync_data_user1"))
        stored = raw["tasks"][0]

        assert stored["name"] != "Run"
        assert stored["why"] != "Stay fit"
        assert stored["penalty"] != "No dessert"
        assert stored["completed_dates"] == ["2024-03-09"]
        assert "secret_key" not in raw["profile"]

    async def test_missing_backup_loads_none(self, local_store: InMemoryLocalStore, codec: FieldCodec):
        """No stored entry means no backup."""
        assert await LocalBackup(local_store, codec, "user1").load() is None

    async def test_unreadable_backup_loads_none(self, local_store: InMemoryLocalStore, codec: FieldCodec):
        """A corrupt entry is ignored."""
        await local_store.set("lifesync_data_user1", "{not json")

        assert await LocalBackup(local_store, codec, "user1").load() is None

    async def test_backups_are_per_user(self, local_store: InMemoryLocalStore, codec: FieldCodec):
        """Each user has their own backup key."""
        await LocalBackup(local_store, codec, "user1").save(
            tasks=[_task()], settings=AppSettings(), profile=BackupProfile()
        )

        assert await LocalBackup(local_store, codec, "user2").load() is None
