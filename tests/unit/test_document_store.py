"""Unit tests for the document store implementations and snapshot channels."""

import asyncio

import pytest

from src.core.document_store import (
    InMemoryDocumentStore,
    SqliteDocumentStore,
    deep_merge,
    split_document_path,
)


async def _next(channel):
    return await asyncio.wait_for(channel.receive(), timeout=1.0)


@pytest.mark.unit
class TestPaths:
    """Tests for path helpers."""

    def test_split_document_path(self):
        """The last segment is the document ID."""
        assert split_document_path("users/u1/tasks/t1") == ("users/u1/tasks", "t1")
        assert split_document_path("users/u1") == ("users", "u1")

    def test_invalid_paths_are_rejected(self):
        """Empty segments and unsafe characters are rejected."""
        for path in ("", "users//tasks", "users/u1/tasks/../x", "users/u 1", "single"):
            with pytest.raises(ValueError):
                split_document_path(path)

    def test_deep_merge_recurses_into_dicts(self):
        """Nested dicts merge key by key; other values are replaced."""
        base = {"settings": {"dark_mode": True, "sound_enabled": True}, "name": "A"}

        merged = deep_merge(base, {"settings": {"dark_mode": False}, "tags": ["x"]})

        assert merged == {"settings": {"dark_mode": False, "sound_enabled": True}, "name": "A", "tags": ["x"]}
        assert base["settings"]["dark_mode"] is True


@pytest.mark.unit
class TestInMemoryDocumentStore:
    """Tests for InMemoryDocumentStore."""

    async def test_put_get_and_overwrite(self, memory_store: InMemoryDocumentStore):
        """put replaces the whole document."""
        await memory_store.put("users/u1/tasks/t1", {"id": "t1", "name": "A", "why": "x"})
        await memory_store.put("users/u1/tasks/t1", {"id": "t1", "name": "B"})

        assert await memory_store.get("users/u1/tasks/t1") == {"id": "t1", "name": "B"}
        assert await memory_store.get("users/u1/tasks/missing") is None

    async def test_set_merge_creates_and_merges(self, memory_store: InMemoryDocumentStore):
        """set_merge creates a missing document and merges into an existing one."""
        await memory_store.set_merge("users/u1", {"settings": {"dark_mode": True}})
        await memory_store.set_merge("users/u1", {"settings": {"sound_enabled": False}, "name": "Alex"})

        assert await memory_store.get("users/u1") == {
            "settings": {"dark_mode": True, "sound_enabled": False},
            "name": "Alex",
        }

    async def test_returned_documents_are_copies(self, memory_store: InMemoryDocumentStore):
        """Mutating a returned document does not change the store."""
        await memory_store.put("users/u1/tasks/t1", {"id": "t1", "completed_dates": []})

        document = await memory_store.get("users/u1/tasks/t1")
        document["completed_dates"].append("2024-03-10")

        assert (await memory_store.get("users/u1/tasks/t1"))["completed_dates"] == []

    async def test_subscribe_delivers_initial_snapshot(self, memory_store: InMemoryDocumentStore):
        """A new subscriber receives the current contents immediately."""
        await memory_store.put("users/u1/tasks/t1", {"id": "t1"})

        channel = await memory_store.subscribe("users/u1/tasks")
        snapshot = await _next(channel)

        assert snapshot.collection_path == "users/u1/tasks"
        assert snapshot.records == [{"id": "t1"}]

    async def test_every_write_publishes_full_snapshot(self, memory_store: InMemoryDocumentStore):
        """Each write delivers the whole collection, in write order."""
        channel = await memory_store.subscribe("users/u1/tasks")
        await _next(channel)

        await memory_store.put("users/u1/tasks/t1", {"id": "t1"})
        await memory_store.put("users/u1/tasks/t2", {"id": "t2"})
        await memory_store.delete("users/u1/tasks/t1")

        first = await _next(channel)
        second = await _next(channel)
        third = await _next(channel)

        assert [r["id"] for r in first.records] == ["t1"]
        assert sorted(r["id"] for r in second.records) == ["t1", "t2"]
        assert [r["id"] for r in third.records] == ["t2"]
        assert first.sequence < second.sequence < third.sequence

    async def test_collections_are_isolated(self, memory_store: InMemoryDocumentStore):
        """Writes to one collection do not reach subscribers of another."""
        tasks = await memory_store.subscribe("users/u1/tasks")
        await _next(tasks)

        await memory_store.put("users/u1/proofs/p1", {"id": "p1"})
        await memory_store.put("users/u2/tasks/t1", {"id": "t1"})

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(tasks.receive(), timeout=0.05)

    async def test_nested_documents_are_not_listed(self, memory_store: InMemoryDocumentStore):
        """A collection lists only its direct documents."""
        await memory_store.set_merge("users/u1", {"name": "Alex"})
        await memory_store.put("users/u1/tasks/t1", {"id": "t1"})

        assert await memory_store.list_collection("users") == [{"name": "Alex"}]

    async def test_delete_missing_document_is_silent(self, memory_store: InMemoryDocumentStore):
        """Deleting a missing document neither raises nor publishes."""
        channel = await memory_store.subscribe("users/u1/tasks")
        await _next(channel)

        await memory_store.delete("users/u1/tasks/missing")

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(channel.receive(), timeout=0.05)

    async def test_closed_channel_ends_iteration(self, memory_store: InMemoryDocumentStore):
        """Closing a channel stops async iteration and detaches it from the store."""
        channel = await memory_store.subscribe("users/u1/tasks")
        channel.close()

        received = [snapshot async for snapshot in channel]
        await memory_store.put("users/u1/tasks/t1", {"id": "t1"})

        assert len(received) == 1
        assert channel.closed is True


@pytest.mark.unit
class TestSqliteDocumentStore:
    """Tests for SqliteDocumentStore."""

    async def test_put_get_delete(self, sqlite_store: SqliteDocumentStore):
        """Documents round-trip through SQLite as JSON."""
        await sqlite_store.put("users/u1/tasks/t1", {"id": "t1", "completed_dates": ["2024-03-10"]})

        assert await sqlite_store.get("users/u1/tasks/t1") == {"id": "t1", "completed_dates": ["2024-03-10"]}

        await sqlite_store.delete("users/u1/tasks/t1")

        assert await sqlite_store.get("users/u1/tasks/t1") is None

    async def test_set_merge(self, sqlite_store: SqliteDocumentStore):
        """set_merge merges nested fields into the stored document."""
        await sqlite_store.set_merge("users/u1/sessions/d1", {"id": "d1", "device_name": "Chrome on Mac"})
        await sqlite_store.set_merge("users/u1/sessions/d1", {"last_active": "2024-03-10T09:00:00+00:00"})

        assert await sqlite_store.get("users/u1/sessions/d1") == {
            "id": "d1",
            "device_name": "Chrome on Mac",
            "last_active": "2024-03-10T09:00:00+00:00",
        }

    async def test_subscribe_receives_snapshots(self, sqlite_store: SqliteDocumentStore):
        """Subscribers get the initial contents and a snapshot after each write."""
        await sqlite_store.put("users/u1/tasks/t1", {"id": "t1"})
        channel = await sqlite_store.subscribe("users/u1/tasks")

        initial = await _next(channel)
        await sqlite_store.put("users/u1/tasks/t2", {"id": "t2"})
        updated = await _next(channel)

        assert [r["id"] for r in initial.records] == ["t1"]
        assert [r["id"] for r in updated.records] == ["t1", "t2"]

    async def test_data_survives_reopen(self, test_settings):
        """Documents persist across store instances on the same file."""
        first = SqliteDocumentStore(test_settings.sqlite_db_path)
        await first.put("users/u1/tasks/t1", {"id": "t1"})
        await first.close()

        second = SqliteDocumentStore(test_settings.sqlite_db_path)
        try:
            assert await second.list_collection("users/u1/tasks") == [{"id": "t1"}]
        finally:
            await second.close()

    async def test_close_ends_subscriptions(self, test_settings):
        """Closing the store closes every open channel."""
        store = SqliteDocumentStore(test_settings.sqlite_db_path)
        channel = await store.subscribe("users/u1/tasks")

        await store.close()

        assert channel.closed is True
