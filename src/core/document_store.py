"""Document store abstraction with whole-collection snapshot subscriptions.

Documents live at slash-separated paths (``users/{uid}/tasks/{task_id}``).
A collection path is a document path without its last segment. Subscribers
receive the *complete* current contents of a collection after every change,
never a diff, through a ``SnapshotChannel``.
"""

import asyncio
import copy
import json
import logging
import re
from collections import defaultdict
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

import aiosqlite
from pydantic import BaseModel, Field

from src.core.config import settings
from src.domain.record import ID_PATTERN


logger = logging.getLogger(__name__)

_SEGMENT_PATTERN = re.compile(ID_PATTERN)


class DocumentStoreError(Exception):
    """A store operation failed."""


class RecordNotFoundError(DocumentStoreError, KeyError):
    """The requested document does not exist."""


class InvalidPathError(ValueError):
    """A path segment contains characters the store does not accept."""


def _validate_path(path: str) -> list[str]:
    """Validate a store path and return its segments."""
    segments = path.split("/")
    if not path or not all(_SEGMENT_PATTERN.match(segment) for segment in segments):
        msg = f"Invalid store path: {path}. Segments may only contain letters, digits, '-' and '_'."
        raise InvalidPathError(msg)
    return segments


def split_document_path(path: str) -> tuple[str, str]:
    """Split a document path into (collection_path, document_id)."""
    segments = _validate_path(path)
    if len(segments) < 2:  # noqa: PLR2004
        msg = f"Document path must include a collection: {path}"
        raise ValueError(msg)
    return "/".join(segments[:-1]), segments[-1]


def deep_merge(base: dict[str, Any], partial: dict[str, Any]) -> dict[str, Any]:
    """Merge ``partial`` into a copy of ``base``, recursing into nested dicts."""
    merged = copy.deepcopy(base)
    for key, value in partial.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class Snapshot(BaseModel):
    """Full contents of one collection at the moment of delivery."""

    collection_path: str
    records: list[dict[str, Any]] = Field(default_factory=list)
    sequence: int = Field(..., description="Per-store delivery counter, increasing in publish order")


class SnapshotChannel:
    """Ordered stream of snapshots for a single collection.

    Iterate with ``async for``; iteration ends once the channel is closed.
    """

    def __init__(self, collection_path: str, on_close: Callable[["SnapshotChannel"], None]) -> None:
        self.collection_path = collection_path
        self._queue: asyncio.Queue[Snapshot | None] = asyncio.Queue()
        self._on_close = on_close
        self.closed = False

    def publish(self, snapshot: Snapshot) -> None:
        if not self.closed:
            self._queue.put_nowait(snapshot)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(None)
        self._on_close(self)

    async def receive(self) -> Snapshot | None:
        """Wait for the next snapshot; None once the channel is closed."""
        return await self._queue.get()

    def __aiter__(self) -> "SnapshotChannel":
        return self

    async def __anext__(self) -> Snapshot:
        snapshot = await self.receive()
        if snapshot is None:
            raise StopAsyncIteration
        return snapshot


class DocumentStore(Protocol):
    """Remote document store used by synced collections."""

    async def put(self, path: str, record: dict[str, Any]) -> None: ...

    async def set_merge(self, path: str, partial: dict[str, Any]) -> None: ...

    async def delete(self, path: str) -> None: ...

    async def get(self, path: str) -> dict[str, Any] | None: ...

    async def subscribe(self, collection_path: str) -> SnapshotChannel: ...


class SnapshotPublisher:
    """Shared subscription bookkeeping for store implementations."""

    def __init__(self) -> None:
        self._channels: dict[str, list[SnapshotChannel]] = defaultdict(list)
        self._sequence = 0

    async def list_collection(self, collection_path: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    def _detach(self, channel: SnapshotChannel) -> None:
        channels = self._channels.get(channel.collection_path, [])
        if channel in channels:
            channels.remove(channel)
        logger.debug("Snapshot channel closed", extra={"collection": channel.collection_path})

    async def _snapshot(self, collection_path: str) -> Snapshot:
        self._sequence += 1
        records = await self.list_collection(collection_path)
        return Snapshot(collection_path=collection_path, records=records, sequence=self._sequence)

    async def _publish(self, collection_path: str) -> None:
        channels = list(self._channels.get(collection_path, []))
        if not channels:
            return
        snapshot = await self._snapshot(collection_path)
        for channel in channels:
            channel.publish(snapshot)

    async def subscribe(self, collection_path: str) -> SnapshotChannel:
        """Attach a channel; the current contents are delivered immediately."""
        _validate_path(collection_path)
        channel = SnapshotChannel(collection_path, on_close=self._detach)
        self._channels[collection_path].append(channel)
        channel.publish(await self._snapshot(collection_path))
        logger.debug("Snapshot channel opened", extra={"collection": collection_path})
        return channel

    def close_channels(self) -> None:
        for channels in list(self._channels.values()):
            for channel in list(channels):
                channel.close()


class InMemoryDocumentStore(SnapshotPublisher):
    """Process-local document store, used in tests and single-process setups."""

    def __init__(self) -> None:
        super().__init__()
        self._documents: dict[str, dict[str, Any]] = {}

    async def list_collection(self, collection_path: str) -> list[dict[str, Any]]:
        prefix = f"{collection_path}/"
        return [
            copy.deepcopy(record)
            for path, record in self._documents.items()
            if path.startswith(prefix) and "/" not in path[len(prefix) :]
        ]

    async def put(self, path: str, record: dict[str, Any]) -> None:
        collection_path, _ = split_document_path(path)
        self._documents[path] = copy.deepcopy(record)
        await self._publish(collection_path)

    async def set_merge(self, path: str, partial: dict[str, Any]) -> None:
        collection_path, _ = split_document_path(path)
        self._documents[path] = deep_merge(self._documents.get(path, {}), partial)
        await self._publish(collection_path)

    async def delete(self, path: str) -> None:
        collection_path, _ = split_document_path(path)
        if self._documents.pop(path, None) is not None:
            await self._publish(collection_path)

    async def get(self, path: str) -> dict[str, Any] | None:
        split_document_path(path)
        record = self._documents.get(path)
        return copy.deepcopy(record) if record is not None else None


class SqliteDocumentStore(SnapshotPublisher):
    """Document store persisted to a single SQLite table via aiosqlite."""

    def __init__(self, db_path: str | None = None) -> None:
        super().__init__()
        self._db_path = Path(db_path or settings.sqlite_db_path).resolve()
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def _connection(self) -> aiosqlite.Connection:
        if self._conn is not None:
            return self._conn

        async with self._lock:
            # Double-check after acquiring lock
            if self._conn is not None:
                return self._conn

            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = await aiosqlite.connect(str(self._db_path))
            await conn.execute("PRAGMA journal_mode = WAL")
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    path TEXT PRIMARY KEY,
                    collection TEXT NOT NULL,
                    data TEXT NOT NULL
                )
                """
            )
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents (collection)")
            await conn.commit()
            self._conn = conn
            logger.info("Opened SQLite document store", extra={"db_path": str(self._db_path)})
            return conn

    async def close(self) -> None:
        self.close_channels()
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("Closed SQLite document store", extra={"db_path": str(self._db_path)})

    async def list_collection(self, collection_path: str) -> list[dict[str, Any]]:
        try:
            conn = await self._connection()
            cursor = await conn.execute(
                "SELECT data FROM documents WHERE collection = ? ORDER BY path ASC",
                (collection_path,),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.error("list_collection_failed", extra={"collection": collection_path, "error": str(e)})
            msg = f"Failed to list {collection_path}: {e}"
            raise DocumentStoreError(msg) from e
        return [json.loads(row[0]) for row in rows]

    async def get(self, path: str) -> dict[str, Any] | None:
        split_document_path(path)
        try:
            conn = await self._connection()
            cursor = await conn.execute("SELECT data FROM documents WHERE path = ?", (path,))
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error("get_document_failed", extra={"path": path, "error": str(e)})
            msg = f"Failed to get {path}: {e}"
            raise DocumentStoreError(msg) from e
        return json.loads(row[0]) if row is not None else None

    async def _write(self, path: str, record: dict[str, Any]) -> None:
        collection_path, _ = split_document_path(path)
        try:
            conn = await self._connection()
            await conn.execute(
                """
                INSERT INTO documents (path, collection, data) VALUES (?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET data = excluded.data
                """,
                (path, collection_path, json.dumps(record)),
            )
            await conn.commit()
        except (aiosqlite.Error, TypeError) as e:
            logger.error("write_document_failed", extra={"path": path, "error": str(e)})
            msg = f"Failed to write {path}: {e}"
            raise DocumentStoreError(msg) from e

        logger.debug("Wrote document", extra={"path": path})
        await self._publish(collection_path)

    async def put(self, path: str, record: dict[str, Any]) -> None:
        await self._write(path, record)

    async def set_merge(self, path: str, partial: dict[str, Any]) -> None:
        existing = await self.get(path) or {}
        await self._write(path, deep_merge(existing, partial))

    async def delete(self, path: str) -> None:
        collection_path, _ = split_document_path(path)
        try:
            conn = await self._connection()
            cursor = await conn.execute("DELETE FROM documents WHERE path = ?", (path,))
            await conn.commit()
        except aiosqlite.Error as e:
            logger.error("delete_document_failed", extra={"path": path, "error": str(e)})
            msg = f"Failed to delete {path}: {e}"
            raise DocumentStoreError(msg) from e

        if cursor.rowcount:
            logger.debug("Deleted document", extra={"path": path})
            await self._publish(collection_path)
