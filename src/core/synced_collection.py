"""Local-first mirror of one per-user remote collection.

Writes go to the document store and are *not* applied to the local cache;
the cache changes only when the store's subscription delivers a snapshot
(or when the local backup is preloaded at login). Every snapshot is the
whole collection and replaces the cache wholesale.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import ValidationError

from src.core.config import Constants, settings
from src.core.document_store import (
    DocumentStore,
    DocumentStoreError,
    InvalidPathError,
    RecordNotFoundError,
    SnapshotChannel,
)
from src.core.field_codec import FieldCodec
from src.core.logging import log_with_user_context, span
from src.core.notifier import NotificationKind, Notifier, notify_error
from src.domain.record import Record


logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=Record)

ChangeListener = Callable[[list[Any]], Awaitable[None]]

RETRYABLE_WRITE_ERRORS = (DocumentStoreError, TimeoutError, ConnectionError)


@dataclass(frozen=True)
class CollectionMessages:
    """Success messages shown after writes; None keeps the write silent."""

    created: str | None = None
    updated: str | None = None
    deleted: str | None = None


@dataclass(frozen=True)
class WritePolicy:
    """Retry and timeout policy for remote writes."""

    max_retries: int = 3
    base_delay: float = 0.5
    timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls) -> "WritePolicy":
        return cls(
            max_retries=max(1, settings.write_max_retries),
            base_delay=settings.write_retry_base_delay,
            timeout_seconds=settings.write_timeout_seconds,
        )


async def retry_write(operation: str, action: Callable[[], Awaitable[None]], policy: WritePolicy) -> None:
    """Run a store write, retrying transient failures with exponential backoff.

    Each attempt is bounded by ``policy.timeout_seconds``.

    Raises:
        The last DocumentStoreError, TimeoutError or ConnectionError once
        ``policy.max_retries`` attempts have failed
    """
    for attempt in range(policy.max_retries):
        try:
            await asyncio.wait_for(action(), timeout=policy.timeout_seconds)
        except RETRYABLE_WRITE_ERRORS as e:
            if attempt == policy.max_retries - 1:
                raise
            delay = policy.base_delay * (2**attempt)
            logger.warning(
                "Store %s failed (attempt %d/%d): %s. Retrying in %.2fs",
                operation,
                attempt + 1,
                policy.max_retries,
                e,
                delay,
            )
            await asyncio.sleep(delay)
        else:
            return


class SyncedCollection(Generic[RecordT]):
    """Typed in-memory cache kept in sync with ``users/{user_id}/{name}``."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        name: str,
        model: type[RecordT],
        store: DocumentStore,
        codec: FieldCodec,
        user_id: str,
        notifier: Notifier,
        sensitive_fields: Iterable[str] = (),
        sort_key: Callable[[RecordT], Any] | None = None,
        newest_first: bool = False,
        messages: CollectionMessages | None = None,
        write_policy: WritePolicy | None = None,
    ) -> None:
        self.name = name
        self.model = model
        self.user_id = user_id
        self.sensitive_fields = tuple(sensitive_fields)
        self._store = store
        self._codec = codec
        self._notifier = notifier
        self._sort_key = sort_key
        self._newest_first = newest_first
        self._messages = messages or CollectionMessages()
        self._write_policy = write_policy or WritePolicy.from_settings()

        self._items: list[RecordT] = []
        self._listeners: list[ChangeListener] = []
        self._changed = asyncio.Condition()
        self._channel: SnapshotChannel | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self.snapshots_applied = 0

    @property
    def path(self) -> str:
        return f"users/{self.user_id}/{self.name}"

    @property
    def items(self) -> list[RecordT]:
        return list(self._items)

    @property
    def is_subscribed(self) -> bool:
        return self._channel is not None and not self._channel.closed

    def __len__(self) -> int:
        return len(self._items)

    def get(self, record_id: str) -> RecordT | None:
        return next((item for item in self._items if item.id == record_id), None)

    def require(self, record_id: str) -> RecordT:
        """Return the cached record or raise RecordNotFoundError."""
        record = self.get(record_id)
        if record is None:
            msg = f"Record not found in {self.name}: {record_id}"
            raise RecordNotFoundError(msg)
        return record

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a coroutine called with the new items after each snapshot."""
        self._listeners.append(listener)

    # Read channel

    async def start(self) -> None:
        """Subscribe to the remote collection and start applying snapshots."""
        if self.is_subscribed:
            return
        self._channel = await self._store.subscribe(self.path)
        self._pump_task = asyncio.create_task(self._pump(self._channel), name=f"sync:{self.path}")
        log_with_user_context(logger, "info", "Subscribed to collection", user_id=self.user_id, collection=self.name)

    async def stop(self) -> None:
        """Tear down the subscription. Pending snapshots are dropped."""
        if self._channel is not None:
            self._channel.close()
        if self._pump_task is not None:
            self._pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pump_task
        self._channel = None
        self._pump_task = None
        log_with_user_context(
            logger, "info", "Unsubscribed from collection", user_id=self.user_id, collection=self.name
        )

    async def _pump(self, channel: SnapshotChannel) -> None:
        async for snapshot in channel:
            try:
                await self.apply_snapshot(snapshot.records)
            except Exception:
                logger.exception("Failed to apply snapshot for %s (sequence %d)", self.path, snapshot.sequence)

    def _decode(self, raw: dict[str, Any]) -> RecordT | None:
        decrypted = self._codec.decrypt_fields(raw, self.user_id, self.sensitive_fields)
        try:
            return self.model.model_validate(decrypted)
        except ValidationError as e:
            logger.warning(
                "Skipping invalid record in snapshot",
                extra={"collection": self.name, "record_id": raw.get("id"), "error": str(e)},
            )
            return None

    def _ordered(self, items: list[RecordT]) -> list[RecordT]:
        if self._sort_key is None:
            return items
        return sorted(items, key=self._sort_key, reverse=self._newest_first)

    async def apply_snapshot(self, records: list[dict[str, Any]]) -> None:
        """Replace the cache with one full snapshot of stored (encrypted) records."""
        decoded = [item for raw in records if (item := self._decode(raw)) is not None]
        await self._replace(self._ordered(decoded))
        self.snapshots_applied += 1
        logger.debug("Applied snapshot", extra={"collection": self.name, "count": len(decoded)})

        for listener in self._listeners:
            await listener(self.items)

    async def load(self, items: list[RecordT]) -> None:
        """Replace the cache with already-decoded records (local backup preload)."""
        await self._replace(self._ordered(list(items)))

    async def clear(self) -> None:
        await self._replace([])

    async def _replace(self, items: list[RecordT]) -> None:
        async with self._changed:
            self._items = items
            self._changed.notify_all()

    async def wait_for(
        self,
        predicate: Callable[[list[RecordT]], bool],
        timeout: float = Constants.DEFAULT_WAIT_TIMEOUT_SECONDS,
    ) -> list[RecordT]:
        """Wait until the cached items satisfy ``predicate``.

        Raises:
            TimeoutError: If the predicate is still false after ``timeout`` seconds
        """
        async with self._changed:
            await asyncio.wait_for(self._changed.wait_for(lambda: predicate(self._items)), timeout)
            return list(self._items)

    # Write operations

    def _document_path(self, record_id: str) -> str:
        return f"{self.path}/{record_id}"

    def _encode(self, record: RecordT) -> dict[str, Any]:
        data = record.model_dump(mode="json")
        return self._codec.encrypt_fields(data, self.user_id, self.sensitive_fields)

    async def create(self, record: RecordT) -> bool:
        """Write a new record. The cache updates when the snapshot arrives."""
        path = self._document_path(record.id)
        data = self._encode(record)
        return await self._write("create", path, lambda: self._store.put(path, data), self._messages.created)

    async def update(self, record: RecordT) -> bool:
        """Overwrite an existing record with its fully updated state."""
        path = self._document_path(record.id)
        data = self._encode(record)
        return await self._write("update", path, lambda: self._store.put(path, data), self._messages.updated)

    async def patch(self, record_id: str, fields: dict[str, Any], *, message: str | None = None) -> bool:
        """Merge an explicit subset of fields into a stored record."""
        path = self._document_path(record_id)
        data = self._codec.encrypt_fields(fields, self.user_id, self.sensitive_fields)
        return await self._write("patch", path, lambda: self._store.set_merge(path, data), message)

    async def delete(self, record_id: str) -> bool:
        """Remove a record. The cache drops it when the snapshot arrives."""
        path = self._document_path(record_id)
        return await self._write("delete", path, lambda: self._store.delete(path), self._messages.deleted)

    async def _write(
        self,
        operation: str,
        path: str,
        action: Callable[[], Awaitable[None]],
        success_message: str | None,
    ) -> bool:
        """Run a store write with retry; report the outcome through the notifier.

        A failed write does not touch the local cache.
        """
        with span(f"synced_collection.{operation}"):
            try:
                await retry_write(operation, action, self._write_policy)
            except RETRYABLE_WRITE_ERRORS as e:
                logger.error(
                    "Store %s failed after %d attempts",
                    operation,
                    self._write_policy.max_retries,
                    extra={"collection": self.name, "path": path, "error": str(e)},
                )
                notify_error(self._notifier, e)
                return False
            except InvalidPathError as e:
                logger.error(
                    "Store %s rejected path", operation, extra={"collection": self.name, "path": path, "error": str(e)}
                )
                notify_error(self._notifier, e)
                return False

            logger.info("Store %s succeeded", operation, extra={"collection": self.name, "path": path})
            if success_message:
                self._notifier.notify(success_message, NotificationKind.SUCCESS)
            return True
