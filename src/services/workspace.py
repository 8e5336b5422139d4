"""Per-user workspace: the composition root for one signed-in user on one device.

A Workspace owns the synced collections, the settings and profile held on
the user document, the local backup and this device's session. Mutating
operations validate first, write to the document store, and let the
subscriptions bring the new state back into the caches.
"""

import asyncio
import contextlib
import hmac
import logging
import uuid
from collections.abc import Callable, Iterator
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from src.core.config import Constants
from src.core.document_store import DocumentStore, DocumentStoreError, SnapshotChannel
from src.core.errors import AlreadyMarkedError, SecretKeyError, ValidationFailure
from src.core.field_codec import FieldCodec
from src.core.local_backup import BackupProfile, LocalBackup
from src.core.local_store import LocalStore
from src.core.logging import log_with_user_context, span
from src.core.notifier import LoggingNotifier, NotificationKind, Notifier, notify_error
from src.core.synced_collection import (
    RETRYABLE_WRITE_ERRORS,
    CollectionMessages,
    SyncedCollection,
    WritePolicy,
    retry_write,
)
from src.core.trusted_clock import TrustedClock
from src.domain.challenge import Challenge
from src.domain.journal import JournalEntry
from src.domain.proof import Proof
from src.domain.sensitive import (
    CHALLENGE_FIELDS,
    EXPENSE_FIELDS,
    JOURNAL_FIELDS,
    PROFILE_FIELDS,
    PROOF_FIELDS,
    SESSION_FIELDS,
    TASK_FIELDS,
    TODO_FIELDS,
)
from src.domain.session import Session
from src.domain.task import Category, Task, TaskType
from src.domain.todo import Expense, Todo
from src.domain.user import AppSettings, User, UserProfile
from src.services import challenge_engine, session_service, streak_engine


logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

PROFILE_UPDATABLE_FIELDS = frozenset({"bio", "gender", "dob", "secret_key"})

USERS_COLLECTION = "users"


def _new_id() -> str:
    return uuid.uuid4().hex


def _build(model: type[ModelT], **data: Any) -> ModelT:  # noqa: ANN401
    """Construct a model, turning pydantic errors into ValidationFailure."""
    try:
        return model(**data)
    except ValidationError as e:
        raise ValidationFailure(str(e)) from e


def _require_text(value: str, field_name: str) -> str:
    if not value or not value.strip():
        msg = f"{field_name} is required"
        raise ValidationFailure(msg)
    return value.strip()


class Workspace:
    """All per-user state and operations for one authenticated session."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        user: User,
        store: DocumentStore,
        local_store: LocalStore,
        clock: TrustedClock,
        codec: FieldCodec | None = None,
        notifier: Notifier | None = None,
        device_id: str | None = None,
        user_agent: str | None = None,
        write_policy: WritePolicy | None = None,
        backup_namespace: str | None = None,
    ) -> None:
        self.user = user
        self.clock = clock
        self.codec = codec or FieldCodec()
        self.notifier = notifier or LoggingNotifier()
        self.device_id = device_id
        self.device_name = session_service.device_name_from_user_agent(user_agent)
        self.settings = AppSettings()
        self.is_open = False

        self._store = store
        self._local_store = local_store
        self._write_policy = write_policy or WritePolicy.from_settings()
        self._backup = LocalBackup(local_store, self.codec, user.id, namespace=backup_namespace)
        self._user_changed = asyncio.Condition()
        self._user_channel: SnapshotChannel | None = None
        self._user_pump_task: asyncio.Task[None] | None = None

        def collection(
            name: str,
            model: type,
            fields: tuple[str, ...],
            **options: Any,  # noqa: ANN401
        ) -> SyncedCollection:
            return SyncedCollection(
                name=name,
                model=model,
                store=store,
                codec=self.codec,
                user_id=user.id,
                notifier=self.notifier,
                sensitive_fields=fields,
                write_policy=self._write_policy,
                **options,
            )

        self.tasks: SyncedCollection[Task] = collection(
            "tasks",
            Task,
            TASK_FIELDS,
            messages=CollectionMessages(
                created=Constants.MSG_TASK_CREATED,
                updated=Constants.MSG_TASK_UPDATED,
                deleted=Constants.MSG_TASK_DELETED,
            ),
        )
        self.proofs: SyncedCollection[Proof] = collection(
            "proofs",
            Proof,
            PROOF_FIELDS,
            sort_key=lambda proof: proof.timestamp,
            newest_first=True,
        )
        self.journal: SyncedCollection[JournalEntry] = collection(
            "journal",
            JournalEntry,
            JOURNAL_FIELDS,
            sort_key=lambda entry: entry.date,
            newest_first=True,
            messages=CollectionMessages(
                created=Constants.MSG_JOURNAL_SAVED,
                updated=Constants.MSG_JOURNAL_UPDATED,
                deleted=Constants.MSG_JOURNAL_DELETED,
            ),
        )
        self.todos: SyncedCollection[Todo] = collection(
            "todos",
            Todo,
            TODO_FIELDS,
            messages=CollectionMessages(created=Constants.MSG_TODO_ADDED, deleted=Constants.MSG_TODO_DELETED),
        )
        self.expenses: SyncedCollection[Expense] = collection(
            "expenses",
            Expense,
            EXPENSE_FIELDS,
            sort_key=lambda expense: expense.date,
            newest_first=True,
            messages=CollectionMessages(created=Constants.MSG_EXPENSE_ADDED, deleted=Constants.MSG_EXPENSE_DELETED),
        )
        self.challenges: SyncedCollection[Challenge] = collection(
            "challenges",
            Challenge,
            CHALLENGE_FIELDS,
            messages=CollectionMessages(
                created=Constants.MSG_CHALLENGE_CREATED,
                deleted=Constants.MSG_CHALLENGE_DELETED,
            ),
        )
        self.sessions: SyncedCollection[Session] = collection(
            session_service.SESSIONS_COLLECTION,
            Session,
            SESSION_FIELDS,
            sort_key=session_service.session_sort_key,
            newest_first=True,
        )

        self.tasks.add_listener(self._on_tasks_changed)

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def user_path(self) -> str:
        return f"{USERS_COLLECTION}/{self.user.id}"

    @property
    def profile(self) -> UserProfile:
        return self.user.profile

    def collections(self) -> Iterator[SyncedCollection[Any]]:
        yield from (self.tasks, self.proofs, self.journal, self.todos, self.expenses, self.challenges, self.sessions)

    def active_sessions(self) -> list[Session]:
        """Signed-in devices, most recently active first, with this device flagged."""
        return session_service.mark_current(self.sessions.items, self.device_id or "")

    # Lifecycle

    async def open(self) -> None:
        """Preload the local backup, register this device and start all subscriptions."""
        with span("workspace.open"):
            if self.device_id is None:
                self.device_id = await session_service.get_or_create_device_id(self._local_store)

            backup = await self._backup.load()
            if backup is not None:
                await self.tasks.load(backup.tasks)
                if backup.settings is not None:
                    self.settings = backup.settings
                self.user.profile = self.user.profile.model_copy(update=backup.profile.model_dump())

            await session_service.register_session(
                self._store,
                user_id=self.user_id,
                device_id=self.device_id,
                device_name=self.device_name,
                clock=self.clock,
            )
            await self._load_user_document()
            self._user_channel = await self._store.subscribe(USERS_COLLECTION)
            self._user_pump_task = asyncio.create_task(
                self._pump_user_document(self._user_channel), name=f"sync:{self.user_path}"
            )

            for synced in self.collections():
                await synced.start()

            self.is_open = True
            log_with_user_context(
                logger,
                "info",
                "Workspace opened",
                user_id=self.user_id,
                device_id=self.device_id,
                preloaded_tasks=len(self.tasks),
            )

    async def close(self) -> None:
        """Log out this device: end its session, stop subscriptions and clear caches."""
        with span("workspace.close"):
            if self.device_id is not None:
                await session_service.end_session(self._store, user_id=self.user_id, device_id=self.device_id)

            await self._stop_user_document()
            for synced in self.collections():
                await synced.stop()
                await synced.clear()

            self.is_open = False
            self.notifier.notify(Constants.MSG_LOGGED_OUT, NotificationKind.INFO)
            log_with_user_context(logger, "info", "Workspace closed", user_id=self.user_id)

    # User document

    async def _load_user_document(self) -> None:
        try:
            document = await self._store.get(self.user_path)
        except DocumentStoreError as e:
            logger.warning("Could not read user document", extra={"user_id": self.user_id, "error": str(e)})
            return

        if document is None:
            await self._merge_user_document(
                {"id": self.user.id, "email": self.user.email, "name": self.user.name, "avatar": self.user.avatar}
            )
            return

        await self._apply_user_document(document)

    async def _apply_user_document(self, document: dict[str, Any]) -> None:
        """Take settings and the decrypted profile from a stored user document."""
        try:
            profile = self.profile
            if "profile" in document:
                profile_data = self.codec.decrypt_fields(document["profile"] or {}, self.user_id, PROFILE_FIELDS)
                profile = UserProfile.model_validate(profile_data)
            settings = AppSettings.model_validate(document["settings"]) if document.get("settings") else self.settings
        except ValidationError as e:
            logger.warning("Ignoring invalid user document fields", extra={"user_id": self.user_id, "error": str(e)})
            return

        async with self._user_changed:
            self.user.profile = profile
            self.settings = settings
            self._user_changed.notify_all()
        await self.save_backup()

    async def _pump_user_document(self, channel: SnapshotChannel) -> None:
        async for snapshot in channel:
            document = next((record for record in snapshot.records if record.get("id") == self.user_id), None)
            if document is None:
                continue
            try:
                await self._apply_user_document(document)
            except Exception:
                logger.exception("Failed to apply user document (sequence %d)", snapshot.sequence)

    async def _stop_user_document(self) -> None:
        if self._user_channel is not None:
            self._user_channel.close()
        if self._user_pump_task is not None:
            self._user_pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._user_pump_task
        self._user_channel = None
        self._user_pump_task = None

    async def wait_for_user_document(
        self,
        predicate: Callable[["Workspace"], bool],
        timeout: float = Constants.DEFAULT_WAIT_TIMEOUT_SECONDS,
    ) -> None:
        """Wait until settings and profile satisfy ``predicate``.

        Raises:
            TimeoutError: If the predicate is still false after ``timeout`` seconds
        """
        async with self._user_changed:
            await asyncio.wait_for(self._user_changed.wait_for(lambda: predicate(self)), timeout)

    async def _merge_user_document(self, partial: dict[str, Any], *, message: str | None = None) -> bool:
        """Merge ``partial`` into ``users/{uid}`` with retry; report failures."""
        try:
            await retry_write(
                "user_document",
                lambda: self._store.set_merge(self.user_path, partial),
                self._write_policy,
            )
        except RETRYABLE_WRITE_ERRORS as e:
            logger.error("User document write failed", extra={"user_id": self.user_id, "error": str(e)})
            notify_error(self.notifier, e)
            return False

        if message:
            self.notifier.notify(message, NotificationKind.SUCCESS)
        return True

    async def _on_tasks_changed(self, _tasks: list[Task]) -> None:
        await self.save_backup()

    async def save_backup(self) -> bool:
        profile = BackupProfile(bio=self.profile.bio, gender=self.profile.gender, dob=self.profile.dob)
        return await self._backup.save(tasks=self.tasks.items, settings=self.settings, profile=profile)

    def _reject(self, exc: Exception) -> None:
        """Report a rejected operation to the user."""
        log_with_user_context(logger, "info", f"Operation rejected: {exc}", user_id=self.user_id)
        notify_error(self.notifier, exc)

    # Tasks

    async def add_task(  # noqa: PLR0913
        self,
        *,
        name: str,
        start_date: str,
        end_date: str,
        type: TaskType = TaskType.HABIT,  # noqa: A002
        category: Category = Category.PERSONAL,
        why: str = "",
        penalty: str = "",
    ) -> Task | None:
        """Create a task. Returns None when validation or the write fails."""
        with span("workspace.add_task"):
            try:
                if end_date[:10] < start_date[:10]:
                    msg = "End date must not be before the start date"
                    raise ValidationFailure(msg)
                task = _build(
                    Task,
                    id=_new_id(),
                    user_id=self.user_id,
                    type=type,
                    category=category,
                    name=_require_text(name, "Task name"),
                    why=why,
                    penalty=penalty,
                    start_date=start_date,
                    end_date=end_date,
                    created_at=self.clock.now().isoformat(),
                )
            except ValidationFailure as e:
                self._reject(e)
                return None

            return task if await self.tasks.create(task) else None

    async def update_task(self, task: Task) -> bool:
        with span("workspace.update_task"):
            try:
                _require_text(task.name, "Task name")
                self.tasks.require(task.id)
            except (ValidationFailure, KeyError) as e:
                self._reject(e)
                return False
            return await self.tasks.update(task)

    async def delete_task(self, task_id: str) -> bool:
        return await self.tasks.delete(task_id)

    async def mark_task(self, task_id: str, *, remark: str = "", image_url: str | None = None) -> Proof | None:
        """Record today's completion of a task with its proof.

        The task is rejected when already completed on the trusted today.
        On success the task's streak counters are updated and a proof is
        stored.
        """
        with span("workspace.mark_task"):
            today = self.clock.today()
            try:
                task = self.tasks.require(task_id)
                updated = streak_engine.apply_completion(task, today, today)
            except AlreadyMarkedError as e:
                logger.info("Task already marked today", extra={"task_id": task_id, "date": e.date})
                self.notifier.notify(Constants.MSG_ALREADY_MARKED, NotificationKind.INFO)
                return None
            except (ValidationFailure, KeyError) as e:
                self._reject(e)
                return None

            proof = Proof(
                id=_new_id(),
                task_id=task_id,
                date=today,
                remark=remark,
                image_url=image_url,
                timestamp=self.clock.now().isoformat(),
            )
            if not await self.tasks.patch(
                task_id,
                {
                    "completed_dates": updated.completed_dates,
                    "streaks": updated.streaks,
                    "max_streaks": updated.max_streaks,
                },
            ):
                return None
            if not await self.proofs.create(proof):
                return None

            self.notifier.notify(Constants.MSG_PROGRESS_RECORDED, NotificationKind.SUCCESS)
            return proof

    # Challenges

    async def create_challenge(
        self,
        *,
        title: str,
        duration: int,
        description: str | None = None,
        linked_task_id: str | None = None,
    ) -> Challenge | None:
        """Start a challenge today. Returns None when it is rejected or the write fails."""
        with span("workspace.create_challenge"):
            try:
                challenge = challenge_engine.create_challenge(
                    user_id=self.user_id,
                    title=title,
                    duration=duration,
                    start_date=self.clock.today(),
                    existing=self.challenges.items,
                    task_ids=[task.id for task in self.tasks.items],
                    linked_task_id=linked_task_id,
                    description=description,
                    challenge_id=_new_id(),
                )
            except ValidationFailure as e:
                self._reject(e)
                return None

            return challenge if await self.challenges.create(challenge) else None

    async def mark_challenge_today(self, challenge_id: str) -> bool:
        """Log today on a challenge. Returns False when nothing was recorded."""
        with span("workspace.mark_challenge_today"):
            today = self.clock.today()
            try:
                challenge = self.challenges.require(challenge_id)
            except KeyError as e:
                self._reject(e)
                return False

            if today in challenge.progress:
                self.notifier.notify(Constants.MSG_ALREADY_MARKED, NotificationKind.INFO)
                return False

            if not challenge.is_active:
                logger.info("Challenge not active", extra={"challenge_id": challenge_id, "status": challenge.status})
                self.notifier.notify(Constants.MSG_CHALLENGE_ENDED, NotificationKind.INFO)
                return False

            return await self.challenges.update(challenge_engine.mark_today(challenge, today))

    async def rescue_challenge(self, challenge_id: str) -> bool:
        """Spend the challenge's one-time rescue on yesterday."""
        with span("workspace.rescue_challenge"):
            try:
                challenge = self.challenges.require(challenge_id)
            except KeyError as e:
                self._reject(e)
                return False

            updated = challenge_engine.use_rescue(challenge, self.clock.yesterday())
            if updated is challenge:
                return False
            return await self.challenges.update(updated)

    async def delete_challenge(self, challenge_id: str) -> bool:
        return await self.challenges.delete(challenge_id)

    async def expire_challenges(self) -> int:
        """Fail every Active challenge whose window has ended. Returns how many were failed."""
        with span("workspace.expire_challenges"):
            today = self.clock.today()
            expired = 0
            for challenge in self.challenges.items:
                updated = challenge_engine.fail_if_elapsed(challenge, today)
                if updated is not challenge and await self.challenges.update(updated):
                    expired += 1
            if expired:
                log_with_user_context(logger, "info", "Expired challenges", user_id=self.user_id, count=expired)
            return expired

    # Journal, todos and expenses

    async def add_journal(
        self,
        *,
        content: str,
        subject: str = "",
        mood: str = "",
        images: list[str] | None = None,
        entry_date: str | None = None,
    ) -> JournalEntry | None:
        try:
            entry = _build(
                JournalEntry,
                id=_new_id(),
                user_id=self.user_id,
                date=entry_date or self.clock.now().isoformat(),
                subject=subject,
                content=_require_text(content, "Journal content"),
                mood=mood,
                images=images or [],
                created_at=self.clock.now().isoformat(),
            )
        except ValidationFailure as e:
            self._reject(e)
            return None
        return entry if await self.journal.create(entry) else None

    async def update_journal(self, entry: JournalEntry) -> bool:
        return await self.journal.update(entry)

    async def delete_journal(self, entry_id: str) -> bool:
        return await self.journal.delete(entry_id)

    async def add_todo(self, text: str, *, due_date: str = "") -> Todo | None:
        try:
            todo = _build(
                Todo,
                id=_new_id(),
                user_id=self.user_id,
                text=_require_text(text, "To-do text"),
                due_date=due_date,
                created_at=self.clock.now().isoformat(),
            )
        except ValidationFailure as e:
            self._reject(e)
            return None
        return todo if await self.todos.create(todo) else None

    async def update_todo(self, todo: Todo) -> bool:
        return await self.todos.update(todo)

    async def toggle_todo(self, todo_id: str) -> bool:
        try:
            todo = self.todos.require(todo_id)
        except KeyError as e:
            self._reject(e)
            return False
        return await self.todos.patch(todo_id, {"completed": not todo.completed})

    async def delete_todo(self, todo_id: str) -> bool:
        return await self.todos.delete(todo_id)

    async def add_expense(
        self,
        *,
        amount: float,
        category: str = "Other",
        description: str = "",
        expense_date: str | None = None,
    ) -> Expense | None:
        try:
            expense = _build(
                Expense,
                id=_new_id(),
                user_id=self.user_id,
                amount=amount,
                category=category,
                description=description,
                date=expense_date or self.clock.now().isoformat(),
            )
        except ValidationFailure as e:
            self._reject(e)
            return None
        return expense if await self.expenses.create(expense) else None

    async def update_expense(self, expense: Expense) -> bool:
        return await self.expenses.update(expense)

    async def delete_expense(self, expense_id: str) -> bool:
        return await self.expenses.delete(expense_id)

    # Settings and profile

    async def _save_settings(self, settings: AppSettings) -> bool:
        self.settings = settings
        await self.save_backup()
        return await self._merge_user_document({"settings": settings.model_dump()})

    async def toggle_sound(self) -> bool:
        settings = self.settings.model_copy(update={"sound_enabled": not self.settings.sound_enabled})
        return await self._save_settings(settings)

    async def toggle_dark_mode(self) -> bool:
        settings = self.settings.model_copy(update={"dark_mode": not self.settings.dark_mode})
        return await self._save_settings(settings)

    async def update_profile(self, **fields: str | None) -> bool:
        """Update profile fields on the user document, encrypting bio and secret key."""
        with span("workspace.update_profile"):
            unknown = set(fields) - PROFILE_UPDATABLE_FIELDS
            if unknown:
                self._reject(ValidationFailure(f"Unknown profile fields: {', '.join(sorted(unknown))}"))
                return False

            try:
                profile = _build(UserProfile, **{**self.profile.model_dump(), **fields})
            except ValidationFailure as e:
                self._reject(e)
                return False

            encrypted = self.codec.encrypt_fields(fields, self.user_id, PROFILE_FIELDS)
            if not await self._merge_user_document({"profile": encrypted}, message=Constants.MSG_PROFILE_UPDATED):
                return False

            self.user.profile = profile
            await self.save_backup()
            return True

    # Account

    def check_secret_key(self, secret_input: str, remark: str) -> None:
        """Gate for destructive operations.

        Raises:
            SecretKeyError: If no secret key is set or ``secret_input`` does not match
            ValidationFailure: If ``remark`` is blank
        """
        stored = self.profile.secret_key
        if not stored:
            raise SecretKeyError(Constants.MSG_SECRET_KEY_MISSING)
        if not hmac.compare_digest(stored.encode(), (secret_input or "").encode()):
            raise SecretKeyError(Constants.MSG_SECRET_KEY_INCORRECT)
        if not remark or not remark.strip():
            raise ValidationFailure(Constants.MSG_REMARK_REQUIRED)

    async def delete_account_data(self, secret_input: str, remark: str) -> bool:
        """Delete every record of every collection after the secret key check."""
        with span("workspace.delete_account_data"):
            try:
                self.check_secret_key(secret_input, remark)
            except (SecretKeyError, ValidationFailure) as e:
                logger.warning("Account data deletion rejected", extra={"user_id": self.user_id, "reason": str(e)})
                notify_error(self.notifier, e)
                return False

            deleted = 0
            failed = 0
            for synced in self.collections():
                for record in synced.items:
                    path = f"{synced.path}/{record.id}"
                    try:
                        await retry_write("delete", lambda path=path: self._store.delete(path), self._write_policy)
                    except RETRYABLE_WRITE_ERRORS as e:
                        failed += 1
                        logger.error("Failed to delete record", extra={"path": path, "error": str(e)})
                    else:
                        deleted += 1

            await self._local_store.delete(self._backup.key)
            log_with_user_context(
                logger,
                "warning",
                "Account data deleted",
                user_id=self.user_id,
                deleted=deleted,
                failed=failed,
                remark=remark,
            )
            if failed:
                notify_error(self.notifier, DocumentStoreError(f"{failed} records could not be deleted"))
                return False

            self.notifier.notify(Constants.MSG_ACCOUNT_DATA_DELETED, NotificationKind.SUCCESS)
            return True


class WorkspaceRegistry:
    """Open workspaces in this process, keyed by user ID, for background jobs."""

    def __init__(self) -> None:
        self._workspaces: dict[str, Workspace] = {}

    def register(self, workspace: Workspace) -> None:
        self._workspaces[workspace.user_id] = workspace

    def unregister(self, user_id: str) -> Workspace | None:
        return self._workspaces.pop(user_id, None)

    def get(self, user_id: str) -> Workspace | None:
        return self._workspaces.get(user_id)

    def __iter__(self) -> Iterator[Workspace]:
        return iter(list(self._workspaces.values()))

    def __len__(self) -> int:
        return len(self._workspaces)
