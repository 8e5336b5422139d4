"""Per-user on-device backup of tasks, settings and profile.

The backup is loaded at login so the UI has data while the remote
subscription connects; the first remote snapshot overwrites it. Sensitive
task fields are kept encrypted inside the blob.
"""

import logging

from pydantic import BaseModel, Field, ValidationError

from src.core.field_codec import FieldCodec
from src.core.local_store import LocalStore, backup_key
from src.domain.sensitive import TASK_FIELDS
from src.domain.task import Task
from src.domain.user import AppSettings


logger = logging.getLogger(__name__)


class BackupProfile(BaseModel):
    """Profile fields mirrored locally. The secret key is never backed up."""

    bio: str | None = None
    gender: str | None = None
    dob: str | None = None


class BackupBlob(BaseModel):
    """Contents of one user's backup entry."""

    tasks: list[Task] = Field(default_factory=list)
    settings: AppSettings | None = None
    profile: BackupProfile = Field(default_factory=BackupProfile)


class LocalBackup:
    """Reads and writes the backup blob stored under ``{prefix}{user_id}``."""

    def __init__(
        self,
        store: LocalStore,
        codec: FieldCodec,
        user_id: str,
        *,
        namespace: str | None = None,
    ) -> None:
        self._store = store
        self._codec = codec
        self.user_id = user_id
        self.key = backup_key(user_id, namespace)

    async def load(self) -> BackupBlob | None:
        """Return the stored backup, or None when absent or unreadable."""
        raw = await self._store.get(self.key)
        if not raw:
            return None

        try:
            blob = BackupBlob.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Ignoring unreadable local backup", extra={"user_id": self.user_id, "error": str(e)})
            return None

        blob.tasks = [
            Task.model_validate(self._codec.decrypt_fields(task.model_dump(), self.user_id, TASK_FIELDS))
            for task in blob.tasks
        ]
        logger.info("Loaded local backup", extra={"user_id": self.user_id, "tasks": len(blob.tasks)})
        return blob

    async def save(
        self,
        *,
        tasks: list[Task],
        settings: AppSettings,
        profile: BackupProfile,
    ) -> bool:
        """Overwrite the backup with the current local state."""
        encrypted_tasks = [
            Task.model_validate(self._codec.encrypt_fields(task.model_dump(), self.user_id, TASK_FIELDS))
            for task in tasks
        ]
        blob = BackupBlob(tasks=encrypted_tasks, settings=settings, profile=profile)
        saved = await self._store.set(self.key, blob.model_dump_json())
        if not saved:
            logger.warning("Local backup write failed", extra={"user_id": self.user_id})
        return saved
