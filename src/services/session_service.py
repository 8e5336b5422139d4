"""Session service for tracking the devices a user is signed in on.

Each device writes one document under ``users/{uid}/sessions/{device_id}``
on every authenticated load and deletes it on logout.
"""

import logging
import uuid

from src.core.config import Constants
from src.core.document_store import DocumentStore, DocumentStoreError, InvalidPathError
from src.core.local_store import LocalStore
from src.core.logging import span
from src.core.trusted_clock import TrustedClock
from src.domain.session import Session


logger = logging.getLogger(__name__)

SESSIONS_COLLECTION = "sessions"

# Checked in order; the first marker found in the user agent wins.
_BROWSER_MARKERS: tuple[tuple[str, str], ...] = (
    ("Firefox", "Firefox"),
    ("Edg", "Edge"),
    ("Chrome", "Chrome"),
    ("Safari", "Safari"),
)
_OS_MARKERS: tuple[tuple[str, str], ...] = (
    ("Windows NT 10.0", "Windows 10/11"),
    ("Macintosh", "Mac"),
    ("Android", "Android Device"),
    ("iPhone", "iPhone"),
)
_DEFAULT_BROWSER = "Web Browser"
_DEFAULT_OS = "OS"


def _first_match(user_agent: str, markers: tuple[tuple[str, str], ...], default: str) -> str:
    return next((label for marker, label in markers if marker in user_agent), default)


def device_name_from_user_agent(user_agent: str | None) -> str:
    """Describe a device as "{browser} on {os}" from its user agent string."""
    ua = user_agent or ""
    browser = _first_match(ua, _BROWSER_MARKERS, _DEFAULT_BROWSER)
    os_name = _first_match(ua, _OS_MARKERS, _DEFAULT_OS)
    return f"{browser} on {os_name}"


async def get_or_create_device_id(local_store: LocalStore) -> str:
    """Return this device's persistent ID, creating and storing one on first use."""
    device_id = await local_store.get(Constants.DEVICE_ID_KEY)
    if device_id:
        return device_id

    device_id = uuid.uuid4().hex
    if not await local_store.set(Constants.DEVICE_ID_KEY, device_id):
        logger.warning("Could not persist device ID; a new one will be generated next load")
    logger.info("Created device ID", extra={"device_id": device_id})
    return device_id


def session_path(user_id: str, device_id: str) -> str:
    return f"users/{user_id}/{SESSIONS_COLLECTION}/{device_id}"


async def register_session(
    store: DocumentStore,
    *,
    user_id: str,
    device_id: str,
    device_name: str,
    clock: TrustedClock,
) -> bool:
    """Record that ``device_id`` is active now.

    Best effort: a store failure is logged and reported as False.
    """
    with span("session_service.register_session"):
        try:
            await store.set_merge(
                session_path(user_id, device_id),
                {"id": device_id, "device_name": device_name, "last_active": clock.now().isoformat()},
            )
        except (DocumentStoreError, InvalidPathError) as e:
            logger.warning("Failed to register session", extra={"user_id": user_id, "error": str(e)})
            return False

        logger.info("Registered session", extra={"user_id": user_id, "device_id": device_id})
        return True


async def end_session(store: DocumentStore, *, user_id: str, device_id: str) -> bool:
    """Delete this device's session document. Best effort."""
    with span("session_service.end_session"):
        try:
            await store.delete(session_path(user_id, device_id))
        except (DocumentStoreError, InvalidPathError) as e:
            logger.warning("Failed to end session", extra={"user_id": user_id, "error": str(e)})
            return False

        logger.info("Ended session", extra={"user_id": user_id, "device_id": device_id})
        return True


def session_sort_key(session: Session) -> str:
    return session.last_active


def mark_current(sessions: list[Session], device_id: str) -> list[Session]:
    """Return the sessions with ``is_current`` set for this device only."""
    return [session.model_copy(update={"is_current": session.id == device_id}) for session in sessions]
