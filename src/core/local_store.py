"""On-device key/value storage for the local backup cache.

Two backends share the same async ``get``/``set``/``delete`` surface: an
in-memory store (default, and the test double) and a Redis store used when
``REDIS_URL`` is configured.
"""

import asyncio
import logging
import threading
from collections.abc import Callable, Coroutine
from functools import wraps
from typing import Any, Protocol, TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError

from src.core.config import settings


logger = logging.getLogger(__name__)

# Type variable for generic retry decorator
T = TypeVar("T")


class LocalStore(Protocol):
    """Key/value persistence for per-user backups."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> bool: ...

    async def delete(self, *keys: str) -> bool: ...


def backup_key(user_id: str, namespace: str | None = None) -> str:
    """Key under which a user's backup blob is stored."""
    prefix = namespace if namespace is not None else settings.local_backup_prefix
    return f"{prefix}{user_id}"


def with_retry(
    max_retries: int = 3, base_delay: float = 0.1
) -> Callable[[Callable[..., Coroutine[Any, Any, T]]], Callable[..., Coroutine[Any, Any, T]]]:
    """Decorator to retry async Redis calls with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Base delay in seconds for exponential backoff (default: 0.1)

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., Coroutine[Any, Any, T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:  # noqa: ANN401
            last_exception = None
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except RedisError as e:
                    last_exception = e
                    if attempt < max_retries - 1:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            "Redis operation failed (attempt %d/%d): %s. Retrying in %.2fs",
                            attempt + 1,
                            max_retries,
                            e,
                            delay,
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error("Redis operation failed after %d attempts: %s", max_retries, e)
            # If we get here, all retries failed
            raise last_exception  # type: ignore[misc]

        return wrapper

    return decorator


class InMemoryLocalStore:
    """Thread-safe in-memory key/value store."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    async def set(self, key: str, value: str) -> bool:
        with self._lock:
            self._data[key] = value
            logger.debug("Stored local key: %s", key)
            return True

    async def delete(self, *keys: str) -> bool:
        if not keys:
            return False

        with self._lock:
            for key in keys:
                self._data.pop(key, None)
            return True


class RedisLocalStore:
    """Redis-backed key/value store. Errors degrade to misses, never raise."""

    def __init__(self, redis_url: str | None = None, *, client: Redis | None = None) -> None:
        url = redis_url or settings.redis_url
        self._client: Redis | None = client
        if self._client is None and url:
            self._client = Redis.from_url(url, decode_responses=True)
            logger.info("Redis local store initialized with URL: %s", url)

    @property
    def is_available(self) -> bool:
        return self._client is not None

    async def get(self, key: str) -> str | None:
        if not self._client:
            return None

        @with_retry(max_retries=3, base_delay=0.1)
        async def _get() -> str | None:
            return await self._client.get(key)  # type: ignore[union-attr]

        try:
            return await _get()
        except RedisError as e:
            logger.warning("Redis GET error for key %s: %s", key, e)
            return None

    async def set(self, key: str, value: str) -> bool:
        if not self._client:
            return False

        @with_retry(max_retries=3, base_delay=0.1)
        async def _set() -> None:
            await self._client.set(key, value)  # type: ignore[union-attr]

        try:
            await _set()
            return True
        except RedisError as e:
            logger.warning("Redis SET error for key %s: %s", key, e)
            return False

    async def delete(self, *keys: str) -> bool:
        if not self._client or not keys:
            return False

        try:
            await self._client.delete(*keys)
            return True
        except RedisError as e:
            logger.warning("Redis DELETE error: %s", e)
            return False

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        if not self._client:
            return False
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.warning("Redis PING error: %s", e)
            return False

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            logger.info("Redis local store closed")


def create_local_store() -> InMemoryLocalStore | RedisLocalStore:
    """Pick the Redis backend when configured, otherwise keep data in memory."""
    if settings.redis_url:
        return RedisLocalStore(settings.redis_url)
    logger.info("Redis URL not configured. Using in-memory local store.")
    return InMemoryLocalStore()
