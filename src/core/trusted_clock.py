"""Trusted clock resolved against a network time source.

The clock keeps an offset between the device clock and a server clock so
date-sensitive logic (streaks, challenge days) does not follow a manually
changed device clock. Resolution is best effort: when every source fails the
clock silently falls back to device time and stays unresolved.
"""

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, date, datetime, timedelta
from typing import Protocol

import httpx
from dateutil import parser as dateutil_parser
from pydantic import BaseModel

from src.core.config import Constants, settings


logger = logging.getLogger(__name__)


def _device_now() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class TimeSource(Protocol):
    """A network source able to report the current time."""

    name: str

    async def fetch(self) -> datetime | None:
        """Return the source's current time, or None if it supplied none."""
        ...


class OriginDateHeaderSource:
    """Reads the Date header from a HEAD request against the application origin."""

    name = "origin_header"

    def __init__(
        self,
        *,
        origin_url: str,
        timeout_seconds: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = origin_url.rstrip("/") + "/"
        self._timeout = timeout_seconds
        self._client = client

    async def _head(self, client: httpx.AsyncClient) -> httpx.Response:
        return await client.head(self._url, headers={"Cache-Control": "no-store"}, timeout=self._timeout)

    async def fetch(self) -> datetime | None:
        if self._client is not None:
            response = await self._head(self._client)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await self._head(client)

        date_header = response.headers.get("date")
        if not date_header:
            return None
        return _as_utc(dateutil_parser.parse(date_header))


class WorldTimeApiSource:
    """Reads the ``datetime`` field of an external time API response."""

    name = "time_api"

    def __init__(
        self,
        *,
        api_url: str,
        timeout_seconds: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = api_url
        self._timeout = timeout_seconds
        self._client = client

    async def _get(self, client: httpx.AsyncClient) -> httpx.Response:
        return await client.get(self._url, timeout=self._timeout)

    async def fetch(self) -> datetime | None:
        if self._client is not None:
            response = await self._get(self._client)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await self._get(client)

        if not response.is_success:
            return None

        data = response.json()
        raw = data.get("datetime") if isinstance(data, dict) else None
        if not raw or not isinstance(raw, str):
            return None
        return _as_utc(dateutil_parser.isoparse(raw))


class ClockStatus(BaseModel):
    """Snapshot of the trusted clock state for health reporting."""

    resolved: bool
    offset_ms: int
    source: str | None = None
    resolved_at: datetime | None = None
    now: datetime


class TrustedClock:
    """Clock corrected by an offset resolved from network time sources.

    Sources are tried in order; the first one that yields a timestamp wins.
    ``now()`` applies the offset at call time, so it is never cached.
    """

    def __init__(
        self,
        sources: Sequence[TimeSource],
        *,
        device_time: Callable[[], datetime] = _device_now,
    ) -> None:
        self._sources = list(sources)
        self._device_time = device_time
        self.offset_ms = 0
        self.resolved = False
        self.source: str | None = None
        self.resolved_at: datetime | None = None

    @classmethod
    def from_settings(cls, *, client: httpx.AsyncClient | None = None) -> "TrustedClock":
        """Build a clock probing the configured origin first, then the time API."""
        return cls(
            [
                OriginDateHeaderSource(
                    origin_url=settings.origin_url,
                    timeout_seconds=settings.time_api_timeout_seconds,
                    client=client,
                ),
                WorldTimeApiSource(
                    api_url=settings.time_api_url,
                    timeout_seconds=settings.time_api_timeout_seconds,
                    client=client,
                ),
            ]
        )

    async def resolve(self) -> bool:
        """Resolve the device/server offset. Never raises.

        Returns:
            True if the clock is resolved after this call
        """
        if self.resolved:
            return True

        for source in self._sources:
            try:
                server_time = await source.fetch()
            except (httpx.HTTPError, ValueError, OverflowError) as e:
                logger.warning("Trusted time source %s failed: %s", source.name, e)
                continue

            if server_time is None:
                logger.warning("Trusted time source %s returned no timestamp", source.name)
                continue

            device_time = _as_utc(self._device_time())
            self.offset_ms = round((server_time - device_time).total_seconds() * 1000)
            self.resolved = True
            self.source = source.name
            self.resolved_at = server_time
            logger.info("Trusted time resolved via %s, offset=%dms", source.name, self.offset_ms)
            return True

        logger.warning("Trusted time resolution failed, using device time")
        return False

    def now(self) -> datetime:
        """Return the trusted current time (UTC)."""
        return _as_utc(self._device_time()) + timedelta(milliseconds=self.offset_ms)

    def today_date(self) -> date:
        return self.now().date()

    def today(self) -> str:
        """Return the trusted current date as YYYY-MM-DD."""
        return self.today_date().strftime(Constants.DATE_FORMAT)

    def days_ago(self, days: int) -> str:
        return (self.today_date() - timedelta(days=days)).strftime(Constants.DATE_FORMAT)

    def yesterday(self) -> str:
        return self.days_ago(1)

    def is_today(self, date_str: str) -> bool:
        return date_str == self.today()

    def status(self) -> ClockStatus:
        return ClockStatus(
            resolved=self.resolved,
            offset_ms=self.offset_ms,
            source=self.source,
            resolved_at=self.resolved_at,
            now=self.now(),
        )
