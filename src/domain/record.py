"""Shared base model and validators for synced records."""

from collections.abc import Iterable
from datetime import date

from pydantic import BaseModel, Field


# Allowed characters of an ID, which is also a store path segment
ID_PATTERN = r"^[A-Za-z0-9_-]+$"


class Record(BaseModel):
    """A record stored one-per-document inside a per-user collection."""

    id: str = Field(..., pattern=ID_PATTERN, description="Record ID, also the document ID in the store")


def unique_iso_dates(values: Iterable[str]) -> list[str]:
    """Validate calendar dates and drop repeats, keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        date.fromisoformat(value)
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result
