"""Challenge (quest) domain models and enums."""

from datetime import date
from enum import StrEnum

from pydantic import Field, field_validator

from src.core.config import Constants
from src.domain.record import Record, unique_iso_dates


class ChallengeStatus(StrEnum):
    """Challenge lifecycle state. Completed and Failed are terminal."""

    ACTIVE = "Active"
    COMPLETED = "Completed"
    FAILED = "Failed"


class Challenge(Record):
    """Fixed-duration commitment, optionally linked to a task."""

    user_id: str = Field(default="", description="Owner user ID")
    title: str = Field(..., description="Challenge title (sensitive)")
    description: str | None = Field(default=None, description="Optional description (sensitive)")
    duration: int = Field(..., description="Length in days: 3, 7, 21 or 30")
    start_date: str = Field(..., description="First day of the challenge (YYYY-MM-DD)")
    linked_task_id: str | None = Field(
        default=None,
        description="Weak reference to a task; a missing task does not invalidate the challenge",
    )
    status: ChallengeStatus = Field(default=ChallengeStatus.ACTIVE, description="Lifecycle state")
    progress: list[str] = Field(default_factory=list, description="Unique days logged, in append order")
    rescue_used: bool = Field(default=False, description="Whether the one-time rescue was spent")

    @field_validator("duration")
    @classmethod
    def validate_duration(cls, v: int) -> int:
        if v not in Constants.ALLOWED_CHALLENGE_DURATIONS:
            allowed = ", ".join(str(d) for d in sorted(Constants.ALLOWED_CHALLENGE_DURATIONS))
            raise ValueError(f"Duration must be one of {allowed} days")
        return v

    @field_validator("start_date")
    @classmethod
    def validate_start_date(cls, v: str) -> str:
        date.fromisoformat(v)
        return v

    @field_validator("progress")
    @classmethod
    def validate_progress(cls, v: list[str]) -> list[str]:
        return unique_iso_dates(v)

    @property
    def is_active(self) -> bool:
        return self.status is ChallengeStatus.ACTIVE
