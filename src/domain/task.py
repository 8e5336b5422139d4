"""Task (habit/goal) domain models and enums."""

from enum import StrEnum

from pydantic import Field, field_validator, model_validator

from src.domain.record import Record, unique_iso_dates


class TaskType(StrEnum):
    """Whether a task is an open-ended habit or a bounded goal."""

    HABIT = "Habit"
    GOAL = "Goal"


class Category(StrEnum):
    """Life area a task belongs to."""

    WEALTH = "Wealth"
    HEALTH = "Health"
    PERSONAL = "Personal"
    CAREER = "Career"
    OTHER = "Other"


class Task(Record):
    """Habit or goal with its completion history and streak counters."""

    user_id: str = Field(default="", description="Owner user ID")
    type: TaskType = Field(default=TaskType.HABIT, description="Habit or Goal")
    category: Category = Field(default=Category.PERSONAL, description="Life area")
    name: str = Field(..., description="Task name (sensitive)")
    why: str = Field(default="", description="Motivation (sensitive)")
    penalty: str = Field(default="", description="Self-imposed penalty for missing (sensitive)")
    start_date: str = Field(..., description="Start timestamp or date (ISO format)")
    end_date: str = Field(..., description="End timestamp or date (ISO format)")
    created_at: str = Field(default="", description="Creation timestamp (ISO format)")
    completed_dates: list[str] = Field(
        default_factory=list,
        description="Unique YYYY-MM-DD completion dates in the order they were recorded",
    )
    streaks: int = Field(default=0, ge=0, description="Current run of consecutive completions")
    max_streaks: int = Field(default=0, ge=0, description="Longest run ever seen")

    @field_validator("completed_dates")
    @classmethod
    def validate_completed_dates(cls, v: list[str]) -> list[str]:
        """Completion dates must be calendar dates and appear once."""
        return unique_iso_dates(v)

    @model_validator(mode="after")
    def lift_max_streaks(self) -> "Task":
        """Keep max_streaks at or above the current streak."""
        if self.max_streaks < self.streaks:
            self.max_streaks = self.streaks
        return self
