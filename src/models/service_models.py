"""Pydantic models for service layer return types.

These models are derived views over cached records; none of them is stored.
"""

from pydantic import BaseModel


class DayCount(BaseModel):
    """Number of task completions on one calendar day."""

    date: str
    weekday: str
    count: int


class TaskProgress(BaseModel):
    """Progress of one task toward its planned window."""

    task_id: str
    percentage: float
    completed_count: int
    total_duration: int
    is_ongoing: bool
    label: str


class WeeklyReview(BaseModel):
    """Activity summary over the last seven days."""

    total_completed: int
    highest_streak: int
    total_spent: float
    dominant_mood: str


class ChallengeSummary(BaseModel):
    """Counts across a user's challenges."""

    active: int = 0
    completed: int = 0
    failed: int = 0
    days_logged: int = 0
