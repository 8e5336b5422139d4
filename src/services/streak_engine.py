"""Pure streak computation for task completions."""

import logging
from datetime import date

from pydantic import BaseModel

from src.core.errors import AlreadyMarkedError, ValidationFailure
from src.core.logging import span
from src.domain.task import Task


logger = logging.getLogger(__name__)

# A gap of one calendar day (yesterday -> today) keeps the chain alive.
MAX_CONTINUING_GAP_DAYS = 1


class StreakResult(BaseModel):
    """Streak counters after recording one completion."""

    streaks: int
    max_streaks: int


def _day_gap(later: str, earlier: str) -> int:
    return (date.fromisoformat(later[:10]) - date.fromisoformat(earlier[:10])).days


def next_streak(task: Task, completion_date: str, today: str | None = None) -> StreakResult:
    """Compute the streak counters after completing ``task`` on ``completion_date``.

    The previous completion is the last entry of ``completed_dates`` in append
    order. The caller must make sure ``completion_date`` is not already
    recorded; calling twice for the same date counts it twice.

    Args:
        task: Task before the completion is recorded
        completion_date: Date being completed (YYYY-MM-DD)
        today: Trusted current date; completions after it are rejected

    Returns:
        StreakResult with the new streak and the new maximum

    Raises:
        ValidationFailure: If completion_date is later than today
    """
    if today is not None and completion_date[:10] > today[:10]:
        msg = f"Cannot complete task {task.id} for a future date {completion_date}"
        raise ValidationFailure(msg)

    last_date = task.completed_dates[-1] if task.completed_dates else None

    if last_date is None:
        streaks = 1
    elif _day_gap(completion_date, last_date) <= MAX_CONTINUING_GAP_DAYS:
        streaks = task.streaks + 1
    else:
        streaks = 1

    return StreakResult(streaks=streaks, max_streaks=max(task.max_streaks, streaks))


def apply_completion(task: Task, completion_date: str, today: str | None = None) -> Task:
    """Return a copy of ``task`` with ``completion_date`` recorded and counters updated.

    Raises:
        AlreadyMarkedError: If the date is already in the task's history
    """
    with span("streak_engine.apply_completion"):
        if completion_date in task.completed_dates:
            raise AlreadyMarkedError(task.id, completion_date)

        result = next_streak(task, completion_date, today)
        updated = task.model_copy(
            update={
                "completed_dates": [*task.completed_dates, completion_date],
                "streaks": result.streaks,
                "max_streaks": result.max_streaks,
            }
        )
        logger.info(
            "Recorded completion for task %s on %s: streak=%d max=%d",
            task.id,
            completion_date,
            result.streaks,
            result.max_streaks,
        )
        return updated
