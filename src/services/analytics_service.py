"""Analytics service for dashboard and insight statistics.

This module provides pure functions over cached records and a trusted
``today`` date for:
- Daily habit completion and broken streak alerts
- Weekly activity counts and the weekly review
- Per-task progress and recently missed days

Key Concepts:
- Broken streak: a task that existed before today but was not completed yesterday.
- Ongoing task: a task whose planned window is longer than a year. Its progress
  is reported as consistency (completions per day since start) rather than as
  a share of the planned window.
"""

import logging
from collections import Counter
from collections.abc import Iterable
from datetime import date, timedelta

from src.core.config import Constants
from src.domain.journal import JournalEntry
from src.domain.task import Task
from src.domain.todo import Expense
from src.models.service_models import DayCount, TaskProgress, WeeklyReview


logger = logging.getLogger(__name__)

NO_MOOD = "-"


def _to_date(value: str) -> date:
    """Calendar date of an ISO date or timestamp string."""
    return date.fromisoformat(value[:10])


def habits_done_today(tasks: Iterable[Task], today: str) -> int:
    return sum(1 for task in tasks if today in task.completed_dates)


def daily_progress_percent(tasks: list[Task], today: str) -> int:
    """Share of tasks completed today, as a whole percentage."""
    if not tasks:
        return 0
    return round(100 * habits_done_today(tasks, today) / len(tasks))


def broken_streaks(tasks: Iterable[Task], today: str) -> list[Task]:
    """Tasks that started before today and were not completed yesterday."""
    today_date = _to_date(today)
    yesterday = (today_date - timedelta(days=1)).strftime(Constants.DATE_FORMAT)
    return [
        task
        for task in tasks
        if _to_date(task.start_date) < today_date and yesterday not in task.completed_dates
    ]


def weekly_counts(tasks: list[Task], today: str) -> list[DayCount]:
    """Completions per day for the last seven days, oldest first, ending today."""
    today_date = _to_date(today)
    counts: list[DayCount] = []
    for offset in range(Constants.WEEK_DAYS - 1, -1, -1):
        day = today_date - timedelta(days=offset)
        day_str = day.strftime(Constants.DATE_FORMAT)
        counts.append(
            DayCount(
                date=day_str,
                weekday=day.strftime("%a"),
                count=sum(1 for task in tasks if day_str in task.completed_dates),
            )
        )
    return counts


def missed_dates(task: Task, today: str) -> list[str]:
    """Days in the last week (excluding today) since the task started that were not completed.

    Returns:
        Dates newest first
    """
    today_date = _to_date(today)
    start = _to_date(task.start_date)
    missed: list[str] = []
    for offset in range(1, Constants.WEEK_DAYS + 1):
        day = today_date - timedelta(days=offset)
        if day < start:
            continue
        day_str = day.strftime(Constants.DATE_FORMAT)
        if day_str not in task.completed_dates:
            missed.append(day_str)
    return missed


def task_progress(task: Task, today: str) -> TaskProgress:
    """Completion share of the planned window, or consistency for ongoing tasks."""
    start = _to_date(task.start_date)
    total_duration = (_to_date(task.end_date) - start).days + 1
    days_passed = (_to_date(today) - start).days + 1
    completed_count = len(task.completed_dates)
    is_ongoing = total_duration > Constants.ONGOING_TASK_DAYS

    if is_ongoing:
        percentage = min(100.0, completed_count / max(1, days_passed) * 100)
        label = "Consistency"
    else:
        percentage = min(100.0, max(0.0, completed_count / max(1, total_duration) * 100))
        label = "Completion"

    return TaskProgress(
        task_id=task.id,
        percentage=percentage,
        completed_count=completed_count,
        total_duration=total_duration,
        is_ongoing=is_ongoing,
        label=label,
    )


def weekly_review(
    *,
    tasks: Iterable[Task],
    expenses: Iterable[Expense],
    journal: Iterable[JournalEntry],
    today: str,
) -> WeeklyReview:
    """Summarize the last seven days of completions, spending and mood.

    Highest streak is the largest current streak across all tasks. The
    dominant mood is the most frequent one; ties go to the mood seen first.
    """
    since = _to_date(today) - timedelta(days=Constants.WEEK_DAYS)

    total_completed = 0
    highest_streak = 0
    for task in tasks:
        total_completed += sum(1 for d in task.completed_dates if _to_date(d) >= since)
        highest_streak = max(highest_streak, task.streaks)

    total_spent = sum(expense.amount for expense in expenses if _to_date(expense.date) >= since)

    moods = Counter(entry.mood for entry in journal if _to_date(entry.date) >= since)
    dominant_mood = moods.most_common(1)[0][0] if moods else NO_MOOD

    logger.debug(
        "Computed weekly review",
        extra={"total_completed": total_completed, "highest_streak": highest_streak},
    )
    return WeeklyReview(
        total_completed=total_completed,
        highest_streak=highest_streak,
        total_spent=total_spent,
        dominant_mood=dominant_mood,
    )
