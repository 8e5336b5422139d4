"""Pure state transition functions for challenge (quest) lifecycle management.

Active is the initial state; Completed and Failed are terminal. Transitions
return a new Challenge and never mutate their input.
"""

import logging
import uuid
from collections.abc import Iterable
from datetime import date, timedelta

from src.core.config import Constants
from src.core.errors import DuplicateChallengeError, ValidationFailure
from src.core.logging import span
from src.domain.challenge import Challenge, ChallengeStatus
from src.models.service_models import ChallengeSummary


logger = logging.getLogger(__name__)


def _normalize_title(title: str) -> str:
    return title.strip().lower()


def _last_day(challenge: Challenge) -> date:
    return date.fromisoformat(challenge.start_date) + timedelta(days=challenge.duration - 1)


def find_duplicate(
    challenges: Iterable[Challenge],
    title: str,
    linked_task_id: str | None = None,
) -> Challenge | None:
    """Return the Active challenge that blocks creating ``title``, if any.

    A challenge blocks when it has the same title (case-insensitive, trimmed)
    or is linked to the same task.
    """
    wanted = _normalize_title(title)
    for challenge in challenges:
        if not challenge.is_active:
            continue
        if _normalize_title(challenge.title) == wanted:
            return challenge
        if linked_task_id and challenge.linked_task_id == linked_task_id:
            return challenge
    return None


def create_challenge(  # noqa: PLR0913
    *,
    user_id: str,
    title: str,
    duration: int,
    start_date: str,
    existing: Iterable[Challenge],
    task_ids: Iterable[str],
    linked_task_id: str | None = None,
    description: str | None = None,
    challenge_id: str | None = None,
) -> Challenge:
    """Build a new Active challenge after validating it against current state.

    Args:
        user_id: Owner of the challenge
        title: Challenge title, must not be blank
        duration: Length in days, one of the allowed durations
        start_date: First day (trusted today)
        existing: The user's current challenges
        task_ids: IDs of the user's current tasks
        linked_task_id: Optional task the challenge is tied to
        description: Optional description
        challenge_id: Explicit ID; generated when omitted

    Returns:
        The new challenge with empty progress

    Raises:
        ValidationFailure: If the title is blank, the duration is not allowed,
            or the linked task does not exist
        DuplicateChallengeError: If an Active challenge has the same title or linked task
    """
    with span("challenge_engine.create_challenge"):
        if not title.strip():
            msg = "Challenge title is required"
            raise ValidationFailure(msg)

        if duration not in Constants.ALLOWED_CHALLENGE_DURATIONS:
            allowed = ", ".join(str(d) for d in sorted(Constants.ALLOWED_CHALLENGE_DURATIONS))
            msg = f"Challenge duration must be one of {allowed} days"
            raise ValidationFailure(msg)

        if linked_task_id and linked_task_id not in set(task_ids):
            msg = f"Linked task not found: {linked_task_id}"
            raise ValidationFailure(msg)

        duplicate = find_duplicate(existing, title, linked_task_id)
        if duplicate is not None:
            raise DuplicateChallengeError(title, duplicate.id)

        challenge = Challenge(
            id=challenge_id or uuid.uuid4().hex,
            user_id=user_id,
            title=title.strip(),
            description=description,
            duration=duration,
            start_date=start_date,
            linked_task_id=linked_task_id or None,
        )
        logger.info("Created challenge %s (%d days)", challenge.id, duration)
        return challenge


def mark_today(challenge: Challenge, today: str) -> Challenge:
    """Log ``today`` on an Active challenge, completing it once every day is logged.

    Marking a day that is already logged, or a challenge that is no longer
    Active, returns the challenge unchanged.
    """
    with span("challenge_engine.mark_today"):
        if not challenge.is_active or today in challenge.progress:
            return challenge

        progress = [*challenge.progress, today]
        status = ChallengeStatus.COMPLETED if len(progress) >= challenge.duration else challenge.status
        if status is ChallengeStatus.COMPLETED:
            logger.info("Challenge %s completed", challenge.id)
        return challenge.model_copy(update={"progress": progress, "status": status})


def use_rescue(challenge: Challenge, yesterday: str) -> Challenge:
    """Spend the one-time rescue to log ``yesterday``.

    No-op when the rescue was already used, the challenge is not Active,
    or ``yesterday`` is already logged. The rescue stays available then.
    """
    with span("challenge_engine.use_rescue"):
        if not challenge.is_active or challenge.rescue_used or yesterday in challenge.progress:
            return challenge

        progress = [*challenge.progress, yesterday]
        status = ChallengeStatus.COMPLETED if len(progress) >= challenge.duration else challenge.status
        logger.info("Rescue used on challenge %s for %s", challenge.id, yesterday)
        return challenge.model_copy(update={"progress": progress, "rescue_used": True, "status": status})


def fail_if_elapsed(challenge: Challenge, today: str) -> Challenge:
    """Move an Active challenge to Failed once its last day is before ``today``."""
    if not challenge.is_active or len(challenge.progress) >= challenge.duration:
        return challenge
    if _last_day(challenge) >= date.fromisoformat(today):
        return challenge

    logger.info("Challenge %s failed: window ended %s", challenge.id, _last_day(challenge).isoformat())
    return challenge.model_copy(update={"status": ChallengeStatus.FAILED})


def progress_percent(challenge: Challenge) -> int:
    return round(100 * len(challenge.progress) / challenge.duration)


def days_left(challenge: Challenge, today: str) -> int:
    """Calendar days remaining in the window, counting today."""
    return max(0, (_last_day(challenge) - date.fromisoformat(today)).days + 1)


def summary(challenges: Iterable[Challenge]) -> ChallengeSummary:
    result = ChallengeSummary()
    for challenge in challenges:
        if challenge.status is ChallengeStatus.ACTIVE:
            result.active += 1
        elif challenge.status is ChallengeStatus.COMPLETED:
            result.completed += 1
        else:
            result.failed += 1
        result.days_logged += len(challenge.progress)
    return result
