"""Unit tests for the challenge lifecycle."""

import pytest

from src.core.errors import DuplicateChallengeError, ValidationFailure
from src.domain.challenge import Challenge, ChallengeStatus
from src.services import challenge_engine


def _challenge(**overrides) -> Challenge:
    data = {"id": "c1", "title": "Read daily", "duration": 7, "start_date": "2024-03-10"}
    data.update(overrides)
    return Challenge(**data)


@pytest.mark.unit
class TestCreateChallenge:
    """Tests for create_challenge and duplicate detection."""

    def _create(self, **overrides) -> Challenge:
        kwargs = {
            "user_id": "user1",
            "title": "Read daily",
            "duration": 7,
            "start_date": "2024-03-10",
            "existing": [],
            "task_ids": ["t1"],
        }
        kwargs.update(overrides)
        return challenge_engine.create_challenge(**kwargs)

    def test_creates_active_challenge(self):
        """A valid request yields an Active challenge with empty progress."""
        challenge = self._create(title="  Read daily  ", linked_task_id="t1")

        assert challenge.title == "Read daily"
        assert challenge.status is ChallengeStatus.ACTIVE
        assert challenge.progress == []
        assert challenge.rescue_used is False
        assert challenge.linked_task_id == "t1"
        assert challenge.id

    def test_blank_title_is_rejected(self):
        """A whitespace-only title is rejected."""
        with pytest.raises(ValidationFailure, match="title is required"):
            self._create(title="   ")

    @pytest.mark.parametrize("duration", [0, 1, 5, 14, 31])
    def test_unsupported_duration_is_rejected(self, duration):
        """Only 3, 7, 21 and 30 day challenges are allowed."""
        with pytest.raises(ValidationFailure, match="duration"):
            self._create(duration=duration)

    def test_unknown_linked_task_is_rejected(self):
        """Linking a task that does not exist is rejected."""
        with pytest.raises(ValidationFailure, match="Linked task not found"):
            self._create(linked_task_id="ghost")

    def test_duplicate_title_is_case_insensitive(self):
        """An Active challenge with the same trimmed, lowercased title blocks creation."""
        existing = [_challenge(title="Read")]

        with pytest.raises(DuplicateChallengeError) as exc_info:
            self._create(title="  read ", existing=existing)

        assert exc_info.value.existing_id == "c1"

    def test_duplicate_linked_task(self):
        """An Active challenge on the same task blocks creation."""
        existing = [_challenge(title="Other", linked_task_id="t1")]

        with pytest.raises(DuplicateChallengeError):
            self._create(title="New", existing=existing, linked_task_id="t1")

    def test_finished_challenges_do_not_block(self):
        """Completed or failed challenges with the same title are ignored."""
        existing = [
            _challenge(id="c1", status=ChallengeStatus.COMPLETED),
            _challenge(id="c2", status=ChallengeStatus.FAILED),
        ]

        assert self._create(existing=existing).status is ChallengeStatus.ACTIVE


@pytest.mark.unit
class TestTransitions:
    """Tests for marking, rescuing and failing challenges."""

    def test_mark_today_appends_once(self):
        """Marking twice on the same day records it once."""
        challenge = challenge_engine.mark_today(_challenge(), "2024-03-10")
        again = challenge_engine.mark_today(challenge, "2024-03-10")

        assert again.progress == ["2024-03-10"]
        assert again is challenge

    def test_seven_marks_complete_a_seven_day_challenge(self):
        """The final day moves the challenge to Completed at 100%."""
        challenge = _challenge()
        for day in range(10, 17):
            challenge = challenge_engine.mark_today(challenge, f"2024-03-{day}")

        assert challenge.status is ChallengeStatus.COMPLETED
        assert challenge_engine.progress_percent(challenge) == 100

    def test_terminal_challenges_ignore_marks(self):
        """Completed and Failed challenges never change."""
        failed = _challenge(status=ChallengeStatus.FAILED)

        assert challenge_engine.mark_today(failed, "2024-03-10") is failed

    def test_rescue_logs_yesterday_once(self):
        """The rescue logs yesterday and can only be used once."""
        rescued = challenge_engine.use_rescue(_challenge(progress=["2024-03-10"]), "2024-03-11")
        again = challenge_engine.use_rescue(rescued, "2024-03-12")

        assert rescued.progress == ["2024-03-10", "2024-03-11"]
        assert rescued.rescue_used is True
        assert again is rescued

    def test_rescue_can_complete(self):
        """A rescue that fills the last missing day completes the challenge."""
        challenge = _challenge(duration=3, progress=["2024-03-10", "2024-03-12"])

        rescued = challenge_engine.use_rescue(challenge, "2024-03-11")

        assert rescued.status is ChallengeStatus.COMPLETED

    def test_rescue_of_logged_day_keeps_rescue(self):
        """Rescuing a day that is already logged changes nothing and keeps the rescue available."""
        challenge = _challenge(progress=["2024-03-10"])

        result = challenge_engine.use_rescue(challenge, "2024-03-10")

        assert result is challenge
        assert result.rescue_used is False
        assert result.progress == ["2024-03-10"]

    def test_fail_if_elapsed(self):
        """An incomplete challenge fails the day after its window ends."""
        challenge = _challenge(duration=3, progress=["2024-03-10"])

        assert challenge_engine.fail_if_elapsed(challenge, "2024-03-12").status is ChallengeStatus.ACTIVE
        assert challenge_engine.fail_if_elapsed(challenge, "2024-03-13").status is ChallengeStatus.FAILED

    def test_progress_and_days_left(self):
        """Progress rounds to a whole percent; days left counts today."""
        challenge = _challenge(progress=["2024-03-10", "2024-03-11"])

        assert challenge_engine.progress_percent(challenge) == 29
        assert challenge_engine.days_left(challenge, "2024-03-10") == 7
        assert challenge_engine.days_left(challenge, "2024-03-16") == 1
        assert challenge_engine.days_left(challenge, "2024-03-20") == 0

    def test_summary_counts_by_status(self):
        """summary counts challenges per state and total logged days."""
        challenges = [
            _challenge(id="c1", progress=["2024-03-10"]),
            _challenge(
                id="c2",
                duration=3,
                status=ChallengeStatus.COMPLETED,
                progress=["2024-03-01", "2024-03-02", "2024-03-03"],
            ),
            _challenge(id="c3", status=ChallengeStatus.FAILED),
        ]

        result = challenge_engine.summary(challenges)

        assert (result.active, result.completed, result.failed, result.days_logged) == (1, 1, 1, 4)
