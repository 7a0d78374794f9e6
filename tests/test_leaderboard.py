"""
Tests for leaderboard aggregation.

Covers recomputation from the attempt log, best-score selection, the
activity status state machine and the manual focus flag.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from judge.leaderboard import LeaderboardAggregator, activity_status, highest_scores, recompute
from judge.models import ActivityStatus, LeaderboardAttempt, LeaderboardEntry, QuestionType
from judge.store import MemoryStore

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def attempt(question_id="q1", score=10, is_correct=True, minutes=0, is_run=False, submission_id=None):
    return LeaderboardAttempt(
        question_id=question_id,
        question_type=QuestionType.CODING,
        submission_id=submission_id or f"{question_id}-{minutes}",
        is_correct=is_correct,
        score=score,
        submitted_at=T0 + timedelta(minutes=minutes),
        is_run=is_run
    )


class TestActivityStatus:
    """Test the count-based classification."""

    def test_thresholds(self):
        assert activity_status(0, False) == ActivityStatus.INACTIVE
        assert activity_status(1, False) == ActivityStatus.ACTIVE
        assert activity_status(4, False) == ActivityStatus.ACTIVE
        assert activity_status(5, False) == ActivityStatus.FOCUSED

    def test_needs_focus_wins(self):
        assert activity_status(0, True) == ActivityStatus.FOCUSED
        assert activity_status(2, True) == ActivityStatus.FOCUSED

    def test_custom_threshold(self):
        assert activity_status(3, False, focus_threshold=3) == ActivityStatus.FOCUSED


class TestHighestScores:
    """Test best attempt selection per question."""

    def test_one_entry_per_question(self):
        best = highest_scores([
            attempt("q1", 5, False, 0),
            attempt("q1", 10, True, 1),
            attempt("q2", 3, False, 2),
            attempt("q1", 7, False, 3),
        ])

        by_question = {h.question_id: h for h in best}
        assert set(by_question) == {"q1", "q2"}
        assert by_question["q1"].score == 10
        assert by_question["q1"].submission_id == "q1-1"
        assert by_question["q2"].score == 3

    def test_tie_goes_to_latest(self):
        best = highest_scores([attempt("q1", 10, True, 0), attempt("q1", 10, True, 5), attempt("q1", 10, True, 2)])

        assert len(best) == 1
        assert best[0].submission_id == "q1-5"


class TestRecompute:
    """Test full recomputation of derived fields."""

    def test_totals(self):
        entry = LeaderboardEntry("c1", "s1", attempts=[
            attempt("q1", 13, False, 0),
            attempt("q1", 20, True, 1),
            attempt("q2", 0, False, 2),
            attempt("q2", 0, True, 3, is_run=True),
        ])

        recompute(entry)

        assert entry.total_score == 20
        assert entry.correct_attempts == 2
        assert entry.wrong_attempts == 2
        assert entry.total_runs == 1
        assert entry.total_submits == 3
        assert entry.activity_status == ActivityStatus.ACTIVE

    def test_idempotent(self):
        """Recomputing twice gives the same entry."""
        entry = LeaderboardEntry("c1", "s1", attempts=[attempt("q1", 5, False, 0), attempt("q2", 10, True, 1)])

        first = recompute(entry).to_dict()
        second = recompute(entry).to_dict()

        assert first == second

    def test_stale_derived_fields_are_overwritten(self):
        entry = LeaderboardEntry("c1", "s1", attempts=[attempt()], total_score=999, correct_attempts=42)

        recompute(entry)

        assert entry.total_score == 10
        assert entry.correct_attempts == 1


class TestAggregator:
    """Test applying attempts through the store."""

    def test_first_attempt_creates_entry(self):
        store = MemoryStore()
        aggregator = LeaderboardAggregator(store)

        entry = asyncio.run(aggregator.apply_attempt("c1", "s1", attempt()))

        assert entry.attempts == [attempt()]
        assert entry.activity_status == ActivityStatus.ACTIVE
        assert store.leaderboards[("c1", "s1")] is entry

    def test_fifth_submit_flips_to_focused(self):
        """Four wrong submits keep a student active; the fifth makes them focused."""
        store = MemoryStore()
        aggregator = LeaderboardAggregator(store)

        async def scenario():
            statuses = []
            for i in range(5):
                entry = await aggregator.apply_attempt("c1", "s1", attempt("q1", 0, False, i))
                statuses.append(entry.activity_status)
            return statuses, entry

        statuses, entry = asyncio.run(scenario())

        assert statuses[:4] == [ActivityStatus.ACTIVE] * 4
        assert statuses[4] == ActivityStatus.FOCUSED
        assert entry.wrong_attempts == 5

    def test_runs_do_not_change_total_score(self):
        store = MemoryStore()
        aggregator = LeaderboardAggregator(store)

        async def scenario():
            await aggregator.apply_attempt("c1", "s1", attempt("q1", 13, False, 0))
            return await aggregator.apply_attempt("c1", "s1", attempt("q1", 0, True, 1, is_run=True))

        entry = asyncio.run(scenario())

        assert entry.total_score == 13
        assert entry.total_runs == 1
        assert entry.total_submits == 1

    def test_concurrent_updates_not_lost(self):
        store = MemoryStore()
        aggregator = LeaderboardAggregator(store)

        async def scenario():
            await asyncio.gather(*[
                aggregator.apply_attempt("c1", "s1", attempt(f"q{i}", 1, True, i)) for i in range(20)
            ])

        asyncio.run(scenario())

        entry = store.leaderboards[("c1", "s1")]
        assert len(entry.attempts) == 20
        assert entry.total_score == 20


class TestNeedsFocus:
    """Test the manual focus override."""

    def test_set_and_clear(self):
        """Clearing the flag falls back to the submit count."""
        store = MemoryStore()
        aggregator = LeaderboardAggregator(store)

        async def scenario():
            await aggregator.apply_attempt("c1", "s1", attempt())
            flagged = await aggregator.set_needs_focus("c1", "s1", True)
            flagged_status = flagged.activity_status
            cleared = await aggregator.set_needs_focus("c1", "s1", False)
            return flagged_status, cleared

        flagged_status, cleared = asyncio.run(scenario())

        assert flagged_status == ActivityStatus.FOCUSED
        assert cleared.activity_status == ActivityStatus.ACTIVE
        assert cleared.needs_focus is False

    def test_flag_on_student_without_attempts(self):
        store = MemoryStore()
        aggregator = LeaderboardAggregator(store)

        async def scenario():
            flagged = await aggregator.set_needs_focus("c1", "s9", True)
            status = flagged.activity_status
            cleared = await aggregator.set_needs_focus("c1", "s9", False)
            return status, cleared.activity_status

        flagged, cleared = asyncio.run(scenario())

        assert flagged == ActivityStatus.FOCUSED
        assert cleared == ActivityStatus.INACTIVE

    def test_flag_survives_new_attempts(self):
        store = MemoryStore()
        aggregator = LeaderboardAggregator(store)

        async def scenario():
            await aggregator.set_needs_focus("c1", "s1", True)
            return await aggregator.apply_attempt("c1", "s1", attempt())

        entry = asyncio.run(scenario())

        assert entry.activity_status == ActivityStatus.FOCUSED
