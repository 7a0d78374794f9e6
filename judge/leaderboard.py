"""
Leaderboard aggregation.

Every (class, student) pair owns one LeaderboardEntry holding an append-only
attempt log. All other fields are derived from that log (and the manual
needs-focus flag) by `recompute`, which always starts from scratch so that
replaying the same log yields the same entry.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Dict, List, Tuple

from .models import ActivityStatus, HighestScore, LeaderboardAttempt, LeaderboardEntry, utcnow

logger = logging.getLogger(__name__)

DEFAULT_FOCUS_THRESHOLD = 5


def activity_status(total_submits: int, needs_focus: bool, focus_threshold: int = DEFAULT_FOCUS_THRESHOLD) -> ActivityStatus:
    """Count-based classification; a set needs-focus flag always wins."""
    if needs_focus:
        return ActivityStatus.FOCUSED
    if total_submits == 0:
        return ActivityStatus.INACTIVE
    if total_submits >= focus_threshold:
        return ActivityStatus.FOCUSED
    return ActivityStatus.ACTIVE


def highest_scores(attempts: List[LeaderboardAttempt]) -> List[HighestScore]:
    """Best attempt per question: max score, ties go to the latest attempt."""
    best: Dict[str, LeaderboardAttempt] = {}
    for attempt in attempts:
        current = best.get(attempt.question_id)
        if (current is None
                or attempt.score > current.score
                or (attempt.score == current.score and attempt.submitted_at > current.submitted_at)):
            best[attempt.question_id] = attempt

    return [
        HighestScore(
            question_id=a.question_id,
            submission_id=a.submission_id,
            score=a.score,
            is_correct=a.is_correct,
            submitted_at=a.submitted_at
        )
        for a in best.values()
    ]


def recompute(entry: LeaderboardEntry, focus_threshold: int = DEFAULT_FOCUS_THRESHOLD) -> LeaderboardEntry:
    """Recompute every derived field of the entry from its full attempt log."""
    entry.highest_scores = highest_scores(entry.attempts)
    entry.total_score = sum(h.score for h in entry.highest_scores)
    entry.correct_attempts = sum(1 for a in entry.attempts if a.is_correct)
    entry.wrong_attempts = len(entry.attempts) - entry.correct_attempts
    entry.total_runs = sum(1 for a in entry.attempts if a.is_run)
    entry.total_submits = len(entry.attempts) - entry.total_runs
    entry.activity_status = activity_status(entry.total_submits, entry.needs_focus, focus_threshold)
    return entry


class LeaderboardAggregator:
    """Applies attempts to leaderboard entries, one update at a time per (class, student)."""

    def __init__(self, store, focus_threshold: int = DEFAULT_FOCUS_THRESHOLD):
        self.store = store
        self.focus_threshold = focus_threshold
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def apply_attempt(self, class_id: str, student_id: str, attempt: LeaderboardAttempt) -> LeaderboardEntry:
        """
        Append an attempt to the student's log and recompute the entry.

        Args:
            class_id: Class the attempt belongs to
            student_id: Student who made the attempt
            attempt: Summary of the attempt

        Returns:
            The updated LeaderboardEntry
        """
        async with self._locks[(class_id, student_id)]:
            entry = await self.store.get_leaderboard(class_id, student_id)
            if entry is None:
                entry = LeaderboardEntry(class_id=class_id, student_id=student_id, attempts=[attempt])
                logger.info("Created leaderboard entry for student %s in class %s", student_id, class_id)
            else:
                entry.attempts.append(attempt)

            recompute(entry, self.focus_threshold)
            entry.updated_at = utcnow()
            await self.store.save_leaderboard(entry)
            return entry

    async def set_needs_focus(self, class_id: str, student_id: str, needs_focus: bool) -> LeaderboardEntry:
        """Set or clear the manual focus override; clearing falls back to the current submit count."""
        async with self._locks[(class_id, student_id)]:
            entry = await self.store.get_leaderboard(class_id, student_id)
            if entry is None:
                entry = LeaderboardEntry(class_id=class_id, student_id=student_id)

            entry.needs_focus = needs_focus
            recompute(entry, self.focus_threshold)
            entry.updated_at = utcnow()
            await self.store.save_leaderboard(entry)
            logger.info(
                "Student %s in class %s %s focus",
                student_id, class_id, "marked for" if needs_focus else "unmarked from"
            )
            return entry
