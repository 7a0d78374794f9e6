"""
In-memory persistence for questions, classes, submissions and leaderboards.

Every accessor is a coroutine so that a database-backed store can be
dropped in without changing callers. Counter updates go through
`increment_class`, which applies all deltas without yielding to other tasks.
State can be snapshotted to a JSON file and loaded back.
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import NotFound
from .leaderboard import DEFAULT_FOCUS_THRESHOLD, recompute
from .models import ClassRecord, LeaderboardEntry, Question, Submission

logger = logging.getLogger(__name__)

CLASS_COUNTERS = ("total_runs", "total_submits", "correct_attempts", "wrong_attempts")


class MemoryStore:
    """Dictionary-backed store."""

    def __init__(self):
        self.questions: Dict[str, Question] = {}
        self.classes: Dict[str, ClassRecord] = {}
        self.submissions: Dict[str, Submission] = {}
        self.leaderboards: Dict[Tuple[str, str], LeaderboardEntry] = {}

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    # ===== QUESTIONS AND CLASSES =====

    def add_question(self, question: Question):
        self.questions[question.id] = question

    def add_class(self, record: ClassRecord):
        self.classes[record.id] = record

    async def get_question(self, question_id: str) -> Question:
        question = self.questions.get(question_id)
        if question is None:
            raise NotFound(f"Question not found: {question_id}")
        return question

    async def get_class(self, class_id: str) -> ClassRecord:
        record = self.classes.get(class_id)
        if record is None:
            raise NotFound(f"Class not found: {class_id}")
        return record

    async def increment_class(self, class_id: str, **deltas: int) -> ClassRecord:
        """Atomically add deltas to the named class counters."""
        unknown = set(deltas) - set(CLASS_COUNTERS)
        if unknown:
            raise ValueError(f"Unknown class counters: {sorted(unknown)}")
        record = await self.get_class(class_id)
        for name, delta in deltas.items():
            setattr(record, name, getattr(record, name) + delta)
        return record

    # ===== SUBMISSIONS =====

    async def save_submission(self, submission: Submission):
        if submission.id in self.submissions:
            raise ValueError(f"Submission {submission.id} already exists")
        self.submissions[submission.id] = submission

    async def get_submission(self, submission_id: str) -> Submission:
        submission = self.submissions.get(submission_id)
        if submission is None:
            raise NotFound(f"Submission not found: {submission_id}")
        return submission

    async def list_submissions(
        self,
        class_id: Optional[str] = None,
        student_id: Optional[str] = None,
        question_id: Optional[str] = None
    ) -> List[Submission]:
        return [
            s for s in self.submissions.values()
            if (class_id is None or s.class_id == class_id)
            and (student_id is None or s.student_id == student_id)
            and (question_id is None or s.question_id == question_id)
        ]

    # ===== LEADERBOARD =====

    async def get_leaderboard(self, class_id: str, student_id: str) -> Optional[LeaderboardEntry]:
        return self.leaderboards.get((class_id, student_id))

    async def save_leaderboard(self, entry: LeaderboardEntry):
        self.leaderboards[(entry.class_id, entry.student_id)] = entry

    async def list_leaderboard(self, class_id: str) -> List[LeaderboardEntry]:
        return [e for (cid, _), e in self.leaderboards.items() if cid == class_id]

    # ===== SNAPSHOTS =====

    def to_dict(self) -> dict:
        """Snapshot of everything except questions, which come from the bank."""
        return {
            "classes": [c.to_dict() for c in self.classes.values()],
            "submissions": [s.to_dict() for s in self.submissions.values()],
            "leaderboards": [e.to_dict() for e in self.leaderboards.values()],
        }

    def save_state(self, path: Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.debug("State saved to %s", path)

    def load_state(self, path: Path, focus_threshold: int = DEFAULT_FOCUS_THRESHOLD):
        """
        Load a snapshot written by save_state.

        Classes in the snapshot replace same-id classes already loaded.
        Leaderboard derived fields are recomputed from the attempt logs.

        Raises:
            ValueError: If the file is not valid JSON
        """
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in state file: {e}")

        for record in data.get('classes', []):
            self.add_class(ClassRecord.from_dict(record))
        for record in data.get('submissions', []):
            submission = Submission.from_dict(record)
            self.submissions[submission.id] = submission
        for record in data.get('leaderboards', []):
            entry = recompute(LeaderboardEntry.from_dict(record), focus_threshold)
            self.leaderboards[(entry.class_id, entry.student_id)] = entry
