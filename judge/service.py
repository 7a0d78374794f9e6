"""
Grading service.

Request-level orchestration of the pipeline: access gate, grader,
submission recorder, leaderboard aggregator and the live-update event,
in that order. Also serves the leaderboard and the class reports.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from .access import AllowAll
from .config_loader import JudgeConfig
from .errors import ValidationError
from .events import CODE_RUN, CUSTOM_INPUT_RUN, SUBMISSION_UPDATE, EventPublisher, LoggingChannel
from .grader import Grader
from .leaderboard import LeaderboardAggregator
from .models import (
    ActivityStatus,
    AttemptMode,
    AttemptOutcome,
    AttemptRequest,
    GradeResult,
    LeaderboardAttempt,
    LeaderboardEntry,
    Question,
    Submission,
)
from .recorder import SubmissionRecorder

logger = logging.getLogger(__name__)


def _percentage(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


class GradingService:
    """Entry point for submit, run and run-custom attempts."""

    def __init__(
        self,
        store,
        grader: Grader,
        gate=None,
        publisher: Optional[EventPublisher] = None,
        config: Optional[JudgeConfig] = None
    ):
        self.config = config or JudgeConfig.default()
        self.store = store
        self.grader = grader
        self.recorder = SubmissionRecorder(store)
        self.aggregator = LeaderboardAggregator(store, self.config.focus_threshold)
        self.gate = gate or AllowAll()
        self.publisher = publisher or EventPublisher(LoggingChannel())

    # ===== ATTEMPTS =====

    async def grade_and_record(self, request: AttemptRequest) -> AttemptOutcome:
        """
        Grade a submit-mode attempt and fold it into the leaderboard.

        Raises:
            NotFound: If the question or class does not exist
            AccessDenied: If the gate rejects the attempt
            ValidationError: If the answer or language is unusable
        """
        request = replace(request, mode=AttemptMode.SUBMIT)
        question = await self._admit(request)
        result = await self.grader.grade(question, request)
        submission = await self._record(request, question, result)

        self.publisher.emit(request.class_id, SUBMISSION_UPDATE, {
            "classId": request.class_id,
            "studentId": request.student_id,
            "submissionId": submission.id,
            "isCorrect": result.is_correct,
            "passedTestCases": result.passed_test_cases,
            "totalTestCases": result.total_test_cases,
        })
        return self._outcome(submission, result)

    async def run(self, request: AttemptRequest) -> AttemptOutcome:
        """
        Practice run against the public test cases. Never scored.

        Raises:
            NotFound, AccessDenied, ValidationError
        """
        request = replace(request, mode=AttemptMode.RUN)
        question = await self._admit(request)
        result = await self.grader.run(question, request)
        submission = await self._record(request, question, result)

        self.publisher.emit(request.class_id, CODE_RUN, {
            "classId": request.class_id,
            "studentId": request.student_id,
            "submissionId": submission.id,
            "isCorrect": result.is_correct,
            "passedTestCases": result.passed_test_cases,
            "totalTestCases": result.total_test_cases,
        })
        return self._outcome(submission, result)

    async def run_custom(self, request: AttemptRequest) -> AttemptOutcome:
        """
        Practice run against one caller-supplied input. Never scored.

        Raises:
            NotFound, AccessDenied, InvalidCustomInput, ValidationError
        """
        request = replace(request, mode=AttemptMode.RUN_CUSTOM)
        question = await self._admit(request)
        result = await self.grader.run_custom(question, request)
        submission = await self._record(request, question, result)

        self.publisher.emit(request.class_id, CUSTOM_INPUT_RUN, {
            "classId": request.class_id,
            "studentId": request.student_id,
            "submissionId": submission.id,
            "isCorrect": result.is_correct,
            "passedTestCases": result.passed_test_cases,
            "totalTestCases": result.total_test_cases,
            "customInput": request.custom_input,
            "expectedOutput": request.expected_output,
        })
        return self._outcome(submission, result)

    async def _admit(self, request: AttemptRequest) -> Question:
        question = await self.store.get_question(request.question_id)
        await self.gate.check(request.class_id, request.student_id, question, request.mode)
        return question

    async def _record(self, request: AttemptRequest, question: Question, result: GradeResult) -> Submission:
        submission = await self.recorder.record(request, question, result)
        attempt = LeaderboardAttempt(
            question_id=question.id,
            question_type=question.type,
            submission_id=submission.id,
            is_correct=submission.is_correct,
            score=submission.score,
            submitted_at=submission.submitted_at,
            is_run=submission.is_run
        )
        await self.aggregator.apply_attempt(request.class_id, request.student_id, attempt)
        return submission

    def _outcome(self, submission: Submission, result: GradeResult) -> AttemptOutcome:
        return AttemptOutcome(
            submission_id=submission.id,
            is_correct=result.is_correct,
            score=submission.score,
            passed_test_cases=result.passed_test_cases,
            total_test_cases=result.total_test_cases,
            output=result.output,
            test_results=result.test_results
        )

    # ===== LEADERBOARD =====

    async def get_leaderboard(self, class_id: str) -> List[LeaderboardEntry]:
        """Entries of a class, highest total score first."""
        await self.store.get_class(class_id)
        entries = await self.store.list_leaderboard(class_id)
        return sorted(entries, key=lambda e: (-e.total_score, e.student_id))

    async def search_leaderboard(
        self,
        class_id: str,
        student: Optional[str] = None,
        activity_status: Optional[str] = None,
        min_correct_attempts: Optional[int] = None,
        max_attempts: Optional[int] = None
    ) -> List[LeaderboardEntry]:
        """
        Filter the class leaderboard.

        Args:
            class_id: Class to search
            student: Case-insensitive substring of the student id
            activity_status: inactive, active or focused
            min_correct_attempts: Lower bound on correct attempts
            max_attempts: Upper bound on correct + wrong attempts

        Raises:
            ValidationError: If activity_status is not a known status
        """
        status = None
        if activity_status:
            try:
                status = ActivityStatus(activity_status)
            except ValueError:
                raise ValidationError(f"Invalid activity status: {activity_status}")

        entries = await self.get_leaderboard(class_id)
        if status is not None:
            entries = [e for e in entries if e.activity_status == status]
        if min_correct_attempts is not None:
            entries = [e for e in entries if e.correct_attempts >= min_correct_attempts]
        if max_attempts is not None:
            entries = [e for e in entries if e.correct_attempts + e.wrong_attempts <= max_attempts]
        if student:
            needle = student.lower()
            entries = [e for e in entries if needle in e.student_id.lower()]
        return entries

    async def set_needs_focus(self, class_id: str, student_id: str, needs_focus: bool) -> LeaderboardEntry:
        """
        Set or clear the manual focus flag of an enrolled student.

        Raises:
            NotFound: If the class does not exist
            ValidationError: If the student is not enrolled
        """
        record = await self.store.get_class(class_id)
        if student_id not in record.students:
            raise ValidationError(f"Student {student_id} is not enrolled in class {class_id}")
        return await self.aggregator.set_needs_focus(class_id, student_id, needs_focus)

    # ===== REPORTS =====

    async def participant_stats(self, class_id: str) -> Dict[str, Any]:
        """Activity distribution and correctness totals of a class."""
        record = await self.store.get_class(class_id)
        entries = {e.student_id: e for e in await self.store.list_leaderboard(class_id)}

        counts = {status.value: 0 for status in ActivityStatus}
        total_correct = 0
        total_wrong = 0
        for student_id in record.students:
            entry = entries.get(student_id)
            if entry is None:
                counts[ActivityStatus.INACTIVE.value] += 1
                continue
            counts[entry.activity_status.value] += 1
            total_correct += entry.correct_attempts
            total_wrong += entry.wrong_attempts

        participants = len(record.students)
        return {
            "total_participants": participants,
            "activity_stats": counts,
            "activity_percentage": {k: _percentage(v, participants) for k, v in counts.items()},
            "total_correct_attempts": total_correct,
            "total_wrong_attempts": total_wrong,
            "correct_percentage": _percentage(total_correct, total_correct + total_wrong),
            "class_total_runs": record.total_runs,
            "class_total_submits": record.total_submits,
        }

    async def question_report(self, class_id: str, question_id: str) -> Dict[str, Any]:
        """
        Per-student view of one question in a class.

        Students are ordered by highest score (descending), then by the time
        of their latest attempt (earliest first).

        Raises:
            NotFound: If the class or question does not exist
            ValidationError: If the question is not assigned to the class
        """
        record = await self.store.get_class(class_id)
        question = await self.store.get_question(question_id)
        if question_id not in record.question_settings:
            raise ValidationError("Question not associated with this class")

        students = []
        for entry in await self.store.list_leaderboard(class_id):
            attempts = [a for a in entry.attempts if a.question_id == question_id]
            if not attempts:
                continue
            correct = sum(1 for a in attempts if a.is_correct)
            runs = sum(1 for a in attempts if a.is_run)
            students.append({
                "student_id": entry.student_id,
                "total_attempts": len(attempts),
                "correct_attempts": correct,
                "wrong_attempts": len(attempts) - correct,
                "total_runs": runs,
                "total_submits": len(attempts) - runs,
                "highest_score": max(a.score for a in attempts),
                "latest_submission": max(a.submitted_at for a in attempts),
            })

        students.sort(key=lambda s: (-s["highest_score"], s["latest_submission"]))
        for s in students:
            s["latest_submission"] = s["latest_submission"].isoformat()

        settings = record.question_settings[question_id]
        return {
            "question": {
                "id": question.id,
                "title": question.title,
                "type": question.type.value,
                "points": question.points,
                "is_published": settings.is_published,
                "is_disabled": settings.is_disabled,
            },
            "students": students,
            "total_students_attempted": len(students),
            "total_correct": sum(s["correct_attempts"] for s in students),
            "total_wrong": sum(s["wrong_attempts"] for s in students),
            "total_runs": sum(s["total_runs"] for s in students),
            "total_submits": sum(s["total_submits"] for s in students),
            "avg_score": round(sum(s["highest_score"] for s in students) / len(students), 2) if students else 0,
        }
