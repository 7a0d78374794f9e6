"""
Submission recorder.

Persists one immutable Submission per attempt and bumps the owning class's
run/submit counters through the store's atomic increment.
"""

import logging

from .models import AttemptMode, AttemptRequest, GradeResult, Question, Submission, utcnow

logger = logging.getLogger(__name__)


class SubmissionRecorder:
    """Writes submission records and class counters."""

    def __init__(self, store):
        self.store = store

    async def record(self, request: AttemptRequest, question: Question, result: GradeResult) -> Submission:
        """
        Persist one attempt.

        Practice runs are stored with a score of 0 and only bump the class
        `total_runs` counter. Graded submits bump `total_submits` and the
        correct or wrong counter.

        Args:
            request: The inbound attempt
            question: Question the attempt answers
            result: Grader verdict

        Returns:
            The stored Submission
        """
        is_run = request.mode != AttemptMode.SUBMIT
        submission = Submission(
            id=self.store.new_id(),
            question_id=question.id,
            class_id=request.class_id,
            student_id=request.student_id,
            answer=request.answer,
            language=request.language,
            is_correct=result.is_correct,
            score=0 if is_run else result.score,
            output=result.output,
            passed_test_cases=result.passed_test_cases,
            total_test_cases=result.total_test_cases,
            is_run=is_run,
            is_custom_input=request.mode == AttemptMode.RUN_CUSTOM,
            submitted_at=utcnow()
        )
        await self.store.save_submission(submission)

        if is_run:
            await self.store.increment_class(request.class_id, total_runs=1)
        else:
            await self.store.increment_class(
                request.class_id,
                total_submits=1,
                correct_attempts=1 if result.is_correct else 0,
                wrong_attempts=0 if result.is_correct else 1
            )

        logger.info(
            "Recorded %s %s for question %s by student %s",
            request.mode.value, submission.id, question.id, request.student_id
        )
        return submission

    async def count_graded_submissions(self, question_id: str, class_id: str, student_id: str) -> int:
        """Number of graded submits a student has made on a question in a class."""
        submissions = await self.store.list_submissions(
            class_id=class_id, student_id=student_id, question_id=question_id
        )
        return sum(1 for s in submissions if not s.is_run)
