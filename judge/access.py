"""
Access gate checked before an attempt is graded.
"""

import logging

from .errors import AccessDenied
from .models import AttemptMode, Question
from .recorder import SubmissionRecorder

logger = logging.getLogger(__name__)


class AllowAll:
    """Gate for callers that authorized the attempt upstream."""

    async def check(self, class_id: str, student_id: str, question: Question, mode: AttemptMode = AttemptMode.SUBMIT):
        return None


class ClassroomGate:
    """
    Checks an attempt against the class record.

    Rejects when the question is not assigned to the class, not published
    or disabled, when the student is not enrolled or is blocked, and (for
    graded submits) when the question's attempt limit is used up.
    """

    def __init__(self, store, recorder: SubmissionRecorder = None):
        self.store = store
        self.recorder = recorder or SubmissionRecorder(store)

    async def check(self, class_id: str, student_id: str, question: Question, mode: AttemptMode = AttemptMode.SUBMIT):
        """
        Raises:
            NotFound: If the class does not exist
            AccessDenied: If the attempt is not allowed
        """
        record = await self.store.get_class(class_id)

        settings = record.question_settings.get(question.id)
        if settings is None:
            raise AccessDenied("Question not found in class")
        if not settings.is_published:
            raise AccessDenied("Question is not published")
        if settings.is_disabled:
            raise AccessDenied("Question is disabled")
        if student_id not in record.students:
            raise AccessDenied("Student is not enrolled in this class")
        if student_id in record.blocked:
            raise AccessDenied("Student is blocked in this class")

        if mode == AttemptMode.SUBMIT and question.max_attempts:
            used = await self.recorder.count_graded_submissions(question.id, class_id, student_id)
            if used >= question.max_attempts:
                logger.info("Student %s used all %d attempts on question %s", student_id, used, question.id)
                raise AccessDenied("Maximum attempts reached")
