"""
Data models for questions, test results, submissions and leaderboards.

Provides type-safe structures for the five question kinds, the results of
sandboxed executions, immutable submission records and the per-student
leaderboard aggregate.
"""

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any, ClassVar


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class QuestionType(str, Enum):
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"
    FILL_BLANK = "fill_blank"
    FILL_BLANK_CODING = "fill_blank_coding"
    CODING = "coding"

    @staticmethod
    def parse(value: str) -> 'QuestionType':
        """Parse a type name, accepting the legacy camel-case names."""
        value = _TYPE_ALIASES.get(value, value)
        try:
            return QuestionType(value)
        except ValueError:
            raise ValueError(f"Unknown question type: {value}")


_TYPE_ALIASES = {
    "singleCorrectMcq": "single_choice",
    "multipleCorrectMcq": "multi_choice",
    "fillInTheBlanks": "fill_blank",
    "fillInTheBlanksCoding": "fill_blank_coding",
}


class AttemptMode(str, Enum):
    SUBMIT = "submit"
    RUN = "run"
    RUN_CUSTOM = "run_custom"


class ActivityStatus(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    FOCUSED = "focused"


# ===== QUESTIONS =====

@dataclass
class TestCase:
    """Represents a single stdin/stdout test case."""
    __test__ = False  # not a pytest class

    input: str
    expected_output: str
    is_public: bool = False

    @staticmethod
    def from_dict(data: dict) -> 'TestCase':
        return TestCase(
            input=data['input'],
            expected_output=data['expected_output'],
            is_public=bool(data.get('is_public', False))
        )


@dataclass
class Question:
    """
    Common fields of every question kind.

    Concrete kinds are the subclasses below; each carries only the grading
    fields relevant to its type. Use Question.from_dict to build the right
    kind from a bank entry.
    """
    type: ClassVar[QuestionType]

    id: str
    title: str = ""
    points: int = 10
    max_attempts: Optional[int] = None

    @property
    def is_coding(self) -> bool:
        return False

    @staticmethod
    def from_dict(data: dict) -> 'Question':
        """Create the question kind named by data['type'], ignoring unrelated fields."""
        question_type = QuestionType.parse(data['type'])
        kind = QUESTION_KINDS[question_type]
        return kind._from_dict(data)

    @classmethod
    def _common(cls, data: dict) -> Dict[str, Any]:
        return {
            "id": str(data['id']),
            "title": data.get('title', ""),
            "points": int(data.get('points', 10)),
            "max_attempts": data.get('max_attempts'),
        }

    @classmethod
    def _from_dict(cls, data: dict) -> 'Question':
        return cls(**cls._common(data))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['type'] = self.type.value
        return data


@dataclass
class SingleChoiceQuestion(Question):
    type: ClassVar[QuestionType] = QuestionType.SINGLE_CHOICE

    options: List[str] = field(default_factory=list)
    correct_option: int = 0

    @classmethod
    def _from_dict(cls, data: dict) -> 'SingleChoiceQuestion':
        return cls(
            options=list(data.get('options') or []),
            correct_option=int(data['correct_option']),
            **cls._common(data)
        )


@dataclass
class MultiChoiceQuestion(Question):
    type: ClassVar[QuestionType] = QuestionType.MULTI_CHOICE

    options: List[str] = field(default_factory=list)
    correct_options: List[int] = field(default_factory=list)

    @classmethod
    def _from_dict(cls, data: dict) -> 'MultiChoiceQuestion':
        return cls(
            options=list(data.get('options') or []),
            correct_options=[int(o) for o in data.get('correct_options') or []],
            **cls._common(data)
        )


@dataclass
class FillBlankQuestion(Question):
    type: ClassVar[QuestionType] = QuestionType.FILL_BLANK

    correct_answer: str = ""

    @classmethod
    def _from_dict(cls, data: dict) -> 'FillBlankQuestion':
        return cls(correct_answer=data['correct_answer'], **cls._common(data))


@dataclass
class CodingQuestion(Question):
    """Program read from stdin, checked against test cases."""
    type: ClassVar[QuestionType] = QuestionType.CODING

    test_cases: List[TestCase] = field(default_factory=list)
    languages: List[str] = field(default_factory=list)
    time_limit: float = 2
    memory_limit: int = 256

    @property
    def is_coding(self) -> bool:
        return True

    @property
    def public_test_cases(self) -> List[TestCase]:
        return [tc for tc in self.test_cases if tc.is_public]

    @classmethod
    def _coding(cls, data: dict) -> Dict[str, Any]:
        return {
            "test_cases": [TestCase.from_dict(tc) for tc in data.get('test_cases') or []],
            "languages": list(data.get('languages') or []),
            "time_limit": float(data.get('time_limit', 2)),
            "memory_limit": int(data.get('memory_limit', 256)),
        }

    @classmethod
    def _from_dict(cls, data: dict) -> 'CodingQuestion':
        return cls(**cls._coding(data), **cls._common(data))


@dataclass
class FillBlankCodingQuestion(CodingQuestion):
    """Code template with a fill marker; the answer is the missing fragment."""
    type: ClassVar[QuestionType] = QuestionType.FILL_BLANK_CODING

    code_snippet: Optional[str] = None
    correct_answer: Optional[str] = None

    @classmethod
    def _from_dict(cls, data: dict) -> 'FillBlankCodingQuestion':
        return cls(
            code_snippet=data.get('code_snippet'),
            correct_answer=data.get('correct_answer'),
            **cls._coding(data),
            **cls._common(data)
        )


QUESTION_KINDS = {
    QuestionType.SINGLE_CHOICE: SingleChoiceQuestion,
    QuestionType.MULTI_CHOICE: MultiChoiceQuestion,
    QuestionType.FILL_BLANK: FillBlankQuestion,
    QuestionType.FILL_BLANK_CODING: FillBlankCodingQuestion,
    QuestionType.CODING: CodingQuestion,
}


# ===== EXECUTION AND GRADING =====

@dataclass
class TestResult:
    """Outcome of running one test case in the sandbox."""
    __test__ = False

    input: str
    output: str
    expected: str
    passed: bool
    is_public: bool
    error: Optional[str] = None
    status: str = "failed"  # passed, failed, runtime_error, compilation_error, timeout, execution_error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input": self.input,
            "output": self.output,
            "expected": self.expected,
            "passed": self.passed,
            "isPublic": self.is_public,
            "error": self.error,
            "status": self.status,
        }


def serialize_results(results: List[TestResult]) -> str:
    """Serialize test results into the JSON output payload."""
    return json.dumps([r.to_dict() for r in results])


@dataclass
class AttemptRequest:
    """An inbound submit / run / run-custom request."""
    question_id: str
    class_id: str
    student_id: str
    mode: AttemptMode = AttemptMode.SUBMIT
    answer: Any = None
    language: Optional[str] = None
    custom_input: Optional[str] = None
    expected_output: Optional[str] = None


@dataclass
class GradeResult:
    """Verdict of the grader for one attempt."""
    is_correct: bool
    score: int
    passed_test_cases: int
    total_test_cases: int
    output: Optional[str]
    test_results: List[TestResult] = field(default_factory=list)


@dataclass(frozen=True)
class Submission:
    """Immutable record of one attempt."""
    id: str
    question_id: str
    class_id: str
    student_id: str
    answer: Any
    language: Optional[str]
    is_correct: bool
    score: int
    output: Optional[str]
    passed_test_cases: int
    total_test_cases: int
    is_run: bool = False
    is_custom_input: bool = False
    submitted_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['submitted_at'] = self.submitted_at.isoformat()
        return data

    @staticmethod
    def from_dict(data: dict) -> 'Submission':
        data = dict(data)
        data['submitted_at'] = _parse_time(data['submitted_at'])
        return Submission(**data)


@dataclass
class AttemptOutcome:
    """Result returned to callers of the grading service."""
    submission_id: str
    is_correct: bool
    score: int
    passed_test_cases: int
    total_test_cases: int
    output: Optional[str]
    test_results: List[TestResult] = field(default_factory=list)


# ===== LEADERBOARD =====

@dataclass
class LeaderboardAttempt:
    """One entry of the append-only attempt log."""
    question_id: str
    question_type: QuestionType
    submission_id: str
    is_correct: bool
    score: int
    submitted_at: datetime
    is_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "question_type": self.question_type.value,
            "submission_id": self.submission_id,
            "is_correct": self.is_correct,
            "score": self.score,
            "submitted_at": self.submitted_at.isoformat(),
            "is_run": self.is_run,
        }

    @staticmethod
    def from_dict(data: dict) -> 'LeaderboardAttempt':
        return LeaderboardAttempt(
            question_id=data['question_id'],
            question_type=QuestionType.parse(data['question_type']),
            submission_id=data['submission_id'],
            is_correct=data['is_correct'],
            score=data['score'],
            submitted_at=_parse_time(data['submitted_at']),
            is_run=data.get('is_run', False)
        )


@dataclass
class HighestScore:
    question_id: str
    submission_id: str
    score: int
    is_correct: bool
    submitted_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['submitted_at'] = self.submitted_at.isoformat()
        return data


@dataclass
class LeaderboardEntry:
    """
    Per-(class, student) aggregate.

    Only `attempts` and `needs_focus` are source data; every other field is
    derived by judge.leaderboard.recompute.
    """
    class_id: str
    student_id: str
    attempts: List[LeaderboardAttempt] = field(default_factory=list)
    highest_scores: List[HighestScore] = field(default_factory=list)
    total_score: int = 0
    correct_attempts: int = 0
    wrong_attempts: int = 0
    total_runs: int = 0
    total_submits: int = 0
    activity_status: ActivityStatus = ActivityStatus.INACTIVE
    needs_focus: bool = False
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "class_id": self.class_id,
            "student_id": self.student_id,
            "attempts": [a.to_dict() for a in self.attempts],
            "highest_scores": [h.to_dict() for h in self.highest_scores],
            "total_score": self.total_score,
            "correct_attempts": self.correct_attempts,
            "wrong_attempts": self.wrong_attempts,
            "total_runs": self.total_runs,
            "total_submits": self.total_submits,
            "activity_status": self.activity_status.value,
            "needs_focus": self.needs_focus,
            "updated_at": self.updated_at.isoformat(),
        }

    @staticmethod
    def from_dict(data: dict) -> 'LeaderboardEntry':
        """Rebuild an entry from its source data; derived fields are recomputed by the caller."""
        return LeaderboardEntry(
            class_id=data['class_id'],
            student_id=data['student_id'],
            attempts=[LeaderboardAttempt.from_dict(a) for a in data.get('attempts', [])],
            needs_focus=data.get('needs_focus', False),
            updated_at=_parse_time(data['updated_at']) if data.get('updated_at') else utcnow()
        )


# ===== CLASSES =====

@dataclass
class QuestionSettings:
    """Per-class publish/disable flags of a question."""
    is_published: bool = False
    is_disabled: bool = False


@dataclass
class ClassRecord:
    """Class record owned by the roster service; counters are bumped by the recorder."""
    id: str
    name: str = ""
    students: List[str] = field(default_factory=list)
    blocked: List[str] = field(default_factory=list)
    question_settings: Dict[str, QuestionSettings] = field(default_factory=dict)
    total_runs: int = 0
    total_submits: int = 0
    correct_attempts: int = 0
    wrong_attempts: int = 0

    @staticmethod
    def from_dict(data: dict) -> 'ClassRecord':
        settings = {}
        for entry in data.get('questions', []):
            settings[str(entry['question_id'])] = QuestionSettings(
                is_published=entry.get('is_published', False),
                is_disabled=entry.get('is_disabled', False)
            )
        return ClassRecord(
            id=str(data['id']),
            name=data.get('name', ""),
            students=[str(s) for s in data.get('students', [])],
            blocked=[str(s) for s in data.get('blocked', [])],
            question_settings=settings,
            total_runs=data.get('total_runs', 0),
            total_submits=data.get('total_submits', 0),
            correct_attempts=data.get('correct_attempts', 0),
            wrong_attempts=data.get('wrong_attempts', 0)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "students": list(self.students),
            "blocked": list(self.blocked),
            "questions": [
                {"question_id": qid, "is_published": s.is_published, "is_disabled": s.is_disabled}
                for qid, s in self.question_settings.items()
            ],
            "total_runs": self.total_runs,
            "total_submits": self.total_submits,
            "correct_attempts": self.correct_attempts,
            "wrong_attempts": self.wrong_attempts,
        }
