"""
Grader module for scoring student answers.

Provides the Grader class which dispatches on the question kind, delegates
coding answers to the sandbox executor and computes verdicts and scores.
"""

import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .config_loader import JudgeConfig
from .errors import InvalidCustomInput, MissingTemplate, UnsupportedLanguage, ValidationError
from .languages import lookup
from .models import (
    AttemptRequest,
    CodingQuestion,
    FillBlankCodingQuestion,
    FillBlankQuestion,
    GradeResult,
    MultiChoiceQuestion,
    Question,
    QuestionType,
    SingleChoiceQuestion,
    TestCase,
    TestResult,
    serialize_results,
)
from .sandbox import SandboxExecutor

logger = logging.getLogger(__name__)

CUSTOM_INPUT_PATTERN = re.compile(r"^\[\s*-?\d+(\s*,\s*-?\d+)*\s*\]$")


def partial_score(points: int, passed: int, total: int) -> int:
    """Full points when every test passed, otherwise floor(points * passed / total)."""
    if passed == total:
        return points
    return (points * passed) // total


class Grader:
    """Grades attempts for every question kind."""

    def __init__(self, executor: SandboxExecutor, config: Optional[JudgeConfig] = None):
        """Initialize grader with the sandbox executor and the per-kind grading functions."""
        self.executor = executor
        self.config = config or JudgeConfig.default()
        self.graders: Dict[QuestionType, Callable[[Any, AttemptRequest], Awaitable[GradeResult]]] = {
            QuestionType.SINGLE_CHOICE: self._grade_single_choice,
            QuestionType.MULTI_CHOICE: self._grade_multi_choice,
            QuestionType.FILL_BLANK: self._grade_fill_blank,
            QuestionType.FILL_BLANK_CODING: self._grade_coding,
            QuestionType.CODING: self._grade_coding,
        }

    # ===== GRADED SUBMISSIONS =====

    async def grade(self, question: Question, request: AttemptRequest) -> GradeResult:
        """
        Grade a submit-mode attempt.

        Args:
            question: Question being answered
            request: The attempt; `answer` holds the option index, option list,
                     text, code fragment or source depending on the question kind

        Returns:
            GradeResult with verdict, score and normalized output

        Raises:
            ValidationError: If the answer or language is unusable
        """
        grade_fn = self.graders[question.type]
        return await grade_fn(question, request)

    async def _grade_single_choice(self, question: SingleChoiceQuestion, request: AttemptRequest) -> GradeResult:
        selected = self._as_option(request.answer)
        is_correct = selected == question.correct_option
        return self._all_or_nothing(question, is_correct, str(request.answer))

    async def _grade_multi_choice(self, question: MultiChoiceQuestion, request: AttemptRequest) -> GradeResult:
        answer = request.answer
        if isinstance(answer, (list, tuple)):
            submitted = [self._as_option(a) for a in answer]
        else:
            submitted = [self._as_option(answer)]
        is_correct = set(submitted) == set(question.correct_options)
        return self._all_or_nothing(question, is_correct, json.dumps(submitted))

    async def _grade_fill_blank(self, question: FillBlankQuestion, request: AttemptRequest) -> GradeResult:
        if not isinstance(request.answer, str):
            raise ValidationError("Answer must be a string")
        is_correct = request.answer.strip().lower() == question.correct_answer.strip().lower()
        return self._all_or_nothing(question, is_correct, request.answer)

    async def _grade_coding(self, question: CodingQuestion, request: AttemptRequest) -> GradeResult:
        source = self._prepare_source(question, request)
        try:
            results = await self._execute(question, request, source, question.test_cases)
        except Exception as e:
            return self._execution_failed(question, len(question.test_cases), e)

        total = len(results)
        passed = sum(1 for r in results if r.passed)
        is_correct = passed == total
        public_results = [r for r in results if r.is_public]
        return GradeResult(
            is_correct=is_correct,
            score=partial_score(question.points, passed, total),
            passed_test_cases=passed,
            total_test_cases=total,
            output=serialize_results(public_results),
            test_results=results
        )

    # ===== PRACTICE RUNS =====

    async def run(self, question: Question, request: AttemptRequest) -> GradeResult:
        """
        Run a coding answer against the public test cases only. Never scored.

        Raises:
            ValidationError: If the question is not a coding question, has no
                             public test cases, or the language is unusable
        """
        coding = self._require_coding(question)
        source = self._prepare_source(coding, request)
        public_cases = coding.public_test_cases
        if not public_cases:
            raise ValidationError("No public test cases available for this question")

        try:
            results = await self._execute(coding, request, source, public_cases)
        except Exception as e:
            return self._execution_failed(coding, len(public_cases), e)
        passed = sum(1 for r in results if r.passed)
        return GradeResult(
            is_correct=passed == len(results),
            score=0,
            passed_test_cases=passed,
            total_test_cases=len(results),
            output=serialize_results(results),
            test_results=results
        )

    async def run_custom(self, question: Question, request: AttemptRequest) -> GradeResult:
        """
        Run a coding answer against one caller-supplied input.

        The input must be a bracketed list of integers such as "[1, 2, 3]".
        The attempt only counts as correct when an expected output was given
        and matched.

        Raises:
            InvalidCustomInput: If the custom input is malformed
            ValidationError: If the expected output is not a string, or the
                             question/language is unusable
        """
        coding = self._require_coding(question)
        custom_input = request.custom_input
        if not custom_input or not isinstance(custom_input, str):
            raise InvalidCustomInput("Valid custom input is required")
        if not CUSTOM_INPUT_PATTERN.match(custom_input):
            raise InvalidCustomInput("Custom input must be a valid array (e.g., [1, 2, 3])")
        if request.expected_output is not None and not isinstance(request.expected_output, str):
            raise ValidationError("Expected output must be a string")

        source = self._prepare_source(coding, request)
        custom_case = TestCase(
            input=custom_input,
            expected_output=request.expected_output or "",
            is_public=True
        )
        try:
            results = await self._execute(coding, request, source, [custom_case])
        except Exception as e:
            return self._execution_failed(coding, 1, e)
        passed = results[0].passed
        return GradeResult(
            is_correct=passed and request.expected_output is not None,
            score=0,
            passed_test_cases=1 if passed else 0,
            total_test_cases=1,
            output=serialize_results(results),
            test_results=results
        )

    async def _execute(
        self,
        question: CodingQuestion,
        request: AttemptRequest,
        source: str,
        test_cases: List[TestCase]
    ) -> List[TestResult]:
        return await self.executor.execute(
            request.language,
            source,
            test_cases,
            question.time_limit,
            question.memory_limit
        )

    def _execution_failed(self, question: CodingQuestion, total: int, error: Exception) -> GradeResult:
        logger.error("Code execution failed for question %s: %s", question.id, error)
        return GradeResult(
            is_correct=False,
            score=0,
            passed_test_cases=0,
            total_test_cases=total,
            output=f"Error: {error}"
        )

    # ===== HELPER FUNCTIONS =====

    def _all_or_nothing(self, question: Question, is_correct: bool, output: str) -> GradeResult:
        return GradeResult(
            is_correct=is_correct,
            score=question.points if is_correct else 0,
            passed_test_cases=1 if is_correct else 0,
            total_test_cases=1,
            output=output
        )

    def _as_option(self, value: Any) -> int:
        if isinstance(value, bool):
            raise ValidationError(f"Invalid option: {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid option: {value!r}")

    def _require_coding(self, question: Question) -> CodingQuestion:
        if not question.is_coding:
            raise ValidationError("Only coding or fill-in-the-blank coding questions can be run")
        return question

    def _prepare_source(self, question: CodingQuestion, request: AttemptRequest) -> str:
        """Validate the language and build the program text to execute."""
        language = request.language
        if not language or language not in question.languages:
            raise UnsupportedLanguage(language)
        lookup(language, self.config.language_images)

        if not isinstance(request.answer, str):
            raise ValidationError("Answer must be source code text")

        if isinstance(question, FillBlankCodingQuestion):
            if not question.code_snippet:
                raise MissingTemplate("Question is missing code snippet")
            return question.code_snippet.replace(self.config.fill_marker, request.answer, 1)
        return request.answer

    # ===== UTILITY METHODS =====

    def format_test_results(self, result: GradeResult, show_details: bool = False) -> str:
        """
        Format test results for display to the student.

        Args:
            result: GradeResult or AttemptOutcome of a submit, run or custom run
            show_details: If True, show error messages and output comparison for failed tests

        Returns:
            Formatted string for terminal display
        """
        lines = []
        if result.test_results:
            lines.append(f"Running {len(result.test_results)} test case(s)...")

        for num, test in enumerate(result.test_results, start=1):
            visibility = "" if test.is_public else " (hidden)"
            if test.passed:
                lines.append(f"  Test {num}{visibility}: PASSED")
            elif test.status == "timeout":
                lines.append(f"  Test {num}{visibility}: FAILED (time limit exceeded)")
            elif test.status == "compilation_error":
                lines.append(f"  Test {num}{visibility}: FAILED (compilation error)")
            elif test.status == "runtime_error":
                lines.append(f"  Test {num}{visibility}: FAILED (runtime error)")
            elif test.status == "execution_error":
                lines.append(f"  Test {num}{visibility}: FAILED (execution error)")
            else:
                lines.append(f"  Test {num}{visibility}: FAILED (wrong answer)")

            if not test.passed and show_details and test.is_public:
                if test.error:
                    lines.append(f"    Error: {test.error.strip()[:200]}")
                lines.append(f"    Input: {test.input[:100]!r}")
                lines.append(f"    Your output: {test.output[:100]!r}")
                lines.append(f"    Expected: {test.expected[:100]!r}")

        if not result.test_results and result.output and result.output.startswith("Error:"):
            lines.append(result.output)

        lines.append("")
        lines.append(f"Result: {result.passed_test_cases}/{result.total_test_cases} passed, "
                     f"{'correct' if result.is_correct else 'incorrect'}, score {result.score}")
        return "\n".join(lines)
