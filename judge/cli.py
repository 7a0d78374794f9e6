"""
Command-line front end.

Every command loads a question bank, restores the JSON state file written
by earlier invocations, performs one operation and saves the state again.

    python main.py --bank banks/cs101.json submit CS101 alice q3 --language python --answer-file sol.py
    python main.py --bank banks/cs101.json leaderboard CS101
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

from .access import ClassroomGate
from .bank import load_bank
from .config_loader import JudgeConfig, create_sample_config, load_config
from .errors import JudgeError
from .events import EventPublisher, LoggingChannel
from .grader import Grader
from .languages import LANGUAGES
from .logging_config import configure_logging
from .models import AttemptRequest, QuestionType
from .sandbox import DockerSandboxProvider, SandboxExecutor
from .service import GradingService
from .store import MemoryStore

DEFAULT_STATE_FILE = "judge_state.json"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Classroom judge: grade attempts in sandboxes and keep class leaderboards",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--config", help="Path to judge configuration file (default: $JUDGE_CONFIG or config.json)")
    parser.add_argument("--bank", help="Question bank (.json or .enc)")
    parser.add_argument("--key", help="Key or password of an encrypted bank")
    parser.add_argument("--key-file", help="File holding the key of an encrypted bank")
    parser.add_argument("--state", default=DEFAULT_STATE_FILE, help=f"State file (default: {DEFAULT_STATE_FILE})")
    parser.add_argument("--verbose", action="store_true", help="Show failing test details")

    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("submit", "Grade an answer and record it"),
        ("run", "Run code against the public test cases"),
        ("run-custom", "Run code against a custom input"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("class_id")
        cmd.add_argument("student_id")
        cmd.add_argument("question_id")
        cmd.add_argument("--language", help="Language of a coding answer")
        answer = cmd.add_mutually_exclusive_group(required=True)
        answer.add_argument("--answer", help="Answer text; option indexes separated by commas for choice questions")
        answer.add_argument("--answer-file", help="File holding the answer (source code)")
        if name == "run-custom":
            cmd.add_argument("--input", dest="custom_input", required=True, help="Bracketed integer list, e.g. [1, 2, 3]")
            cmd.add_argument("--expected", dest="expected_output", help="Expected output")

    board = sub.add_parser("leaderboard", help="Show or search a class leaderboard")
    board.add_argument("class_id")
    board.add_argument("--student", help="Filter by student id substring")
    board.add_argument("--status", choices=["inactive", "active", "focused"], help="Filter by activity status")
    board.add_argument("--min-correct", type=int, help="Minimum correct attempts")
    board.add_argument("--max-attempts", type=int, help="Maximum correct + wrong attempts")

    stats = sub.add_parser("stats", help="Participant statistics of a class")
    stats.add_argument("class_id")

    report = sub.add_parser("report", help="Per-student report for one question")
    report.add_argument("class_id")
    report.add_argument("question_id")

    focus = sub.add_parser("focus", help="Mark a student as needing focus")
    focus.add_argument("class_id")
    focus.add_argument("student_id")
    focus.add_argument("--clear", action="store_true", help="Clear the flag instead")

    sub.add_parser("languages", help="List supported languages")

    sample = sub.add_parser("sample-config", help="Write a sample configuration file")
    sample.add_argument("output", help="Output path")

    return parser


def _answer(args, question_type: QuestionType) -> Any:
    text = Path(args.answer_file).read_text(encoding='utf-8') if args.answer_file else args.answer
    if question_type == QuestionType.SINGLE_CHOICE:
        return text.strip()
    if question_type == QuestionType.MULTI_CHOICE:
        return [part.strip() for part in text.split(',') if part.strip()]
    return text


def _read_key(args) -> Optional[str]:
    if args.key_file:
        return Path(args.key_file).read_text(encoding='utf-8')
    return args.key


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def create_service(config: JudgeConfig, store: MemoryStore) -> GradingService:
    executor = SandboxExecutor(DockerSandboxProvider(config), config)
    return GradingService(
        store,
        Grader(executor, config),
        gate=ClassroomGate(store),
        publisher=EventPublisher(LoggingChannel()),
        config=config
    )


async def _dispatch(args, config: JudgeConfig, store: MemoryStore) -> int:
    service = create_service(config, store)
    command = args.command

    if command in ("submit", "run", "run-custom"):
        question = await store.get_question(args.question_id)
        request = AttemptRequest(
            question_id=args.question_id,
            class_id=args.class_id,
            student_id=args.student_id,
            answer=_answer(args, question.type),
            language=args.language,
            custom_input=getattr(args, "custom_input", None),
            expected_output=getattr(args, "expected_output", None)
        )
        if command == "submit":
            outcome = await service.grade_and_record(request)
        elif command == "run":
            outcome = await service.run(request)
        else:
            outcome = await service.run_custom(request)
        await service.publisher.drain()

        print(service.grader.format_test_results(outcome, show_details=args.verbose))
        print(f"Submission: {outcome.submission_id}")

    elif command == "leaderboard":
        entries = await service.search_leaderboard(
            args.class_id,
            student=args.student,
            activity_status=args.status,
            min_correct_attempts=args.min_correct,
            max_attempts=args.max_attempts
        )
        print(f"{'Rank':<6}{'Student':<24}{'Score':>7}{'Correct':>9}{'Wrong':>7}{'Runs':>6}  Status")
        for rank, entry in enumerate(entries, start=1):
            print(f"{rank:<6}{entry.student_id:<24}{entry.total_score:>7}{entry.correct_attempts:>9}"
                  f"{entry.wrong_attempts:>7}{entry.total_runs:>6}  {entry.activity_status.value}")

    elif command == "stats":
        _print_json(await service.participant_stats(args.class_id))

    elif command == "report":
        _print_json(await service.question_report(args.class_id, args.question_id))

    elif command == "focus":
        entry = await service.set_needs_focus(args.class_id, args.student_id, not args.clear)
        print(f"[OK] {entry.student_id}: {entry.activity_status.value}")

    return 0


def main(argv=None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)

    if args.command == "languages":
        for name, spec in LANGUAGES.items():
            print(f"{name:<12}{spec.image:<20}{spec.source_file}")
        return 0

    if args.command == "sample-config":
        create_sample_config(Path(args.output))
        print(f"[OK] Sample configuration written to {args.output}")
        return 0

    try:
        config = load_config(Path(args.config) if args.config else None)
    except ValueError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1
    configure_logging(config.log_level)

    if not args.bank:
        print("[ERROR] --bank is required for this command", file=sys.stderr)
        return 1

    store = MemoryStore()
    state_path = Path(args.state)
    try:
        load_bank(Path(args.bank), _read_key(args)).load_into(store)
        if state_path.exists():
            store.load_state(state_path, config.focus_threshold)
        code = asyncio.run(_dispatch(args, config, store))
    except (JudgeError, ValueError, OSError) as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1

    store.save_state(state_path)
    return code
