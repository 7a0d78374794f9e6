"""
Classroom Judge - Sandboxed Execution & Grading Pipeline

This package contains the core components for grading student answers:
- languages: Language registry (container image, file name, commands)
- sandbox: Isolated, resource-bounded execution of submitted programs
- grader: Per-question-type grading and scoring
- recorder: Immutable submission records and class counters
- leaderboard: Per-class, per-student aggregates
- service: Request-level orchestration of the pipeline and class reports
- access, events, store, bank: Access gate, live updates, persistence and question banks
"""

__version__ = "2.0.0"
