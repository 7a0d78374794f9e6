"""
Exception hierarchy for the grading pipeline.

Errors above the sandbox boundary (validation, access) propagate to the
caller as distinct rejection reasons. Errors below it are turned into
failing test results by the executor and never reach this hierarchy,
except for scratch-directory provisioning.
"""


class JudgeError(Exception):
    """Base class for all grading pipeline errors."""


class ValidationError(JudgeError):
    """Request rejected before any sandbox is provisioned."""


class UnsupportedLanguage(ValidationError):
    """Language is unknown to the registry or not allowed for the question."""

    def __init__(self, language):
        self.language = language
        super().__init__(f"Language {language} is not supported")


class MissingTemplate(ValidationError):
    """Fill-in-the-blank coding question has no code template."""


class InvalidCustomInput(ValidationError):
    """Custom input is not a bracketed, comma-separated list of integers."""


class NotFound(JudgeError):
    """Referenced question, class or leaderboard entry does not exist."""


class AccessDenied(JudgeError):
    """Attempt rejected by the access gate."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ProvisioningError(JudgeError):
    """Scratch directory for an execution could not be created."""
