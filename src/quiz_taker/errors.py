"""Error taxonomy for quiz attempts."""
from enum import Enum


class ErrorKind(str, Enum):
    ALREADY_SUBMITTED = "ALREADY_SUBMITTED"
    QUIZ_EXPIRED = "QUIZ_EXPIRED"
    VALIDATION = "VALIDATION"
    NETWORK = "NETWORK"
    EMPTY_QUIZ = "EMPTY_QUIZ"


RECOVERABLE_KINDS = frozenset({ErrorKind.VALIDATION, ErrorKind.NETWORK})


class AttemptError(Exception):
    kind = None

    def __init__(self, message: str = "", kind: ErrorKind | None = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def recoverable(self) -> bool:
        return self.kind in RECOVERABLE_KINDS


class GradingError(AttemptError):
    """Failure reported by (or while reaching) the grading service."""

    def __init__(self, kind: ErrorKind, message: str = "", status_code: int | None = None):
        super().__init__(message or kind.value, kind)
        self.status_code = status_code


class EmptyQuizError(AttemptError):
    kind = ErrorKind.EMPTY_QUIZ


class RetakeNotAllowedError(AttemptError):
    def __init__(self, history):
        super().__init__(
            f"No attempts remaining ({len(history.submissions)} of {history.max_attempts} used)"
        )
        self.history = history

    @property
    def can_retake(self) -> bool:
        return False


class InvalidTransitionError(AttemptError):
    pass


class LedgerFrozenError(AttemptError):
    pass
