"""In-memory answer ledger for a single attempt."""
from typing import Callable, Optional, Sequence

from quiz_taker.errors import LedgerFrozenError
from quiz_taker.models import AnswerValue, Question, QuestionType

TRUE_FALSE_VALUES = ("true", "false")
TEXT_TYPES = (QuestionType.FILL_BLANK, QuestionType.ESSAY)


def normalize_answer(question: Question, value) -> Optional[AnswerValue]:
    """Validate ``value`` for the question type.

    Returns the value to store, None to clear the slot, or raises ValueError.
    """
    if value is None:
        return None
    if question.type == QuestionType.MULTIPLE_CHOICE:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Question {question.id} expects an option index, got {value!r}")
        if not 0 <= value < len(question.options):
            raise ValueError(f"Option {value} out of range for question {question.id}")
        return value
    if question.type == QuestionType.TRUE_FALSE:
        if isinstance(value, bool):
            return "true" if value else "false"
        text = str(value).strip().lower()
        if text == "":
            return None
        if text not in TRUE_FALSE_VALUES:
            raise ValueError(f"Question {question.id} expects true or false, got {value!r}")
        return text
    if not isinstance(value, str):
        raise ValueError(f"Question {question.id} expects text, got {value!r}")
    # Text is stored as typed; completeness is judged on the trimmed value.
    return value if value.strip() else None


def answer_is_complete(question: Question, value) -> bool:
    if value is None:
        return False
    if question.type == QuestionType.MULTIPLE_CHOICE:
        return (
            isinstance(value, int)
            and not isinstance(value, bool)
            and 0 <= value < len(question.options)
        )
    if question.type == QuestionType.TRUE_FALSE:
        return value in TRUE_FALSE_VALUES
    return isinstance(value, str) and value.strip() != ""


class AnswerLedger:
    """Answers by question index; calls ``on_change`` after every mutation."""

    def __init__(
        self,
        questions: Sequence[Question],
        on_change: Optional[Callable[[], None]] = None,
        answers: Optional[Sequence[Optional[AnswerValue]]] = None,
    ):
        self.questions = list(questions)
        self.on_change = on_change
        self._answers: list[Optional[AnswerValue]] = [None] * len(self.questions)
        self._frozen = False
        if answers:
            for index, value in enumerate(answers[: len(self.questions)]):
                # Restored values that no longer fit the question are dropped.
                if answer_is_complete(self.questions[index], value):
                    self._answers[index] = value

    def __len__(self) -> int:
        return len(self.questions)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def unfreeze(self) -> None:
        self._frozen = False

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.questions):
            raise IndexError(f"No question at index {index}")

    def set_answer(self, index: int, value) -> None:
        if self._frozen:
            raise LedgerFrozenError("Answers are locked while the attempt is being submitted")
        self._check_index(index)
        self._answers[index] = normalize_answer(self.questions[index], value)
        if self.on_change:
            self.on_change()

    def clear_answer(self, index: int) -> None:
        self.set_answer(index, None)

    def get_answer(self, index: int) -> Optional[AnswerValue]:
        self._check_index(index)
        return self._answers[index]

    def is_answered(self, index: int) -> bool:
        self._check_index(index)
        return answer_is_complete(self.questions[index], self._answers[index])

    def answered_count(self) -> int:
        return len(self.answered_indexes())

    def answered_indexes(self) -> list[int]:
        return [i for i in range(len(self.questions)) if self.is_answered(i)]

    def snapshot_answers(self) -> list[Optional[AnswerValue]]:
        return list(self._answers)
