"""Data classes for the quiz attempt domain model."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

DEFAULT_TIME_LIMIT_MINUTES = 15
SCORE_SCALE = 10
PASS_RATIO = 0.7

AnswerValue = Union[int, str]


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    TRUE_FALSE = "TRUE_FALSE"
    FILL_BLANK = "FILL_BLANK"
    ESSAY = "ESSAY"


class AttemptStatus(str, Enum):
    IDLE = "IDLE"
    ACTIVE = "ACTIVE"
    FINALIZING = "FINALIZING"
    COMPLETED = "COMPLETED"


class FinalizeTrigger(str, Enum):
    MANUAL = "MANUAL"
    TIMEOUT = "TIMEOUT"
    UNLOAD = "UNLOAD"


def parse_timestamp(value) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Question:
    id: int
    type: QuestionType
    text: str = ""
    options: list[str] = field(default_factory=list)
    correct_answer: Optional[str] = None  # opaque at attempt time
    points: int = 1
    order: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "Question":
        return cls(
            id=data["id"],
            type=QuestionType(data["type"]),
            text=data.get("question") or data.get("text", ""),
            options=list(data.get("options") or []),
            correct_answer=data.get("correctAnswer"),
            points=data.get("points", 1),
            order=data.get("order", 0),
        )


@dataclass
class Quiz:
    id: int
    time_limit_seconds: int
    max_attempts: int = 1
    shuffle_questions: bool = False
    shuffle_answers: bool = False
    questions: list[Question] = field(default_factory=list)
    title: str = ""

    def __post_init__(self):
        orders = [q.order for q in self.questions]
        if len(set(orders)) != len(orders):
            raise ValueError(f"Quiz {self.id} has duplicate question order values")
        self.questions = sorted(self.questions, key=lambda q: q.order)

    @classmethod
    def from_dict(cls, data: dict) -> "Quiz":
        if data.get("timeLimitSeconds") is not None:
            time_limit = int(data["timeLimitSeconds"])
        else:
            # Older payloads carry the limit in minutes.
            time_limit = int(data.get("timeLimit") or DEFAULT_TIME_LIMIT_MINUTES) * 60
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            time_limit_seconds=time_limit,
            max_attempts=data.get("maxAttempts") or 1,
            shuffle_questions=bool(data.get("shuffleQuestions", False)),
            shuffle_answers=bool(data.get("shuffleAnswers", False)),
            questions=[Question.from_dict(q) for q in data.get("questions") or []],
        )

    def question_by_id(self, question_id: int) -> Question:
        for question in self.questions:
            if question.id == question_id:
                return question
        raise KeyError(question_id)


@dataclass
class AnswerResult:
    question_id: int
    user_answer: str = ""
    is_correct: bool = False
    points_earned: float = 0


@dataclass
class Submission:
    id: int
    attempt_number: int
    score: float
    total_points: float
    time_spent_seconds: int
    submitted_at: datetime
    answers: list[AnswerResult] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Submission":
        return cls(
            id=data["id"],
            attempt_number=data.get("attemptNumber", 1),
            score=data.get("score") or 0,
            total_points=data.get("totalPoints") or 0,
            time_spent_seconds=data.get("timeSpent") or 0,
            submitted_at=parse_timestamp(data["submittedAt"]),
            answers=[
                AnswerResult(
                    question_id=a.get("questionId"),
                    user_answer=a.get("userAnswer", ""),
                    is_correct=bool(a.get("isCorrect")),
                    points_earned=a.get("pointsEarned", 0),
                )
                for a in data.get("answers") or []
            ],
        )

    def normalized_score(self, scale: int = SCORE_SCALE) -> float:
        """Score on a common 0..scale range; a zero total counts as 1."""
        return (self.score / (self.total_points or 1)) * scale

    @property
    def passed(self) -> bool:
        return self.score / (self.total_points or 1) >= PASS_RATIO

    @property
    def correct_count(self) -> int:
        return sum(1 for a in self.answers if a.is_correct)


@dataclass
class AttemptHistory:
    max_attempts: int
    submissions: list[Submission] = field(default_factory=list)

    def __post_init__(self):
        self.submissions = sorted(self.submissions, key=lambda s: s.submitted_at)

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - len(self.submissions))

    @property
    def can_retake(self) -> bool:
        return self.max_attempts - len(self.submissions) > 0

    @property
    def best_score(self) -> float:
        if not self.submissions:
            return 0.0
        return max(s.normalized_score() for s in self.submissions)

    @property
    def latest(self) -> Optional[Submission]:
        return self.submissions[-1] if self.submissions else None
