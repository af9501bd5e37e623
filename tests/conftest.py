import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from quiz_taker.models import Question, QuestionType, Quiz, Submission
from quiz_taker.session import AttemptSession
from quiz_taker.storage import MemoryStorage


@pytest.fixture
def tmp_db(tmp_path):
    """Provide a temporary SQLite database path for tests."""
    db_path = str(tmp_path / "test_attempts.db")
    return db_path


class FakeClock:
    """Virtual wall clock; tests move it forward explicitly."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.t = start

    def now(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class FakeGradingClient:
    """In-memory stand-in for the grading service.

    ``errors`` are raised by successive submit calls before any succeed.
    Setting ``gate`` to an asyncio.Event holds submissions until it is set.
    """

    def __init__(self, submissions=None, errors=None, total_points=5):
        self.submissions = list(submissions or [])
        self.errors = list(errors or [])
        self.total_points = total_points
        self.submit_calls = []
        self.history_calls = 0
        self.gate = None

    async def submit(self, quiz_id, payload):
        self.submit_calls.append(payload)
        await asyncio.sleep(0)
        if self.gate is not None:
            await self.gate.wait()
        if self.errors:
            raise self.errors.pop(0)
        data = {
            "id": len(self.submissions) + 1,
            "attemptNumber": len(self.submissions) + 1,
            "score": len(payload["answers"]),
            "totalPoints": self.total_points,
            "timeSpent": payload["timeSpent"],
            "submittedAt": (
                datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=len(self.submissions))
            ).isoformat(),
            "answers": [
                {"questionId": a["questionId"], "userAnswer": a["userAnswer"], "isCorrect": True}
                for a in payload["answers"]
            ],
        }
        self.submissions.append(data)
        return Submission.from_dict(data)

    async def get_history(self, quiz_id):
        self.history_calls += 1
        await asyncio.sleep(0)
        return {"submissions": list(self.submissions)}


def build_quiz(question_count=5, time_limit=900, max_attempts=1, **kwargs) -> Quiz:
    kinds = [
        QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE,
        QuestionType.FILL_BLANK, QuestionType.ESSAY,
    ]
    questions = []
    for i in range(question_count):
        kind = kinds[i % len(kinds)]
        questions.append(Question(
            id=100 + i,
            type=kind,
            text=f"Question {i + 1}",
            options=["A", "B", "C", "D"] if kind == QuestionType.MULTIPLE_CHOICE else [],
            order=i + 1,
        ))
    return Quiz(id=7, time_limit_seconds=time_limit, max_attempts=max_attempts,
                questions=questions, **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client():
    return FakeGradingClient()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def make_quiz():
    return build_quiz


@pytest.fixture
def make_session(client, storage, clock):
    """Factory for sessions driven by the fake clock (no background timer task)."""

    def factory(quiz=None, **kwargs):
        kwargs.setdefault("client", client)
        kwargs.setdefault("storage", storage)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("drive_timer", False)
        return AttemptSession(quiz or build_quiz(), "u1", **kwargs)

    return factory
