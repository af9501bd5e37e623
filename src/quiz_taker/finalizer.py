"""Turns the answer ledger into exactly one graded submission."""
import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from quiz_taker.errors import ErrorKind, GradingError
from quiz_taker.history import AttemptHistoryResolver
from quiz_taker.ledger import AnswerLedger
from quiz_taker.models import (
    AttemptHistory, FinalizeTrigger, Quiz, QuestionType, Submission,
)
from quiz_taker.storage import SnapshotStore
from quiz_taker.timer import Clock, SystemClock

logger = logging.getLogger(__name__)


class FinalizeOutcome(str, Enum):
    COMPLETED = "COMPLETED"  # graded, or the server already had this attempt
    REVERTED = "REVERTED"    # recoverable failure, attempt stays open
    ABORTED = "ABORTED"      # quiz closed server-side, attempt discarded


@dataclass
class FinalizeResult:
    trigger: FinalizeTrigger
    outcome: FinalizeOutcome
    submission: Optional[Submission] = None
    history: Optional[AttemptHistory] = None
    error: Optional[GradingError] = None
    answered: int = 0

    @property
    def completed(self) -> bool:
        return self.outcome == FinalizeOutcome.COMPLETED


class SubmissionFinalizer:
    """Single-flight submission of one attempt.

    ``finalize`` stores the in-flight task before returning, so every caller
    in the same event-loop turn shares one request. The slot is released
    once the attempt settles, allowing a retry after a recoverable error.
    """

    def __init__(
        self,
        quiz: Quiz,
        client,
        ledger: AnswerLedger,
        snapshots: SnapshotStore,
        resolver: AttemptHistoryResolver,
        clock: Clock | None = None,
        started_at: float | None = None,
        option_orders: Optional[Sequence[Optional[Sequence[int]]]] = None,
        time_taken: Optional[Callable[[], Sequence[float]]] = None,
        network_retries: int = 1,
        on_settled: Optional[Callable[[FinalizeResult], None]] = None,
    ):
        self.quiz = quiz
        self.client = client
        self.ledger = ledger
        self.snapshots = snapshots
        self.resolver = resolver
        self.clock = clock or SystemClock()
        self.started_at = started_at if started_at is not None else self.clock.now()
        self.option_orders = list(option_orders or [])
        self.time_taken = time_taken
        self.network_retries = network_retries
        self.on_settled = on_settled
        self.requests = 0
        self._inflight: Optional[asyncio.Future] = None

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def build_payload(self) -> dict:
        times = list(self.time_taken()) if self.time_taken else []
        answers = []
        for index in self.ledger.answered_indexes():
            question = self.ledger.questions[index]
            value = self.ledger.get_answer(index)
            if question.type == QuestionType.MULTIPLE_CHOICE:
                order = self.option_orders[index] if index < len(self.option_orders) else None
                if order:
                    value = order[value]
            answers.append({
                "questionId": question.id,
                "userAnswer": str(value).strip(),
                "timeTaken": int(times[index]) if index < len(times) else 0,
            })
        return {
            "answers": answers,
            "timeSpent": max(0, math.floor(self.clock.now() - self.started_at)),
        }

    def finalize(self, trigger: FinalizeTrigger) -> asyncio.Future:
        if self.in_flight:
            logger.info("Finalize (%s) joined the submission already in flight", trigger.value)
            return self._inflight
        self._inflight = asyncio.ensure_future(self._run(trigger))
        return self._inflight

    async def _run(self, trigger: FinalizeTrigger) -> FinalizeResult:
        answered = 0
        try:
            payload = self.build_payload()
            answered = len(payload["answers"])
            logger.info(
                "Submitting quiz %s (%s) with %d of %d answers",
                self.quiz.id, trigger.value, answered, len(self.ledger),
            )
            submission = await self._submit(payload)
        except GradingError as e:
            result = await self._handle_error(trigger, e)
        except Exception:
            logger.exception("Unexpected failure submitting quiz %s", self.quiz.id)
            self._settle(FinalizeResult(trigger, FinalizeOutcome.REVERTED, answered=answered))
            raise
        else:
            self.snapshots.clear()
            history = await self._refresh_history()
            result = FinalizeResult(
                trigger, FinalizeOutcome.COMPLETED,
                submission=submission, history=history,
            )
        result.answered = answered
        self._settle(result)
        return result

    async def _submit(self, payload: dict) -> Submission:
        attempts = 1 + max(0, self.network_retries)
        for attempt in range(1, attempts + 1):
            self.requests += 1
            try:
                return await self.client.submit(self.quiz.id, payload)
            except GradingError as e:
                if e.kind != ErrorKind.NETWORK or attempt == attempts:
                    raise
                logger.warning(
                    "Network error submitting quiz %s (try %d of %d), retrying",
                    self.quiz.id, attempt, attempts,
                )

    async def _handle_error(self, trigger: FinalizeTrigger, error: GradingError) -> FinalizeResult:
        if error.kind == ErrorKind.ALREADY_SUBMITTED:
            logger.info("Quiz %s was already submitted; treating as complete", self.quiz.id)
            self.snapshots.clear()
            history = await self._refresh_history()
            return FinalizeResult(trigger, FinalizeOutcome.COMPLETED, history=history, error=error)
        if error.kind == ErrorKind.QUIZ_EXPIRED:
            logger.warning("Quiz %s deadline has passed; discarding attempt", self.quiz.id)
            self.snapshots.clear()
            return FinalizeResult(trigger, FinalizeOutcome.ABORTED, error=error)
        logger.warning("Submission of quiz %s failed (%s): %s", self.quiz.id, error.kind.value, error)
        return FinalizeResult(trigger, FinalizeOutcome.REVERTED, error=error)

    async def _refresh_history(self) -> Optional[AttemptHistory]:
        try:
            return await self.resolver.resolve(self.quiz)
        except GradingError as e:
            # The submission itself stands; accounting is refreshed on the next start.
            logger.warning("Could not refresh history for quiz %s: %s", self.quiz.id, e)
            return self.resolver.latest

    def _settle(self, result: FinalizeResult) -> None:
        self._inflight = None
        if self.on_settled:
            self.on_settled(result)
