"""Attempt session state machine: IDLE -> ACTIVE -> FINALIZING -> COMPLETED."""
import asyncio
import logging
import random
from typing import Callable, Optional

from quiz_taker.errors import EmptyQuizError, InvalidTransitionError, RetakeNotAllowedError
from quiz_taker.finalizer import FinalizeOutcome, FinalizeResult, SubmissionFinalizer
from quiz_taker.history import AttemptHistoryResolver
from quiz_taker.ledger import AnswerLedger
from quiz_taker.models import (
    AttemptHistory, AttemptStatus, FinalizeTrigger, Question, QuestionType, Quiz,
)
from quiz_taker.storage import AttemptSnapshot, KeyValueStorage, SnapshotStore
from quiz_taker.timer import Clock, CountdownTimer, SystemClock

logger = logging.getLogger(__name__)


class AttemptSession:
    """One student's attempt at one quiz.

    The host calls ``start`` once, routes edits through ``set_answer`` and
    navigation helpers, and must call ``on_session_teardown`` when the view
    goes away. Timer expiry, ``submit`` and teardown all funnel into
    ``finalize``, which yields a single shared submission.
    """

    def __init__(
        self,
        quiz: Quiz,
        user_id,
        client,
        storage: KeyValueStorage,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        tick_interval: float = 1.0,
        unload_timeout: float = 2.0,
        network_retries: int = 1,
        drive_timer: bool = True,
        on_redirect: Optional[Callable[[FinalizeResult], None]] = None,
    ):
        self.quiz = quiz
        self.user_id = user_id
        self.client = client
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random()
        self.unload_timeout = unload_timeout
        self.network_retries = network_retries
        self.drive_timer = drive_timer
        self.on_redirect = on_redirect
        self.snapshots = SnapshotStore(
            storage, user_id, quiz.id, self.clock, min_write_interval=tick_interval,
        )
        self.resolver = AttemptHistoryResolver(client)
        self.timer = CountdownTimer(
            self.clock, tick_interval, on_tick=self._on_tick, on_expire=self._on_expire,
        )
        self.status = AttemptStatus.IDLE
        self.questions: list[Question] = []
        self.option_orders: list[Optional[list[int]]] = []
        self.ledger: Optional[AnswerLedger] = None
        self.finalizer: Optional[SubmissionFinalizer] = None
        self.history: Optional[AttemptHistory] = None
        self.result: Optional[FinalizeResult] = None
        self.last_error = None
        self.redirect_to_list = False
        self.resumed = False
        self.started_at: float | None = None
        self.current_index = 0
        self.time_taken: list[float] = []
        self._viewing_since: float | None = None
        self._timer_task: Optional[asyncio.Task] = None
        self._pending: Optional[asyncio.Future] = None

    # -- lifecycle -------------------------------------------------------

    async def start(self) -> AttemptHistory:
        if self.status != AttemptStatus.IDLE:
            raise InvalidTransitionError(f"Cannot start an attempt that is {self.status.value}")
        if not self.quiz.questions:
            raise EmptyQuizError(f"Quiz {self.quiz.id} has no questions")
        history = await self.resolver.resolve(self.quiz)
        self.history = history
        if not history.can_retake:
            raise RetakeNotAllowedError(history)

        self.result = None
        self.last_error = None
        self._pending = None
        self.redirect_to_list = False
        self.resumed = False

        now = self.clock.now()
        snapshot = self.snapshots.load()
        layout = self._layout_from_snapshot(snapshot) if snapshot else None
        if layout:
            self.questions, self.option_orders = layout
            elapsed = max(0.0, now - snapshot.saved_at) if snapshot.saved_at else 0.0
            duration = max(0.0, snapshot.remaining_seconds - elapsed)
            answers = snapshot.answers
            self.started_at = snapshot.started_at or now
            self.current_index = min(max(snapshot.current_index, 0), len(self.questions) - 1)
            self.time_taken = (list(snapshot.time_taken) + [0.0] * len(self.questions))[: len(self.questions)]
            self.resumed = True
            logger.info("Resuming quiz %s for user %s with %ss left", self.quiz.id, self.user_id, duration)
        else:
            self.questions, self.option_orders = self._fresh_layout()
            duration = self.quiz.time_limit_seconds
            answers = None
            self.started_at = now
            self.current_index = 0
            self.time_taken = [0.0] * len(self.questions)
            logger.info("Starting quiz %s attempt %d for user %s",
                        self.quiz.id, len(history.submissions) + 1, self.user_id)

        self.ledger = AnswerLedger(self.questions, on_change=self._persist, answers=answers)
        self.finalizer = SubmissionFinalizer(
            self.quiz, self.client, self.ledger, self.snapshots, self.resolver,
            clock=self.clock,
            started_at=self.started_at,
            option_orders=self.option_orders,
            time_taken=self._time_taken_now,
            network_retries=self.network_retries,
            on_settled=self._on_settled,
        )
        self.timer.start(duration)
        self.status = AttemptStatus.ACTIVE
        self._viewing_since = now
        self._persist()
        if self.drive_timer:
            self._timer_task = asyncio.ensure_future(self.timer.run())
        if self.timer.remaining() == 0:
            self.timer.tick()
        return history

    def finalize(self, trigger: FinalizeTrigger) -> asyncio.Future:
        """Begin (or join) finalization; the state change happens before any await."""
        if self.status == AttemptStatus.FINALIZING:
            return self.finalizer.finalize(trigger)
        if self.status != AttemptStatus.ACTIVE:
            raise InvalidTransitionError(f"Cannot finalize an attempt that is {self.status.value}")
        self._accrue_time()
        self.status = AttemptStatus.FINALIZING
        self.ledger.freeze()
        self._pending = self.finalizer.finalize(trigger)
        return self._pending

    async def submit(self) -> FinalizeResult:
        return await self.finalize(FinalizeTrigger.MANUAL)

    async def wait_settled(self) -> Optional[FinalizeResult]:
        if self._pending is not None:
            return await self._pending
        return self.result

    async def on_session_teardown(self) -> Optional[FinalizeResult]:
        """Best-effort submit when the hosting view is destroyed.

        Waits at most ``unload_timeout`` seconds; the request itself keeps
        running past the bound.
        """
        if self.status not in (AttemptStatus.ACTIVE, AttemptStatus.FINALIZING):
            return self.result
        future = self.finalize(FinalizeTrigger.UNLOAD)
        try:
            return await asyncio.wait_for(asyncio.shield(future), self.unload_timeout)
        except asyncio.TimeoutError:
            logger.warning("Teardown submit for quiz %s did not finish within %ss",
                           self.quiz.id, self.unload_timeout)
            return None

    # -- answers and navigation -----------------------------------------

    @property
    def remaining_seconds(self) -> int:
        return self.timer.remaining()

    @property
    def current_question(self) -> Question:
        return self.questions[self.current_index]

    def display_options(self, index: int | None = None) -> list[str]:
        index = self.current_index if index is None else index
        question = self.questions[index]
        order = self.option_orders[index] if index < len(self.option_orders) else None
        if order:
            return [question.options[i] for i in order]
        return list(question.options)

    def set_answer(self, value, index: int | None = None) -> None:
        if self.ledger is None or self.status not in (AttemptStatus.ACTIVE, AttemptStatus.FINALIZING):
            raise InvalidTransitionError(f"No answers accepted while {self.status.value}")
        self.ledger.set_answer(self.current_index if index is None else index, value)

    def go_to(self, index: int) -> None:
        if self.status != AttemptStatus.ACTIVE:
            raise InvalidTransitionError(f"Cannot navigate while {self.status.value}")
        if not 0 <= index < len(self.questions):
            raise IndexError(f"No question at index {index}")
        self._accrue_time()
        self.current_index = index
        self._persist()

    def next_question(self) -> bool:
        if self.current_index >= len(self.questions) - 1:
            return False
        self.go_to(self.current_index + 1)
        return True

    def previous_question(self) -> bool:
        if self.current_index == 0:
            return False
        self.go_to(self.current_index - 1)
        return True

    # -- internals -------------------------------------------------------

    def _fresh_layout(self):
        questions = list(self.quiz.questions)
        if self.quiz.shuffle_questions:
            self.rng.shuffle(questions)
        option_orders = []
        for question in questions:
            if self.quiz.shuffle_answers and question.type == QuestionType.MULTIPLE_CHOICE and question.options:
                order = list(range(len(question.options)))
                self.rng.shuffle(order)
                option_orders.append(order)
            else:
                option_orders.append(None)
        return questions, option_orders

    def _layout_from_snapshot(self, snapshot: AttemptSnapshot):
        quiz_ids = [q.id for q in self.quiz.questions]
        order = snapshot.question_order or quiz_ids
        if sorted(order) != sorted(quiz_ids):
            logger.warning("Snapshot for quiz %s no longer matches its questions; starting over", self.quiz.id)
            return None
        questions = [self.quiz.question_by_id(qid) for qid in order]
        option_orders = list(snapshot.option_orders) or [None] * len(questions)
        if len(option_orders) != len(questions):
            logger.warning("Snapshot for quiz %s has a bad option layout; starting over", self.quiz.id)
            return None
        for question, option_order in zip(questions, option_orders):
            if option_order and sorted(option_order) != list(range(len(question.options))):
                logger.warning("Snapshot for quiz %s has a bad option layout; starting over", self.quiz.id)
                return None
        return questions, option_orders

    def _accrue_time(self) -> None:
        now = self.clock.now()
        if self._viewing_since is not None and self.time_taken:
            self.time_taken[self.current_index] += max(0.0, now - self._viewing_since)
        self._viewing_since = now

    def _time_taken_now(self) -> list[float]:
        times = list(self.time_taken)
        if self.status == AttemptStatus.ACTIVE and self._viewing_since is not None and times:
            times[self.current_index] += max(0.0, self.clock.now() - self._viewing_since)
        return times

    def _persist(self, force: bool = True) -> None:
        if self.status != AttemptStatus.ACTIVE:
            return
        self.snapshots.save(
            AttemptSnapshot(
                answers=self.ledger.snapshot_answers(),
                remaining_seconds=self.timer.remaining(),
                started_at=self.started_at,
                current_index=self.current_index,
                question_order=[q.id for q in self.questions],
                option_orders=self.option_orders,
                time_taken=self._time_taken_now(),
            ),
            force=force,
        )

    def _on_tick(self, remaining: int) -> None:
        self._persist(force=False)

    def _on_expire(self) -> None:
        if self.status in (AttemptStatus.ACTIVE, AttemptStatus.FINALIZING):
            logger.info("Time is up on quiz %s", self.quiz.id)
            self.finalize(FinalizeTrigger.TIMEOUT)

    def _on_settled(self, result: FinalizeResult) -> None:
        if result.history is not None:
            self.history = result.history
        if result.outcome == FinalizeOutcome.COMPLETED:
            self.result = result
            self.status = AttemptStatus.COMPLETED
            self._stop_timer()
            logger.info("Quiz %s attempt completed (%s)", self.quiz.id, result.trigger.value)
        elif result.outcome == FinalizeOutcome.ABORTED:
            self.result = result
            self.status = AttemptStatus.IDLE
            self.redirect_to_list = True
            self._stop_timer()
            if self.on_redirect:
                self.on_redirect(result)
        else:
            self.last_error = result.error
            self.status = AttemptStatus.ACTIVE
            self.ledger.unfreeze()
            self._viewing_since = self.clock.now()
            self._persist()

    def _stop_timer(self) -> None:
        self.timer.stop()
        if self._timer_task is not None and not self._timer_task.done():
            self._timer_task.cancel()
        self._timer_task = None
