"""Countdown timer anchored to a fixed deadline."""
import asyncio
import logging
import math
import time
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> float: ...


class SystemClock:
    def now(self) -> float:
        return time.time()


class CountdownTimer:
    """Counts down to ``planned_end``; remaining time is derived, never decremented.

    ``on_tick`` receives the remaining whole seconds on every tick.
    ``on_expire`` fires once, on the first tick that observes zero.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        interval: float = 1.0,
        on_tick: Optional[Callable[[int], None]] = None,
        on_expire: Optional[Callable[[], None]] = None,
    ):
        self.clock = clock or SystemClock()
        self.interval = interval
        self.on_tick = on_tick
        self.on_expire = on_expire
        self.planned_end: float | None = None
        self._last_remaining: int | None = None
        self._running = False
        self._expired = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def expired(self) -> bool:
        return self._expired

    def start(self, duration_seconds: float) -> None:
        duration_seconds = max(0, duration_seconds)
        self.planned_end = self.clock.now() + duration_seconds
        self._last_remaining = math.ceil(duration_seconds)
        self._running = True
        self._expired = False
        logger.debug("Timer started: %ss until %s", duration_seconds, self.planned_end)

    def remaining(self) -> int:
        if self.planned_end is None:
            return 0
        value = max(0, math.ceil(self.planned_end - self.clock.now()))
        # A clock stepping backwards must not hand time back.
        if self._last_remaining is not None:
            value = min(value, self._last_remaining)
        self._last_remaining = value
        return value

    def tick(self) -> int | None:
        """Report remaining time; returns None when the timer is not running."""
        if not self._running:
            return None
        left = self.remaining()
        if self.on_tick:
            self.on_tick(left)
        if left == 0 and self._running:
            self._running = False
            self._expired = True
            logger.info("Timer expired")
            if self.on_expire:
                self.on_expire()
        return left

    def stop(self) -> None:
        self._running = False

    async def run(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            self.tick()
