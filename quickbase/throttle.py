# quickbase/throttle.py
import heapq
import logging
import threading
import time
from collections import deque
from typing import Callable, TypeVar

from quickbase.errors import ConnectionLimitError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Throttle:
    """
    Bounded-concurrency gate: at most `max_concurrent` operations per `period_ms` window.

    - A slot is taken when an operation is admitted and given back at the later
      of (operation finished, admitted + period_ms).
    - Callers over the limit wait in FIFO order, or get ConnectionLimitError
      right away when `reject_on_exceed` is set.
    """

    def __init__(
        self,
        max_concurrent: int = 10,
        period_ms: int = 1000,
        reject_on_exceed: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if int(max_concurrent) < 1:
            raise ValueError("max_concurrent must be a positive integer")
        if int(period_ms) < 0:
            raise ValueError("period_ms must not be negative")

        self.max_concurrent = int(max_concurrent)
        self.period = int(period_ms) / 1000.0
        self.reject_on_exceed = bool(reject_on_exceed)
        self._clock = clock

        self._cond = threading.Condition()
        self._running = 0
        self._cooling = []  # release deadlines of finished operations still inside their window
        self._waiters = deque()

    @property
    def in_use(self) -> int:
        with self._cond:
            return self._slots_in_use(self._clock())

    @property
    def queued(self) -> int:
        with self._cond:
            return len(self._waiters)

    def acquire(self, operation: Callable[[], T]) -> T:
        """Run `operation` once a slot is free and return its result."""
        self._admit()
        admitted_at = self._clock()
        try:
            return operation()
        finally:
            self._release(admitted_at)

    def _slots_in_use(self, now: float) -> int:
        while self._cooling and self._cooling[0] <= now:
            heapq.heappop(self._cooling)
        return self._running + len(self._cooling)

    def _admit(self) -> None:
        with self._cond:
            if not self._waiters and self._slots_in_use(self._clock()) < self.max_concurrent:
                self._running += 1
                return

            if self.reject_on_exceed:
                raise ConnectionLimitError(
                    f"Connection limit exceeded ({self.max_concurrent} per {int(self.period * 1000)}ms)"
                )

            ticket = object()
            self._waiters.append(ticket)
            logger.debug("Throttle full, queued (position %d)", len(self._waiters))
            try:
                while True:
                    now = self._clock()
                    if self._waiters[0] is ticket and self._slots_in_use(now) < self.max_concurrent:
                        self._waiters.popleft()
                        self._running += 1
                        self._cond.notify_all()
                        return
                    timeout = max(0.0, self._cooling[0] - now) if self._cooling else None
                    self._cond.wait(timeout)
            except BaseException:
                if ticket in self._waiters:
                    self._waiters.remove(ticket)
                    self._cond.notify_all()
                raise

    def _release(self, admitted_at: float) -> None:
        with self._cond:
            self._running -= 1
            deadline = admitted_at + self.period
            if deadline > self._clock():
                heapq.heappush(self._cooling, deadline)
            self._cond.notify_all()
