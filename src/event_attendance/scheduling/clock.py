from __future__ import annotations

import heapq
import itertools
import logging
import threading
from datetime import datetime
from typing import Callable, Optional, Protocol

from ..common.datetime_utils import now_local

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        raise NotImplementedError


class Clock(Protocol):
    """Time source for the scheduler.

    `schedule` returns a handle for push-style clocks, or None when the clock
    cannot fire actions by itself; the owner then polls via `run_pending()`.
    """

    def now(self) -> datetime:
        raise NotImplementedError

    def schedule(self, when: datetime, action: Callable[[], None]) -> Optional[TimerHandle]:
        raise NotImplementedError


class _Timer:
    __slots__ = ("when", "action", "cancelled")

    def __init__(self, when: datetime, action: Callable[[], None]):
        self.when = when
        self.action = action
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class SystemClock(Clock):
    """Wall clock with one daemon worker thread for all scheduled actions.

    Pending actions sit in a heap ordered by due time; the worker sleeps until
    the earliest one is due, so the thread count does not grow with the number
    of armed events. Actions run one at a time on the worker thread.
    """

    def __init__(self):
        self._heap: list[tuple[datetime, int, _Timer]] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._worker: Optional[threading.Thread] = None

    def now(self) -> datetime:
        return now_local()

    def schedule(self, when: datetime, action: Callable[[], None]) -> Optional[TimerHandle]:
        timer = _Timer(when, action)
        with self._cond:
            heapq.heappush(self._heap, (when, next(self._seq), timer))
            if self._worker is None:
                self._worker = threading.Thread(target=self._run, name="event-attendance-clock", daemon=True)
                self._worker.start()
            self._cond.notify()
        logger.debug("Timer armed for %s", when.isoformat())
        return timer

    def pending(self) -> int:
        with self._cond:
            return sum(1 for _, _, t in self._heap if not t.cancelled)

    def _next_due(self) -> _Timer:
        with self._cond:
            while True:
                while self._heap and self._heap[0][2].cancelled:
                    heapq.heappop(self._heap)
                if not self._heap:
                    self._cond.wait()
                    continue
                delay = (self._heap[0][0] - self.now()).total_seconds()
                if delay > 0:
                    self._cond.wait(delay)
                    continue
                return heapq.heappop(self._heap)[2]

    def _run(self) -> None:
        while True:
            timer = self._next_due()
            if timer.cancelled:
                continue
            try:
                timer.action()
            except Exception:
                logger.exception("Scheduled action due at %s failed", timer.when.isoformat())


class PollingClock(Clock):
    """Wall clock without timers, for cron-driven sweeps."""

    def now(self) -> datetime:
        return now_local()

    def schedule(self, when: datetime, action: Callable[[], None]) -> Optional[TimerHandle]:
        return None
