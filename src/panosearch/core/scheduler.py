"""
Timer schedulers.

Every deferred action in the search pipeline (debounced queries, the
initial trigger delay and the retry chain) goes through a scheduler
exposing ``call_later(delay_ms, fn, *args) -> handle`` where the handle has
``cancel()``.  Three implementations:

- :class:`ManualScheduler` — virtual clock advanced explicitly; used by the
  test-suite and by synchronous hosts.
- :class:`BlockingScheduler` — a manual scheduler that really sleeps while
  draining; used by the CLI.
- :class:`AsyncioScheduler` — delegates to ``loop.call_later``.
"""

import asyncio
import heapq
import itertools
import logging
import time
from typing import Any, Callable, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: float, fn: Callable[..., Any], *args: Any) -> TimerHandle: ...


class ManualTimer:
    """Handle returned by :meth:`ManualScheduler.call_later`."""

    __slots__ = ("due", "fn", "args", "cancelled")

    def __init__(self, due: float, fn: Callable[..., Any], args: Tuple[Any, ...]):
        self.due = due
        self.fn = fn
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """
    Deterministic scheduler driven by a virtual millisecond clock.

    Timers due at the same instant fire in the order they were scheduled.
    A callback that raises is logged and does not stop the clock.
    """

    def __init__(self, start_ms: float = 0.0):
        self.now = float(start_ms)
        self._queue: List[Tuple[float, int, ManualTimer]] = []
        self._seq = itertools.count()
        self.delays: List[float] = []

    def call_later(self, delay_ms: float, fn: Callable[..., Any], *args: Any) -> ManualTimer:
        delay = max(0.0, float(delay_ms))
        self.delays.append(delay)
        timer = ManualTimer(self.now + delay, fn, args)
        heapq.heappush(self._queue, (timer.due, next(self._seq), timer))
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for _, _, t in self._queue if not t.cancelled)

    def advance(self, ms: float) -> int:
        """Move the clock forward by *ms*, firing every timer that falls due."""
        target = self.now + max(0.0, float(ms))
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._wait_until(due)
            self.now = due
            self._fire(timer)
            fired += 1
        self.now = target
        return fired

    def run_until_idle(self, limit: int = 10_000) -> int:
        """Fire timers in due order until none remain; returns how many fired."""
        fired = 0
        while self._queue and fired < limit:
            due, _, timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._wait_until(due)
            self.now = max(self.now, due)
            self._fire(timer)
            fired += 1
        return fired

    def _fire(self, timer: ManualTimer) -> None:
        try:
            timer.fn(*timer.args)
        except Exception as e:
            logger.error(f"Scheduled callback {getattr(timer.fn, '__name__', timer.fn)!r} failed: {e}")

    def _wait_until(self, due: float) -> None:
        """Hook for subclasses that track wall-clock time."""


class BlockingScheduler(ManualScheduler):
    """A :class:`ManualScheduler` that sleeps for the real delay while draining."""

    def _wait_until(self, due: float) -> None:
        gap = due - self.now
        if gap > 0:
            time.sleep(gap / 1000.0)


class AsyncioScheduler:
    """Schedules callbacks on an asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay_ms: float, fn: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        return self.loop.call_later(max(0.0, float(delay_ms)) / 1000.0, fn, *args)
