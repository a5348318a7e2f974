"""
Timer scheduling for placement debounce and settled-nudge flushing.

Two implementations of the same small interface:
- ThreadingTimerScheduler: background threading.Timer per call (default)
- ManualScheduler: virtual clock advanced by the host (frame loops, tests)

Interface:
    schedule(delay, callback) -> handle with cancel()
    time() -> float (seconds, monotonic)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable
import heapq
import itertools
import threading
import time as _time


class TimerHandle:
    """Cancelable handle returned by schedule()."""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self.cancelled = False

    def cancel(self) -> None:
        if not self.cancelled:
            self.cancelled = True
            self._cancel()


class ThreadingTimerScheduler:
    """Runs callbacks on daemon threading.Timer threads."""

    def time(self) -> float:
        return _time.monotonic()

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(max(0.0, delay), callback)
        timer.daemon = True
        timer.start()
        return TimerHandle(timer.cancel)


@dataclass(order=True)
class _Pending:
    due: float
    seq: int
    callback: Callable[[], None] = field(compare=False)
    handle: TimerHandle = field(compare=False)


class ManualScheduler:
    """
    Deterministic scheduler driven by advance().

    Example:
        >>> scheduler = ManualScheduler()
        >>> scheduler.schedule(0.5, lambda: print("fired"))
        >>> scheduler.advance(0.5)
        fired
    """

    def __init__(self, start: float = 0.0):
        self.now = float(start)
        self._queue: list[_Pending] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self.now

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        entry = _Pending(self.now + max(0.0, delay), next(self._seq), callback, None)
        entry.handle = TimerHandle(lambda: None)
        heapq.heappush(self._queue, entry)
        return entry.handle

    @property
    def pending(self) -> int:
        """Number of scheduled, not cancelled callbacks."""
        return sum(1 for entry in self._queue if not entry.handle.cancelled)

    def advance(self, seconds: float) -> int:
        """
        Move the clock forward and run every callback that became due.

        Returns:
            Number of callbacks run

        Notes:
            - Callbacks run in due-time order; callbacks scheduled while
              advancing run too if they fall inside the window
        """
        target = self.now + max(0.0, seconds)
        ran = 0
        while self._queue and self._queue[0].due <= target:
            entry = heapq.heappop(self._queue)
            if entry.handle.cancelled:
                continue
            self.now = max(self.now, entry.due)
            entry.handle.cancelled = True
            entry.callback()
            ran += 1
        self.now = target
        return ran
