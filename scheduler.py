"""Cancellable repeating timers.

Hold gates never touch the event loop directly; they ask a ``Scheduler``
for a repeating callback and keep the returned ``TimerHandle`` so the timer
can be stopped at any moment.

- ``AsyncioScheduler`` runs timers on the asyncio event loop (production).
- ``VirtualScheduler`` runs them against a virtual millisecond clock that
  only moves when ``advance`` is called (tests and replay).
"""

import asyncio
import itertools
from abc import ABC, abstractmethod
from typing import Callable, List, Optional


class TimerHandle(ABC):
    @abstractmethod
    def cancel(self) -> None:
        """Stop the timer. Safe to call more than once."""

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        pass


class Scheduler(ABC):
    @abstractmethod
    def call_repeating(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle:
        """Invoke ``callback`` every ``interval_ms`` until the handle is cancelled."""


# --- asyncio ---

class _LoopTimer(TimerHandle):
    def __init__(self, loop: asyncio.AbstractEventLoop, interval_ms: int, callback: Callable[[], None]):
        self._loop = loop
        self._interval_s = interval_ms / 1000.0
        self._callback = callback
        self._cancelled = False
        self._handle: Optional[asyncio.TimerHandle] = loop.call_later(self._interval_s, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        # Re-arm before running so the callback can cancel this timer
        self._handle = self._loop.call_later(self._interval_s, self._fire)
        self._callback()

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler(Scheduler):
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_repeating(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return _LoopTimer(loop, interval_ms, callback)


# --- virtual clock ---

class _VirtualTimer(TimerHandle):
    def __init__(self, seq: int, due_ms: int, interval_ms: int, callback: Callable[[], None]):
        self.seq = seq
        self.due_ms = due_ms
        self.interval_ms = interval_ms
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class VirtualScheduler(Scheduler):
    """Deterministic scheduler: time only passes inside ``advance``."""

    def __init__(self):
        self.now_ms = 0
        self._timers: List[_VirtualTimer] = []
        self._seq = itertools.count()

    def call_repeating(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")
        timer = _VirtualTimer(next(self._seq), self.now_ms + interval_ms, interval_ms, callback)
        self._timers.append(timer)
        return timer

    def advance(self, ms: int) -> None:
        """Move the clock forward, firing due timers in (due time, creation) order."""
        target = self.now_ms + ms
        while True:
            due = [t for t in self._timers if not t.cancelled and t.due_ms <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.due_ms, t.seq))
            self.now_ms = timer.due_ms
            timer.due_ms += timer.interval_ms
            timer.callback()
        self.now_ms = target
        self._timers = [t for t in self._timers if not t.cancelled]

    @property
    def active_timers(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled)
