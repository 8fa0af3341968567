"""Cooperative tick scheduler.

Single-threaded replacement for browser timers: one-shot and repeating
callbacks ordered by due time, driven by ``run_due()`` from a host loop
or by ``advance()`` with a manual clock in tests and headless tools.
"""
from __future__ import annotations

import heapq
import itertools
import time
from dataclasses import dataclass, field
from typing import Callable

import structlog

logger = structlog.get_logger(__name__)

Callback = Callable[[], None]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self.now_ms = start_ms

    def __call__(self) -> float:
        return self.now_ms

    def set(self, now_ms: float) -> None:
        self.now_ms = now_ms


@dataclass(order=True)
class _Timer:
    due: float
    seq: int
    callback: Callback = field(compare=False)
    interval: float | None = field(default=None, compare=False)
    cancelled: bool = field(default=False, compare=False)


class TimerHandle:
    """Cancellation handle returned by the scheduler."""

    def __init__(self, timer: _Timer) -> None:
        self._timer = timer

    def cancel(self) -> None:
        self._timer.cancelled = True

    @property
    def active(self) -> bool:
        return not self._timer.cancelled

    @property
    def due(self) -> float:
        return self._timer.due


class TickScheduler:
    """Orders callbacks by due time on a single logical thread."""

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self.clock = clock or monotonic_ms
        self._queue: list[_Timer] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self.clock()

    def call_later(self, delay_ms: float, callback: Callback) -> TimerHandle:
        timer = _Timer(due=self.now() + max(0.0, delay_ms), seq=next(self._seq), callback=callback)
        heapq.heappush(self._queue, timer)
        return TimerHandle(timer)

    def call_every(self, interval_ms: float, callback: Callback) -> TimerHandle:
        if interval_ms <= 0:
            raise ValueError("interval must be positive")
        timer = _Timer(
            due=self.now() + interval_ms,
            seq=next(self._seq),
            callback=callback,
            interval=interval_ms,
        )
        heapq.heappush(self._queue, timer)
        return TimerHandle(timer)

    @property
    def pending(self) -> int:
        return sum(1 for t in self._queue if not t.cancelled)

    def next_due(self) -> float | None:
        live = [t.due for t in self._queue if not t.cancelled]
        return min(live) if live else None

    def run_due(self) -> int:
        """Run every callback whose due time has passed. Returns the number run."""
        ran = 0
        now = self.now()
        while self._queue and self._queue[0].due <= now:
            timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            if timer.interval is not None:
                timer.due += timer.interval
                if timer.due <= now:
                    # Missed ticks are dropped rather than replayed
                    timer.due = now + timer.interval
                heapq.heappush(self._queue, timer)
            else:
                timer.cancelled = True
            self._invoke(timer)
            ran += 1
        return ran

    def advance(self, delta_ms: float) -> int:
        """Move a ManualClock forward, firing timers at their own due times."""
        if not isinstance(self.clock, ManualClock):
            raise TypeError("advance() requires a ManualClock")
        target = self.clock.now_ms + delta_ms
        ran = 0
        while True:
            due = self.next_due()
            if due is None or due > target:
                break
            self.clock.set(max(self.clock.now_ms, due))
            ran += self.run_due()
        self.clock.set(target)
        return ran

    def cancel_all(self) -> None:
        for timer in self._queue:
            timer.cancelled = True
        self._queue.clear()

    def _invoke(self, timer: _Timer) -> None:
        try:
            timer.callback()
        except Exception:
            logger.exception("scheduler.callback_failed", callback=getattr(timer.callback, "__qualname__", repr(timer.callback)))


class Debouncer:
    """Collapses bursts of triggers into one call after a quiet period."""

    def __init__(self, scheduler: TickScheduler, delay_ms: float, callback: Callback) -> None:
        self.scheduler = scheduler
        self.delay_ms = delay_ms
        self.callback = callback
        self._handle: TimerHandle | None = None

    def trigger(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = self.scheduler.call_later(self.delay_ms, self._fire)

    @property
    def pending(self) -> bool:
        return self._handle is not None and self._handle.active

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def flush(self) -> bool:
        """Run a pending call immediately."""
        if not self.pending:
            return False
        self.cancel()
        self.callback()
        return True

    def _fire(self) -> None:
        self._handle = None
        self.callback()
