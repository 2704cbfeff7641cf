"""Clock and recurring timer primitives shared by the cache and the scheduler."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Protocol

logger = logging.getLogger(__name__)

TimerAction = Callable[[], None]


class TimerHandle(Protocol):
    """Cancellation token returned for every recurring timer."""

    @property
    def active(self) -> bool: ...

    def cancel(self) -> None: ...


class Clock(Protocol):
    """Source of the current time and of recurring timers."""

    def now(self) -> float: ...

    def call_every(self, interval: float, action: TimerAction) -> TimerHandle: ...


def _run_action(action: TimerAction) -> None:
    try:
        action()
    except Exception:  # pragma: no cover - background safety net
        logger.exception("Recurring timer action failed")


class _TaskTimer:
    """Recurring timer backed by an asyncio task."""

    __slots__ = ("_task", "_cancelled")

    def __init__(self, task: asyncio.Task[None]):
        self._task = task
        self._cancelled = False

    @property
    def active(self) -> bool:
        return not self._cancelled and not self._task.done()

    def cancel(self) -> None:
        self._cancelled = True
        self._task.cancel()


class SystemClock:
    """Wall clock whose timers run on the current asyncio event loop."""

    def now(self) -> float:
        return time.time()

    def call_every(self, interval: float, action: TimerAction) -> TimerHandle:
        """Invoke ``action`` every ``interval`` seconds until cancelled.

        The first call happens one full interval after registration. Must be
        called from within a running event loop.
        """

        if interval <= 0:
            raise ValueError("Timer interval must be positive")

        async def _runner() -> None:
            while True:
                await asyncio.sleep(interval)
                _run_action(action)

        return _TaskTimer(asyncio.get_running_loop().create_task(_runner()))


class _ManualTimer:
    __slots__ = ("interval", "action", "next_fire", "_cancelled")

    def __init__(self, interval: float, action: TimerAction, next_fire: float):
        self.interval = interval
        self.action = action
        self.next_fire = next_fire
        self._cancelled = False

    @property
    def active(self) -> bool:
        return not self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class ManualClock:
    """Deterministic clock that only moves when :meth:`advance` is called.

    Timers fire synchronously from inside ``advance`` in deadline order, ties
    broken by registration order. Used to exercise the cache and the scheduler
    against simulated time.
    """

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._timers: list[_ManualTimer] = []

    def now(self) -> float:
        return self._now

    def call_every(self, interval: float, action: TimerAction) -> TimerHandle:
        if interval <= 0:
            raise ValueError("Timer interval must be positive")
        timer = _ManualTimer(interval, action, self._now + interval)
        self._timers.append(timer)
        return timer

    @property
    def active_timers(self) -> int:
        """Return the number of timers that have not been cancelled."""

        return sum(1 for timer in self._timers if timer.active)

    def advance(self, seconds: float) -> int:
        """Move time forward by ``seconds`` and return how many ticks fired."""

        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        target = self._now + seconds
        fired = 0
        while True:
            due = [
                timer
                for timer in self._timers
                if timer.active and timer.next_fire <= target
            ]
            if not due:
                break
            timer = min(due, key=lambda candidate: candidate.next_fire)
            self._now = timer.next_fire
            timer.next_fire += timer.interval
            _run_action(timer.action)
            fired += 1
        self._now = target
        self._timers = [timer for timer in self._timers if timer.active]
        return fired
