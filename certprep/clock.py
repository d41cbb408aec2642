from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    Session and timer logic read time through this interface so tests can
    drive it with a fake clock instead of real delays.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


class Ticker:
    """Cooperative once-per-interval tick source.

    The owner calls poll() from its loop (a pygame frame, a test step). Ticks
    missed between polls are coalesced into a single tick and the schedule is
    realigned, so a late poll never produces a burst.
    """

    def __init__(self, *, clock: Clock, on_tick: Callable[[], None]) -> None:
        self._clock = clock
        self._on_tick = on_tick
        self._interval_s = 1.0
        self._next_due_s: float | None = None

    @property
    def active(self) -> bool:
        return self._next_due_s is not None

    @property
    def interval_s(self) -> float:
        return self._interval_s

    def start(self, interval_ms: int = 1000, *, immediate: bool = False) -> None:
        """Begin ticking. A second call while active is a no-op.

        With ``immediate`` the first tick is due on the next poll instead of
        one interval from now.
        """

        if interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")
        if self._next_due_s is not None:
            return
        self._interval_s = interval_ms / 1000.0
        now = self._clock.now()
        self._next_due_s = now if immediate else now + self._interval_s

    def stop(self) -> None:
        self._next_due_s = None

    def poll(self) -> bool:
        """Emit at most one tick if one is due. Returns True if a tick fired."""

        if self._next_due_s is None:
            return False
        now = self._clock.now()
        if now < self._next_due_s:
            return False

        missed = int((now - self._next_due_s) // self._interval_s)
        self._next_due_s += (missed + 1) * self._interval_s
        self._on_tick()
        return True
