from __future__ import annotations

from dataclasses import dataclass

import pytest

from certprep.clock import RealClock, Ticker


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


def _ticker(clock: FakeClock) -> tuple[Ticker, list[float]]:
    fired: list[float] = []
    return Ticker(clock=clock, on_tick=lambda: fired.append(clock.t)), fired


def test_ticks_once_per_interval() -> None:
    clock = FakeClock()
    ticker, fired = _ticker(clock)
    ticker.start(1000)

    assert ticker.poll() is False
    clock.advance(0.999)
    assert ticker.poll() is False
    clock.advance(0.001)
    assert ticker.poll() is True
    assert ticker.poll() is False
    clock.advance(1.0)
    assert ticker.poll() is True
    assert fired == [1.0, 2.0]


def test_missed_ticks_are_coalesced() -> None:
    clock = FakeClock()
    ticker, fired = _ticker(clock)
    ticker.start(1000)

    clock.advance(5.5)
    assert ticker.poll() is True
    assert ticker.poll() is False
    # Schedule stays on the 1 s grid: next due at 6.0.
    clock.advance(0.5)
    assert ticker.poll() is True
    assert len(fired) == 2


def test_no_tick_after_stop_and_start_is_idempotent() -> None:
    clock = FakeClock()
    ticker, fired = _ticker(clock)
    ticker.start(1000)
    clock.advance(0.5)
    ticker.start(1000)  # no-op, keeps the first schedule
    clock.advance(0.5)
    assert ticker.poll() is True

    ticker.stop()
    assert ticker.active is False
    clock.advance(10.0)
    assert ticker.poll() is False
    assert fired == [1.0]


def test_stop_inside_callback_holds() -> None:
    clock = FakeClock()
    ticks = []

    def on_tick() -> None:
        ticks.append(clock.t)
        ticker.stop()

    ticker = Ticker(clock=clock, on_tick=on_tick)
    ticker.start(250)
    clock.advance(1.0)
    assert ticker.poll() is True
    clock.advance(1.0)
    assert ticker.poll() is False
    assert ticks == [1.0]


def test_immediate_start_fires_on_next_poll() -> None:
    clock = FakeClock()
    ticker, fired = _ticker(clock)
    ticker.start(1000, immediate=True)
    assert ticker.poll() is True
    assert ticker.interval_s == 1.0
    assert fired == [0.0]


def test_rejects_non_positive_interval() -> None:
    ticker, _ = _ticker(FakeClock())
    with pytest.raises(ValueError):
        ticker.start(0)


def test_real_clock_is_monotonic() -> None:
    clock = RealClock()
    a = clock.now()
    b = clock.now()
    assert b >= a
