from __future__ import annotations

import pytest

from certprep.countdown import (
    UNLIMITED_DISPLAY,
    TimeWarning,
    classify_remaining,
    format_remaining,
    remaining_seconds,
)


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [
        (0, "0:00"),
        (59, "0:59"),
        (300, "5:00"),
        (299, "4:59"),
        (3599, "59:59"),
        (3600, "1:00:00"),
        (5400, "1:30:00"),
        (3661, "1:01:01"),
    ],
)
def test_format_remaining(seconds: int, expected: str) -> None:
    assert format_remaining(seconds) == expected


def test_format_remaining_unlimited_and_negative() -> None:
    assert format_remaining(None) == UNLIMITED_DISPLAY
    assert format_remaining(-4) == "0:00"


def test_remaining_seconds_floors_and_clamps() -> None:
    assert remaining_seconds(deadline_s=300.0, now_s=0.0) == 300
    assert remaining_seconds(deadline_s=300.0, now_s=0.4) == 299
    assert remaining_seconds(deadline_s=300.0, now_s=299.9) == 0
    assert remaining_seconds(deadline_s=300.0, now_s=400.0) == 0


def test_remaining_seconds_never_increases_past_previous() -> None:
    # A clock that jitters backwards must not move the countdown up.
    assert remaining_seconds(deadline_s=300.0, now_s=10.0, previous=250) == 250
    assert remaining_seconds(deadline_s=300.0, now_s=60.0, previous=250) == 240


def test_warning_tiers() -> None:
    assert classify_remaining(None) is TimeWarning.NONE
    assert classify_remaining(15 * 60) is TimeWarning.NONE
    assert classify_remaining(15 * 60 - 1) is TimeWarning.LOW
    assert classify_remaining(5 * 60) is TimeWarning.LOW
    assert classify_remaining(5 * 60 - 1) is TimeWarning.CRITICAL
    assert classify_remaining(0) is TimeWarning.CRITICAL


def test_warning_tiers_custom_thresholds() -> None:
    kw = {"low_threshold_s": 60, "critical_threshold_s": 10}
    assert classify_remaining(60, **kw) is TimeWarning.NONE
    assert classify_remaining(59, **kw) is TimeWarning.LOW
    assert classify_remaining(9, **kw) is TimeWarning.CRITICAL
