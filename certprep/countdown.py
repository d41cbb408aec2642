"""Remaining-time arithmetic and display helpers for the exam countdown.

Everything here is a pure function of its arguments; the session calls these
on every tick and every read, so warning tiers hold continuously rather than
firing once at a threshold crossing.
"""

from __future__ import annotations

import math
from enum import Enum

LOW_TIME_THRESHOLD_S = 15 * 60
CRITICAL_TIME_THRESHOLD_S = 5 * 60
UNLIMITED_DISPLAY = "Unlimited"


class TimeWarning(str, Enum):
    NONE = "none"
    LOW = "low"
    CRITICAL = "critical"


def remaining_seconds(*, deadline_s: float, now_s: float, previous: int | None = None) -> int:
    """Whole seconds left before the deadline, floored and clamped at zero.

    When ``previous`` is given the result never exceeds it, so the countdown
    cannot move backwards if the clock source jitters.
    """

    remaining = max(0, math.floor(deadline_s - now_s))
    if previous is not None:
        remaining = min(previous, remaining)
    return int(remaining)


def format_remaining(seconds: int | None) -> str:
    """``M:SS`` under an hour, ``H:MM:SS`` from an hour up; None is unlimited."""

    if seconds is None:
        return UNLIMITED_DISPLAY
    seconds = max(0, int(seconds))
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def classify_remaining(
    seconds: int | None,
    *,
    low_threshold_s: int = LOW_TIME_THRESHOLD_S,
    critical_threshold_s: int = CRITICAL_TIME_THRESHOLD_S,
) -> TimeWarning:
    if seconds is None:
        return TimeWarning.NONE
    if seconds < critical_threshold_s:
        return TimeWarning.CRITICAL
    if seconds < low_threshold_s:
        return TimeWarning.LOW
    return TimeWarning.NONE
