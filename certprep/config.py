from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .countdown import CRITICAL_TIME_THRESHOLD_S, LOW_TIME_THRESHOLD_S

DB_PATH_ENV = "CERTPREP_DB_PATH"
EXAM_PATH_ENV = "CERTPREP_EXAM_PATH"
LOG_LEVEL_ENV = "CERTPREP_LOG_LEVEL"
USER_ENV = "CERTPREP_USER"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True, slots=True)
class TimingConfig:
    tick_interval_ms: int = 1000
    low_time_threshold_s: int = LOW_TIME_THRESHOLD_S
    critical_time_threshold_s: int = CRITICAL_TIME_THRESHOLD_S

    def __post_init__(self) -> None:
        if self.tick_interval_ms <= 0:
            raise ValueError("tick_interval_ms must be > 0")
        if not (0 <= self.critical_time_threshold_s <= self.low_time_threshold_s):
            raise ValueError("thresholds must satisfy 0 <= critical <= low")


def default_db_path() -> Path:
    explicit = os.environ.get(DB_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".certprep_attempts.sqlite3"


def default_exam_path() -> Path | None:
    """Optional JSON exam definition; None means use the built-in sample exam."""

    explicit = os.environ.get(EXAM_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return None


def default_user_id() -> str:
    return os.environ.get(USER_ENV, "").strip() or "local"


def configure_logging(level: str | int | None = None) -> None:
    """Root logging setup for the app entry point. Library code only logs."""

    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, "WARNING")
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper())
        if not isinstance(level, int):
            level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT)
