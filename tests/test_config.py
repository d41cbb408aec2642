from __future__ import annotations

import logging
from pathlib import Path

import pytest

from certprep.config import (
    DB_PATH_ENV,
    EXAM_PATH_ENV,
    USER_ENV,
    TimingConfig,
    configure_logging,
    default_db_path,
    default_exam_path,
    default_user_id,
)


def test_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv(DB_PATH_ENV, str(tmp_path / "a.sqlite3"))
    monkeypatch.setenv(EXAM_PATH_ENV, str(tmp_path / "exam.json"))
    monkeypatch.setenv(USER_ENV, "  carol ")

    assert default_db_path() == tmp_path / "a.sqlite3"
    assert default_exam_path() == tmp_path / "exam.json"
    assert default_user_id() == "carol"


def test_defaults_without_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (DB_PATH_ENV, EXAM_PATH_ENV, USER_ENV):
        monkeypatch.delenv(name, raising=False)

    assert default_db_path().name == ".certprep_attempts.sqlite3"
    assert default_exam_path() is None
    assert default_user_id() == "local"


def test_timing_config_validation() -> None:
    assert TimingConfig().tick_interval_ms == 1000
    with pytest.raises(ValueError):
        TimingConfig(tick_interval_ms=0)
    with pytest.raises(ValueError):
        TimingConfig(low_time_threshold_s=60, critical_time_threshold_s=120)


def test_configure_logging_accepts_level_names() -> None:
    configure_logging("debug")
    configure_logging("not-a-level")
    configure_logging(logging.INFO)
