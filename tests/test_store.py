from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from certprep.bank import sample_exam
from certprep.errors import ConflictError, InvalidStateError, StorageError
from certprep.models import AttemptStatus, ExamMode
from certprep.scoring import score_attempt
from certprep.store import SqliteAttemptStore


class StepClock:
    """Wall clock that advances one second per read."""

    def __init__(self) -> None:
        self.t = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.t += timedelta(seconds=1)
        return self.t


@pytest.fixture
def store() -> Iterator[SqliteAttemptStore]:
    s = SqliteAttemptStore(":memory:", now=StepClock())
    s.save_exam(sample_exam())
    yield s
    s.close()


def test_exam_round_trip(store: SqliteAttemptStore) -> None:
    exam = sample_exam()
    loaded = store.load_exam(exam.id)

    assert loaded.title == exam.title
    assert [q.id for q in loaded.questions] == [q.id for q in exam.questions]
    assert loaded.questions[4].required_selections == 2
    assert loaded.questions[4].correct_answer_ids == exam.questions[4].correct_answer_ids
    assert loaded.knowledge_areas[0].id == "ka-automation"
    with pytest.raises(KeyError):
        store.load_exam("missing")


def test_one_in_progress_attempt_per_user_and_exam(store: SqliteAttemptStore) -> None:
    exam = sample_exam()
    first = store.create_attempt(exam.id, "alice", ExamMode.EXAM, total_questions=8, time_limit_minutes=20.0)
    with pytest.raises(ConflictError):
        store.create_attempt(exam.id, "alice", ExamMode.EXAM, total_questions=8, time_limit_minutes=20.0)

    # Other users are unaffected.
    store.create_attempt(exam.id, "bob", ExamMode.EXAM, total_questions=8, time_limit_minutes=20.0)

    store.abandon_attempt(first.id)
    assert store.get_attempt(first.id).status is AttemptStatus.ABANDONED
    second = store.create_attempt(exam.id, "alice", ExamMode.PRACTICE, total_questions=8, time_limit_minutes=20.0)
    assert second.time_limit_minutes is None
    assert [a.id for a in store.find_in_progress("alice", exam.id)] == [second.id]


def test_answers_are_append_only_and_latest_wins(store: SqliteAttemptStore) -> None:
    exam = sample_exam()
    attempt = store.create_attempt(exam.id, "alice", ExamMode.EXAM, total_questions=8, time_limit_minutes=20.0)
    a1 = store.record_answer(attempt.id, "q1", ["q1-B"], 4.0, is_correct=False)
    a2 = store.record_answer(attempt.id, "q1", ["q1-A"], 7.5, is_correct=True)
    store.record_answer(attempt.id, "q5", ["q5-A", "q5-B"], 3.0, is_correct=True)
    assert a2.seq > a1.seq

    loaded, questions, answers = store.load_attempt(attempt.id)
    assert loaded.id == attempt.id
    assert len(questions) == 8
    assert [(a.question_id, a.answer_ids) for a in answers] == [
        ("q1", ("q1-B",)),
        ("q1", ("q1-A",)),
        ("q5", ("q5-A", "q5-B")),
    ]
    assert answers[1].time_spent_seconds == 7.5


def test_complete_attempt_writes_score_and_metrics(store: SqliteAttemptStore) -> None:
    exam = sample_exam()
    attempt = store.create_attempt(exam.id, "alice", ExamMode.EXAM, total_questions=8, time_limit_minutes=20.0)
    answers = [
        store.record_answer(attempt.id, "q1", ["q1-A"], 1.0, is_correct=True),
        store.record_answer(attempt.id, "q2", ["q2-A"], 1.0, is_correct=False),
    ]
    result = score_attempt(
        exam.questions,
        answers,
        elapsed_minutes=5.0,
        passing_threshold_percentage=exam.passing_threshold_percentage,
        time_limit_minutes=20.0,
        knowledge_areas=exam.knowledge_area_map(),
        attempt_id=attempt.id,
    )

    done = store.complete_attempt(attempt.id, result)
    assert done.status is AttemptStatus.COMPLETED
    assert done.correct_answers == 1
    assert done.score_percentage == pytest.approx(12.5)
    assert done.passed is False
    assert done.completed_at is not None and done.completed_at > done.started_at

    metrics = store.load_metrics(attempt.id)
    assert metrics["unanswered"] == "6"
    assert metrics["time_efficiency"] == "excellent"
    assert metrics["difficulty.easy.total"] == "2"
    assert metrics["knowledge_area.ka-users.correct"] == "1"

    with pytest.raises(InvalidStateError):
        store.complete_attempt(attempt.id, result)
    with pytest.raises(InvalidStateError):
        store.record_answer(attempt.id, "q3", ["q3-C"], 1.0, is_correct=True)


def test_reopening_a_file_keeps_attempts(tmp_path: Path) -> None:
    db = tmp_path / "attempts.sqlite3"
    exam = sample_exam()
    s1 = SqliteAttemptStore(db)
    s1.save_exam(exam)
    attempt = s1.create_attempt(exam.id, "alice", ExamMode.EXAM, total_questions=8, time_limit_minutes=20.0)
    s1.close()

    s2 = SqliteAttemptStore(db)
    try:
        assert s2.get_attempt(attempt.id).status is AttemptStatus.IN_PROGRESS
    finally:
        s2.close()


def test_unopenable_path_raises_storage_error(tmp_path: Path) -> None:
    with pytest.raises(StorageError):
        SqliteAttemptStore(tmp_path / "missing-dir" / "attempts.sqlite3")
