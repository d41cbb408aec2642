from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from .errors import ConflictError, InvalidStateError, StorageError
from .models import (
    Answer,
    AttemptStatus,
    Difficulty,
    Exam,
    ExamAttempt,
    ExamMode,
    KnowledgeArea,
    Question,
    UserAnswer,
)
from .scoring import DetailedResult

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class AttemptStore(Protocol):
    """Persistence collaborator consumed by the session engine.

    Every method raises StorageError when the backing store is unavailable.
    """

    def save_exam(self, exam: Exam) -> None: ...

    def create_attempt(
        self,
        exam_id: str,
        user_id: str,
        mode: ExamMode,
        *,
        total_questions: int,
        time_limit_minutes: float | None,
    ) -> ExamAttempt: ...

    def abandon_attempt(self, attempt_id: int) -> None: ...

    def record_answer(
        self,
        attempt_id: int,
        question_id: str,
        answer_ids: Sequence[str],
        time_spent_seconds: float,
        *,
        is_correct: bool,
    ) -> UserAnswer: ...

    def complete_attempt(self, attempt_id: int, result: DetailedResult) -> ExamAttempt: ...

    def load_attempt(self, attempt_id: int) -> tuple[ExamAttempt, list[Question], list[UserAnswer]]: ...

    def find_in_progress(self, user_id: str, exam_id: str) -> list[ExamAttempt]: ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime | None) -> str | None:
    return None if dt is None else dt.astimezone(timezone.utc).isoformat()


def _parse_iso(raw: str | None) -> datetime | None:
    return None if raw is None else datetime.fromisoformat(raw)


def open_db(path: Path | str) -> sqlite3.Connection:
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    if str(path) != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS exam (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                time_limit_minutes REAL NOT NULL,
                passing_threshold_percentage REAL NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS knowledge_area (
                id TEXT PRIMARY KEY,
                exam_id TEXT NOT NULL REFERENCES exam(id) ON DELETE CASCADE,
                name TEXT NOT NULL,
                description TEXT NOT NULL,
                weight_percentage REAL NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS question (
                id TEXT PRIMARY KEY,
                exam_id TEXT NOT NULL REFERENCES exam(id) ON DELETE CASCADE,
                knowledge_area_id TEXT NOT NULL,
                text TEXT NOT NULL,
                explanation TEXT NOT NULL,
                difficulty TEXT NOT NULL,
                number INTEGER NOT NULL,
                required_selections INTEGER NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS answer (
                id TEXT PRIMARY KEY,
                question_id TEXT NOT NULL REFERENCES question(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                text TEXT NOT NULL,
                explanation TEXT NOT NULL,
                is_correct INTEGER NOT NULL,
                letter TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS exam_attempt (
                id INTEGER PRIMARY KEY,
                user_id TEXT NOT NULL,
                exam_id TEXT NOT NULL,
                mode TEXT NOT NULL,
                status TEXT NOT NULL,
                total_questions INTEGER NOT NULL,
                time_limit_minutes REAL,
                started_at_utc TEXT NOT NULL,
                completed_at_utc TEXT,
                correct_answers INTEGER NOT NULL DEFAULT 0,
                score_percentage REAL,
                passed INTEGER,
                time_spent_minutes REAL
            );
            """
        )
        conn.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_exam_attempt_one_in_progress
            ON exam_attempt(user_id, exam_id) WHERE status = 'in_progress';
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS user_answer (
                id INTEGER PRIMARY KEY,
                attempt_id INTEGER NOT NULL REFERENCES exam_attempt(id) ON DELETE CASCADE,
                question_id TEXT NOT NULL,
                answer_ids TEXT NOT NULL,
                answered_at_utc TEXT NOT NULL,
                is_correct INTEGER NOT NULL,
                time_spent_s REAL NOT NULL
            );
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_user_answer_attempt_question ON user_answer(attempt_id, question_id, id);"
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS metric (
                attempt_id INTEGER NOT NULL REFERENCES exam_attempt(id) ON DELETE CASCADE,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (attempt_id, key)
            );
            """
        )
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


class SqliteAttemptStore:
    """AttemptStore backed by a local SQLite file (or ``:memory:``)."""

    def __init__(self, path: Path | str, *, now: Callable[[], datetime] = _utc_now) -> None:
        self._now = now
        try:
            self._conn = open_db(path)
        except sqlite3.Error as e:
            raise StorageError(f"cannot open attempt store at {path}: {e}") from e

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def _tx(self, what: str) -> Iterator[sqlite3.Connection]:
        try:
            with self._conn:
                yield self._conn
        except sqlite3.IntegrityError as e:
            if "idx_exam_attempt_one_in_progress" in str(e) or "exam_attempt.user_id" in str(e):
                raise ConflictError(f"{what}: an in-progress attempt already exists") from e
            logger.error("%s failed: %s", what, e)
            raise StorageError(f"{what} failed: {e}") from e
        except sqlite3.Error as e:
            logger.error("%s failed: %s", what, e)
            raise StorageError(f"{what} failed: {e}") from e

    def save_exam(self, exam: Exam) -> None:
        """Insert or replace an exam definition with its questions and answers."""

        with self._tx("save_exam") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO exam(id, title, time_limit_minutes, passing_threshold_percentage) VALUES (?, ?, ?, ?)",
                (exam.id, exam.title, float(exam.time_limit_minutes), float(exam.passing_threshold_percentage)),
            )
            for ka in exam.knowledge_areas:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO knowledge_area(id, exam_id, name, description, weight_percentage)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (ka.id, exam.id, ka.name, ka.description, float(ka.weight_percentage)),
                )
            for q in exam.questions:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO question(
                        id, exam_id, knowledge_area_id, text, explanation,
                        difficulty, number, required_selections
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        q.id,
                        exam.id,
                        q.knowledge_area_id,
                        q.text,
                        q.explanation,
                        q.difficulty.value,
                        int(q.number),
                        int(q.required_selections),
                    ),
                )
                for seq, a in enumerate(q.answers):
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO answer(id, question_id, seq, text, explanation, is_correct, letter)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (a.id, q.id, seq, a.text, a.explanation, 1 if a.is_correct else 0, a.letter),
                    )

    def create_attempt(
        self,
        exam_id: str,
        user_id: str,
        mode: ExamMode,
        *,
        total_questions: int,
        time_limit_minutes: float | None,
    ) -> ExamAttempt:
        started_at = self._now()
        limit = None if mode is ExamMode.PRACTICE else time_limit_minutes
        with self._tx("create_attempt") as conn:
            cur = conn.execute(
                """
                INSERT INTO exam_attempt(
                    user_id, exam_id, mode, status, total_questions,
                    time_limit_minutes, started_at_utc
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    exam_id,
                    mode.value,
                    AttemptStatus.IN_PROGRESS.value,
                    int(total_questions),
                    limit,
                    _iso(started_at),
                ),
            )
            attempt_id = int(cur.lastrowid)
        return ExamAttempt(
            id=attempt_id,
            user_id=user_id,
            exam_id=exam_id,
            mode=mode,
            status=AttemptStatus.IN_PROGRESS,
            started_at=started_at,
            total_questions=int(total_questions),
            time_limit_minutes=limit,
        )

    def abandon_attempt(self, attempt_id: int) -> None:
        with self._tx("abandon_attempt") as conn:
            conn.execute(
                "UPDATE exam_attempt SET status = ?, completed_at_utc = ? WHERE id = ? AND status = ?",
                (
                    AttemptStatus.ABANDONED.value,
                    _iso(self._now()),
                    int(attempt_id),
                    AttemptStatus.IN_PROGRESS.value,
                ),
            )

    def record_answer(
        self,
        attempt_id: int,
        question_id: str,
        answer_ids: Sequence[str],
        time_spent_seconds: float,
        *,
        is_correct: bool,
    ) -> UserAnswer:
        answered_at = self._now()
        ids = tuple(str(a) for a in answer_ids)
        with self._tx("record_answer") as conn:
            row = conn.execute("SELECT status FROM exam_attempt WHERE id = ?", (int(attempt_id),)).fetchone()
            if row is None or row["status"] != AttemptStatus.IN_PROGRESS.value:
                raise InvalidStateError(f"attempt {attempt_id} is not in progress")
            cur = conn.execute(
                """
                INSERT INTO user_answer(attempt_id, question_id, answer_ids, answered_at_utc, is_correct, time_spent_s)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    int(attempt_id),
                    question_id,
                    json.dumps(list(ids)),
                    _iso(answered_at),
                    1 if is_correct else 0,
                    float(time_spent_seconds),
                ),
            )
            seq = int(cur.lastrowid)
        return UserAnswer(
            attempt_id=int(attempt_id),
            question_id=question_id,
            answer_ids=ids,
            answered_at=answered_at,
            is_correct=is_correct,
            time_spent_seconds=float(time_spent_seconds),
            seq=seq,
        )

    def complete_attempt(self, attempt_id: int, result: DetailedResult) -> ExamAttempt:
        completed_at = self._now()
        with self._tx("complete_attempt") as conn:
            cur = conn.execute(
                """
                UPDATE exam_attempt
                SET status = ?, completed_at_utc = ?, correct_answers = ?,
                    score_percentage = ?, passed = ?, time_spent_minutes = ?
                WHERE id = ? AND status = ?
                """,
                (
                    AttemptStatus.COMPLETED.value,
                    _iso(completed_at),
                    int(result.correct_answers),
                    float(result.score_percentage),
                    1 if result.passed else 0,
                    float(result.time_spent_minutes),
                    int(attempt_id),
                    AttemptStatus.IN_PROGRESS.value,
                ),
            )
            if cur.rowcount == 0:
                raise InvalidStateError(f"attempt {attempt_id} is not in progress")

            for k, v in _result_metrics(result).items():
                conn.execute(
                    "INSERT OR REPLACE INTO metric(attempt_id, key, value) VALUES (?, ?, ?)",
                    (int(attempt_id), k, v),
                )

            row = conn.execute("SELECT * FROM exam_attempt WHERE id = ?", (int(attempt_id),)).fetchone()
        return _attempt_from_row(row)

    def get_attempt(self, attempt_id: int) -> ExamAttempt:
        try:
            row = self._conn.execute("SELECT * FROM exam_attempt WHERE id = ?", (int(attempt_id),)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"get_attempt failed: {e}") from e
        if row is None:
            raise KeyError(f"attempt {attempt_id} not found")
        return _attempt_from_row(row)

    def load_attempt(self, attempt_id: int) -> tuple[ExamAttempt, list[Question], list[UserAnswer]]:
        attempt = self.get_attempt(attempt_id)
        try:
            questions = self._load_questions(attempt.exam_id)
            rows = self._conn.execute(
                "SELECT * FROM user_answer WHERE attempt_id = ? ORDER BY id",
                (int(attempt_id),),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"load_attempt failed: {e}") from e
        return attempt, questions, [_user_answer_from_row(r) for r in rows]

    def find_in_progress(self, user_id: str, exam_id: str) -> list[ExamAttempt]:
        try:
            rows = self._conn.execute(
                "SELECT * FROM exam_attempt WHERE user_id = ? AND exam_id = ? AND status = ? ORDER BY id",
                (user_id, exam_id, AttemptStatus.IN_PROGRESS.value),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"find_in_progress failed: {e}") from e
        return [_attempt_from_row(r) for r in rows]

    def load_metrics(self, attempt_id: int) -> dict[str, str]:
        try:
            rows = self._conn.execute(
                "SELECT key, value FROM metric WHERE attempt_id = ? ORDER BY key",
                (int(attempt_id),),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"load_metrics failed: {e}") from e
        return {str(r["key"]): str(r["value"]) for r in rows}

    def load_exam(self, exam_id: str) -> Exam:
        try:
            row = self._conn.execute("SELECT * FROM exam WHERE id = ?", (exam_id,)).fetchone()
            if row is None:
                raise KeyError(f"exam {exam_id} not found")
            ka_rows = self._conn.execute(
                "SELECT * FROM knowledge_area WHERE exam_id = ? ORDER BY weight_percentage DESC, id",
                (exam_id,),
            ).fetchall()
            questions = self._load_questions(exam_id)
        except sqlite3.Error as e:
            raise StorageError(f"load_exam failed: {e}") from e
        return Exam(
            id=str(row["id"]),
            title=str(row["title"]),
            time_limit_minutes=float(row["time_limit_minutes"]),
            passing_threshold_percentage=float(row["passing_threshold_percentage"]),
            questions=tuple(questions),
            knowledge_areas=tuple(
                KnowledgeArea(
                    id=str(r["id"]),
                    name=str(r["name"]),
                    weight_percentage=float(r["weight_percentage"]),
                    description=str(r["description"]),
                )
                for r in ka_rows
            ),
        )

    def _load_questions(self, exam_id: str) -> list[Question]:
        q_rows = self._conn.execute(
            "SELECT * FROM question WHERE exam_id = ? ORDER BY number, id",
            (exam_id,),
        ).fetchall()
        questions: list[Question] = []
        for qr in q_rows:
            a_rows = self._conn.execute(
                "SELECT * FROM answer WHERE question_id = ? ORDER BY seq",
                (qr["id"],),
            ).fetchall()
            answers = tuple(
                Answer(
                    id=str(ar["id"]),
                    question_id=str(qr["id"]),
                    text=str(ar["text"]),
                    is_correct=bool(ar["is_correct"]),
                    letter=str(ar["letter"]),
                    explanation=str(ar["explanation"]),
                )
                for ar in a_rows
            )
            questions.append(
                Question(
                    id=str(qr["id"]),
                    exam_id=str(qr["exam_id"]),
                    knowledge_area_id=str(qr["knowledge_area_id"]),
                    text=str(qr["text"]),
                    difficulty=Difficulty(qr["difficulty"]),
                    number=int(qr["number"]),
                    answers=answers,
                    required_selections=int(qr["required_selections"]),
                    explanation=str(qr["explanation"]),
                )
            )
        return questions


def _attempt_from_row(row: sqlite3.Row) -> ExamAttempt:
    passed = row["passed"]
    return ExamAttempt(
        id=int(row["id"]),
        user_id=str(row["user_id"]),
        exam_id=str(row["exam_id"]),
        mode=ExamMode(row["mode"]),
        status=AttemptStatus(row["status"]),
        started_at=_parse_iso(row["started_at_utc"]),
        total_questions=int(row["total_questions"]),
        time_limit_minutes=row["time_limit_minutes"],
        completed_at=_parse_iso(row["completed_at_utc"]),
        correct_answers=int(row["correct_answers"]),
        score_percentage=row["score_percentage"],
        passed=None if passed is None else bool(passed),
        time_spent_minutes=row["time_spent_minutes"],
    )


def _user_answer_from_row(row: sqlite3.Row) -> UserAnswer:
    raw_ids = json.loads(row["answer_ids"])
    return UserAnswer(
        attempt_id=int(row["attempt_id"]),
        question_id=str(row["question_id"]),
        answer_ids=tuple(str(a) for a in raw_ids),
        answered_at=_parse_iso(row["answered_at_utc"]),
        is_correct=bool(row["is_correct"]),
        time_spent_seconds=float(row["time_spent_s"]),
        seq=int(row["id"]),
    )


def _result_metrics(result: DetailedResult) -> dict[str, str]:
    metrics = {
        "score_percentage": f"{result.score_percentage:.6f}",
        "correct_answers": str(result.correct_answers),
        "total_questions": str(result.total_questions),
        "passed": "1" if result.passed else "0",
        "overall_performance": result.overall_performance.value,
        "time_efficiency": result.time_efficiency.value,
        "time_spent_minutes": f"{result.time_spent_minutes:.3f}",
        "auto_submitted": "1" if result.auto_submitted else "0",
        "unanswered": str(result.unanswered),
    }
    for level, d in result.difficulty_breakdown.items():
        metrics[f"difficulty.{level.value}.correct"] = str(d.correct)
        metrics[f"difficulty.{level.value}.total"] = str(d.total)
    for ka in result.knowledge_area_scores:
        metrics[f"knowledge_area.{ka.id}.correct"] = str(ka.correct_answers)
        metrics[f"knowledge_area.{ka.id}.total"] = str(ka.total_questions)
        metrics[f"knowledge_area.{ka.id}.performance"] = ka.performance.value
    return metrics
