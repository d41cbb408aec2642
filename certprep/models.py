from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class AttemptStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (AttemptStatus.COMPLETED, AttemptStatus.ABANDONED)


class ExamMode(str, Enum):
    EXAM = "exam"
    PRACTICE = "practice"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


@dataclass(frozen=True, slots=True)
class Answer:
    id: str
    question_id: str
    text: str
    is_correct: bool
    letter: str
    explanation: str = ""


@dataclass(frozen=True, slots=True)
class Question:
    id: str
    exam_id: str
    knowledge_area_id: str
    text: str
    difficulty: Difficulty
    number: int
    answers: tuple[Answer, ...]
    required_selections: int = 1
    explanation: str = ""

    @property
    def correct_answer_ids(self) -> frozenset[str]:
        return frozenset(a.id for a in self.answers if a.is_correct)

    @property
    def answer_ids(self) -> frozenset[str]:
        return frozenset(a.id for a in self.answers)

    @property
    def is_multi_select(self) -> bool:
        return self.required_selections > 1


@dataclass(frozen=True, slots=True)
class KnowledgeArea:
    id: str
    name: str
    weight_percentage: float
    description: str = ""


@dataclass(frozen=True, slots=True)
class Exam:
    """A practice exam definition as handed to the session engine."""

    id: str
    title: str
    time_limit_minutes: float
    passing_threshold_percentage: float
    questions: tuple[Question, ...]
    knowledge_areas: tuple[KnowledgeArea, ...] = ()

    def __post_init__(self) -> None:
        if self.time_limit_minutes <= 0:
            raise ValueError("time_limit_minutes must be > 0")
        if not (0.0 <= self.passing_threshold_percentage <= 100.0):
            raise ValueError("passing_threshold_percentage must be in [0, 100]")
        if not self.questions:
            raise ValueError("an exam needs at least one question")

    def knowledge_area_map(self) -> dict[str, KnowledgeArea]:
        return {ka.id: ka for ka in self.knowledge_areas}


@dataclass(frozen=True, slots=True)
class ExamAttempt:
    id: int
    user_id: str
    exam_id: str
    mode: ExamMode
    status: AttemptStatus
    started_at: datetime
    total_questions: int
    time_limit_minutes: float | None = None  # None in practice mode
    completed_at: datetime | None = None
    correct_answers: int = 0
    score_percentage: float | None = None
    passed: bool | None = None
    time_spent_minutes: float | None = None


@dataclass(frozen=True, slots=True)
class UserAnswer:
    attempt_id: int
    question_id: str
    answer_ids: tuple[str, ...]
    answered_at: datetime
    is_correct: bool
    time_spent_seconds: float = 0.0
    seq: int = 0  # store-assigned; higher supersedes lower for the same question


@dataclass(frozen=True, slots=True)
class SessionContext:
    """Caller identity, passed explicitly into the session engine."""

    user_id: str


def latest_answers(user_answers: list[UserAnswer] | tuple[UserAnswer, ...]) -> dict[str, UserAnswer]:
    """Collapse an append-only answer log to the latest entry per question."""

    latest: dict[str, UserAnswer] = {}
    for ua in user_answers:
        prev = latest.get(ua.question_id)
        if prev is None or ua.seq >= prev.seq:
            latest[ua.question_id] = ua
    return latest
