"""Scoring and aggregation for completed exam attempts.

score_attempt() is pure: it reads the question set and the answer log and
returns a DetailedResult. Storing the result is the caller's job.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from .models import Difficulty, KnowledgeArea, Question, UserAnswer, latest_answers

logger = logging.getLogger(__name__)


class PerformanceTier(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    NEEDS_IMPROVEMENT = "needs_improvement"


class TimeEfficiency(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    NEEDS_IMPROVEMENT = "needs_improvement"


@dataclass(frozen=True, slots=True)
class QuestionOutcome:
    question_id: str
    question_number: int
    knowledge_area_id: str
    difficulty: Difficulty
    selected_answer_ids: tuple[str, ...]
    correct_answer_ids: tuple[str, ...]
    answered: bool
    is_correct: bool
    time_spent_seconds: float


@dataclass(frozen=True, slots=True)
class KnowledgeAreaScore:
    id: str
    name: str
    weight_percentage: float
    correct_answers: int
    total_questions: int
    score_percentage: float
    performance: PerformanceTier


@dataclass(frozen=True, slots=True)
class DifficultyScore:
    correct: int
    total: int
    percentage: float


@dataclass(frozen=True, slots=True)
class DetailedResult:
    attempt_id: int | None
    score_percentage: float
    correct_answers: int
    total_questions: int
    passed: bool
    passing_threshold_percentage: float
    time_spent_minutes: float
    auto_submitted: bool
    question_results: tuple[QuestionOutcome, ...]
    knowledge_area_scores: tuple[KnowledgeAreaScore, ...]
    overall_performance: PerformanceTier
    time_efficiency: TimeEfficiency
    difficulty_breakdown: dict[Difficulty, DifficultyScore]

    @property
    def unanswered(self) -> int:
        return sum(1 for q in self.question_results if not q.answered)


def performance_tier(percentage: float) -> PerformanceTier:
    if percentage >= 90.0:
        return PerformanceTier.EXCELLENT
    if percentage >= 75.0:
        return PerformanceTier.GOOD
    if percentage >= 60.0:
        return PerformanceTier.FAIR
    return PerformanceTier.NEEDS_IMPROVEMENT


def time_efficiency(
    *,
    elapsed_minutes: float,
    time_limit_minutes: float | None,
    auto_submitted: bool = False,
) -> TimeEfficiency:
    """Classify elapsed time against the limit.

    Untimed (practice) attempts always get the best tier.
    """

    if time_limit_minutes is None or time_limit_minutes <= 0:
        return TimeEfficiency.EXCELLENT
    if auto_submitted:
        return TimeEfficiency.NEEDS_IMPROVEMENT
    ratio = max(0.0, elapsed_minutes) / time_limit_minutes
    if ratio >= 1.0:
        return TimeEfficiency.NEEDS_IMPROVEMENT
    if ratio <= 0.5:
        return TimeEfficiency.EXCELLENT
    if ratio <= 0.75:
        return TimeEfficiency.GOOD
    return TimeEfficiency.FAIR


def is_selection_correct(question: Question, selected: Iterable[str]) -> bool:
    """All-or-nothing: the selection must equal the correct set exactly."""

    chosen = frozenset(selected)
    if not chosen:
        return False
    return chosen == question.correct_answer_ids


def _percentage(correct: int, total: int) -> float:
    # Multiply first so whole-number percentages come out exact.
    return 0.0 if total == 0 else correct * 100.0 / total


def score_attempt(
    questions: Sequence[Question],
    user_answers: Sequence[UserAnswer],
    *,
    elapsed_minutes: float,
    passing_threshold_percentage: float,
    time_limit_minutes: float | None = None,
    knowledge_areas: Mapping[str, KnowledgeArea] | None = None,
    auto_submitted: bool = False,
    attempt_id: int | None = None,
) -> DetailedResult:
    areas = knowledge_areas or {}
    latest = latest_answers(user_answers)

    outcomes: list[QuestionOutcome] = []
    for q in questions:
        correct_ids = q.correct_answer_ids
        if not correct_ids:
            logger.warning("question %s has no correct answer; it can never be scored correct", q.id)
        elif len(correct_ids) != q.required_selections:
            logger.warning(
                "question %s: required_selections=%d but %d correct answers",
                q.id,
                q.required_selections,
                len(correct_ids),
            )

        ua = latest.get(q.id)
        selected = () if ua is None else tuple(ua.answer_ids)
        outcomes.append(
            QuestionOutcome(
                question_id=q.id,
                question_number=q.number,
                knowledge_area_id=q.knowledge_area_id,
                difficulty=q.difficulty,
                selected_answer_ids=selected,
                correct_answer_ids=tuple(a.id for a in q.answers if a.is_correct),
                answered=bool(selected),
                is_correct=is_selection_correct(q, selected),
                time_spent_seconds=0.0 if ua is None else float(ua.time_spent_seconds),
            )
        )

    total = len(outcomes)
    correct = sum(1 for o in outcomes if o.is_correct)
    score = _percentage(correct, total)

    return DetailedResult(
        attempt_id=attempt_id,
        score_percentage=score,
        correct_answers=correct,
        total_questions=total,
        passed=score >= passing_threshold_percentage,
        passing_threshold_percentage=float(passing_threshold_percentage),
        time_spent_minutes=max(0.0, float(elapsed_minutes)),
        auto_submitted=auto_submitted,
        question_results=tuple(outcomes),
        knowledge_area_scores=_knowledge_area_scores(outcomes, areas),
        overall_performance=performance_tier(score),
        time_efficiency=time_efficiency(
            elapsed_minutes=elapsed_minutes,
            time_limit_minutes=time_limit_minutes,
            auto_submitted=auto_submitted,
        ),
        difficulty_breakdown=_difficulty_breakdown(outcomes),
    )


def _knowledge_area_scores(
    outcomes: Sequence[QuestionOutcome],
    areas: Mapping[str, KnowledgeArea],
) -> tuple[KnowledgeAreaScore, ...]:
    # Insertion order is first appearance; the sort below is stable on ties.
    groups: dict[str, list[QuestionOutcome]] = {}
    for o in outcomes:
        groups.setdefault(o.knowledge_area_id, []).append(o)

    scores: list[KnowledgeAreaScore] = []
    for area_id, members in groups.items():
        area = areas.get(area_id)
        correct = sum(1 for o in members if o.is_correct)
        pct = _percentage(correct, len(members))
        scores.append(
            KnowledgeAreaScore(
                id=area_id,
                name=area_id if area is None else area.name,
                weight_percentage=0.0 if area is None else float(area.weight_percentage),
                correct_answers=correct,
                total_questions=len(members),
                score_percentage=pct,
                performance=performance_tier(pct),
            )
        )

    scores.sort(key=lambda s: s.weight_percentage, reverse=True)
    return tuple(scores)


def _difficulty_breakdown(outcomes: Sequence[QuestionOutcome]) -> dict[Difficulty, DifficultyScore]:
    breakdown: dict[Difficulty, DifficultyScore] = {}
    for level in Difficulty:
        members = [o for o in outcomes if o.difficulty is level]
        correct = sum(1 for o in members if o.is_correct)
        breakdown[level] = DifficultyScore(
            correct=correct,
            total=len(members),
            percentage=_percentage(correct, len(members)),
        )
    return breakdown
