from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .errors import OutOfRangeError


@dataclass(frozen=True, slots=True)
class QuestionStatus:
    answered: bool
    flagged: bool
    current: bool


class AnswerTracker:
    """Per-attempt record of the current question, answered ids and flagged ids.

    The answered set only reflects durably recorded answers: the session calls
    record_answer() after the store has acknowledged the write.
    """

    def __init__(self, question_ids: Sequence[str]) -> None:
        if not question_ids:
            raise ValueError("question_ids must not be empty")
        self._question_ids = tuple(question_ids)
        self._known = frozenset(self._question_ids)
        self._current_index = 0
        self._answered: set[str] = set()
        self._flagged: set[str] = set()

    @property
    def total(self) -> int:
        return len(self._question_ids)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_question_id(self) -> str:
        return self._question_ids[self._current_index]

    @property
    def answered(self) -> frozenset[str]:
        return frozenset(self._answered)

    @property
    def flagged(self) -> frozenset[str]:
        return frozenset(self._flagged)

    def select_question(self, index: int) -> None:
        if not (0 <= index < len(self._question_ids)):
            raise OutOfRangeError(f"question index {index} outside [0, {len(self._question_ids) - 1}]")
        self._current_index = index

    def next(self) -> None:
        if self._current_index < len(self._question_ids) - 1:
            self._current_index += 1

    def previous(self) -> None:
        if self._current_index > 0:
            self._current_index -= 1

    def toggle_flag(self, question_id: str) -> bool:
        """Flip the flag and return the new flagged state."""

        if question_id in self._flagged:
            self._flagged.discard(question_id)
            return False
        self._flagged.add(question_id)
        return True

    def record_answer(self, question_id: str) -> None:
        self._require_known(question_id)
        self._answered.add(question_id)

    def clear_answer(self, question_id: str) -> None:
        self._answered.discard(question_id)

    def status(self, question_id: str) -> QuestionStatus:
        return QuestionStatus(
            answered=question_id in self._answered,
            flagged=question_id in self._flagged,
            current=question_id == self.current_question_id,
        )

    def statuses(self) -> tuple[QuestionStatus, ...]:
        return tuple(self.status(qid) for qid in self._question_ids)

    def _require_known(self, question_id: str) -> None:
        if question_id not in self._known:
            raise KeyError(question_id)
