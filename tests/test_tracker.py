from __future__ import annotations

import pytest

from certprep.errors import OutOfRangeError
from certprep.tracker import AnswerTracker, QuestionStatus


def test_navigation_clamps_at_both_ends() -> None:
    t = AnswerTracker(["q1", "q2", "q3"])
    assert t.current_question_id == "q1"
    t.previous()
    assert t.current_index == 0

    t.next()
    t.next()
    t.next()
    assert t.current_index == 2
    assert t.current_question_id == "q3"


def test_select_question_out_of_range() -> None:
    t = AnswerTracker(["q1", "q2"])
    t.select_question(1)
    assert t.current_index == 1
    with pytest.raises(OutOfRangeError):
        t.select_question(2)
    with pytest.raises(IndexError):
        t.select_question(-1)
    assert t.current_index == 1


def test_flags_and_answers_are_independent() -> None:
    t = AnswerTracker(["q1", "q2"])
    assert t.toggle_flag("q2") is True
    t.record_answer("q2")
    assert t.status("q2") == QuestionStatus(answered=True, flagged=True, current=False)

    assert t.toggle_flag("q2") is False
    t.clear_answer("q2")
    assert t.answered == frozenset()
    assert t.flagged == frozenset()
    assert t.statuses() == (
        QuestionStatus(answered=False, flagged=False, current=True),
        QuestionStatus(answered=False, flagged=False, current=False),
    )


def test_unknown_question_rejected() -> None:
    t = AnswerTracker(["q1"])
    with pytest.raises(KeyError):
        t.record_answer("nope")


def test_empty_question_list_rejected() -> None:
    with pytest.raises(ValueError):
        AnswerTracker([])
