from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .models import Answer, Difficulty, Exam, KnowledgeArea, Question

_LETTERS = "ABCDE"


def exam_from_dict(data: dict[str, Any]) -> Exam:
    """Build an Exam from its JSON shape.

    Expected keys: id, title, time_limit_minutes, passing_threshold_percentage,
    knowledge_areas[{id, name, weight_percentage}], questions[{id,
    knowledge_area_id, text, difficulty, answers[{id, text, is_correct}]}].
    Question numbers and answer letters default to list position.
    """

    if not isinstance(data, dict):
        raise ValueError("exam definition must be a JSON object")
    exam_id = str(data.get("id", "")).strip()
    if exam_id == "":
        raise ValueError("exam definition needs an id")

    areas = tuple(
        KnowledgeArea(
            id=str(ka["id"]),
            name=str(ka.get("name", ka["id"])),
            weight_percentage=float(ka.get("weight_percentage", 0.0)),
            description=str(ka.get("description", "")),
        )
        for ka in data.get("knowledge_areas", [])
    )

    questions: list[Question] = []
    for pos, raw_q in enumerate(data.get("questions", []), start=1):
        qid = str(raw_q["id"])
        answers = tuple(
            Answer(
                id=str(raw_a["id"]),
                question_id=qid,
                text=str(raw_a["text"]),
                is_correct=bool(raw_a.get("is_correct", False)),
                letter=str(raw_a.get("letter", _LETTERS[i] if i < len(_LETTERS) else str(i + 1))),
                explanation=str(raw_a.get("explanation", "")),
            )
            for i, raw_a in enumerate(raw_q.get("answers", []))
        )
        questions.append(
            Question(
                id=qid,
                exam_id=exam_id,
                knowledge_area_id=str(raw_q["knowledge_area_id"]),
                text=str(raw_q["text"]),
                difficulty=Difficulty(str(raw_q.get("difficulty", "medium")).lower()),
                number=int(raw_q.get("number", pos)),
                answers=answers,
                required_selections=int(raw_q.get("required_selections", 1)),
                explanation=str(raw_q.get("explanation", "")),
            )
        )
    questions.sort(key=lambda q: q.number)

    return Exam(
        id=exam_id,
        title=str(data.get("title", exam_id)),
        time_limit_minutes=float(data.get("time_limit_minutes", 90)),
        passing_threshold_percentage=float(data.get("passing_threshold_percentage", 65)),
        questions=tuple(questions),
        knowledge_areas=areas,
    )


def load_exam(path: Path) -> Exam:
    return exam_from_dict(json.loads(Path(path).read_text(encoding="utf-8")))


def _q(
    qid: str,
    area: str,
    difficulty: Difficulty,
    number: int,
    text: str,
    answers: list[tuple[str, bool]],
    *,
    required: int = 1,
    explanation: str = "",
) -> Question:
    return Question(
        id=qid,
        exam_id="sample-admin",
        knowledge_area_id=area,
        text=text,
        difficulty=difficulty,
        number=number,
        answers=tuple(
            Answer(id=f"{qid}-{_LETTERS[i]}", question_id=qid, text=t, is_correct=ok, letter=_LETTERS[i])
            for i, (t, ok) in enumerate(answers)
        ),
        required_selections=required,
        explanation=explanation,
    )


def sample_exam(*, time_limit_minutes: float = 20.0) -> Exam:
    """Small built-in administrator practice exam used when no JSON is configured."""

    areas = (
        KnowledgeArea("ka-users", "User Management", 20.0, "Users, profiles and permissions"),
        KnowledgeArea("ka-security", "Data Security", 15.0, "Sharing and field-level security"),
        KnowledgeArea("ka-automation", "Process Automation", 25.0, "Flows and approval processes"),
        KnowledgeArea("ka-reports", "Reports and Dashboards", 20.0, "Report types and dashboards"),
        KnowledgeArea("ka-data", "Data Management", 20.0, "Import, export and data quality"),
    )
    E, M, H = Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD
    questions = (
        _q("q1", "ka-users", E, 1, "Where is a new user created?", [
            ("Setup > Users > New User", True),
            ("Home > Users > Add User", False),
            ("App Launcher > User Management", False),
            ("Reports > User Reports > New", False),
        ], explanation="User creation lives under Setup."),
        _q("q2", "ka-security", M, 2, "Which feature restricts visibility of a single field?", [
            ("Role hierarchy", False),
            ("Field-level security", True),
            ("Sharing rules", False),
            ("Organization-wide defaults", False),
        ]),
        _q("q3", "ka-automation", H, 3, "Which tool suits a multi-step process with user interaction?", [
            ("Workflow rules", False),
            ("Process Builder", False),
            ("Flow Builder", True),
            ("Apex triggers", False),
        ]),
        _q("q4", "ka-reports", E, 4, "Which component shows a single key metric on a dashboard?", [
            ("Metric", True),
            ("Table", False),
            ("Funnel", False),
            ("Scatter", False),
        ]),
        _q("q5", "ka-data", M, 5, "Select the TWO tools that can import records.", [
            ("Data Import Wizard", True),
            ("Data Loader", True),
            ("Schema Builder", False),
            ("Report Builder", False),
        ], required=2),
        _q("q6", "ka-users", M, 6, "What grants extra permissions without changing a profile?", [
            ("Permission set", True),
            ("Page layout", False),
            ("Record type", False),
            ("Queue", False),
        ]),
        _q("q7", "ka-automation", M, 7, "Select the TWO record-triggered automation options.", [
            ("Record-triggered flow", True),
            ("Apex trigger", True),
            ("Report subscription", False),
            ("List view", False),
        ], required=2),
        _q("q8", "ka-security", H, 8, "Which setting sets the baseline record access for an object?", [
            ("Organization-wide defaults", True),
            ("Manual sharing", False),
            ("Public groups", False),
            ("Login hours", False),
        ]),
    )
    return Exam(
        id="sample-admin",
        title="Administrator Practice Exam",
        time_limit_minutes=time_limit_minutes,
        passing_threshold_percentage=65.0,
        questions=questions,
        knowledge_areas=areas,
    )
