"""Smoke tests for the pygame UI.

These run the main loop for a handful of frames with the SDL dummy video
driver. They check that the screens and the session engine fit together
without raising; rendering correctness is not inspected.
"""

from __future__ import annotations

import os
from pathlib import Path

# Use the dummy drivers before importing pygame or the application
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


def test_app_runs_headless(tmp_path: Path) -> None:
    from certprep.app import run

    exit_code = run(max_frames=3, db_path=tmp_path / "attempts.sqlite3")
    assert exit_code == 0


def test_ui_answers_and_submits_an_exam(tmp_path: Path) -> None:
    import pygame

    from certprep.app import run
    from certprep.bank import sample_exam
    from certprep.models import AttemptStatus
    from certprep.store import SqliteAttemptStore

    def key(k: int) -> None:
        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, {"key": k, "unicode": ""}))

    script = {
        1: pygame.K_RETURN,  # Start timed exam
        2: pygame.K_1,  # choose A
        3: pygame.K_RETURN,  # save
        4: pygame.K_RIGHT,
        5: pygame.K_f,  # flag q2
        6: pygame.K_s,
        7: pygame.K_y,  # confirm submit
        9: pygame.K_r,  # results -> review
        10: pygame.K_RIGHT,
        11: pygame.K_LEFT,
        12: pygame.K_ESCAPE,  # review -> results
        13: pygame.K_RETURN,  # results -> menu
    }

    def inject(frame: int) -> None:
        if frame in script:
            key(script[frame])

    db = tmp_path / "attempts.sqlite3"
    assert run(max_frames=16, event_injector=inject, db_path=db, user_id="tester") == 0

    store = SqliteAttemptStore(db)
    try:
        exam_id = sample_exam().id
        assert store.find_in_progress("tester", exam_id) == []
        attempt = store.get_attempt(1)
        assert attempt.status is AttemptStatus.COMPLETED
        assert attempt.correct_answers == 1
        assert store.load_metrics(attempt.id)["unanswered"] == "7"
    finally:
        store.close()


class _StepClock:
    def __init__(self) -> None:
        self.t = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += dt


def _screen_fixture():
    import pygame

    from certprep.app import App
    from certprep.bank import sample_exam
    from certprep.models import SessionContext
    from certprep.session import ExamSession
    from certprep.store import SqliteAttemptStore

    pygame.init()
    surface = pygame.Surface((960, 540))
    app = App(surface=surface, font=pygame.font.Font(None, 32))
    store = SqliteAttemptStore(":memory:")
    clock = _StepClock()
    session = ExamSession(context=SessionContext(user_id="tester"), store=store, clock=clock)
    session.start(sample_exam())
    return pygame, app, surface, store, clock, session


def _press(screen, pygame, key: int) -> None:
    screen.handle_event(pygame.event.Event(pygame.KEYDOWN, {"key": key, "unicode": ""}))


def test_each_save_records_its_own_time_spent() -> None:
    pygame, app, surface, store, clock, session = _screen_fixture()
    try:
        from certprep.app import ExamScreen

        screen = ExamScreen(app, session=session, clock=clock)
        app.push(screen)
        clock.advance(10.0)
        _press(screen, pygame, pygame.K_2)
        _press(screen, pygame, pygame.K_RETURN)
        clock.advance(3.0)
        _press(screen, pygame, pygame.K_1)
        _press(screen, pygame, pygame.K_RETURN)

        log = session.answer_log()
        assert [ua.answer_ids for ua in log] == [("q1-B",), ("q1-A",)]
        assert [ua.time_spent_seconds for ua in log] == [10.0, 3.0]
    finally:
        session.close()
        store.close()
        pygame.quit()


def test_submit_prompt_lists_unanswered_and_flagged() -> None:
    pygame, app, surface, store, clock, session = _screen_fixture()
    try:
        from certprep.app import submission_summary

        session.record_answer("q1", ["q1-A"])
        session.record_answer("q5", ["q5-A", "q5-B"])
        session.toggle_flag("q3")
        session.toggle_flag("q5")

        text = submission_summary(session.snapshot())
        assert text == "Answered 2/8. Unanswered: 2, 3, 4, 6, 7, 8. Flagged: 3, 5."

        remaining = {
            "q2": ["q2-B"],
            "q3": ["q3-C"],
            "q4": ["q4-A"],
            "q6": ["q6-A"],
            "q7": ["q7-A", "q7-B"],
            "q8": ["q8-A"],
        }
        for qid, ids in remaining.items():
            session.record_answer(qid, ids)
        session.toggle_flag("q3")
        session.toggle_flag("q5")
        assert submission_summary(session.snapshot()) == "Answered 8/8."
    finally:
        session.close()
        store.close()
        pygame.quit()


def test_review_screen_steps_through_results() -> None:
    pygame, app, surface, store, clock, session = _screen_fixture()
    try:
        from certprep.app import ResultsScreen, ReviewScreen

        session.record_answer("q1", ["q1-A"])
        session.record_answer("q2", ["q2-A"])
        result = session.submit()
        questions = session.snapshot().questions

        results = ResultsScreen(app, result=result, questions=questions)
        app.push(results)
        _press(results, pygame, pygame.K_r)
        review = app.current
        assert isinstance(review, ReviewScreen)

        review.render(surface)
        _press(review, pygame, pygame.K_LEFT)
        assert review.index == 0
        for _ in range(20):
            _press(review, pygame, pygame.K_RIGHT)
            review.render(surface)
        assert review.index == len(questions) - 1

        _press(review, pygame, pygame.K_ESCAPE)
        assert app.current is results
    finally:
        session.close()
        store.close()
        pygame.quit()
