"""Pygame UI shell for the certification practice exam.

Screens only read SessionSnapshot / DetailedResult and call the session's
public operations. Timing, scoring and state live in certprep/* core modules.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import pygame

from .bank import load_exam, sample_exam
from .clock import Clock, RealClock
from .config import TimingConfig, default_db_path, default_exam_path, default_user_id
from .countdown import TimeWarning
from .errors import ExamEngineError, InvalidSelectionError, InvalidStateError, StorageError
from .models import AttemptStatus, Exam, ExamMode, Question, SessionContext
from .scoring import DetailedResult, QuestionOutcome
from .session import ExamSession, SessionSnapshot
from .store import SqliteAttemptStore

logger = logging.getLogger(__name__)

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

BG = (10, 10, 14)
TEXT = (235, 235, 245)
MUTED = (160, 160, 175)
ACCENT = (120, 170, 255)
WARN = (240, 190, 60)
CRITICAL = (240, 80, 70)
GOOD = (110, 210, 130)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    @property
    def current(self) -> Screen | None:
        return self._screens[-1] if self._screens else None

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the root screen; it handles its own quit.
        if len(self._screens) > 1:
            self._screens.pop()

    def replace(self, screen: Screen) -> None:
        self.pop()
        self.push(screen)

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        screen = self.current
        if screen is not None:
            screen.handle_event(event)

    def render(self) -> None:
        screen = self.current
        if screen is not None:
            screen.render(self._surface)


class MenuScreen:
    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)
        self.message: str | None = None

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_UP, pygame.K_w):
            self._move(-1)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._move(1)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            if self._items:
                self._items[self._selected].action()
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            if self._is_root:
                self._app.quit()
            else:
                self._app.pop()

    def _move(self, delta: int) -> None:
        if not self._items:
            return
        self._selected = (self._selected + delta) % len(self._items)

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)
        title = self._title_font.render(self._title, True, TEXT)
        surface.blit(title, title.get_rect(center=(w // 2, 60)))

        y = 130
        for idx, item in enumerate(self._items):
            selected = idx == self._selected
            row = pygame.Rect(w // 2 - 220, y, 440, 40)
            if selected:
                pygame.draw.rect(surface, (240, 244, 255), row)
            pygame.draw.rect(surface, (70, 80, 120), row, 1)
            text = self._item_font.render(item.label, True, (14, 26, 74) if selected else TEXT)
            surface.blit(text, (row.x + 12, row.y + (row.h - text.get_height()) // 2))
            y += 50

        if self.message:
            msg = self._hint_font.render(self.message, True, WARN)
            surface.blit(msg, msg.get_rect(center=(w // 2, h - 70)))
        foot = self._hint_font.render("Enter: Select  |  Esc: Back", True, MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(w // 2, h - 16)))


def submission_summary(snap: SessionSnapshot) -> str:
    """One-line pre-submit warning: answered count, then unanswered and flagged numbers."""

    unanswered = [q.number for q in snap.questions if q.id not in snap.answered]
    flagged = [q.number for q in snap.questions if q.id in snap.flagged]
    parts = [f"Answered {snap.answered_count}/{snap.total_questions}."]
    if unanswered:
        parts.append("Unanswered: " + ", ".join(str(n) for n in unanswered) + ".")
    if flagged:
        parts.append("Flagged: " + ", ".join(str(n) for n in flagged) + ".")
    return " ".join(parts)


class ExamScreen:
    """Question view with countdown, navigation strip and answer selection.

    Keys: 1-5 toggle a choice, Enter saves it, Left/Right move, F flags,
    S then Y submits, Esc leaves (the attempt stays resumable).
    """

    def __init__(self, app: App, *, session: ExamSession, clock: Clock) -> None:
        self._app = app
        self._session = session
        self._clock = clock
        self._pending: list[str] = []
        self._pending_for: str | None = None
        self._presented_at_s = clock.now()
        self._confirm_submit = False
        self._message: str | None = None

        self._small_font = pygame.font.Font(None, 24)
        self._tiny_font = pygame.font.Font(None, 20)
        self._timer_font = pygame.font.Font(None, 44)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key == pygame.K_ESCAPE:
            self._session.close()
            self._app.pop()
            return
        snap = self._session.snapshot()
        if snap.status is not AttemptStatus.IN_PROGRESS:
            return
        q = snap.current_question
        if q is None:
            return

        try:
            if self._confirm_submit:
                self._confirm_submit = False
                if event.key == pygame.K_y:
                    self._submit()
                return

            choice = self._choice_from_key(event.key)
            if choice is not None and choice <= len(q.answers):
                self._toggle_pending(q.id, q.answers[choice - 1].id, q.required_selections)
            elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                if snap.completion_error is not None and snap.remaining_seconds == 0:
                    self._submit()
                else:
                    self._save_pending(q.id)
            elif event.key in (pygame.K_RIGHT, pygame.K_n):
                self._session.next()
                self._on_question_change()
            elif event.key in (pygame.K_LEFT, pygame.K_p):
                self._session.previous()
                self._on_question_change()
            elif event.key == pygame.K_f:
                self._session.toggle_flag(q.id)
            elif event.key == pygame.K_s:
                self._confirm_submit = True
                self._message = submission_summary(snap) + "  Press Y to submit."
        except (InvalidSelectionError, InvalidStateError) as e:
            self._message = str(e)
        except StorageError as e:
            self._message = f"Could not save, try again: {e}"

    def render(self, surface: pygame.Surface) -> None:
        try:
            self._session.update()
        except StorageError as e:
            self._message = f"Auto-submit failed ({e}). Press Enter to retry."
        except InvalidStateError as e:
            self._message = f"{e}. Press Esc to leave."

        if self._session.status is AttemptStatus.COMPLETED and self._session.result is not None:
            self._app.replace(
                ResultsScreen(self._app, result=self._session.result, questions=self._session.snapshot().questions)
            )
            return

        snap = self._session.snapshot()
        w, h = surface.get_size()
        surface.fill(BG)

        title = self._app.font.render(self._exam_title(), True, TEXT)
        surface.blit(title, (40, 24))

        timer_color = {
            TimeWarning.NONE: TEXT,
            TimeWarning.LOW: WARN,
            TimeWarning.CRITICAL: CRITICAL,
        }[snap.time_warning]
        timer = self._timer_font.render(snap.remaining_display, True, timer_color)
        surface.blit(timer, timer.get_rect(topright=(w - 40, 20)))

        progress = self._small_font.render(
            f"Question {snap.current_index + 1}/{snap.total_questions}   "
            f"Answered {snap.answered_count}   Flagged {snap.flagged_count}",
            True,
            MUTED,
        )
        surface.blit(progress, (40, 66))

        q = snap.current_question
        if q is not None:
            self._sync_pending(q.id)
            y = 104
            for line in self._wrap(q.text, self._app.font, w - 80):
                surface.blit(self._app.font.render(line, True, TEXT), (40, y))
                y += 32
            if q.required_selections > 1:
                hint = self._tiny_font.render(f"Select {q.required_selections} answers", True, ACCENT)
                surface.blit(hint, (40, y))
                y += 24
            y += 8
            saved = set(self._session.selected_answer_ids(q.id))
            for i, a in enumerate(q.answers, start=1):
                marked = a.id in self._pending
                color = ACCENT if marked else (GOOD if a.id in saved else TEXT)
                box = "[x]" if marked else "[ ]"
                line = self._small_font.render(f"{i}. {box} {a.letter}) {a.text}", True, color)
                surface.blit(line, (60, y))
                y += 30

        self._render_nav_strip(surface, snap.question_statuses, h - 96)

        if self._message:
            msg = self._small_font.render(self._message, True, WARN)
            surface.blit(msg, (40, h - 60))
        foot = self._tiny_font.render(
            "1-5 choose | Enter save | Left/Right move | F flag | S submit | Esc leave",
            True,
            MUTED,
        )
        surface.blit(foot, (40, h - 30))

    def _render_nav_strip(self, surface: pygame.Surface, statuses: tuple, top: int) -> None:
        x = 40
        for i, st in enumerate(statuses, start=1):
            rect = pygame.Rect(x, top, 26, 26)
            fill = (40, 90, 60) if st.answered else (30, 30, 40)
            pygame.draw.rect(surface, fill, rect)
            pygame.draw.rect(surface, ACCENT if st.current else (90, 90, 110), rect, 2)
            if st.flagged:
                pygame.draw.circle(surface, WARN, (rect.right - 5, rect.top + 5), 4)
            label = self._tiny_font.render(str(i), True, TEXT)
            surface.blit(label, label.get_rect(center=rect.center))
            x += 32

    def _exam_title(self) -> str:
        exam = self._session.exam
        mode = self._session.mode
        suffix = " (practice)" if mode is ExamMode.PRACTICE else ""
        return ("" if exam is None else exam.title) + suffix

    def _toggle_pending(self, question_id: str, answer_id: str, required: int) -> None:
        self._sync_pending(question_id)
        if answer_id in self._pending:
            self._pending.remove(answer_id)
            return
        if required == 1:
            self._pending = [answer_id]
        elif len(self._pending) < required:
            self._pending.append(answer_id)

    def _save_pending(self, question_id: str) -> None:
        spent = max(0.0, self._clock.now() - self._presented_at_s)
        self._session.record_answer(question_id, list(self._pending), spent)
        self._presented_at_s = self._clock.now()
        self._message = "Answer saved."

    def _submit(self) -> None:
        self._message = None
        try:
            self._session.submit()
        except StorageError as e:
            self._message = f"Submit failed ({e}). Press Enter to retry."
        except InvalidStateError as e:
            self._message = f"{e}. Press Esc to leave."

    def _sync_pending(self, question_id: str) -> None:
        if self._pending_for != question_id:
            self._pending_for = question_id
            self._pending = list(self._session.selected_answer_ids(question_id))

    def _on_question_change(self) -> None:
        self._presented_at_s = self._clock.now()
        self._message = None

    @staticmethod
    def _wrap(text: str, font: pygame.font.Font, max_width: int) -> list[str]:
        lines: list[str] = []
        current = ""
        for word in text.split():
            candidate = word if current == "" else f"{current} {word}"
            if font.size(candidate)[0] <= max_width or current == "":
                current = candidate
            else:
                lines.append(current)
                current = word
        if current:
            lines.append(current)
        return lines

    @staticmethod
    def _choice_from_key(key: int) -> int | None:
        mapping = {
            pygame.K_1: 1,
            pygame.K_2: 2,
            pygame.K_3: 3,
            pygame.K_4: 4,
            pygame.K_5: 5,
            pygame.K_KP1: 1,
            pygame.K_KP2: 2,
            pygame.K_KP3: 3,
            pygame.K_KP4: 4,
            pygame.K_KP5: 5,
        }
        return mapping.get(key)


class ResultsScreen:
    def __init__(self, app: App, *, result: DetailedResult, questions: tuple[Question, ...] = ()) -> None:
        self._app = app
        self._result = result
        self._questions = questions
        self._small_font = pygame.font.Font(None, 24)
        self._big_font = pygame.font.Font(None, 56)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key == pygame.K_r and self._questions:
            self._app.push(ReviewScreen(self._app, result=self._result, questions=self._questions))
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE, pygame.K_RETURN):
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        r = self._result
        surface.fill(BG)

        verdict = "PASSED" if r.passed else "NOT PASSED"
        head = self._big_font.render(f"{r.score_percentage:.0f}%  {verdict}", True, GOOD if r.passed else CRITICAL)
        surface.blit(head, (40, 30))

        lines = [
            f"Correct: {r.correct_answers}/{r.total_questions}   Unanswered: {r.unanswered}",
            f"Passing threshold: {r.passing_threshold_percentage:.0f}%",
            f"Overall: {r.overall_performance.value.replace('_', ' ')}",
            f"Time: {r.time_spent_minutes:.1f} min ({r.time_efficiency.value.replace('_', ' ')})"
            + ("  [auto-submitted]" if r.auto_submitted else ""),
            "",
            "Knowledge areas:",
        ]
        for ka in r.knowledge_area_scores:
            lines.append(
                f"  {ka.name} ({ka.weight_percentage:.0f}%): {ka.correct_answers}/{ka.total_questions} "
                f"- {ka.score_percentage:.0f}% {ka.performance.value.replace('_', ' ')}"
            )
        lines.append("")
        lines.append(
            "Difficulty: "
            + "   ".join(f"{level.value} {d.correct}/{d.total}" for level, d in r.difficulty_breakdown.items())
        )

        y = 100
        for line in lines:
            surface.blit(self._small_font.render(line, True, TEXT), (40, y))
            y += 26

        foot = self._small_font.render("R: review answers  |  Enter/Esc: back to menu", True, MUTED)
        surface.blit(foot, (40, surface.get_height() - 36))


class ReviewScreen:
    """Post-exam walk through every question.

    Shows the candidate's selection against the correct answers, with the
    question and answer explanations. Left/Right move, Esc returns.
    """

    def __init__(self, app: App, *, result: DetailedResult, questions: tuple[Question, ...]) -> None:
        self._app = app
        self._outcomes = result.question_results
        self._questions = {q.id: q for q in questions}
        self._index = 0
        self._small_font = pygame.font.Font(None, 24)
        self._tiny_font = pygame.font.Font(None, 20)

    @property
    def index(self) -> int:
        return self._index

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_RIGHT, pygame.K_n):
            self._index = min(self._index + 1, len(self._outcomes) - 1)
        elif event.key in (pygame.K_LEFT, pygame.K_p):
            self._index = max(self._index - 1, 0)
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE, pygame.K_RETURN):
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)
        if not self._outcomes:
            return
        outcome = self._outcomes[self._index]
        question = self._questions.get(outcome.question_id)

        verdict, color = _verdict(outcome)
        head = self._app.font.render(
            f"Review {self._index + 1}/{len(self._outcomes)}  -  Question {outcome.question_number}", True, TEXT
        )
        surface.blit(head, (40, 24))
        tag = self._app.font.render(verdict, True, color)
        surface.blit(tag, tag.get_rect(topright=(w - 40, 24)))

        y = 70
        if question is None:
            surface.blit(self._small_font.render(outcome.question_id, True, MUTED), (40, y))
        else:
            for line in ExamScreen._wrap(question.text, self._small_font, w - 80):
                surface.blit(self._small_font.render(line, True, TEXT), (40, y))
                y += 26
            y += 8
            selected = set(outcome.selected_answer_ids)
            for a in question.answers:
                chosen = a.id in selected
                if a.is_correct:
                    a_color = GOOD
                elif chosen:
                    a_color = CRITICAL
                else:
                    a_color = MUTED
                mark = ">" if chosen else " "
                suffix = "  (correct)" if a.is_correct else ""
                surface.blit(self._small_font.render(f"{mark} {a.letter}) {a.text}{suffix}", True, a_color), (50, y))
                y += 26
                if a.explanation and (chosen or a.is_correct):
                    surface.blit(self._tiny_font.render(f"    {a.explanation}", True, MUTED), (50, y))
                    y += 20
            if question.explanation:
                y += 8
                for line in ExamScreen._wrap(question.explanation, self._tiny_font, w - 80):
                    surface.blit(self._tiny_font.render(line, True, ACCENT), (40, y))
                    y += 20

        foot = self._tiny_font.render("Left/Right: question  |  Esc: back to results", True, MUTED)
        surface.blit(foot, (40, h - 30))


def _verdict(outcome: QuestionOutcome) -> tuple[str, tuple[int, int, int]]:
    if not outcome.answered:
        return "Not answered", WARN
    if outcome.is_correct:
        return "Correct", GOOD
    return "Incorrect", CRITICAL


def _load_configured_exam(exam_path: Path | None) -> Exam:
    if exam_path is None:
        return sample_exam()
    return load_exam(exam_path)


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    db_path: Path | None = None,
    exam: Exam | None = None,
    user_id: str | None = None,
) -> int:
    pygame.init()

    pygame.display.set_caption("Certification Practice Exam")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 32)
    frame_clock = pygame.time.Clock()

    app = App(surface=surface, font=font)

    store = SqliteAttemptStore(db_path or default_db_path())
    exam_def = exam or _load_configured_exam(default_exam_path())
    store.save_exam(exam_def)

    real_clock = RealClock()
    session = ExamSession(
        context=SessionContext(user_id=user_id or default_user_id()),
        store=store,
        clock=real_clock,
        timing=TimingConfig(),
    )

    menu_items: list[MenuItem] = []
    root = MenuScreen(app, exam_def.title, menu_items, is_root=True)

    def open_exam(mode: ExamMode) -> None:
        try:
            session.restart(exam_def, mode)
        except ExamEngineError as e:
            logger.warning("could not start exam: %s", e)
            root.message = str(e)
            return
        root.message = None
        app.push(ExamScreen(app, session=session, clock=real_clock))

    def resume_attempt() -> None:
        try:
            pending = store.find_in_progress(session.context.user_id, exam_def.id)
            if not pending:
                root.message = "No attempt in progress."
                return
            session.resume(exam_def, pending[-1].id)
        except ExamEngineError as e:
            logger.warning("could not resume attempt: %s", e)
            root.message = str(e)
            return
        root.message = None
        app.push(ExamScreen(app, session=session, clock=real_clock))

    menu_items.extend(
        [
            MenuItem("Start timed exam", lambda: open_exam(ExamMode.EXAM)),
            MenuItem("Start practice (untimed)", lambda: open_exam(ExamMode.PRACTICE)),
            MenuItem("Resume attempt in progress", resume_attempt),
            MenuItem("Quit", app.quit),
        ]
    )
    app.push(root)

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            frame_clock.tick(TARGET_FPS)
    finally:
        session.close()
        store.close()
        pygame.quit()

    return 0
