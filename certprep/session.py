"""Exam session state machine.

One ExamSession owns one attempt at a time and is the only writer of its
state. Lifecycle moves are computed by next_status() over a fixed transition
table; time comes from the injected Clock and is sampled by a cooperative
Ticker that the owner drives through update().
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum

from .clock import Clock, Ticker
from .config import TimingConfig
from .countdown import TimeWarning, classify_remaining, format_remaining, remaining_seconds
from .errors import ConflictError, InvalidSelectionError, InvalidStateError, StorageError
from .models import (
    AttemptStatus,
    Exam,
    ExamAttempt,
    ExamMode,
    Question,
    SessionContext,
    UserAnswer,
    latest_answers,
)
from .scoring import DetailedResult, is_selection_correct, score_attempt
from .store import AttemptStore
from .tracker import AnswerTracker, QuestionStatus

logger = logging.getLogger(__name__)


class SessionEvent(str, Enum):
    START = "start"
    RESUME = "resume"
    SUBMIT = "submit"
    EXPIRE = "expire"
    ABANDON = "abandon"


_TRANSITIONS: dict[tuple[AttemptStatus, SessionEvent], AttemptStatus] = {
    (AttemptStatus.NOT_STARTED, SessionEvent.START): AttemptStatus.IN_PROGRESS,
    (AttemptStatus.NOT_STARTED, SessionEvent.RESUME): AttemptStatus.IN_PROGRESS,
    (AttemptStatus.IN_PROGRESS, SessionEvent.SUBMIT): AttemptStatus.COMPLETED,
    (AttemptStatus.IN_PROGRESS, SessionEvent.EXPIRE): AttemptStatus.COMPLETED,
    (AttemptStatus.IN_PROGRESS, SessionEvent.ABANDON): AttemptStatus.ABANDONED,
}


def next_status(status: AttemptStatus, event: SessionEvent) -> AttemptStatus:
    """Pure lifecycle transition; raises InvalidStateError for illegal moves."""

    try:
        return _TRANSITIONS[(status, event)]
    except KeyError:
        raise InvalidStateError(f"cannot {event.value} an attempt that is {status.value}") from None


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Read-only view of the session for presentation (pure data)."""

    status: AttemptStatus
    mode: ExamMode | None
    attempt: ExamAttempt | None
    questions: tuple[Question, ...]
    user_answers: tuple[UserAnswer, ...]
    current_index: int
    answered: frozenset[str]
    flagged: frozenset[str]
    question_statuses: tuple[QuestionStatus, ...]
    remaining_seconds: int | None
    remaining_display: str
    time_warning: TimeWarning
    completion_error: str | None = None

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def answered_count(self) -> int:
        return len(self.answered)

    @property
    def flagged_count(self) -> int:
        return len(self.flagged)

    @property
    def current_question(self) -> Question | None:
        if not self.questions:
            return None
        return self.questions[self.current_index]

    @property
    def is_low_time(self) -> bool:
        return self.time_warning is not TimeWarning.NONE

    @property
    def is_critical_time(self) -> bool:
        return self.time_warning is TimeWarning.CRITICAL


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExamSession:
    """Lifecycle, countdown, navigation and answer recording for one attempt."""

    def __init__(
        self,
        *,
        context: SessionContext,
        store: AttemptStore,
        clock: Clock,
        timing: TimingConfig | None = None,
        wall_clock: Callable[[], datetime] = _utc_now,
        on_complete: Callable[[DetailedResult], None] | None = None,
    ) -> None:
        self._context = context
        self._store = store
        self._clock = clock
        self._timing = timing or TimingConfig()
        self._wall_clock = wall_clock
        self._on_complete = on_complete
        self._ticker = Ticker(clock=clock, on_tick=self._on_tick)

        self._busy = False
        self._reset()

    def _reset(self) -> None:
        self._status = AttemptStatus.NOT_STARTED
        self._exam: Exam | None = None
        self._attempt: ExamAttempt | None = None
        self._questions: tuple[Question, ...] = ()
        self._question_by_id: dict[str, Question] = {}
        self._answer_log: list[UserAnswer] = []
        self._tracker: AnswerTracker | None = None
        self._started_at_s: float | None = None
        self._deadline_s: float | None = None
        self._remaining_s: int | None = None
        self._finalizing = False
        self._result: DetailedResult | None = None
        self._completion_error: str | None = None

    # ---- read-only accessors -------------------------------------------------

    @property
    def context(self) -> SessionContext:
        return self._context

    @property
    def status(self) -> AttemptStatus:
        return self._status

    @property
    def attempt(self) -> ExamAttempt | None:
        return self._attempt

    @property
    def exam(self) -> Exam | None:
        return self._exam

    @property
    def mode(self) -> ExamMode | None:
        return None if self._attempt is None else self._attempt.mode

    @property
    def result(self) -> DetailedResult | None:
        return self._result

    @property
    def completion_error(self) -> str | None:
        return self._completion_error

    @property
    def clock_running(self) -> bool:
        return self._ticker.active

    @property
    def current_index(self) -> int:
        return 0 if self._tracker is None else self._tracker.current_index

    @property
    def remaining_seconds(self) -> int | None:
        """Whole seconds left as of the last tick; None means unlimited."""

        return self._remaining_s

    def remaining_display(self) -> str:
        return format_remaining(self._remaining_s)

    def time_warning(self) -> TimeWarning:
        return classify_remaining(
            self._remaining_s,
            low_threshold_s=self._timing.low_time_threshold_s,
            critical_threshold_s=self._timing.critical_time_threshold_s,
        )

    def user_answers(self) -> tuple[UserAnswer, ...]:
        """Latest answer per question, in question order."""

        latest = latest_answers(self._answer_log)
        return tuple(latest[q.id] for q in self._questions if q.id in latest)

    def answer_log(self) -> tuple[UserAnswer, ...]:
        return tuple(self._answer_log)

    def selected_answer_ids(self, question_id: str) -> tuple[str, ...]:
        ua = latest_answers(self._answer_log).get(question_id)
        return () if ua is None else ua.answer_ids

    def snapshot(self) -> SessionSnapshot:
        tracker = self._tracker
        return SessionSnapshot(
            status=self._status,
            mode=self.mode,
            attempt=self._attempt,
            questions=self._questions,
            user_answers=self.user_answers(),
            current_index=self.current_index,
            answered=frozenset() if tracker is None else tracker.answered,
            flagged=frozenset() if tracker is None else tracker.flagged,
            question_statuses=() if tracker is None else tracker.statuses(),
            remaining_seconds=self._remaining_s,
            remaining_display=self.remaining_display(),
            time_warning=self.time_warning(),
            completion_error=self._completion_error,
        )

    # ---- lifecycle -------------------------------------------------------------

    def start(self, exam: Exam, mode: ExamMode = ExamMode.EXAM) -> ExamAttempt:
        with self._exclusive("start"):
            if self._status is AttemptStatus.IN_PROGRESS:
                raise ConflictError("this session already has an attempt in progress; use restart()")
            return self._begin(exam, mode)

    def restart(self, exam: Exam, mode: ExamMode = ExamMode.EXAM) -> ExamAttempt:
        """Abandon whatever is in progress, regardless of elapsed time, and start fresh.

        Two store writes: the abandon, then the new attempt. If the second
        fails with StorageError the session is left ABANDONED, matching the
        store, and start() can be retried.
        """

        with self._exclusive("restart"):
            if self._status is AttemptStatus.IN_PROGRESS:
                self._abandon_current()
            return self._begin(exam, mode)

    def resume(self, exam: Exam, attempt_id: int) -> ExamAttempt:
        """Reopen a stored in-progress attempt after the client went away."""

        with self._exclusive("resume"):
            if self._status is AttemptStatus.IN_PROGRESS:
                raise ConflictError("this session already has an attempt in progress")
            attempt, questions, answers = self._store.load_attempt(attempt_id)
            if attempt.user_id != self._context.user_id:
                raise InvalidStateError(f"attempt {attempt_id} belongs to another user")
            if attempt.exam_id != exam.id:
                raise ValueError(f"attempt {attempt_id} is for exam {attempt.exam_id}, not {exam.id}")
            if attempt.status is not AttemptStatus.IN_PROGRESS:
                raise InvalidStateError(f"attempt {attempt_id} is {attempt.status.value}")

            elapsed_s = max(0.0, (self._wall_clock() - attempt.started_at).total_seconds())
            self._install(
                SessionEvent.RESUME,
                exam=exam,
                attempt=attempt,
                questions=tuple(questions) or exam.questions,
                answers=answers,
                elapsed_s=elapsed_s,
            )
            logger.info("resumed attempt %s for user %s (%.0fs elapsed)", attempt.id, attempt.user_id, elapsed_s)
            return attempt

    def submit(self) -> DetailedResult:
        """User-initiated completion; also the retry path after a failed auto-submit."""

        with self._exclusive("submit"):
            self._require_in_progress("submit")
            self._refresh_remaining()
            expired = self._deadline_s is not None and self._remaining_s == 0
            result = self._finish(auto=expired)
        self._emit_completion(result)
        return result

    def abandon(self) -> None:
        with self._exclusive("abandon"):
            self._require_in_progress("abandon")
            self._abandon_current()

    def close(self) -> None:
        """Stop the clock and drop in-memory data. Stored answers are kept."""

        self._ticker.stop()
        self._reset()

    def update(self) -> None:
        """Advance the countdown; call once per frame or loop iteration.

        Raises StorageError if an auto-submit could not be persisted; the
        attempt stays in progress with zero time left and submit() may be
        retried. Raises InvalidStateError if the stored attempt was already
        closed by another session; the session then takes that status.
        """

        self._ticker.poll()

    # ---- navigation and answers ------------------------------------------------

    def select_question(self, index: int) -> None:
        with self._exclusive("select_question"):
            self._require_in_progress("select_question")
            self._require_tracker().select_question(index)

    def next(self) -> None:
        with self._exclusive("next"):
            self._require_in_progress("next")
            self._require_tracker().next()

    def previous(self) -> None:
        with self._exclusive("previous"):
            self._require_in_progress("previous")
            self._require_tracker().previous()

    def toggle_flag(self, question_id: str | None = None) -> bool:
        with self._exclusive("toggle_flag"):
            self._require_in_progress("toggle_flag")
            tracker = self._require_tracker()
            qid = tracker.current_question_id if question_id is None else question_id
            if qid not in self._question_by_id:
                raise InvalidSelectionError(f"unknown question {qid!r}")
            return tracker.toggle_flag(qid)

    def record_answer(
        self,
        question_id: str,
        selected_answer_ids: Iterable[str],
        time_spent_seconds: float = 0.0,
    ) -> UserAnswer:
        with self._exclusive("record_answer"):
            self._require_in_progress("record_answer")
            if self._finalizing:
                raise InvalidStateError("attempt is being submitted; no further answers accepted")
            self._refresh_remaining()
            if self._deadline_s is not None and self._remaining_s == 0:
                raise InvalidStateError("time has expired; no further answers accepted")

            question = self._question_by_id.get(question_id)
            if question is None:
                raise InvalidSelectionError(f"unknown question {question_id!r}")
            ids = tuple(dict.fromkeys(str(a) for a in selected_answer_ids))
            unknown = [a for a in ids if a not in question.answer_ids]
            if unknown:
                raise InvalidSelectionError(f"answers {unknown} do not belong to question {question_id!r}")
            if ids and len(ids) != question.required_selections:
                raise InvalidSelectionError(
                    f"question {question_id!r} needs exactly {question.required_selections} "
                    f"selection(s), got {len(ids)}"
                )
            if time_spent_seconds < 0:
                raise InvalidSelectionError("time_spent_seconds must be >= 0")

            assert self._attempt is not None
            try:
                ua = self._store.record_answer(
                    self._attempt.id,
                    question_id,
                    ids,
                    float(time_spent_seconds),
                    is_correct=is_selection_correct(question, ids),
                )
            except InvalidStateError:
                self._adopt_stored_status()
                raise

            self._answer_log.append(ua)
            tracker = self._require_tracker()
            if ids:
                tracker.record_answer(question_id)
            else:
                tracker.clear_answer(question_id)
            return ua

    # ---- internals -------------------------------------------------------------

    @contextmanager
    def _exclusive(self, op: str) -> Iterator[None]:
        if self._busy:
            raise InvalidStateError(f"{op}: another session operation is still running")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    def _require_in_progress(self, op: str) -> None:
        if self._status is not AttemptStatus.IN_PROGRESS:
            raise InvalidStateError(f"{op}: attempt is {self._status.value}")

    def _require_tracker(self) -> AnswerTracker:
        if self._tracker is None:
            raise InvalidStateError("no attempt loaded")
        return self._tracker

    def _begin(self, exam: Exam, mode: ExamMode) -> ExamAttempt:
        user_id = self._context.user_id
        for stale in self._store.find_in_progress(user_id, exam.id):
            self._store.abandon_attempt(stale.id)
            logger.info("abandoned stale attempt %s for user %s exam %s", stale.id, user_id, exam.id)

        attempt = self._store.create_attempt(
            exam.id,
            user_id,
            mode,
            total_questions=len(exam.questions),
            time_limit_minutes=exam.time_limit_minutes if mode is ExamMode.EXAM else None,
        )
        self._install(
            SessionEvent.START,
            exam=exam,
            attempt=attempt,
            questions=exam.questions,
            answers=[],
            elapsed_s=0.0,
        )
        logger.info("started attempt %s (%s mode) for user %s exam %s", attempt.id, mode.value, user_id, exam.id)
        return attempt

    def _install(
        self,
        event: SessionEvent,
        *,
        exam: Exam,
        attempt: ExamAttempt,
        questions: tuple[Question, ...],
        answers: list[UserAnswer],
        elapsed_s: float,
    ) -> None:
        status = next_status(AttemptStatus.NOT_STARTED, event)

        self._ticker.stop()
        self._reset()
        self._status = status
        self._exam = exam
        self._attempt = attempt
        self._questions = tuple(questions)
        self._question_by_id = {q.id: q for q in self._questions}
        self._answer_log = list(answers)
        self._tracker = AnswerTracker([q.id for q in self._questions])
        for qid, ua in latest_answers(self._answer_log).items():
            if ua.answer_ids and qid in self._question_by_id:
                self._tracker.record_answer(qid)

        now = self._clock.now()
        self._started_at_s = now - elapsed_s
        if attempt.mode is ExamMode.EXAM and attempt.time_limit_minutes is not None:
            self._deadline_s = self._started_at_s + float(attempt.time_limit_minutes) * 60.0
            self._remaining_s = remaining_seconds(deadline_s=self._deadline_s, now_s=now)
            self._ticker.start(self._timing.tick_interval_ms, immediate=self._remaining_s == 0)

    def _abandon_current(self) -> None:
        assert self._attempt is not None
        self._store.abandon_attempt(self._attempt.id)
        self._ticker.stop()
        self._status = next_status(self._status, SessionEvent.ABANDON)
        self._attempt = replace(self._attempt, status=self._status, completed_at=self._wall_clock())
        self._finalizing = False
        logger.info("abandoned attempt %s", self._attempt.id)

    def _refresh_remaining(self) -> None:
        if self._deadline_s is None:
            return
        self._remaining_s = remaining_seconds(
            deadline_s=self._deadline_s,
            now_s=self._clock.now(),
            previous=self._remaining_s,
        )

    def _on_tick(self) -> None:
        if self._status is not AttemptStatus.IN_PROGRESS or self._deadline_s is None:
            return
        if self._busy:
            return
        self._refresh_remaining()
        if self._remaining_s is not None and self._remaining_s <= 0:
            with self._exclusive("auto-submit"):
                result = self._finish(auto=True)
            self._emit_completion(result)

    def _finish(self, *, auto: bool) -> DetailedResult:
        assert self._attempt is not None and self._exam is not None and self._started_at_s is not None
        self._finalizing = True
        self._ticker.stop()

        elapsed_min = max(0.0, self._clock.now() - self._started_at_s) / 60.0
        limit = self._attempt.time_limit_minutes if self._attempt.mode is ExamMode.EXAM else None
        if limit is not None:
            elapsed_min = min(elapsed_min, float(limit))

        result = score_attempt(
            self._questions,
            self._answer_log,
            elapsed_minutes=elapsed_min,
            passing_threshold_percentage=self._exam.passing_threshold_percentage,
            time_limit_minutes=limit,
            knowledge_areas=self._exam.knowledge_area_map(),
            auto_submitted=auto,
            attempt_id=self._attempt.id,
        )

        try:
            stored = self._store.complete_attempt(self._attempt.id, result)
        except StorageError as e:
            self._completion_error = str(e)
            self._reopen(auto=auto)
            logger.error("completing attempt %s failed (auto=%s): %s", self._attempt.id, auto, e)
            raise
        except InvalidStateError as e:
            # The stored attempt left IN_PROGRESS behind our back.
            self._completion_error = str(e)
            self._reopen(auto=auto)
            self._adopt_stored_status()
            raise

        self._status = next_status(self._status, SessionEvent.EXPIRE if auto else SessionEvent.SUBMIT)
        self._attempt = stored
        self._result = result
        self._completion_error = None
        logger.info(
            "completed attempt %s: %d/%d (%.2f%%) passed=%s auto=%s",
            stored.id,
            result.correct_answers,
            result.total_questions,
            result.score_percentage,
            result.passed,
            auto,
        )
        return result

    def _reopen(self, *, auto: bool) -> None:
        if auto:
            # Time is up: stay frozen at zero until submit() is retried.
            return
        self._finalizing = False
        if self._deadline_s is not None:
            self._ticker.start(self._timing.tick_interval_ms)

    def _adopt_stored_status(self) -> None:
        """Follow a terminal status written to the store by another session."""

        assert self._attempt is not None
        stored, _, _ = self._store.load_attempt(self._attempt.id)
        if not stored.status.is_terminal:
            return
        self._ticker.stop()
        self._status = stored.status
        self._attempt = stored
        self._finalizing = False
        logger.warning("attempt %s was %s elsewhere; session follows the store", stored.id, stored.status.value)

    def _emit_completion(self, result: DetailedResult) -> None:
        if self._on_complete is not None:
            self._on_complete(result)
