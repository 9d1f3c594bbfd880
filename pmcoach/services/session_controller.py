"""
Interview session state machine.

    Idle -> Ready -> Active -> Finalizing -> Completed
                                         `-> Aborted

One controller drives one interview for one user. ``start``,
``submit_candidate_turn`` and finalization are serialized by a per-controller
asyncio lock. Finalization has two triggers (countdown expiry and an explicit
``end_session``); a single check-and-set on ``_finalizing`` makes the second
trigger a no-op, so a session is evaluated and persisted at most once.

``abandon()`` is the caller's way out of a session it will not retry: it moves
any non-terminal session to Aborted without evaluating it, and does not wait
for the lock, so it also works while an interviewer reply is still pending.
"""
import asyncio
import logging
import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional, Tuple

from pmcoach.config import settings
from pmcoach.exceptions import (
    EmptyInput,
    GenerationFailure,
    InsufficientInput,
    InterviewError,
    NotReady,
    QuestionUnavailable,
)
from pmcoach.schemas.interview import (
    EvaluationResult,
    Question,
    Role,
    SessionRecord,
    Turn,
    UserStats,
)
from pmcoach.services.clock import Countdown
from pmcoach.services.conversation import ConversationLog
from pmcoach.services.interviewer import build_greeting
from pmcoach.services.rubrics import CATEGORIES, RANDOM_CATEGORY
from pmcoach.services.stats import compute_user_stats

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    READY = "ready"
    ACTIVE = "active"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.ABORTED})


@dataclass(frozen=True)
class FinalizationOutcome:
    session_id: str
    evaluation: EvaluationResult
    duration_minutes: float
    stats: Optional[UserStats] = None


class SessionController:

    def __init__(
        self,
        user_id: str,
        question_store,
        session_store,
        stats_store,
        interviewer,
        evaluator,
        clock,
        duration_seconds: Optional[int] = None,
        tick_seconds: Optional[float] = None,
        rng: Optional[random.Random] = None,
    ):
        self.user_id = user_id
        self.question_store = question_store
        self.session_store = session_store
        self.stats_store = stats_store
        self.interviewer = interviewer
        self.evaluator = evaluator
        self.clock = clock
        self.duration_seconds = settings.session_duration_seconds if duration_seconds is None else duration_seconds
        self.tick_seconds = settings.tick_seconds if tick_seconds is None else tick_seconds
        self.rng = rng or random.Random()

        self.state = SessionState.IDLE
        self.question: Optional[Question] = None
        self.record: Optional[SessionRecord] = None
        self.log: Optional[ConversationLog] = None
        self.outcome: Optional[FinalizationOutcome] = None
        self.last_error: Optional[InterviewError] = None

        self._lock = asyncio.Lock()
        self._countdown: Optional[Countdown] = None
        self._tick_listeners: List[Callable[[int], None]] = []
        self._started_at: Optional[float] = None
        self._ended_at: Optional[float] = None
        self._finalizing = False
        self._stats_pending = False

    # ------------------------
    # observation
    # ------------------------
    @property
    def session_id(self) -> Optional[str]:
        return self.record.id if self.record else None

    @property
    def time_remaining(self) -> int:
        if self._countdown is None:
            return self.duration_seconds
        return self._countdown.remaining

    @property
    def elapsed_seconds(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._ended_at if self._ended_at is not None else self.clock.monotonic()
        return min(max(end - self._started_at, 0.0), float(self.duration_seconds))

    @property
    def turns(self) -> Tuple[Turn, ...]:
        return tuple(self.log.turns) if self.log else ()

    def add_tick_listener(self, listener: Callable[[int], None]) -> None:
        """``listener(remaining_seconds)`` on every countdown tick."""
        self._tick_listeners.append(listener)
        if self._countdown is not None:
            self._countdown.add_listener(listener)

    # ------------------------
    # Idle -> Ready
    # ------------------------
    def load_question(self, category: str = RANDOM_CATEGORY) -> Question:
        if self.state not in (SessionState.IDLE, SessionState.READY):
            raise NotReady(f"cannot load a question while {self.state.value}")

        if category == RANDOM_CATEGORY:
            pool = self.question_store.list_questions(None)
        elif category in CATEGORIES:
            pool = self.question_store.list_questions(category)
        else:
            raise QuestionUnavailable(f"unknown category: {category}")

        if not pool:
            raise QuestionUnavailable(f"no questions for category: {category}")

        self.question = self.rng.choice(pool)
        self.state = SessionState.READY
        logger.info(
            f"[SESSION] user={self.user_id} ready question={self.question.id} "
            f"category={self.question.category}"
        )
        return self.question

    # ------------------------
    # Ready -> Active
    # ------------------------
    async def start(self) -> Turn:
        async with self._lock:
            if self.state != SessionState.READY or self.question is None:
                raise NotReady("load a question before starting")

            self.record = self.session_store.create_session(
                self.user_id, self.question.id, self.question.category
            )
            self.log = ConversationLog()
            greeting = self.log.append(
                Role.INTERVIEWER,
                build_greeting(self.question, self.duration_seconds),
                self.clock.now(),
            )

            self._started_at = self.clock.monotonic()
            self._countdown = Countdown(
                self.clock,
                self.duration_seconds,
                on_expire=self._on_timeout,
                tick_seconds=self.tick_seconds,
            )
            for listener in self._tick_listeners:
                self._countdown.add_listener(listener)
            self._countdown.start()

            self.state = SessionState.ACTIVE
            logger.info(f"[SESSION] {self.record.id} active ({self.duration_seconds}s)")
            return greeting

    # ------------------------
    # Active -> Active
    # ------------------------
    async def submit_candidate_turn(self, text: str) -> Tuple[Turn, Turn]:
        """Append the candidate turn, then the interviewer's reply.

        On GenerationFailure the candidate turn stays in the log and no
        interviewer turn is added; the caller may submit again.
        """
        if text is None or not text.strip():
            raise EmptyInput("message is empty")
        if self._finalizing:
            raise NotReady("session is ending")

        async with self._lock:
            if self.state != SessionState.ACTIVE:
                raise NotReady(f"session is {self.state.value}")

            candidate = self.log.append(Role.CANDIDATE, text, self.clock.now())
            try:
                reply = await self.interviewer.next_turn(self.question, self.log)
            except GenerationFailure as e:
                logger.warning(f"[SESSION] {self.session_id} interviewer turn failed: {e.detail}")
                raise

            # finalization waits for the lock, but abandon() does not
            if self.state != SessionState.ACTIVE or self.log.frozen:
                logger.info(f"[SESSION] {self.session_id} discarded late interviewer reply")
                raise NotReady(f"session is {self.state.value}")

            interviewer_turn = self.log.append(Role.INTERVIEWER, reply, self.clock.now())
            return candidate, interviewer_turn

    # ------------------------
    # Active -> Finalizing -> Completed | Aborted
    # ------------------------
    async def end_session(self) -> Optional[FinalizationOutcome]:
        """
        Explicit end. Returns the outcome once Completed.

        Returns None when another finalization is already in flight or the
        session was Aborted. Raises InsufficientInput on the transition to
        Aborted, and the evaluation/store error when finalization fails
        (the session then stays Finalizing and may be ended again).
        """
        return await self._finalize("explicit")

    async def _on_timeout(self) -> None:
        try:
            await self._finalize("timeout")
        except InterviewError as e:
            # the error is kept on last_error for the next status read
            logger.warning(f"[SESSION] {self.session_id} timeout finalization: {e.code}: {e.detail}")

    async def _finalize(self, trigger: str) -> Optional[FinalizationOutcome]:
        if self._finalizing:
            logger.info(f"[SESSION] {self.session_id} {trigger} end ignored, already finalizing")
            return None
        if self.state == SessionState.ABORTED:
            return None
        if self.state == SessionState.COMPLETED and not self._stats_pending:
            return self.outcome
        if self.state not in (SessionState.ACTIVE, SessionState.FINALIZING, SessionState.COMPLETED):
            raise NotReady(f"session is {self.state.value}")

        self._finalizing = True
        try:
            async with self._lock:
                return await self._finalize_locked(trigger)
        finally:
            self._finalizing = False

    async def _finalize_locked(self, trigger: str) -> Optional[FinalizationOutcome]:
        if self.state == SessionState.COMPLETED:
            # evaluation already persisted; only the derived stats are missing
            self._refresh_stats()
            return self.outcome
        if self.state == SessionState.ABORTED:
            return None
        if self.state not in (SessionState.ACTIVE, SessionState.FINALIZING):
            raise NotReady(f"session is {self.state.value}")

        if self.state == SessionState.ACTIVE:
            self.state = SessionState.FINALIZING
            self._countdown.cancel()
            self._ended_at = self.clock.monotonic()
            self.log.freeze()
            logger.info(f"[SESSION] {self.session_id} finalizing (trigger={trigger})")

        if self.log.candidate_turn_count() == 0:
            self.state = SessionState.ABORTED
            logger.info(f"[SESSION] {self.session_id} aborted, no candidate input")
            raise InsufficientInput("no candidate input to evaluate")

        try:
            evaluation = await self.evaluator.evaluate(self.question, self.log)
        except InterviewError as e:
            self.last_error = e
            raise

        duration_minutes = self.elapsed_seconds / 60
        activity_day = self.clock.today()
        patch = {
            "conversation": self.log.to_json(),
            "duration_minutes": duration_minutes,
            "composite_score": evaluation.composite_score,
            "dimension_scores": dict(evaluation.dimension_scores),
            "feedback": evaluation.feedback,
            "completed": True,
            "date": activity_day,
        }
        try:
            self.session_store.update_session(self.record.id, patch)
        except InterviewError as e:
            self.last_error = e
            raise

        self.record = self.record.model_copy(update={
            "conversation": list(self.log.turns),
            "duration_minutes": duration_minutes,
            "composite_score": evaluation.composite_score,
            "dimension_scores": dict(evaluation.dimension_scores),
            "feedback": evaluation.feedback,
            "completed": True,
            "date": activity_day,
        })
        self.outcome = FinalizationOutcome(
            session_id=self.record.id,
            evaluation=evaluation,
            duration_minutes=duration_minutes,
        )
        self.state = SessionState.COMPLETED
        self._stats_pending = True
        self.last_error = None
        logger.info(
            f"[SESSION] {self.session_id} completed composite={evaluation.composite_score:.2f} "
            f"duration={duration_minutes:.1f}min"
        )

        self._refresh_stats()
        return self.outcome

    def _refresh_stats(self) -> None:
        try:
            sessions = self.session_store.list_completed_sessions(self.user_id)
            stats = compute_user_stats(sessions, self.clock.today(), self.clock.tz)
            self.stats_store.upsert_user_stats(self.user_id, stats)
        except InterviewError as e:
            self.last_error = e
            logger.warning(f"[STATS] user={self.user_id} stats refresh failed: {e.detail}")
            raise

        self._stats_pending = False
        self.last_error = None
        self.outcome = replace(self.outcome, stats=stats)
        logger.info(
            f"[STATS] user={self.user_id} streak={stats.current_streak} "
            f"longest={stats.longest_streak} solved={stats.total_solved}"
        )

    # ------------------------
    # Active | Finalizing -> Aborted (caller gives up)
    # ------------------------
    def abandon(self) -> None:
        """Stop the session without evaluating it; the record stays completed=false.

        Refused with NotReady while a finalization is in flight. A no-op once
        the session is terminal.
        """
        if self._finalizing:
            raise NotReady("session is being finalized")
        if self.state in TERMINAL_STATES:
            return

        if self._countdown is not None:
            self._countdown.cancel()
        if self.log is not None and not self.log.frozen:
            self._ended_at = self.clock.monotonic()
            self.log.freeze()

        previous = self.state
        self.state = SessionState.ABORTED
        self.last_error = None
        logger.info(f"[SESSION] {self.session_id} abandoned while {previous.value}")

    def close(self) -> None:
        """Stop the countdown without finalizing (process shutdown or eviction)."""
        if self._countdown is not None:
            self._countdown.cancel()
