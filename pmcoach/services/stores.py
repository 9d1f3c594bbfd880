# pmcoach/services/stores.py
# SQLAlchemy-backed question / session / stats stores.
# Each call opens its own short DB session so a live interview never holds a connection.
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pmcoach.db.base import SessionLocal
from pmcoach.exceptions import SessionNotFound, StoreUnavailable
from pmcoach.models.interview_session import InterviewSession
from pmcoach.models.question import PracticeQuestion
from pmcoach.models.user_stats import UserStatsRecord
from pmcoach.schemas.interview import Feedback, Question, SessionRecord, Turn, UserStats
from pmcoach.services.rubrics import CATEGORIES

logger = logging.getLogger(__name__)

# fields a session patch may touch
SESSION_PATCH_FIELDS = frozenset({
    "conversation",
    "duration_minutes",
    "composite_score",
    "dimension_scores",
    "feedback",
    "completed",
    "date",
})


@contextmanager
def _session_scope(session_factory) -> Iterator[Session]:
    db = session_factory()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[STORE] database error: {e!r}")
        raise StoreUnavailable(f"database error: {e.__class__.__name__}") from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _jsonable_turns(turns) -> List[Dict[str, Any]]:
    return [t.model_dump(mode="json") if isinstance(t, Turn) else dict(t) for t in turns]


# ----------------------------
# questions
# ----------------------------
class SqlQuestionStore:

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def list_questions(self, category: Optional[str] = None) -> List[Question]:
        with _session_scope(self.session_factory) as db:
            query = db.query(PracticeQuestion)
            if category is not None:
                query = query.filter(PracticeQuestion.category == category)
            rows = query.order_by(PracticeQuestion.created_date, PracticeQuestion.id).all()
            return [Question.model_validate(r) for r in rows]

    def count(self) -> int:
        with _session_scope(self.session_factory) as db:
            return db.query(PracticeQuestion).count()

    def add_questions(self, items: List[Dict[str, str]]) -> List[Question]:
        with _session_scope(self.session_factory) as db:
            rows = [
                PracticeQuestion(
                    id=str(uuid.uuid4()),
                    question_text=item["question_text"],
                    category=item["category"],
                    difficulty=item.get("difficulty") or "intermediate",
                )
                for item in items
            ]
            db.add_all(rows)
            db.flush()
            return [Question.model_validate(r) for r in rows]


# ----------------------------
# sessions
# ----------------------------
class SqlSessionStore:

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def create_session(self, user_id: str, question_id: str, category: str) -> SessionRecord:
        with _session_scope(self.session_factory) as db:
            row = InterviewSession(
                id=str(uuid.uuid4()),
                user_id=user_id,
                question_id=question_id,
                category=category,
                conversation=[],
                completed=False,
            )
            db.add(row)
            db.flush()
            db.refresh(row)
            return SessionRecord.model_validate(row)

    def update_session(self, session_id: str, patch: Dict[str, Any]) -> None:
        unknown = set(patch) - SESSION_PATCH_FIELDS
        if unknown:
            raise ValueError(f"unsupported session fields: {sorted(unknown)}")
        if patch.get("completed") and (
            patch.get("composite_score") is None or patch.get("dimension_scores") is None
        ):
            raise ValueError("a completed session needs composite_score and dimension_scores")

        with _session_scope(self.session_factory) as db:
            row = db.get(InterviewSession, session_id)
            if row is None:
                raise SessionNotFound(f"session {session_id} not found")
            if row.completed:
                raise ValueError(f"session {session_id} is already completed")

            for key, value in patch.items():
                if key == "conversation":
                    value = _jsonable_turns(value)
                elif key == "feedback" and isinstance(value, Feedback):
                    value = value.model_dump()
                elif key == "dimension_scores" and value is not None:
                    value = dict(value)
                setattr(row, key, value)

    def list_completed_sessions(self, user_id: str) -> List[SessionRecord]:
        with _session_scope(self.session_factory) as db:
            rows = (
                db.query(InterviewSession)
                .filter(
                    InterviewSession.user_id == user_id,
                    InterviewSession.completed.is_(True),
                )
                .all()
            )
            return [SessionRecord.model_validate(r) for r in rows]

    def list_sessions(self, user_id: str) -> List[SessionRecord]:
        with _session_scope(self.session_factory) as db:
            rows = (
                db.query(InterviewSession)
                .filter(InterviewSession.user_id == user_id)
                .order_by(InterviewSession.created_date.desc())
                .all()
            )
            return [SessionRecord.model_validate(r) for r in rows]

    def get_session(self, user_id: str, session_id: str) -> SessionRecord:
        with _session_scope(self.session_factory) as db:
            row = (
                db.query(InterviewSession)
                .filter(
                    InterviewSession.id == session_id,
                    InterviewSession.user_id == user_id,
                )
                .first()
            )
            if row is None:
                raise SessionNotFound(f"session {session_id} not found")
            return SessionRecord.model_validate(row)


# ----------------------------
# stats
# ----------------------------
class SqlStatsStore:

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def upsert_user_stats(self, user_id: str, stats: UserStats) -> None:
        """Full replace; columns absent from ``stats`` are cleared, never kept."""
        with _session_scope(self.session_factory) as db:
            row = db.get(UserStatsRecord, user_id)
            if row is None:
                row = UserStatsRecord(user_id=user_id)
                db.add(row)

            row.current_streak = stats.current_streak
            row.longest_streak = stats.longest_streak
            row.total_solved = stats.total_solved
            for category in CATEGORIES:
                setattr(row, f"avg_score_{category}", stats.category_averages.get(category))
            row.last_activity_date = stats.last_activity_date
            row.activity_calendar = dict(stats.activity_calendar)

    def get_user_stats(self, user_id: str) -> Optional[UserStats]:
        with _session_scope(self.session_factory) as db:
            row = db.get(UserStatsRecord, user_id)
            if row is None:
                return None
            averages = {
                category: getattr(row, f"avg_score_{category}")
                for category in CATEGORIES
                if getattr(row, f"avg_score_{category}") is not None
            }
            return UserStats(
                current_streak=row.current_streak,
                longest_streak=row.longest_streak,
                total_solved=row.total_solved,
                category_averages=averages,
                last_activity_date=row.last_activity_date,
                activity_calendar=row.activity_calendar or {},
            )
