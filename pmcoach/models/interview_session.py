# pmcoach/models/interview_session.py
from datetime import datetime, timezone

from sqlalchemy import Column, String, Float, Boolean, Date, DateTime, JSON, ForeignKey, Index
from pmcoach.db.base import Base


def _utcnow():
    return datetime.now(timezone.utc)


class InterviewSession(Base):
    __tablename__ = "interview_sessions"

    id = Column(String(36), primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    question_id = Column(String(36), ForeignKey("questions.id"), nullable=False)
    category = Column(String(20), nullable=False)

    # [{"role": "interviewer|candidate", "message": "...", "timestamp": "..."}, ...]
    conversation = Column(JSON, nullable=False, default=list)
    duration_minutes = Column(Float, nullable=True)

    # present iff completed
    composite_score = Column(Float, nullable=True)
    dimension_scores = Column(JSON, nullable=True)
    feedback = Column(JSON, nullable=True)  # {"what_worked_well", "areas_to_improve"}

    completed = Column(Boolean, nullable=False, default=False)
    date = Column(Date, nullable=True)  # activity day, set at completion
    created_date = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_interview_sessions_user_id_completed", "user_id", "completed"),
        Index("ix_interview_sessions_user_id_created_date", "user_id", "created_date"),
    )
