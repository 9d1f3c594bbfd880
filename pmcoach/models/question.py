# pmcoach/models/question.py
from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, DateTime, Index
from pmcoach.db.base import Base


def _utcnow():
    return datetime.now(timezone.utc)


class PracticeQuestion(Base):
    __tablename__ = "questions"

    id = Column(String(36), primary_key=True, index=True)  # uuid4
    question_text = Column(Text, nullable=False)
    category = Column(String(20), nullable=False)  # design|improvement|rca|guesstimate
    difficulty = Column(String(20), nullable=False, default="intermediate")
    created_date = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_questions_category", "category"),
    )
