# pmcoach/models/user_stats.py
# Derived table: always rewritten wholesale from the user's completed sessions.
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Float, Date, DateTime, JSON
from pmcoach.db.base import Base


def _utcnow():
    return datetime.now(timezone.utc)


class UserStatsRecord(Base):
    __tablename__ = "user_stats"

    user_id = Column(String(64), primary_key=True, index=True)

    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    total_solved = Column(Integer, nullable=False, default=0)

    avg_score_design = Column(Float, nullable=True)
    avg_score_improvement = Column(Float, nullable=True)
    avg_score_rca = Column(Float, nullable=True)
    avg_score_guesstimate = Column(Float, nullable=True)

    last_activity_date = Column(Date, nullable=True)
    activity_calendar = Column(JSON, nullable=False, default=dict)  # {"YYYY-MM-DD": count}

    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
