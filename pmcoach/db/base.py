"""
Shared DB base and session factory.
engine, SessionLocal and Base are defined once in pmcoach.db.session.
"""
from pmcoach.db.session import engine, SessionLocal, Base


def init_db(bind=None) -> None:
    # import the tables so they register on Base.metadata
    from pmcoach.models import question, interview_session, user_stats  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


__all__ = ["engine", "SessionLocal", "Base", "init_db"]
