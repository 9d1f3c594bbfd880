# pmcoach/db/session.py
# SQLAlchemy base setup. The URL comes from DATABASE_URL in .env.

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from pmcoach.config import settings

DATABASE_URL = settings.database_url

if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set.")


def build_engine(url: str):
    if url.startswith("sqlite"):
        # sqlite pools do not take the Postgres sizing knobs
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_pre_ping=True,  # detect dropped connections
        pool_size=30,
        max_overflow=0,
        pool_timeout=30,
    )


engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
