import asyncio
import os
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

# keep the app-level engine off disk; tests build their own stores below
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pmcoach.db.base import init_db
from pmcoach.services.evaluation import EvaluationGateway
from pmcoach.services.interviewer import InterviewerTurnGenerator
from pmcoach.services.seed import seed_questions
from pmcoach.services.session_controller import SessionController
from pmcoach.services.stores import SqlQuestionStore, SqlSessionStore, SqlStatsStore


class FakeClock:
    """Deterministic clock; sleep() advances time instead of waiting (unless realtime)."""

    def __init__(self, start=None, tz=timezone.utc, realtime=False):
        self.tz = tz
        self._start = start or datetime(2024, 1, 5, 10, 0, tzinfo=timezone.utc)
        self._mono = 0.0
        self.realtime = realtime

    def now(self):
        return (self._start + timedelta(seconds=self._mono)).astimezone(self.tz)

    def today(self):
        return self.now().date()

    def monotonic(self):
        return self._mono

    def advance(self, seconds):
        self._mono += seconds

    async def sleep(self, seconds):
        if self.realtime:
            await asyncio.sleep(seconds)
        self._mono += seconds
        await asyncio.sleep(0)


def evaluation_for(rubric, score=6.0, composite=None):
    return {
        "composite_score": composite if composite is not None else score,
        "dimension_scores": {criterion: score for criterion in rubric},
        "what_worked_well": "Clear structure.",
        "areas_to_improve": "Define success metrics.",
    }


class FakeLLM:
    """
    Scripted text generator.

    ``replies`` feed interviewer turns, ``evaluations`` feed schema calls;
    an Exception item is raised instead of returned. ``evaluation_delay`` holds
    schema calls open (real seconds) to keep a finalization in flight.
    """

    def __init__(self, replies=None, evaluations=None, evaluation_delay=0.0):
        self.replies = list(replies or [])
        self.evaluations = list(evaluations or [])
        self.evaluation_delay = evaluation_delay
        self.text_calls = []
        self.schema_calls = []

    async def generate(self, prompt, schema=None, temperature=None):
        await asyncio.sleep(0)
        if schema is None:
            self.text_calls.append(prompt)
            item = self.replies.pop(0) if self.replies else "Interesting. Who is the primary user?"
        else:
            self.schema_calls.append((prompt, schema))
            if self.evaluation_delay:
                await asyncio.sleep(self.evaluation_delay)
            if self.evaluations:
                item = self.evaluations.pop(0)
            else:
                item = evaluation_for(schema["properties"]["dimension_scores"]["required"])
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def stores(session_factory):
    questions = SqlQuestionStore(session_factory)
    seed_questions(questions)
    return SimpleNamespace(
        questions=questions,
        sessions=SqlSessionStore(session_factory),
        stats=SqlStatsStore(session_factory),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def make_controller(stores, clock, llm):
    def factory(user_id="user-1", **overrides):
        kwargs = dict(
            user_id=user_id,
            question_store=stores.questions,
            session_store=stores.sessions,
            stats_store=stores.stats,
            interviewer=InterviewerTurnGenerator(llm),
            evaluator=EvaluationGateway(llm),
            clock=clock,
            duration_seconds=1800,
            tick_seconds=1.0,
        )
        kwargs.update(overrides)
        return SessionController(**kwargs)

    return factory
