# pmcoach/deps.py
from pmcoach.config import settings
from pmcoach.services.clock import SystemClock, resolve_timezone
from pmcoach.services.evaluation import EvaluationGateway
from pmcoach.services.interviewer import InterviewerTurnGenerator
from pmcoach.services.llm_client import OpenAITextGenerator
from pmcoach.services.session_controller import SessionController
from pmcoach.services.session_registry import SessionRegistry
from pmcoach.services.stores import SqlQuestionStore, SqlSessionStore, SqlStatsStore

# ----------------------------
# process-wide collaborators
# ----------------------------
clock = SystemClock(resolve_timezone(settings.local_timezone))
llm = OpenAITextGenerator()

question_store = SqlQuestionStore()
session_store = SqlSessionStore()
stats_store = SqlStatsStore()

interviewer = InterviewerTurnGenerator(llm)
evaluator = EvaluationGateway(llm)


def build_controller(user_id: str) -> SessionController:
    return SessionController(
        user_id=user_id,
        question_store=question_store,
        session_store=session_store,
        stats_store=stats_store,
        interviewer=interviewer,
        evaluator=evaluator,
        clock=clock,
    )


registry = SessionRegistry(build_controller)


# ----------------------------
# FastAPI dependencies
# ----------------------------
def get_registry() -> SessionRegistry:
    return registry


def get_question_store() -> SqlQuestionStore:
    return question_store


def get_session_store() -> SqlSessionStore:
    return session_store


def get_stats_store() -> SqlStatsStore:
    return stats_store
