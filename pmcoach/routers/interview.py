# pmcoach/routers/interview.py
# Live interview: load question -> start -> turns -> end (or abandon). One interview per user.
import logging
from typing import Union

from fastapi import APIRouter, Depends, Response, status

from pmcoach.deps import get_registry
from pmcoach.schemas.interview import (
    CandidateTurnRequest,
    FinalizeResponse,
    InterviewSnapshot,
    LoadQuestionRequest,
    TurnExchangeResponse,
)
from pmcoach.services.session_controller import SessionController

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["interview"])


def _snapshot(controller: SessionController) -> InterviewSnapshot:
    return InterviewSnapshot(
        user_id=controller.user_id,
        session_id=controller.session_id,
        state=controller.state.value,
        question=controller.question,
        time_remaining_seconds=controller.time_remaining,
        elapsed_seconds=round(controller.elapsed_seconds, 1),
        conversation=list(controller.turns),
        last_error=controller.last_error.code if controller.last_error else None,
    )


# 1) question for a category (or "random")
@router.post("/{user_id}/interview", response_model=InterviewSnapshot)
def load_question(
    user_id: str,
    payload: LoadQuestionRequest,
    registry=Depends(get_registry),
):
    controller = registry.open(user_id)
    controller.load_question(payload.category)
    return _snapshot(controller)


# 2) start the timer, interviewer greets
@router.post("/{user_id}/interview/start", response_model=InterviewSnapshot)
async def start_interview(user_id: str, registry=Depends(get_registry)):
    controller = registry.get(user_id)
    await controller.start()
    return _snapshot(controller)


# 3) candidate message -> interviewer reply
@router.post("/{user_id}/interview/turns", response_model=TurnExchangeResponse)
async def submit_turn(
    user_id: str,
    payload: CandidateTurnRequest,
    registry=Depends(get_registry),
):
    controller = registry.get(user_id)
    candidate, reply = await controller.submit_candidate_turn(payload.text)
    return TurnExchangeResponse(
        candidate_turn=candidate,
        interviewer_turn=reply,
        time_remaining_seconds=controller.time_remaining,
    )


# 4) explicit end -> evaluation -> stats
@router.post("/{user_id}/interview/end", response_model=None)
async def end_interview(
    user_id: str,
    response: Response,
    registry=Depends(get_registry),
) -> Union[FinalizeResponse, InterviewSnapshot]:
    controller = registry.get(user_id)
    outcome = await controller.end_session()

    if outcome is None:
        # another trigger is already finalizing; client polls the snapshot
        response.status_code = status.HTTP_202_ACCEPTED
        return _snapshot(controller)

    evaluation = outcome.evaluation
    return FinalizeResponse(
        message="session_completed",
        session_id=outcome.session_id,
        state=controller.state.value,
        composite_score=evaluation.composite_score,
        dimension_scores=dict(evaluation.dimension_scores),
        feedback=evaluation.feedback,
        duration_minutes=round(outcome.duration_minutes, 2),
        stats=outcome.stats,
    )


# 5) abandon: stop the timer, nothing is evaluated, record stays completed=false
# async so the countdown is cancelled on the event loop that owns it
@router.delete("/{user_id}/interview", response_model=InterviewSnapshot)
async def abandon_interview(user_id: str, registry=Depends(get_registry)):
    return _snapshot(registry.abandon(user_id))


# status (timer / conversation / last error)
@router.get("/{user_id}/interview", response_model=InterviewSnapshot)
def get_interview(user_id: str, registry=Depends(get_registry)):
    return _snapshot(registry.get(user_id))
