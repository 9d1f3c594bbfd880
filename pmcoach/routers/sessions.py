from typing import List

from fastapi import APIRouter, Depends

from pmcoach.deps import get_session_store
from pmcoach.schemas.interview import SessionRecord

router = APIRouter(prefix="/api/users", tags=["sessions"])


# session history for a user (newest first)
@router.get("/{user_id}/sessions", response_model=List[SessionRecord])
def list_sessions(user_id: str, store=Depends(get_session_store)):
    return store.list_sessions(user_id)


# one session with its conversation and feedback
@router.get("/{user_id}/sessions/{session_id}", response_model=SessionRecord)
def get_session(user_id: str, session_id: str, store=Depends(get_session_store)):
    # scoped to the owner: someone else's session id reads as not found
    return store.get_session(user_id, session_id)
