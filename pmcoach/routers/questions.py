# pmcoach/routers/questions.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from pmcoach.deps import get_question_store
from pmcoach.schemas.interview import Question
from pmcoach.services.rubrics import CATEGORIES

router = APIRouter(prefix="/api/questions", tags=["questions"])


@router.get("", response_model=List[Question])
def list_questions(
    category: Optional[str] = Query(None, description="design|improvement|rca|guesstimate"),
    store=Depends(get_question_store),
):
    if category is not None and category not in CATEGORIES:
        raise HTTPException(
            status_code=400,
            detail={"message": "invalid_category", "detail": f"Must be one of: {', '.join(CATEGORIES)}"},
        )
    return store.list_questions(category)
