from fastapi import APIRouter, Depends

from pmcoach.deps import get_stats_store
from pmcoach.schemas.interview import UserStats, UserStatsResponse
from pmcoach.services.rubrics import CATEGORIES

router = APIRouter(prefix="/api/users", tags=["stats"])


# dashboard stats: streaks, totals, per-category averages, activity calendar
# GET /api/users/{user_id}/stats
@router.get("/{user_id}/stats", response_model=UserStatsResponse)
def get_user_stats(user_id: str, store=Depends(get_stats_store)):
    stats = store.get_user_stats(user_id) or UserStats()  # no history yet -> zeros

    return UserStatsResponse(
        user_id=user_id,
        **stats.model_dump(),
        **{f"avg_score_{c}": stats.category_averages.get(c) for c in CATEGORIES},
    )
