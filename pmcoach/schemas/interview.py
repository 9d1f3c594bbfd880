from datetime import date as Date, datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

Category = Literal["design", "improvement", "rca", "guesstimate"]

# strict: a rubric score must arrive as a JSON number, never a string or bool
RubricScore = Annotated[float, Field(strict=True, ge=1, le=10)]


# -- Core types --

class Question(BaseModel):
    id: str
    question_text: str
    category: Category
    difficulty: str = "intermediate"

    model_config = ConfigDict(from_attributes=True, frozen=True)


class Role(str, Enum):
    INTERVIEWER = "interviewer"
    CANDIDATE = "candidate"


class Turn(BaseModel):
    role: Role
    message: str
    timestamp: datetime

    model_config = ConfigDict(frozen=True)


class Feedback(BaseModel):
    what_worked_well: str
    areas_to_improve: str


class EvaluationResult(BaseModel):
    """Grading output after schema validation.

    ``dimension_scores`` key-set equality with the rubric is checked by the
    gateway, since the rubric differs per category.
    """
    composite_score: RubricScore
    dimension_scores: Dict[str, RubricScore]
    what_worked_well: Annotated[str, Field(strict=True)]
    areas_to_improve: Annotated[str, Field(strict=True)]

    model_config = ConfigDict(extra="ignore", frozen=True)

    @property
    def feedback(self) -> Feedback:
        return Feedback(
            what_worked_well=self.what_worked_well,
            areas_to_improve=self.areas_to_improve,
        )


class SessionRecord(BaseModel):
    id: str
    user_id: str
    question_id: str
    category: Category
    conversation: List[Turn] = Field(default_factory=list)
    duration_minutes: Optional[float] = None
    composite_score: Optional[float] = None
    dimension_scores: Optional[Dict[str, float]] = None
    feedback: Optional[Feedback] = None
    completed: bool = False
    date: Optional[Date] = None
    created_date: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def _scores_iff_completed(self):
        has_scores = self.composite_score is not None and self.dimension_scores is not None
        if self.completed != has_scores:
            raise ValueError("composite_score and dimension_scores must be present iff completed")
        return self


class UserStats(BaseModel):
    current_streak: int = 0
    longest_streak: int = 0
    total_solved: int = 0
    # only categories with at least one completed session appear here
    category_averages: Dict[str, float] = Field(default_factory=dict)
    last_activity_date: Optional[Date] = None
    activity_calendar: Dict[str, int] = Field(default_factory=dict)


# -- Request --

class LoadQuestionRequest(BaseModel):
    category: str = Field("random", description="design|improvement|rca|guesstimate|random")


class CandidateTurnRequest(BaseModel):
    text: str = Field(..., max_length=10000, description="candidate message")


# -- Response --

class InterviewSnapshot(BaseModel):
    user_id: str
    session_id: Optional[str] = None
    state: str
    question: Optional[Question] = None
    time_remaining_seconds: int
    elapsed_seconds: float
    conversation: List[Turn] = Field(default_factory=list)
    last_error: Optional[str] = None


class TurnExchangeResponse(BaseModel):
    candidate_turn: Turn
    interviewer_turn: Turn
    time_remaining_seconds: int


class FinalizeResponse(BaseModel):
    message: str
    session_id: str
    state: str
    composite_score: float
    dimension_scores: Dict[str, float]
    feedback: Feedback
    duration_minutes: float
    stats: Optional[UserStats] = None


class UserStatsResponse(UserStats):
    user_id: str
    avg_score_design: Optional[float] = None
    avg_score_improvement: Optional[float] = None
    avg_score_rca: Optional[float] = None
    avg_score_guesstimate: Optional[float] = None
