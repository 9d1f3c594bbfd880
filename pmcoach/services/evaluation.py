# pmcoach/services/evaluation.py
import logging
from typing import Any, Dict, Optional, Sequence, Union

from pydantic import ValidationError

from pmcoach.config import settings
from pmcoach.exceptions import EvaluationContractViolation
from pmcoach.schemas.interview import EvaluationResult, Question
from pmcoach.services.conversation import ConversationLog
from pmcoach.services.llm_client import parse_json_object
from pmcoach.services.rubrics import rubric_for

logger = logging.getLogger(__name__)


EVALUATION_PROMPT = """# AI Product Interviewer - Evaluation Mode

You are an extremely strict evaluator. Most candidates will score poorly. A score above 6 should be rare and only for genuinely good performance. DEFAULT TO LOW SCORES.

Analyze the candidate's entire conversation transcript for the just-finished interview.

## Interview Analysis
**Question Type:** {category}
**Question:** {question}

**Interview Conversation:**
{transcript}

**Evaluation Criteria:** {criteria}

Score each criterion from 1-10 based on evidence in the conversation. If no evidence found, score = 1.

The composite_score is the arithmetic mean of all criterion scores.
Return the criterion scores under "dimension_scores" using exactly the criterion names above as keys.
Put concrete strengths in "what_worked_well" and concrete, actionable gaps in "areas_to_improve"."""


def build_evaluation_schema(rubric: Sequence[str]) -> Dict[str, Any]:
    score = {"type": "number", "minimum": 1, "maximum": 10}
    return {
        "type": "object",
        "properties": {
            "composite_score": dict(score),
            "dimension_scores": {
                "type": "object",
                "properties": {criterion: dict(score) for criterion in rubric},
                "required": list(rubric),
                "additionalProperties": False,
            },
            "what_worked_well": {"type": "string"},
            "areas_to_improve": {"type": "string"},
        },
        "required": ["composite_score", "dimension_scores", "what_worked_well", "areas_to_improve"],
    }


def validate_evaluation(raw: Union[str, Dict[str, Any], None], rubric: Sequence[str]) -> EvaluationResult:
    """
    Fail-closed parse of a grading response.

    Accepts the parsed object or raw model text. Any missing key, non-numeric
    or out-of-range score, or rubric key mismatch raises
    EvaluationContractViolation; partial data is never returned.
    """
    data = parse_json_object(raw) if isinstance(raw, str) else raw
    if not isinstance(data, dict):
        raise EvaluationContractViolation("evaluation response is not a JSON object")

    try:
        result = EvaluationResult.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise EvaluationContractViolation(f"evaluation response failed validation: {fields}") from e

    expected = set(rubric)
    got = set(result.dimension_scores)
    missing = sorted(expected - got)
    extra = sorted(got - expected)
    if missing or extra:
        raise EvaluationContractViolation(
            f"dimension_scores keys do not match rubric (missing={missing}, unexpected={extra})"
        )

    # keep rubric order for display
    ordered = {criterion: result.dimension_scores[criterion] for criterion in rubric}
    return result.model_copy(update={"dimension_scores": ordered})


class EvaluationGateway:
    """Grades a finished transcript against the category rubric."""

    def __init__(self, llm, temperature: Optional[float] = None):
        self.llm = llm
        self.temperature = settings.evaluation_temperature if temperature is None else temperature

    def build_prompt(self, question: Question, rubric: Sequence[str], log: ConversationLog) -> str:
        return EVALUATION_PROMPT.format(
            category=question.category,
            question=question.question_text,
            transcript=log.to_transcript(),
            criteria=", ".join(rubric),
        )

    async def evaluate(
        self,
        question: Question,
        log: ConversationLog,
        rubric: Optional[Sequence[str]] = None,
    ) -> EvaluationResult:
        rubric = tuple(rubric or rubric_for(question.category))
        prompt = self.build_prompt(question, rubric, log)
        schema = build_evaluation_schema(rubric)

        raw = await self.llm.generate(prompt, schema, temperature=self.temperature)

        try:
            result = validate_evaluation(raw, rubric)
        except EvaluationContractViolation as e:
            logger.warning(f"[EVAL] contract violation for category={question.category}: {e.detail}")
            raise

        logger.info(
            f"[EVAL] graded category={question.category} composite={result.composite_score:.2f}"
        )
        return result
