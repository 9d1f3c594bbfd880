# pmcoach/services/rubrics.py
from typing import Dict, Tuple

CATEGORIES: Tuple[str, ...] = ("design", "improvement", "rca", "guesstimate")
RANDOM_CATEGORY = "random"

# ordered; the order is the order criteria appear in the grading prompt
RUBRICS: Dict[str, Tuple[str, ...]] = {
    "design": (
        "Problem Structuring & Clarification",
        "User-Centric Thinking",
        "Solution Creativity & Breadth",
        "Prioritization & Tradeoffs",
        "Metrics Definition",
        "Communication & Storytelling",
    ),
    "improvement": (
        "Diagnosis of Current State",
        "User Impact Awareness",
        "Creativity of Solutions",
        "Prioritization & ROI Thinking",
        "Metrics for Measuring Improvement",
        "Communication",
    ),
    "rca": (
        "Problem Understanding & Clarification",
        "Hypothesis Generation",
        "Logical Depth",
        "Use of Data & Metrics",
        "Conclusion & Next Steps",
        "Communication",
    ),
    "guesstimate": (
        "Problem Breakdown & Structure",
        "Logical Assumptions",
        "Mathematical Accuracy",
        "Sanity Checks",
        "Communication",
    ),
}


def rubric_for(category: str) -> Tuple[str, ...]:
    try:
        return RUBRICS[category]
    except KeyError:
        raise ValueError(f"unknown category: {category!r}") from None


def display_name(category: str) -> str:
    return category.replace("_", " ")
