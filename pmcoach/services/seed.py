# pmcoach/services/seed.py
import logging
from typing import Dict, List

logger = logging.getLogger(__name__)

SAMPLE_QUESTIONS: List[Dict[str, str]] = [
    {
        "question_text": "Design a mobile app for busy parents to manage their family's schedule and activities.",
        "category": "design",
        "difficulty": "intermediate",
    },
    {
        "question_text": "How would you improve the user experience of online grocery shopping?",
        "category": "improvement",
        "difficulty": "intermediate",
    },
    {
        "question_text": (
            "Instagram Stories engagement has dropped by 15% over the past month. "
            "What could be causing this and how would you investigate?"
        ),
        "category": "rca",
        "difficulty": "intermediate",
    },
    {
        "question_text": "Estimate the number of pizza slices consumed in New York City on a typical Friday night.",
        "category": "guesstimate",
        "difficulty": "intermediate",
    },
    {
        "question_text": "Design a product to help remote workers stay connected with their colleagues.",
        "category": "design",
        "difficulty": "beginner",
    },
    {
        "question_text": "How would you improve the checkout process for an e-commerce website?",
        "category": "improvement",
        "difficulty": "beginner",
    },
]


def seed_questions(question_store) -> int:
    """Insert the sample pool into an empty question table. Returns rows added."""
    if question_store.count() > 0:
        return 0
    added = question_store.add_questions(SAMPLE_QUESTIONS)
    logger.info(f"[SEED] inserted {len(added)} sample questions")
    return len(added)
