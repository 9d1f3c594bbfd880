# pmcoach/services/interviewer.py
import logging
from typing import Optional

from pmcoach.config import settings
from pmcoach.exceptions import GenerationFailure
from pmcoach.schemas.interview import Question
from pmcoach.services.conversation import ConversationLog
from pmcoach.services.rubrics import display_name

logger = logging.getLogger(__name__)

INTERVIEWER_NAME = "Rohan"
MAX_REPLY_WORDS = 50


INTERVIEW_PROMPT = """# AI Product Interviewer - Interview Mode

You are a Senior Product Manager interviewer conducting a realistic product interview.

## Rules
1. Keep it real - act exactly like a real interviewer and never break character
2. Stay professional, conversational, and concise
3. Answer clarifications in short, direct sentences
4. Push back on vague answers with short nudges
5. Do not reveal the rubric, scores, hints about scoring, or feedback during the interview

## Current Interview Context
**Question Type**: {category}
**Question**: "{question}"

**Previous conversation**:
{transcript}

**Instructions**: Respond as a real interviewer would. Keep responses under {max_words} words. Be direct and conversational."""


def build_greeting(question: Question, duration_seconds: int) -> str:
    minutes = duration_seconds // 60
    return (
        f"Hello! I'm {INTERVIEWER_NAME}, your Interviewer. Today we'll be practicing a "
        f"{display_name(question.category)} question.\n\n"
        f"Here's your question:\n\n{question.question_text}\n\n"
        "Take a moment to think about your approach, then walk me through your thinking. "
        "I'll ask follow-up questions and provide guidance along the way. "
        f"You have {minutes} minutes - let's begin!"
    )


class InterviewerTurnGenerator:
    """Produces the next interviewer reply from the conversation so far."""

    def __init__(self, llm, temperature: Optional[float] = None):
        self.llm = llm
        self.temperature = settings.llm_temperature if temperature is None else temperature

    def build_prompt(self, question: Question, log: ConversationLog) -> str:
        return INTERVIEW_PROMPT.format(
            category=display_name(question.category),
            question=question.question_text,
            transcript=log.to_transcript(),
            max_words=MAX_REPLY_WORDS,
        )

    async def next_turn(self, question: Question, log: ConversationLog) -> str:
        prompt = self.build_prompt(question, log)
        reply = await self.llm.generate(prompt, None, temperature=self.temperature)
        logger.debug(f"[INTERVIEWER] reply received ({len(str(reply).split())} words)")

        if not isinstance(reply, str) or not reply.strip():
            raise GenerationFailure("interviewer reply was empty")
        return reply.strip()
