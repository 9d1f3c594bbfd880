"""
Text-generation service adapter (OpenAI chat completions).

The engine treats generation as a black box: ``generate(prompt, schema)``
returns plain text, or for a schema request the parsed JSON object (falling
back to the raw text when the model did not return parseable JSON, so the
caller can decide how to fail).
"""
import asyncio
import json
import logging
import re
from typing import Any, Dict, Optional, Union

from openai import AsyncOpenAI, OpenAIError

from pmcoach.config import settings
from pmcoach.exceptions import GenerationFailure

logger = logging.getLogger(__name__)

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Parse a JSON object out of model text.

    Tries the whole text first, then the outermost ``{...}`` block (models
    sometimes wrap JSON in prose or code fences). Returns None when nothing
    parses to an object.
    """
    if not text:
        return None
    try:
        data = json.loads(text)
    except ValueError:
        match = _JSON_BLOCK.search(text)
        if not match:
            return None
        try:
            data = json.loads(match.group(0))
        except ValueError:
            return None
    return data if isinstance(data, dict) else None


class OpenAITextGenerator:

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.api_key = api_key or settings.openai_api_key
        self.model = model or settings.openai_model
        self.timeout_seconds = timeout_seconds or settings.llm_timeout_seconds
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            try:
                self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout_seconds)
            except OpenAIError as e:
                raise GenerationFailure(f"openai client unavailable: {e}") from e
        return self._client

    async def generate(
        self,
        prompt: str,
        schema: Optional[Dict[str, Any]] = None,
        temperature: Optional[float] = None,
    ) -> Union[str, Dict[str, Any]]:
        client = self._get_client()

        kwargs: Dict[str, Any] = {}
        if schema is not None:
            # json_object mode needs the word JSON and the shape in the prompt itself
            prompt = (
                f"{prompt}\n\nRespond with a single JSON object matching this JSON schema:\n"
                f"{json.dumps(schema, indent=2)}"
            )
            kwargs["response_format"] = {"type": "json_object"}

        try:
            completion = await asyncio.wait_for(
                client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    temperature=settings.llm_temperature if temperature is None else temperature,
                    **kwargs,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"[LLM] generation timed out after {self.timeout_seconds}s")
            raise GenerationFailure("text generation timed out") from e
        except OpenAIError as e:
            logger.warning(f"[LLM] generation failed: {e!r}")
            raise GenerationFailure(f"text generation failed: {e}") from e

        content = (completion.choices[0].message.content or "").strip()
        if schema is None:
            return content

        data = parse_json_object(content)
        if data is None:
            logger.warning("[LLM] schema request returned non-JSON content")
            return content
        return data
