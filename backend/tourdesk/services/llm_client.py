"""Unified LLM client — OpenAI first, Anthropic fallback, schema-validated JSON output."""

import json
import logging
from typing import TypeVar

import anthropic
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from tourdesk.config import settings
from tourdesk.errors import NarrativeGenerationError

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def strip_code_fence(raw: str) -> str:
    """Drop markdown fencing some models wrap around JSON."""
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()
    return text


class LLMClient:
    """Async LLM client with OpenAI primary + Anthropic fallback."""

    def __init__(self, openai_client: AsyncOpenAI | None = None, anthropic_client=None):
        self._openai = openai_client
        self._anthropic = anthropic_client

        if self._openai is None and settings.openai_api_key:
            self._openai = AsyncOpenAI(api_key=settings.openai_api_key)
        if self._anthropic is None and settings.anthropic_api_key:
            self._anthropic = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)

    @property
    def available(self) -> bool:
        return self._openai is not None or self._anthropic is not None

    async def complete(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int = 1000,
        temperature: float = 0,
        json_mode: bool = False,
    ) -> str:
        """Raw text from the first provider that answers.

        Raises NarrativeGenerationError if no provider is configured or all fail.
        """
        errors = []
        messages = [{"role": "user", "content": user}]

        if self._openai:
            try:
                kwargs: dict = {
                    "model": settings.openai_model,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                    "messages": [{"role": "system", "content": system}] + messages,
                }
                if json_mode:
                    kwargs["response_format"] = {"type": "json_object"}
                response = await self._openai.chat.completions.create(**kwargs)
                return response.choices[0].message.content.strip()
            except Exception as e:
                errors.append(f"OpenAI: {e}")
                logger.warning(f"OpenAI failed, trying Anthropic: {e}")

        if self._anthropic:
            try:
                response = await self._anthropic.messages.create(
                    model=settings.anthropic_model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    system=system,
                    messages=messages,
                )
                return response.content[0].text.strip()
            except Exception as e:
                errors.append(f"Anthropic: {e}")
                logger.warning(f"Anthropic also failed: {e}")

        if not errors:
            raise NarrativeGenerationError("No LLM provider configured")
        raise NarrativeGenerationError(f"All LLM providers failed: {'; '.join(errors)}")

    async def complete_structured(
        self,
        system: str,
        payload: dict,
        schema: type[SchemaT],
        *,
        max_tokens: int = 1000,
        temperature: float = 0.3,
    ) -> SchemaT:
        """Send a structured object, get one back validated against ``schema``."""
        instructions = (
            f"{system}\n\nRespond with ONLY a JSON object matching this JSON schema:\n"
            f"{json.dumps(schema.model_json_schema(), ensure_ascii=False)}"
        )
        raw = await self.complete(
            instructions,
            json.dumps(payload, ensure_ascii=False, default=str),
            max_tokens=max_tokens,
            temperature=temperature,
            json_mode=True,
        )
        try:
            return schema.model_validate_json(strip_code_fence(raw))
        except ValidationError as e:
            raise NarrativeGenerationError(f"LLM output does not match {schema.__name__}: {e}") from e


llm_client = LLMClient()
