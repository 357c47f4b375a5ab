from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Mapping, Sequence

import httpx

from storyplay.config import settings
from storyplay.modules.llm.base import LLMProvider
from storyplay.modules.llm.prompts import (
    build_continue_prompt,
    build_customization_questions_prompt,
    build_ending_prompt,
    build_opening_prompt,
)
from storyplay.modules.llm.providers import FakeProvider, GeminiProvider
from storyplay.modules.llm.runtime.errors import (
    NARRATIVE_ERROR_EMPTY,
    NARRATIVE_ERROR_HTTP_STATUS,
    NARRATIVE_ERROR_NETWORK,
    NARRATIVE_ERROR_PROVIDER,
    NARRATIVE_ERROR_TIMEOUT,
    LLMUnavailableError,
)
from storyplay.modules.llm.schemas import CustomizationQuestion

logger = logging.getLogger(__name__)


def narrative_error_kind(exc: Exception) -> str:
    if isinstance(exc, LLMUnavailableError):
        return exc.error_kind
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return NARRATIVE_ERROR_TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError):
        return NARRATIVE_ERROR_HTTP_STATUS
    if isinstance(exc, httpx.TransportError):
        return NARRATIVE_ERROR_NETWORK
    return NARRATIVE_ERROR_PROVIDER


class StoryEngine:
    """Request/response boundary to the story model.

    Every call is a single attempt bounded by ``llm_timeout_s``; failures are
    surfaced once as ``LLMUnavailableError`` and never retried here.
    """

    def __init__(self, providers: Mapping[str, LLMProvider] | None = None, *, provider_name: str | None = None):
        if providers is None:
            providers = {
                "fake": FakeProvider(),
                "gemini": GeminiProvider(
                    api_key=settings.llm_gemini_api_key,
                    base_url=settings.llm_gemini_base_url,
                    temperature=settings.llm_temperature,
                    max_output_tokens=settings.llm_max_output_tokens,
                ),
            }
        self.providers: dict[str, LLMProvider] = dict(providers)
        self.provider_name = provider_name or settings.llm_provider

    @property
    def provider(self) -> LLMProvider:
        provider = self.providers.get(self.provider_name)
        if provider is None:
            raise LLMUnavailableError(
                f"unknown story provider: {self.provider_name}",
                error_kind=NARRATIVE_ERROR_PROVIDER,
            )
        return provider

    async def _call_once(self, prompt: str, *, operation: str) -> str:
        provider = self.provider
        timeout_s = max(0.1, float(settings.llm_timeout_s))
        request_id = str(uuid.uuid4())
        try:
            text, usage = await asyncio.wait_for(
                provider.generate(
                    prompt,
                    request_id=request_id,
                    timeout_s=timeout_s,
                    model=settings.llm_model_generate,
                    connect_timeout_s=min(float(settings.llm_connect_timeout_s), timeout_s),
                ),
                timeout=timeout_s,
            )
        except LLMUnavailableError:
            raise
        except Exception as exc:  # noqa: BLE001
            kind = narrative_error_kind(exc)
            logger.warning("story model %s failed | provider=%s kind=%s: %s", operation, provider.name, kind, exc)
            raise LLMUnavailableError(f"story model {operation} failed: {exc or kind}", error_kind=kind) from exc

        if not isinstance(text, str) or not text.strip():
            raise LLMUnavailableError(f"story model {operation} returned no text", error_kind=NARRATIVE_ERROR_EMPTY)
        logger.debug(
            "story model %s ok | provider=%s latency_ms=%s",
            operation,
            provider.name,
            (usage or {}).get("latency_ms"),
        )
        return text

    async def generate_customization_questions(self, title: str, description: str) -> str:
        return await self._call_once(
            build_customization_questions_prompt(title, description),
            operation="customization_questions",
        )

    async def generate_opening(
        self,
        title: str,
        description: str,
        customization_answers: Mapping[str, str] | None = None,
        customization_questions: Sequence[CustomizationQuestion] | None = None,
    ) -> str:
        prompt = build_opening_prompt(title, description, customization_answers, customization_questions)
        return await self._call_once(prompt, operation="opening")

    async def continue_story(
        self,
        title: str,
        accumulated_context: str,
        last_choice_text: str,
        full_history_text: str,
        customization_answers: Mapping[str, str] | None = None,
        customization_questions: Sequence[CustomizationQuestion] | None = None,
        *,
        story_parts: int = 0,
        user_choices: int = 0,
        is_custom_input: bool = False,
    ) -> str:
        prompt = build_continue_prompt(
            title,
            accumulated_context,
            last_choice_text,
            full_history_text,
            story_parts=story_parts,
            user_choices=user_choices,
            is_custom_input=is_custom_input,
            answers=customization_answers,
            questions=customization_questions,
        )
        return await self._call_once(prompt, operation="continue")

    async def generate_ending(
        self,
        title: str,
        full_history_text: str,
        reason: str | None = None,
        customization_answers: Mapping[str, str] | None = None,
        customization_questions: Sequence[CustomizationQuestion] | None = None,
    ) -> str:
        prompt = build_ending_prompt(title, full_history_text, reason, customization_answers, customization_questions)
        return await self._call_once(prompt, operation="ending")


_engine: StoryEngine | None = None


def get_story_engine() -> StoryEngine:
    global _engine
    if _engine is None:
        _engine = StoryEngine()
    return _engine
