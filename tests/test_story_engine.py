import asyncio

import httpx
import pytest

from storyplay.config import settings
from storyplay.modules.llm.base import LLMProvider
from storyplay.modules.llm.providers import FakeProvider
from storyplay.modules.llm.runtime.engine import StoryEngine, get_story_engine, narrative_error_kind
from storyplay.modules.llm.runtime.errors import (
    NARRATIVE_ERROR_EMPTY,
    NARRATIVE_ERROR_HTTP_STATUS,
    NARRATIVE_ERROR_NETWORK,
    NARRATIVE_ERROR_PROVIDER,
    NARRATIVE_ERROR_TIMEOUT,
    LLMUnavailableError,
    TransientNetworkError,
)
from storyplay.modules.story import service


class _SlowProvider(LLMProvider):
    name = "slow"

    def __init__(self):
        self.calls = 0

    async def generate(self, prompt, *, request_id, timeout_s, model, connect_timeout_s=None):
        self.calls += 1
        await asyncio.sleep(5)
        return "{}", {}


class _StaticProvider(LLMProvider):
    name = "static"

    def __init__(self, text):
        self.text = text

    async def generate(self, prompt, *, request_id, timeout_s, model, connect_timeout_s=None):
        return self.text, {"latency_ms": 1}


def test_timeout_is_reported_once_without_retry() -> None:
    settings.llm_timeout_s = 0.1
    provider = _SlowProvider()
    engine = StoryEngine({"slow": provider}, provider_name="slow")

    with pytest.raises(TransientNetworkError) as excinfo:
        asyncio.run(engine.generate_opening("Title", "Description"))

    assert excinfo.value.error_kind == NARRATIVE_ERROR_TIMEOUT
    assert provider.calls == 1


def test_empty_text_is_unavailable() -> None:
    engine = StoryEngine({"static": _StaticProvider("   ")}, provider_name="static")

    with pytest.raises(LLMUnavailableError) as excinfo:
        asyncio.run(engine.generate_ending("Title", "history"))
    assert excinfo.value.error_kind == NARRATIVE_ERROR_EMPTY


def test_provider_error_is_wrapped() -> None:
    provider = FakeProvider()
    provider.fail_generate = True
    engine = StoryEngine({"fake": provider}, provider_name="fake")

    with pytest.raises(LLMUnavailableError) as excinfo:
        asyncio.run(engine.generate_customization_questions("Title", "Description"))
    assert excinfo.value.error_kind == NARRATIVE_ERROR_PROVIDER


def test_unknown_provider_is_unavailable() -> None:
    engine = StoryEngine({"fake": FakeProvider()}, provider_name="missing")

    with pytest.raises(LLMUnavailableError):
        asyncio.run(engine.generate_opening("Title", "Description"))


def test_narrative_error_kind_classifies_httpx_errors() -> None:
    request = httpx.Request("POST", "http://example.test")
    response = httpx.Response(503, request=request)

    assert narrative_error_kind(httpx.ReadTimeout("slow", request=request)) == NARRATIVE_ERROR_TIMEOUT
    assert narrative_error_kind(httpx.ConnectError("refused", request=request)) == NARRATIVE_ERROR_NETWORK
    assert (
        narrative_error_kind(httpx.HTTPStatusError("bad", request=request, response=response))
        == NARRATIVE_ERROR_HTTP_STATUS
    )
    assert narrative_error_kind(ValueError("boom")) == NARRATIVE_ERROR_PROVIDER


def test_get_story_engine_is_cached() -> None:
    assert get_story_engine() is get_story_engine()
    assert get_story_engine().provider_name == "fake"


def test_customization_questions_fall_back_to_defaults_on_bad_json() -> None:
    engine = StoryEngine({"static": _StaticProvider("no questions here")}, provider_name="static")

    questions = asyncio.run(service.fetch_customization_questions(engine, "Title", "Description"))

    assert [question.question for question in questions] == [
        question.question for question in service.default_customization_questions()
    ]


def test_customization_questions_parsed_from_fake_model() -> None:
    engine = StoryEngine({"fake": FakeProvider()}, provider_name="fake")

    questions = asyncio.run(service.fetch_customization_questions(engine, "Title", "Description"))

    assert len(questions) == 3
    assert questions[0].max_length == 30
    assert questions[1].options == ["Male", "Female"]
