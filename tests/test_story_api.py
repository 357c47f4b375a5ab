from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from storyplay.config import settings
from storyplay.main import app
from storyplay.modules.llm.base import LLMProvider
from storyplay.modules.llm.providers import FakeProvider
from storyplay.modules.llm.runtime.engine import StoryEngine, get_story_engine
from storyplay.modules.llm.runtime.errors import NARRATIVE_ERROR_TIMEOUT, LLMUnavailableError
from storyplay.modules.session.errors import PersistenceError
from storyplay.modules.session.normalize import normalize_record
from storyplay.modules.session.store import InMemorySessionStore, SqlSessionStore
from storyplay.modules.story.router import get_session_store


class _TimeoutProvider(LLMProvider):
    name = "timeout"

    async def generate(self, prompt, *, request_id, timeout_s, model, connect_timeout_s=None):
        raise LLMUnavailableError("model timed out", error_kind=NARRATIVE_ERROR_TIMEOUT)


def _client_with(provider: LLMProvider, name: str) -> TestClient:
    app.dependency_overrides[get_story_engine] = lambda: StoryEngine({name: provider}, provider_name=name)
    return TestClient(app)


def teardown_function() -> None:
    app.dependency_overrides.clear()


def test_health_endpoint() -> None:
    with TestClient(app) as client:
        res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"


def test_customization_questions_endpoint() -> None:
    with _client_with(FakeProvider(), "fake") as client:
        res = client.post("/api/customization-questions", json={"title": "Crown", "description": "Heist"})

    assert res.status_code == 200
    questions = res.json()["questions"]
    assert questions[0]["maxLength"] == 30
    assert questions[1]["type"] == "multiple_choice"


def test_customization_questions_fall_back_when_model_is_down() -> None:
    provider = FakeProvider()
    provider.fail_generate = True
    with _client_with(provider, "fake") as client:
        res = client.post("/api/customization-questions", json={"title": "Crown"})

    assert res.status_code == 200
    assert res.json()["questions"][0]["question"] == "What is your character's name?"


def test_generate_and_continue_endpoints() -> None:
    with _client_with(FakeProvider(), "fake") as client:
        opening = client.post(
            "/api/generate",
            json={
                "title": "Crown",
                "description": "Heist",
                "customizationAnswers": {"0": "Aria"},
                "customizationQuestions": [{"question": "What is your character's name?", "type": "text"}],
            },
        )
        body = opening.json()
        step = client.post(
            "/api/continue",
            json={
                "title": "Crown",
                "storyContext": body["story"],
                "userChoice": body["choices"][0],
                "fullHistory": body["story"],
                "storyParts": 2,
                "userChoices": 1,
            },
        )

    assert opening.status_code == 200
    assert len(body["choices"]) == 3
    assert body["isEnding"] is False
    assert body["imagePrompt"].startswith("person named Aria")
    assert body["sceneImage"].startswith(settings.scene_image_base_url)

    assert step.status_code == 200
    assert step.json()["story"].startswith("You decide to examine the glowing door")


def test_continue_past_choice_limit_concludes_story() -> None:
    settings.story_max_choice_points = 3
    with _client_with(FakeProvider(), "fake") as client:
        res = client.post(
            "/api/continue",
            json={"title": "Crown", "userChoice": "Open the vault", "userChoices": 3, "storyParts": 7},
        )

    body = res.json()
    assert res.status_code == 200
    assert body["isEnding"] is True
    assert body["endingType"] == "conclusion"
    assert body["choices"] == []


def test_end_story_endpoint() -> None:
    with _client_with(FakeProvider(), "fake") as client:
        res = client.post("/api/end-story", json={"title": "Crown", "fullHistory": "It began.", "reason": "tired"})

    body = res.json()
    assert res.status_code == 200
    assert body["isEnding"] is True
    assert body["endingType"] == "bittersweet"
    assert body["choices"] == []
    assert body["imagePrompt"]


def test_model_timeout_maps_to_504() -> None:
    with _client_with(_TimeoutProvider(), "timeout") as client:
        res = client.post("/api/generate", json={"title": "Crown"})

    assert res.status_code == 504
    assert res.json()["detail"]["code"] == NARRATIVE_ERROR_TIMEOUT


def test_model_failure_maps_to_500() -> None:
    provider = FakeProvider()
    provider.fail_generate = True
    with _client_with(provider, "fake") as client:
        res = client.post("/api/end-story", json={"title": "Crown"})

    assert res.status_code == 500


def test_missing_title_is_rejected() -> None:
    with TestClient(app) as client:
        res = client.post("/api/generate", json={"description": "no title"})
    assert res.status_code == 422


def test_user_sessions_endpoint_lists_saved_sessions() -> None:
    store = SqlSessionStore()
    asyncio.run(
        store.put(
            "s-1",
            normalize_record(
                {
                    "session_id": "s-1",
                    "user_id": "u-1",
                    "story_title": "Crown",
                    "turns": [{"id": 1, "content": "Opening.", "role": "narrator"}],
                }
            ),
        )
    )

    with TestClient(app) as client:
        res = client.get("/api/users/u-1/sessions")
        empty = client.get("/api/users/nobody/sessions")

    assert res.status_code == 200
    sessions = res.json()["sessions"]
    assert [item["session_id"] for item in sessions] == ["s-1"]
    assert sessions[0]["total_parts"] == 1
    assert empty.json() == {"sessions": []}


class _OfflineStore(InMemorySessionStore):
    async def query_by_user(self, user_id: str) -> list[dict]:
        raise PersistenceError("session store is offline")


def test_user_sessions_store_failure_maps_to_500_detail() -> None:
    app.dependency_overrides[get_session_store] = _OfflineStore
    with TestClient(app) as client:
        res = client.get("/api/users/u-1/sessions")

    assert res.status_code == 500
    assert res.json()["detail"] == {"code": "SESSION_STORE_UNAVAILABLE", "message": "session store is offline"}
