from __future__ import annotations

import time

from fastapi import APIRouter, Depends, HTTPException, Query

from storyplay.modules.llm.runtime.engine import StoryEngine, get_story_engine
from storyplay.modules.llm.runtime.errors import NARRATIVE_ERROR_TIMEOUT, LLMUnavailableError
from storyplay.modules.llm.schemas import StoryResponse
from storyplay.modules.session.errors import PersistenceError
from storyplay.modules.session.manager import list_user_sessions
from storyplay.modules.session.store import SessionStore, SqlSessionStore
from storyplay.modules.story import service
from storyplay.modules.story.scene_image import build_scene_image_url
from storyplay.modules.story.schemas import (
    ContinueRequest,
    CustomizationQuestionsRequest,
    CustomizationQuestionsResponse,
    EndStoryRequest,
    GenerateRequest,
    StoryTurnOut,
)

router = APIRouter(prefix="/api", tags=["story"])


def get_session_store() -> SessionStore:
    return SqlSessionStore()


def _unavailable(exc: LLMUnavailableError) -> HTTPException:
    status_code = 504 if exc.error_kind == NARRATIVE_ERROR_TIMEOUT else 500
    return HTTPException(status_code=status_code, detail={"code": exc.error_kind, "message": str(exc)})


def _turn_out(response: StoryResponse) -> dict:
    payload = response.to_payload()
    payload["sceneImage"] = build_scene_image_url(response.image_prompt, seed=int(time.time() * 1000))
    return payload


@router.post("/customization-questions", response_model=CustomizationQuestionsResponse, response_model_by_alias=True)
async def customization_questions(
    payload: CustomizationQuestionsRequest,
    engine: StoryEngine = Depends(get_story_engine),
):
    try:
        questions = await service.fetch_customization_questions(engine, payload.title, payload.description)
    except LLMUnavailableError:
        questions = service.default_customization_questions()
    return {"questions": questions}


@router.post("/generate", response_model=StoryTurnOut, response_model_by_alias=True)
async def generate_story(
    payload: GenerateRequest,
    engine: StoryEngine = Depends(get_story_engine),
):
    try:
        response = await service.opening_turn(
            engine,
            payload.title,
            payload.description,
            payload.customization_answers,
            payload.customization_questions,
        )
    except LLMUnavailableError as exc:
        raise _unavailable(exc) from exc
    return _turn_out(response)


@router.post("/continue", response_model=StoryTurnOut, response_model_by_alias=True)
async def continue_story(
    payload: ContinueRequest,
    engine: StoryEngine = Depends(get_story_engine),
):
    try:
        response = await service.continuation_turn(
            engine,
            payload.title,
            payload.story_context,
            payload.user_choice,
            payload.full_history,
            payload.customization_answers,
            payload.customization_questions,
            story_parts=payload.story_parts,
            user_choices=payload.user_choices,
            is_custom_input=payload.is_custom_input,
        )
    except LLMUnavailableError as exc:
        raise _unavailable(exc) from exc
    return _turn_out(response)


@router.post("/end-story", response_model=StoryTurnOut, response_model_by_alias=True)
async def end_story(
    payload: EndStoryRequest,
    engine: StoryEngine = Depends(get_story_engine),
):
    try:
        response = await service.ending_turn(
            engine,
            payload.title,
            payload.full_history,
            payload.reason,
            payload.customization_answers,
            payload.customization_questions,
        )
    except LLMUnavailableError as exc:
        raise _unavailable(exc) from exc
    return _turn_out(response)


@router.get("/users/{user_id}/sessions")
async def user_sessions(
    user_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    store: SessionStore = Depends(get_session_store),
):
    try:
        records = await list_user_sessions(store, user_id, limit=limit)
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail={"code": "SESSION_STORE_UNAVAILABLE", "message": str(exc)}) from exc
    return {
        "sessions": [
            {
                "session_id": record.session_id,
                "story_title": record.story_title,
                "completed": record.completed,
                "ending_type": record.ending_type,
                "total_parts": record.progress.total_parts,
                "last_updated": record.last_updated.isoformat(),
            }
            for record in records
        ]
    }
