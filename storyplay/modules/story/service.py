from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence

from pydantic import ValidationError

from storyplay.config import settings
from storyplay.modules.llm.runtime.engine import StoryEngine
from storyplay.modules.llm.runtime.recovery import recover, strip_code_fences
from storyplay.modules.llm.schemas import CustomizationQuestion, CustomizationQuestionSet, StoryResponse
from storyplay.modules.story.scene_prompt import build_character_details, synthesize

logger = logging.getLogger(__name__)

CONCLUSION_SUFFIX = "\n\n[The adventure concludes here, but your story continues in memory...]"
CONCLUSION_ENDING_TYPE = "conclusion"
NATURAL_ENDING_TYPE = "natural"


def default_customization_questions() -> list[CustomizationQuestion]:
    return [
        CustomizationQuestion(question="What is your character's name?", type="text", max_length=30),
        CustomizationQuestion(
            question="Choose your character's gender:",
            type="multiple_choice",
            options=["Male", "Female", "Non-binary", "Prefer not to specify"],
        ),
        CustomizationQuestion(
            question="What motivates your character most?",
            type="multiple_choice",
            options=[
                "Adventure and excitement",
                "Helping others",
                "Knowledge and discovery",
                "Power and influence",
                "Love and relationships",
            ],
        ),
    ]


def parse_customization_questions(raw_text: str) -> list[CustomizationQuestion]:
    try:
        parsed = CustomizationQuestionSet.model_validate(json.loads(strip_code_fences(raw_text)))
    except (json.JSONDecodeError, ValidationError) as exc:
        logger.info("customization questions unparseable, using defaults: %s", exc)
        return default_customization_questions()
    return parsed.questions or default_customization_questions()


def apply_choice_limit(
    response: StoryResponse,
    *,
    user_choices: int,
    character_details=None,
) -> StoryResponse:
    """Close the story when the model keeps going past the choice budget."""
    limit = int(settings.story_max_choice_points)
    if response.is_ending or limit <= 0 or user_choices < limit:
        return response
    story = response.story + CONCLUSION_SUFFIX
    return StoryResponse(
        story=story,
        choices=[],
        is_ending=True,
        ending_type=CONCLUSION_ENDING_TYPE,
        image_prompt=synthesize(story + " ending scene", character_details),
    )


async def fetch_customization_questions(engine: StoryEngine, title: str, description: str) -> list[CustomizationQuestion]:
    raw = await engine.generate_customization_questions(title, description)
    return parse_customization_questions(raw)


async def opening_turn(
    engine: StoryEngine,
    title: str,
    description: str,
    answers: Mapping[str, str] | None = None,
    questions: Sequence[CustomizationQuestion] | None = None,
) -> StoryResponse:
    raw = await engine.generate_opening(title, description, answers, questions)
    return recover(raw, build_character_details(answers, questions))


async def continuation_turn(
    engine: StoryEngine,
    title: str,
    story_context: str,
    choice_text: str,
    history_text: str,
    answers: Mapping[str, str] | None = None,
    questions: Sequence[CustomizationQuestion] | None = None,
    *,
    story_parts: int,
    user_choices: int,
    is_custom_input: bool = False,
) -> StoryResponse:
    raw = await engine.continue_story(
        title,
        story_context,
        choice_text,
        history_text,
        answers,
        questions,
        story_parts=story_parts,
        user_choices=user_choices,
        is_custom_input=is_custom_input,
    )
    details = build_character_details(answers, questions)
    return apply_choice_limit(recover(raw, details), user_choices=user_choices, character_details=details)


async def ending_turn(
    engine: StoryEngine,
    title: str,
    history_text: str,
    reason: str | None = None,
    answers: Mapping[str, str] | None = None,
    questions: Sequence[CustomizationQuestion] | None = None,
) -> StoryResponse:
    raw = await engine.generate_ending(title, history_text, reason, answers, questions)
    details = build_character_details(answers, questions)
    response = recover(raw, details)
    return StoryResponse(
        story=response.story,
        choices=[],
        is_ending=True,
        ending_type=response.ending_type or NATURAL_ENDING_TYPE,
        image_prompt=response.image_prompt or synthesize(response.story + " final scene", details),
    )
