from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from storyplay.modules.llm.schemas import CustomizationQuestion


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CustomizationQuestionsRequest(_Request):
    title: str = Field(min_length=1)
    description: str = ""


class CustomizationQuestionsResponse(BaseModel):
    questions: list[CustomizationQuestion]


class GenerateRequest(_Request):
    title: str = Field(min_length=1)
    description: str = ""
    customization_answers: dict[str, str] = Field(default_factory=dict, alias="customizationAnswers")
    customization_questions: list[CustomizationQuestion] = Field(
        default_factory=list, alias="customizationQuestions"
    )


class ContinueRequest(_Request):
    title: str = Field(min_length=1)
    story_context: str = Field(default="", alias="storyContext")
    user_choice: str = Field(min_length=1, alias="userChoice")
    full_history: str = Field(default="", alias="fullHistory")
    story_parts: int = Field(default=0, ge=0, alias="storyParts")
    user_choices: int = Field(default=0, ge=0, alias="userChoices")
    is_custom_input: bool = Field(default=False, alias="isCustomInput")
    customization_answers: dict[str, str] = Field(default_factory=dict, alias="customizationAnswers")
    customization_questions: list[CustomizationQuestion] = Field(
        default_factory=list, alias="customizationQuestions"
    )


class EndStoryRequest(_Request):
    title: str = Field(min_length=1)
    full_history: str = Field(default="", alias="fullHistory")
    reason: str | None = None
    customization_answers: dict[str, str] = Field(default_factory=dict, alias="customizationAnswers")
    customization_questions: list[CustomizationQuestion] = Field(
        default_factory=list, alias="customizationQuestions"
    )


class StoryTurnOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    story: str
    choices: list[str] = Field(default_factory=list)
    is_ending: bool = Field(default=False, alias="isEnding")
    ending_type: str | None = Field(default=None, alias="endingType")
    image_prompt: str | None = Field(default=None, alias="imagePrompt")
    scene_image: str | None = Field(default=None, alias="sceneImage")
