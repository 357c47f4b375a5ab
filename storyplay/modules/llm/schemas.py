from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class StoryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    story: str = Field(min_length=1)
    choices: list[str] = Field(default_factory=list, max_length=4)
    is_ending: bool = Field(default=False, alias="isEnding")
    ending_type: str | None = Field(default=None, alias="endingType")
    image_prompt: str | None = Field(default=None, alias="imagePrompt")

    @field_validator("story")
    @classmethod
    def _story_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("story must not be blank")
        return value

    @model_validator(mode="after")
    def _ending_has_no_choices(self) -> "StoryResponse":
        if self.is_ending and self.choices:
            self.choices = []
        return self

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class CustomizationQuestion(BaseModel):
    question: str = Field(min_length=1)
    type: Literal["text", "long_text", "multiple_choice"] = "text"
    options: list[str] | None = None
    max_length: int | None = Field(default=None, alias="maxLength")

    model_config = ConfigDict(populate_by_name=True)


class CustomizationQuestionSet(BaseModel):
    questions: list[CustomizationQuestion] = Field(default_factory=list)
