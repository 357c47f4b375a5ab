from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from storyplay.modules.llm.schemas import CustomizationQuestion
from storyplay.utils.time import utc_now_aware


class TurnRole(str, enum.Enum):
    USER_CHOICE = "user_choice"
    NARRATOR = "narrator"


class SessionPhase(str, enum.Enum):
    NO_SESSION = "no_session"
    CHECKING_EXISTING = "checking_existing"
    PROMPTING_USER = "prompting_user"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    AUTO_SAVING = "auto_saving"
    COMPLETED = "completed"
    FAILED = "failed"
    CLOSED = "closed"


class NarrativeTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=1)
    content: str = ""
    role: TurnRole = TurnRole.NARRATOR
    timestamp: datetime = Field(default_factory=utc_now_aware)

    @property
    def is_user_choice(self) -> bool:
        return self.role == TurnRole.USER_CHOICE


class SessionProgress(BaseModel):
    total_parts: int = 0
    last_choice_index: int = 0


class SessionRecord(BaseModel):
    session_id: str = Field(min_length=1)
    user_id: str
    story_title: str
    story_description: str = ""
    turns: list[NarrativeTurn] = Field(default_factory=list)
    pending_choices: list[str] = Field(default_factory=list)
    story_context: str = ""
    customization_answers: dict[str, str] = Field(default_factory=dict)
    customization_questions: list[CustomizationQuestion] = Field(default_factory=list)
    awaiting_input: bool = False
    completed: bool = False
    ending_type: str | None = None
    scene_image_ref: str | None = None
    progress: SessionProgress = Field(default_factory=SessionProgress)
    created_at: datetime = Field(default_factory=utc_now_aware)
    last_updated: datetime = Field(default_factory=utc_now_aware)

    def history_text(self) -> str:
        return "\n\n".join(turn.content for turn in self.turns)

    def user_choice_count(self) -> int:
        return sum(1 for turn in self.turns if turn.is_user_choice)

    def next_turn_id(self) -> int:
        if not self.turns:
            return 1
        return max(turn.id for turn in self.turns) + 1

    def has_meaningful_progress(self) -> bool:
        if len(self.turns) > 1:
            return True
        return len(self.turns) == 1 and bool(self.pending_choices)

    def refresh_progress(self) -> None:
        self.progress = SessionProgress(
            total_parts=len(self.turns),
            last_choice_index=self.user_choice_count(),
        )
