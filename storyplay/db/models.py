from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from storyplay.db.base import Base
from storyplay.db.types import JSONType
from storyplay.utils.time import utc_now_aware


class StorySessionRow(Base):
    __tablename__ = "story_sessions"
    __table_args__ = (Index("ix_story_sessions_user_title", "user_id", "story_title"),)

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    story_title: Mapped[str] = mapped_column(String(255), default="")
    completed: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    record_json: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now_aware)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now_aware, index=True)
