from __future__ import annotations

import pytest

from storyplay.config import settings
from storyplay.db import session as db_session
from storyplay.db.base import Base
from storyplay.db.models import StorySessionRow  # noqa: F401
from storyplay.modules.llm.runtime import engine as engine_module


@pytest.fixture(autouse=True)
def _reset_db_and_defaults(tmp_path) -> None:
    settings.env = "test"
    settings.llm_provider = "fake"
    settings.llm_gemini_api_key = ""
    settings.llm_timeout_s = 30.0
    settings.autosave_debounce_s = 2.0
    settings.story_max_choice_points = 10
    engine_module._engine = None
    db_session.rebind_engine(f"sqlite+pysqlite:///{tmp_path / 'storyplay-test.db'}")
    Base.metadata.create_all(bind=db_session.engine)
    yield
    engine_module._engine = None
    Base.metadata.drop_all(bind=db_session.engine)
    db_session.engine.dispose()
