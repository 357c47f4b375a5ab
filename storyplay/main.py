import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storyplay.config import settings
from storyplay.db import session as db_session
from storyplay.db.base import Base
from storyplay.db.models import StorySessionRow  # noqa: F401
from storyplay.modules.story.router import router as story_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    if settings.env == "dev":
        Base.metadata.create_all(bind=db_session.engine)
    logger.info("story server ready | provider=%s model=%s", settings.llm_provider, settings.llm_model_generate)
    yield


app = FastAPI(title="Storyplay Backend", lifespan=_lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "provider": settings.llm_provider}


app.include_router(story_router)
