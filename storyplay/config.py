from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_DEFAULT_DB_URL = "sqlite+pysqlite:///./storyplay.db"


class Settings(BaseSettings):
    app_name: str = "storyplay"
    env: str = "dev"
    database_url: str = DEV_DEFAULT_DB_URL

    llm_provider: str = "fake"
    llm_model_generate: str = "gemini-2.5-flash"
    llm_timeout_s: float = 30.0
    llm_connect_timeout_s: float = 5.0
    llm_temperature: float = 0.9
    llm_max_output_tokens: int | None = None
    llm_gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    llm_gemini_api_key: str = ""

    autosave_debounce_s: float = 2.0
    story_max_choice_points: int = 10

    scene_image_base_url: str = "https://image.pollinations.ai/prompt"
    scene_image_width: int = 512
    scene_image_height: int = 384
    scene_image_model: str = "flux"

    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


def _is_sqlite_memory_url(db_url: str) -> bool:
    candidate = (db_url or "").strip().lower()
    if not candidate.startswith("sqlite"):
        return False
    if ":memory:" in candidate:
        return True
    return candidate in {
        "sqlite://",
        "sqlite:///",
        "sqlite+pysqlite://",
        "sqlite+pysqlite:///",
    }


def validate_database_url(env: str, db_url: str | None) -> str:
    env_value = (env or "").strip().lower()
    if env_value != "dev":
        return db_url or ""

    if not db_url or not db_url.strip():
        return DEV_DEFAULT_DB_URL

    if _is_sqlite_memory_url(db_url):
        raise RuntimeError(
            "DATABASE_URL cannot be sqlite :memory: when ENV=dev because saved stories will disappear. "
            f"Set DATABASE_URL={DEV_DEFAULT_DB_URL} or another file-based sqlite url."
        )
    return db_url


settings = Settings()
settings.database_url = validate_database_url(settings.env, settings.database_url)
