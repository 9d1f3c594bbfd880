# pmcoach/config.py

from dotenv import load_dotenv
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()  # read .env before Settings() so plain os.getenv callers see it too

BASE_DIR = Path(__file__).resolve().parent.parent

class Settings(BaseSettings):
    # environment
    app_env: str = "local"
    log_level: str = "INFO"

    # DB
    database_url: str = "sqlite:///./pmcoach.db"   # DATABASE_URL

    # OpenAI
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.7          # interviewer turns
    evaluation_temperature: float = 0.2   # grading
    llm_timeout_seconds: float = 60.0     # total timeout per generate() call

    # interview timer
    session_duration_seconds: int = 1800
    tick_seconds: float = 1.0

    # IANA zone name for "today" and activity-date bucketing, None = host zone
    local_timezone: str | None = None

    seed_questions: bool = True
    cors_origins: list[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()

if __name__ == "__main__":
    print("BASE_DIR:", BASE_DIR)
    print("DATABASE_URL:", settings.database_url)
    print("OPENAI_MODEL:", settings.openai_model)
    print("LOCAL_TIMEZONE:", settings.local_timezone or "(host)")
