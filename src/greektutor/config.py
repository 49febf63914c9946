import os

from dotenv import load_dotenv

load_dotenv()


class Settings:
    PROJECT_NAME: str = "greektutor"
    DEBUG: bool = os.environ.get("GREEKTUTOR_DEBUG", "").lower() in ("1", "true", "yes")
    LOG_DIR: str = "log"
    LOG_FILE: str = "greektutor.log"
    LOG_TO_FILE: bool = False
    REDIS_URL: str = os.environ.get("GREEKTUTOR_REDIS_URL", "redis://localhost:6379/0")
    STORE_BACKEND: str = os.environ.get("GREEKTUTOR_STORE", "redis")
    KEY_PREFIX: str = "greektutor"
    DEFAULT_LANGUAGE: str = "Spanish"
    DEFAULT_QUIZ_COUNT: int = 3
    MAX_INSIGHT_TAGS: int = 10
    INSIGHT_TITLE_MAX: int = 60
    GEMINI_API_KEY: str = os.environ.get("GEMINI_API_KEY", "")
    GEMINI_MODEL: str = "gemini-2.0-flash"
    GEMINI_TEMPERATURE: float = 0.3
    QUIZ_TEMPERATURE: float = 0.7
    QUIZ_MODE: str = "hybrid"


settings = Settings()
