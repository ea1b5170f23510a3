import os
from sqlmodel import create_engine
from dotenv import load_dotenv

load_dotenv()  # automatically loads variables from .env in project root


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    DB_PATH = os.getenv("DB_PATH", "dreamdiary.db")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    CORS_ORIGINS = [
        o.strip()
        for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
        if o.strip()
    ]
    TIMELINE_PAGE_SIZE = int(os.getenv("TIMELINE_PAGE_SIZE", "20"))
    TIMELINE_MAX_PAGE_SIZE = int(os.getenv("TIMELINE_MAX_PAGE_SIZE", "100"))
    RECONCILE_INTERVAL_MINUTES = int(os.getenv("RECONCILE_INTERVAL_MINUTES", "30"))
    ENABLE_SCHEDULER = _flag("ENABLE_SCHEDULER", "true")

settings = Settings()
engine = create_engine(
    f"sqlite:///{settings.DB_PATH}",
    connect_args={"check_same_thread": False},  # scheduler thread shares the engine
)
