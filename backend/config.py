from datetime import UTC, datetime
from pathlib import Path

from pydantic_settings import BaseSettings


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime.

    Replaces the deprecated ``datetime.utcnow()`` while keeping datetimes
    naive so they stay compatible with SQLite (which doesn't store tz info).
    """
    return datetime.now(UTC).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


class Settings(BaseSettings):
    app_name: str = "Exam SRS"
    database_url: str = f"sqlite+aiosqlite:///{Path(__file__).resolve().parent.parent / 'exam_srs.db'}"
    default_algorithm: str = "sm2"  # sm2 or fsrs
    due_page_size: int = 50
    session_size: int = 20  # questions per review session
    review_retry_attempts: int = 3
    admin_token: str = ""  # empty disables global preset writes over HTTP
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]
    log_level: str = "INFO"
    debug: bool = False

    model_config = {"env_prefix": "EXAM_SRS_", "env_file": ".env"}


settings = Settings()
