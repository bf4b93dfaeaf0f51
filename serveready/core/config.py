# Fichier: serveready/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Literal
from pydantic import ValidationError, field_validator
import sys


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str
    SECRET_KEY: str

    ENVIRONMENT: str = "development"

    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:8000",
        "http://127.0.0.1:5173",
    ]

    # --- Auth configuration ---
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DEFAULT_ADMIN_EMAIL: str = "admin@serveready.local"
    DEFAULT_ADMIN_PASSWORD: str | None = None

    # Performance instrumentation
    SQLALCHEMY_SLOW_QUERY_THRESHOLD_MS: int = 300
    DATABASE_CONNECTION_MAX_RETRIES: int = 1
    DATABASE_CONNECTION_RETRY_BACKOFF_SECONDS: float = 1.0

    # --- Lessons ---
    LESSON_DEFAULT_DUE_DAYS: int = 1
    # "caller" keeps the submitted score, "answer_key" grades against the expanded questions.
    LESSON_GRADING_STRATEGY: Literal["caller", "answer_key"] = "caller"
    # Withhold correct answers for unanswered questions on the employee read path.
    LESSON_HIDE_CORRECT_ANSWERS: bool = False

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def _normalize_database_url(cls, value: str) -> str:
        """Pin Postgres URLs to the psycopg2 driver.

        Managed Postgres providers still hand out ``postgres://`` URLs, a scheme
        SQLAlchemy no longer recognises. Those, and bare ``postgresql://`` URLs,
        are rewritten to ``postgresql+psycopg2://``. URLs that already name a
        driver, and every non-Postgres backend, are returned unchanged.
        """

        if not isinstance(value, str):
            return value

        replacements = {
            "postgres://": "postgresql+psycopg2://",
            "postgresql://": "postgresql+psycopg2://",
        }

        for prefix, target in replacements.items():
            if value.startswith(prefix):
                return target + value[len(prefix) :]

        return value


def _log_settings_validation_error(exc: ValidationError) -> None:
    """Pretty-print missing or invalid environment variables.

    The settings object is built at import time, so a missing variable would
    otherwise surface as an opaque traceback. We print the structured payload
    to stderr before re-raising.
    """

    header = "Configuration error while loading environment variables:"
    print(header, file=sys.stderr)

    details = exc.errors()
    if details:
        for error in details:
            location = ".".join(str(part) for part in error.get("loc", ()))
            message = error.get("msg", "Unknown validation error")
            type_name = error.get("type")
            hint_parts = [message]
            if type_name:
                hint_parts.append(f"(type={type_name})")
            hint = " ".join(hint_parts)
            print(f"  - {location}: {hint}", file=sys.stderr)
    else:
        print(exc, file=sys.stderr)


try:
    settings = Settings()
except ValidationError as exc:  # pragma: no cover - exercised at runtime
    _log_settings_validation_error(exc)
    raise
