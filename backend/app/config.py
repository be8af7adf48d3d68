"""
Application configuration from environment variables.
Loads .env from the backend directory so secrets are found regardless of cwd.
"""
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env next to backend/ (parent of app/); load explicitly so values are set even when run from repo root
_BACKEND_DIR = Path(__file__).resolve().parent.parent
_ENV_FILE = _BACKEND_DIR / ".env"

if _ENV_FILE.exists():
    from dotenv import load_dotenv
    load_dotenv(_ENV_FILE, override=False)
else:
    # Fallback: try backend/.env relative to cwd (e.g. when running from repo root)
    import os
    _cwd_env = Path(os.getcwd()) / "backend" / ".env"
    if _cwd_env.exists():
        from dotenv import load_dotenv
        load_dotenv(_cwd_env, override=False)

# 90 days between self-deletion and the definitive removal of the account
_DEFAULT_HARD_DELETE_GRACE_SECONDS = 90 * 24 * 60 * 60


class Settings(BaseSettings):
    """Load and validate config from env."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE if _ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database: sqlite for local runs and tests, postgresql for production
    database_url: str = "sqlite:///./learnathome_dev.db"

    # Environment: set ENV=production in production; used to enforce SECRET_KEY and hide error details.
    env: str = ""

    # JWT. In production (ENV=production), SECRET_KEY must be set.
    secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24
    # New accounts must open the confirmation link before they can log in.
    require_confirmation: bool = True

    # List endpoints: ?page=&limit= defaults; limit is capped so one request can't dump a collection.
    default_page_limit: int = 10
    max_page_limit: int = 100

    # Messaging
    message_content_max_length: int = 255
    message_max_files: int = 10
    # Attempts to claim the next conversation index before giving up (unique (pair_key, index_message)).
    message_index_max_attempts: int = 5

    # Self-deleted accounts are purged once deleted_at + grace has passed (env HARD_DELETE_GRACE_SECONDS).
    hard_delete_grace_seconds: int = _DEFAULT_HARD_DELETE_GRACE_SECONDS

    # Calendar windows (day/week/month/year) are computed in this timezone.
    timezone: str = "Europe/Zurich"

    # Celery (optional; beat runs the purge job every purge_interval_seconds)
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/0"
    purge_interval_seconds: int = 3600

    # CORS: comma-separated origins
    cors_origins: str = "http://localhost:3000"

    debug: bool = False

    @field_validator("max_page_limit", "default_page_limit", "message_index_max_attempts")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @property
    def is_production(self) -> bool:
        return (self.env or "").strip().lower() == "production"


settings = Settings()
