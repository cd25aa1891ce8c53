"""
Application settings and configuration.
All secrets are loaded from environment variables.
"""

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # VAPID credentials (see scripts/generate_vapid_keys.py)
    push_vapid_public_key: str = ""  # base64url raw P-256 point
    push_vapid_private_key: str = ""  # PEM, literal "\n" allowed
    push_vapid_subject: str = ""  # mailto:... or https://...

    # Web Push request tuning
    push_ttl: int = 60
    push_timeout_seconds: float = 12.0

    # Token for the unauthenticated cron caller
    reminder_cron_token: str = ""

    # Database - DATA_DIR for a persistent volume, DATABASE_URL overrides it
    data_dir: str = "."
    db_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("database_url", "db_url")
    )

    @property
    def database_url(self) -> str:
        """Database URL, defaulting to a SQLite file in DATA_DIR."""
        if self.db_url:
            return self.db_url
        return f"sqlite+aiosqlite:///{self.data_dir}/reminders.db"

    # Calendar-day boundaries for reminders
    app_timezone: str = "UTC"

    # In-process reminder job
    scheduler_enabled: bool = True
    reminder_interval_seconds: int = 60
    batch_deadline_seconds: Optional[float] = 50.0

    # Application Settings
    debug: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
