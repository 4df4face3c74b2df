# lesson_booking/core/config.py
from functools import lru_cache
import logging
import os
from pathlib import Path
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).resolve().parents[2] / ".env"
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


DEFAULT_BACKOFF_SECONDS: List[int] = [30, 120, 600, 1800, 7200]


class Settings(BaseSettings):
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Storage
    database_url: str = Field(
        default="sqlite+pysqlite:///./lesson_booking.db",
        alias="DATABASE_URL",
        description="SQLAlchemy URL for the booking database",
    )
    database_echo: bool = False

    # Per-teacher / per-student schedule locks
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    distributed_locks_enabled: bool = Field(
        default=False,
        alias="DISTRIBUTED_LOCKS_ENABLED",
        description="Also take a Redis lock per schedule key (multi-process deployments)",
    )
    lock_namespace: str = "lesson_booking"
    lock_ttl_seconds: int = Field(default=30, ge=1)
    lock_wait_seconds: float = Field(default=5.0, ge=0)

    # Slot planning
    slot_granularity_minutes: int = Field(default=30, gt=0)
    booking_buffer_minutes: int = Field(
        default=30,
        ge=0,
        description="Minimum notice between 'now' and the first offerable slot",
    )
    default_lesson_duration_minutes: int = Field(default=60, gt=0)
    default_timezone: str = Field(default="UTC", alias="DEFAULT_TIMEZONE")
    require_calendar_check_on_booking: bool = Field(
        default=True,
        description="Consult the external calendar's busy time before creating/rescheduling",
    )

    # Credit ledger
    credit_fallback_policy: Literal["latest_expiring", "none"] = Field(
        default="latest_expiring",
        alias="CREDIT_FALLBACK_POLICY",
        description="Where to restore a lesson when the debited package is gone",
    )

    # Outbound tasks (calendar sync + notifications)
    outbox_max_attempts: int = Field(default=5, ge=1)
    outbox_backoff_seconds: List[int] = Field(default_factory=lambda: list(DEFAULT_BACKOFF_SECONDS))
    outbox_batch_size: int = Field(default=200, ge=1)
    outbox_dispatch_inline: bool = Field(
        default=False,
        description="Deliver side effects in-process right after the booking transaction commits",
    )
    outbox_dispatch_via_celery: bool = Field(
        default=True,
        description="Hand freshly enqueued rows to the outbox.deliver_event task after commit",
    )

    # External calendar
    calendar_provider: Literal["google", "fake"] = Field(default="fake", alias="CALENDAR_PROVIDER")
    google_calendar_id: str = Field(default="primary", alias="GOOGLE_CALENDAR_ID")
    google_service_account_key: Optional[SecretStr] = Field(
        default=None,
        alias="GOOGLE_SERVICE_ACCOUNT_KEY",
        description="Service account JSON (raw string)",
    )
    google_delegated_user: Optional[str] = Field(default=None, alias="GOOGLE_DELEGATED_USER")
    google_timeout_seconds: float = 10.0
    calendar_event_prefix: str = "lessonbooking"

    # Celery
    celery_broker_url: Optional[str] = Field(default=None, alias="CELERY_BROKER_URL")
    outbox_dispatch_interval_seconds: int = 60
    calendar_reconcile_interval_seconds: int = 900

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("outbox_backoff_seconds", mode="before")
    @classmethod
    def _parse_backoff(cls, value: object) -> object:
        if isinstance(value, str):
            return [int(token) for token in value.split(",") if token.strip()]
        return value

    @field_validator("default_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        import pytz

        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @model_validator(mode="after")
    def _require_google_credentials(self) -> "Settings":
        if self.calendar_provider == "google" and self.google_service_account_key is None:
            raise ValueError("GOOGLE_SERVICE_ACCOUNT_KEY must be set when CALENDAR_PROVIDER=google")
        if not self.outbox_backoff_seconds:
            self.outbox_backoff_seconds = list(DEFAULT_BACKOFF_SECONDS)
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def get_broker_url(self) -> str:
        """Broker priority: CELERY_BROKER_URL -> REDIS_URL -> local default."""
        broker_url = self.celery_broker_url or self.redis_url or "redis://localhost:6379"
        if not any(broker_url.endswith(f"/{i}") for i in range(16)):
            broker_url = f"{broker_url}/0"
        return broker_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings (read once, then cached)."""
    return Settings()
