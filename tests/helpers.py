# tests/helpers.py
"""Constants and small builders shared by fixtures and tests."""

from datetime import date, datetime, time, timedelta, timezone

from lesson_booking.core.config import Settings

# Sunday; MONDAY is the next teaching day
NOW = datetime(2030, 1, 6, 12, 0, tzinfo=timezone.utc)
MONDAY = date(2030, 1, 7)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    """UTC instant on ``day``."""
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite+pysqlite://",
        calendar_provider="fake",
        distributed_locks_enabled=False,
        booking_buffer_minutes=60,
        default_lesson_duration_minutes=60,
        slot_granularity_minutes=30,
        outbox_dispatch_inline=True,
        outbox_dispatch_via_celery=False,
        outbox_max_attempts=3,
        outbox_backoff_seconds=[30, 120, 600],
        credit_fallback_policy="latest_expiring",
        lock_wait_seconds=5.0,
    )
    values.update(overrides)
    return Settings(**values)
