# tests/conftest.py
"""
Shared fixtures for the booking engine tests.

Every test gets a fresh in-memory SQLite database, a fake calendar and a
fixed clock (see ``tests.helpers.NOW``).
"""

from datetime import datetime, time, timedelta
from typing import Callable, Iterator, Optional

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from lesson_booking.core.config import Settings
from lesson_booking.database import Base, build_session_factory
from lesson_booking.integrations.google_calendar_client import FakeCalendarClient
import lesson_booking.models  # noqa: F401 - registers tables
from lesson_booking.models import AvailabilityWindow, Package, Topic, User, UserRole
from lesson_booking.services.dependencies import BookingEngine, build_booking_engine
from tests.helpers import NOW, FixedClock, make_settings


def _enable_foreign_keys(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _fk_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    _enable_foreign_keys(engine)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(sqlite_engine: Engine) -> Iterator[Session]:
    session = build_session_factory(sqlite_engine)()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def calendar() -> FakeCalendarClient:
    return FakeCalendarClient()


@pytest.fixture
def booking_engine(
    db: Session, settings: Settings, calendar: FakeCalendarClient, clock: FixedClock
) -> BookingEngine:
    return build_booking_engine(db, settings=settings, calendar=calendar, clock=clock)


@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    counter = {"n": 0}

    def _make(
        role: UserRole = UserRole.STUDENT,
        timezone_name: Optional[str] = None,
        is_active: bool = True,
        name: Optional[str] = None,
    ) -> User:
        counter["n"] += 1
        label = name or f"{role.value.lower()}{counter['n']}"
        user = User(
            email=f"{label}@example.com",
            full_name=label.title(),
            role=role.value,
            timezone=timezone_name,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_package(db: Session) -> Callable[..., Package]:
    def _make(
        student: User,
        total: int = 5,
        used: int = 0,
        valid_until: Optional[datetime] = None,
    ) -> Package:
        package = Package(
            user_id=student.id,
            total_lessons=total,
            used_lessons=used,
            remaining_lessons=total - used,
            valid_until=valid_until or NOW + timedelta(days=30),
        )
        db.add(package)
        db.commit()
        return package

    return _make


@pytest.fixture
def add_window(db: Session) -> Callable[..., AvailabilityWindow]:
    def _add(teacher: User, day_of_week: int, start: time, end: time) -> AvailabilityWindow:
        window = AvailabilityWindow(
            teacher_id=teacher.id, day_of_week=day_of_week, start_time=start, end_time=end
        )
        db.add(window)
        db.commit()
        return window

    return _add


@pytest.fixture
def topic(db: Session) -> Topic:
    topic = Topic(name="Conversation", level="B1")
    db.add(topic)
    db.commit()
    return topic


@pytest.fixture
def teacher(make_user, add_window) -> User:
    """Teacher in UTC, available Mondays 09:00-12:00."""
    user = make_user(UserRole.TEACHER, timezone_name="UTC", name="teacher")
    add_window(user, 1, time(9, 0), time(12, 0))
    return user


@pytest.fixture
def student(make_user) -> User:
    return make_user(UserRole.STUDENT, name="student")
