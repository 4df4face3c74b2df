# lesson_booking/models/user.py
"""
Participants of a lesson: students, teachers and administrators.

Account management lives outside the booking engine; the engine only needs
identity, role, contact address (the teacher's external calendar id) and
timezone.
"""

from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, String
from sqlalchemy.sql import func
import ulid

from ..database import Base


class UserRole(str, Enum):
    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"


class User(Base):
    __tablename__ = "users"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.STUDENT.value)
    timezone = Column(String(64), nullable=True, comment="IANA name; falls back to settings")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("role IN ('STUDENT', 'TEACHER', 'ADMIN')", name="ck_users_role"),
    )

    @property
    def calendar_ref(self) -> str:
        """Identifier used against the external calendar (the teacher's address)."""
        return str(self.email)

    def __repr__(self) -> str:
        return f"<User {self.id}: {self.email} role={self.role}>"
