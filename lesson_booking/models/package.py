# lesson_booking/models/package.py
"""
Prepaid lesson packages.

Packages are sold outside the booking engine. Only the credit ledger mutates
the counters, and always so that ``used + remaining == total``.
"""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.sql import func
import ulid

from ..database import Base


class Package(Base):
    __tablename__ = "packages"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), ForeignKey("users.id"), nullable=False)
    total_lessons = Column(Integer, nullable=False)
    used_lessons = Column(Integer, nullable=False, default=0)
    remaining_lessons = Column(Integer, nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("total_lessons > 0", name="ck_packages_total_positive"),
        CheckConstraint("used_lessons >= 0", name="ck_packages_used_non_negative"),
        CheckConstraint("remaining_lessons >= 0", name="ck_packages_remaining_non_negative"),
        CheckConstraint(
            "used_lessons + remaining_lessons = total_lessons",
            name="ck_packages_ledger_balanced",
        ),
        Index("ix_packages_user_valid_until", "user_id", "valid_until"),
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.used_lessons is None:
            self.used_lessons = 0
        if self.remaining_lessons is None and self.total_lessons is not None:
            self.remaining_lessons = self.total_lessons - self.used_lessons

    def __repr__(self) -> str:
        return (
            f"<Package {self.id}: user={self.user_id} used={self.used_lessons}/"
            f"{self.total_lessons} remaining={self.remaining_lessons} until={self.valid_until}>"
        )
