# lesson_booking/repositories/package_repository.py
"""
Package Repository for the credit ledger.

Counter changes are single conditional UPDATE statements; the WHERE clause
carries the guard, so ``used + remaining == total`` holds regardless of what
other writers do between the read and the write.
"""

from datetime import datetime
import logging
from typing import List, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.package import Package
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PackageRepository(BaseRepository[Package]):
    def __init__(self, db: Session):
        super().__init__(db, Package)

    def get_debit_candidates(self, student_id: str, now: datetime) -> List[Package]:
        """Active packages with lessons left, soonest-expiring first."""
        query = (
            self.db.query(Package)
            .filter(
                Package.user_id == student_id,
                Package.remaining_lessons > 0,
                Package.valid_until >= now,
            )
            .order_by(Package.valid_until.asc(), Package.id.asc())
        )
        return self._execute_query(query)

    def get_restorable_latest_expiring(self, student_id: str, now: datetime) -> List[Package]:
        """Active packages that can take a lesson back, latest-expiring first."""
        query = (
            self.db.query(Package)
            .filter(
                Package.user_id == student_id,
                Package.valid_until >= now,
                Package.used_lessons > 0,
                Package.remaining_lessons < Package.total_lessons,
            )
            .order_by(Package.valid_until.desc(), Package.id.desc())
        )
        return self._execute_query(query)

    def try_debit(self, package_id: str, now: datetime) -> bool:
        """Consume one lesson if the package is still active and not empty."""
        try:
            result = self.db.execute(
                update(Package)
                .where(
                    Package.id == package_id,
                    Package.remaining_lessons > 0,
                    Package.valid_until >= now,
                )
                .values(
                    used_lessons=Package.used_lessons + 1,
                    remaining_lessons=Package.remaining_lessons - 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            self._expire_cached(package_id)
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Error debiting package {package_id}: {str(e)}")
            raise RepositoryException(f"Failed to debit package: {str(e)}")

    def try_credit(self, package_id: str, student_id: str, now: datetime) -> bool:
        """Restore one lesson; refuses to push used below zero or remaining above total."""
        try:
            result = self.db.execute(
                update(Package)
                .where(
                    Package.id == package_id,
                    Package.user_id == student_id,
                    Package.used_lessons > 0,
                    Package.remaining_lessons < Package.total_lessons,
                )
                .values(
                    used_lessons=Package.used_lessons - 1,
                    remaining_lessons=Package.remaining_lessons + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            self._expire_cached(package_id)
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Error crediting package {package_id}: {str(e)}")
            raise RepositoryException(f"Failed to credit package: {str(e)}")

    def get_balance(self, student_id: str, now: datetime) -> Tuple[int, int, int, int]:
        """
        Sum counters over the student's non-expired packages.

        Returns:
            (total, used, remaining, package_count)
        """
        total, used, remaining, count = (
            self.db.query(
                func.coalesce(func.sum(Package.total_lessons), 0),
                func.coalesce(func.sum(Package.used_lessons), 0),
                func.coalesce(func.sum(Package.remaining_lessons), 0),
                func.count(Package.id),
            )
            .filter(Package.user_id == student_id, Package.valid_until >= now)
            .one()
        )
        return int(total), int(used), int(remaining), int(count)

    def _expire_cached(self, package_id: str) -> None:
        """Drop stale counters from the identity map after a Core UPDATE."""
        cached = self.db.identity_map.get(self.db.identity_key(Package, package_id))
        if cached is not None:
            self.db.expire(cached)
