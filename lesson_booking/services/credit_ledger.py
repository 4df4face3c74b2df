# lesson_booking/services/credit_ledger.py
"""
Credit Ledger Service

Sole writer of package counters. ``debit`` and ``credit`` never commit: they
run inside the transaction of the booking change they accompany, so the
lesson moves if and only if the booking change commits.
"""

from datetime import datetime
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.config import Settings
from ..core.exceptions import CreditExhaustedException
from ..core.timezone_utils import utc_now
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import CreditBalance
from .base import BaseService

logger = logging.getLogger(__name__)


class CreditLedger(BaseService):
    """Prepaid lesson packages: consume on booking, restore on cancellation."""

    def __init__(
        self,
        db: Session,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(db)
        self.settings = settings
        self._clock = clock
        self.package_repository = RepositoryFactory.create_package_repository(db)

    @BaseService.measure_operation("debit")
    def debit(self, student_id: str, now: Optional[datetime] = None) -> str:
        """
        Consume one lesson from the soonest-expiring active package.

        Candidates are tried in expiry order; a candidate drained by a
        concurrent writer just fails its conditional update and the next one
        is tried.

        Returns:
            The id of the debited package

        Raises:
            CreditExhaustedException: No active package has a lesson left
        """
        now = now or self._clock()
        for package in self.package_repository.get_debit_candidates(student_id, now):
            if self.package_repository.try_debit(package.id, now):
                self.logger.info(
                    "Debited one lesson",
                    extra={"student_id": student_id, "package_id": package.id},
                )
                return str(package.id)

        self.logger.info("No creditable package for student %s", student_id)
        raise CreditExhaustedException(student_id)

    @BaseService.measure_operation("credit")
    def credit(
        self,
        student_id: str,
        preferred_package_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """
        Restore one lesson, preferably to the package it was taken from.

        When the preferred package is gone or cannot take a lesson back, the
        configured fallback policy decides: ``latest_expiring`` restores to the
        student's latest-expiring active package, ``none`` restores nothing.

        Returns:
            The id of the credited package, or None when nothing could be restored
        """
        now = now or self._clock()
        if preferred_package_id:
            if self.package_repository.try_credit(preferred_package_id, student_id, now):
                self.logger.info(
                    "Restored one lesson",
                    extra={"student_id": student_id, "package_id": preferred_package_id},
                )
                return preferred_package_id
            self.logger.warning(
                "Debited package %s cannot take the lesson back", preferred_package_id
            )

        if self.settings.credit_fallback_policy == "none":
            self.logger.warning("Credit fallback disabled; lesson not restored for %s", student_id)
            return None

        for package in self.package_repository.get_restorable_latest_expiring(student_id, now):
            if self.package_repository.try_credit(package.id, student_id, now):
                self.logger.info(
                    "Restored one lesson to fallback package",
                    extra={"student_id": student_id, "package_id": package.id},
                )
                return str(package.id)

        self.logger.warning("No package can take a lesson back for student %s", student_id)
        return None

    def get_balance(self, student_id: str) -> CreditBalance:
        total, used, remaining, count = self.package_repository.get_balance(
            student_id, self._clock()
        )
        return CreditBalance(
            student_id=student_id,
            total_lessons=total,
            used_lessons=used,
            remaining_lessons=remaining,
            active_packages=count,
        )
