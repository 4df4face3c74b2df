# tests/unit/test_credit_ledger.py
"""Tests for CreditLedger debit/credit ordering and the package invariant."""

from datetime import timedelta

import pytest

from lesson_booking.core.exceptions import CreditExhaustedException
from lesson_booking.models import Package
from lesson_booking.services import CreditLedger
from tests.helpers import NOW, make_settings


def _reload(db, package):
    db.expire_all()
    return db.get(Package, package.id)


def _assert_balanced(package):
    assert package.used_lessons + package.remaining_lessons == package.total_lessons
    assert package.used_lessons >= 0
    assert package.remaining_lessons >= 0


class TestDebit:
    def test_debits_soonest_expiring_package(self, db, booking_engine, student, make_package):
        later = make_package(student, total=5, valid_until=NOW + timedelta(days=60))
        sooner = make_package(student, total=5, valid_until=NOW + timedelta(days=10))

        debited = booking_engine.ledger.debit(student.id)
        db.commit()

        assert debited == sooner.id
        assert _reload(db, sooner).remaining_lessons == 4
        assert _reload(db, later).remaining_lessons == 5

    def test_skips_expired_and_empty_packages(self, db, booking_engine, student, make_package):
        make_package(student, total=3, valid_until=NOW - timedelta(days=1))
        make_package(student, total=2, used=2, valid_until=NOW + timedelta(days=5))
        usable = make_package(student, total=4, valid_until=NOW + timedelta(days=20))

        assert booking_engine.ledger.debit(student.id) == usable.id

    def test_exhausted(self, booking_engine, student, make_package):
        make_package(student, total=1, used=1)
        with pytest.raises(CreditExhaustedException):
            booking_engine.ledger.debit(student.id)

    def test_no_packages_at_all(self, booking_engine, student):
        with pytest.raises(CreditExhaustedException) as exc_info:
            booking_engine.ledger.debit(student.id)
        assert exc_info.value.details["student_id"] == student.id

    def test_counters_stay_balanced(self, db, booking_engine, student, make_package):
        package = make_package(student, total=2)
        booking_engine.ledger.debit(student.id)
        booking_engine.ledger.debit(student.id)
        db.commit()

        reloaded = _reload(db, package)
        _assert_balanced(reloaded)
        assert reloaded.remaining_lessons == 0
        with pytest.raises(CreditExhaustedException):
            booking_engine.ledger.debit(student.id)


class TestCredit:
    def test_restores_to_preferred_package(self, db, booking_engine, student, make_package):
        package = make_package(student, total=5, used=2)
        make_package(student, total=5, used=1, valid_until=NOW + timedelta(days=90))

        assert booking_engine.ledger.credit(student.id, package.id) == package.id
        db.commit()
        reloaded = _reload(db, package)
        assert reloaded.used_lessons == 1
        _assert_balanced(reloaded)

    def test_falls_back_to_latest_expiring(self, db, booking_engine, student, make_package):
        full = make_package(student, total=5, used=0)
        early = make_package(student, total=5, used=1, valid_until=NOW + timedelta(days=5))
        late = make_package(student, total=5, used=1, valid_until=NOW + timedelta(days=50))

        restored = booking_engine.ledger.credit(student.id, full.id)
        db.commit()

        assert restored == late.id
        assert _reload(db, late).remaining_lessons == 5
        assert _reload(db, early).remaining_lessons == 4

    def test_missing_preferred_package_falls_back(self, booking_engine, student, make_package):
        fallback = make_package(student, total=5, used=3)
        assert booking_engine.ledger.credit(student.id, None) == fallback.id

    def test_fallback_disabled(self, db, student, make_package, clock):
        full = make_package(student, total=5, used=0)
        make_package(student, total=5, used=2)
        ledger = CreditLedger(db, make_settings(credit_fallback_policy="none"), clock=clock)

        assert ledger.credit(student.id, full.id) is None

    def test_never_exceeds_total(self, db, booking_engine, student, make_package):
        package = make_package(student, total=3, used=0)
        assert booking_engine.ledger.credit(student.id, package.id) is None
        db.commit()
        _assert_balanced(_reload(db, package))

    def test_other_students_package_untouched(
        self, db, booking_engine, student, make_user, make_package
    ):
        other = make_user()
        theirs = make_package(other, total=5, used=2)

        assert booking_engine.ledger.credit(student.id, theirs.id) is None
        db.commit()
        assert _reload(db, theirs).used_lessons == 2


class TestBalance:
    def test_sums_active_packages(self, booking_engine, student, make_package):
        make_package(student, total=5, used=2)
        make_package(student, total=10, used=0)
        make_package(student, total=4, used=1, valid_until=NOW - timedelta(days=1))

        balance = booking_engine.ledger.get_balance(student.id)

        assert balance.total_lessons == 15
        assert balance.used_lessons == 2
        assert balance.remaining_lessons == 13
        assert balance.active_packages == 2

    def test_empty(self, booking_engine, student):
        balance = booking_engine.ledger.get_balance(student.id)
        assert balance.remaining_lessons == 0
        assert balance.active_packages == 0
