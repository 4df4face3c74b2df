# lesson_booking/services/base.py
"""
Base Service Pattern for the booking engine

Every engine service shares one session with its collaborators and uses
``transaction()`` for the unit it owns. Database failures leave this module
as domain exceptions, so callers only ever see the booking error taxonomy.
"""

from contextlib import contextmanager
from functools import wraps
import logging
import time
from typing import Any, Callable, Iterator, TypeVar, cast

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..core.exceptions import BookingConflictException, InvalidStateException, ServiceException
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

SLOW_OPERATION_SECONDS = 1.0


class BaseService:
    """Session holder with transaction, logging and timing helpers."""

    def __init__(self, db: Session):
        self.db = db
        self.logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Commit on success, roll back on any failure.

        Usage:
            with self.transaction():
                self.booking_repository.create(...)
                self.credit_ledger.debit(...)

        Translation:
            IntegrityError   -> BookingConflictException (overlap constraint)
            StaleDataError   -> InvalidStateException (row version moved on)
            SQLAlchemyError  -> ServiceException
        Domain exceptions raised inside the block propagate unchanged.
        """
        try:
            yield self.db
            self.db.commit()
            self.logger.debug("Transaction committed")
        except IntegrityError as e:
            self.db.rollback()
            self.logger.warning("Transaction rejected by constraint: %s", e.orig)
            raise BookingConflictException(details={"constraint_error": str(e.orig)}) from e
        except StaleDataError as e:
            self.db.rollback()
            self.logger.warning("Concurrent modification detected: %s", e)
            raise InvalidStateException(
                booking_id="unknown", current_status="MODIFIED", action="update"
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error("Transaction failed: %s", e)
            raise ServiceException(f"Database operation failed: {e}") from e
        except Exception as e:
            self.db.rollback()
            self.logger.debug("Transaction aborted: %s: %s", type(e).__name__, e)
            raise

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Time a service method and report it to Prometheus.

        Usage:
            @BaseService.measure_operation("create_booking")
            def create_booking(self, ...):
                ...
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
                start_time = time.perf_counter()
                error_type = None
                try:
                    return func(self, *args, **kwargs)
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.perf_counter() - start_time
                    if elapsed > SLOW_OPERATION_SECONDS:
                        self.logger.warning(
                            "Slow operation detected: %s took %.2fs", operation_name, elapsed
                        )
                    prometheus_metrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status="error" if error_type else "success",
                        error_type=error_type,
                    )

            return cast(F, wrapper)

        return decorator

    def log_operation(self, operation: str, **context: Any) -> None:
        self.logger.info(f"Operation: {operation}", extra={"operation": operation, **context})
