# lesson_booking/repositories/base_repository.py
"""
Shared data access for the booking engine repositories.

Repositories read and stage writes in the caller's session. They never
commit: the service that owns the atomic unit (booking + ledger + outbox)
does, through ``BaseService.transaction``.
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException
from ..database.session_utils import get_dialect_name

ModelT = TypeVar("ModelT")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[ModelT]):
    """Lookup by id, staged inserts and guarded query execution for one model."""

    def __init__(self, db: Session, model: Type[ModelT]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        return get_dialect_name(self.db)

    def get_by_id(self, entity_id: str, load_relationships: bool = True) -> Optional[ModelT]:
        """Row with ``entity_id``, or None. Subclasses decide what gets eager-loaded."""
        query = self.db.query(self.model).filter(self.model.id == entity_id)
        if load_relationships:
            query = self._apply_eager_loading(query)
        try:
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error("Loading %s %s failed: %s", self.model.__name__, entity_id, e)
            raise RepositoryException(f"Failed to load {self.model.__name__} {entity_id}") from e

    def create(self, **values: Any) -> ModelT:
        """
        Stage a new row and flush it so its id and defaults are populated.

        IntegrityError is re-raised untouched; the service turns constraint
        violations (such as the per-teacher exclusion) into domain conflicts.
        """
        entity = self.model(**values)
        self.db.add(entity)
        try:
            self.db.flush()
        except IntegrityError:
            self.logger.warning("Constraint violation inserting %s", self.model.__name__)
            raise
        except SQLAlchemyError as e:
            self.logger.error("Inserting %s failed: %s", self.model.__name__, e)
            raise RepositoryException(f"Failed to create {self.model.__name__}") from e
        return entity

    def flush(self) -> None:
        self.db.flush()

    def _apply_eager_loading(self, query: Query) -> Query:
        return query

    def _execute_query(self, query: Query) -> List[ModelT]:
        try:
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error("%s query failed: %s", self.model.__name__, e)
            raise RepositoryException(f"{self.model.__name__} query failed") from e
