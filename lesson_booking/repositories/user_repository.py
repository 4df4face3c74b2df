# lesson_booking/repositories/user_repository.py
"""
User Repository for the booking engine

Role-checked lookups for lesson participants.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..models.user import User, UserRole
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository[User]):
    """Repository for User data access."""

    def __init__(self, db: Session):
        super().__init__(db, User)

    def get_active_with_role(self, user_id: str, role: UserRole) -> Optional[User]:
        """Return the user only if active and holding ``role``."""
        return (
            self.db.query(User)
            .filter(User.id == user_id, User.role == role.value, User.is_active.is_(True))
            .first()
        )
