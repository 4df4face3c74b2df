"""
Helpers for working with SQLAlchemy sessions in a dialect-agnostic way.
"""

from __future__ import annotations

from sqlalchemy.exc import NoInspectionAvailable, UnboundExecutionError
from sqlalchemy.orm import Session


def get_dialect_name(session: Session, default: str = "sqlite") -> str:
    """
    Return the dialect behind a session ("postgresql", "sqlite", ...).

    Mocked sessions have no bind; ``default`` is returned for them.
    """
    try:
        bind = session.get_bind()
    except (NoInspectionAvailable, UnboundExecutionError, AttributeError, TypeError):
        return default
    name = getattr(getattr(bind, "dialect", None), "name", None)
    return name if isinstance(name, str) and name else default
