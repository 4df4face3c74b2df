"""
Repository layer for the booking engine.

Repositories encapsulate data access; services own transactions.
"""

from .base_repository import BaseRepository
from .factory import RepositoryFactory

__all__ = ["BaseRepository", "RepositoryFactory"]
