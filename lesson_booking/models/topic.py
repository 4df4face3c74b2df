from sqlalchemy import Column, String, Text
import ulid

from ..database import Base


class Topic(Base):
    """Lesson subject; only what a calendar invite needs."""

    __tablename__ = "topics"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    name = Column(String(255), nullable=False)
    level = Column(String(32), nullable=False, default="")
    description = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Topic {self.id}: {self.name} ({self.level})>"
