"""Vocabulary catalog models."""
from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from progress_engine.db.base import Base
from progress_engine.db.types import json_column_type


class VocabularyItemRecord(Base):
    """Read-only catalog entry; progress rows reference it by id."""

    __tablename__ = "vocabulary_items"

    id = Column(Integer, primary_key=True)
    term = Column(String(255), nullable=False)
    translation = Column(Text, nullable=True)
    difficulty = Column(Integer, default=1)
    category = Column(String(50), nullable=True, index=True)
    tags = Column(json_column_type(), default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<VocabularyItemRecord term={self.term!r} category={self.category!r}>"
