"""Learning progress models."""
from sqlalchemy import Column, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from progress_engine.db.base import Base


class LearningProgressRecord(Base):
    """Per-user mastery state for a vocabulary item."""

    __tablename__ = "learning_progress"
    __table_args__ = (UniqueConstraint("user_id", "item_id", name="uq_learning_progress_user_item"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    item_id = Column(Integer, nullable=False, index=True)

    mastery_level = Column(String(20), nullable=False, default="new")
    review_count = Column(Integer, nullable=False, default=0)
    streak = Column(Integer, nullable=False, default=0)
    lapses = Column(Integer, nullable=False, default=0)
    ease_factor = Column(Float, nullable=False, default=2.5)
    interval_seconds = Column(Float, nullable=False, default=0.0)

    last_reviewed_at = Column(DateTime(timezone=True))
    next_review_at = Column(DateTime(timezone=True), index=True)
    mastered_at = Column(DateTime(timezone=True))

    # Optimistic concurrency token, bumped on every write.
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
