"""Study session models."""
from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from progress_engine.db.base import Base
from progress_engine.db.types import json_column_type


class StudySessionRecord(Base):
    """Summary of a closed study session."""

    __tablename__ = "study_sessions"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)

    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    ended_at = Column(DateTime(timezone=True))

    total_events = Column(Integer, default=0)
    correct_events = Column(Integer, default=0)
    outcome = Column(String(32), default="complete")

    committed_item_ids = Column(json_column_type(), default=list)
    unpersisted_item_ids = Column(json_column_type(), default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
