"""Pydantic models for learner progress endpoints."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class ProgressRead(BaseModel):
    """Scheduling state of one item for one learner."""

    user_id: str
    item_id: int
    mastery_level: str
    review_count: int
    streak: int
    lapses: int
    ease_factor: float
    interval_seconds: float
    last_reviewed_at: datetime | None = None
    next_review_at: datetime | None = None
    mastered_at: datetime | None = None
    version: int


class UserDeleteResponse(BaseModel):
    user_id: str
    removed: int = Field(..., ge=0)
