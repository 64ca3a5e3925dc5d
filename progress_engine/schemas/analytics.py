"""Pydantic models for analytics endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Literal, Union

from pydantic import BaseModel, Field

MetricValue = Union[float, Literal["no data"]]


class AnalyticsSnapshotRead(BaseModel):
    """Learner statistics over a time window.

    Ratios with nothing to divide by are reported as ``"no data"`` rather
    than zero.
    """

    user_id: str
    start: datetime
    end: datetime
    total_study_seconds: float
    sessions_completed: int
    total_events: int
    correct_events: int
    average_accuracy: MetricValue
    mastery_distribution: Dict[str, int] = Field(default_factory=dict)
    items_tracked: int
    items_mastered_in_range: int
    learning_velocity: MetricValue
    current_streak: int
    longest_streak: int
    items_due: int
    average_ease: MetricValue
    skipped_sessions: int = 0
