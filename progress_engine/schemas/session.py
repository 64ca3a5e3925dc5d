"""Pydantic models for learning session endpoints."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class SessionStartResponse(BaseModel):
    session_id: str
    user_id: str


class AnswerRequest(BaseModel):
    """Payload for a single answer within a session."""

    item_id: int = Field(..., ge=1)
    correct: bool
    latency_ms: int | None = Field(None, ge=0, description="Time the learner took to answer")
    answered_at: datetime | None = Field(
        None, description="Client timestamp; defaults to the server clock"
    )


class SessionSummaryRead(BaseModel):
    """Outcome of a closed session."""

    session_id: str
    user_id: str
    started_at: datetime
    ended_at: datetime | None = None
    duration_seconds: float | None = None
    total_events: int
    correct_events: int
    accuracy: float | None = None
    outcome: str
    committed_item_ids: list[int] = Field(default_factory=list)
    unpersisted_item_ids: list[int] = Field(default_factory=list)
    summary_persisted: bool = True
