"""Endpoints for learning sessions."""
from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, status

from progress_engine.api.deps import get_engine
from progress_engine.api.v1.endpoints.progress import progress_to_schema
from progress_engine.core.srs.models import SessionSummary
from progress_engine.schemas import AnswerRequest, ProgressRead, SessionStartResponse, SessionSummaryRead
from progress_engine.services.engine import LearningEngine
from progress_engine.utils.exceptions import ProgressEngineError, to_http_exception


router = APIRouter(prefix="/sessions", tags=["sessions"])


def summary_to_schema(summary: SessionSummary) -> SessionSummaryRead:
    duration = summary.duration
    return SessionSummaryRead(
        session_id=summary.session_id,
        user_id=summary.user_id,
        started_at=summary.started_at,
        ended_at=summary.ended_at,
        duration_seconds=duration.total_seconds() if duration is not None else None,
        total_events=summary.total_events,
        correct_events=summary.correct_events,
        accuracy=summary.accuracy,
        outcome=summary.outcome.value,
        committed_item_ids=summary.committed_item_ids,
        unpersisted_item_ids=summary.unpersisted_item_ids,
        summary_persisted=summary.summary_persisted,
    )


@router.post("/users/{user_id}", response_model=SessionStartResponse, status_code=status.HTTP_201_CREATED)
def open_session(
    *,
    user_id: str,
    engine: LearningEngine = Depends(get_engine),
) -> SessionStartResponse:
    """Open a new learning session for the learner."""

    session_id = engine.open_session(user_id)
    return SessionStartResponse(session_id=session_id, user_id=user_id)


@router.post("/{session_id}/answers", response_model=ProgressRead)
def submit_answer(
    *,
    session_id: str,
    payload: AnswerRequest,
    engine: LearningEngine = Depends(get_engine),
) -> ProgressRead:
    """Record an answer and return the item's rescheduled state."""

    latency = timedelta(milliseconds=payload.latency_ms) if payload.latency_ms is not None else None
    try:
        progress = engine.submit_answer(
            session_id,
            payload.item_id,
            payload.correct,
            latency,
            timestamp=payload.answered_at,
        )
    except ProgressEngineError as exc:
        raise to_http_exception(exc) from exc
    return progress_to_schema(progress)


@router.post("/{session_id}/close", response_model=SessionSummaryRead)
def close_session(
    *,
    session_id: str,
    engine: LearningEngine = Depends(get_engine),
) -> SessionSummaryRead:
    """Persist the session's progress and return its summary."""

    try:
        summary = engine.close_session(session_id)
    except ProgressEngineError as exc:
        raise to_http_exception(exc) from exc
    return summary_to_schema(summary)
