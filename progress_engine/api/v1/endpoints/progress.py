"""Endpoints for learner vocabulary progress."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from progress_engine.api.deps import get_engine
from progress_engine.core.srs.models import LearningProgress
from progress_engine.schemas import ProgressRead, UserDeleteResponse
from progress_engine.services.engine import LearningEngine
from progress_engine.utils.exceptions import ProgressEngineError, to_http_exception


router = APIRouter(prefix="/progress", tags=["progress"])


def progress_to_schema(progress: LearningProgress) -> ProgressRead:
    return ProgressRead.model_validate(progress.to_payload())


@router.get("/{user_id}/queue", response_model=list[ProgressRead])
def get_review_queue(
    *,
    user_id: str,
    limit: int = Query(20, ge=1, le=100, description="Maximum number of queue entries to return"),
    engine: LearningEngine = Depends(get_engine),
) -> list[ProgressRead]:
    """Return the learner's due items, most overdue first."""

    try:
        records = engine.review_queue(user_id, limit=limit)
    except ProgressEngineError as exc:
        raise to_http_exception(exc) from exc
    return [progress_to_schema(record) for record in records]


@router.get("/{user_id}/{item_id}", response_model=ProgressRead)
def get_progress_detail(
    *,
    user_id: str,
    item_id: int,
    engine: LearningEngine = Depends(get_engine),
) -> ProgressRead:
    """Return the learner's scheduling state for a vocabulary item."""

    try:
        progress = engine.get_progress(user_id, item_id)
    except ProgressEngineError as exc:
        raise to_http_exception(exc) from exc
    return progress_to_schema(progress)


@router.delete("/{user_id}", response_model=UserDeleteResponse)
def delete_learner_progress(
    *,
    user_id: str,
    engine: LearningEngine = Depends(get_engine),
) -> UserDeleteResponse:
    """Remove every progress row and session summary for the learner."""

    try:
        removed = engine.delete_user(user_id)
    except ProgressEngineError as exc:
        raise to_http_exception(exc) from exc
    return UserDeleteResponse(user_id=user_id, removed=removed)
