"""Analytics endpoints for learner dashboards."""

from __future__ import annotations

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status

from progress_engine.api.deps import get_engine
from progress_engine.schemas import AnalyticsSnapshotRead
from progress_engine.services.engine import LearningEngine
from progress_engine.utils.exceptions import ProgressEngineError, to_http_exception


router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/{user_id}", response_model=AnalyticsSnapshotRead)
def read_analytics_snapshot(
    *,
    user_id: str,
    start: datetime | None = Query(None, description="Window start; defaults to 30 days before end"),
    end: datetime | None = Query(None, description="Window end; defaults to now"),
    engine: LearningEngine = Depends(get_engine),
) -> AnalyticsSnapshotRead:
    """Return learner metrics over the requested window."""

    window_end = end or engine.clock()
    window_start = start or window_end - timedelta(days=30)
    try:
        snapshot = engine.get_analytics(user_id, window_start, window_end)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ProgressEngineError as exc:
        raise to_http_exception(exc) from exc
    return AnalyticsSnapshotRead.model_validate(snapshot.to_payload())
