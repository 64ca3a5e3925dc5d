"""Shared API dependencies."""
from __future__ import annotations

from fastapi import HTTPException, Request, status

from progress_engine.services.engine import LearningEngine


def get_engine(request: Request) -> LearningEngine:
    """Return the engine instance attached to the application."""

    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Progress engine is not configured",
        )
    return engine
