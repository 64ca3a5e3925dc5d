"""API router for version 1."""
from fastapi import APIRouter

from progress_engine.api.v1.endpoints import analytics, progress, sessions


api_router = APIRouter()
api_router.include_router(sessions.router)
api_router.include_router(progress.router)
api_router.include_router(analytics.router)

__all__ = ["api_router"]
