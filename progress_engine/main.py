"""FastAPI application factory."""
from __future__ import annotations

from typing import List

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from progress_engine import __version__
from progress_engine.api.v1 import api_router
from progress_engine.config import Settings, get_settings
from progress_engine.db.session import build_engine, build_session_factory, init_db
from progress_engine.services.engine import LearningEngine


tags_metadata: List[dict[str, str]] = [
    {"name": "sessions", "description": "Open sessions, submit answers and close them."},
    {"name": "progress", "description": "Per-item scheduling state and review queues."},
    {"name": "analytics", "description": "Aggregated learner statistics."},
]


def build_learning_engine(settings: Settings) -> LearningEngine:
    """Wire a database-backed engine from settings."""

    db_engine = build_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    init_db(db_engine)
    return LearningEngine.from_session_factory(settings, build_session_factory(db_engine))


def create_app(engine: LearningEngine | None = None, settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Serve with ``uvicorn --factory progress_engine.main:create_app``.
    """

    settings = settings or get_settings()
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Spaced-repetition progress tracking for vocabulary learners.",
        version=__version__,
        openapi_tags=tags_metadata,
        docs_url=f"{settings.API_V1_STR}/docs",
        redoc_url=f"{settings.API_V1_STR}/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": exc.errors(), "message": "Validation failed"},
        )

    app.state.engine = engine or build_learning_engine(settings)
    app.include_router(api_router, prefix=settings.API_V1_STR)
    return app
