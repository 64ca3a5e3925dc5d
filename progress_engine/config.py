"""Application configuration management."""
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import AnyUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global engine settings loaded from environment variables."""

    PROJECT_NAME: str = "Vocabulary Progress Engine"
    API_V1_STR: str = "/api/v1"

    DATABASE_URL: str = Field(
        "sqlite:///./progress_engine.db",
        description="SQLAlchemy database URL",
    )
    DATABASE_ECHO: bool = False

    REDIS_URL: Optional[AnyUrl] = Field(
        None, description="Optional Redis connection string mirroring the local cache"
    )

    BACKEND_CORS_ORIGINS: List[str] = Field(
        default_factory=lambda: ["http://localhost", "http://localhost:3000"],
        description="Allowed CORS origins",
    )

    # Cache
    PROGRESS_CACHE_TTL_SECONDS: int = Field(300, ge=1, description="TTL for cached progress rows")
    ANALYTICS_CACHE_TTL_SECONDS: int = Field(900, ge=1, description="TTL for cached snapshots")

    # Persistence
    PERSISTENCE_MAX_ATTEMPTS: int = Field(3, ge=1, description="Attempts for transient failures")
    PERSISTENCE_BACKOFF_MULTIPLIER: float = Field(0.2, ge=0.0)
    PERSISTENCE_BACKOFF_MIN_SECONDS: float = Field(0.1, ge=0.0)
    PERSISTENCE_BACKOFF_MAX_SECONDS: float = Field(2.0, ge=0.0)
    BULK_CHUNK_SIZE: int = Field(25, ge=1, description="Records committed per bulk transaction")

    # Sessions
    MAX_SESSION_EVENTS: int = Field(500, ge=1, description="Answer events accepted per session")
    MAX_CLOSED_SESSIONS: int = Field(
        1000, ge=1, description="Closed session summaries kept in memory to reject late answers"
    )

    # Scheduler
    MASTERY_THRESHOLDS: Dict[str, int] = Field(
        default_factory=lambda: {"new": 1, "learning": 3, "reviewing": 5},
        description="Correct streak needed to leave each mastery level",
    )
    BASE_INTERVAL_MINUTES: Dict[str, float] = Field(
        default_factory=lambda: {
            "new": 10,
            "learning": 60 * 24,
            "reviewing": 60 * 24 * 3,
            "mastered": 60 * 24 * 7,
        },
        description="Interval assigned when an item enters or falls back to a level",
    )
    DEFAULT_EASE_FACTOR: float = 2.5
    MIN_EASE_FACTOR: float = 1.3
    MAX_EASE_FACTOR: float = 3.0
    EASE_STEP_UP: float = 0.1
    EASE_STEP_DOWN: float = 0.2
    MAXIMUM_INTERVAL_DAYS: int = 365
    EXPECTED_LATENCY_MS: int = Field(8000, ge=1, description="Typical response time for a card")

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parent.parent / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Return cached engine settings instance."""

    return Settings()
