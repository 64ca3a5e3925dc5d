"""Service layer: persistence, caching, sessions and analytics."""

from progress_engine.services.analytics import NO_DATA, AnalyticsAggregator, NoData, ProgressSnapshot
from progress_engine.services.cached_store import CachedProgressStore
from progress_engine.services.engine import LearningEngine
from progress_engine.services.progress_store import (
    BulkWriteReport,
    ProgressStore,
    WriteConflict,
    WriteFailed,
    WriteOk,
)
from progress_engine.services.retry import RetryPolicy
from progress_engine.services.session_coordinator import SessionCoordinator

__all__ = [
    "NO_DATA",
    "AnalyticsAggregator",
    "NoData",
    "ProgressSnapshot",
    "CachedProgressStore",
    "LearningEngine",
    "BulkWriteReport",
    "ProgressStore",
    "WriteConflict",
    "WriteFailed",
    "WriteOk",
    "RetryPolicy",
    "SessionCoordinator",
]
