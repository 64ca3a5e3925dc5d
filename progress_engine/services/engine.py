"""Engine facade exposed to the surrounding application layer."""
from __future__ import annotations

import threading
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy.orm import sessionmaker

from progress_engine.config import Settings
from progress_engine.core.srs.models import LearningProgress, SessionSummary
from progress_engine.core.srs.scheduler import SchedulerConfig, SchedulerEngine
from progress_engine.db.repository import SqlProgressBackend
from progress_engine.services.analytics import AnalyticsAggregator, ProgressSnapshot
from progress_engine.services.cached_store import CachedProgressStore
from progress_engine.services.progress_store import ProgressBackend, ProgressStore
from progress_engine.services.retry import RetryPolicy
from progress_engine.services.session_coordinator import SessionCoordinator
from progress_engine.services.vocabulary import SqlVocabularyCatalog, VocabularyCatalog
from progress_engine.utils.cache import CacheBackend, build_cache_key
from progress_engine.utils.time import Clock, ensure_utc, utc_now


class LearningEngine:
    """Open sessions, take answers, and serve progress and analytics."""

    def __init__(
        self,
        *,
        store: CachedProgressStore,
        coordinator: SessionCoordinator,
        scheduler: SchedulerEngine,
        aggregator: AnalyticsAggregator | None = None,
        clock: Clock = utc_now,
        analytics_ttl_seconds: int = 900,
    ) -> None:
        self.store = store
        self.coordinator = coordinator
        self.scheduler = scheduler
        self.aggregator = aggregator or AnalyticsAggregator()
        self.clock = clock
        self.analytics_ttl_seconds = analytics_ttl_seconds

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        backend: ProgressBackend,
        catalog: VocabularyCatalog | None = None,
        cache: CacheBackend | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Clock = utc_now,
    ) -> "LearningEngine":
        """Assemble the engine graph from settings and collaborators."""

        config = SchedulerConfig.from_settings(settings)
        scheduler = SchedulerEngine(config)
        store = ProgressStore(
            backend,
            retry_policy=retry_policy or RetryPolicy.from_settings(settings),
            chunk_size=settings.BULK_CHUNK_SIZE,
            min_ease=config.min_ease,
            max_ease=config.max_ease,
            default_ease=config.default_ease,
        )
        if cache is None:
            cache = CacheBackend(str(settings.REDIS_URL) if settings.REDIS_URL else None)
        cached = CachedProgressStore(store, cache, ttl_seconds=settings.PROGRESS_CACHE_TTL_SECONDS)
        coordinator = SessionCoordinator(
            cached,
            scheduler,
            clock=clock,
            catalog=catalog,
            max_session_events=settings.MAX_SESSION_EVENTS,
            max_closed_sessions=settings.MAX_CLOSED_SESSIONS,
        )
        return cls(
            store=cached,
            coordinator=coordinator,
            scheduler=scheduler,
            clock=clock,
            analytics_ttl_seconds=settings.ANALYTICS_CACHE_TTL_SECONDS,
        )

    @classmethod
    def from_session_factory(
        cls,
        settings: Settings,
        session_factory: sessionmaker,
        *,
        retry_policy: RetryPolicy | None = None,
        **kwargs,
    ) -> "LearningEngine":
        retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        return cls.build(
            settings,
            backend=SqlProgressBackend(session_factory),
            catalog=SqlVocabularyCatalog(session_factory, retry_policy=retry_policy),
            retry_policy=retry_policy,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def open_session(self, user_id: str) -> str:
        return self.coordinator.open(user_id)

    def submit_answer(
        self,
        session_id: str,
        item_id: int,
        correct: bool,
        latency: timedelta | None = None,
        *,
        timestamp: datetime | None = None,
    ) -> LearningProgress:
        return self.coordinator.submit(session_id, item_id, correct, latency, timestamp=timestamp)

    def close_session(self, session_id: str, *, cancel: threading.Event | None = None) -> SessionSummary:
        return self.coordinator.close(session_id, cancel=cancel)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_progress(self, user_id: str, item_id: int) -> LearningProgress:
        return self.store.get(user_id, item_id)

    def review_queue(
        self, user_id: str, *, limit: int = 20, now: datetime | None = None
    ) -> list[LearningProgress]:
        records = self.store.list_progress(user_id)
        return self.scheduler.review_queue(records, now=now or self.clock(), limit=limit)

    def get_analytics(self, user_id: str, start: datetime, end: datetime) -> ProgressSnapshot:
        start = ensure_utc(start)
        end = ensure_utc(end)

        def compute() -> ProgressSnapshot:
            return self.aggregator.aggregate(
                user_id=user_id,
                progress=self.store.list_progress(user_id),
                sessions=self.store.list_sessions(user_id, start, end),
                start=start,
                end=end,
            )

        return self.store.snapshot(
            user_id,
            build_cache_key(start=start, end=end),
            compute,
            ttl_seconds=self.analytics_ttl_seconds,
        )

    def delete_user(self, user_id: str) -> int:
        removed = self.store.delete_user(user_id)
        logger.info("Learner data removed", user_id=str(user_id), rows=removed)
        return removed
