"""Pytest fixtures for engine and API tests."""

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from progress_engine.config import Settings
from progress_engine.core.srs.scheduler import SchedulerEngine
from progress_engine.db.base import Base
from progress_engine.db.models import VocabularyItemRecord
from progress_engine.db.repository import SqlProgressBackend
from progress_engine.db.session import build_engine, build_session_factory, init_db
from progress_engine.main import create_app
from progress_engine.services.cached_store import CachedProgressStore
from progress_engine.services.engine import LearningEngine
from progress_engine.services.progress_store import ProgressStore
from progress_engine.services.retry import RetryPolicy
from progress_engine.utils.cache import CacheBackend
from progress_engine.utils.exceptions import TransientError


START = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeTime:
    """Monotonic time source for cache TTL tests."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


class FlakyBackend:
    """Wrap a backend and fail selected operations with transient errors."""

    def __init__(self, inner: SqlProgressBackend) -> None:
        self.inner = inner
        self.write_failures = 0
        self.session_failures = 0
        self.write_calls = 0

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def write_batch(self, records):
        self.write_calls += 1
        if self.write_failures:
            self.write_failures -= 1
            raise TransientError("simulated connection reset")
        return self.inner.write_batch(records)

    def save_session(self, summary):
        if self.session_failures:
            self.session_failures -= 1
            raise TransientError("simulated connection reset")
        return self.inner.save_session(summary)


@pytest.fixture()
def db_engine():
    engine = build_engine("sqlite://")
    init_db(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(db_engine) -> sessionmaker:
    factory = build_session_factory(db_engine)
    with factory() as db:
        db.add_all(
            [
                VocabularyItemRecord(id=item_id, term=f"mot-{item_id}", translation=f"word-{item_id}")
                for item_id in range(1, 61)
            ]
        )
        db.commit()
    return factory


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(DATABASE_URL="sqlite://", REDIS_URL=None, BULK_CHUNK_SIZE=25)


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture()
def retry_policy() -> RetryPolicy:
    return RetryPolicy.immediate()


@pytest.fixture()
def scheduler() -> SchedulerEngine:
    return SchedulerEngine()


@pytest.fixture()
def backend(session_factory) -> SqlProgressBackend:
    return SqlProgressBackend(session_factory)


@pytest.fixture()
def flaky_backend(backend) -> FlakyBackend:
    return FlakyBackend(backend)


@pytest.fixture()
def store(backend, retry_policy) -> ProgressStore:
    return ProgressStore(backend, retry_policy=retry_policy)


@pytest.fixture()
def cache(fake_time) -> CacheBackend:
    return CacheBackend(time_source=fake_time)


@pytest.fixture()
def cached_store(store, cache) -> CachedProgressStore:
    return CachedProgressStore(store, cache, ttl_seconds=300)


@pytest.fixture()
def learning_engine(test_settings, session_factory, cache, retry_policy, clock) -> LearningEngine:
    return LearningEngine.from_session_factory(
        test_settings,
        session_factory,
        cache=cache,
        retry_policy=retry_policy,
        clock=clock,
    )


@pytest.fixture()
def client(learning_engine, test_settings) -> Generator[TestClient, None, None]:
    app = create_app(engine=learning_engine, settings=test_settings)
    with TestClient(app) as test_client:
        yield test_client
