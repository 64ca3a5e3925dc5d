from __future__ import annotations

from datetime import timedelta

from progress_engine.config import Settings
from progress_engine.core.srs import MasteryLevel
from progress_engine.services.analytics import NO_DATA
from progress_engine.services.cached_store import ANALYTICS_NAMESPACE
from progress_engine.services.engine import LearningEngine


def _study(engine: LearningEngine, clock, answers: dict[int, list[bool]]) -> None:
    session_id = engine.open_session("learner-1")
    for item_id, results in answers.items():
        for correct in results:
            clock.advance(seconds=20)
            engine.submit_answer(session_id, item_id, correct)
    clock.advance(minutes=1)
    engine.close_session(session_id)


def test_analytics_for_new_learner_is_empty(learning_engine: LearningEngine, clock) -> None:
    snapshot = learning_engine.get_analytics("learner-1", clock() - timedelta(days=7), clock())

    assert snapshot.is_empty
    assert snapshot.average_accuracy is NO_DATA


def test_analytics_reflect_closed_sessions(learning_engine: LearningEngine, clock) -> None:
    start = clock()
    _study(learning_engine, clock, {1: [True] * 5, 2: [True, False]})

    snapshot = learning_engine.get_analytics("learner-1", start - timedelta(days=1), clock())

    assert snapshot.sessions_completed == 1
    assert snapshot.total_events == 7
    assert snapshot.correct_events == 6
    assert snapshot.items_tracked == 2
    assert snapshot.mastery_distribution[MasteryLevel.MASTERED] == 1
    assert snapshot.items_mastered_in_range == 1
    assert snapshot.current_streak == 1


def test_analytics_are_cached_until_the_next_write(learning_engine: LearningEngine, clock, cache) -> None:
    start = clock() - timedelta(days=1)
    _study(learning_engine, clock, {1: [True]})
    end = clock() + timedelta(hours=1)

    first = learning_engine.get_analytics("learner-1", start, end)
    hits = cache.metrics.hits
    again = learning_engine.get_analytics("learner-1", start, end)

    assert cache.metrics.hits == hits + 1
    assert again.sessions_completed == first.sessions_completed == 1

    _study(learning_engine, clock, {2: [True]})
    refreshed = learning_engine.get_analytics("learner-1", start, end)

    assert refreshed.sessions_completed == 2
    assert refreshed.items_tracked == 2


def test_analytics_read_racing_a_session_close_is_not_cached(
    learning_engine: LearningEngine, clock, monkeypatch
) -> None:
    start = clock() - timedelta(days=1)
    end = clock() + timedelta(hours=1)
    session_id = learning_engine.open_session("learner-1")
    learning_engine.submit_answer(session_id, 1, True)
    original_list_sessions = learning_engine.store.list_sessions

    def racing_list_sessions(user_id, start=None, end=None):
        sessions = original_list_sessions(user_id, start, end)
        learning_engine.close_session(session_id)
        return sessions

    monkeypatch.setattr(learning_engine.store, "list_sessions", racing_list_sessions)
    stale = learning_engine.get_analytics("learner-1", start, end)
    monkeypatch.setattr(learning_engine.store, "list_sessions", original_list_sessions)

    assert stale.sessions_completed == 0
    assert learning_engine.get_analytics("learner-1", start, end).sessions_completed == 1
    assert learning_engine.store._generations == {}
    assert learning_engine.store._readers == {}


def test_review_queue_lists_due_items(learning_engine: LearningEngine, clock) -> None:
    _study(learning_engine, clock, {1: [False], 2: [True], 3: [True, True, True]})

    assert learning_engine.review_queue("learner-1", now=clock()) == []

    later = clock() + timedelta(days=2)
    queue = learning_engine.review_queue("learner-1", now=later)

    assert [record.item_id for record in queue] == [1, 2]
    assert learning_engine.review_queue("learner-1", now=later, limit=1)[0].item_id == 1


def test_delete_user_drops_progress_and_cached_analytics(learning_engine: LearningEngine, clock, cache) -> None:
    start = clock() - timedelta(days=1)
    _study(learning_engine, clock, {1: [True]})
    learning_engine.get_analytics("learner-1", start, clock())

    removed = learning_engine.delete_user("learner-1")

    assert removed == 2
    assert not any(key.startswith(ANALYTICS_NAMESPACE + ":learner-1:") for key in cache._entries)
    assert learning_engine.get_progress("learner-1", 1).version == 0
    assert learning_engine.get_analytics("learner-1", start, clock()).is_empty


def test_build_uses_settings(session_factory, cache, clock) -> None:
    settings = Settings(MAX_SESSION_EVENTS=1, BULK_CHUNK_SIZE=5, PROGRESS_CACHE_TTL_SECONDS=30)

    engine = LearningEngine.from_session_factory(settings, session_factory, cache=cache, clock=clock)

    assert engine.coordinator.max_session_events == 1
    assert engine.store.store.chunk_size == 5
    assert engine.store.ttl_seconds == 30
    assert engine.store.store.retry_policy.attempts == settings.PERSISTENCE_MAX_ATTEMPTS
