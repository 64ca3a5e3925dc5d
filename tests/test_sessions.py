from __future__ import annotations

import threading
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from progress_engine.core.srs import AnswerEvent, MasteryLevel, SchedulerEngine, SessionOutcome
from progress_engine.services.engine import LearningEngine
from progress_engine.services.progress_store import ProgressStore
from progress_engine.services.retry import RetryPolicy
from progress_engine.services.session_coordinator import SessionCoordinator
from progress_engine.services.vocabulary import SqlVocabularyCatalog, StaticVocabularyCatalog
from progress_engine.utils.exceptions import ItemNotFound, PersistenceUnavailable, SessionError


def test_session_lifecycle_persists_progress(learning_engine: LearningEngine, clock) -> None:
    session_id = learning_engine.open_session("learner-1")
    for _ in range(3):
        clock.advance(seconds=30)
        learning_engine.submit_answer(session_id, 1, True, timedelta(seconds=4))
    clock.advance(seconds=30)
    learning_engine.submit_answer(session_id, 2, False)
    clock.advance(minutes=1)

    summary = learning_engine.close_session(session_id)

    assert summary.outcome is SessionOutcome.COMPLETE
    assert summary.total_events == 4
    assert summary.correct_events == 3
    assert summary.duration == timedelta(minutes=3)
    assert sorted(summary.committed_item_ids) == [1, 2]
    assert summary.unpersisted_item_ids == []
    stored = learning_engine.get_progress("learner-1", 1)
    assert stored.mastery_level is MasteryLevel.REVIEWING
    assert stored.review_count == 3
    assert stored.version == 1
    assert learning_engine.get_progress("learner-1", 2).lapses == 1


def test_submit_returns_updated_state_before_close(learning_engine: LearningEngine) -> None:
    session_id = learning_engine.open_session("learner-1")

    progress = learning_engine.submit_answer(session_id, 1, True)

    assert progress.mastery_level is MasteryLevel.LEARNING
    assert learning_engine.get_progress("learner-1", 1).version == 0


def test_closed_session_rejects_answers(learning_engine: LearningEngine) -> None:
    session_id = learning_engine.open_session("learner-1")
    learning_engine.submit_answer(session_id, 1, True)
    learning_engine.close_session(session_id)

    with pytest.raises(SessionError):
        learning_engine.submit_answer(session_id, 1, True)
    with pytest.raises(SessionError):
        learning_engine.close_session(session_id)
    assert learning_engine.coordinator.closed_summary(session_id) is not None


def test_unknown_session_and_item_are_rejected(learning_engine: LearningEngine) -> None:
    with pytest.raises(SessionError):
        learning_engine.submit_answer("missing", 1, True)

    session_id = learning_engine.open_session("learner-1")
    with pytest.raises(ItemNotFound):
        learning_engine.submit_answer(session_id, 999, True)


def test_out_of_order_answers_are_replayed_by_timestamp(learning_engine: LearningEngine, clock) -> None:
    session_id = learning_engine.open_session("learner-1")
    t0 = clock()

    learning_engine.submit_answer(session_id, 1, True, timestamp=t0 + timedelta(minutes=3))
    learning_engine.submit_answer(session_id, 1, False, timestamp=t0 + timedelta(minutes=1))
    latest = learning_engine.submit_answer(session_id, 1, True, timestamp=t0 + timedelta(minutes=2))

    scheduler = learning_engine.scheduler
    expected = scheduler.new_progress("learner-1", 1)
    for minutes, correct in ((1, False), (2, True), (3, True)):
        expected = scheduler.advance(
            expected,
            AnswerEvent(user_id="learner-1", item_id=1, correct=correct, timestamp=t0 + timedelta(minutes=minutes)),
        )
    assert latest == expected
    assert latest.last_reviewed_at == t0 + timedelta(minutes=3)


def test_overlapping_sessions_resolve_conflicts(learning_engine: LearningEngine, clock) -> None:
    first = learning_engine.open_session("learner-1")
    second = learning_engine.open_session("learner-1")
    learning_engine.submit_answer(first, 1, True)
    clock.advance(minutes=1)
    learning_engine.submit_answer(second, 1, True)
    clock.advance(minutes=1)
    learning_engine.submit_answer(second, 1, True)

    first_summary = learning_engine.close_session(first)
    second_summary = learning_engine.close_session(second)

    assert first_summary.committed_item_ids == [1]
    assert second_summary.outcome is SessionOutcome.COMPLETE
    assert second_summary.committed_item_ids == [1]
    stored = learning_engine.get_progress("learner-1", 1)
    assert stored.review_count == 3
    assert stored.version == 2


def test_cancelled_close_reports_unpersisted_items(learning_engine: LearningEngine) -> None:
    session_id = learning_engine.open_session("learner-1")
    learning_engine.submit_answer(session_id, 1, True)
    learning_engine.submit_answer(session_id, 2, True)
    cancel = threading.Event()
    cancel.set()

    summary = learning_engine.close_session(session_id, cancel=cancel)

    assert summary.outcome is SessionOutcome.PARTIALLY_PERSISTED
    assert summary.committed_item_ids == []
    assert sorted(summary.unpersisted_item_ids) == [1, 2]
    assert learning_engine.get_progress("learner-1", 1).version == 0


def _coordinator(backend, clock, **kwargs) -> SessionCoordinator:
    store = ProgressStore(backend, retry_policy=RetryPolicy.immediate(attempts=2))
    return SessionCoordinator(store, SchedulerEngine(), clock=clock, **kwargs)


def test_failed_flush_marks_session_partially_persisted(flaky_backend, clock) -> None:
    coordinator = _coordinator(flaky_backend, clock)
    session_id = coordinator.open("learner-1")
    coordinator.submit(session_id, 1, True)
    flaky_backend.write_failures = 2

    summary = coordinator.close(session_id)

    assert summary.outcome is SessionOutcome.PARTIALLY_PERSISTED
    assert summary.unpersisted_item_ids == [1]
    assert summary.summary_persisted
    assert coordinator.store.list_sessions("learner-1")[0].outcome is SessionOutcome.PARTIALLY_PERSISTED


def test_summary_failure_is_reported(flaky_backend, clock) -> None:
    coordinator = _coordinator(flaky_backend, clock)
    session_id = coordinator.open("learner-1")
    coordinator.submit(session_id, 1, True)
    flaky_backend.session_failures = 2

    summary = coordinator.close(session_id)

    assert summary.committed_item_ids == [1]
    assert not summary.summary_persisted
    assert summary.outcome is SessionOutcome.PARTIALLY_PERSISTED


def test_session_answer_limit(backend, clock) -> None:
    coordinator = _coordinator(backend, clock, max_session_events=2, catalog=StaticVocabularyCatalog())
    session_id = coordinator.open("learner-1")

    with pytest.raises(ItemNotFound):
        coordinator.submit(session_id, 1, True)

    coordinator.catalog = None
    coordinator.submit(session_id, 1, True)
    coordinator.submit(session_id, 2, True)
    with pytest.raises(SessionError):
        coordinator.submit(session_id, 3, True)


def test_unexpected_flush_error_still_closes_session(backend, clock, monkeypatch) -> None:
    coordinator = _coordinator(backend, clock)
    session_id = coordinator.open("learner-1")
    coordinator.submit(session_id, 1, True)
    coordinator.submit(session_id, 2, False)

    def crash(records):
        raise RuntimeError("driver crashed")

    monkeypatch.setattr(backend, "write_batch", crash)

    summary = coordinator.close(session_id)

    assert summary.outcome is SessionOutcome.PARTIALLY_PERSISTED
    assert summary.committed_item_ids == []
    assert sorted(summary.unpersisted_item_ids) == [1, 2]
    assert summary.summary_persisted
    assert coordinator.closed_summary(session_id) is summary
    assert coordinator.store.list_sessions("learner-1")[0].unpersisted_item_ids == [1, 2]
    with pytest.raises(SessionError, match="closed"):
        coordinator.close(session_id)
    with pytest.raises(SessionError, match="closed"):
        coordinator.submit(session_id, 1, True)


def test_unexpected_summary_error_still_closes_session(backend, clock, monkeypatch) -> None:
    coordinator = _coordinator(backend, clock)
    session_id = coordinator.open("learner-1")
    coordinator.submit(session_id, 1, True)

    def crash(summary):
        raise RuntimeError("driver crashed")

    monkeypatch.setattr(backend, "save_session", crash)

    summary = coordinator.close(session_id)

    assert summary.committed_item_ids == [1]
    assert not summary.summary_persisted
    assert summary.outcome is SessionOutcome.PARTIALLY_PERSISTED
    assert coordinator.closed_summary(session_id) is summary


def test_closed_sessions_are_forgotten_beyond_retention_limit(backend, clock) -> None:
    coordinator = _coordinator(backend, clock, max_closed_sessions=2)
    session_ids = [coordinator.open("learner-1") for _ in range(3)]
    for session_id in session_ids:
        coordinator.close(session_id)

    assert len(coordinator._closed) == 2
    assert coordinator.closed_summary(session_ids[0]) is None
    assert coordinator.closed_summary(session_ids[2]) is not None
    with pytest.raises(SessionError, match="Unknown session"):
        coordinator.submit(session_ids[0], 1, True)
    with pytest.raises(SessionError, match="closed"):
        coordinator.submit(session_ids[1], 1, True)


def test_catalog_lookups_retry_and_then_give_up(session_factory, monkeypatch) -> None:
    catalog = SqlVocabularyCatalog(session_factory, retry_policy=RetryPolicy.immediate(attempts=2))
    original_get = Session.get
    failures = [1]

    def unreachable(self, entity, ident, **kwargs):
        if failures:
            failures.pop()
            raise OperationalError("SELECT vocabulary_items", {}, Exception("connection refused"))
        return original_get(self, entity, ident, **kwargs)

    monkeypatch.setattr(Session, "get", unreachable)

    assert catalog.get(1).term == "mot-1"

    failures.extend([1, 1])
    with pytest.raises(PersistenceUnavailable):
        catalog.get(1)
