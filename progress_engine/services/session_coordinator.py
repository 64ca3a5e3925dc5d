"""Learning session lifecycle: accept answers, schedule, flush in batches."""
from __future__ import annotations

import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Union

from loguru import logger

from progress_engine.core.srs.models import (
    AnswerEvent,
    LearningProgress,
    SessionOutcome,
    SessionStatus,
    SessionSummary,
)
from progress_engine.core.srs.scheduler import SchedulerEngine
from progress_engine.services.cached_store import CachedProgressStore
from progress_engine.services.progress_store import ProgressStore, WriteConflict, WriteOk
from progress_engine.services.vocabulary import VocabularyCatalog
from progress_engine.utils.exceptions import (
    ConflictError,
    InvalidState,
    ItemNotFound,
    PersistenceUnavailable,
    SessionError,
    StorageError,
)
from progress_engine.utils.time import Clock, ensure_utc, utc_now

Store = Union[ProgressStore, CachedProgressStore]


@dataclass(slots=True)
class ItemTrack:
    """Answers given for one item during a session."""

    base: LearningProgress
    current: LearningProgress
    events: list[AnswerEvent] = field(default_factory=list)


@dataclass(slots=True)
class StudySession:
    """In-flight session state owned by the coordinator."""

    session_id: str
    user_id: str
    started_at: datetime
    status: SessionStatus = SessionStatus.OPEN
    ended_at: datetime | None = None
    items: dict[int, ItemTrack] = field(default_factory=dict)
    total_events: int = 0
    correct_events: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class SessionCoordinator:
    """Drive sessions through ``OPEN -> ACCEPTING -> CLOSING -> CLOSED``.

    Answers are scheduled immediately so callers get the updated state back,
    but persisted only when the session closes. Within a session the answers
    for an item are always replayed from the item's pre-session state in
    timestamp order, so late-arriving events slot into place instead of being
    merged or dropped.
    """

    def __init__(
        self,
        store: Store,
        scheduler: SchedulerEngine,
        *,
        clock: Clock = utc_now,
        catalog: VocabularyCatalog | None = None,
        max_session_events: int = 500,
        max_closed_sessions: int = 1000,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.clock = clock
        self.catalog = catalog
        self.max_session_events = max_session_events
        self.max_closed_sessions = max(1, max_closed_sessions)
        self._sessions: dict[str, StudySession] = {}
        self._closed: OrderedDict[str, SessionSummary] = OrderedDict()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def get_session(self, session_id: str) -> StudySession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                return session
            if session_id in self._closed:
                raise SessionError(
                    "Session is closed and cannot be reopened",
                    details={"session_id": session_id},
                )
        raise SessionError("Unknown session", details={"session_id": session_id})

    def closed_summary(self, session_id: str) -> SessionSummary | None:
        with self._lock:
            return self._closed.get(session_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def open(self, user_id: str) -> str:
        session = StudySession(
            session_id=str(uuid.uuid4()),
            user_id=user_id,
            started_at=ensure_utc(self.clock()),
        )
        with self._lock:
            self._sessions[session.session_id] = session
        logger.info("Session opened", session_id=session.session_id, user_id=str(user_id))
        return session.session_id

    def submit(
        self,
        session_id: str,
        item_id: int,
        correct: bool,
        latency: timedelta | None = None,
        *,
        timestamp: datetime | None = None,
    ) -> LearningProgress:
        """Schedule an answer and return the item's updated state."""

        session = self.get_session(session_id)
        with session.lock:
            if session.status in (SessionStatus.CLOSING, SessionStatus.CLOSED):
                raise SessionError(
                    "Session no longer accepts answers",
                    details={"session_id": session_id, "status": session.status.value},
                )
            if session.total_events >= self.max_session_events:
                raise SessionError(
                    "Session answer limit reached",
                    details={"session_id": session_id, "limit": self.max_session_events},
                )
            if self.catalog is not None and self.catalog.get(item_id) is None:
                raise ItemNotFound("Vocabulary item not found", details={"item_id": item_id})

            track = session.items.get(item_id)
            if track is None:
                base = self.store.get(session.user_id, item_id)
                track = ItemTrack(base=base, current=base)
                session.items[item_id] = track

            event = AnswerEvent(
                user_id=session.user_id,
                item_id=item_id,
                correct=correct,
                timestamp=ensure_utc(timestamp) if timestamp is not None else ensure_utc(self.clock()),
                response_latency=latency,
            )
            track.events.append(event)
            track.current = self.scheduler.replay(track.base, track.events)

            session.status = SessionStatus.ACCEPTING
            session.total_events += 1
            if correct:
                session.correct_events += 1
            return track.current

    def _resolve_conflict(self, session: StudySession, item_id: int) -> bool:
        """Recompute an item against the now-current row and write once more."""

        track = session.items[item_id]
        try:
            updated, _ = self.store.apply(
                session.user_id,
                item_id,
                lambda current: self.scheduler.replay(current, track.events),
                attempts=1,
            )
        except (ConflictError, PersistenceUnavailable, InvalidState, StorageError) as exc:
            logger.warning(
                "Could not resolve progress conflict",
                session_id=session.session_id,
                item_id=item_id,
                reason=type(exc).__name__,
            )
            return False
        track.current = updated
        return True

    def _flush(
        self,
        session: StudySession,
        pending: list[LearningProgress],
        committed: list[int],
        should_continue: Callable[[], bool],
    ) -> None:
        report = self.store.bulk_put(pending, should_continue=should_continue)
        for record in pending:
            result = report.results.get(record.key)
            if isinstance(result, WriteOk):
                session.items[record.item_id].current = record.evolve(version=result.version)
                committed.append(record.item_id)
            elif isinstance(result, WriteConflict) and should_continue() and self._resolve_conflict(
                session, record.item_id
            ):
                committed.append(record.item_id)

    def _remember_closed(self, summary: SessionSummary) -> None:
        with self._lock:
            self._sessions.pop(summary.session_id, None)
            self._closed[summary.session_id] = summary
            while len(self._closed) > self.max_closed_sessions:
                evicted, _ = self._closed.popitem(last=False)
                logger.debug("Closed session forgotten", session_id=evicted)

    def close(self, session_id: str, *, cancel: threading.Event | None = None) -> SessionSummary:
        """Flush queued progress, persist the summary and close the session.

        Items that could not be written are listed in
        ``unpersisted_item_ids`` and the outcome becomes
        ``PARTIALLY_PERSISTED``. Setting ``cancel`` stops further writes;
        the summary still lists everything that was committed before. A
        failing flush never leaves the session stuck in ``CLOSING``: every
        item not confirmed by then is reported as unpersisted.
        """

        session = self.get_session(session_id)
        with session.lock:
            if session.status in (SessionStatus.CLOSING, SessionStatus.CLOSED):
                raise SessionError("Session is already closing", details={"session_id": session_id})
            session.status = SessionStatus.CLOSING

            def should_continue() -> bool:
                return cancel is None or not cancel.is_set()

            pending = [track.current for track in session.items.values() if track.events]
            committed: list[int] = []
            try:
                self._flush(session, pending, committed, should_continue)
            except Exception:
                logger.exception("Session flush failed", session_id=session_id, pending=len(pending))
            unpersisted = [record.item_id for record in pending if record.item_id not in committed]

            session.ended_at = ensure_utc(self.clock())
            summary = SessionSummary(
                session_id=session.session_id,
                user_id=session.user_id,
                started_at=session.started_at,
                ended_at=session.ended_at,
                total_events=session.total_events,
                correct_events=session.correct_events,
                outcome=SessionOutcome.PARTIALLY_PERSISTED if unpersisted else SessionOutcome.COMPLETE,
                committed_item_ids=list(committed),
                unpersisted_item_ids=unpersisted,
            )
            try:
                self.store.save_session(summary)
            except Exception as exc:
                logger.error(
                    "Session summary could not be persisted",
                    session_id=session.session_id,
                    reason=type(exc).__name__,
                )
                summary.outcome = SessionOutcome.PARTIALLY_PERSISTED
                summary.summary_persisted = False

            session.status = SessionStatus.CLOSED
            self._remember_closed(summary)

        log = logger.warning if unpersisted else logger.info
        log(
            "Session closed",
            session_id=session_id,
            outcome=summary.outcome.value,
            committed=len(committed),
            unpersisted=len(unpersisted),
        )
        return summary
