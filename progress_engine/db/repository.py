"""SQLAlchemy persistence backend for the progress store."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy import and_, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from progress_engine.core.srs.models import (
    LearningProgress,
    MasteryLevel,
    SessionOutcome,
    SessionSummary,
)
from progress_engine.db.models.progress import LearningProgressRecord
from progress_engine.db.models.session import StudySessionRecord
from progress_engine.db.session import unit_of_work
from progress_engine.core.results import WriteConflict, WriteOk, WriteResult
from progress_engine.utils.exceptions import TransientError
from progress_engine.utils.time import ensure_utc


def _to_domain(row: LearningProgressRecord) -> LearningProgress:
    return LearningProgress(
        user_id=row.user_id,
        item_id=row.item_id,
        mastery_level=MasteryLevel(row.mastery_level),
        review_count=row.review_count or 0,
        streak=row.streak or 0,
        lapses=row.lapses or 0,
        ease_factor=row.ease_factor,
        interval=timedelta(seconds=row.interval_seconds or 0.0),
        last_reviewed_at=ensure_utc(row.last_reviewed_at),
        next_review_at=ensure_utc(row.next_review_at),
        mastered_at=ensure_utc(row.mastered_at),
        version=row.version,
    )


def _column_values(record: LearningProgress) -> dict:
    return {
        "mastery_level": record.mastery_level.value,
        "review_count": record.review_count,
        "streak": record.streak,
        "lapses": record.lapses,
        "ease_factor": record.ease_factor,
        "interval_seconds": record.interval.total_seconds(),
        "last_reviewed_at": record.last_reviewed_at,
        "next_review_at": record.next_review_at,
        "mastered_at": record.mastered_at,
    }


def _summary_from_row(row: StudySessionRecord) -> SessionSummary:
    return SessionSummary(
        session_id=row.id,
        user_id=row.user_id,
        started_at=ensure_utc(row.started_at),
        ended_at=ensure_utc(row.ended_at),
        total_events=row.total_events or 0,
        correct_events=row.correct_events or 0,
        outcome=SessionOutcome(row.outcome or SessionOutcome.COMPLETE.value),
        committed_item_ids=list(row.committed_item_ids or []),
        unpersisted_item_ids=list(row.unpersisted_item_ids or []),
    )


class SqlProgressBackend:
    """Progress backend storing rows through SQLAlchemy sessions."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def _session(self, operation: str):
        return unit_of_work(self.session_factory, operation)

    @staticmethod
    def _progress_query(user_id: str, item_id: int):
        return select(LearningProgressRecord).where(
            and_(
                LearningProgressRecord.user_id == user_id,
                LearningProgressRecord.item_id == item_id,
            )
        )

    def load(self, user_id: str, item_id: int) -> LearningProgress | None:
        with self._session("progress load") as db:
            row = db.scalars(self._progress_query(user_id, item_id)).first()
            return _to_domain(row) if row is not None else None

    def load_many(self, user_id: str, item_ids: Sequence[int] | None = None) -> list[LearningProgress]:
        with self._session("progress list") as db:
            stmt = select(LearningProgressRecord).where(LearningProgressRecord.user_id == user_id)
            if item_ids is not None:
                if not item_ids:
                    return []
                stmt = stmt.where(LearningProgressRecord.item_id.in_(list(item_ids)))
            stmt = stmt.order_by(LearningProgressRecord.item_id.asc())
            return [_to_domain(row) for row in db.scalars(stmt)]

    def _current_version(self, db: Session, record: LearningProgress) -> int:
        row = db.scalars(self._progress_query(record.user_id, record.item_id)).first()
        return row.version if row is not None else 0

    def _insert(self, db: Session, record: LearningProgress) -> WriteResult:
        current = self._current_version(db, record)
        if current:
            return WriteConflict(current_version=current)
        db.add(
            LearningProgressRecord(
                user_id=record.user_id,
                item_id=record.item_id,
                version=1,
                **_column_values(record),
            )
        )
        return WriteOk(version=1)

    def _update(self, db: Session, record: LearningProgress) -> WriteResult:
        stmt = (
            update(LearningProgressRecord)
            .where(
                and_(
                    LearningProgressRecord.user_id == record.user_id,
                    LearningProgressRecord.item_id == record.item_id,
                    LearningProgressRecord.version == record.version,
                )
            )
            .values(version=LearningProgressRecord.version + 1, **_column_values(record))
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        if result.rowcount != 1:
            return WriteConflict(current_version=self._current_version(db, record))
        return WriteOk(version=record.version + 1)

    def write_batch(self, records: Sequence[LearningProgress]) -> dict[tuple[str, int], WriteResult]:
        results: dict[tuple[str, int], WriteResult] = {}
        with self._session("progress write") as db:
            for record in records:
                if record.version == 0:
                    results[record.key] = self._insert(db, record)
                else:
                    results[record.key] = self._update(db, record)
            try:
                db.commit()
            except IntegrityError as exc:
                # Another writer inserted one of the rows first; a retry sees it.
                db.rollback()
                raise TransientError(
                    "progress write raced a concurrent insert",
                    details={"operation": "progress write"},
                ) from exc
        return results

    def save_session(self, summary: SessionSummary) -> None:
        with self._session("session save") as db:
            row = db.get(StudySessionRecord, summary.session_id)
            if row is None:
                row = StudySessionRecord(id=summary.session_id, user_id=summary.user_id)
                db.add(row)
            row.started_at = summary.started_at
            row.ended_at = summary.ended_at
            row.total_events = summary.total_events
            row.correct_events = summary.correct_events
            row.outcome = summary.outcome.value
            row.committed_item_ids = list(summary.committed_item_ids)
            row.unpersisted_item_ids = list(summary.unpersisted_item_ids)
            db.commit()

    def load_sessions(
        self, user_id: str, start: datetime | None, end: datetime | None
    ) -> list[SessionSummary]:
        with self._session("session list") as db:
            stmt = select(StudySessionRecord).where(StudySessionRecord.user_id == user_id)
            if start is not None:
                stmt = stmt.where(StudySessionRecord.started_at >= start)
            if end is not None:
                stmt = stmt.where(StudySessionRecord.started_at <= end)
            stmt = stmt.order_by(StudySessionRecord.started_at.asc())
            return [_summary_from_row(row) for row in db.scalars(stmt)]

    def delete_user(self, user_id: str) -> int:
        with self._session("user delete") as db:
            progress = db.execute(
                delete(LearningProgressRecord).where(LearningProgressRecord.user_id == user_id)
            )
            sessions = db.execute(
                delete(StudySessionRecord).where(StudySessionRecord.user_id == user_id)
            )
            db.commit()
            return (progress.rowcount or 0) + (sessions.rowcount or 0)
