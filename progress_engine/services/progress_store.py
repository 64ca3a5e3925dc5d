"""Durable progress storage with retry, idempotency and optimistic versioning."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Protocol, Sequence

from loguru import logger

from progress_engine.core.results import WriteConflict, WriteFailed, WriteOk, WriteResult
from progress_engine.core.srs.models import LearningProgress, SessionSummary
from progress_engine.services.retry import RetryPolicy
from progress_engine.utils.exceptions import (
    ConflictError,
    InvalidState,
    NotFound,
    PersistenceUnavailable,
    StorageError,
)


@dataclass(slots=True)
class BulkWriteReport:
    """Per-item outcome of a bulk write, in submission order."""

    results: dict[tuple[str, int], WriteResult] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[tuple[str, int]]:
        return [key for key, result in self.results.items() if isinstance(result, WriteOk)]

    @property
    def failed(self) -> dict[tuple[str, int], WriteResult]:
        return {key: result for key, result in self.results.items() if not isinstance(result, WriteOk)}

    @property
    def conflicts(self) -> list[tuple[str, int]]:
        return [key for key, result in self.results.items() if isinstance(result, WriteConflict)]


class ProgressBackend(Protocol):
    """Persistence backend contract.

    Implementations raise :class:`TransientError` for retryable I/O failures.
    ``write_batch`` commits every record it reports as :class:`WriteOk` in a
    single transaction and never commits records it reports otherwise.
    """

    def load(self, user_id: str, item_id: int) -> LearningProgress | None:  # pragma: no cover - interface definition
        ...

    def load_many(self, user_id: str, item_ids: Sequence[int] | None = None) -> list[LearningProgress]:  # pragma: no cover - interface definition
        ...

    def write_batch(self, records: Sequence[LearningProgress]) -> dict[tuple[str, int], WriteResult]:  # pragma: no cover - interface definition
        ...

    def save_session(self, summary: SessionSummary) -> None:  # pragma: no cover - interface definition
        ...

    def load_sessions(self, user_id: str, start: datetime | None, end: datetime | None) -> list[SessionSummary]:  # pragma: no cover - interface definition
        ...

    def delete_user(self, user_id: str) -> int:  # pragma: no cover - interface definition
        ...


def validate_transition(record: LearningProgress, stored: LearningProgress | None, *, min_ease: float, max_ease: float) -> None:
    """Reject records the scheduler could never have produced."""

    problems: list[str] = []
    if record.review_count < 0 or record.streak < 0 or record.lapses < 0:
        problems.append("counters must be non-negative")
    if record.streak > record.review_count:
        problems.append("streak exceeds review_count")
    if not (min_ease - 1e-9 <= record.ease_factor <= max_ease + 1e-9):
        problems.append("ease_factor out of bounds")
    if record.next_review_at is not None and record.last_reviewed_at is None:
        problems.append("next_review_at set without last_reviewed_at")
    if (
        record.next_review_at is not None
        and record.last_reviewed_at is not None
        and record.next_review_at < record.last_reviewed_at
    ):
        problems.append("next_review_at precedes last_reviewed_at")

    # Stale records are left for the backend to report as version conflicts.
    if stored is None or stored.version == record.version:
        previous = stored or LearningProgress.new(record.user_id, record.item_id)
        delta = record.review_count - previous.review_count
        if delta < 0:
            problems.append("review_count decreased")
        elif previous.mastery_level.steps_to(record.mastery_level) > delta:
            problems.append(
                f"mastery moved {previous.mastery_level.value} -> {record.mastery_level.value} "
                f"in {delta} reviews"
            )

    if problems:
        raise InvalidState(
            "; ".join(problems),
            details={"user_id": str(record.user_id), "item_id": record.item_id},
        )


def is_duplicate(record: LearningProgress, stored: LearningProgress | None) -> bool:
    """Whether ``record`` is a replay of the write that produced ``stored``."""

    if stored is None or record.review_count != stored.review_count:
        return False
    return (
        record.mastery_level == stored.mastery_level
        and record.streak == stored.streak
        and record.last_reviewed_at == stored.last_reviewed_at
    )


class ProgressStore:
    """Keyed progress storage exposing get/put/bulk_put with retries."""

    def __init__(
        self,
        backend: ProgressBackend,
        *,
        retry_policy: RetryPolicy | None = None,
        chunk_size: int = 25,
        min_ease: float = 1.3,
        max_ease: float = 3.0,
        default_ease: float = 2.5,
    ) -> None:
        self.backend = backend
        self.retry_policy = retry_policy or RetryPolicy()
        self.chunk_size = max(1, chunk_size)
        self.min_ease = min_ease
        self.max_ease = max_ease
        self.default_ease = default_ease

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def fetch(self, user_id: str, item_id: int) -> LearningProgress:
        """Return the stored record or raise :class:`NotFound`."""

        stored = self.retry_policy.call(self.backend.load, user_id, item_id, description="progress load")
        if stored is None:
            raise NotFound(
                "No progress recorded for item",
                details={"user_id": str(user_id), "item_id": item_id},
            )
        return stored

    def get(self, user_id: str, item_id: int) -> LearningProgress:
        """Return the stored record, defaulting to a fresh NEW record."""

        try:
            return self.fetch(user_id, item_id)
        except NotFound:
            return LearningProgress.new(user_id, item_id, ease_factor=self.default_ease)

    def list_progress(self, user_id: str, item_ids: Sequence[int] | None = None) -> list[LearningProgress]:
        return self.retry_policy.call(
            self.backend.load_many, user_id, item_ids, description="progress list"
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def _validate(self, record: LearningProgress, stored: LearningProgress | None) -> None:
        try:
            validate_transition(record, stored, min_ease=self.min_ease, max_ease=self.max_ease)
        except InvalidState as exc:
            logger.bind(user_id=str(record.user_id), item_id=record.item_id).error(
                f"Rejected progress write: {exc.message}"
            )
            raise

    def put(self, record: LearningProgress) -> WriteOk | WriteConflict:
        """Write a single record.

        Raises :class:`InvalidState` for malformed records and
        :class:`PersistenceUnavailable` once the retry budget is spent.
        """

        stored = self.retry_policy.call(
            self.backend.load, record.user_id, record.item_id, description="progress load"
        )
        if is_duplicate(record, stored):
            return WriteOk(version=stored.version, duplicate=True)
        self._validate(record, stored)
        results = self.retry_policy.call(self.backend.write_batch, [record], description="progress write")
        result = results[record.key]
        if isinstance(result, WriteFailed):
            raise result.error
        return result

    def _write_chunk(self, chunk: Sequence[LearningProgress], report: BulkWriteReport) -> None:
        item_ids_by_user: dict[str, list[int]] = {}
        for record in chunk:
            item_ids_by_user.setdefault(record.user_id, []).append(record.item_id)

        stored_rows: dict[tuple[str, int], LearningProgress] = {}
        try:
            for user_id, item_ids in item_ids_by_user.items():
                for row in self.retry_policy.call(
                    self.backend.load_many, user_id, item_ids, description="progress load"
                ):
                    stored_rows[row.key] = row
        except (PersistenceUnavailable, StorageError) as exc:
            for record in chunk:
                report.results[record.key] = WriteFailed(exc)
            return

        writable: list[LearningProgress] = []
        for record in chunk:
            stored = stored_rows.get(record.key)
            if is_duplicate(record, stored):
                report.results[record.key] = WriteOk(version=stored.version, duplicate=True)
                continue
            try:
                self._validate(record, stored)
            except InvalidState as exc:
                report.results[record.key] = WriteFailed(exc)
                continue
            writable.append(record)

        if not writable:
            return
        try:
            outcome = self.retry_policy.call(self.backend.write_batch, writable, description="progress bulk write")
        except (PersistenceUnavailable, InvalidState, StorageError) as exc:
            for record in writable:
                report.results[record.key] = WriteFailed(exc)
            return
        for record in writable:
            report.results[record.key] = outcome[record.key]

    def bulk_put(
        self,
        records: Iterable[LearningProgress],
        *,
        should_continue: Callable[[], bool] | None = None,
    ) -> BulkWriteReport:
        """Write records in chunks, reporting every item independently.

        ``should_continue`` is checked before each chunk; once it returns
        false no further chunks are written and the remaining records are
        left out of the report.
        """

        pending = list(records)
        report = BulkWriteReport()
        for start in range(0, len(pending), self.chunk_size):
            if should_continue is not None and not should_continue():
                logger.info(
                    "Bulk write cancelled",
                    written=len(report.results),
                    remaining=len(pending) - start,
                )
                break
            self._write_chunk(pending[start:start + self.chunk_size], report)
        return report

    def apply(
        self,
        user_id: str,
        item_id: int,
        transform: Callable[[LearningProgress], LearningProgress],
        *,
        attempts: int = 2,
    ) -> tuple[LearningProgress, WriteOk]:
        """Read-modify-write ``transform`` against the current state.

        With the default two attempts a version mismatch re-reads the row and
        recomputes once before surfacing :class:`ConflictError`.
        """

        result: WriteOk | WriteConflict | None = None
        for _ in range(max(1, attempts)):
            current = self.get(user_id, item_id)
            updated = transform(current)
            result = self.put(updated)
            if isinstance(result, WriteOk):
                return updated.evolve(version=result.version), result
            logger.info(
                "Progress version conflict, recomputing",
                user_id=str(user_id),
                item_id=item_id,
                current_version=result.current_version,
            )
        raise ConflictError(
            "Progress changed concurrently",
            current_version=result.current_version if isinstance(result, WriteConflict) else None,
            details={"user_id": str(user_id), "item_id": item_id},
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def save_session(self, summary: SessionSummary) -> None:
        self.retry_policy.call(self.backend.save_session, summary, description="session save")

    def list_sessions(
        self, user_id: str, start: datetime | None = None, end: datetime | None = None
    ) -> list[SessionSummary]:
        return self.retry_policy.call(
            self.backend.load_sessions, user_id, start, end, description="session list"
        )

    def delete_user(self, user_id: str) -> int:
        """Cascade-delete a learner's progress and sessions."""

        removed = self.retry_policy.call(self.backend.delete_user, user_id, description="user delete")
        logger.info("Deleted learner progress", user_id=str(user_id), removed=removed)
        return removed
