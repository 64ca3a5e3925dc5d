"""Read-through cache in front of the progress store."""
from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Callable, Iterable, Sequence, TypeVar

from loguru import logger

from progress_engine.core.srs.models import LearningProgress, SessionSummary
from progress_engine.services.analytics import ProgressSnapshot
from progress_engine.services.progress_store import (
    BulkWriteReport,
    ProgressStore,
    WriteConflict,
    WriteOk,
)
from progress_engine.utils.cache import CacheBackend

PROGRESS_NAMESPACE = "progress:item"
ANALYTICS_NAMESPACE = "analytics:snapshot"

T = TypeVar("T")
Token = tuple[str, str]


def progress_cache_key(user_id: str, item_id: int) -> str:
    return f"{user_id}:{item_id}"


def user_cache_prefix(user_id: str) -> str:
    return f"{user_id}:"


class CachedProgressStore:
    """Progress store whose reads go through the cache.

    Entries are populated lazily on reads and dropped, never updated, by
    every acknowledged write. While a read is loading from the store its key
    carries a generation counter; a write that lands in the meantime bumps
    it, and the read then returns its value without caching it. Counters only
    exist while a read for their key is in flight.

    Analytics snapshots follow the same rule with one counter per learner,
    bumped by any write that touches the learner's progress or sessions.
    """

    def __init__(self, store: ProgressStore, cache: CacheBackend, *, ttl_seconds: int = 300) -> None:
        self.store = store
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._generations: dict[Token, int] = {}
        self._readers: dict[Token, int] = {}

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------
    def _bump(self, token: Token) -> None:
        # Caller holds the lock.
        if token in self._readers:
            self._generations[token] = self._generations.get(token, 0) + 1

    def _drop_progress(self, user_id: str, item_id: int) -> None:
        key = progress_cache_key(user_id, item_id)
        self._bump((PROGRESS_NAMESPACE, key))
        self.cache.invalidate(PROGRESS_NAMESPACE, key=key)

    def _drop_analytics(self, user_id: str) -> None:
        self._bump((ANALYTICS_NAMESPACE, str(user_id)))
        self.cache.invalidate(ANALYTICS_NAMESPACE, prefix=user_cache_prefix(user_id))

    def invalidate(self, user_id: str, item_id: int) -> None:
        with self._lock:
            self._drop_progress(user_id, item_id)
            self._drop_analytics(user_id)

    def _invalidate_many(self, keys: Iterable[tuple[str, int]]) -> None:
        users: set[str] = set()
        with self._lock:
            for user_id, item_id in keys:
                self._drop_progress(user_id, item_id)
                users.add(user_id)
            for user_id in users:
                self._drop_analytics(user_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def _read_through(
        self,
        token: Token,
        key: str,
        load: Callable[[], T],
        encode: Callable[[T], Any],
        ttl_seconds: int,
    ) -> T:
        namespace = token[0]
        with self._lock:
            self._readers[token] = self._readers.get(token, 0) + 1
            generation = self._generations.get(token, 0)
        try:
            value = load()
            with self._lock:
                if self._generations.get(token, 0) == generation:
                    self.cache.set(namespace, key, encode(value), ttl_seconds=ttl_seconds)
                else:
                    logger.debug("Skipped cache fill after concurrent write", namespace=namespace, key=key)
            return value
        finally:
            with self._lock:
                remaining = self._readers[token] - 1
                if remaining:
                    self._readers[token] = remaining
                else:
                    del self._readers[token]
                    self._generations.pop(token, None)

    def get(self, user_id: str, item_id: int) -> LearningProgress:
        key = progress_cache_key(user_id, item_id)
        cached = self.cache.get(PROGRESS_NAMESPACE, key)
        if cached is not None:
            return LearningProgress.from_payload(cached)
        return self._read_through(
            (PROGRESS_NAMESPACE, key),
            key,
            lambda: self.store.get(user_id, item_id),
            LearningProgress.to_payload,
            self.ttl_seconds,
        )

    def snapshot(
        self,
        user_id: str,
        window_key: str,
        compute: Callable[[], ProgressSnapshot],
        *,
        ttl_seconds: int,
    ) -> ProgressSnapshot:
        """Return the learner's snapshot cached under ``window_key``, computing it on a miss."""

        key = user_cache_prefix(user_id) + window_key
        cached = self.cache.get(ANALYTICS_NAMESPACE, key)
        if cached is not None:
            return ProgressSnapshot.from_payload(cached)
        return self._read_through(
            (ANALYTICS_NAMESPACE, str(user_id)),
            key,
            compute,
            ProgressSnapshot.to_payload,
            ttl_seconds,
        )

    def list_progress(self, user_id: str, item_ids: Sequence[int] | None = None) -> list[LearningProgress]:
        return self.store.list_progress(user_id, item_ids)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def put(self, record: LearningProgress) -> WriteOk | WriteConflict:
        result = self.store.put(record)
        # Conflicts also mean the cached copy is stale.
        self.invalidate(record.user_id, record.item_id)
        return result

    def bulk_put(
        self,
        records: Iterable[LearningProgress],
        *,
        should_continue: Callable[[], bool] | None = None,
    ) -> BulkWriteReport:
        report = self.store.bulk_put(records, should_continue=should_continue)
        touched = [
            key for key, result in report.results.items() if isinstance(result, (WriteOk, WriteConflict))
        ]
        self._invalidate_many(touched)
        return report

    def apply(
        self,
        user_id: str,
        item_id: int,
        transform: Callable[[LearningProgress], LearningProgress],
        *,
        attempts: int = 2,
    ) -> tuple[LearningProgress, WriteOk]:
        try:
            return self.store.apply(user_id, item_id, transform, attempts=attempts)
        finally:
            self.invalidate(user_id, item_id)

    # ------------------------------------------------------------------
    # Pass-through
    # ------------------------------------------------------------------
    def save_session(self, summary: SessionSummary) -> None:
        self.store.save_session(summary)
        with self._lock:
            self._drop_analytics(summary.user_id)

    def list_sessions(
        self, user_id: str, start: datetime | None = None, end: datetime | None = None
    ) -> list[SessionSummary]:
        return self.store.list_sessions(user_id, start, end)

    def delete_user(self, user_id: str) -> int:
        removed = self.store.delete_user(user_id)
        prefix = user_cache_prefix(user_id)
        with self._lock:
            for token in list(self._readers):
                if token[0] == PROGRESS_NAMESPACE and token[1].startswith(prefix):
                    self._bump(token)
            self.cache.invalidate(PROGRESS_NAMESPACE, prefix=prefix)
            self._drop_analytics(user_id)
        return removed
