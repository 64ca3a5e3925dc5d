"""Read-only vocabulary catalog lookups."""
from __future__ import annotations

from typing import Protocol, Sequence

from sqlalchemy.orm import sessionmaker

from progress_engine.core.srs.models import VocabularyItem
from progress_engine.db.models.vocabulary import VocabularyItemRecord
from progress_engine.db.session import unit_of_work
from progress_engine.services.retry import RetryPolicy


class VocabularyCatalog(Protocol):
    """Source of item metadata; the engine never writes to it."""

    def get(self, item_id: int) -> VocabularyItem | None:  # pragma: no cover - interface definition
        ...


def _to_item(row: VocabularyItemRecord) -> VocabularyItem:
    return VocabularyItem(
        id=row.id,
        term=row.term,
        translation=row.translation,
        difficulty=row.difficulty or 1,
        category=row.category,
        tags=tuple(row.tags or ()),
    )


class SqlVocabularyCatalog:
    """Catalog backed by the ``vocabulary_items`` table.

    Lookups share the store's retry policy, so an unreachable database
    surfaces as :class:`PersistenceUnavailable` rather than a driver error.
    """

    def __init__(self, session_factory: sessionmaker, *, retry_policy: RetryPolicy | None = None) -> None:
        self.session_factory = session_factory
        self.retry_policy = retry_policy or RetryPolicy()

    def _load(self, item_id: int) -> VocabularyItem | None:
        with unit_of_work(self.session_factory, "vocabulary lookup") as db:
            row = db.get(VocabularyItemRecord, item_id)
            return _to_item(row) if row is not None else None

    def get(self, item_id: int) -> VocabularyItem | None:
        return self.retry_policy.call(self._load, item_id, description="vocabulary lookup")


class StaticVocabularyCatalog:
    """In-memory catalog for seeding and tests."""

    def __init__(self, items: Sequence[VocabularyItem] = ()) -> None:
        self._items = {item.id: item for item in items}

    def get(self, item_id: int) -> VocabularyItem | None:
        return self._items.get(item_id)
