"""Domain types shared by the scheduler, the store and the coordinator."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from progress_engine.utils.time import ensure_utc


class MasteryLevel(str, enum.Enum):
    """Ordered mastery ladder for a vocabulary item."""

    NEW = "new"
    LEARNING = "learning"
    REVIEWING = "reviewing"
    MASTERED = "mastered"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    def advance(self) -> "MasteryLevel":
        return _LEVEL_ORDER[min(self.rank + 1, len(_LEVEL_ORDER) - 1)]

    def regress(self) -> "MasteryLevel":
        return _LEVEL_ORDER[max(self.rank - 1, 0)]

    def steps_to(self, other: "MasteryLevel") -> int:
        """Absolute number of ladder steps between two levels."""

        return abs(other.rank - self.rank)


_LEVEL_ORDER = [
    MasteryLevel.NEW,
    MasteryLevel.LEARNING,
    MasteryLevel.REVIEWING,
    MasteryLevel.MASTERED,
]


@dataclass(frozen=True, slots=True)
class VocabularyItem:
    """Catalog entry referenced by progress records."""

    id: int
    term: str
    translation: str | None = None
    difficulty: int = 1
    category: str | None = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class AnswerEvent:
    """A single observed answer, consumed by the scheduler."""

    user_id: str
    item_id: int
    correct: bool
    timestamp: datetime
    response_latency: timedelta | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    @property
    def latency_ms(self) -> int | None:
        if self.response_latency is None:
            return None
        return int(self.response_latency.total_seconds() * 1000)


@dataclass(frozen=True, slots=True)
class LearningProgress:
    """Per-user, per-item learning state.

    ``version`` is the optimistic concurrency token of the stored row the
    record was derived from; ``0`` means the row has never been written.
    """

    user_id: str
    item_id: int
    mastery_level: MasteryLevel = MasteryLevel.NEW
    review_count: int = 0
    streak: int = 0
    lapses: int = 0
    ease_factor: float = 2.5
    interval: timedelta = timedelta(0)
    last_reviewed_at: datetime | None = None
    next_review_at: datetime | None = None
    mastered_at: datetime | None = None
    version: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "last_reviewed_at", ensure_utc(self.last_reviewed_at))
        object.__setattr__(self, "next_review_at", ensure_utc(self.next_review_at))
        object.__setattr__(self, "mastered_at", ensure_utc(self.mastered_at))

    @classmethod
    def new(cls, user_id: str, item_id: int, *, ease_factor: float = 2.5) -> "LearningProgress":
        """Implicit default for an item the learner has never answered."""

        return cls(user_id=user_id, item_id=item_id, ease_factor=ease_factor)

    @property
    def key(self) -> tuple[str, int]:
        return (self.user_id, self.item_id)

    @property
    def is_new(self) -> bool:
        return self.version == 0 and self.review_count == 0

    def evolve(self, **changes: Any) -> "LearningProgress":
        return replace(self, **changes)

    def to_payload(self) -> dict[str, Any]:
        """Serialise into a JSON friendly mapping for the cache."""

        return {
            "user_id": self.user_id,
            "item_id": self.item_id,
            "mastery_level": self.mastery_level.value,
            "review_count": self.review_count,
            "streak": self.streak,
            "lapses": self.lapses,
            "ease_factor": self.ease_factor,
            "interval_seconds": self.interval.total_seconds(),
            "last_reviewed_at": _iso(self.last_reviewed_at),
            "next_review_at": _iso(self.next_review_at),
            "mastered_at": _iso(self.mastered_at),
            "version": self.version,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "LearningProgress":
        return cls(
            user_id=payload["user_id"],
            item_id=int(payload["item_id"]),
            mastery_level=MasteryLevel(payload["mastery_level"]),
            review_count=int(payload["review_count"]),
            streak=int(payload["streak"]),
            lapses=int(payload.get("lapses", 0)),
            ease_factor=float(payload["ease_factor"]),
            interval=timedelta(seconds=float(payload.get("interval_seconds", 0))),
            last_reviewed_at=_parse(payload.get("last_reviewed_at")),
            next_review_at=_parse(payload.get("next_review_at")),
            mastered_at=_parse(payload.get("mastered_at")),
            version=int(payload.get("version", 0)),
        )


class SessionStatus(str, enum.Enum):
    OPEN = "open"
    ACCEPTING = "accepting"
    CLOSING = "closing"
    CLOSED = "closed"


class SessionOutcome(str, enum.Enum):
    COMPLETE = "complete"
    PARTIALLY_PERSISTED = "partially_persisted"


@dataclass(slots=True)
class SessionSummary:
    """Aggregate of a closed session, persisted at completion."""

    session_id: str
    user_id: str
    started_at: datetime
    ended_at: datetime | None
    total_events: int = 0
    correct_events: int = 0
    outcome: SessionOutcome = SessionOutcome.COMPLETE
    committed_item_ids: list[int] = field(default_factory=list)
    unpersisted_item_ids: list[int] = field(default_factory=list)
    summary_persisted: bool = True

    @property
    def duration(self) -> timedelta | None:
        if self.ended_at is None or self.started_at is None:
            return None
        return self.ended_at - self.started_at

    @property
    def accuracy(self) -> float | None:
        if not self.total_events:
            return None
        return self.correct_events / self.total_events


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
