"""Mastery-ladder spaced repetition scheduler.

The scheduler is a pure transform over :class:`LearningProgress`. A correct
answer extends the streak, nudges the ease factor up and multiplies the
current interval by it; crossing the level's streak threshold promotes the
item one rung. An incorrect answer resets the streak, lowers the ease factor,
demotes the item one rung and falls back to that rung's base interval.

Nothing here touches the clock or storage: the event timestamp is the only
notion of "now", which keeps the algorithm exhaustively testable.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from progress_engine.config import Settings
from progress_engine.core.srs.models import AnswerEvent, LearningProgress, MasteryLevel
from progress_engine.utils.exceptions import InvalidState
from progress_engine.utils.time import ensure_utc


@dataclass(slots=True)
class SchedulerConfig:
    """Thresholds and interval constants for the scheduler."""

    thresholds: dict[MasteryLevel, int] = field(
        default_factory=lambda: {
            MasteryLevel.NEW: 1,
            MasteryLevel.LEARNING: 3,
            MasteryLevel.REVIEWING: 5,
        }
    )
    base_intervals: dict[MasteryLevel, timedelta] = field(
        default_factory=lambda: {
            MasteryLevel.NEW: timedelta(minutes=10),
            MasteryLevel.LEARNING: timedelta(days=1),
            MasteryLevel.REVIEWING: timedelta(days=3),
            MasteryLevel.MASTERED: timedelta(days=7),
        }
    )
    default_ease: float = 2.5
    min_ease: float = 1.3
    max_ease: float = 3.0
    ease_step_up: float = 0.1
    ease_step_down: float = 0.2
    maximum_interval: timedelta = timedelta(days=365)
    expected_latency_ms: int | None = 8000

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchedulerConfig":
        thresholds = {
            MasteryLevel(level): int(value) for level, value in settings.MASTERY_THRESHOLDS.items()
        }
        base_intervals = {
            MasteryLevel(level): timedelta(minutes=float(minutes))
            for level, minutes in settings.BASE_INTERVAL_MINUTES.items()
        }
        return cls(
            thresholds=thresholds,
            base_intervals=base_intervals,
            default_ease=settings.DEFAULT_EASE_FACTOR,
            min_ease=settings.MIN_EASE_FACTOR,
            max_ease=settings.MAX_EASE_FACTOR,
            ease_step_up=settings.EASE_STEP_UP,
            ease_step_down=settings.EASE_STEP_DOWN,
            maximum_interval=timedelta(days=settings.MAXIMUM_INTERVAL_DAYS),
            expected_latency_ms=settings.EXPECTED_LATENCY_MS,
        )

    def threshold(self, level: MasteryLevel) -> int | None:
        """Streak needed to leave ``level``; ``None`` at the top of the ladder."""

        if level is MasteryLevel.MASTERED:
            return None
        return self.thresholds.get(level)

    def base_interval(self, level: MasteryLevel) -> timedelta:
        return self.base_intervals[level]


class SchedulerEngine:
    """Compute the next mastery state from a prior state and an answer."""

    def __init__(self, config: SchedulerConfig | None = None) -> None:
        self.config = config or SchedulerConfig()

    @staticmethod
    def _clamp(value: float, low: float, high: float) -> float:
        return max(low, min(high, value))

    def new_progress(self, user_id: str, item_id: int) -> LearningProgress:
        return LearningProgress.new(user_id, item_id, ease_factor=self.config.default_ease)

    def _latency_factor(self, event: AnswerEvent) -> float:
        """Scale between 0.9 and 1.1 based on how quickly the answer came."""

        latency = event.latency_ms
        expected = self.config.expected_latency_ms
        if latency is None or not expected:
            return 1.0
        ratio = latency / expected
        if ratio < 0.5:
            return 1.1
        if ratio < 0.8:
            return 1.05
        if ratio < 1.2:
            return 1.0
        if ratio < 2.0:
            return 0.95
        return 0.9

    def _cap(self, interval: timedelta) -> timedelta:
        return min(interval, self.config.maximum_interval)

    def _correct(self, progress: LearningProgress, event: AnswerEvent) -> LearningProgress:
        cfg = self.config
        streak = progress.streak + 1
        ease = round(self._clamp(progress.ease_factor + cfg.ease_step_up, cfg.min_ease, cfg.max_ease), 4)

        level = progress.mastery_level
        threshold = cfg.threshold(level)
        if threshold is not None and streak >= threshold:
            level = level.advance()

        previous = progress.interval
        grown = previous * (ease * self._latency_factor(event))
        # A correct answer never shortens the interval.
        interval = self._cap(max(cfg.base_interval(level), grown, previous))

        mastered_at = progress.mastered_at
        if level is MasteryLevel.MASTERED and progress.mastery_level is not MasteryLevel.MASTERED:
            mastered_at = event.timestamp

        return progress.evolve(
            mastery_level=level,
            review_count=progress.review_count + 1,
            streak=streak,
            ease_factor=ease,
            interval=interval,
            last_reviewed_at=event.timestamp,
            next_review_at=event.timestamp + interval,
            mastered_at=mastered_at,
        )

    def _incorrect(self, progress: LearningProgress, event: AnswerEvent) -> LearningProgress:
        cfg = self.config
        ease = round(self._clamp(progress.ease_factor - cfg.ease_step_down, cfg.min_ease, cfg.max_ease), 4)
        level = progress.mastery_level.regress()
        interval = self._cap(cfg.base_interval(level))
        return progress.evolve(
            mastery_level=level,
            review_count=progress.review_count + 1,
            streak=0,
            lapses=progress.lapses + 1,
            ease_factor=ease,
            interval=interval,
            last_reviewed_at=event.timestamp,
            next_review_at=event.timestamp + interval,
        )

    def advance(self, progress: LearningProgress, event: AnswerEvent) -> LearningProgress:
        """Return the state after applying ``event`` to ``progress``."""

        if (event.user_id, event.item_id) != progress.key:
            raise InvalidState(
                "Answer event does not belong to this progress record",
                details={
                    "user_id": str(progress.user_id),
                    "item_id": progress.item_id,
                    "event_user_id": str(event.user_id),
                    "event_item_id": event.item_id,
                },
            )
        if event.correct:
            return self._correct(progress, event)
        return self._incorrect(progress, event)

    def replay(self, progress: LearningProgress, events: Iterable[AnswerEvent]) -> LearningProgress:
        """Apply ``events`` in timestamp order, keeping arrival order for ties."""

        for event in order_events(events):
            progress = self.advance(progress, event)
        return progress

    @staticmethod
    def is_due(progress: LearningProgress, now: datetime) -> bool:
        if progress.next_review_at is None:
            return True
        return progress.next_review_at <= ensure_utc(now)

    def review_queue(
        self, records: Sequence[LearningProgress], *, now: datetime, limit: int | None = None
    ) -> list[LearningProgress]:
        """Due records, most overdue first, then most lapses, then hardest."""

        now = ensure_utc(now)
        due = [record for record in records if self.is_due(record, now)]

        def priority(record: LearningProgress) -> tuple[float, int, float]:
            due_at = record.next_review_at or now
            overdue = (now - due_at).total_seconds()
            return (-overdue, -record.lapses, record.ease_factor)

        due.sort(key=priority)
        return due[:limit] if limit is not None else due


def order_events(events: Iterable[AnswerEvent]) -> list[AnswerEvent]:
    """Stable timestamp ordering of answer events."""

    return sorted(events, key=lambda event: event.timestamp)
