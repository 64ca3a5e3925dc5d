"""Analytics aggregation over learner progress and session history."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Union

from progress_engine.core.srs.models import LearningProgress, MasteryLevel, SessionSummary
from progress_engine.utils.time import ensure_utc


class NoData(str, enum.Enum):
    """Sentinel for metrics that have nothing to be computed from."""

    NO_DATA = "no data"

    def __bool__(self) -> bool:
        return False


NO_DATA = NoData.NO_DATA

Metric = Union[float, NoData]


@dataclass(slots=True)
class StreakStats:
    current: int
    longest: int


@dataclass(slots=True)
class ProgressSnapshot:
    """Read-only analytics view for one learner over ``[start, end]``."""

    user_id: str
    start: datetime
    end: datetime
    total_study_time: timedelta = timedelta(0)
    sessions_completed: int = 0
    total_events: int = 0
    correct_events: int = 0
    average_accuracy: Metric = NO_DATA
    mastery_distribution: dict[MasteryLevel, int] = field(
        default_factory=lambda: {level: 0 for level in MasteryLevel}
    )
    items_tracked: int = 0
    items_mastered_in_range: int = 0
    learning_velocity: Metric = NO_DATA
    current_streak: int = 0
    longest_streak: int = 0
    items_due: int = 0
    average_ease: Metric = NO_DATA
    skipped_sessions: int = 0

    @property
    def is_empty(self) -> bool:
        return self.sessions_completed == 0 and self.items_tracked == 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "total_study_seconds": self.total_study_time.total_seconds(),
            "sessions_completed": self.sessions_completed,
            "total_events": self.total_events,
            "correct_events": self.correct_events,
            "average_accuracy": _metric_payload(self.average_accuracy),
            "mastery_distribution": {
                level.value: count for level, count in self.mastery_distribution.items()
            },
            "items_tracked": self.items_tracked,
            "items_mastered_in_range": self.items_mastered_in_range,
            "learning_velocity": _metric_payload(self.learning_velocity),
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "items_due": self.items_due,
            "average_ease": _metric_payload(self.average_ease),
            "skipped_sessions": self.skipped_sessions,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ProgressSnapshot":
        return cls(
            user_id=payload["user_id"],
            start=datetime.fromisoformat(payload["start"]),
            end=datetime.fromisoformat(payload["end"]),
            total_study_time=timedelta(seconds=payload["total_study_seconds"]),
            sessions_completed=payload["sessions_completed"],
            total_events=payload["total_events"],
            correct_events=payload["correct_events"],
            average_accuracy=_metric_from_payload(payload["average_accuracy"]),
            mastery_distribution={
                MasteryLevel(level): count
                for level, count in payload["mastery_distribution"].items()
            },
            items_tracked=payload["items_tracked"],
            items_mastered_in_range=payload["items_mastered_in_range"],
            learning_velocity=_metric_from_payload(payload["learning_velocity"]),
            current_streak=payload["current_streak"],
            longest_streak=payload["longest_streak"],
            items_due=payload["items_due"],
            average_ease=_metric_from_payload(payload["average_ease"]),
            skipped_sessions=payload["skipped_sessions"],
        )


def _metric_payload(value: Metric) -> float | str:
    return value.value if isinstance(value, NoData) else value


def _metric_from_payload(value: float | str) -> Metric:
    return NO_DATA if value == NO_DATA.value else float(value)


def _ratio(numerator: float, denominator: float) -> Metric:
    if not denominator:
        return NO_DATA
    return numerator / denominator


def calculate_streaks(days: Iterable[date], *, today: date) -> StreakStats:
    """Current streak ends at ``today``, or yesterday if today has no session yet."""

    day_set = set(days)
    if not day_set:
        return StreakStats(current=0, longest=0)

    check_day = today if today in day_set else today - timedelta(days=1)
    current = 0
    while check_day in day_set:
        current += 1
        check_day -= timedelta(days=1)

    sorted_days = sorted(day_set)
    longest = 1
    streak = 1
    for previous, current_day in zip(sorted_days, sorted_days[1:]):
        if current_day - previous == timedelta(days=1):
            streak += 1
        else:
            longest = max(longest, streak)
            streak = 1
    longest = max(longest, streak)
    return StreakStats(current=current, longest=longest)


class AnalyticsAggregator:
    """Fold progress records and sessions into a :class:`ProgressSnapshot`.

    Stateless: every call works only from its arguments. Sessions that never
    ended or whose end precedes their start are counted in
    ``skipped_sessions`` and otherwise ignored.
    """

    def aggregate(
        self,
        *,
        user_id: str,
        progress: Iterable[LearningProgress],
        sessions: Iterable[SessionSummary],
        start: datetime,
        end: datetime,
    ) -> ProgressSnapshot:
        start = ensure_utc(start)
        end = ensure_utc(end)
        if end < start:
            raise ValueError("Analytics window end precedes its start")

        snapshot = ProgressSnapshot(user_id=user_id, start=start, end=end)
        self._fold_sessions(snapshot, sessions)
        self._fold_progress(snapshot, progress)
        return snapshot

    def _fold_sessions(self, snapshot: ProgressSnapshot, sessions: Iterable[SessionSummary]) -> None:
        study_time = timedelta(0)
        active_days: set[date] = set()
        for session in sessions:
            started = ensure_utc(session.started_at)
            if started is None or not (snapshot.start <= started <= snapshot.end):
                continue
            duration = session.duration
            if duration is None or duration < timedelta(0):
                snapshot.skipped_sessions += 1
                continue
            study_time += duration
            snapshot.sessions_completed += 1
            snapshot.total_events += max(0, session.total_events)
            snapshot.correct_events += max(0, min(session.correct_events, session.total_events))
            active_days.add(started.date())

        snapshot.total_study_time = study_time
        snapshot.average_accuracy = _ratio(snapshot.correct_events, snapshot.total_events)
        streaks = calculate_streaks(active_days, today=snapshot.end.date())
        snapshot.current_streak = streaks.current
        snapshot.longest_streak = streaks.longest

    def _fold_progress(self, snapshot: ProgressSnapshot, progress: Iterable[LearningProgress]) -> None:
        ease_total = 0.0
        for record in progress:
            snapshot.items_tracked += 1
            snapshot.mastery_distribution[record.mastery_level] += 1
            ease_total += record.ease_factor
            mastered_at = record.mastered_at
            if (
                record.mastery_level is MasteryLevel.MASTERED
                and mastered_at is not None
                and snapshot.start <= mastered_at <= snapshot.end
            ):
                snapshot.items_mastered_in_range += 1
            if record.next_review_at is None or record.next_review_at <= snapshot.end:
                snapshot.items_due += 1

        window_days = (snapshot.end - snapshot.start).total_seconds() / 86400
        snapshot.learning_velocity = _ratio(snapshot.items_mastered_in_range, window_days)
        snapshot.average_ease = _ratio(ease_total, snapshot.items_tracked)
