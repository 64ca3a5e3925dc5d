"""Spaced repetition scheduling."""

from progress_engine.core.srs.models import (
    AnswerEvent,
    LearningProgress,
    MasteryLevel,
    SessionOutcome,
    SessionStatus,
    SessionSummary,
    VocabularyItem,
)
from progress_engine.core.srs.scheduler import SchedulerConfig, SchedulerEngine, order_events

__all__ = [
    "AnswerEvent",
    "LearningProgress",
    "MasteryLevel",
    "SessionOutcome",
    "SessionStatus",
    "SessionSummary",
    "VocabularyItem",
    "SchedulerConfig",
    "SchedulerEngine",
    "order_events",
]
