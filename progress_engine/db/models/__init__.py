"""Database models package."""
from progress_engine.db.models.vocabulary import VocabularyItemRecord
from progress_engine.db.models.progress import LearningProgressRecord
from progress_engine.db.models.session import StudySessionRecord

__all__ = [
    "VocabularyItemRecord",
    "LearningProgressRecord",
    "StudySessionRecord",
]
