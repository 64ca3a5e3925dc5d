"""Pydantic schemas package."""

from progress_engine.schemas.analytics import AnalyticsSnapshotRead
from progress_engine.schemas.progress import ProgressRead, UserDeleteResponse
from progress_engine.schemas.session import AnswerRequest, SessionStartResponse, SessionSummaryRead

__all__ = [
    "AnalyticsSnapshotRead",
    "ProgressRead",
    "UserDeleteResponse",
    "AnswerRequest",
    "SessionStartResponse",
    "SessionSummaryRead",
]
