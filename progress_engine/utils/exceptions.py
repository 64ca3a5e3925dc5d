"""Custom exception classes and error handling utilities."""
from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from loguru import logger


UNSAVED_ANSWER_MESSAGE = "Your last answer may not be saved yet. Please try again shortly."


class ProgressEngineError(Exception):
    """Base exception for the engine."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class TransientError(ProgressEngineError):
    """Retryable I/O failure (connectivity, timeout)."""
    pass


class PersistenceUnavailable(ProgressEngineError):
    """Retry budget exhausted for a transient failure."""
    pass


class StorageError(ProgressEngineError):
    """Database failure that a retry cannot fix."""
    pass


class InvalidState(ProgressEngineError):
    """Illegal mastery/streak state written outside the scheduler."""
    pass


class ConflictError(ProgressEngineError):
    """Concurrent write observed a different stored version."""

    def __init__(
        self,
        message: str,
        *,
        current_version: int | None = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.current_version = current_version
        super().__init__(message, details)


class NotFound(ProgressEngineError):
    """Missing progress record."""
    pass


class ItemNotFound(ProgressEngineError):
    """Vocabulary item unknown to the catalog."""
    pass


class SessionError(ProgressEngineError):
    """Learning session lifecycle errors."""
    pass


def handle_persistence_error(error: ProgressEngineError) -> HTTPException:
    """Handle exhausted retries and database failures."""
    logger.bind(**error.details).error(f"Persistence error: {error.message}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=UNSAVED_ANSWER_MESSAGE,
    )


def handle_invalid_state_error(error: InvalidState) -> HTTPException:
    """Handle rejected progress writes."""
    logger.bind(**error.details).error(f"Invalid progress state: {error.message}")
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"message": error.message, "details": error.details},
    )


def handle_conflict_error(error: ConflictError) -> HTTPException:
    """Handle optimistic versioning conflicts."""
    logger.warning(f"Progress conflict: {error.message}")
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "message": UNSAVED_ANSWER_MESSAGE,
            "current_version": error.current_version,
        },
    )


def handle_not_found_error(error: ProgressEngineError) -> HTTPException:
    """Handle unknown sessions or vocabulary items."""
    logger.warning(f"Not found: {error.message}")
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)


def handle_session_error(error: SessionError) -> HTTPException:
    """Handle learning session errors."""
    logger.warning(f"Session error: {error.message}")
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)


def to_http_exception(error: ProgressEngineError) -> HTTPException:
    """Dispatch an engine error to the matching handler."""
    if isinstance(error, (PersistenceUnavailable, TransientError, StorageError)):
        return handle_persistence_error(error)
    if isinstance(error, InvalidState):
        return handle_invalid_state_error(error)
    if isinstance(error, ConflictError):
        return handle_conflict_error(error)
    if isinstance(error, (NotFound, ItemNotFound)):
        return handle_not_found_error(error)
    if isinstance(error, SessionError):
        return handle_session_error(error)
    logger.error(f"Unhandled engine error: {error.message}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Progress engine failure.",
    )
