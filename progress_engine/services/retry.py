"""Retry policy applied uniformly to persistence calls."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from loguru import logger
from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_none,
)
from tenacity.wait import wait_base

from progress_engine.config import Settings
from progress_engine.utils.exceptions import PersistenceUnavailable, TransientError

T = TypeVar("T")


@dataclass(slots=True)
class RetryPolicy:
    """Retry transient failures with a bounded attempt budget.

    Only :class:`TransientError` is retried; anything else propagates on the
    first attempt. Exhausting the budget raises
    :class:`PersistenceUnavailable`.
    """

    attempts: int = 3
    wait: wait_base = field(default_factory=lambda: wait_exponential(multiplier=0.2, min=0.1, max=2))
    sleep: Callable[[float], None] | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            attempts=settings.PERSISTENCE_MAX_ATTEMPTS,
            wait=wait_exponential(
                multiplier=settings.PERSISTENCE_BACKOFF_MULTIPLIER,
                min=settings.PERSISTENCE_BACKOFF_MIN_SECONDS,
                max=settings.PERSISTENCE_BACKOFF_MAX_SECONDS,
            ),
        )

    @classmethod
    def immediate(cls, attempts: int = 3) -> "RetryPolicy":
        """Policy without backoff, for tests and in-process backends."""

        return cls(attempts=attempts, wait=wait_none())

    def _retrying(self) -> Retrying:
        options: dict[str, Any] = {
            "stop": stop_after_attempt(self.attempts),
            "wait": self.wait,
            "retry": retry_if_exception_type(TransientError),
            "before_sleep": before_sleep_log(logger, "WARNING"),
        }
        if self.sleep is not None:
            options["sleep"] = self.sleep
        return Retrying(**options)

    def call(self, operation: Callable[..., T], *args: Any, description: str = "", **kwargs: Any) -> T:
        """Run ``operation`` under the policy."""

        try:
            return self._retrying()(operation, *args, **kwargs)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            raise PersistenceUnavailable(
                f"{description or getattr(operation, '__name__', 'operation')} failed after "
                f"{self.attempts} attempts",
                details={"attempts": self.attempts, "cause": str(last)},
            ) from last
