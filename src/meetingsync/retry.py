"""
Retry subsystem used by the migration orchestrator.

The orchestrator does not implement attempt counting, backoff or terminal
failure marking itself. It asks a RetryTracker whether a migration key may
run again and reports outcomes back to it.

Example:
    >>> from meetingsync.config import RetryConfig
    >>> from meetingsync.retry import InMemoryRetryTracker
    >>>
    >>> tracker = InMemoryRetryTracker(RetryConfig(max_attempts=3))
    >>> if tracker.should_retry("migration:full"):
    ...     tracker.record_attempt("migration:full")
    ...     ...
    ...     tracker.mark_failed("migration:full", "store unavailable")
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from meetingsync.config import RetryConfig
from meetingsync.models import utc_now

logger = logging.getLogger(__name__)


class RetryStatus(Enum):
    """Outcome state tracked for a migration key."""

    IN_PROGRESS = "in_progress"
    """An attempt has been recorded and has not reported an outcome yet."""

    COMPLETED = "completed"
    """The last attempt succeeded."""

    FAILED = "failed"
    """The last attempt failed; another attempt is allowed after backoff."""

    EXHAUSTED = "exhausted"
    """All attempts failed; no further attempt is allowed."""

    CANCELLED = "cancelled"
    """The last attempt was cancelled; it does not count toward max_attempts."""


@dataclass(frozen=True)
class RetryState:
    """Snapshot of the retry bookkeeping for one key."""

    key: str
    attempts: int = 0
    status: RetryStatus = RetryStatus.IN_PROGRESS
    last_attempt_at: datetime | None = None
    last_error: str | None = None
    next_retry_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "attempts": self.attempts,
            "status": self.status.value,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "last_error": self.last_error,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
        }


def calculate_backoff(
    attempt: int,
    config: RetryConfig,
) -> float:
    """
    Calculate backoff delay with exponential growth and jitter.

    Args:
        attempt: Current attempt number (0-based)
        config: Retry configuration

    Returns:
        Delay in seconds

    Example:
        >>> config = RetryConfig(initial_delay=1.0, max_delay=60.0)
        >>> delay = calculate_backoff(0, config)  # 1s
        >>> delay = calculate_backoff(3, config)  # 8s
    """
    delay = config.initial_delay * (config.exponential_base**attempt)
    delay = min(delay, config.max_delay)

    jitter_range = delay * config.jitter
    delay += random.uniform(-jitter_range, jitter_range)  # nosec B311 - not crypto

    return max(0, delay)


@runtime_checkable
class RetryTracker(Protocol):
    """
    Protocol for the retry subsystem.

    Keys identify a migration across attempts (the orchestrator uses the
    scope key), not a single run.
    """

    def should_retry(self, key: str) -> bool:
        """Return True if another attempt for this key may start now."""
        ...

    def record_attempt(self, key: str) -> None:
        """Record that an attempt for this key is starting."""
        ...

    def mark_completed(self, key: str) -> None:
        """Record that the latest attempt succeeded."""
        ...

    def mark_failed(self, key: str, reason: str) -> None:
        """Record that the latest attempt failed."""
        ...

    def mark_cancelled(self, key: str) -> None:
        """Record that the latest attempt was cancelled before finishing."""
        ...

    def get_status(self, key: str) -> RetryState | None:
        """Return the bookkeeping for a key, if any."""
        ...


class InMemoryRetryTracker:
    """
    In-memory RetryTracker with exponential backoff.

    A failed key may be retried once its backoff delay has elapsed, until
    max_attempts consecutive failures mark it exhausted. A success resets
    the attempt count.

    Args:
        config: Retry configuration (defaults to RetryConfig()).
        clock: Callable returning the current time; injectable for tests.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config or RetryConfig()
        self._clock = clock
        self._states: dict[str, RetryState] = {}

    @property
    def config(self) -> RetryConfig:
        return self._config

    def should_retry(self, key: str) -> bool:
        state = self._states.get(key)
        if state is None:
            return True
        if state.status == RetryStatus.EXHAUSTED:
            return False
        if state.status == RetryStatus.FAILED:
            if state.next_retry_at is not None and self._clock() < state.next_retry_at:
                logger.debug(
                    "Retry for %s deferred until %s",
                    key,
                    state.next_retry_at.isoformat(),
                )
                return False
        return True

    def record_attempt(self, key: str) -> None:
        state = self._states.get(key, RetryState(key=key))
        self._states[key] = replace(
            state,
            attempts=state.attempts + 1,
            status=RetryStatus.IN_PROGRESS,
            last_attempt_at=self._clock(),
        )

    def mark_completed(self, key: str) -> None:
        state = self._states.get(key, RetryState(key=key))
        self._states[key] = replace(
            state,
            attempts=0,
            status=RetryStatus.COMPLETED,
            last_error=None,
            next_retry_at=None,
        )

    def mark_failed(self, key: str, reason: str) -> None:
        state = self._states.get(key, RetryState(key=key, attempts=1))
        if state.attempts >= self._config.max_attempts:
            self._states[key] = replace(
                state,
                status=RetryStatus.EXHAUSTED,
                last_error=reason,
                next_retry_at=None,
            )
            logger.warning(
                "Retries exhausted for %s after %d attempts: %s",
                key,
                state.attempts,
                reason,
            )
            return

        delay = calculate_backoff(max(state.attempts - 1, 0), self._config)
        self._states[key] = replace(
            state,
            status=RetryStatus.FAILED,
            last_error=reason,
            next_retry_at=self._clock() + timedelta(seconds=delay),
        )
        logger.info(
            "Attempt %d for %s failed, next retry in %.1fs: %s",
            state.attempts,
            key,
            delay,
            reason,
        )

    def mark_cancelled(self, key: str) -> None:
        state = self._states.get(key)
        if state is None:
            return
        # the cancelled attempt is given back
        self._states[key] = replace(
            state,
            attempts=max(state.attempts - 1, 0),
            status=RetryStatus.CANCELLED,
            next_retry_at=None,
        )
        logger.info("Attempt for %s cancelled", key)

    def get_status(self, key: str) -> RetryState | None:
        return self._states.get(key)

    def reset(self, key: str | None = None) -> None:
        """Forget the bookkeeping for one key, or for all keys."""
        if key is None:
            self._states.clear()
        else:
            self._states.pop(key, None)


__all__ = [
    "RetryStatus",
    "RetryState",
    "RetryTracker",
    "InMemoryRetryTracker",
    "calculate_backoff",
]
