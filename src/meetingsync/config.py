"""
Configuration objects for meetingsync components.

Configs are frozen dataclasses validated on construction; callers build
them explicitly and pass them to the components that need them. Nothing
is read from the environment.

Example:
    >>> from datetime import timedelta
    >>> from meetingsync.config import MigrationConfig
    >>>
    >>> config = MigrationConfig(history_limit=20, cooldown=timedelta(hours=6))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any


@dataclass(frozen=True)
class MigrationConfig:
    """
    Configuration for the migration orchestrator.

    Attributes:
        history_limit: Number of past runs retained in the run history.
        cooldown: Window after a completed run during which
            should_migrate() reports that no run is needed.
        date_tolerance: Two meetings of the same project closer than this
            are treated as the same meeting (merge resolution).
        default_duration_minutes: Duration given to legacy meetings without one.
        default_location: Location given to legacy meetings without one.
        min_items_per_second: Throughput below which the performance rule fails.
        rule_timeout: Seconds a single validation rule may take.
    """

    history_limit: int = 50
    cooldown: timedelta = timedelta(hours=24)
    date_tolerance: timedelta = timedelta(seconds=60)
    default_duration_minutes: int = 60
    default_location: str = "Online"
    min_items_per_second: float = 1.0
    rule_timeout: float = 5.0

    def __post_init__(self) -> None:
        if self.history_limit < 1:
            raise ValueError(f"history_limit must be >= 1, got {self.history_limit}")
        if self.cooldown < timedelta(0):
            raise ValueError("cooldown must not be negative")
        if self.date_tolerance < timedelta(0):
            raise ValueError("date_tolerance must not be negative")
        if self.default_duration_minutes <= 0:
            raise ValueError(
                f"default_duration_minutes must be > 0, got {self.default_duration_minutes}"
            )
        if self.min_items_per_second < 0:
            raise ValueError("min_items_per_second must not be negative")
        if self.rule_timeout <= 0:
            raise ValueError(f"rule_timeout must be > 0, got {self.rule_timeout}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "history_limit": self.history_limit,
            "cooldown_seconds": self.cooldown.total_seconds(),
            "date_tolerance_seconds": self.date_tolerance.total_seconds(),
            "default_duration_minutes": self.default_duration_minutes,
            "default_location": self.default_location,
            "min_items_per_second": self.min_items_per_second,
            "rule_timeout": self.rule_timeout,
        }


@dataclass(frozen=True)
class ConflictConfig:
    """
    Configuration for the time conflict resolver.

    Attributes:
        business_start_hour: First hour (inclusive) of business hours.
        business_end_hour: Hour at which business hours end (exclusive).
        buffer: Gap kept between an adjusted meeting and the one it avoids.
        severity_thresholds: Overlap ratios for (critical, high, medium).
    """

    business_start_hour: int = 9
    business_end_hour: int = 18
    buffer: timedelta = timedelta(minutes=30)
    severity_thresholds: tuple[float, float, float] = field(default=(0.8, 0.5, 0.2))

    def __post_init__(self) -> None:
        if not 0 <= self.business_start_hour < self.business_end_hour <= 24:
            raise ValueError(
                "business hours must satisfy 0 <= start < end <= 24, got "
                f"{self.business_start_hour}-{self.business_end_hour}"
            )
        if self.buffer < timedelta(0):
            raise ValueError("buffer must not be negative")
        critical, high, medium = self.severity_thresholds
        if not 0 <= medium <= high <= critical <= 1:
            raise ValueError(
                f"severity_thresholds must be descending ratios in [0, 1], got "
                f"{self.severity_thresholds}"
            )


@dataclass(frozen=True)
class RetryConfig:
    """
    Configuration for the retry tracker.

    Attributes:
        max_attempts: Attempts allowed before a key is exhausted.
        initial_delay: Delay after the first failure in seconds.
        max_delay: Upper bound for the backoff delay in seconds.
        exponential_base: Base for exponential backoff.
        jitter: Fraction of random jitter added to the delay (0.0 to 1.0).
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay < 0:
            raise ValueError(f"initial_delay must be >= 0, got {self.initial_delay}")
        if self.max_delay < self.initial_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})"
            )
        if self.exponential_base < 1:
            raise ValueError(f"exponential_base must be >= 1, got {self.exponential_base}")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be between 0.0 and 1.0, got {self.jitter}")


__all__ = ["MigrationConfig", "ConflictConfig", "RetryConfig"]
