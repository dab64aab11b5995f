"""
Data models for the validation rule engine.

Rules are pure predicates over a read-only ValidationContext. A chain is an
ordered list of rule ids plus an execution mode; its result aggregates the
individual rule results and passes iff no Critical rule failed.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from meetingsync.models import LegacyMeeting, Project, Schedule, utc_now


class RuleCategory(Enum):
    """When, or for what purpose, a rule runs."""

    PRE_MIGRATION = "pre_migration"
    POST_MIGRATION = "post_migration"
    DATA_INTEGRITY = "data_integrity"
    BUSINESS_RULE = "business_rule"
    PERFORMANCE = "performance"


class RuleLevel(Enum):
    """
    Level of a rule.

    A failed CRITICAL rule fails its chain; WARNING and INFO failures are
    reported but do not.
    """

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class ExecutionMode(Enum):
    """How a chain evaluates its rules."""

    SEQUENTIAL = "sequential"
    """Rules run in order; may stop at the first critical failure."""

    PARALLEL = "parallel"
    """Rules run concurrently; results are merged in chain order."""


@dataclass(frozen=True)
class ValidationContext:
    """
    Read-only data handed to every rule.

    Attributes:
        projects: Projects in scope.
        meetings: Legacy meetings in scope.
        schedules: Schedules currently stored.
        migrated_ids: Ids of schedules a run reports as committed.
        before_count: Schedule count before a run, if known.
        after_count: Schedule count after a run, if known.
        reported_deletions: Deletions a run explicitly reports; excused
            from the data loss check.
        items_processed: Records processed by a run.
        duration_seconds: Wall-clock duration of a run.
        metadata: Free-form extra data for custom rules.
    """

    projects: Sequence[Project] = ()
    meetings: Sequence[LegacyMeeting] = ()
    schedules: Sequence[Schedule] = ()
    migrated_ids: Sequence[str] = ()
    before_count: int | None = None
    after_count: int | None = None
    reported_deletions: int = 0
    items_processed: int = 0
    duration_seconds: float = 0.0
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RuleCheck:
    """
    Outcome returned by a rule predicate.

    The engine turns it into a RuleResult by adding the rule's identity,
    level and timing.
    """

    passed: bool
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)
    suggestions: Sequence[str] = ()


RulePredicate = Callable[[ValidationContext], RuleCheck | Awaitable[RuleCheck]]


@dataclass(frozen=True)
class ValidationRule:
    """
    A single validation rule.

    Attributes:
        id: Unique rule identifier.
        name: Human-readable name.
        category: When the rule is meant to run.
        level: Level applied to the rule's failures.
        check: Pure predicate; sync or async.
        description: Longer explanation of what the rule checks.
        timeout: Seconds allowed for the check; None uses the engine default.
    """

    id: str
    name: str
    category: RuleCategory
    level: RuleLevel
    check: RulePredicate
    description: str = ""
    timeout: float | None = None


@dataclass(frozen=True)
class ValidationChain:
    """
    An ordered composition of rules.

    Attributes:
        id: Unique chain identifier.
        name: Human-readable name.
        rule_ids: Rules to evaluate, in order.
        mode: Sequential or parallel evaluation.
        stop_on_first_failure: In sequential mode, stop at the first
            failed Critical rule.
    """

    id: str
    name: str
    rule_ids: tuple[str, ...]
    mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    stop_on_first_failure: bool = False


@dataclass(frozen=True)
class RuleResult:
    """Result of evaluating one rule."""

    rule_id: str
    rule_name: str
    level: RuleLevel
    passed: bool
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)
    suggestions: tuple[str, ...] = ()
    duration_ms: float = 0.0
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def is_critical_failure(self) -> bool:
        return not self.passed and self.level == RuleLevel.CRITICAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "level": self.level.value,
            "passed": self.passed,
            "message": self.message,
            "details": dict(self.details),
            "suggestions": list(self.suggestions),
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ChainResult:
    """
    Aggregated result of a chain.

    ``passed`` is True iff no Critical rule failed.
    """

    chain_id: str
    results: tuple[RuleResult, ...]
    duration_ms: float = 0.0
    stopped_early: bool = False
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed_count(self) -> int:
        return self.total - self.passed_count

    @property
    def critical_failures(self) -> int:
        return sum(1 for r in self.results if r.is_critical_failure)

    @property
    def warnings(self) -> int:
        return sum(1 for r in self.results if not r.passed and r.level == RuleLevel.WARNING)

    @property
    def passed(self) -> bool:
        return self.critical_failures == 0

    @property
    def failures(self) -> list[RuleResult]:
        return [r for r in self.results if not r.passed]

    @property
    def summary(self) -> str:
        return (
            f"{self.passed_count}/{self.total} rules passed, "
            f"{self.critical_failures} critical failures, {self.warnings} warnings"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "passed": self.passed,
            "total": self.total,
            "passed_count": self.passed_count,
            "failed_count": self.failed_count,
            "critical_failures": self.critical_failures,
            "warnings": self.warnings,
            "stopped_early": self.stopped_early,
            "duration_ms": self.duration_ms,
            "summary": self.summary,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass(frozen=True)
class SimulationResult:
    """Outcome of a dry-run validation."""

    would_pass: bool
    issues: tuple[str, ...]
    recommendations: tuple[str, ...]
    chain_result: ChainResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "would_pass": self.would_pass,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
            "chain_result": self.chain_result.to_dict(),
        }


@dataclass
class RuleStatistics:
    """Diagnostic counters for one rule. Never used for control flow."""

    executions: int = 0
    failures: int = 0
    average_duration_ms: float = 0.0
    last_executed: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "executions": self.executions,
            "failures": self.failures,
            "average_duration_ms": self.average_duration_ms,
            "last_executed": self.last_executed.isoformat() if self.last_executed else None,
        }


__all__ = [
    "RuleCategory",
    "RuleLevel",
    "ExecutionMode",
    "ValidationContext",
    "RuleCheck",
    "RulePredicate",
    "ValidationRule",
    "ValidationChain",
    "RuleResult",
    "ChainResult",
    "SimulationResult",
    "RuleStatistics",
]
