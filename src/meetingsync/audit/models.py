"""
Reporting types for the consistency auditor and recovery manager.

Inconsistencies are never stored; they live in health reports and are
optionally handed back to the recovery manager.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from meetingsync.models import utc_now


class InconsistencyType(Enum):
    ORPHAN_SCHEDULE = "orphan_schedule"
    MISSING_SCHEDULE = "missing_schedule"
    DUPLICATE_MEETING = "duplicate_meeting"
    INVALID_PHASE = "invalid_phase"
    BROKEN_REFERENCE = "broken_reference"
    TIMESTAMP_MISMATCH = "timestamp_mismatch"


class IssueSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryStrategy(Enum):
    """Fix suggested for an inconsistency."""

    REMOVE_ORPHAN = "remove_orphan"
    RECREATE_MISSING = "recreate_missing"
    KEEP_NEWEST = "keep_newest"
    RESET_PHASE = "reset_phase"
    REPAIR_TIMESTAMP = "repair_timestamp"
    MANUAL_REVIEW = "manual_review"


class HealthStatus(Enum):
    """
    Overall health of the data set.

    FAILURE means the audit itself could not read its inputs.
    """

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    FAILURE = "failure"


@dataclass(frozen=True)
class AffectedItems:
    projects: tuple[str, ...] = ()
    schedules: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, list[str]]:
        return {"projects": list(self.projects), "schedules": list(self.schedules)}


@dataclass(frozen=True)
class Inconsistency:
    """
    A detected integrity violation.

    Attributes:
        id: Deterministic id derived from the type and affected key.
        type: Which detector produced it.
        severity: How serious it is.
        description: Human-readable summary.
        affected: Ids of the affected projects and schedules.
        suggested_strategy: Fix the recovery manager would apply.
        auto_fixable: Whether auto recovery may act on it.
        evidence: Data backing the finding.
    """

    id: str
    type: InconsistencyType
    severity: IssueSeverity
    description: str
    affected: AffectedItems
    suggested_strategy: RecoveryStrategy
    auto_fixable: bool = True
    evidence: dict[str, Any] = field(default_factory=dict)
    detected_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "affected": self.affected.to_dict(),
            "suggested_strategy": self.suggested_strategy.value,
            "auto_fixable": self.auto_fixable,
            "evidence": dict(self.evidence),
            "detected_at": self.detected_at.isoformat(),
        }


@dataclass(frozen=True)
class HealthStatistics:
    total_projects: int = 0
    total_schedules: int = 0
    total_events: int = 0
    orphan_schedules: int = 0
    missing_schedules: int = 0
    duplicate_meetings: int = 0
    invalid_phases: int = 0
    broken_references: int = 0
    timestamp_mismatches: int = 0

    def to_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class SystemHealthReport:
    """Result of a full health check."""

    overall_health: HealthStatus
    inconsistencies: tuple[Inconsistency, ...] = ()
    statistics: HealthStatistics = field(default_factory=HealthStatistics)
    recommendations: tuple[str, ...] = ()
    error: str | None = None
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def auto_fixable(self) -> int:
        return sum(1 for i in self.inconsistencies if i.auto_fixable)

    @property
    def manual_review_required(self) -> int:
        return len(self.inconsistencies) - self.auto_fixable

    def of_type(self, inconsistency_type: InconsistencyType) -> list[Inconsistency]:
        return [i for i in self.inconsistencies if i.type == inconsistency_type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "overall_health": self.overall_health.value,
            "inconsistencies": [i.to_dict() for i in self.inconsistencies],
            "statistics": self.statistics.to_dict(),
            "recommendations": list(self.recommendations),
            "auto_fixable": self.auto_fixable,
            "manual_review_required": self.manual_review_required,
            "error": self.error,
        }


class RecoveryActionType(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    MERGE = "merge"


@dataclass(frozen=True)
class RecoveryAction:
    """One change made by a fix, with before and after values."""

    type: RecoveryActionType
    target: str
    item_id: str
    details: str
    old_value: Any = None
    new_value: Any = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "target": self.target,
            "item_id": self.item_id,
            "details": self.details,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class RecoveryStepError:
    """A fix that could not be applied (codes RECOVERY_001 .. RECOVERY_003)."""

    code: str
    message: str
    item_id: str
    recoverable: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "item_id": self.item_id,
            "recoverable": self.recoverable,
        }


@dataclass(frozen=True)
class RecoveryResult:
    """Outcome of recovering a single inconsistency."""

    success: bool
    inconsistency_id: str
    strategy: RecoveryStrategy
    actions: tuple[RecoveryAction, ...] = ()
    errors: tuple[RecoveryStepError, ...] = ()
    warnings: tuple[str, ...] = ()
    duration_seconds: float = 0.0
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "inconsistency_id": self.inconsistency_id,
            "strategy": self.strategy.value,
            "actions": [a.to_dict() for a in self.actions],
            "errors": [e.to_dict() for e in self.errors],
            "warnings": list(self.warnings),
            "duration_seconds": self.duration_seconds,
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class AutoRecoveryReport:
    """Outcome of an auto recovery pass."""

    results: tuple[RecoveryResult, ...] = ()

    @property
    def fixed(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success and not r.skipped)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fixed": self.fixed,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [r.to_dict() for r in self.results],
        }


__all__ = [
    "InconsistencyType",
    "IssueSeverity",
    "RecoveryStrategy",
    "HealthStatus",
    "AffectedItems",
    "Inconsistency",
    "HealthStatistics",
    "SystemHealthReport",
    "RecoveryActionType",
    "RecoveryAction",
    "RecoveryStepError",
    "RecoveryResult",
    "AutoRecoveryReport",
]
