"""
Result and option types for cascade operations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from meetingsync.models import EntityKind, utc_now


class CascadeOperation(Enum):
    DELETE = "delete"
    ARCHIVE = "archive"
    TRANSFER = "transfer"
    RESTORE = "restore"


class RiskLevel(Enum):
    """Risk of deleting a project, ordered from LOW to CRITICAL."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class MergeStrategy(Enum):
    """
    How transferred records combine with the target's existing records.

    APPEND moves everything; REPLACE deletes the target's records of the
    same kind first; MERGE skips records the target already has.
    """

    APPEND = "append"
    REPLACE = "replace"
    MERGE = "merge"


@dataclass(frozen=True)
class CascadeStepError:
    """
    A failed cascade step.

    Codes:
        CASCADE_001: backup could not be created or verified
        CASCADE_002: a child step failed
        CASCADE_003: the entity itself could not be deleted or was blocked
        CASCADE_004: the entity was not found
    """

    code: str
    message: str
    operation: str
    item_id: str
    recoverable: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "operation": self.operation,
            "item_id": self.item_id,
            "recoverable": self.recoverable,
        }


@dataclass(frozen=True)
class CascadeWarning:
    code: str
    message: str
    affected_item: str
    suggestion: str = ""
    severity: str = "medium"

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "affected_item": self.affected_item,
            "suggestion": self.suggestion,
            "severity": self.severity,
        }


@dataclass
class AffectedData:
    """Ids touched by a cascade, per kind."""

    schedules: list[str] = field(default_factory=list)
    lifecycle_events: list[str] = field(default_factory=list)
    snapshots: list[str] = field(default_factory=list)
    queue_items: list[str] = field(default_factory=list)

    def add(self, kind: EntityKind, entity_id: str) -> None:
        self._bucket(kind).append(entity_id)

    def ids(self, kind: EntityKind) -> list[str]:
        return list(self._bucket(kind))

    @property
    def total(self) -> int:
        return (
            len(self.schedules)
            + len(self.lifecycle_events)
            + len(self.snapshots)
            + len(self.queue_items)
        )

    def _bucket(self, kind: EntityKind) -> list[str]:
        buckets = {
            EntityKind.SCHEDULE: self.schedules,
            EntityKind.LIFECYCLE_EVENT: self.lifecycle_events,
            EntityKind.SNAPSHOT: self.snapshots,
            EntityKind.QUEUE_ITEM: self.queue_items,
        }
        try:
            return buckets[kind]
        except KeyError:
            raise ValueError(f"Not a child entity kind: {kind.value}") from None

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "schedules": list(self.schedules),
            "lifecycle_events": list(self.lifecycle_events),
            "snapshots": list(self.snapshots),
            "queue_items": list(self.queue_items),
        }


@dataclass(frozen=True)
class BackupSnapshot:
    """
    Serialized copy of a project and everything it owns.

    Attributes:
        backup_id: ``backup_{project_id}_{epoch_ms}``.
        project_id: Id of the backed-up project.
        project: The project as JSON-compatible data.
        related: Child records as JSON-compatible data, keyed by
            EntityKind value.
        timestamp: When the backup was taken.
    """

    backup_id: str
    project_id: str
    project: dict[str, Any]
    related: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    def records(self, kind: EntityKind) -> list[dict[str, Any]]:
        return list(self.related.get(kind.value, []))

    def contains(self, kind: EntityKind, entity_id: str) -> bool:
        if kind == EntityKind.PROJECT:
            return self.project.get("id") == entity_id
        return any(r.get("id") == entity_id for r in self.related.get(kind.value, []))

    @property
    def record_count(self) -> int:
        return 1 + sum(len(v) for v in self.related.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "backup_id": self.backup_id,
            "project_id": self.project_id,
            "project": self.project,
            "related": {k: list(v) for k, v in self.related.items()},
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class CascadeOperationResult:
    """Outcome of a delete, archive, transfer or restore cascade."""

    success: bool
    operation: CascadeOperation
    project_id: str
    affected: AffectedData = field(default_factory=AffectedData)
    warnings: tuple[CascadeWarning, ...] = ()
    errors: tuple[CascadeStepError, ...] = ()
    duration_seconds: float = 0.0
    backup: BackupSnapshot | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "operation": self.operation.value,
            "project_id": self.project_id,
            "affected": self.affected.to_dict(),
            "warnings": [w.to_dict() for w in self.warnings],
            "errors": [e.to_dict() for e in self.errors],
            "duration_seconds": self.duration_seconds,
            "backup": self.backup.to_dict() if self.backup else None,
        }


@dataclass(frozen=True)
class ImpactAnalysis:
    total_schedules: int
    upcoming_meetings: int
    lifecycle_events: int
    snapshots: int
    queue_items: int
    connected_systems: tuple[str, ...]
    estimated_data_size: str
    open_inconsistencies: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_schedules": self.total_schedules,
            "upcoming_meetings": self.upcoming_meetings,
            "lifecycle_events": self.lifecycle_events,
            "snapshots": self.snapshots,
            "queue_items": self.queue_items,
            "connected_systems": list(self.connected_systems),
            "estimated_data_size": self.estimated_data_size,
            "open_inconsistencies": self.open_inconsistencies,
        }


@dataclass(frozen=True)
class RiskAssessment:
    level: RiskLevel
    factors: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "factors": list(self.factors),
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class DeletionAlternatives:
    archive: bool = True
    transfer: bool = False
    partial: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {"archive": self.archive, "transfer": self.transfer, "partial": self.partial}


@dataclass(frozen=True)
class DeletionConfirmation:
    """Impact of deleting a project, shown to the caller before deleting."""

    project_id: str
    project_title: str
    impact: ImpactAnalysis
    risks: RiskAssessment
    alternatives: DeletionAlternatives

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "project_title": self.project_title,
            "impact": self.impact.to_dict(),
            "risks": self.risks.to_dict(),
            "alternatives": self.alternatives.to_dict(),
        }


@dataclass(frozen=True)
class TransferOptions:
    """
    Options for moving a project's records to another project.

    Raises:
        ValueError: If no target is given or nothing is selected.
    """

    target_project_id: str
    transfer_schedules: bool = True
    transfer_events: bool = True
    transfer_snapshots: bool = True
    merge_strategy: MergeStrategy = MergeStrategy.APPEND

    def __post_init__(self) -> None:
        if not self.target_project_id:
            raise ValueError("target_project_id is required")
        if not (self.transfer_schedules or self.transfer_events or self.transfer_snapshots):
            raise ValueError("At least one record kind must be selected for transfer")

    @property
    def kinds(self) -> list[EntityKind]:
        selected = [
            (self.transfer_schedules, EntityKind.SCHEDULE),
            (self.transfer_events, EntityKind.LIFECYCLE_EVENT),
            (self.transfer_snapshots, EntityKind.SNAPSHOT),
        ]
        return [kind for enabled, kind in selected if enabled]


__all__ = [
    "CascadeOperation",
    "RiskLevel",
    "MergeStrategy",
    "CascadeStepError",
    "CascadeWarning",
    "AffectedData",
    "BackupSnapshot",
    "CascadeOperationResult",
    "ImpactAnalysis",
    "RiskAssessment",
    "DeletionAlternatives",
    "DeletionConfirmation",
    "TransferOptions",
]
