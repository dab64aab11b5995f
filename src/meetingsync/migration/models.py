"""
Run, option and result types for the migration orchestrator.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from meetingsync.conflicts.identity import IdentityConflict
from meetingsync.models import parse_datetime
from meetingsync.scope import MigrationScope
from meetingsync.validation.models import ChainResult


class MigrationState(Enum):
    """
    States of a migration run.

    IDLE -> RUNNING -> COMPLETED | FAILED, with RUNNING <-> PAUSED.
    Cancelling a RUNNING or PAUSED run moves it to FAILED.
    """

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        """True while the run holds the single-flight slot."""
        return self in (MigrationState.RUNNING, MigrationState.PAUSED)

    @property
    def is_terminal(self) -> bool:
        return self in (MigrationState.COMPLETED, MigrationState.FAILED)


VALID_TRANSITIONS: dict[MigrationState, frozenset[MigrationState]] = {
    MigrationState.IDLE: frozenset({MigrationState.RUNNING, MigrationState.FAILED}),
    MigrationState.RUNNING: frozenset(
        {MigrationState.PAUSED, MigrationState.COMPLETED, MigrationState.FAILED}
    ),
    MigrationState.PAUSED: frozenset({MigrationState.RUNNING, MigrationState.FAILED}),
    MigrationState.COMPLETED: frozenset(),
    MigrationState.FAILED: frozenset(),
}


class RecordErrorKind(Enum):
    """Why a single legacy meeting was not migrated."""

    VALIDATION_ERROR = "validation_error"
    CONVERSION_ERROR = "conversion_error"
    CREATION_ERROR = "creation_error"


@dataclass(frozen=True)
class RecordError:
    """A per-record failure. Collected, never raised."""

    kind: RecordErrorKind
    meeting_id: str | None
    message: str
    project_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "meeting_id": self.meeting_id,
            "project_id": self.project_id,
            "message": self.message,
        }


@dataclass
class MigrationSummary:
    """Counters for one run. duplicates_detected counts sequence skips."""

    total_meetings: int = 0
    valid_meetings: int = 0
    duplicates_detected: int = 0
    schedules_created: int = 0
    renamed: int = 0
    merged: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class MigrationProgress:
    """Progress notification handed to on_progress callbacks."""

    run_id: str
    progress: int
    phase: str
    message: str


ProgressCallback = Callable[[MigrationProgress], Awaitable[None] | None]
ResultCallback = Callable[["MigrationResult"], Awaitable[None] | None]


@dataclass(frozen=True)
class MigrationOptions:
    """
    Options for a single migration run.

    Attributes:
        scope: Records to migrate. Defaults to a full scope.
        force: Run even when the retry subsystem would reject the run.
        skip_validation: Skip the pre-migration validation chain.
        on_progress: Called at every progress milestone.
        on_complete: Called with the result of a successful run.
        on_error: Called with the result of a failed run.
    """

    scope: MigrationScope | None = None
    force: bool = False
    skip_validation: bool = False
    on_progress: ProgressCallback | None = None
    on_complete: ResultCallback | None = None
    on_error: ResultCallback | None = None


@dataclass(frozen=True)
class MigrationResult:
    """
    Structured outcome of a migration run.

    ``code`` classifies an unsuccessful outcome: ``retry_rejected``,
    ``pre_validation_failed``, ``post_validation_failed``, ``cancelled``
    or ``error``.
    """

    success: bool
    migrated: int
    conflicts: tuple[IdentityConflict, ...] = ()
    errors: tuple[RecordError, ...] = ()
    duration_seconds: float = 0.0
    summary: MigrationSummary = field(default_factory=MigrationSummary)
    run_id: str | None = None
    message: str = ""
    code: str | None = None
    pre_validation: ChainResult | None = None
    post_validation: ChainResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "migrated": self.migrated,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "errors": [e.to_dict() for e in self.errors],
            "duration_seconds": self.duration_seconds,
            "summary": self.summary.to_dict(),
            "run_id": self.run_id,
            "message": self.message,
            "code": self.code,
            "pre_validation": self.pre_validation.to_dict() if self.pre_validation else None,
            "post_validation": self.post_validation.to_dict() if self.post_validation else None,
        }


@dataclass
class MigrationRun:
    """One execution of the migration state machine. Owned by the orchestrator."""

    id: str
    scope_key: str
    scope_type: str = "full"
    force: bool = False
    skip_validation: bool = False
    state: MigrationState = MigrationState.IDLE
    progress: int = 0
    phase: str = "idle"
    started_at: datetime | None = None
    ended_at: datetime | None = None
    result: MigrationResult | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """History entry for this run."""
        return {
            "id": self.id,
            "scope_key": self.scope_key,
            "scope_type": self.scope_type,
            "force": self.force,
            "skip_validation": self.skip_validation,
            "state": self.state.value,
            "progress": self.progress,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "success": self.result.success if self.result else False,
            "migrated": self.result.migrated if self.result else 0,
            "conflicts": len(self.result.conflicts) if self.result else 0,
            "errors": len(self.result.errors) if self.result else 0,
            "message": self.result.message if self.result else "",
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationRun:
        """Rebuild a run from a history entry. The result itself is not restored."""
        return cls(
            id=data["id"],
            scope_key=data.get("scope_key", ""),
            scope_type=data.get("scope_type", "full"),
            force=bool(data.get("force", False)),
            skip_validation=bool(data.get("skip_validation", False)),
            state=MigrationState(data.get("state", MigrationState.IDLE.value)),
            progress=int(data.get("progress", 0)),
            started_at=parse_datetime(data.get("started_at")),
            ended_at=parse_datetime(data.get("ended_at")),
        )


@dataclass(frozen=True)
class MigrationCondition:
    """
    A check deciding whether a migration should run.

    Attributes:
        id: Unique condition id.
        check: Sync or async callable returning True when a run is due.
        priority: Higher runs first; a met condition with priority >= 10
            ends evaluation early.
        description: Human-readable purpose.
    """

    id: str
    check: Callable[[], bool | Awaitable[bool]]
    priority: int = 0
    description: str = ""


__all__ = [
    "MigrationState",
    "VALID_TRANSITIONS",
    "RecordErrorKind",
    "RecordError",
    "MigrationSummary",
    "MigrationProgress",
    "ProgressCallback",
    "ResultCallback",
    "MigrationOptions",
    "MigrationResult",
    "MigrationRun",
    "MigrationCondition",
]
