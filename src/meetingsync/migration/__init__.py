"""
Legacy meeting migration.

- MeetingConverter: legacy meeting -> schedule conversion
- MigrationOrchestrator: the run state machine with pause, cancel and
  single-flight protection
- RunHistory: bounded, persisted history of finished runs
"""

from meetingsync.migration.conversion import ConversionResult, MeetingConverter
from meetingsync.migration.history import RunHistory
from meetingsync.migration.models import (
    VALID_TRANSITIONS,
    MigrationCondition,
    MigrationOptions,
    MigrationProgress,
    MigrationResult,
    MigrationRun,
    MigrationState,
    MigrationSummary,
    RecordError,
    RecordErrorKind,
)
from meetingsync.migration.orchestrator import MigrationOrchestrator

__all__ = [
    "ConversionResult",
    "MeetingConverter",
    "RunHistory",
    "MigrationOrchestrator",
    "VALID_TRANSITIONS",
    "MigrationCondition",
    "MigrationOptions",
    "MigrationProgress",
    "MigrationResult",
    "MigrationRun",
    "MigrationState",
    "MigrationSummary",
    "RecordError",
    "RecordErrorKind",
]
