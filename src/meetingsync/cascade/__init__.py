"""
Cascade operations: delete, archive, transfer and restore a project
together with its schedules, lifecycle events, snapshots and queue items.
"""

from meetingsync.cascade.manager import CascadeManager, format_size
from meetingsync.cascade.models import (
    AffectedData,
    BackupSnapshot,
    CascadeOperation,
    CascadeOperationResult,
    CascadeStepError,
    CascadeWarning,
    DeletionAlternatives,
    DeletionConfirmation,
    ImpactAnalysis,
    MergeStrategy,
    RiskAssessment,
    RiskLevel,
    TransferOptions,
)

__all__ = [
    "CascadeManager",
    "format_size",
    "AffectedData",
    "BackupSnapshot",
    "CascadeOperation",
    "CascadeOperationResult",
    "CascadeStepError",
    "CascadeWarning",
    "DeletionAlternatives",
    "DeletionConfirmation",
    "ImpactAnalysis",
    "MergeStrategy",
    "RiskAssessment",
    "RiskLevel",
    "TransferOptions",
]
