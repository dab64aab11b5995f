"""
Consistency audit and recovery.

- ConsistencyAuditor: read-only detection of orphan, missing, duplicate,
  invalid-phase, broken-reference and timestamp problems
- RecoveryManager: best-effort automatic fixes for what the auditor finds
"""

from meetingsync.audit.auditor import ConsistencyAuditor, overall_health
from meetingsync.audit.models import (
    AffectedItems,
    AutoRecoveryReport,
    HealthStatistics,
    HealthStatus,
    Inconsistency,
    InconsistencyType,
    IssueSeverity,
    RecoveryAction,
    RecoveryActionType,
    RecoveryResult,
    RecoveryStepError,
    RecoveryStrategy,
    SystemHealthReport,
)
from meetingsync.audit.recovery import RecoveryManager

__all__ = [
    "ConsistencyAuditor",
    "RecoveryManager",
    "overall_health",
    "AffectedItems",
    "AutoRecoveryReport",
    "HealthStatistics",
    "HealthStatus",
    "Inconsistency",
    "InconsistencyType",
    "IssueSeverity",
    "RecoveryAction",
    "RecoveryActionType",
    "RecoveryResult",
    "RecoveryStepError",
    "RecoveryStrategy",
    "SystemHealthReport",
]
