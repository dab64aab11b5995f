"""
meetingsync - migration and consistency engine for project meeting schedules.

This library provides:
- Migration of legacy project meetings into unified schedules, driven by a
  pausable, cancellable, single-flight state machine
- A validation rule engine with sequential and parallel chains
- Identity and time-overlap conflict resolution
- Consistency auditing with automatic recovery
- Cascading delete, archive and transfer with verified backups
- In-memory and SQLAlchemy stores, typed events and OpenTelemetry tracing
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("meetingsync")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from meetingsync.audit import (
    AutoRecoveryReport,
    ConsistencyAuditor,
    HealthStatus,
    Inconsistency,
    InconsistencyType,
    RecoveryManager,
    SystemHealthReport,
)
from meetingsync.bus import EventChannel, InMemoryEventChannel
from meetingsync.cascade import (
    BackupSnapshot,
    CascadeManager,
    CascadeOperation,
    CascadeOperationResult,
    DeletionConfirmation,
    MergeStrategy,
    RiskLevel,
    TransferOptions,
)
from meetingsync.config import ConflictConfig, MigrationConfig, RetryConfig
from meetingsync.conflicts import (
    ConflictSeverity,
    IdentityConflictResolver,
    ScheduleConflict,
    ScheduleConflictType,
    TimeConflictResolver,
)
from meetingsync.engine import MigrationEngine
from meetingsync.events import (
    CascadeCompleted,
    EngineEvent,
    HealthCheckCompleted,
    MigrationCancelled,
    MigrationCompleted,
    MigrationEvent,
    MigrationFailed,
    MigrationPaused,
    MigrationProgressed,
    MigrationResumed,
    MigrationStarted,
)
from meetingsync.exceptions import (
    BackupVerificationError,
    CascadeOperationError,
    ChainNotFoundError,
    EntityAlreadyExistsError,
    EntityNotFoundError,
    InvalidStateTransitionError,
    MeetingSyncError,
    MigrationAlreadyRunningError,
    MigrationError,
    MigrationStateError,
    RecoveryError,
    RuleNotFoundError,
    ScopeError,
    StoreError,
    ValidationEngineError,
)
from meetingsync.migration import (
    MeetingConverter,
    MigrationCondition,
    MigrationOptions,
    MigrationOrchestrator,
    MigrationResult,
    MigrationRun,
    MigrationState,
    RecordError,
    RecordErrorKind,
)
from meetingsync.models import (
    EntityKind,
    LegacyMeeting,
    LifecycleEvent,
    Participant,
    Project,
    ProjectPhase,
    QueueItem,
    Schedule,
    ScheduleStatus,
    ScheduleType,
    Snapshot,
)
from meetingsync.retry import InMemoryRetryTracker, RetryTracker
from meetingsync.scope import MigrationScope, ScopeOptions, ScopeSelector, ScopeType
from meetingsync.stores import (
    EntityStore,
    InMemoryEntityStore,
    InMemoryRunHistoryStore,
    RunHistoryStore,
    SQLEntityStore,
    SQLRunHistoryStore,
    create_tables,
)
from meetingsync.validation import (
    ChainResult,
    RuleLevel,
    RuleResult,
    ValidationContext,
    ValidationEngine,
    ValidationRule,
)

__all__ = [
    "__version__",
    # Engine
    "MigrationEngine",
    # Models
    "EntityKind",
    "LegacyMeeting",
    "LifecycleEvent",
    "Participant",
    "Project",
    "ProjectPhase",
    "QueueItem",
    "Schedule",
    "ScheduleStatus",
    "ScheduleType",
    "Snapshot",
    # Config
    "ConflictConfig",
    "MigrationConfig",
    "RetryConfig",
    # Migration
    "MeetingConverter",
    "MigrationCondition",
    "MigrationOptions",
    "MigrationOrchestrator",
    "MigrationResult",
    "MigrationRun",
    "MigrationState",
    "RecordError",
    "RecordErrorKind",
    # Scope
    "MigrationScope",
    "ScopeOptions",
    "ScopeSelector",
    "ScopeType",
    # Validation
    "ChainResult",
    "RuleLevel",
    "RuleResult",
    "ValidationContext",
    "ValidationEngine",
    "ValidationRule",
    # Conflicts
    "ConflictSeverity",
    "IdentityConflictResolver",
    "ScheduleConflict",
    "ScheduleConflictType",
    "TimeConflictResolver",
    # Audit
    "AutoRecoveryReport",
    "ConsistencyAuditor",
    "HealthStatus",
    "Inconsistency",
    "InconsistencyType",
    "RecoveryManager",
    "SystemHealthReport",
    # Cascade
    "BackupSnapshot",
    "CascadeManager",
    "CascadeOperation",
    "CascadeOperationResult",
    "DeletionConfirmation",
    "MergeStrategy",
    "RiskLevel",
    "TransferOptions",
    # Events
    "CascadeCompleted",
    "EngineEvent",
    "EventChannel",
    "HealthCheckCompleted",
    "InMemoryEventChannel",
    "MigrationCancelled",
    "MigrationCompleted",
    "MigrationEvent",
    "MigrationFailed",
    "MigrationPaused",
    "MigrationProgressed",
    "MigrationResumed",
    "MigrationStarted",
    # Retry
    "InMemoryRetryTracker",
    "RetryTracker",
    # Stores
    "EntityStore",
    "InMemoryEntityStore",
    "InMemoryRunHistoryStore",
    "RunHistoryStore",
    "SQLEntityStore",
    "SQLRunHistoryStore",
    "create_tables",
    # Exceptions
    "BackupVerificationError",
    "CascadeOperationError",
    "ChainNotFoundError",
    "EntityAlreadyExistsError",
    "EntityNotFoundError",
    "InvalidStateTransitionError",
    "MeetingSyncError",
    "MigrationAlreadyRunningError",
    "MigrationError",
    "MigrationStateError",
    "RecoveryError",
    "RuleNotFoundError",
    "ScopeError",
    "StoreError",
    "ValidationEngineError",
]
