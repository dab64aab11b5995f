"""
Library exceptions for the meetingsync package.

Exceptions are reserved for contract violations (starting a second run,
touching a missing entity, naming an unknown rule). Expected failures such
as a failed validation, a record that cannot be converted, or a cascade step
that breaks are reported in structured result objects instead.

Exception Hierarchy:
    MeetingSyncError (base)
    +-- MigrationError
    |   +-- MigrationAlreadyRunningError
    |   +-- MigrationStateError
    |       +-- InvalidStateTransitionError
    +-- StoreError
    |   +-- EntityNotFoundError
    |   +-- EntityAlreadyExistsError
    +-- ValidationEngineError
    |   +-- RuleNotFoundError
    |   +-- ChainNotFoundError
    +-- ScopeError
    +-- CascadeOperationError
    |   +-- BackupVerificationError
    +-- RecoveryError
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorSeverity(Enum):
    """
    Severity level of engine errors.

    Attributes:
        CRITICAL: Failure that aborts the operation it occurred in.
        ERROR: Significant failure that needs operator attention.
        WARNING: Issue worth monitoring that does not stop the operation.
        INFO: Informational condition, not a failure.
    """

    CRITICAL = "critical"
    """Failure that aborts the operation it occurred in."""

    ERROR = "error"
    """Significant failure that needs operator attention."""

    WARNING = "warning"
    """Issue worth monitoring that does not stop the operation."""

    INFO = "info"
    """Informational condition, not a failure."""

    @property
    def log_level(self) -> int:
        """
        Get the corresponding Python logging level.

        Returns:
            Python logging level constant.
        """
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.INFO: logging.INFO,
        }
        return level_map[self]


class ErrorRecoverability(Enum):
    """
    Recoverability classification for engine errors.

    Attributes:
        RECOVERABLE: The operation can continue once the cause is fixed.
        TRANSIENT: Temporary error that may resolve on retry.
        FATAL: Unrecoverable error; the operation must stop.
    """

    RECOVERABLE = "recoverable"
    """The operation can continue once the cause is fixed."""

    TRANSIENT = "transient"
    """Temporary error that may resolve on retry."""

    FATAL = "fatal"
    """Unrecoverable error; the operation must stop."""

    @property
    def should_retry(self) -> bool:
        """True only for TRANSIENT errors."""
        return self == ErrorRecoverability.TRANSIENT


@dataclass(frozen=True)
class ErrorClassification:
    """
    Metadata describing how an error should be handled.

    Attributes:
        severity: The severity level of the error.
        recoverability: How the error can be recovered from.
        error_code: Unique error code for programmatic handling.
        suggested_action: Human-readable guidance for operators.
    """

    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    error_code: str
    suggested_action: str

    def to_dict(self) -> dict[str, Any]:
        """Convert classification to dictionary for serialization."""
        return {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "suggested_action": self.suggested_action,
        }


class MeetingSyncError(Exception):
    """Base exception for the meetingsync library."""

    pass


# =============================================================================
# Migration
# =============================================================================


class MigrationError(MeetingSyncError):
    """
    Base exception for migration orchestration errors.

    Attributes:
        message: Human-readable error description.
        run_id: The run that caused the error, if applicable.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="MIGRATION_ERROR",
        suggested_action="Review migration logs for the failing run",
    )

    def __init__(self, message: str, *, run_id: str | None = None) -> None:
        self.message = message
        self.run_id = run_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.run_id:
            return f"{self.message} run_id={self.run_id}"
        return self.message

    @property
    def classification(self) -> ErrorClassification:
        """Get the error classification for this exception."""
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        """Get the severity level of this error."""
        return self.classification.severity

    @property
    def recoverability(self) -> ErrorRecoverability:
        """Get the recoverability of this error."""
        return self.classification.recoverability


class MigrationAlreadyRunningError(MigrationError):
    """
    Raised when a run is started while another one is in flight.

    Only one migration may be Running (or Paused) at a time. A second
    start is rejected, never queued.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="MIGRATION_ALREADY_RUNNING",
        suggested_action="Wait for the active run to finish or cancel it",
    )

    def __init__(self, active_run_id: str) -> None:
        self.active_run_id = active_run_id
        super().__init__("Migration already in progress", run_id=active_run_id)


class MigrationStateError(MigrationError):
    """
    Raised when an operation is invalid for the current run state.

    Attributes:
        current_state: The state the run was in.
        operation: The operation that was attempted.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="MIGRATION_STATE_ERROR",
        suggested_action="Check the run state before attempting this operation",
    )

    def __init__(
        self,
        message: str,
        *,
        current_state: str,
        operation: str | None = None,
        run_id: str | None = None,
    ) -> None:
        self.current_state = current_state
        self.operation = operation
        super().__init__(message, run_id=run_id)


class InvalidStateTransitionError(MigrationStateError):
    """Raised when the run state machine is asked for a forbidden transition."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="INVALID_STATE_TRANSITION",
        suggested_action="Review the migration state machine and ensure valid transitions",
    )

    def __init__(self, current_state: str, target_state: str, *, run_id: str | None = None) -> None:
        self.target_state = target_state
        super().__init__(
            f"Invalid state transition: {current_state} -> {target_state}",
            current_state=current_state,
            operation="transition",
            run_id=run_id,
        )


# =============================================================================
# Store
# =============================================================================


class StoreError(MeetingSyncError):
    """Raised when the entity store backend fails."""

    pass


class EntityNotFoundError(StoreError):
    """Raised when an entity cannot be found."""

    def __init__(self, kind: str, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} not found: {entity_id}")


class EntityAlreadyExistsError(StoreError):
    """Raised when creating an entity whose id is already taken."""

    def __init__(self, kind: str, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} already exists: {entity_id}")


# =============================================================================
# Validation
# =============================================================================


class ValidationEngineError(MeetingSyncError):
    """Raised when the validation engine is misused."""

    pass


class RuleNotFoundError(ValidationEngineError):
    """Raised when a validation rule id is not registered."""

    def __init__(self, rule_id: str) -> None:
        self.rule_id = rule_id
        super().__init__(f"Validation rule not found: {rule_id}")


class ChainNotFoundError(ValidationEngineError):
    """Raised when a validation chain id is not registered."""

    def __init__(self, chain_id: str) -> None:
        self.chain_id = chain_id
        super().__init__(f"Validation chain not found: {chain_id}")


# =============================================================================
# Scope, cascade and recovery
# =============================================================================


class ScopeError(MeetingSyncError):
    """Raised when a scope definition is invalid."""

    pass


class CascadeOperationError(MeetingSyncError):
    """
    Raised inside a cascade step.

    Cascade steps never let this escape the manager; it is converted
    into a CascadeStepError record on the operation result.

    Attributes:
        code: Cascade error code (CASCADE_001 .. CASCADE_004).
        recoverable: Whether the remaining steps may still run.
    """

    def __init__(self, code: str, message: str, *, recoverable: bool = True) -> None:
        self.code = code
        self.recoverable = recoverable
        super().__init__(message)


class BackupVerificationError(CascadeOperationError):
    """Raised when a pre-cascade backup cannot be shown to be restorable."""

    def __init__(self, backup_id: str, reason: str) -> None:
        self.backup_id = backup_id
        super().__init__(
            "CASCADE_001",
            f"Backup {backup_id} is not restorable: {reason}",
            recoverable=False,
        )


class RecoveryError(MeetingSyncError):
    """
    Raised when an automatic fix cannot be applied.

    Attributes:
        code: Recovery error code (RECOVERY_001 .. RECOVERY_003).
    """

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        super().__init__(message)
