"""
Standard span attributes for meetingsync.

This module defines attribute constants used across all meetingsync components
for consistent span naming. These follow OpenTelemetry semantic conventions
where applicable.

Example:
    >>> from meetingsync.observability.attributes import ATTR_RUN_ID, ATTR_SCOPE_TYPE
    >>>
    >>> with tracer.span(
    ...     "meetingsync.migration.migrate",
    ...     {ATTR_RUN_ID: run.id, ATTR_SCOPE_TYPE: scope.scope_type.value},
    ... ):
    ...     pass
"""

# =============================================================================
# Migration Run Attributes
# =============================================================================

ATTR_RUN_ID = "meetingsync.run.id"
"""Unique identifier of a migration run (string)."""

ATTR_RUN_KEY = "meetingsync.run.key"
"""Stable key of a migration, shared by retries of the same scope (string)."""

ATTR_RUN_STATE = "meetingsync.run.state"
"""Current state of the migration run (string)."""

ATTR_RUN_PROGRESS = "meetingsync.run.progress"
"""Progress percentage of the run (integer, 0-100)."""

ATTR_FORCE = "meetingsync.run.force"
"""Whether the run bypasses the retry check (boolean)."""

ATTR_RECORD_COUNT = "meetingsync.record.count"
"""Number of records handled by an operation (integer)."""

ATTR_MIGRATED_COUNT = "meetingsync.record.migrated"
"""Number of records committed by a run (integer)."""

# =============================================================================
# Scope Attributes
# =============================================================================

ATTR_SCOPE_TYPE = "meetingsync.scope.type"
"""Scope type used to select records (string)."""

ATTR_SCOPE_KEY = "meetingsync.scope.key"
"""Stable key derived from a scope definition (string)."""

# =============================================================================
# Validation Attributes
# =============================================================================

ATTR_RULE_ID = "meetingsync.rule.id"
"""Identifier of a validation rule (string)."""

ATTR_RULE_LEVEL = "meetingsync.rule.level"
"""Level of a validation rule (string)."""

ATTR_CHAIN_ID = "meetingsync.chain.id"
"""Identifier of a validation chain (string)."""

ATTR_CHAIN_MODE = "meetingsync.chain.mode"
"""Execution mode of a validation chain (string)."""

ATTR_VALIDATION_PASSED = "meetingsync.validation.passed"
"""Whether a rule or chain passed (boolean)."""

# =============================================================================
# Entity Attributes
# =============================================================================

ATTR_ENTITY_KIND = "meetingsync.entity.kind"
"""Kind of entity touched by a store operation (string)."""

ATTR_ENTITY_ID = "meetingsync.entity.id"
"""Identifier of the entity (string)."""

ATTR_PROJECT_ID = "meetingsync.project.id"
"""Identifier of the owning project (string)."""

ATTR_SCHEDULE_ID = "meetingsync.schedule.id"
"""Identifier of a schedule (string)."""

# =============================================================================
# Conflict Attributes
# =============================================================================

ATTR_CONFLICT_TYPE = "meetingsync.conflict.type"
"""Type of a detected conflict (string)."""

ATTR_CONFLICT_COUNT = "meetingsync.conflict.count"
"""Number of conflicts detected (integer)."""

# =============================================================================
# Audit and Cascade Attributes
# =============================================================================

ATTR_INCONSISTENCY_COUNT = "meetingsync.audit.inconsistency_count"
"""Number of inconsistencies found by a health check (integer)."""

ATTR_HEALTH_STATUS = "meetingsync.audit.health"
"""Overall health reported by a health check (string)."""

ATTR_CASCADE_OPERATION = "meetingsync.cascade.operation"
"""Cascade operation being performed (string)."""

ATTR_CASCADE_BACKUP = "meetingsync.cascade.backup"
"""Whether a backup was requested before a cascade (boolean)."""

# =============================================================================
# Database Attributes (OTEL semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'postgresql', 'sqlite')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation type (e.g., 'INSERT', 'SELECT')."""

# =============================================================================
# Messaging Attributes
# =============================================================================

ATTR_EVENT_ID = "meetingsync.event.id"
"""Unique identifier of a notification event (UUID string)."""

ATTR_EVENT_TYPE = "meetingsync.event.type"
"""Type name of a notification event (string)."""

ATTR_HANDLER_NAME = "meetingsync.handler.name"
"""Name of the handler being invoked (string)."""

ATTR_HANDLER_COUNT = "meetingsync.handler.count"
"""Number of handlers for an event (integer)."""

ATTR_HANDLER_SUCCESS = "meetingsync.handler.success"
"""Whether the handler completed successfully (boolean)."""

ATTR_ERROR_TYPE = "error.type"
"""Type of error that occurred (exception class name)."""


__all__ = [
    "ATTR_RUN_ID",
    "ATTR_RUN_KEY",
    "ATTR_RUN_STATE",
    "ATTR_RUN_PROGRESS",
    "ATTR_FORCE",
    "ATTR_RECORD_COUNT",
    "ATTR_MIGRATED_COUNT",
    "ATTR_SCOPE_TYPE",
    "ATTR_SCOPE_KEY",
    "ATTR_RULE_ID",
    "ATTR_RULE_LEVEL",
    "ATTR_CHAIN_ID",
    "ATTR_CHAIN_MODE",
    "ATTR_VALIDATION_PASSED",
    "ATTR_ENTITY_KIND",
    "ATTR_ENTITY_ID",
    "ATTR_PROJECT_ID",
    "ATTR_SCHEDULE_ID",
    "ATTR_CONFLICT_TYPE",
    "ATTR_CONFLICT_COUNT",
    "ATTR_INCONSISTENCY_COUNT",
    "ATTR_HEALTH_STATUS",
    "ATTR_CASCADE_OPERATION",
    "ATTR_CASCADE_BACKUP",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_EVENT_ID",
    "ATTR_EVENT_TYPE",
    "ATTR_HANDLER_NAME",
    "ATTR_HANDLER_COUNT",
    "ATTR_HANDLER_SUCCESS",
    "ATTR_ERROR_TYPE",
]
