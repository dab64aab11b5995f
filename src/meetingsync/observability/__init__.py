"""
Observability utilities for meetingsync.

This module provides the composition-based tracer and the standard attribute
definitions used by every meetingsync component.

Example:
    >>> from meetingsync.observability import create_tracer
    >>>
    >>> class MyStore:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
    ...         self._enable_tracing = self._tracer.enabled
"""

from meetingsync.observability.attributes import (
    ATTR_CASCADE_BACKUP,
    ATTR_CASCADE_OPERATION,
    ATTR_CHAIN_ID,
    ATTR_CHAIN_MODE,
    ATTR_CONFLICT_COUNT,
    ATTR_CONFLICT_TYPE,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ENTITY_ID,
    ATTR_ENTITY_KIND,
    ATTR_ERROR_TYPE,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_FORCE,
    ATTR_HANDLER_COUNT,
    ATTR_HANDLER_NAME,
    ATTR_HANDLER_SUCCESS,
    ATTR_HEALTH_STATUS,
    ATTR_INCONSISTENCY_COUNT,
    ATTR_MIGRATED_COUNT,
    ATTR_PROJECT_ID,
    ATTR_RECORD_COUNT,
    ATTR_RULE_ID,
    ATTR_RULE_LEVEL,
    ATTR_RUN_ID,
    ATTR_RUN_KEY,
    ATTR_RUN_PROGRESS,
    ATTR_RUN_STATE,
    ATTR_SCHEDULE_ID,
    ATTR_SCOPE_KEY,
    ATTR_SCOPE_TYPE,
    ATTR_VALIDATION_PASSED,
)
from meetingsync.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracer (composition-based API)
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    # Attributes - Run
    "ATTR_RUN_ID",
    "ATTR_RUN_KEY",
    "ATTR_RUN_STATE",
    "ATTR_RUN_PROGRESS",
    "ATTR_FORCE",
    "ATTR_RECORD_COUNT",
    "ATTR_MIGRATED_COUNT",
    # Attributes - Scope
    "ATTR_SCOPE_TYPE",
    "ATTR_SCOPE_KEY",
    # Attributes - Validation
    "ATTR_RULE_ID",
    "ATTR_RULE_LEVEL",
    "ATTR_CHAIN_ID",
    "ATTR_CHAIN_MODE",
    "ATTR_VALIDATION_PASSED",
    # Attributes - Entity
    "ATTR_ENTITY_KIND",
    "ATTR_ENTITY_ID",
    "ATTR_PROJECT_ID",
    "ATTR_SCHEDULE_ID",
    # Attributes - Conflict/Audit/Cascade
    "ATTR_CONFLICT_TYPE",
    "ATTR_CONFLICT_COUNT",
    "ATTR_INCONSISTENCY_COUNT",
    "ATTR_HEALTH_STATUS",
    "ATTR_CASCADE_OPERATION",
    "ATTR_CASCADE_BACKUP",
    # Attributes - Database/Messaging
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_EVENT_ID",
    "ATTR_EVENT_TYPE",
    "ATTR_HANDLER_NAME",
    "ATTR_HANDLER_COUNT",
    "ATTR_HANDLER_SUCCESS",
    "ATTR_ERROR_TYPE",
]
