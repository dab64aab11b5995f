"""
Typed notifications emitted by the engine.

Dashboards and the external project-phase state machine subscribe to these
through an EventChannel. The set of event classes is the whole consumer
contract: there are no free-form event names.

Example:
    >>> from meetingsync.bus import InMemoryEventChannel
    >>> from meetingsync.events import MigrationCompleted
    >>>
    >>> channel = InMemoryEventChannel()
    >>> channel.subscribe(MigrationCompleted, lambda e: print(e.migrated))
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from meetingsync.models import utc_now


class EngineEvent(BaseModel):
    """
    Base class for every notification published by the engine.

    The event_type is derived from the class name, so subclasses only
    declare their payload.

    Attributes:
        event_id: Unique identifier for this event instance
        event_type: Class name of the event
        occurred_at: When the event occurred (UTC timestamp)
        metadata: Additional event metadata dictionary
    """

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    event_type: str = ""
    occurred_at: datetime = Field(default_factory=utc_now)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _ensure_event_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("event_type"):
            data = {**data, "event_type": cls.__name__}
        return data


class MigrationEvent(EngineEvent):
    """Base class for events describing a migration run."""

    run_id: str


class MigrationStarted(MigrationEvent):
    """A migration run left Idle and is now Running."""

    scope_type: str
    scope_key: str
    force: bool = False
    skip_validation: bool = False


class MigrationProgressed(MigrationEvent):
    """Progress of a run advanced. progress never decreases within a run."""

    progress: int
    phase: str
    message: str = ""


class MigrationPaused(MigrationEvent):
    """The run was paused between records."""


class MigrationResumed(MigrationEvent):
    """A paused run continues."""


class MigrationCancelled(MigrationEvent):
    """The run was cancelled; already committed records stay committed."""

    reason: str = "cancelled"


class MigrationCompleted(MigrationEvent):
    """The run reached Completed."""

    migrated: int
    conflicts: int
    errors: int
    duration_seconds: float


class MigrationFailed(MigrationEvent):
    """The run reached Failed."""

    error: str
    phase: str


class HealthCheckCompleted(EngineEvent):
    """A full consistency audit finished."""

    overall_health: str
    inconsistency_count: int


class CascadeCompleted(EngineEvent):
    """A delete, archive or transfer cascade finished."""

    operation: str
    project_id: str
    success: bool


__all__ = [
    "EngineEvent",
    "MigrationEvent",
    "MigrationStarted",
    "MigrationProgressed",
    "MigrationPaused",
    "MigrationResumed",
    "MigrationCancelled",
    "MigrationCompleted",
    "MigrationFailed",
    "HealthCheckCompleted",
    "CascadeCompleted",
]
