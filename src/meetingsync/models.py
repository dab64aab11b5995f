"""
Entity models for the meetingsync engine.

The engine works on five kinds of stored entity, all owned by a project:

    - Project: the owning entity; carries the legacy meetings to migrate
    - Schedule: the unified calendar entry produced by a migration
    - LifecycleEvent: a recorded project phase transition
    - Snapshot: a saved copy of project state
    - QueueItem: a pending job referencing a project

Legacy meetings are loosely typed input (their date is a raw string and may
be missing or malformed). Schedules parse their bounds leniently: a value
that cannot be parsed becomes None, which the consistency auditor reports
as a timestamp mismatch instead of failing at load time.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def parse_datetime(value: Any) -> datetime | None:
    """
    Parse a datetime leniently.

    Accepts datetimes and ISO-8601 strings (a trailing ``Z`` is accepted).
    Naive values are taken to be UTC.

    Returns:
        An aware datetime, or None if the value is empty or unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class ProjectPhase(str, Enum):
    """
    Lifecycle phases a project may be in.

    The phase state machine itself lives outside this engine; the values
    are only used as a whitelist and as weights for conflict priority.
    """

    CONTRACT_PENDING = "contract_pending"
    CONTRACT_SIGNED = "contract_signed"
    PLANNING = "planning"
    DESIGN = "design"
    EXECUTION = "execution"
    REVIEW = "review"
    COMPLETED = "completed"

    @classmethod
    def is_valid(cls, value: str | None) -> bool:
        """Check whether a raw phase string is in the whitelist."""
        return value in {phase.value for phase in cls}

    @property
    def is_terminal(self) -> bool:
        """True for the completed phase."""
        return self == ProjectPhase.COMPLETED


SAFE_DEFAULT_PHASE = ProjectPhase.CONTRACT_PENDING
"""Phase a project is reset to when its stored phase is not valid."""


class ScheduleStatus(str, Enum):
    """Status of a schedule entry."""

    TENTATIVE = "tentative"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"


class ScheduleType(str, Enum):
    """Kind of schedule entry. Only project meetings reference a project."""

    PROJECT_MEETING = "project_meeting"
    GENERAL = "general"


class Participant(BaseModel):
    """A person attending a legacy meeting."""

    id: str | None = None
    name: str


class LegacyMeeting(BaseModel):
    """
    A meeting record in the legacy shape, stored inside its project.

    Every field except the participant lists may be missing; the
    converter reports which required field is absent.
    """

    id: str | None = None
    project_id: str | None = None
    title: str | None = None
    date: str | None = None
    type: str = "general"
    round: int | None = None
    duration: int | None = None
    location: str | None = None
    status: str = "scheduled"
    pm: Participant | None = None
    customer: Participant | None = None
    others: list[Participant] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("date", mode="before")
    @classmethod
    def _date_to_string(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        return value


class Project(BaseModel):
    """A project owning schedules, lifecycle events, snapshots and queue items."""

    id: str
    title: str = ""
    phase: str | None = ProjectPhase.CONTRACT_PENDING.value
    status: str = "active"
    meetings: list[LegacyMeeting] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_archived(self) -> bool:
        return self.status == "archived"

    @property
    def is_active_phase(self) -> bool:
        """True while the project is in a non-terminal lifecycle phase."""
        return self.phase not in (ProjectPhase.COMPLETED.value, "cancelled", None)


class Schedule(BaseModel):
    """A unified calendar entry."""

    id: str
    project_id: str | None = None
    schedule_type: ScheduleType = ScheduleType.PROJECT_MEETING
    title: str = ""
    start: datetime | None = None
    end: datetime | None = None
    meeting_sequence: str | None = None
    attendees: list[str] = Field(default_factory=list)
    location: str | None = None
    status: str = ScheduleStatus.SCHEDULED.value
    created_by: str = "system"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("start", "end", mode="before")
    @classmethod
    def _lenient_bounds(cls, value: Any) -> datetime | None:
        parsed = parse_datetime(value)
        if parsed is None and value not in (None, ""):
            logger.warning("Unparseable schedule timestamp %r stored as None", value)
        return parsed

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _aware_timestamps(cls, value: Any) -> Any:
        if isinstance(value, str | datetime):
            return parse_datetime(value) or value
        return value

    @property
    def has_valid_bounds(self) -> bool:
        return self.start is not None and self.end is not None and self.start < self.end

    @property
    def duration(self) -> timedelta:
        """Length of the schedule; zero when the bounds are not valid."""
        if not self.has_valid_bounds:
            return timedelta(0)
        assert self.start is not None and self.end is not None
        return self.end - self.start

    @property
    def is_project_meeting(self) -> bool:
        return self.schedule_type == ScheduleType.PROJECT_MEETING


class LifecycleEvent(BaseModel):
    """A recorded phase transition of a project."""

    id: str
    project_id: str
    from_phase: str | None = None
    to_phase: str
    occurred_at: datetime = Field(default_factory=utc_now)
    metadata: dict[str, Any] = Field(default_factory=dict)


class Snapshot(BaseModel):
    """A saved copy of project state."""

    id: str
    project_id: str
    created_at: datetime = Field(default_factory=utc_now)
    data: dict[str, Any] = Field(default_factory=dict)


class QueueItem(BaseModel):
    """A pending job referencing a project."""

    id: str
    project_id: str
    operation: str
    status: str = "pending"
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


Entity = Project | Schedule | LifecycleEvent | Snapshot | QueueItem


class EntityKind(Enum):
    """Kinds of entity held by an EntityStore."""

    PROJECT = "project"
    SCHEDULE = "schedule"
    LIFECYCLE_EVENT = "lifecycle_event"
    SNAPSHOT = "snapshot"
    QUEUE_ITEM = "queue_item"

    @property
    def model(self) -> type[BaseModel]:
        """The pydantic model class for this kind."""
        return _KIND_MODELS[self]

    @classmethod
    def of(cls, entity: BaseModel) -> EntityKind:
        """
        Get the kind of an entity instance.

        Raises:
            TypeError: If the object is not a known entity type.
        """
        for kind, model in _KIND_MODELS.items():
            if type(entity) is model:
                return kind
        raise TypeError(f"Not a storable entity: {type(entity).__name__}")


_KIND_MODELS: dict[EntityKind, type[BaseModel]] = {
    EntityKind.PROJECT: Project,
    EntityKind.SCHEDULE: Schedule,
    EntityKind.LIFECYCLE_EVENT: LifecycleEvent,
    EntityKind.SNAPSHOT: Snapshot,
    EntityKind.QUEUE_ITEM: QueueItem,
}


__all__ = [
    "utc_now",
    "parse_datetime",
    "ProjectPhase",
    "SAFE_DEFAULT_PHASE",
    "ScheduleStatus",
    "ScheduleType",
    "Participant",
    "LegacyMeeting",
    "Project",
    "Schedule",
    "LifecycleEvent",
    "Snapshot",
    "QueueItem",
    "Entity",
    "EntityKind",
]
