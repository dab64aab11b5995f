"""
Entity builders for tests.

Builders take only the fields a test cares about and fill in the rest,
so tests read as a description of the data they need.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from meetingsync.models import (
    LegacyMeeting,
    LifecycleEvent,
    Participant,
    Project,
    QueueItem,
    Schedule,
    ScheduleType,
    Snapshot,
)

# A Monday; business hours apply
MONDAY = datetime(2024, 3, 4, tzinfo=UTC)


def at(hour: int, minute: int = 0, day: datetime = MONDAY) -> datetime:
    """A time of day on ``day`` (Monday by default)."""
    return day.replace(hour=hour, minute=minute)


class FixedClock:
    """Controllable clock for components that take ``clock=``."""

    def __init__(self, now: datetime = MONDAY) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


def make_meeting(
    meeting_id: str | None = "M1",
    project_id: str | None = "P1",
    *,
    date: str | None = "2024-03-04T10:00:00+00:00",
    title: str | None = "Kickoff",
    **fields: Any,
) -> LegacyMeeting:
    return LegacyMeeting(id=meeting_id, project_id=project_id, date=date, title=title, **fields)


def make_project(
    project_id: str = "P1",
    *,
    title: str | None = None,
    phase: str | None = "planning",
    meetings: list[LegacyMeeting] | None = None,
    **fields: Any,
) -> Project:
    return Project(
        id=project_id,
        title=title if title is not None else f"Project {project_id}",
        phase=phase,
        meetings=meetings or [],
        **fields,
    )


def project_with_meetings(project_id: str, count: int, *, start_hour: int = 9) -> Project:
    """A project with ``count`` valid guide meetings on consecutive days."""
    meetings = [
        make_meeting(
            f"{project_id}-M{i}",
            project_id,
            date=(at(start_hour) + timedelta(days=i)).isoformat(),
            title=f"Guide {i}",
            type="guide",
            round=i,
            pm=Participant(id="pm-1", name="Pat"),
            customer=Participant(name="Casey"),
        )
        for i in range(1, count + 1)
    ]
    return make_project(project_id, meetings=meetings)


def make_schedule(
    schedule_id: str = "S1",
    project_id: str | None = "P1",
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    **fields: Any,
) -> Schedule:
    start = start if start is not None else at(10)
    if end is None:
        end = start + timedelta(hours=1)
    fields.setdefault("schedule_type", ScheduleType.PROJECT_MEETING)
    return Schedule(
        id=schedule_id,
        project_id=project_id,
        title=fields.pop("title", f"Schedule {schedule_id}"),
        start=start,
        end=end,
        **fields,
    )


def make_event(event_id: str, project_id: str = "P1", **fields: Any) -> LifecycleEvent:
    fields.setdefault("to_phase", "planning")
    return LifecycleEvent(id=event_id, project_id=project_id, **fields)


def make_snapshot(snapshot_id: str, project_id: str = "P1", **fields: Any) -> Snapshot:
    return Snapshot(id=snapshot_id, project_id=project_id, **fields)


def make_queue_item(item_id: str, project_id: str = "P1", **fields: Any) -> QueueItem:
    fields.setdefault("operation", "sync")
    return QueueItem(id=item_id, project_id=project_id, **fields)


__all__ = [
    "MONDAY",
    "at",
    "FixedClock",
    "make_meeting",
    "make_project",
    "project_with_meetings",
    "make_schedule",
    "make_event",
    "make_snapshot",
    "make_queue_item",
]
