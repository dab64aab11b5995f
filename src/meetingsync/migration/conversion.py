"""
Conversion of legacy meetings into schedules.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from meetingsync.config import MigrationConfig
from meetingsync.models import (
    LegacyMeeting,
    Project,
    Schedule,
    ScheduleStatus,
    ScheduleType,
    parse_datetime,
)


@dataclass(frozen=True)
class ConversionResult:
    """A converted schedule, or the reason the meeting could not be converted."""

    schedule: Schedule | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.schedule is not None


class MeetingConverter:
    """
    Converts legacy meetings into schedules.

    ``validate`` reports the first missing or malformed field; ``convert``
    assumes a valid meeting and raises ValueError otherwise.
    """

    def __init__(self, config: MigrationConfig | None = None) -> None:
        self._config = config or MigrationConfig()

    def validate(self, meeting: LegacyMeeting) -> str | None:
        """Return the first validation problem, or None if the meeting is valid."""
        if not meeting.id:
            return "Missing meeting ID"
        if not meeting.project_id:
            return "Missing project ID"
        if not meeting.date:
            return "Missing meeting date"
        if not meeting.title:
            return "Missing meeting title"
        if parse_datetime(meeting.date) is None:
            return "Invalid meeting date"
        return None

    @staticmethod
    def sequence_for(meeting: LegacyMeeting) -> str:
        if meeting.type == "pre":
            return "pre_meeting"
        if meeting.type == "guide":
            return f"guide_{meeting.round or 1}"
        return meeting.type

    @staticmethod
    def attendees_of(meeting: LegacyMeeting) -> list[str]:
        people = [meeting.pm, meeting.customer, *meeting.others]
        return list(dict.fromkeys(p.name for p in people if p is not None and p.name))

    def convert(self, meeting: LegacyMeeting, project: Project | None = None) -> Schedule:
        """
        Build the schedule for a valid legacy meeting.

        Raises:
            ValueError: If the meeting does not pass validation.
        """
        problem = self.validate(meeting)
        if problem is not None:
            raise ValueError(problem)
        if project is not None and project.id != meeting.project_id:
            raise ValueError(
                f"Meeting {meeting.id} belongs to {meeting.project_id}, not {project.id}"
            )

        start = parse_datetime(meeting.date)
        assert start is not None and meeting.id is not None
        duration = meeting.duration or self._config.default_duration_minutes
        status = (
            ScheduleStatus.COMPLETED.value
            if meeting.status == "completed"
            else ScheduleStatus.SCHEDULED.value
        )

        return Schedule(
            id=meeting.id,
            project_id=meeting.project_id,
            schedule_type=ScheduleType.PROJECT_MEETING,
            title=meeting.title or "",
            start=start,
            end=start + timedelta(minutes=duration),
            meeting_sequence=self.sequence_for(meeting),
            attendees=self.attendees_of(meeting),
            location=meeting.location or self._config.default_location,
            status=status,
            created_by=meeting.pm.id if meeting.pm and meeting.pm.id else "system",
            metadata={
                "migrated": True,
                "source_meeting_id": meeting.id,
                "meeting_type": meeting.type,
                "tags": list(meeting.tags),
            },
        )

    def try_convert(self, meeting: LegacyMeeting, project: Project | None = None) -> ConversionResult:
        try:
            return ConversionResult(schedule=self.convert(meeting, project))
        except ValueError as e:
            return ConversionResult(error=str(e))


__all__ = ["MeetingConverter", "ConversionResult"]
