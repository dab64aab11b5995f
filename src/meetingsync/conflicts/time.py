"""
Time conflict detection and resolution between schedules.

Two schedules conflict when their [start, end) intervals overlap. A
conflict is classified (exact time, same project, shared resource or
plain overlap), given a severity, and offered a ranked list of candidate
resolutions. Severity for schedules of the same project is always
Critical; otherwise it follows the ratio of the overlap to the shorter
of the two meetings.

Detection and resolution are pure: nothing here touches a store. Applying
a resolution returns updated copies, re-checked for remaining conflicts,
for the caller to persist.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from meetingsync.config import ConflictConfig
from meetingsync.models import Project, Schedule, utc_now
from meetingsync.observability import Tracer, create_tracer
from meetingsync.observability.attributes import ATTR_CONFLICT_COUNT, ATTR_SCHEDULE_ID

logger = logging.getLogger(__name__)


class ScheduleConflictType(Enum):
    """Classification of an overlap, checked in declaration order."""

    EXACT_TIME = "exact_time"
    SAME_PROJECT = "same_project"
    RESOURCE_CONFLICT = "resource_conflict"
    OVERLAPPING = "overlapping"


class ConflictSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ResolutionStrategy(Enum):
    AUTO_ADJUST = "auto_adjust"
    PRIORITY_BASED = "priority_based"
    USER_CHOICE = "user_choice"
    REJECT_NEW = "reject_new"


class Feasibility(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {Feasibility.HIGH: 3, Feasibility.MEDIUM: 2, Feasibility.LOW: 1}[self]


class Impact(Enum):
    MINIMAL = "minimal"
    MODERATE = "moderate"
    SIGNIFICANT = "significant"

    @property
    def rank(self) -> int:
        return {Impact.MINIMAL: 1, Impact.MODERATE: 2, Impact.SIGNIFICANT: 3}[self]


SEQUENCE_WEIGHTS: dict[str, int] = {
    "pre_meeting": 8,
    "guide_1": 10,
    "guide_2": 7,
    "guide_3": 7,
    "guide_4": 9,
    "review_meeting": 8,
}
PHASE_WEIGHTS: dict[str, int] = {
    "contract_pending": 6,
    "contract_signed": 8,
    "planning": 7,
    "design": 7,
    "execution": 9,
    "review": 10,
    "completed": 3,
}
STATUS_WEIGHTS: dict[str, int] = {
    "confirmed": 10,
    "scheduled": 8,
    "tentative": 5,
    "cancelled": 0,
}
DEFAULT_WEIGHT = 5
BASE_PRIORITY = 5


@dataclass(frozen=True)
class ConflictResolution:
    """
    A candidate resolution.

    Attributes:
        strategy: Kind of resolution.
        description: Human-readable explanation.
        priority: Ranking weight; higher is preferred.
        feasibility: How likely the resolution is to be acceptable.
        impact: How disruptive it is.
        target_id: Schedule that would be moved, if any.
        new_start: Proposed start for the target.
        new_end: Proposed end for the target.
    """

    strategy: ResolutionStrategy
    description: str
    priority: int
    feasibility: Feasibility
    impact: Impact
    target_id: str | None = None
    new_start: datetime | None = None
    new_end: datetime | None = None

    @property
    def has_new_time(self) -> bool:
        return self.new_start is not None and self.new_end is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "description": self.description,
            "priority": self.priority,
            "feasibility": self.feasibility.value,
            "impact": self.impact.value,
            "target_id": self.target_id,
            "new_start": self.new_start.isoformat() if self.new_start else None,
            "new_end": self.new_end.isoformat() if self.new_end else None,
        }


@dataclass(frozen=True)
class ScheduleConflict:
    """An overlap between a new schedule and an existing one."""

    type: ScheduleConflictType
    severity: ConflictSeverity
    new_schedule: Schedule
    existing_schedule: Schedule
    overlap_start: datetime
    overlap_end: datetime
    overlap_ratio: float
    resolutions: tuple[ConflictResolution, ...] = ()

    @property
    def overlap_minutes(self) -> float:
        return (self.overlap_end - self.overlap_start).total_seconds() / 60

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "new_schedule_id": self.new_schedule.id,
            "existing_schedule_id": self.existing_schedule.id,
            "overlap_minutes": self.overlap_minutes,
            "overlap_start": self.overlap_start.isoformat(),
            "overlap_end": self.overlap_end.isoformat(),
            "overlap_ratio": self.overlap_ratio,
            "resolutions": [r.to_dict() for r in self.resolutions],
        }


@dataclass(frozen=True)
class ResolutionOutcome:
    """
    Result of applying a resolution.

    ``schedule`` is the moved schedule (new or existing, per the
    resolution's target) or the unchanged new schedule when nothing moved.
    ``success`` requires that no conflict remains after the move.
    """

    success: bool
    schedule: Schedule
    remaining_conflicts: tuple[ScheduleConflict, ...] = ()
    message: str = ""
    applied_at: datetime = field(default_factory=utc_now)


class TimeConflictResolver:
    """
    Detects overlapping schedules and proposes ways to fix them.

    Example:
        >>> resolver = TimeConflictResolver(enable_tracing=False)
        >>> conflicts = resolver.detect_conflicts(new, existing, projects)
        >>> best = conflicts[0].resolutions[0]
        >>> outcome = resolver.apply_resolution(new, best, existing, projects)
    """

    def __init__(
        self,
        config: ConflictConfig | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._config = config or ConflictConfig()

    # -------------------------------------------------------------------------
    # Detection
    # -------------------------------------------------------------------------

    def detect_conflicts(
        self,
        new_schedule: Schedule,
        existing: Sequence[Schedule],
        projects: Sequence[Project] | None = None,
    ) -> list[ScheduleConflict]:
        """
        Find every existing schedule whose interval overlaps ``new_schedule``.

        Schedules without valid bounds cannot overlap anything and are
        ignored; the consistency auditor reports them separately.
        """
        with self._tracer.span(
            "meetingsync.time_conflict.detect",
            {ATTR_SCHEDULE_ID: new_schedule.id},
        ) as span:
            conflicts: list[ScheduleConflict] = []
            if not new_schedule.has_valid_bounds:
                return conflicts

            for other in existing:
                if other.id == new_schedule.id or not other.has_valid_bounds:
                    continue
                overlap = self._overlap(new_schedule, other)
                if overlap is None:
                    continue
                overlap_start, overlap_end = overlap
                shorter = min(new_schedule.duration, other.duration)
                ratio = (overlap_end - overlap_start) / shorter

                conflict = ScheduleConflict(
                    type=self._classify(new_schedule, other),
                    severity=self._severity(new_schedule, other, ratio),
                    new_schedule=new_schedule,
                    existing_schedule=other,
                    overlap_start=overlap_start,
                    overlap_end=overlap_end,
                    overlap_ratio=ratio,
                )
                resolutions = self.generate_resolutions(conflict, projects)
                conflicts.append(replace(conflict, resolutions=tuple(resolutions)))
                logger.debug(
                    "Schedule %s overlaps %s (%s, %s)",
                    new_schedule.id,
                    other.id,
                    conflict.type.value,
                    conflict.severity.value,
                )

            if span:
                span.set_attribute(ATTR_CONFLICT_COUNT, len(conflicts))
            return conflicts

    @staticmethod
    def _overlap(a: Schedule, b: Schedule) -> tuple[datetime, datetime] | None:
        assert a.start and a.end and b.start and b.end
        start = max(a.start, b.start)
        end = min(a.end, b.end)
        return (start, end) if start < end else None

    @staticmethod
    def _same_project(a: Schedule, b: Schedule) -> bool:
        return (
            a.is_project_meeting
            and b.is_project_meeting
            and a.project_id is not None
            and a.project_id == b.project_id
        )

    def _classify(self, new: Schedule, existing: Schedule) -> ScheduleConflictType:
        if new.start == existing.start and new.end == existing.end:
            return ScheduleConflictType.EXACT_TIME
        if self._same_project(new, existing):
            return ScheduleConflictType.SAME_PROJECT
        if self._shares_resource(new, existing):
            return ScheduleConflictType.RESOURCE_CONFLICT
        return ScheduleConflictType.OVERLAPPING

    @staticmethod
    def _shares_resource(a: Schedule, b: Schedule) -> bool:
        if set(a.attendees) & set(b.attendees):
            return True
        # "system" is the creator of every migrated schedule; not a person.
        return a.created_by == b.created_by and a.created_by != "system"

    def _severity(self, new: Schedule, existing: Schedule, ratio: float) -> ConflictSeverity:
        if self._same_project(new, existing):
            return ConflictSeverity.CRITICAL
        critical, high, medium = self._config.severity_thresholds
        if ratio >= critical:
            return ConflictSeverity.CRITICAL
        if ratio >= high:
            return ConflictSeverity.HIGH
        if ratio >= medium:
            return ConflictSeverity.MEDIUM
        return ConflictSeverity.LOW

    # -------------------------------------------------------------------------
    # Resolutions
    # -------------------------------------------------------------------------

    def generate_resolutions(
        self,
        conflict: ScheduleConflict,
        projects: Sequence[Project] | None = None,
    ) -> list[ConflictResolution]:
        """Candidate resolutions for a conflict, highest priority first."""
        new = conflict.new_schedule
        existing = conflict.existing_schedule
        resolutions = self._auto_adjust(new, existing)
        has_slot = any(r.feasibility == Feasibility.HIGH for r in resolutions)

        assert new.start and new.end
        duration = new.end - new.start
        next_day = new.start + timedelta(days=1)
        resolutions.append(
            ConflictResolution(
                strategy=ResolutionStrategy.AUTO_ADJUST,
                description=f"Move to the same time on the next day ({next_day.isoformat()})",
                priority=6,
                feasibility=Feasibility.MEDIUM,
                impact=Impact.MODERATE,
                target_id=new.id,
                new_start=next_day,
                new_end=next_day + duration,
            )
        )

        priority_resolution = self._priority_based(new, existing, projects)
        if priority_resolution is not None:
            resolutions.append(priority_resolution)

        resolutions.append(
            ConflictResolution(
                strategy=ResolutionStrategy.USER_CHOICE,
                description="Let the user pick a new time",
                priority=5,
                feasibility=Feasibility.HIGH,
                impact=Impact.MODERATE,
            )
        )

        if conflict.severity == ConflictSeverity.CRITICAL and not has_slot:
            resolutions.append(
                ConflictResolution(
                    strategy=ResolutionStrategy.REJECT_NEW,
                    description="Reject the new schedule",
                    priority=1,
                    feasibility=Feasibility.HIGH,
                    impact=Impact.SIGNIFICANT,
                    target_id=new.id,
                )
            )

        return sorted(resolutions, key=lambda r: r.priority, reverse=True)

    @staticmethod
    def filter_resolutions(
        resolutions: Sequence[ConflictResolution],
        *,
        min_feasibility: Feasibility | None = None,
        max_impact: Impact | None = None,
    ) -> list[ConflictResolution]:
        """Keep resolutions at least as feasible and at most as disruptive as given."""
        return [
            r
            for r in resolutions
            if (min_feasibility is None or r.feasibility.rank >= min_feasibility.rank)
            and (max_impact is None or r.impact.rank <= max_impact.rank)
        ]

    def _slots(self, moving: Schedule, anchor: Schedule) -> list[tuple[str, datetime, datetime]]:
        """Business-hours slots that put ``moving`` before or after ``anchor``."""
        assert moving.start and moving.end and anchor.start and anchor.end
        duration = moving.end - moving.start
        buffer = self._config.buffer
        slots = []

        before_end = anchor.start - buffer
        before_start = before_end - duration
        if self.fits_business_hours(before_start, before_end):
            slots.append(("before", before_start, before_end))

        after_start = anchor.end + buffer
        after_end = after_start + duration
        if self.fits_business_hours(after_start, after_end):
            slots.append(("after", after_start, after_end))
        return slots

    def _auto_adjust(self, new: Schedule, existing: Schedule) -> list[ConflictResolution]:
        resolutions = []
        for position, start, end in self._slots(new, existing):
            resolutions.append(
                ConflictResolution(
                    strategy=ResolutionStrategy.AUTO_ADJUST,
                    description=f"Move {position} the existing meeting ({start.strftime('%H:%M')})",
                    priority=8 if position == "before" else 7,
                    feasibility=Feasibility.HIGH,
                    impact=Impact.MINIMAL,
                    target_id=new.id,
                    new_start=start,
                    new_end=end,
                )
            )
        return resolutions

    def _priority_based(
        self,
        new: Schedule,
        existing: Schedule,
        projects: Sequence[Project] | None,
    ) -> ConflictResolution | None:
        phases = {p.id: p.phase for p in projects or ()}
        new_score = self.calculate_priority_score(new, phases.get(new.project_id or ""))
        existing_score = self.calculate_priority_score(
            existing, phases.get(existing.project_id or "")
        )
        if new_score == existing_score:
            return None

        if new_score > existing_score:
            moving, anchor = existing, new
            description = "The new meeting has the higher priority; move the existing meeting"
        else:
            moving, anchor = new, existing
            description = "The existing meeting has the higher priority; move the new meeting"

        slots = self._slots(moving, anchor)
        if not slots:
            return ConflictResolution(
                strategy=ResolutionStrategy.PRIORITY_BASED,
                description=f"{description} (no free slot in business hours)",
                priority=9,
                feasibility=Feasibility.LOW,
                impact=Impact.MODERATE,
                target_id=moving.id,
            )
        _, start, end = slots[0]
        return ConflictResolution(
            strategy=ResolutionStrategy.PRIORITY_BASED,
            description=description,
            priority=9,
            feasibility=Feasibility.MEDIUM,
            impact=Impact.MODERATE,
            target_id=moving.id,
            new_start=start,
            new_end=end,
        )

    def calculate_priority_score(self, schedule: Schedule, project_phase: str | None = None) -> int:
        """
        Weighted importance of a schedule.

        Base 5, plus the sequence weight for project meetings, the phase
        weight of the owning project and the status weight.
        """
        score = BASE_PRIORITY
        if schedule.is_project_meeting and schedule.meeting_sequence:
            score += SEQUENCE_WEIGHTS.get(schedule.meeting_sequence, DEFAULT_WEIGHT)
        if project_phase:
            score += PHASE_WEIGHTS.get(project_phase, DEFAULT_WEIGHT)
        score += STATUS_WEIGHTS.get(schedule.status, DEFAULT_WEIGHT)
        return score

    def is_business_hours(self, moment: datetime) -> bool:
        """Weekday, and start hour <= hour < end hour."""
        return (
            moment.weekday() < 5
            and self._config.business_start_hour <= moment.hour < self._config.business_end_hour
        )

    def fits_business_hours(self, start: datetime, end: datetime) -> bool:
        """Start is in business hours and end is no later than that day's closing."""
        if not self.is_business_hours(start) or end <= start:
            return False
        closing = start.replace(
            hour=self._config.business_end_hour % 24, minute=0, second=0, microsecond=0
        )
        if self._config.business_end_hour == 24:
            closing += timedelta(days=1)
        return end <= closing

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------

    def apply_resolution(
        self,
        new_schedule: Schedule,
        resolution: ConflictResolution,
        existing: Sequence[Schedule],
        projects: Sequence[Project] | None = None,
    ) -> ResolutionOutcome:
        """
        Apply a resolution to copies of the schedules and re-check them.

        Applying the same resolution twice yields the same bounds.
        """
        if resolution.strategy in (ResolutionStrategy.REJECT_NEW, ResolutionStrategy.USER_CHOICE):
            message = (
                "The new schedule was rejected"
                if resolution.strategy == ResolutionStrategy.REJECT_NEW
                else "A user decision is required"
            )
            return ResolutionOutcome(success=False, schedule=new_schedule, message=message)

        if not resolution.has_new_time:
            return ResolutionOutcome(
                success=False,
                schedule=new_schedule,
                message="Resolution has no feasible time slot",
            )

        update = {"start": resolution.new_start, "end": resolution.new_end, "updated_at": utc_now()}
        if resolution.target_id in (None, new_schedule.id):
            moved = new_schedule.model_copy(deep=True, update=update)
            remaining = self.detect_conflicts(moved, existing, projects)
        else:
            target = next((s for s in existing if s.id == resolution.target_id), None)
            if target is None:
                return ResolutionOutcome(
                    success=False,
                    schedule=new_schedule,
                    message=f"Schedule {resolution.target_id} is not in the existing set",
                )
            moved = target.model_copy(deep=True, update=update)
            others = [moved if s.id == moved.id else s for s in existing]
            remaining = self.detect_conflicts(new_schedule, others, projects)
            # the pair itself was checked above
            neighbours = [s for s in existing if s.id != moved.id]
            remaining += self.detect_conflicts(moved, neighbours, projects)

        if remaining:
            logger.info(
                "Resolution %s for %s leaves %d conflicts",
                resolution.strategy.value,
                moved.id,
                len(remaining),
            )
            return ResolutionOutcome(
                success=False,
                schedule=moved,
                remaining_conflicts=tuple(remaining),
                message=f"{len(remaining)} conflicts remain after the move",
            )
        return ResolutionOutcome(success=True, schedule=moved, message="Conflict resolved")


__all__ = [
    "ScheduleConflictType",
    "ConflictSeverity",
    "ResolutionStrategy",
    "Feasibility",
    "Impact",
    "ConflictResolution",
    "ScheduleConflict",
    "ResolutionOutcome",
    "TimeConflictResolver",
    "SEQUENCE_WEIGHTS",
    "PHASE_WEIGHTS",
    "STATUS_WEIGHTS",
]
