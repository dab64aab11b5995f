"""
Consistency auditor.

Runs six independent detectors over the full set of projects and
schedules and rolls their findings into a SystemHealthReport. Detection is
read-only; fixes are applied by the RecoveryManager.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence

from meetingsync.audit.models import (
    AffectedItems,
    HealthStatistics,
    HealthStatus,
    Inconsistency,
    InconsistencyType,
    IssueSeverity,
    RecoveryStrategy,
    SystemHealthReport,
)
from meetingsync.bus.interface import EventChannel
from meetingsync.events import HealthCheckCompleted
from meetingsync.exceptions import StoreError
from meetingsync.models import EntityKind, Project, ProjectPhase, Schedule
from meetingsync.observability import Tracer, create_tracer
from meetingsync.observability.attributes import (
    ATTR_HEALTH_STATUS,
    ATTR_INCONSISTENCY_COUNT,
    ATTR_RECORD_COUNT,
)
from meetingsync.stores.interface import EntityStore

logger = logging.getLogger(__name__)

HIGH_SEVERITY_CRITICAL_THRESHOLD = 3
ISSUE_COUNT_WARNING_THRESHOLD = 5
UNASSIGNED_PROJECT = "<none>"


def overall_health(inconsistencies: Sequence[Inconsistency]) -> HealthStatus:
    """
    Grade a set of findings.

    Critical if any finding is critical or more than three are high;
    warning if any is high or there are more than five in total.
    """
    if not inconsistencies:
        return HealthStatus.HEALTHY
    severities = [i.severity for i in inconsistencies]
    high = severities.count(IssueSeverity.HIGH)
    if IssueSeverity.CRITICAL in severities or high > HIGH_SEVERITY_CRITICAL_THRESHOLD:
        return HealthStatus.CRITICAL
    if high > 0 or len(inconsistencies) > ISSUE_COUNT_WARNING_THRESHOLD:
        return HealthStatus.WARNING
    return HealthStatus.HEALTHY


class ConsistencyAuditor:
    """
    Detects referential and state inconsistencies across the data set.

    Example:
        >>> auditor = ConsistencyAuditor(store, enable_tracing=False)
        >>> report = await auditor.perform_health_check()
        >>> report.overall_health
        <HealthStatus.HEALTHY: 'healthy'>
    """

    def __init__(
        self,
        store: EntityStore,
        *,
        channel: EventChannel | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the auditor.

        Args:
            store: Store read when the caller does not pass the data in.
            channel: Optional channel receiving HealthCheckCompleted.
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._store = store
        self._channel = channel
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def perform_health_check(
        self,
        projects: Sequence[Project] | None = None,
        schedules: Sequence[Schedule] | None = None,
    ) -> SystemHealthReport:
        """
        Audit the data set and grade its health.

        Projects and schedules not passed in are loaded from the store. A
        store failure yields a report with FAILURE health instead of
        raising.
        """
        with self._tracer.span("meetingsync.audit.health_check", {}) as span:
            try:
                if projects is None:
                    projects = await self._store.list_projects()
                if schedules is None:
                    schedules = await self._store.list_schedules()
                total_events = await self._store.count(EntityKind.LIFECYCLE_EVENT)
            except StoreError as e:
                logger.error("Health check could not read the store: %s", e, exc_info=True)
                report = SystemHealthReport(
                    overall_health=HealthStatus.FAILURE,
                    recommendations=("Check store connectivity and rerun the health check",),
                    error=str(e),
                )
            else:
                found = self.detect_inconsistencies(projects, schedules)
                report = SystemHealthReport(
                    overall_health=overall_health(found),
                    inconsistencies=tuple(found),
                    statistics=self._statistics(projects, schedules, total_events, found),
                    recommendations=tuple(self._recommendations(found)),
                )
            if span:
                span.set_attribute(ATTR_HEALTH_STATUS, report.overall_health.value)
                span.set_attribute(ATTR_INCONSISTENCY_COUNT, len(report.inconsistencies))

        log = logger.info if report.overall_health == HealthStatus.HEALTHY else logger.warning
        log(
            "Health check finished: %s with %d inconsistencies",
            report.overall_health.value,
            len(report.inconsistencies),
            extra={"overall_health": report.overall_health.value},
        )
        if self._channel is not None:
            await self._channel.publish(
                [
                    HealthCheckCompleted(
                        overall_health=report.overall_health.value,
                        inconsistency_count=len(report.inconsistencies),
                    )
                ]
            )
        return report

    def detect_inconsistencies(
        self, projects: Sequence[Project], schedules: Sequence[Schedule]
    ) -> list[Inconsistency]:
        """Run every detector and return the findings in detector order."""
        with self._tracer.span(
            "meetingsync.audit.detect",
            {ATTR_RECORD_COUNT: len(projects) + len(schedules)},
        ):
            found: list[Inconsistency] = []
            found.extend(self._orphan_schedules(projects, schedules))
            found.extend(self._missing_schedules(projects, schedules))
            found.extend(self._duplicate_meetings(schedules))
            found.extend(self._invalid_phases(projects))
            found.extend(self._broken_references(projects, schedules))
            found.extend(self._timestamp_mismatches(schedules))
        return found

    # -------------------------------------------------------------------------
    # Detectors
    # -------------------------------------------------------------------------

    def _orphan_schedules(
        self, projects: Sequence[Project], schedules: Sequence[Schedule]
    ) -> list[Inconsistency]:
        project_ids = {p.id for p in projects}
        groups: dict[str, list[str]] = defaultdict(list)
        for s in schedules:
            if s.is_project_meeting and s.project_id not in project_ids:
                groups[s.project_id or UNASSIGNED_PROJECT].append(s.id)

        return [
            Inconsistency(
                id=f"{InconsistencyType.ORPHAN_SCHEDULE.value}:{project_id}",
                type=InconsistencyType.ORPHAN_SCHEDULE,
                severity=IssueSeverity.MEDIUM,
                description=f"{len(ids)} schedule(s) reference missing project {project_id}",
                affected=AffectedItems(schedules=tuple(ids)),
                suggested_strategy=RecoveryStrategy.REMOVE_ORPHAN,
                evidence={"project_id": project_id, "schedule_ids": list(ids)},
            )
            for project_id, ids in groups.items()
        ]

    def _missing_schedules(
        self, projects: Sequence[Project], schedules: Sequence[Schedule]
    ) -> list[Inconsistency]:
        known: set[str] = set()
        for s in schedules:
            known.add(s.id)
            source = s.metadata.get("source_meeting_id")
            if source:
                known.add(str(source))

        found = []
        for project in projects:
            for meeting in project.meetings:
                if not meeting.id or meeting.id in known:
                    continue
                found.append(
                    Inconsistency(
                        id=f"{InconsistencyType.MISSING_SCHEDULE.value}:{project.id}:{meeting.id}",
                        type=InconsistencyType.MISSING_SCHEDULE,
                        severity=IssueSeverity.HIGH,
                        description=(
                            f"Meeting {meeting.id} of project {project.id} has no schedule"
                        ),
                        affected=AffectedItems(projects=(project.id,)),
                        suggested_strategy=RecoveryStrategy.RECREATE_MISSING,
                        evidence={"project_id": project.id, "meeting_id": meeting.id},
                    )
                )
        return found

    def _duplicate_meetings(self, schedules: Sequence[Schedule]) -> list[Inconsistency]:
        groups: dict[tuple[str, str], list[str]] = defaultdict(list)
        for s in schedules:
            if s.is_project_meeting and s.project_id and s.meeting_sequence:
                groups[(s.project_id, s.meeting_sequence)].append(s.id)

        return [
            Inconsistency(
                id=f"{InconsistencyType.DUPLICATE_MEETING.value}:{project_id}:{sequence}",
                type=InconsistencyType.DUPLICATE_MEETING,
                severity=IssueSeverity.MEDIUM,
                description=f"{len(ids)} schedules share sequence {sequence} in project {project_id}",
                affected=AffectedItems(projects=(project_id,), schedules=tuple(ids)),
                suggested_strategy=RecoveryStrategy.KEEP_NEWEST,
                evidence={"project_id": project_id, "meeting_sequence": sequence},
            )
            for (project_id, sequence), ids in groups.items()
            if len(ids) > 1
        ]

    def _invalid_phases(self, projects: Sequence[Project]) -> list[Inconsistency]:
        return [
            Inconsistency(
                id=f"{InconsistencyType.INVALID_PHASE.value}:{p.id}",
                type=InconsistencyType.INVALID_PHASE,
                severity=IssueSeverity.HIGH,
                description=f"Project {p.id} has invalid phase {p.phase!r}",
                affected=AffectedItems(projects=(p.id,)),
                suggested_strategy=RecoveryStrategy.RESET_PHASE,
                evidence={
                    "current_phase": p.phase,
                    "valid_phases": [phase.value for phase in ProjectPhase],
                },
            )
            for p in projects
            if p.phase and not ProjectPhase.is_valid(p.phase)
        ]

    def _broken_references(
        self, projects: Sequence[Project], schedules: Sequence[Schedule]
    ) -> list[Inconsistency]:
        project_ids = {p.id for p in projects}
        broken = [
            s.id
            for s in schedules
            if s.is_project_meeting and s.project_id and s.project_id not in project_ids
        ]
        if not broken:
            return []
        return [
            Inconsistency(
                id=f"{InconsistencyType.BROKEN_REFERENCE.value}:schedules",
                type=InconsistencyType.BROKEN_REFERENCE,
                severity=IssueSeverity.HIGH,
                description=f"{len(broken)} schedule(s) hold unresolvable project references",
                affected=AffectedItems(schedules=tuple(broken)),
                suggested_strategy=RecoveryStrategy.REMOVE_ORPHAN,
                evidence={"schedule_ids": broken},
            )
        ]

    def _timestamp_mismatches(self, schedules: Sequence[Schedule]) -> list[Inconsistency]:
        found = []
        for s in schedules:
            if s.has_valid_bounds:
                continue
            found.append(
                Inconsistency(
                    id=f"{InconsistencyType.TIMESTAMP_MISMATCH.value}:{s.id}",
                    type=InconsistencyType.TIMESTAMP_MISMATCH,
                    severity=IssueSeverity.HIGH,
                    description=f"Schedule {s.id} has invalid time bounds",
                    affected=AffectedItems(schedules=(s.id,)),
                    suggested_strategy=(
                        RecoveryStrategy.REPAIR_TIMESTAMP
                        if s.start is not None
                        else RecoveryStrategy.MANUAL_REVIEW
                    ),
                    # without a start there is nothing to repair from
                    auto_fixable=s.start is not None,
                    evidence={
                        "start": s.start.isoformat() if s.start else None,
                        "end": s.end.isoformat() if s.end else None,
                    },
                )
            )
        return found

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    @staticmethod
    def _statistics(
        projects: Sequence[Project],
        schedules: Sequence[Schedule],
        total_events: int,
        found: Sequence[Inconsistency],
    ) -> HealthStatistics:
        def items(kind: InconsistencyType) -> int:
            return sum(
                len(i.affected.schedules) or 1 for i in found if i.type == kind
            )

        return HealthStatistics(
            total_projects=len(projects),
            total_schedules=len(schedules),
            total_events=total_events,
            orphan_schedules=items(InconsistencyType.ORPHAN_SCHEDULE),
            missing_schedules=items(InconsistencyType.MISSING_SCHEDULE),
            duplicate_meetings=items(InconsistencyType.DUPLICATE_MEETING),
            invalid_phases=items(InconsistencyType.INVALID_PHASE),
            broken_references=items(InconsistencyType.BROKEN_REFERENCE),
            timestamp_mismatches=items(InconsistencyType.TIMESTAMP_MISMATCH),
        )

    @staticmethod
    def _recommendations(found: Sequence[Inconsistency]) -> list[str]:
        if not found:
            return ["System is healthy; no action required"]

        recommendations = []
        auto = sum(1 for i in found if i.auto_fixable)
        manual = len(found) - auto
        if auto:
            recommendations.append(f"{auto} issue(s) can be fixed by running auto recovery")
        if manual:
            recommendations.append(f"{manual} issue(s) require manual review")
        if any(i.severity in (IssueSeverity.CRITICAL, IssueSeverity.HIGH) for i in found):
            recommendations.append("Resolve high-severity issues before the next migration")
        return recommendations


__all__ = ["ConsistencyAuditor", "overall_health"]
