"""
Automatic recovery of detected inconsistencies.

Each auto-fixable inconsistency gets one deterministic fix, applied
directly against the store. Recovery is best-effort: a failed fix is
reported in its RecoveryResult and never stops the remaining fixes.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import timedelta

from meetingsync.audit.auditor import ConsistencyAuditor
from meetingsync.audit.models import (
    AutoRecoveryReport,
    Inconsistency,
    InconsistencyType,
    RecoveryAction,
    RecoveryActionType,
    RecoveryResult,
    RecoveryStepError,
    RecoveryStrategy,
)
from meetingsync.exceptions import RecoveryError
from meetingsync.migration.conversion import MeetingConverter
from meetingsync.models import SAFE_DEFAULT_PHASE, EntityKind, Schedule, utc_now
from meetingsync.observability import Tracer, create_tracer
from meetingsync.observability.attributes import ATTR_INCONSISTENCY_COUNT
from meetingsync.stores.interface import EntityStore

logger = logging.getLogger(__name__)

REPAIRED_DURATION = timedelta(hours=1)

_Fix = Callable[[Inconsistency, list[RecoveryAction], list[str]], Awaitable[None]]


class RecoveryManager:
    """
    Applies fixes for inconsistencies found by the ConsistencyAuditor.

    Fixes by type:
        - orphan schedule / broken reference: delete the schedules
        - missing schedule: recreate it from the source meeting
        - duplicate meeting: keep the newest schedule, delete the rest
        - invalid phase: reset to the safe default phase
        - timestamp mismatch: set end to start + 1 hour
    """

    def __init__(
        self,
        store: EntityStore,
        *,
        auditor: ConsistencyAuditor | None = None,
        converter: MeetingConverter | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._auditor = auditor or ConsistencyAuditor(store, tracer=self._tracer)
        self._converter = converter or MeetingConverter()
        self._fixes: dict[InconsistencyType, _Fix] = {
            InconsistencyType.ORPHAN_SCHEDULE: self._remove_schedules,
            InconsistencyType.BROKEN_REFERENCE: self._remove_schedules,
            InconsistencyType.MISSING_SCHEDULE: self._recreate_missing,
            InconsistencyType.DUPLICATE_MEETING: self._keep_newest,
            InconsistencyType.INVALID_PHASE: self._reset_phase,
            InconsistencyType.TIMESTAMP_MISMATCH: self._repair_timestamp,
        }

    async def perform_auto_recovery(
        self, inconsistencies: Sequence[Inconsistency] | None = None
    ) -> AutoRecoveryReport:
        """
        Fix every auto-fixable inconsistency.

        Args:
            inconsistencies: Findings to fix. When omitted a health check
                is run first and its findings are used.

        Returns:
            AutoRecoveryReport with one result per inconsistency; items
            that are not auto-fixable are reported as skipped.
        """
        if inconsistencies is None:
            report = await self._auditor.perform_health_check()
            inconsistencies = report.inconsistencies

        with self._tracer.span(
            "meetingsync.audit.auto_recovery",
            {ATTR_INCONSISTENCY_COUNT: len(inconsistencies)},
        ):
            results = [await self.recover(i) for i in inconsistencies]

        summary = AutoRecoveryReport(results=tuple(results))
        logger.info(
            "Auto recovery finished: %d fixed, %d failed, %d skipped",
            summary.fixed,
            summary.failed,
            summary.skipped,
        )
        return summary

    async def recover(self, inconsistency: Inconsistency) -> RecoveryResult:
        """Apply the fix for a single inconsistency."""
        started = time.monotonic()
        if not inconsistency.auto_fixable:
            return RecoveryResult(
                success=False,
                inconsistency_id=inconsistency.id,
                strategy=inconsistency.suggested_strategy,
                errors=(
                    RecoveryStepError(
                        code="RECOVERY_003",
                        message="Inconsistency is not auto-fixable",
                        item_id=inconsistency.id,
                        recoverable=False,
                    ),
                ),
                skipped=True,
            )

        actions: list[RecoveryAction] = []
        warnings: list[str] = []
        errors: list[RecoveryStepError] = []
        fix = self._fixes.get(inconsistency.type)
        try:
            if fix is None or inconsistency.suggested_strategy == RecoveryStrategy.MANUAL_REVIEW:
                raise RecoveryError(
                    "RECOVERY_001",
                    f"No fix for {inconsistency.type.value} with strategy "
                    f"{inconsistency.suggested_strategy.value}",
                )
            await fix(inconsistency, actions, warnings)
        except RecoveryError as e:
            errors.append(RecoveryStepError(code=e.code, message=str(e), item_id=inconsistency.id))
        except Exception as e:
            logger.error(
                "Recovery of %s failed: %s",
                inconsistency.id,
                e,
                exc_info=True,
                extra={"inconsistency_id": inconsistency.id},
            )
            errors.append(
                RecoveryStepError(
                    code="RECOVERY_002",
                    message=f"Inconsistency recovery failed: {e}",
                    item_id=inconsistency.id,
                )
            )

        for warning in warnings:
            logger.warning(warning, extra={"inconsistency_id": inconsistency.id})
        return RecoveryResult(
            success=not errors,
            inconsistency_id=inconsistency.id,
            strategy=inconsistency.suggested_strategy,
            actions=tuple(actions),
            errors=tuple(errors),
            warnings=tuple(warnings),
            duration_seconds=time.monotonic() - started,
        )

    # -------------------------------------------------------------------------
    # Fixes
    # -------------------------------------------------------------------------

    async def _remove_schedules(
        self, inconsistency: Inconsistency, actions: list[RecoveryAction], warnings: list[str]
    ) -> None:
        for schedule_id in inconsistency.affected.schedules:
            existing = await self._store.get(EntityKind.SCHEDULE, schedule_id)
            if existing is None:
                warnings.append(f"Schedule {schedule_id} was already removed")
                continue
            await self._store.delete(EntityKind.SCHEDULE, schedule_id)
            actions.append(
                RecoveryAction(
                    type=RecoveryActionType.DELETE,
                    target="schedule",
                    item_id=schedule_id,
                    details=f"Removed schedule without a resolvable project ({inconsistency.type.value})",
                    old_value=existing.model_dump(mode="json"),
                )
            )

    async def _recreate_missing(
        self, inconsistency: Inconsistency, actions: list[RecoveryAction], warnings: list[str]
    ) -> None:
        project_id = str(inconsistency.evidence.get("project_id"))
        meeting_id = str(inconsistency.evidence.get("meeting_id"))
        project = await self._store.get_project(project_id)
        if project is None:
            raise RecoveryError("RECOVERY_003", f"Project not found: {project_id}")
        meeting = next((m for m in project.meetings if m.id == meeting_id), None)
        if meeting is None:
            raise RecoveryError("RECOVERY_002", f"Source meeting not found: {meeting_id}")
        if await self._store.get(EntityKind.SCHEDULE, meeting_id) is not None:
            warnings.append(f"Schedule {meeting_id} already exists")
            return

        try:
            schedule = self._converter.convert(meeting, project)
        except ValueError as e:
            raise RecoveryError("RECOVERY_002", f"Cannot convert meeting {meeting_id}: {e}") from e
        await self._store.create(schedule)
        actions.append(
            RecoveryAction(
                type=RecoveryActionType.CREATE,
                target="schedule",
                item_id=schedule.id,
                details=f"Recreated schedule for meeting {meeting_id}",
                new_value=schedule.model_dump(mode="json"),
            )
        )

    async def _keep_newest(
        self, inconsistency: Inconsistency, actions: list[RecoveryAction], warnings: list[str]
    ) -> None:
        found: list[Schedule] = []
        for schedule_id in inconsistency.affected.schedules:
            schedule = await self._store.get(EntityKind.SCHEDULE, schedule_id)
            if schedule is None:
                warnings.append(f"Schedule {schedule_id} was already removed")
            else:
                assert isinstance(schedule, Schedule)
                found.append(schedule)
        if len(found) < 2:
            return

        found.sort(key=lambda s: (s.created_at, s.id), reverse=True)
        keep, *rest = found
        for schedule in rest:
            await self._store.delete(EntityKind.SCHEDULE, schedule.id)
            actions.append(
                RecoveryAction(
                    type=RecoveryActionType.MERGE,
                    target="schedule",
                    item_id=schedule.id,
                    details=f"Removed duplicate of {keep.id}",
                    old_value=schedule.model_dump(mode="json"),
                    new_value=keep.id,
                )
            )

    async def _reset_phase(
        self, inconsistency: Inconsistency, actions: list[RecoveryAction], warnings: list[str]
    ) -> None:
        for project_id in inconsistency.affected.projects:
            project = await self._store.get_project(project_id)
            if project is None:
                raise RecoveryError("RECOVERY_003", f"Project not found: {project_id}")
            old_phase = project.phase
            project.phase = SAFE_DEFAULT_PHASE.value
            project.updated_at = utc_now()
            await self._store.update(project)
            actions.append(
                RecoveryAction(
                    type=RecoveryActionType.UPDATE,
                    target="project",
                    item_id=project_id,
                    details="Reset invalid phase",
                    old_value=old_phase,
                    new_value=project.phase,
                )
            )

    async def _repair_timestamp(
        self, inconsistency: Inconsistency, actions: list[RecoveryAction], warnings: list[str]
    ) -> None:
        for schedule_id in inconsistency.affected.schedules:
            schedule = await self._store.get(EntityKind.SCHEDULE, schedule_id)
            if schedule is None:
                warnings.append(f"Schedule {schedule_id} was already removed")
                continue
            assert isinstance(schedule, Schedule)
            if schedule.start is None:
                raise RecoveryError("RECOVERY_002", f"Schedule {schedule_id} has no start time")
            old_end = schedule.end
            schedule.end = schedule.start + REPAIRED_DURATION
            schedule.updated_at = utc_now()
            await self._store.update(schedule)
            actions.append(
                RecoveryAction(
                    type=RecoveryActionType.UPDATE,
                    target="schedule",
                    item_id=schedule_id,
                    details="Set end to one hour after start",
                    old_value=old_end.isoformat() if old_end else None,
                    new_value=schedule.end.isoformat(),
                )
            )


__all__ = ["RecoveryManager"]
