"""
Cascade operations over a project and everything it owns.

A project owns schedules, lifecycle events, snapshots and queue items.
Deleting, archiving or transferring a project has to reach all of them.
Child steps run in isolation: a failing step is recorded in the result and
the remaining steps still run. When a backup is requested it is taken and
verified before anything is deleted, and it holds every record the
cascade goes on to delete.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from meetingsync.audit.auditor import ConsistencyAuditor
from meetingsync.bus.interface import EventChannel
from meetingsync.cascade.models import (
    AffectedData,
    BackupSnapshot,
    CascadeOperation,
    CascadeOperationResult,
    CascadeStepError,
    CascadeWarning,
    DeletionAlternatives,
    DeletionConfirmation,
    ImpactAnalysis,
    MergeStrategy,
    RiskAssessment,
    RiskLevel,
    TransferOptions,
)
from meetingsync.events import CascadeCompleted
from meetingsync.exceptions import BackupVerificationError, EntityNotFoundError, StoreError
from meetingsync.models import Entity, EntityKind, Project, Schedule, ScheduleStatus, utc_now
from meetingsync.observability import Tracer, create_tracer
from meetingsync.observability.attributes import (
    ATTR_CASCADE_BACKUP,
    ATTR_CASCADE_OPERATION,
    ATTR_PROJECT_ID,
    ATTR_RECORD_COUNT,
)
from meetingsync.stores.interface import EntityStore

logger = logging.getLogger(__name__)

CHILD_KINDS = (
    EntityKind.SCHEDULE,
    EntityKind.LIFECYCLE_EVENT,
    EntityKind.SNAPSHOT,
    EntityKind.QUEUE_ITEM,
)
MANY_UPCOMING_MEETINGS = 3
MANY_SCHEDULES = 10


def format_size(num_bytes: int) -> str:
    if num_bytes < 1024:
        return f"{num_bytes} bytes"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / (1024 * 1024):.1f} MB"


class _Outcome:
    """Collects what a cascade touched while it runs."""

    def __init__(self, operation: CascadeOperation, project_id: str) -> None:
        self.operation = operation
        self.project_id = project_id
        self.affected = AffectedData()
        self.warnings: list[CascadeWarning] = []
        self.errors: list[CascadeStepError] = []
        self.backup: BackupSnapshot | None = None
        self.started = time.monotonic()

    def error(
        self, code: str, message: str, step: str, item_id: str, *, recoverable: bool = True
    ) -> None:
        self.errors.append(
            CascadeStepError(
                code=code,
                message=message,
                operation=step,
                item_id=item_id,
                recoverable=recoverable,
            )
        )

    def warn(self, code: str, message: str, item_id: str, suggestion: str = "") -> None:
        self.warnings.append(
            CascadeWarning(code=code, message=message, affected_item=item_id, suggestion=suggestion)
        )

    def result(self) -> CascadeOperationResult:
        return CascadeOperationResult(
            success=not self.errors,
            operation=self.operation,
            project_id=self.project_id,
            affected=self.affected,
            warnings=tuple(self.warnings),
            errors=tuple(self.errors),
            duration_seconds=time.monotonic() - self.started,
            backup=self.backup,
        )


class CascadeManager:
    """
    Safe delete, archive and transfer of projects and their records.

    Example:
        >>> manager = CascadeManager(store, enable_tracing=False)
        >>> confirmation = await manager.analyze_deletion_impact("P1")
        >>> confirmation.risks.level
        <RiskLevel.MEDIUM: 'medium'>
        >>> result = await manager.delete_cascade("P1", create_backup=True)
        >>> result.success
        True
    """

    def __init__(
        self,
        store: EntityStore,
        *,
        auditor: ConsistencyAuditor | None = None,
        channel: EventChannel | None = None,
        clock: Callable[[], datetime] = utc_now,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the manager.

        Args:
            store: Store holding the project and its records.
            auditor: Auditor used to count open inconsistencies during
                impact analysis.
            channel: Optional channel receiving CascadeCompleted.
            clock: Source of the current time.
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._store = store
        self._channel = channel
        self._clock = clock
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._auditor = auditor or ConsistencyAuditor(store, tracer=self._tracer)

    # -------------------------------------------------------------------------
    # Impact analysis
    # -------------------------------------------------------------------------

    async def analyze_deletion_impact(self, project_id: str) -> DeletionConfirmation:
        """
        Describe what deleting a project would affect.

        Raises:
            EntityNotFoundError: If the project does not exist.
        """
        project = await self._store.get_project(project_id)
        if project is None:
            raise EntityNotFoundError(EntityKind.PROJECT.value, project_id)

        related = await self._related(project_id)
        schedules = [s for s in related[EntityKind.SCHEDULE] if isinstance(s, Schedule)]
        now = self._clock()
        upcoming = [s for s in schedules if s.start is not None and s.start > now]
        issues = self._auditor.detect_inconsistencies([project], schedules)

        connected = ["projects"]
        for kind, name in (
            (EntityKind.SCHEDULE, "schedules"),
            (EntityKind.LIFECYCLE_EVENT, "lifecycle_events"),
            (EntityKind.SNAPSHOT, "snapshots"),
            (EntityKind.QUEUE_ITEM, "queue"),
        ):
            if related[kind]:
                connected.append(name)

        payload = [project.model_dump(mode="json")] + [
            s.model_dump(mode="json") for s in schedules
        ]
        impact = ImpactAnalysis(
            total_schedules=len(schedules),
            upcoming_meetings=len(upcoming),
            lifecycle_events=len(related[EntityKind.LIFECYCLE_EVENT]),
            snapshots=len(related[EntityKind.SNAPSHOT]),
            queue_items=len(related[EntityKind.QUEUE_ITEM]),
            connected_systems=tuple(connected),
            estimated_data_size=format_size(len(json.dumps(payload))),
            open_inconsistencies=len(issues),
        )
        other_projects = await self._store.count(EntityKind.PROJECT) > 1
        confirmation = DeletionConfirmation(
            project_id=project.id,
            project_title=project.title,
            impact=impact,
            risks=self.assess_risk(project, len(schedules), len(upcoming), len(issues)),
            alternatives=DeletionAlternatives(
                archive=True,
                transfer=other_projects,
                partial=bool(schedules),
            ),
        )
        logger.info(
            "Deletion impact for project %s: %d schedules, risk %s",
            project_id,
            impact.total_schedules,
            confirmation.risks.level.value,
            extra={"project_id": project_id},
        )
        return confirmation

    @staticmethod
    def assess_risk(
        project: Project, schedule_count: int, upcoming_count: int, open_issues: int = 0
    ) -> RiskAssessment:
        """
        Grade the risk of deleting a project.

        Upcoming meetings give MEDIUM (HIGH above three). An active phase
        raises LOW to MEDIUM and anything else to HIGH, or to CRITICAL when
        it coincides with more than three upcoming meetings. More than ten
        schedules raise LOW to MEDIUM.
        """
        level = RiskLevel.LOW
        factors: list[str] = []
        recommendations: list[str] = []

        if upcoming_count > 0:
            factors.append(f"{upcoming_count} upcoming meeting(s) are scheduled")
            recommendations.append("Cancel or move upcoming meetings to another project first")
            level = RiskLevel.HIGH if upcoming_count > MANY_UPCOMING_MEETINGS else RiskLevel.MEDIUM

        if project.is_active_phase:
            factors.append(f"Project is in active phase {project.phase}")
            recommendations.append("Consider completing or archiving the project instead")
            if upcoming_count > MANY_UPCOMING_MEETINGS:
                level = RiskLevel.CRITICAL
            elif level == RiskLevel.LOW:
                level = RiskLevel.MEDIUM
            else:
                level = RiskLevel.HIGH

        if schedule_count > MANY_SCHEDULES:
            factors.append(f"{schedule_count} schedules are linked to the project")
            recommendations.append("Create a backup or transfer part of the data first")
            if level == RiskLevel.LOW:
                level = RiskLevel.MEDIUM

        if open_issues:
            factors.append(f"{open_issues} unresolved inconsistencies involve the project")
            recommendations.append("Run auto recovery before deleting so the backup is clean")

        return RiskAssessment(
            level=level, factors=tuple(factors), recommendations=tuple(recommendations)
        )

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    async def delete_cascade(
        self, project_id: str, *, create_backup: bool = False
    ) -> CascadeOperationResult:
        """
        Delete a project and every record it owns.

        Steps run in order: backup, schedules, lifecycle events,
        snapshots, queue items, then the project itself. A failed child
        step is recorded as CASCADE_002 and the other steps still run, but
        the project is only deleted when every child step succeeded
        (CASCADE_003 otherwise), so no child is left pointing at a
        deleted project.

        Args:
            project_id: Project to delete.
            create_backup: Take and verify a backup before deleting. If
                the backup fails (CASCADE_001) nothing is deleted.

        Returns:
            CascadeOperationResult. Its backup, when present, can rebuild
            every record this cascade deleted.
        """
        outcome = _Outcome(CascadeOperation.DELETE, project_id)
        with self._tracer.span(
            "meetingsync.cascade.delete",
            {
                ATTR_PROJECT_ID: project_id,
                ATTR_CASCADE_OPERATION: CascadeOperation.DELETE.value,
                ATTR_CASCADE_BACKUP: create_backup,
            },
        ) as span:
            await self._delete(project_id, create_backup, outcome)
            if span:
                span.set_attribute(ATTR_RECORD_COUNT, outcome.affected.total)
        return await self._finish(outcome)

    async def _delete(self, project_id: str, create_backup: bool, outcome: _Outcome) -> None:
        try:
            project = await self._store.get_project(project_id)
            related = await self._related(project_id) if project is not None else {}
        except StoreError as e:
            outcome.error("CASCADE_002", f"Could not load project data: {e}", "load", project_id)
            return
        if project is None:
            outcome.error(
                "CASCADE_004",
                f"Project not found: {project_id}",
                "delete_project",
                project_id,
                recoverable=False,
            )
            return

        if create_backup:
            try:
                outcome.backup = self.create_backup(project, related)
                self.verify_backup(outcome.backup, related)
            except BackupVerificationError as e:
                logger.error("Backup failed for project %s: %s", project_id, e)
                outcome.error(e.code, str(e), "create_backup", project_id, recoverable=False)
                return

        for kind in CHILD_KINDS:
            step = f"delete_{kind.value}s"
            for entity in related[kind]:
                try:
                    deleted = await self._store.delete(kind, entity.id)
                except StoreError as e:
                    logger.error(
                        "Cascade step %s failed for %s: %s",
                        step,
                        entity.id,
                        e,
                        exc_info=True,
                        extra={"project_id": project_id, "step": step},
                    )
                    outcome.error("CASCADE_002", f"{step} failed: {e}", step, entity.id)
                    continue
                if deleted:
                    outcome.affected.add(kind, entity.id)
                else:
                    outcome.warn(
                        "CASCADE_W001", f"{kind.value} {entity.id} was already gone", entity.id
                    )

        if outcome.errors:
            outcome.error(
                "CASCADE_003",
                f"Project {project_id} not deleted: {len(outcome.errors)} child step(s) failed",
                "delete_project",
                project_id,
            )
            return
        try:
            await self._store.delete(EntityKind.PROJECT, project_id)
        except StoreError as e:
            outcome.error("CASCADE_003", f"Project deletion failed: {e}", "delete_project", project_id)

    # -------------------------------------------------------------------------
    # Backup and restore
    # -------------------------------------------------------------------------

    def create_backup(
        self, project: Project, related: dict[EntityKind, list[Entity]]
    ) -> BackupSnapshot:
        now = self._clock()
        return BackupSnapshot(
            backup_id=f"backup_{project.id}_{int(now.timestamp() * 1000)}",
            project_id=project.id,
            project=project.model_dump(mode="json"),
            related={
                kind.value: [e.model_dump(mode="json") for e in related.get(kind, [])]
                for kind in CHILD_KINDS
            },
            timestamp=now,
        )

    @staticmethod
    def verify_backup(
        backup: BackupSnapshot, related: dict[EntityKind, list[Entity]]
    ) -> None:
        """
        Check that a backup can rebuild the project and its records.

        Every record must be present and must load back into its model.

        Raises:
            BackupVerificationError: If anything is missing or unreadable.
        """
        try:
            EntityKind.PROJECT.model.model_validate(backup.project)
            for kind in CHILD_KINDS:
                for payload in backup.records(kind):
                    kind.model.model_validate(payload)
        except ValidationError as e:
            raise BackupVerificationError(backup.backup_id, f"unreadable record: {e}") from e

        for kind in CHILD_KINDS:
            for entity in related.get(kind, []):
                if not backup.contains(kind, entity.id):
                    raise BackupVerificationError(
                        backup.backup_id, f"{kind.value} {entity.id} is missing"
                    )

    async def restore_backup(self, backup: BackupSnapshot) -> CascadeOperationResult:
        """Recreate every record in a backup, skipping ids that still exist."""
        outcome = _Outcome(CascadeOperation.RESTORE, backup.project_id)
        outcome.backup = backup
        with self._tracer.span(
            "meetingsync.cascade.restore",
            {ATTR_PROJECT_ID: backup.project_id, ATTR_CASCADE_OPERATION: "restore"},
        ):
            entries = [(EntityKind.PROJECT, backup.project)] + [
                (kind, payload) for kind in CHILD_KINDS for payload in backup.records(kind)
            ]
            for kind, payload in entries:
                entity = kind.model.model_validate(payload)
                try:
                    if await self._store.get(kind, payload["id"]) is not None:
                        outcome.warn(
                            "CASCADE_W002", f"{kind.value} {payload['id']} already exists", payload["id"]
                        )
                        continue
                    await self._store.create(entity)
                except StoreError as e:
                    outcome.error("CASCADE_002", f"Restore failed: {e}", "restore", payload["id"])
                    continue
                if kind != EntityKind.PROJECT:
                    outcome.affected.add(kind, payload["id"])
        return await self._finish(outcome)

    # -------------------------------------------------------------------------
    # Archive
    # -------------------------------------------------------------------------

    async def archive_cascade(
        self, project_id: str, reason: str | None = None
    ) -> CascadeOperationResult:
        """
        Archive a project instead of deleting it.

        The project and its schedules are marked archived, lifecycle
        events are tagged, and pending queue items are removed since an
        archived project is not processed.
        """
        outcome = _Outcome(CascadeOperation.ARCHIVE, project_id)
        with self._tracer.span(
            "meetingsync.cascade.archive",
            {ATTR_PROJECT_ID: project_id, ATTR_CASCADE_OPERATION: CascadeOperation.ARCHIVE.value},
        ):
            await self._archive(project_id, reason, outcome)
        return await self._finish(outcome)

    async def _archive(self, project_id: str, reason: str | None, outcome: _Outcome) -> None:
        try:
            project = await self._store.get_project(project_id)
            related = await self._related(project_id) if project is not None else {}
        except StoreError as e:
            outcome.error("CASCADE_002", f"Could not load project data: {e}", "load", project_id)
            return
        if project is None:
            outcome.error(
                "CASCADE_004",
                f"Project not found: {project_id}",
                "archive_project",
                project_id,
                recoverable=False,
            )
            return

        now = self._clock()
        archived = project.model_copy(
            update={
                "status": "archived",
                "updated_at": now,
                "metadata": {
                    **project.metadata,
                    "archive": {"reason": reason, "archived_at": now.isoformat()},
                },
            }
        )
        try:
            await self._store.update(archived)
        except StoreError as e:
            outcome.error("CASCADE_002", f"Project archival failed: {e}", "archive_project", project_id)
            return

        for entity in related[EntityKind.SCHEDULE]:
            assert isinstance(entity, Schedule)
            if entity.status == ScheduleStatus.ARCHIVED.value:
                continue
            await self._step(
                "archive_schedules",
                outcome,
                EntityKind.SCHEDULE,
                entity.id,
                self._store.update(
                    entity.model_copy(
                        update={"status": ScheduleStatus.ARCHIVED.value, "updated_at": now}
                    )
                ),
            )
        for entity in related[EntityKind.LIFECYCLE_EVENT]:
            metadata = {**entity.metadata, "archived": True, "archived_at": now.isoformat()}
            await self._step(
                "mark_events_archived",
                outcome,
                EntityKind.LIFECYCLE_EVENT,
                entity.id,
                self._store.update(entity.model_copy(update={"metadata": metadata})),
            )
        for entity in related[EntityKind.QUEUE_ITEM]:
            await self._step(
                "remove_queue_items",
                outcome,
                EntityKind.QUEUE_ITEM,
                entity.id,
                self._store.delete(EntityKind.QUEUE_ITEM, entity.id),
            )

    # -------------------------------------------------------------------------
    # Transfer
    # -------------------------------------------------------------------------

    async def transfer_cascade(
        self, source_project_id: str, options: TransferOptions
    ) -> CascadeOperationResult:
        """
        Move a project's records to another project.

        Schedules are matched on meeting sequence under MERGE, other
        records on id. Queue items are never transferred.
        """
        outcome = _Outcome(CascadeOperation.TRANSFER, source_project_id)
        with self._tracer.span(
            "meetingsync.cascade.transfer",
            {
                ATTR_PROJECT_ID: source_project_id,
                ATTR_CASCADE_OPERATION: CascadeOperation.TRANSFER.value,
            },
        ):
            await self._transfer(source_project_id, options, outcome)
        return await self._finish(outcome)

    async def _transfer(self, source_id: str, options: TransferOptions, outcome: _Outcome) -> None:
        target_id = options.target_project_id
        if source_id == target_id:
            outcome.error(
                "CASCADE_002",
                "Source and target project are the same",
                "transfer_project_data",
                source_id,
                recoverable=False,
            )
            return
        try:
            for project_id in (source_id, target_id):
                if await self._store.get_project(project_id) is None:
                    outcome.error(
                        "CASCADE_004",
                        f"Project not found: {project_id}",
                        "transfer_project_data",
                        project_id,
                        recoverable=False,
                    )
            if outcome.errors:
                return
            # everything is read before the first write
            loaded = {
                kind: (
                    await self._store.list_by_project(kind, source_id),
                    await self._store.list_by_project(kind, target_id),
                )
                for kind in options.kinds
            }
        except StoreError as e:
            outcome.error("CASCADE_002", f"Could not load project data: {e}", "load", source_id)
            return

        for kind, (incoming, existing) in loaded.items():
            step = f"transfer_{kind.value}s"

            if options.merge_strategy == MergeStrategy.REPLACE:
                for entity in existing:
                    await self._step(
                        step, outcome, None, entity.id, self._store.delete(kind, entity.id)
                    )
                existing = []

            taken = {self._merge_key(e) for e in existing}
            for entity in incoming:
                if options.merge_strategy == MergeStrategy.MERGE and self._merge_key(entity) in taken:
                    outcome.warn(
                        "CASCADE_W003",
                        f"{kind.value} {entity.id} already exists in {target_id}; skipped",
                        entity.id,
                    )
                    continue
                await self._step(
                    step,
                    outcome,
                    kind,
                    entity.id,
                    self._store.update(entity.model_copy(update={"project_id": target_id})),
                )

    @staticmethod
    def _merge_key(entity: Entity) -> str:
        if isinstance(entity, Schedule) and entity.meeting_sequence:
            return entity.meeting_sequence
        return entity.id

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _related(self, project_id: str) -> dict[EntityKind, list[Entity]]:
        return {kind: await self._store.list_by_project(kind, project_id) for kind in CHILD_KINDS}

    async def _step(
        self,
        step: str,
        outcome: _Outcome,
        kind: EntityKind | None,
        item_id: str,
        operation: Awaitable[Any],
    ) -> None:
        try:
            await operation
        except StoreError as e:
            logger.error(
                "Cascade step %s failed for %s: %s",
                step,
                item_id,
                e,
                exc_info=True,
                extra={"project_id": outcome.project_id, "step": step},
            )
            outcome.error("CASCADE_002", f"{step} failed: {e}", step, item_id)
            return
        if kind is not None:
            outcome.affected.add(kind, item_id)

    async def _finish(self, outcome: _Outcome) -> CascadeOperationResult:
        result = outcome.result()
        log = logger.info if result.success else logger.warning
        log(
            "Cascade %s of project %s finished: success=%s, %d records, %d errors",
            result.operation.value,
            result.project_id,
            result.success,
            result.affected.total,
            len(result.errors),
            extra={"project_id": result.project_id, "operation": result.operation.value},
        )
        if self._channel is not None:
            await self._channel.publish(
                [
                    CascadeCompleted(
                        operation=result.operation.value,
                        project_id=result.project_id,
                        success=result.success,
                    )
                ]
            )
        return result


__all__ = ["CascadeManager", "format_size"]
