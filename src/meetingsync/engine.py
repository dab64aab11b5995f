"""
MigrationEngine: the library entry point.

Wires the orchestrator, auditor, recovery manager, cascade manager and
time conflict resolver around one EntityStore. Every collaborator is
passed in or built from the given configs; nothing is global.

Example:
    >>> from meetingsync import MigrationEngine, InMemoryEntityStore
    >>>
    >>> engine = MigrationEngine(InMemoryEntityStore(), enable_tracing=False)
    >>> await engine.load_history()
    >>> if await engine.should_migrate():
    ...     result = await engine.migrate()
    >>> report = await engine.health_check()
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

from meetingsync.audit import (
    AutoRecoveryReport,
    ConsistencyAuditor,
    Inconsistency,
    RecoveryManager,
    SystemHealthReport,
)
from meetingsync.bus.interface import EventChannel
from meetingsync.cascade import (
    BackupSnapshot,
    CascadeManager,
    CascadeOperationResult,
    DeletionConfirmation,
    TransferOptions,
)
from meetingsync.config import ConflictConfig, MigrationConfig, RetryConfig
from meetingsync.conflicts import (
    ConflictResolution,
    IdentityConflictResolver,
    ResolutionOutcome,
    ScheduleConflict,
    TimeConflictResolver,
)
from meetingsync.migration import (
    MeetingConverter,
    MigrationCondition,
    MigrationOptions,
    MigrationOrchestrator,
    MigrationResult,
    MigrationRun,
    MigrationState,
    RunHistory,
)
from meetingsync.models import EntityKind, Schedule, utc_now
from meetingsync.observability import Tracer, create_tracer
from meetingsync.retry import InMemoryRetryTracker, RetryTracker
from meetingsync.scope import MigrationScope, ScopeSelector
from meetingsync.stores.in_memory import InMemoryRunHistoryStore
from meetingsync.stores.interface import EntityStore, RunHistoryStore
from meetingsync.validation import SimulationResult, ValidationContext, ValidationEngine

logger = logging.getLogger(__name__)


class MigrationEngine:
    """
    Facade over the migration and consistency components.

    Args:
        store: Store holding projects and their records.
        retry: Retry subsystem; defaults to an InMemoryRetryTracker.
        history_store: Where run history is persisted; defaults to memory.
        channel: Optional channel receiving every engine event.
        config: Migration config.
        conflict_config: Time conflict config.
        retry_config: Config for the default retry tracker.
        clock: Source of the current time.
        tracer: Optional custom Tracer shared by every component.
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        store: EntityStore,
        *,
        retry: RetryTracker | None = None,
        history_store: RunHistoryStore | None = None,
        channel: EventChannel | None = None,
        config: MigrationConfig | None = None,
        conflict_config: ConflictConfig | None = None,
        retry_config: RetryConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._store = store
        self._config = config or MigrationConfig()

        converter = MeetingConverter(self._config)
        self._selector = ScopeSelector(clock=clock, tracer=self._tracer)
        self._validation = ValidationEngine(config=self._config, tracer=self._tracer)
        self._history = RunHistory(
            history_store or InMemoryRunHistoryStore(), limit=self._config.history_limit
        )
        self._orchestrator = MigrationOrchestrator(
            store,
            retry=retry or InMemoryRetryTracker(retry_config, clock=clock),
            validation=self._validation,
            identity=IdentityConflictResolver(self._config, tracer=self._tracer),
            selector=self._selector,
            converter=converter,
            history=self._history,
            channel=channel,
            config=self._config,
            clock=clock,
            tracer=self._tracer,
        )
        self._auditor = ConsistencyAuditor(store, channel=channel, tracer=self._tracer)
        self._recovery = RecoveryManager(
            store, auditor=self._auditor, converter=converter, tracer=self._tracer
        )
        self._cascade = CascadeManager(
            store, auditor=self._auditor, channel=channel, clock=clock, tracer=self._tracer
        )
        self._time = TimeConflictResolver(conflict_config, tracer=self._tracer)

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    @property
    def store(self) -> EntityStore:
        return self._store

    @property
    def orchestrator(self) -> MigrationOrchestrator:
        return self._orchestrator

    @property
    def selector(self) -> ScopeSelector:
        return self._selector

    @property
    def validation(self) -> ValidationEngine:
        return self._validation

    @property
    def auditor(self) -> ConsistencyAuditor:
        return self._auditor

    @property
    def cascade(self) -> CascadeManager:
        return self._cascade

    @property
    def time_conflicts(self) -> TimeConflictResolver:
        return self._time

    # -------------------------------------------------------------------------
    # Migration
    # -------------------------------------------------------------------------

    async def load_history(self) -> list[MigrationRun]:
        """Read the persisted run history; call once on startup."""
        runs = await self._history.load()
        logger.info("Loaded %d past migration runs", len(runs))
        return runs

    async def migrate(
        self,
        options: MigrationOptions | None = None,
        *,
        scope: MigrationScope | None = None,
        force: bool = False,
        skip_validation: bool = False,
    ) -> MigrationResult:
        """
        Run a migration.

        Either pass full MigrationOptions or the scope and flags directly.

        Raises:
            MigrationAlreadyRunningError: If a run is already active.
        """
        if options is None:
            options = MigrationOptions(scope=scope, force=force, skip_validation=skip_validation)
        return await self._orchestrator.migrate(options)

    async def pause(self) -> bool:
        return await self._orchestrator.pause()

    async def resume(self) -> bool:
        return await self._orchestrator.resume()

    async def cancel(self, reason: str = "Cancelled by user") -> bool:
        return await self._orchestrator.cancel(reason)

    @property
    def state(self) -> MigrationState:
        return self._orchestrator.state

    def status(self) -> MigrationRun | None:
        return self._orchestrator.status()

    async def should_migrate(self) -> bool:
        return await self._orchestrator.should_migrate()

    def add_condition(self, condition: MigrationCondition) -> None:
        self._orchestrator.add_condition(condition)

    def remove_condition(self, condition_id: str) -> bool:
        return self._orchestrator.remove_condition(condition_id)

    def get_statistics(self) -> dict[str, Any]:
        return self._orchestrator.get_statistics()

    async def reset(self) -> bool:
        return await self._orchestrator.reset()

    async def simulate(self, scope: MigrationScope | None = None) -> SimulationResult:
        """Dry-run the full validation chain over a scope without writing anything."""
        projects = await self._store.list_projects()
        resolved = self._selector.resolve(projects, scope or self._selector.full_scope())
        schedules = await self._store.list_schedules()
        return await self._validation.simulate(
            ValidationContext(
                projects=resolved.projects,
                meetings=resolved.meetings,
                schedules=schedules,
                before_count=len(schedules),
                after_count=len(schedules),
            )
        )

    # -------------------------------------------------------------------------
    # Consistency
    # -------------------------------------------------------------------------

    async def health_check(self) -> SystemHealthReport:
        return await self._auditor.perform_health_check()

    async def auto_recover(
        self, inconsistencies: Sequence[Inconsistency] | None = None
    ) -> AutoRecoveryReport:
        return await self._recovery.perform_auto_recovery(inconsistencies)

    # -------------------------------------------------------------------------
    # Cascade
    # -------------------------------------------------------------------------

    async def analyze_deletion_impact(self, project_id: str) -> DeletionConfirmation:
        return await self._cascade.analyze_deletion_impact(project_id)

    async def delete_cascade(
        self, project_id: str, *, create_backup: bool = False
    ) -> CascadeOperationResult:
        return await self._cascade.delete_cascade(project_id, create_backup=create_backup)

    async def archive_cascade(
        self, project_id: str, reason: str | None = None
    ) -> CascadeOperationResult:
        return await self._cascade.archive_cascade(project_id, reason)

    async def transfer_cascade(
        self, source_project_id: str, options: TransferOptions
    ) -> CascadeOperationResult:
        return await self._cascade.transfer_cascade(source_project_id, options)

    async def restore_backup(self, backup: BackupSnapshot) -> CascadeOperationResult:
        return await self._cascade.restore_backup(backup)

    # -------------------------------------------------------------------------
    # Schedule conflicts
    # -------------------------------------------------------------------------

    async def detect_schedule_conflicts(self, schedule: Schedule) -> list[ScheduleConflict]:
        """Check a proposed schedule against every stored schedule."""
        existing = await self._store.list_schedules()
        projects = await self._store.list_projects()
        return self._time.detect_conflicts(schedule, existing, projects)

    async def apply_schedule_resolution(
        self, schedule: Schedule, resolution: ConflictResolution
    ) -> ResolutionOutcome:
        """
        Apply a resolution and store the moved schedule if no conflict remains.

        When the resolution moved an existing schedule, that schedule is
        updated and the proposed one is stored at its original time.
        """
        existing = await self._store.list_schedules()
        projects = await self._store.list_projects()
        outcome = self._time.apply_resolution(schedule, resolution, existing, projects)
        if not outcome.success:
            return outcome

        moved = outcome.schedule
        if moved.id != schedule.id:
            # an existing schedule made room; the proposed one keeps its time
            await self._store.update(moved)
            moved = schedule
        if await self._store.get(EntityKind.SCHEDULE, moved.id) is None:
            await self._store.create(moved)
        else:
            await self._store.update(moved)
        logger.info(
            "Stored schedule %s after %s resolution",
            moved.id,
            resolution.strategy.value,
            extra={"schedule_id": moved.id},
        )
        return outcome


__all__ = ["MigrationEngine"]
