"""
Migration orchestrator.

Drives a migration run through its state machine:

    IDLE -> RUNNING -> COMPLETED | FAILED
    RUNNING <-> PAUSED
    RUNNING | PAUSED -> FAILED (cancel)

A run resolves its scope, runs the pre-migration chain (aborting before
any write on a critical failure), converts each legacy meeting, resolves
identity conflicts, commits surviving schedules one at a time, runs the
post-migration chain and reports a structured result. Per-record failures
are collected and never abort the batch. Pause and cancel are cooperative
and honored between records.

Only one run may be active at a time; a second ``migrate()`` while a run
is RUNNING or PAUSED raises MigrationAlreadyRunningError.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any
from uuid import uuid4

from meetingsync.bus.interface import EventChannel
from meetingsync.config import MigrationConfig
from meetingsync.conflicts.identity import (
    IdentityConflict,
    IdentityConflictResolver,
    IdentityResolution,
)
from meetingsync.events import (
    MigrationCancelled,
    MigrationCompleted,
    MigrationEvent,
    MigrationFailed,
    MigrationPaused,
    MigrationProgressed,
    MigrationResumed,
    MigrationStarted,
)
from meetingsync.exceptions import (
    InvalidStateTransitionError,
    MigrationAlreadyRunningError,
    StoreError,
)
from meetingsync.migration.conversion import MeetingConverter
from meetingsync.migration.history import RunHistory
from meetingsync.migration.models import (
    VALID_TRANSITIONS,
    MigrationCondition,
    MigrationOptions,
    MigrationProgress,
    MigrationResult,
    MigrationRun,
    MigrationState,
    MigrationSummary,
    RecordError,
    RecordErrorKind,
)
from meetingsync.models import EntityKind, LegacyMeeting, Project, Schedule, utc_now
from meetingsync.observability import Tracer, create_tracer
from meetingsync.observability.attributes import (
    ATTR_FORCE,
    ATTR_MIGRATED_COUNT,
    ATTR_RECORD_COUNT,
    ATTR_RUN_ID,
    ATTR_RUN_KEY,
    ATTR_RUN_STATE,
    ATTR_SCOPE_TYPE,
)
from meetingsync.retry import InMemoryRetryTracker, RetryTracker
from meetingsync.scope import MigrationScope, ScopeSelector
from meetingsync.stores.in_memory import InMemoryRunHistoryStore
from meetingsync.stores.interface import EntityStore
from meetingsync.validation.engine import ValidationEngine
from meetingsync.validation.models import ValidationContext
from meetingsync.validation.rules import POST_MIGRATION_CHAIN, PRE_MIGRATION_CHAIN

logger = logging.getLogger(__name__)

# progress milestones, in percent
PROGRESS_SCOPE = 10
PROGRESS_PRE_VALIDATION = 20
PROGRESS_CONVERSION = 30
PROGRESS_POST_VALIDATION = 80
PROGRESS_DONE = 100

SHORT_CIRCUIT_PRIORITY = 10


class _RunCancelled(Exception):
    """Raised inside a run when a cancel request is honored."""


@dataclass
class _RunState:
    """Mutable working set of the active run."""

    run: MigrationRun
    options: MigrationOptions
    scope: MigrationScope
    started: float = field(default_factory=time.monotonic)
    migrated_ids: list[str] = field(default_factory=list)
    conflicts: list[IdentityConflict] = field(default_factory=list)
    errors: list[RecordError] = field(default_factory=list)
    summary: MigrationSummary = field(default_factory=MigrationSummary)

    def result(
        self, success: bool, message: str, code: str | None = None, **extra: Any
    ) -> MigrationResult:
        return MigrationResult(
            success=success,
            migrated=len(self.migrated_ids),
            conflicts=tuple(self.conflicts),
            errors=tuple(self.errors),
            duration_seconds=time.monotonic() - self.started,
            summary=replace(self.summary),
            run_id=self.run.id,
            message=message,
            code=code,
            **extra,
        )


class MigrationOrchestrator:
    """
    Runs legacy meeting migrations against an EntityStore.

    Collaborators are injected; each one defaults to its in-memory or
    built-in implementation.

    Example:
        >>> orchestrator = MigrationOrchestrator(store, enable_tracing=False)
        >>> result = await orchestrator.migrate(MigrationOptions())
        >>> result.success, result.migrated
        (True, 12)
    """

    def __init__(
        self,
        store: EntityStore,
        *,
        retry: RetryTracker | None = None,
        validation: ValidationEngine | None = None,
        identity: IdentityConflictResolver | None = None,
        selector: ScopeSelector | None = None,
        converter: MeetingConverter | None = None,
        history: RunHistory | None = None,
        channel: EventChannel | None = None,
        config: MigrationConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        register_default_conditions: bool = True,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            store: Store holding projects and schedules.
            retry: Retry subsystem consulted before every run.
            validation: Engine running the pre and post migration chains.
            identity: Resolver for identity conflicts.
            selector: Scope selector resolving the records of a run.
            converter: Legacy meeting converter.
            history: Bounded run history.
            channel: Optional channel receiving MigrationEvents.
            config: Migration config.
            clock: Source of the current time.
            register_default_conditions: Register the built-in
                should_migrate conditions.
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._config = config or MigrationConfig()
        self._store = store
        self._retry: RetryTracker = retry or InMemoryRetryTracker(clock=clock)
        self._validation = validation or ValidationEngine(
            config=self._config, tracer=self._tracer
        )
        self._identity = identity or IdentityConflictResolver(
            self._config, tracer=self._tracer
        )
        self._selector = selector or ScopeSelector(clock=clock, tracer=self._tracer)
        self._converter = converter or MeetingConverter(self._config)
        self._history = history or RunHistory(
            InMemoryRunHistoryStore(), limit=self._config.history_limit
        )
        self._channel = channel
        self._clock = clock

        self._active: _RunState | None = None
        self._last_run: MigrationRun | None = None
        self._resume = asyncio.Event()
        self._resume.set()
        self._cancel_reason: str | None = None
        self._conditions: dict[str, MigrationCondition] = {}
        if register_default_conditions:
            self._register_default_conditions()

    @property
    def history(self) -> RunHistory:
        return self._history

    @property
    def selector(self) -> ScopeSelector:
        return self._selector

    @property
    def validation(self) -> ValidationEngine:
        return self._validation

    @property
    def state(self) -> MigrationState:
        """State of the active run, or IDLE when none is active."""
        return self._active.run.state if self._active else MigrationState.IDLE

    @property
    def is_running(self) -> bool:
        return self._active is not None

    def status(self) -> MigrationRun | None:
        """Copy of the active run, else of the last finished run."""
        run = self._active.run if self._active else self._last_run
        return replace(run) if run else None

    # -------------------------------------------------------------------------
    # Running
    # -------------------------------------------------------------------------

    async def migrate(self, options: MigrationOptions | None = None) -> MigrationResult:
        """
        Run a migration.

        Expected failures (retry rejection, failed validation, cancel,
        store errors) are reported in the returned result.

        Raises:
            MigrationAlreadyRunningError: If a run is RUNNING or PAUSED.
        """
        options = options or MigrationOptions()
        if self._active is not None:
            raise MigrationAlreadyRunningError(self._active.run.id)

        scope = options.scope or self._selector.full_scope()
        run = MigrationRun(
            id=str(uuid4()),
            scope_key=scope.key,
            scope_type=scope.type.value,
            force=options.force,
            skip_validation=options.skip_validation or scope.options.skip_validation,
        )

        if not options.force and not self._retry.should_retry(scope.key):
            logger.warning(
                "Migration for %s rejected by the retry subsystem",
                scope.key,
                extra={"run_id": run.id, "scope_key": scope.key},
            )
            return MigrationResult(
                success=False,
                migrated=0,
                run_id=run.id,
                message=f"Retry rejected for {scope.key}; use force to override",
                code="retry_rejected",
            )

        # claim the single-flight slot before the first await
        state = _RunState(run=run, options=options, scope=scope)
        self._active = state
        self._cancel_reason = None
        self._resume.set()
        try:
            with self._tracer.span(
                "meetingsync.migration.migrate",
                {
                    ATTR_RUN_ID: run.id,
                    ATTR_RUN_KEY: scope.key,
                    ATTR_SCOPE_TYPE: scope.type.value,
                    ATTR_FORCE: options.force,
                },
            ) as span:
                result = await self._execute(state)
                if span:
                    span.set_attribute(ATTR_RUN_STATE, run.state.value)
                    span.set_attribute(ATTR_MIGRATED_COUNT, result.migrated)
        finally:
            self._active = None
            self._last_run = run
            self._resume.set()

        await self._history.record(run)
        await self._notify(options.on_complete if result.success else options.on_error, result)
        return result

    async def _execute(self, state: _RunState) -> MigrationResult:
        run = state.run
        self._retry.record_attempt(run.scope_key)
        self._transition(run, MigrationState.RUNNING)
        run.started_at = self._clock()
        logger.info(
            "Migration %s started for %s",
            run.id,
            run.scope_key,
            extra={"run_id": run.id, "scope_key": run.scope_key},
        )
        await self._publish(
            MigrationStarted(
                run_id=run.id,
                scope_type=run.scope_type,
                scope_key=run.scope_key,
                force=run.force,
                skip_validation=run.skip_validation,
            )
        )

        phase = "scope"
        try:
            await self._report(state, PROGRESS_SCOPE, phase, "Resolving scope")
            projects = await self._store.list_projects()
            resolved = self._selector.resolve(projects, state.scope)
            state.summary.total_meetings = len(resolved.meetings)
            if not resolved.meetings:
                return await self._complete(state, "No meetings in scope")

            phase = "pre_validation"
            await self._checkpoint()
            await self._report(state, PROGRESS_PRE_VALIDATION, phase, "Running pre-migration checks")
            pre = None
            if not run.skip_validation:
                pre = await self._validation.validate_chain(
                    PRE_MIGRATION_CHAIN,
                    ValidationContext(projects=resolved.projects, meetings=resolved.meetings),
                )
                if not pre.passed:
                    return await self._fail(
                        state,
                        phase,
                        f"Pre-migration validation failed: {pre.summary}",
                        "pre_validation_failed",
                        pre_validation=pre,
                    )

            phase = "migration"
            before_count = await self._store.count(EntityKind.SCHEDULE)
            await self._convert_and_commit(state, resolved.projects, resolved.meetings)

            phase = "post_validation"
            await self._checkpoint()
            await self._report(state, PROGRESS_POST_VALIDATION, phase, "Running post-migration checks")
            schedules = await self._store.list_schedules()
            post = await self._validation.validate_chain(
                POST_MIGRATION_CHAIN,
                ValidationContext(
                    projects=resolved.projects,
                    meetings=resolved.meetings,
                    schedules=schedules,
                    migrated_ids=list(state.migrated_ids),
                    before_count=before_count,
                    after_count=len(schedules),
                    items_processed=len(resolved.meetings),
                    duration_seconds=time.monotonic() - state.started,
                ),
            )
            if not post.passed:
                return await self._fail(
                    state,
                    phase,
                    f"Post-migration validation failed: {post.summary}",
                    "post_validation_failed",
                    pre_validation=pre,
                    post_validation=post,
                )
            return await self._complete(
                state,
                f"Migrated {len(state.migrated_ids)} of {len(resolved.meetings)} meetings",
                pre_validation=pre,
                post_validation=post,
            )
        except _RunCancelled:
            return await self._cancelled(state, phase)
        except StoreError as e:
            logger.error(
                "Migration %s failed during %s: %s",
                run.id,
                phase,
                e,
                exc_info=True,
                extra={"run_id": run.id, "phase": phase},
            )
            return await self._fail(state, phase, f"Store error: {e}", "error")
        except Exception as e:
            logger.exception(
                "Unexpected error in migration %s during %s",
                run.id,
                phase,
                extra={"run_id": run.id, "phase": phase},
            )
            return await self._fail(state, phase, f"Unexpected error: {e}", "error")

    async def _convert_and_commit(
        self,
        state: _RunState,
        projects: Sequence[Project],
        meetings: Sequence[LegacyMeeting],
    ) -> None:
        batch_size = state.scope.options.batch_size
        by_id = {p.id: p for p in projects}
        known: list[Schedule] = await self._store.list_schedules()
        total = len(meetings)

        with self._tracer.span(
            "meetingsync.migration.convert_and_commit",
            {ATTR_RUN_ID: state.run.id, ATTR_RECORD_COUNT: total},
        ):
            await self._report(
                state, PROGRESS_CONVERSION, "migration", f"Migrating {total} meetings"
            )
            for index, meeting in enumerate(meetings, start=1):
                await self._checkpoint()
                schedule = await self._migrate_one(state, meeting, by_id, known)
                if schedule is not None:
                    known.append(schedule)
                if index % batch_size == 0 or index == total:
                    width = PROGRESS_POST_VALIDATION - PROGRESS_CONVERSION
                    await self._report(
                        state,
                        PROGRESS_CONVERSION + width * index // total,
                        "migration",
                        f"Processed {index}/{total} meetings",
                    )

    async def _migrate_one(
        self,
        state: _RunState,
        meeting: LegacyMeeting,
        projects: dict[str, Project],
        known: Sequence[Schedule],
    ) -> Schedule | None:
        problem = self._converter.validate(meeting)
        if problem is not None:
            state.errors.append(
                RecordError(RecordErrorKind.VALIDATION_ERROR, meeting.id, problem, meeting.project_id)
            )
            return None
        state.summary.valid_meetings += 1

        try:
            schedule = self._converter.convert(meeting, projects.get(meeting.project_id or ""))
        except ValueError as e:
            state.errors.append(
                RecordError(RecordErrorKind.CONVERSION_ERROR, meeting.id, str(e), meeting.project_id)
            )
            return None

        decision = self._identity.resolve(schedule, known)
        if decision.conflict is not None:
            state.conflicts.append(decision.conflict)
            if decision.conflict.resolution == IdentityResolution.RENAME:
                state.summary.renamed += 1
            elif decision.conflict.resolution == IdentityResolution.MERGE:
                state.summary.merged += 1
        if decision.schedule is None:
            state.summary.skipped += 1
            state.summary.duplicates_detected += 1
            return None

        try:
            await self._store.create(decision.schedule)
        except StoreError as e:
            state.errors.append(
                RecordError(RecordErrorKind.CREATION_ERROR, meeting.id, str(e), meeting.project_id)
            )
            return None

        state.migrated_ids.append(decision.schedule.id)
        state.summary.schedules_created += 1
        logger.debug(
            "Migrated meeting %s as %s",
            meeting.id,
            decision.schedule.id,
            extra={"run_id": state.run.id, "project_id": meeting.project_id},
        )
        return decision.schedule

    # -------------------------------------------------------------------------
    # Outcomes
    # -------------------------------------------------------------------------

    async def _complete(self, state: _RunState, message: str, **extra: Any) -> MigrationResult:
        run = state.run
        await self._report(state, PROGRESS_DONE, "completed", message)
        # a pause requested during the last step is honored before finishing
        await self._checkpoint()
        self._transition(run, MigrationState.COMPLETED)
        run.ended_at = self._clock()
        run.result = state.result(True, message, **extra)
        self._retry.mark_completed(run.scope_key)
        logger.info(
            "Migration %s completed: %d migrated, %d conflicts, %d errors",
            run.id,
            run.result.migrated,
            len(run.result.conflicts),
            len(run.result.errors),
            extra={"run_id": run.id},
        )
        await self._publish(
            MigrationCompleted(
                run_id=run.id,
                migrated=run.result.migrated,
                conflicts=len(run.result.conflicts),
                errors=len(run.result.errors),
                duration_seconds=run.result.duration_seconds,
            )
        )
        return run.result

    async def _fail(
        self, state: _RunState, phase: str, message: str, code: str, **extra: Any
    ) -> MigrationResult:
        run = state.run
        self._transition(run, MigrationState.FAILED)
        run.phase = phase
        run.ended_at = self._clock()
        run.result = state.result(False, message, code, **extra)
        self._retry.mark_failed(run.scope_key, message)
        logger.warning(
            "Migration %s failed during %s: %s",
            run.id,
            phase,
            message,
            extra={"run_id": run.id, "phase": phase},
        )
        await self._publish(MigrationFailed(run_id=run.id, error=message, phase=phase))
        return run.result

    async def _cancelled(self, state: _RunState, phase: str) -> MigrationResult:
        run = state.run
        reason = self._cancel_reason or "Cancelled"
        self._transition(run, MigrationState.FAILED)
        run.phase = phase
        run.ended_at = self._clock()
        run.result = state.result(False, f"Migration cancelled: {reason}", "cancelled")
        self._retry.mark_cancelled(run.scope_key)
        logger.warning(
            "Migration %s cancelled during %s after %d records: %s",
            run.id,
            phase,
            len(state.migrated_ids),
            reason,
            extra={"run_id": run.id, "phase": phase},
        )
        await self._publish(MigrationCancelled(run_id=run.id, reason=reason))
        return run.result

    # -------------------------------------------------------------------------
    # Pause, resume, cancel
    # -------------------------------------------------------------------------

    async def pause(self) -> bool:
        """Pause the active run at the next record boundary. False if not RUNNING."""
        if self._active is None or self._active.run.state != MigrationState.RUNNING:
            logger.warning("Pause ignored: no running migration")
            return False
        run = self._active.run
        self._transition(run, MigrationState.PAUSED)
        self._resume.clear()
        logger.info("Migration %s paused", run.id, extra={"run_id": run.id})
        await self._publish(MigrationPaused(run_id=run.id))
        return True

    async def resume(self) -> bool:
        """Resume a paused run. False if not PAUSED."""
        if self._active is None or self._active.run.state != MigrationState.PAUSED:
            logger.warning("Resume ignored: no paused migration")
            return False
        run = self._active.run
        self._transition(run, MigrationState.RUNNING)
        self._resume.set()
        logger.info("Migration %s resumed", run.id, extra={"run_id": run.id})
        await self._publish(MigrationResumed(run_id=run.id))
        return True

    async def cancel(self, reason: str = "Cancelled by user") -> bool:
        """
        Request cancellation of the active run.

        Committed records stay committed. Returns False when no run is
        active.
        """
        if self._active is None:
            logger.warning("Cancel ignored: no active migration")
            return False
        self._cancel_reason = reason
        # wake a paused run so it can observe the request
        self._resume.set()
        return True

    async def _checkpoint(self) -> None:
        await asyncio.sleep(0)
        await self._resume.wait()
        if self._cancel_reason is not None:
            raise _RunCancelled()

    # -------------------------------------------------------------------------
    # Conditions
    # -------------------------------------------------------------------------

    def add_condition(self, condition: MigrationCondition) -> None:
        self._conditions[condition.id] = condition

    def remove_condition(self, condition_id: str) -> bool:
        return self._conditions.pop(condition_id, None) is not None

    def list_conditions(self) -> list[MigrationCondition]:
        return sorted(self._conditions.values(), key=lambda c: -c.priority)

    async def should_migrate(self) -> bool:
        """
        Decide whether a migration is due.

        False while a run completed within the cooldown window. Otherwise
        conditions are evaluated by descending priority and the answer is
        True if any is met. A condition that raises counts as not met.
        """
        if self._history.completed_within(self._config.cooldown, self._clock()):
            logger.debug("Migration skipped: last run completed within the cooldown")
            return False

        met = []
        for condition in self.list_conditions():
            try:
                outcome = condition.check()
                if inspect.isawaitable(outcome):
                    outcome = await outcome
            except Exception as e:
                logger.warning("Condition %s failed: %s", condition.id, e, exc_info=True)
                continue
            if outcome:
                met.append(condition.id)
                if condition.priority >= SHORT_CIRCUIT_PRIORITY:
                    break
        if met:
            logger.info("Migration conditions met: %s", ", ".join(met))
        return bool(met)

    def _register_default_conditions(self) -> None:
        self.add_condition(
            MigrationCondition(
                id="first_load",
                check=lambda: self._history.last_completed() is None,
                priority=10,
                description="No migration has completed yet",
            )
        )
        self.add_condition(
            MigrationCondition(
                id="data_mismatch",
                check=self._has_unmigrated_meetings,
                priority=8,
                description="Some legacy meetings have no schedule",
            )
        )
        self.add_condition(
            MigrationCondition(
                id="schedule_empty",
                check=self._schedules_empty,
                priority=6,
                description="Projects have meetings but no schedules exist",
            )
        )

    async def _has_unmigrated_meetings(self) -> bool:
        schedules = await self._store.list_schedules()
        known = {s.id for s in schedules} | {
            str(s.metadata["source_meeting_id"])
            for s in schedules
            if s.metadata.get("source_meeting_id")
        }
        projects = await self._store.list_projects()
        return any(m.id and m.id not in known for p in projects for m in p.meetings)

    async def _schedules_empty(self) -> bool:
        if await self._store.count(EntityKind.SCHEDULE) > 0:
            return False
        projects = await self._store.list_projects()
        return any(p.meetings for p in projects)

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_statistics(self) -> dict[str, Any]:
        stats = self._history.statistics()
        stats["state"] = self.state.value
        return stats

    async def reset(self) -> bool:
        """Clear history and retry state. False while a run is active."""
        if self._active is not None:
            logger.warning("Reset ignored: a migration is active")
            return False
        await self._history.clear()
        reset = getattr(self._retry, "reset", None)
        if callable(reset):
            reset()
        self._last_run = None
        return True

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _transition(run: MigrationRun, target: MigrationState) -> None:
        if target not in VALID_TRANSITIONS[run.state]:
            raise InvalidStateTransitionError(run.state.value, target.value, run_id=run.id)
        run.state = target
        if target != MigrationState.PAUSED:
            run.phase = target.value

    async def _report(self, state: _RunState, progress: int, phase: str, message: str) -> None:
        run = state.run
        # progress never moves backwards within a run
        run.progress = max(run.progress, min(progress, PROGRESS_DONE))
        run.phase = phase
        await self._publish(
            MigrationProgressed(run_id=run.id, progress=run.progress, phase=phase, message=message)
        )
        await self._notify(
            state.options.on_progress,
            MigrationProgress(run_id=run.id, progress=run.progress, phase=phase, message=message),
        )

    async def _publish(self, event: MigrationEvent) -> None:
        if self._channel is not None:
            await self._channel.publish([event])

    @staticmethod
    async def _notify(callback: Callable[[Any], Any] | None, payload: Any) -> None:
        if callback is None:
            return
        try:
            outcome = callback(payload)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error("Migration callback failed: %s", e, exc_info=True)


__all__ = ["MigrationOrchestrator"]
