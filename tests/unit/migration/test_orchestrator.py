"""
Unit tests for MigrationOrchestrator.

Tests for:
- Successful runs, progress milestones and published events
- Empty scopes
- Single-flight protection with pause and resume
- Pre- and post-validation failures
- Cancellation between records
- Per-record errors and identity conflicts on re-runs
- Retry rejection and force
- should_migrate conditions and the cooldown
"""

from __future__ import annotations

import asyncio

import pytest

from meetingsync.config import RetryConfig
from meetingsync.events import (
    MigrationCancelled,
    MigrationCompleted,
    MigrationFailed,
    MigrationPaused,
    MigrationProgressed,
    MigrationResumed,
    MigrationStarted,
)
from meetingsync.exceptions import MigrationAlreadyRunningError, StoreError
from meetingsync.migration import (
    MigrationCondition,
    MigrationOptions,
    MigrationOrchestrator,
    MigrationProgress,
    MigrationState,
    RecordErrorKind,
)
from meetingsync.models import EntityKind
from meetingsync.retry import InMemoryRetryTracker, RetryStatus
from meetingsync.scope import ScopeOptions, ScopeSelector
from meetingsync.stores import InMemoryEntityStore
from meetingsync.validation import (
    PRE_MIGRATION_CHAIN,
    RuleCategory,
    RuleCheck,
    RuleLevel,
    ValidationChain,
    ValidationEngine,
    ValidationRule,
)
from tests.fixtures import make_meeting, make_project, project_with_meetings

# ============================================================================
# Helpers
# ============================================================================


class ForgetfulStore(InMemoryEntityStore):
    """Acknowledges every create but silently drops the given schedule."""

    def __init__(self, dropped_id: str) -> None:
        super().__init__(enable_tracing=False)
        self.dropped_id = dropped_id

    async def create(self, entity) -> None:
        if entity.id == self.dropped_id:
            return
        await super().create(entity)


class BrokenStore(InMemoryEntityStore):
    async def list_projects(self):
        raise StoreError("database unavailable")


def failing_pre_validation() -> ValidationEngine:
    engine = ValidationEngine(enable_tracing=False)
    engine.register_rule(
        ValidationRule(
            id="always_fail",
            name="Always Fail",
            category=RuleCategory.PRE_MIGRATION,
            level=RuleLevel.CRITICAL,
            check=lambda context: RuleCheck(passed=False, message="Refusing to migrate"),
        )
    )
    engine.register_chain(
        ValidationChain(
            id=PRE_MIGRATION_CHAIN,
            name="Pre-migration Validation",
            rule_ids=("pre_data_exists", "always_fail"),
            stop_on_first_failure=True,
        )
    )
    return engine


async def wait_for_state(orchestrator: MigrationOrchestrator, state: MigrationState) -> None:
    for _ in range(1000):
        if orchestrator.state == state:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"orchestrator never reached {state.value}")


@pytest.fixture
def orchestrator(populated_store, channel, clock) -> MigrationOrchestrator:
    return MigrationOrchestrator(
        populated_store, channel=channel, clock=clock, enable_tracing=False
    )


# ============================================================================
# Successful runs
# ============================================================================


class TestSuccessfulRun:
    @pytest.mark.asyncio
    async def test_migrates_every_meeting(self, orchestrator, populated_store):
        result = await orchestrator.migrate()

        assert result.success
        assert result.code is None
        assert result.migrated == 6
        assert result.conflicts == ()
        assert result.errors == ()
        assert result.pre_validation.passed
        assert result.post_validation.passed
        assert result.summary.total_meetings == 6
        assert result.summary.schedules_created == 6
        ids = [s.id for s in await populated_store.list_schedules()]
        assert ids == ["P1-M1", "P1-M2", "P1-M3", "P2-M1", "P2-M2", "P2-M3"]

    @pytest.mark.asyncio
    async def test_run_is_recorded(self, orchestrator):
        result = await orchestrator.migrate()

        run = orchestrator.status()
        assert run.id == result.run_id
        assert run.state == MigrationState.COMPLETED
        assert run.progress == 100
        assert [r.id for r in orchestrator.history.entries()] == [result.run_id]
        assert orchestrator.state == MigrationState.IDLE
        assert not orchestrator.is_running

    @pytest.mark.asyncio
    async def test_progress_is_monotonic(self, orchestrator):
        reports: list[MigrationProgress] = []

        await orchestrator.migrate(MigrationOptions(on_progress=reports.append))

        progress = [r.progress for r in reports]
        assert progress[0] == 10
        assert progress[-1] == 100
        assert progress == sorted(progress)
        assert {10, 20, 30, 80, 100} <= set(progress)

    @pytest.mark.asyncio
    async def test_events(self, orchestrator, published):
        await orchestrator.migrate()

        assert isinstance(published[0], MigrationStarted)
        assert isinstance(published[-1], MigrationCompleted)
        assert published[-1].migrated == 6
        assert any(isinstance(e, MigrationProgressed) for e in published)

    @pytest.mark.asyncio
    async def test_on_complete_callback(self, orchestrator):
        results = []

        async def on_complete(result):
            results.append(result)

        result = await orchestrator.migrate(MigrationOptions(on_complete=on_complete))

        assert results == [result]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_fail_the_run(self, orchestrator):
        def explode(progress):
            raise RuntimeError("callback bug")

        result = await orchestrator.migrate(MigrationOptions(on_progress=explode))

        assert result.success

    @pytest.mark.asyncio
    async def test_empty_scope_succeeds(self, store):
        await store.create(make_project("P1"))
        orchestrator = MigrationOrchestrator(store, enable_tracing=False)

        result = await orchestrator.migrate(
            MigrationOptions(scope=ScopeSelector.project_scope(["P1"]))
        )

        assert result.success
        assert result.migrated == 0
        assert result.message == "No meetings in scope"
        assert await store.count(EntityKind.SCHEDULE) == 0


# ============================================================================
# Single flight, pause and cancel
# ============================================================================


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_second_run_is_rejected_while_paused(
        self, orchestrator, populated_store, published
    ):
        async def pause_at_conversion(progress: MigrationProgress) -> None:
            if progress.progress == 30:
                await orchestrator.pause()

        task = asyncio.create_task(
            orchestrator.migrate(MigrationOptions(on_progress=pause_at_conversion))
        )
        await wait_for_state(orchestrator, MigrationState.PAUSED)

        with pytest.raises(MigrationAlreadyRunningError):
            await orchestrator.migrate()
        assert await populated_store.count(EntityKind.SCHEDULE) == 0
        assert not await orchestrator.pause()

        assert await orchestrator.resume()
        result = await task

        assert result.success
        assert result.migrated == 6
        types = [type(e) for e in published]
        assert types.index(MigrationPaused) < types.index(MigrationResumed)

    @pytest.mark.asyncio
    async def test_pause_and_resume_without_a_run(self, orchestrator):
        assert not await orchestrator.pause()
        assert not await orchestrator.resume()
        assert not await orchestrator.cancel()


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_keeps_committed_records(self, orchestrator, populated_store, published):
        async def cancel_after_two(progress: MigrationProgress) -> None:
            if progress.message == "Processed 2/6 meetings":
                await orchestrator.cancel("operator stop")

        scope = ScopeSelector.full_scope(ScopeOptions(batch_size=1))
        result = await orchestrator.migrate(
            MigrationOptions(scope=scope, on_progress=cancel_after_two)
        )

        assert not result.success
        assert result.code == "cancelled"
        assert result.message == "Migration cancelled: operator stop"
        assert result.migrated == 2
        assert await populated_store.count(EntityKind.SCHEDULE) == 2
        assert orchestrator.status().state == MigrationState.FAILED
        assert isinstance(published[-1], MigrationCancelled)

    @pytest.mark.asyncio
    async def test_cancel_a_paused_run(self, orchestrator):
        async def pause_at_conversion(progress: MigrationProgress) -> None:
            if progress.progress == 30:
                await orchestrator.pause()

        task = asyncio.create_task(
            orchestrator.migrate(MigrationOptions(on_progress=pause_at_conversion))
        )
        await wait_for_state(orchestrator, MigrationState.PAUSED)

        assert await orchestrator.cancel()
        result = await task

        assert result.code == "cancelled"
        assert result.migrated == 0

    @pytest.mark.asyncio
    async def test_cancelled_run_can_be_retried(self, orchestrator):
        async def cancel_now(progress: MigrationProgress) -> None:
            if progress.progress == 30:
                await orchestrator.cancel()

        await orchestrator.migrate(MigrationOptions(on_progress=cancel_now))
        result = await orchestrator.migrate()

        assert result.success


# ============================================================================
# Failures
# ============================================================================


class TestValidationFailures:
    @pytest.mark.asyncio
    async def test_pre_validation_failure_writes_nothing(self, populated_store, published):
        orchestrator = MigrationOrchestrator(
            populated_store, validation=failing_pre_validation(), enable_tracing=False
        )

        result = await orchestrator.migrate()

        assert not result.success
        assert result.code == "pre_validation_failed"
        assert not result.pre_validation.passed
        assert result.post_validation is None
        assert await populated_store.count(EntityKind.SCHEDULE) == 0

    @pytest.mark.asyncio
    async def test_skip_validation_skips_only_pre_validation(self, populated_store):
        orchestrator = MigrationOrchestrator(
            populated_store, validation=failing_pre_validation(), enable_tracing=False
        )

        result = await orchestrator.migrate(MigrationOptions(skip_validation=True))

        assert result.success
        assert result.pre_validation is None
        assert result.post_validation.passed

    @pytest.mark.asyncio
    async def test_post_validation_failure(self):
        store = ForgetfulStore("P1-M2")
        await store.create(project_with_meetings("P1", 3))
        orchestrator = MigrationOrchestrator(store, enable_tracing=False)

        result = await orchestrator.migrate()

        assert not result.success
        assert result.code == "post_validation_failed"
        consistency = next(
            r for r in result.post_validation.results if r.rule_id == "post_data_consistency"
        )
        assert consistency.details["missing"] == ["P1-M2"]

    @pytest.mark.asyncio
    async def test_store_error_fails_the_run(self, channel, published):
        orchestrator = MigrationOrchestrator(
            BrokenStore(enable_tracing=False), channel=channel, enable_tracing=False
        )
        errors = []

        result = await orchestrator.migrate(MigrationOptions(on_error=errors.append))

        assert not result.success
        assert result.code == "error"
        assert "database unavailable" in result.message
        assert errors == [result]
        assert isinstance(published[-1], MigrationFailed)
        assert published[-1].phase == "scope"


class TestRecordErrors:
    @pytest.mark.asyncio
    async def test_bad_records_are_collected_not_raised(self, store):
        await store.create(
            make_project(
                "P1",
                meetings=[
                    make_meeting("M1", "P1"),
                    make_meeting("M2", "P1", title=None, date="2024-03-05T10:00:00+00:00"),
                    make_meeting("M3", "P1", date="someday"),
                ],
            )
        )
        orchestrator = MigrationOrchestrator(store, enable_tracing=False)

        result = await orchestrator.migrate()

        assert result.success
        assert result.migrated == 1
        assert [(e.kind, e.meeting_id, e.message) for e in result.errors] == [
            (RecordErrorKind.VALIDATION_ERROR, "M2", "Missing meeting title"),
            (RecordErrorKind.VALIDATION_ERROR, "M3", "Invalid meeting date"),
        ]
        assert result.summary.valid_meetings == 1

    @pytest.mark.asyncio
    async def test_rerun_renames_existing_ids(self, orchestrator, populated_store):
        await orchestrator.migrate()

        result = await orchestrator.migrate()

        assert result.success
        assert result.migrated == 6
        assert result.summary.renamed == 6
        assert {c.resolved_id for c in result.conflicts} >= {"P1-M1_migrated_1"}
        assert await populated_store.count(EntityKind.SCHEDULE) == 12

    @pytest.mark.asyncio
    async def test_same_sequence_is_skipped(self, store):
        meetings = [
            make_meeting("M1", "P1", type="guide", round=1, date="2024-03-05T10:00:00+00:00"),
            make_meeting("M2", "P1", type="guide", round=1, date="2024-03-06T10:00:00+00:00"),
        ]
        await store.create(make_project("P1", meetings=meetings))
        orchestrator = MigrationOrchestrator(store, enable_tracing=False)

        result = await orchestrator.migrate()

        assert result.migrated == 1
        assert result.summary.skipped == 1
        assert result.summary.duplicates_detected == 1


# ============================================================================
# Retry
# ============================================================================


class TestRetry:
    @pytest.mark.asyncio
    async def test_failed_run_defers_the_next_one(self, populated_store, clock):
        retry = InMemoryRetryTracker(clock=clock)
        orchestrator = MigrationOrchestrator(
            populated_store,
            retry=retry,
            validation=failing_pre_validation(),
            clock=clock,
            enable_tracing=False,
        )

        await orchestrator.migrate()
        rejected = await orchestrator.migrate()

        assert rejected.code == "retry_rejected"
        assert retry.get_status("full").status == RetryStatus.FAILED
        assert len(orchestrator.history.entries()) == 1

        clock.advance(seconds=1)
        retried = await orchestrator.migrate()
        assert retried.code == "pre_validation_failed"

    @pytest.mark.asyncio
    async def test_force_bypasses_the_retry_check(self, populated_store, clock):
        orchestrator = MigrationOrchestrator(
            populated_store, validation=failing_pre_validation(), clock=clock, enable_tracing=False
        )

        await orchestrator.migrate()
        forced = await orchestrator.migrate(MigrationOptions(force=True))

        assert forced.code == "pre_validation_failed"

    @pytest.mark.asyncio
    async def test_success_marks_the_key_completed(self, populated_store, clock):
        retry = InMemoryRetryTracker(clock=clock)
        orchestrator = MigrationOrchestrator(
            populated_store, retry=retry, clock=clock, enable_tracing=False
        )

        await orchestrator.migrate()

        state = retry.get_status("full")
        assert state.status == RetryStatus.COMPLETED
        assert state.attempts == 0

    @pytest.mark.asyncio
    async def test_cancelled_runs_do_not_use_up_attempts(self, populated_store, clock):
        retry = InMemoryRetryTracker(RetryConfig(max_attempts=2), clock=clock)
        orchestrator = MigrationOrchestrator(
            populated_store, retry=retry, clock=clock, enable_tracing=False
        )

        async def cancel_now(progress: MigrationProgress) -> None:
            if progress.progress == 30:
                await orchestrator.cancel()

        for _ in range(2):
            result = await orchestrator.migrate(MigrationOptions(on_progress=cancel_now))
            assert result.code == "cancelled"

        state = retry.get_status("full")
        assert (state.attempts, state.status) == (0, RetryStatus.CANCELLED)

        retry.record_attempt("full")
        retry.mark_failed("full", "store unavailable")
        assert retry.get_status("full").status == RetryStatus.FAILED

    @pytest.mark.asyncio
    async def test_unexpected_error_is_recorded_as_a_failure(self, populated_store, clock):
        retry = InMemoryRetryTracker(clock=clock)
        orchestrator = MigrationOrchestrator(
            populated_store, retry=retry, clock=clock, enable_tracing=False
        )

        def broken(meeting) -> bool:
            raise ValueError("bad predicate")

        result = await orchestrator.migrate(
            MigrationOptions(scope=ScopeSelector.custom_scope("broken", broken))
        )

        assert not result.success
        assert result.code == "error"
        assert "bad predicate" in result.message
        assert orchestrator.state == MigrationState.FAILED
        assert len(orchestrator.history.entries()) == 1
        key = orchestrator.status().scope_key
        assert retry.get_status(key).status == RetryStatus.FAILED


# ============================================================================
# Conditions and statistics
# ============================================================================


class TestShouldMigrate:
    @pytest.mark.asyncio
    async def test_first_load(self, orchestrator):
        assert await orchestrator.should_migrate()

    @pytest.mark.asyncio
    async def test_cooldown_after_completed_run(self, orchestrator, clock):
        await orchestrator.migrate()
        assert not await orchestrator.should_migrate()

        clock.advance(hours=25)
        assert not await orchestrator.should_migrate()

    @pytest.mark.asyncio
    async def test_unmigrated_meetings_trigger_a_run(self, orchestrator, populated_store, clock):
        await orchestrator.migrate()
        clock.advance(hours=25)

        await populated_store.create(project_with_meetings("P3", 1))

        assert await orchestrator.should_migrate()

    @pytest.mark.asyncio
    async def test_default_conditions(self, orchestrator):
        assert [c.id for c in orchestrator.list_conditions()] == [
            "first_load",
            "data_mismatch",
            "schedule_empty",
        ]

    @pytest.mark.asyncio
    async def test_custom_conditions(self, store):
        orchestrator = MigrationOrchestrator(
            store, register_default_conditions=False, enable_tracing=False
        )

        def broken() -> bool:
            raise RuntimeError("cannot tell")

        async def always() -> bool:
            return True

        orchestrator.add_condition(MigrationCondition(id="broken", check=broken, priority=5))
        assert not await orchestrator.should_migrate()

        orchestrator.add_condition(MigrationCondition(id="always", check=always, priority=1))
        assert await orchestrator.should_migrate()

        assert orchestrator.remove_condition("always")
        assert not orchestrator.remove_condition("always")
        assert not await orchestrator.should_migrate()


class TestStatistics:
    @pytest.mark.asyncio
    async def test_statistics_and_reset(self, orchestrator):
        await orchestrator.migrate()

        stats = orchestrator.get_statistics()
        assert stats["total"] == 1
        assert stats["completed"] == 1
        assert stats["state"] == "idle"

        assert await orchestrator.reset()
        assert orchestrator.get_statistics()["total"] == 0
        assert orchestrator.status() is None

    @pytest.mark.asyncio
    async def test_reset_is_refused_while_running(self, orchestrator):
        async def pause_at_conversion(progress: MigrationProgress) -> None:
            if progress.progress == 30:
                await orchestrator.pause()

        task = asyncio.create_task(
            orchestrator.migrate(MigrationOptions(on_progress=pause_at_conversion))
        )
        await wait_for_state(orchestrator, MigrationState.PAUSED)

        assert not await orchestrator.reset()

        await orchestrator.resume()
        await task
