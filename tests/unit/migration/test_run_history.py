"""
Unit tests for RunHistory.
"""

from datetime import timedelta

import pytest

from meetingsync.migration import MigrationRun, MigrationState, RunHistory
from meetingsync.stores import InMemoryRunHistoryStore
from tests.fixtures import MONDAY


def finished_run(
    run_id: str, state: MigrationState, minutes: int = 1, offset: int = 0
) -> MigrationRun:
    started = MONDAY + timedelta(hours=offset)
    return MigrationRun(
        id=run_id,
        scope_key="full",
        state=state,
        progress=100,
        started_at=started,
        ended_at=started + timedelta(minutes=minutes),
    )


@pytest.fixture
def history_store() -> InMemoryRunHistoryStore:
    return InMemoryRunHistoryStore()


class TestRunHistory:
    def test_limit_must_be_positive(self, history_store):
        with pytest.raises(ValueError):
            RunHistory(history_store, limit=0)

    @pytest.mark.asyncio
    async def test_record_is_bounded(self, history_store):
        history = RunHistory(history_store, limit=2)
        for i in range(4):
            await history.record(finished_run(f"run-{i}", MigrationState.COMPLETED))

        assert [r.id for r in history.entries()] == ["run-2", "run-3"]
        assert [e["id"] for e in await history_store.load()] == ["run-2", "run-3"]

    @pytest.mark.asyncio
    async def test_load_restores_runs(self, history_store):
        await RunHistory(history_store).record(finished_run("run-1", MigrationState.FAILED, 2))

        runs = await RunHistory(history_store).load()

        assert len(runs) == 1
        assert runs[0].state == MigrationState.FAILED
        assert runs[0].duration_seconds == 120

    @pytest.mark.asyncio
    async def test_load_skips_unreadable_entries(self, history_store):
        await history_store.append({"state": "completed"}, limit=10)
        await history_store.append({"id": "run-1", "state": "bogus"}, limit=10)
        await history_store.append({"id": "run-2", "state": "completed"}, limit=10)

        runs = await RunHistory(history_store).load()

        assert [r.id for r in runs] == ["run-2"]

    @pytest.mark.asyncio
    async def test_entries_limit(self, history_store):
        history = RunHistory(history_store)
        for i in range(3):
            await history.record(finished_run(f"run-{i}", MigrationState.COMPLETED))

        assert [r.id for r in history.entries(limit=1)] == ["run-2"]
        assert history.entries(limit=0) == []

    @pytest.mark.asyncio
    async def test_completed_within(self, history_store):
        history = RunHistory(history_store)
        await history.record(finished_run("run-1", MigrationState.COMPLETED))
        await history.record(finished_run("run-2", MigrationState.FAILED, offset=5))
        ended = MONDAY + timedelta(minutes=1)

        assert history.last_completed().id == "run-1"
        assert history.completed_within(timedelta(hours=24), ended + timedelta(hours=23))
        assert not history.completed_within(timedelta(hours=24), ended + timedelta(hours=24))

    @pytest.mark.asyncio
    async def test_statistics(self, history_store):
        history = RunHistory(history_store)
        await history.record(finished_run("run-1", MigrationState.COMPLETED, 1))
        await history.record(finished_run("run-2", MigrationState.FAILED, 3))

        stats = history.statistics()

        assert stats == {
            "total": 2,
            "completed": 1,
            "failed": 1,
            "average_duration_seconds": 120.0,
            "success_rate": 50.0,
        }

    @pytest.mark.asyncio
    async def test_clear(self, history_store):
        history = RunHistory(history_store)
        await history.record(finished_run("run-1", MigrationState.COMPLETED))

        await history.clear()

        assert history.entries() == []
        assert await history_store.load() == []
