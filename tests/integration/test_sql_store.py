"""
Integration tests for the SQLAlchemy stores against a SQLite file
through aiosqlite.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from meetingsync.engine import MigrationEngine
from meetingsync.exceptions import EntityAlreadyExistsError, EntityNotFoundError
from meetingsync.models import EntityKind
from meetingsync.stores import SQLEntityStore, SQLRunHistoryStore, create_tables
from tests.fixtures import make_event, make_schedule, project_with_meetings

pytestmark = pytest.mark.integration


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'meetingsync.db'}")
    await create_tables(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def sql_store(engine: AsyncEngine) -> SQLEntityStore:
    return SQLEntityStore(engine, enable_tracing=False)


class TestSQLEntityStore:
    @pytest.mark.asyncio
    async def test_round_trips_a_project_with_meetings(self, sql_store):
        project = project_with_meetings("P1", 2)
        await sql_store.create(project)

        loaded = await sql_store.get_project("P1")

        assert loaded == project

    @pytest.mark.asyncio
    async def test_create_duplicate_raises(self, sql_store):
        await sql_store.create(make_schedule("S1"))
        with pytest.raises(EntityAlreadyExistsError):
            await sql_store.create(make_schedule("S1"))

    @pytest.mark.asyncio
    async def test_update(self, sql_store):
        await sql_store.create(make_schedule("S1", "P1"))
        await sql_store.update(make_schedule("S1", "P2", title="Moved"))

        moved = await sql_store.get(EntityKind.SCHEDULE, "S1")

        assert moved.title == "Moved"
        assert [s.id for s in await sql_store.list_schedules_by_project("P2")] == ["S1"]
        assert await sql_store.list_schedules_by_project("P1") == []

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, sql_store):
        with pytest.raises(EntityNotFoundError):
            await sql_store.update(make_schedule("missing"))

    @pytest.mark.asyncio
    async def test_delete_and_count(self, sql_store):
        await sql_store.create(make_schedule("S1"))
        await sql_store.create(make_event("E1"))

        assert await sql_store.count(EntityKind.SCHEDULE) == 1
        assert await sql_store.delete(EntityKind.SCHEDULE, "S1")
        assert not await sql_store.delete(EntityKind.SCHEDULE, "S1")
        assert await sql_store.count(EntityKind.SCHEDULE) == 0
        assert await sql_store.count(EntityKind.LIFECYCLE_EVENT) == 1


class TestSQLRunHistoryStore:
    @pytest.mark.asyncio
    async def test_append_keeps_only_the_most_recent_entries(self, engine):
        history = SQLRunHistoryStore(engine, enable_tracing=False)
        for i in range(5):
            await history.append({"id": f"run-{i}", "state": "completed"}, limit=2)

        entries = await history.load()

        assert [e["id"] for e in entries] == ["run-3", "run-4"]

    @pytest.mark.asyncio
    async def test_clear(self, engine):
        history = SQLRunHistoryStore(engine, enable_tracing=False)
        await history.append({"id": "run-1"}, limit=2)
        await history.clear()
        assert await history.load() == []


class TestMigrationOnSQL:
    @pytest.mark.asyncio
    async def test_full_migration_and_history_survive_a_new_engine(self, engine, sql_store):
        await sql_store.create(project_with_meetings("P1", 3))
        history_store = SQLRunHistoryStore(engine, enable_tracing=False)
        migration = MigrationEngine(sql_store, history_store=history_store, enable_tracing=False)

        result = await migration.migrate()

        assert result.success
        assert result.migrated == 3
        assert await sql_store.count(EntityKind.SCHEDULE) == 3

        reloaded = MigrationEngine(sql_store, history_store=history_store, enable_tracing=False)
        runs = await reloaded.load_history()
        assert [run.id for run in runs] == [result.run_id]
        assert not await reloaded.should_migrate()
