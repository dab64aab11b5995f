"""
Unit tests for CascadeManager.

Tests for:
- Deletion impact analysis and risk grading
- Delete with backup, and restoring that backup
- Child step isolation and the CASCADE_* error codes
- Archive
- Transfer under each merge strategy
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from meetingsync.cascade import (
    BackupSnapshot,
    CascadeManager,
    CascadeOperation,
    MergeStrategy,
    RiskLevel,
    TransferOptions,
    format_size,
)
from meetingsync.events import CascadeCompleted
from meetingsync.exceptions import BackupVerificationError, EntityNotFoundError, StoreError
from meetingsync.models import EntityKind, ScheduleStatus
from meetingsync.stores import InMemoryEntityStore
from tests.fixtures import (
    MONDAY,
    make_event,
    make_project,
    make_queue_item,
    make_schedule,
    make_snapshot,
)


class ScheduleDeleteFailsStore(InMemoryEntityStore):
    async def delete(self, kind, entity_id):
        if kind == EntityKind.SCHEDULE:
            raise StoreError("schedule table is locked")
        return await super().delete(kind, entity_id)


class ListingFailsStore(InMemoryEntityStore):
    async def list_by_project(self, kind, project_id):
        raise StoreError("db down")


class LossyBackupManager(CascadeManager):
    """Takes backups that leave out every child record."""

    def create_backup(self, project, related):
        return replace(super().create_backup(project, related), related={})


async def seed(store: InMemoryEntityStore) -> InMemoryEntityStore:
    await store.create(make_project("P1"))
    await store.create(make_project("P2"))
    for i in range(1, 4):
        await store.create(make_schedule(f"S{i}", "P1", meeting_sequence=f"guide_{i}"))
    await store.create(make_event("E1", "P1"))
    await store.create(make_snapshot("N1", "P1"))
    await store.create(make_queue_item("Q1", "P1"))
    return store


@pytest.fixture
async def project_store(store) -> InMemoryEntityStore:
    """P1 with three upcoming schedules and one record of every other kind; P2 empty."""
    return await seed(store)


@pytest.fixture
def manager(project_store, clock) -> CascadeManager:
    return CascadeManager(project_store, clock=clock, enable_tracing=False)


# ============================================================================
# Impact analysis
# ============================================================================


class TestDeletionImpact:
    @pytest.mark.asyncio
    async def test_impact(self, manager):
        confirmation = await manager.analyze_deletion_impact("P1")

        impact = confirmation.impact
        assert confirmation.project_title == "Project P1"
        assert impact.total_schedules == 3
        assert impact.upcoming_meetings == 3
        assert (impact.lifecycle_events, impact.snapshots, impact.queue_items) == (1, 1, 1)
        assert impact.connected_systems == (
            "projects",
            "schedules",
            "lifecycle_events",
            "snapshots",
            "queue",
        )
        assert impact.open_inconsistencies == 0
        assert impact.estimated_data_size.endswith(("bytes", "KB"))

    @pytest.mark.asyncio
    async def test_risk_and_alternatives(self, manager):
        confirmation = await manager.analyze_deletion_impact("P1")

        assert confirmation.risks.level == RiskLevel.HIGH
        assert confirmation.alternatives.archive
        assert confirmation.alternatives.transfer
        assert confirmation.alternatives.partial

    @pytest.mark.asyncio
    async def test_missing_project_raises(self, manager):
        with pytest.raises(EntityNotFoundError):
            await manager.analyze_deletion_impact("P9")

    @pytest.mark.asyncio
    async def test_analysis_does_not_write(self, project_store, manager):
        await manager.analyze_deletion_impact("P1")
        assert await project_store.count(EntityKind.SCHEDULE) == 3


class TestAssessRisk:
    def test_completed_project_without_meetings_is_low(self):
        project = make_project("P1", phase="completed")
        assert CascadeManager.assess_risk(project, 0, 0).level == RiskLevel.LOW

    def test_active_phase_alone_is_medium(self):
        risk = CascadeManager.assess_risk(make_project("P1"), 0, 0)
        assert risk.level == RiskLevel.MEDIUM
        assert risk.factors == ("Project is in active phase planning",)

    def test_active_phase_with_many_upcoming_meetings_is_critical(self):
        assert CascadeManager.assess_risk(make_project("P1"), 4, 4).level == RiskLevel.CRITICAL

    def test_many_upcoming_meetings_is_high(self):
        project = make_project("P1", phase="completed")
        assert CascadeManager.assess_risk(project, 4, 4).level == RiskLevel.HIGH

    def test_many_schedules_raise_low_to_medium(self):
        project = make_project("P1", phase="completed")
        assert CascadeManager.assess_risk(project, 11, 0).level == RiskLevel.MEDIUM

    def test_open_issues_add_a_recommendation(self):
        project = make_project("P1", phase="completed")
        risk = CascadeManager.assess_risk(project, 0, 0, open_issues=2)
        assert risk.level == RiskLevel.LOW
        assert "Run auto recovery before deleting so the backup is clean" in risk.recommendations


def test_format_size():
    assert format_size(512) == "512 bytes"
    assert format_size(2048) == "2.0 KB"
    assert format_size(3 * 1024 * 1024) == "3.0 MB"


# ============================================================================
# Delete and restore
# ============================================================================


class TestDeleteCascade:
    @pytest.mark.asyncio
    async def test_deletes_project_and_children(self, project_store, manager):
        result = await manager.delete_cascade("P1")

        assert result.success
        assert result.operation == CascadeOperation.DELETE
        assert result.affected.schedules == ["S1", "S2", "S3"]
        assert result.affected.total == 6
        assert result.backup is None
        assert await project_store.get_project("P1") is None
        assert await project_store.list_by_project(EntityKind.SCHEDULE, "P1") == []
        assert await project_store.get_project("P2") is not None

    @pytest.mark.asyncio
    async def test_backup_holds_every_deleted_record(self, manager):
        result = await manager.delete_cascade("P1", create_backup=True)

        backup = result.backup
        assert backup.backup_id == f"backup_P1_{int(MONDAY.timestamp() * 1000)}"
        assert backup.record_count == 7
        for kind in (
            EntityKind.SCHEDULE,
            EntityKind.LIFECYCLE_EVENT,
            EntityKind.SNAPSHOT,
            EntityKind.QUEUE_ITEM,
        ):
            assert all(backup.contains(kind, entity_id) for entity_id in result.affected.ids(kind))

    @pytest.mark.asyncio
    async def test_restore_rebuilds_deleted_records(self, project_store, manager):
        before = [s.model_dump() for s in await project_store.list_schedules()]
        deleted = await manager.delete_cascade("P1", create_backup=True)

        restored = await manager.restore_backup(deleted.backup)

        assert restored.success
        assert restored.operation == CascadeOperation.RESTORE
        assert restored.affected.total == deleted.affected.total
        assert await project_store.get_project("P1") is not None
        assert [s.model_dump() for s in await project_store.list_schedules()] == before

    @pytest.mark.asyncio
    async def test_restore_skips_records_that_exist(self, project_store, manager):
        deleted = await manager.delete_cascade("P1", create_backup=True)
        await project_store.create(make_schedule("S1", "P1"))

        restored = await manager.restore_backup(deleted.backup)

        assert restored.success
        assert [w.code for w in restored.warnings] == ["CASCADE_W002"]
        assert "S1" not in restored.affected.schedules

    @pytest.mark.asyncio
    async def test_missing_project(self, manager):
        result = await manager.delete_cascade("P9")

        assert not result.success
        (error,) = result.errors
        assert error.code == "CASCADE_004"
        assert not error.recoverable

    @pytest.mark.asyncio
    async def test_unverifiable_backup_deletes_nothing(self, project_store, clock):
        manager = LossyBackupManager(project_store, clock=clock, enable_tracing=False)

        result = await manager.delete_cascade("P1", create_backup=True)

        assert [e.code for e in result.errors] == ["CASCADE_001"]
        assert result.affected.total == 0
        assert await project_store.count(EntityKind.SCHEDULE) == 3

    @pytest.mark.asyncio
    async def test_failed_child_step_blocks_project_deletion(self, clock):
        store = await seed(ScheduleDeleteFailsStore(enable_tracing=False))
        manager = CascadeManager(store, clock=clock, enable_tracing=False)

        result = await manager.delete_cascade("P1")

        assert not result.success
        assert [e.code for e in result.errors] == ["CASCADE_002"] * 3 + ["CASCADE_003"]
        assert result.errors[0].operation == "delete_schedules"
        assert result.affected.lifecycle_events == ["E1"]
        assert result.affected.queue_items == ["Q1"]
        assert await store.get_project("P1") is not None

    @pytest.mark.asyncio
    async def test_publishes_cascade_completed(self, project_store, channel, published, clock):
        manager = CascadeManager(project_store, channel=channel, clock=clock, enable_tracing=False)

        await manager.delete_cascade("P1")

        assert len(published) == 1
        assert isinstance(published[0], CascadeCompleted)
        assert published[0].operation == "delete"
        assert published[0].success


class TestVerifyBackup:
    @pytest.mark.asyncio
    async def test_missing_record_fails_verification(self, project_store, manager):
        project = await project_store.get_project("P1")
        schedules = await project_store.list_by_project(EntityKind.SCHEDULE, "P1")
        backup = manager.create_backup(project, {EntityKind.SCHEDULE: schedules[:2]})

        with pytest.raises(BackupVerificationError) as exc_info:
            CascadeManager.verify_backup(backup, {EntityKind.SCHEDULE: schedules})

        assert exc_info.value.code == "CASCADE_001"
        assert "S3 is missing" in str(exc_info.value)

    def test_unreadable_record_fails_verification(self):
        backup = BackupSnapshot(
            backup_id="backup_P1_0",
            project_id="P1",
            project={"id": "P1"},
            related={"schedule": [{"title": "no id"}]},
        )

        with pytest.raises(BackupVerificationError):
            CascadeManager.verify_backup(backup, {})


# ============================================================================
# Archive
# ============================================================================


class TestArchiveCascade:
    @pytest.mark.asyncio
    async def test_archive(self, project_store, manager):
        result = await manager.archive_cascade("P1", reason="customer left")

        assert result.success
        project = await project_store.get_project("P1")
        assert project.is_archived
        assert project.metadata["archive"]["reason"] == "customer left"
        schedules = await project_store.list_by_project(EntityKind.SCHEDULE, "P1")
        assert {s.status for s in schedules} == {ScheduleStatus.ARCHIVED.value}
        (event,) = await project_store.list_by_project(EntityKind.LIFECYCLE_EVENT, "P1")
        assert event.metadata["archived"] is True
        assert await project_store.list_by_project(EntityKind.QUEUE_ITEM, "P1") == []
        assert await project_store.count(EntityKind.SNAPSHOT) == 1

    @pytest.mark.asyncio
    async def test_already_archived_schedules_are_left_alone(self, project_store, manager):
        s1 = await project_store.get(EntityKind.SCHEDULE, "S1")
        await project_store.update(s1.model_copy(update={"status": "archived"}))

        result = await manager.archive_cascade("P1")

        assert result.affected.schedules == ["S2", "S3"]

    @pytest.mark.asyncio
    async def test_missing_project(self, manager):
        result = await manager.archive_cascade("P9")
        assert [e.code for e in result.errors] == ["CASCADE_004"]

    @pytest.mark.asyncio
    async def test_unreadable_children_come_back_as_an_error(self, clock):
        store = await seed(ListingFailsStore(enable_tracing=False))
        manager = CascadeManager(store, clock=clock, enable_tracing=False)

        result = await manager.archive_cascade("P1")

        assert not result.success
        assert [(e.code, e.operation) for e in result.errors] == [("CASCADE_002", "load")]
        assert not (await store.get_project("P1")).is_archived


# ============================================================================
# Transfer
# ============================================================================


class TestTransferCascade:
    @pytest.mark.asyncio
    async def test_append_moves_everything_but_queue_items(self, project_store, manager):
        result = await manager.transfer_cascade("P1", TransferOptions("P2"))

        assert result.success
        moved = await project_store.list_by_project(EntityKind.SCHEDULE, "P2")
        assert [s.id for s in moved] == ["S1", "S2", "S3"]
        assert result.affected.lifecycle_events == ["E1"]
        assert result.affected.snapshots == ["N1"]
        assert result.affected.queue_items == []
        assert len(await project_store.list_by_project(EntityKind.QUEUE_ITEM, "P1")) == 1

    @pytest.mark.asyncio
    async def test_merge_skips_sequences_the_target_has(self, project_store, manager):
        await project_store.create(make_schedule("T1", "P2", meeting_sequence="guide_1"))
        options = TransferOptions("P2", merge_strategy=MergeStrategy.MERGE)

        result = await manager.transfer_cascade("P1", options)

        assert result.success
        assert [w.code for w in result.warnings] == ["CASCADE_W003"]
        assert result.affected.schedules == ["S2", "S3"]
        assert (await project_store.get(EntityKind.SCHEDULE, "S1")).project_id == "P1"

    @pytest.mark.asyncio
    async def test_replace_removes_target_records_first(self, project_store, manager):
        await project_store.create(make_schedule("T1", "P2", meeting_sequence="guide_1"))
        options = TransferOptions(
            "P2",
            transfer_events=False,
            transfer_snapshots=False,
            merge_strategy=MergeStrategy.REPLACE,
        )

        result = await manager.transfer_cascade("P1", options)

        assert result.success
        assert await project_store.get(EntityKind.SCHEDULE, "T1") is None
        moved = await project_store.list_by_project(EntityKind.SCHEDULE, "P2")
        assert [s.id for s in moved] == ["S1", "S2", "S3"]
        assert result.affected.lifecycle_events == []

    @pytest.mark.asyncio
    async def test_same_project_is_rejected(self, manager):
        result = await manager.transfer_cascade("P1", TransferOptions("P1"))

        (error,) = result.errors
        assert error.code == "CASCADE_002"
        assert not error.recoverable

    @pytest.mark.asyncio
    async def test_unknown_target(self, manager):
        result = await manager.transfer_cascade("P1", TransferOptions("P9"))
        assert [(e.code, e.item_id) for e in result.errors] == [("CASCADE_004", "P9")]

    @pytest.mark.asyncio
    async def test_unreadable_records_come_back_as_an_error(self, clock):
        store = await seed(ListingFailsStore(enable_tracing=False))
        manager = CascadeManager(store, clock=clock, enable_tracing=False)

        result = await manager.transfer_cascade("P1", TransferOptions("P2"))

        assert not result.success
        assert [(e.code, e.operation) for e in result.errors] == [("CASCADE_002", "load")]
        assert result.affected.total == 0

    def test_options_validation(self):
        with pytest.raises(ValueError):
            TransferOptions("")
        with pytest.raises(ValueError):
            TransferOptions(
                "P2", transfer_schedules=False, transfer_events=False, transfer_snapshots=False
            )
