"""
Unit tests for TimeConflictResolver.

Tests overlap detection and classification, severity grading, the
generated resolution candidates, business hours and resolution
application.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from meetingsync.config import ConflictConfig
from meetingsync.conflicts import (
    ConflictSeverity,
    Feasibility,
    Impact,
    ResolutionStrategy,
    ScheduleConflictType,
    TimeConflictResolver,
)
from meetingsync.models import ScheduleType
from tests.fixtures import MONDAY, at, make_project, make_schedule


@pytest.fixture
def resolver() -> TimeConflictResolver:
    return TimeConflictResolver(enable_tracing=False)


def general(schedule_id: str, start_hour: int, start_minute: int = 0, minutes: int = 60, **fields):
    start = at(start_hour, start_minute)
    return make_schedule(
        schedule_id,
        None,
        start=start,
        end=start + timedelta(minutes=minutes),
        schedule_type=ScheduleType.GENERAL,
        **fields,
    )


# =============================================================================
# Detection
# =============================================================================


class TestDetection:
    def test_same_project_overlap_is_critical_with_a_feasible_slot(self, resolver):
        existing = make_schedule("S1", "P1", start=at(10), end=at(11))
        new = make_schedule("S2", "P1", start=at(10, 30), end=at(11, 30))

        conflicts = resolver.detect_conflicts(new, [existing])

        assert len(conflicts) == 1
        conflict = conflicts[0]
        assert conflict.type == ScheduleConflictType.SAME_PROJECT
        assert conflict.severity == ConflictSeverity.CRITICAL
        assert conflict.overlap_minutes == 30
        assert any(r.feasibility == Feasibility.HIGH for r in conflict.resolutions)

    def test_touching_intervals_do_not_conflict(self, resolver):
        existing = make_schedule("S1", "P1", start=at(10), end=at(11))
        new = make_schedule("S2", "P2", start=at(11), end=at(12))
        assert resolver.detect_conflicts(new, [existing]) == []

    def test_exact_time_wins_over_same_project(self, resolver):
        existing = make_schedule("S1", "P1", start=at(10), end=at(11))
        new = make_schedule("S2", "P1", start=at(10), end=at(11))
        assert resolver.detect_conflicts(new, [existing])[0].type == ScheduleConflictType.EXACT_TIME

    def test_shared_attendee_is_a_resource_conflict(self, resolver):
        existing = general("G1", 10, attendees=["Pat"])
        new = general("G2", 10, 30, attendees=["Pat", "Casey"])
        assert (
            resolver.detect_conflicts(new, [existing])[0].type
            == ScheduleConflictType.RESOURCE_CONFLICT
        )

    def test_system_creator_is_not_a_shared_resource(self, resolver):
        existing = general("G1", 10)
        new = general("G2", 10, 30)
        assert resolver.detect_conflicts(new, [existing])[0].type == ScheduleConflictType.OVERLAPPING

    def test_schedules_without_valid_bounds_are_ignored(self, resolver):
        broken = make_schedule("S1", "P1", start=at(11), end=at(10))
        new = make_schedule("S2", "P1", start=at(10), end=at(12))
        assert resolver.detect_conflicts(new, [broken]) == []

    def test_a_schedule_does_not_conflict_with_itself(self, resolver):
        schedule = make_schedule("S1")
        assert resolver.detect_conflicts(schedule, [schedule]) == []


class TestSeverity:
    @pytest.mark.parametrize(
        ("minutes", "expected"),
        [
            (60, ConflictSeverity.CRITICAL),
            (48, ConflictSeverity.CRITICAL),
            (30, ConflictSeverity.HIGH),
            (15, ConflictSeverity.MEDIUM),
            (6, ConflictSeverity.LOW),
        ],
    )
    def test_ratio_thresholds_for_different_projects(self, resolver, minutes, expected):
        existing = general("G1", 10)
        new = general("G2", 10, 60 - minutes) if minutes < 60 else general("G2", 10, minutes=90)
        conflict = resolver.detect_conflicts(new, [existing])[0]
        assert conflict.severity == expected

    def test_severity_does_not_decrease_with_overlap(self, resolver):
        order = [
            ConflictSeverity.LOW,
            ConflictSeverity.MEDIUM,
            ConflictSeverity.HIGH,
            ConflictSeverity.CRITICAL,
        ]
        existing = general("G1", 10)
        previous = 0
        for offset in range(55, -1, -5):
            new = general("G2", 10, offset)
            rank = order.index(resolver.detect_conflicts(new, [existing])[0].severity)
            assert rank >= previous
            previous = rank

    def test_same_project_is_always_critical(self, resolver):
        existing = make_schedule("S1", "P1", start=at(10), end=at(11))
        new = make_schedule("S2", "P1", start=at(10, 55), end=at(11, 55))
        assert resolver.detect_conflicts(new, [existing])[0].severity == ConflictSeverity.CRITICAL


# =============================================================================
# Resolutions
# =============================================================================


class TestResolutions:
    def test_resolutions_are_sorted_by_priority(self, resolver):
        existing = make_schedule("S1", "P1", start=at(10), end=at(11))
        new = make_schedule("S2", "P1", start=at(10, 30), end=at(11, 30))

        resolutions = resolver.detect_conflicts(new, [existing])[0].resolutions

        priorities = [r.priority for r in resolutions]
        assert priorities == sorted(priorities, reverse=True)
        assert any(r.strategy == ResolutionStrategy.USER_CHOICE for r in resolutions)

    def test_after_slot_respects_the_buffer(self, resolver):
        existing = make_schedule("S1", "P1", start=at(10), end=at(11))
        new = make_schedule("S2", "P1", start=at(10, 30), end=at(11, 30))

        resolutions = resolver.detect_conflicts(new, [existing])[0].resolutions
        adjust = [
            r
            for r in resolutions
            if r.strategy == ResolutionStrategy.AUTO_ADJUST and r.feasibility == Feasibility.HIGH
        ]

        assert [r.new_start for r in adjust] == [at(11, 30)]
        assert adjust[0].new_end == at(12, 30)

    def test_reject_offered_only_for_critical_without_slot(self, resolver):
        # no business-hours slot on either side of 08:00-17:45
        existing = make_schedule("S1", "P1", start=at(8, 0), end=at(17, 45))
        new = make_schedule("S2", "P1", start=at(17), end=at(18))

        resolutions = resolver.detect_conflicts(new, [existing])[0].resolutions

        assert any(r.strategy == ResolutionStrategy.REJECT_NEW for r in resolutions)

    def test_priority_based_moves_the_lower_priority_meeting(self, resolver):
        existing = make_schedule("S1", "P1", start=at(10), end=at(11), status="tentative")
        new = make_schedule("S2", "P2", start=at(10, 30), end=at(11, 30), status="confirmed")

        projects = [make_project("P1"), make_project("P2")]
        resolutions = resolver.detect_conflicts(new, [existing], projects)[0].resolutions
        priority = next(r for r in resolutions if r.strategy == ResolutionStrategy.PRIORITY_BASED)

        assert priority.target_id == "S1"

    def test_filter_resolutions(self, resolver):
        existing = make_schedule("S1", "P1", start=at(10), end=at(11))
        new = make_schedule("S2", "P1", start=at(10, 30), end=at(11, 30))
        resolutions = resolver.detect_conflicts(new, [existing])[0].resolutions

        filtered = resolver.filter_resolutions(
            resolutions, min_feasibility=Feasibility.HIGH, max_impact=Impact.MINIMAL
        )

        assert filtered
        assert all(r.feasibility == Feasibility.HIGH and r.impact == Impact.MINIMAL for r in filtered)


class TestPriorityScore:
    def test_score_components(self, resolver):
        schedule = make_schedule("S1", meeting_sequence="guide_1", status="confirmed")
        # base 5 + sequence 10 + phase review 10 + status 10
        assert resolver.calculate_priority_score(schedule, "review") == 35

    def test_unknown_values_use_the_default_weight(self, resolver):
        schedule = make_schedule("S1", meeting_sequence="custom", status="odd")
        assert resolver.calculate_priority_score(schedule, "unheard_of") == 20


class TestBusinessHours:
    def test_weekday_hours(self, resolver):
        assert resolver.is_business_hours(at(9))
        assert resolver.is_business_hours(at(17, 59))
        assert not resolver.is_business_hours(at(18))
        assert not resolver.is_business_hours(at(8, 59))

    def test_weekend_is_closed(self, resolver):
        saturday = MONDAY + timedelta(days=5)
        assert not resolver.is_business_hours(at(10, day=saturday))

    def test_fits_business_hours(self, resolver):
        assert resolver.fits_business_hours(at(17), at(18))
        assert not resolver.fits_business_hours(at(17, 30), at(18, 30))

    def test_custom_hours(self):
        resolver = TimeConflictResolver(
            ConflictConfig(business_start_hour=7, business_end_hour=24), enable_tracing=False
        )
        assert resolver.is_business_hours(at(23))
        assert resolver.fits_business_hours(at(23), MONDAY + timedelta(days=1))


# =============================================================================
# Application
# =============================================================================


class TestApplyResolution:
    def test_moving_the_new_schedule_resolves_the_conflict(self, resolver):
        existing = make_schedule("S1", "P1", start=at(10), end=at(11))
        new = make_schedule("S2", "P1", start=at(10, 30), end=at(11, 30))
        best = resolver.detect_conflicts(new, [existing])[0].resolutions[0]

        outcome = resolver.apply_resolution(new, best, [existing])

        assert outcome.success
        assert outcome.schedule.id == "S2"
        assert outcome.remaining_conflicts == ()
        assert new.start == at(10, 30)

    def test_applying_twice_gives_the_same_bounds(self, resolver):
        existing = make_schedule("S1", "P1", start=at(10), end=at(11))
        new = make_schedule("S2", "P1", start=at(10, 30), end=at(11, 30))
        best = resolver.detect_conflicts(new, [existing])[0].resolutions[0]

        first = resolver.apply_resolution(new, best, [existing])
        second = resolver.apply_resolution(new, best, [existing])

        assert (first.schedule.start, first.schedule.end) == (
            second.schedule.start,
            second.schedule.end,
        )

    def test_user_choice_is_not_applied(self, resolver):
        existing = make_schedule("S1", "P1", start=at(10), end=at(11))
        new = make_schedule("S2", "P1", start=at(10, 30), end=at(11, 30))
        choice = next(
            r
            for r in resolver.detect_conflicts(new, [existing])[0].resolutions
            if r.strategy == ResolutionStrategy.USER_CHOICE
        )

        outcome = resolver.apply_resolution(new, choice, [existing])

        assert not outcome.success
        assert outcome.message == "A user decision is required"

    def test_remaining_conflicts_are_reported(self, resolver):
        existing = make_schedule("S1", "P1", start=at(10), end=at(11))
        blocker = make_schedule("S3", "P3", start=at(12), end=at(13))
        new = make_schedule("S2", "P1", start=at(10, 30), end=at(11, 30))
        resolution = next(
            r
            for r in resolver.detect_conflicts(new, [existing])[0].resolutions
            if r.feasibility == Feasibility.HIGH and r.has_new_time
        )

        outcome = resolver.apply_resolution(new, resolution, [existing, blocker])

        assert not outcome.success
        assert [c.existing_schedule.id for c in outcome.remaining_conflicts] == ["S3"]

    def test_moved_existing_schedule_is_checked_against_its_new_neighbours(self, resolver):
        existing = make_schedule("S1", "P1", start=at(10), end=at(11), status="tentative")
        new = make_schedule("S2", "P2", start=at(10), end=at(11), status="confirmed")
        neighbour = make_schedule("S3", "P3", start=at(11, 30), end=at(12, 30))
        projects = [make_project("P1"), make_project("P2"), make_project("P3")]
        priority = next(
            r
            for r in resolver.detect_conflicts(new, [existing], projects)[0].resolutions
            if r.strategy == ResolutionStrategy.PRIORITY_BASED
        )
        assert (priority.target_id, priority.new_start) == ("S1", at(11, 30))

        outcome = resolver.apply_resolution(new, priority, [existing, neighbour], projects)

        assert not outcome.success
        assert outcome.schedule.id == "S1"
        assert [
            (c.new_schedule.id, c.existing_schedule.id) for c in outcome.remaining_conflicts
        ] == [("S1", "S3")]
