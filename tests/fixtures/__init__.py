"""
Shared test fixtures for the meetingsync library.

Usage:
    from tests.fixtures import MONDAY, at, make_project, make_schedule
"""

from tests.fixtures.entities import (
    MONDAY,
    FixedClock,
    at,
    make_event,
    make_meeting,
    make_project,
    make_queue_item,
    make_schedule,
    make_snapshot,
    project_with_meetings,
)

__all__ = [
    "MONDAY",
    "FixedClock",
    "at",
    "make_event",
    "make_meeting",
    "make_project",
    "make_queue_item",
    "make_schedule",
    "make_snapshot",
    "project_with_meetings",
]
