"""
Shared pytest fixtures for the meetingsync library tests.

This module provides:
- Store fixtures (store, populated_store)
- Event channel fixtures (channel, published)
- A controllable clock
- A MockTracer for span assertions

Tracing is disabled in every fixture unless a test asks for the mock
tracer explicitly.
"""

from __future__ import annotations

import pytest

from meetingsync.bus import InMemoryEventChannel
from meetingsync.events import EngineEvent
from meetingsync.observability import MockTracer
from meetingsync.stores import InMemoryEntityStore
from tests.fixtures import FixedClock, make_schedule, project_with_meetings

# ============================================================================
# Stores
# ============================================================================


@pytest.fixture
def store() -> InMemoryEntityStore:
    """Fresh in-memory entity store."""
    return InMemoryEntityStore(enable_tracing=False)


@pytest.fixture
async def populated_store(store: InMemoryEntityStore) -> InMemoryEntityStore:
    """Store with two projects of three meetings each and no schedules."""
    await store.create(project_with_meetings("P1", 3))
    await store.create(project_with_meetings("P2", 3))
    return store


@pytest.fixture
async def schedule_store(store: InMemoryEntityStore) -> InMemoryEntityStore:
    """Store with one project and two of its schedules."""
    await store.create(project_with_meetings("P1", 0))
    await store.create(make_schedule("S1", "P1", meeting_sequence="guide_1"))
    await store.create(make_schedule("S2", "P1", meeting_sequence="guide_2"))
    return store


# ============================================================================
# Events
# ============================================================================


@pytest.fixture
def channel() -> InMemoryEventChannel:
    return InMemoryEventChannel(enable_tracing=False)


@pytest.fixture
def published(channel: InMemoryEventChannel) -> list[EngineEvent]:
    """Every event published on ``channel``, in order."""
    events: list[EngineEvent] = []
    channel.subscribe_to_all_events(events.append)
    return events


# ============================================================================
# Time and tracing
# ============================================================================


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def mock_tracer() -> MockTracer:
    return MockTracer()
