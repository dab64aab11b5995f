"""
In-memory store implementations.

Provides dictionary-backed stores for testing, development and single
process use. All data is lost when the process ends.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from copy import deepcopy
from typing import Any

from meetingsync.exceptions import EntityAlreadyExistsError, EntityNotFoundError
from meetingsync.models import Entity, EntityKind
from meetingsync.observability import Tracer, create_tracer
from meetingsync.observability.attributes import (
    ATTR_ENTITY_ID,
    ATTR_ENTITY_KIND,
    ATTR_PROJECT_ID,
)
from meetingsync.stores.interface import EntityStore, RunHistoryStore

logger = logging.getLogger(__name__)


class InMemoryEntityStore(EntityStore):
    """
    In-memory implementation of EntityStore.

    Entities are kept per kind in dictionaries keyed by id. Uses
    asyncio.Lock for safe concurrent access and deep copies on both
    write and read.

    Features:
    - Fast in-memory operations
    - clear() method for test cleanup
    - Optional OpenTelemetry tracing

    Example:
        >>> store = InMemoryEntityStore()
        >>> await store.create(Schedule(id="S1", project_id="P1", title="Kickoff"))
        >>> await store.count(EntityKind.SCHEDULE)
        1
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._data: dict[EntityKind, dict[str, Entity]] = {kind: {} for kind in EntityKind}
        self._lock = asyncio.Lock()

    async def list(self, kind: EntityKind) -> list[Entity]:
        with self._tracer.span("meetingsync.store.list", {ATTR_ENTITY_KIND: kind.value}):
            async with self._lock:
                records = self._data[kind]
                return [records[key].model_copy(deep=True) for key in sorted(records)]

    async def get(self, kind: EntityKind, entity_id: str) -> Entity | None:
        with self._tracer.span(
            "meetingsync.store.get",
            {ATTR_ENTITY_KIND: kind.value, ATTR_ENTITY_ID: entity_id},
        ):
            async with self._lock:
                entity = self._data[kind].get(entity_id)
                return entity.model_copy(deep=True) if entity is not None else None

    async def create(self, entity: Entity) -> None:
        kind = EntityKind.of(entity)
        with self._tracer.span(
            "meetingsync.store.create",
            {ATTR_ENTITY_KIND: kind.value, ATTR_ENTITY_ID: entity.id},
        ):
            async with self._lock:
                if entity.id in self._data[kind]:
                    raise EntityAlreadyExistsError(kind.value, entity.id)
                self._data[kind][entity.id] = entity.model_copy(deep=True)
            logger.debug("Created %s %s", kind.value, entity.id)

    async def update(self, entity: Entity) -> None:
        kind = EntityKind.of(entity)
        with self._tracer.span(
            "meetingsync.store.update",
            {ATTR_ENTITY_KIND: kind.value, ATTR_ENTITY_ID: entity.id},
        ):
            async with self._lock:
                if entity.id not in self._data[kind]:
                    raise EntityNotFoundError(kind.value, entity.id)
                self._data[kind][entity.id] = entity.model_copy(deep=True)
            logger.debug("Updated %s %s", kind.value, entity.id)

    async def delete(self, kind: EntityKind, entity_id: str) -> bool:
        with self._tracer.span(
            "meetingsync.store.delete",
            {ATTR_ENTITY_KIND: kind.value, ATTR_ENTITY_ID: entity_id},
        ):
            async with self._lock:
                deleted = self._data[kind].pop(entity_id, None) is not None
            if deleted:
                logger.debug("Deleted %s %s", kind.value, entity_id)
            return deleted

    async def list_by_project(self, kind: EntityKind, project_id: str) -> list[Entity]:
        if kind == EntityKind.PROJECT:
            raise ValueError("list_by_project does not apply to projects")
        with self._tracer.span(
            "meetingsync.store.list_by_project",
            {ATTR_ENTITY_KIND: kind.value, ATTR_PROJECT_ID: project_id},
        ):
            async with self._lock:
                records = self._data[kind]
                return [
                    records[key].model_copy(deep=True)
                    for key in sorted(records)
                    if getattr(records[key], "project_id", None) == project_id
                ]

    async def count(self, kind: EntityKind) -> int:
        async with self._lock:
            return len(self._data[kind])

    async def clear(self) -> None:
        """Clear all stored entities. Useful for testing."""
        async with self._lock:
            for records in self._data.values():
                records.clear()
        logger.debug("InMemoryEntityStore cleared")


class InMemoryRunHistoryStore(RunHistoryStore):
    """In-memory run history bounded on append."""

    def __init__(self) -> None:
        self._entries: deque[dict[str, Any]] = deque()
        self._lock = asyncio.Lock()

    async def load(self) -> list[dict[str, Any]]:
        async with self._lock:
            return deepcopy(list(self._entries))

    async def append(self, entry: dict[str, Any], limit: int) -> None:
        async with self._lock:
            self._entries.append(deepcopy(entry))
            while len(self._entries) > limit:
                self._entries.popleft()

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()


__all__ = ["InMemoryEntityStore", "InMemoryRunHistoryStore"]
