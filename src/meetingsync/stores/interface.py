"""
Store interfaces for the meetingsync engine.

The engine treats persistence as an external collaborator. It needs CRUD
access per entity kind plus a way to list the records owned by a project,
and a place to keep the bounded run history.

There is no transaction or locking primitive in these interfaces. The
engine gets correctness from idempotent writes, conflict resolution before
commit, and auditing after the fact.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, cast

from meetingsync.models import Entity, EntityKind, Project, Schedule


class EntityStore(ABC):
    """
    Abstract CRUD store for engine entities.

    Implementations must return copies from every read, so callers can
    never mutate stored state by accident (copy-on-read).

    Example:
        >>> store = InMemoryEntityStore()
        >>> await store.create(Project(id="P1", title="Launch"))
        >>> project = await store.get(EntityKind.PROJECT, "P1")
        >>> schedules = await store.list_by_project(EntityKind.SCHEDULE, "P1")
    """

    @abstractmethod
    async def list(self, kind: EntityKind) -> list[Entity]:
        """
        List every entity of a kind.

        Args:
            kind: Entity kind to list

        Returns:
            Copies of the stored entities, ordered by id
        """
        pass

    @abstractmethod
    async def get(self, kind: EntityKind, entity_id: str) -> Entity | None:
        """
        Get an entity by id.

        Returns:
            A copy of the entity, or None if it does not exist
        """
        pass

    @abstractmethod
    async def create(self, entity: Entity) -> None:
        """
        Create a new entity. The kind is inferred from the entity type.

        Raises:
            EntityAlreadyExistsError: If an entity with this id exists
        """
        pass

    @abstractmethod
    async def update(self, entity: Entity) -> None:
        """
        Replace an existing entity.

        Raises:
            EntityNotFoundError: If the entity does not exist
        """
        pass

    @abstractmethod
    async def delete(self, kind: EntityKind, entity_id: str) -> bool:
        """
        Delete an entity.

        Returns:
            True if an entity was deleted, False if it did not exist
        """
        pass

    @abstractmethod
    async def list_by_project(self, kind: EntityKind, project_id: str) -> list[Entity]:
        """
        List the entities of a kind owned by a project.

        Raises:
            ValueError: If kind is PROJECT
        """
        pass

    async def count(self, kind: EntityKind) -> int:
        """Count the entities of a kind."""
        return len(await self.list(kind))

    # Typed conveniences used throughout the engine

    async def list_projects(self) -> list[Project]:
        return cast(list[Project], await self.list(EntityKind.PROJECT))

    async def list_schedules(self) -> list[Schedule]:
        return cast(list[Schedule], await self.list(EntityKind.SCHEDULE))

    async def get_project(self, project_id: str) -> Project | None:
        return cast(Project | None, await self.get(EntityKind.PROJECT, project_id))

    async def list_schedules_by_project(self, project_id: str) -> list[Schedule]:
        return cast(list[Schedule], await self.list_by_project(EntityKind.SCHEDULE, project_id))


class RunHistoryStore(ABC):
    """
    Abstract bounded, append-only log of migration run outcomes.

    Entries are JSON-compatible dictionaries; the migration history layer
    owns their shape.
    """

    @abstractmethod
    async def load(self) -> list[dict[str, Any]]:
        """
        Load the retained entries.

        Returns:
            Entries ordered oldest first
        """
        pass

    @abstractmethod
    async def append(self, entry: dict[str, Any], limit: int) -> None:
        """
        Append an entry and keep only the most recent ``limit`` entries.

        Args:
            entry: JSON-compatible run record
            limit: Maximum number of entries retained
        """
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Remove every entry."""
        pass


__all__ = ["EntityStore", "RunHistoryStore"]
