"""
SQL store implementations built on SQLAlchemy's async engine.

Entities are kept as JSON documents in a single table keyed by
(kind, id), with the owning project id in its own indexed column so
project-scoped listing does not need to parse payloads. Works with any
async SQLAlchemy driver; the test suite uses ``sqlite+aiosqlite``.

Example:
    >>> from sqlalchemy.ext.asyncio import create_async_engine
    >>> from meetingsync.stores import SQLEntityStore
    >>>
    >>> engine = create_async_engine("sqlite+aiosqlite:///meetingsync.db")
    >>> store = SQLEntityStore(engine)
    >>> await store.create_tables()
    >>> await store.create(Project(id="P1", title="Launch"))
"""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from meetingsync.exceptions import EntityAlreadyExistsError, EntityNotFoundError, StoreError
from meetingsync.models import Entity, EntityKind, utc_now
from meetingsync.observability import Tracer, create_tracer
from meetingsync.observability.attributes import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ENTITY_ID,
    ATTR_ENTITY_KIND,
    ATTR_PROJECT_ID,
)
from meetingsync.stores._connection import execute_with_connection
from meetingsync.stores.interface import EntityStore, RunHistoryStore

logger = logging.getLogger(__name__)

metadata = MetaData()

entities_table = Table(
    "meetingsync_entities",
    metadata,
    Column("kind", String(32), primary_key=True),
    Column("id", String(255), primary_key=True),
    Column("project_id", String(255), index=True, nullable=True),
    Column("payload", Text, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

run_history_table = Table(
    "meetingsync_run_history",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("run_id", String(255), nullable=False),
    Column("payload", Text, nullable=False),
    Column("recorded_at", DateTime(timezone=True), nullable=False),
)


def _dialect_name(conn: AsyncConnection | AsyncEngine) -> str:
    return str(conn.dialect.name)


def _serialize(entity: Entity) -> str:
    return json.dumps(entity.model_dump(mode="json"))


def _deserialize(kind: EntityKind, payload: str) -> Entity:
    return kind.model.model_validate(json.loads(payload))  # type: ignore[return-value]


async def create_tables(conn: AsyncConnection | AsyncEngine) -> None:
    """Create the meetingsync tables if they do not exist."""
    async with execute_with_connection(conn, transactional=True) as connection:
        await connection.run_sync(metadata.create_all)


class SQLEntityStore(EntityStore):
    """
    SQLAlchemy implementation of EntityStore.

    Example:
        >>> async with engine.begin() as conn:
        ...     store = SQLEntityStore(conn)
        ...     await store.update(schedule)

    Note:
        - Call create_tables() once before use
        - Payloads are the pydantic JSON dump of the entity
        - Reads always build fresh model instances, so they are copies
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the store.

        Args:
            conn: Database connection or engine
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._conn = conn
        self._db_system = _dialect_name(conn)

    async def create_tables(self) -> None:
        await create_tables(self._conn)

    def _attrs(
        self, operation: str, kind: EntityKind, extra: dict[str, str] | None = None
    ) -> dict[str, Any]:
        attributes: dict[str, Any] = {
            ATTR_DB_SYSTEM: self._db_system,
            ATTR_DB_OPERATION: operation,
            ATTR_ENTITY_KIND: kind.value,
        }
        attributes.update(extra or {})
        return attributes

    async def list(self, kind: EntityKind) -> list[Entity]:
        with self._tracer.span("meetingsync.store.list", self._attrs("SELECT", kind)):
            query = (
                select(entities_table.c.payload)
                .where(entities_table.c.kind == kind.value)
                .order_by(entities_table.c.id)
            )
            try:
                async with execute_with_connection(self._conn, transactional=False) as conn:
                    rows = (await conn.execute(query)).fetchall()
            except SQLAlchemyError as e:
                raise StoreError(f"Failed to list {kind.value}: {e}") from e
            return [_deserialize(kind, row.payload) for row in rows]

    async def get(self, kind: EntityKind, entity_id: str) -> Entity | None:
        with self._tracer.span(
            "meetingsync.store.get",
            self._attrs("SELECT", kind, {ATTR_ENTITY_ID: entity_id}),
        ):
            query = select(entities_table.c.payload).where(
                entities_table.c.kind == kind.value,
                entities_table.c.id == entity_id,
            )
            try:
                async with execute_with_connection(self._conn, transactional=False) as conn:
                    row = (await conn.execute(query)).fetchone()
            except SQLAlchemyError as e:
                raise StoreError(f"Failed to get {kind.value} {entity_id}: {e}") from e
            return _deserialize(kind, row.payload) if row is not None else None

    async def create(self, entity: Entity) -> None:
        kind = EntityKind.of(entity)
        with self._tracer.span(
            "meetingsync.store.create",
            self._attrs("INSERT", kind, {ATTR_ENTITY_ID: entity.id}),
        ):
            if await self.get(kind, entity.id) is not None:
                raise EntityAlreadyExistsError(kind.value, entity.id)
            statement = insert(entities_table).values(
                kind=kind.value,
                id=entity.id,
                project_id=getattr(entity, "project_id", None),
                payload=_serialize(entity),
                updated_at=utc_now(),
            )
            try:
                async with execute_with_connection(self._conn, transactional=True) as conn:
                    await conn.execute(statement)
            except IntegrityError as e:
                raise EntityAlreadyExistsError(kind.value, entity.id) from e
            except SQLAlchemyError as e:
                raise StoreError(f"Failed to create {kind.value} {entity.id}: {e}") from e
            logger.debug("Created %s %s", kind.value, entity.id)

    async def update(self, entity: Entity) -> None:
        kind = EntityKind.of(entity)
        with self._tracer.span(
            "meetingsync.store.update",
            self._attrs("UPDATE", kind, {ATTR_ENTITY_ID: entity.id}),
        ):
            statement = (
                update(entities_table)
                .where(
                    entities_table.c.kind == kind.value,
                    entities_table.c.id == entity.id,
                )
                .values(
                    project_id=getattr(entity, "project_id", None),
                    payload=_serialize(entity),
                    updated_at=utc_now(),
                )
            )
            try:
                async with execute_with_connection(self._conn, transactional=True) as conn:
                    result = await conn.execute(statement)
            except SQLAlchemyError as e:
                raise StoreError(f"Failed to update {kind.value} {entity.id}: {e}") from e
            if result.rowcount == 0:
                raise EntityNotFoundError(kind.value, entity.id)
            logger.debug("Updated %s %s", kind.value, entity.id)

    async def delete(self, kind: EntityKind, entity_id: str) -> bool:
        with self._tracer.span(
            "meetingsync.store.delete",
            self._attrs("DELETE", kind, {ATTR_ENTITY_ID: entity_id}),
        ):
            statement = delete(entities_table).where(
                entities_table.c.kind == kind.value,
                entities_table.c.id == entity_id,
            )
            try:
                async with execute_with_connection(self._conn, transactional=True) as conn:
                    result = await conn.execute(statement)
            except SQLAlchemyError as e:
                raise StoreError(f"Failed to delete {kind.value} {entity_id}: {e}") from e
            deleted: bool = result.rowcount > 0
            if deleted:
                logger.debug("Deleted %s %s", kind.value, entity_id)
            return deleted

    async def list_by_project(self, kind: EntityKind, project_id: str) -> list[Entity]:
        if kind == EntityKind.PROJECT:
            raise ValueError("list_by_project does not apply to projects")
        with self._tracer.span(
            "meetingsync.store.list_by_project",
            self._attrs("SELECT", kind, {ATTR_PROJECT_ID: project_id}),
        ):
            query = (
                select(entities_table.c.payload)
                .where(
                    entities_table.c.kind == kind.value,
                    entities_table.c.project_id == project_id,
                )
                .order_by(entities_table.c.id)
            )
            try:
                async with execute_with_connection(self._conn, transactional=False) as conn:
                    rows = (await conn.execute(query)).fetchall()
            except SQLAlchemyError as e:
                raise StoreError(f"Failed to list {kind.value} for {project_id}: {e}") from e
            return [_deserialize(kind, row.payload) for row in rows]

    async def count(self, kind: EntityKind) -> int:
        query = select(func.count()).select_from(entities_table).where(
            entities_table.c.kind == kind.value
        )
        async with execute_with_connection(self._conn, transactional=False) as conn:
            return int((await conn.execute(query)).scalar_one())


class SQLRunHistoryStore(RunHistoryStore):
    """
    SQLAlchemy implementation of RunHistoryStore.

    Rows older than the most recent ``limit`` entries are deleted on
    every append, so the table never grows past the configured bound.
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._conn = conn
        self._db_system = _dialect_name(conn)

    async def create_tables(self) -> None:
        await create_tables(self._conn)

    async def load(self) -> list[dict[str, Any]]:
        with self._tracer.span(
            "meetingsync.run_history.load",
            {ATTR_DB_SYSTEM: self._db_system, ATTR_DB_OPERATION: "SELECT"},
        ):
            query = select(run_history_table.c.payload).order_by(run_history_table.c.seq)
            async with execute_with_connection(self._conn, transactional=False) as conn:
                rows = (await conn.execute(query)).fetchall()
            return [json.loads(row.payload) for row in rows]

    async def append(self, entry: dict[str, Any], limit: int) -> None:
        with self._tracer.span(
            "meetingsync.run_history.append",
            {ATTR_DB_SYSTEM: self._db_system, ATTR_DB_OPERATION: "INSERT"},
        ):
            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(
                    insert(run_history_table).values(
                        run_id=str(entry.get("id", "")),
                        payload=json.dumps(entry),
                        recorded_at=utc_now(),
                    )
                )
                cutoff_query = (
                    select(run_history_table.c.seq)
                    .order_by(run_history_table.c.seq.desc())
                    .offset(limit - 1)
                    .limit(1)
                )
                cutoff = (await conn.execute(cutoff_query)).scalar_one_or_none()
                if cutoff is not None:
                    await conn.execute(
                        delete(run_history_table).where(run_history_table.c.seq < cutoff)
                    )

    async def clear(self) -> None:
        async with execute_with_connection(self._conn, transactional=True) as conn:
            await conn.execute(delete(run_history_table))


__all__ = [
    "SQLEntityStore",
    "SQLRunHistoryStore",
    "create_tables",
    "entities_table",
    "run_history_table",
    "metadata",
]
