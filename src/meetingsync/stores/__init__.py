"""
Persistence adapters for the meetingsync engine.

- EntityStore / RunHistoryStore: abstract interfaces
- InMemoryEntityStore / InMemoryRunHistoryStore: dictionary-backed, for tests and single processes
- SQLEntityStore / SQLRunHistoryStore: SQLAlchemy async engine (e.g. sqlite+aiosqlite)
"""

from meetingsync.stores.in_memory import InMemoryEntityStore, InMemoryRunHistoryStore
from meetingsync.stores.interface import EntityStore, RunHistoryStore
from meetingsync.stores.sql import SQLEntityStore, SQLRunHistoryStore, create_tables

__all__ = [
    "EntityStore",
    "RunHistoryStore",
    "InMemoryEntityStore",
    "InMemoryRunHistoryStore",
    "SQLEntityStore",
    "SQLRunHistoryStore",
    "create_tables",
]
