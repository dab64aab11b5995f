"""
Bounded history of migration runs.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from meetingsync.migration.models import MigrationRun, MigrationState
from meetingsync.stores.interface import RunHistoryStore

logger = logging.getLogger(__name__)


class RunHistory:
    """
    Most-recent-N log of finished runs, persisted through a RunHistoryStore.

    Entries are cached after ``load()``; ``record()`` writes through to the
    store and keeps the cache bounded the same way the store does.
    """

    def __init__(self, store: RunHistoryStore, limit: int = 50) -> None:
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        self._store = store
        self._limit = limit
        self._runs: list[MigrationRun] = []

    @property
    def limit(self) -> int:
        return self._limit

    async def load(self) -> list[MigrationRun]:
        """Read persisted entries, skipping any that cannot be parsed."""
        runs = []
        for entry in await self._store.load():
            try:
                runs.append(MigrationRun.from_dict(entry))
            except (KeyError, ValueError) as e:
                logger.warning("Skipping unreadable history entry: %s", e)
        self._runs = runs[-self._limit :]
        logger.debug("Loaded %d history entries", len(self._runs))
        return list(self._runs)

    async def record(self, run: MigrationRun) -> None:
        await self._store.append(run.to_dict(), self._limit)
        self._runs.append(run)
        del self._runs[: -self._limit]

    def entries(self, limit: int | None = None) -> list[MigrationRun]:
        """Runs oldest first, optionally only the last ``limit``."""
        if limit is None:
            return list(self._runs)
        return list(self._runs[-limit:]) if limit > 0 else []

    def last_completed(self) -> MigrationRun | None:
        for run in reversed(self._runs):
            if run.state == MigrationState.COMPLETED:
                return run
        return None

    def completed_within(self, window: timedelta, now: datetime) -> bool:
        """True if a run completed less than ``window`` before ``now``."""
        last = self.last_completed()
        if last is None or last.ended_at is None:
            return False
        return now - last.ended_at < window

    def statistics(self) -> dict[str, Any]:
        total = len(self._runs)
        completed = sum(1 for r in self._runs if r.state == MigrationState.COMPLETED)
        failed = sum(1 for r in self._runs if r.state == MigrationState.FAILED)
        durations = [r.duration_seconds or 0.0 for r in self._runs if r.duration_seconds is not None]
        return {
            "total": total,
            "completed": completed,
            "failed": failed,
            "average_duration_seconds": sum(durations) / len(durations) if durations else 0.0,
            "success_rate": completed / total * 100 if total else 0.0,
        }

    async def clear(self) -> None:
        await self._store.clear()
        self._runs.clear()


__all__ = ["RunHistory"]
