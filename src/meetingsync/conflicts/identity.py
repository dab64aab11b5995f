"""
Identity conflict resolution for migrated schedules.

An incoming schedule is checked against the existing set in a fixed
order and the first matching rule decides its fate:

    1. exact id match           -> rename the incoming schedule
    2. same project, start time
       within the tolerance     -> merge (annotate, keep both)
    3. same project + sequence  -> skip the incoming schedule

Resolution never mutates its inputs and is deterministic: the rename
suffix is derived from the existing ids, not from the clock, so resolving
the same incoming and existing sets twice gives the same decision.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any

from meetingsync.config import MigrationConfig
from meetingsync.models import Schedule
from meetingsync.observability import Tracer, create_tracer
from meetingsync.observability.attributes import (
    ATTR_CONFLICT_COUNT,
    ATTR_CONFLICT_TYPE,
    ATTR_RECORD_COUNT,
    ATTR_SCHEDULE_ID,
)

logger = logging.getLogger(__name__)

MIGRATED_TITLE_SUFFIX = " (Migrated)"


class IdentityConflictType(Enum):
    """Why an incoming schedule collides with an existing one."""

    EXACT_ID = "exact_id"
    DATE_PROXIMITY = "date_proximity"
    SEQUENCE_DUPLICATE = "sequence_duplicate"


class IdentityResolution(Enum):
    """What is done with a colliding incoming schedule."""

    RENAME = "rename"
    MERGE = "merge"
    SKIP = "skip"


_RESOLUTION_FOR = {
    IdentityConflictType.EXACT_ID: IdentityResolution.RENAME,
    IdentityConflictType.DATE_PROXIMITY: IdentityResolution.MERGE,
    IdentityConflictType.SEQUENCE_DUPLICATE: IdentityResolution.SKIP,
}


@dataclass(frozen=True)
class IdentityConflict:
    """
    A detected identity conflict and the resolution applied to it.

    Attributes:
        type: Which rule matched.
        incoming_id: Id of the incoming schedule as converted.
        existing_id: Id of the existing schedule it collided with.
        resolution: The resolution applied.
        details: Human-readable rationale, kept for audit.
        resolved_id: Id the incoming schedule is committed under, or None
            when it is skipped.
    """

    type: IdentityConflictType
    incoming_id: str
    existing_id: str
    resolution: IdentityResolution
    details: str
    resolved_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "incoming_id": self.incoming_id,
            "existing_id": self.existing_id,
            "resolution": self.resolution.value,
            "details": self.details,
            "resolved_id": self.resolved_id,
        }


@dataclass(frozen=True)
class IdentityDecision:
    """Outcome of resolving one incoming schedule."""

    schedule: Schedule | None
    conflict: IdentityConflict | None = None

    @property
    def skipped(self) -> bool:
        return self.schedule is None


def rename_suffix_id(schedule_id: str, taken: Iterable[str]) -> str:
    """Smallest ``{id}_migrated_{n}`` (n >= 1) not present in ``taken``."""
    taken_ids = set(taken)
    n = 1
    while f"{schedule_id}_migrated_{n}" in taken_ids:
        n += 1
    return f"{schedule_id}_migrated_{n}"


class IdentityConflictResolver:
    """
    Detects and resolves identity conflicts between migrated schedules.

    Example:
        >>> resolver = IdentityConflictResolver(enable_tracing=False)
        >>> decision = resolver.resolve(incoming, existing)
        >>> if not decision.skipped:
        ...     await store.create(decision.schedule)
    """

    def __init__(
        self,
        config: MigrationConfig | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._tolerance: timedelta = (config or MigrationConfig()).date_tolerance

    def detect(self, incoming: Schedule, existing: Sequence[Schedule]) -> IdentityConflict | None:
        """Find the first conflict for ``incoming``, without applying it."""
        for schedule in existing:
            if schedule.id == incoming.id:
                return self._conflict(
                    IdentityConflictType.EXACT_ID,
                    incoming,
                    schedule,
                    f"ID conflict detected: {incoming.id}",
                    resolved_id=rename_suffix_id(incoming.id, (s.id for s in existing)),
                )

        for schedule in existing:
            if self._within_tolerance(incoming, schedule):
                return self._conflict(
                    IdentityConflictType.DATE_PROXIMITY,
                    incoming,
                    schedule,
                    f"Date conflict detected: {incoming.start.isoformat() if incoming.start else None}",
                    resolved_id=incoming.id,
                )

        for schedule in existing:
            if self._same_sequence(incoming, schedule):
                return self._conflict(
                    IdentityConflictType.SEQUENCE_DUPLICATE,
                    incoming,
                    schedule,
                    f"Sequence conflict detected: {incoming.meeting_sequence}",
                )

        return None

    def resolve(self, incoming: Schedule, existing: Sequence[Schedule]) -> IdentityDecision:
        """
        Resolve ``incoming`` against ``existing``.

        Returns:
            A decision holding a new schedule to commit (renamed or
            annotated as needed), or no schedule when it must be skipped.
        """
        with self._tracer.span(
            "meetingsync.identity.resolve",
            {ATTR_SCHEDULE_ID: incoming.id},
        ) as span:
            conflict = self.detect(incoming, existing)
            if conflict is None:
                return IdentityDecision(schedule=incoming.model_copy(deep=True))
            if span:
                span.set_attribute(ATTR_CONFLICT_TYPE, conflict.type.value)

            logger.debug(
                "Identity conflict for %s: %s -> %s",
                incoming.id,
                conflict.type.value,
                conflict.resolution.value,
                extra={"schedule_id": incoming.id, "existing_id": conflict.existing_id},
            )
            if conflict.resolution == IdentityResolution.SKIP:
                return IdentityDecision(schedule=None, conflict=conflict)
            if conflict.resolution == IdentityResolution.RENAME:
                assert conflict.resolved_id is not None
                renamed = incoming.model_copy(deep=True, update={"id": conflict.resolved_id})
                return IdentityDecision(schedule=renamed, conflict=conflict)
            return IdentityDecision(schedule=self._merged(incoming, conflict), conflict=conflict)

    def resolve_batch(
        self, incoming: Sequence[Schedule], existing: Sequence[Schedule]
    ) -> list[IdentityDecision]:
        """
        Resolve a batch in order.

        Schedules accepted earlier in the batch join the existing set, so
        two incoming records can also collide with each other.
        """
        with self._tracer.span(
            "meetingsync.identity.resolve_batch",
            {ATTR_RECORD_COUNT: len(incoming)},
        ) as span:
            known = list(existing)
            decisions = []
            for schedule in incoming:
                decision = self.resolve(schedule, known)
                if decision.schedule is not None:
                    known.append(decision.schedule)
                decisions.append(decision)
            if span:
                span.set_attribute(
                    ATTR_CONFLICT_COUNT, sum(1 for d in decisions if d.conflict is not None)
                )
            return decisions

    def _within_tolerance(self, incoming: Schedule, existing: Schedule) -> bool:
        if not (incoming.is_project_meeting and existing.is_project_meeting):
            return False
        if incoming.project_id is None or incoming.project_id != existing.project_id:
            return False
        if incoming.start is None or existing.start is None:
            return False
        return abs(incoming.start - existing.start) < self._tolerance

    @staticmethod
    def _same_sequence(incoming: Schedule, existing: Schedule) -> bool:
        if not (incoming.is_project_meeting and existing.is_project_meeting):
            return False
        if incoming.project_id is None or incoming.project_id != existing.project_id:
            return False
        return (
            incoming.meeting_sequence is not None
            and incoming.meeting_sequence == existing.meeting_sequence
        )

    @staticmethod
    def _conflict(
        conflict_type: IdentityConflictType,
        incoming: Schedule,
        existing: Schedule,
        details: str,
        resolved_id: str | None = None,
    ) -> IdentityConflict:
        return IdentityConflict(
            type=conflict_type,
            incoming_id=incoming.id,
            existing_id=existing.id,
            resolution=_RESOLUTION_FOR[conflict_type],
            details=details,
            resolved_id=resolved_id,
        )

    @staticmethod
    def _merged(incoming: Schedule, conflict: IdentityConflict) -> Schedule:
        # Title annotation only; field-level data is not merged.
        title = incoming.title
        if not title.endswith(MIGRATED_TITLE_SUFFIX):
            title = f"{title}{MIGRATED_TITLE_SUFFIX}"
        metadata = {
            **incoming.metadata,
            "migrated_duplicate": True,
            "merged_with": conflict.existing_id,
        }
        return incoming.model_copy(deep=True, update={"title": title, "metadata": metadata})


__all__ = [
    "IdentityConflictType",
    "IdentityResolution",
    "IdentityConflict",
    "IdentityDecision",
    "IdentityConflictResolver",
    "rename_suffix_id",
    "MIGRATED_TITLE_SUFFIX",
]
