"""
Conflict resolution.

- IdentityConflictResolver: id / date-proximity / sequence collisions
  between migrated schedules, resolved by rename, merge or skip
- TimeConflictResolver: overlapping schedule times, with ranked
  candidate resolutions
"""

from meetingsync.conflicts.identity import (
    IdentityConflict,
    IdentityConflictResolver,
    IdentityConflictType,
    IdentityDecision,
    IdentityResolution,
)
from meetingsync.conflicts.time import (
    ConflictResolution,
    ConflictSeverity,
    Feasibility,
    Impact,
    ResolutionOutcome,
    ResolutionStrategy,
    ScheduleConflict,
    ScheduleConflictType,
    TimeConflictResolver,
)

__all__ = [
    "IdentityConflict",
    "IdentityConflictResolver",
    "IdentityConflictType",
    "IdentityDecision",
    "IdentityResolution",
    "ConflictResolution",
    "ConflictSeverity",
    "Feasibility",
    "Impact",
    "ResolutionOutcome",
    "ResolutionStrategy",
    "ScheduleConflict",
    "ScheduleConflictType",
    "TimeConflictResolver",
]
