"""
Scope selection for migration runs.

A MigrationScope says which projects and legacy meetings a run touches:
everything, a set of projects, a date range, some meeting types, what
changed since the last incremental sync, an explicit selection, or a
custom predicate. The ScopeSelector turns a scope plus the current
projects into the exact record set (a ResolvedScope) the orchestrator
migrates. Resolution is read-only.

Example:
    >>> selector = ScopeSelector(enable_tracing=False)
    >>> scope = selector.project_scope(["P1", "P2"])
    >>> resolved = selector.resolve(projects, scope)
    >>> len(resolved.meetings)
    4
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from meetingsync.exceptions import ScopeError
from meetingsync.models import LegacyMeeting, Project, parse_datetime, utc_now
from meetingsync.observability import Tracer, create_tracer
from meetingsync.observability.attributes import ATTR_RECORD_COUNT, ATTR_SCOPE_KEY, ATTR_SCOPE_TYPE

logger = logging.getLogger(__name__)

SECONDS_PER_ITEM = 0.1
LARGE_DATASET_THRESHOLD = 1000
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class ScopeType(Enum):
    """Kinds of migration scope."""

    FULL = "full"
    PROJECT = "project"
    DATE_RANGE = "date_range"
    MEETING_TYPE = "meeting_type"
    INCREMENTAL = "incremental"
    SELECTIVE = "selective"
    CUSTOM = "custom"


@dataclass(frozen=True)
class ScopeOptions:
    """
    Options shared by every scope.

    Attributes:
        include_completed: Keep meetings whose status is completed.
        include_archived: Keep archived projects.
        include_drafts: Keep projects whose status is draft.
        skip_validation: Skip pre- and post-migration validation.
        batch_size: Records committed between progress reports.
        max_items: Upper bound on the number of meetings selected.
    """

    include_completed: bool = True
    include_archived: bool = False
    include_drafts: bool = False
    skip_validation: bool = False
    batch_size: int = 50
    max_items: int | None = None

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ScopeError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.max_items is not None and self.max_items < 1:
            raise ScopeError(f"max_items must be >= 1, got {self.max_items}")


@dataclass(frozen=True)
class ScopeFilters:
    """Filters a scope applies. Empty values do not filter."""

    project_ids: tuple[str, ...] = ()
    date_start: datetime | None = None
    date_end: datetime | None = None
    meeting_types: tuple[str, ...] = ()
    selected_ids: tuple[str, ...] = ()
    predicate: Callable[[LegacyMeeting], bool] | None = None


@dataclass(frozen=True)
class MigrationScope:
    """
    A filter definition plus options.

    Attributes:
        type: Kind of scope.
        filters: Filters to apply.
        options: Options shared by every scope type.
        name: Tracker id for incremental scopes, label for custom ones.
    """

    type: ScopeType
    filters: ScopeFilters = field(default_factory=ScopeFilters)
    options: ScopeOptions = field(default_factory=ScopeOptions)
    name: str | None = None

    @property
    def key(self) -> str:
        """
        Stable identifier of what this scope selects.

        Used as the retry key, so two scopes selecting the same records
        share their attempt history.
        """
        f = self.filters
        if self.type == ScopeType.FULL:
            return "full"
        if self.type == ScopeType.PROJECT:
            return "project:" + ",".join(sorted(f.project_ids))
        if self.type == ScopeType.DATE_RANGE:
            start = f.date_start.isoformat() if f.date_start else ""
            end = f.date_end.isoformat() if f.date_end else ""
            return f"date_range:{start}..{end}"
        if self.type == ScopeType.MEETING_TYPE:
            return "meeting_type:" + ",".join(sorted(f.meeting_types))
        if self.type == ScopeType.SELECTIVE:
            digest = hashlib.sha256(",".join(sorted(f.selected_ids)).encode()).hexdigest()
            return f"selective:{digest[:12]}"
        return f"{self.type.value}:{self.name}"

    def with_options(self, **changes: Any) -> MigrationScope:
        """Copy of this scope with some options replaced."""
        return replace(self, options=replace(self.options, **changes))


@dataclass(frozen=True)
class ResolvedScope:
    """The exact record set a run migrates."""

    scope: MigrationScope
    projects: tuple[Project, ...]
    meetings: tuple[LegacyMeeting, ...]

    @property
    def is_empty(self) -> bool:
        return not self.meetings


@dataclass(frozen=True)
class ScopeEvaluation:
    """Size estimate for a scope against the current data."""

    scope: MigrationScope
    total_items: int
    filtered_items: int
    estimated_seconds: float
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope_type": self.scope.type.value,
            "scope_key": self.scope.key,
            "total_items": self.total_items,
            "filtered_items": self.filtered_items,
            "estimated_seconds": self.estimated_seconds,
            "warnings": list(self.warnings),
        }


@dataclass
class IncrementalTracker:
    """What an incremental scope has already processed."""

    last_sync: datetime = EPOCH
    last_hash: str = ""
    processed_ids: set[str] = field(default_factory=set)


@dataclass
class SelectiveItem:
    """An item a user ticked (or unticked) for a selective run."""

    id: str
    item_type: str = "meeting"
    selected: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)


class ScopeSelector:
    """
    Builds scopes and resolves them against the current data.

    Owns the incremental trackers and the selective item registry;
    neither is shared with other components.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = utc_now,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._clock = clock
        self._trackers: dict[str, IncrementalTracker] = {}
        self._selective: dict[str, SelectiveItem] = {}

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    @staticmethod
    def full_scope(options: ScopeOptions | None = None) -> MigrationScope:
        return MigrationScope(type=ScopeType.FULL, options=options or ScopeOptions())

    @staticmethod
    def project_scope(
        project_ids: Iterable[str], options: ScopeOptions | None = None
    ) -> MigrationScope:
        ids = tuple(dict.fromkeys(project_ids))
        if not ids:
            raise ScopeError("A project scope needs at least one project id")
        return MigrationScope(
            type=ScopeType.PROJECT,
            filters=ScopeFilters(project_ids=ids),
            options=options or ScopeOptions(),
        )

    @staticmethod
    def date_range_scope(
        start: datetime, end: datetime, options: ScopeOptions | None = None
    ) -> MigrationScope:
        start_at = parse_datetime(start)
        end_at = parse_datetime(end)
        if start_at is None or end_at is None:
            raise ScopeError("A date range scope needs a start and an end")
        if start_at > end_at:
            raise ScopeError(f"Date range start {start_at} is after end {end_at}")
        return MigrationScope(
            type=ScopeType.DATE_RANGE,
            filters=ScopeFilters(date_start=start_at, date_end=end_at),
            options=options or ScopeOptions(),
        )

    @staticmethod
    def meeting_type_scope(
        meeting_types: Iterable[str], options: ScopeOptions | None = None
    ) -> MigrationScope:
        types = tuple(dict.fromkeys(meeting_types))
        if not types:
            raise ScopeError("A meeting type scope needs at least one type")
        return MigrationScope(
            type=ScopeType.MEETING_TYPE,
            filters=ScopeFilters(meeting_types=types),
            options=options or ScopeOptions(),
        )

    def incremental_scope(
        self, tracker_id: str, options: ScopeOptions | None = None
    ) -> MigrationScope:
        """
        Scope over meetings changed since the tracker's last sync.

        Incremental scopes always validate, whatever ``options`` says.
        """
        options = options or ScopeOptions()
        if options.skip_validation:
            logger.warning("Incremental scope %s always validates; ignoring skip_validation", tracker_id)
        return MigrationScope(
            type=ScopeType.INCREMENTAL,
            options=replace(options, skip_validation=False),
            name=tracker_id,
        )

    def selective_scope(
        self, selected_ids: Iterable[str] | None = None, options: ScopeOptions | None = None
    ) -> MigrationScope:
        """Scope over explicit ids; defaults to the currently selected items."""
        ids = tuple(selected_ids) if selected_ids is not None else tuple(self.selected_ids())
        return MigrationScope(
            type=ScopeType.SELECTIVE,
            filters=ScopeFilters(selected_ids=ids),
            options=options or ScopeOptions(),
        )

    @staticmethod
    def custom_scope(
        name: str,
        predicate: Callable[[LegacyMeeting], bool],
        options: ScopeOptions | None = None,
    ) -> MigrationScope:
        return MigrationScope(
            type=ScopeType.CUSTOM,
            filters=ScopeFilters(predicate=predicate),
            options=options or ScopeOptions(),
            name=name,
        )

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def filter_projects(self, projects: Sequence[Project], scope: MigrationScope) -> list[Project]:
        filters, options = scope.filters, scope.options
        selected = list(projects)
        if filters.project_ids:
            wanted = set(filters.project_ids)
            selected = [p for p in selected if p.id in wanted]
        if not options.include_archived:
            selected = [p for p in selected if not p.is_archived]
        if not options.include_drafts:
            selected = [p for p in selected if p.status != "draft"]
        if scope.type == ScopeType.SELECTIVE:
            wanted = set(filters.selected_ids)
            selected = [
                p for p in selected if p.id in wanted or any(m.id in wanted for m in p.meetings)
            ]
        return selected

    def filter_meetings(
        self,
        meetings: Sequence[LegacyMeeting],
        scope: MigrationScope,
    ) -> list[LegacyMeeting]:
        filters, options = scope.filters, scope.options
        selected = list(meetings)

        if filters.date_start is not None or filters.date_end is not None:
            selected = [m for m in selected if self._in_range(m, filters)]
        if filters.meeting_types:
            types = set(filters.meeting_types)
            selected = [m for m in selected if m.type in types]
        if not options.include_completed:
            selected = [m for m in selected if m.status != "completed"]
        if scope.type == ScopeType.SELECTIVE:
            wanted = set(filters.selected_ids)
            selected = [m for m in selected if m.id in wanted or m.project_id in wanted]
        if scope.type == ScopeType.INCREMENTAL:
            tracker = self.get_tracker(scope.name or "")
            selected = [m for m in selected if self._changed_since(m, tracker)]
        if filters.predicate is not None:
            selected = [m for m in selected if filters.predicate(m)]
        if options.max_items is not None:
            selected = selected[: options.max_items]
        return selected

    def resolve(self, projects: Sequence[Project], scope: MigrationScope) -> ResolvedScope:
        """Resolve a scope to the projects and meetings it selects."""
        with self._tracer.span(
            "meetingsync.scope.resolve",
            {ATTR_SCOPE_TYPE: scope.type.value, ATTR_SCOPE_KEY: scope.key},
        ) as span:
            chosen = self.filter_projects(projects, scope)
            candidates = [meeting for project in chosen for meeting in project.meetings]
            meetings = self.filter_meetings(candidates, scope)
            if span:
                span.set_attribute(ATTR_RECORD_COUNT, len(meetings))
            logger.debug(
                "Scope %s resolved to %d projects, %d meetings",
                scope.key,
                len(chosen),
                len(meetings),
            )
            return ResolvedScope(scope=scope, projects=tuple(chosen), meetings=tuple(meetings))

    def evaluate_scope(self, scope: MigrationScope, projects: Sequence[Project]) -> ScopeEvaluation:
        """Estimate how much work a scope selects, with warnings."""
        total_meetings = sum(len(p.meetings) for p in projects)
        resolved = self.resolve(projects, scope)
        filtered = len(resolved.projects) + len(resolved.meetings)

        warnings = []
        if projects and not resolved.projects:
            warnings.append("No projects matched the scope filters")
        if total_meetings and not resolved.meetings:
            warnings.append("No meetings matched the scope filters")
        if filtered > LARGE_DATASET_THRESHOLD:
            warnings.append(f"Large dataset ({filtered} items) may take time to process")
        if scope.type == ScopeType.INCREMENTAL and not self.has_tracker(scope.name):
            warnings.append("First incremental sync will process all items")

        return ScopeEvaluation(
            scope=scope,
            total_items=len(projects) + total_meetings,
            filtered_items=filtered,
            estimated_seconds=filtered * SECONDS_PER_ITEM,
            warnings=tuple(warnings),
        )

    @staticmethod
    def _in_range(meeting: LegacyMeeting, filters: ScopeFilters) -> bool:
        when = parse_datetime(meeting.date)
        if when is None:
            return False
        if filters.date_start is not None and when < filters.date_start:
            return False
        return not (filters.date_end is not None and when > filters.date_end)

    @staticmethod
    def _changed_since(meeting: LegacyMeeting, tracker: IncrementalTracker) -> bool:
        updated = parse_datetime(meeting.updated_at)
        if updated is not None:
            return updated > tracker.last_sync
        return meeting.id not in tracker.processed_ids

    # -------------------------------------------------------------------------
    # Incremental trackers
    # -------------------------------------------------------------------------

    def has_tracker(self, tracker_id: str | None) -> bool:
        return tracker_id is not None and tracker_id in self._trackers

    def get_tracker(self, tracker_id: str) -> IncrementalTracker:
        """Copy of a tracker; an unknown id yields a fresh tracker at the epoch."""
        tracker = self._trackers.get(tracker_id)
        if tracker is None:
            return IncrementalTracker()
        return IncrementalTracker(
            last_sync=tracker.last_sync,
            last_hash=tracker.last_hash,
            processed_ids=set(tracker.processed_ids),
        )

    def update_tracker(self, tracker_id: str, processed: Iterable[LegacyMeeting]) -> IncrementalTracker:
        """Record processed meetings and move the tracker's last sync to now."""
        items = list(processed)
        tracker = self._trackers.setdefault(tracker_id, IncrementalTracker())
        tracker.processed_ids.update(m.id for m in items if m.id)
        tracker.last_sync = self._clock()
        tracker.last_hash = self._hash(items)
        logger.debug("Incremental tracker %s now covers %d ids", tracker_id, len(tracker.processed_ids))
        return self.get_tracker(tracker_id)

    def detect_changes(self, tracker_id: str, items: Iterable[LegacyMeeting]) -> list[str]:
        """Ids of items that are new to the tracker or updated after its last sync."""
        tracker = self.get_tracker(tracker_id)
        changed = []
        for item in items:
            if not item.id:
                continue
            updated = parse_datetime(item.updated_at)
            if item.id not in tracker.processed_ids or (
                updated is not None and updated > tracker.last_sync
            ):
                changed.append(item.id)
        return changed

    @staticmethod
    def _hash(items: Sequence[LegacyMeeting]) -> str:
        payload = json.dumps(
            [{"id": m.id, "updated": m.updated_at.isoformat() if m.updated_at else None} for m in items]
        )
        return hashlib.sha256(payload.encode()).hexdigest()[:16]

    # -------------------------------------------------------------------------
    # Selective items
    # -------------------------------------------------------------------------

    def add_selective_item(self, item: SelectiveItem) -> None:
        self._selective[item.id] = item

    def toggle_selective_item(self, item_id: str) -> bool:
        """Flip an item's selection. Returns False for an unknown id."""
        item = self._selective.get(item_id)
        if item is None:
            return False
        item.selected = not item.selected
        return True

    def clear_selective_items(self) -> None:
        self._selective.clear()

    def selected_ids(self) -> list[str]:
        return [item.id for item in self._selective.values() if item.selected]


__all__ = [
    "ScopeType",
    "ScopeOptions",
    "ScopeFilters",
    "MigrationScope",
    "ResolvedScope",
    "ScopeEvaluation",
    "IncrementalTracker",
    "SelectiveItem",
    "ScopeSelector",
]
