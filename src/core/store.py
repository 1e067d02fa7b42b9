"""
Timeline Data Models.

This module defines the record, row, edge and snapshot structures shared by
every stage of the work-record-to-timeline transformation. Source records are
immutable once handed over by the fetch layer; rows and edges are derived
fresh on every conversion and carry no identity beyond that call.

Key principles:
- ALL timestamps must be timezone-aware (UTC)
- Row ids are a tagged variant: real records and synthetic groups never
  share an id space
- Snapshots are plain values (same input -> equal snapshot)
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

RowKind = Literal["leaf", "summary", "virtualGroup"]
HealthStatus = Literal["NotStarted", "OnTrack", "AtRisk", "OffTrack", "Done"]
GroupBy = Literal["none", "assignee", "type", "state", "iteration"]
ZoomLevel = Literal["day", "week", "month", "quarter"]

HEALTH_STATUSES: Tuple[HealthStatus, ...] = (
    "NotStarted",
    "OnTrack",
    "AtRisk",
    "OffTrack",
    "Done",
)
GROUP_BY_OPTIONS: Tuple[GroupBy, ...] = ("none", "assignee", "type", "state", "iteration")
ZOOM_LEVELS: Tuple[ZoomLevel, ...] = ("day", "week", "month", "quarter")

FINISH_TO_START = "finish-to-start"


def _require_aware(owner: str, name: str, value: Optional[datetime]) -> None:
    if value is not None and value.tzinfo is None:
        raise ValueError(f"{owner}: {name} must be timezone-aware")


def serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


@dataclass(frozen=True)
class Assignee:
    """Person a record is assigned to, as reported by the tracking system."""

    display_name: str
    id: str = ""
    unique_name: str = ""


@dataclass(frozen=True)
class WorkRecord:
    """
    A single trackable project item (task, story, epic, ...).

    Owned by the fetch layer and immutable once handed to the core.

    Parameters
    ----------
    id : int
        Unique, stable record identifier
    title : str
        Record title
    type : str
        Record type (Epic, Feature, User Story, Task, Bug, ...)
    state : str
        Free-form state from the source process template
    created_date : datetime
        Creation time (timezone-aware); fallback anchor for dates
    changed_date : datetime
        Last change time (timezone-aware)
    assignee : Optional[Assignee]
        Assigned person, if any
    area_path : str
        Area classification path
    iteration_path : str
        Iteration classification path
    start_date, target_date, finish_date : Optional[datetime]
        Scheduling fields, all optional
    parent_id : Optional[int]
        Id of the parent record, possibly absent from the working set
    children_ids : Tuple[int, ...]
        Ids of child records as reported by the source
    predecessors : Tuple[int, ...]
        Ids this record depends on
    successors : Tuple[int, ...]
        Ids depending on this record
    remaining_work, completed_work : Optional[float]
        Work-tracking numbers (hours)
    priority : Optional[int]
        Source priority
    tags : Tuple[str, ...]
        Record tags
    description : Optional[str]
        Free-text description
    """

    id: int
    title: str
    type: str
    state: str
    created_date: datetime
    changed_date: datetime
    assignee: Optional[Assignee] = None
    area_path: str = ""
    iteration_path: str = ""
    start_date: Optional[datetime] = None
    target_date: Optional[datetime] = None
    finish_date: Optional[datetime] = None
    parent_id: Optional[int] = None
    children_ids: Tuple[int, ...] = ()
    predecessors: Tuple[int, ...] = ()
    successors: Tuple[int, ...] = ()
    remaining_work: Optional[float] = None
    completed_work: Optional[float] = None
    priority: Optional[int] = None
    tags: Tuple[str, ...] = ()
    description: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate timezone-aware timestamps."""
        owner = f"WorkRecord {self.id}"
        _require_aware(owner, "created_date", self.created_date)
        _require_aware(owner, "changed_date", self.changed_date)
        _require_aware(owner, "start_date", self.start_date)
        _require_aware(owner, "target_date", self.target_date)
        _require_aware(owner, "finish_date", self.finish_date)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.type,
            "state": self.state,
            "assignee": (
                {
                    "display_name": self.assignee.display_name,
                    "id": self.assignee.id,
                    "unique_name": self.assignee.unique_name,
                }
                if self.assignee
                else None
            ),
            "area_path": self.area_path,
            "iteration_path": self.iteration_path,
            "start_date": serialize_datetime(self.start_date),
            "target_date": serialize_datetime(self.target_date),
            "finish_date": serialize_datetime(self.finish_date),
            "created_date": serialize_datetime(self.created_date),
            "changed_date": serialize_datetime(self.changed_date),
            "parent_id": self.parent_id,
            "children_ids": list(self.children_ids),
            "predecessors": list(self.predecessors),
            "successors": list(self.successors),
            "remaining_work": self.remaining_work,
            "completed_work": self.completed_work,
            "priority": self.priority,
            "tags": list(self.tags),
            "description": self.description,
        }


@dataclass(frozen=True)
class SourceRowId:
    """Row id of a row derived from a real WorkRecord."""

    record_id: int

    def __str__(self) -> str:
        return str(self.record_id)


@dataclass(frozen=True)
class GroupRowId:
    """Row id of a synthetic group row, keyed by the grouping and its key."""

    group_by: str
    key: str

    def __str__(self) -> str:
        return f"group:{self.group_by}:{self.key}"


RowId = Union[SourceRowId, GroupRowId]


def serialize_row_id(row_id: Optional[RowId]) -> Optional[Dict[str, Any]]:
    if row_id is None:
        return None
    if isinstance(row_id, SourceRowId):
        return {"kind": "source", "id": row_id.record_id, "key": str(row_id)}
    return {
        "kind": "group",
        "group_by": row_id.group_by,
        "group_key": row_id.key,
        "key": str(row_id),
    }


@dataclass
class TimelineRow:
    """
    Derived, renderable representation of a WorkRecord or a synthetic group.

    Parameters
    ----------
    row_id : RowId
        ``SourceRowId`` for records, ``GroupRowId`` for virtual groups
    label : str
        Display label (record title or group key)
    effective_start : datetime
        Resolved start, always defined
    effective_end : datetime
        Resolved end, strictly after ``effective_start``
    duration_days : int
        Whole days between start and end, rounded up
    percent_complete : int
        0-100 completion percentage
    health_status : HealthStatus
        Qualitative on-time status
    parent_row_id : Optional[RowId]
        Parent row, ``None`` for the root sentinel
    row_kind : RowKind
        leaf, summary or virtualGroup
    source_record : Optional[WorkRecord]
        Originating record, ``None`` for virtual groups
    backfilled : bool
        True if the row was materialised only because another row names it
        as parent
    """

    row_id: RowId
    label: str
    effective_start: datetime
    effective_end: datetime
    duration_days: int
    percent_complete: int
    health_status: HealthStatus
    parent_row_id: Optional[RowId] = None
    row_kind: RowKind = "leaf"
    source_record: Optional[WorkRecord] = None
    backfilled: bool = False

    def __post_init__(self) -> None:
        """Validate the row invariants."""
        _require_aware(f"TimelineRow {self.row_id}", "effective_start", self.effective_start)
        _require_aware(f"TimelineRow {self.row_id}", "effective_end", self.effective_end)
        if self.effective_end <= self.effective_start:
            raise ValueError(f"TimelineRow {self.row_id}: effective_end must follow effective_start")
        if not 0 <= self.percent_complete <= 100:
            raise ValueError(f"TimelineRow {self.row_id}: percent_complete out of range")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row_id": serialize_row_id(self.row_id),
            "label": self.label,
            "effective_start": serialize_datetime(self.effective_start),
            "effective_end": serialize_datetime(self.effective_end),
            "duration_days": self.duration_days,
            "percent_complete": self.percent_complete,
            "health_status": self.health_status,
            "parent_row_id": serialize_row_id(self.parent_row_id),
            "row_kind": self.row_kind,
            "backfilled": self.backfilled,
            "source_record": self.source_record.to_dict() if self.source_record else None,
        }


@dataclass(frozen=True)
class DependencyEdge:
    """Directed finish-to-start relationship between two rows."""

    id: int
    source_row_id: SourceRowId
    target_row_id: SourceRowId
    kind: str = FINISH_TO_START

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source_row_id.record_id,
            "target": self.target_row_id.record_id,
            "kind": self.kind,
        }


@dataclass(frozen=True)
class IterationPeriod:
    """One entry of the iteration calendar."""

    id: str
    name: str
    path: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_current: bool = False

    def __post_init__(self) -> None:
        """Validate timezone-aware timestamps."""
        _require_aware(f"IterationPeriod {self.id}", "start_date", self.start_date)
        _require_aware(f"IterationPeriod {self.id}", "end_date", self.end_date)

    def contains(self, moment: datetime) -> bool:
        """True if both bounds are known and ``moment`` lies within them."""
        if self.start_date is None or self.end_date is None:
            return False
        return self.start_date <= moment <= self.end_date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "start_date": serialize_datetime(self.start_date),
            "end_date": serialize_datetime(self.end_date),
            "is_current": self.is_current,
        }


@dataclass
class FilterCriteria:
    """
    Recognised filter-criteria shape read from a saved board.

    Empty ``record_types`` / ``states`` mean "no restriction".
    """

    record_types: List[str] = field(default_factory=list)
    states: List[str] = field(default_factory=list)
    area_path_prefix: Optional[str] = None
    iteration_path_prefix_or_macro: Optional[str] = None
    assignee_ids: Optional[List[str]] = None
    group_by: Optional[GroupBy] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_types": list(self.record_types),
            "states": list(self.states),
            "area_path_prefix": self.area_path_prefix,
            "iteration_path_prefix_or_macro": self.iteration_path_prefix_or_macro,
            "assignee_ids": list(self.assignee_ids) if self.assignee_ids is not None else None,
            "group_by": self.group_by,
        }

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> "FilterCriteria":
        data = data or {}
        group_by = data.get("group_by")
        if group_by not in GROUP_BY_OPTIONS:
            group_by = None
        assignee_ids = data.get("assignee_ids")
        return FilterCriteria(
            record_types=[str(t) for t in data.get("record_types") or []],
            states=[str(s) for s in data.get("states") or []],
            area_path_prefix=data.get("area_path_prefix") or None,
            iteration_path_prefix_or_macro=data.get("iteration_path_prefix_or_macro") or None,
            assignee_ids=[str(a) for a in assignee_ids] if assignee_ids is not None else None,
            group_by=group_by,
        )


@dataclass
class BoardConfig:
    """
    Named filter/view preset.

    Parameters
    ----------
    id : str
        Unique board identifier
    name : str
        Display name
    filter_criteria : FilterCriteria
        Saved filters
    zoom_level : ZoomLevel
        Timeline zoom
    group_by : GroupBy
        Row grouping
    created_at : datetime
        Creation time (timezone-aware UTC)
    updated_at : datetime
        Last update time (timezone-aware UTC)
    description : Optional[str]
        Free-text description
    column_widths : Optional[Dict[str, int]]
        Grid column widths by column name
    expanded_row_ids : Optional[List[int]]
        Record ids whose rows are expanded
    """

    id: str
    name: str
    filter_criteria: FilterCriteria
    zoom_level: ZoomLevel
    group_by: GroupBy
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    column_widths: Optional[Dict[str, int]] = None
    expanded_row_ids: Optional[List[int]] = None

    def __post_init__(self) -> None:
        """Validate timezone-aware timestamps."""
        _require_aware(f"BoardConfig {self.id}", "created_at", self.created_at)
        _require_aware(f"BoardConfig {self.id}", "updated_at", self.updated_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "filter_criteria": self.filter_criteria.to_dict(),
            "zoom_level": self.zoom_level,
            "group_by": self.group_by,
            "column_widths": dict(self.column_widths) if self.column_widths is not None else None,
            "expanded_row_ids": (
                list(self.expanded_row_ids) if self.expanded_row_ids is not None else None
            ),
            "created_at": serialize_datetime(self.created_at),
            "updated_at": serialize_datetime(self.updated_at),
        }


@dataclass
class ProgressSummary:
    """Count of rows per health status, for header display."""

    not_started: int = 0
    on_track: int = 0
    at_risk: int = 0
    off_track: int = 0
    done: int = 0
    total: int = 0


@dataclass
class Diagnostic:
    """A reference gap or structural oddity noticed during conversion."""

    kind: Literal["duplicate_id", "missing_parent", "dangling_predecessor", "parent_cycle"]
    record_id: int
    description: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TimelineSnapshot:
    """
    Complete result of one conversion.

    Parameters
    ----------
    generated_at : datetime
        The injected "now" the snapshot was computed against
    group_by : GroupBy
        Grouping applied to the rows
    rows : List[TimelineRow]
        Rows in display order
    edges : List[DependencyEdge]
        Finish-to-start edges between rows
    summary : ProgressSummary
        Health counts over source rows
    diagnostics : List[Diagnostic]
        Reference gaps noticed while converting
    start_time, end_time : Optional[datetime]
        Overall timeline bounds (None when there are no rows)
    zoom : Dict[str, Any]
        Scale configuration for the renderer
    today_marker : Dict[str, Any]
        Marker drawn at ``generated_at``
    """

    generated_at: datetime
    group_by: GroupBy = "none"
    rows: List[TimelineRow] = field(default_factory=list)
    edges: List[DependencyEdge] = field(default_factory=list)
    summary: ProgressSummary = field(default_factory=ProgressSummary)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    zoom: Dict[str, Any] = field(default_factory=dict)
    today_marker: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate timezone-aware timestamps."""
        _require_aware("TimelineSnapshot", "generated_at", self.generated_at)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert snapshot to JSON-serializable dictionary.

        Returns
        -------
        dict
            JSON-serializable representation
        """
        return {
            "generated_at": serialize_datetime(self.generated_at),
            "group_by": self.group_by,
            "rows": [row.to_dict() for row in self.rows],
            "edges": [edge.to_dict() for edge in self.edges],
            "summary": vars(self.summary),
            "diagnostics": [vars(d) for d in self.diagnostics],
            "start_time": serialize_datetime(self.start_time),
            "end_time": serialize_datetime(self.end_time),
            "zoom": self.zoom,
            "today_marker": self.today_marker,
            "timezone": "UTC",
        }

    def to_json(self) -> str:
        """
        Convert snapshot to JSON string.

        Returns
        -------
        str
            JSON string representation
        """
        return json.dumps(self.to_dict(), indent=2)
