"""
Timeline Aggregator.

Single entry point that turns a working set of work records into a
renderable timeline snapshot.

The aggregator:
1. Assembles the row forest (dates, progress, health per record)
2. Extracts finish-to-start edges between the resulting rows
3. Summarizes health and reports reference gaps as diagnostics
4. Attaches zoom configuration and the "today" marker

Every step is a pure function of its inputs and the injected "now", so the
same call twice yields equal snapshots (and identical JSON).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from src.core.health import summarize_health
from src.core.hierarchy import HierarchyAssembler
from src.core.links import extract_links
from src.core.progress import StateBucket
from src.core.store import (
    Diagnostic,
    GroupBy,
    SourceRowId,
    TimelineSnapshot,
    WorkRecord,
    ZoomLevel,
    serialize_datetime,
)

logger = logging.getLogger(__name__)

ZOOM_CONFIGS: Dict[str, Dict[str, Any]] = {
    "day": {"unit": "day", "step": 1, "date_scale": "%d %M"},
    "week": {"unit": "week", "step": 1, "date_scale": "Week %W"},
    "month": {"unit": "month", "step": 1, "date_scale": "%F %Y"},
    "quarter": {"unit": "month", "step": 3, "date_scale": "%Y Q%q"},
}


def get_zoom_config(zoom: str) -> Dict[str, Any]:
    """Scale configuration for a zoom level; unknown levels fall back to week."""
    return dict(ZOOM_CONFIGS.get(zoom, ZOOM_CONFIGS["week"]))


def get_today_marker(now: datetime) -> Dict[str, Any]:
    return {
        "start_date": serialize_datetime(now),
        "css": "gantt-today-marker",
        "text": "Today",
        "title": "Today",
    }


def ensure_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class TimelineAggregator:
    """
    Builds timeline snapshots from work records.

    Holds configuration only; snapshots share no state, so one instance can
    serve concurrent callers.
    """

    def __init__(self, vocabulary: Optional[Mapping[str, StateBucket]] = None):
        """
        Initialize the aggregator.

        Parameters
        ----------
        vocabulary : Optional[Mapping[str, StateBucket]]
            Case-folded state table; defaults to the built-in vocabularies
        """
        self.assembler = HierarchyAssembler(vocabulary=vocabulary)

    def create_snapshot(
        self,
        records: Iterable[WorkRecord],
        now: datetime,
        group_by: GroupBy = "none",
        ancestors: Iterable[WorkRecord] = (),
        zoom: ZoomLevel = "week",
    ) -> TimelineSnapshot:
        """
        Create a complete timeline snapshot.

        Parameters
        ----------
        records : Iterable[WorkRecord]
            Working set in input order
        now : datetime
            Injected current time (naive values are treated as UTC)
        group_by : GroupBy
            Row grouping: 'none', 'assignee', 'type', 'state' or 'iteration'
        ancestors : Iterable[WorkRecord]
            Records excluded upstream that may be back-filled as parents
        zoom : ZoomLevel
            Zoom level for the renderer scale configuration

        Returns
        -------
        TimelineSnapshot
            Rows, edges, health summary and diagnostics
        """
        now = ensure_utc(now)
        records = list(records)
        logger.info(f"Creating snapshot: {len(records)} records, group_by={group_by}, zoom={zoom}")

        # Step 1: Assemble rows (dates, progress, health, hierarchy, grouping)
        hierarchy = self.assembler.assemble(records, now, group_by=group_by, ancestors=ancestors)
        row_ids = hierarchy.row_ids

        # Step 2: Dependency edges between rows present in this conversion
        edges = extract_links(row_ids, hierarchy.records)

        # Step 3: Diagnostics for reference gaps
        diagnostics: List[Diagnostic] = list(hierarchy.diagnostics)
        diagnostics.extend(self._find_dangling_predecessors(hierarchy.records, row_ids))
        diagnostics.extend(self._find_parent_cycles(hierarchy.records))

        # Step 4: Timeline bounds
        start_time = min((r.effective_start for r in hierarchy.rows), default=None)
        end_time = max((r.effective_end for r in hierarchy.rows), default=None)

        snapshot = TimelineSnapshot(
            generated_at=now,
            group_by=hierarchy.group_by,
            rows=hierarchy.rows,
            edges=edges,
            summary=summarize_health(hierarchy.rows),
            diagnostics=diagnostics,
            start_time=start_time,
            end_time=end_time,
            zoom=get_zoom_config(zoom),
            today_marker=get_today_marker(now),
        )

        logger.info(
            f"Snapshot created: {len(snapshot.rows)} rows, {len(edges)} edges, "
            f"{len(diagnostics)} diagnostics"
        )
        return snapshot

    def _find_dangling_predecessors(
        self, records: List[WorkRecord], row_ids: Set[Any]
    ) -> List[Diagnostic]:
        """Predecessor ids that point outside the working set."""
        diagnostics: List[Diagnostic] = []
        for record in records:
            missing = [p for p in record.predecessors if SourceRowId(p) not in row_ids]
            if missing:
                diagnostics.append(
                    Diagnostic(
                        kind="dangling_predecessor",
                        record_id=record.id,
                        description=(
                            f"Record {record.id} depends on {len(missing)} records outside "
                            f"the working set; edges omitted"
                        ),
                        data={"missing_predecessor_ids": missing},
                    )
                )
        return diagnostics

    def _find_parent_cycles(self, records: List[WorkRecord]) -> List[Diagnostic]:
        """
        Detect cycles in parent links among materialised records.

        Walks are iterative and every record is visited at most once, so
        pathological input cannot recurse or loop. Cycles are reported, not
        repaired.
        """
        present = {r.id for r in records}
        parent_of: Dict[int, int] = {
            r.id: r.parent_id
            for r in records
            if r.parent_id is not None and r.parent_id != r.id and r.parent_id in present
        }

        diagnostics: List[Diagnostic] = []
        finished: Set[int] = set()
        for record in records:
            if record.id in finished:
                continue
            path: List[int] = []
            on_path: Dict[int, int] = {}
            node: Optional[int] = record.id
            while node is not None and node not in finished:
                if node in on_path:
                    cycle = path[on_path[node]:]
                    diagnostics.append(
                        Diagnostic(
                            kind="parent_cycle",
                            record_id=node,
                            description=(
                                "Parent cycle detected: "
                                + " → ".join(str(i) for i in cycle + [node])
                            ),
                            data={"cycle": cycle},
                        )
                    )
                    logger.warning(f"Parent cycle among records {cycle}")
                    break
                on_path[node] = len(path)
                path.append(node)
                node = parent_of.get(node)
            finished.update(path)
        return diagnostics
