"""
Parent/child forest assembly.

Turns a flat list of work records into timeline rows: resolves each record's
dates, progress and health, attaches rows to their parents (or to the root
when the parent is not part of the conversion), back-fills parents that were
excluded upstream, and optionally collapses rows under virtual group rows.

Back-fill is deliberately single-hop: a back-filled parent whose own parent
is also missing is attached to the root rather than chased further up.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Set

from src.core.dates import SECONDS_PER_DAY, resolve_dates
from src.core.health import classify_health, rollup_health
from src.core.progress import StateBucket, estimate_progress
from src.core.store import (
    GROUP_BY_OPTIONS,
    Diagnostic,
    GroupBy,
    GroupRowId,
    RowId,
    SourceRowId,
    TimelineRow,
    WorkRecord,
)

logger = logging.getLogger(__name__)

UNASSIGNED_LABEL = "Unassigned"
NO_ITERATION_LABEL = "No Iteration"
UNKNOWN_LABEL = "Unknown"


def group_key(record: WorkRecord, group_by: GroupBy) -> str:
    """Key of the virtual group a record falls into."""
    if group_by == "assignee":
        if record.assignee and record.assignee.display_name:
            return record.assignee.display_name
        return UNASSIGNED_LABEL
    if group_by == "type":
        return record.type or UNKNOWN_LABEL
    if group_by == "state":
        return record.state or UNKNOWN_LABEL
    if group_by == "iteration":
        return record.iteration_path or NO_ITERATION_LABEL
    return "All"


@dataclass
class HierarchyResult:
    """
    Output of one assembly.

    Parameters
    ----------
    rows : List[TimelineRow]
        Rows in display order
    records : List[WorkRecord]
        Records that produced rows, in materialisation order (input order,
        each back-filled parent right after the first child naming it)
    diagnostics : List[Diagnostic]
        Duplicate ids and missing parents noticed on the way
    group_by : GroupBy
        Grouping actually applied (unknown values fall back to "none")
    """

    rows: List[TimelineRow] = field(default_factory=list)
    records: List[WorkRecord] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    group_by: GroupBy = "none"

    @property
    def row_ids(self) -> Set[RowId]:
        return {row.row_id for row in self.rows}


class HierarchyAssembler:
    """
    Build the timeline row forest from flat records.

    Stateless apart from the state vocabulary; one instance can be shared.
    """

    def __init__(self, vocabulary: Optional[Mapping[str, StateBucket]] = None):
        """
        Initialize the assembler.

        Parameters
        ----------
        vocabulary : Optional[Mapping[str, StateBucket]]
            Case-folded state table (see ``progress.build_vocabulary``).
            Defaults to the built-in Agile/Scrum/Basic vocabularies.
        """
        self.vocabulary = vocabulary

    def assemble(
        self,
        records: Iterable[WorkRecord],
        now: datetime,
        group_by: GroupBy = "none",
        ancestors: Iterable[WorkRecord] = (),
    ) -> HierarchyResult:
        """
        Convert records into display-ordered timeline rows.

        Parameters
        ----------
        records : Iterable[WorkRecord]
            Working set, in input order
        now : datetime
            Injected current time for health classification
        group_by : GroupBy
            'none', 'assignee', 'type', 'state' or 'iteration'
        ancestors : Iterable[WorkRecord]
            Records excluded by upstream filtering that may be back-filled
            as parents of working-set records

        Returns
        -------
        HierarchyResult
            Rows, the records behind them, and diagnostics
        """
        result = HierarchyResult()

        working: Dict[int, WorkRecord] = {}
        ordered: List[WorkRecord] = []
        for record in records:
            if record.id in working:
                result.diagnostics.append(
                    Diagnostic(
                        kind="duplicate_id",
                        record_id=record.id,
                        description=f"Record {record.id} appears more than once; first occurrence kept",
                    )
                )
                continue
            working[record.id] = record
            ordered.append(record)

        pool: Dict[int, WorkRecord] = {}
        for ancestor in ancestors:
            if ancestor.id not in working and ancestor.id not in pool:
                pool[ancestor.id] = ancestor

        # Single-hop back-fill, iterative with a visited set
        present: Set[int] = set(working)
        backfilled_ids: Set[int] = set()
        for record in ordered:
            result.records.append(record)
            parent_id = record.parent_id
            if parent_id is None or parent_id in present:
                continue
            parent = pool.get(parent_id)
            if parent is None:
                continue
            present.add(parent_id)
            backfilled_ids.add(parent_id)
            result.records.append(parent)

        if backfilled_ids:
            logger.info(f"Back-filled {len(backfilled_ids)} parent rows excluded upstream")

        source_rows: List[TimelineRow] = []
        for record in result.records:
            parent_row_id: Optional[RowId] = None
            if record.parent_id is not None and record.parent_id != record.id:
                if record.parent_id in present:
                    parent_row_id = SourceRowId(record.parent_id)
                else:
                    result.diagnostics.append(
                        Diagnostic(
                            kind="missing_parent",
                            record_id=record.id,
                            description=(
                                f"Parent {record.parent_id} of record {record.id} is not in "
                                f"the working set; attached to root"
                            ),
                            data={
                                "parent_id": record.parent_id,
                                "backfilled": record.id in backfilled_ids,
                            },
                        )
                    )
            source_rows.append(
                self.build_row(record, now, parent_row_id, backfilled=record.id in backfilled_ids)
            )

        if group_by not in GROUP_BY_OPTIONS:
            logger.warning(f"Unknown group_by '{group_by}', rows left ungrouped")
            group_by = "none"
        result.group_by = group_by

        group_rows: List[TimelineRow] = []
        if group_by != "none":
            group_rows = self._apply_grouping(source_rows, group_by)

        all_rows = group_rows + source_rows
        parent_ids: Set[RowId] = {
            row.parent_row_id for row in all_rows if row.parent_row_id is not None
        }
        for row in source_rows:
            row.row_kind = "summary" if row.row_id in parent_ids else "leaf"

        # Parents first, then by start; sort is stable so input order breaks ties
        result.rows = sorted(
            all_rows,
            key=lambda row: (0 if row.row_id in parent_ids else 1, row.effective_start),
        )

        logger.info(
            f"Assembled {len(result.rows)} rows ({len(group_rows)} groups) "
            f"from {len(ordered)} records, group_by={group_by}"
        )
        return result

    def build_row(
        self,
        record: WorkRecord,
        now: datetime,
        parent_row_id: Optional[RowId] = None,
        backfilled: bool = False,
    ) -> TimelineRow:
        """Resolve dates, progress and health for a single record."""
        dates = resolve_dates(record.start_date, record.target_date, record.created_date)
        percent = estimate_progress(
            record.state, record.remaining_work, record.completed_work, self.vocabulary
        )
        health = classify_health(
            record.state,
            dates.effective_start,
            dates.effective_end,
            dates.duration_days,
            now,
            self.vocabulary,
        )
        return TimelineRow(
            row_id=SourceRowId(record.id),
            label=record.title,
            effective_start=dates.effective_start,
            effective_end=dates.effective_end,
            duration_days=dates.duration_days,
            percent_complete=percent,
            health_status=health,
            parent_row_id=parent_row_id,
            source_record=record,
            backfilled=backfilled,
        )

    def _apply_grouping(self, source_rows: List[TimelineRow], group_by: GroupBy) -> List[TimelineRow]:
        """Reparent every source row under a virtual group row per distinct key."""
        members: Dict[str, List[TimelineRow]] = {}
        for row in source_rows:
            assert row.source_record is not None
            key = group_key(row.source_record, group_by)
            members.setdefault(key, []).append(row)
            row.parent_row_id = GroupRowId(group_by, key)

        group_rows: List[TimelineRow] = []
        for key, rows in members.items():
            start = min(r.effective_start for r in rows)
            end = max(r.effective_end for r in rows)
            group_rows.append(
                TimelineRow(
                    row_id=GroupRowId(group_by, key),
                    label=key,
                    effective_start=start,
                    effective_end=end,
                    duration_days=math.ceil((end - start).total_seconds() / SECONDS_PER_DAY),
                    percent_complete=round(sum(r.percent_complete for r in rows) / len(rows)),
                    health_status=rollup_health(r.health_status for r in rows),
                    parent_row_id=None,
                    row_kind="virtualGroup",
                )
            )

        logger.debug(f"Grouped {len(source_rows)} rows into {len(group_rows)} groups by {group_by}")
        return group_rows
