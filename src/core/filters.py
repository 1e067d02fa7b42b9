"""
In-memory application of saved filter criteria.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from src.core.iterations import contains_iteration_macro, resolve_iteration_macro
from src.core.store import FilterCriteria, IterationPeriod, WorkRecord

logger = logging.getLogger(__name__)


def record_matches(
    record: WorkRecord,
    criteria: FilterCriteria,
    iteration_path: Optional[str] = None,
) -> bool:
    """
    Check one record against the criteria.

    ``iteration_path`` is the already-resolved iteration prefix; macro
    resolution is the caller's job (see ``apply_filters``).
    """
    if criteria.record_types and record.type not in criteria.record_types:
        return False
    if criteria.states and record.state not in criteria.states:
        return False
    if criteria.area_path_prefix and not record.area_path.startswith(criteria.area_path_prefix):
        return False
    if iteration_path and not record.iteration_path.startswith(iteration_path):
        return False
    if criteria.assignee_ids is not None:
        if record.assignee is None:
            return False
        wanted = set(criteria.assignee_ids)
        if record.assignee.id not in wanted and record.assignee.unique_name not in wanted:
            return False
    return True


def apply_filters(
    records: Iterable[WorkRecord],
    criteria: FilterCriteria,
    calendar: Sequence[IterationPeriod] = (),
    now: Optional[datetime] = None,
) -> List[WorkRecord]:
    """
    Filter records by saved criteria, resolving iteration macros first.

    Parameters
    ----------
    records : Iterable[WorkRecord]
        Candidate records
    criteria : FilterCriteria
        Saved filters
    calendar : Sequence[IterationPeriod]
        Ordered iteration calendar for macro resolution
    now : Optional[datetime]
        Injected current time for macro resolution

    Returns
    -------
    List[WorkRecord]
        Matching records in input order. A macro that cannot be resolved
        matches nothing.
    """
    iteration_path = criteria.iteration_path_prefix_or_macro
    if iteration_path and contains_iteration_macro(iteration_path):
        resolved = resolve_iteration_macro(iteration_path, calendar, now)
        if resolved is None:
            logger.warning(f"Iteration filter '{iteration_path}' could not be resolved; no records match")
            return []
        iteration_path = resolved

    matched = [r for r in records if record_matches(r, criteria, iteration_path)]
    logger.info(f"Filtered records: {len(matched)} matched")
    return matched
