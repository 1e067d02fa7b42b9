"""
Effective date resolution for work records.

Records arrive with any subset of start/target dates. The timeline needs a
strictly positive span for every row, so missing bounds are inferred from the
ones present (or from the creation date) using a fixed default span.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

DEFAULT_SPAN = timedelta(days=5)
MINIMUM_SPAN = timedelta(days=1)
SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class ResolvedDates:
    """Always-defined date range used for layout."""

    effective_start: datetime
    effective_end: datetime
    duration_days: int


def resolve_dates(
    start_date: Optional[datetime],
    target_date: Optional[datetime],
    created_date: datetime,
) -> ResolvedDates:
    """
    Infer a record's effective start, end and duration.

    Rules in priority order:

    - both dates present: used as-is
    - only start: end = start + 5 days
    - only target: start = target - 5 days
    - neither: start = created date, end = start + 5 days

    If the result is not a positive span the end is forced to start + 1 day.

    Parameters
    ----------
    start_date : Optional[datetime]
        Scheduled start
    target_date : Optional[datetime]
        Scheduled target
    created_date : datetime
        Creation time, used when neither date is known

    Returns
    -------
    ResolvedDates
        Start, end (strictly later) and whole-day duration rounded up
    """
    if start_date is not None and target_date is not None:
        start, end = start_date, target_date
    elif start_date is not None:
        start, end = start_date, start_date + DEFAULT_SPAN
    elif target_date is not None:
        start, end = target_date - DEFAULT_SPAN, target_date
    else:
        start, end = created_date, created_date + DEFAULT_SPAN

    if end <= start:
        end = start + MINIMUM_SPAN

    duration_days = math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)
    return ResolvedDates(effective_start=start, effective_end=end, duration_days=duration_days)
