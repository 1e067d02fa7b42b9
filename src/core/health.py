"""
Timeline-based health classification.

Health compares the injected current time against a row's resolved date
range. The classifier never reads a wall clock.
"""

from datetime import datetime, timedelta
from typing import Dict, Iterable, Mapping, Optional

from src.core.progress import StateBucket, classify_state
from src.core.store import HealthStatus, ProgressSummary, TimelineRow

MIDPOINT_FRACTION = 0.5

STATUS_LABELS: Dict[HealthStatus, str] = {
    "NotStarted": "Not Started",
    "OnTrack": "On Track",
    "AtRisk": "At Risk",
    "OffTrack": "Off Track",
    "Done": "Done",
}

STATUS_COLORS: Dict[HealthStatus, Dict[str, str]] = {
    "NotStarted": {"color": "#0078d4", "background_color": "#deecf9"},
    "OnTrack": {"color": "#107c10", "background_color": "#dff6dd"},
    "AtRisk": {"color": "#ff8c00", "background_color": "#fff4e5"},
    "OffTrack": {"color": "#a80000", "background_color": "#fde7e9"},
    "Done": {"color": "#107c10", "background_color": "#107c10"},
}

FALLBACK_COLORS = {"color": "#666666", "background_color": "#f3f2f1"}

# Higher wins when rolling member health up into a group
_ROLLUP_SEVERITY: Dict[HealthStatus, int] = {
    "Done": 0,
    "NotStarted": 1,
    "OnTrack": 2,
    "AtRisk": 3,
    "OffTrack": 4,
}


def classify_health(
    state: Optional[str],
    effective_start: datetime,
    effective_end: datetime,
    duration_days: int,
    now: datetime,
    vocabulary: Optional[Mapping[str, StateBucket]] = None,
) -> HealthStatus:
    """
    Classify a record's on-time status.

    Rules:
    - Done: state is in the done (or resolved) bucket, regardless of dates
    - NotStarted: state is not started, removed or unrecognised
    - OffTrack: now >= end
    - AtRisk: start + 50% of duration <= now < end
    - OnTrack: now < start + 50% of duration

    Parameters
    ----------
    state : Optional[str]
        Record state
    effective_start, effective_end : datetime
        Resolved date range
    duration_days : int
        Resolved duration
    now : datetime
        Injected current time
    vocabulary : Optional[Mapping[str, StateBucket]]
        State table, defaults to the built-in vocabularies

    Returns
    -------
    HealthStatus
        One of NotStarted, OnTrack, AtRisk, OffTrack, Done
    """
    bucket = classify_state(state, vocabulary)
    if bucket in ("done", "resolved"):
        return "Done"
    if bucket != "in_progress":
        return "NotStarted"

    if now >= effective_end:
        return "OffTrack"

    midpoint = effective_start + timedelta(days=duration_days * MIDPOINT_FRACTION)
    if now >= midpoint:
        return "AtRisk"
    return "OnTrack"


def rollup_health(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """
    Combine member health into one status for a group row.

    All Done -> Done, all NotStarted -> NotStarted, otherwise the most severe
    of OffTrack/AtRisk/OnTrack (a mix of Done and NotStarted counts as OnTrack).
    """
    distinct = set(statuses)
    if not distinct:
        return "NotStarted"
    if distinct == {"Done"}:
        return "Done"
    if distinct == {"NotStarted"}:
        return "NotStarted"
    worst = max(distinct, key=lambda s: _ROLLUP_SEVERITY[s])
    if worst in ("Done", "NotStarted"):
        return "OnTrack"
    return worst


def summarize_health(rows: Iterable[TimelineRow]) -> ProgressSummary:
    """Count source rows per health status; virtual group rows are skipped."""
    summary = ProgressSummary()
    for row in rows:
        if row.row_kind == "virtualGroup":
            continue
        summary.total += 1
        if row.health_status == "NotStarted":
            summary.not_started += 1
        elif row.health_status == "OnTrack":
            summary.on_track += 1
        elif row.health_status == "AtRisk":
            summary.at_risk += 1
        elif row.health_status == "OffTrack":
            summary.off_track += 1
        elif row.health_status == "Done":
            summary.done += 1
    return summary


def status_colors(status: str) -> Dict[str, str]:
    """Display colours for a health status (neutral grey when unknown)."""
    return dict(STATUS_COLORS.get(status, FALLBACK_COLORS))  # type: ignore[call-overload]
