"""
Completion percentage estimation.

States are free-form strings from the source process template. Rather than
matching literals ad hoc, every known vocabulary is mapped explicitly onto a
small set of buckets, and each bucket has one progress rule.
"""

import logging
import math
from typing import Dict, Literal, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

StateBucket = Literal["not_started", "in_progress", "resolved", "done", "removed", "unknown"]

STATE_BUCKETS: Tuple[StateBucket, ...] = (
    "not_started",
    "in_progress",
    "resolved",
    "done",
    "removed",
    "unknown",
)

AGILE_STATES: Dict[str, StateBucket] = {
    "New": "not_started",
    "Active": "in_progress",
    "Resolved": "resolved",
    "Closed": "done",
    "Removed": "removed",
}

SCRUM_STATES: Dict[str, StateBucket] = {
    "New": "not_started",
    "Approved": "not_started",
    "Committed": "in_progress",
    "Done": "done",
    "Removed": "removed",
}

BASIC_STATES: Dict[str, StateBucket] = {
    "To Do": "not_started",
    "Doing": "in_progress",
    "Done": "done",
}


def _merge_vocabularies(*vocabularies: Mapping[str, StateBucket]) -> Dict[str, StateBucket]:
    merged: Dict[str, StateBucket] = {}
    for vocabulary in vocabularies:
        for state, bucket in vocabulary.items():
            existing = merged.get(state.casefold())
            if existing is not None and existing != bucket:
                raise ValueError(f"State '{state}' maps to both '{existing}' and '{bucket}'")
            merged[state.casefold()] = bucket
    return merged


# Keys are case-folded state names
DEFAULT_VOCABULARY: Dict[str, StateBucket] = _merge_vocabularies(
    AGILE_STATES, SCRUM_STATES, BASIC_STATES
)

RESOLVED_PERCENT = 90
IN_PROGRESS_DEFAULT_PERCENT = 50


def build_vocabulary(*vocabularies: Mapping[str, StateBucket]) -> Dict[str, StateBucket]:
    """
    Combine caller-defined state mappings into one lookup table.

    Raises
    ------
    ValueError
        If one state is mapped to two different buckets, or a bucket name is
        not one of ``STATE_BUCKETS``.
    """
    for vocabulary in vocabularies:
        for state, bucket in vocabulary.items():
            if bucket not in STATE_BUCKETS:
                raise ValueError(f"Unknown bucket '{bucket}' for state '{state}'")
    return _merge_vocabularies(*vocabularies)


def classify_state(
    state: Optional[str], vocabulary: Optional[Mapping[str, StateBucket]] = None
) -> StateBucket:
    """Map a free-form state onto its bucket; unrecognised states -> 'unknown'."""
    table = DEFAULT_VOCABULARY if vocabulary is None else vocabulary
    bucket = table.get((state or "").strip().casefold())
    if bucket is None:
        logger.debug(f"Unrecognised state '{state}', treating as unknown")
        return "unknown"
    return bucket


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def estimate_progress(
    state: Optional[str],
    remaining_work: Optional[float] = None,
    completed_work: Optional[float] = None,
    vocabulary: Optional[Mapping[str, StateBucket]] = None,
) -> int:
    """
    Derive a 0-100 completion percentage.

    Parameters
    ----------
    state : Optional[str]
        Record state
    remaining_work : Optional[float]
        Remaining hours (negative values are clamped to 0)
    completed_work : Optional[float]
        Completed hours (negative values are clamped to 0)
    vocabulary : Optional[Mapping[str, StateBucket]]
        Case-folded state table, defaults to ``DEFAULT_VOCABULARY``

    Returns
    -------
    int
        Percentage within [0, 100]
    """
    bucket = classify_state(state, vocabulary)

    if bucket == "done":
        return 100
    if bucket == "resolved":
        return RESOLVED_PERCENT
    if bucket != "in_progress":
        return 0

    # Non-finite work values count as absent
    if remaining_work is not None and not math.isfinite(remaining_work):
        remaining_work = None
    if completed_work is not None and not math.isfinite(completed_work):
        completed_work = None

    if remaining_work is not None and completed_work is not None:
        completed = max(0.0, float(completed_work))
        remaining = max(0.0, float(remaining_work))
        total = completed + remaining
        if total > 0:
            return int(_clamp(round(completed / total * 100), 0, 100))

    return IN_PROGRESS_DEFAULT_PERCENT
