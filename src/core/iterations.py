"""
Relative iteration expressions.

Supports the ``@CurrentIteration`` macro with an optional signed offset
(``@CurrentIteration``, ``@CurrentIteration-1``, ``@CurrentIteration + 2``),
resolved against an ordered iteration calendar.
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from src.core.records import parse_timestamp
from src.core.store import IterationPeriod

logger = logging.getLogger(__name__)

ITERATION_MARKER = "@CurrentIteration"
ITERATION_PATH_SEPARATOR = "\\"

# Iteration structure type in a classification-node tree
ITERATION_STRUCTURE_TYPE = 2

_MACRO_BODY = r"@CurrentIteration(?:\s*([+\-−])\s*(\d+))?"
MACRO_PATTERN = re.compile(_MACRO_BODY, re.IGNORECASE)
_FULL_MACRO_PATTERN = re.compile(rf"\s*{_MACRO_BODY}\s*", re.IGNORECASE)

ITERATION_MACRO_OPTIONS: List[Dict[str, str]] = [
    {"value": "@CurrentIteration", "label": "Current Iteration"},
    {"value": "@CurrentIteration-1", "label": "Previous Iteration"},
    {"value": "@CurrentIteration-2", "label": "2 Iterations Ago"},
    {"value": "@CurrentIteration-3", "label": "3 Iterations Ago"},
    {"value": "@CurrentIteration+1", "label": "Next Iteration"},
    {"value": "@CurrentIteration+2", "label": "2 Iterations Ahead"},
    {"value": "@CurrentIteration+3", "label": "3 Iterations Ahead"},
]


def contains_iteration_macro(value: Optional[str]) -> bool:
    """True if ``value`` mentions the iteration marker anywhere."""
    return bool(value) and MACRO_PATTERN.search(value or "") is not None


def _offset(match: "re.Match[str]") -> int:
    sign, digits = match.group(1), match.group(2)
    if not sign or digits is None:
        return 0
    magnitude = int(digits)
    return magnitude if sign == "+" else -magnitude


def current_iteration_index(
    calendar: Sequence[IterationPeriod], now: Optional[datetime] = None
) -> Optional[int]:
    """
    Index of the current period.

    The first period flagged ``is_current`` wins; otherwise the first period
    whose [start, end] interval contains ``now``. None if neither applies.
    """
    for index, period in enumerate(calendar):
        if period.is_current:
            return index
    if now is None:
        return None
    for index, period in enumerate(calendar):
        if period.contains(now):
            return index
    return None


def resolve_iteration_macro(
    expression: str,
    calendar: Sequence[IterationPeriod],
    now: Optional[datetime] = None,
) -> Optional[str]:
    """
    Resolve a relative iteration expression to an iteration path.

    Parameters
    ----------
    expression : str
        Macro such as ``@CurrentIteration-1``, or a literal path
    calendar : Sequence[IterationPeriod]
        Periods ordered by start date (see ``order_calendar``)
    now : Optional[datetime]
        Injected current time, used only when no period is flagged current

    Returns
    -------
    Optional[str]
        The literal input when it is not a macro, the target period's path,
        or None when no current period exists or the offset falls outside
        the calendar
    """
    match = _FULL_MACRO_PATTERN.fullmatch(expression or "")
    if match is None:
        return expression

    offset = _offset(match)
    current = current_iteration_index(calendar, now)
    if current is None:
        logger.warning(f"Cannot resolve '{expression}': no current iteration in calendar")
        return None

    target = current + offset
    if target < 0 or target >= len(calendar):
        logger.warning(
            f"Cannot resolve '{expression}': offset {offset} from index {current} "
            f"is outside a calendar of {len(calendar)} iterations"
        )
        return None

    return calendar[target].path


def substitute_iteration_macros(
    query: str,
    calendar: Sequence[IterationPeriod],
    now: Optional[datetime] = None,
) -> str:
    """
    Replace every macro inside a query string with its quoted path.

    Single quotes in paths are doubled. Macros that cannot be resolved are
    left untouched.
    """

    def replace(match: "re.Match[str]") -> str:
        resolved = resolve_iteration_macro(match.group(0), calendar, now)
        if resolved is None:
            return match.group(0)
        escaped = resolved.replace("'", "''")
        return f"'{escaped}'"

    return MACRO_PATTERN.sub(replace, query)


def order_calendar(periods: Sequence[IterationPeriod]) -> List[IterationPeriod]:
    """Dated periods ascending by start date, then undated periods by name."""
    return sorted(
        periods,
        key=lambda p: (
            p.start_date is None,
            p.start_date.timestamp() if p.start_date else 0.0,
            p.name,
        ),
    )


def iteration_name_from_path(path: str) -> str:
    """Last segment of a backslash-separated iteration path."""
    parts = path.split(ITERATION_PATH_SEPARATOR)
    return parts[-1] or path


def parse_iteration_tree(node: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> List[IterationPeriod]:
    """
    Flatten a classification-node tree into an ordered calendar.

    Parameters
    ----------
    node : Optional[Dict[str, Any]]
        Root node with ``name``, ``structureType``, ``attributes`` and
        ``children`` keys
    now : Optional[datetime]
        Injected current time; a period containing it is flagged current

    Returns
    -------
    List[IterationPeriod]
        Iteration periods ordered with ``order_calendar``
    """
    periods: List[IterationPeriod] = []
    if not node:
        return periods

    # Iterative walk: (node, parent path)
    stack = [(node, "")]
    while stack:
        current, parent_path = stack.pop()
        if not isinstance(current, dict):
            continue
        name = str(current.get("name") or "")
        path = f"{parent_path}{ITERATION_PATH_SEPARATOR}{name}" if parent_path else name

        if current.get("structureType") == ITERATION_STRUCTURE_TYPE:
            attributes = current.get("attributes") or {}
            start = parse_timestamp(attributes.get("startDate"))
            end = parse_timestamp(attributes.get("finishDate"))
            is_current = bool(now and start and end and start <= now <= end)
            periods.append(
                IterationPeriod(
                    id=str(current.get("identifier") or current.get("id") or path),
                    name=name,
                    path=path,
                    start_date=start,
                    end_date=end,
                    is_current=is_current,
                )
            )

        children = current.get("children") or []
        for child in reversed(children):
            stack.append((child, path))

    logger.info(f"Parsed {len(periods)} iterations from classification tree")
    return order_calendar(periods)


def parse_iteration_period(data: Dict[str, Any]) -> IterationPeriod:
    """Build an IterationPeriod from a flat dict (snake_case or camelCase keys)."""
    path = str(data.get("path") or data.get("name") or "")
    return IterationPeriod(
        id=str(data.get("id") or path),
        name=str(data.get("name") or iteration_name_from_path(path)),
        path=path,
        start_date=parse_timestamp(data.get("start_date") or data.get("startDate")),
        end_date=parse_timestamp(
            data.get("end_date") or data.get("endDate") or data.get("finishDate")
        ),
        is_current=bool(data.get("is_current", data.get("isCurrent", False))),
    )
