"""
Parsing of work records handed over by the fetch layer.

Two payload shapes are accepted:

- flat dicts using the WorkRecord field names (snake_case or camelCase)
- tracking-system payloads ``{"id", "fields": {...}, "relations": [...]}``
  where hierarchy and dependency links live in the relations list
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from src.core.store import Assignee, WorkRecord

logger = logging.getLogger(__name__)

RELATION_PARENT = "System.LinkTypes.Hierarchy-Reverse"
RELATION_CHILD = "System.LinkTypes.Hierarchy-Forward"
# "Depends on": this record depends on the linked one
RELATION_PREDECESSOR = "System.LinkTypes.Dependency-Forward"
# "Blocks": this record blocks the linked one
RELATION_SUCCESSOR = "System.LinkTypes.Dependency-Reverse"

WORK_ITEM_URL_PATTERN = re.compile(r"workItems/(\d+)", re.IGNORECASE)

FIELD_MAP = {
    "title": "System.Title",
    "type": "System.WorkItemType",
    "state": "System.State",
    "assignee": "System.AssignedTo",
    "area_path": "System.AreaPath",
    "iteration_path": "System.IterationPath",
    "created_date": "System.CreatedDate",
    "changed_date": "System.ChangedDate",
    "tags": "System.Tags",
    "description": "System.Description",
    "start_date": "Microsoft.VSTS.Scheduling.StartDate",
    "target_date": "Microsoft.VSTS.Scheduling.TargetDate",
    "finish_date": "Microsoft.VSTS.Scheduling.FinishDate",
    "remaining_work": "Microsoft.VSTS.Scheduling.RemainingWork",
    "completed_work": "Microsoft.VSTS.Scheduling.CompletedWork",
    "priority": "Microsoft.VSTS.Common.Priority",
}

DEFAULT_TITLE = "Untitled"
DEFAULT_TYPE = "Task"
DEFAULT_STATE = "New"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp (or datetime) to a timezone-aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        try:
            ts = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            logger.debug(f"Ignoring unparseable timestamp: {value!r}")
            return None
    if ts.tzinfo is None:
        # Naive timestamps are treated as UTC
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _get(data: Dict[str, Any], name: str) -> Any:
    if name in data:
        return data[name]
    return data.get(_camel(name))


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _id_list(values: Optional[Iterable[Any]]) -> Tuple[int, ...]:
    ids: List[int] = []
    for value in values or []:
        parsed = _to_int(value)
        if parsed is not None:
            ids.append(parsed)
    return tuple(ids)


def _parse_tags(value: Any) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        parts: Iterable[Any] = value.split(";")
    else:
        parts = value
    return tuple(str(t).strip() for t in parts if str(t).strip())


def _parse_assignee(value: Any) -> Optional[Assignee]:
    if not value:
        return None
    if isinstance(value, str):
        return Assignee(display_name=value)
    if isinstance(value, dict):
        display_name = value.get("display_name") or value.get("displayName") or ""
        if not display_name:
            return None
        return Assignee(
            display_name=str(display_name),
            id=str(value.get("id") or ""),
            unique_name=str(value.get("unique_name") or value.get("uniqueName") or ""),
        )
    return None


def extract_work_item_id(url: Optional[str]) -> Optional[int]:
    """Pull the numeric work item id out of a relation URL."""
    match = WORK_ITEM_URL_PATTERN.search(url or "")
    return int(match.group(1)) if match else None


def parse_relations(relations: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Split a relations list into parent, children, predecessors and successors.

    Relations with unknown types or without a work item URL are ignored.
    """
    parent_id: Optional[int] = None
    children: List[int] = []
    predecessors: List[int] = []
    successors: List[int] = []

    for relation in relations or []:
        linked_id = extract_work_item_id(relation.get("url"))
        if linked_id is None:
            continue
        rel = relation.get("rel")
        if rel == RELATION_PARENT:
            parent_id = linked_id
        elif rel == RELATION_CHILD:
            children.append(linked_id)
        elif rel == RELATION_PREDECESSOR:
            predecessors.append(linked_id)
        elif rel == RELATION_SUCCESSOR:
            successors.append(linked_id)

    return {
        "parent_id": parent_id,
        "children_ids": tuple(children),
        "predecessors": tuple(predecessors),
        "successors": tuple(successors),
    }


def _flatten_tracking_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    fields = payload.get("fields") or {}
    flat: Dict[str, Any] = {"id": payload.get("id", fields.get("System.Id"))}
    for name, field_name in FIELD_MAP.items():
        flat[name] = fields.get(field_name)
    flat.update(parse_relations(payload.get("relations") or []))
    return flat


def parse_work_record(payload: Dict[str, Any]) -> WorkRecord:
    """
    Build a WorkRecord from a fetch-layer payload.

    Parameters
    ----------
    payload : Dict[str, Any]
        Flat record dict or tracking-system payload with ``fields``

    Returns
    -------
    WorkRecord
        Immutable record with timezone-aware timestamps

    Raises
    ------
    ValueError
        If the payload has no integer id or no parseable created date
    """
    if not isinstance(payload, dict):
        raise ValueError("Work record payload must be a dict")

    data = _flatten_tracking_payload(payload) if "fields" in payload else payload

    record_id = _to_int(data.get("id"))
    if record_id is None:
        raise ValueError(f"Work record payload has no valid id: {data.get('id')!r}")

    created = parse_timestamp(_get(data, "created_date"))
    if created is None:
        raise ValueError(f"Work record {record_id} has no valid created date")
    changed = parse_timestamp(_get(data, "changed_date")) or created

    return WorkRecord(
        id=record_id,
        title=str(_get(data, "title") or DEFAULT_TITLE),
        type=str(_get(data, "type") or DEFAULT_TYPE),
        state=str(_get(data, "state") or DEFAULT_STATE),
        created_date=created,
        changed_date=changed,
        assignee=_parse_assignee(_get(data, "assignee") or data.get("assignedTo")),
        area_path=str(_get(data, "area_path") or ""),
        iteration_path=str(_get(data, "iteration_path") or ""),
        start_date=parse_timestamp(_get(data, "start_date")),
        target_date=parse_timestamp(_get(data, "target_date")),
        finish_date=parse_timestamp(_get(data, "finish_date")),
        parent_id=_to_int(_get(data, "parent_id")),
        children_ids=_id_list(_get(data, "children_ids")),
        predecessors=_id_list(_get(data, "predecessors")),
        successors=_id_list(_get(data, "successors")),
        remaining_work=_to_float(_get(data, "remaining_work")),
        completed_work=_to_float(_get(data, "completed_work")),
        priority=_to_int(_get(data, "priority")),
        tags=_parse_tags(_get(data, "tags")),
        description=_get(data, "description"),
    )


def parse_work_records(payloads: Iterable[Dict[str, Any]]) -> List[WorkRecord]:
    """Parse a batch of payloads, preserving order."""
    return [parse_work_record(p) for p in payloads]
