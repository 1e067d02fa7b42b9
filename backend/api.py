"""
FastAPI backend for the timeline engine.

Exposes the snapshot aggregator, the iteration macro resolver and the saved
board store over HTTP for the rendering frontend. The clock lives here: the
core never reads it, so callers may pass an explicit ``now`` for replayable
results.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

# Ensure we import from the local src directory, not elsewhere
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from src.core.aggregator import TimelineAggregator, ensure_utc
from src.core.boards import BoardConfigStore, ConfigNotFound
from src.core.filters import apply_filters
from src.core.iterations import (
    order_calendar,
    parse_iteration_period,
    parse_iteration_tree,
    resolve_iteration_macro,
    substitute_iteration_macros,
)
from src.core.records import parse_work_records
from src.core.store import (
    ZOOM_LEVELS,
    BoardConfig,
    FilterCriteria,
    GroupBy,
    IterationPeriod,
    WorkRecord,
    ZoomLevel,
)

logger = logging.getLogger(__name__)


def load_config(config_path: Path) -> Dict[str, Any]:
    """Read config.json, falling back to defaults when it is missing or invalid."""
    try:
        with open(config_path, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        logger.info(f"No config.json at {config_path}, using defaults")
    except Exception as e:
        logger.warning(f"Could not load config.json: {e}, using defaults")
    return {}


config = load_config(project_root / "config.json")
boards_path = config.get("boards_path")
default_zoom = config.get("default_zoom", "week")
if default_zoom not in ZOOM_LEVELS:
    logger.warning(f"Ignoring unknown default_zoom '{default_zoom}' from config")
    default_zoom = "week"

# Initialize FastAPI app
app = FastAPI(
    title="Timeline API",
    description="Backend API turning work records into timeline rows and dependency edges",
    version="1.0.0",
)

# Configure CORS - allow all localhost origins in development
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"http://(localhost|127\.0\.0\.1):\d+",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

aggregator = TimelineAggregator()
board_store = BoardConfigStore(path=Path(boards_path) if boards_path else None)


class FilterCriteriaPayload(BaseModel):
    record_types: List[str] = Field(default_factory=list)
    states: List[str] = Field(default_factory=list)
    area_path_prefix: Optional[str] = None
    iteration_path_prefix_or_macro: Optional[str] = None
    assignee_ids: Optional[List[str]] = None
    group_by: Optional[GroupBy] = None

    def to_criteria(self) -> FilterCriteria:
        return FilterCriteria.from_dict(self.model_dump())


class CalendarPayload(BaseModel):
    """Iteration calendar as flat periods and/or a classification-node tree."""

    iterations: List[Dict[str, Any]] = Field(default_factory=list)
    iteration_tree: Optional[Dict[str, Any]] = None
    now: Optional[datetime] = None


class TimelineRequest(CalendarPayload):
    records: List[Dict[str, Any]] = Field(default_factory=list)
    ancestors: List[Dict[str, Any]] = Field(default_factory=list)
    group_by: Optional[GroupBy] = None
    zoom: Optional[ZoomLevel] = None
    board_id: Optional[str] = None
    filter_criteria: Optional[FilterCriteriaPayload] = None


class ResolveIterationRequest(CalendarPayload):
    expression: str = ""
    query: Optional[str] = None
    sort: bool = True


class BoardPayload(BaseModel):
    """Board fields for partial updates; only fields present in the body change."""

    name: str = Field(default="", min_length=1)
    description: Optional[str] = None
    filter_criteria: FilterCriteriaPayload = Field(default_factory=FilterCriteriaPayload)
    zoom_level: ZoomLevel = "week"
    group_by: GroupBy = "none"
    column_widths: Optional[Dict[str, int]] = None
    expanded_row_ids: Optional[List[int]] = None


class CreateBoardPayload(BoardPayload):
    name: str = Field(min_length=1)


class DuplicateBoardPayload(BaseModel):
    name: str = Field(min_length=1)


class CurrentBoardPayload(BaseModel):
    board_id: Optional[str] = None


def _resolve_now(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    return ensure_utc(value)


def _board_fields(payload: BoardPayload) -> Dict[str, Any]:
    """Translate the fields set in a request body into BoardConfig changes."""
    fields = payload.model_dump(exclude_unset=True)
    if "filter_criteria" in fields:
        fields["filter_criteria"] = payload.filter_criteria.to_criteria()
    return fields


def _build_calendar(payload: CalendarPayload, now: datetime, sort: bool = True) -> List[IterationPeriod]:
    calendar = [parse_iteration_period(p) for p in payload.iterations]
    if payload.iteration_tree:
        calendar.extend(parse_iteration_tree(payload.iteration_tree, now))
    return order_calendar(calendar) if sort else calendar


def _get_board_or_404(board_id: str) -> BoardConfig:
    board = board_store.get_board(board_id)
    if board is None:
        raise HTTPException(status_code=404, detail=f"Board with id {board_id} not found")
    return board


def _select_records(
    payload: TimelineRequest, now: datetime
) -> Tuple[List[WorkRecord], List[WorkRecord], GroupBy, ZoomLevel]:
    """
    Parse records and apply the board and filter settings of a timeline request.

    Explicit request fields win over the saved board. Records removed by the
    filter join the ancestor pool so their rows can still be back-filled as
    parents.
    """
    board = _get_board_or_404(payload.board_id) if payload.board_id else None

    try:
        records = parse_work_records(payload.records)
        ancestors = parse_work_records(payload.ancestors)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    criteria: Optional[FilterCriteria] = None
    if payload.filter_criteria is not None:
        criteria = payload.filter_criteria.to_criteria()
    elif board is not None:
        criteria = board.filter_criteria

    if criteria is not None:
        matched = apply_filters(records, criteria, _build_calendar(payload, now), now)
        kept = {id(r) for r in matched}
        ancestors = ancestors + [r for r in records if id(r) not in kept]
        records = matched

    group_by = payload.group_by or (board.group_by if board else None)
    if group_by is None:
        group_by = (criteria.group_by if criteria else None) or "none"
    zoom = payload.zoom or (board.zoom_level if board else default_zoom)
    return records, ancestors, group_by, zoom


@app.get("/")  # type: ignore[misc]
async def root() -> Dict[str, Any]:
    """
    Root endpoint with API information.

    Returns
    -------
    dict
        API information and status
    """
    return {
        "name": "Timeline API",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "/api/timeline": "Convert work records into a timeline snapshot",
            "/api/iterations/resolve": "Resolve @CurrentIteration expressions",
            "/api/boards": "Saved board presets",
            "/health": "Health check",
        },
    }


@app.get("/health")  # type: ignore[misc]
async def health() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.post("/api/timeline")  # type: ignore[misc]
async def create_timeline(payload: TimelineRequest) -> Dict[str, Any]:
    """
    Convert work records into a timeline snapshot.

    Parameters
    ----------
    payload : TimelineRequest
        ``records`` plus optional ``ancestors``, ``group_by``, ``zoom``,
        ``now``, a saved ``board_id`` and/or explicit ``filter_criteria``,
        and the iteration calendar used to resolve filter macros

    Returns
    -------
    dict
        Snapshot with rows, edges, summary, diagnostics and scale config
    """
    now = _resolve_now(payload.now)
    records, ancestors, group_by, zoom = _select_records(payload, now)

    try:
        snapshot = aggregator.create_snapshot(
            records, now, group_by=group_by, ancestors=ancestors, zoom=zoom
        )
        return snapshot.to_dict()
    except Exception as e:
        logger.error(f"Error creating timeline: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error creating timeline: {str(e)}")


@app.post("/api/iterations/resolve")  # type: ignore[misc]
async def resolve_iteration(payload: ResolveIterationRequest) -> Dict[str, Any]:
    """
    Resolve a relative iteration expression against a calendar.

    ``path`` is null when no current iteration exists or the offset falls
    outside the calendar. When ``query`` is given, every macro inside it is
    replaced with its quoted path.
    """
    now = _resolve_now(payload.now)
    calendar = _build_calendar(payload, now, sort=payload.sort)
    result: Dict[str, Any] = {
        "expression": payload.expression,
        "path": resolve_iteration_macro(payload.expression, calendar, now),
    }
    if payload.query is not None:
        result["query"] = substitute_iteration_macros(payload.query, calendar, now)
    return result


@app.get("/api/boards")  # type: ignore[misc]
async def list_boards() -> Dict[str, Any]:
    return {
        "boards": [b.to_dict() for b in board_store.list_boards()],
        "current_board_id": board_store.get_current_board_id(),
    }


@app.post("/api/boards")  # type: ignore[misc]
async def create_board(payload: CreateBoardPayload) -> Dict[str, Any]:
    board = board_store.create(**_board_fields(payload))
    return board.to_dict()


@app.get("/api/boards/current")  # type: ignore[misc]
async def get_current_board() -> Dict[str, Any]:
    return {"current_board_id": board_store.get_current_board_id()}


@app.put("/api/boards/current")  # type: ignore[misc]
async def set_current_board(payload: CurrentBoardPayload) -> Dict[str, Any]:
    if payload.board_id is not None:
        _get_board_or_404(payload.board_id)
    board_store.set_current_board_id(payload.board_id)
    return {"current_board_id": payload.board_id}


@app.post("/api/boards/import")  # type: ignore[misc]
async def import_board(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    board = board_store.import_board(json.dumps(payload))
    if board is None:
        raise HTTPException(status_code=422, detail="Invalid board export")
    return board.to_dict()


@app.get("/api/boards/{board_id}")  # type: ignore[misc]
async def get_board(board_id: str) -> Dict[str, Any]:
    return _get_board_or_404(board_id).to_dict()


@app.put("/api/boards/{board_id}")  # type: ignore[misc]
async def update_board(board_id: str, payload: BoardPayload) -> Dict[str, Any]:
    try:
        board = board_store.update(board_id, **_board_fields(payload))
    except ConfigNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return board.to_dict()


@app.delete("/api/boards/{board_id}")  # type: ignore[misc]
async def delete_board(board_id: str) -> Dict[str, Any]:
    if not board_store.delete(board_id):
        raise HTTPException(status_code=404, detail=f"Board with id {board_id} not found")
    return {"deleted": board_id}


@app.post("/api/boards/{board_id}/duplicate")  # type: ignore[misc]
async def duplicate_board(board_id: str, payload: DuplicateBoardPayload) -> Dict[str, Any]:
    board = board_store.duplicate(board_id, payload.name)
    if board is None:
        raise HTTPException(status_code=404, detail=f"Board with id {board_id} not found")
    return board.to_dict()


@app.get("/api/boards/{board_id}/export")  # type: ignore[misc]
async def export_board(board_id: str) -> Dict[str, Any]:
    exported = board_store.export_board(board_id)
    if exported is None:
        raise HTTPException(status_code=404, detail=f"Board with id {board_id} not found")
    return json.loads(exported)


if __name__ == "__main__":
    import uvicorn

    port = config.get("backend", {}).get("port", 4301)
    logger.info(f"Starting Timeline API on http://0.0.0.0:{port}")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")  # nosec B104
