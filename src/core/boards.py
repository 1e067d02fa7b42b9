"""
Saved board (named filter/view preset) persistence.

Boards are kept in a single JSON document together with the id of the last
selected board. Without a path the store lives in memory only.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from src.core.records import parse_timestamp
from src.core.store import (
    GROUP_BY_OPTIONS,
    ZOOM_LEVELS,
    BoardConfig,
    FilterCriteria,
    GroupBy,
    ZoomLevel,
)

logger = logging.getLogger(__name__)

DEFAULT_ZOOM: ZoomLevel = "week"
IMPORTED_SUFFIX = " (Imported)"


class ConfigNotFound(LookupError):
    """Raised when updating or renaming a board id that does not exist."""

    def __init__(self, board_id: str):
        super().__init__(f"Board with id {board_id} not found")
        self.board_id = board_id


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


_UPDATABLE_FIELDS = (
    "name",
    "description",
    "filter_criteria",
    "zoom_level",
    "group_by",
    "column_widths",
    "expanded_row_ids",
)


def _validate_field(key: str, value: Any) -> Any:
    """Check and normalise one board field value before it is stored."""
    try:
        if key == "name":
            if not isinstance(value, str) or not value:
                raise ValueError("name must be a non-empty string")
        elif key == "description":
            if value is not None and not isinstance(value, str):
                raise ValueError("description must be a string")
        elif key == "filter_criteria":
            if not isinstance(value, FilterCriteria):
                raise ValueError("filter_criteria must be a FilterCriteria")
        elif key == "zoom_level":
            if value not in ZOOM_LEVELS:
                raise ValueError(f"unknown zoom level {value!r}")
        elif key == "group_by":
            if value not in GROUP_BY_OPTIONS:
                raise ValueError(f"unknown group_by {value!r}")
        elif key == "column_widths" and value is not None:
            if not isinstance(value, dict):
                raise ValueError("column_widths must be a mapping")
            value = {str(k): int(v) for k, v in value.items()}
        elif key == "expanded_row_ids" and value is not None:
            if not isinstance(value, (list, tuple)):
                raise ValueError("expanded_row_ids must be a list")
            value = [int(i) for i in value]
    except TypeError as e:
        raise ValueError(f"Invalid board field {key}: {e}") from e
    return value


def board_from_dict(data: Dict[str, Any], now: Optional[datetime] = None) -> BoardConfig:
    """Rebuild a BoardConfig from its ``to_dict`` form (tolerating camelCase keys)."""
    fallback = now or _utc_now()
    zoom = data.get("zoom_level") or data.get("zoom") or DEFAULT_ZOOM
    filters = data.get("filter_criteria") or data.get("filters") or {}
    group_by = data.get("group_by") or filters.get("group_by") or "none"
    column_widths = data.get("column_widths", data.get("columnWidths"))
    expanded = data.get("expanded_row_ids", data.get("expandedItems"))
    return BoardConfig(
        id=str(data.get("id") or ""),
        name=str(data.get("name") or ""),
        description=data.get("description"),
        filter_criteria=FilterCriteria.from_dict(filters),
        zoom_level=zoom if zoom in ZOOM_LEVELS else DEFAULT_ZOOM,
        group_by=group_by if group_by in GROUP_BY_OPTIONS else "none",
        column_widths={str(k): int(v) for k, v in column_widths.items()} if column_widths else None,
        expanded_row_ids=[int(i) for i in expanded] if expanded is not None else None,
        created_at=parse_timestamp(data.get("created_at") or data.get("createdAt")) or fallback,
        updated_at=parse_timestamp(data.get("updated_at") or data.get("updatedAt")) or fallback,
    )


class BoardConfigStore:
    """
    Keyed CRUD over saved boards plus a "last selected" pointer.

    Parameters
    ----------
    path : Optional[Path]
        JSON file backing the store; None keeps everything in memory
    clock : Callable[[], datetime]
        Source of timezone-aware timestamps for created/updated fields
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.path = Path(path) if path is not None else None
        self.clock = clock
        self._boards: List[BoardConfig] = []
        self._current_board_id: Optional[str] = None
        self._load()

    # -------------------- persistence --------------------
    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading saved boards from {self.path}: {e}")
            return

        if not isinstance(data, dict):
            logger.error(f"Error loading saved boards from {self.path}: expected a JSON object")
            return

        boards = data.get("boards")
        for raw in boards if isinstance(boards, list) else []:
            if not isinstance(raw, dict) or not raw.get("id"):
                continue
            try:
                self._boards.append(board_from_dict(raw, self.clock()))
            except (ValueError, TypeError, AttributeError) as e:
                logger.error(f"Skipping unreadable saved board {raw.get('id')}: {e}")
        current = data.get("current_board_id")
        self._current_board_id = current if self.get_board(current) is not None else None
        logger.info(f"Loaded {len(self._boards)} saved boards from {self.path}")

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(
                {
                    "boards": [b.to_dict() for b in self._boards],
                    "current_board_id": self._current_board_id,
                },
                f,
                indent=2,
            )

    def _generate_id(self) -> str:
        return f"board_{uuid.uuid4().hex}"

    def _index_of(self, board_id: str) -> int:
        for index, board in enumerate(self._boards):
            if board.id == board_id:
                return index
        return -1

    # -------------------- queries --------------------
    def list_boards(self) -> List[BoardConfig]:
        return list(self._boards)

    def get_board(self, board_id: str) -> Optional[BoardConfig]:
        index = self._index_of(board_id)
        return self._boards[index] if index >= 0 else None

    # -------------------- mutations --------------------
    def create(
        self,
        name: str,
        filter_criteria: Optional[FilterCriteria] = None,
        zoom_level: ZoomLevel = DEFAULT_ZOOM,
        group_by: GroupBy = "none",
        description: Optional[str] = None,
        column_widths: Optional[Dict[str, int]] = None,
        expanded_row_ids: Optional[List[int]] = None,
    ) -> BoardConfig:
        """Create a board under a freshly generated id."""
        fields = {
            key: _validate_field(key, value)
            for key, value in (
                ("name", name),
                ("description", description),
                ("filter_criteria", filter_criteria or FilterCriteria()),
                ("zoom_level", zoom_level),
                ("group_by", group_by),
                ("column_widths", column_widths),
                ("expanded_row_ids", expanded_row_ids),
            )
        }
        now = self.clock()
        board = BoardConfig(id=self._generate_id(), created_at=now, updated_at=now, **fields)
        self._boards.append(board)
        try:
            self._save()
        except Exception:
            self._boards.pop()
            raise
        logger.info(f"Created board '{name}' ({board.id})")
        return board

    def update(self, board_id: str, **changes: Any) -> BoardConfig:
        """
        Apply field changes to an existing board.

        Raises
        ------
        ConfigNotFound
            If no board has ``board_id``
        ValueError
            If a field is unknown or a value has the wrong shape; the board
            is left untouched
        """
        index = self._index_of(board_id)
        if index < 0:
            raise ConfigNotFound(board_id)

        board = self._boards[index]
        validated: Dict[str, Any] = {}
        for key, value in changes.items():
            if key in ("id", "created_at", "updated_at"):
                continue
            if key not in _UPDATABLE_FIELDS:
                raise ValueError(f"Unknown board field: {key}")
            validated[key] = _validate_field(key, value)

        previous = {key: getattr(board, key) for key in validated}
        previous["updated_at"] = board.updated_at
        for key, value in validated.items():
            setattr(board, key, value)
        board.updated_at = self.clock()
        try:
            self._save()
        except Exception:
            for key, value in previous.items():
                setattr(board, key, value)
            raise
        return board

    def save(self, board: BoardConfig) -> BoardConfig:
        """Create-or-update: boards without an id are created."""
        if not board.id:
            return self.create(
                name=board.name,
                filter_criteria=board.filter_criteria,
                zoom_level=board.zoom_level,
                group_by=board.group_by,
                description=board.description,
                column_widths=board.column_widths,
                expanded_row_ids=board.expanded_row_ids,
            )
        return self.update(
            board.id,
            name=board.name,
            description=board.description,
            filter_criteria=board.filter_criteria,
            zoom_level=board.zoom_level,
            group_by=board.group_by,
            column_widths=board.column_widths,
            expanded_row_ids=board.expanded_row_ids,
        )

    def rename(self, board_id: str, new_name: str) -> BoardConfig:
        return self.update(board_id, name=new_name)

    def delete(self, board_id: str) -> bool:
        index = self._index_of(board_id)
        if index < 0:
            return False
        del self._boards[index]
        if self._current_board_id == board_id:
            self._current_board_id = None
        self._save()
        logger.info(f"Deleted board {board_id}")
        return True

    def duplicate(self, board_id: str, new_name: str) -> Optional[BoardConfig]:
        board = self.get_board(board_id)
        if board is None:
            return None
        return self._copy_as(board, new_name)

    def _copy_as(self, board: BoardConfig, name: str) -> BoardConfig:
        return self.create(
            name=name,
            filter_criteria=FilterCriteria.from_dict(board.filter_criteria.to_dict()),
            zoom_level=board.zoom_level,
            group_by=board.group_by,
            description=board.description,
            column_widths=board.column_widths,
            expanded_row_ids=board.expanded_row_ids,
        )

    def create_default_board(self) -> BoardConfig:
        return self.create(
            name="Default View",
            description="Default timeline board configuration",
            filter_criteria=FilterCriteria(
                record_types=["User Story", "Task", "Feature"],
                states=["New", "Active", "Resolved"],
            ),
            zoom_level=DEFAULT_ZOOM,
        )

    # -------------------- export / import --------------------
    def export_board(self, board_id: str) -> Optional[str]:
        board = self.get_board(board_id)
        if board is None:
            return None
        return json.dumps(board.to_dict(), indent=2)

    def import_board(self, payload: str) -> Optional[BoardConfig]:
        """Import an exported board under a new id; invalid JSON returns None."""
        try:
            data = json.loads(payload)
            if not isinstance(data, dict):
                raise ValueError("exported board must be a JSON object")
            board = board_from_dict(data, self.clock())
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Error importing board: {e}")
            return None
        return self._copy_as(board, f"{board.name}{IMPORTED_SUFFIX}")

    # -------------------- view state --------------------
    def save_expanded_state(self, board_id: str, expanded_row_ids: List[int]) -> None:
        if self.get_board(board_id) is not None:
            self.update(board_id, expanded_row_ids=list(expanded_row_ids))

    def get_expanded_state(self, board_id: str) -> List[int]:
        board = self.get_board(board_id)
        return list(board.expanded_row_ids or []) if board else []

    def save_column_widths(self, board_id: str, column_widths: Dict[str, int]) -> None:
        if self.get_board(board_id) is not None:
            self.update(board_id, column_widths=dict(column_widths))

    def get_column_widths(self, board_id: str) -> Dict[str, int]:
        board = self.get_board(board_id)
        return dict(board.column_widths or {}) if board else {}

    # -------------------- last selected --------------------
    def set_current_board_id(self, board_id: Optional[str]) -> None:
        self._current_board_id = board_id
        self._save()

    def get_current_board_id(self) -> Optional[str]:
        return self._current_board_id
