from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from services.data_processing import cell_text, to_bool
from services.exceptions import CategoryCycleError
from .model import CategoryNode, CategoryType


logger = logging.getLogger(__name__)

DEFAULT_MAX_LEVELS = 10

ID_HEADERS = ("id", "categoryid")
TYPE_HEADERS = ("categorytype", "type")
DESCRIPTION_HEADERS = ("description", "categorydescription")
ACTIVE_HEADERS = ("active", "categoryactive")

# "Category 1", "Category_2", "Level 3"
_LEVEL_HEADER_RE = re.compile(r"^(category|level)\d+$")
_NUMERIC_ID_RE = re.compile(r"^\d+$")


class HierarchyMode(str, Enum):
    FILL_DOWN = "fill_down"         # blank cell repeats the value above it
    EXPLICIT_ID = "explicit_id"     # column 0 is the id, every row spells out its path


def _header_key(header) -> str:
    return re.sub(r"[^a-z0-9]", "", cell_text(header).lower())


def detect_mode(headers: Sequence) -> HierarchyMode:
    """Explicit-id mode when the first header is an id column, otherwise fill-down."""
    if headers and _header_key(headers[0]) in ID_HEADERS:
        return HierarchyMode.EXPLICIT_ID
    return HierarchyMode.FILL_DOWN


def category_type_from_label(label) -> CategoryType:
    """
    Map a 'Category Type' cell to a CategoryType.

    'Materials' / 'Material' -> material, 'Equipment' -> equipment, anything else -> service.
    """
    text = cell_text(label).lower()
    if text.startswith("material"):
        return CategoryType.MATERIAL
    if text.startswith("equipment"):
        return CategoryType.EQUIPMENT
    return CategoryType.SERVICE


class CategoryHierarchyBuilder:
    """
    Rebuild a category tree from flat spreadsheet rows.

    Both modes walk the rows once and remember the last node seen at every depth:

    * fill-down: a row's level is its rightmost non-blank category cell; the parent is
      the node remembered one column to the left. The id is the leading cell when it is
      purely numeric, otherwise a sequential ``cat_N``.
    * explicit-id: column 0 holds the id and the row repeats its full path. The parent is
      the most recent row whose path is exactly the current row's path minus its last name.

    Rows with no category text are skipped, and so are rows repeating an id already built
    (with a warning). A node whose id already appears among its own ancestors raises
    CategoryCycleError.
    """

    def __init__(
        self,
        mode: HierarchyMode = HierarchyMode.FILL_DOWN,
        category_columns: Optional[Sequence[int]] = None,
        type_column: Optional[int] = None,
        description_column: Optional[int] = None,
        active_column: Optional[int] = None,
        max_levels: int = DEFAULT_MAX_LEVELS,
        default_type: CategoryType = CategoryType.SERVICE,
    ):
        self.mode = HierarchyMode(mode)
        self.category_columns = list(category_columns) if category_columns is not None else None
        self.type_column = type_column
        self.description_column = description_column
        self.active_column = active_column
        self.max_levels = max_levels
        self.default_type = default_type
        self.warnings: List[str] = []
        self._id_counter = 0

    @classmethod
    def for_headers(cls, headers: Sequence, max_levels: int = DEFAULT_MAX_LEVELS,
                    mode: Optional[HierarchyMode] = None,
                    default_type: CategoryType = CategoryType.SERVICE) -> "CategoryHierarchyBuilder":
        """Work out the mode and column layout from a header row."""
        keys = [_header_key(h) for h in headers]
        mode = HierarchyMode(mode) if mode else detect_mode(headers)

        type_column = next((i for i, k in enumerate(keys) if k in TYPE_HEADERS), None)
        description_column = next((i for i, k in enumerate(keys) if k in DESCRIPTION_HEADERS), None)
        active_column = next((i for i, k in enumerate(keys) if k in ACTIVE_HEADERS), None)
        reserved = {type_column, description_column, active_column}
        if mode == HierarchyMode.EXPLICIT_ID:
            reserved.add(0)

        level_columns = [i for i, k in enumerate(keys) if _LEVEL_HEADER_RE.match(k) and i not in reserved]
        if not level_columns:
            level_columns = [i for i in range(len(keys)) if i not in reserved]

        return cls(
            mode=mode,
            category_columns=level_columns[:max_levels],
            type_column=type_column,
            description_column=description_column,
            active_column=active_column,
            max_levels=max_levels,
            default_type=default_type,
        )

    def build(self, rows: Sequence[Sequence]) -> List[CategoryNode]:
        self.warnings = []
        self._id_counter = 0
        if self.mode == HierarchyMode.EXPLICIT_ID:
            return self._build_explicit(rows)
        return self._build_fill_down(rows)

    # --- helpers -----------------------------------------------------------

    def _columns_for(self, rows: Sequence[Sequence]) -> List[int]:
        if self.category_columns is not None:
            return self.category_columns
        width = max((len(r) for r in rows), default=0)
        start = 1 if self.mode == HierarchyMode.EXPLICIT_ID else 0
        skip = {self.type_column, self.description_column, self.active_column}
        return [i for i in range(start, width) if i not in skip][:self.max_levels]

    @staticmethod
    def _cell(row: Sequence, index: Optional[int]) -> str:
        if index is None or index >= len(row):
            return ""
        return cell_text(row[index])

    def _skip_duplicate(self, row_number: int, node_id: str):
        message = f"Row {row_number}: duplicate category id '{node_id}' skipped"
        logger.warning(message)
        self.warnings.append(message)

    def _next_id(self) -> str:
        self._id_counter += 1
        return f"cat_{self._id_counter}"

    def _node(self, row, node_id, name, parent_id, path, level) -> CategoryNode:
        if self.type_column is not None:
            category_type = category_type_from_label(self._cell(row, self.type_column))
        else:
            category_type = self.default_type
        return CategoryNode(
            id=node_id,
            name=name,
            parent_id=parent_id,
            type=category_type,
            path=tuple(path),
            level=level,
            description=self._cell(row, self.description_column),
            active=to_bool(self._cell(row, self.active_column), default=True),
        )

    # --- fill-down ---------------------------------------------------------

    def _build_fill_down(self, rows) -> List[CategoryNode]:
        columns = self._columns_for(rows)
        stack: List[Optional[Tuple[str, str]]] = [None] * len(columns)   # (id, name) per depth
        nodes: List[CategoryNode] = []
        seen = set()

        for row_number, row in enumerate(rows, start=2):  # row 1 is the header
            cells = [self._cell(row, i) for i in columns]
            filled = [i for i, value in enumerate(cells) if value]
            if not filled:
                logger.debug(f"Skipping blank category row {row_number}")
                continue

            depth = filled[-1]
            name = cells[depth]
            lead = self._cell(row, 0)
            node_id = lead if _NUMERIC_ID_RE.match(lead) else self._next_id()

            ancestors = [entry for entry in stack[:depth] if entry is not None]
            ancestor_ids = [entry[0] for entry in ancestors]
            if node_id in ancestor_ids:
                raise CategoryCycleError(node_id, ancestor_ids)

            if node_id in seen:
                self._skip_duplicate(row_number, node_id)
                continue
            seen.add(node_id)

            parent = stack[depth - 1] if depth > 0 else None
            path = [entry[1] for entry in ancestors] + [name]
            nodes.append(self._node(row, node_id, name, parent[0] if parent else None, path, depth + 1))

            stack[depth] = (node_id, name)
            for deeper in range(depth + 1, len(stack)):
                stack[deeper] = None

        return nodes

    # --- explicit ids ------------------------------------------------------

    def _build_explicit(self, rows) -> List[CategoryNode]:
        columns = self._columns_for(rows)
        by_path: Dict[Tuple[str, ...], str] = {}    # full path -> id of the latest row with that path
        parents: Dict[str, Optional[str]] = {}
        nodes: List[CategoryNode] = []

        for row_number, row in enumerate(rows, start=2):  # row 1 is the header
            cells = [self._cell(row, i) for i in columns]
            filled = [i for i, value in enumerate(cells) if value]
            if not filled:
                logger.debug(f"Skipping blank category row {row_number}")
                continue

            depth = filled[-1]
            path = tuple(cells[:depth + 1])
            node_id = self._cell(row, 0) or self._next_id()

            parent_id = by_path.get(path[:-1]) if depth > 0 else None

            ancestor_ids = []
            cursor = parent_id
            while cursor is not None and cursor not in ancestor_ids:
                ancestor_ids.append(cursor)
                cursor = parents.get(cursor)
            ancestor_ids.reverse()
            if node_id in ancestor_ids:
                raise CategoryCycleError(node_id, ancestor_ids)

            if node_id in parents:
                self._skip_duplicate(row_number, node_id)
                continue

            nodes.append(self._node(row, node_id, path[-1], parent_id, [p for p in path if p], depth + 1))
            by_path[path] = node_id
            parents[node_id] = parent_id

        return nodes


def build_category_tree(headers: Sequence, rows: Sequence[Sequence], max_levels: int = DEFAULT_MAX_LEVELS,
                        mode: Optional[HierarchyMode] = None) -> List[CategoryNode]:
    """Convenience wrapper: layout from the header row, then build."""
    return CategoryHierarchyBuilder.for_headers(headers, max_levels=max_levels, mode=mode).build(rows)
