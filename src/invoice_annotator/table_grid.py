"""Row and column separator editing for extracted tables.

Lines are stored as normalized page coordinates. A dragged line is never
re-sorted while the pointer is down, so it can pass a neighbour without the
indices jumping; both axes are sorted on release, insert and delete.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from .interaction import Gesture, GestureKind, InteractionState
from .schemas import InvoiceData, Table
from .viewport import ViewportTransform

logger = logging.getLogger("invoice_annotator.table_grid")


class Axis(str, Enum):
    rows = "rows"
    columns = "columns"


@dataclass(frozen=True)
class LineDrag:
    table_index: int
    axis: Axis
    line_index: int
    snapshot: Table


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _lines(table: Table, axis: Axis) -> List[float]:
    return table.rows if axis == Axis.rows else table.columns


def sort_table_lines(table: Table) -> None:
    table.rows = sorted(table.rows)
    table.columns = sorted(table.columns)


class TableGridEditor:
    def __init__(self, data: InvoiceData, viewport: ViewportTransform, state: InteractionState) -> None:
        self.data = data
        self.viewport = viewport
        self.state = state

    def _table(self, table_index: int) -> Table:
        if not (0 <= table_index < len(self.data.tables)):
            raise IndexError(f"Table {table_index} does not exist.")
        return self.data.tables[table_index]

    def begin_drag_line(
        self,
        table_index: int,
        axis: Axis,
        line_index: int,
        screen_x: float,
        screen_y: float,
    ) -> bool:
        axis = Axis(axis)
        table = self._table(table_index)
        if not (0 <= line_index < len(_lines(table, axis))):
            raise IndexError(f"{axis.value} line {line_index} does not exist in table {table_index}.")
        drag = LineDrag(table_index=table_index, axis=axis, line_index=line_index, snapshot=table.model_copy(deep=True))
        return self.state.begin(Gesture(GestureKind.gridline, screen_x, screen_y, payload=drag))

    def _active_drag(self) -> Optional[Tuple[Gesture, LineDrag]]:
        gesture = self.state.gesture
        if gesture is None or gesture.kind != GestureKind.gridline:
            return None
        return gesture, gesture.payload

    def drag_to(self, screen_x: float, screen_y: float) -> Optional[float]:
        active = self._active_drag()
        if active is None:
            return None
        gesture, drag = active
        table = self._table(drag.table_index)
        lines = _lines(table, drag.axis)
        if self.viewport.screen_to_normalized(screen_x, screen_y) is None:
            return lines[drag.line_index]

        dx, dy = self.viewport.screen_delta_to_normalized(screen_x - gesture.start_x, screen_y - gesture.start_y)
        delta = dy if drag.axis == Axis.rows else dx
        start = _lines(drag.snapshot, drag.axis)[drag.line_index]
        value = _clamp_unit(start + delta)
        updated = list(lines)
        updated[drag.line_index] = value
        setattr(table, drag.axis.value, updated)
        return value

    def end_drag(self) -> Optional[Table]:
        active = self._active_drag()
        if active is None:
            return None
        _gesture, drag = active
        self.state.end()
        table = self._table(drag.table_index)
        sort_table_lines(table)
        return table

    def insert_line(self, table_index: int, axis: Axis, coordinate: float) -> Table:
        axis = Axis(axis)
        table = self._table(table_index)
        setattr(table, axis.value, [*_lines(table, axis), _clamp_unit(coordinate)])
        sort_table_lines(table)
        return table

    def delete_line(self, table_index: int, axis: Axis, line_index: int) -> Table:
        axis = Axis(axis)
        table = self._table(table_index)
        lines = list(_lines(table, axis))
        if not (0 <= line_index < len(lines)):
            raise IndexError(f"{axis.value} line {line_index} does not exist in table {table_index}.")
        del lines[line_index]
        setattr(table, axis.value, lines)
        sort_table_lines(table)
        return table

    def table_at(self, page: int, x: float, y: float) -> Optional[int]:
        for index, table in enumerate(self.data.tables):
            box = table.bounding_box.ordered()
            if box.page != page:
                continue
            if box.x1 <= x <= box.x2 and box.y1 <= y <= box.y2:
                return index
        return None

    def hit_test_line(
        self,
        page: int,
        screen_x: float,
        screen_y: float,
        tolerance_px: float = 5.0,
    ) -> Optional[Tuple[int, Axis, int]]:
        for index, table in enumerate(self.data.tables):
            box = table.bounding_box.ordered()
            if box.page != page:
                continue
            left, top = self.viewport.normalized_to_screen(box.x1, box.y1)
            right, bottom = self.viewport.normalized_to_screen(box.x2, box.y2)
            if left - tolerance_px <= screen_x <= right + tolerance_px:
                for line_index, y in enumerate(table.rows):
                    _sx, line_y = self.viewport.normalized_to_screen(0.0, y)
                    if abs(line_y - screen_y) <= tolerance_px:
                        return index, Axis.rows, line_index
            if top - tolerance_px <= screen_y <= bottom + tolerance_px:
                for line_index, x in enumerate(table.columns):
                    line_x, _sy = self.viewport.normalized_to_screen(x, 0.0)
                    if abs(line_x - screen_x) <= tolerance_px:
                        return index, Axis.columns, line_index
        return None

    def double_click(
        self,
        page: int,
        screen_x: float,
        screen_y: float,
        column_modifier: bool = False,
    ) -> Optional[Tuple[int, Axis]]:
        if not self.state.is_idle():
            return None
        point = self.viewport.screen_to_normalized(screen_x, screen_y)
        if point is None:
            return None
        x, y = point
        table_index = self.table_at(page, x, y)
        if table_index is None:
            return None
        if column_modifier:
            self.insert_line(table_index, Axis.columns, x)
            logger.debug("Inserted column line at %.4f in table %d", x, table_index)
            return table_index, Axis.columns
        self.insert_line(table_index, Axis.rows, y)
        logger.debug("Inserted row line at %.4f in table %d", y, table_index)
        return table_index, Axis.rows


__all__ = ["Axis", "LineDrag", "TableGridEditor", "sort_table_lines"]
