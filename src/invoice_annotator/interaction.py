"""Pointer gesture state for box editing.

A single ``InteractionState`` is shared by every controller that can own a
pointer gesture (box edit, selection, gridline drag). Starting a gesture while
another is active is refused, which is how a gridline press suppresses a box
drag underneath it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple

from .annotation_core import FieldLocator, get_box, set_box
from .schemas import BoundingBox, InvoiceData
from .viewport import ViewportTransform

logger = logging.getLogger("invoice_annotator.interaction")


class GestureKind(str, Enum):
    idle = "idle"
    dragging = "dragging"
    resizing = "resizing"
    selecting = "selecting"
    gridline = "gridline"


class Corner(str, Enum):
    tl = "tl"
    tr = "tr"
    bl = "bl"
    br = "br"


@dataclass
class Gesture:
    kind: GestureKind
    start_x: float
    start_y: float
    payload: Any = None


class InteractionState:
    def __init__(self) -> None:
        self._gesture: Optional[Gesture] = None

    @property
    def gesture(self) -> Optional[Gesture]:
        return self._gesture

    @property
    def kind(self) -> GestureKind:
        return self._gesture.kind if self._gesture is not None else GestureKind.idle

    def is_idle(self) -> bool:
        return self._gesture is None

    def begin(self, gesture: Gesture) -> bool:
        if self._gesture is not None:
            logger.debug("Ignoring %s gesture while %s is active", gesture.kind.value, self._gesture.kind.value)
            return False
        self._gesture = gesture
        return True

    def end(self) -> Optional[Gesture]:
        gesture, self._gesture = self._gesture, None
        return gesture


@dataclass(frozen=True)
class BoxEdit:
    locator: FieldLocator
    snapshot: BoundingBox
    corner: Optional[Corner] = None


def translated_box(box: BoundingBox, dx: float, dy: float) -> BoundingBox:
    return BoundingBox(page=box.page, x1=box.x1 + dx, y1=box.y1 + dy, x2=box.x2 + dx, y2=box.y2 + dy)


def resized_box(box: BoundingBox, corner: Corner, dx: float, dy: float) -> BoundingBox:
    x1, y1, x2, y2 = box.x1, box.y1, box.x2, box.y2
    if corner in (Corner.tl, Corner.bl):
        x1 += dx
    else:
        x2 += dx
    if corner in (Corner.tl, Corner.tr):
        y1 += dy
    else:
        y2 += dy
    return BoundingBox(page=box.page, x1=x1, y1=y1, x2=x2, y2=y2)


class BoxEditController:
    """Turns pointer deltas into geometry updates for one box at a time.

    The box may be transiently inverted while a corner is dragged through the
    opposite edge; ordering is restored only on ``pointer_up``.
    """

    def __init__(self, data: InvoiceData, viewport: ViewportTransform, state: InteractionState) -> None:
        self.data = data
        self.viewport = viewport
        self.state = state

    def _begin(self, kind: GestureKind, locator: FieldLocator, screen_x: float, screen_y: float, corner=None) -> bool:
        box = get_box(self.data, locator)
        if box is None:
            return False
        edit = BoxEdit(locator=locator, snapshot=box.model_copy(), corner=corner)
        return self.state.begin(Gesture(kind=kind, start_x=screen_x, start_y=screen_y, payload=edit))

    def begin_drag(self, locator: FieldLocator, screen_x: float, screen_y: float) -> bool:
        return self._begin(GestureKind.dragging, locator, screen_x, screen_y)

    def begin_resize(self, locator: FieldLocator, corner: Corner, screen_x: float, screen_y: float) -> bool:
        return self._begin(GestureKind.resizing, locator, screen_x, screen_y, corner=Corner(corner))

    def _active_edit(self) -> Optional[Tuple[Gesture, BoxEdit]]:
        gesture = self.state.gesture
        if gesture is None or gesture.kind not in (GestureKind.dragging, GestureKind.resizing):
            return None
        return gesture, gesture.payload

    def pointer_move(self, screen_x: float, screen_y: float) -> Optional[BoundingBox]:
        active = self._active_edit()
        if active is None:
            return None
        gesture, edit = active
        if self.viewport.screen_to_normalized(screen_x, screen_y) is None:
            return get_box(self.data, edit.locator)

        dx, dy = self.viewport.screen_delta_to_normalized(screen_x - gesture.start_x, screen_y - gesture.start_y)
        if gesture.kind == GestureKind.dragging:
            box = translated_box(edit.snapshot, dx, dy)
        else:
            box = resized_box(edit.snapshot, edit.corner, dx, dy)
        set_box(self.data, edit.locator, box)
        return box

    def pointer_up(self) -> Optional[BoundingBox]:
        active = self._active_edit()
        if active is None:
            return None
        _gesture, edit = active
        self.state.end()
        box = get_box(self.data, edit.locator)
        if box is None:
            return None
        if not box.is_ordered():
            box = box.ordered()
            set_box(self.data, edit.locator, box)
        return box


class SelectionController:
    """Draw-a-selection gesture producing a new box on the current page."""

    def __init__(self, viewport: ViewportTransform, state: InteractionState, min_size: float = 0.005) -> None:
        self.viewport = viewport
        self.state = state
        self.min_size = min_size
        self.selection: Optional[BoundingBox] = None

    def begin(self, page: int, screen_x: float, screen_y: float) -> bool:
        point = self.viewport.screen_to_normalized(screen_x, screen_y)
        if point is None:
            return False
        if not self.state.begin(Gesture(GestureKind.selecting, screen_x, screen_y, payload=(page, point))):
            return False
        x, y = point
        self.selection = BoundingBox(page=page, x1=x, y1=y, x2=x, y2=y)
        return True

    def pointer_move(self, screen_x: float, screen_y: float) -> Optional[BoundingBox]:
        gesture = self.state.gesture
        if gesture is None or gesture.kind != GestureKind.selecting:
            return None
        point = self.viewport.screen_to_normalized(screen_x, screen_y)
        if point is None:
            return self.selection
        page, (start_x, start_y) = gesture.payload
        x, y = point
        self.selection = BoundingBox(
            page=page,
            x1=min(start_x, x),
            y1=min(start_y, y),
            x2=max(start_x, x),
            y2=max(start_y, y),
        )
        return self.selection

    def pointer_up(self) -> Optional[BoundingBox]:
        gesture = self.state.gesture
        if gesture is None or gesture.kind != GestureKind.selecting:
            return None
        self.state.end()
        selection = self.selection
        if selection is None or selection.width < self.min_size or selection.height < self.min_size:
            self.selection = None
            return None
        return selection

    def clear(self) -> None:
        self.selection = None


__all__ = [
    "BoxEdit",
    "BoxEditController",
    "Corner",
    "Gesture",
    "GestureKind",
    "InteractionState",
    "SelectionController",
    "resized_box",
    "translated_box",
]
