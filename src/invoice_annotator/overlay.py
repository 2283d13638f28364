from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .annotation_core import FieldLocator, TableRegion, iter_boxes, locator_path
from .interaction import BoxEditController, Corner
from .schemas import BoundingBox, InvoiceData
from .viewport import ViewportTransform


@dataclass(frozen=True)
class OverlayBox:
    locator: FieldLocator
    path: str
    box: BoundingBox
    active: bool = False

    def css_geometry(self) -> Dict[str, str]:
        """Percentage geometry relative to the page raster; scales with it."""
        box = self.box.ordered()
        return {
            "left": f"{box.x1 * 100}%",
            "top": f"{box.y1 * 100}%",
            "width": f"{(box.x2 - box.x1) * 100}%",
            "height": f"{(box.y2 - box.y1) * 100}%",
        }


def _corner_points(box: BoundingBox) -> List[Tuple[Corner, float, float]]:
    return [
        (Corner.tl, box.x1, box.y1),
        (Corner.tr, box.x2, box.y1),
        (Corner.bl, box.x1, box.y2),
        (Corner.br, box.x2, box.y2),
    ]


class AnnotationOverlay:
    """Collects the boxes to draw for one page and routes clicks on them."""

    def __init__(self, on_activate: Optional[Callable[[FieldLocator], None]] = None) -> None:
        self.on_activate = on_activate
        self.active_locator: Optional[FieldLocator] = None

    def set_active(self, locator: Optional[FieldLocator]) -> None:
        self.active_locator = locator

    def boxes_for_page(self, data: Optional[InvoiceData], page: int) -> List[OverlayBox]:
        if data is None:
            return []
        boxes = [
            OverlayBox(locator=locator, path=locator_path(locator), box=box, active=locator == self.active_locator)
            for locator, box in iter_boxes(data)
            if box.page == page
        ]
        # Table regions enclose their cells, so they go underneath.
        return sorted(boxes, key=lambda b: not isinstance(b.locator, TableRegion))

    def hit_test(
        self,
        data: Optional[InvoiceData],
        viewport: ViewportTransform,
        page: int,
        screen_x: float,
        screen_y: float,
        handle_px: float = 8.0,
    ) -> Optional[Tuple[FieldLocator, Optional[Corner]]]:
        boxes = self.boxes_for_page(data, page)
        for overlay_box in boxes:
            if not overlay_box.active:
                continue
            for corner, x, y in _corner_points(overlay_box.box):
                cx, cy = viewport.normalized_to_screen(x, y)
                if abs(cx - screen_x) <= handle_px and abs(cy - screen_y) <= handle_px:
                    return overlay_box.locator, corner

        # Later boxes are drawn on top, so test them first.
        for overlay_box in reversed(boxes):
            left, top, width, height = viewport.box_to_screen_rect(overlay_box.box)
            if left <= screen_x <= left + width and top <= screen_y <= top + height:
                return overlay_box.locator, None
        return None

    def click(self, locator: FieldLocator) -> None:
        self.active_locator = locator
        if self.on_activate is not None:
            self.on_activate(locator)

    def pointer_down(
        self,
        data: Optional[InvoiceData],
        viewport: ViewportTransform,
        controller: BoxEditController,
        page: int,
        screen_x: float,
        screen_y: float,
        handle_px: float = 8.0,
    ) -> bool:
        if not controller.state.is_idle():
            return False
        hit = self.hit_test(data, viewport, page, screen_x, screen_y, handle_px)
        if hit is None:
            return False
        locator, corner = hit
        if locator != self.active_locator:
            self.click(locator)
        if corner is not None:
            return controller.begin_resize(locator, corner, screen_x, screen_y)
        return controller.begin_drag(locator, screen_x, screen_y)


__all__ = ["AnnotationOverlay", "OverlayBox"]
