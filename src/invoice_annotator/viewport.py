"""Screen <-> normalized page coordinate mapping for the page canvas.

``pan`` is the screen-pixel offset of the page origin and ``scale`` multiplies
the rendered raster size, so a page pixel ``p`` lands on screen at
``pan + p * scale``.
"""
from __future__ import annotations

from typing import Optional, Tuple

from .config import ViewportSettings
from .schemas import BoundingBox


class ViewportTransform:
    def __init__(
        self,
        viewport_width: float = 0.0,
        viewport_height: float = 0.0,
        settings: Optional[ViewportSettings] = None,
    ) -> None:
        self.settings = settings or ViewportSettings()
        self.viewport_width = float(viewport_width)
        self.viewport_height = float(viewport_height)
        self.page_width = 0.0
        self.page_height = 0.0
        self.scale = 1.0
        self.pan_x = 0.0
        self.pan_y = 0.0

    @property
    def has_page(self) -> bool:
        return self.page_width > 0 and self.page_height > 0

    def state(self) -> Tuple[float, float, float]:
        return (self.scale, self.pan_x, self.pan_y)

    def set_page_size(self, width: float, height: float) -> None:
        if width <= 0 or height <= 0:
            raise ValueError("Page size must be positive.")
        self.page_width = float(width)
        self.page_height = float(height)

    def set_viewport_size(self, width: float, height: float) -> None:
        self.viewport_width = max(0.0, float(width))
        self.viewport_height = max(0.0, float(height))

    def reset(self) -> None:
        self.scale = 1.0
        self.pan_x = 0.0
        self.pan_y = 0.0

    def clear(self) -> None:
        self.page_width = 0.0
        self.page_height = 0.0
        self.reset()

    def screen_to_normalized(self, screen_x: float, screen_y: float) -> Optional[Tuple[float, float]]:
        if not self.has_page:
            return None
        x = (screen_x - self.pan_x) / self.scale / self.page_width
        y = (screen_y - self.pan_y) / self.scale / self.page_height
        if not (0.0 <= x <= 1.0 and 0.0 <= y <= 1.0):
            return None
        return x, y

    def normalized_to_screen(self, x: float, y: float) -> Tuple[float, float]:
        return (
            self.pan_x + x * self.page_width * self.scale,
            self.pan_y + y * self.page_height * self.scale,
        )

    def screen_delta_to_normalized(self, dx: float, dy: float) -> Tuple[float, float]:
        if not self.has_page:
            return 0.0, 0.0
        return (
            dx / self.scale / self.page_width,
            dy / self.scale / self.page_height,
        )

    def box_to_screen_rect(self, box: BoundingBox) -> Tuple[float, float, float, float]:
        """Return ``(left, top, width, height)`` of ``box`` in screen pixels."""
        ordered = box.ordered()
        left, top = self.normalized_to_screen(ordered.x1, ordered.y1)
        right, bottom = self.normalized_to_screen(ordered.x2, ordered.y2)
        return left, top, right - left, bottom - top

    def _clamp_scale(self, scale: float) -> float:
        return max(self.settings.min_scale, min(self.settings.max_scale, scale))

    def frame_region(self, box: BoundingBox) -> None:
        """Zoom so ``box`` fills a fixed fraction of the viewport, centred.

        Computed from the box and viewport size only, never from the current
        transform, so repeated calls produce the same state.
        """
        if not self.has_page or self.viewport_width <= 0 or self.viewport_height <= 0:
            return
        box_w = box.width * self.page_width
        box_h = box.height * self.page_height
        longer = max(box_w, box_h)
        shorter_side = min(self.viewport_width, self.viewport_height)
        if longer <= 0.0:
            scale = self.settings.max_scale
        else:
            scale = self.settings.frame_fraction * shorter_side / longer
        self.scale = self._clamp_scale(scale)

        center_x = (box.x1 + box.x2) / 2.0 * self.page_width
        center_y = (box.y1 + box.y2) / 2.0 * self.page_height
        self.pan_x = self.viewport_width / 2.0 - center_x * self.scale
        self.pan_y = self.viewport_height / 2.0 - center_y * self.scale

    def zoom_by(self, factor: float, anchor_x: float, anchor_y: float) -> bool:
        next_scale = self.scale * factor
        if next_scale < self.settings.min_scale or next_scale > self.settings.max_scale:
            return False
        self.pan_x = anchor_x - (anchor_x - self.pan_x) * factor
        self.pan_y = anchor_y - (anchor_y - self.pan_y) * factor
        self.scale = next_scale
        return True

    def pan_by(self, dx: float, dy: float) -> None:
        self.pan_x += dx
        self.pan_y += dy


__all__ = ["ViewportTransform"]
