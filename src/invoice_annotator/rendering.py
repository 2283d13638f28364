"""Page rasterization with cancellable, single-flight rendering per viewport."""
from __future__ import annotations

import io
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from pdf2image import convert_from_path, pdfinfo_from_path
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError

from .errors import DocumentError
from .schemas import BoundingBox
from .viewport import ViewportTransform

logger = logging.getLogger("invoice_annotator.rendering")

_PDF2IMAGE_ERRORS = (PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError, OSError, ValueError)

Dispatch = Callable[[Callable[[], None]], None]


@dataclass
class PageRaster:
    page: int
    image: Any
    width: int
    height: int


class RenderHandle:
    """Cancellation token for one page render."""

    def __init__(self, page: int) -> None:
        self.page = page
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class Pdf2ImageRasterizer:
    def __init__(
        self,
        pdf_path: Path | str,
        dpi: int = 150,
        use_pdftocairo: bool = True,
        dispatch: Optional[Dispatch] = None,
    ) -> None:
        self.pdf_path = Path(pdf_path)
        self.dpi = dpi
        self.use_pdftocairo = use_pdftocairo
        self.dispatch = dispatch

    def page_count(self) -> int:
        if not self.pdf_path.is_file():
            raise DocumentError(f"PDF not found: {self.pdf_path}")
        try:
            info = pdfinfo_from_path(str(self.pdf_path))
        except _PDF2IMAGE_ERRORS as exc:
            raise DocumentError(f"Could not read {self.pdf_path.name}: {exc}") from exc
        pages = int(info.get("Pages") or 0)
        if pages < 1:
            raise DocumentError(f"{self.pdf_path.name} has no pages.")
        return pages

    def render(self, page: int) -> PageRaster:
        try:
            images = convert_from_path(
                str(self.pdf_path),
                dpi=self.dpi,
                first_page=page,
                last_page=page,
                use_pdftocairo=self.use_pdftocairo,
            )
        except _PDF2IMAGE_ERRORS as exc:
            raise DocumentError(f"Could not render page {page} of {self.pdf_path.name}: {exc}") from exc
        if not images:
            raise DocumentError(f"Page {page} of {self.pdf_path.name} produced no image.")
        image = images[0]
        return PageRaster(page=page, image=image, width=image.width, height=image.height)

    def start(
        self,
        handle: RenderHandle,
        on_done: Callable[[RenderHandle, PageRaster], None],
        on_error: Callable[[RenderHandle, Exception], None],
    ) -> RenderHandle:
        """Render ``handle.page`` and report through ``on_done`` / ``on_error``.

        With a ``dispatch`` the page is rendered on a worker thread and the
        callbacks are posted back through it; without one the render runs on
        the calling thread before this returns.
        """
        if self.dispatch is None:
            try:
                raster = self.render(handle.page)
            except DocumentError as exc:
                if not handle.cancelled:
                    on_error(handle, exc)
                return handle
            if not handle.cancelled:
                on_done(handle, raster)
            return handle

        def _work() -> None:
            try:
                raster = self.render(handle.page)
            except DocumentError as exc:
                if not handle.cancelled:
                    self.dispatch(lambda: on_error(handle, exc))
                return
            if not handle.cancelled:
                self.dispatch(lambda: on_done(handle, raster))

        threading.Thread(target=_work, name=f"render-page-{handle.page}", daemon=True).start()
        return handle


def crop_region(raster: PageRaster, box: BoundingBox) -> bytes:
    """PNG bytes of ``box`` cut out of ``raster``; used to re-extract a selection."""
    ordered = box.ordered()
    left = max(0, int(round(ordered.x1 * raster.width)))
    top = max(0, int(round(ordered.y1 * raster.height)))
    right = min(raster.width, int(round(ordered.x2 * raster.width)))
    bottom = min(raster.height, int(round(ordered.y2 * raster.height)))
    if right - left < 1 or bottom - top < 1:
        raise ValueError("Selection does not overlap the page.")
    buffer = io.BytesIO()
    raster.image.crop((left, top, right, bottom)).save(buffer, format="PNG")
    return buffer.getvalue()


class PageRenderController:
    """Keeps at most one render in flight and defers framing until it lands.

    Starting a render for another page cancels the in-flight one; results
    from cancelled or superseded handles are dropped. A frame request for a
    page that is not on screen is parked (last write wins) and applied once,
    after that page's raster arrives.
    """

    def __init__(
        self,
        rasterizer: Any,
        viewport: ViewportTransform,
        on_page_ready: Optional[Callable[[PageRaster], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        self.rasterizer = rasterizer
        self.viewport = viewport
        self.on_page_ready = on_page_ready
        self.on_error = on_error
        self.current_page: Optional[int] = None
        self.raster: Optional[PageRaster] = None
        self._inflight: Optional[RenderHandle] = None
        self._pending_frame: Optional[BoundingBox] = None

    @property
    def rendered_page(self) -> Optional[int]:
        return self.raster.page if self.raster is not None else None

    @property
    def pending_frame(self) -> Optional[BoundingBox]:
        return self._pending_frame

    @property
    def inflight(self) -> Optional[RenderHandle]:
        return self._inflight

    def show_page(self, page: int) -> Optional[RenderHandle]:
        if self._pending_frame is not None and self._pending_frame.page != page:
            self._pending_frame = None
        if self._inflight is not None:
            if self._inflight.page == page:
                return self._inflight
            logger.debug("Cancelling render of page %d for page %d", self._inflight.page, page)
            self._inflight.cancel()
            self._inflight = None
        elif self.raster is not None and self.raster.page == page:
            self.current_page = page
            return None

        self.current_page = page
        handle = RenderHandle(page)
        self._inflight = handle
        self.rasterizer.start(handle, self._on_done, self._on_error)
        return handle

    def frame_region(self, box: BoundingBox) -> bool:
        """Frame ``box`` now if its page is on screen; otherwise defer it. Returns True if applied."""
        if self._inflight is None and self.rendered_page == box.page:
            self._pending_frame = None
            self.viewport.frame_region(box)
            return True
        self._pending_frame = box
        self.show_page(box.page)
        return False

    def cancel(self) -> None:
        if self._inflight is not None:
            self._inflight.cancel()
        self._inflight = None
        self._pending_frame = None

    def _is_current(self, handle: RenderHandle) -> bool:
        if handle is not self._inflight or handle.cancelled:
            logger.debug("Dropping stale render result for page %d", handle.page)
            return False
        return True

    def _on_done(self, handle: RenderHandle, raster: PageRaster) -> None:
        if not self._is_current(handle):
            return
        self._inflight = None
        self.raster = raster
        self.viewport.set_page_size(raster.width, raster.height)
        pending = self._pending_frame
        if pending is not None and pending.page == raster.page:
            self._pending_frame = None
            self.viewport.frame_region(pending)
        if self.on_page_ready is not None:
            self.on_page_ready(raster)

    def _on_error(self, handle: RenderHandle, exc: Exception) -> None:
        if not self._is_current(handle):
            return
        logger.error("Rendering page %d failed: %s", handle.page, exc)
        self._inflight = None
        self._pending_frame = None
        self.raster = None
        self.viewport.clear()
        if self.on_error is not None:
            self.on_error(exc)


__all__ = [
    "PageRaster",
    "PageRenderController",
    "Pdf2ImageRasterizer",
    "RenderHandle",
    "crop_region",
]
