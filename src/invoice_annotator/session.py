"""Review session: one open document, its extraction and the edits made to it.

Nothing here touches Qt; the window in ``app`` forwards events and repaints
from the state kept here.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, List, Optional

from .annotation_core import FieldLocator, LineItemField, LineItemRow, ValueLocator, get_box, set_box, set_value
from .cds_xml import export_cds_xml
from .config import AppConfig
from .errors import DocumentError, ExtractionError
from .interaction import BoxEdit, BoxEditController, InteractionState, SelectionController
from .normalizer import normalize_extraction
from .overlay import AnnotationOverlay
from .reconciliation import ReconciliationResult, reconcile
from .rendering import PageRaster, PageRenderController, Pdf2ImageRasterizer, crop_region
from .schemas import BoundingBox, InvoiceData, LineItem, VendorTemplate
from .table_grid import TableGridEditor
from .tariff import toggle_override
from .template_store import TemplateStore
from .viewport import ViewportTransform

logger = logging.getLogger("invoice_annotator.session")


class ReviewSession:
    def __init__(
        self,
        config: Optional[AppConfig] = None,
        store: Optional[TemplateStore] = None,
        viewport: Optional[ViewportTransform] = None,
    ) -> None:
        self.config = config or AppConfig()
        self.store = store or TemplateStore(self.config.templates.store_path)
        self.viewport = viewport or ViewportTransform(settings=self.config.viewport)
        self.state = InteractionState()
        self.overlay = AnnotationOverlay(on_activate=self._overlay_activated)
        self.box_editor = BoxEditController(InvoiceData(), self.viewport, self.state)
        self.selection = SelectionController(self.viewport, self.state, self.config.viewport.min_selection)
        self.grid_editor = TableGridEditor(InvoiceData(), self.viewport, self.state)

        self.dispatch: Optional[Callable[[Callable[[], None]], None]] = None
        self.on_page_ready: Optional[Callable[[PageRaster], None]] = None
        self.on_render_error: Optional[Callable[[Exception], None]] = None
        self.on_active_changed: Optional[Callable[[FieldLocator], None]] = None

        self.document_path: Optional[Path] = None
        self.rasterizer: Any = None
        self.renderer: Optional[PageRenderController] = None
        self.page_count = 0
        self.extracted: Optional[InvoiceData] = None
        self.data: Optional[InvoiceData] = None
        self.template_applied: Optional[str] = None
        self.last_error: Optional[Exception] = None

    @property
    def active_locator(self) -> Optional[FieldLocator]:
        return self.overlay.active_locator

    @property
    def current_page(self) -> Optional[int]:
        return self.renderer.current_page if self.renderer is not None else None

    def _set_data(self, data: Optional[InvoiceData]) -> None:
        self.state.end()
        self.selection.clear()
        self.overlay.set_active(None)
        self.data = data
        self.box_editor.data = data if data is not None else InvoiceData()
        self.grid_editor.data = self.box_editor.data

    def _default_rasterizer(self, path: Path) -> Pdf2ImageRasterizer:
        return Pdf2ImageRasterizer(
            path,
            dpi=self.config.render.dpi,
            use_pdftocairo=self.config.render.use_pdftocairo,
            dispatch=self.dispatch,
        )

    def close_document(self) -> None:
        if self.renderer is not None:
            self.renderer.cancel()
        self.document_path = None
        self.rasterizer = None
        self.renderer = None
        self.page_count = 0
        self.extracted = None
        self.template_applied = None
        self._set_data(None)
        self.viewport.clear()

    def open_document(self, path: Path | str, rasterizer_factory: Optional[Callable[[Path], Any]] = None) -> int:
        """Open ``path`` and start rendering its first page. Returns the page count."""
        self.close_document()
        path = Path(path)
        factory = rasterizer_factory or self._default_rasterizer
        try:
            rasterizer = factory(path)
            page_count = rasterizer.page_count()
        except DocumentError as exc:
            logger.exception("Could not open %s", path)
            self.last_error = exc
            raise

        self.last_error = None
        self.document_path = path
        self.rasterizer = rasterizer
        self.page_count = page_count
        self.renderer = PageRenderController(
            rasterizer,
            self.viewport,
            on_page_ready=self._page_ready,
            on_error=self._render_failed,
        )
        self.viewport.reset()
        self.renderer.show_page(1)
        logger.info("Opened %s (%d page(s))", path.name, page_count)
        return page_count

    def _page_ready(self, raster: PageRaster) -> None:
        if self.on_page_ready is not None:
            self.on_page_ready(raster)

    def _render_failed(self, exc: Exception) -> None:
        self.last_error = exc
        if self.on_render_error is not None:
            self.on_render_error(exc)

    def _overlay_activated(self, locator: FieldLocator) -> None:
        if self.on_active_changed is not None:
            self.on_active_changed(locator)

    def show_page(self, page: int) -> None:
        if self.renderer is None:
            raise DocumentError("No document is open.")
        self.renderer.show_page(max(1, min(self.page_count, int(page))))

    def _require_document(self) -> PageRenderController:
        if self.renderer is None or self.rasterizer is None:
            raise DocumentError("No document is open.")
        return self.renderer

    def _require_data(self) -> InvoiceData:
        if self.data is None:
            raise ValueError("No invoice data to work with; run extraction first.")
        return self.data

    def page_rasters(self) -> List[PageRaster]:
        self._require_document()
        try:
            return [self.rasterizer.render(page) for page in range(1, self.page_count + 1)]
        except DocumentError as exc:
            logger.exception("Could not rasterize %s", self.document_path)
            self.last_error = exc
            raise

    def run_extraction(self, client: Any, preselected: Optional[VendorTemplate] = None) -> ReconciliationResult:
        """Extract, normalize and reconcile. Held data is left untouched on failure."""
        rasters = self.page_rasters()
        try:
            response = client.extract(rasters, template=preselected)
        except ExtractionError as exc:
            self.extraction_failed(exc)
            raise
        return self.apply_extraction(response, rasters, preselected)

    def extraction_failed(self, exc: Exception) -> None:
        logger.error("Extraction failed for %s: %s", self.document_path, exc)
        self.last_error = exc

    def apply_extraction(
        self,
        response: Any,
        rasters: List[PageRaster],
        preselected: Optional[VendorTemplate] = None,
        document_path: Optional[Path] = None,
    ) -> Optional[ReconciliationResult]:
        """Fold a finished extraction into the session.

        ``document_path`` names the document the extraction ran on; a result
        for any other document is dropped and None returned.
        """
        if document_path is not None and document_path != self.document_path:
            logger.info("Dropping extraction result for %s; %s is open now", document_path, self.document_path)
            return None
        page_sizes = {index: (raster.width, raster.height) for index, raster in enumerate(rasters)}
        extracted = normalize_extraction(response, page_sizes)
        result = reconcile(extracted, self.store.list_templates(), preselected, self.config.templates)
        self.last_error = None
        self.extracted = extracted
        self.template_applied = result.template_applied
        self._set_data(result.data)
        if result.template_applied:
            logger.info("Applied vendor template %r", result.template_applied)
        return result

    def activate(self, locator: FieldLocator) -> bool:
        """Make ``locator`` the active box and frame it; True if framed immediately."""
        box = get_box(self._require_data(), locator)
        self.overlay.set_active(locator)
        if box is None or self.renderer is None:
            return False
        return self.renderer.frame_region(box)

    def edit_value(self, locator: ValueLocator, value: Any) -> None:
        set_value(self._require_data(), locator, value)

    def toggle_line_override(self, index: int, code: str) -> List[str]:
        item = self._require_data().line_items[index]
        item.cds_overrides = toggle_override(item.cds_overrides, code)
        return item.cds_overrides

    def add_line_item(self) -> int:
        """Append an empty line item and return its index."""
        data = self._require_data()
        data.line_items.append(LineItem())
        return len(data.line_items) - 1

    def remove_line_item(self, index: int) -> LineItem:
        """Remove a line item; state tied to it or to the items after it is dropped."""
        data = self._require_data()
        if not 0 <= index < len(data.line_items):
            raise IndexError(f"Line item {index} does not exist.")

        def _shifted(locator: Any) -> bool:
            return isinstance(locator, (LineItemField, LineItemRow)) and locator.index >= index

        gesture = self.state.gesture
        if gesture is not None and isinstance(gesture.payload, BoxEdit) and _shifted(gesture.payload.locator):
            self.state.end()
        if _shifted(self.overlay.active_locator):
            self.overlay.set_active(None)
        removed = data.line_items.pop(index)
        logger.debug("Removed line item %d", index)
        return removed

    def apply_reextracted_text(self, locator: ValueLocator, text: str) -> BoundingBox:
        """Write ``text`` into the field and move its box to the current selection."""
        data = self._require_data()
        selection = self.selection.selection
        if selection is None:
            raise ValueError("Draw a selection first.")
        set_value(data, locator, text)
        set_box(data, locator, selection)
        self.selection.clear()
        return selection

    def reextract_selection(self, client: Any, locator: ValueLocator) -> BoundingBox:
        renderer = self._require_document()
        selection = self.selection.selection
        if selection is None:
            raise ValueError("Draw a selection first.")
        raster = renderer.raster
        if raster is None or raster.page != selection.page:
            raise DocumentError(f"Page {selection.page} is not rendered.")
        try:
            text = client.extract_text(crop_region(raster, selection))
        except ExtractionError as exc:
            logger.exception("Re-extraction failed for %s", self.document_path)
            self.last_error = exc
            raise
        return self.apply_reextracted_text(locator, text)

    def save_as_template(self, vendor_name: Optional[str] = None) -> VendorTemplate:
        data = self._require_data()
        template = self.store.save_template(vendor_name or data.shipper.name, data)
        logger.info("Saved template for %r", template.vendor_name)
        return template

    def export_xml(self) -> str:
        return export_cds_xml(self._require_data())


__all__ = ["ReviewSession"]
