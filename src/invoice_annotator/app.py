"""PyQt5 review window: page canvas with editable boxes and table grids, plus a field list."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Callable, List, Optional

from PyQt5.QtCore import QObject, QPointF, QRectF, Qt, QThread, pyqtSignal
from PyQt5.QtGui import QColor, QCursor, QImage, QPainter, QPen, QPixmap
from PyQt5.QtWidgets import (
    QAction,
    QApplication,
    QComboBox,
    QFileDialog,
    QHBoxLayout,
    QInputDialog,
    QLabel,
    QLineEdit,
    QListWidget,
    QListWidgetItem,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QSplitter,
    QVBoxLayout,
    QWidget,
)

from .annotation_core import (
    InvoiceField,
    LineItemField,
    LineItemRow,
    PartyField,
    TableRegion,
    get_confidence,
    get_value,
    locator_path,
    value_locators,
)
from .config import AppConfig, configure_logging, load_app_config, load_default_config
from .errors import DocumentError, ExtractionError
from .gemini_extraction import GeminiExtractionClient
from .interaction import GestureKind
from .rendering import PageRaster
from .session import ReviewSession
from .tariff import lookup_tariff

logger = logging.getLogger("invoice_annotator.app")

_LOCATOR_ROLE = Qt.UserRole + 1


def confidence_color(confidence: Optional[float]) -> QColor:
    if confidence is None:
        return QColor("#9e9e9e")
    if confidence >= 0.9:
        return QColor("#2e7d32")
    if confidence >= 0.7:
        return QColor("#f9a825")
    return QColor("#c62828")


def _line_index(locator: Any) -> Optional[int]:
    if isinstance(locator, (LineItemField, LineItemRow)):
        return locator.index
    return None


def pil_to_qimage(image: Any) -> QImage:
    rgb = image.convert("RGB")
    width, height = rgb.size
    data = rgb.tobytes("raw", "RGB")
    return QImage(data, width, height, 3 * width, QImage.Format_RGB888).copy()


class UiDispatcher(QObject):
    """Marshals callbacks from worker threads onto the GUI thread."""

    posted = pyqtSignal(object)

    def __init__(self, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self.posted.connect(self._run, Qt.QueuedConnection)

    def post(self, callback: Callable[[], None]) -> None:
        self.posted.emit(callback)

    def _run(self, callback: Callable[[], None]) -> None:
        callback()


class PageCanvas(QWidget):
    data_changed = pyqtSignal()
    selection_finished = pyqtSignal(object)

    def __init__(self, session: ReviewSession, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.session = session
        self._pixmap: Optional[QPixmap] = None
        self._is_panning = False
        self._pan_button: Optional[int] = None
        self._pan_last = QPointF()
        self.setMouseTracking(True)
        self.setFocusPolicy(Qt.StrongFocus)
        self.setMinimumSize(480, 480)

    @property
    def settings(self):
        return self.session.config.viewport

    def set_raster(self, raster: Optional[PageRaster]) -> None:
        self._pixmap = QPixmap.fromImage(pil_to_qimage(raster.image)) if raster is not None else None
        self.update()

    def resizeEvent(self, event) -> None:
        self.session.viewport.set_viewport_size(self.width(), self.height())
        super().resizeEvent(event)

    def _page(self) -> Optional[int]:
        renderer = self.session.renderer
        if renderer is None or renderer.raster is None:
            return None
        return renderer.raster.page

    # Painting

    def paintEvent(self, event) -> None:
        painter = QPainter(self)
        painter.fillRect(self.rect(), QColor("#3c3f41"))
        page = self._page()
        viewport = self.session.viewport
        if self._pixmap is None or page is None or not viewport.has_page:
            painter.setPen(QColor("#bbbbbb"))
            painter.drawText(self.rect(), Qt.AlignCenter, "Open a PDF to start reviewing.")
            painter.end()
            return

        target = QRectF(
            viewport.pan_x,
            viewport.pan_y,
            viewport.page_width * viewport.scale,
            viewport.page_height * viewport.scale,
        )
        painter.setRenderHint(QPainter.SmoothPixmapTransform, True)
        painter.drawPixmap(target, self._pixmap, QRectF(self._pixmap.rect()))
        self._paint_tables(painter, page)
        self._paint_boxes(painter, page)
        self._paint_selection(painter)
        painter.end()

    def _paint_tables(self, painter: QPainter, page: int) -> None:
        data = self.session.data
        if data is None:
            return
        viewport = self.session.viewport
        painter.setPen(QPen(QColor("#7b1fa2"), 1, Qt.DashLine))
        for table in data.tables:
            box = table.bounding_box.ordered()
            if box.page != page:
                continue
            left, top = viewport.normalized_to_screen(box.x1, box.y1)
            right, bottom = viewport.normalized_to_screen(box.x2, box.y2)
            for y in table.rows:
                _x, sy = viewport.normalized_to_screen(0.0, y)
                painter.drawLine(QPointF(left, sy), QPointF(right, sy))
            for x in table.columns:
                sx, _y = viewport.normalized_to_screen(x, 0.0)
                painter.drawLine(QPointF(sx, top), QPointF(sx, bottom))

    def _paint_boxes(self, painter: QPainter, page: int) -> None:
        viewport = self.session.viewport
        handle = self.settings.handle_px
        for overlay_box in self.session.overlay.boxes_for_page(self.session.data, page):
            left, top, width, height = viewport.box_to_screen_rect(overlay_box.box)
            rect = QRectF(left, top, width, height)
            if overlay_box.active:
                painter.setPen(QPen(QColor("#1565c0"), 2))
                painter.fillRect(rect, QColor(21, 101, 192, 40))
                painter.drawRect(rect)
                for cx, cy in ((left, top), (left + width, top), (left, top + height), (left + width, top + height)):
                    painter.fillRect(QRectF(cx - handle / 2, cy - handle / 2, handle, handle), QColor("#1565c0"))
            else:
                painter.setPen(QPen(QColor("#ef6c00"), 1))
                painter.drawRect(rect)

    def _paint_selection(self, painter: QPainter) -> None:
        selection = self.session.selection.selection
        if selection is None:
            return
        left, top, width, height = self.session.viewport.box_to_screen_rect(selection)
        painter.setPen(QPen(QColor("#00897b"), 1, Qt.DashLine))
        painter.fillRect(QRectF(left, top, width, height), QColor(0, 137, 123, 50))
        painter.drawRect(QRectF(left, top, width, height))

    # Pointer routing

    def mousePressEvent(self, event) -> None:
        self.setFocus()
        if event.button() in (Qt.MiddleButton, Qt.RightButton):
            self._is_panning = True
            self._pan_button = int(event.button())
            self._pan_last = QPointF(event.pos())
            self.setCursor(Qt.ClosedHandCursor)
            event.accept()
            return
        page = self._page()
        if event.button() != Qt.LeftButton or page is None:
            super().mousePressEvent(event)
            return

        x, y = float(event.x()), float(event.y())
        session = self.session
        hit = session.grid_editor.hit_test_line(page, x, y, self.settings.gridline_tolerance_px)
        if hit is not None:
            table_index, axis, line_index = hit
            session.grid_editor.begin_drag_line(table_index, axis, line_index, x, y)
        elif not session.overlay.pointer_down(
            session.data,
            session.viewport,
            session.box_editor,
            page,
            x,
            y,
            self.settings.handle_px,
        ):
            session.selection.begin(page, x, y)
        self.update()
        event.accept()

    def mouseMoveEvent(self, event) -> None:
        if self._is_panning:
            delta = QPointF(event.pos()) - self._pan_last
            self._pan_last = QPointF(event.pos())
            self.session.viewport.pan_by(delta.x(), delta.y())
            self.update()
            event.accept()
            return
        x, y = float(event.x()), float(event.y())
        session = self.session
        kind = session.state.kind
        if kind in (GestureKind.dragging, GestureKind.resizing):
            session.box_editor.pointer_move(x, y)
        elif kind == GestureKind.gridline:
            session.grid_editor.drag_to(x, y)
        elif kind == GestureKind.selecting:
            session.selection.pointer_move(x, y)
        else:
            return
        self.update()
        event.accept()

    def mouseReleaseEvent(self, event) -> None:
        if self._is_panning and self._pan_button == int(event.button()):
            self._is_panning = False
            self._pan_button = None
            self.setCursor(Qt.ArrowCursor)
            event.accept()
            return
        if event.button() == Qt.LeftButton:
            self._finish_gesture()
            event.accept()
            return
        super().mouseReleaseEvent(event)

    def _finish_gesture(self) -> None:
        session = self.session
        kind = session.state.kind
        if kind in (GestureKind.dragging, GestureKind.resizing):
            session.box_editor.pointer_up()
            self.data_changed.emit()
        elif kind == GestureKind.gridline:
            session.grid_editor.end_drag()
            self.data_changed.emit()
        elif kind == GestureKind.selecting:
            self.selection_finished.emit(session.selection.pointer_up())
        self.update()

    def mouseDoubleClickEvent(self, event) -> None:
        page = self._page()
        if page is None or event.button() != Qt.LeftButton or self.session.data is None:
            super().mouseDoubleClickEvent(event)
            return
        # The first press of a double click may have opened a selection.
        self._finish_gesture()
        self.session.selection.clear()
        column = bool(event.modifiers() & Qt.AltModifier)
        if self.session.grid_editor.double_click(page, float(event.x()), float(event.y()), column_modifier=column):
            self.data_changed.emit()
        self.update()
        event.accept()

    def wheelEvent(self, event) -> None:
        delta = event.angleDelta().y()
        if event.modifiers() & Qt.ControlModifier:
            if delta:
                step = self.settings.zoom_step
                factor = step if delta > 0 else 1 / step
                self.session.viewport.zoom_by(factor, float(event.x()), float(event.y()))
                self.update()
            event.accept()
            return
        self.session.viewport.pan_by(event.angleDelta().x() / 4.0, delta / 4.0)
        self.update()
        event.accept()

    def keyPressEvent(self, event) -> None:
        page = self._page()
        if event.key() in (Qt.Key_Delete, Qt.Key_Backspace) and page is not None:
            pos = self.mapFromGlobal(QCursor.pos())
            editor = self.session.grid_editor
            hit = editor.hit_test_line(page, float(pos.x()), float(pos.y()), self.settings.gridline_tolerance_px)
            if hit is not None and self.session.state.is_idle():
                editor.delete_line(*hit)
                self.data_changed.emit()
                self.update()
                event.accept()
                return
        if event.key() == Qt.Key_Escape:
            self.session.selection.clear()
            self.update()
            event.accept()
            return
        super().keyPressEvent(event)

    def leaveEvent(self, event) -> None:
        if not self.session.state.is_idle() and not QApplication.mouseButtons() & Qt.LeftButton:
            self._finish_gesture()
        super().leaveEvent(event)

    def focusOutEvent(self, event) -> None:
        if not self.session.state.is_idle():
            self._finish_gesture()
        super().focusOutEvent(event)


class ExtractionWorker(QObject):
    completed = pyqtSignal(object)
    failed = pyqtSignal(object)
    finished = pyqtSignal()

    def __init__(
        self,
        document_path: Path,
        rasterizer: Any,
        page_count: int,
        client: Any,
        template: Any,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.document_path = document_path
        self.rasterizer = rasterizer
        self.page_count = page_count
        self.client = client
        self.template = template

    def run(self) -> None:
        try:
            rasters = [self.rasterizer.render(page) for page in range(1, self.page_count + 1)]
            response = self.client.extract(rasters, template=self.template)
        except (DocumentError, ExtractionError) as exc:
            self.failed.emit(exc)
        else:
            self.completed.emit((self.document_path, response, rasters))
        finally:
            self.finished.emit()


class ReviewWindow(QMainWindow):
    def __init__(self, config: Optional[AppConfig] = None) -> None:
        super().__init__()
        self.config = config or AppConfig()
        self.session = ReviewSession(self.config)
        self.dispatcher = UiDispatcher(self)
        self.session.dispatch = self.dispatcher.post
        self.session.on_page_ready = self._on_page_ready
        self.session.on_render_error = self._on_render_error
        self.session.on_active_changed = self._on_canvas_activated
        self.client = GeminiExtractionClient(self.config.extraction)
        self._extraction_thread: Optional[QThread] = None
        self._extraction_worker: Optional[ExtractionWorker] = None
        self._extraction_template: Any = None
        self._syncing_list = False
        self._syncing_overrides = False

        self.setWindowTitle("Invoice Annotator")
        self._build_ui()
        self._refresh_templates()
        self._update_actions()

    def _build_ui(self) -> None:
        toolbar = self.addToolBar("Main")
        self.open_action = QAction("Open PDF", self)
        self.open_action.triggered.connect(self.open_pdf_dialog)
        self.extract_action = QAction("Extract", self)
        self.extract_action.triggered.connect(self.start_extraction)
        self.save_template_action = QAction("Save Template", self)
        self.save_template_action.triggered.connect(self.save_template)
        self.export_action = QAction("Export XML", self)
        self.export_action.triggered.connect(self.export_xml)
        self.prev_action = QAction("Prev Page", self)
        self.prev_action.triggered.connect(lambda: self.step_page(-1))
        self.next_action = QAction("Next Page", self)
        self.next_action.triggered.connect(lambda: self.step_page(1))
        self.reset_view_action = QAction("Reset View", self)
        self.reset_view_action.triggered.connect(self.reset_view)

        self.template_combo = QComboBox()
        self.template_combo.setMinimumWidth(180)

        toolbar.addAction(self.open_action)
        toolbar.addSeparator()
        toolbar.addWidget(QLabel(" Template: "))
        toolbar.addWidget(self.template_combo)
        toolbar.addAction(self.extract_action)
        toolbar.addAction(self.save_template_action)
        toolbar.addAction(self.export_action)
        toolbar.addSeparator()
        toolbar.addAction(self.prev_action)
        toolbar.addAction(self.next_action)
        toolbar.addAction(self.reset_view_action)

        self.canvas = PageCanvas(self.session)
        self.canvas.data_changed.connect(self._refresh_field_list)
        self.canvas.selection_finished.connect(self._on_selection_finished)

        self.field_list = QListWidget()
        self.field_list.currentItemChanged.connect(self._on_field_selected)

        self.value_edit = QLineEdit()
        self.value_edit.setPlaceholderText("Value")
        self.value_edit.returnPressed.connect(self.apply_value)
        apply_btn = QPushButton("Apply")
        apply_btn.clicked.connect(self.apply_value)
        self.reextract_btn = QPushButton("Re-extract Selection")
        self.reextract_btn.clicked.connect(self.reextract_selection)
        self.add_line_btn = QPushButton("Add Line Item")
        self.add_line_btn.clicked.connect(self.add_line_item)
        self.remove_line_btn = QPushButton("Remove Line Item")
        self.remove_line_btn.clicked.connect(self.remove_line_item)
        self.tariff_label = QLabel("")
        self.tariff_label.setWordWrap(True)
        self.override_list = QListWidget()
        self.override_list.setMaximumHeight(120)
        self.override_list.itemChanged.connect(self._on_override_toggled)

        line_row = QHBoxLayout()
        line_row.addWidget(self.add_line_btn)
        line_row.addWidget(self.remove_line_btn)

        editor_row = QHBoxLayout()
        editor_row.addWidget(self.value_edit, 1)
        editor_row.addWidget(apply_btn)

        side = QWidget()
        side_layout = QVBoxLayout(side)
        side_layout.addWidget(QLabel("Fields"))
        side_layout.addWidget(self.field_list, 1)
        side_layout.addLayout(editor_row)
        side_layout.addWidget(self.reextract_btn)
        side_layout.addLayout(line_row)
        side_layout.addWidget(self.tariff_label)
        side_layout.addWidget(QLabel("CDS overrides"))
        side_layout.addWidget(self.override_list)

        splitter = QSplitter(Qt.Horizontal)
        splitter.addWidget(self.canvas)
        splitter.addWidget(side)
        splitter.setStretchFactor(0, 3)
        splitter.setStretchFactor(1, 1)
        self.setCentralWidget(splitter)
        self.resize(1400, 900)

    def _update_actions(self) -> None:
        has_doc = self.session.renderer is not None
        has_data = self.session.data is not None
        busy = self._extraction_thread is not None
        self.open_action.setEnabled(not busy)
        self.extract_action.setEnabled(has_doc and not busy)
        self.save_template_action.setEnabled(has_data)
        self.export_action.setEnabled(has_data)
        self.prev_action.setEnabled(has_doc)
        self.next_action.setEnabled(has_doc)
        self.reextract_btn.setEnabled(has_data and has_doc)
        self.add_line_btn.setEnabled(has_data)
        self.remove_line_btn.setEnabled(has_data and _line_index(self._selected_locator()) is not None)
        page = self.session.current_page
        if has_doc and page is not None:
            self.statusBar().showMessage(f"Page {page} / {self.session.page_count}")

    # Document and pages

    def open_pdf_dialog(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, "Open invoice PDF", "", "PDF files (*.pdf)")
        if path:
            self.open_pdf(Path(path))

    def open_pdf(self, path: Path) -> None:
        if self._extraction_thread is not None:
            return
        try:
            self.session.open_document(path)
        except DocumentError as exc:
            self.canvas.set_raster(None)
            QMessageBox.warning(self, "Document error", str(exc))
        else:
            self.setWindowTitle(f"Invoice Annotator - {path.name}")
        self._refresh_field_list()
        self._update_actions()

    def step_page(self, delta: int) -> None:
        page = self.session.current_page
        if page is None:
            return
        self.session.show_page(page + delta)
        self._update_actions()

    def reset_view(self) -> None:
        self.session.viewport.reset()
        self.canvas.update()

    def _on_page_ready(self, raster: PageRaster) -> None:
        self.canvas.set_raster(raster)
        self._update_actions()

    def _on_render_error(self, exc: Exception) -> None:
        self.canvas.set_raster(None)
        QMessageBox.warning(self, "Document error", str(exc))
        self._update_actions()

    # Extraction

    def _refresh_templates(self) -> None:
        current = self.template_combo.currentData()
        self.template_combo.clear()
        self.template_combo.addItem("Auto (match shipper)", None)
        for template in self.session.store.list_templates():
            self.template_combo.addItem(template.vendor_name, template.id)
        index = self.template_combo.findData(current)
        self.template_combo.setCurrentIndex(max(0, index))

    def start_extraction(self) -> None:
        if self._extraction_thread is not None or self.session.renderer is None:
            return
        template_id = self.template_combo.currentData()
        self._extraction_template = self.session.store.get_template(template_id) if template_id else None

        worker = ExtractionWorker(
            self.session.document_path,
            self.session.rasterizer,
            self.session.page_count,
            self.client,
            self._extraction_template,
        )
        thread = QThread(self)
        worker.moveToThread(thread)
        thread.started.connect(worker.run)
        worker.completed.connect(self._on_extraction_completed)
        worker.failed.connect(self._on_extraction_failed)
        worker.finished.connect(thread.quit)
        worker.finished.connect(worker.deleteLater)
        thread.finished.connect(thread.deleteLater)
        thread.finished.connect(self._on_extraction_finished)

        self._extraction_worker = worker
        self._extraction_thread = thread
        self._update_actions()
        self.statusBar().showMessage(f"Extracting with {self.config.extraction.model}...")
        thread.start()

    def _on_extraction_completed(self, payload: Any) -> None:
        document_path, response, rasters = payload
        result = self.session.apply_extraction(response, rasters, self._extraction_template, document_path=document_path)
        if result is None:
            self.statusBar().showMessage(f"Discarded extraction for {document_path.name}", 5000)
            return
        self._refresh_field_list()
        self.canvas.update()
        if result.template_applied:
            self.statusBar().showMessage(f"Applied template for {result.template_applied}", 5000)
        else:
            self.statusBar().showMessage("Extraction complete", 5000)

    def _on_extraction_failed(self, exc: Exception) -> None:
        if isinstance(exc, DocumentError):
            self.session.last_error = exc
            QMessageBox.warning(self, "Document error", str(exc))
        else:
            self.session.extraction_failed(exc)
            QMessageBox.warning(self, "Extraction error", str(exc))

    def _on_extraction_finished(self) -> None:
        self._extraction_thread = None
        self._extraction_worker = None
        self._update_actions()

    # Field list

    def _refresh_field_list(self) -> None:
        data = self.session.data
        active = self.session.active_locator
        self._syncing_list = True
        try:
            self.field_list.clear()
            if data is None:
                return
            for locator in value_locators(data):
                value = get_value(data, locator)
                item = QListWidgetItem(f"{locator_path(locator).replace('.boundingBox', '')}: {value}")
                item.setData(_LOCATOR_ROLE, locator)
                item.setForeground(confidence_color(get_confidence(data, locator)))
                self.field_list.addItem(item)
                if locator == active:
                    self.field_list.setCurrentItem(item)
            for index in range(len(data.line_items)):
                self._add_region_item(LineItemRow(index), f"Line item {index + 1} row", active)
            for index in range(len(data.tables)):
                self._add_region_item(TableRegion(index), f"Table {index + 1}", active)
        finally:
            self._syncing_list = False
        self._update_actions()

    def _add_region_item(self, locator: Any, label: str, active: Any) -> None:
        item = QListWidgetItem(label)
        item.setData(_LOCATOR_ROLE, locator)
        self.field_list.addItem(item)
        if locator == active:
            self.field_list.setCurrentItem(item)

    def _selected_locator(self) -> Any:
        item = self.field_list.currentItem()
        return item.data(_LOCATOR_ROLE) if item is not None else None

    def _on_field_selected(self, current: Optional[QListWidgetItem], _previous: Optional[QListWidgetItem]) -> None:
        locator = current.data(_LOCATOR_ROLE) if current is not None else None
        is_value = isinstance(locator, (InvoiceField, PartyField, LineItemField))
        self.value_edit.setEnabled(is_value)
        self.value_edit.setText(str(get_value(self.session.data, locator)) if is_value else "")
        self._show_tariff(locator)
        self._update_actions()
        if self._syncing_list or locator is None:
            return
        try:
            self.session.activate(locator)
        except (IndexError, DocumentError) as exc:
            logger.warning("Could not activate %s: %s", locator_path(locator), exc)
        self.canvas.update()

    def _on_canvas_activated(self, locator: Any) -> None:
        self._syncing_list = True
        try:
            for row in range(self.field_list.count()):
                item = self.field_list.item(row)
                if item.data(_LOCATOR_ROLE) == locator:
                    self.field_list.setCurrentItem(item)
                    break
        finally:
            self._syncing_list = False

    def _show_tariff(self, locator: Any) -> None:
        text = ""
        codes: List[str] = []
        applied: List[str] = []
        index = _line_index(locator)
        if index is not None and self.session.data is not None and index < len(self.session.data.line_items):
            item = self.session.data.line_items[index]
            entry = lookup_tariff(item.hs_code)
            if entry is not None:
                text = entry.description
                codes.extend(entry.suggested_overrides)
            applied = list(item.cds_overrides)
            codes.extend(code for code in applied if code not in codes)
        self.tariff_label.setText(text)

        self._syncing_overrides = True
        try:
            self.override_list.clear()
            for code in codes:
                row = QListWidgetItem(code)
                row.setFlags(row.flags() | Qt.ItemIsUserCheckable)
                row.setCheckState(Qt.Checked if code in applied else Qt.Unchecked)
                row.setData(_LOCATOR_ROLE, index)
                self.override_list.addItem(row)
        finally:
            self._syncing_overrides = False

    def _on_override_toggled(self, row: QListWidgetItem) -> None:
        if self._syncing_overrides:
            return
        index = row.data(_LOCATOR_ROLE)
        applied = self.session.toggle_line_override(index, row.text())
        checked = row.checkState() == Qt.Checked
        if checked != (row.text() in applied):
            logger.warning("Override %s on line item %d is out of sync", row.text(), index + 1)
        self.statusBar().showMessage(f"Line item {index + 1} overrides: {', '.join(applied) or 'none'}", 5000)

    def add_line_item(self) -> None:
        if self.session.data is None:
            return
        index = self.session.add_line_item()
        self._refresh_field_list()
        self._select_locator(LineItemField(index, "description"))

    def remove_line_item(self) -> None:
        index = _line_index(self._selected_locator())
        if index is None or self.session.data is None:
            return
        self.session.remove_line_item(index)
        self._refresh_field_list()
        self.canvas.update()

    def _select_locator(self, locator: Any) -> None:
        for row in range(self.field_list.count()):
            item = self.field_list.item(row)
            if item.data(_LOCATOR_ROLE) == locator:
                self.field_list.setCurrentItem(item)
                return

    def apply_value(self) -> None:
        locator = self._selected_locator()
        if not isinstance(locator, (InvoiceField, PartyField, LineItemField)):
            return
        self.session.edit_value(locator, self.value_edit.text())
        self._refresh_field_list()

    def _on_selection_finished(self, selection: Any) -> None:
        if selection is not None:
            self.statusBar().showMessage("Selection ready: pick a field and press Re-extract Selection.", 5000)

    def reextract_selection(self) -> None:
        locator = self._selected_locator()
        if not isinstance(locator, (InvoiceField, PartyField, LineItemField)):
            QMessageBox.warning(self, "Re-extract", "Select a field in the list first.")
            return
        QApplication.setOverrideCursor(Qt.WaitCursor)
        try:
            self.session.reextract_selection(self.client, locator)
        except (ValueError, DocumentError, ExtractionError) as exc:
            QMessageBox.warning(self, "Re-extract", str(exc))
        finally:
            QApplication.restoreOverrideCursor()
        self._refresh_field_list()
        self.canvas.update()

    # Output

    def save_template(self) -> None:
        data = self.session.data
        if data is None:
            return
        name, ok = QInputDialog.getText(self, "Save Template", "Vendor name:", text=data.shipper.name)
        if not ok:
            return
        try:
            template = self.session.save_as_template(name)
        except (ValueError, OSError) as exc:
            QMessageBox.warning(self, "Save template", str(exc))
            return
        self._refresh_templates()
        self.statusBar().showMessage(f"Saved template for {template.vendor_name}", 5000)

    def export_xml(self) -> None:
        if self.session.data is None:
            return
        default_name = f"{self.session.data.invoice_number or 'declaration'}.xml"
        path, _ = QFileDialog.getSaveFileName(self, "Export CDS XML", default_name, "XML files (*.xml)")
        if not path:
            return
        try:
            Path(path).write_text(self.session.export_xml(), encoding="utf-8")
        except OSError as exc:
            QMessageBox.warning(self, "Export XML", str(exc))
            return
        self.statusBar().showMessage(f"Exported {path}", 5000)

    def closeEvent(self, event) -> None:
        thread = self._extraction_thread
        if thread is not None:
            thread.quit()
            thread.wait()
        self.session.close_document()
        super().closeEvent(event)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Review and correct machine-extracted invoice data.")
    parser.add_argument("pdf", nargs="?", default=None, help="Invoice PDF to open.")
    parser.add_argument("--config", default=None, help="Path to invoice_annotator.yaml.")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = load_app_config(args.config) if args.config else load_default_config()
    except (FileNotFoundError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    configure_logging(config.logging)

    if hasattr(Qt, "AA_EnableHighDpiScaling"):
        QApplication.setAttribute(Qt.AA_EnableHighDpiScaling, True)
    if hasattr(Qt, "AA_UseHighDpiPixmaps"):
        QApplication.setAttribute(Qt.AA_UseHighDpiPixmaps, True)

    app = QApplication(sys.argv)
    window = ReviewWindow(config)
    window.show()
    if args.pdf:
        window.open_pdf(Path(args.pdf))
    return app.exec_()


if __name__ == "__main__":
    raise SystemExit(main())
