from __future__ import annotations

import io

import pytest
from PIL import Image

from invoice_annotator import rendering
from invoice_annotator.errors import DocumentError
from invoice_annotator.rendering import PageRaster, PageRenderController, Pdf2ImageRasterizer, RenderHandle, crop_region
from invoice_annotator.schemas import BoundingBox
from invoice_annotator.viewport import ViewportTransform


class _ManualRasterizer:
    """Records render requests; tests complete them explicitly."""

    def __init__(self) -> None:
        self.started = []

    def start(self, handle, on_done, on_error):
        self.started.append((handle, on_done, on_error))
        return handle

    def finish(self, index: int, width: int = 1000, height: int = 2000) -> None:
        handle, on_done, _on_error = self.started[index]
        on_done(handle, PageRaster(page=handle.page, image=None, width=width, height=height))

    def fail(self, index: int, message: str = "broken") -> None:
        handle, _on_done, on_error = self.started[index]
        on_error(handle, DocumentError(message))


def _controller():
    rasterizer = _ManualRasterizer()
    viewport = ViewportTransform(800, 600)
    ready = []
    errors = []
    controller = PageRenderController(rasterizer, viewport, on_page_ready=ready.append, on_error=errors.append)
    return rasterizer, viewport, controller, ready, errors


def test_switching_page_cancels_in_flight_render_and_drops_its_result() -> None:
    rasterizer, viewport, controller, ready, _errors = _controller()
    first = controller.show_page(1)
    second = controller.show_page(2)

    assert first.cancelled is True
    assert second.cancelled is False

    rasterizer.finish(0, width=111, height=222)
    assert ready == []
    assert not viewport.has_page

    rasterizer.finish(1)
    assert [r.page for r in ready] == [2]
    assert controller.rendered_page == 2
    assert (viewport.page_width, viewport.page_height) == (1000, 2000)
    assert controller.inflight is None


def test_repeat_request_for_in_flight_or_rendered_page_is_a_no_op() -> None:
    rasterizer, _viewport, controller, _ready, _errors = _controller()
    handle = controller.show_page(1)
    assert controller.show_page(1) is handle
    rasterizer.finish(0)

    assert controller.show_page(1) is None
    assert len(rasterizer.started) == 1


def test_frame_request_for_rendered_page_applies_immediately() -> None:
    rasterizer, viewport, controller, _ready, _errors = _controller()
    controller.show_page(1)
    rasterizer.finish(0)

    box = BoundingBox(page=1, x1=0.1, y1=0.1, x2=0.3, y2=0.2)
    assert controller.frame_region(box) is True
    expected = ViewportTransform(800, 600)
    expected.set_page_size(1000, 2000)
    expected.frame_region(box)
    assert viewport.state() == expected.state()


def test_frame_request_for_other_page_is_deferred_and_last_write_wins() -> None:
    rasterizer, viewport, controller, _ready, _errors = _controller()
    controller.show_page(1)
    rasterizer.finish(0)
    before = viewport.state()

    first = BoundingBox(page=3, x1=0.1, y1=0.1, x2=0.2, y2=0.2)
    last = BoundingBox(page=3, x1=0.5, y1=0.5, x2=0.9, y2=0.6)
    assert controller.frame_region(first) is False
    assert controller.frame_region(last) is False
    assert viewport.state() == before
    assert len(rasterizer.started) == 2
    assert controller.pending_frame == last

    rasterizer.finish(1)
    expected = ViewportTransform(800, 600)
    expected.set_page_size(1000, 2000)
    expected.frame_region(last)
    assert viewport.state() == expected.state()
    assert controller.pending_frame is None

    # Applied once: a later render of the same page does not re-frame.
    viewport.pan_by(5, 5)
    moved = viewport.state()
    controller.show_page(1)
    rasterizer.finish(2)
    controller.show_page(3)
    rasterizer.finish(3)
    assert viewport.state() == moved


def test_navigating_elsewhere_drops_pending_frame() -> None:
    rasterizer, _viewport, controller, _ready, _errors = _controller()
    controller.frame_region(BoundingBox(page=2, x1=0.1, y1=0.1, x2=0.2, y2=0.2))
    controller.show_page(4)
    assert controller.pending_frame is None
    assert rasterizer.started[0][0].cancelled is True


def test_render_error_clears_viewport_and_reports() -> None:
    rasterizer, viewport, controller, _ready, errors = _controller()
    controller.show_page(1)
    rasterizer.finish(0)
    controller.show_page(2)
    rasterizer.fail(1, "bad page")

    assert [str(e) for e in errors] == ["bad page"]
    assert controller.raster is None
    assert not viewport.has_page
    assert viewport.state() == (1.0, 0.0, 0.0)


def test_cancelled_error_is_ignored() -> None:
    rasterizer, _viewport, controller, _ready, errors = _controller()
    controller.show_page(1)
    controller.cancel()
    rasterizer.fail(0)
    assert errors == []


def test_render_handle_cancel() -> None:
    handle = RenderHandle(3)
    assert handle.cancelled is False
    handle.cancel()
    assert handle.cancelled is True


def test_crop_region_returns_png_of_selection() -> None:
    image = Image.new("RGB", (200, 100), "white")
    raster = PageRaster(page=1, image=image, width=200, height=100)

    png = crop_region(raster, BoundingBox(page=1, x1=0.5, y1=0.6, x2=0.25, y2=0.2))
    cropped = Image.open(io.BytesIO(png))
    assert cropped.format == "PNG"
    assert cropped.size == (50, 40)

    with pytest.raises(ValueError):
        crop_region(raster, BoundingBox(page=1, x1=1.2, y1=0.1, x2=1.5, y2=0.2))


def test_rasterizer_wraps_pdf2image_failures(tmp_path, monkeypatch) -> None:
    pdf = tmp_path / "doc.pdf"
    pdf.write_bytes(b"%PDF-1.4")

    def _raise(*_args, **_kwargs):
        raise rendering.PDFPageCountError("Unable to get page count.")

    monkeypatch.setattr(rendering, "pdfinfo_from_path", _raise)
    monkeypatch.setattr(rendering, "convert_from_path", _raise)
    rasterizer = Pdf2ImageRasterizer(pdf)

    with pytest.raises(DocumentError):
        rasterizer.page_count()
    with pytest.raises(DocumentError):
        rasterizer.render(1)
    with pytest.raises(DocumentError):
        Pdf2ImageRasterizer(tmp_path / "missing.pdf").page_count()


def test_rasterizer_renders_single_page(tmp_path, monkeypatch) -> None:
    pdf = tmp_path / "doc.pdf"
    pdf.write_bytes(b"%PDF-1.4")
    calls = []

    def _convert(path, **kwargs):
        calls.append((path, kwargs))
        return [Image.new("RGB", (30, 40))]

    monkeypatch.setattr(rendering, "convert_from_path", _convert)
    monkeypatch.setattr(rendering, "pdfinfo_from_path", lambda _path: {"Pages": 3})
    rasterizer = Pdf2ImageRasterizer(pdf, dpi=72)

    assert rasterizer.page_count() == 3
    raster = rasterizer.render(2)
    assert (raster.page, raster.width, raster.height) == (2, 30, 40)
    assert calls[0][1]["first_page"] == 2
    assert calls[0][1]["last_page"] == 2
    assert calls[0][1]["dpi"] == 72


def test_rasterizer_start_posts_result_through_dispatch(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(rendering, "convert_from_path", lambda *_a, **_k: [Image.new("RGB", (10, 10))])
    posted = []
    rasterizer = Pdf2ImageRasterizer(tmp_path / "doc.pdf", dispatch=posted.append)
    done = []

    class _ImmediateThread:
        def __init__(self, target, name, daemon):
            self.target = target

        def start(self):
            self.target()

    monkeypatch.setattr(rendering.threading, "Thread", _ImmediateThread)
    handle = rasterizer.start(RenderHandle(1), lambda h, r: done.append((h, r)), lambda h, e: None)

    assert done == []
    assert len(posted) == 1
    posted[0]()
    assert done[0][0] is handle
    assert done[0][1].width == 10


def test_rasterizer_without_dispatch_renders_on_the_calling_thread(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(rendering, "convert_from_path", lambda *_a, **_k: [Image.new("RGB", (40, 80))])

    def _no_threads(*_args, **_kwargs):
        raise AssertionError("no worker thread expected")

    monkeypatch.setattr(rendering.threading, "Thread", _no_threads)
    viewport = ViewportTransform(800, 600)
    ready = []
    controller = PageRenderController(Pdf2ImageRasterizer(tmp_path / "doc.pdf"), viewport, on_page_ready=ready.append)

    controller.show_page(2)
    assert [r.page for r in ready] == [2]
    assert controller.rendered_page == 2
    assert controller.inflight is None
    assert (viewport.page_width, viewport.page_height) == (40, 80)


def test_rasterizer_without_dispatch_reports_errors_synchronously(tmp_path, monkeypatch) -> None:
    def _raise(*_args, **_kwargs):
        raise rendering.PDFSyntaxError("broken")

    monkeypatch.setattr(rendering, "convert_from_path", _raise)
    errors = []
    controller = PageRenderController(
        Pdf2ImageRasterizer(tmp_path / "doc.pdf"), ViewportTransform(800, 600), on_error=errors.append
    )
    controller.show_page(1)
    assert len(errors) == 1
    assert isinstance(errors[0], DocumentError)
    assert controller.inflight is None
