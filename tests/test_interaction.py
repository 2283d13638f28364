from __future__ import annotations

import pytest

from invoice_annotator.annotation_core import InvoiceField, PartyField, get_box
from invoice_annotator.interaction import (
    BoxEditController,
    Corner,
    GestureKind,
    InteractionState,
    SelectionController,
)
from invoice_annotator.schemas import BoundingBox, FieldMetadata, InvoiceData
from invoice_annotator.viewport import ViewportTransform

LOCATOR = InvoiceField("invoice_number")


def _setup():
    data = InvoiceData()
    data.fields.invoice_number = FieldMetadata(bounding_box=BoundingBox(page=1, x1=0.1, y1=0.1, x2=0.3, y2=0.2))
    viewport = ViewportTransform(1000, 1000)
    viewport.set_page_size(1000, 1000)
    state = InteractionState()
    return data, viewport, state, BoxEditController(data, viewport, state)


def _coords(box: BoundingBox):
    return (box.x1, box.y1, box.x2, box.y2)


def test_drag_translates_box_from_its_snapshot() -> None:
    data, _viewport, state, controller = _setup()
    assert controller.begin_drag(LOCATOR, 150, 150) is True
    assert state.kind == GestureKind.dragging

    controller.pointer_move(200, 160)
    box = controller.pointer_move(250, 200)
    assert _coords(box) == pytest.approx((0.2, 0.15, 0.4, 0.25))

    final = controller.pointer_up()
    assert _coords(final) == pytest.approx((0.2, 0.15, 0.4, 0.25))
    assert state.is_idle()


def test_resize_may_invert_mid_gesture_and_is_ordered_on_release() -> None:
    data, _viewport, _state, controller = _setup()
    assert controller.begin_resize(LOCATOR, Corner.br, 300, 200) is True

    controller.pointer_move(50, 50)
    mid = get_box(data, LOCATOR)
    assert not mid.is_ordered()
    assert _coords(mid) == pytest.approx((0.1, 0.1, 0.05, 0.05))

    final = controller.pointer_up()
    assert final.is_ordered()
    assert _coords(get_box(data, LOCATOR)) == pytest.approx((0.05, 0.05, 0.1, 0.1))


def test_top_left_resize_moves_only_that_corner() -> None:
    data, _viewport, _state, controller = _setup()
    controller.begin_resize(LOCATOR, Corner.tl, 100, 100)
    controller.pointer_move(80, 90)
    controller.pointer_up()
    assert _coords(get_box(data, LOCATOR)) == pytest.approx((0.08, 0.09, 0.3, 0.2))


def test_pointer_off_page_holds_last_valid_box() -> None:
    data, _viewport, _state, controller = _setup()
    controller.begin_drag(LOCATOR, 150, 150)
    held = controller.pointer_move(250, 250)

    assert controller.pointer_move(1500, 250) == held
    assert controller.pointer_move(250, -20) == held
    assert get_box(data, LOCATOR) == held


def test_only_one_gesture_at_a_time() -> None:
    _data, viewport, state, controller = _setup()
    selection = SelectionController(viewport, state)

    assert selection.begin(1, 500, 500) is True
    assert controller.begin_drag(LOCATOR, 150, 150) is False
    assert controller.pointer_move(200, 200) is None
    assert controller.pointer_up() is None
    assert state.kind == GestureKind.selecting


def test_drag_without_a_box_does_not_start() -> None:
    _data, _viewport, state, controller = _setup()
    assert controller.begin_drag(PartyField("shipper", "name"), 10, 10) is False
    assert state.is_idle()


def test_selection_is_ordered_and_drops_degenerate_rectangles() -> None:
    _data, viewport, state, _controller = _setup()
    selection = SelectionController(viewport, state, min_size=0.005)

    selection.begin(2, 300, 100)
    selection.pointer_move(100, 250)
    box = selection.pointer_up()
    assert box.page == 2
    assert _coords(box) == pytest.approx((0.1, 0.1, 0.3, 0.25))
    assert state.is_idle()

    selection.begin(2, 300, 100)
    selection.pointer_move(301, 101)
    assert selection.pointer_up() is None
    assert selection.selection is None


def test_selection_cannot_start_off_page() -> None:
    _data, viewport, state, _controller = _setup()
    selection = SelectionController(viewport, state)
    assert selection.begin(1, -5, 10) is False
    assert state.is_idle()


def test_drag_after_framing_and_panning_uses_the_current_scale() -> None:
    data, viewport, _state, controller = _setup()
    viewport.frame_region(get_box(data, LOCATOR))
    viewport.pan_by(-300, 120)
    assert viewport.state() == pytest.approx((1.5, -100.0, 395.0))

    # Box centre (0.2, 0.15) is at screen (200, 620) now.
    assert controller.begin_drag(LOCATOR, 200, 620) is True
    controller.pointer_move(230, 575)
    final = controller.pointer_up()
    assert _coords(final) == pytest.approx((0.12, 0.07, 0.32, 0.17))


def test_resize_after_zoom_and_pan_maps_the_corner_delta() -> None:
    data, viewport, _state, controller = _setup()
    assert viewport.zoom_by(2.0, 500, 500) is True
    viewport.pan_by(100, 50)
    assert viewport.state() == pytest.approx((2.0, -400.0, -450.0))

    corner = viewport.normalized_to_screen(0.3, 0.2)
    assert corner == pytest.approx((200.0, -50.0))
    controller.begin_resize(LOCATOR, Corner.br, *corner)
    controller.pointer_move(300, 50)
    controller.pointer_up()
    assert _coords(get_box(data, LOCATOR)) == pytest.approx((0.1, 0.1, 0.35, 0.25))


def test_selection_under_zoom_is_in_page_coordinates() -> None:
    _data, viewport, state, _controller = _setup()
    viewport.scale = 2.5
    viewport.pan_by(-300, 120)
    selection = SelectionController(viewport, state)

    selection.begin(1, 200, 620)
    selection.pointer_move(450, 870)
    assert _coords(selection.pointer_up()) == pytest.approx((0.2, 0.2, 0.3, 0.3))
