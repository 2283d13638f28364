from __future__ import annotations

import pytest

from invoice_annotator.config import ViewportSettings
from invoice_annotator.schemas import BoundingBox
from invoice_annotator.viewport import ViewportTransform


def _viewport() -> ViewportTransform:
    viewport = ViewportTransform(800, 600)
    viewport.set_page_size(1000, 2000)
    return viewport


def test_screen_and_normalized_coordinates_are_inverse() -> None:
    viewport = _viewport()
    viewport.scale = 1.5
    viewport.pan_x = 40
    viewport.pan_y = -100

    sx, sy = viewport.normalized_to_screen(0.25, 0.5)
    assert (sx, sy) == pytest.approx((40 + 375, -100 + 1500))
    assert viewport.screen_to_normalized(sx, sy) == pytest.approx((0.25, 0.5))


def test_points_off_the_page_or_without_a_page_map_to_none() -> None:
    viewport = _viewport()
    assert viewport.screen_to_normalized(-1, 10) is None
    assert viewport.screen_to_normalized(10, 2001) is None

    viewport.clear()
    assert viewport.screen_to_normalized(10, 10) is None
    assert viewport.state() == (1.0, 0.0, 0.0)


def test_set_page_size_rejects_empty_pages() -> None:
    with pytest.raises(ValueError):
        ViewportTransform().set_page_size(0, 100)


def test_frame_region_centres_box_at_fixed_fraction() -> None:
    viewport = _viewport()
    box = BoundingBox(page=1, x1=0.1, y1=0.1, x2=0.3, y2=0.2)
    viewport.frame_region(box)

    scale, pan_x, pan_y = viewport.state()
    assert scale == pytest.approx(0.3 * 600 / 200)
    assert pan_x == pytest.approx(400 - 200 * scale)
    assert pan_y == pytest.approx(300 - 300 * scale)


def test_frame_region_is_idempotent_regardless_of_prior_zoom() -> None:
    viewport = _viewport()
    box = BoundingBox(page=1, x1=0.4, y1=0.6, x2=0.7, y2=0.65)
    viewport.frame_region(box)
    first = viewport.state()
    viewport.frame_region(box)
    assert viewport.state() == first

    viewport.zoom_by(1.2, 10, 10)
    viewport.pan_by(33, -7)
    viewport.frame_region(box)
    assert viewport.state() == pytest.approx(first)


def test_frame_region_clamps_tiny_and_degenerate_boxes() -> None:
    viewport = _viewport()
    viewport.frame_region(BoundingBox(page=1, x1=0.5, y1=0.5, x2=0.5001, y2=0.5001))
    assert viewport.scale == 5.0
    viewport.frame_region(BoundingBox(page=1, x1=0.5, y1=0.5, x2=0.5, y2=0.5))
    assert viewport.scale == 5.0


def test_frame_region_respects_configured_fraction() -> None:
    viewport = ViewportTransform(800, 600, settings=ViewportSettings(frame_fraction=0.6))
    viewport.set_page_size(1000, 2000)
    viewport.frame_region(BoundingBox(page=1, x1=0.1, y1=0.1, x2=0.3, y2=0.2))
    assert viewport.scale == pytest.approx(0.6 * 600 / 200)


def test_zoom_keeps_anchor_point_fixed() -> None:
    viewport = _viewport()
    before = viewport.screen_to_normalized(100, 100)
    assert viewport.zoom_by(2.0, 100, 100) is True
    assert viewport.scale == 2.0
    assert viewport.screen_to_normalized(100, 100) == pytest.approx(before)


def test_zoom_refuses_to_leave_scale_limits() -> None:
    viewport = _viewport()
    viewport.scale = 4.5
    state = viewport.state()
    assert viewport.zoom_by(1.2, 0, 0) is False
    assert viewport.state() == state

    viewport.scale = 0.06
    assert viewport.zoom_by(1 / 1.5, 0, 0) is False


def test_frame_region_waits_for_a_sized_viewport() -> None:
    viewport = ViewportTransform()
    viewport.set_page_size(1000, 2000)
    viewport.pan_by(12, 34)
    viewport.frame_region(BoundingBox(page=1, x1=0.1, y1=0.1, x2=0.3, y2=0.2))
    assert viewport.state() == (1.0, 12.0, 34.0)
