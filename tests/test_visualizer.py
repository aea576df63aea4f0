"""
Tests for SVG rendering of solver snapshots.
"""

import pytest

from meshroute.solvers.base import empty_graphics
from meshroute.types import Bounds
from meshroute.visualizer import (
    GraphicsSvgRenderer,
    get_graphics_bounds,
    render_graphics_svg,
    save_graphics_svg,
)

COLORS = {
    "background": "#000000",
    "edge": "#777777",
    "via": "#c0c0c0",
    "obstacle": "#ff0000",
    "label": "#ffffff",
    "layers": ["#aa0000", "#0000aa"],
}


@pytest.fixture
def snapshot():
    graphics = empty_graphics("Routes <final>")
    graphics["lines"].append({
        "points": [{"x": 0, "y": 0}, {"x": 10, "y": 0}],
        "layer": 1,
        "stroke_width": 0.15,
    })
    graphics["rects"].append({
        "center": {"x": 5, "y": 5},
        "width": 2,
        "height": 4,
        "layer": "obstacle",
    })
    graphics["circles"].append({"center": {"x": 10, "y": 0}, "radius": 0.3})
    graphics["points"].append({"x": 0, "y": 0, "label": "a<b"})
    return graphics


class TestGraphicsBounds:

    def test_bounds_cover_everything(self, snapshot):
        b = get_graphics_bounds(snapshot)
        assert (b.min_x, b.max_x) == pytest.approx((0, 10.3))
        assert (b.min_y, b.max_y) == pytest.approx((-0.3, 7))

    def test_empty_snapshot_is_unit_box(self):
        assert get_graphics_bounds(empty_graphics()) == Bounds(0, 1, 0, 1)


class TestGraphicsSvgRenderer:
    """Tests for the board-to-pixel transform and item colors."""

    def test_y_axis_flipped(self):
        renderer = GraphicsSvgRenderer(Bounds(0, 10, 0, 10), scale=2, margin=1, colors=COLORS)
        assert renderer._to_svg_coords(0, 10) == (2, 2)
        assert renderer._to_svg_coords(10, 0) == (22, 22)
        assert (renderer.svg_width, renderer.svg_height) == (24, 24)

    def test_layer_colors(self):
        renderer = GraphicsSvgRenderer(Bounds(0, 1, 0, 1), colors=COLORS)
        assert renderer.get_color({"layer": 1}, "edge") == "#0000aa"
        assert renderer.get_color({"layer": 3}, "edge") == "#0000aa"
        assert renderer.get_color({"layer": "obstacle"}, "node") == "#ff0000"
        assert renderer.get_color({}, "via") == "#c0c0c0"
        assert renderer.get_color({"layer": 0, "color": "red"}, "edge", "color") == "red"

    def test_render(self, snapshot):
        svg = render_graphics_svg(snapshot, colors=COLORS)
        assert svg.startswith("<svg")
        assert svg.endswith("</svg>")
        assert svg.count("<polyline") == 1
        assert svg.count("<rect") == 2  # background and obstacle
        assert 'stroke="#0000aa"' in svg

    def test_labels_escaped(self, snapshot):
        svg = render_graphics_svg(snapshot, colors=COLORS)
        assert "a&lt;b" in svg
        assert "Routes &lt;final&gt;" in svg

    def test_short_lines_skipped(self):
        graphics = empty_graphics()
        graphics["lines"].append({"points": [{"x": 1, "y": 1}]})
        assert "<polyline" not in render_graphics_svg(graphics, colors=COLORS)


def test_save_creates_parent_directories(tmp_path, snapshot):
    path = save_graphics_svg(snapshot, tmp_path / "debug" / "snapshot.svg", colors=COLORS)
    assert path.exists()
    assert path.read_text().startswith("<svg")
