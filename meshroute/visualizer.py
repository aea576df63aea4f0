"""SVG rendering of solver ``visualize()`` snapshots for debugging.

A snapshot is a dict of ``points``, ``lines``, ``rects`` and ``circles``.
Items may carry a ``layer`` (an int z, or a color key such as
``"obstacle"``), explicit colors (``color``, ``stroke_color``, ``fill``)
and a ``label``. Colors not given on the item come from the ``colors``
section of ``defaults.yaml``.
"""

import html
import logging
import math
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from .config import load_colors
from .solvers.base import GraphicsObject
from .types import Bounds

logger = logging.getLogger(__name__)


def get_graphics_bounds(graphics: GraphicsObject) -> Bounds:
    """Bounding box of everything in the snapshot (unit box when empty)."""
    xs, ys = [], []
    for point in graphics.get("points", []):
        xs.append(point["x"])
        ys.append(point["y"])
    for line in graphics.get("lines", []):
        for p in line.get("points", []):
            xs.append(p["x"])
            ys.append(p["y"])
    for rect in graphics.get("rects", []):
        c = rect["center"]
        xs.extend([c["x"] - rect["width"] / 2, c["x"] + rect["width"] / 2])
        ys.extend([c["y"] - rect["height"] / 2, c["y"] + rect["height"] / 2])
    for circle in graphics.get("circles", []):
        c = circle["center"]
        xs.extend([c["x"] - circle["radius"], c["x"] + circle["radius"]])
        ys.extend([c["y"] - circle["radius"], c["y"] + circle["radius"]])
    if not xs:
        return Bounds(0, 1, 0, 1)
    return Bounds(min(xs), max(xs), min(ys), max(ys))


class GraphicsSvgRenderer:
    """Render snapshots onto a fixed board-to-pixel transform."""

    def __init__(
        self,
        bounds: Bounds,
        scale: float = 10.0,  # pixels per mm
        margin: float = 5.0,  # mm margin around the content
        colors: Optional[Dict[str, Any]] = None,
    ):
        self.bounds = bounds
        self.scale = scale
        self.margin = margin
        self.colors = colors if colors is not None else load_colors()

        self.svg_width = (bounds.width + 2 * margin) * scale
        self.svg_height = (bounds.height + 2 * margin) * scale

    def _to_svg_coords(self, x: float, y: float) -> Tuple[float, float]:
        svg_x = (x - self.bounds.min_x + self.margin) * self.scale
        # Board y grows upwards
        svg_y = (self.bounds.max_y - y + self.margin) * self.scale
        return (svg_x, svg_y)

    def _to_svg_size(self, size: float) -> float:
        return size * self.scale

    def get_color(self, item: Dict[str, Any], default_key: str, *explicit_keys: str) -> str:
        for key in explicit_keys:
            if item.get(key):
                return item[key]
        layer = item.get("layer")
        if isinstance(layer, int) and not isinstance(layer, bool):
            layer_colors = self.colors.get("layers") or ["#e74c3c", "#3498db"]
            return layer_colors[layer % len(layer_colors)]
        if isinstance(layer, str) and layer in self.colors:
            return self.colors[layer]
        return self.colors.get(default_key, "#888888")

    def _render_label(self, x: float, y: float, label: Optional[str]) -> str:
        if not label:
            return ""
        return (
            f'<text x="{x + 3:.2f}" y="{y - 3:.2f}" font-family="monospace" font-size="9" '
            f'fill="{self.colors.get("label", "#ffffff")}">{html.escape(str(label))}</text>'
        )

    def _render_point(self, point: Dict[str, Any]) -> str:
        x, y = self._to_svg_coords(point["x"], point["y"])
        color = self.get_color(point, "label", "color")
        return (
            f'<circle cx="{x:.2f}" cy="{y:.2f}" r="2" fill="{color}"/>'
            + self._render_label(x, y, point.get("label"))
        )

    def _render_line(self, line: Dict[str, Any]) -> str:
        points = line.get("points", [])
        if len(points) < 2:
            return ""
        coords = " ".join(
            "{:.2f},{:.2f}".format(*self._to_svg_coords(p["x"], p["y"])) for p in points
        )
        color = self.get_color(line, "edge", "stroke_color", "stroke", "color")
        width = max(self._to_svg_size(line.get("stroke_width") or 0), 1)
        dash = line.get("stroke_dash")
        dash_attr = f' stroke-dasharray="{dash}"' if dash else ""
        return (
            f'<polyline points="{coords}" fill="none" stroke="{color}" '
            f'stroke-width="{width:.2f}" stroke-linecap="round"{dash_attr}/>'
        )

    def _render_rect(self, rect: Dict[str, Any]) -> str:
        c = rect["center"]
        x, y = self._to_svg_coords(c["x"] - rect["width"] / 2, c["y"] + rect["height"] / 2)
        w = self._to_svg_size(rect["width"])
        h = self._to_svg_size(rect["height"])
        fill = self.get_color(rect, "node", "fill", "color")
        stroke = rect.get("stroke") or "none"
        return (
            f'<rect x="{x:.2f}" y="{y:.2f}" width="{w:.2f}" height="{h:.2f}" '
            f'fill="{fill}" stroke="{stroke}" stroke-width="0.5"/>'
        )

    def _render_circle(self, circle: Dict[str, Any]) -> str:
        c = circle["center"]
        x, y = self._to_svg_coords(c["x"], c["y"])
        r = max(self._to_svg_size(circle["radius"]), 1)
        fill = self.get_color(circle, "via", "fill", "color")
        return f'<circle cx="{x:.2f}" cy="{y:.2f}" r="{r:.2f}" fill="{fill}" stroke="black" stroke-width="0.5"/>'

    def render(self, graphics: GraphicsObject) -> str:
        lines = [
            f'<svg xmlns="http://www.w3.org/2000/svg" '
            f'width="{self.svg_width:.0f}" height="{self.svg_height:.0f}" '
            f'viewBox="0 0 {self.svg_width:.2f} {self.svg_height:.2f}">',
            f'<rect width="100%" height="100%" fill="{self.colors.get("background", "white")}"/>',
        ]

        # Rects first so traces and vias stay visible on top
        for rect in graphics.get("rects", []):
            lines.append(self._render_rect(rect))
        for line in graphics.get("lines", []):
            lines.append(self._render_line(line))
        for circle in graphics.get("circles", []):
            lines.append(self._render_circle(circle))
        for point in graphics.get("points", []):
            lines.append(self._render_point(point))

        title = graphics.get("title")
        if title:
            lines.append(
                f'<text x="10" y="20" font-family="monospace" font-size="14" '
                f'fill="{self.colors.get("label", "#ffffff")}">{html.escape(title)}</text>'
            )
        lines.append("</svg>")
        return "\n".join(line for line in lines if line)


def render_graphics_svg(
    graphics: GraphicsObject,
    bounds: Optional[Bounds] = None,
    scale: Optional[float] = None,
    margin: float = 5.0,
    colors: Optional[Dict[str, Any]] = None,
) -> str:
    """Render one snapshot to an SVG string.

    Without ``scale`` the drawing is fitted to about 1000 pixels.
    """
    bounds = bounds or get_graphics_bounds(graphics)
    if scale is None:
        extent = max(bounds.width, bounds.height) + 2 * margin
        scale = 1000 / extent if extent > 0 and math.isfinite(extent) else 10.0
    return GraphicsSvgRenderer(bounds, scale=scale, margin=margin, colors=colors).render(graphics)


def save_graphics_svg(
    graphics: GraphicsObject,
    path: Union[str, Path],
    bounds: Optional[Bounds] = None,
    colors: Optional[Dict[str, Any]] = None,
) -> Path:
    """Write a snapshot to ``path`` as SVG."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_graphics_svg(graphics, bounds=bounds, colors=colors))
    logger.info(f"Wrote SVG visualization to {path}")
    return path
