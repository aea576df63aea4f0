"""
Shared test fixtures for meshroute tests.

Provides board inputs (as SimpleRouteJson dicts and parsed objects) and
router configurations small enough to route quickly.
"""

import pytest
from typing import Any, Dict

from meshroute.config import RouterConfig
from meshroute.types import SimpleRouteJson


def _connection(name: str, *points, net_name: str = None) -> Dict[str, Any]:
    data = {
        "name": name,
        "pointsToConnect": [
            {"x": x, "y": y, "layer": layer} for x, y, layer in points
        ],
    }
    if net_name:
        data["netName"] = net_name
    return data


def _rect(x: float, y: float, width: float, height: float, layers=("top",), connected_to=()):
    return {
        "type": "rect",
        "center": {"x": x, "y": y},
        "width": width,
        "height": height,
        "layers": list(layers),
        "connectedTo": list(connected_to),
    }


@pytest.fixture
def simple_board_dict() -> Dict[str, Any]:
    """A 10x10 two-layer board with one straight connection."""
    return {
        "layerCount": 2,
        "minTraceWidth": 0.15,
        "bounds": {"minX": 0, "maxX": 10, "minY": 0, "maxY": 10},
        "obstacles": [],
        "connections": [
            _connection("a", (2.0, 5.0, "top"), (8.0, 5.0, "top")),
        ],
    }


@pytest.fixture
def simple_board(simple_board_dict) -> SimpleRouteJson:
    return SimpleRouteJson.from_dict(simple_board_dict)


@pytest.fixture
def two_connection_board() -> SimpleRouteJson:
    """Two parallel connections that never need to cross."""
    return SimpleRouteJson.from_dict({
        "layerCount": 2,
        "minTraceWidth": 0.15,
        "bounds": {"minX": 0, "maxX": 10, "minY": 0, "maxY": 10},
        "obstacles": [],
        "connections": [
            _connection("a", (1.0, 3.0, "top"), (9.0, 3.0, "top")),
            _connection("b", (1.0, 7.0, "top"), (9.0, 7.0, "top")),
        ],
    })


@pytest.fixture
def multi_point_net_board() -> SimpleRouteJson:
    """One four-point net on pads, for point pair splitting."""
    return SimpleRouteJson.from_dict({
        "layerCount": 2,
        "minTraceWidth": 0.15,
        "bounds": {"minX": 0, "maxX": 20, "minY": 0, "maxY": 20},
        "obstacles": [
            _rect(2, 2, 1, 1, layers=("top", "bottom"), connected_to=("GND",)),
            _rect(18, 18, 1, 1, layers=("top", "bottom"), connected_to=("GND",)),
        ],
        "connections": [
            {
                "name": "GND",
                "pointsToConnect": [
                    {"x": 2, "y": 2, "layer": "top", "pcb_port_id": "U1.1"},
                    {"x": 18, "y": 2, "layer": "top"},
                    {"x": 18, "y": 18, "layer": "top", "pcb_port_id": "U2.4"},
                    {"x": 2, "y": 18, "layer": "top"},
                ],
            },
        ],
    })


@pytest.fixture
def centered_obstacle_board() -> SimpleRouteJson:
    """A 100x100 single-layer board with a 20x20 obstacle in the middle.

    Three connections run from the left edge to the right edge; the middle
    one has to detour around the obstacle.
    """
    return SimpleRouteJson.from_dict({
        "layerCount": 1,
        "minTraceWidth": 0.15,
        "bounds": {"minX": 0, "maxX": 100, "minY": 0, "maxY": 100},
        "obstacles": [_rect(50, 50, 20, 20)],
        "connections": [
            _connection("low", (5.0, 20.0, "top"), (95.0, 20.0, "top")),
            _connection("mid", (5.0, 50.0, "top"), (95.0, 50.0, "top")),
            _connection("high", (5.0, 80.0, "top"), (95.0, 80.0, "top")),
        ],
    })


@pytest.fixture
def enclosed_board() -> SimpleRouteJson:
    """A single-layer board where one endpoint is walled in on all sides."""
    return SimpleRouteJson.from_dict({
        "layerCount": 1,
        "minTraceWidth": 0.15,
        "bounds": {"minX": 0, "maxX": 20, "minY": 0, "maxY": 20},
        "obstacles": [
            _rect(10.0, 13.5, 8, 1),
            _rect(10.0, 6.5, 8, 1),
            _rect(6.5, 10.0, 1, 8),
            _rect(13.5, 10.0, 1, 8),
        ],
        "connections": [
            _connection("trapped", (10.0, 10.0, "top"), (2.0, 2.0, "top")),
        ],
    })


@pytest.fixture
def crossing_board() -> SimpleRouteJson:
    """Two diagonal connections that cross in the middle of a two-layer board."""
    return SimpleRouteJson.from_dict({
        "layerCount": 2,
        "minTraceWidth": 0.15,
        "bounds": {"minX": 0, "maxX": 10, "minY": 0, "maxY": 10},
        "obstacles": [],
        "connections": [
            _connection("a", (1.0, 1.0, "top"), (9.0, 9.0, "top")),
            _connection("b", (1.0, 9.0, "top"), (9.0, 1.0, "top")),
        ],
    })


@pytest.fixture
def zero_length_board() -> SimpleRouteJson:
    """A connection whose two points coincide."""
    return SimpleRouteJson.from_dict({
        "layerCount": 2,
        "minTraceWidth": 0.15,
        "bounds": {"minX": 0, "maxX": 10, "minY": 0, "maxY": 10},
        "obstacles": [],
        "connections": [
            _connection("a", (3.0, 3.0, "top"), (3.0, 3.0, "top")),
        ],
    })


@pytest.fixture
def top_keepout_board() -> SimpleRouteJson:
    """A two-layer board with a large keepout on the top layer only."""
    return SimpleRouteJson.from_dict({
        "layerCount": 2,
        "minTraceWidth": 0.15,
        "bounds": {"minX": 0, "maxX": 20, "minY": 0, "maxY": 20},
        "obstacles": [_rect(10, 10, 10, 10, layers=("top",))],
        "connections": [
            _connection("a", (1.0, 10.0, "top"), (19.0, 10.0, "top")),
        ],
    })


@pytest.fixture
def fast_config() -> RouterConfig:
    """Shallow mesh and short optimizer runs."""
    return RouterConfig(
        capacity_depth=3,
        optimizer_iterations=200,
        max_section_optimizations=5,
        max_unravel_sections=5,
        unravel_max_iterations_per_section=200,
        high_density_max_iterations=50_000,
    )
