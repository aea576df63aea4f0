"""
Tests for the path simplification post-pass.

Tests cover:
- Dropping bends when the straight shortcut is clear
- Obstacles and other nets keeping a bend
- Layer changes and endpoints never moving
"""

from typing import Tuple

import pytest

from meshroute.connectivity import ConnectivityMap
from meshroute.high_density import make_route
from meshroute.simplify import MultiSimplifiedPathSolver
from meshroute.types import HighDensityRoute, Obstacle, Point, RoutePoint


def route(name: str, *points: Tuple[float, float, int]) -> HighDensityRoute:
    return make_route(name, [RoutePoint(x, y, z) for x, y, z in points], 0.15, 0.6)


def coords(r: HighDensityRoute):
    return [(p.x, p.y, p.z) for p in r.route]


def run(routes, **kwargs) -> MultiSimplifiedPathSolver:
    solver = MultiSimplifiedPathSolver(routes, **kwargs)
    solver.solve()
    assert solver.solved
    return solver


DETOUR = ((0, 0, 0), (3, 2, 0), (6, 0, 0))
CROSSING_B = ((3, -2, 0), (3, 1, 0))


class TestMultiSimplifiedPathSolver:
    """Tests for straightening routes."""

    def test_clear_bends_dropped(self):
        solver = run([route("a", (0, 0, 0), (2, 0, 0), (2, 2, 0), (4, 2, 0), (4, 0, 0), (6, 0, 0))])
        (simplified,) = solver.get_simplified_routes()
        assert coords(simplified) == [(0, 0, 0), (6, 0, 0)]
        assert solver.removed_point_count == 4

    def test_obstacle_keeps_bend(self):
        pad = Obstacle(center=Point(1.5, 1.5), width=2, height=2, layers=["top"], z_layers=[0])
        original = route("a", (0, 0, 0), (0, 5, 0), (5, 5, 0))
        solver = run([original], obstacles=[pad])
        (simplified,) = solver.get_simplified_routes()
        assert coords(simplified) == coords(original)

    def test_obstacle_on_other_layer_ignored(self):
        pad = Obstacle(center=Point(1.5, 1.5), width=2, height=2, layers=["bottom"], z_layers=[1])
        solver = run([route("a", (0, 0, 0), (0, 5, 0), (5, 5, 0))], obstacles=[pad])
        (simplified,) = solver.get_simplified_routes()
        assert coords(simplified) == [(0, 0, 0), (5, 5, 0)]

    def test_layer_changes_kept(self):
        solver = run([route("a", (0, 0, 0), (2, 1, 0), (4, 0, 0), (4, 0, 1), (6, 1, 1), (8, 0, 1))])
        (simplified,) = solver.get_simplified_routes()
        assert coords(simplified) == [(0, 0, 0), (4, 0, 0), (4, 0, 1), (8, 0, 1)]
        assert simplified.vias == [Point(4, 0)]

    @pytest.mark.parametrize("z,expected_points", [(0, 3), (1, 2)])
    def test_other_net_blocks_on_its_layer(self, z, expected_points):
        other = route("b", *((x, y, z) for x, y, _ in CROSSING_B))
        solver = run([route("a", *DETOUR), other])
        simplified, _ = solver.get_simplified_routes()
        assert len(simplified.route) == expected_points

    def test_connected_net_does_not_block(self):
        solver = run(
            [route("a", *DETOUR), route("b", *CROSSING_B)],
            connectivity=ConnectivityMap([["a", "b"]]),
        )
        simplified, _ = solver.get_simplified_routes()
        assert coords(simplified) == [(0, 0, 0), (6, 0, 0)]

    def test_endpoints_and_input_unchanged(self):
        routes = [route("a", *DETOUR)]
        solver = run(routes)
        (simplified,) = solver.get_simplified_routes()
        assert simplified.route[0] == routes[0].route[0]
        assert simplified.route[-1] == routes[0].route[-1]
        assert coords(routes[0]) == list(DETOUR)

    def test_single_point_route(self):
        solver = run([route("a", (3, 3, 0))])
        (simplified,) = solver.get_simplified_routes()
        assert coords(simplified) == [(3, 3, 0)]

    def test_visualize(self):
        solver = run([route("a", *DETOUR)])
        graphics = solver.visualize()
        assert len(graphics["lines"]) == 1
        assert graphics["circles"] == []
