"""
Tests for the useless via removal post-pass.

Tests cover:
- Route sections and via helpers
- Bracket collapse with and without something in the way
- Same-net routes never blocking
- Endpoint layer preservation
- Running the pass on its own output
- Index cell size derived from obstacle and via sizes
"""

from typing import Tuple

import pytest

from meshroute.connectivity import ConnectivityMap
from meshroute.high_density import make_route
from meshroute.types import HighDensityRoute, Obstacle, Point, RoutePoint
from meshroute.via_removal import (
    UselessViaRemovalSolver,
    compute_vias,
    count_layer_changes,
    get_route_sections,
)


def route(name: str, *points: Tuple[float, float, int]) -> HighDensityRoute:
    return make_route(name, [RoutePoint(x, y, z) for x, y, z in points], 0.15, 0.6)


BRACKET = ((0, 0, 0), (4, 0, 0), (4, 0, 1), (6, 0, 1), (6, 0, 0), (10, 0, 0))


def run(routes, **kwargs) -> UselessViaRemovalSolver:
    solver = UselessViaRemovalSolver(routes, **kwargs)
    solver.solve()
    assert solver.solved
    return solver


# =============================================================================
# Helper Tests
# =============================================================================

class TestHelpers:
    """Tests for section and via helpers."""

    def test_route_sections(self):
        points = [RoutePoint(x, y, z) for x, y, z in BRACKET]
        sections = get_route_sections(points)
        assert [(s.start_index, s.end_index, s.z) for s in sections] == [
            (0, 1, 0), (2, 3, 1), (4, 5, 0)
        ]

    def test_compute_vias_dedupes_by_position(self):
        points = [RoutePoint(0, 0, 0), RoutePoint(0, 0, 1), RoutePoint(0, 0, 0), RoutePoint(3, 0, 0)]
        assert compute_vias(points) == [Point(0, 0)]
        assert count_layer_changes(points) == 2


# =============================================================================
# Solver Tests
# =============================================================================

class TestUselessViaRemovalSolver:
    """Tests for dropping layer changes."""

    def test_zero_length_bracket_removed(self):
        solver = run([route("a", (0, 0, 0), (5, 0, 0), (5, 0, 1), (5, 0, 0), (10, 0, 0))])
        (optimized,) = solver.get_optimized_routes()
        assert solver.get_via_count() == 0
        assert optimized.vias == []
        assert {p.z for p in optimized.route} == {0}

    def test_bracket_collapses_when_clear(self):
        solver = run([route("a", *BRACKET)])
        (optimized,) = solver.get_optimized_routes()
        assert solver.initial_via_count == 2
        assert solver.get_via_count() == 0
        assert optimized.vias == []
        assert [(p.x, p.y) for p in optimized.route] == [(x, y) for x, y, _ in BRACKET]

    def test_obstacle_keeps_bracket(self):
        pad = Obstacle(center=Point(5, 0), width=1, height=1, layers=["top"], z_layers=[0])
        solver = run([route("a", *BRACKET)], obstacles=[pad])
        (optimized,) = solver.get_optimized_routes()
        assert solver.get_via_count() == 2
        assert optimized.vias == [Point(4, 0), Point(6, 0)]

    def test_obstacle_of_same_net_ignored(self):
        pad = Obstacle(center=Point(5, 0), width=1, height=1, connected_to=["a"], z_layers=[0])
        solver = run([route("a", *BRACKET)], obstacles=[pad])
        assert solver.get_via_count() == 0

    def test_other_net_trace_blocks(self):
        crossing = route("b", (5, -3, 0), (5, 3, 0))
        solver = run([route("a", *BRACKET), crossing])
        assert solver.get_via_count() == 2

    def test_connected_trace_does_not_block(self):
        crossing = route("b", (5, -3, 0), (5, 3, 0))
        solver = run(
            [route("a", *BRACKET), crossing],
            connectivity=ConnectivityMap([["a", "b"]]),
        )
        assert solver.get_via_count() == 0

    @pytest.mark.parametrize("preserve,expected", [(True, 1), (False, 0)])
    def test_endpoint_layers(self, preserve, expected):
        """A route that ends on another layer keeps its via unless endpoints may move."""
        solver = run(
            [route("a", (0, 0, 0), (5, 0, 0), (5, 0, 1), (10, 0, 1))],
            preserve_endpoint_layers=preserve,
        )
        assert solver.get_via_count() == expected

    @pytest.mark.parametrize("preserve", [True, False])
    def test_diagonal_crossing_keeps_at_most_two_vias(self, preserve):
        """Two crossing routes that each change layer at the crossing point."""
        routes = [
            route("a", (0, 0, 0), (5, 5, 0), (5, 5, 1), (10, 10, 1)),
            route("b", (0, 10, 1), (5, 5, 1), (5, 5, 0), (10, 0, 0)),
        ]
        solver = run(routes, preserve_endpoint_layers=preserve)
        assert solver.get_via_count() <= 2
        for optimized in solver.get_optimized_routes():
            if not optimized.vias:
                assert len({p.z for p in optimized.route}) == 1

    def test_input_routes_not_modified(self):
        original = route("a", *BRACKET)
        run([original])
        assert count_layer_changes(original.route) == 2

    def test_idempotent(self):
        pad = Obstacle(center=Point(5, 0), width=1, height=1, z_layers=[0])
        routes = [
            route("a", *BRACKET),
            route("c", (0, 5, 0), (3, 5, 0), (3, 5, 1), (3, 5, 0), (8, 5, 0)),
        ]
        first = run(routes, obstacles=[pad])
        second = run(first.get_optimized_routes(), obstacles=[pad])
        assert second.get_optimized_routes() == first.get_optimized_routes()
        assert second.sweep == 0

    def test_visualize(self):
        solver = run([route("a", *BRACKET)])
        graphics = solver.visualize()
        assert len(graphics["lines"]) == 1
        assert graphics["circles"] == []

    @pytest.mark.parametrize("obstacle_size,expected", [(None, 1.5), (1.0, 2.5), (20.0, 5.0)])
    def test_cell_size_from_obstacles_and_vias(self, obstacle_size, expected):
        obstacles = []
        if obstacle_size is not None:
            obstacles = [
                Obstacle(center=Point(20 * i, 20), width=obstacle_size, height=obstacle_size, z_layers=[0])
                for i in range(3)
            ]
        solver = UselessViaRemovalSolver([route("a", *BRACKET)], obstacles=obstacles)
        assert solver.cell_size == pytest.approx(expected)

    def test_explicit_cell_size(self):
        solver = UselessViaRemovalSolver([route("a", *BRACKET)], cell_size=0.75)
        assert solver.cell_size == 0.75
