"""
Tests for stitching per-node route fragments.

Tests cover:
- Ordering and orienting fragments into one polyline
- Vias at layer-changing junctions
- Snapping to connection endpoints
- Fragments too far away to stitch
- Chains that miss a connection endpoint
- Connections whose two points coincide
- Per-connection failures in the multi-connection stitcher
"""

from typing import Sequence, Tuple

from meshroute.high_density import make_route
from meshroute.stitching import MultipleHighDensityRouteStitchSolver, SingleHighDensityRouteStitchSolver
from meshroute.types import Connection, ConnectionPoint, HighDensityRoute, Point, RoutePoint


def fragment(name: str, *points: Tuple[float, float, int]) -> HighDensityRoute:
    return make_route(name, [RoutePoint(x, y, z) for x, y, z in points], 0.15, 0.6)


def as_tuples(points: Sequence[RoutePoint]):
    return [(p.x, p.y, p.z) for p in points]


class TestSingleHighDensityRouteStitchSolver:
    """Tests for stitching one connection."""

    def test_orders_and_reverses_fragments(self):
        """Fragments arrive out of order and one is backwards."""
        solver = SingleHighDensityRouteStitchSolver(
            "a",
            [fragment("a", (10, 0, 0), (5, 0, 0)), fragment("a", (0, 0, 0), (5, 0, 0))],
            RoutePoint(0, 0, 0),
            RoutePoint(10, 0, 0),
        )
        solver.solve()
        assert solver.solved
        assert as_tuples(solver.merged_route.route) == [(0, 0, 0), (5, 0, 0), (10, 0, 0)]
        assert solver.merged_route.vias == []

    def test_layer_change_at_junction(self):
        solver = SingleHighDensityRouteStitchSolver(
            "a",
            [fragment("a", (0, 0, 0), (5, 0, 0)), fragment("a", (5, 0, 1), (10, 0, 1))],
            RoutePoint(0, 0, 0),
            RoutePoint(10, 0, 1),
        )
        solver.solve()
        assert as_tuples(solver.merged_route.route) == [(0, 0, 0), (5, 0, 0), (5, 0, 1), (10, 0, 1)]
        assert solver.merged_route.vias == [Point(5, 0)]

    def test_fragment_vias_kept_once(self):
        solver = SingleHighDensityRouteStitchSolver(
            "a",
            [
                fragment("a", (0, 0, 0), (2, 0, 0), (2, 0, 1), (5, 0, 1)),
                fragment("a", (5, 0, 1), (10, 0, 1)),
            ],
            RoutePoint(0, 0, 0),
            RoutePoint(10, 0, 1),
        )
        solver.solve()
        assert solver.merged_route.vias == [Point(2, 0)]

    def test_snaps_to_endpoints(self):
        """Ends within the stitch tolerance are extended to the exact points."""
        solver = SingleHighDensityRouteStitchSolver(
            "a",
            [fragment("a", (0.03, 0, 0), (9.98, 0, 0))],
            RoutePoint(0, 0, 0),
            RoutePoint(10, 0, 0),
        )
        solver.solve()
        route = as_tuples(solver.merged_route.route)
        assert route[0] == (0, 0, 0)
        assert route[-1] == (10, 0, 0)
        assert len(route) == 4

    def test_far_fragment_left_out(self):
        stray = fragment("a", (50, 50, 0), (60, 60, 0))
        solver = SingleHighDensityRouteStitchSolver(
            "a",
            [fragment("a", (0, 0, 0), (10, 0, 0)), stray],
            RoutePoint(0, 0, 0),
            RoutePoint(10, 0, 0),
        )
        solver.solve()
        assert solver.solved
        assert solver.unstitched_fragments == [stray]
        assert len(solver.merged_route.route) == 2

    def test_no_fragments(self):
        solver = SingleHighDensityRouteStitchSolver("a", [], RoutePoint(0, 0, 0), RoutePoint(1, 0, 0))
        solver.solve()
        assert solver.failed
        assert solver.error == "No route fragments for a"

    def test_chain_short_of_end_fails(self):
        solver = SingleHighDensityRouteStitchSolver(
            "a",
            [fragment("a", (0, 0, 0), (5, 0, 0))],
            RoutePoint(0, 0, 0),
            RoutePoint(10, 0, 0),
        )
        solver.solve()
        assert solver.failed
        assert solver.merged_route is None
        assert "misses its end point" in solver.error

    def test_chain_away_from_start_fails(self):
        solver = SingleHighDensityRouteStitchSolver(
            "a",
            [fragment("a", (3, 0, 0), (10, 0, 0))],
            RoutePoint(0, 0, 0),
            RoutePoint(10, 0, 0),
        )
        solver.solve()
        assert solver.failed
        assert "misses its start point" in solver.error

    def test_coincident_points_need_no_fragments(self):
        solver = SingleHighDensityRouteStitchSolver("a", [], RoutePoint(3, 3, 0), RoutePoint(3, 3, 0))
        solver.solve()
        assert solver.solved
        assert as_tuples(solver.merged_route.route) == [(3, 3, 0), (3, 3, 0)]
        assert solver.merged_route.vias == []

    def test_coincident_points_on_two_layers(self):
        solver = SingleHighDensityRouteStitchSolver("a", [], RoutePoint(3, 3, 0), RoutePoint(3, 3, 1))
        solver.solve()
        assert as_tuples(solver.merged_route.route) == [(3, 3, 0), (3, 3, 1)]
        assert solver.merged_route.vias == [Point(3, 3)]

    def test_keeps_fragment_style(self):
        wide = make_route("a", [RoutePoint(0, 0, 0), RoutePoint(1, 0, 0)], 0.3, 0.8)
        solver = SingleHighDensityRouteStitchSolver("a", [wide], RoutePoint(0, 0, 0), RoutePoint(1, 0, 0))
        solver.solve()
        assert solver.merged_route.trace_thickness == 0.3
        assert solver.merged_route.via_diameter == 0.8


class TestMultipleHighDensityRouteStitchSolver:
    """Tests for stitching every connection."""

    def test_missing_fragments_fail_one_connection(self):
        connections = [
            Connection("a", [ConnectionPoint(0, 0), ConnectionPoint(10, 0)]),
            Connection("b", [ConnectionPoint(0, 5), ConnectionPoint(10, 5)]),
            Connection("lonely", [ConnectionPoint(3, 3)]),
        ]
        solver = MultipleHighDensityRouteStitchSolver(
            connections, [fragment("a", (0, 0, 0), (5, 0, 0)), fragment("a", (5, 0, 0), (10, 0, 0))]
        )
        solver.solve()
        assert solver.failed
        assert solver.failed_connection_names == ["b"]
        assert [r.connection_name for r in solver.merged_hd_routes] == ["a"]
        assert "b" in solver.error

    def test_all_connections_stitched(self):
        connections = [
            Connection("a", [ConnectionPoint(0, 0), ConnectionPoint(10, 0)]),
            Connection("b", [ConnectionPoint(0, 5), ConnectionPoint(10, 5)]),
        ]
        solver = MultipleHighDensityRouteStitchSolver(
            connections,
            [fragment("b", (0, 5, 0), (10, 5, 0)), fragment("a", (0, 0, 0), (10, 0, 0))],
        )
        solver.solve()
        assert solver.solved
        assert [r.connection_name for r in solver.merged_hd_routes] == ["a", "b"]
        assert len(solver.visualize()["lines"]) == 2

    def test_failure_reasons(self):
        connections = [
            Connection("short", [ConnectionPoint(0, 0), ConnectionPoint(10, 0)]),
            Connection("missing", [ConnectionPoint(0, 5), ConnectionPoint(10, 5)]),
        ]
        solver = MultipleHighDensityRouteStitchSolver(connections, [fragment("short", (0, 0, 0), (5, 0, 0))])
        solver.solve()
        assert solver.failed_connection_names == ["short", "missing"]
        assert solver.failure_reasons == {
            "short": "stitched route does not reach both connection points",
            "missing": "no route fragments to stitch",
        }
