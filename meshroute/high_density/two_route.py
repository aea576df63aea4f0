"""Closed-form solvers for nodes crossed by exactly two connections.

``TwoCrossingRoutesSolver`` handles two crossing routes on the same layer:
one route hops over the other through a pair of vias.

``SingleTransitionCrossingRouteSolver`` handles a crossing where one route
changes layer and the other stays flat: the via is placed near the
centroid of the crossing geometry and the flat route bends around the
via's keep-out circle.

Both solve in a single step and fail when the node does not have the
shape they handle. Results are checked for clearance before acceptance.
"""

import logging
from typing import List, Optional, Tuple

from ..connectivity import ConnectivityMap
from ..geometry import (
    calculate_dumbbell_points,
    calculate_side_traversal,
    clamp,
    distance,
    do_segments_intersect,
    find_circle_line_intersections,
    find_closest_point_to_abc_within_bounds,
    find_point_to_get_around_circle,
    point_to_segment_distance,
    segment_to_segment_min_distance,
)
from ..solvers.base import BaseSolver, GraphicsObject
from ..types import Bounds, HighDensityRoute, NodeWithPortPoints, Point, RoutePoint
from .intra_node import visualize_intra_node_routes
from .routes import IntraNodeConnection, find_route_conflicts, get_connections_from_node, make_route

logger = logging.getLogger(__name__)


def _side_of_line(p, a, b) -> float:
    return (b.x - a.x) * (p.y - a.y) - (b.y - a.y) * (p.x - a.x)


def _inside(p, bounds: Bounds, tolerance: float = 1e-6) -> bool:
    return (bounds.min_x - tolerance <= p.x <= bounds.max_x + tolerance
            and bounds.min_y - tolerance <= p.y <= bounds.max_y + tolerance)


def _shrink(bounds: Bounds, amount: float) -> Bounds:
    min_x, max_x = bounds.min_x + amount, bounds.max_x - amount
    min_y, max_y = bounds.min_y + amount, bounds.max_y - amount
    if max_x < min_x:
        min_x = max_x = (min_x + max_x) / 2
    if max_y < min_y:
        min_y = max_y = (min_y + max_y) / 2
    return Bounds(min_x, max_x, min_y, max_y)


class _TwoRouteSolver(BaseSolver):
    MAX_ITERATIONS = 10

    def __init__(
        self,
        node_with_port_points: NodeWithPortPoints,
        trace_thickness: float = 0.15,
        via_diameter: float = 0.6,
        obstacle_margin: float = 0.1,
        connectivity: Optional[ConnectivityMap] = None,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(max_iterations)
        self.node_with_port_points = node_with_port_points
        self.trace_thickness = trace_thickness
        self.via_diameter = via_diameter
        self.obstacle_margin = obstacle_margin
        self.connectivity = connectivity
        self.bounds = node_with_port_points.bounds
        self.routes: List[IntraNodeConnection] = [
            c for c in get_connections_from_node(node_with_port_points) if not c.is_trivial
        ]
        self.solved_routes: List[HighDensityRoute] = []
        self.debug_via_positions: List[Point] = []

    def count_unsolved(self) -> int:
        return len(self.routes) - len(self.solved_routes)

    def other_layer(self, z: int) -> Optional[int]:
        for candidate in self.node_with_port_points.available_z:
            if candidate != z:
                return candidate
        return None

    def flat_route(self, connection: IntraNodeConnection) -> HighDensityRoute:
        return make_route(
            connection.connection_name,
            [connection.start, connection.end],
            self.trace_thickness,
            self.via_diameter,
        )

    def accept(self, routes: List[HighDensityRoute]) -> bool:
        for route in routes:
            if not all(_inside(p, self.bounds) for p in route.route):
                return False
        if find_route_conflicts(routes, self.obstacle_margin, self.connectivity):
            return False
        self.solved_routes = routes
        return True

    def routes_cross(self) -> bool:
        a, b = self.routes
        return do_segments_intersect(a.start, a.end, b.start, b.end)

    def visualize(self) -> GraphicsObject:
        graphics = visualize_intra_node_routes(self.node_with_port_points, self.solved_routes, self.name)
        for via in self.debug_via_positions:
            graphics["circles"].append({
                "center": {"x": via.x, "y": via.y},
                "radius": self.via_diameter / 2,
                "fill": "rgba(255,165,0,0.3)",
                "label": "Candidate via",
            })
        return graphics


class TwoCrossingRoutesSolver(_TwoRouteSolver):
    """Two flat routes on one layer that cross; one hops over with two vias."""

    def get_via_candidates(self, flat: IntraNodeConnection) -> List[Point]:
        inner = _shrink(self.bounds, self.obstacle_margin + self.via_diameter / 2)
        k1 = self.via_diameter + self.obstacle_margin
        corners = [
            Point(inner.min_x, inner.min_y),
            Point(inner.max_x, inner.min_y),
            Point(inner.max_x, inner.max_y),
            Point(inner.min_x, inner.max_y),
        ]
        candidates = list(corners)
        for center in (flat.start, flat.end):
            for p1, p2 in zip(corners, corners[1:] + corners[:1]):
                candidates.extend(find_circle_line_intersections(center, k1, p1, p2))
        for p in calculate_dumbbell_points(flat.start, flat.end, k1).values():
            candidates.append(Point(clamp(p.x, inner.min_x, inner.max_x), clamp(p.y, inner.min_y, inner.max_y)))

        via_to_trace = self.via_diameter / 2 + self.trace_thickness / 2 + self.obstacle_margin
        valid = []
        for p in candidates:
            if distance(p, flat.start) < k1 or distance(p, flat.end) < k1:
                continue
            if point_to_segment_distance(p, flat.start, flat.end) < via_to_trace:
                continue
            if any(distance(p, q) < 1e-9 for q in valid):
                continue
            valid.append(p)
        return valid

    def calculate_via_positions(self, hopping: IntraNodeConnection,
                                flat: IntraNodeConnection) -> Optional[Tuple[Point, Point]]:
        """Shortest via pair letting ``hopping`` cross ``flat`` on the other layer."""
        candidates = self.get_via_candidates(flat)
        self.debug_via_positions.extend(candidates)
        start_side = _side_of_line(hopping.start, flat.start, flat.end)
        end_side = _side_of_line(hopping.end, flat.start, flat.end)
        trace_clearance = self.trace_thickness + self.obstacle_margin

        def usable(via: Point, port: RoutePoint, side: float) -> bool:
            if _side_of_line(via, flat.start, flat.end) * side <= 0:
                return False
            return segment_to_segment_min_distance(port, via, flat.start, flat.end) >= trace_clearance

        firsts = [v for v in candidates if usable(v, hopping.start, start_side)]
        seconds = [v for v in candidates if usable(v, hopping.end, end_side)]
        best = None
        best_length = None
        for v1 in firsts:
            for v2 in seconds:
                if distance(v1, v2) < self.via_diameter + self.obstacle_margin:
                    continue
                length = distance(hopping.start, v1) + distance(v1, v2) + distance(v2, hopping.end)
                if best_length is None or length < best_length:
                    best = (v1, v2)
                    best_length = length
        return best

    def try_solve_hop(self, hopping: IntraNodeConnection, flat: IntraNodeConnection) -> bool:
        other_z = self.other_layer(hopping.start.z)
        if other_z is None:
            return False
        vias = self.calculate_via_positions(hopping, flat)
        if vias is None:
            return False
        v1, v2 = vias
        start, end = hopping.start, hopping.end
        hop_route = make_route(
            hopping.connection_name,
            [
                RoutePoint(start.x, start.y, start.z),
                RoutePoint(v1.x, v1.y, start.z),
                RoutePoint(v1.x, v1.y, other_z),
                RoutePoint(v2.x, v2.y, other_z),
                RoutePoint(v2.x, v2.y, end.z),
                RoutePoint(end.x, end.y, end.z),
            ],
            self.trace_thickness,
            self.via_diameter,
        )
        return self.accept([hop_route, self.flat_route(flat)])

    def _step(self):
        if len(self.routes) != 2:
            self.fail(f"Expected 2 routes, got {len(self.routes)}")
            return
        a, b = self.routes
        if a.start.z != a.end.z or b.start.z != b.end.z:
            self.fail("Both routes must stay on one layer")
            return

        if not self.routes_cross() or a.start.z != b.start.z:
            if self.accept([self.flat_route(a), self.flat_route(b)]):
                self.solved = True
            else:
                self.fail("Direct routes are too close")
            return

        if self.try_solve_hop(a, b) or self.try_solve_hop(b, a):
            self.solved = True
            return
        self.fail("No via positions let either route hop over the other")


class SingleTransitionCrossingRouteSolver(_TwoRouteSolver):
    """One route changes layer, the other stays flat, and they cross."""

    def calculate_via_position(self, transition: IntraNodeConnection,
                               flat: IntraNodeConnection) -> Point:
        flat_z = flat.start.z
        ntr_p1 = transition.start if transition.start.z != flat_z else transition.end

        margin_with_trace = self.obstacle_margin * 2 + self.via_diameter / 2 + self.trace_thickness
        margin_without_trace = self.obstacle_margin + self.via_diameter / 2
        a, b, c = flat.start, ntr_p1, flat.end
        traversal = calculate_side_traversal(a, b, c, self.bounds)

        def side_margin(side: str) -> float:
            return margin_with_trace if traversal[side] > 0.5 else margin_without_trace

        via_bounds = Bounds(
            self.bounds.min_x + side_margin("left"),
            self.bounds.max_x - side_margin("right"),
            self.bounds.min_y + side_margin("bottom"),
            self.bounds.max_y - side_margin("top"),
        )
        if via_bounds.max_x < via_bounds.min_x:
            via_bounds.min_x = via_bounds.max_x = (via_bounds.min_x + via_bounds.max_x) / 2
        if via_bounds.max_y < via_bounds.min_y:
            via_bounds.min_y = via_bounds.max_y = (via_bounds.min_y + via_bounds.max_y) / 2

        return find_closest_point_to_abc_within_bounds(a, b, c, margin_with_trace, via_bounds)

    def create_flat_route(self, flat: IntraNodeConnection, via: Point,
                          ntr_p1: RoutePoint) -> HighDensityRoute:
        """Flat route bending between the via and the transition's far port."""
        dx = ntr_p1.x - via.x
        dy = ntr_p1.y - via.y
        effective_a = Point(via.x + dx * self.via_diameter, via.y + dy * self.via_diameter)
        effective_b = Point(ntr_p1.x - dx * self.trace_thickness, ntr_p1.y - dy * self.trace_thickness)
        p2 = Point((effective_a.x + effective_b.x) / 2, (effective_a.y + effective_b.y) / 2)

        radius = self.via_diameter / 2 + self.trace_thickness / 2 + self.obstacle_margin
        z = flat.start.z
        points = [RoutePoint(flat.start.x, flat.start.y, z)]
        if point_to_segment_distance(via, flat.start, p2) < radius:
            p1 = find_point_to_get_around_circle(flat.start, p2, via, radius)["E"]
            points.append(RoutePoint(p1.x, p1.y, z))
        points.append(RoutePoint(p2.x, p2.y, z))
        if point_to_segment_distance(via, p2, flat.end) < radius:
            p3 = find_point_to_get_around_circle(p2, flat.end, via, radius)["E"]
            points.append(RoutePoint(p3.x, p3.y, z))
        points.append(RoutePoint(flat.end.x, flat.end.y, flat.end.z))
        return make_route(flat.connection_name, points, self.trace_thickness, self.via_diameter)

    def _step(self):
        if len(self.routes) != 2:
            self.fail(f"Expected 2 routes, got {len(self.routes)}")
            return
        a, b = self.routes
        a_transitions = a.start.z != a.end.z
        b_transitions = b.start.z != b.end.z
        if a_transitions == b_transitions:
            self.fail("Exactly one route must change layer")
            return
        if not self.routes_cross():
            self.fail("Can only solve routes that have a single transition crossing")
            return

        transition, flat = (a, b) if a_transitions else (b, a)
        via = self.calculate_via_position(transition, flat)
        self.debug_via_positions.append(via)

        start, end = transition.start, transition.end
        transition_route = make_route(
            transition.connection_name,
            [
                RoutePoint(start.x, start.y, start.z),
                RoutePoint(via.x, via.y, start.z),
                RoutePoint(via.x, via.y, end.z),
                RoutePoint(end.x, end.y, end.z),
            ],
            self.trace_thickness,
            self.via_diameter,
        )
        ntr_p1 = start if start.z != flat.start.z else end
        flat_route = self.create_flat_route(flat, via, ntr_p1)

        if self.accept([transition_route, flat_route]):
            self.solved = True
        else:
            self.fail("Closed-form single transition routes violate clearance")
