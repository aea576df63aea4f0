"""Shared helpers for the intra-node solvers."""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..connectivity import ConnectivityMap
from ..geometry import distance, point_to_segment_distance, segment_to_segment_min_distance
from ..types import HighDensityRoute, NodeWithPortPoints, Point, RoutePoint


@dataclass
class IntraNodeConnection:
    """The port points one connection has inside a node, in input order."""
    connection_name: str
    points: List[RoutePoint] = field(default_factory=list)

    @property
    def start(self) -> RoutePoint:
        return self.points[0]

    @property
    def end(self) -> RoutePoint:
        return self.points[-1]

    @property
    def is_trivial(self) -> bool:
        """Nothing to route: a single point, or both ends coincide."""
        if len(self.points) < 2:
            return True
        a, b = self.start, self.end
        return a.x == b.x and a.y == b.y and a.z == b.z


def get_connections_from_node(node: NodeWithPortPoints) -> List[IntraNodeConnection]:
    """Group a node's port points by connection, preserving first appearance."""
    grouped: Dict[str, IntraNodeConnection] = {}
    for pp in node.port_points:
        connection = grouped.setdefault(pp.connection_name, IntraNodeConnection(pp.connection_name))
        connection.points.append(RoutePoint(pp.x, pp.y, pp.z))
    return list(grouped.values())


def get_min_dist_between_entering_points(node: NodeWithPortPoints) -> float:
    """Smallest distance between two port points on the same layer (0 if none)."""
    min_dist = math.inf
    points = node.port_points
    for i in range(len(points)):
        for j in range(i + 1, len(points)):
            if points[i].z != points[j].z:
                continue
            min_dist = min(min_dist, distance(points[i], points[j]))
    return 0.0 if min_dist == math.inf else min_dist


def get_same_layer_point_pairs(route: HighDensityRoute) -> List[Tuple[int, RoutePoint, RoutePoint]]:
    """(z, a, b) for every route segment that stays on one layer."""
    pairs = []
    for a, b in zip(route.route, route.route[1:]):
        if a.z == b.z:
            pairs.append((a.z, a, b))
    return pairs


def make_route(connection_name: str, points: List[RoutePoint], trace_thickness: float,
               via_diameter: float) -> HighDensityRoute:
    """Build a route, placing a via wherever consecutive points change layer."""
    vias = []
    for a, b in zip(points, points[1:]):
        if a.z != b.z:
            vias.append(Point(a.x, a.y))
    return HighDensityRoute(
        connection_name=connection_name,
        route=list(points),
        vias=vias,
        trace_thickness=trace_thickness,
        via_diameter=via_diameter,
    )


def are_connections_connected(connectivity: Optional[ConnectivityMap], a: str, b: str) -> bool:
    if a == b:
        return True
    return connectivity is not None and connectivity.are_ids_connected(a, b)


def find_route_conflicts(
    routes: List[HighDensityRoute],
    obstacle_margin: float,
    connectivity: Optional[ConnectivityMap] = None,
) -> List[Tuple[str, str]]:
    """Pairs of connections whose traces or vias come closer than allowed.

    Traces conflict on a shared layer below ``trace_thickness + margin``;
    vias block every layer.
    """
    conflicts = []
    for i in range(len(routes)):
        for j in range(i + 1, len(routes)):
            a, b = routes[i], routes[j]
            if are_connections_connected(connectivity, a.connection_name, b.connection_name):
                continue
            if _routes_conflict(a, b, obstacle_margin):
                conflicts.append((a.connection_name, b.connection_name))
    return conflicts


def _routes_conflict(a: HighDensityRoute, b: HighDensityRoute, margin: float) -> bool:
    trace_clearance = (a.trace_thickness + b.trace_thickness) / 2 + margin
    for za, a1, a2 in get_same_layer_point_pairs(a):
        for zb, b1, b2 in get_same_layer_point_pairs(b):
            if za == zb and segment_to_segment_min_distance(a1, a2, b1, b2) < trace_clearance - 1e-9:
                return True

    for route, other in ((a, b), (b, a)):
        via_clearance = route.via_diameter / 2 + other.trace_thickness / 2 + margin
        for via in route.vias:
            for _, p1, p2 in get_same_layer_point_pairs(other):
                if point_to_segment_distance(via, p1, p2) < via_clearance - 1e-9:
                    return True

    via_spacing = (a.via_diameter + b.via_diameter) / 2 + margin
    for via_a in a.vias:
        for via_b in b.vias:
            if distance(via_a, via_b) < via_spacing - 1e-9:
                return True
    return False
