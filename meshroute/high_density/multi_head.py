"""
Multi-Head Polyline Intra-Node Solver

Routes every connection of a node at once as a polyline through a small
number of vias. Candidate via positions come from the intersections of
the straight port-to-port lines and the centroids of a subdivided cell.

The search walks via-count variants (fewest vias first; a connection that
changes layer needs an odd count, one that does not an even count), and
for each variant every combination of the best via placements per
connection. The first arrangement in which no traces of different
connections cross or crowd each other on a layer, and no via sits on
another connection's trace, is accepted.
"""

import logging
from itertools import permutations, product
from typing import Iterator, List, Optional, Sequence, Tuple

from ..config import HighDensityHyperParameters
from ..connectivity import ConnectivityMap
from ..geometry import distance, get_segment_intersection, polyline_length
from ..solvers.base import BaseSolver, GraphicsObject
from ..types import Bounds, HighDensityRoute, NodeWithPortPoints, Point, RoutePoint
from .intra_node import visualize_intra_node_routes
from .routes import IntraNodeConnection, find_route_conflicts, get_connections_from_node, make_route

logger = logging.getLogger(__name__)

ViaPlacement = Tuple[Point, ...]


class MultiHeadPolyLineIntraNodeSolver(BaseSolver):
    MAX_ITERATIONS = 20_000
    MAX_OPTIONS_PER_CONNECTION = 6
    CELL_SUBDIVISIONS = 3

    def __init__(
        self,
        node_with_port_points: NodeWithPortPoints,
        hyper_parameters: Optional[HighDensityHyperParameters] = None,
        trace_thickness: float = 0.15,
        via_diameter: float = 0.6,
        obstacle_margin: float = 0.1,
        connectivity: Optional[ConnectivityMap] = None,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(max_iterations)
        self.node_with_port_points = node_with_port_points
        self.hyper_parameters = hyper_parameters or HighDensityHyperParameters()
        self.trace_thickness = trace_thickness
        self.via_diameter = via_diameter
        self.obstacle_margin = obstacle_margin
        self.connectivity = connectivity
        self.bounds = node_with_port_points.bounds

        padding = via_diameter / 2 + self.hyper_parameters.boundary_padding
        b = self.bounds
        self.inner_bounds = Bounds(
            min(b.min_x + padding, b.center.x),
            max(b.max_x - padding, b.center.x),
            min(b.min_y + padding, b.center.y),
            max(b.max_y - padding, b.center.y),
        )

        self.connections: List[IntraNodeConnection] = [
            c for c in get_connections_from_node(node_with_port_points) if not c.is_trivial
        ]
        self.candidate_via_positions = self.get_candidate_via_positions()
        self.via_count_variants = self.compute_via_count_variants()
        self._variant_index = 0
        self._arrangements: Optional[Iterator[Tuple[ViaPlacement, ...]]] = None
        self.arrangements_tried = 0
        self.solved_routes: List[HighDensityRoute] = []
        self.last_routes: List[HighDensityRoute] = []

    def count_unsolved(self) -> int:
        return 0 if self.solved else len(self.connections)

    def other_layer(self, z: int) -> Optional[int]:
        for candidate in self.node_with_port_points.available_z:
            if candidate != z:
                return candidate
        return None

    def get_candidate_via_positions(self) -> List[Point]:
        inner = self.inner_bounds
        candidates: List[Point] = []
        for i in range(len(self.connections)):
            for j in range(i + 1, len(self.connections)):
                a, b = self.connections[i], self.connections[j]
                crossing = get_segment_intersection(a.start, a.end, b.start, b.end)
                if crossing is not None:
                    candidates.append(crossing)

        n = self.CELL_SUBDIVISIONS
        for ix in range(n):
            for iy in range(n):
                candidates.append(Point(
                    inner.min_x + (ix + 0.5) * inner.width / n,
                    inner.min_y + (iy + 0.5) * inner.height / n,
                ))

        port_clearance = self.via_diameter / 2 + self.trace_thickness / 2 + self.obstacle_margin
        valid: List[Point] = []
        for p in candidates:
            if not inner.contains(p.x, p.y):
                continue
            if any(distance(p, pp) < port_clearance for pp in self.node_with_port_points.port_points):
                continue
            if any(distance(p, q) < 1e-6 for q in valid):
                continue
            valid.append(p)
        return valid

    def compute_via_count_variants(self) -> List[Tuple[int, ...]]:
        max_vias = self.hyper_parameters.max_vias_per_connection
        choices = []
        for connection in self.connections:
            needs_odd = connection.start.z != connection.end.z
            counts = [k for k in range(max_vias + 1) if (k % 2 == 1) == needs_odd]
            if len(self.node_with_port_points.available_z) < 2:
                counts = [k for k in counts if k == 0]
            choices.append(counts)
        variants = list(product(*choices))
        variants.sort(key=lambda v: (sum(v), v))
        return variants

    def get_placements(self, connection: IntraNodeConnection, via_count: int) -> List[ViaPlacement]:
        """Best via placements for one connection, shortest polyline first."""
        if via_count == 0:
            return [()]
        placements = []
        for vias in permutations(self.candidate_via_positions, via_count):
            if any(distance(p, q) < self.via_diameter for p, q in zip(vias, vias[1:])):
                continue
            length = polyline_length([connection.start, *vias, connection.end])
            placements.append((length, vias))
        placements.sort(key=lambda item: item[0])
        return [vias for _, vias in placements[:self.MAX_OPTIONS_PER_CONNECTION]]

    def build_route(self, connection: IntraNodeConnection, vias: Sequence[Point]) -> Optional[HighDensityRoute]:
        start, end = connection.start, connection.end
        points = [RoutePoint(start.x, start.y, start.z)]
        z = start.z
        for via in vias:
            next_z = self.other_layer(z)
            if next_z is None:
                return None
            points.append(RoutePoint(via.x, via.y, z))
            points.append(RoutePoint(via.x, via.y, next_z))
            z = next_z
        if z != end.z:
            return None
        points.append(RoutePoint(end.x, end.y, end.z))
        return make_route(connection.connection_name, points, self.trace_thickness, self.via_diameter)

    def _next_variant(self) -> bool:
        while self._variant_index < len(self.via_count_variants):
            variant = self.via_count_variants[self._variant_index]
            self._variant_index += 1
            options = [self.get_placements(c, k) for c, k in zip(self.connections, variant)]
            if all(options):
                self._arrangements = product(*options)
                return True
        return False

    def _step(self):
        if not self.connections:
            self.solved = True
            self.progress = 1.0
            return
        if self._arrangements is None and not self._next_variant():
            self.fail(f"No via arrangement found after {self.arrangements_tried} tries")
            return

        arrangement = next(self._arrangements, None)
        if arrangement is None:
            self._arrangements = None
            return
        self.arrangements_tried += 1

        routes = []
        for connection, vias in zip(self.connections, arrangement):
            route = self.build_route(connection, vias)
            if route is None:
                return
            routes.append(route)
        self.last_routes = routes
        if not find_route_conflicts(routes, self.obstacle_margin, self.connectivity):
            self.solved_routes = routes
            self.solved = True
            self.progress = 1.0
            return
        self.progress = self._variant_index / max(len(self.via_count_variants), 1) * 0.99

    def visualize(self) -> GraphicsObject:
        routes = self.solved_routes or self.last_routes
        graphics = visualize_intra_node_routes(self.node_with_port_points, routes, self.name)
        for p in self.candidate_via_positions:
            graphics["points"].append({"x": p.x, "y": p.y, "color": "gray", "label": "via candidate"})
        return graphics
