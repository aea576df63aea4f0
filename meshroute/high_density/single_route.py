"""Grid A* for one connection inside a mesh node.

Routes from A to B over a grid of ``cell_step`` cells on the node's layers,
avoiding traces and vias already placed by other connections. Costs follow
the intra-node hyperparameters:

- a via costs ``via_penalty_distance``, scaled by how many vias fit across
  the node per connection
- moving against the layer's preferred direction (horizontal on even
  layers, vertical on odd ones, or flipped) is penalized
- coming close to endpoints of connections that are still unrouted is
  penalized, so they keep room to escape
"""

import heapq
import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from ..config import HighDensityHyperParameters
from ..connectivity import ConnectivityMap
from ..geometry import clamp, distance, do_segments_intersect, point_to_segment_distance
from ..solvers.base import BaseSolver, GraphicsObject, empty_graphics
from ..types import Bounds, HighDensityRoute, RoutePoint
from .routes import IntraNodeConnection, are_connections_connected, get_same_layer_point_pairs, make_route

logger = logging.getLogger(__name__)


@dataclass
class GridNode:
    x: float
    y: float
    z: int
    g: float = 0.0
    h: float = 0.0
    f: float = 0.0
    parent: Optional["GridNode"] = None


# Snap to 0.1 micron for hashing
_KEY_PRECISION = 10000


def _node_key(x: float, y: float, z: int) -> Tuple[int, int, int]:
    return (int(round(x * _KEY_PRECISION)), int(round(y * _KEY_PRECISION)), z)


class SingleHighDensityRouteSolver(BaseSolver):
    """Weighted A* for one connection; one node is expanded per step."""

    MAX_ITERATIONS = 10_000
    MIN_CELL_SIZE = 0.05
    GREEDY_MULTIPLIER = 1.2

    def __init__(
        self,
        connection_name: str,
        bounds: Bounds,
        a: RoutePoint,
        b: RoutePoint,
        obstacle_routes: Optional[List[HighDensityRoute]] = None,
        future_connections: Optional[List[IntraNodeConnection]] = None,
        hyper_parameters: Optional[HighDensityHyperParameters] = None,
        trace_thickness: float = 0.15,
        via_diameter: float = 0.6,
        obstacle_margin: float = 0.1,
        available_z: Optional[List[int]] = None,
        min_dist_between_entering_points: float = 0.0,
        connectivity: Optional[ConnectivityMap] = None,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(max_iterations)
        self.connection_name = connection_name
        self.bounds = bounds
        self.a = a
        self.b = b
        self.hyper_parameters = hyper_parameters or HighDensityHyperParameters()
        self.trace_thickness = trace_thickness
        self.via_diameter = via_diameter
        self.obstacle_margin = obstacle_margin
        self.available_z = list(available_z) if available_z is not None else [0, 1]
        self.connectivity = connectivity
        self.future_connections = list(future_connections or [])

        # Same-net routes never block each other
        self.obstacle_routes = [
            route for route in (obstacle_routes or [])
            if not are_connections_connected(connectivity, route.connection_name, connection_name)
        ]
        self.obstacle_segments = [
            pair for route in self.obstacle_routes for pair in get_same_layer_point_pairs(route)
        ]
        self.obstacle_vias = [via for route in self.obstacle_routes for via in route.vias]

        self.trace_clearance = trace_thickness + obstacle_margin
        if 0 < min_dist_between_entering_points < self.trace_clearance:
            # Port points are packed tighter than the rules allow; relax so
            # traces can still leave their ports
            self.trace_clearance = min_dist_between_entering_points * 0.95
        self.via_to_trace_clearance = via_diameter / 2 + trace_thickness / 2 + obstacle_margin
        self.via_to_via_clearance = via_diameter + obstacle_margin

        self.num_routes = len(self.obstacle_routes) + len(self.future_connections) + 1
        self.cell_step = self.MIN_CELL_SIZE * self.hyper_parameters.cell_size_factor
        best_row_or_column_count = math.ceil(5 * self.num_routes)
        while (bounds.width / self.cell_step) * (bounds.height / self.cell_step) > best_row_or_column_count ** 2:
            self.cell_step *= 2

        self.straight_line_distance = max(distance(a, b), 1e-6)
        vias_that_fit_across = bounds.width / via_diameter
        self.via_penalty_factor = (
            0.3 * (vias_that_fit_across / self.num_routes) * self.hyper_parameters.via_penalty_factor_2
        )
        self.via_penalty_distance = (
            (self.cell_step + self.straight_line_distance / 2) * max(self.via_penalty_factor, 1.0)
        )

        start = GridNode(a.x, a.y, a.z)
        start.h = self.compute_h(start)
        start.f = start.h * self.GREEDY_MULTIPLIER
        self._counter = 0
        self.candidates: List[Tuple[float, int, GridNode]] = [(start.f, 0, start)]
        self.explored: Set[Tuple[int, int, int]] = set()
        self.solved_path: Optional[HighDensityRoute] = None

    # Collision tests

    def is_node_too_close_to_obstacle(self, node: GridNode, is_via: bool = False) -> bool:
        trace_clearance = self.via_to_trace_clearance if is_via else self.trace_clearance
        for z, p1, p2 in self.obstacle_segments:
            if (is_via or z == node.z) and point_to_segment_distance(node, p1, p2) < trace_clearance:
                return True
        via_clearance = self.via_to_via_clearance if is_via else self.via_to_trace_clearance
        for via in self.obstacle_vias:
            if distance(node, via) < via_clearance:
                return True
        return False

    def is_node_too_close_to_edge(self, node: GridNode) -> bool:
        radius = self.via_diameter / 2
        return (
            node.x - radius < self.bounds.min_x
            or node.x + radius > self.bounds.max_x
            or node.y - radius < self.bounds.min_y
            or node.y + radius > self.bounds.max_y
        )

    def does_path_to_parent_intersect_obstacle(self, node: GridNode) -> bool:
        parent = node.parent
        if parent is None:
            return False
        for z, p1, p2 in self.obstacle_segments:
            if z == node.z and do_segments_intersect(node, parent, p1, p2):
                return True
        return False

    # Costs

    def get_closest_future_connection_point(self, node: GridNode) -> Optional[RoutePoint]:
        closest = None
        min_dist = math.inf
        for connection in self.future_connections:
            for point in connection.points:
                d = distance(node, point)
                if d < min_dist:
                    min_dist = d
                    closest = point
        return closest

    def get_future_connection_penalty(self, node: GridNode, is_via: bool) -> float:
        closest = self.get_closest_future_connection_point(node)
        if closest is None:
            return 0.0
        goal_dist = distance(node, self.b)
        dist_to_future_point = distance(node, closest)
        if goal_dist <= dist_to_future_point:
            return 0.0
        hp = self.hyper_parameters
        max_dist = self.via_diameter * hp.future_connection_proximity_vd
        dist_ratio = dist_to_future_point / max_dist
        factor = (
            hp.future_connection_prox_via_penalty_factor if is_via
            else hp.future_connection_prox_trace_penalty_factor
        )
        return self.straight_line_distance * factor * math.exp(-dist_ratio * 5)

    def compute_h(self, node: GridNode) -> float:
        goal_dist = distance(node, self.b) ** 1.6
        base = goal_dist + (self.via_penalty_distance if node.z != self.b.z else 0)
        is_via = node.parent is not None and node.z != node.parent.z
        return base + self.get_future_connection_penalty(node, is_via)

    def compute_g(self, node: GridNode) -> float:
        parent = node.parent
        dx = abs(node.x - parent.x)
        dy = abs(node.y - parent.y)
        horizontal_layer = (node.z % 2 == 0) != self.hyper_parameters.flip_trace_alignment_direction
        misaligned_dist = dy if horizontal_layer else dx
        is_via = node.z != parent.z
        return (
            parent.g
            + (self.via_penalty_distance if is_via else 0)
            + math.hypot(dx, dy)
            + misaligned_dist * self.hyper_parameters.misaligned_dist_penalty_factor
            + self.get_future_connection_penalty(node, is_via)
        )

    def _score(self, node: GridNode):
        node.g = self.compute_g(node)
        node.h = self.compute_h(node)
        node.f = node.g + node.h * self.GREEDY_MULTIPLIER

    def get_neighbors(self, node: GridNode) -> List[GridNode]:
        neighbors = []
        bounds = self.bounds
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                if dx == 0 and dy == 0:
                    continue
                neighbor = GridNode(
                    clamp(node.x + dx * self.cell_step, bounds.min_x, bounds.max_x),
                    clamp(node.y + dy * self.cell_step, bounds.min_y, bounds.max_y),
                    node.z,
                    parent=node,
                )
                if _node_key(neighbor.x, neighbor.y, neighbor.z) in self.explored:
                    continue
                if self.is_node_too_close_to_obstacle(neighbor):
                    continue
                if self.does_path_to_parent_intersect_obstacle(neighbor):
                    continue
                self._score(neighbor)
                neighbors.append(neighbor)

        for z in self.available_z:
            if z == node.z:
                continue
            via_neighbor = GridNode(node.x, node.y, z, parent=node)
            if _node_key(node.x, node.y, z) in self.explored:
                continue
            if self.is_node_too_close_to_obstacle(via_neighbor, is_via=True):
                continue
            if self.is_node_too_close_to_edge(via_neighbor):
                continue
            self._score(via_neighbor)
            neighbors.append(via_neighbor)
        return neighbors

    def set_solved_path(self, node: GridNode):
        path: List[GridNode] = []
        current: Optional[GridNode] = node
        while current is not None:
            path.append(current)
            current = current.parent
        path.reverse()
        points = [RoutePoint(n.x, n.y, n.z) for n in path]
        last = points[-1]
        if last.x != self.b.x or last.y != self.b.y:
            points.append(RoutePoint(self.b.x, self.b.y, self.b.z))
        self.solved_path = make_route(
            self.connection_name, points, self.trace_thickness, self.via_diameter
        )

    def _step(self):
        current = None
        while self.candidates:
            _, _, candidate = heapq.heappop(self.candidates)
            if _node_key(candidate.x, candidate.y, candidate.z) not in self.explored:
                current = candidate
                break
        if current is None:
            self.fail(f"No path found for {self.connection_name}")
            return

        self.explored.add(_node_key(current.x, current.y, current.z))
        goal_dist = distance(current, self.b)
        if current.z == self.b.z and goal_dist <= self.cell_step:
            self.set_solved_path(current)
            self.solved = True
            self.progress = 1.0
            return

        for neighbor in self.get_neighbors(current):
            self._counter += 1
            heapq.heappush(self.candidates, (neighbor.f, self._counter, neighbor))
        self.progress = max(self.progress, 1 - goal_dist / self.straight_line_distance)

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics(f"Single route {self.connection_name}")
        graphics["points"].append({"x": self.a.x, "y": self.a.y, "label": "Input A", "color": "orange"})
        graphics["points"].append({"x": self.b.x, "y": self.b.y, "label": "Input B", "color": "orange"})
        graphics["lines"].append({
            "points": [{"x": self.a.x, "y": self.a.y}, {"x": self.b.x, "y": self.b.y}],
            "stroke_color": "rgba(255,0,0,0.5)",
            "label": "Direct Input Connection",
        })
        for z, p1, p2 in self.obstacle_segments:
            graphics["lines"].append({
                "points": [{"x": p1.x, "y": p1.y}, {"x": p2.x, "y": p2.y}],
                "layer": z,
                "stroke_width": self.trace_thickness,
                "label": "Obstacle Route",
            })
        for via in self.obstacle_vias:
            graphics["circles"].append({
                "center": {"x": via.x, "y": via.y},
                "radius": self.via_diameter / 2,
                "fill": "rgba(255,0,0,0.5)",
                "label": "Via",
            })
        if self.solved_path is not None:
            graphics["lines"].append({
                "points": [{"x": p.x, "y": p.y} for p in self.solved_path.route],
                "stroke_color": "green",
                "label": "Solved Route",
            })
        return graphics
