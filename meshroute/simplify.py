"""
Path Simplification

Post-pass that straightens stitched routes. High-density routing leaves a
route with a point on every node border it crosses; most of those bends
are not needed once the whole route is known.

For each route a tail point is fixed and a head point is pushed forward
as long as the straight segment from tail to head keeps its clearance
from obstacles and from the routes of other nets on that layer. The
points in between are dropped and the head becomes the next tail. Layer
changes are never shortcut: both points of a via are kept, so the via
count and the route endpoints never change.

Routes are simplified one at a time against the current state of every
other route, whether already simplified or not.
"""

import logging
from typing import List, Optional, Sequence

from .connectivity import ConnectivityMap
from .data_structures.route_index import ObstacleIndex, RouteIndex
from .data_structures.spatial_index import auto_calibrate_cell_size
from .solvers.base import BaseSolver, GraphicsObject, empty_graphics
from .types import HighDensityRoute, Obstacle, RoutePoint
from .via_removal import compute_vias

logger = logging.getLogger(__name__)


class SingleSimplifiedPathSolver(BaseSolver):
    """Simplify one route; each step places one output point."""

    def __init__(
        self,
        route: HighDensityRoute,
        obstacle_index: ObstacleIndex,
        route_index: RouteIndex,
        ignore_connections: Sequence[str] = (),
        obstacle_margin: float = 0.1,
    ):
        super().__init__(max_iterations=len(route.route) + 1)
        self.input_route = route
        self.obstacle_index = obstacle_index
        self.route_index = route_index
        self.ignore_connections = list(ignore_connections) or [route.connection_name]
        self.margin = route.trace_thickness / 2 + obstacle_margin
        self.tail = 0
        self.new_points: List[RoutePoint] = list(route.route[:1])
        self.simplified_route: Optional[HighDensityRoute] = None

    def is_shortcut_clear(self, a: RoutePoint, b: RoutePoint) -> bool:
        if a.x == b.x and a.y == b.y:
            return True
        if self.obstacle_index.get_obstacles_near_segment(
            a, b, a.z, self.margin, ignore_nets=self.ignore_connections
        ):
            return False
        return not self.route_index.get_conflicting_routes_for_segment(
            a, b, a.z, self.margin, ignore_connections=self.ignore_connections
        )

    def _step(self):
        points = self.input_route.route
        if self.tail >= len(points) - 1:
            route = self.input_route
            self.simplified_route = HighDensityRoute(
                connection_name=route.connection_name,
                route=self.new_points,
                vias=compute_vias(self.new_points),
                trace_thickness=route.trace_thickness,
                via_diameter=route.via_diameter,
            )
            self.solved = True
            self.progress = 1.0
            return

        tail_point = points[self.tail]
        head = self.tail + 1
        if points[head].z == tail_point.z:
            while (
                head + 1 < len(points)
                and points[head + 1].z == tail_point.z
                and self.is_shortcut_clear(tail_point, points[head + 1])
            ):
                head += 1
        self.new_points.append(points[head])
        self.tail = head
        self.progress = self.tail / max(len(points) - 1, 1)


class MultiSimplifiedPathSolver(BaseSolver):
    """Simplify every route in turn."""

    MAX_ITERATIONS = 1_000_000

    def __init__(
        self,
        routes: Sequence[HighDensityRoute],
        obstacles: Sequence[Obstacle] = (),
        connectivity: Optional[ConnectivityMap] = None,
        obstacle_margin: float = 0.1,
        spatial_index_strategy: str = "grid",
        cell_size: Optional[float] = None,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(max_iterations)
        self.routes: List[HighDensityRoute] = list(routes)
        self.connectivity = connectivity
        self.obstacle_margin = obstacle_margin
        self.spatial_index_strategy = spatial_index_strategy
        if cell_size is None:
            sizes = [(o.width, o.height) for o in obstacles]
            sizes.extend((r.via_diameter, r.via_diameter) for r in self.routes)
            cell_size = auto_calibrate_cell_size(sizes)
        self.cell_size = cell_size
        self.obstacle_index = ObstacleIndex(obstacles, spatial_index_strategy, cell_size)
        self.current_route_index = 0
        self.removed_point_count = 0

    def _connected_ids(self, connection_name: str) -> List[str]:
        ids = [connection_name]
        if self.connectivity is not None:
            ids.extend(self.connectivity.get_ids_connected_to(connection_name))
        return ids

    def _step(self):
        solver = self.active_sub_solver
        if solver is not None:
            solver.step()
            if solver.solved:
                simplified = solver.simplified_route
                self.removed_point_count += len(solver.input_route.route) - len(simplified.route)
                self.routes[self.current_route_index] = simplified
                self.current_route_index += 1
                self.progress = self.current_route_index / max(len(self.routes), 1)
                self.active_sub_solver = None
            elif solver.failed:
                # keep the route as stitched
                self.failed_sub_solvers.append(solver)
                self.current_route_index += 1
                self.active_sub_solver = None
            return

        if self.current_route_index >= len(self.routes):
            self.solved = True
            self.progress = 1.0
            logger.debug(f"Simplification removed {self.removed_point_count} route points")
            return

        route = self.routes[self.current_route_index]
        self.active_sub_solver = SingleSimplifiedPathSolver(
            route,
            self.obstacle_index,
            RouteIndex(self.routes, self.spatial_index_strategy, self.cell_size),
            ignore_connections=self._connected_ids(route.connection_name),
            obstacle_margin=self.obstacle_margin,
        )

    def get_simplified_routes(self) -> List[HighDensityRoute]:
        return self.routes

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics("Path Simplification")
        for route in self.routes:
            graphics["lines"].append({
                "points": [{"x": p.x, "y": p.y} for p in route.route],
                "stroke_width": route.trace_thickness,
                "connection_name": route.connection_name,
            })
            for via in route.vias:
                graphics["circles"].append({
                    "center": {"x": via.x, "y": via.y},
                    "radius": route.via_diameter / 2,
                    "label": f"{route.connection_name} via",
                })
        return graphics
