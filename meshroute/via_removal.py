"""
Useless Via Removal

Post-pass over stitched routes that drops layer changes a route does not
need.

A route is split into sections, maximal runs of points on one layer.
Two passes are applied to each route:

1. Bracket collapse: an inner section whose neighbours are both on the
   same other layer (``z0 -> z1 -> z0``) is moved to that layer when
   nothing on it is in the way. Both of its vias disappear.
2. Alternate layer: an inner section between two different layers is
   moved to one of them, and (when endpoint layers are not pinned) a
   first or last section is moved to its neighbour's layer. Each move
   removes one via.

Every moved segment is tested against the obstacle index and the route
index of the other connections with a margin-aware distance test. The
indexes use a grid cell size calibrated from the obstacle and via sizes
unless one is given. Routes are swept until a full sweep changes nothing,
so running the solver on its own output changes nothing.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .connectivity import ConnectivityMap
from .data_structures.route_index import ObstacleIndex, RouteIndex
from .data_structures.spatial_index import auto_calibrate_cell_size
from .solvers.base import BaseSolver, GraphicsObject, empty_graphics
from .types import HighDensityRoute, Obstacle, Point, RoutePoint

logger = logging.getLogger(__name__)


@dataclass
class RouteSection:
    start_index: int
    end_index: int  # inclusive
    z: int


def get_route_sections(route: Sequence[RoutePoint]) -> List[RouteSection]:
    """Split a polyline into maximal same-layer runs."""
    sections: List[RouteSection] = []
    for i, point in enumerate(route):
        if sections and sections[-1].z == point.z:
            sections[-1].end_index = i
        else:
            sections.append(RouteSection(i, i, point.z))
    return sections


def compute_vias(route: Sequence[RoutePoint]) -> List[Point]:
    """A via at every layer change, deduplicated by position."""
    vias: List[Point] = []
    for a, b in zip(route, route[1:]):
        if a.z != b.z:
            via = Point(a.x, a.y)
            if via not in vias:
                vias.append(via)
    return vias


def count_layer_changes(route: Sequence[RoutePoint]) -> int:
    return sum(1 for a, b in zip(route, route[1:]) if a.z != b.z)


class UselessViaRemovalSolver(BaseSolver):
    """Remove unneeded vias from every route; one route per step."""

    MAX_ITERATIONS = 1_000_000

    def __init__(
        self,
        routes: Sequence[HighDensityRoute],
        obstacles: Sequence[Obstacle] = (),
        connectivity: Optional[ConnectivityMap] = None,
        obstacle_margin: float = 0.1,
        preserve_endpoint_layers: bool = True,
        spatial_index_strategy: str = "grid",
        cell_size: Optional[float] = None,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(max_iterations)
        self.routes: List[HighDensityRoute] = [
            HighDensityRoute(
                connection_name=r.connection_name,
                route=list(r.route),
                vias=list(r.vias),
                trace_thickness=r.trace_thickness,
                via_diameter=r.via_diameter,
            )
            for r in routes
        ]
        self.connectivity = connectivity
        self.obstacle_margin = obstacle_margin
        self.preserve_endpoint_layers = preserve_endpoint_layers
        self.spatial_index_strategy = spatial_index_strategy
        if cell_size is None:
            sizes = [(o.width, o.height) for o in obstacles]
            sizes.extend((r.via_diameter, r.via_diameter) for r in self.routes)
            cell_size = auto_calibrate_cell_size(sizes)
        self.cell_size = cell_size

        self.obstacle_index = ObstacleIndex(obstacles, spatial_index_strategy, cell_size)
        self.route_index: Optional[RouteIndex] = None

        self.initial_via_count = sum(count_layer_changes(r.route) for r in self.routes)
        self.current_route_index = 0
        self.sweep = 0
        self.changed_in_sweep = False

    def _get_route_index(self) -> RouteIndex:
        if self.route_index is None:
            self.route_index = RouteIndex(self.routes, self.spatial_index_strategy, self.cell_size)
        return self.route_index

    def _connected_ids(self, connection_name: str) -> List[str]:
        ids = [connection_name]
        if self.connectivity is not None:
            ids.extend(self.connectivity.get_ids_connected_to(connection_name))
        return ids

    def is_segment_clear(self, a, b, z: int, route: HighDensityRoute) -> bool:
        """True when a trace a-b on layer ``z`` keeps its clearance from
        obstacles and other nets' routes."""
        ignore = self._connected_ids(route.connection_name)
        margin = route.trace_thickness / 2 + self.obstacle_margin
        if self.obstacle_index.get_obstacles_near_segment(a, b, z, margin, ignore_nets=ignore):
            return False
        conflicts = self._get_route_index().get_conflicting_routes_for_segment(
            a, b, z, margin, ignore_connections=ignore
        )
        return not conflicts

    def try_move_section(
        self, route: HighDensityRoute, section: RouteSection, target_z: int
    ) -> Optional[List[RoutePoint]]:
        """Points of ``route`` with ``section`` moved to ``target_z``, or None
        when a moved segment would collide."""
        points = list(route.route)
        for i in range(section.start_index, section.end_index + 1):
            p = points[i]
            points[i] = RoutePoint(p.x, p.y, target_z)

        first = max(section.start_index - 1, 0)
        last = min(section.end_index + 1, len(points) - 1)
        for i in range(first, last):
            a, b = points[i], points[i + 1]
            if a.z != target_z or b.z != target_z:
                continue
            if a.x == b.x and a.y == b.y:
                continue
            if not self.is_segment_clear(a, b, target_z, route):
                return None
        return points

    def collapse_brackets(self, route: HighDensityRoute) -> bool:
        """Pass 1. Returns True when the route changed."""
        sections = get_route_sections(route.route)
        for k in range(1, len(sections) - 1):
            prev_section, section, next_section = sections[k - 1], sections[k], sections[k + 1]
            if prev_section.z != next_section.z:
                continue
            points = self.try_move_section(route, section, prev_section.z)
            if points is not None:
                route.route = points
                return True
        return False

    def remove_layer_changes(self, route: HighDensityRoute) -> bool:
        """Pass 2. Returns True when the route changed."""
        sections = get_route_sections(route.route)
        if len(sections) < 2:
            return False
        for k, section in enumerate(sections):
            is_end = k == 0 or k == len(sections) - 1
            if is_end and self.preserve_endpoint_layers:
                continue
            targets = []
            if k > 0:
                targets.append(sections[k - 1].z)
            if k < len(sections) - 1 and sections[k + 1].z not in targets:
                targets.append(sections[k + 1].z)
            if not is_end and len(targets) < 2:
                # Same layer on both sides is a bracket
                continue
            for target_z in targets:
                points = self.try_move_section(route, section, target_z)
                if points is not None:
                    route.route = points
                    return True
        return False

    def optimize_route(self, route: HighDensityRoute) -> bool:
        """Apply both passes until the route stops changing."""
        changed = False
        while self.collapse_brackets(route) or self.remove_layer_changes(route):
            changed = True
        vias = compute_vias(route.route)
        if vias != route.vias:
            route.vias = vias
            changed = True
        return changed

    def _step(self):
        if self.current_route_index >= len(self.routes):
            if self.changed_in_sweep:
                self.sweep += 1
                self.current_route_index = 0
                self.changed_in_sweep = False
                return
            self.solved = True
            self.progress = 1.0
            removed = self.initial_via_count - self.get_via_count()
            logger.debug(f"Removed {removed} layer changes in {self.sweep + 1} sweeps")
            return

        route = self.routes[self.current_route_index]
        before = count_layer_changes(route.route)
        if self.optimize_route(route):
            self.route_index = None
            self.changed_in_sweep = True
            logger.debug(
                f"{route.connection_name}: {before} -> "
                f"{count_layer_changes(route.route)} layer changes"
            )
        self.current_route_index += 1
        self.progress = self.current_route_index / max(len(self.routes), 1)

    def get_via_count(self) -> int:
        return sum(count_layer_changes(r.route) for r in self.routes)

    def get_optimized_routes(self) -> List[HighDensityRoute]:
        return self.routes

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics("Useless Via Removal")
        for route in self.routes:
            for section in get_route_sections(route.route):
                points = route.route[section.start_index:section.end_index + 1]
                if len(points) < 2:
                    continue
                graphics["lines"].append({
                    "points": [{"x": p.x, "y": p.y} for p in points],
                    "layer": section.z,
                    "stroke_width": route.trace_thickness,
                    "stroke_dash": "10 5" if section.z != 0 else None,
                    "connection_name": route.connection_name,
                })
            for via in route.vias:
                graphics["circles"].append({
                    "center": {"x": via.x, "y": via.y},
                    "radius": route.via_diameter / 2,
                    "layer": "via",
                    "label": f"{route.connection_name} via",
                })
        return graphics
