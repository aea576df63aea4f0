"""Collision indexes over obstacles and already-placed routes.

Both wrap a ``SpatialIndex`` strategy for the broad phase and do the exact,
margin-aware distance test themselves.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..geometry import point_to_segment_distance, segment_to_box_min_distance, segment_to_segment_min_distance
from ..types import Bounds, HighDensityRoute, Obstacle, Point
from .spatial_index import SpatialIndex, create_spatial_index

logger = logging.getLogger(__name__)


def _segment_bbox(a, b, margin: float = 0.0) -> Tuple[float, float, float, float]:
    return (
        min(a.x, b.x) - margin,
        min(a.y, b.y) - margin,
        max(a.x, b.x) + margin,
        max(a.y, b.y) + margin,
    )


class ObstacleIndex:
    """Obstacles bucketed by bounding box."""

    def __init__(self, obstacles: Sequence[Obstacle], strategy: str = "grid", cell_size: float = 1.0):
        self.obstacles = list(obstacles)
        self.index: SpatialIndex[Obstacle] = create_spatial_index(strategy, cell_size)
        for obstacle in self.obstacles:
            self.index.insert(obstacle, obstacle.bounds.as_tuple())

    def get_obstacles_in_area(self, bounds: Bounds) -> List[Obstacle]:
        return self.index.search(bounds.as_tuple())

    def get_obstacles_near_segment(
        self, a, b, z: int, margin: float, ignore_nets: Sequence[str] = ()
    ) -> List[Obstacle]:
        """Obstacles on layer ``z`` closer than ``margin`` to segment a-b.

        Obstacles connected to one of ``ignore_nets`` never block.
        """
        result = []
        for obstacle in self.index.search(_segment_bbox(a, b, margin)):
            if not obstacle.occupies_z(z):
                continue
            if ignore_nets and any(net in ignore_nets for net in obstacle.connected_to):
                continue
            if segment_to_box_min_distance(a, b, obstacle.bounds) < margin:
                result.append(obstacle)
        return result


@dataclass
class StoredSegment:
    connection_name: str
    start: Point
    end: Point
    z: int
    trace_thickness: float


@dataclass
class StoredVia:
    connection_name: str
    position: Point
    via_diameter: float


class RouteIndex:
    """Trace segments and vias of placed routes.

    Segments only conflict with queries on the same layer; vias span all
    layers.
    """

    def __init__(self, routes: Sequence[HighDensityRoute] = (), strategy: str = "grid",
                 cell_size: float = 1.0):
        self.segments: SpatialIndex[StoredSegment] = create_spatial_index(strategy, cell_size)
        self.vias: SpatialIndex[StoredVia] = create_spatial_index(strategy, cell_size)
        self.max_half_width = 0.0
        for route in routes:
            self.add_route(route)

    def add_route(self, route: HighDensityRoute):
        for p1, p2 in zip(route.route, route.route[1:]):
            if p1.z != p2.z or (p1.x == p2.x and p1.y == p2.y):
                continue
            segment = StoredSegment(
                route.connection_name, Point(p1.x, p1.y), Point(p2.x, p2.y), p1.z,
                route.trace_thickness,
            )
            self.segments.insert(segment, _segment_bbox(p1, p2))
            self.max_half_width = max(self.max_half_width, route.trace_thickness / 2)
        for via in route.vias:
            stored = StoredVia(route.connection_name, Point(via.x, via.y), route.via_diameter)
            self.vias.insert(stored, (via.x, via.y, via.x, via.y))
            self.max_half_width = max(self.max_half_width, route.via_diameter / 2)

    def get_conflicting_routes_for_segment(
        self, a, b, z: Optional[int], margin: float, ignore_connections: Sequence[str] = ()
    ) -> List[Tuple[str, float]]:
        """Routes closer than ``margin`` (plus their half width) to segment a-b.

        Returns ``(connection_name, centerline distance)`` pairs, one per
        route, sorted by name.
        """
        conflicts: Dict[str, float] = {}
        search_margin = margin + self.max_half_width
        bbox = _segment_bbox(a, b, search_margin)

        for segment in self.segments.search(bbox):
            if segment.connection_name in ignore_connections:
                continue
            if z is not None and segment.z != z:
                continue
            dist = segment_to_segment_min_distance(a, b, segment.start, segment.end)
            if dist < margin + segment.trace_thickness / 2:
                conflicts[segment.connection_name] = min(
                    dist, conflicts.get(segment.connection_name, dist)
                )

        for via in self.vias.search(bbox):
            if via.connection_name in ignore_connections:
                continue
            dist = point_to_segment_distance(via.position, a, b)
            if dist < margin + via.via_diameter / 2:
                conflicts[via.connection_name] = min(dist, conflicts.get(via.connection_name, dist))

        return sorted(conflicts.items())

    def get_conflicting_routes_near_point(
        self, point, margin: float, ignore_connections: Sequence[str] = ()
    ) -> List[Tuple[str, float]]:
        """Routes on any layer closer than ``margin`` (plus half width) to ``point``."""
        return self.get_conflicting_routes_for_segment(
            point, point, None, margin, ignore_connections
        )

