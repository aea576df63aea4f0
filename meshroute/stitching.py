"""
Route Stitching

Joins the per-node route fragments of each connection into one continuous
polyline.

Fragments are chained greedily: the chain starts with the fragment whose
endpoint is nearest the connection's start point, and each next fragment
is the remaining one with an endpoint nearest the current chain end
(reversed when its far end is nearer). Junction points closer than
``MERGE_DISTANCE`` are merged. A junction where the layer differs keeps
both points and records a via. Fragments further than ``stitch_tolerance``
from the chain are left out and reported in ``unstitched_fragments``.
A stitched chain that does not begin and end within ``stitch_tolerance`` of
the connection's points fails the connection. A connection whose two points
coincide needs no fragments and becomes a route of just those points.
"""

import logging
from typing import Dict, List, Optional

from .geometry import distance
from .solvers.base import BaseSolver, GraphicsObject, empty_graphics
from .types import Connection, HighDensityRoute, Point, RoutePoint

logger = logging.getLogger(__name__)

MERGE_DISTANCE = 1e-6


def _same_position(a, b) -> bool:
    return distance(a, b) <= MERGE_DISTANCE


def _add_via(vias: List[Point], x: float, y: float):
    via = Point(x, y)
    if not any(_same_position(via, v) for v in vias):
        vias.append(via)


class SingleHighDensityRouteStitchSolver(BaseSolver):
    """Stitch the fragments of one connection; one fragment per step."""

    def __init__(
        self,
        connection_name: str,
        fragments: List[HighDensityRoute],
        start: RoutePoint,
        end: RoutePoint,
        stitch_tolerance: float = 0.05,
        trace_thickness: float = 0.15,
        via_diameter: float = 0.6,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(max_iterations)
        self.connection_name = connection_name
        self.remaining_fragments = [f for f in fragments if f.route]
        self.start = start
        self.end = end
        self.stitch_tolerance = stitch_tolerance
        self.trace_thickness = fragments[0].trace_thickness if fragments else trace_thickness
        self.via_diameter = fragments[0].via_diameter if fragments else via_diameter

        self.points: List[RoutePoint] = []
        self.vias: List[Point] = []
        self.unstitched_fragments: List[HighDensityRoute] = []
        self.merged_route: Optional[HighDensityRoute] = None
        self.total_fragments = len(self.remaining_fragments)

    def _append_point(self, point: RoutePoint):
        if self.points:
            last = self.points[-1]
            if _same_position(last, point):
                if last.z == point.z:
                    return
                _add_via(self.vias, last.x, last.y)
            elif last.z != point.z:
                # Change layer at the chain end before moving on
                self.points.append(RoutePoint(last.x, last.y, point.z))
                _add_via(self.vias, last.x, last.y)
        self.points.append(point)

    def _take_nearest_fragment(self, anchor) -> Optional[HighDensityRoute]:
        """Pop the fragment with an endpoint nearest ``anchor``, oriented towards it."""
        best_index = None
        best_distance = None
        best_reversed = False
        for i, fragment in enumerate(self.remaining_fragments):
            d_first = distance(anchor, fragment.route[0])
            d_last = distance(anchor, fragment.route[-1])
            d = min(d_first, d_last)
            if best_distance is None or d < best_distance:
                best_index = i
                best_distance = d
                best_reversed = d_last < d_first
        if best_index is None:
            return None
        if self.points and best_distance > self.stitch_tolerance:
            return None
        fragment = self.remaining_fragments.pop(best_index)
        if best_reversed:
            fragment = HighDensityRoute(
                connection_name=fragment.connection_name,
                route=list(reversed(fragment.route)),
                vias=fragment.vias,
                trace_thickness=fragment.trace_thickness,
                via_diameter=fragment.via_diameter,
            )
        return fragment

    def _finish(self):
        if not self.points and distance(self.start, self.end) <= self.stitch_tolerance:
            self.points = [
                RoutePoint(self.start.x, self.start.y, self.start.z),
                RoutePoint(self.end.x, self.end.y, self.end.z),
            ]
            if self.start.z != self.end.z:
                _add_via(self.vias, self.start.x, self.start.y)
        if not self.points:
            self.fail(f"No route fragments for {self.connection_name}")
            return
        if self.remaining_fragments:
            self.unstitched_fragments.extend(self.remaining_fragments)
            self.remaining_fragments = []
            logger.warning(
                f"{len(self.unstitched_fragments)} fragments of {self.connection_name} "
                f"are further than {self.stitch_tolerance} from the stitched route"
            )

        if not _same_position(self.points[0], self.start) and distance(self.points[0], self.start) <= self.stitch_tolerance:
            first = self.points[0]
            self.points.insert(0, RoutePoint(self.start.x, self.start.y, first.z))
        if not _same_position(self.points[-1], self.end) and distance(self.points[-1], self.end) <= self.stitch_tolerance:
            self._append_point(RoutePoint(self.end.x, self.end.y, self.points[-1].z))

        for label, terminal, point in (("start", self.start, self.points[0]), ("end", self.end, self.points[-1])):
            gap = distance(terminal, point)
            if gap > self.stitch_tolerance:
                self.fail(
                    f"Stitched route of {self.connection_name} misses its {label} "
                    f"point by {gap:.3f}"
                )
                return

        self.merged_route = HighDensityRoute(
            connection_name=self.connection_name,
            route=self.points,
            vias=self.vias,
            trace_thickness=self.trace_thickness,
            via_diameter=self.via_diameter,
        )
        self.solved = True
        self.progress = 1.0

    def _step(self):
        anchor = self.points[-1] if self.points else self.start
        fragment = self._take_nearest_fragment(anchor)
        if fragment is None:
            self._finish()
            return

        for point in fragment.route:
            self._append_point(RoutePoint(point.x, point.y, point.z))
        for via in fragment.vias:
            _add_via(self.vias, via.x, via.y)
        if self.total_fragments:
            self.progress = 1 - len(self.remaining_fragments) / self.total_fragments

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics(f"Stitch {self.connection_name}")
        for p1, p2 in zip(self.points, self.points[1:]):
            graphics["lines"].append({
                "points": [{"x": p1.x, "y": p1.y}, {"x": p2.x, "y": p2.y}],
                "layer": p1.z,
                "stroke_width": self.trace_thickness,
            })
        for fragment in self.remaining_fragments + self.unstitched_fragments:
            graphics["lines"].append({
                "points": [{"x": p.x, "y": p.y} for p in fragment.route],
                "stroke_color": "rgba(255,0,0,0.5)",
                "stroke_dash": "2 2",
                "label": "unstitched",
            })
        for via in self.vias:
            graphics["circles"].append({
                "center": {"x": via.x, "y": via.y},
                "radius": self.via_diameter / 2,
                "layer": "via",
            })
        return graphics


class MultipleHighDensityRouteStitchSolver(BaseSolver):
    """Stitch every connection's fragments.

    A connection that cannot be stitched is recorded in
    ``failed_connection_names`` and does not stop the others; the solver
    fails at the end if any did.
    """

    MAX_ITERATIONS = 1_000_000

    def __init__(
        self,
        connections: List[Connection],
        hd_routes: List[HighDensityRoute],
        stitch_tolerance: float = 0.05,
        trace_thickness: float = 0.15,
        via_diameter: float = 0.6,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(max_iterations)
        self.stitch_tolerance = stitch_tolerance
        self.trace_thickness = trace_thickness
        self.via_diameter = via_diameter

        fragments_by_name: Dict[str, List[HighDensityRoute]] = {}
        for route in hd_routes:
            fragments_by_name.setdefault(route.connection_name, []).append(route)

        self.unsolved_connections = []
        for connection in connections:
            if len(connection.points_to_connect) < 2:
                continue
            first = connection.points_to_connect[0]
            last = connection.points_to_connect[-1]
            self.unsolved_connections.append((
                connection.name,
                fragments_by_name.get(connection.name, []),
                RoutePoint(first.x, first.y, first.z),
                RoutePoint(last.x, last.y, last.z),
            ))
        self.total_connections = len(self.unsolved_connections)
        self.next_index = 0

        self.merged_hd_routes: List[HighDensityRoute] = []
        self.failed_connection_names: List[str] = []
        self.failure_reasons: Dict[str, str] = {}
        self.unstitched_fragments: Dict[str, List[HighDensityRoute]] = {}

    def _step(self):
        solver = self.active_sub_solver
        if solver is not None:
            solver.step()
            if solver.solved:
                self.merged_hd_routes.append(solver.merged_route)
                if solver.unstitched_fragments:
                    self.unstitched_fragments[solver.connection_name] = solver.unstitched_fragments
                self.active_sub_solver = None
            elif solver.failed:
                self.failed_sub_solvers.append(solver)
                self.failed_connection_names.append(solver.connection_name)
                self.failure_reasons[solver.connection_name] = (
                    "no route fragments to stitch" if solver.total_fragments == 0
                    else "stitched route does not reach both connection points"
                )
                logger.warning(f"Stitching failed for {solver.connection_name}: {solver.error}")
                self.active_sub_solver = None
            return

        if self.next_index >= len(self.unsolved_connections):
            if self.failed_connection_names:
                self.fail(f"Failed to stitch {', '.join(self.failed_connection_names)}")
                return
            self.solved = True
            self.progress = 1.0
            return

        name, fragments, start, end = self.unsolved_connections[self.next_index]
        self.next_index += 1
        self.progress = self.next_index / max(self.total_connections, 1)
        self.active_sub_solver = SingleHighDensityRouteStitchSolver(
            name,
            fragments,
            start,
            end,
            stitch_tolerance=self.stitch_tolerance,
            trace_thickness=self.trace_thickness,
            via_diameter=self.via_diameter,
        )

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics("Route Stitching")
        for route in self.merged_hd_routes:
            for p1, p2 in zip(route.route, route.route[1:]):
                graphics["lines"].append({
                    "points": [{"x": p1.x, "y": p1.y}, {"x": p2.x, "y": p2.y}],
                    "layer": p1.z,
                    "stroke_width": route.trace_thickness,
                    "connection_name": route.connection_name,
                })
            for via in route.vias:
                graphics["circles"].append({
                    "center": {"x": via.x, "y": via.y},
                    "radius": route.via_diameter / 2,
                    "layer": "via",
                })
        return graphics
