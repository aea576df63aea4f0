"""Sequential greedy routing of every connection inside one node."""

import logging
from typing import List, Optional

from ..config import HighDensityHyperParameters
from ..connectivity import ConnectivityMap
from ..solvers.base import BaseSolver, GraphicsObject, empty_graphics
from ..types import HighDensityRoute, NodeWithPortPoints
from ..utils import clone_and_shuffle
from .routes import IntraNodeConnection, get_connections_from_node, get_min_dist_between_entering_points
from .single_route import SingleHighDensityRouteSolver

logger = logging.getLogger(__name__)


class IntraNodeRouteSolver(BaseSolver):
    """Route the node's connections one after another.

    Each connection is routed by a ``SingleHighDensityRouteSolver`` that
    treats the routes placed so far as obstacles and the connections still
    waiting as future connections. A shuffle seed changes the order (and
    which end of each connection is the start) to diversify variants.
    """

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
        self.node_with_port_points = node_with_port_points
        self.hyper_parameters = hyper_parameters or HighDensityHyperParameters()
        self.trace_thickness = trace_thickness
        self.via_diameter = via_diameter
        self.obstacle_margin = obstacle_margin
        self.connectivity = connectivity

        connections = get_connections_from_node(node_with_port_points)
        seed = self.hyper_parameters.shuffle_seed
        if seed:
            connections = clone_and_shuffle(connections, seed)
            # Some costs are biased towards the start of a trace
            connections = [
                IntraNodeConnection(c.connection_name, clone_and_shuffle(c.points, i * 7117 + seed))
                for i, c in enumerate(connections)
            ]
        # Routed from the end of the list
        self.unsolved_connections: List[IntraNodeConnection] = connections
        self.total_connections = len(connections)

        if max_iterations is None:
            max_iterations = int(1_000 * max(self.total_connections, 1) ** 1.5) + 1_000
        super().__init__(max_iterations)

        self.solved_routes: List[HighDensityRoute] = []
        self.min_dist_between_entering_points = get_min_dist_between_entering_points(node_with_port_points)

    @property
    def failed_solvers(self) -> List[BaseSolver]:
        return self.failed_sub_solvers

    def compute_progress(self) -> float:
        if self.total_connections == 0:
            return 1.0
        active = self.active_sub_solver.progress if self.active_sub_solver is not None else 0
        return (len(self.solved_routes) + active) / self.total_connections

    def count_unsolved(self) -> int:
        return self.total_connections - len(self.solved_routes)

    def _step(self):
        if self.active_sub_solver is not None:
            self.active_sub_solver.step()
            if self.active_sub_solver.solved:
                self.solved_routes.append(self.active_sub_solver.solved_path)
                self.active_sub_solver = None
            elif self.active_sub_solver.failed:
                self.failed_sub_solvers.append(self.active_sub_solver)
                self.active_sub_solver = None
                self.fail("\n".join(s.error or "" for s in self.failed_sub_solvers))
            self.progress = self.compute_progress()
            return

        if not self.unsolved_connections:
            self.solved = True
            self.progress = 1.0
            return

        connection = self.unsolved_connections.pop()
        if connection.is_trivial:
            self.total_connections -= 1
            return

        self.active_sub_solver = SingleHighDensityRouteSolver(
            connection.connection_name,
            self.node_with_port_points.bounds,
            connection.start,
            connection.end,
            obstacle_routes=self.solved_routes,
            future_connections=self.unsolved_connections,
            hyper_parameters=self.hyper_parameters,
            trace_thickness=self.trace_thickness,
            via_diameter=self.via_diameter,
            obstacle_margin=self.obstacle_margin,
            available_z=self.node_with_port_points.available_z,
            min_dist_between_entering_points=self.min_dist_between_entering_points,
            connectivity=self.connectivity,
        )
        self.progress = self.compute_progress()

    def visualize(self) -> GraphicsObject:
        return visualize_intra_node_routes(
            self.node_with_port_points, self.solved_routes, f"Intra node {self.node_with_port_points.capacity_mesh_node_id}"
        )


def visualize_intra_node_routes(node: NodeWithPortPoints, routes: List[HighDensityRoute],
                                title: Optional[str] = None) -> GraphicsObject:
    """Port points, routes and vias of one node, plus its dashed border."""
    graphics = empty_graphics(title)
    for pp in node.port_points:
        graphics["points"].append({
            "x": pp.x, "y": pp.y, "layer": pp.z,
            "label": f"{pp.connection_name}\nlayer: {pp.z}",
        })
    for step, route in enumerate(routes):
        for p1, p2 in zip(route.route, route.route[1:]):
            graphics["lines"].append({
                "points": [{"x": p1.x, "y": p1.y}, {"x": p2.x, "y": p2.y}],
                "layer": p1.z,
                "step": step,
                "stroke_width": route.trace_thickness,
                "connection_name": route.connection_name,
            })
        for via in route.vias:
            graphics["circles"].append({
                "center": {"x": via.x, "y": via.y},
                "radius": route.via_diameter / 2,
                "layer": "via",
                "step": step,
            })
    b = node.bounds
    graphics["lines"].append({
        "points": [
            {"x": b.min_x, "y": b.min_y},
            {"x": b.max_x, "y": b.min_y},
            {"x": b.max_x, "y": b.max_y},
            {"x": b.min_x, "y": b.max_y},
            {"x": b.min_x, "y": b.min_y},
        ],
        "stroke_color": "rgba(255,0,0,0.25)",
        "stroke_dash": "4 4",
        "layer": "border",
    })
    return graphics
