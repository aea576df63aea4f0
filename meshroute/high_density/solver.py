"""High-density routing of every node with port points."""

import logging
from typing import Dict, List, Optional

from ..config import HighDensityHyperParameters, HyperParameterDefs
from ..connectivity import ConnectivityMap
from ..solvers.base import BaseSolver, GraphicsObject, combine_visualizations, empty_graphics
from ..types import CapacityMeshNodeId, HighDensityRoute, NodeWithPortPoints
from .hyper_intra_node import HyperSingleIntraNodeSolver
from .routes import get_connections_from_node

logger = logging.getLogger(__name__)


class HighDensitySolver(BaseSolver):
    """Solve nodes one at a time with a ``HyperSingleIntraNodeSolver`` each.

    A node that cannot be fully routed contributes the routes of its best
    partial variant and records its unsolved connections; it does not stop
    the remaining nodes. The solver fails at the end if any node failed.
    """

    MAX_ITERATIONS = 10_000_000

    def __init__(
        self,
        nodes_with_port_points: List[NodeWithPortPoints],
        hyper_parameters: Optional[HighDensityHyperParameters] = None,
        hyper_parameter_defs: Optional[HyperParameterDefs] = None,
        trace_thickness: float = 0.15,
        via_diameter: float = 0.6,
        obstacle_margin: float = 0.1,
        connectivity: Optional[ConnectivityMap] = None,
        max_iterations_per_node: Optional[int] = None,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(max_iterations)
        self.nodes_with_port_points = list(nodes_with_port_points)
        self.hyper_parameters = hyper_parameters
        self.hyper_parameter_defs = hyper_parameter_defs
        self.trace_thickness = trace_thickness
        self.via_diameter = via_diameter
        self.obstacle_margin = obstacle_margin
        self.connectivity = connectivity
        self.max_iterations_per_node = max_iterations_per_node

        self.next_node_index = 0
        self.routes: List[HighDensityRoute] = []
        self.failed_node_ids: List[CapacityMeshNodeId] = []
        self.unsolved_connections_by_node: Dict[CapacityMeshNodeId, List[str]] = {}

    @property
    def failed_solvers(self) -> List[BaseSolver]:
        return self.failed_sub_solvers

    def _finish_node(self):
        solver: HyperSingleIntraNodeSolver = self.active_sub_solver
        self.active_sub_solver = None
        node_id = solver.node_with_port_points.capacity_mesh_node_id
        if solver.solved:
            self.routes.extend(solver.solved_routes)
            return

        self.failed_sub_solvers.append(solver)
        self.failed_node_ids.append(node_id)
        partial = solver.best_partial_solver
        partial_routes = list(getattr(partial, "solved_routes", []) or []) if partial else []
        self.routes.extend(partial_routes)
        routed = {r.connection_name for r in partial_routes}
        self.unsolved_connections_by_node[node_id] = [
            c.connection_name
            for c in get_connections_from_node(solver.node_with_port_points)
            if not c.is_trivial and c.connection_name not in routed
        ]
        logger.warning(
            f"High density routing failed for node {node_id}: "
            f"{', '.join(self.unsolved_connections_by_node[node_id]) or 'no connections'} unsolved"
        )

    def _step(self):
        if self.active_sub_solver is not None:
            self.active_sub_solver.step()
            if self.active_sub_solver.solved or self.active_sub_solver.failed:
                self._finish_node()
            return

        if self.next_node_index >= len(self.nodes_with_port_points):
            if self.failed_node_ids:
                self.fail(
                    f"Failed to solve {len(self.failed_node_ids)} nodes, "
                    f"{', '.join(self.failed_node_ids[:5])}. "
                    f"err0: {self.failed_sub_solvers[0].error}."
                )
                return
            self.solved = True
            self.progress = 1.0
            return

        node = self.nodes_with_port_points[self.next_node_index]
        self.next_node_index += 1
        self.progress = self.next_node_index / len(self.nodes_with_port_points)
        self.active_sub_solver = HyperSingleIntraNodeSolver(
            node,
            hyper_parameters=self.hyper_parameters,
            hyper_parameter_defs=self.hyper_parameter_defs,
            trace_thickness=self.trace_thickness,
            via_diameter=self.via_diameter,
            obstacle_margin=self.obstacle_margin,
            connectivity=self.connectivity,
            max_iterations=self.max_iterations_per_node,
        )

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics("High Density")
        for route in self.routes:
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
        if self.active_sub_solver is not None:
            return combine_visualizations(graphics, self.active_sub_solver.visualize())
        return graphics
