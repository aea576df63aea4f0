"""Hyperparameter supervisor over the intra-node strategies of one node."""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from ..config import HighDensityHyperParameters, HyperParameterDefs, load_hyperparameter_defs
from ..connectivity import ConnectivityMap
from ..solvers.base import BaseSolver
from ..solvers.supervisor import HyperParameterSupervisor, SupervisedSolver
from ..types import HighDensityRoute, NodeWithPortPoints
from .intra_node import IntraNodeRouteSolver
from .multi_head import MultiHeadPolyLineIntraNodeSolver
from .routes import get_connections_from_node
from .two_route import SingleTransitionCrossingRouteSolver, TwoCrossingRoutesSolver

logger = logging.getLogger(__name__)


class HyperSingleIntraNodeSolver(HyperParameterSupervisor):
    """Run every strategy variant for one node; the first to solve wins.

    Variants come from the ``high_density`` section of the hyperparameter
    definitions. Closed-form two-route variants are only generated for
    nodes with exactly two connections. Multi-head polyline variants are
    scheduled after the cheaper greedy ones.
    """

    MAX_ITERATIONS = 250_000
    GREEDY_MULTIPLIER = 5
    MIN_SUBSTEPS = 100

    def __init__(
        self,
        node_with_port_points: NodeWithPortPoints,
        hyper_parameters: Optional[HighDensityHyperParameters] = None,
        hyper_parameter_defs: Optional[HyperParameterDefs] = None,
        trace_thickness: float = 0.15,
        via_diameter: float = 0.6,
        obstacle_margin: float = 0.1,
        connectivity: Optional[ConnectivityMap] = None,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(max_iterations)
        self.node_with_port_points = node_with_port_points
        self.base_hyper_parameters = hyper_parameters or HighDensityHyperParameters()
        self.hyper_parameter_defs = hyper_parameter_defs
        self.trace_thickness = trace_thickness
        self.via_diameter = via_diameter
        self.obstacle_margin = obstacle_margin
        self.connectivity = connectivity
        self.num_routes = sum(
            1 for c in get_connections_from_node(node_with_port_points) if not c.is_trivial
        )
        self.solved_routes: List[HighDensityRoute] = []

    def get_hyper_parameter_defs(self) -> HyperParameterDefs:
        if self.hyper_parameter_defs is None:
            self.hyper_parameter_defs = load_hyperparameter_defs("high_density")
        return self.hyper_parameter_defs

    def generate_solver(self, hyper_parameters: Dict[str, Any]) -> Optional[BaseSolver]:
        hp = replace(self.base_hyper_parameters, **hyper_parameters)
        common = dict(
            trace_thickness=self.trace_thickness,
            via_diameter=self.via_diameter,
            obstacle_margin=self.obstacle_margin,
            connectivity=self.connectivity,
        )
        if hp.closed_form_two_trace_same_layer:
            if self.num_routes != 2:
                return None
            solver = TwoCrossingRoutesSolver(self.node_with_port_points, **common)
        elif hp.closed_form_two_trace_transition_crossing:
            if self.num_routes != 2:
                return None
            solver = SingleTransitionCrossingRouteSolver(self.node_with_port_points, **common)
        elif hp.multi_head_polyline:
            solver = MultiHeadPolyLineIntraNodeSolver(
                self.node_with_port_points, hyper_parameters=hp, **common
            )
        else:
            solver = IntraNodeRouteSolver(self.node_with_port_points, hyper_parameters=hp, **common)
        solver.hyper_parameters = hp
        return solver

    def compute_g(self, solver: BaseSolver) -> float:
        hp: HighDensityHyperParameters = solver.hyper_parameters
        if hp.multi_head_polyline:
            return 1000 + (hp.iteration_penalty + solver.iterations) / 10_000
        return solver.iterations / 10_000

    def compute_h(self, solver: BaseSolver) -> float:
        return 1 - (solver.progress or 0)

    def count_unsolved(self, solver: BaseSolver) -> int:
        return solver.count_unsolved()

    def get_failure_message(self) -> str:
        return (
            f"All {len(self.supervised_solvers or [])} variants failed for node "
            f"{self.node_with_port_points.capacity_mesh_node_id}"
        )

    def on_solve(self, supervised: SupervisedSolver):
        self.solved_routes = supervised.solver.solved_routes
