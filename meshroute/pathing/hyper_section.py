"""Re-solve one mesh section under several connection orderings."""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from ..config import HyperParameterDefs, PathingHyperParameters, load_hyperparameter_defs
from ..solvers.base import BaseSolver
from ..solvers.supervisor import HyperParameterSupervisor, SupervisedSolver
from ..types import CapacityMeshNodeId
from .section import Section, compute_section_score, get_used_capacity_from_paths
from .solver import CapacityPathingGreedySolver, get_pathing_total_capacity

logger = logging.getLogger(__name__)


class HyperCapacityPathingSingleSectionSolver(HyperParameterSupervisor):
    """Supervise greedy section solvers, one per shuffle seed.

    The first ordering that routes every section terminal wins; its paths
    are kept in ``best_solved_paths`` (section node ids, start to end).
    """

    MAX_ITERATIONS = 10_000
    MIN_SUBSTEPS = 100

    def __init__(
        self,
        section: Section,
        hyper_parameters: Optional[PathingHyperParameters] = None,
        hyper_parameter_defs: Optional[HyperParameterDefs] = None,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(max_iterations)
        self.section = section
        self.base_hyper_parameters = hyper_parameters or PathingHyperParameters()
        self.hyper_parameter_defs = hyper_parameter_defs
        self.node_map = {n.capacity_mesh_node_id: n for n in section.section_nodes}
        self.best_solved_paths: Optional[Dict[str, List[CapacityMeshNodeId]]] = None
        self.section_score: Optional[float] = None

    def get_hyper_parameter_defs(self) -> HyperParameterDefs:
        if self.hyper_parameter_defs is None:
            self.hyper_parameter_defs = load_hyperparameter_defs("capacity_pathing")
        return self.hyper_parameter_defs

    def generate_solver(self, hyper_parameters: Dict[str, Any]) -> BaseSolver:
        return CapacityPathingGreedySolver(
            self.section.section_nodes,
            self.section.section_edges,
            self.section.section_connection_terminals,
            hyper_parameters=replace(self.base_hyper_parameters, **hyper_parameters),
        )

    def compute_g(self, solver: BaseSolver) -> float:
        return solver.iterations / 1000

    def compute_h(self, solver: BaseSolver) -> float:
        return 1 - solver.compute_progress()

    def count_unsolved(self, solver: BaseSolver) -> int:
        return len(solver.terminals) - len(solver.paths)

    def compute_score_for_paths(self, paths: Dict[str, List[CapacityMeshNodeId]]) -> float:
        factor = self.base_hyper_parameters.max_capacity_factor
        total = {
            node_id: get_pathing_total_capacity(node, factor)
            for node_id, node in self.node_map.items()
        }
        used = get_used_capacity_from_paths(paths.values(), self.node_map)
        return compute_section_score(total, used, self.node_map)

    def on_solve(self, supervised: SupervisedSolver):
        self.best_solved_paths = supervised.solver.get_path_node_ids()
        self.section_score = self.compute_score_for_paths(self.best_solved_paths)
