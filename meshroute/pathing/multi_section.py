"""
Multi-Section Capacity Pathing

Routes every connection once with overcommitment allowed, then repeatedly
picks the most overcommitted node, cuts out the section around it and
re-solves that section under several connection orderings. A section
result is spliced into the global paths only when it improves the
section's capacity score.
"""

import logging
from typing import Dict, List, Optional

from ..cache.provider import CacheProvider
from ..config import HyperParameterDefs, PathingHyperParameters
from ..errors import FailureKind, InvariantViolation
from ..solvers.base import BaseSolver, GraphicsObject
from ..types import (
    CapacityMeshEdge,
    CapacityMeshNode,
    CapacityMeshNodeId,
    CapacityPath,
    ConnectionTerminal,
)
from ..utils import get_node_edge_map
from .cached_section import CachedHyperCapacityPathingSingleSectionSolver
from .section import (
    Section,
    compute_section,
    compute_section_score,
    get_used_capacity_from_paths,
)
from .solver import CapacityPathingGreedySolver

logger = logging.getLogger(__name__)


class CapacityPathingMultiSectionSolver(BaseSolver):
    """Initial greedy pass followed by per-section re-solves."""

    MAX_ITERATIONS = 10_000_000

    def __init__(
        self,
        nodes: List[CapacityMeshNode],
        edges: List[CapacityMeshEdge],
        terminals: List[ConnectionTerminal],
        hyper_parameters: Optional[PathingHyperParameters] = None,
        expansion_degrees: int = 3,
        max_section_optimizations: int = 50,
        cache_provider: Optional[CacheProvider] = None,
        section_hyper_parameter_defs: Optional[HyperParameterDefs] = None,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(max_iterations)
        self.nodes = nodes
        self.edges = edges
        self.terminals = terminals
        self.hyper_parameters = hyper_parameters or PathingHyperParameters()
        self.expansion_degrees = expansion_degrees
        self.max_section_optimizations = max_section_optimizations
        self.cache_provider = cache_provider
        self.section_hyper_parameter_defs = section_hyper_parameter_defs

        self.node_map: Dict[CapacityMeshNodeId, CapacityMeshNode] = {
            n.capacity_mesh_node_id: n for n in nodes
        }
        self.node_edge_map = get_node_edge_map(edges)

        self.initial_solver = CapacityPathingGreedySolver(
            nodes, edges, terminals, hyper_parameters=self.hyper_parameters
        )
        self.stage = "initialization"

        self.connection_paths: Dict[str, List[CapacityMeshNodeId]] = {}
        self.failed_connection_names: List[str] = []
        self.total_node_capacity_map: Dict[CapacityMeshNodeId, float] = {}
        self.used_node_capacity_map: Dict[CapacityMeshNodeId, float] = {}
        self.node_optimization_attempt_count_map: Dict[CapacityMeshNodeId, int] = {}

        self.active_section: Optional[Section] = None
        self.section_optimizations = 0
        self.improved_sections: List[CapacityMeshNodeId] = []
        self.failed_sections: List[CapacityMeshNodeId] = []

    def get_capacity_percent(self, node_id: CapacityMeshNodeId) -> float:
        total = self.total_node_capacity_map[node_id]
        if total <= 0:
            return float("inf") if self.used_node_capacity_map[node_id] > 0 else 0.0
        return self.used_node_capacity_map[node_id] / total

    def _step_initialization(self):
        self.initial_solver.solve()
        self.failed_connection_names = list(self.initial_solver.failed_connection_names)
        if self.initial_solver.failure_kind == FailureKind.ITERATION_BUDGET_EXCEEDED:
            self.fail(self.initial_solver.error, self.initial_solver.failure_kind)
            return

        self.total_node_capacity_map = dict(self.initial_solver.total_node_capacity_map)
        self.connection_paths = {
            t.connection_name: [n.capacity_mesh_node_id for n in self.initial_solver.paths[t.connection_name]]
            for t in self.terminals
            if t.connection_name in self.initial_solver.paths
        }
        self.used_node_capacity_map = get_used_capacity_from_paths(
            self.connection_paths.values(), self.node_map
        )
        self.node_optimization_attempt_count_map = {n.capacity_mesh_node_id: 0 for n in self.nodes}
        self.stage = "section_optimization"
        logger.debug(
            f"Initial pathing routed {len(self.connection_paths)}/{len(self.terminals)} connections, "
            f"{sum(1 for n in self.nodes if self.get_capacity_percent(n.capacity_mesh_node_id) > 1)} "
            f"nodes over capacity"
        )

    def get_next_node_to_optimize(self) -> Optional[CapacityMeshNodeId]:
        """Most overcommitted non-target node not yet used as a section centre."""
        best_percent = 1.0
        best_node_id: Optional[CapacityMeshNodeId] = None
        for node in self.nodes:
            if node.contains_target:
                continue
            node_id = node.capacity_mesh_node_id
            if self.node_optimization_attempt_count_map[node_id] > 0:
                continue
            percent = self.get_capacity_percent(node_id)
            if percent > best_percent:
                best_percent = percent
                best_node_id = node_id
        return best_node_id

    def _start_section(self, center_node_id: CapacityMeshNodeId):
        self.node_optimization_attempt_count_map[center_node_id] += 1
        self.section_optimizations += 1
        self.active_section = compute_section(
            center_node_id,
            self.connection_paths,
            self.node_map,
            self.node_edge_map,
            self.edges,
            self.expansion_degrees,
        )
        self.active_sub_solver = CachedHyperCapacityPathingSingleSectionSolver(
            self.active_section,
            hyper_parameters=self.hyper_parameters,
            hyper_parameter_defs=self.section_hyper_parameter_defs,
            cache_provider=self.cache_provider,
        )
        logger.debug(
            f"Optimizing section around {center_node_id} "
            f"({len(self.active_section.section_nodes)} nodes, "
            f"{len(self.active_section.section_connection_terminals)} connections)"
        )

    def splice_section_paths(
        self, section: Section, section_paths: Dict[str, List[CapacityMeshNodeId]]
    ) -> Dict[str, List[CapacityMeshNodeId]]:
        """Global paths with each section part replaced by its re-solved path."""
        spliced = dict(self.connection_paths)
        for connection_name, section_path in section_paths.items():
            path = self.connection_paths.get(connection_name)
            if path is None:
                raise InvariantViolation(f"Section solved unknown connection {connection_name}")
            inside = [i for i, node_id in enumerate(path) if node_id in section.section_node_ids]
            first, last = inside[0], inside[-1]
            if section_path[0] != path[first] or section_path[-1] != path[last]:
                raise InvariantViolation(
                    f"Section path for {connection_name} does not match its terminals"
                )
            spliced[connection_name] = path[:first] + list(section_path) + path[last + 1:]
        return spliced

    def _finish_section(self):
        solver: CachedHyperCapacityPathingSingleSectionSolver = self.active_sub_solver
        section = self.active_section
        self.active_sub_solver = None
        self.active_section = None

        if solver.failed:
            logger.warning(f"Section around {section.center_node_id} failed: {solver.error}")
            self.failed_sections.append(section.center_node_id)
            self.failed_sub_solvers.append(solver)
            return

        current_score = compute_section_score(
            self.total_node_capacity_map,
            self.used_node_capacity_map,
            self.node_map,
            section.section_node_ids,
        )
        candidate_paths = self.splice_section_paths(section, solver.best_solved_paths or {})
        candidate_used = get_used_capacity_from_paths(candidate_paths.values(), self.node_map)
        candidate_score = compute_section_score(
            self.total_node_capacity_map,
            candidate_used,
            self.node_map,
            section.section_node_ids,
        )

        if candidate_score > current_score:
            self.connection_paths = candidate_paths
            self.used_node_capacity_map = candidate_used
            self.improved_sections.append(section.center_node_id)
            logger.debug(
                f"Section {section.center_node_id} improved {current_score:.3f} -> "
                f"{candidate_score:.3f}{' (cached)' if solver.cache_hit else ''}"
            )

    def _step_section_optimization(self):
        if self.active_sub_solver is None:
            center_node_id = None
            if self.section_optimizations < self.max_section_optimizations:
                center_node_id = self.get_next_node_to_optimize()
            if center_node_id is None:
                self._finish()
                return
            self._start_section(center_node_id)

        self.active_sub_solver.step()
        if self.active_sub_solver.solved or self.active_sub_solver.failed:
            self._finish_section()
        self.progress = self.section_optimizations / max(self.max_section_optimizations, 1)

    def _finish(self):
        for node in self.nodes:
            node.used_capacity = self.used_node_capacity_map.get(node.capacity_mesh_node_id, 0.0)
        if self.failed_connection_names:
            self.fail(
                f"No capacity path for {len(self.failed_connection_names)} connection(s): "
                f"{', '.join(self.failed_connection_names)}"
            )
            return
        self.solved = True
        self.progress = 1.0
        logger.debug(
            f"Section optimization done: {len(self.improved_sections)} improved, "
            f"{len(self.failed_sections)} failed"
        )

    def _step(self):
        if self.stage == "initialization":
            self._step_initialization()
        else:
            self._step_section_optimization()

    def get_capacity_paths(self) -> List[CapacityPath]:
        return [
            CapacityPath(
                capacity_path_id=t.connection_name,
                connection_name=t.connection_name,
                node_ids=list(self.connection_paths[t.connection_name]),
            )
            for t in self.terminals
            if t.connection_name in self.connection_paths
        ]

    def visualize(self) -> GraphicsObject:
        if self.active_sub_solver is not None:
            return self.active_sub_solver.visualize()
        return self.initial_solver.visualize()
