"""
Unravel Multi-Section Solver

Repeatedly picks the node with the highest crossing-based probability of
failure, unravels the section around it and writes the best candidate back
into the shared port points. Stops when no node is above the failure
threshold, every candidate root has been tried, or the section budget is
spent.
"""

import logging
from typing import Dict, List, Optional

from ..cache.provider import CacheProvider
from ..connectivity import ConnectivityMap
from ..segments.crossings import calculate_crossing_probability_of_failure, get_intra_node_crossings
from ..segments.point_solver import get_nodes_with_port_points
from ..solvers.base import BaseSolver, GraphicsObject, empty_graphics
from ..types import CapacityMeshNode, CapacityMeshNodeId, NodeWithPortPoints, PortPoint, SegmentWithAssignedPoints
from .cached_section_solver import CachedUnravelSectionSolver
from .segment_points import create_segment_point_map
from .types import UnravelCandidate

logger = logging.getLogger(__name__)


class UnravelMultiSectionSolver(BaseSolver):
    MAX_ITERATIONS = 10_000_000

    def __init__(
        self,
        deduped_segments: List[SegmentWithAssignedPoints],
        segment_id_to_node_ids: Dict[str, List[CapacityMeshNodeId]],
        nodes: List[CapacityMeshNode],
        endpoint_port_points: Optional[Dict[CapacityMeshNodeId, List[PortPoint]]] = None,
        mutable_hops: int = 1,
        max_candidates: int = 500,
        pf_threshold: float = 0.01,
        max_iterations_per_section: int = 2000,
        max_sections: int = 100,
        cache_provider: Optional[CacheProvider] = None,
        connectivity: Optional[ConnectivityMap] = None,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(max_iterations)
        self.deduped_segments = deduped_segments
        self.segment_id_to_node_ids = segment_id_to_node_ids
        self.nodes = nodes
        self.endpoint_port_points = endpoint_port_points or {}
        self.mutable_hops = mutable_hops
        self.max_candidates = max_candidates
        self.pf_threshold = pf_threshold
        self.max_iterations_per_section = max_iterations_per_section
        self.max_sections = max_sections
        self.cache_provider = cache_provider
        self.connectivity = connectivity

        self.node_map: Dict[CapacityMeshNodeId, CapacityMeshNode] = {
            n.capacity_mesh_node_id: n for n in nodes
        }
        self.node_id_to_segment_ids: Dict[CapacityMeshNodeId, List[str]] = {}
        for segment_id, node_ids in segment_id_to_node_ids.items():
            for node_id in node_ids:
                self.node_id_to_segment_ids.setdefault(node_id, []).append(segment_id)

        self.segment_point_maps = create_segment_point_map(deduped_segments, segment_id_to_node_ids)
        self.node_pf_map: Dict[CapacityMeshNodeId, float] = self.compute_initial_pf_map()
        self.initial_total_pf = sum(self.node_pf_map.values())
        self.attempted_root_node_ids: List[CapacityMeshNodeId] = []
        self.improved_root_node_ids: List[CapacityMeshNodeId] = []
        self.sections_solved = 0

    def get_node_port_points(self, node_id: CapacityMeshNodeId) -> List[PortPoint]:
        points = [
            self.segment_point_maps.segment_point_map[sp_id].port_point
            for sp_id in self.segment_point_maps.node_to_segment_point_ids.get(node_id, [])
        ]
        return points + list(self.endpoint_port_points.get(node_id, []))

    def compute_node_pf(self, node_id: CapacityMeshNodeId) -> float:
        node = self.node_map.get(node_id)
        if node is None:
            return 0.0
        crossings = get_intra_node_crossings(self.get_node_port_points(node_id))
        return calculate_crossing_probability_of_failure(node, crossings)

    def compute_initial_pf_map(self) -> Dict[CapacityMeshNodeId, float]:
        return {
            node_id: self.compute_node_pf(node_id)
            for node_id in self.segment_point_maps.node_to_segment_point_ids
        }

    def get_next_root_node_id(self) -> Optional[CapacityMeshNodeId]:
        best_id = None
        best_pf = self.pf_threshold
        for node_id, pf in self.node_pf_map.items():
            if node_id in self.attempted_root_node_ids:
                continue
            if pf >= best_pf and (best_id is None or pf > best_pf):
                best_pf = pf
                best_id = node_id
        return best_id

    def _start_section(self, root_node_id: CapacityMeshNodeId):
        self.attempted_root_node_ids.append(root_node_id)
        self.active_sub_solver = CachedUnravelSectionSolver(
            root_node_id,
            self.node_map,
            self.deduped_segments,
            self.node_id_to_segment_ids,
            self.segment_id_to_node_ids,
            segment_point_maps=self.segment_point_maps,
            mutable_hops=self.mutable_hops,
            max_candidates=self.max_candidates,
            max_explored_candidates=self.max_iterations_per_section,
            connectivity=self.connectivity,
            cache_provider=self.cache_provider,
        )
        logger.debug(
            f"Unraveling around {root_node_id} (pf={self.node_pf_map[root_node_id]:.3f})"
        )

    def apply_candidate(self, solver: CachedUnravelSectionSolver, candidate: UnravelCandidate):
        """Write the candidate's modifications into the shared points."""
        for sp_id, modification in candidate.point_modifications.items():
            point = solver.unravel_section.segment_point_map[sp_id]
            if modification.x is not None:
                point.x = modification.x
            if modification.y is not None:
                point.y = modification.y
            if modification.z is not None:
                point.z = modification.z
            if point.port_point is not None:
                point.port_point.x = point.x
                point.port_point.y = point.y
                point.port_point.z = point.z
        for node_id in solver.unravel_section.all_node_ids:
            if node_id in self.node_pf_map:
                self.node_pf_map[node_id] = self.compute_node_pf(node_id)

    def _finish_section(self):
        solver: CachedUnravelSectionSolver = self.active_sub_solver
        self.active_sub_solver = None
        self.sections_solved += 1

        if solver.failed:
            logger.warning(f"Unravel section around {solver.root_node_id} failed: {solver.error}")
            self.failed_sub_solvers.append(solver)
            return

        best = solver.best_candidate
        if best is None or not best.point_modifications:
            return
        if best.f < solver.original_candidate.f:
            self.apply_candidate(solver, best)
            self.improved_root_node_ids.append(solver.root_node_id)

    def _step(self):
        if self.active_sub_solver is None:
            root_node_id = None
            if self.sections_solved < self.max_sections:
                root_node_id = self.get_next_root_node_id()
            if root_node_id is None:
                self.solved = True
                self.progress = 1.0
                logger.debug(
                    f"Unravel done: {len(self.improved_root_node_ids)} of "
                    f"{self.sections_solved} sections improved, total pf "
                    f"{self.initial_total_pf:.3f} -> {sum(self.node_pf_map.values()):.3f}"
                )
                return
            self._start_section(root_node_id)

        self.active_sub_solver.step()
        if self.active_sub_solver.solved or self.active_sub_solver.failed:
            self._finish_section()
        self.progress = self.sections_solved / max(self.max_sections, 1)

    def get_nodes_with_port_points(self) -> List[NodeWithPortPoints]:
        return get_nodes_with_port_points(
            self.nodes, self.deduped_segments, self.segment_id_to_node_ids, self.endpoint_port_points
        )

    def visualize(self) -> GraphicsObject:
        if self.active_sub_solver is not None:
            return self.active_sub_solver.visualize()
        graphics = empty_graphics("Unravel Multi Section")
        for node_id, pf in self.node_pf_map.items():
            node = self.node_map[node_id]
            graphics["rects"].append({
                "center": {"x": node.center.x, "y": node.center.y},
                "width": node.width * 0.9,
                "height": node.height * 0.9,
                "fill": f"rgba(255,0,0,{min(pf, 1.0) * 0.5:.3f})",
                "label": f"{node_id} pf={pf:.3f}",
            })
        return graphics
