"""
Unravel Section Solver

Optimizes the port points around one root node. Nodes within
``mutable_hops`` segment hops of the root are mutable; one more hop is
included, immutable, so every node whose cost can change is scored.

Each candidate is a set of point modifications. Its issues (layer
transitions and crossings inside nodes) suggest operations:

- a transition via: move either end to the other end's layer
- a same-layer crossing: swap two points sharing a segment, move both
  points of one crossing line to the other layer, or move a single point

Candidates are explored best-first on ``f``, at most ``max_candidates`` are
kept, and modification sets already queued are never queued again.
"""

import logging
from typing import Dict, List, Optional, Set

from ..connectivity import ConnectivityMap
from ..solvers.base import BaseSolver, GraphicsObject, empty_graphics
from ..types import CapacityMeshNode, CapacityMeshNodeId, SegmentWithAssignedPoints
from ..utils import get_node_capacity
from .issues import (
    apply_operation_to_point_modifications,
    compute_issues_cost,
    get_issues_in_section,
    get_point_with_modification,
)
from .segment_points import SegmentPointMaps, create_segment_point_map, get_nodes_near_node
from .types import (
    PointModifications,
    SegmentId,
    SegmentPointId,
    UnravelCandidate,
    UnravelIssue,
    UnravelOperation,
    UnravelSection,
    create_point_modifications_hash,
)

logger = logging.getLogger(__name__)


class UnravelSectionSolver(BaseSolver):
    """Best-first search over point modifications of one section."""

    MAX_ITERATIONS = 100_000

    def __init__(
        self,
        root_node_id: CapacityMeshNodeId,
        node_map: Dict[CapacityMeshNodeId, CapacityMeshNode],
        deduped_segments: List[SegmentWithAssignedPoints],
        node_id_to_segment_ids: Dict[CapacityMeshNodeId, List[SegmentId]],
        segment_id_to_node_ids: Dict[SegmentId, List[CapacityMeshNodeId]],
        segment_point_maps: Optional[SegmentPointMaps] = None,
        mutable_hops: int = 1,
        max_candidates: int = 500,
        max_explored_candidates: int = 2000,
        connectivity: Optional[ConnectivityMap] = None,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(max_iterations)
        self.root_node_id = root_node_id
        self.node_map = node_map
        self.deduped_segments = deduped_segments
        self.deduped_segment_map: Dict[SegmentId, SegmentWithAssignedPoints] = {
            s.node_port_segment_id: s for s in deduped_segments
        }
        self.node_id_to_segment_ids = node_id_to_segment_ids
        self.segment_id_to_node_ids = segment_id_to_node_ids
        self.mutable_hops = mutable_hops
        self.max_candidates = max_candidates
        self.max_explored_candidates = max_explored_candidates
        self.connectivity = connectivity

        if segment_point_maps is None:
            segment_point_maps = create_segment_point_map(deduped_segments, segment_id_to_node_ids)
        self.unravel_section = self.create_unravel_section(segment_point_maps)
        self.tuned_node_capacity_map: Dict[CapacityMeshNodeId, float] = {
            node_id: get_node_capacity(self.node_map[node_id])
            for node_id in self.unravel_section.all_node_ids
        }

        self.queued_or_explored_hashes: Set[str] = set()
        self.original_candidate = self.create_initial_candidate()
        self.queued_or_explored_hashes.add(self.original_candidate.candidate_hash)
        self.candidates: List[UnravelCandidate] = [self.original_candidate]
        self.best_candidate: Optional[UnravelCandidate] = None
        self.last_processed_candidate: Optional[UnravelCandidate] = None
        self.explored_candidates = 0

    def create_unravel_section(self, maps: SegmentPointMaps) -> UnravelSection:
        mutable_node_ids = get_nodes_near_node(
            self.root_node_id, self.node_id_to_segment_ids, self.segment_id_to_node_ids,
            self.mutable_hops,
        )
        all_node_ids = get_nodes_near_node(
            self.root_node_id, self.node_id_to_segment_ids, self.segment_id_to_node_ids,
            self.mutable_hops + 1,
        )
        mutable_set = set(mutable_node_ids)
        immutable_node_ids = [n for n in all_node_ids if n not in mutable_set]

        segment_points_in_node: Dict[CapacityMeshNodeId, List[SegmentPointId]] = {
            node_id: list(maps.node_to_segment_point_ids.get(node_id, []))
            for node_id in all_node_ids
        }
        segment_point_map = {}
        for sp_ids in segment_points_in_node.values():
            for sp_id in sp_ids:
                segment_point_map[sp_id] = maps.segment_point_map[sp_id]

        segment_points_in_segment: Dict[SegmentId, List[SegmentPointId]] = {}
        for sp_id, point in segment_point_map.items():
            segment_points_in_segment.setdefault(point.segment_id, []).append(sp_id)

        segment_pairs_in_node = {}
        for node_id in all_node_ids:
            pairs = []
            seen = set()
            for a_id in segment_points_in_node[node_id]:
                for b_id in segment_point_map[a_id].directly_connected_segment_point_ids:
                    b = maps.segment_point_map[b_id]
                    if node_id not in b.capacity_mesh_node_ids:
                        continue
                    key = frozenset((a_id, b_id))
                    if key in seen:
                        continue
                    seen.add(key)
                    pairs.append((a_id, b_id))
            segment_pairs_in_node[node_id] = pairs

        # A segment is mutable when it touches a mutable node and no target node
        mutable_segment_ids = set()
        for node_id in mutable_node_ids:
            for segment_id in self.node_id_to_segment_ids.get(node_id, []):
                if all(
                    not self.node_map[n].contains_target
                    for n in self.segment_id_to_node_ids.get(segment_id, [])
                    if n in self.node_map
                ):
                    mutable_segment_ids.add(segment_id)

        return UnravelSection(
            all_node_ids=all_node_ids,
            mutable_node_ids=mutable_node_ids,
            immutable_node_ids=immutable_node_ids,
            mutable_segment_ids=mutable_segment_ids,
            segment_pairs_in_node=segment_pairs_in_node,
            segment_point_map=segment_point_map,
            segment_points_in_node=segment_points_in_node,
            segment_points_in_segment=segment_points_in_segment,
        )

    def compute_g(self, issues: List[UnravelIssue]) -> float:
        return compute_issues_cost(issues, self.tuned_node_capacity_map)

    def create_candidate(self, point_modifications: PointModifications,
                         operations_performed: int) -> UnravelCandidate:
        issues = get_issues_in_section(
            self.unravel_section, self.node_map, point_modifications, self.connectivity
        )
        g = self.compute_g(issues)
        return UnravelCandidate(
            point_modifications=point_modifications,
            issues=issues,
            g=g,
            h=0.0,
            f=g,
            operations_performed=operations_performed,
            candidate_hash=create_point_modifications_hash(point_modifications),
        )

    def create_initial_candidate(self) -> UnravelCandidate:
        return self.create_candidate({}, 0)

    def get_point_in_candidate(self, candidate: UnravelCandidate, sp_id: SegmentPointId):
        point = self.unravel_section.segment_point_map[sp_id]
        return get_point_with_modification(point, candidate.point_modifications.get(sp_id))

    def _layer_change_ops(self, candidate: UnravelCandidate,
                          sp_ids: List[SegmentPointId]) -> List[UnravelOperation]:
        """Move all of ``sp_ids`` to the other layer, if every segment allows it."""
        section = self.unravel_section
        points = [section.segment_point_map[sp_id] for sp_id in sp_ids]
        if not all(p.segment_id in section.mutable_segment_ids for p in points):
            return []
        current_z = self.get_point_in_candidate(candidate, sp_ids[0])[2]
        new_z = 1 if current_z == 0 else 0
        if not all(new_z in self.deduped_segment_map[p.segment_id].available_z for p in points):
            return []
        return [UnravelOperation("change_layer", list(sp_ids), new_z)]

    def get_operations_for_issue(self, candidate: UnravelCandidate,
                                 issue: UnravelIssue) -> List[UnravelOperation]:
        section = self.unravel_section
        operations: List[UnravelOperation] = []

        if issue.type == "transition_via":
            a_id, b_id = issue.segment_points
            a_z = self.get_point_in_candidate(candidate, a_id)[2]
            b_z = self.get_point_in_candidate(candidate, b_id)[2]
            for moved_id, target_z in ((a_id, b_z), (b_id, a_z)):
                segment_id = section.segment_point_map[moved_id].segment_id
                if (segment_id in section.mutable_segment_ids
                        and target_z in self.deduped_segment_map[segment_id].available_z):
                    operations.append(UnravelOperation("change_layer", [moved_id], target_z))

        elif issue.type == "same_layer_crossing":
            a_id, b_id = issue.crossing_line1
            c_id, d_id = issue.crossing_line2
            for e_id, f_id in ((a_id, c_id), (a_id, d_id), (b_id, c_id), (b_id, d_id)):
                e = section.segment_point_map[e_id]
                f = section.segment_point_map[f_id]
                if e.segment_id == f.segment_id and e.segment_id in section.mutable_segment_ids:
                    operations.append(UnravelOperation("swap_position_on_segment", [e_id, f_id]))
            operations.extend(self._layer_change_ops(candidate, [a_id, b_id]))
            operations.extend(self._layer_change_ops(candidate, [c_id, d_id]))
            for sp_id in (a_id, b_id, c_id, d_id):
                operations.extend(self._layer_change_ops(candidate, [sp_id]))

        return operations

    def get_neighbors(self, candidate: UnravelCandidate) -> List[UnravelCandidate]:
        neighbors = []
        for issue in candidate.issues:
            for operation in self.get_operations_for_issue(candidate, issue):
                modifications = dict(candidate.point_modifications)
                apply_operation_to_point_modifications(
                    modifications, operation,
                    lambda sp_id: self.get_point_in_candidate(candidate, sp_id),
                )
                candidate_hash = create_point_modifications_hash(modifications)
                if candidate_hash in self.queued_or_explored_hashes:
                    continue
                self.queued_or_explored_hashes.add(candidate_hash)
                neighbors.append(
                    self.create_candidate(modifications, candidate.operations_performed + 1)
                )
        return neighbors

    def _step(self):
        if not self.candidates or self.explored_candidates >= self.max_explored_candidates:
            self.solved = True
            return

        candidate = self.candidates.pop(0)
        self.explored_candidates += 1
        self.last_processed_candidate = candidate
        if self.best_candidate is None or candidate.f < self.best_candidate.f:
            self.best_candidate = candidate
        if candidate.f <= 0:
            self.solved = True
            return

        self.candidates.extend(self.get_neighbors(candidate))
        self.candidates.sort(key=lambda c: c.f)
        del self.candidates[self.max_candidates:]
        self.progress = self.explored_candidates / max(self.max_explored_candidates, 1)

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics("Unravel Section")
        candidate = self.best_candidate or self.last_processed_candidate or self.original_candidate
        section = self.unravel_section
        for node_id in section.all_node_ids:
            node = self.node_map[node_id]
            is_mutable = node_id in section.mutable_node_ids
            graphics["rects"].append({
                "center": {"x": node.center.x, "y": node.center.y},
                "width": node.width / 8,
                "height": node.height / 8,
                "color": "green" if is_mutable else "red",
                "label": f"{node_id}\n{'MUTABLE' if is_mutable else 'IMMUTABLE'}",
            })
        for sp_id, point in section.segment_point_map.items():
            x, y, z = self.get_point_in_candidate(candidate, sp_id)
            graphics["points"].append({
                "x": x, "y": y, "layer": z,
                "label": f"{sp_id} {point.segment_id} z{z}",
            })
        for pairs in section.segment_pairs_in_node.values():
            for a_id, b_id in pairs:
                ax, ay, az = self.get_point_in_candidate(candidate, a_id)
                bx, by, bz = self.get_point_in_candidate(candidate, b_id)
                graphics["lines"].append({
                    "points": [{"x": ax, "y": ay}, {"x": bx, "y": by}],
                    "layer": az,
                    "stroke_dash": None if az == bz else "3 3 10",
                })
        for issue in candidate.issues:
            if issue.type != "transition_via":
                continue
            for sp_id in issue.segment_points:
                x, y, _ = self.get_point_in_candidate(candidate, sp_id)
                graphics["circles"].append({
                    "center": {"x": x, "y": y},
                    "radius": 0.1,
                    "stroke": "#ff0000",
                    "label": f"Via issue {sp_id}",
                })
        return graphics
