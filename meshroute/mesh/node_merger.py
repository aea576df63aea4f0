"""Shared growth loop of the node mergers.

A root node absorbs a group of bordering neighbours on one side when the
group spans that whole side with equal-sized nodes, so the result is still
a rectangle and nodes never overlap. Roots are processed smallest first in
batches; a batch that grew any node is followed by another pass over the
nodes that did not grow.
"""

import logging
from typing import Dict, List, Set

from ..solvers.base import BaseSolver, GraphicsObject, empty_graphics
from ..types import CapacityMeshNode, CapacityMeshNodeId, Point
from ..utils import get_tuned_total_capacity
from .edge_solver import are_nodes_bordering

logger = logging.getLogger(__name__)


class RectangleNodeMerger(BaseSolver):
    """Grow root nodes over neighbours that ``can_absorb`` allows."""

    MAX_ITERATIONS = 100_000
    EPSILON = 0.005

    def __init__(self, nodes: List[CapacityMeshNode], max_capacity_factor: float = 1.0):
        super().__init__()
        self.max_capacity_factor = max_capacity_factor
        self.node_map: Dict[CapacityMeshNodeId, CapacityMeshNode] = {
            n.capacity_mesh_node_id: n for n in nodes
        }
        self.original_order = [n.capacity_mesh_node_id for n in nodes]
        self.absorbed_node_ids: Set[CapacityMeshNodeId] = set()
        self.grown_node_ids: Set[CapacityMeshNodeId] = set()
        self.new_nodes: List[CapacityMeshNode] = []

        # pop() takes from the end, so largest first in the list
        self.current_batch: List[CapacityMeshNodeId] = self._sorted_by_area(
            [n.capacity_mesh_node_id for n in nodes if self.is_root_candidate(n)]
        )
        self.next_batch: List[CapacityMeshNodeId] = []
        self.batch_had_modifications = False

    def is_root_candidate(self, node: CapacityMeshNode) -> bool:
        raise NotImplementedError

    def can_absorb(self, root: CapacityMeshNode, candidate: CapacityMeshNode) -> bool:
        raise NotImplementedError

    def _sorted_by_area(self, node_ids: List[CapacityMeshNodeId]) -> List[CapacityMeshNodeId]:
        return sorted(
            node_ids,
            key=lambda i: -(self.node_map[i].width * self.node_map[i].height),
        )

    def get_adjacent_mergeable_nodes(self, root: CapacityMeshNode) -> List[CapacityMeshNode]:
        adjacent = []
        for node_id in self.original_order:
            if node_id in self.absorbed_node_ids or node_id == root.capacity_mesh_node_id:
                continue
            candidate = self.node_map[node_id]
            if candidate.available_z != root.available_z:
                continue
            if not are_nodes_bordering(root, candidate):
                continue
            if self.can_absorb(root, candidate):
                adjacent.append(candidate)
        return adjacent

    def _try_grow(self, root: CapacityMeshNode, group: List[CapacityMeshNode], horizontal: bool,
                  sign: int) -> bool:
        """Absorb ``group`` (all on one side of root) if it spans the side exactly."""
        if not group:
            return False
        w, h = group[0].width, group[0].height
        if any(n.width != w or n.height != h for n in group):
            return False

        if horizontal:
            if abs(sum(n.height for n in group) - root.height) >= self.EPSILON:
                return False
            root.width += w
            root.center = Point(root.center.x + sign * w / 2, root.center.y)
        else:
            if abs(sum(n.width for n in group) - root.width) >= self.EPSILON:
                return False
            root.height += h
            root.center = Point(root.center.x, root.center.y + sign * h / 2)

        self.grown_node_ids.add(root.capacity_mesh_node_id)
        for node in group:
            self.absorbed_node_ids.add(node.capacity_mesh_node_id)
            root.contains_obstacle = root.contains_obstacle or node.contains_obstacle
        logger.debug(
            f"{root.capacity_mesh_node_id} absorbed "
            f"{', '.join(n.capacity_mesh_node_id for n in group)}"
        )
        return True

    def _step(self):
        root_id = self.current_batch.pop() if self.current_batch else None
        while root_id is not None and root_id in self.absorbed_node_ids:
            root_id = self.current_batch.pop() if self.current_batch else None

        if root_id is None:
            if self.batch_had_modifications:
                self.current_batch = self._sorted_by_area(
                    [i for i in self.next_batch if i not in self.absorbed_node_ids]
                )
                self.next_batch = []
                self.batch_had_modifications = False
                return
            self._finish()
            return

        root = self.node_map[root_id]
        adjacent = self.get_adjacent_mergeable_nodes(root)

        sides = [
            ([n for n in adjacent if n.center.x < root.center.x
              and abs(n.center.y - root.center.y) < root.height / 2], True, -1),
            ([n for n in adjacent if n.center.x > root.center.x
              and abs(n.center.y - root.center.y) < root.height / 2], True, 1),
            ([n for n in adjacent if n.center.y < root.center.y
              and abs(n.center.x - root.center.x) < root.width / 2], False, -1),
            ([n for n in adjacent if n.center.y > root.center.y
              and abs(n.center.x - root.center.x) < root.width / 2], False, 1),
        ]
        grown = False
        for group, horizontal, sign in sides:
            if self._try_grow(root, group, horizontal, sign):
                grown = True
                break

        if grown:
            self.batch_had_modifications = True
            self.current_batch.append(root_id)
        else:
            self.next_batch.append(root_id)

    def _finish(self):
        for node_id in self.original_order:
            if node_id in self.absorbed_node_ids:
                continue
            node = self.node_map[node_id]
            if node_id in self.grown_node_ids:
                node.total_capacity = get_tuned_total_capacity(
                    node.width, len(node.available_z), self.max_capacity_factor
                )
            self.new_nodes.append(node)
        self.solved = True
        self.progress = 1.0
        logger.debug(
            f"{self.name} absorbed {len(self.absorbed_node_ids)} nodes, "
            f"{len(self.new_nodes)} remain"
        )

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics(self.name)
        for node_id in self.original_order:
            if node_id in self.absorbed_node_ids:
                continue
            node = self.node_map[node_id]
            graphics["rects"].append({
                "center": {"x": node.center.x, "y": node.center.y},
                "width": node.width,
                "height": node.height,
                "stroke": "rgba(0, 255, 0, 0.8)" if node_id in self.grown_node_ids else "rgba(0,0,0,0.2)",
                "label": f"{node_id}\nz{','.join(str(z) for z in node.available_z)}\n"
                         f"{node.target_connection_name or ''}",
            })
        return graphics
