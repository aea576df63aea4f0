"""Split large single-layer nodes into straws.

A single-layer node carries at most one trace, so a large one wastes most
of its area. It is cut into parallel strips ("straws") about ``straw_size``
wide, each of which can carry one trace. Straws run towards the side with
more multi-layer capacity nearby, so traces leaving them have somewhere to
go. Target nodes and nodes smaller than five straws in both directions are
kept whole.
"""

import logging
from typing import Dict, List, Tuple

from ..solvers.base import BaseSolver, GraphicsObject, empty_graphics
from ..types import Bounds, CapacityMeshNode, CapacityMeshNodeId, Point
from ..utils import get_node_capacity

logger = logging.getLogger(__name__)


class StrawSolver(BaseSolver):

    def __init__(self, nodes: List[CapacityMeshNode], straw_size: float = 0.5):
        super().__init__(max_iterations=len(nodes) + 1)
        self.straw_size = straw_size
        self.multi_layer_nodes = [n for n in nodes if not n.is_single_layer]
        # popped from the end, reversed so nodes are visited in input order
        self.unprocessed_nodes = [n for n in reversed(nodes) if n.is_single_layer]
        self.replacements: Dict[CapacityMeshNodeId, List[CapacityMeshNode]] = {}
        self.straw_count = 0

    def get_multi_layer_capacity_within(self, bounds: Bounds) -> float:
        """Multi-layer capacity inside ``bounds``, prorated by overlapping area."""
        total = 0.0
        for node in self.multi_layer_nodes:
            nb = node.bounds
            overlap_w = min(bounds.max_x, nb.max_x) - max(bounds.min_x, nb.min_x)
            overlap_h = min(bounds.max_y, nb.max_y) - max(bounds.min_y, nb.min_y)
            if overlap_w <= 0 or overlap_h <= 0:
                continue
            total += get_node_capacity(node) * overlap_w * overlap_h / (node.width * node.height)
        return total

    def get_surrounding_capacities(self, node: CapacityMeshNode) -> Tuple[float, float]:
        """(left + right, below + above) multi-layer capacity next to ``node``."""
        b = node.bounds
        d = min(node.width, node.height)
        horizontal = (
            self.get_multi_layer_capacity_within(Bounds(b.min_x - d, b.min_x, b.min_y, b.max_y))
            + self.get_multi_layer_capacity_within(Bounds(b.max_x, b.max_x + d, b.min_y, b.max_y))
        )
        vertical = (
            self.get_multi_layer_capacity_within(Bounds(b.min_x, b.max_x, b.min_y - d, b.min_y))
            + self.get_multi_layer_capacity_within(Bounds(b.min_x, b.max_x, b.max_y, b.max_y + d))
        )
        return horizontal, vertical

    def create_straws(self, node: CapacityMeshNode) -> List[CapacityMeshNode]:
        horizontal, vertical = self.get_surrounding_capacities(node)
        b = node.bounds
        straws = []
        if horizontal > vertical:
            count = max(1, int(node.height // self.straw_size))
            size = node.height / count
            for i in range(count):
                straws.append(self._make_straw(
                    node, i, Point(node.center.x, b.min_y + (i + 0.5) * size), node.width, size
                ))
        else:
            count = max(1, int(node.width // self.straw_size))
            size = node.width / count
            for i in range(count):
                straws.append(self._make_straw(
                    node, i, Point(b.min_x + (i + 0.5) * size, node.center.y), size, node.height
                ))
        return straws

    @staticmethod
    def _make_straw(node: CapacityMeshNode, index: int, center: Point, width: float,
                    height: float) -> CapacityMeshNode:
        # a straw carries exactly one trace along its length
        return CapacityMeshNode(
            capacity_mesh_node_id=f"{node.capacity_mesh_node_id}_straw{index}",
            center=center,
            width=width,
            height=height,
            layer=node.layer,
            available_z=list(node.available_z),
            total_capacity=1.0,
            contains_obstacle=node.contains_obstacle,
            parent_id=node.capacity_mesh_node_id,
            depth=node.depth,
        )

    def _step(self):
        if not self.unprocessed_nodes:
            self.solved = True
            self.progress = 1.0
            logger.debug(f"Split {len(self.replacements)} nodes into {self.straw_count} straws")
            return

        node = self.unprocessed_nodes.pop()
        too_small = (node.width < self.straw_size * 5 and node.height < self.straw_size * 5)
        if too_small or node.contains_target:
            return

        straws = self.create_straws(node)
        self.replacements[node.capacity_mesh_node_id] = straws
        self.straw_count += len(straws)

    def get_result_nodes(self, nodes: List[CapacityMeshNode]) -> List[CapacityMeshNode]:
        """``nodes`` with every split node replaced in place by its straws."""
        result = []
        for node in nodes:
            result.extend(self.replacements.get(node.capacity_mesh_node_id, [node]))
        return result

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics("Straw Solver")
        for straws in self.replacements.values():
            for straw in straws:
                graphics["rects"].append({
                    "center": {"x": straw.center.x, "y": straw.center.y},
                    "width": straw.width,
                    "height": straw.height,
                    "fill": "rgba(0, 150, 255, 0.5)" if straw.available_z[0] == 0
                    else "rgba(255, 100, 0, 0.5)",
                    "label": f"{straw.capacity_mesh_node_id}\nz{straw.available_z[0]}",
                })
        return graphics
