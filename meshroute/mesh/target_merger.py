"""Merge neighbouring target nodes that belong to the same net.

A connection endpoint sitting on a node corner or on a pad is claimed by
several small nodes. Those nodes are merged so each endpoint ends up
inside exactly one node.
"""

from typing import List, Optional

from ..connectivity import ConnectivityMap
from ..solvers.base import GraphicsObject
from ..types import CapacityMeshNode
from .node_merger import RectangleNodeMerger


class CapacityNodeTargetMerger(RectangleNodeMerger):
    """Grow target nodes over same-net target neighbours, smallest first."""

    def __init__(
        self,
        nodes: List[CapacityMeshNode],
        connectivity: Optional[ConnectivityMap] = None,
        max_capacity_factor: float = 1.0,
    ):
        self.connectivity = connectivity or ConnectivityMap()
        super().__init__(nodes, max_capacity_factor)

    def _are_same_net(self, a: CapacityMeshNode, b: CapacityMeshNode) -> bool:
        if not a.target_connection_name or not b.target_connection_name:
            return False
        return self.connectivity.are_ids_connected(a.target_connection_name, b.target_connection_name)

    def is_root_candidate(self, node: CapacityMeshNode) -> bool:
        return node.contains_target

    def can_absorb(self, root: CapacityMeshNode, candidate: CapacityMeshNode) -> bool:
        return candidate.contains_target and self._are_same_net(root, candidate)

    def visualize(self) -> GraphicsObject:
        graphics = super().visualize()
        graphics["title"] = "Target Merger"
        return graphics
