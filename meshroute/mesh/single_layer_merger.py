"""Merge neighbouring single-layer nodes on the same layer.

Regions where only one layer is free (under single-layer pads or keepouts)
subdivide into many small nodes that carry at most one trace each. Merging
them into larger rectangles removes most of those nodes before the edge
solver runs. Multi-layer nodes pass through unchanged, and a target node
only merges with nodes of its own connection.
"""

from ..types import CapacityMeshNode
from .node_merger import RectangleNodeMerger


class SingleLayerNodeMerger(RectangleNodeMerger):
    """Grow single-layer nodes over single-layer neighbours with the same z."""

    def is_root_candidate(self, node: CapacityMeshNode) -> bool:
        return node.is_single_layer

    def can_absorb(self, root: CapacityMeshNode, candidate: CapacityMeshNode) -> bool:
        if not candidate.is_single_layer:
            return False
        if root.contains_target or candidate.contains_target:
            return (
                root.contains_target
                and candidate.contains_target
                and root.target_connection_name == candidate.target_connection_name
            )
        return True
