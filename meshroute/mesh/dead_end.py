"""Remove dead-end branches from the capacity graph.

A node with a single edge that holds no connection terminal can never be
on a path between two terminals, so it is dropped. Dropping it may turn
its neighbour into such a leaf; those are removed in turn until only
cycles, terminals and the branches leading to them remain.
"""

import logging
from typing import Dict, List, Set

from ..solvers.base import BaseSolver, GraphicsObject, empty_graphics
from ..types import CapacityMeshEdge, CapacityMeshNode, CapacityMeshNodeId

logger = logging.getLogger(__name__)


class DeadEndSolver(BaseSolver):

    def __init__(self, nodes: List[CapacityMeshNode], edges: List[CapacityMeshEdge]):
        super().__init__(max_iterations=len(nodes) + 1)
        self.nodes = nodes
        self.edges = edges
        self.removed_node_ids: Set[CapacityMeshNodeId] = set()
        self.target_node_ids = {n.capacity_mesh_node_id for n in nodes if n.contains_target}

        self.adjacency: Dict[CapacityMeshNodeId, Set[CapacityMeshNodeId]] = {
            n.capacity_mesh_node_id: set() for n in nodes
        }
        for a, b in (e.node_ids for e in edges):
            self.adjacency[a].add(b)
            self.adjacency[b].add(a)

        self.leaves: List[CapacityMeshNodeId] = [
            node_id for node_id, neighbours in self.adjacency.items()
            if len(neighbours) == 1 and node_id not in self.target_node_ids
        ]
        self.leaf_index = 0

    def _step(self):
        if self.leaf_index >= len(self.leaves):
            self.solved = True
            self.progress = 1.0
            logger.debug(f"Removed {len(self.removed_node_ids)} dead-end nodes")
            return

        leaf = self.leaves[self.leaf_index]
        self.leaf_index += 1
        self.removed_node_ids.add(leaf)
        # the last two nodes of an isolated chain are both queued as leaves
        if not self.adjacency[leaf]:
            return

        (neighbour,) = self.adjacency[leaf]
        neighbours_of_neighbour = self.adjacency[neighbour]
        neighbours_of_neighbour.discard(leaf)
        self.adjacency[leaf].clear()
        if len(neighbours_of_neighbour) == 1 and neighbour not in self.target_node_ids:
            self.leaves.append(neighbour)

    def get_remaining_nodes(self) -> List[CapacityMeshNode]:
        return [n for n in self.nodes if n.capacity_mesh_node_id not in self.removed_node_ids]

    def get_remaining_edges(self) -> List[CapacityMeshEdge]:
        return [
            e for e in self.edges
            if not any(node_id in self.removed_node_ids for node_id in e.node_ids)
        ]

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics("Dead End Removal")
        for node in self.nodes:
            removed = node.capacity_mesh_node_id in self.removed_node_ids
            graphics["rects"].append({
                "center": {"x": node.center.x, "y": node.center.y},
                "width": node.width * 0.9,
                "height": node.height * 0.9,
                "fill": "rgba(255,0,0,0.1)" if removed else "rgba(0,0,0,0.1)",
                "label": f"{node.capacity_mesh_node_id}\ntarget? {node.contains_target}",
            })
        return graphics
