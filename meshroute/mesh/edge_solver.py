"""Capacity mesh edge builder: connect nodes that share a border."""

import logging
import math
from typing import Dict, List, Optional

from ..data_structures.spatial_index import create_spatial_index
from ..solvers.base import BaseSolver, GraphicsObject, empty_graphics
from ..types import Bounds, CapacityMeshEdge, CapacityMeshNode, CapacityMeshNodeId

logger = logging.getLogger(__name__)

BORDER_EPSILON = 1e-3


def get_shared_border(node1: CapacityMeshNode, node2: CapacityMeshNode) -> Optional[Bounds]:
    """Bounding box of the border two nodes share, or None.

    Borders must have non-zero length; nodes touching only at a corner do
    not share a border.
    """
    a = node1.bounds
    b = node2.bounds
    y_overlap = min(a.max_y, b.max_y) - max(a.min_y, b.min_y)
    x_overlap = min(a.max_x, b.max_x) - max(a.min_x, b.min_x)

    for x_a, x_b in ((a.max_x, b.min_x), (a.min_x, b.max_x)):
        if abs(x_a - x_b) < BORDER_EPSILON and y_overlap >= BORDER_EPSILON:
            return Bounds(x_a, x_a, max(a.min_y, b.min_y), min(a.max_y, b.max_y))

    for y_a, y_b in ((a.max_y, b.min_y), (a.min_y, b.max_y)):
        if abs(y_a - y_b) < BORDER_EPSILON and x_overlap >= BORDER_EPSILON:
            return Bounds(max(a.min_x, b.min_x), min(a.max_x, b.max_x), y_a, y_a)

    return None


def are_nodes_bordering(node1: CapacityMeshNode, node2: CapacityMeshNode) -> bool:
    return get_shared_border(node1, node2) is not None


def do_nodes_have_shared_layer(node1: CapacityMeshNode, node2: CapacityMeshNode) -> bool:
    return any(z in node2.available_z for z in node1.available_z)


class CapacityMeshEdgeSolver(BaseSolver):
    """Build edges between bordering nodes with a layer in common.

    Target nodes left without any edge (typically buried in a pad) are
    connected to the nearest free node.
    """

    def __init__(self, nodes: List[CapacityMeshNode], spatial_index_strategy: str = "grid"):
        super().__init__()
        self.nodes = nodes
        self.edges: List[CapacityMeshEdge] = []
        self.spatial_index_strategy = spatial_index_strategy
        self.node_map: Dict[CapacityMeshNodeId, CapacityMeshNode] = {
            node.capacity_mesh_node_id: node for node in nodes
        }

    def get_next_edge_id(self) -> str:
        return f"ce{len(self.edges)}"

    def _step(self):
        self.edges = []
        if not self.nodes:
            self.solved = True
            return

        typical_size = sorted(n.width for n in self.nodes)[len(self.nodes) // 2]
        index = create_spatial_index(self.spatial_index_strategy, cell_size=max(typical_size, 1e-3))
        for i, node in enumerate(self.nodes):
            b = node.bounds
            index.insert(i, (b.min_x, b.min_y, b.max_x, b.max_y))

        for i, node in enumerate(self.nodes):
            b = node.bounds
            query = (
                b.min_x - BORDER_EPSILON, b.min_y - BORDER_EPSILON,
                b.max_x + BORDER_EPSILON, b.max_y + BORDER_EPSILON,
            )
            for j in index.search(query):
                if j <= i:
                    continue
                other = self.nodes[j]
                if not do_nodes_have_shared_layer(node, other):
                    continue
                border = get_shared_border(node, other)
                if border is None:
                    continue
                self.edges.append(CapacityMeshEdge(
                    capacity_mesh_edge_id=self.get_next_edge_id(),
                    node_ids=(node.capacity_mesh_node_id, other.capacity_mesh_node_id),
                    bounds=border,
                ))

        self.handle_target_nodes()
        self.solved = True
        logger.debug(f"Built {len(self.edges)} edges between {len(self.nodes)} nodes")

    def handle_target_nodes(self):
        connected = {node_id for edge in self.edges for node_id in edge.node_ids}
        for target_node in self.nodes:
            if not target_node.contains_target or target_node.capacity_mesh_node_id in connected:
                continue

            nearest: Optional[CapacityMeshNode] = None
            nearest_distance = math.inf
            for node in self.nodes:
                if node.contains_obstacle or node.contains_target:
                    continue
                dist = math.hypot(node.center.x - target_node.center.x,
                                  node.center.y - target_node.center.y)
                if dist < nearest_distance:
                    nearest_distance = dist
                    nearest = node

            if nearest is None:
                logger.warning(f"Target node {target_node.capacity_mesh_node_id} has no neighbour")
                continue
            self.edges.append(CapacityMeshEdge(
                capacity_mesh_edge_id=self.get_next_edge_id(),
                node_ids=(target_node.capacity_mesh_node_id, nearest.capacity_mesh_node_id),
            ))
            connected.update((target_node.capacity_mesh_node_id, nearest.capacity_mesh_node_id))

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics("Capacity Mesh Edges")
        for node in self.nodes:
            graphics["rects"].append({
                "center": {"x": node.center.x, "y": node.center.y},
                "width": max(node.width - 2, node.width * 0.8),
                "height": max(node.height - 2, node.height * 0.8),
                "fill": "rgba(255,0,0,0.1)" if node.contains_obstacle else "rgba(0,0,0,0.1)",
                "label": node.capacity_mesh_node_id,
            })
        for edge in self.edges:
            n1 = self.node_map[edge.node_ids[0]]
            n2 = self.node_map[edge.node_ids[1]]
            graphics["lines"].append({
                "points": [
                    {"x": n1.center.x, "y": n1.center.y},
                    {"x": n2.center.x, "y": n2.center.y},
                ],
                "stroke_dash": None if n1.available_z == n2.available_z else "10 5",
            })
        return graphics
