"""Capacity paths to per-node port segments.

Every node a capacity path passes through gets one port segment per
neighbouring node on the path: the border the trace enters or leaves by.
Connections crossing the same border of the same node share one segment.
"""

import logging
from typing import Dict, List, Tuple

from ..geometry import clamp
from ..mesh.edge_solver import get_shared_border
from ..solvers.base import BaseSolver, GraphicsObject, empty_graphics
from ..types import CapacityMeshEdge, CapacityMeshNode, CapacityMeshNodeId, CapacityPath, NodePortSegment, Point

logger = logging.getLogger(__name__)


def find_overlapping_segment(node: CapacityMeshNode, adj_node: CapacityMeshNode) -> Tuple[Point, Point]:
    """Border shared by two nodes as a (start, end) segment.

    Nodes that were joined without sharing a border (a target buried in a
    pad linked to its nearest free node) get a zero-length segment on the
    side of ``node`` facing ``adj_node``.
    """
    border = get_shared_border(node, adj_node)
    if border is not None:
        return Point(border.min_x, border.min_y), Point(border.max_x, border.max_y)

    b = node.bounds
    x = clamp(adj_node.center.x, b.min_x, b.max_x)
    y = clamp(adj_node.center.y, b.min_y, b.max_y)
    # Snap to the nearest side
    to_side = {
        "left": abs(x - b.min_x), "right": abs(b.max_x - x),
        "bottom": abs(y - b.min_y), "top": abs(b.max_y - y),
    }
    side = min(to_side, key=to_side.get)
    if side == "left":
        x = b.min_x
    elif side == "right":
        x = b.max_x
    elif side == "bottom":
        y = b.min_y
    else:
        y = b.max_y
    return Point(x, y), Point(x, y)


def get_shared_z(node: CapacityMeshNode, adj_node: CapacityMeshNode) -> List[int]:
    shared = [z for z in node.available_z if z in adj_node.available_z]
    return shared or list(node.available_z)


class CapacityEdgeToPortSegmentSolver(BaseSolver):
    """Turn capacity paths into ``node_port_segments``, one node per step."""

    def __init__(
        self,
        nodes: List[CapacityMeshNode],
        edges: List[CapacityMeshEdge],
        capacity_paths: List[CapacityPath],
    ):
        super().__init__()
        self.nodes = nodes
        self.edges = edges
        self.capacity_paths = capacity_paths
        self.node_map: Dict[CapacityMeshNodeId, CapacityMeshNode] = {
            n.capacity_mesh_node_id: n for n in nodes
        }

        self.unprocessed_node_ids: List[CapacityMeshNodeId] = []
        for path in capacity_paths:
            for node_id in path.node_ids:
                if node_id not in self.unprocessed_node_ids:
                    self.unprocessed_node_ids.append(node_id)
        self.node_port_segments: Dict[CapacityMeshNodeId, List[NodePortSegment]] = {}

        # Both sides of a border reuse the same geometry
        self._border_cache: Dict[Tuple[CapacityMeshNodeId, CapacityMeshNodeId], Tuple[Point, Point]] = {}

    def _get_border(self, node: CapacityMeshNode, adj_node: CapacityMeshNode) -> Tuple[Point, Point]:
        key = tuple(sorted((node.capacity_mesh_node_id, adj_node.capacity_mesh_node_id)))
        if key not in self._border_cache:
            first = self.node_map[key[0]]
            second = self.node_map[key[1]]
            self._border_cache[key] = find_overlapping_segment(first, second)
        return self._border_cache[key]

    def _step(self):
        if not self.unprocessed_node_ids:
            self.solved = True
            return

        node_id = self.unprocessed_node_ids.pop(0)
        node = self.node_map[node_id]
        segments_by_neighbor: Dict[CapacityMeshNodeId, NodePortSegment] = {}

        for path in self.capacity_paths:
            if node_id not in path.node_ids:
                continue
            index = path.node_ids.index(node_id)
            neighbors = []
            if index > 0:
                neighbors.append(path.node_ids[index - 1])
            if index < len(path.node_ids) - 1:
                neighbors.append(path.node_ids[index + 1])

            for adj_node_id in neighbors:
                adj_node = self.node_map.get(adj_node_id)
                if adj_node is None or adj_node_id == node_id:
                    continue
                segment = segments_by_neighbor.get(adj_node_id)
                if segment is None:
                    start, end = self._get_border(node, adj_node)
                    segment = NodePortSegment(
                        capacity_mesh_node_id=node_id,
                        start=start,
                        end=end,
                        available_z=get_shared_z(node, adj_node),
                    )
                    segments_by_neighbor[adj_node_id] = segment
                if path.connection_name not in segment.connection_names:
                    segment.connection_names.append(path.connection_name)

        self.node_port_segments[node_id] = list(segments_by_neighbor.values())
        total = len(self.node_port_segments) + len(self.unprocessed_node_ids)
        self.progress = len(self.node_port_segments) / max(total, 1)

    def get_all_segments(self) -> List[NodePortSegment]:
        return [s for segments in self.node_port_segments.values() for s in segments]

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics("Port Segments")
        thickness = 0.75
        for node_id, segments in self.node_port_segments.items():
            for segment in segments:
                is_vertical = segment.start.x == segment.end.x
                graphics["rects"].append({
                    "center": {
                        "x": (segment.start.x + segment.end.x) / 2,
                        "y": (segment.start.y + segment.end.y) / 2,
                    },
                    "width": thickness if is_vertical else abs(segment.end.x - segment.start.x),
                    "height": abs(segment.end.y - segment.start.y) if is_vertical else thickness,
                    "label": f"{node_id}: {', '.join(segment.connection_names)}",
                })
        return graphics
