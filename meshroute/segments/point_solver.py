"""
Segment-to-Point Assignment

Gives every connection crossing a port segment a concrete point on it.
Segments are handled fewest-connections first; the connections of a segment
are sorted by name and spaced evenly at ``i / (n + 1)`` of its length, so a
lone connection lands on the segment centre.

The two sides of a border produce identical port segments. They are
deduplicated into one ``SEG{n}`` segment whose assigned ``PortPoint``
objects are shared by both sides, so later stages that move a point move it
for both nodes at once.
"""

import logging
import math
from typing import Dict, Iterable, List, Optional, Tuple

from ..solvers.base import BaseSolver, GraphicsObject, empty_graphics
from ..types import (
    CapacityMeshNode,
    CapacityMeshNodeId,
    NodePortSegment,
    NodeWithPortPoints,
    PortPoint,
    SegmentWithAssignedPoints,
)

logger = logging.getLogger(__name__)


def get_segment_key(segment: NodePortSegment) -> Tuple:
    return (
        round(segment.start.x, 6), round(segment.start.y, 6),
        round(segment.end.x, 6), round(segment.end.y, 6),
        tuple(segment.available_z),
    )


def get_deduped_segments(
    segments: Iterable[NodePortSegment],
) -> Tuple[List[NodePortSegment], Dict[str, List[CapacityMeshNodeId]]]:
    """Assign ``SEG{n}`` ids, giving geometrically identical segments the same id.

    Returns the first segment seen for each id and the nodes that share it.
    """
    deduped: List[NodePortSegment] = []
    by_key: Dict[Tuple, NodePortSegment] = {}
    segment_id_to_node_ids: Dict[str, List[CapacityMeshNodeId]] = {}

    for segment in segments:
        key = get_segment_key(segment)
        existing = by_key.get(key)
        if existing is None:
            segment.node_port_segment_id = f"SEG{len(deduped)}"
            by_key[key] = segment
            deduped.append(segment)
        else:
            segment.node_port_segment_id = existing.node_port_segment_id
            for name in segment.connection_names:
                if name not in existing.connection_names:
                    existing.connection_names.append(name)
        node_ids = segment_id_to_node_ids.setdefault(segment.node_port_segment_id, [])
        if segment.capacity_mesh_node_id not in node_ids:
            node_ids.append(segment.capacity_mesh_node_id)

    return deduped, segment_id_to_node_ids


def distribute_points(segment: NodePortSegment, z: int) -> List[PortPoint]:
    names = sorted(segment.connection_names)
    n = len(names)
    dx = segment.end.x - segment.start.x
    dy = segment.end.y - segment.start.y
    points = []
    for i, name in enumerate(names, start=1):
        fraction = i / (n + 1)
        points.append(PortPoint(
            x=segment.start.x + dx * fraction,
            y=segment.start.y + dy * fraction,
            z=z,
            connection_name=name,
        ))
    return points


class CapacitySegmentToPointSolver(BaseSolver):
    """Assign points to one deduplicated segment per step."""

    def __init__(self, segments: List[NodePortSegment], min_port_spacing: float = 0.0):
        super().__init__()
        self.segments = segments
        self.min_port_spacing = min_port_spacing

        self.deduped_input, self.segment_id_to_node_ids = get_deduped_segments(segments)
        self.node_id_to_segment_ids: Dict[CapacityMeshNodeId, List[str]] = {}
        for segment_id, node_ids in self.segment_id_to_node_ids.items():
            for node_id in node_ids:
                self.node_id_to_segment_ids.setdefault(node_id, []).append(segment_id)

        self.unsolved_segments: List[NodePortSegment] = sorted(
            self.deduped_input, key=lambda s: len(s.connection_names)
        )
        self.deduped_segments: List[SegmentWithAssignedPoints] = []
        self.cramped_segment_ids: List[str] = []

    def _step(self):
        if not self.unsolved_segments:
            self._finish()
            return

        segment = self.unsolved_segments.pop(0)
        length = math.hypot(segment.end.x - segment.start.x, segment.end.y - segment.start.y)
        spacing = length / (len(segment.connection_names) + 1)
        if spacing < self.min_port_spacing:
            self.cramped_segment_ids.append(segment.node_port_segment_id)

        self.deduped_segments.append(SegmentWithAssignedPoints(
            capacity_mesh_node_id=segment.capacity_mesh_node_id,
            start=segment.start,
            end=segment.end,
            connection_names=list(segment.connection_names),
            available_z=list(segment.available_z),
            node_port_segment_id=segment.node_port_segment_id,
            assigned_points=distribute_points(segment, segment.available_z[0]),
        ))
        self.progress = len(self.deduped_segments) / max(len(self.deduped_input), 1)

    def _finish(self):
        self.deduped_segments.sort(key=lambda s: int(s.node_port_segment_id[3:]))
        if self.cramped_segment_ids:
            logger.debug(
                f"{len(self.cramped_segment_ids)} segment(s) have ports closer than "
                f"{self.min_port_spacing}"
            )
        self.solved = True

    @property
    def assigned_segments(self) -> List[SegmentWithAssignedPoints]:
        """One entry per node side, sharing the points of its deduplicated segment."""
        by_id = {s.node_port_segment_id: s for s in self.deduped_segments}
        result = []
        for segment in self.segments:
            deduped = by_id.get(segment.node_port_segment_id)
            if deduped is None:
                continue
            result.append(SegmentWithAssignedPoints(
                capacity_mesh_node_id=segment.capacity_mesh_node_id,
                start=deduped.start,
                end=deduped.end,
                connection_names=list(deduped.connection_names),
                available_z=list(deduped.available_z),
                node_port_segment_id=deduped.node_port_segment_id,
                assigned_points=deduped.assigned_points,
            ))
        return result

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics("Segment To Point")
        for segment in self.deduped_segments:
            graphics["lines"].append({
                "points": [
                    {"x": segment.start.x, "y": segment.start.y},
                    {"x": segment.end.x, "y": segment.end.y},
                ],
            })
            for point in segment.assigned_points:
                graphics["points"].append({
                    "x": point.x,
                    "y": point.y,
                    "label": f"{segment.node_port_segment_id}-{point.connection_name} z{point.z}",
                })
        return graphics


def get_nodes_with_port_points(
    nodes: Iterable[CapacityMeshNode],
    deduped_segments: Iterable[SegmentWithAssignedPoints],
    segment_id_to_node_ids: Dict[str, List[CapacityMeshNodeId]],
    endpoint_port_points: Optional[Dict[CapacityMeshNodeId, List[PortPoint]]] = None,
) -> List[NodeWithPortPoints]:
    """Group assigned points (plus connection endpoints) by the node they enter.

    Only nodes with at least one port point are returned, in ``nodes`` order.
    """
    ports_by_node: Dict[CapacityMeshNodeId, List[PortPoint]] = {}
    for segment in deduped_segments:
        for node_id in segment_id_to_node_ids.get(segment.node_port_segment_id, []):
            ports_by_node.setdefault(node_id, []).extend(segment.assigned_points)
    for node_id, points in (endpoint_port_points or {}).items():
        ports_by_node.setdefault(node_id, []).extend(points)

    result = []
    for node in nodes:
        ports = ports_by_node.get(node.capacity_mesh_node_id)
        if not ports:
            continue
        result.append(NodeWithPortPoints(
            capacity_mesh_node_id=node.capacity_mesh_node_id,
            center=node.center,
            width=node.width,
            height=node.height,
            port_points=[PortPoint(p.x, p.y, p.z, p.connection_name) for p in ports],
            available_z=list(node.available_z),
        ))
    return result
