"""Segment points and node neighbourhoods for the unravel stage."""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List

from ..types import CapacityMeshNodeId, SegmentWithAssignedPoints
from .types import SegmentId, SegmentPoint, SegmentPointId


@dataclass
class SegmentPointMaps:
    segment_point_map: Dict[SegmentPointId, SegmentPoint] = field(default_factory=dict)
    node_to_segment_point_ids: Dict[CapacityMeshNodeId, List[SegmentPointId]] = field(default_factory=dict)
    segment_to_segment_point_ids: Dict[SegmentId, List[SegmentPointId]] = field(default_factory=dict)


def create_segment_point_map(
    deduped_segments: List[SegmentWithAssignedPoints],
    segment_id_to_node_ids: Dict[SegmentId, List[CapacityMeshNodeId]],
) -> SegmentPointMaps:
    """Number every assigned point ``SP{n}`` and index it by node and segment.

    Points of the same connection that share a node (entering and leaving
    it) are linked through ``directly_connected_segment_point_ids``.
    """
    maps = SegmentPointMaps()
    for segment in deduped_segments:
        node_ids = list(segment_id_to_node_ids.get(segment.node_port_segment_id, []))
        for point in segment.assigned_points:
            sp_id = f"SP{len(maps.segment_point_map)}"
            maps.segment_point_map[sp_id] = SegmentPoint(
                segment_point_id=sp_id,
                segment_id=segment.node_port_segment_id,
                capacity_mesh_node_ids=node_ids,
                connection_name=point.connection_name,
                x=point.x,
                y=point.y,
                z=point.z,
                port_point=point,
            )
            maps.segment_to_segment_point_ids.setdefault(segment.node_port_segment_id, []).append(sp_id)
            for node_id in node_ids:
                maps.node_to_segment_point_ids.setdefault(node_id, []).append(sp_id)

    for sp_ids in maps.node_to_segment_point_ids.values():
        for i, a_id in enumerate(sp_ids):
            a = maps.segment_point_map[a_id]
            for b_id in sp_ids[i + 1:]:
                b = maps.segment_point_map[b_id]
                if a.segment_id == b.segment_id or a.connection_name != b.connection_name:
                    continue
                if b_id in a.directly_connected_segment_point_ids:
                    continue
                a.directly_connected_segment_point_ids.append(b_id)
                b.directly_connected_segment_point_ids.append(a_id)
    return maps


def get_nodes_near_node(
    node_id: CapacityMeshNodeId,
    node_id_to_segment_ids: Dict[CapacityMeshNodeId, List[SegmentId]],
    segment_id_to_node_ids: Dict[SegmentId, List[CapacityMeshNodeId]],
    hops: int,
) -> List[CapacityMeshNodeId]:
    """Nodes reachable from ``node_id`` in at most ``hops`` segment hops, BFS order."""
    visited = [node_id]
    seen = {node_id}
    queue = deque([(node_id, hops)])
    while queue:
        current, remaining = queue.popleft()
        if remaining == 0:
            continue
        for segment_id in node_id_to_segment_ids.get(current, []):
            for adjacent in segment_id_to_node_ids.get(segment_id, []):
                if adjacent in seen:
                    continue
                seen.add(adjacent)
                visited.append(adjacent)
                queue.append((adjacent, remaining - 1))
    return visited
