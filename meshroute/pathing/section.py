"""Sections of the capacity mesh and their capacity score.

A section is every node within ``expansion_degrees`` hops of a centre node.
The connections passing through it enter at the first path node inside the
section and leave at the last one; those become the section terminals.
"""

import math
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from ..errors import InvariantViolation
from ..types import CapacityMeshEdge, CapacityMeshNode, CapacityMeshNodeId, ConnectionTerminal


@dataclass
class Section:
    """Nodes, edges and connection terminals around one centre node."""
    center_node_id: CapacityMeshNodeId
    section_nodes: List[CapacityMeshNode]
    section_edges: List[CapacityMeshEdge]
    section_connection_terminals: List[ConnectionTerminal]
    section_node_ids: Set[CapacityMeshNodeId] = field(default_factory=set)

    def __post_init__(self):
        if not self.section_node_ids:
            self.section_node_ids = {n.capacity_mesh_node_id for n in self.section_nodes}


def compute_section(
    center_node_id: CapacityMeshNodeId,
    connection_paths: Dict[str, List[CapacityMeshNodeId]],
    node_map: Dict[CapacityMeshNodeId, CapacityMeshNode],
    node_edge_map: Dict[CapacityMeshNodeId, List[CapacityMeshEdge]],
    edges: Iterable[CapacityMeshEdge],
    expansion_degrees: int,
) -> Section:
    if center_node_id not in node_map:
        raise InvariantViolation(f"Section centre {center_node_id} is not a mesh node")

    section_node_ids = [center_node_id]
    seen = {center_node_id}
    queue = deque([(center_node_id, 0)])
    while queue:
        node_id, depth = queue.popleft()
        if depth >= expansion_degrees:
            continue
        for edge in node_edge_map.get(node_id, []):
            neighbor_id = edge.other(node_id)
            if neighbor_id not in seen:
                seen.add(neighbor_id)
                section_node_ids.append(neighbor_id)
                queue.append((neighbor_id, depth + 1))

    section_edges = [
        edge for edge in edges
        if edge.node_ids[0] in seen and edge.node_ids[1] in seen
    ]

    terminals = []
    for connection_name, path in connection_paths.items():
        inside = [node_id for node_id in path if node_id in seen]
        if not inside:
            continue
        terminals.append(ConnectionTerminal(
            connection_name=connection_name,
            start_node_id=inside[0],
            end_node_id=inside[-1],
        ))

    return Section(
        center_node_id=center_node_id,
        section_nodes=[node_map[node_id] for node_id in section_node_ids],
        section_edges=section_edges,
        section_connection_terminals=terminals,
        section_node_ids=seen,
    )


def calculate_node_probability_of_failure(used_capacity: float, total_capacity: float,
                                          layer_count: int) -> float:
    """Rough chance that a node carrying ``used_capacity`` traces cannot be routed."""
    if used_capacity < total_capacity:
        return 0.0
    if total_capacity < 1 and used_capacity <= 1:
        return 0.0

    # A single layer can't take crossings; two traces are already risky
    if layer_count == 1 and used_capacity > 1:
        return 1 - 0.01 ** used_capacity

    k = 2
    adjusted_ratio = used_capacity / total_capacity - 1
    return 1 - math.exp(-k * adjusted_ratio)


def calculate_single_node_log_success_probability(
    used_capacity: float, total_capacity: float, node: CapacityMeshNode
) -> float:
    if node.contains_target or used_capacity <= total_capacity:
        return 0.0
    probability_of_success = 1 - calculate_node_probability_of_failure(
        used_capacity, total_capacity, len(node.available_z)
    )
    if probability_of_success <= 0:
        return -1e9
    return math.log(probability_of_success)


def compute_section_score(
    total_node_capacity_map: Dict[CapacityMeshNodeId, float],
    used_node_capacity_map: Dict[CapacityMeshNodeId, float],
    node_map: Dict[CapacityMeshNodeId, CapacityMeshNode],
    section_node_ids: Optional[Iterable[CapacityMeshNodeId]] = None,
) -> float:
    """Log probability of success summed over nodes. Higher is better, 0 is best."""
    node_ids = section_node_ids if section_node_ids is not None else used_node_capacity_map.keys()
    score = 0.0
    for node_id in node_ids:
        if node_id not in total_node_capacity_map or node_id not in node_map:
            continue
        score += calculate_single_node_log_success_probability(
            used_node_capacity_map.get(node_id, 0.0),
            total_node_capacity_map[node_id],
            node_map[node_id],
        )
    return score


def get_used_capacity_from_paths(
    paths: Iterable[List[CapacityMeshNodeId]],
    node_ids: Optional[Iterable[CapacityMeshNodeId]] = None,
) -> Dict[CapacityMeshNodeId, float]:
    """One unit of capacity per path per node it visits."""
    used: Dict[CapacityMeshNodeId, float] = {}
    if node_ids is not None:
        used = {node_id: 0.0 for node_id in node_ids}
    for path in paths:
        for node_id in path:
            used[node_id] = used.get(node_id, 0.0) + 1
    return used
