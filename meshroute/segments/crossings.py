"""Crossing counts inside a node and the failure probability they imply."""

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List

from ..geometry import do_segments_intersect
from ..types import CapacityMeshNode, PortPoint
from ..utils import get_node_capacity

# Expected vias per crossing kind
SAME_LAYER_CROSSING_VIAS = 0.82
ENTRY_EXIT_LAYER_CHANGE_VIAS = 0.41
TRANSITION_CROSSING_VIAS = 0.2


@dataclass
class IntraNodeCrossings:
    num_same_layer_crossings: int = 0
    num_entry_exit_layer_changes: int = 0
    num_transition_crossings: int = 0


def _pair_ports(port_points: Iterable[PortPoint]) -> Dict[str, List[PortPoint]]:
    pairs: Dict[str, List[PortPoint]] = {}
    for point in port_points:
        pairs.setdefault(point.connection_name, []).append(point)
    return {name: points for name, points in pairs.items() if len(points) >= 2}


def get_intra_node_crossings(port_points: Iterable[PortPoint]) -> IntraNodeCrossings:
    """Count crossings between the straight port-to-port lines of each connection.

    A connection whose two ports are on different layers needs a layer
    change inside the node; lines crossing it count as transition crossings.
    """
    crossings = IntraNodeCrossings()
    flat = []
    transitions = []
    for points in _pair_ports(port_points).values():
        a, b = points[0], points[1]
        if a.z != b.z:
            crossings.num_entry_exit_layer_changes += 1
            transitions.append((a, b))
        else:
            flat.append((a, b))

    for i in range(len(flat)):
        for j in range(i + 1, len(flat)):
            (a1, a2), (b1, b2) = flat[i], flat[j]
            if a1.z == b1.z and do_segments_intersect(a1, a2, b1, b2):
                crossings.num_same_layer_crossings += 1

    for i in range(len(transitions)):
        for j in range(i + 1, len(transitions)):
            (a1, a2), (b1, b2) = transitions[i], transitions[j]
            if do_segments_intersect(a1, a2, b1, b2):
                crossings.num_transition_crossings += 1
        a1, a2 = transitions[i]
        for b1, b2 in flat:
            if do_segments_intersect(a1, a2, b1, b2):
                crossings.num_transition_crossings += 1

    return crossings


def estimate_probability_of_failure(
    total_capacity: float,
    num_same_layer_crossings: int,
    num_entry_exit_layer_changes: int,
    num_transition_crossings: int,
) -> float:
    est_num_vias = (
        num_same_layer_crossings * SAME_LAYER_CROSSING_VIAS
        + num_entry_exit_layer_changes * ENTRY_EXIT_LAYER_CHANGE_VIAS
        + num_transition_crossings * TRANSITION_CROSSING_VIAS
    )
    est_used_capacity = (est_num_vias / 2) ** 1.1
    return est_used_capacity / max(total_capacity, 1e-9)


def calculate_crossing_probability_of_failure(
    node: CapacityMeshNode, crossings: IntraNodeCrossings
) -> float:
    """Probability that ``node`` cannot fit its crossings. Target nodes never fail."""
    if node.contains_target:
        return 0.0
    return estimate_probability_of_failure(
        get_node_capacity(node),
        crossings.num_same_layer_crossings,
        crossings.num_entry_exit_layer_changes,
        crossings.num_transition_crossings,
    )


def get_log_probability_cost(probability_of_failure: float) -> float:
    """-log(success probability); 0 for a node that cannot fail."""
    if probability_of_failure <= 0:
        return 0.0
    return -math.log(1 - min(probability_of_failure, 1 - 1e-9))
