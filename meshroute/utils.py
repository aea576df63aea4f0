"""Shared helpers: seeded shuffling, tuned capacity, node/edge maps."""

import math
from typing import Callable, Dict, List, Sequence, TypeVar

from .types import CapacityMeshEdge, CapacityMeshNodeId

T = TypeVar("T")

# Capacity tuning constants (mm)
CAPACITY_VIA_DIAMETER = 0.6
CAPACITY_OBSTACLE_MARGIN = 0.2


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def seeded_random(seed: int) -> Callable[[], float]:
    """Deterministic xorshift128+ generator returning floats in [0, 1)."""
    s = seed
    for _ in range(10):
        s = (s * 16807) % 2147483647
    state = [s, 0]

    s = (seed * 69069 + 1) % 2147483647
    for _ in range(10):
        s = (s * 48271) % 2147483647
    state[1] = s

    def random() -> float:
        s1 = state[0]
        s0 = state[1]
        state[0] = s0
        s1 = _to_int32(s1)
        s1 = _to_int32(s1 ^ _to_int32(s1 << 23))
        s1 = _to_int32(s1 ^ ((s1 & 0xFFFFFFFF) >> 17))
        s1 = _to_int32(s1 ^ _to_int32(s0))
        s1 = _to_int32(s1 ^ ((s0 & 0xFFFFFFFF) >> 26))
        state[1] = s1
        result = (state[0] + state[1]) / 4294967296
        return result - math.floor(result)

    return random


# Small arrays have few orderings and seeds usually count up from 0, so the
# first seeds enumerate every permutation.
PRESHUFFLED_CASES: Dict[int, List[List[int]]] = {
    1: [[0]],
    2: [[0, 1], [1, 0]],
    3: [
        [0, 1, 2], [2, 0, 1], [1, 0, 2],
        [0, 2, 1], [1, 2, 0], [2, 1, 0],
    ],
    4: [
        [0, 1, 2, 3], [2, 0, 1, 3], [1, 3, 2, 0], [3, 0, 1, 2],
        [0, 2, 1, 3], [2, 1, 3, 0], [3, 0, 2, 1], [1, 2, 0, 3],
        [3, 1, 0, 2], [0, 3, 2, 1], [2, 3, 0, 1], [2, 3, 1, 0],
        [1, 2, 3, 0], [3, 1, 2, 0], [0, 1, 3, 2], [0, 2, 3, 1],
        [0, 3, 1, 2], [1, 0, 2, 3], [1, 0, 3, 2], [1, 3, 0, 2],
        [2, 0, 3, 1], [2, 1, 0, 3], [3, 2, 0, 1], [3, 2, 1, 0],
    ],
}


def clone_and_shuffle(items: Sequence[T], seed: int) -> List[T]:
    """Return a seeded permutation of ``items``; seed 0 keeps the input order."""
    if seed == 0 or len(items) == 0:
        return list(items)

    if len(items) <= 4:
        options = PRESHUFFLED_CASES[len(items)]
        return [items[i] for i in options[seed % len(options)]]

    random = seeded_random(seed)
    shuffled = list(items)
    n = len(shuffled)
    for i in range(n):
        i1 = int(math.floor(random() * n))
        i2 = int(math.floor(random() * (i + 1)))
        shuffled[i1], shuffled[i2] = shuffled[i2], shuffled[i1]
    return shuffled


def get_tuned_total_capacity(width: float, available_z_count: int = 2,
                             max_capacity_factor: float = 1.0) -> float:
    """Capacity of a node of ``width``: roughly how many vias fit across it.

    Single-layer nodes are capped at 1 since traces cannot cross there.
    """
    via_length_across = width / (CAPACITY_VIA_DIAMETER / 2 + CAPACITY_OBSTACLE_MARGIN)
    capacity = (via_length_across / 2) ** 1.1 * max_capacity_factor
    if available_z_count == 1 and capacity > 1:
        return 1.0
    return capacity


def get_node_capacity(node, max_capacity_factor: float = 1.0) -> float:
    return get_tuned_total_capacity(node.width, len(node.available_z), max_capacity_factor)


def calculate_optimal_capacity_depth(initial_width: float, target_min_capacity: float = 0.5,
                                     max_depth: int = 16) -> int:
    """Subdivision depth at which the smallest nodes reach ``target_min_capacity``."""
    depth = 0
    width = initial_width
    while depth < max_depth:
        if get_tuned_total_capacity(width) <= target_min_capacity:
            break
        width /= 2
        depth += 1
    return max(1, depth)


def get_node_edge_map(edges: List[CapacityMeshEdge]) -> Dict[CapacityMeshNodeId, List[CapacityMeshEdge]]:
    """Index edges by each of their node ids, preserving edge order."""
    node_edge_map: Dict[CapacityMeshNodeId, List[CapacityMeshEdge]] = {}
    for edge in edges:
        for node_id in edge.node_ids:
            node_edge_map.setdefault(node_id, []).append(edge)
    return node_edge_map
