"""Capacity pathing: routing every connection through the node graph."""

from .solver import (
    CapacityPathingGreedySolver,
    CapacityPathingSolver,
    find_goal_node,
    get_connection_terminals,
    get_pathing_total_capacity,
)
from .section import Section, compute_section, compute_section_score, get_used_capacity_from_paths
from .hyper_section import HyperCapacityPathingSingleSectionSolver
from .cached_section import CachedHyperCapacityPathingSingleSectionSolver
from .multi_section import CapacityPathingMultiSectionSolver

__all__ = [
    "CapacityPathingGreedySolver",
    "CapacityPathingSolver",
    "find_goal_node",
    "get_connection_terminals",
    "get_pathing_total_capacity",
    "Section",
    "compute_section",
    "compute_section_score",
    "get_used_capacity_from_paths",
    "HyperCapacityPathingSingleSectionSolver",
    "CachedHyperCapacityPathingSingleSectionSolver",
    "CapacityPathingMultiSectionSolver",
]
