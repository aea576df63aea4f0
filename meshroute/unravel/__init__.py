"""Section-by-section unraveling of port point crossings."""

from .types import (
    PointModification,
    SegmentPoint,
    UnravelCandidate,
    UnravelIssue,
    UnravelOperation,
    UnravelSection,
    create_point_modifications_hash,
)
from .segment_points import SegmentPointMaps, create_segment_point_map, get_nodes_near_node
from .issues import apply_operation_to_point_modifications, compute_issues_cost, get_issues_in_section
from .section_solver import UnravelSectionSolver
from .cached_section_solver import CachedUnravelSectionSolver, approximate_coordinate
from .multi_section_solver import UnravelMultiSectionSolver

__all__ = [
    "PointModification",
    "SegmentPoint",
    "UnravelCandidate",
    "UnravelIssue",
    "UnravelOperation",
    "UnravelSection",
    "create_point_modifications_hash",
    "SegmentPointMaps",
    "create_segment_point_map",
    "get_nodes_near_node",
    "apply_operation_to_point_modifications",
    "compute_issues_cost",
    "get_issues_in_section",
    "UnravelSectionSolver",
    "CachedUnravelSectionSolver",
    "approximate_coordinate",
    "UnravelMultiSectionSolver",
]
