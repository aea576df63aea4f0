"""Port segments and port point assignment.

- CapacityEdgeToPortSegmentSolver: shared borders crossed by each path
- CapacitySegmentToPointSolver: deduplicated segments with evenly spaced points
- CapacitySegmentPointOptimizer: annealing over layer changes and swaps
"""

from .port_segments import CapacityEdgeToPortSegmentSolver, find_overlapping_segment, get_shared_z
from .point_solver import (
    CapacitySegmentToPointSolver,
    distribute_points,
    get_deduped_segments,
    get_nodes_with_port_points,
    get_segment_key,
)
from .crossings import (
    IntraNodeCrossings,
    calculate_crossing_probability_of_failure,
    estimate_probability_of_failure,
    get_intra_node_crossings,
    get_log_probability_cost,
)
from .optimizer import CapacitySegmentPointOptimizer, ChangeLayerOperation, SwitchOperation

__all__ = [
    # Segments
    "CapacityEdgeToPortSegmentSolver",
    "find_overlapping_segment",
    "get_shared_z",
    # Points
    "CapacitySegmentToPointSolver",
    "distribute_points",
    "get_deduped_segments",
    "get_nodes_with_port_points",
    "get_segment_key",
    # Crossing cost
    "IntraNodeCrossings",
    "calculate_crossing_probability_of_failure",
    "estimate_probability_of_failure",
    "get_intra_node_crossings",
    "get_log_probability_cost",
    # Optimizer
    "CapacitySegmentPointOptimizer",
    "ChangeLayerOperation",
    "SwitchOperation",
]
