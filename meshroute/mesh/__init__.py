"""Capacity mesh construction.

- CapacityMeshNodeSolver: recursive subdivision of the board into nodes
- CapacityNodeTargetMerger: merges target nodes of the same connection
- SingleLayerNodeMerger: merges single-layer nodes on the same layer
- StrawSolver: splits large single-layer nodes into one-trace straws
- CapacityMeshEdgeSolver: edges between bordering nodes with a shared layer
- DeadEndSolver: drops leaf nodes that hold no connection terminal
"""

from .node_solver import CapacityMeshNodeSolver
from .node_merger import RectangleNodeMerger
from .target_merger import CapacityNodeTargetMerger
from .single_layer_merger import SingleLayerNodeMerger
from .straw_solver import StrawSolver
from .edge_solver import (
    CapacityMeshEdgeSolver,
    are_nodes_bordering,
    do_nodes_have_shared_layer,
    get_shared_border,
)
from .dead_end import DeadEndSolver

__all__ = [
    "CapacityMeshNodeSolver",
    "RectangleNodeMerger",
    "CapacityNodeTargetMerger",
    "SingleLayerNodeMerger",
    "StrawSolver",
    "CapacityMeshEdgeSolver",
    "DeadEndSolver",
    "are_nodes_bordering",
    "do_nodes_have_shared_layer",
    "get_shared_border",
]
