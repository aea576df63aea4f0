"""Spatial indexes and queues shared by the solvers.

- GridHashIndex / RTreeIndex / BulkIndex: interchangeable bbox indexes
- ObstacleIndex / RouteIndex: layer-aware conflict queries
- PriorityQueue: bounded min-heap
"""

from .spatial_index import (
    SPATIAL_INDEX_STRATEGIES,
    BulkIndex,
    GridHashIndex,
    RTreeIndex,
    SpatialIndex,
    auto_calibrate_cell_size,
    bboxes_intersect,
    create_spatial_index,
)
from .route_index import ObstacleIndex, RouteIndex
from .priority_queue import PriorityQueue

__all__ = [
    "SPATIAL_INDEX_STRATEGIES",
    "BulkIndex",
    "GridHashIndex",
    "RTreeIndex",
    "SpatialIndex",
    "auto_calibrate_cell_size",
    "bboxes_intersect",
    "create_spatial_index",
    "ObstacleIndex",
    "RouteIndex",
    "PriorityQueue",
]
