"""Interchangeable spatial indexes for obstacle and route collision queries.

Three strategies share one contract (``insert``, ``search``, ``clear``):

- ``GridHashIndex``: incremental spatial hash. Each item is bucketed into
  every grid cell its bounding box overlaps; queries deduplicate by item.
- ``RTreeIndex``: dynamic balanced tree backed by ``rtree``.
- ``BulkIndex``: static Sort-Tile-Recursive tree (shapely ``STRtree``),
  rebuilt lazily after inserts.

All three return exactly the items whose bounding box intersects (or
touches) the query box, in insertion order.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Dict, Generic, List, Optional, Sequence, Set, Tuple, TypeVar

from rtree import index
from shapely.geometry import box
from shapely.strtree import STRtree

logger = logging.getLogger(__name__)

T = TypeVar("T")

BBox = Tuple[float, float, float, float]  # (min_x, min_y, max_x, max_y)

# Degenerate boxes are padded by this much before going into the STR tree
_BULK_PAD = 1e-9


def bboxes_intersect(a: BBox, b: BBox) -> bool:
    return not (a[2] < b[0] or b[2] < a[0] or a[3] < b[1] or b[3] < a[1])


class SpatialIndex(ABC, Generic[T]):
    """Common query contract for all strategies."""

    def __init__(self):
        self._items: List[T] = []
        self._bboxes: List[BBox] = []

    def __len__(self) -> int:
        return len(self._items)

    def insert(self, item: T, bbox: BBox):
        min_x, min_y, max_x, max_y = bbox
        if min_x > max_x or min_y > max_y:
            raise ValueError(f"Invalid bounding box {bbox}")
        item_id = len(self._items)
        self._items.append(item)
        self._bboxes.append(tuple(bbox))
        self._insert(item_id, tuple(bbox))

    def search(self, bbox: BBox) -> List[T]:
        """All items whose bounding box intersects ``bbox``."""
        ids = [
            item_id for item_id in sorted(self._candidate_ids(bbox))
            if bboxes_intersect(self._bboxes[item_id], bbox)
        ]
        return [self._items[i] for i in ids]

    def clear(self):
        self._items = []
        self._bboxes = []
        self._clear()

    @abstractmethod
    def _insert(self, item_id: int, bbox: BBox):
        ...

    @abstractmethod
    def _candidate_ids(self, bbox: BBox) -> Set[int]:
        ...

    @abstractmethod
    def _clear(self):
        ...


class GridHashIndex(SpatialIndex[T]):
    """Grid-based spatial hash for O(~1) collision queries.

    Cell size should be about 2-3x the typical item size.
    """

    def __init__(self, cell_size: float = 1.0):
        super().__init__()
        if cell_size <= 0:
            raise ValueError(f"cell_size must be positive, got {cell_size}")
        self.cell_size = cell_size
        self.cells: Dict[Tuple[int, int], List[int]] = {}

    def _get_cells_for_rect(self, bbox: BBox) -> List[Tuple[int, int]]:
        """Get all cells that a rectangle overlaps."""
        min_x, min_y, max_x, max_y = bbox
        start_x = int(math.floor(min_x / self.cell_size))
        end_x = int(math.floor(max_x / self.cell_size))
        start_y = int(math.floor(min_y / self.cell_size))
        end_y = int(math.floor(max_y / self.cell_size))
        return [
            (cx, cy)
            for cx in range(start_x, end_x + 1)
            for cy in range(start_y, end_y + 1)
        ]

    def _insert(self, item_id: int, bbox: BBox):
        for cell in self._get_cells_for_rect(bbox):
            self.cells.setdefault(cell, []).append(item_id)

    def _candidate_ids(self, bbox: BBox) -> Set[int]:
        seen: Set[int] = set()
        for cell in self._get_cells_for_rect(bbox):
            seen.update(self.cells.get(cell, ()))
        return seen

    def _clear(self):
        self.cells = {}

    def get_stats(self) -> Dict:
        """Get index statistics for debugging."""
        occupied = [len(ids) for ids in self.cells.values()]
        return {
            "items": len(self._items),
            "cells_used": len(self.cells),
            "cell_size": self.cell_size,
            "avg_per_cell": sum(occupied) / len(occupied) if occupied else 0,
            "max_per_cell": max(occupied) if occupied else 0,
        }


class RTreeIndex(SpatialIndex[T]):
    """Dynamic R-tree (``rtree.index.Index``)."""

    def __init__(self):
        super().__init__()
        self._tree = index.Index()

    def _insert(self, item_id: int, bbox: BBox):
        self._tree.insert(item_id, bbox)

    def _candidate_ids(self, bbox: BBox) -> Set[int]:
        return set(self._tree.intersection(bbox))

    def _clear(self):
        self._tree = index.Index()


class BulkIndex(SpatialIndex[T]):
    """Static STR tree, rebuilt on the first query after any insert."""

    def __init__(self):
        super().__init__()
        self._tree: Optional[STRtree] = None
        self._dirty = False

    def _insert(self, item_id: int, bbox: BBox):
        self._dirty = True

    def _build(self):
        geoms = [
            box(b[0] - _BULK_PAD, b[1] - _BULK_PAD, b[2] + _BULK_PAD, b[3] + _BULK_PAD)
            for b in self._bboxes
        ]
        self._tree = STRtree(geoms) if geoms else None
        self._dirty = False
        logger.debug(f"Built STR tree over {len(geoms)} items")

    def _candidate_ids(self, bbox: BBox) -> Set[int]:
        if self._dirty:
            self._build()
        if self._tree is None:
            return set()
        query = box(
            bbox[0] - _BULK_PAD, bbox[1] - _BULK_PAD, bbox[2] + _BULK_PAD, bbox[3] + _BULK_PAD
        )
        return {int(i) for i in self._tree.query(query)}

    def _clear(self):
        self._tree = None
        self._dirty = False


SPATIAL_INDEX_STRATEGIES = ("grid", "rtree", "bulk")


def create_spatial_index(strategy: str = "grid", cell_size: float = 1.0) -> SpatialIndex:
    """Create an empty index of the named strategy."""
    if strategy == "grid":
        return GridHashIndex(cell_size=cell_size)
    if strategy == "rtree":
        return RTreeIndex()
    if strategy == "bulk":
        return BulkIndex()
    available = ", ".join(SPATIAL_INDEX_STRATEGIES)
    raise ValueError(f"Unknown spatial index strategy '{strategy}'. Available: {available}")


def auto_calibrate_cell_size(
    item_sizes: Sequence[Tuple[float, float]],
    default: float = 1.0,
    min_size: float = 0.5,
    max_size: float = 5.0,
) -> float:
    """Grid cell size for items of the given (width, height) sizes.

    Rule of thumb: 2.5x the median item size, clamped to
    ``[min_size, max_size]``, so most items land in 1-4 cells.
    """
    if not item_sizes:
        return default
    max_dims = sorted(max(w, h) for w, h in item_sizes)
    median_size = max_dims[len(max_dims) // 2]
    cell_size = max(min_size, min(max_size, median_size * 2.5))
    return round(cell_size, 2)
