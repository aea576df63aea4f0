"""Unravel section solver with a translation-invariant solution cache.

The key describes the section relative to its root node centre, with
coordinates rounded to 0.05 mm:

- nodes (``node_{i}``, ordered by relative centre): size, layers, centre
- segment points (``sp_{i}``, ordered by relative position and layer):
  position, layer, normalized segment id (``seg_{i}``), whether the segment
  is mutable and which points it is directly connected to

The cached value stores the best candidate's modifications as deltas from
the original points, so it applies to any translated copy of the section.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from ..cache.cachable import CachableSolver
from ..cache.provider import CacheProvider
from ..errors import InvariantViolation
from ..types import CapacityMeshNodeId
from .section_solver import UnravelSectionSolver
from .types import PointModification, SegmentId, SegmentPointId, create_point_modifications_hash

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "unravel-section:"


def approximate_coordinate(value: float) -> str:
    """Round to the nearest 0.05 mm, formatted with two decimals."""
    rounded = round(value * 20) / 20
    if rounded == 0:
        rounded = 0.0  # avoid "-0.00"
    return f"{rounded:.2f}"


@dataclass
class CacheToUnravelSectionTransform:
    translation_offset: Tuple[float, float]
    node_id_map: Dict[CapacityMeshNodeId, str] = field(default_factory=dict)
    segment_id_map: Dict[SegmentId, str] = field(default_factory=dict)
    segment_point_id_map: Dict[SegmentPointId, str] = field(default_factory=dict)

    @property
    def reverse_segment_point_id_map(self) -> Dict[str, SegmentPointId]:
        return {norm: real for real, norm in self.segment_point_id_map.items()}


class CachedUnravelSectionSolver(UnravelSectionSolver, CachableSolver):
    def __init__(self, *args, cache_provider: Optional[CacheProvider] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.cache_provider = cache_provider
        self.cache_key: Optional[str] = None
        self.cache_to_solve_space_transform: Optional[CacheToUnravelSectionTransform] = None
        self.cache_hit = False
        self.has_attempted_to_use_cache = False

    def _step(self):
        if not self.has_attempted_to_use_cache and self.cache_provider is not None:
            if self.attempt_to_use_cache_sync():
                return
        super()._step()
        if (self.solved or self.failed) and self.cache_provider is not None:
            self.save_to_cache_sync()

    def compute_cache_key_and_transform(self) -> Tuple[str, CacheToUnravelSectionTransform]:
        section = self.unravel_section
        root = self.node_map[self.root_node_id]
        offset = (-root.center.x, -root.center.y)
        transform = CacheToUnravelSectionTransform(translation_offset=offset)

        def rel(x: float, y: float) -> Tuple[str, str]:
            return approximate_coordinate(x + offset[0]), approximate_coordinate(y + offset[1])

        def node_sort_key(node_id):
            node = self.node_map[node_id]
            return (round(node.center.x + offset[0], 6), round(node.center.y + offset[1], 6))

        normalized_nodes = {}
        for i, node_id in enumerate(sorted(section.all_node_ids, key=node_sort_key)):
            norm_id = f"node_{i}"
            transform.node_id_map[node_id] = norm_id
            node = self.node_map[node_id]
            cx, cy = rel(node.center.x, node.center.y)
            normalized_nodes[norm_id] = {
                "width": approximate_coordinate(node.width),
                "height": approximate_coordinate(node.height),
                "available_z": list(node.available_z),
                "center": [cx, cy],
            }

        def point_sort_key(sp_id):
            point = section.segment_point_map[sp_id]
            return (round(point.x + offset[0], 6), round(point.y + offset[1], 6), point.z)

        sorted_sp_ids = sorted(section.segment_point_map, key=point_sort_key)
        for i, sp_id in enumerate(sorted_sp_ids):
            transform.segment_point_id_map[sp_id] = f"sp_{i}"
            segment_id = section.segment_point_map[sp_id].segment_id
            if segment_id not in transform.segment_id_map:
                transform.segment_id_map[segment_id] = f"seg_{len(transform.segment_id_map)}"

        normalized_points = {}
        for sp_id in sorted_sp_ids:
            point = section.segment_point_map[sp_id]
            x, y = rel(point.x, point.y)
            normalized_points[transform.segment_point_id_map[sp_id]] = {
                "x": x,
                "y": y,
                "z": point.z,
                "segment": transform.segment_id_map[point.segment_id],
                "mutable": point.segment_id in section.mutable_segment_ids,
                "connected_to": sorted(
                    transform.segment_point_id_map[other]
                    for other in point.directly_connected_segment_point_ids
                    if other in transform.segment_point_id_map
                ),
            }

        key_data = {
            "nodes": normalized_nodes,
            "segment_points": normalized_points,
            "mutable_hops": self.mutable_hops,
            "max_candidates": self.max_candidates,
        }
        digest = hashlib.sha256(json.dumps(key_data, sort_keys=True).encode("utf-8")).hexdigest()
        return CACHE_KEY_PREFIX + digest, transform

    def snap_to_segment_position(self, segment_id: SegmentId, x: float, y: float) -> Tuple[float, float]:
        """Nearest original point position on the segment; deltas are rounded."""
        section = self.unravel_section
        positions = [
            (section.segment_point_map[sp_id].x, section.segment_point_map[sp_id].y)
            for sp_id in section.segment_points_in_segment.get(segment_id, [])
        ]
        if not positions:
            return x, y
        return min(positions, key=lambda p: (p[0] - x) ** 2 + (p[1] - y) ** 2)

    def apply_cached_solution(self, cached_solution: Dict[str, Any]):
        if not isinstance(cached_solution, dict) or "success" not in cached_solution:
            raise InvariantViolation(f"Malformed unravel cache entry under {self.cache_key}")
        if not cached_solution["success"]:
            self.fail("Unravel section is cached as failed")
            return

        reverse = self.cache_to_solve_space_transform.reverse_segment_point_id_map
        modifications = {}
        for norm_id, delta in cached_solution["best_candidate_point_modifications_delta"]:
            sp_id = reverse.get(norm_id)
            if sp_id is None:
                raise InvariantViolation(f"Cached modification for unknown point {norm_id}")
            point = self.unravel_section.segment_point_map[sp_id]
            x = y = None
            if "dx" in delta or "dy" in delta:
                x, y = self.snap_to_segment_position(
                    point.segment_id,
                    point.x + float(delta.get("dx", 0)),
                    point.y + float(delta.get("dy", 0)),
                )
            modifications[sp_id] = PointModification(
                x=x,
                y=y,
                z=point.z + int(delta["dz"]) if "dz" in delta else None,
            )

        candidate = self.create_candidate(modifications, -1)
        candidate.f = cached_solution["best_candidate_f"]
        candidate.g = candidate.f
        candidate.candidate_hash = create_point_modifications_hash(modifications)
        self.best_candidate = candidate
        self.solved = True
        self.progress = 1.0

    def build_cached_solution(self) -> Dict[str, Any]:
        if self.failed or self.best_candidate is None:
            return {"success": False}

        transform = self.cache_to_solve_space_transform
        deltas = []
        for sp_id, modification in self.best_candidate.point_modifications.items():
            norm_id = transform.segment_point_id_map.get(sp_id)
            if norm_id is None:
                continue
            point = self.unravel_section.segment_point_map[sp_id]
            delta = {}
            if modification.x is not None:
                dx = approximate_coordinate(modification.x - point.x)
                if float(dx) != 0:
                    delta["dx"] = dx
            if modification.y is not None:
                dy = approximate_coordinate(modification.y - point.y)
                if float(dy) != 0:
                    delta["dy"] = dy
            if modification.z is not None and modification.z != point.z:
                delta["dz"] = modification.z - point.z
            if delta:
                deltas.append([norm_id, delta])
        deltas.sort(key=lambda item: item[0])

        return {
            "success": True,
            "best_candidate_point_modifications_delta": deltas,
            "best_candidate_f": self.best_candidate.f,
        }
