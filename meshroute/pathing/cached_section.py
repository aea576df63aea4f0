"""Section pathing with a topology-keyed solution cache.

Two sections with the same graph shape, the same rounded node capacities
and the same terminals have the same solution, whatever their absolute
node ids or positions. The section is relabelled canonically:

- nodes are ordered by a best-first walk from the centre node, cheapest
  accumulated rounded capacity first, ties in edge order; node ``i`` in
  that order becomes ``sn{i}``
- a connection becomes ``"{a}->{b}"`` with the lower canonical node first;
  if that reverses the connection, the flip is remembered and undone when
  decoding

The cache key is a sha256 over the sorted JSON of capacities, edges and
terminals. Cached values store paths in canonical ids only.
"""

import hashlib
import heapq
import itertools
import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from ..cache.cachable import CachableSolver
from ..cache.provider import CacheProvider
from ..config import HyperParameterDefs, PathingHyperParameters
from ..errors import InvariantViolation
from ..types import CapacityMeshNodeId
from ..utils import get_node_edge_map
from .hyper_section import HyperCapacityPathingSingleSectionSolver
from .section import Section
from .solver import get_pathing_total_capacity

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "capacity-section:"


def round_capacity(capacity: float) -> float:
    return math.floor(capacity * 10) / 10


@dataclass
class CacheToSectionTransform:
    """Maps cache-space ids back to the ids of one section instance."""
    cache_space_to_real_node_id: Dict[str, CapacityMeshNodeId] = field(default_factory=dict)
    cache_space_to_real_connection_id: Dict[str, str] = field(default_factory=dict)
    flipped_connection_ids: Set[str] = field(default_factory=set)

    @property
    def real_to_cache_space_node_id(self) -> Dict[CapacityMeshNodeId, str]:
        return {real: cache for cache, real in self.cache_space_to_real_node_id.items()}

    @property
    def real_to_cache_space_connection_id(self) -> Dict[str, str]:
        return {real: cache for cache, real in self.cache_space_to_real_connection_id.items()}


class CachedHyperCapacityPathingSingleSectionSolver(
    HyperCapacityPathingSingleSectionSolver, CachableSolver
):
    """Section supervisor that checks the cache before searching and
    stores its result (success or failure) afterwards."""

    def __init__(
        self,
        section: Section,
        hyper_parameters: Optional[PathingHyperParameters] = None,
        hyper_parameter_defs: Optional[HyperParameterDefs] = None,
        cache_provider: Optional[CacheProvider] = None,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(section, hyper_parameters, hyper_parameter_defs, max_iterations)
        self.cache_provider = cache_provider
        self.cache_key: Optional[str] = None
        self.cache_to_solve_space_transform: Optional[CacheToSectionTransform] = None
        self.cache_hit = False
        self.has_attempted_to_use_cache = False
        self.section_node_edge_map = get_node_edge_map(section.section_edges)

    def _step(self):
        if not self.has_attempted_to_use_cache and self.cache_provider is not None:
            if self.attempt_to_use_cache_sync():
                return
        super()._step()
        if (self.solved or self.failed) and self.cache_provider is not None:
            self.save_to_cache_sync()

    def compute_bfs_ordering_of_nodes_in_section(self) -> List[CapacityMeshNodeId]:
        """Canonical node order, cheapest accumulated rounded capacity first."""
        factor = self.base_hyper_parameters.max_capacity_factor
        center_id = self.section.center_node_id
        counter = itertools.count()
        seen = {center_id}
        ordering: List[CapacityMeshNodeId] = []
        candidates: List[Tuple[float, int, CapacityMeshNodeId]] = [(0.0, next(counter), center_id)]

        while candidates:
            g, _, node_id = heapq.heappop(candidates)
            ordering.append(node_id)
            for edge in self.section_node_edge_map.get(node_id, []):
                neighbor_id = edge.other(node_id)
                if neighbor_id in seen or neighbor_id not in self.node_map:
                    continue
                seen.add(neighbor_id)
                capacity = round_capacity(
                    get_pathing_total_capacity(self.node_map[neighbor_id], factor)
                )
                heapq.heappush(candidates, (g + capacity, next(counter), neighbor_id))

        # Nodes the walk cannot reach keep their section order
        for node in self.section.section_nodes:
            if node.capacity_mesh_node_id not in seen:
                seen.add(node.capacity_mesh_node_id)
                ordering.append(node.capacity_mesh_node_id)
        return ordering

    def compute_cache_key_and_transform(self) -> Tuple[str, CacheToSectionTransform]:
        factor = self.base_hyper_parameters.max_capacity_factor
        ordering = self.compute_bfs_ordering_of_nodes_in_section()
        real_to_index = {node_id: i for i, node_id in enumerate(ordering)}
        transform = CacheToSectionTransform(
            cache_space_to_real_node_id={f"sn{i}": node_id for i, node_id in enumerate(ordering)}
        )

        node_capacity_map = {
            f"sn{i}": f"{round_capacity(get_pathing_total_capacity(self.node_map[node_id], factor)):.1f}"
            for i, node_id in enumerate(ordering)
        }

        edge_pairs = set()
        for edge in self.section.section_edges:
            a, b = (real_to_index[node_id] for node_id in edge.node_ids)
            edge_pairs.add((min(a, b), max(a, b)))
        node_edge_map = [[f"sn{a}", f"sn{b}"] for a, b in sorted(edge_pairs)]

        canonical_terminals = []
        for terminal in self.section.section_connection_terminals:
            start = real_to_index[terminal.start_node_id]
            end = real_to_index[terminal.end_node_id]
            canonical_terminals.append((min(start, end), max(start, end), start > end,
                                        terminal.connection_name))
        canonical_terminals.sort(key=lambda t: (t[0], t[1]))

        terminals: Dict[str, Dict[str, str]] = {}
        for low, high, flipped, connection_name in canonical_terminals:
            base_id = f"sn{low}->sn{high}"
            connection_id = base_id
            duplicate = 1
            while connection_id in terminals:
                connection_id = f"{base_id}#{duplicate}"
                duplicate += 1
            terminals[connection_id] = {"start": f"sn{low}", "end": f"sn{high}"}
            transform.cache_space_to_real_connection_id[connection_id] = connection_name
            if flipped:
                transform.flipped_connection_ids.add(connection_id)

        content = {
            "node_capacity_map": node_capacity_map,
            "node_edge_map": node_edge_map,
            "terminals": terminals,
        }
        digest = hashlib.sha256(json.dumps(content, sort_keys=True).encode("utf-8")).hexdigest()
        return CACHE_KEY_PREFIX + digest, transform

    def apply_cached_solution(self, cached_solution: Dict[str, Any]):
        if not isinstance(cached_solution, dict) or "success" not in cached_solution:
            raise InvariantViolation(f"Malformed section cache entry under {self.cache_key}")

        if not cached_solution["success"]:
            self.fail("Section is cached as unsolvable")
            return

        transform = self.cache_to_solve_space_transform
        terminals = {
            t.connection_name: t for t in self.section.section_connection_terminals
        }
        decoded: Dict[str, List[CapacityMeshNodeId]] = {}
        for connection_id, cache_path in cached_solution["solution_paths"].items():
            connection_name = transform.cache_space_to_real_connection_id.get(connection_id)
            if connection_name is None:
                raise InvariantViolation(f"Cached path for unknown connection {connection_id}")
            try:
                path = [transform.cache_space_to_real_node_id[n] for n in cache_path]
            except KeyError as e:
                raise InvariantViolation(f"Cached path references unknown node {e.args[0]}") from e
            if connection_id in transform.flipped_connection_ids:
                path.reverse()

            terminal = terminals[connection_name]
            if path[0] != terminal.start_node_id or path[-1] != terminal.end_node_id:
                raise InvariantViolation(
                    f"Cached path for {connection_name} does not join its terminals"
                )
            decoded[connection_name] = path

        self.best_solved_paths = decoded
        self.section_score = cached_solution.get("section_score")
        if self.section_score is None:
            self.section_score = self.compute_score_for_paths(decoded)
        self.solved = True
        self.progress = 1.0

    def build_cached_solution(self) -> Dict[str, Any]:
        if not self.solved or self.best_solved_paths is None:
            return {"success": False}

        transform = self.cache_to_solve_space_transform
        real_to_cache_node = transform.real_to_cache_space_node_id
        real_to_cache_connection = transform.real_to_cache_space_connection_id
        solution_paths: Dict[str, List[str]] = {}
        for connection_name, path in self.best_solved_paths.items():
            connection_id = real_to_cache_connection[connection_name]
            cache_path = [real_to_cache_node[node_id] for node_id in path]
            if connection_id in transform.flipped_connection_ids:
                cache_path.reverse()
            solution_paths[connection_id] = cache_path

        return {
            "success": True,
            "section_score": self.section_score,
            "solution_paths": solution_paths,
        }
