"""
Tests for the section solution cache.

Tests cover:
- In-memory and file cache providers
- Canonical, translation-invariant section cache keys
- Reusing a cached section solution on a relabelled section
- Cached failures and malformed entries
"""

from typing import Dict, List

import pytest

from meshroute.cache import FileCache, InMemoryCache
from meshroute.errors import InvariantViolation
from meshroute.pathing import CachedHyperCapacityPathingSingleSectionSolver, Section
from meshroute.types import CapacityMeshEdge, CapacityMeshNode, ConnectionTerminal, Point


# =============================================================================
# Fixtures
# =============================================================================

def make_square_section(names: Dict[str, str], offset: float = 0.0, capacity: float = 2.0) -> Section:
    """A 2x2 block of nodes A B / C D with two connections crossing it.

    ``names`` maps the letters to the node ids used for this instance.
    """
    positions = {"A": (0.5, 0.5), "B": (1.5, 0.5), "C": (0.5, 1.5), "D": (1.5, 1.5)}
    nodes = [
        CapacityMeshNode(
            capacity_mesh_node_id=names[letter],
            center=Point(x + offset, y + offset),
            width=1.0,
            height=1.0,
            available_z=[0, 1],
            total_capacity=capacity,
        )
        for letter, (x, y) in positions.items()
    ]
    edges = [
        CapacityMeshEdge(f"e{i}", (names[a], names[b]))
        for i, (a, b) in enumerate([("A", "B"), ("A", "C"), ("B", "D"), ("C", "D")])
    ]
    terminals = [
        ConnectionTerminal("x", names["A"], names["D"]),
        # End precedes start in canonical order, so this one is stored flipped
        ConnectionTerminal("y", names["C"], names["B"]),
    ]
    return Section(
        center_node_id=names["A"],
        section_nodes=nodes,
        section_edges=edges,
        section_connection_terminals=terminals,
    )


ORIGINAL = {"A": "cn1", "B": "cn2", "C": "cn3", "D": "cn4"}
RELABELLED = {"A": "cn40", "B": "cn41", "C": "cn42", "D": "cn43"}


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


# =============================================================================
# Cache Provider Tests
# =============================================================================

class TestInMemoryCache:
    """Tests for the process-local cache."""

    def test_miss_then_hit(self, cache):
        assert cache.get_cached_solution_sync("k") is None
        cache.set_cached_solution_sync("k", {"success": True})
        assert cache.get_cached_solution_sync("k") == {"success": True}
        assert cache.get_stats() == {"hits": 1, "misses": 1}
        assert len(cache) == 1

    def test_values_are_copied(self, cache):
        """Mutating a stored or returned value does not change the cache."""
        value = {"paths": [1, 2]}
        cache.set_cached_solution_sync("k", value)
        value["paths"].append(3)
        returned = cache.get_cached_solution_sync("k")
        returned["paths"].append(4)
        assert cache.get_cached_solution_sync("k") == {"paths": [1, 2]}

    def test_clear(self, cache):
        cache.set_cached_solution_sync("k", 1)
        cache.clear_cache()
        assert len(cache) == 0
        assert cache.cache_hits == 0


class TestFileCache:
    """Tests for the on-disk cache."""

    def test_persists_across_instances(self, tmp_path):
        FileCache(tmp_path).set_cached_solution_sync("capacity-section:abc", {"success": False})
        reopened = FileCache(tmp_path)
        assert reopened.get_cached_solution_sync("capacity-section:abc") == {"success": False}
        assert reopened.get_cached_solution_sync("capacity-section:other") is None
        assert reopened.get_stats() == {"hits": 1, "misses": 1}

    def test_unreadable_entry_is_a_miss(self, tmp_path):
        cache = FileCache(tmp_path)
        cache.set_cached_solution_sync("k", [1])
        for path in tmp_path.glob("*.json"):
            path.write_text("{not json")
        assert cache.get_cached_solution_sync("k") is None

    def test_clear(self, tmp_path):
        cache = FileCache(tmp_path)
        cache.set_cached_solution_sync("k", [1])
        cache.clear_cache()
        assert list(tmp_path.glob("*.json")) == []


# =============================================================================
# Section Cache Tests
# =============================================================================

class TestSectionCacheKey:
    """Tests for canonical section keys."""

    def test_key_ignores_ids_and_position(self):
        """Relabelled, translated copies of a section share a key."""
        original = CachedHyperCapacityPathingSingleSectionSolver(make_square_section(ORIGINAL))
        moved = CachedHyperCapacityPathingSingleSectionSolver(
            make_square_section(RELABELLED, offset=25.0)
        )
        key, transform = original.compute_cache_key_and_transform()
        moved_key, _ = moved.compute_cache_key_and_transform()
        assert key.startswith("capacity-section:")
        assert key == moved_key
        assert transform.cache_space_to_real_node_id["sn0"] == "cn1"

    def test_key_depends_on_capacity(self):
        original = CachedHyperCapacityPathingSingleSectionSolver(make_square_section(ORIGINAL))
        roomier = CachedHyperCapacityPathingSingleSectionSolver(
            make_square_section(ORIGINAL, capacity=4.0)
        )
        assert original.compute_cache_key_and_transform()[0] != \
            roomier.compute_cache_key_and_transform()[0]

    def test_flipped_connection_recorded(self):
        solver = CachedHyperCapacityPathingSingleSectionSolver(make_square_section(ORIGINAL))
        _, transform = solver.compute_cache_key_and_transform()
        flipped = [transform.cache_space_to_real_connection_id[c]
                   for c in transform.flipped_connection_ids]
        assert flipped == ["y"]


class TestSectionCacheReuse:
    """Tests for storing and applying cached section solutions."""

    def seed_cache(self, cache, paths: Dict[str, List[str]]):
        solver = CachedHyperCapacityPathingSingleSectionSolver(
            make_square_section(ORIGINAL), cache_provider=cache
        )
        solver._ensure_cache_key()
        solver.best_solved_paths = paths
        solver.section_score = 0.0
        solver.solved = True
        solver.save_to_cache_sync()
        return solver

    def test_cached_solution_applies_to_relabelled_section(self, cache):
        """A solution stored for one section decodes onto an isomorphic one."""
        self.seed_cache(cache, {"x": ["cn1", "cn2", "cn4"], "y": ["cn3", "cn4", "cn2"]})

        solver = CachedHyperCapacityPathingSingleSectionSolver(
            make_square_section(RELABELLED, offset=10.0), cache_provider=cache
        )
        assert solver.attempt_to_use_cache_sync()
        assert solver.solved
        assert solver.cache_hit
        assert solver.best_solved_paths == {
            "x": ["cn40", "cn41", "cn43"],
            "y": ["cn42", "cn43", "cn41"],
        }

    def test_solve_stores_and_reuses(self, cache):
        """A solved section is written once and read back by the next solver."""
        first = CachedHyperCapacityPathingSingleSectionSolver(
            make_square_section(ORIGINAL), cache_provider=cache
        )
        first.solve()
        assert first.solved
        assert not first.cache_hit
        assert len(cache) == 1

        second = CachedHyperCapacityPathingSingleSectionSolver(
            make_square_section(ORIGINAL), cache_provider=cache
        )
        second.solve()
        assert second.cache_hit
        assert second.best_solved_paths == first.best_solved_paths
        assert second.iterations == 1

    def test_cached_failure(self, cache):
        solver = CachedHyperCapacityPathingSingleSectionSolver(
            make_square_section(ORIGINAL), cache_provider=cache
        )
        key, _ = solver.compute_cache_key_and_transform()
        cache.set_cached_solution_sync(key, {"success": False})
        solver.solve()
        assert solver.failed
        assert "unsolvable" in solver.error

    def test_malformed_entry_raises(self, cache):
        solver = CachedHyperCapacityPathingSingleSectionSolver(
            make_square_section(ORIGINAL), cache_provider=cache
        )
        key, _ = solver.compute_cache_key_and_transform()
        cache.set_cached_solution_sync(key, {"paths": []})
        with pytest.raises(InvariantViolation):
            solver.attempt_to_use_cache_sync()
