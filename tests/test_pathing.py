"""
Tests for capacity pathing through the mesh.

Tests cover:
- Mapping connection points to terminal nodes
- Strict pathing respecting node capacity
- Greedy (negative capacity) pathing
- Unroutable connections
- Sections and section scoring
- Multi-section optimization
"""

from typing import List

import pytest

from meshroute.errors import InvariantViolation
from meshroute.mesh import CapacityMeshEdgeSolver, CapacityMeshNodeSolver
from meshroute.pathing import (
    CapacityPathingGreedySolver,
    CapacityPathingMultiSectionSolver,
    CapacityPathingSolver,
    compute_section,
    compute_section_score,
    find_goal_node,
    get_connection_terminals,
    get_used_capacity_from_paths,
)
from meshroute.types import (
    CapacityMeshNode,
    Connection,
    ConnectionPoint,
    ConnectionTerminal,
    Point,
    SimpleRouteJson,
)
from meshroute.utils import get_node_edge_map


# =============================================================================
# Fixtures
# =============================================================================

def build_mesh(srj: SimpleRouteJson, capacity_depth: int):
    node_solver = CapacityMeshNodeSolver(srj, capacity_depth=capacity_depth)
    node_solver.solve()
    edge_solver = CapacityMeshEdgeSolver(node_solver.finished_nodes)
    edge_solver.solve()
    return node_solver.finished_nodes, edge_solver.edges


def assert_paths_follow_edges(paths, edges, terminals):
    pairs = {frozenset(e.node_ids) for e in edges}
    by_name = {t.connection_name: t for t in terminals}
    for name, path in paths.items():
        node_ids = [n if isinstance(n, str) else n.capacity_mesh_node_id for n in path]
        assert node_ids[0] == by_name[name].start_node_id
        assert node_ids[-1] == by_name[name].end_node_id
        for a, b in zip(node_ids, node_ids[1:]):
            assert frozenset((a, b)) in pairs


def assert_within_capacity(solver):
    """No node holds more traces than its effective capacity, terminals included."""
    for node in solver.nodes:
        used = solver.used_node_capacity_map[node.capacity_mesh_node_id]
        assert used <= solver.get_effective_capacity(node)
        if node.capacity_mesh_node_id not in solver.terminal_counts:
            assert used <= solver.total_node_capacity_map[node.capacity_mesh_node_id]


@pytest.fixture
def ladder() -> List[CapacityMeshNode]:
    """Two rows of three unit nodes; the middle column holds one trace each."""
    nodes = []
    for row, y in (("n", 1.5), ("m", 0.5)):
        for col in range(3):
            nodes.append(CapacityMeshNode(
                capacity_mesh_node_id=f"{row}{col}",
                center=Point(col + 0.5, y),
                width=1.0,
                height=1.0,
                available_z=[0, 1],
                total_capacity=1.0 if col == 1 else 5.0,
            ))
    return nodes


@pytest.fixture
def ladder_edges(ladder):
    solver = CapacityMeshEdgeSolver(ladder)
    solver.solve()
    return solver.edges


# =============================================================================
# Terminal Tests
# =============================================================================

class TestTerminals:
    """Tests for mapping points onto mesh nodes."""

    def test_goal_node_prefers_target_containing_point(self, ladder):
        ladder[4].contains_target = True
        assert find_goal_node(Point(1.2, 0.4), ladder).capacity_mesh_node_id == "m1"

    def test_goal_node_falls_back_to_nearest(self, ladder):
        assert find_goal_node(Point(2.4, 1.9), ladder).capacity_mesh_node_id == "n2"
        assert find_goal_node(Point(0, 0), []) is None

    def test_connection_terminals(self, simple_board):
        nodes, _ = build_mesh(simple_board, 3)
        terminals, unmapped = get_connection_terminals(simple_board, nodes)
        assert unmapped == []
        assert len(terminals) == 1
        start = next(n for n in nodes if n.capacity_mesh_node_id == terminals[0].start_node_id)
        assert start.bounds.contains(2.0, 5.0)

    def test_single_point_connection_unmapped(self, simple_board):
        simple_board.connections.append(Connection("stub", [ConnectionPoint(1, 1)]))
        nodes, _ = build_mesh(simple_board, 3)
        _, unmapped = get_connection_terminals(simple_board, nodes)
        assert unmapped == ["stub"]


# =============================================================================
# Pathing Solver Tests
# =============================================================================

class TestCapacityPathingSolver:
    """Tests for best-first pathing."""

    def test_strict_detours_around_full_node(self, ladder, ladder_edges):
        """The second connection cannot reuse the full middle node."""
        terminals = [
            ConnectionTerminal("first", "n0", "n2"),
            ConnectionTerminal("second", "n0", "n2"),
        ]
        solver = CapacityPathingSolver(ladder, ladder_edges, terminals)
        solver.solve()
        assert solver.solved
        paths = solver.get_path_node_ids()
        assert paths["first"] == ["n0", "n1", "n2"]
        assert paths["second"] == ["n0", "m0", "m1", "m2", "n2"]
        assert solver.used_node_capacity_map["n1"] == 1

    def test_strict_respects_capacity_on_mesh(self, two_connection_board):
        """Strict pathing never overfills a node it passes through."""
        nodes, edges = build_mesh(two_connection_board, 3)
        terminals, _ = get_connection_terminals(two_connection_board, nodes)
        solver = CapacityPathingSolver(nodes, edges, terminals)
        solver.solve()
        assert solver.solved
        assert_paths_follow_edges(solver.paths, edges, terminals)

        assert_within_capacity(solver)

    def test_strict_routes_around_obstacle(self, centered_obstacle_board):
        """Strict pathing on the centered obstacle board stays within every node's capacity."""
        nodes, edges = build_mesh(centered_obstacle_board, 5)
        terminals, _ = get_connection_terminals(centered_obstacle_board, nodes)
        solver = CapacityPathingSolver(nodes, edges, terminals)
        solver.solve()
        assert solver.solved, solver.error
        assert set(solver.paths) == {"low", "mid", "high"}
        assert_paths_follow_edges(solver.paths, edges, terminals)
        assert_within_capacity(solver)

    def test_shared_terminal_holds_its_connections(self, ladder, ladder_edges):
        """A terminal node takes every connection ending in it, and no more."""
        terminals = [
            ConnectionTerminal("left", "n1", "n0"),
            ConnectionTerminal("right", "n1", "n2"),
            ConnectionTerminal("up", "m1", "n1"),
        ]
        solver = CapacityPathingSolver(ladder, ladder_edges, terminals)
        solver.solve()
        assert solver.solved
        node_map = {n.capacity_mesh_node_id: n for n in ladder}
        assert solver.get_effective_capacity(node_map["n1"]) == 3
        assert solver.used_node_capacity_map["n1"] == 3
        assert_within_capacity(solver)

    def test_terminal_slots_not_used_by_passing_traffic(self, ladder, ladder_edges):
        """Both middle nodes are held for "pad", so "through" has no way across."""
        terminals = [
            ConnectionTerminal("through", "n0", "n2"),
            ConnectionTerminal("pad", "n1", "m1"),
        ]
        solver = CapacityPathingSolver(ladder, ladder_edges, terminals)
        solver.solve()
        assert solver.failed
        assert solver.failed_connection_names == ["through"]
        assert solver.get_path_node_ids() == {"pad": ["n1", "m1"]}
        assert_within_capacity(solver)

    def test_greedy_routes_around_obstacle(self, centered_obstacle_board):
        """All three connections find a path around the obstacle."""
        nodes, edges = build_mesh(centered_obstacle_board, 5)
        terminals, _ = get_connection_terminals(centered_obstacle_board, nodes)
        solver = CapacityPathingGreedySolver(nodes, edges, terminals)
        solver.solve()
        assert solver.solved
        assert set(solver.paths) == {"low", "mid", "high"}
        assert_paths_follow_edges(solver.paths, edges, terminals)
        assert [p.connection_name for p in solver.get_capacity_paths()] == ["low", "mid", "high"]

    def test_enclosed_target_fails(self, enclosed_board):
        """A walled-in endpoint has no path; the solver fails instead of raising."""
        nodes, edges = build_mesh(enclosed_board, 6)
        terminals, _ = get_connection_terminals(enclosed_board, nodes)
        solver = CapacityPathingSolver(nodes, edges, terminals)
        solver.solve()
        assert solver.failed
        assert solver.failed_connection_names == ["trapped"]
        assert "trapped" in solver.error

    def test_same_start_and_end(self, ladder, ladder_edges):
        solver = CapacityPathingSolver(ladder, ladder_edges, [ConnectionTerminal("x", "n0", "n0")])
        solver.solve()
        assert solver.get_path_node_ids() == {"x": ["n0"]}

    def test_unknown_terminal_raises(self, ladder, ladder_edges):
        with pytest.raises(InvariantViolation):
            CapacityPathingSolver(ladder, ladder_edges, [ConnectionTerminal("x", "n0", "nope")])

    def test_greedy_overcommits_instead_of_failing(self, ladder, ladder_edges):
        """Negative capacity pathing routes every connection."""
        terminals = [ConnectionTerminal(f"c{i}", "m0", "m2") for i in range(4)]
        solver = CapacityPathingGreedySolver(ladder, ladder_edges, terminals)
        solver.solve()
        assert solver.solved
        assert len(solver.paths) == 4
        assert solver.used_node_capacity_map["m1"] + solver.used_node_capacity_map["n1"] >= 4


# =============================================================================
# Section Tests
# =============================================================================

class TestSections:
    """Tests for sections and their scores."""

    def test_compute_section(self, ladder, ladder_edges):
        node_map = {n.capacity_mesh_node_id: n for n in ladder}
        paths = {"a": ["n0", "n1", "n2"], "b": ["m0", "m1", "m2"]}
        section = compute_section(
            "n1", paths, node_map, get_node_edge_map(ladder_edges), ladder_edges, 1
        )
        assert section.section_node_ids == {"n1", "n0", "n2", "m1"}
        assert all(set(e.node_ids) <= section.section_node_ids for e in section.section_edges)
        terminals = {t.connection_name: t for t in section.section_connection_terminals}
        assert (terminals["a"].start_node_id, terminals["a"].end_node_id) == ("n0", "n2")
        assert (terminals["b"].start_node_id, terminals["b"].end_node_id) == ("m1", "m1")

    def test_unknown_centre_raises(self, ladder, ladder_edges):
        with pytest.raises(InvariantViolation):
            compute_section("zz", {}, {}, {}, ladder_edges, 1)

    def test_used_capacity_from_paths(self):
        used = get_used_capacity_from_paths([["a", "b"], ["b", "c"]], ["a", "b", "c", "d"])
        assert used == {"a": 1, "b": 2, "c": 1, "d": 0}

    def test_score_is_zero_within_capacity(self, ladder):
        node_map = {n.capacity_mesh_node_id: n for n in ladder}
        total = {n.capacity_mesh_node_id: n.total_capacity for n in ladder}
        used = {node_id: 1.0 for node_id in node_map}
        assert compute_section_score(total, used, node_map) == 0.0

    def test_overcommit_lowers_score(self, ladder):
        node_map = {n.capacity_mesh_node_id: n for n in ladder}
        total = {n.capacity_mesh_node_id: n.total_capacity for n in ladder}
        light = {node_id: 0.0 for node_id in node_map}
        heavy = dict(light, n1=3.0)
        heavier = dict(light, n1=5.0)
        assert compute_section_score(total, heavy, node_map) < 0
        assert compute_section_score(total, heavier, node_map) < compute_section_score(
            total, heavy, node_map
        )


# =============================================================================
# Multi-Section Tests
# =============================================================================

class TestCapacityPathingMultiSectionSolver:
    """Tests for greedy pathing followed by section re-solves."""

    def test_routes_all_connections(self, two_connection_board):
        nodes, edges = build_mesh(two_connection_board, 3)
        terminals, _ = get_connection_terminals(two_connection_board, nodes)
        solver = CapacityPathingMultiSectionSolver(nodes, edges, terminals)
        solver.solve()
        assert solver.solved
        paths = solver.get_capacity_paths()
        assert [p.connection_name for p in paths] == ["a", "b"]
        assert_paths_follow_edges(solver.connection_paths, edges, terminals)

    def test_sections_do_not_worsen_score(self, ladder, ladder_edges):
        """Accepted section results only ever raise the global score."""
        terminals = [ConnectionTerminal(f"c{i}", "m0", "n2") for i in range(3)]
        solver = CapacityPathingMultiSectionSolver(
            ladder, ladder_edges, terminals, expansion_degrees=2, max_section_optimizations=4
        )
        solver.solve()
        assert solver.solved
        node_map = {n.capacity_mesh_node_id: n for n in ladder}
        initial_used = get_used_capacity_from_paths(
            solver.initial_solver.get_path_node_ids().values(), node_map
        )
        initial_score = compute_section_score(solver.total_node_capacity_map, initial_used, node_map)
        final_score = compute_section_score(
            solver.total_node_capacity_map, solver.used_node_capacity_map, node_map
        )
        assert final_score >= initial_score
        assert_paths_follow_edges(solver.connection_paths, ladder_edges, terminals)

    def test_failed_connection_fails_solver(self, enclosed_board):
        nodes, edges = build_mesh(enclosed_board, 6)
        terminals, _ = get_connection_terminals(enclosed_board, nodes)
        solver = CapacityPathingMultiSectionSolver(nodes, edges, terminals)
        solver.solve()
        assert solver.failed
        assert solver.failed_connection_names == ["trapped"]
