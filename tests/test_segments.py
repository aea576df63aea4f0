"""
Tests for port segments, port point assignment and the point optimizer.

Tests cover:
- Port segments from capacity paths
- Segment deduplication and shared port points
- Even point distribution
- Intra-node crossing counts and failure probability
- Simulated annealing over port points
"""

from typing import List

import pytest

from meshroute.mesh import CapacityMeshEdgeSolver
from meshroute.segments import (
    CapacityEdgeToPortSegmentSolver,
    CapacitySegmentPointOptimizer,
    CapacitySegmentToPointSolver,
    distribute_points,
    estimate_probability_of_failure,
    find_overlapping_segment,
    get_intra_node_crossings,
    get_log_probability_cost,
    get_nodes_with_port_points,
    get_shared_z,
)
from meshroute.segments.crossings import calculate_crossing_probability_of_failure
from meshroute.types import (
    CapacityMeshNode,
    CapacityPath,
    NodePortSegment,
    Point,
    PortPoint,
    SegmentWithAssignedPoints,
)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def row() -> List[CapacityMeshNode]:
    """Three unit nodes side by side."""
    return [
        CapacityMeshNode(
            capacity_mesh_node_id=f"n{i}",
            center=Point(i + 0.5, 1.5),
            width=1.0,
            height=1.0,
            available_z=[0, 1],
            total_capacity=2.0,
        )
        for i in range(3)
    ]


@pytest.fixture
def row_segments(row):
    """Port segments of two connections running along the row."""
    edge_solver = CapacityMeshEdgeSolver(row)
    edge_solver.solve()
    paths = [
        CapacityPath("a", "a", ["n0", "n1", "n2"]),
        CapacityPath("b", "b", ["n0", "n1"]),
    ]
    solver = CapacityEdgeToPortSegmentSolver(row, edge_solver.edges, paths)
    solver.solve()
    return solver


@pytest.fixture
def crossed_node():
    """One node whose two connections enter and leave in swapped order."""
    node = CapacityMeshNode(
        capacity_mesh_node_id="N",
        center=Point(1, 1),
        width=2.0,
        height=2.0,
        available_z=[0, 1],
    )
    left = SegmentWithAssignedPoints(
        capacity_mesh_node_id="N",
        start=Point(0, 0),
        end=Point(0, 2),
        connection_names=["a", "b"],
        available_z=[0, 1],
        node_port_segment_id="SEG0",
        assigned_points=[PortPoint(0, 0.5, 0, "a"), PortPoint(0, 1.5, 0, "b")],
    )
    right = SegmentWithAssignedPoints(
        capacity_mesh_node_id="N",
        start=Point(2, 0),
        end=Point(2, 2),
        connection_names=["a", "b"],
        available_z=[0, 1],
        node_port_segment_id="SEG1",
        assigned_points=[PortPoint(2, 0.5, 0, "b"), PortPoint(2, 1.5, 0, "a")],
    )
    return node, [left, right]


# =============================================================================
# Port Segment Tests
# =============================================================================

class TestPortSegments:
    """Tests for turning capacity paths into port segments."""

    def test_segments_per_node(self, row_segments):
        segments = row_segments.node_port_segments
        assert row_segments.solved
        assert len(segments["n0"]) == 1
        assert len(segments["n1"]) == 2
        assert len(segments["n2"]) == 1
        assert len(row_segments.get_all_segments()) == 4

    def test_shared_border_geometry(self, row_segments):
        (segment,) = row_segments.node_port_segments["n0"]
        assert (segment.start, segment.end) == (Point(1, 1), Point(1, 2))
        assert sorted(segment.connection_names) == ["a", "b"]
        assert segment.available_z == [0, 1]

    def test_connections_only_on_their_borders(self, row_segments):
        """b stops in n1, so it never crosses the n1|n2 border."""
        (segment,) = row_segments.node_port_segments["n2"]
        assert segment.connection_names == ["a"]

    def test_overlapping_segment_without_border(self, row):
        """Nodes linked without a shared border get a point on the facing side."""
        far = CapacityMeshNode("far", Point(5.5, 1.2), 1.0, 1.0)
        start, end = find_overlapping_segment(row[0], far)
        assert start == end == Point(1.0, 1.2)

    def test_shared_z_falls_back_to_own_layers(self, row):
        top_only = CapacityMeshNode("t", Point(0, 0), 1, 1, available_z=[0])
        bottom_only = CapacityMeshNode("b", Point(1, 0), 1, 1, available_z=[1])
        assert get_shared_z(row[0], top_only) == [0]
        assert get_shared_z(top_only, bottom_only) == [0]


# =============================================================================
# Point Assignment Tests
# =============================================================================

class TestSegmentToPoint:
    """Tests for deduplication and point spacing."""

    def test_distribute_points(self):
        segment = NodePortSegment("n", Point(0, 0), Point(4, 0), ["c", "a", "b"])
        points = distribute_points(segment, 1)
        assert [p.connection_name for p in points] == ["a", "b", "c"]
        assert [p.x for p in points] == [1, 2, 3]
        assert all(p.z == 1 for p in points)

    def test_single_point_at_centre(self):
        segment = NodePortSegment("n", Point(1, 1), Point(1, 2), ["a"])
        (point,) = distribute_points(segment, 0)
        assert (point.x, point.y) == (1, 1.5)

    def test_both_sides_share_one_segment(self, row_segments):
        solver = CapacitySegmentToPointSolver(row_segments.get_all_segments())
        solver.solve()
        assert solver.solved
        assert [s.node_port_segment_id for s in solver.deduped_segments] == ["SEG0", "SEG1"]
        assert solver.segment_id_to_node_ids == {"SEG0": ["n0", "n1"], "SEG1": ["n1", "n2"]}

    def test_assigned_points_are_shared_objects(self, row_segments):
        """Moving a point on one side moves it for the other node too."""
        solver = CapacitySegmentToPointSolver(row_segments.get_all_segments())
        solver.solve()
        sides = [s for s in solver.assigned_segments if s.node_port_segment_id == "SEG0"]
        assert len(sides) == 2
        assert sides[0].assigned_points is sides[1].assigned_points

    def test_cramped_segments_reported(self, row_segments):
        solver = CapacitySegmentToPointSolver(row_segments.get_all_segments(), min_port_spacing=0.4)
        solver.solve()
        # SEG0 carries two connections on a 1mm border: spacing 1/3
        assert solver.cramped_segment_ids == ["SEG0"]

    def test_nodes_with_port_points(self, row, row_segments):
        solver = CapacitySegmentToPointSolver(row_segments.get_all_segments())
        solver.solve()
        endpoints = {"n0": [PortPoint(0.2, 1.5, 0, "a"), PortPoint(0.2, 1.2, 0, "b")]}
        nodes = get_nodes_with_port_points(
            row, solver.deduped_segments, solver.segment_id_to_node_ids, endpoints
        )
        counts = {n.capacity_mesh_node_id: len(n.port_points) for n in nodes}
        assert counts == {"n0": 4, "n1": 3, "n2": 1}


# =============================================================================
# Crossing Tests
# =============================================================================

class TestCrossings:
    """Tests for crossing counts and failure probability."""

    def test_same_layer_crossing(self):
        points = [
            PortPoint(0, 0, 0, "a"), PortPoint(1, 1, 0, "a"),
            PortPoint(0, 1, 0, "b"), PortPoint(1, 0, 0, "b"),
        ]
        crossings = get_intra_node_crossings(points)
        assert crossings.num_same_layer_crossings == 1
        assert crossings.num_entry_exit_layer_changes == 0

    def test_different_layers_do_not_cross(self):
        points = [
            PortPoint(0, 0, 0, "a"), PortPoint(1, 1, 0, "a"),
            PortPoint(0, 1, 1, "b"), PortPoint(1, 0, 1, "b"),
        ]
        assert get_intra_node_crossings(points).num_same_layer_crossings == 0

    def test_transition_crossing(self):
        points = [
            PortPoint(0, 0, 0, "a"), PortPoint(1, 1, 1, "a"),
            PortPoint(0, 1, 0, "b"), PortPoint(1, 0, 0, "b"),
        ]
        crossings = get_intra_node_crossings(points)
        assert crossings.num_entry_exit_layer_changes == 1
        assert crossings.num_transition_crossings == 1

    def test_unpaired_points_ignored(self):
        crossings = get_intra_node_crossings([PortPoint(0, 0, 0, "a")])
        assert crossings.num_same_layer_crossings == 0

    def test_probability_grows_with_crossings(self):
        assert estimate_probability_of_failure(2.0, 0, 0, 0) == 0
        one = estimate_probability_of_failure(2.0, 1, 0, 0)
        two = estimate_probability_of_failure(2.0, 2, 0, 0)
        assert 0 < one < two

    def test_target_nodes_never_fail(self, crossed_node):
        node, segments = crossed_node
        node.contains_target = True
        points = [p for s in segments for p in s.assigned_points]
        crossings = get_intra_node_crossings(points)
        assert crossings.num_same_layer_crossings == 1
        assert calculate_crossing_probability_of_failure(node, crossings) == 0.0

    def test_log_probability_cost(self):
        assert get_log_probability_cost(0) == 0.0
        assert get_log_probability_cost(0.5) == pytest.approx(0.6931, rel=1e-3)
        assert get_log_probability_cost(1.5) > 10


# =============================================================================
# Optimizer Tests
# =============================================================================

class TestCapacitySegmentPointOptimizer:
    """Tests for annealing over port points."""

    def test_uncrosses_ports(self, crossed_node):
        node, segments = crossed_node
        optimizer = CapacitySegmentPointOptimizer(
            segments, {"SEG0": ["N"], "SEG1": ["N"]}, [node], seed=1
        )
        assert optimizer.initial_cost > 0
        optimizer.solve()
        assert optimizer.solved
        assert optimizer.best_cost < optimizer.initial_cost
        assert optimizer.current_cost == pytest.approx(optimizer.best_cost)
        assert 0 <= optimizer.probability_of_failure < 1

    def test_points_stay_on_their_segments(self, crossed_node):
        node, segments = crossed_node
        optimizer = CapacitySegmentPointOptimizer(
            segments, {"SEG0": ["N"], "SEG1": ["N"]}, [node], seed=3
        )
        optimizer.solve()
        assert sorted(p.connection_name for p in segments[0].assigned_points) == ["a", "b"]
        assert all(p.x == 0 for p in segments[0].assigned_points)
        assert all(p.x == 2 for p in segments[1].assigned_points)
        assert sorted(p.y for p in segments[1].assigned_points) == [0.5, 1.5]

    def test_nothing_to_do(self, row, row_segments):
        solver = CapacitySegmentToPointSolver(row_segments.get_all_segments())
        solver.solve()
        optimizer = CapacitySegmentPointOptimizer(
            solver.deduped_segments, solver.segment_id_to_node_ids, row
        )
        optimizer.solve()
        assert optimizer.initial_cost == 0
        assert optimizer.steps_taken == 0

    def test_deterministic_for_seed(self, crossed_node):
        def run():
            node, segments = crossed_node
            fresh = [
                SegmentWithAssignedPoints(
                    capacity_mesh_node_id=s.capacity_mesh_node_id,
                    start=s.start,
                    end=s.end,
                    connection_names=list(s.connection_names),
                    available_z=list(s.available_z),
                    node_port_segment_id=s.node_port_segment_id,
                    assigned_points=[PortPoint(p.x, p.y, p.z, p.connection_name)
                                     for p in s.assigned_points],
                )
                for s in segments
            ]
            optimizer = CapacitySegmentPointOptimizer(
                fresh, {"SEG0": ["N"], "SEG1": ["N"]}, [node], seed=7
            )
            optimizer.solve()
            return optimizer.take_snapshot(), optimizer.steps_taken

        assert run() == run()

    def test_nodes_with_port_points(self, crossed_node):
        node, segments = crossed_node
        optimizer = CapacitySegmentPointOptimizer(segments, {"SEG0": ["N"], "SEG1": ["N"]}, [node])
        (result,) = optimizer.get_nodes_with_port_points()
        assert result.capacity_mesh_node_id == "N"
        assert len(result.port_points) == 4

    def test_no_layer_change_in_node_too_small_for_via(self, crossed_node):
        node, segments = crossed_node
        node.width = node.height = 0.5
        optimizer = CapacitySegmentPointOptimizer(
            segments, {"SEG0": ["N"], "SEG1": ["N"]}, [node], seed=1, via_diameter=0.6
        )
        assert not optimizer.can_host_via("N")
        optimizer.solve()
        assert {p.z for s in segments for p in s.assigned_points} == {0}

    def test_no_layer_change_next_to_target_node(self, crossed_node):
        node, segments = crossed_node
        target = CapacityMeshNode(
            capacity_mesh_node_id="T",
            center=Point(3, 1),
            width=2.0,
            height=2.0,
            available_z=[0, 1],
            contains_target=True,
        )
        optimizer = CapacitySegmentPointOptimizer(
            segments, {"SEG0": ["N"], "SEG1": ["N", "T"]}, [node, target], seed=1
        )
        assert optimizer.can_host_via("N")
        assert not optimizer.can_host_via("T")
        optimizer.solve()
        assert {p.z for p in segments[1].assigned_points} == {0}
