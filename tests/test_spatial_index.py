"""
Tests for spatial indexes, collision indexes and the priority queue.

Tests cover:
- Identical query results across grid, rtree and bulk strategies
- Touching boxes and degenerate (point) boxes
- Obstacle queries with layer and net filtering
- Route conflict queries for segments and vias
- Priority queue ordering and bounding
- Cell size calibration from item sizes
"""

import random

import pytest

from meshroute.data_structures import (
    GridHashIndex,
    ObstacleIndex,
    PriorityQueue,
    RouteIndex,
    auto_calibrate_cell_size,
    create_spatial_index,
)
from meshroute.types import Bounds, HighDensityRoute, Obstacle, Point, RoutePoint

STRATEGIES = ["grid", "rtree", "bulk"]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def random_boxes():
    """Two hundred reproducible boxes, some of them degenerate."""
    rng = random.Random(42)
    boxes = []
    for i in range(200):
        x, y = rng.uniform(0, 50), rng.uniform(0, 50)
        w = 0.0 if i % 10 == 0 else rng.uniform(0.1, 5)
        h = 0.0 if i % 10 == 0 else rng.uniform(0.1, 5)
        boxes.append((x, y, x + w, y + h))
    return boxes


@pytest.fixture
def obstacles():
    """A top-layer pad on net VCC and a bottom-layer keepout."""
    return [
        Obstacle(center=Point(5, 5), width=2, height=2, layers=["top"],
                 connected_to=["VCC"], z_layers=[0]),
        Obstacle(center=Point(15, 5), width=2, height=2, layers=["bottom"], z_layers=[1]),
    ]


# =============================================================================
# Spatial Index Tests
# =============================================================================

class TestSpatialIndexStrategies:
    """All strategies must answer queries identically."""

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_matches_brute_force(self, strategy, random_boxes):
        """Query results equal a brute-force intersection scan."""
        idx = create_spatial_index(strategy, cell_size=2.0)
        for i, bbox in enumerate(random_boxes):
            idx.insert(i, bbox)
        assert len(idx) == len(random_boxes)

        rng = random.Random(7)
        for _ in range(50):
            x, y = rng.uniform(0, 50), rng.uniform(0, 50)
            query = (x, y, x + rng.uniform(0, 10), y + rng.uniform(0, 10))
            expected = [
                i for i, b in enumerate(random_boxes)
                if not (b[2] < query[0] or query[2] < b[0] or b[3] < query[1] or query[3] < b[1])
            ]
            assert idx.search(query) == expected

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_touching_boxes_intersect(self, strategy):
        """A box sharing only an edge with the query is returned."""
        idx = create_spatial_index(strategy)
        idx.insert("a", (0, 0, 1, 1))
        assert idx.search((1, 0, 2, 1)) == ["a"]
        assert idx.search((1.01, 0, 2, 1)) == []

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_point_items(self, strategy):
        """Zero-area items are found by queries covering them."""
        idx = create_spatial_index(strategy)
        idx.insert("via", (3, 3, 3, 3))
        assert idx.search((2, 2, 4, 4)) == ["via"]
        assert idx.search((3, 3, 3, 3)) == ["via"]

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_clear(self, strategy):
        idx = create_spatial_index(strategy)
        idx.insert("a", (0, 0, 1, 1))
        idx.clear()
        assert len(idx) == 0
        assert idx.search((0, 0, 1, 1)) == []

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_inverted_bbox_raises(self, strategy):
        idx = create_spatial_index(strategy)
        with pytest.raises(ValueError):
            idx.insert("bad", (1, 0, 0, 1))

    def test_unknown_strategy_raises(self):
        with pytest.raises(ValueError, match="Available"):
            create_spatial_index("quadtree")

    def test_grid_stats(self):
        """Grid stats report occupied cells."""
        idx = GridHashIndex(cell_size=1.0)
        idx.insert("a", (0.1, 0.1, 1.5, 0.5))
        stats = idx.get_stats()
        assert stats["items"] == 1
        assert stats["cells_used"] == 2

    def test_grid_rejects_bad_cell_size(self):
        with pytest.raises(ValueError):
            GridHashIndex(cell_size=0)


# =============================================================================
# Collision Index Tests
# =============================================================================

class TestObstacleIndex:
    """Tests for layer-aware obstacle queries."""

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_area_query(self, strategy, obstacles):
        index = ObstacleIndex(obstacles, strategy=strategy)
        found = index.get_obstacles_in_area(Bounds(0, 10, 0, 10))
        assert found == [obstacles[0]]

    def test_segment_query_respects_layer(self, obstacles):
        """Obstacles on other layers never block."""
        index = ObstacleIndex(obstacles)
        assert index.get_obstacles_near_segment(Point(0, 5), Point(20, 5), 0, 0.1) == [obstacles[0]]
        assert index.get_obstacles_near_segment(Point(0, 5), Point(20, 5), 1, 0.1) == [obstacles[1]]

    def test_segment_query_ignores_own_net(self, obstacles):
        """Pads of the routed net do not block it."""
        index = ObstacleIndex(obstacles)
        found = index.get_obstacles_near_segment(
            Point(0, 5), Point(20, 5), 0, 0.1, ignore_nets=["VCC"]
        )
        assert found == []

    def test_segment_query_margin(self, obstacles):
        """A segment just outside the margin is clear."""
        index = ObstacleIndex(obstacles)
        assert index.get_obstacles_near_segment(Point(0, 6.2), Point(10, 6.2), 0, 0.1) == []
        assert index.get_obstacles_near_segment(Point(0, 6.05), Point(10, 6.05), 0, 0.1) != []


class TestRouteIndex:
    """Tests for conflicts against placed routes."""

    @pytest.fixture
    def route_index(self):
        route = HighDensityRoute(
            connection_name="a",
            route=[RoutePoint(0, 0, 0), RoutePoint(5, 0, 0), RoutePoint(5, 0, 1), RoutePoint(5, 5, 1)],
            vias=[Point(5, 0)],
            trace_thickness=0.2,
            via_diameter=0.6,
        )
        return RouteIndex([route])

    def test_same_layer_conflict(self, route_index):
        conflicts = route_index.get_conflicting_routes_for_segment(
            Point(2, -1), Point(2, 1), 0, 0.1
        )
        assert [name for name, _ in conflicts] == ["a"]
        assert conflicts[0][1] == pytest.approx(0.0)

    def test_other_layer_segment_is_clear(self, route_index):
        """Only the via conflicts across layers."""
        conflicts = route_index.get_conflicting_routes_for_segment(
            Point(2, -1), Point(2, 1), 1, 0.1
        )
        assert conflicts == []

    def test_via_blocks_all_layers(self, route_index):
        conflicts = route_index.get_conflicting_routes_near_point(Point(5.3, 0), 0.1)
        assert [name for name, _ in conflicts] == ["a"]

    def test_ignored_connection(self, route_index):
        conflicts = route_index.get_conflicting_routes_for_segment(
            Point(2, -1), Point(2, 1), 0, 0.1, ignore_connections=["a"]
        )
        assert conflicts == []


# =============================================================================
# Priority Queue Tests
# =============================================================================

class TestPriorityQueue:
    """Tests for the bounded min-heap."""

    def test_orders_by_key(self):
        queue = PriorityQueue([5, 1, 3], key=lambda v: v)
        assert queue.peek() == 1
        assert [queue.dequeue() for _ in range(3)] == [1, 3, 5]
        assert queue.dequeue() is None
        assert queue.is_empty()

    def test_ties_are_fifo(self):
        """Items with equal priority come out in insertion order."""
        queue = PriorityQueue(key=lambda item: item[0])
        for item in [(1, "a"), (0, "b"), (1, "c"), (0, "d")]:
            queue.enqueue(item)
        assert [queue.dequeue()[1] for _ in range(4)] == ["b", "d", "a", "c"]

    def test_max_size_keeps_best(self):
        """Overflow drops the worst half."""
        queue = PriorityQueue(key=lambda v: v, max_size=4)
        for value in [9, 8, 7, 6, 1]:
            queue.enqueue(value)
        assert len(queue) == 2
        assert queue.peek_many(2) == [1, 6]


# =============================================================================
# Cell Size Tests
# =============================================================================

class TestAutoCalibrateCellSize:
    """Tests for deriving a grid cell size from item sizes."""

    def test_median_times_two_and_a_half(self):
        sizes = [(0.6, 0.6), (1.0, 0.4), (2.0, 1.0)]
        assert auto_calibrate_cell_size(sizes) == pytest.approx(2.5)

    @pytest.mark.parametrize("size,expected", [(0.05, 0.5), (20.0, 5.0)])
    def test_clamped(self, size, expected):
        assert auto_calibrate_cell_size([(size, size)]) == expected

    def test_default_without_items(self):
        assert auto_calibrate_cell_size([]) == 1.0
        assert auto_calibrate_cell_size([], default=2.0) == 2.0
