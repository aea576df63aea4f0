"""Capacity mesh node builder.

The board is covered by one square root node which is recursively split
into quadrants. A node keeps subdividing while it holds a connection
target, or while it partially overlaps an obstacle, until the maximum
depth. Leaves that are free of obstacles (or hold a target) become mesh
nodes; leaves buried in obstacles or outside the board are discarded.

Nodes live in a flat arena keyed by id. ``parent_id`` is a lookup into
that arena.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..data_structures.spatial_index import SpatialIndex, create_spatial_index
from ..solvers.base import BaseSolver, GraphicsObject, empty_graphics
from ..types import Bounds, CapacityMeshNode, CapacityMeshNodeId, Obstacle, Point, SimpleRouteJson
from ..utils import calculate_optimal_capacity_depth, get_tuned_total_capacity

logger = logging.getLogger(__name__)


@dataclass
class Target:
    """A connection endpoint the mesh must isolate."""
    x: float
    y: float
    z: int
    connection_name: str


def _rects_overlap(a: Bounds, b: Bounds) -> bool:
    return a.max_x >= b.min_x and a.min_x <= b.max_x and a.max_y >= b.min_y and a.min_y <= b.max_y


def _rect_inside(inner: Bounds, outer: Bounds) -> bool:
    return (
        inner.min_x >= outer.min_x and inner.max_x <= outer.max_x
        and inner.min_y >= outer.min_y and inner.max_y <= outer.max_y
    )


def _overlap_area(a: Bounds, b: Bounds) -> float:
    w = min(a.max_x, b.max_x) - max(a.min_x, b.min_x)
    h = min(a.max_y, b.max_y) - max(a.min_y, b.min_y)
    return max(0.0, w) * max(0.0, h)


class CapacityMeshNodeSolver(BaseSolver):
    """Subdivide the board into capacity mesh nodes, one parent per step."""

    MAX_ITERATIONS = 100_000

    # Capacity left on a node whose layers are fully covered by obstacles
    MIN_OBSTACLE_CAPACITY_FRACTION = 0.5

    def __init__(
        self,
        srj: SimpleRouteJson,
        capacity_depth: Optional[int] = None,
        target_min_capacity: float = 0.5,
        max_capacity_factor: float = 1.0,
        spatial_index_strategy: str = "grid",
    ):
        super().__init__()
        self.srj = srj
        self.bounds = srj.bounds
        self.max_capacity_factor = max_capacity_factor

        root_size = max(self.bounds.width, self.bounds.height)
        if capacity_depth is None:
            capacity_depth = calculate_optimal_capacity_depth(root_size, target_min_capacity)
        self.max_depth = max(1, capacity_depth)

        self._next_node_counter = 0
        self.node_map: Dict[CapacityMeshNodeId, CapacityMeshNode] = {}
        self.node_to_overlapping_obstacles: Dict[CapacityMeshNodeId, List[Obstacle]] = {}

        self.obstacle_index: SpatialIndex[Obstacle] = create_spatial_index(
            spatial_index_strategy, cell_size=max(root_size / 16, 1e-3)
        )
        for obstacle in srj.obstacles:
            self.obstacle_index.insert(obstacle, obstacle.bounds.as_tuple())

        self.targets: List[Target] = [
            Target(p.x, p.y, p.z, connection.name)
            for connection in srj.connections
            for p in connection.points_to_connect
        ]

        root = CapacityMeshNode(
            capacity_mesh_node_id=self.get_next_node_id(),
            center=self.bounds.center,
            width=root_size,
            height=root_size,
            available_z=list(range(srj.layer_count)),
            contains_obstacle=True,
            contains_target=True,
            depth=0,
        )
        self.node_map[root.capacity_mesh_node_id] = root
        self.unfinished_nodes: List[CapacityMeshNode] = [root]
        self.finished_nodes: List[CapacityMeshNode] = []
        self.discarded_nodes: List[CapacityMeshNode] = []

    def get_next_node_id(self) -> CapacityMeshNodeId:
        node_id = f"cn{self._next_node_counter}"
        self._next_node_counter += 1
        return node_id

    def get_overlapping_obstacles(self, node: CapacityMeshNode) -> List[Obstacle]:
        """Obstacles touching the node's XY rectangle on any layer.

        Children only test the obstacles of their parent.
        """
        cached = self.node_to_overlapping_obstacles.get(node.capacity_mesh_node_id)
        if cached is not None:
            return cached

        node_bounds = node.bounds
        if node.parent_id is not None:
            candidates = self.get_overlapping_obstacles(self.node_map[node.parent_id])
        else:
            candidates = self.obstacle_index.search(node_bounds.as_tuple())

        overlapping = [o for o in candidates if _rects_overlap(node_bounds, o.bounds)]
        self.node_to_overlapping_obstacles[node.capacity_mesh_node_id] = overlapping
        return overlapping

    def is_outside_bounds(self, node: CapacityMeshNode) -> bool:
        b = node.bounds
        return (
            b.max_x <= self.bounds.min_x or b.min_x >= self.bounds.max_x
            or b.max_y <= self.bounds.min_y or b.min_y >= self.bounds.max_y
        )

    def is_partially_outside_bounds(self, node: CapacityMeshNode) -> bool:
        b = node.bounds
        return (
            b.min_x < self.bounds.min_x or b.max_x > self.bounds.max_x
            or b.min_y < self.bounds.min_y or b.max_y > self.bounds.max_y
        )

    def get_blocked_z(self, node: CapacityMeshNode, z_candidates: Sequence[int]) -> List[int]:
        """Layers on which some obstacle fully covers the node."""
        node_bounds = node.bounds
        blocked = set()
        for obstacle in self.get_overlapping_obstacles(node):
            if _rect_inside(node_bounds, obstacle.bounds):
                blocked.update(z for z in obstacle.z_layers if z in z_candidates)
        return sorted(blocked)

    def get_obstructed_z(self, node: CapacityMeshNode) -> List[int]:
        """Layers of ``node.available_z`` touched by any obstacle."""
        obstructed = set()
        for obstacle in self.get_overlapping_obstacles(node):
            obstructed.update(z for z in obstacle.z_layers if z in node.available_z)
        return sorted(obstructed)

    def get_target_if_node_contains_target(self, node: CapacityMeshNode) -> Optional[Target]:
        node_bounds = node.bounds
        overlapping = self.get_overlapping_obstacles(node)
        for target in self.targets:
            if node_bounds.contains(target.x, target.y):
                return target
            # A target on a pad claims every node touching that pad
            for obstacle in overlapping:
                if obstacle.bounds.contains(target.x, target.y):
                    return target
        return None

    def create_child_node(self, parent: CapacityMeshNode, center: Point) -> CapacityMeshNode:
        child = CapacityMeshNode(
            capacity_mesh_node_id=self.get_next_node_id(),
            center=center,
            width=parent.width / 2,
            height=parent.height / 2,
            layer=parent.layer,
            available_z=list(parent.available_z),
            parent_id=parent.capacity_mesh_node_id,
            depth=parent.depth + 1,
        )
        self.node_map[child.capacity_mesh_node_id] = child

        blocked_z = self.get_blocked_z(child, child.available_z)
        free_z = [z for z in child.available_z if z not in blocked_z]

        target = self.get_target_if_node_contains_target(child)
        if target is not None:
            child.contains_target = True
            child.target_connection_name = target.connection_name
            if target.z not in free_z:
                free_z = sorted(set(free_z) | {target.z})

        child.available_z = free_z
        child.completely_inside_obstacle = not free_z
        child.contains_obstacle = (
            child.completely_inside_obstacle
            or bool(self.get_obstructed_z(child))
            or self.is_partially_outside_bounds(child)
        )
        return child

    def get_child_nodes(self, parent: CapacityMeshNode) -> List[CapacityMeshNode]:
        if parent.depth >= self.max_depth:
            return []

        half_w = parent.width / 4
        half_h = parent.height / 4
        positions = [
            Point(parent.center.x - half_w, parent.center.y - half_h),
            Point(parent.center.x + half_w, parent.center.y - half_h),
            Point(parent.center.x - half_w, parent.center.y + half_h),
            Point(parent.center.x + half_w, parent.center.y + half_h),
        ]

        children = []
        for position in positions:
            child = self.create_child_node(parent, position)
            if self.is_outside_bounds(child) or (
                child.completely_inside_obstacle and not child.contains_target
            ):
                self.discarded_nodes.append(child)
                continue
            children.append(child)
        return children

    def should_node_be_subdivided(self, node: CapacityMeshNode) -> bool:
        if node.depth >= self.max_depth:
            return False
        if node.contains_target:
            return True
        return node.contains_obstacle and not node.completely_inside_obstacle

    def finish_node(self, node: CapacityMeshNode) -> bool:
        """Try to turn a leaf into a mesh node. Returns False if discarded."""
        if not node.contains_target and node.contains_obstacle:
            if self.is_partially_outside_bounds(node):
                return False
            # Keep the layers no obstacle touches
            free_z = [z for z in node.available_z if z not in self.get_obstructed_z(node)]
            if not free_z:
                return False
            node.available_z = free_z
            node.contains_obstacle = False

        node.total_capacity = self.get_node_capacity(node)
        self.finished_nodes.append(node)
        return True

    def get_node_capacity(self, node: CapacityMeshNode) -> float:
        capacity = get_tuned_total_capacity(
            node.width, len(node.available_z), self.max_capacity_factor
        )
        if node.contains_obstacle:
            area = node.width * node.height
            covered = sum(
                _overlap_area(node.bounds, o.bounds)
                for o in self.get_overlapping_obstacles(node)
                if any(z in node.available_z for z in o.z_layers)
            )
            free_fraction = max(0.0, 1 - covered / area) if area > 0 else 0.0
            capacity *= max(self.MIN_OBSTACLE_CAPACITY_FRACTION, free_fraction)
        return capacity

    def _step(self):
        if not self.unfinished_nodes:
            self.solved = True
            self.progress = 1.0
            logger.debug(
                f"Mesh built: {len(self.finished_nodes)} nodes, "
                f"{len(self.discarded_nodes)} discarded, depth {self.max_depth}"
            )
            return

        next_node = self.unfinished_nodes.pop()
        for child in self.get_child_nodes(next_node):
            if self.should_node_be_subdivided(child):
                self.unfinished_nodes.append(child)
            elif not self.finish_node(child):
                self.discarded_nodes.append(child)

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics("Capacity Mesh Nodes")
        for obstacle in self.srj.obstacles:
            graphics["rects"].append({
                "center": {"x": obstacle.center.x, "y": obstacle.center.y},
                "width": obstacle.width,
                "height": obstacle.height,
                "fill": "rgba(255,0,0,0.3)",
                "stroke": "red",
                "label": "obstacle",
            })
        for node in self.finished_nodes + self.unfinished_nodes:
            graphics["rects"].append({
                "center": {"x": node.center.x, "y": node.center.y},
                "width": max(node.width - 2, node.width * 0.8),
                "height": max(node.height - 2, node.height * 0.8),
                "fill": "rgba(255,0,0,0.1)" if node.contains_obstacle else "rgba(0,0,0,0.1)",
                "label": f"{node.capacity_mesh_node_id}\navailable_z: "
                         f"{','.join(str(z) for z in node.available_z)}",
            })
        for index, connection in enumerate(self.srj.connections):
            for point in connection.points_to_connect:
                graphics["points"].append({
                    "x": point.x,
                    "y": point.y,
                    "label": f"{connection.name} (z{point.z})",
                    "color_index": index,
                })
        return graphics
