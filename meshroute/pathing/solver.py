"""
Capacity Pathing Solver

Best-first search over the capacity mesh, one connection at a time. A move
into a node costs the size-normalised distance between node centres plus a
penalty that grows as the node's used capacity approaches its total.

Two modes:
- strict: a node is only entered when it still has room for one more trace
- negative capacity: nodes may be overcommitted, overcommitment is penalised
  and resolved later by the section optimizer

Every connection has to enter its own start and end nodes, so a terminal
node holds at least as many traces as there are connections ending in it:
its effective capacity is ``max(total, terminal count)``. In strict mode
those terminal slots are reserved; traffic passing through a terminal node
only uses what is left beyond them, and ``used <= effective capacity``
holds for every node.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..config import PathingHyperParameters
from ..data_structures.priority_queue import PriorityQueue
from ..errors import InvariantViolation
from ..solvers.base import BaseSolver, GraphicsObject, empty_graphics
from ..types import (
    CapacityMeshEdge,
    CapacityMeshNode,
    CapacityMeshNodeId,
    CapacityPath,
    ConnectionTerminal,
    SimpleRouteJson,
)
from ..utils import clone_and_shuffle, get_node_capacity, get_node_edge_map

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """A search frontier entry; ``prev`` links back to the start."""
    prev: Optional["Candidate"]
    node: CapacityMeshNode
    f: float
    g: float
    h: float


def get_pathing_total_capacity(node: CapacityMeshNode, max_capacity_factor: float = 1.0) -> float:
    """Node capacity as set by the mesh builder, scaled by the pathing factor."""
    base = node.total_capacity if node.total_capacity > 0 else get_node_capacity(node)
    return base * max_capacity_factor


def find_goal_node(point, nodes: Sequence[CapacityMeshNode]) -> Optional[CapacityMeshNode]:
    """Mesh node holding ``point``.

    Target nodes containing the point win; otherwise the target node with
    the nearest centre; otherwise the nearest node overall.
    """
    target_nodes = [n for n in nodes if n.contains_target]
    for node in target_nodes:
        if node.bounds.contains(point.x, point.y):
            return node

    pool = target_nodes or list(nodes)
    best: Optional[CapacityMeshNode] = None
    best_distance = math.inf
    for node in pool:
        d = math.hypot(node.center.x - point.x, node.center.y - point.y)
        if d < best_distance:
            best_distance = d
            best = node
    return best


def get_connection_terminals(
    srj: SimpleRouteJson, nodes: Sequence[CapacityMeshNode]
) -> Tuple[List[ConnectionTerminal], List[str]]:
    """Map each two-point connection onto its start and end mesh nodes.

    Returns the terminals and the names of connections that could not be
    mapped (fewer than two points, or an empty mesh).
    """
    terminals: List[ConnectionTerminal] = []
    unmapped: List[str] = []
    for connection in srj.connections:
        points = connection.points_to_connect
        if len(points) < 2:
            unmapped.append(connection.name)
            continue
        start = find_goal_node(points[0], nodes)
        end = find_goal_node(points[-1], nodes)
        if start is None or end is None:
            unmapped.append(connection.name)
            continue
        terminals.append(ConnectionTerminal(
            connection_name=connection.name,
            start_node_id=start.capacity_mesh_node_id,
            end_node_id=end.capacity_mesh_node_id,
        ))
    return terminals, unmapped


class CapacityPathingSolver(BaseSolver):
    """Route every terminal pair through the mesh, in (shuffled) order."""

    MAX_ITERATIONS = 1_000_000

    def __init__(
        self,
        nodes: List[CapacityMeshNode],
        edges: List[CapacityMeshEdge],
        terminals: List[ConnectionTerminal],
        hyper_parameters: Optional[PathingHyperParameters] = None,
        allow_negative_capacity: bool = False,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(max_iterations)
        self.nodes = nodes
        self.edges = edges
        self.hyper_parameters = hyper_parameters or PathingHyperParameters()
        self.allow_negative_capacity = allow_negative_capacity
        self.greedy_multiplier = self.hyper_parameters.greedy_multiplier

        self.node_map: Dict[CapacityMeshNodeId, CapacityMeshNode] = {
            n.capacity_mesh_node_id: n for n in nodes
        }
        self.node_edge_map = get_node_edge_map(edges)
        for terminal in terminals:
            for node_id in (terminal.start_node_id, terminal.end_node_id):
                if node_id not in self.node_map:
                    raise InvariantViolation(
                        f"Terminal of {terminal.connection_name} references unknown node {node_id}"
                    )

        self.terminals = clone_and_shuffle(terminals, self.hyper_parameters.shuffle_seed)
        self.terminal_counts: Dict[CapacityMeshNodeId, int] = {}
        for terminal in terminals:
            for node_id in {terminal.start_node_id, terminal.end_node_id}:
                self.terminal_counts[node_id] = self.terminal_counts.get(node_id, 0) + 1
        self.pending_terminal_counts = dict(self.terminal_counts)
        self.paths: Dict[str, List[CapacityMeshNode]] = {}
        self.failed_connection_names: List[str] = []
        self.used_node_capacity_map: Dict[CapacityMeshNodeId, float] = {
            n.capacity_mesh_node_id: 0.0 for n in nodes
        }
        self.total_node_capacity_map: Dict[CapacityMeshNodeId, float] = {
            n.capacity_mesh_node_id: self.get_total_capacity(n) for n in nodes
        }

        self.current_connection_index = 0
        self.candidates: Optional[PriorityQueue[Candidate]] = None
        self.visited_nodes: Optional[Set[CapacityMeshNodeId]] = None
        self.active_straight_line_distance = 0.0

    # Capacity model

    def get_total_capacity(self, node: CapacityMeshNode) -> float:
        return get_pathing_total_capacity(node, self.hyper_parameters.max_capacity_factor)

    def get_remaining_capacity(self, node: CapacityMeshNode) -> float:
        node_id = node.capacity_mesh_node_id
        return self.total_node_capacity_map[node_id] - self.used_node_capacity_map[node_id]

    def get_effective_capacity(self, node: CapacityMeshNode) -> float:
        node_id = node.capacity_mesh_node_id
        return max(self.total_node_capacity_map[node_id], self.terminal_counts.get(node_id, 0))

    def does_node_have_capacity_for_trace(
        self, node: CapacityMeshNode, terminal: Optional[ConnectionTerminal] = None
    ) -> bool:
        """Room for one more trace once other connections' terminal slots are held back."""
        if self.allow_negative_capacity:
            return True
        node_id = node.capacity_mesh_node_id
        reserved = self.pending_terminal_counts.get(node_id, 0)
        if terminal is not None and node_id in (terminal.start_node_id, terminal.end_node_id):
            reserved -= 1
        free = self.get_effective_capacity(node) - self.used_node_capacity_map[node_id] - reserved
        return free >= 1

    def get_node_capacity_penalty(self, node: CapacityMeshNode) -> float:
        """Penalty for entering ``node`` given how full it already is."""
        if node.is_single_layer:
            return 0.0

        total = max(self.total_node_capacity_map[node.capacity_mesh_node_id], 1e-9)
        remaining = self.get_remaining_capacity(node)
        dist = self.active_straight_line_distance

        if remaining <= 0:
            penalty = (
                (-remaining + 1) / total * dist
                * (self.hyper_parameters.negative_capacity_penalty_factor / 4)
            )
            return penalty ** 2

        return (1 / remaining) * dist * self.hyper_parameters.reduced_capacity_penalty_factor / 8

    def get_distance_between_nodes(self, a: CapacityMeshNode, b: CapacityMeshNode) -> float:
        """Centre distance scaled down for large nodes, so big open areas are cheap."""
        dx = a.center.x - b.center.x
        dy = a.center.y - b.center.y
        size_x = max(a.width, b.width)
        size_y = max(a.height, b.height)
        return math.hypot(dx, dy) / (size_x * size_y)

    def compute_g(self, prev: Candidate, node: CapacityMeshNode) -> float:
        return (
            prev.g
            + self.get_distance_between_nodes(prev.node, node)
            + self.get_node_capacity_penalty(node)
        )

    def compute_h(self, node: CapacityMeshNode, end: CapacityMeshNode) -> float:
        return self.get_distance_between_nodes(node, end) + self.get_node_capacity_penalty(node)

    # Graph helpers

    def get_neighboring_nodes(self, node: CapacityMeshNode) -> List[CapacityMeshNode]:
        neighbors = []
        for edge in self.node_edge_map.get(node.capacity_mesh_node_id, []):
            other_id = edge.other(node.capacity_mesh_node_id)
            other = self.node_map.get(other_id)
            if other is None:
                raise InvariantViolation(
                    f"Edge {edge.capacity_mesh_edge_id} references unknown node {other_id}"
                )
            neighbors.append(other)
        return neighbors

    def can_travel_through_obstacle(self, node: CapacityMeshNode, terminal: ConnectionTerminal) -> bool:
        return node.capacity_mesh_node_id in (terminal.start_node_id, terminal.end_node_id)

    def is_connected_to_end_goal(self, node: CapacityMeshNode, end: CapacityMeshNode) -> bool:
        return any(
            end.capacity_mesh_node_id in edge.node_ids
            for edge in self.node_edge_map.get(node.capacity_mesh_node_id, [])
        )

    @staticmethod
    def get_backtracked_path(candidate: Candidate) -> List[CapacityMeshNode]:
        """Nodes from the search start to ``candidate``."""
        path = []
        current: Optional[Candidate] = candidate
        while current is not None:
            path.append(current.node)
            current = current.prev
        path.reverse()
        return path

    def reduce_capacity_along_path(self, path: List[CapacityMeshNode]):
        for node in path:
            self.used_node_capacity_map[node.capacity_mesh_node_id] += 1

    # Stepping

    def _finish_connection(self, terminal: ConnectionTerminal, path: Optional[List[CapacityMeshNode]]):
        if path is None:
            logger.warning(f"Ran out of candidates on connection {terminal.connection_name}")
            self.failed_connection_names.append(terminal.connection_name)
        else:
            self.paths[terminal.connection_name] = path
            self.reduce_capacity_along_path(path)
        for node_id in {terminal.start_node_id, terminal.end_node_id}:
            self.pending_terminal_counts[node_id] -= 1
        self.current_connection_index += 1
        self.candidates = None
        self.visited_nodes = None
        self.progress = self.current_connection_index / max(len(self.terminals), 1)

    def _finish(self):
        if self.failed_connection_names:
            self.fail(
                f"No capacity path for {len(self.failed_connection_names)} connection(s): "
                f"{', '.join(self.failed_connection_names)}"
            )
            return
        self.solved = True
        self.progress = 1.0

    def _step(self):
        if self.current_connection_index >= len(self.terminals):
            self._finish()
            return

        terminal = self.terminals[self.current_connection_index]
        start = self.node_map[terminal.start_node_id]
        end = self.node_map[terminal.end_node_id]

        if self.candidates is None and not (
            self.does_node_have_capacity_for_trace(start, terminal)
            and self.does_node_have_capacity_for_trace(end, terminal)
        ):
            logger.warning(f"No capacity left in a terminal node of {terminal.connection_name}")
            self._finish_connection(terminal, None)
            return

        if start.capacity_mesh_node_id == end.capacity_mesh_node_id:
            self._finish_connection(terminal, [start])
            return

        if self.candidates is None:
            self.candidates = PriorityQueue([Candidate(None, start, 0.0, 0.0, 0.0)])
            self.visited_nodes = {start.capacity_mesh_node_id}
            self.active_straight_line_distance = math.hypot(
                start.center.x - end.center.x, start.center.y - end.center.y
            )

        current = self.candidates.dequeue()
        if current is None:
            self._finish_connection(terminal, None)
            return

        if self.is_connected_to_end_goal(current.node, end):
            path = self.get_backtracked_path(current)
            path.append(end)
            self._finish_connection(terminal, path)
            return

        for neighbor in self.get_neighboring_nodes(current.node):
            neighbor_id = neighbor.capacity_mesh_node_id
            if neighbor_id in self.visited_nodes:
                continue
            if not self.does_node_have_capacity_for_trace(neighbor, terminal):
                continue
            if neighbor.contains_obstacle and not self.can_travel_through_obstacle(neighbor, terminal):
                continue
            g = self.compute_g(current, neighbor)
            h = self.compute_h(neighbor, end)
            self.candidates.enqueue(
                Candidate(current, neighbor, g + h * self.greedy_multiplier, g, h)
            )
        self.visited_nodes.add(current.node.capacity_mesh_node_id)

    # Results

    def get_capacity_paths(self) -> List[CapacityPath]:
        """Paths in terminal order (connections without a path are skipped)."""
        capacity_paths = []
        for terminal in self.terminals:
            path = self.paths.get(terminal.connection_name)
            if path is None:
                continue
            capacity_paths.append(CapacityPath(
                capacity_path_id=terminal.connection_name,
                connection_name=terminal.connection_name,
                node_ids=[n.capacity_mesh_node_id for n in path],
            ))
        return capacity_paths

    def get_path_node_ids(self) -> Dict[str, List[CapacityMeshNodeId]]:
        return {
            name: [n.capacity_mesh_node_id for n in path]
            for name, path in self.paths.items()
        }

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics(self.name)
        for node in self.nodes:
            node_id = node.capacity_mesh_node_id
            graphics["rects"].append({
                "center": {"x": node.center.x, "y": node.center.y},
                "width": max(node.width - 2, node.width * 0.8),
                "height": max(node.height - 2, node.height * 0.8),
                "fill": "rgba(255,0,0,0.1)" if node.contains_obstacle else "rgba(0,0,0,0.1)",
                "label": f"{node_id}\n{self.used_node_capacity_map[node_id]:.0f}/"
                         f"{self.total_node_capacity_map[node_id]:.2f}",
            })
        for i, terminal in enumerate(self.terminals):
            path = self.paths.get(terminal.connection_name)
            if not path:
                continue
            offset = ((i % 10) + (i % 19)) * 0.01
            graphics["lines"].append({
                "points": [
                    {"x": n.center.x + offset * n.width, "y": n.center.y + offset * n.width}
                    for n in path
                ],
                "label": terminal.connection_name,
                "color_index": i,
            })
        if self.candidates is not None:
            for rank, candidate in enumerate(self.candidates.peek_many(5)):
                graphics["lines"].append({
                    "points": [
                        {"x": n.center.x, "y": n.center.y}
                        for n in self.get_backtracked_path(candidate)
                    ],
                    "stroke": f"rgba(255,0,0,{0.5 * (1 - rank / 5):.2f})",
                })
        return graphics


class CapacityPathingGreedySolver(CapacityPathingSolver):
    """Negative-capacity pathing with a flat overcommit penalty.

    Used for the initial global pass of the multi-section solver and inside
    section re-solves. It never rejects a node for lack of capacity.
    """

    MM_PENALTY_FACTOR = 4
    MIN_PENALTY = 0.05
    SINGLE_LAYER_PENALTY_FACTOR = 10

    def __init__(self, *args, **kwargs):
        kwargs["allow_negative_capacity"] = True
        super().__init__(*args, **kwargs)

    def get_node_capacity_penalty(self, node: CapacityMeshNode) -> float:
        if node.capacity_mesh_node_id not in self.node_map:
            return math.inf
        remaining = self.get_remaining_capacity(node) - 1
        if remaining > 0:
            return 0.0
        factor = self.SINGLE_LAYER_PENALTY_FACTOR if node.is_single_layer else 1
        return (self.MIN_PENALTY + abs(remaining) * self.MM_PENALTY_FACTOR) * factor
