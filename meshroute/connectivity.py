"""Electrical connectivity between connection names, ports and obstacles.

Two ids are on the same net when they were ever grouped together, directly or
transitively. Routes on the same net may touch without being a short.
"""

import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .solvers.base import BaseSolver, GraphicsObject, empty_graphics
from .types import Connection, ConnectionPoint, SimpleRouteJson

logger = logging.getLogger(__name__)


class ConnectivityMap:
    """Union-find over arbitrary string ids."""

    def __init__(self, groups: Optional[Iterable[Sequence[str]]] = None):
        self._parent: Dict[str, str] = {}
        if groups:
            self.add_connections(groups)

    def _find(self, item: str) -> str:
        parent = self._parent.setdefault(item, item)
        if parent == item:
            return item
        root = self._find(parent)
        self._parent[item] = root
        return root

    def _union(self, a: str, b: str):
        root_a = self._find(a)
        root_b = self._find(b)
        if root_a == root_b:
            return
        # Deterministic root: the lexicographically smaller id
        if root_b < root_a:
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a

    def add_connections(self, groups: Iterable[Sequence[str]]):
        """Merge each group of ids into one net."""
        for group in groups:
            ids = [i for i in group if i]
            if not ids:
                continue
            self._find(ids[0])
            for other in ids[1:]:
                self._union(ids[0], other)

    def get_net_for(self, item: str) -> Optional[str]:
        """Net id of ``item``, or None when the id was never registered."""
        if item not in self._parent:
            return None
        return self._find(item)

    def are_ids_connected(self, a: str, b: str) -> bool:
        if a == b:
            return True
        net_a = self.get_net_for(a)
        return net_a is not None and net_a == self.get_net_for(b)

    def get_ids_connected_to(self, item: str) -> List[str]:
        net = self.get_net_for(item)
        if net is None:
            return []
        return sorted(i for i in self._parent if self._find(i) == net)

    @property
    def nets(self) -> Dict[str, List[str]]:
        result: Dict[str, List[str]] = {}
        for item in self._parent:
            result.setdefault(self._find(item), []).append(item)
        return {net: sorted(ids) for net, ids in result.items()}

    @classmethod
    def from_simple_route_json(cls, srj: SimpleRouteJson) -> "ConnectivityMap":
        """Group each connection with its port ids, its net name and the
        obstacles that declare themselves connected to it."""
        connectivity = cls()
        for connection in srj.connections:
            group = [connection.name]
            if connection.net_name:
                group.append(connection.net_name)
            group.extend(p.pcb_port_id for p in connection.points_to_connect if p.pcb_port_id)
            connectivity.add_connections([group])
        for obstacle in srj.obstacles:
            if obstacle.connected_to:
                connectivity.add_connections([obstacle.connected_to])
        return connectivity


def build_minimum_spanning_tree(points: Sequence[ConnectionPoint]) -> List[Tuple[int, int]]:
    """Prim's algorithm over the complete graph of ``points``.

    Returns index pairs (parent, child) in the order the tree grows. Ties
    are broken by point index so the result is deterministic.
    """
    n = len(points)
    if n < 2:
        return []

    in_tree = [False] * n
    best_dist = [math.inf] * n
    best_parent = [-1] * n
    best_dist[0] = 0.0
    pairs: List[Tuple[int, int]] = []

    for _ in range(n):
        current = -1
        for i in range(n):
            if not in_tree[i] and (current == -1 or best_dist[i] < best_dist[current]):
                current = i
        in_tree[current] = True
        if best_parent[current] != -1:
            pairs.append((best_parent[current], current))

        for i in range(n):
            if in_tree[i]:
                continue
            d = math.hypot(points[i].x - points[current].x, points[i].y - points[current].y)
            if d < best_dist[i]:
                best_dist[i] = d
                best_parent[i] = current

    return pairs


class NetToPointPairsSolver(BaseSolver):
    """Split every multi-point connection into two-point connections.

    A connection with N > 2 points becomes N-1 connections named
    ``{name}_mst{i}`` along the minimum spanning tree of its points; the
    original name is kept as ``net_name``.
    """

    def __init__(self, srj: SimpleRouteJson):
        super().__init__()
        self.srj = srj
        self.unprocessed: List[Connection] = list(srj.connections)
        self.new_connections: List[Connection] = []

    def _step(self):
        if not self.unprocessed:
            self.solved = True
            return

        connection = self.unprocessed.pop(0)
        points = connection.points_to_connect

        if len(points) < 2:
            logger.warning(
                f"Connection {connection.name} has {len(points)} point(s), nothing to route"
            )
            return

        if len(points) == 2:
            self.new_connections.append(connection)
            return

        for i, (a, b) in enumerate(build_minimum_spanning_tree(points)):
            self.new_connections.append(
                Connection(
                    name=f"{connection.name}_mst{i}",
                    points_to_connect=[points[a], points[b]],
                    net_name=connection.net_name or connection.name,
                )
            )
        logger.debug(f"Split {connection.name} into {len(points) - 1} point pairs")

    def get_new_simple_route_json(self) -> SimpleRouteJson:
        return SimpleRouteJson(
            layer_count=self.srj.layer_count,
            min_trace_width=self.srj.min_trace_width,
            bounds=self.srj.bounds,
            obstacles=self.srj.obstacles,
            connections=list(self.new_connections),
        )

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics("Net To Point Pairs")
        for connection in self.new_connections:
            points = connection.points_to_connect
            if len(points) == 2:
                graphics["lines"].append({
                    "points": [{"x": p.x, "y": p.y} for p in points],
                    "label": connection.name,
                })
        return graphics
