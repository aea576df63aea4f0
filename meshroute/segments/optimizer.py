"""
Segment Point Optimizer

Simulated annealing over the assigned port points. An operation either
moves one point to another layer or switches the positions of two points
on the same segment. Nodes are picked with probability proportional to
their crossing cost, discounted by how often they were already operated
on. A worse result is still accepted with probability ``exp(-delta / T)``;
the temperature cools geometrically every step.

Layer changes are only proposed on segments whose nodes can all fit a via:
target nodes and nodes narrower than the via diameter plus clearance on
both sides keep their points on the layers they were assigned.

The cost of a node is ``-log(1 - pf)`` where ``pf`` is its crossing-based
probability of failure; ``current_cost`` is the sum over nodes and
``probability_of_failure`` is ``1 - exp(-current_cost)``.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from ..solvers.base import BaseSolver, GraphicsObject, empty_graphics
from ..types import (
    CapacityMeshNode,
    CapacityMeshNodeId,
    NodeWithPortPoints,
    PortPoint,
    SegmentWithAssignedPoints,
)
from ..utils import seeded_random
from .crossings import calculate_crossing_probability_of_failure, get_intra_node_crossings, get_log_probability_cost
from .point_solver import get_nodes_with_port_points

logger = logging.getLogger(__name__)


@dataclass
class ChangeLayerOperation:
    segment_id: str
    point_index: int
    new_z: int
    old_z: int


@dataclass
class SwitchOperation:
    segment_id: str
    point1_index: int
    point2_index: int


Operation = Union[ChangeLayerOperation, SwitchOperation]


class CapacitySegmentPointOptimizer(BaseSolver):
    """Lower the total crossing cost by perturbing port points in place."""

    MAX_ITERATIONS = 1_000_000

    def __init__(
        self,
        deduped_segments: List[SegmentWithAssignedPoints],
        segment_id_to_node_ids: Dict[str, List[CapacityMeshNodeId]],
        nodes: List[CapacityMeshNode],
        endpoint_port_points: Optional[Dict[CapacityMeshNodeId, List[PortPoint]]] = None,
        max_steps: int = 2000,
        seed: int = 0,
        initial_temperature: float = 0.5,
        cooling_rate: float = 0.995,
        patience: int = 500,
        via_diameter: float = 0.6,
        obstacle_margin: float = 0.15,
        max_iterations: Optional[int] = None,
    ):
        super().__init__(max_iterations)
        self.deduped_segments = deduped_segments
        self.segment_id_to_node_ids = segment_id_to_node_ids
        self.nodes = nodes
        self.endpoint_port_points = endpoint_port_points or {}
        self.max_steps = max_steps
        self.seed = seed
        self.temperature = initial_temperature
        self.cooling_rate = cooling_rate
        self.patience = patience
        self.min_via_node_size = via_diameter + 2 * obstacle_margin
        self.random = seeded_random(seed)

        self.node_map: Dict[CapacityMeshNodeId, CapacityMeshNode] = {
            n.capacity_mesh_node_id: n for n in nodes
        }
        self.segment_map: Dict[str, SegmentWithAssignedPoints] = {
            s.node_port_segment_id: s for s in deduped_segments
        }
        self.node_id_to_segment_ids: Dict[CapacityMeshNodeId, List[str]] = {}
        self.node_port_points: Dict[CapacityMeshNodeId, List[PortPoint]] = {}
        for segment in deduped_segments:
            for node_id in segment_id_to_node_ids.get(segment.node_port_segment_id, []):
                self.node_id_to_segment_ids.setdefault(node_id, []).append(segment.node_port_segment_id)
                self.node_port_points.setdefault(node_id, []).extend(segment.assigned_points)
        for node_id, points in self.endpoint_port_points.items():
            self.node_port_points.setdefault(node_id, []).extend(points)

        self.node_pf: Dict[CapacityMeshNodeId, float] = {
            node_id: self.compute_node_pf(node_id) for node_id in self.node_port_points
        }
        self.node_operation_counts: Dict[CapacityMeshNodeId, int] = {
            node_id: 0 for node_id in self.node_port_points
        }
        self.current_cost = self.compute_total_cost()
        self.initial_cost = self.current_cost
        self.best_cost = self.current_cost
        self.best_snapshot = self.take_snapshot()
        self.steps_taken = 0
        self.steps_since_improvement = 0
        self.accepted_operations = 0

    @property
    def probability_of_failure(self) -> float:
        return 1 - math.exp(-self.current_cost)

    def compute_node_pf(self, node_id: CapacityMeshNodeId) -> float:
        node = self.node_map.get(node_id)
        if node is None:
            return 0.0
        crossings = get_intra_node_crossings(self.node_port_points.get(node_id, []))
        return calculate_crossing_probability_of_failure(node, crossings)

    def compute_total_cost(self) -> float:
        return sum(get_log_probability_cost(pf) for pf in self.node_pf.values())

    def take_snapshot(self) -> List[Tuple[float, float, int]]:
        return [
            (p.x, p.y, p.z)
            for segment in self.deduped_segments
            for p in segment.assigned_points
        ]

    def restore_snapshot(self, snapshot: List[Tuple[float, float, int]]):
        values = iter(snapshot)
        for segment in self.deduped_segments:
            for point in segment.assigned_points:
                point.x, point.y, point.z = next(values)

    def choose_node(self) -> Optional[CapacityMeshNodeId]:
        """Roulette pick, biased to costly nodes and against often-edited ones."""
        weights = []
        for node_id, pf in self.node_pf.items():
            if pf <= 0 or not self.node_id_to_segment_ids.get(node_id):
                continue
            weights.append((node_id, pf / (1 + self.node_operation_counts[node_id])))
        total = sum(w for _, w in weights)
        if total <= 0:
            return None
        threshold = self.random() * total
        for node_id, weight in weights:
            threshold -= weight
            if threshold <= 0:
                return node_id
        return weights[-1][0]

    def can_host_via(self, node_id: CapacityMeshNodeId) -> bool:
        """Target nodes and nodes narrower than a via plus clearance keep their layers."""
        node = self.node_map.get(node_id)
        if node is None or node.contains_target:
            return False
        return min(node.width, node.height) >= self.min_via_node_size

    def generate_operation(self, node_id: CapacityMeshNodeId) -> Optional[Operation]:
        segment_ids = self.node_id_to_segment_ids[node_id]
        segment = self.segment_map[segment_ids[int(self.random() * len(segment_ids))]]
        points = segment.assigned_points
        if not points:
            return None

        can_change_layer = len(segment.available_z) > 1 and all(
            self.can_host_via(n)
            for n in self.segment_id_to_node_ids.get(segment.node_port_segment_id, [])
        )
        can_switch = len(points) >= 2
        if can_change_layer and (not can_switch or self.random() < 0.5):
            index = int(self.random() * len(points))
            options = [z for z in segment.available_z if z != points[index].z]
            new_z = options[int(self.random() * len(options))]
            return ChangeLayerOperation(segment.node_port_segment_id, index, new_z, points[index].z)
        if can_switch:
            i1 = int(self.random() * len(points))
            i2 = int(self.random() * (len(points) - 1))
            if i2 >= i1:
                i2 += 1
            return SwitchOperation(segment.node_port_segment_id, i1, i2)
        return None

    def apply_operation(self, operation: Operation, revert: bool = False):
        points = self.segment_map[operation.segment_id].assigned_points
        if isinstance(operation, ChangeLayerOperation):
            points[operation.point_index].z = operation.old_z if revert else operation.new_z
        else:
            a = points[operation.point1_index]
            b = points[operation.point2_index]
            a.x, a.y, b.x, b.y = b.x, b.y, a.x, a.y

    def _step(self):
        if (self.current_cost <= 0 or self.steps_taken >= self.max_steps
                or self.steps_since_improvement >= self.patience):
            self._finish()
            return

        node_id = self.choose_node()
        if node_id is None:
            self._finish()
            return

        self.steps_taken += 1
        self.progress = self.steps_taken / max(self.max_steps, 1)
        operation = self.generate_operation(node_id)
        self.node_operation_counts[node_id] += 1
        if operation is None:
            self.steps_since_improvement += 1
            return

        affected = self.segment_id_to_node_ids.get(operation.segment_id, [])
        old_cost = sum(get_log_probability_cost(self.node_pf[n]) for n in affected)
        self.apply_operation(operation)
        new_pf = {n: self.compute_node_pf(n) for n in affected}
        delta = sum(get_log_probability_cost(pf) for pf in new_pf.values()) - old_cost

        if delta <= 0 or self.random() < math.exp(-delta / max(self.temperature, 1e-9)):
            self.node_pf.update(new_pf)
            self.current_cost += delta
            self.accepted_operations += 1
            if self.current_cost < self.best_cost - 1e-12:
                self.best_cost = self.current_cost
                self.best_snapshot = self.take_snapshot()
                self.steps_since_improvement = 0
            else:
                self.steps_since_improvement += 1
        else:
            self.apply_operation(operation, revert=True)
            self.steps_since_improvement += 1

        self.temperature *= self.cooling_rate

    def _finish(self):
        if self.current_cost > self.best_cost:
            self.restore_snapshot(self.best_snapshot)
            self.node_pf = {node_id: self.compute_node_pf(node_id) for node_id in self.node_pf}
            self.current_cost = self.compute_total_cost()
        self.solved = True
        self.progress = 1.0
        logger.debug(
            f"Segment point optimizer: cost {self.initial_cost:.4f} -> {self.current_cost:.4f} "
            f"after {self.steps_taken} steps ({self.accepted_operations} accepted)"
        )

    def get_nodes_with_port_points(self) -> List[NodeWithPortPoints]:
        return get_nodes_with_port_points(
            self.nodes, self.deduped_segments, self.segment_id_to_node_ids, self.endpoint_port_points
        )

    def visualize(self) -> GraphicsObject:
        graphics = empty_graphics("Segment Point Optimizer")
        for node_id, pf in self.node_pf.items():
            node = self.node_map.get(node_id)
            if node is None:
                continue
            graphics["rects"].append({
                "center": {"x": node.center.x, "y": node.center.y},
                "width": node.width * 0.9,
                "height": node.height * 0.9,
                "fill": f"rgba(255,0,0,{min(pf, 1.0) * 0.5:.3f})",
                "label": f"{node_id} pf={pf:.3f}",
            })
        for segment in self.deduped_segments:
            for point in segment.assigned_points:
                graphics["points"].append({
                    "x": point.x,
                    "y": point.y,
                    "label": f"{point.connection_name} z{point.z}",
                    "layer": point.z,
                })
        return graphics
