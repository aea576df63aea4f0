"""
Autorouting Pipeline - orchestrates the routing phases.

The pipeline runs one solver per phase, in order:

1. net_to_point_pairs: split multi-point nets into point pairs (MST)
2. node_solver: subdivide the board into capacity mesh nodes
3. target_merger: merge target nodes of the same connection
4. single_layer_merger: merge single-layer nodes on the same layer
5. straws: split large single-layer nodes into one-trace straws
6. edge_solver: connect bordering nodes
7. dead_end_removal: drop leaf nodes that hold no terminal
8. pathing: route each connection through the node graph
9. port_segments: shared borders crossed by each path
10. segment_to_point: concrete port points on each border
11. optimizer: annealing over port point layers and order (off by default)
12. unravel: section-by-section crossing reduction
13. high_density: detailed traces and vias inside each node
14. stitching: join per-node fragments into one route per connection
15. via_removal: drop layer changes that are not needed
16. simplification: straighten routes where the shortcut is clear

Each ``step()`` advances the active phase's solver by one step. A failure in
a mesh-building phase stops the pipeline. Routing phases tolerate failure:
the failure is recorded in ``failed_sub_solvers`` and the next phase works
with the partial result, so that every connection ends with a route or an
explicit ``FailedRoute``. The pipeline itself fails at the end when any
connection could not be routed.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from .cache import CacheProvider, InMemoryCache
from .config import HyperParameterDefs, RouterConfig, load_hyperparameter_defs
from .connectivity import ConnectivityMap, NetToPointPairsSolver
from .errors import FailureKind, IterationBudgetExceeded, UnsolvableError
from .geometry import clamp
from .high_density import HighDensitySolver
from .mesh import (
    CapacityMeshEdgeSolver,
    CapacityMeshNodeSolver,
    CapacityNodeTargetMerger,
    DeadEndSolver,
    SingleLayerNodeMerger,
    StrawSolver,
)
from .pathing import (
    CapacityPathingGreedySolver,
    CapacityPathingMultiSectionSolver,
    CapacityPathingSolver,
    get_connection_terminals,
)
from .segments import (
    CapacityEdgeToPortSegmentSolver,
    CapacitySegmentPointOptimizer,
    CapacitySegmentToPointSolver,
    get_nodes_with_port_points,
)
from .simplify import MultiSimplifiedPathSolver
from .solvers.base import BaseSolver, GraphicsObject, combine_visualizations, empty_graphics
from .stitching import MultipleHighDensityRouteStitchSolver
from .types import (
    CapacityMeshEdge,
    CapacityMeshNode,
    CapacityMeshNodeId,
    CapacityPath,
    ConnectionTerminal,
    FailedRoute,
    HighDensityRoute,
    NodeWithPortPoints,
    PortPoint,
    SimpleRouteJson,
)
from .unravel import UnravelMultiSectionSolver
from .via_removal import UselessViaRemovalSolver

logger = logging.getLogger(__name__)

OutputRoute = Union[HighDensityRoute, FailedRoute]

PATHING_STRATEGIES = ("strict", "greedy", "negative_capacity", "multi_section")


@dataclass
class PipelineStep:
    """One phase: how to build its solver and what to keep once it is done."""
    name: str
    create: Callable[[], Optional[BaseSolver]]  # None skips the phase
    on_finished: Optional[Callable[[BaseSolver], None]] = None
    tolerate_failure: bool = False


def get_endpoint_port_points(
    srj: SimpleRouteJson,
    terminals: List[ConnectionTerminal],
    node_map: Dict[CapacityMeshNodeId, CapacityMeshNode],
) -> Dict[CapacityMeshNodeId, List[PortPoint]]:
    """Port points for the connection endpoints inside their terminal nodes.

    The point is clamped into the node and put on the connection point's
    layer, or on the node's first layer when that one is not available.
    """
    connections = {c.name: c for c in srj.connections}
    result: Dict[CapacityMeshNodeId, List[PortPoint]] = {}
    for terminal in terminals:
        connection = connections.get(terminal.connection_name)
        if connection is None:
            continue
        points = connection.points_to_connect
        for point, node_id in ((points[0], terminal.start_node_id), (points[-1], terminal.end_node_id)):
            node = node_map[node_id]
            b = node.bounds
            z = point.z if point.z in node.available_z else node.available_z[0]
            result.setdefault(node_id, []).append(PortPoint(
                x=clamp(point.x, b.min_x, b.max_x),
                y=clamp(point.y, b.min_y, b.max_y),
                z=z,
                connection_name=terminal.connection_name,
            ))
    return result


class AutoroutingPipeline(BaseSolver):
    """End-to-end router for one board.

    Example:
        >>> pipeline = AutoroutingPipeline(SimpleRouteJson.from_dict(board))
        >>> pipeline.solve()
        >>> routes = pipeline.get_output_routes()
    """

    def __init__(
        self,
        srj: SimpleRouteJson,
        config: Optional[RouterConfig] = None,
        cache_provider: Optional[CacheProvider] = None,
        high_density_defs: Optional[HyperParameterDefs] = None,
    ):
        self.config = config or RouterConfig()
        super().__init__(self.config.max_iterations)
        if self.config.pathing_strategy not in PATHING_STRATEGIES:
            raise ValueError(
                f"Unknown pathing strategy '{self.config.pathing_strategy}'. "
                f"Available: {', '.join(PATHING_STRATEGIES)}"
            )

        self.srj = srj
        if cache_provider is None and self.config.enable_cache:
            cache_provider = InMemoryCache()
        self.cache_provider = cache_provider
        self.high_density_defs = high_density_defs
        self.connectivity = ConnectivityMap.from_simple_route_json(srj)

        # Phase results
        self.srj_with_point_pairs: Optional[SimpleRouteJson] = None
        self.capacity_nodes: List[CapacityMeshNode] = []
        self.capacity_edges: List[CapacityMeshEdge] = []
        self.terminals: List[ConnectionTerminal] = []
        self.capacity_paths: List[CapacityPath] = []
        self.endpoint_port_points: Dict[CapacityMeshNodeId, List[PortPoint]] = {}
        self.nodes_with_port_points: List[NodeWithPortPoints] = []
        self.hd_routes: List[HighDensityRoute] = []
        self.stitched_routes: List[HighDensityRoute] = []
        self.final_routes: List[HighDensityRoute] = []
        self.connection_failures: Dict[str, str] = {}

        # Phase solvers, kept for inspection
        self.solvers: Dict[str, BaseSolver] = {}

        self.pipeline_def: List[PipelineStep] = [
            PipelineStep("net_to_point_pairs", self._create_net_to_point_pairs,
                         self._on_net_to_point_pairs),
            PipelineStep("node_solver", self._create_node_solver, self._on_node_solver),
            PipelineStep("target_merger", self._create_target_merger, self._on_target_merger),
            PipelineStep("single_layer_merger", self._create_single_layer_merger,
                         self._on_single_layer_merger),
            PipelineStep("straws", self._create_straws, self._on_straws),
            PipelineStep("edge_solver", self._create_edge_solver, self._on_edge_solver),
            PipelineStep("dead_end_removal", self._create_dead_end_removal,
                         self._on_dead_end_removal),
            PipelineStep("pathing", self._create_pathing, self._on_pathing, tolerate_failure=True),
            PipelineStep("port_segments", self._create_port_segments),
            PipelineStep("segment_to_point", self._create_segment_to_point,
                         self._on_segment_to_point),
            PipelineStep("optimizer", self._create_optimizer, self._on_port_points_changed,
                         tolerate_failure=True),
            PipelineStep("unravel", self._create_unravel, self._on_port_points_changed,
                         tolerate_failure=True),
            PipelineStep("high_density", self._create_high_density, self._on_high_density,
                         tolerate_failure=True),
            PipelineStep("stitching", self._create_stitching, self._on_stitching,
                         tolerate_failure=True),
            PipelineStep("via_removal", self._create_via_removal, self._on_via_removal,
                         tolerate_failure=True),
            PipelineStep("simplification", self._create_simplification, self._on_simplification,
                         tolerate_failure=True),
        ]
        self.current_step_index = 0
        self.time_spent_on_phase: Dict[str, float] = {}

    # Phase construction

    def _create_net_to_point_pairs(self) -> BaseSolver:
        return NetToPointPairsSolver(self.srj)

    def _on_net_to_point_pairs(self, solver: NetToPointPairsSolver):
        self.srj_with_point_pairs = solver.get_new_simple_route_json()
        self.connectivity = ConnectivityMap.from_simple_route_json(self.srj_with_point_pairs)

    def _create_node_solver(self) -> BaseSolver:
        return CapacityMeshNodeSolver(
            self.srj_with_point_pairs,
            capacity_depth=self.config.capacity_depth,
            target_min_capacity=self.config.target_min_capacity,
            spatial_index_strategy=self.config.spatial_index_strategy,
        )

    def _on_node_solver(self, solver: CapacityMeshNodeSolver):
        self.capacity_nodes = list(solver.finished_nodes)

    def _create_target_merger(self) -> Optional[BaseSolver]:
        if not self.config.enable_target_merger:
            return None
        return CapacityNodeTargetMerger(self.capacity_nodes, self.connectivity)

    def _on_target_merger(self, solver: CapacityNodeTargetMerger):
        self.capacity_nodes = list(solver.new_nodes)

    def _create_single_layer_merger(self) -> Optional[BaseSolver]:
        # on a one-layer board every node is single-layer
        if not self.config.enable_single_layer_merger or self.srj.layer_count < 2:
            return None
        return SingleLayerNodeMerger(self.capacity_nodes)

    def _on_single_layer_merger(self, solver: SingleLayerNodeMerger):
        self.capacity_nodes = list(solver.new_nodes)

    def _create_straws(self) -> Optional[BaseSolver]:
        if not self.config.enable_straws or self.srj.layer_count < 2:
            return None
        return StrawSolver(self.capacity_nodes, straw_size=self.config.straw_size)

    def _on_straws(self, solver: StrawSolver):
        self.capacity_nodes = solver.get_result_nodes(self.capacity_nodes)

    def _create_edge_solver(self) -> BaseSolver:
        return CapacityMeshEdgeSolver(self.capacity_nodes, self.config.spatial_index_strategy)

    def _on_edge_solver(self, solver: CapacityMeshEdgeSolver):
        self.capacity_edges = list(solver.edges)

    def _create_dead_end_removal(self) -> Optional[BaseSolver]:
        if not self.config.enable_dead_end_removal:
            return None
        return DeadEndSolver(self.capacity_nodes, self.capacity_edges)

    def _on_dead_end_removal(self, solver: DeadEndSolver):
        self.capacity_nodes = solver.get_remaining_nodes()
        self.capacity_edges = solver.get_remaining_edges()

    def _create_pathing(self) -> BaseSolver:
        self.terminals, unmapped = get_connection_terminals(
            self.srj_with_point_pairs, self.capacity_nodes
        )
        for name in unmapped:
            self.connection_failures[name] = "no mesh node for a connection point"

        strategy = self.config.pathing_strategy
        hp = self.config.pathing_hyper_parameters
        if strategy == "multi_section":
            return CapacityPathingMultiSectionSolver(
                self.capacity_nodes,
                self.capacity_edges,
                self.terminals,
                hyper_parameters=hp,
                expansion_degrees=self.config.section_expansion_degrees,
                max_section_optimizations=self.config.max_section_optimizations,
                cache_provider=self.cache_provider,
            )
        if strategy == "greedy":
            return CapacityPathingGreedySolver(
                self.capacity_nodes, self.capacity_edges, self.terminals, hyper_parameters=hp
            )
        return CapacityPathingSolver(
            self.capacity_nodes,
            self.capacity_edges,
            self.terminals,
            hyper_parameters=hp,
            allow_negative_capacity=strategy == "negative_capacity",
        )

    def _on_pathing(self, solver: BaseSolver):
        self.capacity_paths = solver.get_capacity_paths()
        routed = {p.connection_name for p in self.capacity_paths}
        for terminal in self.terminals:
            if terminal.connection_name not in routed:
                self.connection_failures.setdefault(
                    terminal.connection_name, "no capacity path through the mesh"
                )
        node_map = {n.capacity_mesh_node_id: n for n in self.capacity_nodes}
        routed_terminals = [t for t in self.terminals if t.connection_name in routed]
        self.endpoint_port_points = get_endpoint_port_points(
            self.srj_with_point_pairs, routed_terminals, node_map
        )

    def _create_port_segments(self) -> BaseSolver:
        return CapacityEdgeToPortSegmentSolver(
            self.capacity_nodes, self.capacity_edges, self.capacity_paths
        )

    def _create_segment_to_point(self) -> BaseSolver:
        port_segment_solver: CapacityEdgeToPortSegmentSolver = self.solvers["port_segments"]
        return CapacitySegmentToPointSolver(
            port_segment_solver.get_all_segments(),
            min_port_spacing=self.config.trace_thickness + self.config.obstacle_margin,
        )

    def _on_segment_to_point(self, solver: CapacitySegmentToPointSolver):
        self._on_port_points_changed(solver)

    def _on_port_points_changed(self, solver: BaseSolver):
        point_solver: CapacitySegmentToPointSolver = self.solvers["segment_to_point"]
        self.nodes_with_port_points = get_nodes_with_port_points(
            self.capacity_nodes,
            point_solver.deduped_segments,
            point_solver.segment_id_to_node_ids,
            self.endpoint_port_points,
        )

    def _create_optimizer(self) -> Optional[BaseSolver]:
        if not self.config.enable_segment_point_optimizer:
            return None
        point_solver: CapacitySegmentToPointSolver = self.solvers["segment_to_point"]
        return CapacitySegmentPointOptimizer(
            point_solver.deduped_segments,
            point_solver.segment_id_to_node_ids,
            self.capacity_nodes,
            endpoint_port_points=self.endpoint_port_points,
            max_steps=self.config.optimizer_iterations,
            seed=self.config.optimizer_seed,
            initial_temperature=self.config.optimizer_initial_temperature,
            cooling_rate=self.config.optimizer_cooling_rate,
            via_diameter=self.config.via_diameter,
            obstacle_margin=self.config.obstacle_margin,
        )

    def _create_unravel(self) -> Optional[BaseSolver]:
        if not self.config.enable_unravel:
            return None
        point_solver: CapacitySegmentToPointSolver = self.solvers["segment_to_point"]
        return UnravelMultiSectionSolver(
            point_solver.deduped_segments,
            point_solver.segment_id_to_node_ids,
            self.capacity_nodes,
            endpoint_port_points=self.endpoint_port_points,
            mutable_hops=self.config.unravel_mutable_hops,
            max_candidates=self.config.unravel_max_candidates,
            pf_threshold=self.config.unravel_pf_threshold,
            max_iterations_per_section=self.config.unravel_max_iterations_per_section,
            max_sections=self.config.max_unravel_sections,
            cache_provider=self.cache_provider,
            connectivity=self.connectivity,
        )

    def _create_high_density(self) -> BaseSolver:
        if self.high_density_defs is None:
            self.high_density_defs = load_hyperparameter_defs("high_density")
        return HighDensitySolver(
            self.nodes_with_port_points,
            hyper_parameter_defs=self.high_density_defs,
            trace_thickness=self.config.trace_thickness,
            via_diameter=self.config.via_diameter,
            obstacle_margin=self.config.obstacle_margin,
            connectivity=self.connectivity,
            max_iterations_per_node=self.config.high_density_max_iterations,
        )

    def _on_high_density(self, solver: HighDensitySolver):
        self.hd_routes = list(solver.routes)
        for node_id, names in solver.unsolved_connections_by_node.items():
            for name in names:
                self.connection_failures.setdefault(
                    name, f"could not be routed inside node {node_id}"
                )

    def _create_stitching(self) -> BaseSolver:
        routed = {p.connection_name for p in self.capacity_paths}
        connections = [c for c in self.srj_with_point_pairs.connections if c.name in routed]
        return MultipleHighDensityRouteStitchSolver(
            connections,
            self.hd_routes,
            stitch_tolerance=self.config.stitch_tolerance,
            trace_thickness=self.config.trace_thickness,
            via_diameter=self.config.via_diameter,
        )

    def _on_stitching(self, solver: MultipleHighDensityRouteStitchSolver):
        self.stitched_routes = list(solver.merged_hd_routes)
        for name in solver.failed_connection_names:
            self.connection_failures.setdefault(name, solver.failure_reasons[name])
        for name in solver.unstitched_fragments:
            self.connection_failures.setdefault(name, "route fragments could not be joined")

    def _create_via_removal(self) -> BaseSolver:
        return UselessViaRemovalSolver(
            self.stitched_routes,
            obstacles=self.srj.obstacles,
            connectivity=self.connectivity,
            obstacle_margin=self.config.obstacle_margin,
            spatial_index_strategy=self.config.spatial_index_strategy,
        )

    def _on_via_removal(self, solver: UselessViaRemovalSolver):
        self.final_routes = list(solver.get_optimized_routes())

    def _create_simplification(self) -> Optional[BaseSolver]:
        if not self.config.enable_path_simplification:
            return None
        return MultiSimplifiedPathSolver(
            self.final_routes,
            obstacles=self.srj.obstacles,
            connectivity=self.connectivity,
            obstacle_margin=self.config.obstacle_margin,
            spatial_index_strategy=self.config.spatial_index_strategy,
        )

    def _on_simplification(self, solver: MultiSimplifiedPathSolver):
        self.final_routes = list(solver.get_simplified_routes())

    # Stepping

    def get_current_phase(self) -> str:
        if self.current_step_index >= len(self.pipeline_def):
            return "none"
        return self.pipeline_def[self.current_step_index].name

    def _finish_phase(self, step: PipelineStep, solver: BaseSolver):
        elapsed = self.time_spent_on_phase.get(step.name, 0.0)
        if solver.failed:
            self.failed_sub_solvers.append(solver)
            logger.warning(f"Phase {step.name} failed after {elapsed:.2f}s: {solver.error}")
        else:
            logger.info(f"Phase {step.name} completed in {elapsed:.2f}s")
        if step.on_finished is not None:
            step.on_finished(solver)
        self.active_sub_solver = None
        self.current_step_index += 1

    def _finish_pipeline(self):
        self.progress = 1.0
        if self.connection_failures:
            self.fail(
                f"{len(self.connection_failures)} connection(s) could not be routed: "
                f"{', '.join(sorted(self.connection_failures))}"
            )
            return
        if self.failed_sub_solvers:
            self.fail(f"{self.failed_sub_solvers[0].name} failed: {self.failed_sub_solvers[0].error}")
            return
        self.solved = True

    def _step(self):
        if self.current_step_index >= len(self.pipeline_def):
            self._finish_pipeline()
            return
        step = self.pipeline_def[self.current_step_index]

        if self.active_sub_solver is None:
            solver = step.create()
            if solver is None:
                logger.debug(f"Skipping phase {step.name}")
                self.current_step_index += 1
                return
            logger.debug(f"Starting phase {step.name}")
            self.active_sub_solver = solver
            self.solvers[step.name] = solver
            self.time_spent_on_phase[step.name] = 0.0
            return

        solver = self.active_sub_solver
        started = time.perf_counter()
        solver.step()
        self.time_spent_on_phase[step.name] += time.perf_counter() - started

        if solver.solved:
            self._finish_phase(step, solver)
        elif solver.failed:
            if step.tolerate_failure:
                self._finish_phase(step, solver)
                return
            self.failed_sub_solvers.append(solver)
            self.active_sub_solver = None
            self.fail(f"Phase {step.name} failed: {solver.error}", solver.failure_kind)
            logger.warning(self.error)

        self.progress = (
            self.current_step_index + (solver.progress or 0)
        ) / len(self.pipeline_def)

    def solve_until_phase(self, phase: str):
        """Step until ``phase`` is the current phase (or the pipeline ends)."""
        while self.get_current_phase() != phase and not (self.solved or self.failed):
            self.step()

    # Output

    def get_net_name(self, connection_name: str) -> str:
        """Net a (possibly split) connection belongs to."""
        srj = self.srj_with_point_pairs or self.srj
        for connection in srj.connections:
            if connection.name == connection_name:
                return connection.net_name or connection.name
        return connection_name

    def get_output_routes(self, strict: bool = False) -> List[OutputRoute]:
        """One route or failure marker per point-pair connection, in input order.

        With ``strict=True`` an ``UnsolvableError`` is raised instead when
        any connection failed, or ``IterationBudgetExceeded`` when the
        pipeline ran out of iterations.
        """
        srj = self.srj_with_point_pairs or self.srj
        routes_by_name = {r.connection_name: r for r in self.final_routes or self.stitched_routes}
        output: List[OutputRoute] = []
        for connection in srj.connections:
            if len(connection.points_to_connect) < 2:
                continue
            reason = self.connection_failures.get(connection.name)
            route = routes_by_name.get(connection.name)
            if reason is None and route is None:
                reason = "not routed" if (self.solved or self.failed) else "pipeline not finished"
            if reason is not None:
                output.append(FailedRoute(connection.name, reason))
            else:
                output.append(route)

        if strict:
            failed = [r for r in output if isinstance(r, FailedRoute)]
            if failed:
                message = (
                    f"{len(failed)} connection(s) failed: "
                    + "; ".join(f"{f.connection_name} ({f.reason})" for f in failed)
                )
                if self.failure_kind == FailureKind.ITERATION_BUDGET_EXCEEDED:
                    raise IterationBudgetExceeded(message)
                raise UnsolvableError(message)
        return output

    def get_routes_by_net(self) -> Dict[str, List[HighDensityRoute]]:
        result: Dict[str, List[HighDensityRoute]] = {}
        for route in self.get_output_routes():
            if isinstance(route, HighDensityRoute):
                result.setdefault(self.get_net_name(route.connection_name), []).append(route)
        return result

    def to_dict(self) -> Dict:
        routes = []
        for route in self.get_output_routes():
            data = route.to_dict()
            data["netName"] = self.get_net_name(route.connection_name)
            routes.append(data)
        return {
            "solved": self.solved,
            "failed": self.failed,
            "error": self.error,
            "routes": routes,
            "timeSpentOnPhase": dict(self.time_spent_on_phase),
        }

    def visualize(self) -> GraphicsObject:
        if not (self.solved or self.failed) and self.active_sub_solver is not None:
            return self.active_sub_solver.visualize()

        problem = empty_graphics("Autorouting Pipeline")
        b = self.srj.bounds
        problem["lines"].append({
            "points": [
                {"x": b.min_x, "y": b.min_y},
                {"x": b.max_x, "y": b.min_y},
                {"x": b.max_x, "y": b.max_y},
                {"x": b.min_x, "y": b.max_y},
                {"x": b.min_x, "y": b.min_y},
            ],
            "layer": "board_outline",
        })
        for obstacle in self.srj.obstacles:
            problem["rects"].append({
                "center": {"x": obstacle.center.x, "y": obstacle.center.y},
                "width": obstacle.width,
                "height": obstacle.height,
                "layer": "obstacle",
                "label": ", ".join(obstacle.layers),
            })
        for connection in self.srj.connections:
            for point in connection.points_to_connect:
                problem["points"].append({
                    "x": point.x,
                    "y": point.y,
                    "label": f"{connection.name} {point.pcb_port_id or ''}".strip(),
                })

        last_phase = None
        for step in reversed(self.pipeline_def):
            if step.name in self.solvers:
                last_phase = self.solvers[step.name]
                break
        if last_phase is None:
            return problem
        return combine_visualizations(problem, last_phase.visualize())
