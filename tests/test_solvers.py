"""
Tests for the solver substrate and shared helpers.

Tests cover:
- BaseSolver stepping and iteration budget
- Visualization merging
- HyperParameterSupervisor scheduling and failure
- Seeded shuffling and tuned capacity
"""

import pytest

from meshroute.config import HyperParameterDefs
from meshroute.errors import FailureKind
from meshroute.solvers.base import BaseSolver, combine_visualizations, empty_graphics
from meshroute.solvers.supervisor import (
    HyperParameterSupervisor,
    get_hyper_parameter_combinations,
)
from meshroute.types import CapacityMeshEdge
from meshroute.utils import (
    calculate_optimal_capacity_depth,
    clone_and_shuffle,
    get_node_edge_map,
    get_tuned_total_capacity,
    seeded_random,
)


# =============================================================================
# Fixtures
# =============================================================================

class CountdownSolver(BaseSolver):
    """Solves after ``steps`` steps, or fails on its first step when ``steps`` is 0."""

    def __init__(self, steps: int):
        super().__init__()
        self.steps = steps

    def _step(self):
        if self.steps == 0:
            self.fail("no steps")
            return
        self.progress = self.iterations / self.steps
        if self.iterations >= self.steps:
            self.solved = True


class NeverSolver(BaseSolver):
    def _step(self):
        pass


class CountdownSupervisor(HyperParameterSupervisor):
    def __init__(self, step_options):
        super().__init__()
        self.step_options = step_options
        self.solved_with = None

    def get_hyper_parameter_defs(self) -> HyperParameterDefs:
        return HyperParameterDefs(
            combinations=[["speed"]],
            parameter_groups={"speed": [{"steps": s} for s in self.step_options]},
        )

    def generate_solver(self, hyper_parameters):
        if hyper_parameters["steps"] is None:
            return None
        return CountdownSolver(hyper_parameters["steps"])

    def on_solve(self, supervised):
        self.solved_with = supervised.hyper_parameters


# =============================================================================
# BaseSolver Tests
# =============================================================================

class TestBaseSolver:
    """Tests for the step loop."""

    def test_solve_runs_until_solved(self):
        solver = CountdownSolver(3)
        solver.solve()
        assert solver.solved
        assert solver.iterations == 3
        assert solver.time_to_solve is not None

    def test_iteration_budget_fails(self):
        """Running out of iterations fails instead of raising."""
        solver = NeverSolver(max_iterations=5)
        solver.solve()
        assert solver.failed
        assert solver.iterations == 5
        assert solver.failure_kind == FailureKind.ITERATION_BUDGET_EXCEEDED
        assert "NeverSolver" in solver.error

    def test_step_after_finish_is_noop(self):
        solver = CountdownSolver(1)
        solver.solve()
        solver.step()
        assert solver.iterations == 1

    def test_fail_defaults_to_unsolvable(self):
        solver = CountdownSolver(0)
        solver.solve()
        assert solver.failure_kind == FailureKind.UNSOLVABLE
        assert solver.error == "no steps"

    def test_default_visualization_is_empty(self):
        graphics = NeverSolver().visualize()
        assert graphics["title"] == "NeverSolver"
        assert graphics["lines"] == []


class TestCombineVisualizations:
    """Tests for merging snapshots."""

    def test_items_tagged_with_step(self):
        first = empty_graphics()
        first["points"].append({"x": 0, "y": 0})
        second = empty_graphics()
        second["lines"].append({"points": [{"x": 0, "y": 0}, {"x": 1, "y": 1}]})

        combined = combine_visualizations(first, None, second)
        assert combined["points"][0]["step"] == 0
        assert combined["lines"][0]["step"] == 1
        assert "step" not in first["points"][0]


# =============================================================================
# Supervisor Tests
# =============================================================================

class TestHyperParameterSupervisor:
    """Tests for variant scheduling."""

    def test_combinations_cross_product(self):
        """The first group of a combination varies slowest."""
        defs = HyperParameterDefs(
            combinations=[["a", "b"], ["c"]],
            parameter_groups={
                "a": [{"x": 1}, {"x": 2}],
                "b": [{"y": 1}, {"y": 2}],
                "c": [{"x": 9, "z": True}],
            },
        )
        combos = get_hyper_parameter_combinations(defs)
        assert combos == [
            {"x": 1, "y": 1},
            {"x": 1, "y": 2},
            {"x": 2, "y": 1},
            {"x": 2, "y": 2},
            {"x": 9, "z": True},
        ]

    def test_progressing_variant_keeps_stepping(self):
        """A variant that makes progress lowers its f and is stepped again."""
        supervisor = CountdownSupervisor([5, 2])
        supervisor.solve()
        assert supervisor.solved
        assert supervisor.solved_with == {"steps": 5}
        assert supervisor.supervised_solvers[1].solver.iterations == 0

    def test_failed_variant_is_replaced(self):
        """After a variant fails the next best one is stepped."""
        supervisor = CountdownSupervisor([0, 3, None])
        supervisor.solve()
        assert supervisor.solved
        assert supervisor.solved_with == {"steps": 3}
        assert supervisor.winning_solver.index == 1
        assert len(supervisor.failed_sub_solvers) == 1

    def test_skipped_variants(self):
        """generate_solver may return None to skip a variant."""
        supervisor = CountdownSupervisor([None, 3])
        supervisor.solve()
        assert len(supervisor.supervised_solvers) == 1
        assert supervisor.solved

    def test_fails_when_all_variants_fail(self):
        supervisor = CountdownSupervisor([0, 0])
        supervisor.solve()
        assert supervisor.failed
        assert "All 2" in supervisor.error
        assert len(supervisor.failed_sub_solvers) == 2
        assert supervisor.best_partial_solver is not None


# =============================================================================
# Helper Tests
# =============================================================================

class TestShuffling:
    """Tests for deterministic shuffling."""

    def test_seed_zero_keeps_order(self):
        items = list(range(10))
        assert clone_and_shuffle(items, 0) == items

    def test_small_lists_use_preshuffled_orders(self):
        assert clone_and_shuffle(["a", "b", "c"], 1) == ["c", "a", "b"]

    def test_large_lists_are_seeded_permutations(self):
        items = list(range(20))
        shuffled = clone_and_shuffle(items, 5)
        assert sorted(shuffled) == items
        assert shuffled == clone_and_shuffle(items, 5)
        assert items == list(range(20))

    def test_seeded_random_range(self):
        rng = seeded_random(3)
        values = [rng() for _ in range(100)]
        assert all(0 <= v < 1 for v in values)
        other = seeded_random(3)
        assert values == [other() for _ in range(100)]


class TestCapacity:
    """Tests for tuned node capacity."""

    def test_capacity_grows_with_width(self):
        assert get_tuned_total_capacity(10) > get_tuned_total_capacity(2)

    def test_single_layer_capacity_capped(self):
        """Traces cannot cross on one layer, so one connection at most."""
        assert get_tuned_total_capacity(50, available_z_count=1) == 1.0

    def test_optimal_depth_grows_with_board(self):
        small = calculate_optimal_capacity_depth(10)
        large = calculate_optimal_capacity_depth(100)
        assert large > small >= 1

    def test_node_edge_map(self):
        edges = [
            CapacityMeshEdge("ce0", ("n1", "n2")),
            CapacityMeshEdge("ce1", ("n2", "n3")),
        ]
        edge_map = get_node_edge_map(edges)
        assert [e.capacity_mesh_edge_id for e in edge_map["n2"]] == ["ce0", "ce1"]
        assert edge_map["n3"][0].other("n3") == "n2"
