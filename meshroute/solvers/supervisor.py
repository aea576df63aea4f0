"""Hyperparameter supervisor.

Runs competing sub-solvers built from a cross product of hyperparameter
variants. The sub-solver with the lowest ``f = g + h * greedy_multiplier``
is stepped next, so solvers that make progress get more iterations. The
first sub-solver to reach ``solved`` wins.
"""

import logging
from dataclasses import dataclass
from itertools import product
from typing import Any, Dict, List, Optional

from ..config import HyperParameterDefs
from .base import BaseSolver, GraphicsObject, empty_graphics

logger = logging.getLogger(__name__)


@dataclass
class SupervisedSolver:
    """A sub-solver and its scheduling scores."""
    index: int
    hyper_parameters: Dict[str, Any]
    solver: BaseSolver
    g: float = 0.0
    h: float = 0.0
    f: float = 0.0


def get_hyper_parameter_combinations(defs: HyperParameterDefs) -> List[Dict[str, Any]]:
    """Expand every combination into merged override dicts, in declaration order.

    Within one combination the first group varies slowest.
    """
    combinations: List[Dict[str, Any]] = []
    for combo in defs.combinations:
        groups = [defs.parameter_groups[name] for name in combo]
        for values in product(*groups):
            merged: Dict[str, Any] = {}
            for overrides in values:
                merged.update(overrides)
            combinations.append(merged)
    return combinations


class HyperParameterSupervisor(BaseSolver):
    """Base class for solvers that supervise hyperparameter variants.

    Subclasses implement ``get_hyper_parameter_defs()`` and
    ``generate_solver(hyper_parameters)``, and may override ``compute_g``,
    ``compute_h``, ``on_solve`` and ``count_unsolved``.
    """

    GREEDY_MULTIPLIER = 1.0
    MIN_SUBSTEPS = 1

    def __init__(self, max_iterations: Optional[int] = None):
        super().__init__(max_iterations)
        self.greedy_multiplier = self.GREEDY_MULTIPLIER
        self.min_substeps = self.MIN_SUBSTEPS
        self.supervised_solvers: Optional[List[SupervisedSolver]] = None
        self.winning_solver: Optional[SupervisedSolver] = None

    def get_hyper_parameter_defs(self) -> HyperParameterDefs:
        raise NotImplementedError

    def generate_solver(self, hyper_parameters: Dict[str, Any]) -> BaseSolver:
        raise NotImplementedError

    def compute_g(self, solver: BaseSolver) -> float:
        return solver.iterations

    def compute_h(self, solver: BaseSolver) -> float:
        return (1 - solver.compute_progress()) * solver.max_iterations

    def on_solve(self, supervised: SupervisedSolver):
        """Hook called once with the winning sub-solver."""

    def count_unsolved(self, solver: BaseSolver) -> int:
        return 0 if solver.solved else 1

    def get_failure_message(self) -> str:
        return f"All {len(self.supervised_solvers or [])} {self.name} sub-solvers failed"

    def initialize_solvers(self):
        combinations = get_hyper_parameter_combinations(self.get_hyper_parameter_defs())
        self.supervised_solvers = []
        for index, hyper_parameters in enumerate(combinations):
            solver = self.generate_solver(hyper_parameters)
            if solver is None:
                continue
            supervised = SupervisedSolver(index, hyper_parameters, solver)
            self._score(supervised)
            self.supervised_solvers.append(supervised)
        logger.debug(f"{self.name} initialized {len(self.supervised_solvers)} sub-solvers")

    def _score(self, supervised: SupervisedSolver):
        supervised.g = self.compute_g(supervised.solver)
        supervised.h = self.compute_h(supervised.solver)
        supervised.f = supervised.g + supervised.h * self.greedy_multiplier

    def get_supervised_solver_with_best_fitness(self) -> Optional[SupervisedSolver]:
        best: Optional[SupervisedSolver] = None
        for supervised in self.supervised_solvers or []:
            if supervised.solver.failed or supervised.solver.solved:
                continue
            if best is None or supervised.f < best.f:
                best = supervised
        return best

    @property
    def best_partial_solver(self) -> Optional[BaseSolver]:
        """Sub-solver with the fewest unsolved connections, for diagnostics."""
        candidates = self.supervised_solvers or []
        if not candidates:
            return None
        best = min(candidates, key=lambda s: (self.count_unsolved(s.solver), s.index))
        return best.solver

    def _step(self):
        if self.supervised_solvers is None:
            self.initialize_solvers()

        supervised = self.get_supervised_solver_with_best_fitness()
        if supervised is None:
            self.fail(self.get_failure_message())
            return

        for _ in range(self.min_substeps):
            supervised.solver.step()
            if supervised.solver.solved or supervised.solver.failed:
                break

        if supervised.solver.solved:
            self.winning_solver = supervised
            self.active_sub_solver = supervised.solver
            self.solved = True
            self.progress = 1.0
            logger.debug(
                f"{self.name} solved by variant {supervised.index} {supervised.hyper_parameters}"
            )
            self.on_solve(supervised)
            return

        if supervised.solver.failed:
            self.failed_sub_solvers.append(supervised.solver)

        self._score(supervised)
        self.progress = max(
            (s.solver.compute_progress() for s in self.supervised_solvers), default=0.0
        )

    def visualize(self) -> GraphicsObject:
        if self.winning_solver is not None:
            return self.winning_solver.solver.visualize()
        best = self.get_supervised_solver_with_best_fitness()
        if best is not None:
            return best.solver.visualize()
        return empty_graphics(self.name)
