"""Step-based solver substrate shared by every pipeline stage.

A solver advances only when ``step()`` is called. ``solve()`` drains the
step loop until the solver is ``solved`` or ``failed``; exhausting the
iteration budget marks the solver failed (it never raises for that).
"""

import logging
import time
from typing import Any, Dict, List, Optional

from ..errors import FailureKind

logger = logging.getLogger(__name__)

# Renderable snapshot: {"points": [...], "lines": [...], "rects": [...], "circles": [...]}
GraphicsObject = Dict[str, Any]


def empty_graphics(title: Optional[str] = None) -> GraphicsObject:
    graphics: GraphicsObject = {"points": [], "lines": [], "rects": [], "circles": []}
    if title:
        graphics["title"] = title
    return graphics


def combine_visualizations(*graphics_objects: Optional[GraphicsObject]) -> GraphicsObject:
    """Merge several snapshots, tagging each item with the index of its source."""
    combined = empty_graphics()
    for step, graphics in enumerate(g for g in graphics_objects if g):
        for key in ("points", "lines", "rects", "circles"):
            for item in graphics.get(key, []):
                tagged = dict(item)
                tagged.setdefault("step", step)
                combined[key].append(tagged)
    return combined


class BaseSolver:
    """Common state machine for all solvers.

    Subclasses implement ``_step()`` (one bounded unit of work) and
    optionally ``visualize()``.
    """

    MAX_ITERATIONS = 100_000

    def __init__(self, max_iterations: Optional[int] = None):
        self.solved = False
        self.failed = False
        self.iterations = 0
        self.max_iterations = max_iterations if max_iterations is not None else self.MAX_ITERATIONS
        self.progress = 0.0
        self.error: Optional[str] = None
        self.failure_kind: Optional[FailureKind] = None
        self.active_sub_solver: Optional["BaseSolver"] = None
        self.failed_sub_solvers: List["BaseSolver"] = []
        self.time_to_solve: Optional[float] = None

    @property
    def name(self) -> str:
        return type(self).__name__

    def step(self):
        """Perform one unit of work. No-op once solved or failed."""
        if self.solved or self.failed:
            return

        self.iterations += 1
        self._step()

        if not self.solved and not self.failed and self.iterations >= self.max_iterations:
            self.fail_with_timeout()

    def _step(self):
        raise NotImplementedError

    def solve(self):
        """Step until solved, failed, or the iteration budget runs out."""
        start_time = time.perf_counter()
        while not self.solved and not self.failed:
            self.step()
        self.time_to_solve = time.perf_counter() - start_time

    def fail(self, error: str, kind: FailureKind = FailureKind.UNSOLVABLE):
        self.failed = True
        self.error = error
        self.failure_kind = kind

    def fail_with_timeout(self):
        self.fail(
            f"{self.name} ran out of iterations ({self.max_iterations})",
            FailureKind.ITERATION_BUDGET_EXCEEDED,
        )
        logger.debug(self.error)

    def compute_progress(self) -> float:
        return self.progress

    def visualize(self) -> GraphicsObject:
        """Renderable snapshot of the current state. Must not mutate state."""
        return empty_graphics(self.name)
