"""Error taxonomy for the routing pipeline.

Routing failures are never raised from ``solve()``: solvers record them on
``failed`` / ``error`` / ``failure_kind`` and the orchestrator aggregates
them. Only internal bugs (``InvariantViolation``) propagate as exceptions.
"""

from enum import Enum


class FailureKind(Enum):
    """Why a solver ended up in the ``failed`` state."""
    UNSOLVABLE = "unsolvable"                  # Constraints prevent a solution
    ITERATION_BUDGET_EXCEEDED = "iteration_budget_exceeded"  # Safety fuse


class MeshRouteError(Exception):
    """Base class for all meshroute exceptions."""


class UnsolvableError(MeshRouteError):
    """A connection cannot be routed with the current parameters.

    Only raised when a caller explicitly asks for strict output from a
    solver that has failed.
    """


class IterationBudgetExceeded(MeshRouteError):
    """A solver exhausted its iteration budget before converging."""


class InvariantViolation(MeshRouteError):
    """Internal consistency check failed (e.g. unknown node id).

    This signals a bug and is never swallowed inside the package.
    """
