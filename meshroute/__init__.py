"""
meshroute - Capacity-Mesh PCB Autorouter

Routes point-to-point connections on a multi-layer board by subdividing it
into a capacity mesh, pathing each connection through the mesh, and then
resolving collision-free traces and vias inside every mesh node.
"""

__version__ = "0.1.0"
__author__ = "meshroute developers"

from .types import (
    Bounds,
    Connection,
    ConnectionPoint,
    FailedRoute,
    HighDensityRoute,
    Obstacle,
    SimpleRouteJson,
)
from .config import RouterConfig, DesignRules, get_design_rules
from .errors import (
    FailureKind,
    InvariantViolation,
    IterationBudgetExceeded,
    MeshRouteError,
    UnsolvableError,
)
from .pipeline import AutoroutingPipeline

__all__ = [
    "Bounds",
    "Connection",
    "ConnectionPoint",
    "FailedRoute",
    "HighDensityRoute",
    "Obstacle",
    "SimpleRouteJson",
    "RouterConfig",
    "DesignRules",
    "get_design_rules",
    "FailureKind",
    "InvariantViolation",
    "IterationBudgetExceeded",
    "MeshRouteError",
    "UnsolvableError",
    "AutoroutingPipeline",
]
