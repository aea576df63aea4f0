"""High-density routing inside mesh nodes.

- IntraNodeRouteSolver: sequential grid A* per connection
- TwoCrossingRoutesSolver / SingleTransitionCrossingRouteSolver: closed-form two-route cases
- MultiHeadPolyLineIntraNodeSolver: all connections at once through candidate vias
- HyperSingleIntraNodeSolver: runs the variants of one node, first solved wins
- HighDensitySolver: every node of the board
"""

from .routes import (
    IntraNodeConnection,
    find_route_conflicts,
    get_connections_from_node,
    get_min_dist_between_entering_points,
    make_route,
)
from .single_route import SingleHighDensityRouteSolver
from .intra_node import IntraNodeRouteSolver, visualize_intra_node_routes
from .two_route import SingleTransitionCrossingRouteSolver, TwoCrossingRoutesSolver
from .multi_head import MultiHeadPolyLineIntraNodeSolver
from .hyper_intra_node import HyperSingleIntraNodeSolver
from .solver import HighDensitySolver

__all__ = [
    "IntraNodeConnection",
    "find_route_conflicts",
    "get_connections_from_node",
    "get_min_dist_between_entering_points",
    "make_route",
    "SingleHighDensityRouteSolver",
    "IntraNodeRouteSolver",
    "visualize_intra_node_routes",
    "SingleTransitionCrossingRouteSolver",
    "TwoCrossingRoutesSolver",
    "MultiHeadPolyLineIntraNodeSolver",
    "HyperSingleIntraNodeSolver",
    "HighDensitySolver",
]
