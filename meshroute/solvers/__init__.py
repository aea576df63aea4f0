"""Solver framework: stepwise solvers and hyperparameter supervision."""

from .base import BaseSolver, GraphicsObject, combine_visualizations, empty_graphics
from .supervisor import HyperParameterSupervisor, SupervisedSolver, get_hyper_parameter_combinations

__all__ = [
    "BaseSolver",
    "GraphicsObject",
    "combine_visualizations",
    "empty_graphics",
    "HyperParameterSupervisor",
    "SupervisedSolver",
    "get_hyper_parameter_combinations",
]
