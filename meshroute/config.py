"""Router configuration, design rules and hyperparameter definitions.

All tunables are declared on dataclasses with explicit defaults. Variants
are derived with ``dataclasses.replace`` so shared defaults are never
mutated. Hyperparameter variant groups for the supervisors are loaded from
``defaults.yaml`` (or a user supplied file) and fall back to built-in
definitions when the file is missing.
"""

import logging
from dataclasses import dataclass, field, fields, replace, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

logger = logging.getLogger(__name__)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


@dataclass
class DesignRules:
    """Minimal manufacturing rules used by the router."""

    name: str
    description: str = ""

    trace_thickness: float = 0.15  # mm
    via_diameter: float = 0.6      # mm
    obstacle_margin: float = 0.1   # mm, clearance kept from obstacles and other traces


STANDARD = DesignRules(
    name="standard",
    description="Typical 2-layer prototype fab rules",
)

FINE_PITCH = DesignRules(
    name="fine_pitch",
    description="Tighter rules for dense boards",
    trace_thickness=0.1,
    via_diameter=0.45,
    obstacle_margin=0.08,
)

COARSE = DesignRules(
    name="coarse",
    description="Conservative rules for hand-assembled boards",
    trace_thickness=0.25,
    via_diameter=0.8,
    obstacle_margin=0.2,
)

DESIGN_RULES: Dict[str, DesignRules] = {
    "standard": STANDARD,
    "fine_pitch": FINE_PITCH,
    "coarse": COARSE,
}


def get_design_rules(name: str) -> DesignRules:
    """
    Get design rules by name.

    Raises:
        ValueError: If the profile name is not found
    """
    if name not in DESIGN_RULES:
        available = ", ".join(sorted(DESIGN_RULES.keys()))
        raise ValueError(f"Unknown design rules '{name}'. Available: {available}")
    return DESIGN_RULES[name]


def list_design_rules() -> List[str]:
    """List all available design rule profile names."""
    return list(DESIGN_RULES.keys())


@dataclass(frozen=True)
class HighDensityHyperParameters:
    """Tunables of the intra-node solvers.

    One instance describes one supervisor variant.
    """
    future_connection_prox_trace_penalty_factor: float = 2.0
    future_connection_prox_via_penalty_factor: float = 1.0
    future_connection_proximity_vd: float = 10.0  # In via diameters
    misaligned_dist_penalty_factor: float = 5.0
    via_penalty_factor_2: float = 1.0
    shuffle_seed: int = 0
    cell_size_factor: float = 1.0
    flip_trace_alignment_direction: bool = False

    # Strategy switches
    multi_head_polyline: bool = False
    max_vias_per_connection: int = 2  # Multi-head polyline search width
    boundary_padding: float = 0.05
    closed_form_two_trace_same_layer: bool = False
    closed_form_two_trace_transition_crossing: bool = False
    iteration_penalty: float = 0.0


@dataclass(frozen=True)
class PathingHyperParameters:
    """Tunables of the capacity pathing solvers."""
    shuffle_seed: int = 0
    greedy_multiplier: float = 1.1
    max_capacity_factor: float = 1.0
    negative_capacity_penalty_factor: float = 1.0
    reduced_capacity_penalty_factor: float = 1.0


HYPERPARAMETER_CLASSES = {
    "high_density": HighDensityHyperParameters,
    "capacity_pathing": PathingHyperParameters,
}


@dataclass
class RouterConfig:
    """Configuration for the autorouting pipeline."""
    # Mesh
    capacity_depth: Optional[int] = None  # None = derive from board size
    target_min_capacity: float = 0.5
    enable_target_merger: bool = True
    enable_single_layer_merger: bool = True
    enable_straws: bool = True
    straw_size: float = 0.5
    enable_dead_end_removal: bool = True

    # Design rules
    design_rules: DesignRules = field(default_factory=lambda: STANDARD)

    # Capacity pathing
    pathing_strategy: str = "multi_section"  # strict, greedy, negative_capacity, multi_section
    pathing_hyper_parameters: PathingHyperParameters = field(
        default_factory=PathingHyperParameters
    )
    section_expansion_degrees: int = 3
    max_section_optimizations: int = 50

    # Segment point optimizer (off by default)
    enable_segment_point_optimizer: bool = False
    optimizer_iterations: int = 2000
    optimizer_seed: int = 0
    optimizer_initial_temperature: float = 0.5
    optimizer_cooling_rate: float = 0.995

    # Unravel
    enable_unravel: bool = True
    unravel_mutable_hops: int = 1
    unravel_max_candidates: int = 500
    unravel_pf_threshold: float = 0.01
    unravel_max_iterations_per_section: int = 2000
    max_unravel_sections: int = 100

    # High density
    high_density_max_iterations: int = 250_000

    # Stitching and post-passes
    stitch_tolerance: float = 0.05
    enable_path_simplification: bool = True

    # Infrastructure
    spatial_index_strategy: str = "grid"  # grid, rtree, bulk
    enable_cache: bool = True
    max_iterations: int = 10_000_000

    @property
    def trace_thickness(self) -> float:
        return self.design_rules.trace_thickness

    @property
    def via_diameter(self) -> float:
        return self.design_rules.via_diameter

    @property
    def obstacle_margin(self) -> float:
        return self.design_rules.obstacle_margin

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RouterConfig":
        """Build a config from a flat mapping of overrides.

        ``design_rules`` may be a profile name or a mapping of rule values;
        ``pathing_hyper_parameters`` is a mapping of overrides.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown router config keys: {', '.join(sorted(unknown))}")

        kwargs = dict(data)
        rules = kwargs.get("design_rules")
        if isinstance(rules, str):
            kwargs["design_rules"] = get_design_rules(rules)
        elif isinstance(rules, dict):
            base = get_design_rules(rules.get("name", "standard"))
            kwargs["design_rules"] = replace(base, **rules)

        pathing = kwargs.get("pathing_hyper_parameters")
        if isinstance(pathing, dict):
            kwargs["pathing_hyper_parameters"] = build_hyper_parameters(
                "capacity_pathing", pathing
            )
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "RouterConfig":
        """Load overrides from a YAML file."""
        path = Path(path)
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Router config in {path} must be a mapping")
        logger.debug(f"Loaded router config from {path}")
        return cls.from_dict(data.get("router", data))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_hyper_parameters(kind: str, overrides: Dict[str, Any]):
    """Create a hyperparameter dataclass of ``kind`` with ``overrides`` applied."""
    hp_class = HYPERPARAMETER_CLASSES[kind]
    known = {f.name for f in fields(hp_class)}
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(
            f"Unknown {kind} hyperparameters: {', '.join(sorted(unknown))}"
        )
    return hp_class(**overrides)


def _get_default_hyperparameter_config() -> Dict:
    """Built-in variant definitions, used when defaults.yaml is unavailable."""
    return {
        "high_density": {
            "combinations": [
                ["multi_head_polyline"],
                ["major_combinations", "orderings6", "cell_size_factor"],
                ["no_vias"],
                ["orderings50"],
                ["flip_trace_alignment_direction", "orderings6"],
                ["closed_form_two_trace"],
            ],
            "parameter_groups": {
                "major_combinations": [
                    {
                        "future_connection_prox_trace_penalty_factor": 2,
                        "future_connection_prox_via_penalty_factor": 1,
                        "future_connection_proximity_vd": 10,
                        "misaligned_dist_penalty_factor": 5,
                    },
                    {
                        "future_connection_prox_trace_penalty_factor": 1,
                        "future_connection_prox_via_penalty_factor": 0.5,
                        "future_connection_proximity_vd": 5,
                        "misaligned_dist_penalty_factor": 2,
                    },
                    {
                        "future_connection_prox_trace_penalty_factor": 10,
                        "future_connection_prox_via_penalty_factor": 1,
                        "future_connection_proximity_vd": 5,
                        "misaligned_dist_penalty_factor": 10,
                        "via_penalty_factor_2": 1,
                    },
                ],
                "orderings6": {"parameter": "shuffle_seed", "range": [0, 6]},
                "cell_size_factor": [
                    {"cell_size_factor": 0.5},
                    {"cell_size_factor": 1},
                ],
                "flip_trace_alignment_direction": [
                    {"flip_trace_alignment_direction": True},
                ],
                "no_vias": [
                    {"cell_size_factor": 2, "via_penalty_factor_2": 10},
                ],
                "orderings50": {"parameter": "shuffle_seed", "range": [100, 150]},
                "closed_form_two_trace": [
                    {"closed_form_two_trace_same_layer": True},
                    {"closed_form_two_trace_transition_crossing": True},
                ],
                "multi_head_polyline": [
                    {"multi_head_polyline": True, "max_vias_per_connection": 2,
                     "boundary_padding": 0.05},
                    {"multi_head_polyline": True, "max_vias_per_connection": 2,
                     "boundary_padding": -0.05, "iteration_penalty": 10000},
                ],
            },
        },
        "capacity_pathing": {
            "combinations": [["orderings10"]],
            "parameter_groups": {
                "orderings10": {"parameter": "shuffle_seed", "range": [0, 10]},
            },
        },
        "colors": {
            "background": "#1a1a2e",
            "board_outline": "#ff4d4d",
            "obstacle": "rgba(255,0,0,0.3)",
            "node": "rgba(0,0,0,0.1)",
            "node_obstacle": "rgba(255,0,0,0.1)",
            "edge": "rgba(150,150,150,0.5)",
            "via": "#c0c0c0",
            "label": "#ffffff",
            "layers": ["#e74c3c", "#3498db", "#2ecc71", "#f39c12"],
        },
    }


def load_config_file(path: Optional[Union[str, Path]] = None) -> Dict:
    """Load the full defaults mapping, falling back to built-in values."""
    config_path = Path(path) if path else DEFAULTS_PATH

    try:
        if not config_path.exists():
            logger.warning(
                f"Hyperparameter config not found at {config_path}, using defaults"
            )
            return _get_default_hyperparameter_config()

        with open(config_path, "r") as f:
            config = yaml.safe_load(f) or {}

        logger.debug(f"Loaded hyperparameter config from {config_path}")

    except yaml.YAMLError as e:
        logger.error(f"Failed to parse hyperparameter config: {e}")
        return _get_default_hyperparameter_config()

    defaults = _get_default_hyperparameter_config()
    for section, value in defaults.items():
        config.setdefault(section, value)
    return config


def _expand_group(group: Union[List[Dict], Dict]) -> List[Dict[str, Any]]:
    """Expand a group definition into a list of override dicts.

    A group is either an explicit list of override dicts or a compact
    ``{"parameter": name, "range": [start, stop]}`` mapping.
    """
    if isinstance(group, dict):
        start, stop = group["range"]
        return [{group["parameter"]: value} for value in range(start, stop)]
    return [dict(values) for values in group]


@dataclass
class HyperParameterDefs:
    """Variant groups and the combinations the supervisor takes cross products of."""
    combinations: List[List[str]]
    parameter_groups: Dict[str, List[Dict[str, Any]]]


def load_hyperparameter_defs(
    kind: str = "high_density", path: Optional[Union[str, Path]] = None
) -> HyperParameterDefs:
    """Load the supervisor variant definitions for ``kind``."""
    if kind not in HYPERPARAMETER_CLASSES:
        raise ValueError(f"Unknown hyperparameter kind '{kind}'")
    section = load_config_file(path).get(kind) or _get_default_hyperparameter_config()[kind]

    groups = {
        name: _expand_group(group)
        for name, group in section.get("parameter_groups", {}).items()
    }
    combinations = [list(combo) for combo in section.get("combinations", [])]
    for combo in combinations:
        for name in combo:
            if name not in groups:
                raise ValueError(f"Combination references unknown group '{name}'")
    return HyperParameterDefs(combinations=combinations, parameter_groups=groups)


def load_colors(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load visualization colors."""
    return load_config_file(path).get("colors", {})
