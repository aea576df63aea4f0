"""Data types of the unravel stage."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from ..types import CapacityMeshNodeId, PortPoint

SegmentId = str
SegmentPointId = str


@dataclass
class SegmentPoint:
    """One assigned point of a deduplicated segment.

    ``port_point`` is the assignment this point was created from; applying
    an unravel result writes the new position back to it.
    """
    segment_point_id: SegmentPointId
    segment_id: SegmentId
    capacity_mesh_node_ids: List[CapacityMeshNodeId]
    connection_name: str
    x: float
    y: float
    z: int
    directly_connected_segment_point_ids: List[SegmentPointId] = field(default_factory=list)
    port_point: Optional[PortPoint] = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class PointModification:
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[int] = None

    def merged(self, other: "PointModification") -> "PointModification":
        return PointModification(
            x=other.x if other.x is not None else self.x,
            y=other.y if other.y is not None else self.y,
            z=other.z if other.z is not None else self.z,
        )


PointModifications = Dict[SegmentPointId, PointModification]


@dataclass
class UnravelOperation:
    """``change_layer`` (moves points to ``new_z``) or ``swap_position_on_segment``."""
    type: str
    segment_point_ids: List[SegmentPointId]
    new_z: Optional[int] = None


@dataclass
class UnravelIssue:
    """Something that costs vias inside a node.

    Types: ``transition_via``, ``same_layer_crossing``,
    ``single_transition_crossing`` and ``double_transition_crossing``.
    For single transition crossings ``crossing_line1`` is the flat line.
    """
    type: str
    capacity_mesh_node_id: CapacityMeshNodeId
    segment_points: Tuple[SegmentPointId, ...] = ()
    crossing_line1: Optional[Tuple[SegmentPointId, SegmentPointId]] = None
    crossing_line2: Optional[Tuple[SegmentPointId, SegmentPointId]] = None
    probability_of_failure: float = 0.0


@dataclass
class UnravelSection:
    all_node_ids: List[CapacityMeshNodeId]
    mutable_node_ids: List[CapacityMeshNodeId]
    immutable_node_ids: List[CapacityMeshNodeId]
    mutable_segment_ids: Set[SegmentId]
    segment_pairs_in_node: Dict[CapacityMeshNodeId, List[Tuple[SegmentPointId, SegmentPointId]]]
    segment_point_map: Dict[SegmentPointId, SegmentPoint]
    segment_points_in_node: Dict[CapacityMeshNodeId, List[SegmentPointId]]
    segment_points_in_segment: Dict[SegmentId, List[SegmentPointId]]


@dataclass
class UnravelCandidate:
    """A set of point modifications and the issues they leave.

    ``g`` is the summed log failure probability of the section; there is no
    useful estimate of the remaining cost, so ``h`` is 0 and ``f == g``.
    """
    point_modifications: PointModifications
    issues: List[UnravelIssue]
    g: float
    h: float
    f: float
    operations_performed: int
    candidate_hash: str


def create_point_modifications_hash(point_modifications: PointModifications) -> str:
    def fmt(value) -> str:
        return "" if value is None else repr(value)

    return "&".join(sorted(
        f"{sp_id}({fmt(mod.x)},{fmt(mod.y)},{fmt(mod.z)})"
        for sp_id, mod in point_modifications.items()
    ))
