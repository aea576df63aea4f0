"""Issue detection and cost for unravel candidates."""

from typing import Callable, Dict, List, Optional

from ..connectivity import ConnectivityMap
from ..geometry import do_segments_intersect
from ..types import CapacityMeshNode, CapacityMeshNodeId, Point
from ..segments.crossings import estimate_probability_of_failure, get_log_probability_cost
from .types import (
    PointModification,
    PointModifications,
    SegmentPoint,
    SegmentPointId,
    UnravelIssue,
    UnravelOperation,
    UnravelSection,
)


def has_z_range_overlap(a_z1: int, a_z2: int, b_z1: int, b_z2: int) -> bool:
    return min(a_z1, a_z2) <= max(b_z1, b_z2) and max(a_z1, a_z2) >= min(b_z1, b_z2)


def get_point_with_modification(point: SegmentPoint, modification: Optional[PointModification]):
    """(x, y, z) of a segment point with any modification applied."""
    if modification is None:
        return point.x, point.y, point.z
    return (
        point.x if modification.x is None else modification.x,
        point.y if modification.y is None else modification.y,
        point.z if modification.z is None else modification.z,
    )


def get_issues_in_section(
    section: UnravelSection,
    node_map: Dict[CapacityMeshNodeId, CapacityMeshNode],
    point_modifications: PointModifications,
    connectivity: Optional[ConnectivityMap] = None,
) -> List[UnravelIssue]:
    issues: List[UnravelIssue] = []
    positions = {
        sp_id: get_point_with_modification(point, point_modifications.get(sp_id))
        for sp_id, point in section.segment_point_map.items()
    }

    for node_id in section.all_node_ids:
        if node_id not in node_map:
            continue
        pairs = section.segment_pairs_in_node.get(node_id, [])

        for pair in pairs:
            if positions[pair[0]][2] != positions[pair[1]][2]:
                issues.append(UnravelIssue(
                    type="transition_via",
                    capacity_mesh_node_id=node_id,
                    segment_points=pair,
                ))

        for i in range(len(pairs)):
            for j in range(i + 1, len(pairs)):
                pair1, pair2 = pairs[i], pairs[j]
                if connectivity is not None:
                    name1 = section.segment_point_map[pair1[0]].connection_name
                    name2 = section.segment_point_map[pair2[0]].connection_name
                    if connectivity.are_ids_connected(name1, name2):
                        continue
                ax, ay, az = positions[pair1[0]]
                bx, by, bz = positions[pair1[1]]
                cx, cy, cz = positions[pair2[0]]
                dx, dy, dz = positions[pair2[1]]
                if not has_z_range_overlap(az, bz, cz, dz):
                    continue
                if not do_segments_intersect(Point(ax, ay), Point(bx, by), Point(cx, cy), Point(dx, dy)):
                    continue

                if az == bz and cz == dz and az == cz:
                    issue_type = "same_layer_crossing"
                    line1, line2 = pair1, pair2
                elif az == bz and cz != dz:
                    issue_type = "single_transition_crossing"
                    line1, line2 = pair1, pair2
                elif az != bz and cz == dz:
                    issue_type = "single_transition_crossing"
                    line1, line2 = pair2, pair1
                else:
                    issue_type = "double_transition_crossing"
                    line1, line2 = pair1, pair2
                issues.append(UnravelIssue(
                    type=issue_type,
                    capacity_mesh_node_id=node_id,
                    segment_points=tuple(pair1) + tuple(pair2),
                    crossing_line1=line1,
                    crossing_line2=line2,
                ))
    return issues


def compute_issues_cost(
    issues: List[UnravelIssue], tuned_capacity_map: Dict[CapacityMeshNodeId, float]
) -> float:
    """Summed log failure probability of every node with issues."""
    counts: Dict[CapacityMeshNodeId, List[int]] = {}
    for issue in issues:
        # [same layer, entry/exit layer change, transition]
        node_counts = counts.setdefault(issue.capacity_mesh_node_id, [0, 0, 0])
        if issue.type == "transition_via":
            node_counts[2] += 1
        elif issue.type == "same_layer_crossing":
            node_counts[0] += 1
        else:
            node_counts[1] += 1

    cost = 0.0
    for node_id, (same_layer, layer_changes, transitions) in counts.items():
        pf = estimate_probability_of_failure(
            tuned_capacity_map.get(node_id, 1.0), same_layer, layer_changes, transitions
        )
        cost += get_log_probability_cost(pf)
    return cost


def apply_operation_to_point_modifications(
    point_modifications: PointModifications,
    operation: UnravelOperation,
    get_point: Callable[[SegmentPointId], tuple],
):
    """Apply ``operation`` in place; ``get_point`` returns the current (x, y, z)."""
    if operation.type == "change_layer":
        for sp_id in operation.segment_point_ids:
            existing = point_modifications.get(sp_id, PointModification())
            point_modifications[sp_id] = existing.merged(PointModification(z=operation.new_z))
    elif operation.type == "swap_position_on_segment":
        a_id, b_id = operation.segment_point_ids
        ax, ay, _ = get_point(a_id)
        bx, by, _ = get_point(b_id)
        existing_a = point_modifications.get(a_id, PointModification())
        existing_b = point_modifications.get(b_id, PointModification())
        point_modifications[a_id] = existing_a.merged(PointModification(x=bx, y=by))
        point_modifications[b_id] = existing_b.merged(PointModification(x=ax, y=ay))
    else:
        raise ValueError(f"Unknown unravel operation '{operation.type}'")
