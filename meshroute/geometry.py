"""Planar geometry helpers used throughout the router.

Functions accept any object with ``x`` / ``y`` attributes (Point, RoutePoint,
PortPoint) and return :class:`~meshroute.types.Point` instances.
"""

import math
from typing import Dict, List, Optional, Sequence, Tuple

from .types import Bounds, Point

EPSILON = 1e-9


def distance(a, b) -> float:
    """Euclidean distance between two points."""
    return math.hypot(a.x - b.x, a.y - b.y)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def midpoint(a, b) -> Point:
    return Point((a.x + b.x) / 2, (a.y + b.y) / 2)


def closest_point_on_segment(p, a, b) -> Point:
    """Project ``p`` onto segment ``ab``."""
    dx = b.x - a.x
    dy = b.y - a.y
    length_sq = dx * dx + dy * dy
    if length_sq < EPSILON:
        return Point(a.x, a.y)
    t = clamp(((p.x - a.x) * dx + (p.y - a.y) * dy) / length_sq, 0.0, 1.0)
    return Point(a.x + t * dx, a.y + t * dy)


def point_to_segment_distance(p, a, b) -> float:
    return distance(p, closest_point_on_segment(p, a, b))


def _orientation(a, b, c) -> int:
    """0 = collinear, 1 = clockwise, 2 = counter-clockwise."""
    val = (b.y - a.y) * (c.x - b.x) - (b.x - a.x) * (c.y - b.y)
    if abs(val) < EPSILON:
        return 0
    return 1 if val > 0 else 2


def _on_segment(p, q, r) -> bool:
    """True if q lies on segment pr, given the three are collinear."""
    return (min(p.x, r.x) - EPSILON <= q.x <= max(p.x, r.x) + EPSILON and
            min(p.y, r.y) - EPSILON <= q.y <= max(p.y, r.y) + EPSILON)


def do_segments_intersect(p1, q1, p2, q2) -> bool:
    """Segment intersection test, including touching and collinear overlap."""
    o1 = _orientation(p1, q1, p2)
    o2 = _orientation(p1, q1, q2)
    o3 = _orientation(p2, q2, p1)
    o4 = _orientation(p2, q2, q1)

    if o1 != o2 and o3 != o4:
        return True

    if o1 == 0 and _on_segment(p1, p2, q1):
        return True
    if o2 == 0 and _on_segment(p1, q2, q1):
        return True
    if o3 == 0 and _on_segment(p2, p1, q2):
        return True
    if o4 == 0 and _on_segment(p2, q1, q2):
        return True
    return False


def do_segments_cross(p1, q1, p2, q2) -> bool:
    """Proper crossing: segments intersect at a point interior to both.

    Segments that merely share an endpoint do not cross.
    """
    for a in (p1, q1):
        for b in (p2, q2):
            if distance(a, b) < 1e-6:
                return False
    return do_segments_intersect(p1, q1, p2, q2)


def get_segment_intersection(p1, q1, p2, q2) -> Optional[Point]:
    """Intersection point of two segments, or None."""
    d1x, d1y = q1.x - p1.x, q1.y - p1.y
    d2x, d2y = q2.x - p2.x, q2.y - p2.y
    denom = d1x * d2y - d1y * d2x
    if abs(denom) < EPSILON:
        return None
    t = ((p2.x - p1.x) * d2y - (p2.y - p1.y) * d2x) / denom
    u = ((p2.x - p1.x) * d1y - (p2.y - p1.y) * d1x) / denom
    if -EPSILON <= t <= 1 + EPSILON and -EPSILON <= u <= 1 + EPSILON:
        return Point(p1.x + t * d1x, p1.y + t * d1y)
    return None


def segment_to_segment_min_distance(a1, a2, b1, b2) -> float:
    if do_segments_intersect(a1, a2, b1, b2):
        return 0.0
    return min(
        point_to_segment_distance(a1, b1, b2),
        point_to_segment_distance(a2, b1, b2),
        point_to_segment_distance(b1, a1, a2),
        point_to_segment_distance(b2, a1, a2),
    )


def segment_to_box_min_distance(a, b, box: Bounds) -> float:
    """Minimum distance from segment ``ab`` to an axis-aligned box (0 if touching)."""
    if box.contains(a.x, a.y) or box.contains(b.x, b.y):
        return 0.0
    corners = [
        Point(box.min_x, box.min_y),
        Point(box.max_x, box.min_y),
        Point(box.max_x, box.max_y),
        Point(box.min_x, box.max_y),
    ]
    best = math.inf
    for i in range(4):
        c1 = corners[i]
        c2 = corners[(i + 1) % 4]
        best = min(best, segment_to_segment_min_distance(a, b, c1, c2))
        if best == 0.0:
            break
    return best


def point_to_box_distance(p, box: Bounds) -> float:
    dx = max(box.min_x - p.x, 0.0, p.x - box.max_x)
    dy = max(box.min_y - p.y, 0.0, p.y - box.max_y)
    return math.hypot(dx, dy)


def do_rects_overlap(a: Bounds, b: Bounds) -> bool:
    return not (a.max_x < b.min_x or b.max_x < a.min_x or
                a.max_y < b.min_y or b.max_y < a.min_y)


def find_circle_line_intersections(center, radius: float, a, b) -> List[Point]:
    """Intersections of a circle with segment ``ab``."""
    dx = b.x - a.x
    dy = b.y - a.y
    fx = a.x - center.x
    fy = a.y - center.y
    qa = dx * dx + dy * dy
    if qa < EPSILON:
        return []
    qb = 2 * (fx * dx + fy * dy)
    qc = fx * fx + fy * fy - radius * radius
    disc = qb * qb - 4 * qa * qc
    if disc < 0:
        return []
    root = math.sqrt(disc)
    points = []
    for t in sorted({(-qb - root) / (2 * qa), (-qb + root) / (2 * qa)}):
        if -EPSILON <= t <= 1 + EPSILON:
            points.append(Point(a.x + t * dx, a.y + t * dy))
    return points


def _compute_tangent_point(observation, reference, circle_center, radius: float) -> Point:
    """Tangent point on a circle seen from ``observation``.

    Of the two tangents, the one on the side of ``reference`` is chosen.
    """
    cqx = circle_center.x - observation.x
    cqy = circle_center.y - observation.y
    cq_length = math.hypot(cqx, cqy)
    if cq_length < radius:
        # No tangent exists from inside the circle
        return Point(observation.x, observation.y)

    crx = reference.x - observation.x
    cry = reference.y - observation.y

    d = math.sqrt(cq_length * cq_length - radius * radius)
    ux, uy = cqx / cq_length, cqy / cq_length
    perp1 = (-uy, ux)
    perp2 = (uy, -ux)
    dot1 = crx * perp1[0] + cry * perp1[1]
    dot2 = crx * perp2[0] + cry * perp2[1]
    perp = perp1 if dot1 > dot2 else perp2

    sin_theta = radius / cq_length
    cos_theta = d / cq_length
    tx = ux * cos_theta + perp[0] * sin_theta
    ty = uy * cos_theta + perp[1] * sin_theta
    return Point(observation.x + d * tx, observation.y + d * ty)


def _line_intersection(p1, p2, p3, p4) -> Point:
    """Intersection of infinite lines p1p2 and p3p4 (midpoint of p1,p3 if parallel)."""
    a1 = p2.y - p1.y
    b1 = p1.x - p2.x
    c1 = a1 * p1.x + b1 * p1.y
    a2 = p4.y - p3.y
    b2 = p3.x - p4.x
    c2 = a2 * p3.x + b2 * p3.y
    det = a1 * b2 - a2 * b1
    if abs(det) < 1e-8:
        return Point((p1.x + p3.x) / 2, (p1.y + p3.y) / 2)
    return Point((b2 * c1 - b1 * c2) / det, (a1 * c2 - a2 * c1) / det)


def find_point_to_get_around_circle(a, c, circle_center, radius: float) -> Dict[str, Point]:
    """Shortest detour from ``a`` to ``c`` around a circle.

    Returns tangent points B (from c) and D (from a) and their line
    intersection E, which is the single bend point of the detour.
    """
    b = _compute_tangent_point(c, a, circle_center, radius)
    d = _compute_tangent_point(a, c, circle_center, radius)
    e = _line_intersection(c, b, a, d)
    return {"B": b, "D": d, "E": e}


def calculate_dumbbell_points(point_a, point_b, radius: float) -> Dict[str, Point]:
    """Points around a dumbbell (two circles joined by segment ab)."""
    dx = point_b.x - point_a.x
    dy = point_b.y - point_a.y
    length = math.hypot(dx, dy)
    if length < EPSILON:
        ux, uy = 1.0, 0.0
    else:
        ux, uy = dx / length, dy / length
    perpx, perpy = -uy, ux

    return {
        "A_Opp": Point(point_a.x - ux * radius, point_a.y - uy * radius),
        "A_Right": Point(point_a.x + perpx * radius, point_a.y + perpy * radius),
        "A_Left": Point(point_a.x - perpx * radius, point_a.y - perpy * radius),
        "B_Opp": Point(point_b.x + ux * radius, point_b.y + uy * radius),
        "B_Right": Point(point_b.x + perpx * radius, point_b.y + perpy * radius),
        "B_Left": Point(point_b.x - perpx * radius, point_b.y - perpy * radius),
    }


def _circle_circle_intersections(c1, c2, r: float) -> List[Point]:
    """Intersections of two circles of equal radius ``r``."""
    dx = c2.x - c1.x
    dy = c2.y - c1.y
    dist = math.hypot(dx, dy)
    if dist > 2 * r - 1e-10 or dist < 1e-10:
        return []
    a = dist / 2
    h = math.sqrt(max(0.0, r * r - a * a))
    mid_x = c1.x + dx * a / dist
    mid_y = c1.y + dy * a / dist
    return [
        Point(mid_x + h * dy / dist, mid_y - h * dx / dist),
        Point(mid_x - h * dy / dist, mid_y + h * dx / dist),
    ]


def find_closest_point_to_abc_within_bounds(a, b, c, radius: float, bounds: Bounds) -> Point:
    """Point nearest the centroid of a, b, c that keeps ``radius`` from all three.

    Falls back to a coarse grid scan, then the boundary, then the least
    violating candidate when no valid point exists.
    """
    avg = Point((a.x + b.x + c.x) / 3, (a.y + b.y + c.y) / 3)

    def is_valid(p) -> bool:
        return (distance(p, a) >= radius and distance(p, b) >= radius and
                distance(p, c) >= radius and bounds.contains(p.x, p.y))

    def is_on_boundary(p) -> bool:
        return (abs(p.x - bounds.min_x) < 1e-6 or abs(p.x - bounds.max_x) < 1e-6 or
                abs(p.y - bounds.min_y) < 1e-6 or abs(p.y - bounds.max_y) < 1e-6)

    if is_valid(avg):
        return avg

    def point_on_circle(center, constraint) -> Point:
        vx = center.x - constraint.x
        vy = center.y - constraint.y
        dist = math.hypot(vx, vy)
        if dist < 1e-10:
            return Point(constraint.x + radius, constraint.y)
        return Point(constraint.x + vx / dist * radius, constraint.y + vy / dist * radius)

    candidates = [point_on_circle(avg, a), point_on_circle(avg, b), point_on_circle(avg, c)]
    candidates += _circle_circle_intersections(a, b, radius)
    candidates += _circle_circle_intersections(b, c, radius)
    candidates += _circle_circle_intersections(c, a, radius)

    interior = [p for p in candidates if is_valid(p) and not is_on_boundary(p)]
    if interior:
        return min(interior, key=lambda p: distance(p, avg))

    grid_step = max(bounds.width, bounds.height) / 20 or 1.0
    best_point = None
    best_distance = math.inf
    x = bounds.min_x
    while x <= bounds.max_x + EPSILON:
        y = bounds.min_y
        while y <= bounds.max_y + EPSILON:
            p = Point(x, y)
            if is_valid(p):
                d = distance(p, avg)
                if d < best_distance:
                    best_distance = d
                    best_point = p
            y += grid_step
        x += grid_step
    if best_point is not None:
        return best_point

    boundary_points = []
    samples = 100
    for i in range(samples + 1):
        t = i / samples
        boundary_points.append(Point(bounds.min_x + t * bounds.width, bounds.min_y))
        boundary_points.append(Point(bounds.max_x, bounds.min_y + t * bounds.height))
        boundary_points.append(Point(bounds.max_x - t * bounds.width, bounds.max_y))
        boundary_points.append(Point(bounds.min_x, bounds.max_y - t * bounds.height))
    valid_boundary = [p for p in boundary_points if is_valid(p)]
    if valid_boundary:
        return min(valid_boundary, key=lambda p: distance(p, avg))

    def violation(p) -> float:
        return sum(max(0.0, radius - distance(p, q)) for q in (a, b, c))

    inside = [p for p in candidates + boundary_points if bounds.contains(p.x, p.y)]
    if not inside:
        return Point(bounds.min_x, bounds.min_y)
    return min(inside, key=violation)


def _perimeter_position(p, bounds: Bounds) -> float:
    """Clockwise distance along the perimeter, starting at the top-left corner.

    Points off the boundary are projected to the nearest side.
    """
    w, h = bounds.width, bounds.height
    to_top = abs(p.y - bounds.max_y)
    to_right = abs(p.x - bounds.max_x)
    to_bottom = abs(p.y - bounds.min_y)
    to_left = abs(p.x - bounds.min_x)
    nearest = min(to_top, to_right, to_bottom, to_left)
    if nearest == to_top:
        return clamp(p.x - bounds.min_x, 0, w)
    if nearest == to_right:
        return w + clamp(bounds.max_y - p.y, 0, h)
    if nearest == to_bottom:
        return w + h + clamp(bounds.max_x - p.x, 0, w)
    return 2 * w + h + clamp(p.y - bounds.min_y, 0, h)


def calculate_side_traversal(a, b, c, bounds: Bounds) -> Dict[str, float]:
    """Fraction of each side swept when walking the perimeter a -> b -> c clockwise."""
    w, h = bounds.width, bounds.height
    perimeter = 2 * (w + h)
    result = {"top": 0.0, "right": 0.0, "bottom": 0.0, "left": 0.0}
    if perimeter < EPSILON:
        return result
    sides = [
        ("top", 0.0, w),
        ("right", w, w + h),
        ("bottom", w + h, 2 * w + h),
        ("left", 2 * w + h, perimeter),
    ]

    def sweep(start: float, end: float) -> List[Tuple[float, float]]:
        if abs(end - start) < EPSILON:
            return []
        if end >= start:
            return [(start, end)]
        return [(start, perimeter), (0.0, end)]

    for p, q in ((a, b), (b, c)):
        for s, e in sweep(_perimeter_position(p, bounds), _perimeter_position(q, bounds)):
            for name, side_start, side_end in sides:
                length = side_end - side_start
                if length < EPSILON:
                    continue
                overlap = min(e, side_end) - max(s, side_start)
                if overlap > 0:
                    result[name] += overlap / length

    return {name: min(1.0, value) for name, value in result.items()}


def polyline_length(points: Sequence) -> float:
    return sum(distance(points[i], points[i + 1]) for i in range(len(points) - 1))
