"""
Geometric predicates shared by both triangulators and the cell assembler.

Every winding and visibility decision in the package reduces to the sign of
``orientation``. Points are anything indexable as ``p[0], p[1]`` (tuples,
lists or NumPy rows); 3D helpers take array-likes of length 3.
"""

import math
from typing import List, Optional, Sequence

import numpy as np

# Duplicate-point and degenerate-triangle tolerance
DEFAULT_TOLERANCE = 1e-6


def orientation(a, b, c) -> float:
    """
    Signed twice-area of triangle abc.

    Returns:
        Positive for counter-clockwise, negative for clockwise, zero when
        the three points are collinear.
    """
    return (b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])


def is_degenerate_triangle(a, b, c, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    """Check whether triangle abc has (near) zero area."""
    return abs(orientation(a, b, c)) <= tolerance


def incircle_determinant(a, b, c, d) -> float:
    """
    Lifted in-circle determinant of d against triangle abc.

    Positive when d is inside the circumcircle of a counter-clockwise
    triangle; the sign flips for a clockwise one.
    """
    adx = a[0] - d[0]
    ady = a[1] - d[1]
    bdx = b[0] - d[0]
    bdy = b[1] - d[1]
    cdx = c[0] - d[0]
    cdy = c[1] - d[1]

    ad = adx * adx + ady * ady
    bd = bdx * bdx + bdy * bdy
    cd = cdx * cdx + cdy * cdy

    return (adx * (bdy * cd - bd * cdy)
            - ady * (bdx * cd - bd * cdx)
            + ad * (bdx * cdy - bdy * cdx))


def in_circumcircle(a, b, c, d, epsilon: float = 1e-12) -> bool:
    """
    Check whether d lies strictly inside the circumcircle of abc.

    Works for either winding of abc. Co-circular points (determinant within
    a relative epsilon of zero) are not inside, so a square never flips
    back and forth between its two diagonals.

    Args:
        a, b, c: Triangle vertices
        d: Query point
        epsilon: Relative threshold applied to the determinant

    Returns:
        True if d is strictly inside, False otherwise or for degenerate abc
    """
    orient = orientation(a, b, c)
    if orient == 0.0:
        return False

    det = incircle_determinant(a, b, c, d)
    if orient < 0.0:
        det = -det

    # Scale the threshold with the lifted magnitudes
    scale = 0.0
    for p in (a, b, c):
        scale += (p[0] - d[0]) ** 2 + (p[1] - d[1]) ** 2
    return det > epsilon * scale * scale


def segments_intersect_properly(a, b, c, d) -> bool:
    """
    Check whether segments ab and cd cross transversally.

    Touching at an endpoint, sharing an endpoint and collinear overlap are
    not proper intersections.
    """
    o1 = orientation(a, b, c)
    o2 = orientation(a, b, d)
    o3 = orientation(c, d, a)
    o4 = orientation(c, d, b)
    return (o1 * o2 < 0.0) and (o3 * o4 < 0.0)


def point_in_triangle(p, a, b, c) -> bool:
    """Half-plane containment test, inclusive of the boundary, either winding."""
    o1 = orientation(a, b, p)
    o2 = orientation(b, c, p)
    o3 = orientation(c, a, p)
    has_neg = o1 < 0.0 or o2 < 0.0 or o3 < 0.0
    has_pos = o1 > 0.0 or o2 > 0.0 or o3 > 0.0
    return not (has_neg and has_pos)


def _on_segment(p, a, b, tolerance: float) -> bool:
    if abs(orientation(a, b, p)) > tolerance:
        return False
    return (min(a[0], b[0]) - tolerance <= p[0] <= max(a[0], b[0]) + tolerance
            and min(a[1], b[1]) - tolerance <= p[1] <= max(a[1], b[1]) + tolerance)


def point_in_polygon(p, polygon: Sequence, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    """
    Ray-casting containment test, inclusive of the boundary.

    Args:
        p: Query point
        polygon: Ordered polygon vertices (either winding)
        tolerance: Distance under which p counts as on an edge

    Returns:
        True if p is inside or on the boundary
    """
    n = len(polygon)
    if n < 3:
        return False

    inside = False
    j = n - 1
    for i in range(n):
        pi = polygon[i]
        pj = polygon[j]
        if _on_segment(p, pj, pi, tolerance):
            return True
        if (pi[1] > p[1]) != (pj[1] > p[1]):
            x_cross = (pj[0] - pi[0]) * (p[1] - pi[1]) / (pj[1] - pi[1]) + pi[0]
            if p[0] < x_cross:
                inside = not inside
        j = i
    return inside


def polygon_area(polygon: Sequence) -> float:
    """Signed area (shoelace); positive for counter-clockwise polygons."""
    n = len(polygon)
    accumulator = 0.0
    for i in range(n):
        a = polygon[i]
        b = polygon[(i + 1) % n]
        accumulator += a[0] * b[1] - a[1] * b[0]
    return 0.5 * accumulator


def polygon_centroid(polygon: Sequence) -> np.ndarray:
    """
    Area centroid of a polygon.

    Falls back to the vertex mean when the polygon has (near) zero area.
    """
    n = len(polygon)
    if n == 0:
        raise ValueError("Cannot compute the centroid of an empty polygon")

    area = 0.0
    cx = 0.0
    cy = 0.0
    for i in range(n):
        a = polygon[i]
        b = polygon[(i + 1) % n]
        cross = a[0] * b[1] - b[0] * a[1]
        area += cross
        cx += (a[0] + b[0]) * cross
        cy += (a[1] + b[1]) * cross

    if abs(area) < 1e-12:
        return np.mean(np.asarray(polygon, dtype=np.float64)[:, :2], axis=0)

    area *= 0.5
    return np.array([cx / (6.0 * area), cy / (6.0 * area)])


def is_convex_polygon(polygon: Sequence, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    """
    Check that an ordered polygon turns the same way at every vertex.

    Collinear vertices (turn within tolerance) are allowed.
    """
    n = len(polygon)
    if n < 3:
        return False

    sign = 0
    for i in range(n):
        turn = orientation(polygon[i], polygon[(i + 1) % n], polygon[(i + 2) % n])
        if abs(turn) <= tolerance:
            continue
        current = 1 if turn > 0 else -1
        if sign == 0:
            sign = current
        elif current != sign:
            return False
    return sign != 0


def angular_order(points: Sequence, center: Optional[Sequence] = None) -> List[int]:
    """
    Indices of points sorted counter-clockwise by angle around a center.

    Args:
        points: 2D points
        center: Pivot; the vertex mean when omitted

    Returns:
        Index order, ties broken by input position
    """
    if len(points) == 0:
        return []
    pts = np.asarray(points, dtype=np.float64)[:, :2]
    if center is None:
        center = pts.mean(axis=0)
    angles = [math.atan2(p[1] - center[1], p[0] - center[0]) for p in pts]
    return sorted(range(len(pts)), key=lambda i: (angles[i], i))


def triangle_normal(a, b, c) -> np.ndarray:
    """Un-normalized normal (b - a) x (c - a) of a 3D triangle."""
    a = np.asarray(a, dtype=np.float64)
    return np.cross(np.asarray(b, dtype=np.float64) - a, np.asarray(c, dtype=np.float64) - a)


def triangle_area_3d(a, b, c) -> float:
    """Twice the area of a 3D triangle."""
    return float(np.linalg.norm(triangle_normal(a, b, c)))


def spherical_orientation(a, b, c) -> float:
    """
    Winding of a triangle on a sphere centred at the origin.

    Positive when abc is counter-clockwise seen from outside the sphere.
    """
    centroid = (np.asarray(a, dtype=np.float64) + np.asarray(b, dtype=np.float64)
                + np.asarray(c, dtype=np.float64))
    return float(np.dot(triangle_normal(a, b, c), centroid))


def circumcircle(a, b, c):
    """
    Circumcenter and radius of a 2D triangle.

    Returns:
        (center, radius), or (None, inf) for a degenerate triangle
    """
    d = 2.0 * orientation(a, b, c)
    if d == 0.0:
        return None, math.inf
    bx, by = b[0] - a[0], b[1] - a[1]
    cx, cy = c[0] - a[0], c[1] - a[1]
    b2 = bx * bx + by * by
    c2 = cx * cx + cy * cy
    ux = (cy * b2 - by * c2) / d
    uy = (bx * c2 - cx * b2) / d
    return np.array([a[0] + ux, a[1] + uy]), math.hypot(ux, uy)
