"""
Geometry Primitives

Planar polygon helpers used by the volume engine: point-in-polygon tests,
Sutherland-Hodgman clipping, shoelace area and 2D rotation.

Polygons are sequences of (x, y) pairs. No closing vertex is expected.
"""

from __future__ import annotations

import math
from typing import List, Sequence, Tuple

import numpy as np

Point2D = Tuple[float, float]
Polygon2D = Sequence[Point2D]

# Distance from a clip edge still treated as on it
CLIP_TOLERANCE = 1e-9


def is_point_in_polygon(x: float, y: float, polygon: Polygon2D) -> bool:
    """
    Ray-casting parity test.

    Points exactly on an edge get a deterministic but unspecified answer.
    """
    inside = False
    n = len(polygon)
    j = n - 1
    for i in range(n):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        # The straddle test guards the division against horizontal edges
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def points_in_polygon(xs: np.ndarray, ys: np.ndarray, polygon: Polygon2D) -> np.ndarray:
    """Vectorised form of :func:`is_point_in_polygon` with the same edge rule."""
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    inside = np.zeros(np.broadcast(xs, ys).shape, dtype=bool)

    n = len(polygon)
    j = n - 1
    for i in range(n):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        straddles = (yi > ys) != (yj > ys)
        if yj != yi:
            x_cross = (xj - xi) * (ys - yi) / (yj - yi) + xi
            inside ^= straddles & (xs < x_cross)
        j = i
    return inside


def signed_area(poly: Polygon2D) -> float:
    """Shoelace sum; positive for counter-clockwise winding."""
    n = len(poly)
    if n < 3:
        return 0.0
    total = 0.0
    for i in range(n):
        x1, y1 = poly[i]
        x2, y2 = poly[(i + 1) % n]
        total += x1 * y2 - x2 * y1
    return total / 2.0


def polygon_area(poly: Polygon2D) -> float:
    """Absolute polygon area for any winding; 0 for fewer than 3 points."""
    return abs(signed_area(poly))


def is_counter_clockwise(poly: Polygon2D) -> bool:
    return signed_area(poly) > 0


def is_convex(poly: Polygon2D) -> bool:
    """True if all turns go the same way (collinear vertices are ignored)."""
    n = len(poly)
    if n < 3:
        return False
    sign = 0
    for i in range(n):
        ax, ay = poly[i]
        bx, by = poly[(i + 1) % n]
        cx, cy = poly[(i + 2) % n]
        cross = (bx - ax) * (cy - by) - (by - ay) * (cx - bx)
        if cross == 0:
            continue
        turn = 1 if cross > 0 else -1
        if sign == 0:
            sign = turn
        elif turn != sign:
            return False
    return sign != 0


def get_intersection(
    segment: Tuple[Point2D, Point2D],
    clip_edge: Tuple[Point2D, Point2D],
) -> Point2D:
    """
    Intersection of the lines through ``segment`` and ``clip_edge``.

    Uses homogeneous coordinates: each line is the cross product of its two
    points, and the intersection is the cross product of the two lines.
    The lines must not be parallel.
    """
    (x1, y1), (x2, y2) = segment
    (x3, y3), (x4, y4) = clip_edge

    # Line through (x1, y1, 1) and (x2, y2, 1)
    a1, b1, c1 = y1 - y2, x2 - x1, x1 * y2 - x2 * y1
    a2, b2, c2 = y3 - y4, x4 - x3, x3 * y4 - x4 * y3

    px = b1 * c2 - c1 * b2
    py = c1 * a2 - a1 * c2
    w = a1 * b2 - b1 * a2
    return (px / w, py / w)


def clip_polygon(subject: Polygon2D, clip: Polygon2D) -> List[Point2D]:
    """
    Sutherland-Hodgman clipping of ``subject`` against a convex ``clip``.

    A point is inside a clip edge when ``(end - start) x (p - start) >= 0``,
    so ``clip`` must be convex and wound counter-clockwise. The orientation
    is not corrected here; a clockwise clip polygon yields an empty result.

    Points within CLIP_TOLERANCE of a clip edge count as inside, so an edge
    that runs along a cell side within rounding error is never intersected.

    Returns:
        The clipped polygon, or an empty list
    """
    if len(subject) < 3 or len(clip) < 3:
        return []

    output: List[Point2D] = [tuple(p) for p in subject]
    n = len(clip)

    for i in range(n):
        if not output:
            break
        start = clip[i]
        end = clip[(i + 1) % n]
        ex, ey = end[0] - start[0], end[1] - start[1]
        slack = -CLIP_TOLERANCE * math.hypot(ex, ey)

        def inside(p: Point2D) -> bool:
            return ex * (p[1] - start[1]) - ey * (p[0] - start[0]) >= slack

        candidates = output
        output = []
        prev = candidates[-1]
        prev_inside = inside(prev)
        for current in candidates:
            current_inside = inside(current)
            if current_inside:
                if not prev_inside:
                    output.append(get_intersection((prev, current), (start, end)))
                output.append(current)
            elif prev_inside:
                output.append(get_intersection((prev, current), (start, end)))
            prev, prev_inside = current, current_inside

    return output if len(output) >= 3 else []


def rotate(
    x: float,
    y: float,
    angle: float,
    cx: float = 0.0,
    cy: float = 0.0,
) -> Point2D:
    """Rotate (x, y) counter-clockwise by ``angle`` radians about (cx, cy). Accepts arrays."""
    cos_a = math.cos(angle)
    sin_a = math.sin(angle)
    dx, dy = x - cx, y - cy
    return (cx + dx * cos_a - dy * sin_a, cy + dx * sin_a + dy * cos_a)
