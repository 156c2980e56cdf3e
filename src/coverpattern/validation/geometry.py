"""Planar polygon helpers shared by flattening and validation."""

from __future__ import annotations

import numpy as np
import shapely
from shapely.geometry import LinearRing, Polygon

__all__ = [
    "bounding_boxes_overlap",
    "polygon_area",
    "polygon_self_intersections",
    "polygons_overlap",
    "signed_polygon_area",
]

_EPS = 1e-9


def signed_polygon_area(points: np.ndarray) -> float:
    """Shoelace area, positive for counter-clockwise polygons."""

    pts = np.asarray(points, dtype=float)
    if len(pts) < 3:
        return 0.0
    x = pts[:, 0]
    y = pts[:, 1]
    return float(0.5 * (np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))))


def polygon_area(points: np.ndarray) -> float:
    return abs(signed_polygon_area(points))


def polygon_self_intersections(points: np.ndarray) -> list[tuple[int, int]]:
    """Return index pairs of non-adjacent polygon edges that intersect.

    Edge ``i`` runs from ``points[i]`` to ``points[(i + 1) % n]``. Touching
    counts as intersecting.
    """

    pts = np.asarray(points, dtype=float)
    count = len(pts)
    if count < 4 or LinearRing(pts).is_simple:
        return []

    edges = shapely.linestrings(np.stack([pts, np.roll(pts, -1, axis=0)], axis=1))
    hits = shapely.intersects(edges[:, None], edges[None, :])
    first, second = np.nonzero(np.triu(hits, k=2))
    keep = ~((first == 0) & (second == count - 1))
    return [(int(i), int(j)) for i, j in zip(first[keep], second[keep])]


def bounding_boxes_overlap(
    first: tuple[np.ndarray, np.ndarray], second: tuple[np.ndarray, np.ndarray]
) -> bool:
    """True when two ``(min, max)`` boxes share interior area."""

    (a_min, a_max), (b_min, b_max) = first, second
    return bool(
        a_min[0] < b_max[0] - _EPS
        and b_min[0] < a_max[0] - _EPS
        and a_min[1] < b_max[1] - _EPS
        and b_min[1] < a_max[1] - _EPS
    )


def _clean(points: np.ndarray) -> Polygon:
    polygon = Polygon(points)
    return polygon if polygon.is_valid else polygon.buffer(0)


def polygons_overlap(first: np.ndarray, second: np.ndarray, *, min_area: float = _EPS) -> bool:
    """True when two polygons share more than ``min_area`` of interior.

    Polygons that only touch along their boundaries do not overlap.
    """

    a = np.asarray(first, dtype=float)
    b = np.asarray(second, dtype=float)
    if len(a) < 3 or len(b) < 3:
        return False
    return bool(_clean(a).intersection(_clean(b)).area > min_area)
