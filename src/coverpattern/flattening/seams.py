"""Seam-allowance offsets for flattened outlines."""

from __future__ import annotations

import numpy as np

from ..validation.geometry import signed_polygon_area

__all__ = ["offset_outline"]


def offset_outline(points: np.ndarray, distance: float, *, miter_limit: float = 4.0) -> np.ndarray:
    """Offset a closed outline outward by ``distance``.

    Each vertex moves along the average of its two adjacent outward edge
    normals, stretched so both edges sit exactly ``distance`` away. Very sharp
    corners are capped at ``miter_limit * distance``.
    """

    pts = np.asarray(points, dtype=float)
    if len(pts) < 3 or distance == 0.0:
        return pts.copy()

    orientation = 1.0 if signed_polygon_area(pts) >= 0.0 else -1.0
    following = np.roll(pts, -1, axis=0)
    directions = following - pts
    lengths = np.linalg.norm(directions, axis=1)
    valid = lengths > 1e-12
    safe = np.where(valid, lengths, 1.0)
    # Outward normal of a counter-clockwise edge (dx, dy) is (dy, -dx).
    normals = orientation * np.column_stack((directions[:, 1], -directions[:, 0])) / safe[:, None]
    normals[~valid] = 0.0

    incoming = np.roll(normals, 1, axis=0)
    outgoing = normals
    incoming = np.where(np.linalg.norm(incoming, axis=1)[:, None] > 0.0, incoming, outgoing)
    outgoing = np.where(np.linalg.norm(outgoing, axis=1)[:, None] > 0.0, outgoing, incoming)

    bisector = incoming + outgoing
    bisector_length = np.linalg.norm(bisector, axis=1)
    straight_back = bisector_length <= 1e-12
    bisector[straight_back] = outgoing[straight_back]
    bisector_length[straight_back] = np.linalg.norm(outgoing[straight_back], axis=1)
    bisector_length = np.where(bisector_length > 0.0, bisector_length, 1.0)
    unit = bisector / bisector_length[:, None]

    cos_half = np.einsum("ij,ij->i", unit, outgoing)
    cos_half = np.maximum(cos_half, 1.0 / max(float(miter_limit), 1.0))
    return pts + unit * (float(distance) / cos_half)[:, None]
