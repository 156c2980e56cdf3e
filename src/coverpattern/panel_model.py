"""Panel records exchanged between segmentation, flattening and validation."""

from __future__ import annotations

import colorsys
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Mapping, Sequence

import numpy as np

from .meshing.mesh import new_identifier, utc_now
from .schemas import (
    FLATTENED_PANEL_SCHEMA_NAME,
    PANEL_SCHEMA_NAME,
    PAYLOAD_VERSION,
    check_payload_version,
    validate_payload,
)

__all__ = [
    "Color",
    "EdgeType",
    "FlattenedPanel",
    "Panel",
    "PanelEdge",
]


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


@dataclass(frozen=True, slots=True)
class Color:
    """RGBA display colour with channels clamped to ``[0, 1]``."""

    red: float
    green: float
    blue: float
    alpha: float = 1.0

    PRESETS: ClassVar[dict[str, tuple[float, float, float]]] = {
        "red": (1.0, 0.0, 0.0),
        "green": (0.0, 1.0, 0.0),
        "blue": (0.0, 0.0, 1.0),
        "yellow": (1.0, 1.0, 0.0),
        "orange": (1.0, 0.5, 0.0),
        "purple": (0.5, 0.0, 0.5),
        "cyan": (0.0, 1.0, 1.0),
        "magenta": (1.0, 0.0, 1.0),
        "gray": (0.5, 0.5, 0.5),
        "black": (0.0, 0.0, 0.0),
        "white": (1.0, 1.0, 1.0),
    }

    def __post_init__(self) -> None:
        for name in ("red", "green", "blue", "alpha"):
            object.__setattr__(self, name, _clamp_unit(getattr(self, name)))

    @classmethod
    def named(cls, name: str) -> "Color":
        try:
            red, green, blue = cls.PRESETS[name.lower()]
        except KeyError as exc:
            raise KeyError(f"Unknown colour preset '{name}'") from exc
        return cls(red, green, blue)

    @classmethod
    def from_hsv(cls, hue: float, saturation: float, value: float, alpha: float = 1.0) -> "Color":
        red, green, blue = colorsys.hsv_to_rgb(hue % 1.0, _clamp_unit(saturation), _clamp_unit(value))
        return cls(red, green, blue, alpha)

    @classmethod
    def palette(cls, count: int, *, saturation: float = 0.7, value: float = 0.9) -> tuple["Color", ...]:
        """Return ``count`` colours with evenly spaced hues."""

        if count <= 0:
            return ()
        return tuple(cls.from_hsv(index / count, saturation, value) for index in range(count))

    def to_mapping(self) -> dict[str, float]:
        return {"red": self.red, "green": self.green, "blue": self.blue, "alpha": self.alpha}

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Color":
        return cls(
            red=float(payload["red"]),
            green=float(payload["green"]),
            blue=float(payload["blue"]),
            alpha=float(payload.get("alpha", 1.0)),
        )


@dataclass(frozen=True, slots=True)
class Panel:
    """Subset of a mesh chosen to become one pattern piece.

    ``triangle_indices`` holds flat vertex-index triples into the parent
    mesh, not triangle numbers. Range checks against the mesh happen when the
    panel is flattened.
    """

    vertex_indices: frozenset[int]
    triangle_indices: tuple[int, ...]
    color: Color = field(default_factory=lambda: Color.named("blue"))
    id: str = field(default_factory=new_identifier)
    created_at: datetime = field(default_factory=utc_now)
    version: str = PAYLOAD_VERSION

    def __post_init__(self) -> None:
        object.__setattr__(self, "vertex_indices", frozenset(int(v) for v in self.vertex_indices))
        object.__setattr__(self, "triangle_indices", tuple(int(v) for v in self.triangle_indices))

    @property
    def triangle_count(self) -> int:
        return len(self.triangle_indices) // 3

    @property
    def is_valid(self) -> bool:
        if not self.vertex_indices or not self.triangle_indices:
            return False
        if len(self.triangle_indices) % 3 != 0:
            return False
        return all(index in self.vertex_indices for index in self.triangle_indices)

    def face_array(self) -> np.ndarray:
        usable = len(self.triangle_indices) - len(self.triangle_indices) % 3
        return np.asarray(self.triangle_indices[:usable], dtype=np.int64).reshape(-1, 3)

    def to_mapping(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "vertexIndices": sorted(self.vertex_indices),
            "triangleIndices": list(self.triangle_indices),
            "color": self.color.to_mapping(),
            "createdAt": self.created_at.isoformat(),
            "version": self.version,
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Panel":
        validate_payload(payload, PANEL_SCHEMA_NAME)
        kwargs: dict[str, Any] = {"version": check_payload_version(payload)}
        if "id" in payload:
            kwargs["id"] = str(payload["id"])
        if "createdAt" in payload:
            kwargs["created_at"] = datetime.fromisoformat(str(payload["createdAt"]))
        return cls(
            vertex_indices=frozenset(payload["vertexIndices"]),
            triangle_indices=tuple(payload["triangleIndices"]),
            color=Color.from_mapping(payload["color"]),
            **kwargs,
        )


class EdgeType(str, Enum):
    """Role of an edge on a flattened pattern piece."""

    CUT = "cut"
    FOLD = "fold"
    SEAM = "seam"
    REGISTRATION = "registration"


@dataclass(frozen=True, slots=True)
class PanelEdge:
    """Edge between two points of a :class:`FlattenedPanel`.

    ``original_3d_length`` is the length of the source edge on the mesh in
    pattern units, used for distortion checks. Seam-allowance edges carry
    their width in ``seam_width_mm``.
    """

    start_index: int
    end_index: int
    type: EdgeType = EdgeType.CUT
    original_3d_length: float | None = None
    seam_width_mm: float | None = None

    def to_mapping(self) -> dict[str, Any]:
        return {
            "startIndex": self.start_index,
            "endIndex": self.end_index,
            "type": self.type.value,
            "original3DLength": self.original_3d_length,
            "seamWidthMm": self.seam_width_mm,
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "PanelEdge":
        original = payload.get("original3DLength")
        seam_width = payload.get("seamWidthMm")
        return cls(
            start_index=int(payload["startIndex"]),
            end_index=int(payload["endIndex"]),
            type=EdgeType(payload["type"]),
            original_3d_length=None if original is None else float(original),
            seam_width_mm=None if seam_width is None else float(seam_width),
        )


Point2D = tuple[float, float]


@dataclass(frozen=True, slots=True)
class FlattenedPanel:
    """Two-dimensional pattern piece.

    Coordinates are in pattern units; ``scale_units_per_meter`` converts them
    back to metres. ``seam_outline`` is the cut outline offset outward by the
    seam allowance, one point per outline vertex.
    """

    points_2d: tuple[Point2D, ...]
    edges: tuple[PanelEdge, ...]
    color: Color = field(default_factory=lambda: Color.named("blue"))
    scale_units_per_meter: float = 1000.0
    original_panel_id: str | None = None
    seam_outline: tuple[Point2D, ...] = ()
    id: str = field(default_factory=new_identifier)
    created_at: datetime = field(default_factory=utc_now)
    version: str = PAYLOAD_VERSION

    def __post_init__(self) -> None:
        object.__setattr__(self, "points_2d", _as_points(self.points_2d))
        object.__setattr__(self, "seam_outline", _as_points(self.seam_outline))
        object.__setattr__(self, "edges", tuple(self.edges))
        object.__setattr__(self, "scale_units_per_meter", float(self.scale_units_per_meter))

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------
    @property
    def is_valid(self) -> bool:
        count = len(self.points_2d)
        if count < 3 or self.scale_units_per_meter <= 0.0:
            return False
        return all(
            0 <= edge.start_index < count and 0 <= edge.end_index < count for edge in self.edges
        )

    def point_array(self) -> np.ndarray:
        if not self.points_2d:
            return np.zeros((0, 2), dtype=float)
        return np.asarray(self.points_2d, dtype=float)

    def edges_of_type(self, edge_type: EdgeType) -> tuple[PanelEdge, ...]:
        return tuple(edge for edge in self.edges if edge.type is edge_type)

    def outline_indices(self) -> tuple[int, ...]:
        """Point indices of the first closed loop of cut edges.

        Panels without cut edges fall back to the point order itself.
        """

        cut_edges = self.edges_of_type(EdgeType.CUT)
        if not cut_edges:
            return tuple(range(len(self.points_2d)))

        adjacency: dict[int, list[int]] = {}
        for edge in cut_edges:
            adjacency.setdefault(edge.start_index, []).append(edge.end_index)
            adjacency.setdefault(edge.end_index, []).append(edge.start_index)

        start = cut_edges[0].start_index
        loop = [start]
        previous: int | None = None
        current = start
        seen = {start}
        while True:
            step = None
            for neighbour in adjacency.get(current, []):
                if neighbour == previous:
                    continue
                if neighbour == start and len(loop) > 2:
                    return tuple(loop)
                if neighbour not in seen:
                    step = neighbour
                    break
            if step is None:
                return tuple(loop)
            seen.add(step)
            loop.append(step)
            previous, current = current, step

    def outline(self) -> np.ndarray:
        points = self.point_array()
        indices = list(self.outline_indices())
        if not indices:
            return np.zeros((0, 2), dtype=float)
        return points[indices]

    @property
    def area(self) -> float:
        """Absolute shoelace area of the cut outline in square pattern units."""

        outline = self.outline()
        if len(outline) < 3:
            return 0.0
        x = outline[:, 0]
        y = outline[:, 1]
        return float(abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))) * 0.5)

    def bounding_box(self) -> tuple[np.ndarray, np.ndarray] | None:
        if not self.points_2d:
            return None
        points = self.point_array()
        return points.min(axis=0), points.max(axis=0)

    def footprint(self) -> tuple[np.ndarray, np.ndarray] | None:
        """Bounding box of the cut points together with the seam outline."""

        if not self.points_2d:
            return None
        points = self.point_array()
        if self.seam_outline:
            points = np.vstack([points, np.asarray(self.seam_outline, dtype=float)])
        return points.min(axis=0), points.max(axis=0)

    def translated(self, dx: float, dy: float) -> "FlattenedPanel":
        """Return a copy shifted by ``(dx, dy)``; identity and edges are kept."""

        offset = np.array([float(dx), float(dy)])
        seam = self.seam_outline
        if seam:
            seam = tuple(map(tuple, (np.asarray(seam, dtype=float) + offset).tolist()))
        return replace(
            self,
            points_2d=tuple(map(tuple, (self.point_array() + offset).tolist())),
            seam_outline=seam,
        )

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------
    def to_mapping(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "points2D": [list(point) for point in self.points_2d],
            "edges": [edge.to_mapping() for edge in self.edges],
            "color": self.color.to_mapping(),
            "scaleUnitsPerMeter": self.scale_units_per_meter,
            "originalPanelId": self.original_panel_id,
            "seamOutline": [list(point) for point in self.seam_outline],
            "createdAt": self.created_at.isoformat(),
            "version": self.version,
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "FlattenedPanel":
        validate_payload(payload, FLATTENED_PANEL_SCHEMA_NAME)
        kwargs: dict[str, Any] = {"version": check_payload_version(payload)}
        if "id" in payload:
            kwargs["id"] = str(payload["id"])
        if "createdAt" in payload:
            kwargs["created_at"] = datetime.fromisoformat(str(payload["createdAt"]))
        original_id = payload.get("originalPanelId")
        return cls(
            points_2d=payload["points2D"],
            edges=tuple(PanelEdge.from_mapping(edge) for edge in payload["edges"]),
            color=Color.from_mapping(payload["color"]),
            scale_units_per_meter=float(payload["scaleUnitsPerMeter"]),
            original_panel_id=None if original_id is None else str(original_id),
            seam_outline=payload.get("seamOutline", ()),
            **kwargs,
        )


def _as_points(values: Any) -> tuple[Point2D, ...]:
    if isinstance(values, np.ndarray):
        values = values.reshape(-1, 2).tolist()
    points: list[Point2D] = []
    for value in values:
        x, y = value
        points.append((float(x), float(y)))
    return tuple(points)
