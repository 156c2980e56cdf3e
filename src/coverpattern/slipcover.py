"""Box-shaped slipcover patterns derived from mesh bounds.

This is the fallback when segmentation and conformal flattening are not
stable enough for a capture: four side walls and an optional closed top,
sized from the object's bounding box plus ease.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import numpy as np

from .errors import DegenerateGeometryError, MeshError
from .flattening.seams import offset_outline
from .meshing.mesh import Mesh
from .panel_model import Color, EdgeType, FlattenedPanel, PanelEdge

__all__ = [
    "SlipcoverOptions",
    "SlipcoverPanelization",
    "SlipcoverPatternGenerator",
    "SlipcoverTopStyle",
]

logger = logging.getLogger(__name__)

_PANEL_COLORS = ("red", "green", "blue", "yellow", "orange", "purple", "cyan", "magenta")


class SlipcoverTopStyle(str, Enum):
    CLOSED = "closed"
    OPEN = "open"


class SlipcoverPanelization(str, Enum):
    QUADS = "quads"
    TRIANGLES = "triangles"


@dataclass(frozen=True, slots=True)
class SlipcoverOptions:
    """Ease and seam allowance in millimetres; ease applies to width, depth and height."""

    top_style: SlipcoverTopStyle = SlipcoverTopStyle.CLOSED
    ease_mm: float = 20.0
    segments_per_side: int = 1
    vertical_segments: int = 1
    panelization: SlipcoverPanelization = SlipcoverPanelization.QUADS
    seam_allowance_mm: float = 10.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "top_style", SlipcoverTopStyle(self.top_style))
        object.__setattr__(self, "panelization", SlipcoverPanelization(self.panelization))
        object.__setattr__(self, "ease_mm", max(0.0, float(self.ease_mm)))
        object.__setattr__(self, "segments_per_side", max(1, int(self.segments_per_side)))
        object.__setattr__(self, "vertical_segments", max(1, int(self.vertical_segments)))
        object.__setattr__(self, "seam_allowance_mm", max(0.0, float(self.seam_allowance_mm)))


class SlipcoverPatternGenerator:
    """Generate bottom-open slipcover panels in millimetres."""

    def __init__(self, options: SlipcoverOptions | None = None) -> None:
        self.options = options or SlipcoverOptions()

    def generate(self, mesh: Mesh) -> list[FlattenedPanel]:
        """Size the slipcover from ``mesh`` bounds, which must be in metres."""

        bounds = mesh.bounding_box()
        if bounds is None:
            raise MeshError(f"Mesh {mesh.id} has no vertices to size a slipcover from")
        size = bounds[1] - bounds[0]
        if not np.all(np.isfinite(size)):
            raise MeshError(f"Mesh {mesh.id} bounds are not finite")
        width, height, depth = (float(value) * 1000.0 for value in size)
        return self.generate_from_dimensions(width, depth, height)

    def generate_from_dimensions(
        self, width_mm: float, depth_mm: float, height_mm: float
    ) -> list[FlattenedPanel]:
        ease = self.options.ease_mm
        width = float(width_mm) + 2.0 * ease
        depth = float(depth_mm) + 2.0 * ease
        height = float(height_mm) + ease
        if min(width, depth, height) <= 1.0:
            raise DegenerateGeometryError(
                f"Slipcover dimensions {width:.1f} x {depth:.1f} x {height:.1f} mm are degenerate"
            )

        panels: list[FlattenedPanel] = []
        color_index = 0
        segment_height = height / self.options.vertical_segments
        for side_width in (width, depth, width, depth):
            segment_width = side_width / self.options.segments_per_side
            for _ in range(self.options.segments_per_side):
                for _ in range(self.options.vertical_segments):
                    panels.extend(self._emit(segment_width, segment_height, color_index))
                    color_index += 1

        if self.options.top_style is SlipcoverTopStyle.CLOSED:
            panels.extend(self._emit(width, depth, color_index))

        logger.info(
            "Generated %d slipcover panels for %.0f x %.0f x %.0f mm",
            len(panels),
            width,
            depth,
            height,
        )
        return panels

    def _emit(self, width: float, height: float, color_index: int) -> list[FlattenedPanel]:
        color = Color.named(_PANEL_COLORS[color_index % len(_PANEL_COLORS)])
        if self.options.panelization is SlipcoverPanelization.QUADS:
            corners = ((0.0, 0.0), (width, 0.0), (width, height), (0.0, height))
            return [self._piece(corners, color)]
        return [
            self._piece(((0.0, 0.0), (width, 0.0), (width, height)), color),
            self._piece(((0.0, 0.0), (width, height), (0.0, height)), color),
        ]

    def _piece(self, corners: Sequence[tuple[float, float]], color: Color) -> FlattenedPanel:
        count = len(corners)
        seam = self.options.seam_allowance_mm
        edges = [PanelEdge(index, (index + 1) % count, EdgeType.CUT) for index in range(count)]
        seam_outline: np.ndarray | tuple = ()
        if seam > 0.0:
            edges.extend(
                PanelEdge(index, (index + 1) % count, EdgeType.SEAM, seam_width_mm=seam)
                for index in range(count)
            )
            seam_outline = offset_outline(np.asarray(corners, dtype=float), seam)
        return FlattenedPanel(
            points_2d=corners,
            edges=tuple(edges),
            color=color,
            scale_units_per_meter=1000.0,
            seam_outline=seam_outline,
        )
