"""Greedy row packing of flattened panels for cutting."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ..panel_model import FlattenedPanel

__all__ = ["LayoutOptions", "layout_extent", "optimize_for_cutting"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LayoutOptions:
    """Row width and spacing in pattern units."""

    max_row_width: float = 1500.0
    margin: float = 20.0

    def to_mapping(self) -> dict[str, Any]:
        return {"maxRowWidth": self.max_row_width, "margin": self.margin}

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "LayoutOptions":
        defaults = cls()
        return cls(
            max_row_width=float(payload.get("maxRowWidth", defaults.max_row_width)),
            margin=float(payload.get("margin", defaults.margin)),
        )


def optimize_for_cutting(
    panels: Sequence[FlattenedPanel],
    options: LayoutOptions | None = None,
) -> list[FlattenedPanel]:
    """Translate panels into rows, left to right, starting at ``(margin, margin)``.

    A panel that would overrun ``max_row_width`` opens a new row below the
    tallest panel of the current row, unless it is the first panel in its
    row. Panels are only translated; footprints include the seam outline.
    """

    options = options or LayoutOptions()
    margin = options.margin
    cursor_x = margin
    cursor_y = margin
    row_height = 0.0

    placed: list[FlattenedPanel] = []
    for panel in panels:
        footprint = panel.footprint()
        if footprint is None:
            placed.append(panel)
            continue
        lower, upper = footprint
        width = float(upper[0] - lower[0])
        height = float(upper[1] - lower[1])

        if cursor_x + width > options.max_row_width and cursor_x > margin:
            cursor_x = margin
            cursor_y += row_height + margin
            row_height = 0.0

        placed.append(panel.translated(cursor_x - float(lower[0]), cursor_y - float(lower[1])))
        cursor_x += width + margin
        row_height = max(row_height, height)

    logger.debug("Packed %d panels into a %.1f x %.1f layout", len(placed), *layout_extent(placed))
    return placed


def layout_extent(panels: Sequence[FlattenedPanel]) -> tuple[float, float]:
    """Width and height of the region spanned by the panel footprints, measured from the origin."""

    width = 0.0
    height = 0.0
    for panel in panels:
        footprint = panel.footprint()
        if footprint is None:
            continue
        width = max(width, float(footprint[1][0]))
        height = max(height, float(footprint[1][1]))
    return width, height
