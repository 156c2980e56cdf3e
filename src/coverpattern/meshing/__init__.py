"""Mesh value type and topology repair."""

from .mesh import Edge, Mesh
from .repair import (
    BoundaryInfo,
    CropDirection,
    ProcessingOptions,
    ProcessingResult,
    analyze_boundaries,
    crop_by_plane,
    face_components,
    fill_small_holes,
    isolate_largest_component,
    process_mesh,
    rebuild_from_triangle_subset,
)

__all__ = [
    "BoundaryInfo",
    "CropDirection",
    "Edge",
    "Mesh",
    "ProcessingOptions",
    "ProcessingResult",
    "analyze_boundaries",
    "crop_by_plane",
    "face_components",
    "fill_small_holes",
    "isolate_largest_component",
    "process_mesh",
    "rebuild_from_triangle_subset",
]
