"""Test helper utilities exposed for import convenience."""
from .meshes import (
    CUBE_FACES,
    bowtie_mesh,
    cube_mesh,
    cube_with_island,
    cylinder_strip,
    equilateral_triangle_mesh,
    flat_square_pillow,
    grid_mesh,
    sphere_cap,
    without_triangles,
)
from .panels import polygon_panel, rectangle_panel

__all__ = [
    "CUBE_FACES",
    "bowtie_mesh",
    "cube_mesh",
    "cube_with_island",
    "cylinder_strip",
    "equilateral_triangle_mesh",
    "flat_square_pillow",
    "grid_mesh",
    "polygon_panel",
    "rectangle_panel",
    "sphere_cap",
    "without_triangles",
]
