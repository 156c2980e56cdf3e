"""Conformal flattening, seam allowances and cutting layout."""

from .layout import LayoutOptions, layout_extent, optimize_for_cutting
from .lscm_backend import FlatteningOptions, LSCMFlattener
from .seams import offset_outline

__all__ = [
    "FlatteningOptions",
    "LSCMFlattener",
    "LayoutOptions",
    "layout_extent",
    "offset_outline",
    "optimize_for_cutting",
]
