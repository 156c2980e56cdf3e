"""Topology repair for captured meshes.

Captured surfaces routinely arrive with small holes, floating scan fragments
and a sliver of floor or table attached to the bottom. The helpers in this
module clean those defects up so segmentation and flattening operate on a
single coherent surface. Every operation returns a new :class:`Mesh`; an
empty mesh passes through unchanged with zero counts.
"""

from __future__ import annotations

import logging
import warnings
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

import numpy as np
import trimesh

from .mesh import Edge, Mesh

__all__ = [
    "BoundaryInfo",
    "CropDirection",
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

logger = logging.getLogger(__name__)


class CropDirection(str, Enum):
    """Which side of the cutting plane is discarded."""

    BELOW = "below"
    ABOVE = "above"


@dataclass(frozen=True, slots=True)
class BoundaryInfo:
    """Boundary edges of a mesh grouped into closed loops.

    Loops run opposite to the winding of the triangles bordering them, so a
    fan of ``(centre, loop[i], loop[i + 1])`` triangles continues the surface
    orientation.
    """

    boundary_edges: frozenset[Edge] = frozenset()
    boundary_loops: tuple[tuple[int, ...], ...] = ()
    total_boundary_length: float = 0.0
    non_manifold_vertices: tuple[int, ...] = ()

    @property
    def hole_count(self) -> int:
        return len(self.boundary_loops)

    @property
    def average_hole_size(self) -> float:
        if not self.boundary_loops:
            return 0.0
        return sum(len(loop) for loop in self.boundary_loops) / len(self.boundary_loops)

    @property
    def is_watertight(self) -> bool:
        return not self.boundary_edges

    def loop_vertices(self, mesh: Mesh, loop_index: int) -> np.ndarray:
        """Return the ``(n, 3)`` positions of one boundary loop."""

        loop = self.boundary_loops[loop_index]
        return mesh.vertex_array()[list(loop)]

    def to_mapping(self) -> dict[str, Any]:
        return {
            "boundaryEdgeCount": len(self.boundary_edges),
            "holeCount": self.hole_count,
            "averageHoleSize": self.average_hole_size,
            "totalBoundaryLength": self.total_boundary_length,
            "nonManifoldVertices": list(self.non_manifold_vertices),
        }


@dataclass(frozen=True, slots=True)
class ProcessingOptions:
    """Toggles and thresholds for :func:`process_mesh`. All steps start disabled."""

    enable_hole_filling: bool = False
    max_hole_edges: int = 12
    enable_plane_cropping: bool = False
    crop_height_fraction: float = 0.05
    crop_direction: CropDirection = CropDirection.BELOW
    enable_component_isolation: bool = False
    min_component_triangles: int = 100

    @classmethod
    def recommended(cls) -> "ProcessingOptions":
        return cls(
            enable_hole_filling=True,
            enable_plane_cropping=True,
            enable_component_isolation=True,
        )

    def to_mapping(self) -> dict[str, Any]:
        return {
            "enableHoleFilling": self.enable_hole_filling,
            "maxHoleEdges": self.max_hole_edges,
            "enablePlaneCropping": self.enable_plane_cropping,
            "cropPlaneHeightFraction": self.crop_height_fraction,
            "cropDirection": self.crop_direction.value,
            "enableComponentIsolation": self.enable_component_isolation,
            "minComponentTriangles": self.min_component_triangles,
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ProcessingOptions":
        defaults = cls()
        return cls(
            enable_hole_filling=bool(payload.get("enableHoleFilling", defaults.enable_hole_filling)),
            max_hole_edges=int(payload.get("maxHoleEdges", defaults.max_hole_edges)),
            enable_plane_cropping=bool(
                payload.get("enablePlaneCropping", defaults.enable_plane_cropping)
            ),
            crop_height_fraction=float(
                payload.get("cropPlaneHeightFraction", defaults.crop_height_fraction)
            ),
            crop_direction=CropDirection(payload.get("cropDirection", defaults.crop_direction.value)),
            enable_component_isolation=bool(
                payload.get("enableComponentIsolation", defaults.enable_component_isolation)
            ),
            min_component_triangles=int(
                payload.get("minComponentTriangles", defaults.min_component_triangles)
            ),
        )


@dataclass(frozen=True, slots=True)
class ProcessingResult:
    """Outcome of :func:`process_mesh` with per-stage change counts."""

    mesh: Mesh
    holes_filled: int = 0
    triangles_cropped: int = 0
    components_removed: int = 0
    original_triangle_count: int = 0
    final_triangle_count: int = 0
    non_manifold_vertices: tuple[int, ...] = field(default=())

    @property
    def has_changes(self) -> bool:
        return bool(self.holes_filled or self.triangles_cropped or self.components_removed)

    @property
    def summary(self) -> str:
        parts: list[str] = []
        if self.holes_filled:
            parts.append(_plural(self.holes_filled, "hole") + " filled")
        if self.triangles_cropped:
            parts.append(_plural(self.triangles_cropped, "triangle") + " cropped")
        if self.components_removed:
            parts.append(_plural(self.components_removed, "fragment") + " removed")
        return ", ".join(parts) if parts else "No changes made"

    def to_mapping(self) -> dict[str, Any]:
        return {
            "meshId": self.mesh.id,
            "holesFilled": self.holes_filled,
            "trianglesCropped": self.triangles_cropped,
            "componentsRemoved": self.components_removed,
            "originalTriangleCount": self.original_triangle_count,
            "finalTriangleCount": self.final_triangle_count,
            "nonManifoldVertices": list(self.non_manifold_vertices),
            "summary": self.summary,
        }


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def _is_empty(mesh: Mesh) -> bool:
    return not mesh.vertices or mesh.triangle_count == 0


# ----------------------------------------------------------------------
# Boundary analysis
# ----------------------------------------------------------------------
def analyze_boundaries(mesh: Mesh) -> BoundaryInfo:
    """Collect edges used by a single triangle and chain them into loops.

    Open chains are dropped. Vertices with more than two boundary neighbours
    are reported in :attr:`BoundaryInfo.non_manifold_vertices`; loops through
    them depend on neighbour ordering and should not be trusted for filling.
    """

    if _is_empty(mesh):
        return BoundaryInfo()
    mesh.validate()

    surface = mesh.to_trimesh()
    rows = np.asarray(
        trimesh.grouping.group_rows(surface.edges_sorted, require_count=1), dtype=np.int64
    ).reshape(-1)
    if rows.size == 0:
        return BoundaryInfo()
    # edges of a single face keep that face's winding
    directed = {(int(a), int(b)) for a, b in surface.edges[rows]}
    boundary_edges = frozenset(Edge.of(a, b) for a, b in directed)

    adjacency: dict[int, list[int]] = defaultdict(list)
    for edge in boundary_edges:
        adjacency[edge.v0].append(edge.v1)
        adjacency[edge.v1].append(edge.v0)
    for neighbours in adjacency.values():
        neighbours.sort()

    non_manifold = tuple(sorted(v for v, neighbours in adjacency.items() if len(neighbours) > 2))

    loops: list[tuple[int, ...]] = []
    visited: set[int] = set()
    for start in sorted(adjacency):
        if start in visited:
            continue
        loop = _walk_loop(start, adjacency, visited)
        if loop is None:
            continue
        if (loop[0], loop[1]) in directed:
            loop = (loop[0],) + tuple(reversed(loop[1:]))
        loops.append(loop)

    vertices = mesh.vertex_array()
    edge_array = np.asarray(sorted(boundary_edges), dtype=np.int64)
    total_length = float(
        np.linalg.norm(vertices[edge_array[:, 0]] - vertices[edge_array[:, 1]], axis=1).sum()
    )

    if non_manifold:
        logger.debug("Boundary has %d non-manifold vertices", len(non_manifold))

    return BoundaryInfo(
        boundary_edges=boundary_edges,
        boundary_loops=tuple(loops),
        total_boundary_length=total_length,
        non_manifold_vertices=non_manifold,
    )


def _walk_loop(
    start: int, adjacency: Mapping[int, list[int]], visited: set[int]
) -> tuple[int, ...] | None:
    loop = [start]
    visited.add(start)
    previous: int | None = None
    current = start
    while True:
        step: int | None = None
        closed = False
        for neighbour in adjacency[current]:
            if neighbour == previous:
                continue
            if neighbour == start and len(loop) > 2:
                closed = True
                break
            if neighbour not in visited:
                step = neighbour
                break
        if closed:
            return tuple(loop)
        if step is None:
            return None
        visited.add(step)
        loop.append(step)
        previous, current = current, step


# ----------------------------------------------------------------------
# Repair operations
# ----------------------------------------------------------------------
def fill_small_holes(mesh: Mesh, max_edges: int = 12) -> tuple[Mesh, int]:
    """Close every boundary loop with ``3 <= len(loop) <= max_edges`` using a centroid fan."""

    if _is_empty(mesh):
        return mesh, 0
    filled_mesh, filled, _ = _fill_loops(mesh, analyze_boundaries(mesh), max_edges)
    return filled_mesh, filled


def _fill_loops(
    mesh: Mesh, info: BoundaryInfo, max_edges: int
) -> tuple[Mesh, int, tuple[int, ...]]:
    blocked = set(info.non_manifold_vertices)
    vertices = [tuple(vertex) for vertex in mesh.vertices]
    triangles = list(mesh.triangle_indices)
    points = mesh.vertex_array()

    filled = 0
    skipped = 0
    touched: set[int] = set()
    for loop in info.boundary_loops:
        if not 3 <= len(loop) <= max_edges:
            continue
        hits = blocked.intersection(loop)
        if hits:
            skipped += 1
            touched.update(hits)
            continue
        centroid = points[list(loop)].mean(axis=0)
        centre_index = len(vertices)
        vertices.append((float(centroid[0]), float(centroid[1]), float(centroid[2])))
        for position, vertex in enumerate(loop):
            triangles.extend((centre_index, vertex, loop[(position + 1) % len(loop)]))
        filled += 1

    if skipped:
        message = (
            f"Skipped {_plural(skipped, 'boundary loop')} touching non-manifold "
            f"vertices {sorted(touched)}"
        )
        logger.warning(message)
        warnings.warn(message, RuntimeWarning, stacklevel=3)

    if not filled:
        return mesh, 0, tuple(sorted(touched))
    return Mesh(vertices=vertices, triangle_indices=triangles), filled, tuple(sorted(touched))


def crop_by_plane(
    mesh: Mesh,
    height_fraction: float,
    direction: CropDirection | str = CropDirection.BELOW,
) -> tuple[Mesh, int]:
    """Drop triangles whose centroid lies on the discarded side of a horizontal plane.

    The plane sits at ``min.y + height_fraction * height`` of the bounding box.
    """

    if not 0.0 <= float(height_fraction) <= 1.0:
        raise ValueError(f"height_fraction must lie in [0, 1], received {height_fraction}")
    direction = CropDirection(direction)
    if _is_empty(mesh):
        return mesh, 0
    mesh.validate()

    vertices = mesh.vertex_array()
    lower, upper = vertices.min(axis=0), vertices.max(axis=0)
    plane_y = float(lower[1]) + float(height_fraction) * float(upper[1] - lower[1])

    centroid_y =vertices[mesh.face_array()][:, :, 1].mean(axis=1)
    if direction is CropDirection.BELOW:
        keep = centroid_y >= plane_y
    else:
        keep = centroid_y <= plane_y

    removed = int(mesh.triangle_count - int(keep.sum()))
    if removed == 0:
        return mesh, 0
    return rebuild_from_triangle_subset(mesh, np.nonzero(keep)[0]), removed


def face_components(mesh: Mesh) -> list[list[int]]:
    """Group triangle indices into edge-connected components, largest first.

    Triangles are connected only through edges shared by exactly two
    triangles (trimesh's ``face_adjacency``), so fragments touching at a
    single vertex or along a non-manifold fin count as separate components.
    Ties in size are ordered by lowest triangle index.
    """

    surface = mesh.to_trimesh()
    groups = trimesh.graph.connected_components(
        surface.face_adjacency, nodes=np.arange(len(surface.faces))
    )
    components = [sorted(int(face) for face in np.asarray(group).reshape(-1)) for group in groups]
    components.sort(key=lambda comp: (-len(comp), comp[0]))
    return components


def isolate_largest_component(mesh: Mesh, min_triangles: int = 100) -> tuple[Mesh, int]:
    """Keep the largest connected surface plus any component with ``>= min_triangles``."""

    if _is_empty(mesh):
        return mesh, 0
    mesh.validate()

    components = face_components(mesh)
    if len(components) <= 1:
        return mesh, 0

    kept = [components[0]] + [comp for comp in components[1:] if len(comp) >= min_triangles]
    removed = len(components) - len(kept)
    if removed == 0:
        return mesh, 0

    logger.debug(
        "Keeping %d of %d components (largest has %d triangles)",
        len(kept),
        len(components),
        len(components[0]),
    )
    keep = [face for comp in kept for face in comp]
    return rebuild_from_triangle_subset(mesh, keep), removed


def rebuild_from_triangle_subset(mesh: Mesh, keep: Iterable[int]) -> Mesh:
    """Return a compact mesh containing only the triangles listed in ``keep``.

    Unreferenced vertices are dropped and the remaining ones renumbered in
    ascending order of their original index.
    """

    keep_indices = np.unique(np.asarray(list(keep), dtype=np.int64))
    faces = mesh.face_array()
    if keep_indices.size and (keep_indices[0] < 0 or keep_indices[-1] >= len(faces)):
        raise IndexError("Triangle subset references triangles outside the mesh")
    if keep_indices.size == 0:
        return Mesh(vertices=[], triangle_indices=[])

    kept_faces = faces[keep_indices]
    used = np.unique(kept_faces)
    remap = np.full(mesh.vertex_count, -1, dtype=np.int64)
    remap[used] = np.arange(used.size, dtype=np.int64)
    vertices = mesh.vertex_array()[used]
    return Mesh(vertices=vertices, triangle_indices=remap[kept_faces].reshape(-1))


def process_mesh(mesh: Mesh, options: ProcessingOptions) -> ProcessingResult:
    """Run isolation, plane cropping and hole filling in that order."""

    original_count = mesh.triangle_count
    if _is_empty(mesh):
        return ProcessingResult(
            mesh=mesh,
            original_triangle_count=original_count,
            final_triangle_count=original_count,
        )

    current = mesh
    components_removed = 0
    triangles_cropped = 0
    holes_filled = 0
    non_manifold: tuple[int, ...] = ()

    if options.enable_component_isolation:
        current, components_removed = isolate_largest_component(
            current, options.min_component_triangles
        )
    if options.enable_plane_cropping and not _is_empty(current):
        current, triangles_cropped = crop_by_plane(
            current, options.crop_height_fraction, options.crop_direction
        )
    if options.enable_hole_filling and not _is_empty(current):
        info = analyze_boundaries(current)
        current, holes_filled, non_manifold = _fill_loops(current, info, options.max_hole_edges)

    result = ProcessingResult(
        mesh=current,
        holes_filled=holes_filled,
        triangles_cropped=triangles_cropped,
        components_removed=components_removed,
        original_triangle_count=original_count,
        final_triangle_count=current.triangle_count,
        non_manifold_vertices=non_manifold,
    )
    logger.info("Processed mesh %s: %s", mesh.id, result.summary)
    return result
