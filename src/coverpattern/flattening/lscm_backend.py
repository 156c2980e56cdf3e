"""Least-Squares Conformal Mapping of panels onto the plane."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import lsqr

from ..cancellation import CancellationToken, check_cancelled
from ..errors import (
    CoverPatternError,
    DegenerateGeometryError,
    FlatteningError,
    PanelError,
    SelfIntersectionError,
)
from ..meshing.mesh import Mesh
from ..meshing.repair import BoundaryInfo, analyze_boundaries
from ..panel_model import EdgeType, FlattenedPanel, Panel, PanelEdge
from ..validation.geometry import polygon_self_intersections, signed_polygon_area
from .seams import offset_outline

__all__ = ["FlatteningOptions", "LSCMFlattener"]

logger = logging.getLogger(__name__)

FloatArray = np.ndarray

# lsqr stop codes
_ITERATION_LIMIT = 7
_CONVERGED = frozenset({0, 1, 2, 4, 5})
# iterations between cancellation checks
_ITERATION_CHUNK = 100


@dataclass(frozen=True, slots=True)
class FlatteningOptions:
    """Solver and output settings for :class:`LSCMFlattener`.

    Mesh coordinates are expected in metres; ``scale_units_per_meter``
    converts them to pattern units (millimetres by default). ``tolerance``
    is passed to ``scipy.sparse.linalg.lsqr`` as both ``atol`` and ``btol``.
    """

    max_iterations: int = 1000
    tolerance: float = 1e-10
    scale_units_per_meter: float = 1000.0
    seam_allowance_mm: float = 10.0
    miter_limit: float = 4.0
    degenerate_area_epsilon: float = 1e-12
    reject_self_intersections: bool = True
    max_workers: int | None = None

    def to_mapping(self) -> dict[str, Any]:
        return {
            "maxIterations": self.max_iterations,
            "tolerance": self.tolerance,
            "scaleUnitsPerMeter": self.scale_units_per_meter,
            "seamAllowanceMm": self.seam_allowance_mm,
            "miterLimit": self.miter_limit,
            "degenerateAreaEpsilon": self.degenerate_area_epsilon,
            "rejectSelfIntersections": self.reject_self_intersections,
            "maxWorkers": self.max_workers,
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "FlatteningOptions":
        defaults = cls()
        workers = payload.get("maxWorkers", defaults.max_workers)
        return cls(
            max_iterations=int(payload.get("maxIterations", defaults.max_iterations)),
            tolerance=float(payload.get("tolerance", defaults.tolerance)),
            scale_units_per_meter=float(
                payload.get("scaleUnitsPerMeter", defaults.scale_units_per_meter)
            ),
            seam_allowance_mm=float(payload.get("seamAllowanceMm", defaults.seam_allowance_mm)),
            miter_limit=float(payload.get("miterLimit", defaults.miter_limit)),
            degenerate_area_epsilon=float(
                payload.get("degenerateAreaEpsilon", defaults.degenerate_area_epsilon)
            ),
            reject_self_intersections=bool(
                payload.get("rejectSelfIntersections", defaults.reject_self_intersections)
            ),
            max_workers=None if workers is None else int(workers),
        )


@dataclass(frozen=True, slots=True)
class _Submesh:
    positions: FloatArray
    faces: np.ndarray
    global_indices: np.ndarray


@dataclass(frozen=True, slots=True)
class _SolveResult:
    uv: np.ndarray
    iterations: int
    converged: bool


def _triangle_coefficients(positions: FloatArray, faces: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Return per-triangle LSCM coefficients and doubled triangle areas.

    Each triangle is expressed in its own orthonormal frame as complex edge
    vectors ``z1`` and ``z2``; the conformality residual of the triangle is
    ``(z2 - z1) u_i - z2 u_j + z1 u_k``.
    """

    p0 = positions[faces[:, 0]]
    e1 = positions[faces[:, 1]] - p0
    e2 = positions[faces[:, 2]] - p0
    normal = np.cross(e1, e2)
    doubled_area = np.linalg.norm(normal, axis=1)
    e1_length = np.linalg.norm(e1, axis=1)

    tangent = e1 / e1_length[:, None]
    bitangent = np.cross(normal, tangent)
    bitangent /= np.linalg.norm(bitangent, axis=1)[:, None]

    z1 = e1_length.astype(complex)
    z2 = np.einsum("ij,ij->i", e2, tangent) + 1j * np.einsum("ij,ij->i", e2, bitangent)
    coeffs = np.column_stack((z2 - z1, -z2, z1)) / np.sqrt(doubled_area)[:, None]
    return coeffs, doubled_area


def _conformal_system(coeffs: np.ndarray, faces: np.ndarray, vertex_count: int) -> sparse.csc_matrix:
    """Real ``(2m, 2n)`` LSCM matrix over interleaved ``(u, v)`` unknowns."""

    rows = np.repeat(np.arange(len(faces)), 3)
    cols = faces.reshape(-1)
    values = coeffs.reshape(-1)
    # row 2t holds the real part of triangle t's residual, row 2t + 1 the imaginary part
    data = np.concatenate((values.real, -values.imag, values.imag, values.real))
    row_index = np.concatenate((2 * rows, 2 * rows, 2 * rows + 1, 2 * rows + 1))
    col_index = np.concatenate((2 * cols, 2 * cols + 1, 2 * cols, 2 * cols + 1))
    return sparse.coo_matrix(
        (data, (row_index, col_index)), shape=(2 * len(faces), 2 * vertex_count)
    ).tocsc()


def _farthest_pair(points: FloatArray, candidates: np.ndarray) -> tuple[int, int, float]:
    """Return the two candidate vertices with maximum separation and their distance."""

    subset = points[candidates]
    best = (-1.0, int(candidates[0]), int(candidates[-1]))
    block_size = 512
    for start in range(0, len(candidates), block_size):
        block = subset[start : start + block_size]
        squared = ((block[:, None, :] - subset[None, :, :]) ** 2).sum(axis=2)
        row, col = divmod(int(np.argmax(squared)), len(candidates))
        if squared[row, col] > best[0]:
            best = (float(squared[row, col]), int(candidates[start + row]), int(candidates[col]))
    return best[1], best[2], float(np.sqrt(max(best[0], 0.0)))


def _loop_length(positions: FloatArray, loop: Sequence[int]) -> float:
    pts = positions[list(loop)]
    return float(np.linalg.norm(np.roll(pts, -1, axis=0) - pts, axis=1).sum())


def _planar_area(uv: np.ndarray, faces: np.ndarray) -> float:
    a = uv[faces[:, 0]]
    b = uv[faces[:, 1]]
    c = uv[faces[:, 2]]
    return float(0.5 * np.abs(((b - a) * np.conj(c - a)).imag).sum())


class LSCMFlattener:
    """Flatten panels with Least-Squares Conformal Mapping.

    The two boundary vertices furthest apart are pinned at ``(0, 0)`` and
    ``(d, 0)`` where ``d`` is their 3D distance. The remaining coordinates
    minimise the conformal energy, assembled as a ``scipy.sparse`` system
    and solved with LSQR. A conformal map only fixes shape, so the result
    is then scaled about the first pin until its area matches the panel's
    3D surface area.
    """

    def __init__(self, options: FlatteningOptions | None = None) -> None:
        self.options = options or FlatteningOptions()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def flatten_panels(
        self,
        panels: Sequence[Panel],
        mesh: Mesh,
        *,
        cancel: CancellationToken | None = None,
    ) -> list[FlattenedPanel]:
        if not panels:
            return []
        mesh.validate()
        vertices = mesh.vertex_array()

        workers = self.options.max_workers
        if workers is not None and workers > 1 and len(panels) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [
                    executor.submit(self._flatten, panel, vertices, cancel) for panel in panels
                ]
                flattened: list[FlattenedPanel] = []
                try:
                    for future in futures:
                        flattened.append(future.result())
                except CoverPatternError:
                    for future in futures:
                        future.cancel()
                    raise
        else:
            flattened = [self._flatten(panel, vertices, cancel) for panel in panels]

        logger.info("Flattened %d panels from mesh %s", len(flattened), mesh.id)
        return flattened

    def flatten_panel(
        self,
        panel: Panel,
        mesh: Mesh,
        *,
        cancel: CancellationToken | None = None,
    ) -> FlattenedPanel:
        mesh.validate()
        return self._flatten(panel, mesh.vertex_array(), cancel)

    # ------------------------------------------------------------------
    # Per-panel pipeline
    # ------------------------------------------------------------------
    def _flatten(
        self, panel: Panel, vertices: FloatArray, cancel: CancellationToken | None
    ) -> FlattenedPanel:
        check_cancelled(cancel, "flattening")
        submesh = self._extract_submesh(panel, vertices)
        positions = submesh.positions
        faces = submesh.faces

        if not np.all(np.isfinite(positions)):
            raise DegenerateGeometryError(
                f"Panel {panel.id} has non-finite vertex coordinates", panel_id=panel.id
            )
        try:
            self._reject_degenerate(panel, positions, faces)
            boundary = self._boundary(panel, submesh)
            boundary_vertices = np.unique(
                np.asarray(sorted(boundary.boundary_edges), dtype=np.int64)
            )
            first_pin, second_pin, pin_distance = _farthest_pair(positions, boundary_vertices)
            pins = np.array([first_pin, second_pin], dtype=np.int64)
            pin_values = np.array([0.0, pin_distance], dtype=complex)

            coeffs, doubled_area = _triangle_coefficients(positions, faces)
            result = self._solve(panel, positions, faces, coeffs, pins, pin_values, cancel)
        except np.linalg.LinAlgError as exc:
            raise FlatteningError(
                f"Linear algebra failed while flattening panel {panel.id}: {exc}",
                panel_id=panel.id,
            ) from exc

        if not result.converged:
            logger.warning(
                "LSCM solve for panel %s stopped at %d iterations without reaching tolerance",
                panel.id,
                result.iterations,
            )
        else:
            logger.debug("LSCM solve for panel %s converged in %d iterations", panel.id, result.iterations)

        planar_area = _planar_area(result.uv, faces)
        if not np.isfinite(planar_area) or planar_area <= 0.0:
            raise FlatteningError(
                f"Flattening panel {panel.id} collapsed it to zero area", panel_id=panel.id
            )
        stretch = float(np.sqrt(0.5 * doubled_area.sum() / planar_area))

        scale = self.options.scale_units_per_meter
        solved = result.uv[first_pin] + stretch * (result.uv - result.uv[first_pin])
        uv = np.column_stack((solved.real, solved.imag)) * scale
        if not np.all(np.isfinite(uv)):
            raise FlatteningError(
                f"Flattening panel {panel.id} produced non-finite coordinates", panel_id=panel.id
            )

        loops = sorted(
            boundary.boundary_loops, key=lambda loop: -_loop_length(positions, loop)
        )
        outer = loops[0]
        if signed_polygon_area(uv[list(outer)]) < 0.0:
            outer = (outer[0],) + tuple(reversed(outer[1:]))
        loops[0] = outer

        outline = uv[list(outer)]
        if self.options.reject_self_intersections:
            crossings = polygon_self_intersections(outline)
            if crossings:
                raise SelfIntersectionError(
                    f"Flattened outline of panel {panel.id} crosses itself at {len(crossings)} edge pairs",
                    panel_id=panel.id,
                )

        edges: list[PanelEdge] = []
        for loop in loops:
            for position, start in enumerate(loop):
                end = loop[(position + 1) % len(loop)]
                length = float(np.linalg.norm(positions[start] - positions[end])) * scale
                edges.append(PanelEdge(start, end, EdgeType.CUT, original_3d_length=length))

        seam_mm = self.options.seam_allowance_mm
        seam_outline: FloatArray | tuple = ()
        if seam_mm > 0.0:
            seam_outline = offset_outline(
                outline, seam_mm * scale / 1000.0, miter_limit=self.options.miter_limit
            )
            for position, start in enumerate(outer):
                end = outer[(position + 1) % len(outer)]
                edges.append(PanelEdge(start, end, EdgeType.SEAM, seam_width_mm=seam_mm))

        return FlattenedPanel(
            points_2d=uv,
            edges=tuple(edges),
            color=panel.color,
            scale_units_per_meter=scale,
            original_panel_id=panel.id,
            seam_outline=seam_outline,
        )

    def _extract_submesh(self, panel: Panel, vertices: FloatArray) -> _Submesh:
        vertex_count = len(vertices)
        outside = sorted(v for v in panel.vertex_indices if v < 0 or v >= vertex_count)
        if outside:
            raise PanelError(
                f"Panel {panel.id} references vertices outside [0, {vertex_count}): {outside[:5]}"
            )
        if not panel.triangle_indices:
            raise PanelError(f"Panel {panel.id} has no triangles")
        if len(panel.triangle_indices) % 3 != 0:
            raise PanelError(
                f"Panel {panel.id} triangle index count {len(panel.triangle_indices)} is not a multiple of 3"
            )
        faces = panel.face_array()
        if faces.min() < 0 or faces.max() >= vertex_count:
            raise PanelError(f"Panel {panel.id} triangles reference vertices outside the mesh")

        global_indices = np.unique(faces)
        local_faces = np.searchsorted(global_indices, faces)
        return _Submesh(
            positions=vertices[global_indices],
            faces=local_faces,
            global_indices=global_indices,
        )

    def _boundary(self, panel: Panel, submesh: _Submesh) -> BoundaryInfo:
        boundary = analyze_boundaries(
            Mesh(vertices=submesh.positions, triangle_indices=submesh.faces.reshape(-1))
        )
        if boundary.is_watertight:
            raise DegenerateGeometryError(
                f"Panel {panel.id} is closed and has no boundary to cut along", panel_id=panel.id
            )
        if boundary.non_manifold_vertices:
            touching = [int(submesh.global_indices[v]) for v in boundary.non_manifold_vertices]
            raise DegenerateGeometryError(
                f"Panel {panel.id} boundary touches itself at non-manifold vertices {touching}",
                panel_id=panel.id,
            )
        if not boundary.boundary_loops:
            raise FlatteningError(
                f"Panel {panel.id} boundary does not form a closed loop", panel_id=panel.id
            )
        return boundary

    def _reject_degenerate(self, panel: Panel, positions: FloatArray, faces: np.ndarray) -> None:
        extent = positions.max(axis=0) - positions.min(axis=0)
        diagonal_sq = float(np.dot(extent, extent))
        if diagonal_sq <= 0.0:
            raise DegenerateGeometryError(
                f"Panel {panel.id} vertices all coincide", panel_id=panel.id
            )

        centred = positions - positions.mean(axis=0)
        singular = np.linalg.svd(centred, compute_uv=False)
        if len(singular) < 2 or singular[1] <= 1e-9 * singular[0]:
            raise DegenerateGeometryError(f"Panel {panel.id} vertices are collinear", panel_id=panel.id)

        p0 = positions[faces[:, 0]]
        areas = 0.5 * np.linalg.norm(
            np.cross(positions[faces[:, 1]] - p0, positions[faces[:, 2]] - p0), axis=1
        )
        threshold = self.options.degenerate_area_epsilon * diagonal_sq
        if float(areas.sum()) <= threshold:
            raise DegenerateGeometryError(f"Panel {panel.id} has zero area", panel_id=panel.id)
        degenerate = int(np.count_nonzero(areas <= threshold))
        if degenerate:
            raise DegenerateGeometryError(
                f"Panel {panel.id} contains {degenerate} zero-area triangles", panel_id=panel.id
            )

    # ------------------------------------------------------------------
    # Solver
    # ------------------------------------------------------------------
    def _initial_guess(
        self, positions: FloatArray, faces: np.ndarray, pins: np.ndarray, pin_values: np.ndarray
    ) -> np.ndarray:
        """Project onto the best-fit plane and align the projection with the pins."""

        centred = positions - positions.mean(axis=0)
        _, _, basis = np.linalg.svd(centred, full_matrices=False)
        projected = centred @ basis[0] + 1j * (centred @ basis[1])

        p0 = positions[faces[:, 0]]
        mean_normal = np.cross(positions[faces[:, 1]] - p0, positions[faces[:, 2]] - p0).sum(axis=0)
        if float(np.dot(mean_normal, np.cross(basis[0], basis[1]))) < 0.0:
            projected = np.conj(projected)

        span = projected[pins[1]] - projected[pins[0]]
        factor = (pin_values[1] - pin_values[0]) / span if abs(span) > 1e-15 else 1.0
        return pin_values[0] + factor * (projected - projected[pins[0]])

    def _solve(
        self,
        panel: Panel,
        positions: FloatArray,
        faces: np.ndarray,
        coeffs: np.ndarray,
        pins: np.ndarray,
        pin_values: np.ndarray,
        cancel: CancellationToken | None,
    ) -> _SolveResult:
        vertex_count = len(positions)
        matrix = _conformal_system(coeffs, faces, vertex_count)

        free = np.ones(vertex_count, dtype=bool)
        free[pins] = False
        free_vertices = np.nonzero(free)[0]
        free_columns = np.column_stack((2 * free_vertices, 2 * free_vertices + 1)).reshape(-1)
        fixed = np.zeros(2 * vertex_count)
        fixed[2 * pins] = pin_values.real
        fixed[2 * pins + 1] = pin_values.imag

        system = matrix[:, free_columns]
        rhs = -(matrix @ fixed)
        initial = self._initial_guess(positions, faces, pins, pin_values)
        x = np.column_stack((initial.real, initial.imag))[free_vertices].reshape(-1)

        tolerance = self.options.tolerance
        iterations = 0
        converged = False
        while iterations < self.options.max_iterations:
            check_cancelled(cancel, "flattening")
            budget = min(_ITERATION_CHUNK, self.options.max_iterations - iterations)
            x, stop, used = lsqr(
                system, rhs, atol=tolerance, btol=tolerance, iter_lim=budget, x0=x
            )[:3]
            iterations += int(used)
            if not np.all(np.isfinite(x)):
                raise FlatteningError(f"LSCM solve for panel {panel.id} diverged", panel_id=panel.id)
            if stop != _ITERATION_LIMIT:
                converged = stop in _CONVERGED
                break

        solution = fixed.copy()
        solution[free_columns] = x
        uv = solution[0::2] + 1j * solution[1::2]
        return _SolveResult(uv=uv, iterations=iterations, converged=converged)
