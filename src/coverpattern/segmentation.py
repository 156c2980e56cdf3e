"""Partition a mesh into panels by clustering triangle position and orientation."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

import numpy as np
import trimesh

from .cancellation import CancellationToken, check_cancelled
from .errors import SegmentationError
from .meshing.mesh import Mesh
from .panel_model import Color, Panel

__all__ = [
    "PanelSegmenter",
    "SegmentationOptions",
    "SegmentationResolution",
]

logger = logging.getLogger(__name__)


class SegmentationResolution(str, Enum):
    """Preview resolutions mapped to a target panel count."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def panel_count(self) -> int:
        return _RESOLUTION_PANEL_COUNTS[self]


_RESOLUTION_PANEL_COUNTS = {
    SegmentationResolution.LOW: 5,
    SegmentationResolution.MEDIUM: 8,
    SegmentationResolution.HIGH: 15,
}


@dataclass(frozen=True, slots=True)
class SegmentationOptions:
    """Clustering knobs.

    ``spatial_weight`` scales the squared distance between triangle centroids
    (normalised by the mesh bounding-box diagonal) and ``normal_weight`` the
    squared distance between unit face normals.
    """

    max_iterations: int = 50
    preview_max_iterations: int = 15
    convergence_threshold: float = 1e-4
    spatial_weight: float = 1.0
    normal_weight: float = 1.0
    min_panel_count: int = 3
    max_panel_count: int = 20
    target_panel_count: int = 8

    def to_mapping(self) -> dict[str, Any]:
        return {
            "maxIterations": self.max_iterations,
            "previewMaxIterations": self.preview_max_iterations,
            "convergenceThreshold": self.convergence_threshold,
            "spatialWeight": self.spatial_weight,
            "normalWeight": self.normal_weight,
            "minPanelCount": self.min_panel_count,
            "maxPanelCount": self.max_panel_count,
            "targetPanelCount": self.target_panel_count,
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "SegmentationOptions":
        defaults = cls()
        return cls(
            max_iterations=int(payload.get("maxIterations", defaults.max_iterations)),
            preview_max_iterations=int(
                payload.get("previewMaxIterations", defaults.preview_max_iterations)
            ),
            convergence_threshold=float(
                payload.get("convergenceThreshold", defaults.convergence_threshold)
            ),
            spatial_weight=float(payload.get("spatialWeight", defaults.spatial_weight)),
            normal_weight=float(payload.get("normalWeight", defaults.normal_weight)),
            min_panel_count=int(payload.get("minPanelCount", defaults.min_panel_count)),
            max_panel_count=int(payload.get("maxPanelCount", defaults.max_panel_count)),
            target_panel_count=int(payload.get("targetPanelCount", defaults.target_panel_count)),
        )


@dataclass(frozen=True, slots=True)
class _ClusterRun:
    labels: np.ndarray
    iterations: int
    converged: bool


class PanelSegmenter:
    """Split a mesh into roughly planar, spatially coherent panels.

    Clustering is a k-means over per-triangle features seeded by
    farthest-point sampling, so a fixed input always produces the same
    panels. Failing to converge is not an error: the last partition is
    returned and a warning logged.
    """

    def __init__(self, options: SegmentationOptions | None = None) -> None:
        self.options = options or SegmentationOptions()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def segment_mesh(
        self,
        mesh: Mesh,
        target_panel_count: int | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> list[Panel]:
        count = self.options.target_panel_count if target_panel_count is None else target_panel_count
        return self._segment(mesh, int(count), self.options.max_iterations, cancel)

    def preview_segmentation(
        self,
        mesh: Mesh,
        resolution: SegmentationResolution | str = SegmentationResolution.MEDIUM,
        *,
        cancel: CancellationToken | None = None,
    ) -> list[Panel]:
        """Cheaper segmentation with a tighter iteration budget for previews."""

        resolution = SegmentationResolution(resolution)
        return self._segment(
            mesh, resolution.panel_count, self.options.preview_max_iterations, cancel
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _segment(
        self,
        mesh: Mesh,
        target_panel_count: int,
        max_iterations: int,
        cancel: CancellationToken | None,
    ) -> list[Panel]:
        mesh.validate()
        low = self.options.min_panel_count
        high = self.options.max_panel_count
        if not low <= target_panel_count <= high:
            raise SegmentationError(
                f"Target panel count {target_panel_count} outside [{low}, {high}]",
                panel_count=target_panel_count,
            )

        faces = mesh.face_array()
        features = self._triangle_features(mesh)
        cluster_count = min(target_panel_count, len(faces))
        run = self._cluster(features, cluster_count, max_iterations, cancel)
        if not run.converged:
            logger.warning(
                "Segmentation of mesh %s stopped at the %d-iteration cap without converging",
                mesh.id,
                run.iterations,
            )

        labels = self._make_contiguous(mesh, run.labels, cancel)
        members = [np.nonzero(labels == label)[0] for label in np.unique(labels)]
        colors = Color.palette(len(members))

        panels: list[Panel] = []
        for indices, color in zip(members, colors):
            triangles = faces[indices]
            panels.append(
                Panel(
                    vertex_indices=frozenset(int(v) for v in np.unique(triangles)),
                    triangle_indices=tuple(int(v) for v in triangles.reshape(-1)),
                    color=color,
                )
            )

        logger.info(
            "Segmented mesh %s into %d panels (target %d, %d iterations)",
            mesh.id,
            len(panels),
            target_panel_count,
            run.iterations,
        )
        return panels

    def _triangle_features(self, mesh: Mesh) -> tuple[np.ndarray, np.ndarray]:
        vertices = mesh.vertex_array()
        faces = mesh.face_array()
        centroids = vertices[faces].mean(axis=1)
        diagonal = float(np.linalg.norm(vertices.max(axis=0) - vertices.min(axis=0)))
        if diagonal <= 1e-12:
            diagonal = 1.0
        return centroids / diagonal, mesh.face_normals()

    def _distances(
        self,
        positions: np.ndarray,
        normals: np.ndarray,
        centre_positions: np.ndarray,
        centre_normals: np.ndarray,
    ) -> np.ndarray:
        spatial = ((positions[:, None, :] - centre_positions[None, :, :]) ** 2).sum(axis=2)
        angular = ((normals[:, None, :] - centre_normals[None, :, :]) ** 2).sum(axis=2)
        return self.options.spatial_weight * spatial + self.options.normal_weight * angular

    def _seed(self, positions: np.ndarray, normals: np.ndarray, count: int) -> np.ndarray:
        """Farthest-point sampling starting from the triangle farthest from the centroid."""

        offsets = np.linalg.norm(positions - positions.mean(axis=0), axis=1)
        seeds = [int(np.argmax(offsets))]
        nearest = self._distances(positions, normals, positions[seeds], normals[seeds])[:, 0]
        while len(seeds) < count:
            candidate = int(np.argmax(nearest))
            seeds.append(candidate)
            fresh = self._distances(
                positions, normals, positions[[candidate]], normals[[candidate]]
            )[:, 0]
            nearest = np.minimum(nearest, fresh)
        return np.asarray(seeds, dtype=np.int64)

    def _cluster(
        self,
        features: tuple[np.ndarray, np.ndarray],
        count: int,
        max_iterations: int,
        cancel: CancellationToken | None,
    ) -> _ClusterRun:
        positions, normals = features
        seeds = self._seed(positions, normals, count)
        centre_positions = positions[seeds].copy()
        centre_normals = normals[seeds].copy()
        labels = np.zeros(len(positions), dtype=np.int64)

        iterations = 0
        converged = False
        for iteration in range(max(1, max_iterations)):
            check_cancelled(cancel, "segmentation")
            iterations = iteration + 1
            labels = np.argmin(
                self._distances(positions, normals, centre_positions, centre_normals), axis=1
            )

            new_positions = centre_positions.copy()
            new_normals = centre_normals.copy()
            for cluster in range(count):
                mask = labels == cluster
                if not mask.any():
                    continue
                new_positions[cluster] = positions[mask].mean(axis=0)
                mean_normal = normals[mask].mean(axis=0)
                length = float(np.linalg.norm(mean_normal))
                new_normals[cluster] = mean_normal / length if length > 1e-12 else mean_normal

            movement = float(
                np.sqrt(
                    self.options.spatial_weight
                    * ((new_positions - centre_positions) ** 2).sum(axis=1)
                    + self.options.normal_weight * ((new_normals - centre_normals) ** 2).sum(axis=1)
                ).sum()
            )
            centre_positions = new_positions
            centre_normals = new_normals
            logger.debug("Segmentation iteration %d moved centroids by %.6g", iterations, movement)
            if movement < self.options.convergence_threshold:
                converged = True
                break

        return _ClusterRun(labels=labels, iterations=iterations, converged=converged)

    # ------------------------------------------------------------------
    # Contiguity
    # ------------------------------------------------------------------
    def _make_contiguous(
        self, mesh: Mesh, labels: np.ndarray, cancel: CancellationToken | None
    ) -> np.ndarray:
        """Relabel triangles until every cluster is one edge-connected, unpinched region.

        Clusters are split into components over edges shared by exactly two
        triangles; all but the largest component of each cluster join the
        neighbouring cluster they share the most edges with (or start a new
        cluster when they have no neighbours). Triangle fans that only touch
        the rest of their cluster at a vertex are handed over the same way.
        """

        surface = mesh.to_trimesh()
        faces = np.asarray(surface.faces, dtype=np.int64)
        adjacency = np.asarray(surface.face_adjacency, dtype=np.int64).reshape(-1, 2)
        shared = np.asarray(surface.face_adjacency_edges, dtype=np.int64).reshape(-1, 2)
        labels = np.asarray(labels, dtype=np.int64).copy()

        for _ in range(len(faces) + 1):
            check_cancelled(cancel, "segmentation")
            if self._absorb_fragments(labels, adjacency):
                continue
            if not self._release_pinches(labels, faces, adjacency, shared):
                return labels
        logger.warning("Panels of mesh %s still touch themselves at a vertex", mesh.id)
        return labels

    def _absorb_fragments(self, labels: np.ndarray, adjacency: np.ndarray) -> bool:
        same = labels[adjacency[:, 0]] == labels[adjacency[:, 1]]
        groups = trimesh.graph.connected_components(
            adjacency[same], nodes=np.arange(len(labels))
        )

        by_label: dict[int, list[np.ndarray]] = defaultdict(list)
        for group in groups:
            members = np.sort(np.asarray(group, dtype=np.int64).reshape(-1))
            by_label[int(labels[members[0]])].append(members)

        fragments: list[np.ndarray] = []
        for parts in by_label.values():
            parts.sort(key=lambda part: (-len(part), int(part[0])))
            fragments.extend(parts[1:])
        if not fragments:
            return False

        fragments.sort(key=lambda part: (len(part), int(part[0])))
        next_label = int(labels.max()) + 1
        for fragment in fragments:
            target = _busiest_neighbour(labels, adjacency, fragment)
            if target is None:
                target = next_label
                next_label += 1
            labels[fragment] = target
        logger.debug("Reassigned %d disconnected cluster fragments", len(fragments))
        return True

    def _release_pinches(
        self,
        labels: np.ndarray,
        faces: np.ndarray,
        adjacency: np.ndarray,
        shared: np.ndarray,
    ) -> bool:
        # Corner ``3 * face + k`` is vertex ``faces[face, k]`` seen from ``face``;
        # corners are linked across edges shared inside one cluster, so the
        # components are the fans each cluster forms around each vertex.
        same = labels[adjacency[:, 0]] == labels[adjacency[:, 1]]
        pairs = adjacency[same]
        edges = shared[same]
        links = []
        for column in range(2):
            vertex = edges[:, column][:, None]
            first = pairs[:, 0] * 3 + np.argmax(faces[pairs[:, 0]] == vertex, axis=1)
            second = pairs[:, 1] * 3 + np.argmax(faces[pairs[:, 1]] == vertex, axis=1)
            links.append(np.column_stack((first, second)))
        fans = trimesh.graph.connected_components(np.vstack(links), nodes=np.arange(faces.size))

        flat = faces.reshape(-1)
        by_vertex: dict[tuple[int, int], list[np.ndarray]] = defaultdict(list)
        for fan in fans:
            corners = np.asarray(fan, dtype=np.int64).reshape(-1)
            key = (int(labels[corners[0] // 3]), int(flat[corners[0]]))
            by_vertex[key].append(np.unique(corners // 3))

        moved = False
        for (label, _vertex), parts in sorted(by_vertex.items()):
            if len(parts) < 2:
                continue
            parts.sort(key=lambda part: (-len(part), int(part[0])))
            for part in parts[1:]:
                if np.any(labels[part] != label):
                    continue
                target = _busiest_neighbour(labels, adjacency, part, exclude=label)
                if target is None:
                    continue
                labels[part] = target
                moved = True
        return moved


def _busiest_neighbour(
    labels: np.ndarray, adjacency: np.ndarray, members: np.ndarray, exclude: int | None = None
) -> int | None:
    """Label sharing the most edges with ``members``; ties go to the lowest label."""

    inside = np.zeros(len(labels), dtype=bool)
    inside[members] = True
    crossing = inside[adjacency[:, 0]] != inside[adjacency[:, 1]]
    pairs = adjacency[crossing]
    outside = np.where(inside[pairs[:, 0]], pairs[:, 1], pairs[:, 0])
    candidates = labels[outside]
    if exclude is not None:
        candidates = candidates[candidates != exclude]
    if candidates.size == 0:
        return None
    values, counts = np.unique(candidates, return_counts=True)
    return int(values[np.argmax(counts)])
