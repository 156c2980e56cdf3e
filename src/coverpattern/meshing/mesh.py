"""Triangle mesh value type shared by every pipeline stage."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Mapping, NamedTuple, Sequence

import numpy as np

from ..errors import MeshError
from ..schemas import MESH_SCHEMA_NAME, PAYLOAD_VERSION, check_payload_version, validate_payload

if TYPE_CHECKING:  # pragma: no cover - typing only
    import trimesh

    from .repair import ProcessingOptions, ProcessingResult

__all__ = ["Edge", "Mesh", "new_identifier", "utc_now"]


def new_identifier() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Edge(NamedTuple):
    """Undirected mesh edge stored as ``(min, max)`` so it can key dicts and sets."""

    v0: int
    v1: int

    @classmethod
    def of(cls, a: int, b: int) -> "Edge":
        a = int(a)
        b = int(b)
        return cls(a, b) if a <= b else cls(b, a)

    def other(self, vertex: int) -> int:
        if vertex == self.v0:
            return self.v1
        if vertex == self.v1:
            return self.v0
        raise ValueError(f"Vertex {vertex} is not part of edge {tuple(self)}")


@dataclass(frozen=True, slots=True)
class Mesh:
    """Immutable triangle mesh.

    ``triangle_indices`` is a flat sequence of vertex-index triples. Every
    operation that changes geometry returns a new :class:`Mesh`.
    """

    vertices: tuple[tuple[float, float, float], ...]
    triangle_indices: tuple[int, ...]
    id: str = field(default_factory=new_identifier)
    created_at: datetime = field(default_factory=utc_now)
    version: str = PAYLOAD_VERSION

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "vertices",
            tuple((float(x), float(y), float(z)) for x, y, z in _as_rows(self.vertices, 3)),
        )
        indices = np.asarray(self.triangle_indices, dtype=np.int64).reshape(-1)
        object.__setattr__(self, "triangle_indices", tuple(int(idx) for idx in indices))

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------
    @classmethod
    def from_arrays(cls, vertices: Any, faces: Any, **kwargs: Any) -> "Mesh":
        """Build a mesh from ``(N, 3)`` vertices and ``(M, 3)`` or flat faces."""

        return cls(
            vertices=np.asarray(vertices, dtype=float).reshape(-1, 3).tolist(),
            triangle_indices=np.asarray(faces, dtype=np.int64).reshape(-1).tolist(),
            **kwargs,
        )

    @classmethod
    def from_trimesh(cls, mesh: "trimesh.Trimesh") -> "Mesh":
        return cls.from_arrays(mesh.vertices, mesh.faces)

    def to_trimesh(self) -> "trimesh.Trimesh":
        """Return a :class:`trimesh.Trimesh` view without trimesh's merge/repair processing."""

        import trimesh

        return trimesh.Trimesh(
            vertices=self.vertex_array(),
            faces=self.face_array(),
            process=False,
        )

    # ------------------------------------------------------------------
    # Basic queries
    # ------------------------------------------------------------------
    @property
    def triangle_count(self) -> int:
        return len(self.triangle_indices) // 3

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def is_valid(self) -> bool:
        return self.invalid_reason() is None

    def invalid_reason(self) -> str | None:
        """Describe why the mesh is invalid, or ``None`` when it is usable."""

        if not self.vertices:
            return "mesh has no vertices"
        if not self.triangle_indices:
            return "mesh has no triangles"
        if len(self.triangle_indices) % 3 != 0:
            return f"triangle index count {len(self.triangle_indices)} is not a multiple of 3"
        vertex_count = len(self.vertices)
        for idx in self.triangle_indices:
            if idx < 0 or idx >= vertex_count:
                return f"triangle index {idx} outside [0, {vertex_count})"
        return None

    def validate(self) -> None:
        """Raise :class:`MeshError` when the mesh violates its index invariants."""

        reason = self.invalid_reason()
        if reason is not None:
            raise MeshError(f"Invalid mesh {self.id}: {reason}")

    def vertex_array(self) -> np.ndarray:
        if not self.vertices:
            return np.zeros((0, 3), dtype=float)
        return np.asarray(self.vertices, dtype=float)

    def face_array(self) -> np.ndarray:
        usable = len(self.triangle_indices) - len(self.triangle_indices) % 3
        return np.asarray(self.triangle_indices[:usable], dtype=np.int64).reshape(-1, 3)

    def bounding_box(self) -> tuple[np.ndarray, np.ndarray] | None:
        """Return ``(min, max)`` corners, or ``None`` for a mesh without vertices."""

        if not self.vertices:
            return None
        points = self.vertex_array()
        return points.min(axis=0), points.max(axis=0)

    def face_normals(self) -> np.ndarray:
        """Unit normals per triangle; degenerate triangles get a zero vector."""

        vertices = self.vertex_array()
        faces = self.face_array()
        if faces.size == 0:
            return np.zeros((0, 3), dtype=float)
        cross = np.cross(vertices[faces[:, 1]] - vertices[faces[:, 0]], vertices[faces[:, 2]] - vertices[faces[:, 0]])
        norms = np.linalg.norm(cross, axis=1)
        normals = np.zeros_like(cross)
        nonzero = norms > 1e-15
        normals[nonzero] = cross[nonzero] / norms[nonzero, None]
        return normals

    def triangle_areas(self) -> np.ndarray:
        vertices = self.vertex_array()
        faces = self.face_array()
        if faces.size == 0:
            return np.zeros(0, dtype=float)
        cross = np.cross(vertices[faces[:, 1]] - vertices[faces[:, 0]], vertices[faces[:, 2]] - vertices[faces[:, 0]])
        return 0.5 * np.linalg.norm(cross, axis=1)

    def surface_area(self) -> float:
        return float(self.triangle_areas().sum())

    def scaled(self, factor: float) -> "Mesh":
        """Return a uniformly scaled copy with a fresh identifier."""

        return Mesh(
            vertices=(self.vertex_array() * float(factor)).tolist(),
            triangle_indices=self.triangle_indices,
        )

    def processed(self, options: "ProcessingOptions") -> "ProcessingResult":
        from .repair import process_mesh

        return process_mesh(self, options)

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------
    def to_mapping(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "vertices": [list(vertex) for vertex in self.vertices],
            "triangleIndices": list(self.triangle_indices),
            "createdAt": self.created_at.isoformat(),
            "version": self.version,
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Mesh":
        validate_payload(payload, MESH_SCHEMA_NAME)
        version = check_payload_version(payload)
        kwargs: dict[str, Any] = {"version": version}
        if "id" in payload:
            kwargs["id"] = str(payload["id"])
        if "createdAt" in payload:
            kwargs["created_at"] = datetime.fromisoformat(str(payload["createdAt"]))
        return cls(
            vertices=payload.get("vertices", []),
            triangle_indices=payload.get("triangleIndices", []),
            **kwargs,
        )


def _as_rows(values: Any, width: int) -> Sequence[Sequence[float]]:
    if isinstance(values, np.ndarray):
        if values.size == 0:
            return []
        return values.reshape(-1, width).tolist()
    rows = list(values)
    for row in rows:
        if len(row) != width:
            raise MeshError(f"Expected {width} coordinates per vertex, received {len(row)}")
    return rows
