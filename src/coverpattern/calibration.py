"""Real-world scale calibration from two picked mesh points."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Mapping, Sequence

import numpy as np

from .meshing.mesh import Mesh, new_identifier, utc_now
from .schemas import CALIBRATION_SCHEMA_NAME, PAYLOAD_VERSION, check_payload_version, validate_payload

__all__ = ["Calibration", "CalibrationMetadata", "MIN_MESH_DISTANCE"]

#: Point pairs closer than this (in mesh units) are too close to calibrate against.
MIN_MESH_DISTANCE = 0.001

Point3D = tuple[float, float, float]


@dataclass(frozen=True, slots=True)
class CalibrationMetadata:
    description: str | None = None
    measurement_tool: str | None = None
    units: str = "meters"
    confidence: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", min(1.0, max(0.0, float(self.confidence))))

    def to_mapping(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "measurementTool": self.measurement_tool,
            "units": self.units,
            "confidence": self.confidence,
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "CalibrationMetadata":
        return cls(
            description=payload.get("description"),
            measurement_tool=payload.get("measurementTool"),
            units=str(payload.get("units", "meters")),
            confidence=float(payload.get("confidence", 1.0)),
        )


@dataclass(frozen=True, slots=True)
class Calibration:
    """Two reference points on a mesh and the real-world distance between them.

    The setters return new instances; a calibration is complete once both
    points and a positive distance are known.
    """

    first_point: Point3D | None = None
    second_point: Point3D | None = None
    real_world_distance: float = 0.0
    metadata: CalibrationMetadata = field(default_factory=CalibrationMetadata)
    id: str = field(default_factory=new_identifier)
    created_at: datetime = field(default_factory=utc_now)
    version: str = PAYLOAD_VERSION

    def __post_init__(self) -> None:
        object.__setattr__(self, "first_point", _as_point(self.first_point))
        object.__setattr__(self, "second_point", _as_point(self.second_point))
        object.__setattr__(self, "real_world_distance", float(self.real_world_distance))

    @property
    def is_complete(self) -> bool:
        return (
            self.first_point is not None
            and self.second_point is not None
            and self.real_world_distance > 0.0
        )

    @property
    def mesh_distance(self) -> float:
        if self.first_point is None or self.second_point is None:
            return 0.0
        return float(np.linalg.norm(np.subtract(self.second_point, self.first_point)))

    @property
    def scale_factor(self) -> float:
        """Mesh-to-metre factor, or ``1.0`` when the calibration cannot be used."""

        if not self.is_complete:
            return 1.0
        distance = self.mesh_distance
        if distance <= MIN_MESH_DISTANCE:
            return 1.0
        return self.real_world_distance / distance

    def with_first_point(self, point: Sequence[float] | None) -> "Calibration":
        return replace(self, first_point=point)

    def with_second_point(self, point: Sequence[float] | None) -> "Calibration":
        return replace(self, second_point=point)

    def with_real_world_distance(self, distance: float) -> "Calibration":
        return replace(self, real_world_distance=max(0.0, float(distance)))

    def with_metadata(self, metadata: CalibrationMetadata) -> "Calibration":
        return replace(self, metadata=metadata)

    def reset(self) -> "Calibration":
        return replace(self, first_point=None, second_point=None, real_world_distance=0.0)

    def apply_to_mesh(self, mesh: Mesh) -> Mesh:
        """Scale ``mesh`` into metres; incomplete calibrations return it untouched."""

        factor = self.scale_factor
        if factor == 1.0:
            return mesh
        return mesh.scaled(factor)

    def to_mapping(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "realWorldDistance": self.real_world_distance,
            "metadata": self.metadata.to_mapping(),
            "createdAt": self.created_at.isoformat(),
            "version": self.version,
        }
        if self.first_point is not None:
            payload["firstPoint"] = list(self.first_point)
        if self.second_point is not None:
            payload["secondPoint"] = list(self.second_point)
        return payload

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Calibration":
        validate_payload(payload, CALIBRATION_SCHEMA_NAME)
        kwargs: dict[str, Any] = {"version": check_payload_version(payload)}
        if "id" in payload:
            kwargs["id"] = str(payload["id"])
        if "createdAt" in payload:
            kwargs["created_at"] = datetime.fromisoformat(str(payload["createdAt"]))
        return cls(
            first_point=payload.get("firstPoint"),
            second_point=payload.get("secondPoint"),
            real_world_distance=float(payload["realWorldDistance"]),
            metadata=CalibrationMetadata.from_mapping(payload.get("metadata", {})),
            **kwargs,
        )


def _as_point(value: Sequence[float] | None) -> Point3D | None:
    if value is None:
        return None
    x, y, z = value
    return (float(x), float(y), float(z))
