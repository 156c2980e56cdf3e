"""Exception hierarchy shared by every pipeline stage."""

from __future__ import annotations

__all__ = [
    "CoverPatternError",
    "DegenerateGeometryError",
    "FlatteningError",
    "MeshError",
    "OperationCancelledError",
    "PanelError",
    "SchemaValidationError",
    "SegmentationError",
    "SelfIntersectionError",
    "UnsupportedVersionError",
]


class CoverPatternError(RuntimeError):
    """Base class for errors raised by the pattern pipeline."""

    module = "core"
    code = "CORE000"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_mapping(self) -> dict[str, str]:
        return {"module": self.module, "code": self.code, "message": self.message}


class MeshError(CoverPatternError):
    """Raised when a mesh is empty or references vertices it does not have."""

    module = "mesh"
    code = "MESH001"


class PanelError(CoverPatternError):
    """Raised when a panel does not describe a usable subset of its mesh."""

    module = "panel"
    code = "PANEL001"


class SegmentationError(CoverPatternError):
    """Raised when segmentation parameters are outside their sane bounds."""

    module = "segmentation"
    code = "SEG003"

    def __init__(self, message: str, *, panel_count: int | None = None) -> None:
        self.panel_count = panel_count
        super().__init__(message)


class FlatteningError(CoverPatternError):
    """Raised when a panel cannot be mapped to the plane."""

    module = "flattening"
    code = "FLAT002"

    def __init__(self, message: str, *, panel_id: str | None = None) -> None:
        self.panel_id = panel_id
        super().__init__(message)


class DegenerateGeometryError(FlatteningError):
    """Raised for zero-area, collinear or boundary-less panels."""

    code = "FLAT003"


class SelfIntersectionError(FlatteningError):
    """Raised when the flattened outline crosses itself."""

    code = "FLAT004"


class OperationCancelledError(CoverPatternError):
    """Raised when a long-running stage observes a cancellation request."""

    module = "cancellation"
    code = "CANCEL001"


class SchemaValidationError(CoverPatternError):
    """Raised when a payload fails JSON-Schema validation."""

    module = "schemas"
    code = "SCHEMA001"

    def __init__(self, message: str, *, errors: tuple[str, ...] = ()) -> None:
        self.errors = tuple(errors)
        super().__init__(message)


class UnsupportedVersionError(SchemaValidationError):
    """Raised when a payload carries an incompatible major version."""

    code = "SCHEMA002"
