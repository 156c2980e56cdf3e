"""Result records returned by :class:`~coverpattern.validation.PatternValidator`."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

__all__ = [
    "FabricCompatibilityResult",
    "FabricUtilizationResult",
    "IssueKind",
    "IssueSeverity",
    "PatternSetValidationResult",
    "PatternValidationResult",
    "ValidationIssue",
    "ValidationWarning",
    "WarningKind",
]


class IssueSeverity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def is_blocking(self) -> bool:
        return self in (IssueSeverity.CRITICAL, IssueSeverity.ERROR)


class IssueKind(str, Enum):
    GEOMETRY = "geometry"
    SEAM_ALLOWANCE = "seam_allowance"
    SIZE = "size"
    INTERSECTION = "intersection"
    DISTORTION = "distortion"
    LAYOUT = "layout"
    GRAIN_LINE = "grain_line"
    FABRIC_COMPATIBILITY = "fabric_compatibility"


class WarningKind(str, Enum):
    SEAM_ALLOWANCE = "seam_allowance"
    DISTORTION = "distortion"
    EFFICIENCY = "efficiency"
    OPTIMIZATION = "optimization"
    GRAIN_LINE = "grain_line"


Location = tuple[float, float]


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    """Single validation finding with a stable code."""

    severity: IssueSeverity
    kind: IssueKind
    code: str
    message: str
    panel_id: str | None = None
    location: Location | None = None

    @property
    def is_blocking(self) -> bool:
        return self.severity.is_blocking

    def to_mapping(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "panelId": self.panel_id,
            "location": None if self.location is None else list(self.location),
        }


@dataclass(frozen=True, slots=True)
class ValidationWarning:
    """Advisory finding that never affects validity."""

    kind: WarningKind
    code: str
    message: str
    panel_id: str | None = None
    location: Location | None = None

    def to_mapping(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "panelId": self.panel_id,
            "location": None if self.location is None else list(self.location),
        }


def _summary(is_valid: bool, issues: tuple[ValidationIssue, ...], warnings: tuple[ValidationWarning, ...]) -> str:
    blocking = sum(1 for issue in issues if issue.is_blocking)
    status = "Valid" if is_valid else "Invalid"
    return f"{status}: {blocking} blocking issue(s), {len(issues) - blocking} advisory issue(s), {len(warnings)} warning(s)"


@dataclass(frozen=True, slots=True)
class PatternValidationResult:
    """Validation outcome for one flattened panel. Areas and lengths are in millimetres."""

    panel_id: str
    is_valid: bool
    issues: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationWarning, ...] = ()
    area_mm2: float = 0.0
    max_distortion: float | None = None
    average_distortion: float | None = None

    @property
    def summary(self) -> str:
        return _summary(self.is_valid, self.issues, self.warnings)

    def codes(self) -> tuple[str, ...]:
        return tuple(issue.code for issue in self.issues)

    def to_mapping(self) -> dict[str, Any]:
        return {
            "panelId": self.panel_id,
            "isValid": self.is_valid,
            "issues": [issue.to_mapping() for issue in self.issues],
            "warnings": [warning.to_mapping() for warning in self.warnings],
            "areaMm2": self.area_mm2,
            "maxDistortion": self.max_distortion,
            "averageDistortion": self.average_distortion,
            "summary": self.summary,
        }


@dataclass(frozen=True, slots=True)
class FabricCompatibilityResult:
    compatible_widths_mm: tuple[float, ...]
    recommended_width_mm: float | None
    requires_custom_width: bool
    max_panel_width_mm: float
    issues: tuple[str, ...] = ()

    @property
    def summary(self) -> str:
        if self.recommended_width_mm is None:
            return "No panels to place"
        if self.requires_custom_width:
            return f"Custom fabric width of at least {self.recommended_width_mm:.0f} mm required"
        return f"Recommended fabric width {self.recommended_width_mm:.0f} mm"

    def to_mapping(self) -> dict[str, Any]:
        return {
            "compatibleWidthsMm": list(self.compatible_widths_mm),
            "recommendedWidthMm": self.recommended_width_mm,
            "requiresCustomWidth": self.requires_custom_width,
            "maxPanelWidthMm": self.max_panel_width_mm,
            "issues": list(self.issues),
            "summary": self.summary,
        }


@dataclass(frozen=True, slots=True)
class FabricUtilizationResult:
    """Fabric usage for a naive single-strip layout at ``fabric_width_mm``."""

    fabric_width_mm: float
    total_panel_area_mm2: float
    fabric_area_mm2: float
    required_length_mm: float
    efficiency: float
    oversized_panel_ids: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()

    @property
    def summary(self) -> str:
        return (
            f"{self.efficiency:.0%} of {self.required_length_mm:.0f} mm x "
            f"{self.fabric_width_mm:.0f} mm fabric used"
        )

    def to_mapping(self) -> dict[str, Any]:
        return {
            "fabricWidthMm": self.fabric_width_mm,
            "totalPanelAreaMm2": self.total_panel_area_mm2,
            "fabricAreaMm2": self.fabric_area_mm2,
            "requiredLengthMm": self.required_length_mm,
            "efficiency": self.efficiency,
            "oversizedPanelIds": list(self.oversized_panel_ids),
            "recommendations": list(self.recommendations),
            "summary": self.summary,
        }


@dataclass(frozen=True, slots=True)
class PatternSetValidationResult:
    """Validation outcome for a set of panels cut from the same fabric."""

    is_valid: bool
    panel_results: tuple[PatternValidationResult, ...] = ()
    issues: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationWarning, ...] = ()
    total_area_mm2: float = 0.0
    recommended_fabric_width_mm: float | None = None
    fabric_compatibility: FabricCompatibilityResult | None = None
    fabric_utilization: FabricUtilizationResult | None = None

    @property
    def all_issues(self) -> tuple[ValidationIssue, ...]:
        collected: list[ValidationIssue] = []
        for result in self.panel_results:
            collected.extend(result.issues)
        collected.extend(self.issues)
        return tuple(collected)

    @property
    def summary(self) -> str:
        warnings = list(self.warnings)
        for result in self.panel_results:
            warnings.extend(result.warnings)
        return _summary(self.is_valid, self.all_issues, tuple(warnings))

    def to_mapping(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "panelResults": [result.to_mapping() for result in self.panel_results],
            "issues": [issue.to_mapping() for issue in self.issues],
            "warnings": [warning.to_mapping() for warning in self.warnings],
            "totalAreaMm2": self.total_area_mm2,
            "recommendedFabricWidthMm": self.recommended_fabric_width_mm,
            "fabricCompatibility": None
            if self.fabric_compatibility is None
            else self.fabric_compatibility.to_mapping(),
            "fabricUtilization": None
            if self.fabric_utilization is None
            else self.fabric_utilization.to_mapping(),
            "summary": self.summary,
        }
