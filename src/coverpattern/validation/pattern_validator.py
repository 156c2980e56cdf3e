"""Manufacturability checks for flattened pattern pieces."""

from __future__ import annotations

import math
from dataclasses import dataclass
from itertools import combinations
from typing import Any, Mapping, Sequence

import numpy as np

from ..panel_model import EdgeType, FlattenedPanel
from .geometry import bounding_boxes_overlap, polygon_self_intersections, polygons_overlap
from .results import (
    FabricCompatibilityResult,
    FabricUtilizationResult,
    IssueKind,
    IssueSeverity,
    PatternSetValidationResult,
    PatternValidationResult,
    ValidationIssue,
    ValidationWarning,
    WarningKind,
)

__all__ = ["PatternValidator", "PatternValidatorConfig", "STANDARD_FABRIC_WIDTHS_MM"]

#: Common bolt widths (42", 45", 54" and 60").
STANDARD_FABRIC_WIDTHS_MM: tuple[float, ...] = (1067.0, 1143.0, 1372.0, 1524.0)

_GRAIN_ELONGATION = 1.2
_GRAIN_TOLERANCE_DEGREES = 45.0


@dataclass(frozen=True, slots=True)
class PatternValidatorConfig:
    """Thresholds in millimetres unless stated otherwise."""

    fabric_widths_mm: tuple[float, ...] = STANDARD_FABRIC_WIDTHS_MM
    seam_min_mm: float = 3.0
    seam_max_mm: float = 50.0
    seam_consistency_tolerance_mm: float = 2.5
    min_panel_area_mm2: float = 100.0
    min_edge_length_mm: float = 10.0
    max_distortion_ratio: float = 1.5
    average_distortion_warning: float = 0.10
    max_aspect_ratio: float = 20.0
    collinearity_epsilon: float = 1e-6
    low_efficiency_threshold: float = 0.5
    efficiency_threshold: float = 0.65
    excellent_efficiency_threshold: float = 0.85

    def to_mapping(self) -> dict[str, Any]:
        return {
            "fabricWidthsMm": list(self.fabric_widths_mm),
            "seamMinMm": self.seam_min_mm,
            "seamMaxMm": self.seam_max_mm,
            "seamConsistencyToleranceMm": self.seam_consistency_tolerance_mm,
            "minPanelAreaMm2": self.min_panel_area_mm2,
            "minEdgeLengthMm": self.min_edge_length_mm,
            "maxDistortionRatio": self.max_distortion_ratio,
            "averageDistortionWarning": self.average_distortion_warning,
            "maxAspectRatio": self.max_aspect_ratio,
            "collinearityEpsilon": self.collinearity_epsilon,
            "lowEfficiencyThreshold": self.low_efficiency_threshold,
            "efficiencyThreshold": self.efficiency_threshold,
            "excellentEfficiencyThreshold": self.excellent_efficiency_threshold,
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "PatternValidatorConfig":
        defaults = cls()
        values = defaults.to_mapping()
        values.update(payload)
        return cls(
            fabric_widths_mm=tuple(sorted(float(width) for width in values["fabricWidthsMm"])),
            seam_min_mm=float(values["seamMinMm"]),
            seam_max_mm=float(values["seamMaxMm"]),
            seam_consistency_tolerance_mm=float(values["seamConsistencyToleranceMm"]),
            min_panel_area_mm2=float(values["minPanelAreaMm2"]),
            min_edge_length_mm=float(values["minEdgeLengthMm"]),
            max_distortion_ratio=float(values["maxDistortionRatio"]),
            average_distortion_warning=float(values["averageDistortionWarning"]),
            max_aspect_ratio=float(values["maxAspectRatio"]),
            collinearity_epsilon=float(values["collinearityEpsilon"]),
            low_efficiency_threshold=float(values["lowEfficiencyThreshold"]),
            efficiency_threshold=float(values["efficiencyThreshold"]),
            excellent_efficiency_threshold=float(values["excellentEfficiencyThreshold"]),
        )


def _mm_per_unit(panel: FlattenedPanel) -> float:
    return 1000.0 / panel.scale_units_per_meter


def _footprint_mm(panel: FlattenedPanel) -> tuple[np.ndarray, np.ndarray] | None:
    footprint = panel.footprint()
    if footprint is None or panel.scale_units_per_meter <= 0.0:
        return None
    factor = _mm_per_unit(panel)
    return footprint[0] * factor, footprint[1] * factor


def _location(point: np.ndarray) -> tuple[float, float]:
    return (float(point[0]), float(point[1]))


class PatternValidator:
    """Check flattened panels for geometric soundness, seams and fabric fit.

    Every method is a pure function of its arguments; invalid input yields
    a result with blocking issues rather than an exception.
    """

    def __init__(self, config: PatternValidatorConfig | None = None) -> None:
        self.config = config or PatternValidatorConfig()

    # ------------------------------------------------------------------
    # Single panel
    # ------------------------------------------------------------------
    def validate_panel(self, panel: FlattenedPanel) -> PatternValidationResult:
        issues: list[ValidationIssue] = []
        warnings: list[ValidationWarning] = []

        def issue(
            severity: IssueSeverity,
            kind: IssueKind,
            code: str,
            message: str,
            location: np.ndarray | None = None,
        ) -> None:
            issues.append(
                ValidationIssue(
                    severity=severity,
                    kind=kind,
                    code=code,
                    message=message,
                    panel_id=panel.id,
                    location=None if location is None else _location(location),
                )
            )

        def finish(area: float = 0.0, ratios: Sequence[float] = ()) -> PatternValidationResult:
            return PatternValidationResult(
                panel_id=panel.id,
                is_valid=not any(item.is_blocking for item in issues),
                issues=tuple(issues),
                warnings=tuple(warnings),
                area_mm2=area,
                max_distortion=max(ratios, key=lambda r: abs(r - 1.0)) if ratios else None,
                average_distortion=float(np.mean([abs(r - 1.0) for r in ratios])) if ratios else None,
            )

        if panel.scale_units_per_meter <= 0.0:
            issue(
                IssueSeverity.CRITICAL,
                IssueKind.GEOMETRY,
                "invalid_scale",
                f"Scale factor {panel.scale_units_per_meter} must be positive.",
            )
            return finish()

        points = panel.point_array() * _mm_per_unit(panel)
        if len(points) < 3:
            issue(
                IssueSeverity.CRITICAL,
                IssueKind.GEOMETRY,
                "insufficient_points",
                f"Panel has {len(points)} points; at least 3 are required.",
            )
            return finish()

        point_count = len(points)
        valid_edges = [
            edge
            for edge in panel.edges
            if 0 <= edge.start_index < point_count and 0 <= edge.end_index < point_count
        ]
        if len(valid_edges) != len(panel.edges):
            issue(
                IssueSeverity.CRITICAL,
                IssueKind.GEOMETRY,
                "invalid_edge_index",
                f"{len(panel.edges) - len(valid_edges)} edge(s) reference missing points.",
            )

        unique_points = np.unique(points, axis=0)
        if len(unique_points) != point_count:
            issue(
                IssueSeverity.ERROR,
                IssueKind.GEOMETRY,
                "duplicate_points",
                f"Panel contains {point_count - len(unique_points)} duplicate point(s).",
            )

        if self._is_collinear(unique_points):
            issue(
                IssueSeverity.CRITICAL,
                IssueKind.GEOMETRY,
                "collinear_points",
                "All panel points are collinear; the panel has no usable area.",
                points[0],
            )
            return finish()

        area = panel.area * _mm_per_unit(panel) ** 2
        if area < self.config.min_panel_area_mm2:
            issue(
                IssueSeverity.ERROR,
                IssueKind.SIZE,
                "area_too_small",
                f"Panel area {area:.1f} mm^2 is below the {self.config.min_panel_area_mm2:.0f} mm^2 minimum.",
            )

        extent = points.max(axis=0) - points.min(axis=0)
        shortest = float(extent.min())
        aspect = math.inf if shortest <= 0.0 else float(extent.max()) / shortest
        if aspect > self.config.max_aspect_ratio:
            issue(
                IssueSeverity.WARNING,
                IssueKind.SIZE,
                "extreme_aspect_ratio",
                f"Aspect ratio {aspect:.1f}:1 exceeds {self.config.max_aspect_ratio:.0f}:1.",
            )

        outline_indices = list(panel.outline_indices())
        outline = points[outline_indices]
        for first, second in polygon_self_intersections(outline):
            issue(
                IssueSeverity.CRITICAL,
                IssueKind.INTERSECTION,
                "self_intersection",
                f"Outline edges {first} and {second} intersect.",
                outline[first],
            )

        self._check_seams(panel, valid_edges, issue, warnings)
        ratios = self._check_edges(panel, points, valid_edges, issue)
        if ratios:
            average = float(np.mean([abs(ratio - 1.0) for ratio in ratios]))
            if average > self.config.average_distortion_warning:
                warnings.append(
                    ValidationWarning(
                        kind=WarningKind.DISTORTION,
                        code="high_average_distortion",
                        message=f"Average edge distortion {average:.1%} exceeds "
                        f"{self.config.average_distortion_warning:.0%}.",
                        panel_id=panel.id,
                    )
                )

        return finish(area, ratios)

    def _is_collinear(self, points: np.ndarray) -> bool:
        if len(points) < 3:
            return True
        origin = points[0]
        offsets = points - origin
        distances = np.einsum("ij,ij->i", offsets, offsets)
        far = offsets[int(np.argmax(distances))]
        span_sq = float(np.dot(far, far))
        if span_sq <= 0.0:
            return True
        doubled_areas = np.abs(far[0] * offsets[:, 1] - far[1] * offsets[:, 0])
        return bool(0.5 * doubled_areas.max() <= self.config.collinearity_epsilon * max(span_sq, 1.0))

    def _check_seams(self, panel, edges, issue, warnings: list[ValidationWarning]) -> None:
        widths = [
            float(edge.seam_width_mm)
            for edge in edges
            if edge.type is EdgeType.SEAM and edge.seam_width_mm is not None
        ]
        if not widths:
            return
        narrowest = min(widths)
        widest = max(widths)
        if narrowest < self.config.seam_min_mm:
            issue(
                IssueSeverity.ERROR,
                IssueKind.SEAM_ALLOWANCE,
                "seam_too_narrow",
                f"Seam allowance {narrowest:.1f} mm is below the {self.config.seam_min_mm:.1f} mm minimum.",
            )
        if widest > self.config.seam_max_mm:
            warnings.append(
                ValidationWarning(
                    kind=WarningKind.SEAM_ALLOWANCE,
                    code="seam_too_wide",
                    message=f"Seam allowance {widest:.1f} mm exceeds the {self.config.seam_max_mm:.1f} mm maximum.",
                    panel_id=panel.id,
                )
            )
        if widest - narrowest > self.config.seam_consistency_tolerance_mm:
            warnings.append(
                ValidationWarning(
                    kind=WarningKind.SEAM_ALLOWANCE,
                    code="inconsistent_seam_width",
                    message=f"Seam allowances vary from {narrowest:.1f} mm to {widest:.1f} mm.",
                    panel_id=panel.id,
                )
            )

    def _check_edges(self, panel, points: np.ndarray, edges, issue) -> list[float]:
        """Flag short cut/fold edges and distortion; return length ratios."""

        factor = _mm_per_unit(panel)
        bound = self.config.max_distortion_ratio
        ratios: list[float] = []
        for edge in edges:
            if edge.type not in (EdgeType.CUT, EdgeType.FOLD):
                continue
            start = points[edge.start_index]
            end = points[edge.end_index]
            length = float(np.linalg.norm(end - start))
            midpoint = 0.5 * (start + end)
            if length < self.config.min_edge_length_mm:
                issue(
                    IssueSeverity.ERROR,
                    IssueKind.SIZE,
                    "edge_too_short",
                    f"Edge {edge.start_index}-{edge.end_index} is {length:.1f} mm long; "
                    f"minimum is {self.config.min_edge_length_mm:.1f} mm.",
                    midpoint,
                )
            if edge.original_3d_length is None or edge.original_3d_length <= 0.0:
                continue
            ratio = length / (edge.original_3d_length * factor)
            ratios.append(ratio)
            if ratio > bound or ratio < 1.0 / bound:
                issue(
                    IssueSeverity.WARNING,
                    IssueKind.DISTORTION,
                    "edge_distortion",
                    f"Edge {edge.start_index}-{edge.end_index} is stretched by a factor of {ratio:.2f}.",
                    midpoint,
                )
        return ratios

    # ------------------------------------------------------------------
    # Panel sets
    # ------------------------------------------------------------------
    def validate_panel_set(self, panels: Sequence[FlattenedPanel]) -> PatternSetValidationResult:
        panel_results = tuple(self.validate_panel(panel) for panel in panels)
        issues: list[ValidationIssue] = []
        warnings: list[ValidationWarning] = []

        outlines: list[np.ndarray | None] = []
        boxes: list[tuple[np.ndarray, np.ndarray] | None] = []
        for panel in panels:
            if panel.scale_units_per_meter <= 0.0 or len(panel.points_2d) < 3:
                outlines.append(None)
                boxes.append(None)
                continue
            outline = panel.outline() * _mm_per_unit(panel)
            outlines.append(outline)
            boxes.append((outline.min(axis=0), outline.max(axis=0)))

        for first, second in combinations(range(len(panels)), 2):
            box_a, box_b = boxes[first], boxes[second]
            if box_a is None or box_b is None or not bounding_boxes_overlap(box_a, box_b):
                continue
            if not polygons_overlap(outlines[first], outlines[second]):
                continue
            overlap_centre = 0.5 * (np.maximum(box_a[0], box_b[0]) + np.minimum(box_a[1], box_b[1]))
            issues.append(
                ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    kind=IssueKind.LAYOUT,
                    code="panel_overlap",
                    message=f"Panels {panels[first].id} and {panels[second].id} overlap.",
                    panel_id=panels[first].id,
                    location=_location(overlap_centre),
                )
            )

        grain_warning = self._check_grain_lines(panels, outlines)
        if grain_warning is not None:
            warnings.append(grain_warning)

        compatibility = self.check_fabric_compatibility(panels)
        for message in compatibility.issues if compatibility.requires_custom_width else ():
            issues.append(
                ValidationIssue(
                    severity=IssueSeverity.WARNING,
                    kind=IssueKind.FABRIC_COMPATIBILITY,
                    code="requires_custom_width",
                    message=message,
                )
            )

        utilization = None
        if compatibility.recommended_width_mm is not None:
            utilization = self.validate_fabric_utilization(panels, compatibility.recommended_width_mm)

        is_valid = all(result.is_valid for result in panel_results) and not any(
            item.is_blocking for item in issues
        )
        return PatternSetValidationResult(
            is_valid=is_valid,
            panel_results=panel_results,
            issues=tuple(issues),
            warnings=tuple(warnings),
            total_area_mm2=float(sum(result.area_mm2 for result in panel_results)),
            recommended_fabric_width_mm=compatibility.recommended_width_mm,
            fabric_compatibility=compatibility,
            fabric_utilization=utilization,
        )

    def _check_grain_lines(
        self, panels: Sequence[FlattenedPanel], outlines: Sequence[np.ndarray | None]
    ) -> ValidationWarning | None:
        """Warn when elongated panels point in widely different directions."""

        angles: list[float] = []
        for outline in outlines:
            if outline is None or len(outline) < 3:
                continue
            centred = outline - outline.mean(axis=0)
            _, singular, basis = np.linalg.svd(centred, full_matrices=False)
            if singular[1] <= 0.0 or singular[0] / singular[1] < _GRAIN_ELONGATION:
                continue
            angles.append(math.degrees(math.atan2(basis[0][1], basis[0][0])) % 180.0)

        spread = 0.0
        for first, second in combinations(angles, 2):
            difference = abs(first - second) % 180.0
            spread = max(spread, min(difference, 180.0 - difference))
        if spread <= _GRAIN_TOLERANCE_DEGREES:
            return None
        return ValidationWarning(
            kind=WarningKind.GRAIN_LINE,
            code="inconsistent_grain_orientation",
            message=f"Panel grain directions differ by up to {spread:.0f} degrees; "
            "align long axes before cutting.",
        )

    # ------------------------------------------------------------------
    # Fabric
    # ------------------------------------------------------------------
    def check_fabric_compatibility(self, panels: Sequence[FlattenedPanel]) -> FabricCompatibilityResult:
        widths = [
            float(footprint[1][0] - footprint[0][0])
            for footprint in (_footprint_mm(panel) for panel in panels)
            if footprint is not None
        ]
        standard = tuple(sorted(self.config.fabric_widths_mm))
        if not widths:
            return FabricCompatibilityResult(
                compatible_widths_mm=standard,
                recommended_width_mm=None,
                requires_custom_width=False,
                max_panel_width_mm=0.0,
            )

        widest = max(widths)
        compatible = tuple(width for width in standard if width >= widest)
        problems = tuple(
            f"Widest panel ({widest:.0f} mm) does not fit {width:.0f} mm fabric."
            for width in standard
            if width < widest
        )
        if compatible:
            return FabricCompatibilityResult(
                compatible_widths_mm=compatible,
                recommended_width_mm=compatible[0],
                requires_custom_width=False,
                max_panel_width_mm=widest,
                issues=problems,
            )
        return FabricCompatibilityResult(
            compatible_widths_mm=(),
            recommended_width_mm=widest,
            requires_custom_width=True,
            max_panel_width_mm=widest,
            issues=problems,
        )

    def validate_fabric_utilization(
        self, panels: Sequence[FlattenedPanel], fabric_width: float
    ) -> FabricUtilizationResult:
        """Estimate fabric use when panels are laid end to end along the roll."""

        fabric_width = float(fabric_width)
        total_area = 0.0
        required_length = 0.0
        oversized: list[str] = []
        for panel in panels:
            footprint = _footprint_mm(panel)
            if footprint is None:
                continue
            width, length = (footprint[1] - footprint[0]).tolist()
            if width > fabric_width:
                oversized.append(panel.id)
            required_length += length
            total_area += panel.area * _mm_per_unit(panel) ** 2

        fabric_area = required_length * fabric_width
        efficiency = total_area / fabric_area if fabric_area > 0.0 else 0.0

        recommendations: list[str] = []
        if panels and efficiency < self.config.low_efficiency_threshold:
            recommendations.append(
                f"Fabric utilization is very low ({efficiency:.0%}); nest panels side by side "
                "or choose a narrower fabric."
            )
        elif panels and efficiency < self.config.efficiency_threshold:
            recommendations.append(
                f"Fabric utilization is low ({efficiency:.0%}); consider rearranging panels."
            )
        if oversized:
            recommendations.append(
                f"{len(oversized)} panel(s) are wider than the {fabric_width:.0f} mm fabric; "
                "split them or use a wider fabric."
            )
        if efficiency > self.config.excellent_efficiency_threshold:
            recommendations.append(f"Excellent fabric utilization ({efficiency:.0%}).")

        return FabricUtilizationResult(
            fabric_width_mm=fabric_width,
            total_panel_area_mm2=total_area,
            fabric_area_mm2=fabric_area,
            required_length_mm=required_length,
            efficiency=efficiency,
            oversized_panel_ids=tuple(oversized),
            recommendations=tuple(recommendations),
        )
