"""End-to-end mesh to validated sewing pattern pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .calibration import Calibration
from .cancellation import CancellationToken, check_cancelled
from .config import PipelineConfig
from .flattening.layout import optimize_for_cutting
from .flattening.lscm_backend import LSCMFlattener
from .meshing.mesh import Mesh
from .meshing.repair import ProcessingResult, process_mesh
from .panel_model import FlattenedPanel, Panel
from .segmentation import PanelSegmenter
from .validation.pattern_validator import PatternValidator
from .validation.results import PatternSetValidationResult

__all__ = ["PatternPipeline", "PatternResult", "generate_pattern"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PatternResult:
    """Every intermediate produced while turning a mesh into a pattern."""

    source_mesh: Mesh
    processing: ProcessingResult
    panels: tuple[Panel, ...]
    flattened: tuple[FlattenedPanel, ...]
    layout: tuple[FlattenedPanel, ...]
    validation: PatternSetValidationResult
    scale_factor: float = 1.0

    @property
    def mesh(self) -> Mesh:
        """Repaired mesh the panels index into."""

        return self.processing.mesh

    @property
    def is_valid(self) -> bool:
        return self.validation.is_valid

    def to_mapping(self) -> dict[str, Any]:
        return {
            "sourceMeshId": self.source_mesh.id,
            "scaleFactor": self.scale_factor,
            "processing": self.processing.to_mapping(),
            "panels": [panel.to_mapping() for panel in self.panels],
            "layout": [panel.to_mapping() for panel in self.layout],
            "validation": self.validation.to_mapping(),
        }


@dataclass(slots=True)
class PatternPipeline:
    """Orchestrate repair, segmentation, flattening, layout and validation."""

    config: PipelineConfig = field(default_factory=PipelineConfig)
    segmenter: PanelSegmenter | None = None
    flattener: LSCMFlattener | None = None
    validator: PatternValidator | None = None

    def __post_init__(self) -> None:
        if self.segmenter is None:
            self.segmenter = PanelSegmenter(self.config.segmentation)
        if self.flattener is None:
            self.flattener = LSCMFlattener(self.config.flattening)
        if self.validator is None:
            self.validator = PatternValidator(self.config.validation)

    def run(
        self,
        mesh: Mesh,
        *,
        calibration: Calibration | None = None,
        target_panel_count: int | None = None,
        cancel: CancellationToken | None = None,
    ) -> PatternResult:
        mesh.validate()
        scale_factor = 1.0
        working = mesh
        if calibration is not None:
            scale_factor = calibration.scale_factor
            working = calibration.apply_to_mesh(mesh)

        check_cancelled(cancel, "repair")
        processing = process_mesh(working, self.config.processing)
        repaired = processing.mesh

        check_cancelled(cancel, "segmentation")
        panels = self.segmenter.segment_mesh(repaired, target_panel_count, cancel=cancel)

        check_cancelled(cancel, "flattening")
        flattened = self.flattener.flatten_panels(panels, repaired, cancel=cancel)

        check_cancelled(cancel, "layout")
        layout = optimize_for_cutting(flattened, self.config.layout)

        check_cancelled(cancel, "validation")
        validation = self.validator.validate_panel_set(layout)

        logger.info(
            "Pattern for mesh %s: %d panels, %s",
            mesh.id,
            len(layout),
            validation.summary,
        )
        return PatternResult(
            source_mesh=mesh,
            processing=processing,
            panels=tuple(panels),
            flattened=tuple(flattened),
            layout=tuple(layout),
            validation=validation,
            scale_factor=scale_factor,
        )


def generate_pattern(
    mesh: Mesh,
    config: PipelineConfig | None = None,
    *,
    calibration: Calibration | None = None,
    target_panel_count: int | None = None,
    cancel: CancellationToken | None = None,
) -> PatternResult:
    """Run the full pipeline on ``mesh`` with ``config`` (defaults when omitted)."""

    pipeline = PatternPipeline(config or PipelineConfig())
    return pipeline.run(
        mesh,
        calibration=calibration,
        target_panel_count=target_panel_count,
        cancel=cancel,
    )
