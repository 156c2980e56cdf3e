"""Pipeline configuration aggregated from the per-stage option records."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .flattening.layout import LayoutOptions
from .flattening.lscm_backend import FlatteningOptions
from .meshing.repair import ProcessingOptions
from .schemas import PIPELINE_CONFIG_SCHEMA_NAME, load_payload, validate_payload
from .segmentation import SegmentationOptions
from .validation.pattern_validator import PatternValidatorConfig

__all__ = ["PipelineConfig", "load_config"]


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Every tunable used by :func:`coverpattern.pipeline.generate_pattern`."""

    processing: ProcessingOptions = field(default_factory=ProcessingOptions)
    segmentation: SegmentationOptions = field(default_factory=SegmentationOptions)
    flattening: FlatteningOptions = field(default_factory=FlatteningOptions)
    layout: LayoutOptions = field(default_factory=LayoutOptions)
    validation: PatternValidatorConfig = field(default_factory=PatternValidatorConfig)

    @classmethod
    def recommended(cls) -> "PipelineConfig":
        return cls(processing=ProcessingOptions.recommended())

    def to_mapping(self) -> dict[str, Any]:
        return {
            "processing": self.processing.to_mapping(),
            "segmentation": self.segmentation.to_mapping(),
            "flattening": self.flattening.to_mapping(),
            "layout": self.layout.to_mapping(),
            "validation": self.validation.to_mapping(),
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "PipelineConfig":
        """Validate ``payload`` against the pipeline schema; missing sections use defaults."""

        validate_payload(payload, PIPELINE_CONFIG_SCHEMA_NAME)
        return cls(
            processing=ProcessingOptions.from_mapping(payload.get("processing", {})),
            segmentation=SegmentationOptions.from_mapping(payload.get("segmentation", {})),
            flattening=FlatteningOptions.from_mapping(payload.get("flattening", {})),
            layout=LayoutOptions.from_mapping(payload.get("layout", {})),
            validation=PatternValidatorConfig.from_mapping(payload.get("validation", {})),
        )


def load_config(path: str | Path) -> PipelineConfig:
    """Load a JSON or YAML pipeline configuration file."""

    config_path = Path(path)
    payload = load_payload(config_path)
    if payload is None:
        return PipelineConfig()
    if not isinstance(payload, Mapping):
        raise TypeError(
            f"Pipeline configuration '{config_path}' must decode to a mapping, received {type(payload)!r}"
        )
    return PipelineConfig.from_mapping(payload)
