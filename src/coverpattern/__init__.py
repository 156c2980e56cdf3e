"""Turn captured 3D meshes into validated, flat sewing patterns."""

from __future__ import annotations

from importlib import import_module

__all__ = [
    "Calibration",
    "CalibrationMetadata",
    "CancellationToken",
    "Color",
    "EdgeType",
    "FlattenedPanel",
    "FlatteningOptions",
    "LSCMFlattener",
    "LayoutOptions",
    "Mesh",
    "Panel",
    "PanelEdge",
    "PanelSegmenter",
    "PatternResult",
    "PatternValidator",
    "PatternValidatorConfig",
    "PipelineConfig",
    "ProcessingOptions",
    "ProcessingResult",
    "SegmentationOptions",
    "SegmentationResolution",
    "SlipcoverOptions",
    "SlipcoverPatternGenerator",
    "generate_pattern",
    "load_config",
    "optimize_for_cutting",
]

_ATTRIBUTE_MODULES: dict[str, str] = {
    "Calibration": ".calibration",
    "CalibrationMetadata": ".calibration",
    "CancellationToken": ".cancellation",
    "Color": ".panel_model",
    "EdgeType": ".panel_model",
    "FlattenedPanel": ".panel_model",
    "FlatteningOptions": ".flattening.lscm_backend",
    "LSCMFlattener": ".flattening.lscm_backend",
    "LayoutOptions": ".flattening.layout",
    "Mesh": ".meshing.mesh",
    "Panel": ".panel_model",
    "PanelEdge": ".panel_model",
    "PanelSegmenter": ".segmentation",
    "PatternResult": ".pipeline",
    "PatternValidator": ".validation.pattern_validator",
    "PatternValidatorConfig": ".validation.pattern_validator",
    "PipelineConfig": ".config",
    "ProcessingOptions": ".meshing.repair",
    "ProcessingResult": ".meshing.repair",
    "SegmentationOptions": ".segmentation",
    "SegmentationResolution": ".segmentation",
    "SlipcoverOptions": ".slipcover",
    "SlipcoverPatternGenerator": ".slipcover",
    "generate_pattern": ".pipeline",
    "load_config": ".config",
    "optimize_for_cutting": ".flattening.layout",
}


def __getattr__(name: str):
    try:
        module_name = _ATTRIBUTE_MODULES[name]
    except KeyError as exc:
        raise AttributeError(f"module 'coverpattern' has no attribute {name!r}") from exc

    module = import_module(module_name, __name__)
    value = getattr(module, name)
    globals()[name] = value
    return value
