"""Pattern validation: geometry helpers, result records and the validator."""

from .pattern_validator import STANDARD_FABRIC_WIDTHS_MM, PatternValidator, PatternValidatorConfig
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

__all__ = [
    "FabricCompatibilityResult",
    "FabricUtilizationResult",
    "IssueKind",
    "IssueSeverity",
    "PatternSetValidationResult",
    "PatternValidationResult",
    "PatternValidator",
    "PatternValidatorConfig",
    "STANDARD_FABRIC_WIDTHS_MM",
    "ValidationIssue",
    "ValidationWarning",
    "WarningKind",
]
