"""Domain model: severities, violations, reports, and errors."""

from codewarden.domain.violations import (
    AnalysisError,
    CacheError,
    CompileError,
    ConfigError,
    FilterError,
    Severity,
    ValidationReport,
    ValidationSummary,
    Violation,
    ViolationCounts,
    WardenError,
)

__all__ = [
    "AnalysisError",
    "CacheError",
    "CompileError",
    "ConfigError",
    "FilterError",
    "Severity",
    "ValidationReport",
    "ValidationSummary",
    "Violation",
    "ViolationCounts",
    "WardenError",
]
