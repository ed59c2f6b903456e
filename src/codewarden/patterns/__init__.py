"""Pattern engine, structural checks, and path filtering."""

from codewarden.patterns.checks import StructuralCheck, parse_descriptor
from codewarden.patterns.engine import (
    CompiledMatcher,
    CompiledStructuralMatcher,
    CompiledTextMatcher,
    PatternEngine,
    PatternMatch,
    PatternStats,
    matches_to_violations,
)
from codewarden.patterns.path_filter import FilterPattern, PathFilter

__all__ = [
    "CompiledMatcher",
    "CompiledStructuralMatcher",
    "CompiledTextMatcher",
    "FilterPattern",
    "PathFilter",
    "PatternEngine",
    "PatternMatch",
    "PatternStats",
    "StructuralCheck",
    "matches_to_violations",
    "parse_descriptor",
]
