"""Violation model, validation report, and the error hierarchy."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class WardenError(Exception):
    """Base class for every error raised by codewarden."""


class ConfigError(WardenError):
    """Raised when the configuration file is missing pieces or malformed."""


class CompileError(WardenError):
    """Raised when a rule cannot be compiled into a matcher."""

    def __init__(self, rule_id: str, message: str) -> None:
        super().__init__(f"rule '{rule_id}': {message}")
        self.rule_id = rule_id


class FilterError(WardenError):
    """Raised for a malformed static path pattern or an unreadable ignore file."""


class CacheError(WardenError):
    """Raised on cache I/O, digest, or deserialization failures."""


class AnalysisError(WardenError):
    """Raised when a single file cannot be analyzed."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"analysis failed for {path}: {message}")
        self.path = path


# ---------------------------------------------------------------------------
# Severity
# ---------------------------------------------------------------------------


class Severity(enum.Enum):
    """Severity levels, ordered info < warning < error."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @property
    def is_blocking(self) -> bool:
        """Only errors fail a CI gate."""
        return self is Severity.ERROR

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def parse(cls, value: str) -> Severity:
        """Parse a severity name, accepting ``warn`` as an alias."""
        normalized = value.strip().lower()
        if normalized == "warn":
            normalized = "warning"
        try:
            return cls(normalized)
        except ValueError:
            valid = sorted(s.value for s in cls)
            msg = f"invalid severity '{value}', must be one of {valid}"
            raise ValueError(msg) from None


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.ERROR: 2,
}


# ---------------------------------------------------------------------------
# Violations
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class Violation:
    """A single code quality violation, self-describing for any serializer."""

    rule_id: str
    severity: Severity
    file_path: str
    message: str
    line_number: int | None = None
    column_number: int | None = None
    context: str | None = None
    suggested_fix: str | None = None
    detected_at: datetime = field(default_factory=_utcnow, compare=False)

    @property
    def is_blocking(self) -> bool:
        return self.severity.is_blocking

    def location(self) -> str:
        """Return ``path[:line[:col]]``."""
        loc = self.file_path
        if self.line_number is not None:
            loc += f":{self.line_number}"
            if self.column_number is not None:
                loc += f":{self.column_number}"
        return loc

    def format_display(self) -> str:
        return f"{self.location()} [{self.severity.value}] {self.message}"

    def to_dict(self) -> dict[str, object]:
        return {
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "file_path": self.file_path,
            "line_number": self.line_number,
            "column_number": self.column_number,
            "message": self.message,
            "context": self.context,
            "suggested_fix": self.suggested_fix,
            "detected_at": self.detected_at.isoformat(),
        }


@dataclass
class ViolationCounts:
    """Number of violations per severity."""

    error: int = 0
    warning: int = 0
    info: int = 0

    def add(self, severity: Severity) -> None:
        if severity is Severity.ERROR:
            self.error += 1
        elif severity is Severity.WARNING:
            self.warning += 1
        else:
            self.info += 1

    @property
    def total(self) -> int:
        return self.error + self.warning + self.info

    @property
    def has_blocking(self) -> bool:
        return self.error > 0


@dataclass
class ValidationSummary:
    """Run-level statistics."""

    total_files: int = 0
    counts: ViolationCounts = field(default_factory=ViolationCounts)
    execution_time_ms: int = 0
    validated_at: datetime = field(default_factory=_utcnow)


@dataclass
class ValidationReport:
    """Aggregate of all violations found in one run."""

    violations: list[Violation] = field(default_factory=list)
    summary: ValidationSummary = field(default_factory=ValidationSummary)
    config_fingerprint: str | None = None

    def add_violation(self, violation: Violation) -> None:
        self.summary.counts.add(violation.severity)
        self.violations.append(violation)

    def extend(self, violations: list[Violation]) -> None:
        for violation in violations:
            self.add_violation(violation)

    @property
    def has_violations(self) -> bool:
        return bool(self.violations)

    @property
    def has_errors(self) -> bool:
        return self.summary.counts.has_blocking

    def violations_by_severity(self, severity: Severity) -> Iterator[Violation]:
        return (v for v in self.violations if v.severity is severity)

    def merge(self, other: ValidationReport) -> None:
        self.extend(other.violations)
        self.summary.total_files += other.summary.total_files

    def sort_violations(self) -> None:
        """Order by path, then line (missing lines first), then severity."""
        self.violations.sort(
            key=lambda v: (v.file_path, v.line_number or 0, v.severity.rank)
        )
