"""Tests for codewarden.domain.violations: severity, violations, reports."""

from __future__ import annotations

import pytest

from codewarden.domain.violations import (
    AnalysisError,
    CompileError,
    Severity,
    ValidationReport,
    Violation,
    WardenError,
)


def _violation(
    path: str = "src/lib.rs",
    line: int | None = 1,
    severity: Severity = Severity.ERROR,
    rule_id: str = "todo_comments",
) -> Violation:
    return Violation(
        rule_id=rule_id,
        severity=severity,
        file_path=path,
        message="Development marker detected: TODO",
        line_number=line,
        column_number=4 if line is not None else None,
    )


class TestSeverity:
    def test_ordering(self) -> None:
        assert Severity.INFO < Severity.WARNING < Severity.ERROR
        assert max([Severity.WARNING, Severity.ERROR, Severity.INFO]) is Severity.ERROR

    def test_only_error_blocks(self) -> None:
        assert Severity.ERROR.is_blocking
        assert not Severity.WARNING.is_blocking
        assert not Severity.INFO.is_blocking

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("error", Severity.ERROR),
            ("WARNING", Severity.WARNING),
            ("warn", Severity.WARNING),
            (" info ", Severity.INFO),
        ],
    )
    def test_parse(self, raw: str, expected: Severity) -> None:
        assert Severity.parse(raw) is expected

    def test_parse_rejects_unknown(self) -> None:
        with pytest.raises(ValueError, match="invalid severity"):
            Severity.parse("fatal")


class TestViolation:
    def test_location_and_display(self) -> None:
        v = _violation()
        assert v.location() == "src/lib.rs:1:4"
        assert v.format_display() == (
            "src/lib.rs:1:4 [error] Development marker detected: TODO"
        )

    def test_location_without_line(self) -> None:
        assert _violation(line=None).location() == "src/lib.rs"

    def test_to_dict(self) -> None:
        data = _violation().to_dict()
        assert data["rule_id"] == "todo_comments"
        assert data["severity"] == "error"
        assert data["line_number"] == 1
        assert data["column_number"] == 4
        assert isinstance(data["detected_at"], str)

    def test_equality_ignores_timestamp(self) -> None:
        assert _violation() == _violation()


class TestValidationReport:
    def test_counts_follow_added_violations(self) -> None:
        report = ValidationReport()
        report.extend(
            [
                _violation(severity=Severity.ERROR),
                _violation(severity=Severity.WARNING),
                _violation(severity=Severity.WARNING),
            ]
        )
        counts = report.summary.counts
        assert (counts.error, counts.warning, counts.info) == (1, 2, 0)
        assert counts.total == 3
        assert report.has_errors
        assert report.has_violations
        assert len(list(report.violations_by_severity(Severity.WARNING))) == 2

    def test_warnings_do_not_block(self) -> None:
        report = ValidationReport()
        report.add_violation(_violation(severity=Severity.WARNING))
        assert report.has_violations
        assert not report.has_errors

    def test_merge(self) -> None:
        first = ValidationReport()
        first.add_violation(_violation())
        first.summary.total_files = 2
        second = ValidationReport()
        second.add_violation(_violation(path="src/b.rs"))
        second.summary.total_files = 3

        first.merge(second)

        assert len(first.violations) == 2
        assert first.summary.total_files == 5
        assert first.summary.counts.error == 2

    def test_sort_order(self) -> None:
        report = ValidationReport()
        report.extend(
            [
                _violation(path="b.rs", line=1),
                _violation(path="a.rs", line=9),
                _violation(path="a.rs", line=2, severity=Severity.ERROR),
                _violation(path="a.rs", line=2, severity=Severity.INFO),
                _violation(path="a.rs", line=None),
            ]
        )
        report.sort_violations()
        assert [(v.file_path, v.line_number, v.severity) for v in report.violations] == [
            ("a.rs", None, Severity.ERROR),
            ("a.rs", 2, Severity.INFO),
            ("a.rs", 2, Severity.ERROR),
            ("a.rs", 9, Severity.ERROR),
            ("b.rs", 1, Severity.ERROR),
        ]


class TestErrors:
    def test_hierarchy(self) -> None:
        assert issubclass(CompileError, WardenError)
        assert issubclass(AnalysisError, WardenError)

    def test_compile_error_carries_rule_id(self) -> None:
        exc = CompileError("todo_comments", "invalid regex")
        assert exc.rule_id == "todo_comments"
        assert "todo_comments" in str(exc)

    def test_analysis_error_carries_path(self) -> None:
        exc = AnalysisError("src/lib.rs", "permission denied")
        assert exc.path == "src/lib.rs"
        assert "permission denied" in str(exc)
