"""Report formatters: human, json, porcelain, github, agent, junit, sarif."""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from codewarden import __version__
from codewarden.domain.violations import Severity

if TYPE_CHECKING:
    from collections.abc import Callable

    from codewarden.domain.violations import ValidationReport, Violation

FORMATS: tuple[str, ...] = ("human", "json", "porcelain", "github", "agent", "junit", "sarif")

_SEVERITY_STYLES: dict[Severity, str] = {
    Severity.ERROR: "red",
    Severity.WARNING: "yellow",
    Severity.INFO: "cyan",
}


@dataclass(frozen=True)
class ReportOptions:
    min_severity: Severity | None = None
    max_violations: int | None = None
    show_context: bool = True
    use_colors: bool = False


def select_violations(report: ValidationReport, options: ReportOptions) -> list[Violation]:
    """Apply the minimum severity, then truncate to ``max_violations``."""
    selected = [
        v
        for v in report.violations
        if options.min_severity is None or v.severity.rank >= options.min_severity.rank
    ]
    if options.max_violations is not None:
        selected = selected[: options.max_violations]
    return selected


def _position(v: Violation) -> str:
    if v.line_number is None:
        return "?"
    if v.column_number is None:
        return str(v.line_number)
    return f"{v.line_number}:{v.column_number}"


def _summary_line(report: ValidationReport) -> str:
    counts = report.summary.counts
    seconds = report.summary.execution_time_ms / 1000
    return (
        f"Summary: {counts.total} violations ({counts.error} errors, "
        f"{counts.warning} warnings, {counts.info} info) in "
        f"{report.summary.total_files} files ({seconds:.2f}s)"
    )


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


def format_human(
    report: ValidationReport, violations: list[Violation], options: ReportOptions
) -> str:
    """Group violations by file; plain text, or ANSI colours via rich."""
    if options.use_colors:
        return _format_human_rich(report, violations, options)

    lines: list[str] = []
    if not violations:
        lines.append("✓ No code quality violations found")
    else:
        lines.append("✗ Code quality violations found")
        lines.append("")
        by_file: dict[str, list[Violation]] = defaultdict(list)
        for v in violations:
            by_file[v.file_path].append(v)
        for file_path in sorted(by_file):
            lines.append(file_path)
            for v in by_file[file_path]:
                lines.append(f"  {_position(v)}:{v.rule_id} [{v.severity.value}] {v.message}")
                if options.show_context and v.context:
                    lines.append(f"    | {v.context}")
            lines.append("")
    lines.append(_summary_line(report))
    return "\n".join(lines)


def _format_human_rich(
    report: ValidationReport, violations: list[Violation], options: ReportOptions
) -> str:
    from io import StringIO

    from rich.console import Console
    from rich.markup import escape

    buf = StringIO()
    console = Console(file=buf, force_terminal=True, width=120)

    if not violations:
        console.print("[green]✓ No code quality violations found[/green]")
    else:
        header_style = "red" if report.has_errors else "yellow"
        console.print(f"[bold {header_style}]✗ Code quality violations found[/]")
        console.print()
        by_file: dict[str, list[Violation]] = defaultdict(list)
        for v in violations:
            by_file[v.file_path].append(v)
        for file_path in sorted(by_file):
            console.print(f"[bold]{escape(file_path)}[/bold]")
            for v in by_file[file_path]:
                style = _SEVERITY_STYLES[v.severity]
                console.print(
                    f"  [dim]{_position(v)}:{escape(v.rule_id)}[/dim] "
                    f"[{style}]\\[{v.severity.value}][/{style}] {escape(v.message)}"
                )
                if options.show_context and v.context:
                    console.print(f"    [dim]| {escape(v.context)}[/dim]")
            console.print()
    console.print(f"[bold]{escape(_summary_line(report))}[/bold]")
    return buf.getvalue().rstrip("\n")


def format_json(
    report: ValidationReport, violations: list[Violation], options: ReportOptions
) -> str:
    summary = report.summary
    output: dict[str, object] = {
        "violations": [v.to_dict() for v in violations],
        "summary": {
            "total_files": summary.total_files,
            "violations_by_severity": {
                "error": summary.counts.error,
                "warning": summary.counts.warning,
                "info": summary.counts.info,
            },
            "execution_time_ms": summary.execution_time_ms,
            "validated_at": summary.validated_at.isoformat(),
        },
        "config_fingerprint": report.config_fingerprint,
    }
    return json.dumps(output, indent=2)


def format_porcelain(
    report: ValidationReport, violations: list[Violation], options: ReportOptions
) -> str:
    """One line per violation: ``path:line:col:severity:rule_id:message``.

    Missing positions are empty fields. Empty string when there is nothing
    to report.
    """
    lines: list[str] = []
    for v in violations:
        line = str(v.line_number) if v.line_number is not None else ""
        col = str(v.column_number) if v.column_number is not None else ""
        lines.append(f"{v.file_path}:{line}:{col}:{v.severity.value}:{v.rule_id}:{v.message}")
    return "\n".join(lines)


_GITHUB_LEVELS: dict[Severity, str] = {
    Severity.ERROR: "error",
    Severity.WARNING: "warning",
    Severity.INFO: "notice",
}


def format_github(
    report: ValidationReport, violations: list[Violation], options: ReportOptions
) -> str:
    """GitHub Actions workflow commands (``::error file=...::message``)."""
    lines: list[str] = []
    for v in violations:
        props = [f"file={v.file_path}", f"title={v.rule_id}"]
        if v.line_number is not None:
            props.append(f"line={v.line_number}")
            if v.column_number is not None:
                props.append(f"col={v.column_number}")
        lines.append(f"::{_GITHUB_LEVELS[v.severity]} {','.join(props)}::{v.message}")
    return "\n".join(lines)


def format_agent(
    report: ValidationReport, violations: list[Violation], options: ReportOptions
) -> str:
    """Compact ``[line:path]`` blocks for automated coding agents."""
    blocks = [f"[{v.line_number or 1}:{v.file_path}]\n{v.message}" for v in violations]
    return "\n\n".join(blocks)


def format_junit(
    report: ValidationReport, violations: list[Violation], options: ReportOptions
) -> str:
    """JUnit XML: one test case per violation, errors as failures."""
    failures = sum(1 for v in violations if v.severity is Severity.ERROR)
    suite = ET.Element(
        "testsuite",
        {
            "name": "codewarden",
            "tests": str(len(violations)),
            "failures": str(failures),
            "errors": "0",
            "time": f"{report.summary.execution_time_ms / 1000:.3f}",
        },
    )
    for v in violations:
        case = ET.SubElement(suite, "testcase", {"classname": v.rule_id, "name": v.file_path})
        if v.severity is Severity.ERROR:
            failure = ET.SubElement(case, "failure", {"message": v.message})
            text = f"File: {v.file_path}:{v.line_number or 0}:{v.column_number or 0}"
            if v.context:
                text += f"\nContext: {v.context}"
            failure.text = text
    ET.indent(suite)
    body = ET.tostring(suite, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}'


_SARIF_LEVELS: dict[Severity, str] = {
    Severity.ERROR: "error",
    Severity.WARNING: "warning",
    Severity.INFO: "note",
}


def format_sarif(
    report: ValidationReport, violations: list[Violation], options: ReportOptions
) -> str:
    results: list[dict[str, object]] = []
    for v in violations:
        location: dict[str, object] = {
            "artifactLocation": {"uri": v.file_path},
            "region": {"startLine": v.line_number or 1, "startColumn": v.column_number or 1},
        }
        if v.context:
            location["contextRegion"] = {"snippet": {"text": v.context}}
        results.append(
            {
                "ruleId": v.rule_id,
                "level": _SARIF_LEVELS[v.severity],
                "message": {"text": v.message},
                "locations": [{"physicalLocation": location}],
            }
        )
    sarif = {
        "version": "2.1.0",
        "$schema": "https://json.schemastore.org/sarif-2.1.0.json",
        "runs": [
            {
                "tool": {"driver": {"name": "codewarden", "version": __version__}},
                "results": results,
            }
        ],
    }
    return json.dumps(sarif, indent=2)


_FORMATTERS: dict[str, Callable[[ValidationReport, list[Violation], ReportOptions], str]] = {
    "human": format_human,
    "json": format_json,
    "porcelain": format_porcelain,
    "github": format_github,
    "agent": format_agent,
    "junit": format_junit,
    "sarif": format_sarif,
}


def format_report(
    report: ValidationReport, fmt: str, options: ReportOptions | None = None
) -> str:
    """Filter and truncate violations, then render *report* as *fmt*."""
    formatter = _FORMATTERS.get(fmt)
    if formatter is None:
        msg = f"Unknown output format: {fmt}, must be one of {list(FORMATS)}"
        raise ValueError(msg)
    options = options or ReportOptions()
    return formatter(report, select_violations(report, options), options)
