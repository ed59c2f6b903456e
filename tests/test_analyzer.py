"""Tests for codewarden.analyzer: file collection, parallel runs, caching."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from codewarden.analyzer import AnalysisOptions, Analyzer
from codewarden.config import (
    PathConfig,
    RuleCategory,
    RuleDefinition,
    RuleKind,
    WardenConfig,
    default_config,
)
from codewarden.domain.violations import AnalysisError, CompileError, Severity
from codewarden.infrastructure.cache import FileCache


def _summary(report) -> list[tuple[str, int | None, str]]:
    return [(Path(v.file_path).name, v.line_number, v.rule_id) for v in report.violations]


class TestAnalyzePaths:
    def test_finds_marker_and_skips_build_dir(self, rust_project: Path) -> None:
        analyzer = Analyzer(default_config())
        report = analyzer.analyze_paths([rust_project])

        assert _summary(report) == [("engine.rs", 1, "todo_comments")]
        assert report.summary.total_files == 2
        assert report.summary.counts.error == 1
        assert report.config_fingerprint == default_config().fingerprint()

    def test_sequential_matches_parallel(self, rust_project: Path) -> None:
        (rust_project / "src" / "more.rs").write_text("// FIXME\nfn f() {\n    todo!();\n}\n")
        analyzer = Analyzer(default_config())
        parallel = analyzer.analyze_paths([rust_project], AnalysisOptions(parallel=True))
        sequential = analyzer.analyze_paths([rust_project], AnalysisOptions(parallel=False))
        assert _summary(parallel) == _summary(sequential)
        assert len(parallel.violations) == 4

    def test_repeated_runs_are_identical(self, rust_project: Path) -> None:
        analyzer = Analyzer(default_config())
        first = analyzer.analyze_paths([rust_project])
        second = analyzer.analyze_paths([rust_project])
        assert first.violations == second.violations

    def test_max_files(self, rust_project: Path) -> None:
        report = Analyzer(default_config()).analyze_paths(
            [rust_project], AnalysisOptions(max_files=1)
        )
        assert report.summary.total_files == 1

    def test_extra_exclude_patterns(self, rust_project: Path) -> None:
        report = Analyzer(default_config()).analyze_paths(
            [rust_project], AnalysisOptions(exclude_patterns=("**/engine.rs",))
        )
        assert report.violations == []

    def test_ignore_file_respected_and_bypassed(self, rust_project: Path) -> None:
        (rust_project / ".wardenignore").write_text("engine.rs\n")
        analyzer = Analyzer(default_config())

        honoured = analyzer.analyze_paths([rust_project])
        assert honoured.violations == []

        bypassed = analyzer.analyze_paths(
            [rust_project], AnalysisOptions(ignore_ignore_files=True)
        )
        assert _summary(bypassed) == [("engine.rs", 1, "todo_comments")]

    def test_explicit_file_and_duplicates(self, rust_project: Path) -> None:
        engine_rs = rust_project / "src" / "engine.rs"
        report = Analyzer(default_config()).analyze_paths([engine_rs, rust_project / "src"])
        assert report.summary.total_files == 2
        assert len(report.violations) == 1

    def test_missing_path(self, tmp_path: Path) -> None:
        with pytest.raises(AnalysisError, match="no such file"):
            Analyzer(default_config()).analyze_paths([tmp_path / "absent"])

    def test_invalid_utf8_is_tolerated(self, tmp_path: Path) -> None:
        (tmp_path / "blob.rs").write_bytes(b"\xff\xfe // TODO\n")
        report = Analyzer(default_config()).analyze_paths([tmp_path])
        assert _summary(report) == [("blob.rs", 1, "todo_comments")]


class TestFailures:
    @pytest.fixture()
    def flaky(self, monkeypatch: pytest.MonkeyPatch) -> None:
        original = Analyzer._analyze_path

        def analyze(self: Analyzer, path: Path):
            if path.name == "engine.rs":
                raise AnalysisError(str(path), "permission denied")
            return original(self, path)

        monkeypatch.setattr(Analyzer, "_analyze_path", analyze)

    @pytest.mark.parametrize("parallel", [True, False])
    def test_errors_are_logged_and_skipped(
        self,
        rust_project: Path,
        flaky: None,
        parallel: bool,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.WARNING):
            report = Analyzer(default_config()).analyze_paths(
                [rust_project], AnalysisOptions(parallel=parallel)
            )
        assert report.violations == []
        assert "permission denied" in caplog.text

    @pytest.mark.parametrize("parallel", [True, False])
    def test_fail_fast(self, rust_project: Path, flaky: None, parallel: bool) -> None:
        with pytest.raises(AnalysisError, match="permission denied"):
            Analyzer(default_config()).analyze_paths(
                [rust_project], AnalysisOptions(parallel=parallel, fail_fast=True)
            )


class TestCache:
    def test_cached_run_reports_same_violations(
        self, rust_project: Path, tmp_path: Path
    ) -> None:
        cache = FileCache(tmp_path / "cache.json")
        cache.load()
        analyzer = Analyzer(default_config())

        first = analyzer.analyze_paths([rust_project], cache=cache)
        assert cache.statistics().cache_misses == 2
        second = analyzer.analyze_paths([rust_project], cache=cache)

        assert _summary(first) == _summary(second)
        assert cache.statistics().cache_hits == 2
        entry = cache.get_entry(rust_project / "src" / "engine.rs")
        assert entry is not None
        assert entry.violation_count == 1

    def test_edit_invalidates_entry(self, rust_project: Path, tmp_path: Path) -> None:
        cache = FileCache(tmp_path / "cache.json")
        cache.load()
        analyzer = Analyzer(default_config())
        analyzer.analyze_paths([rust_project], cache=cache)

        lib = rust_project / "src" / "lib.rs"
        lib.write_text(lib.read_text() + "// FIXME: overflow\n")
        report = analyzer.analyze_paths([rust_project], cache=cache)

        assert ("lib.rs", 6, "todo_comments") in _summary(report)

    def test_cache_file_under_scanned_root_is_skipped(self, tmp_path: Path) -> None:
        project = tmp_path / "proj"
        (project / "src").mkdir(parents=True)
        (project / "src" / "stub.rs").write_text("fn main() {}\n")
        config = WardenConfig(
            paths=PathConfig(patterns=(), ignore_file=None),
            categories={
                "markers": RuleCategory(
                    "markers",
                    Severity.ERROR,
                    rules=(
                        RuleDefinition(
                            id="stub_marker",
                            kind=RuleKind.TEXT,
                            pattern=r"stub",
                            message="Implementation marker found: {match}",
                        ),
                    ),
                )
            },
        )
        cache = FileCache(project / ".codewarden" / "cache.json")
        cache.load()
        analyzer = Analyzer(config)

        first = analyzer.analyze_paths([project], cache=cache)
        cache.save()
        second = analyzer.analyze_paths([project], cache=cache)

        assert first.violations == second.violations == []
        assert analyzer.collect_files(
            [project], AnalysisOptions(), skip=[cache.cache_path]
        ) == [project / "src" / "stub.rs"]

    def test_edit_during_analysis_is_reanalysed(
        self, rust_project: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        cache = FileCache(tmp_path / "cache.json")
        cache.load()
        analyzer = Analyzer(default_config())
        lib = rust_project / "src" / "lib.rs"
        evaluate = analyzer.engine.analyze_file

        def edit_while_analysing(path: Path, text: str):
            if Path(path).name == "lib.rs":
                lib.write_text(text + "// TODO: landed mid-run\n")
            return evaluate(path, text)

        monkeypatch.setattr(analyzer.engine, "analyze_file", edit_while_analysing)
        first = analyzer.analyze_paths([rust_project], AnalysisOptions(parallel=False), cache=cache)
        monkeypatch.undo()

        assert ("lib.rs", 6, "todo_comments") not in _summary(first)
        second = analyzer.analyze_paths([rust_project], cache=cache)
        assert ("lib.rs", 6, "todo_comments") in _summary(second)

    def test_config_change_invalidates(self, rust_project: Path, tmp_path: Path) -> None:
        cache = FileCache(tmp_path / "cache.json")
        cache.load()
        Analyzer(default_config()).analyze_paths([rust_project], cache=cache)

        config = WardenConfig(
            categories={
                "style": RuleCategory(
                    "style",
                    Severity.WARNING,
                    rules=(
                        RuleDefinition(
                            id="helper_fn",
                            kind=RuleKind.TEXT,
                            pattern=r"fn helper",
                            message="helper found",
                        ),
                    ),
                )
            }
        )
        report = Analyzer(config).analyze_paths([rust_project], cache=cache)

        assert _summary(report) == [("lib.rs", 3, "helper_fn")]
        assert cache.config_fingerprint == config.fingerprint()


class TestAnalyzer:
    def test_pattern_stats(self) -> None:
        stats = Analyzer(default_config()).pattern_stats()
        assert (stats.text_patterns, stats.structural_patterns) == (3, 2)

    def test_bad_rule_fails_construction(self) -> None:
        config = WardenConfig(
            categories={
                "broken": RuleCategory(
                    "broken",
                    Severity.ERROR,
                    rules=(
                        RuleDefinition(
                            id="nope",
                            kind=RuleKind.STRUCTURAL,
                            pattern="no_such_check",
                            message="m",
                            rule_type="ast",
                        ),
                    ),
                )
            }
        )
        with pytest.raises(CompileError):
            Analyzer(config)

    def test_analyze_file_respects_filter(self, rust_project: Path) -> None:
        analyzer = Analyzer(default_config())
        assert analyzer.analyze_file(rust_project / "target" / "debug" / "build.rs") == []
        violations = analyzer.analyze_file(rust_project / "src" / "engine.rs")
        assert [v.rule_id for v in violations] == ["todo_comments"]
