"""Tests for the codewarden CLI commands."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
from click.testing import CliRunner

from codewarden import __version__
from codewarden.cli import main

if TYPE_CHECKING:
    from pathlib import Path

WARNING_ONLY_CONFIG = """\
version: "1.0"
patterns:
  style:
    severity: warning
    rules:
      - id: helper_fn
        type: regex
        pattern: 'fn helper'
        message: "helper found"
"""


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def workspace(rust_project: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run commands from the directory holding ``crate/``."""
    monkeypatch.chdir(rust_project.parent)
    return rust_project.parent


def _invoke(runner: CliRunner, *args: str):
    return runner.invoke(main, list(args), env={"COLUMNS": "200"})


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------


class TestCheck:
    def test_violations_exit_1(self, runner: CliRunner, workspace: Path) -> None:
        result = _invoke(runner, "check", "crate", "--format", "porcelain")
        assert result.exit_code == 1, result.output
        assert result.output.strip() == (
            "crate/src/engine.rs:1:4:error:todo_comments:Development marker detected: TODO"
        )

    def test_clean_exit_0(self, runner: CliRunner, workspace: Path) -> None:
        result = _invoke(runner, "check", "crate/src/lib.rs")
        assert result.exit_code == 0, result.output
        assert "No code quality violations found" in result.output
        assert "in 1 files" in result.output

    def test_warnings_pass_unless_strict(self, runner: CliRunner, workspace: Path) -> None:
        (workspace / "codewarden.yaml").write_text(WARNING_ONLY_CONFIG)

        result = _invoke(runner, "check", "crate", "--format", "porcelain")
        assert result.exit_code == 0, result.output
        assert ":warning:helper_fn:helper found" in result.output

        strict = _invoke(runner, "check", "crate", "--strict")
        assert strict.exit_code == 1

    def test_severity_filter(self, runner: CliRunner, workspace: Path) -> None:
        (workspace / "codewarden.yaml").write_text(WARNING_ONLY_CONFIG)
        result = _invoke(
            runner, "check", "crate", "--strict", "--severity", "error", "--format", "porcelain"
        )
        assert result.exit_code == 0
        assert result.output.strip() == ""

    def test_json_output(self, runner: CliRunner, workspace: Path) -> None:
        result = _invoke(runner, "check", "crate", "--format", "json", "--no-parallel")
        data = json.loads(result.output)
        assert data["summary"]["total_files"] == 2
        assert [v["rule_id"] for v in data["violations"]] == ["todo_comments"]

    def test_exclude_option(self, runner: CliRunner, workspace: Path) -> None:
        result = _invoke(runner, "check", "crate", "--exclude", "**/engine.rs")
        assert result.exit_code == 0, result.output

    def test_explicit_config(self, runner: CliRunner, workspace: Path) -> None:
        config = workspace / "rules.yaml"
        config.write_text(WARNING_ONLY_CONFIG)
        result = _invoke(runner, "-c", str(config), "check", "crate", "--format", "porcelain")
        assert "helper_fn" in result.output
        assert "todo_comments" not in result.output

    def test_invalid_config_exit_2(self, runner: CliRunner, workspace: Path) -> None:
        (workspace / "codewarden.yaml").write_text('version: "9.9"\n')
        result = _invoke(runner, "check", "crate")
        assert result.exit_code == 2
        assert "Unsupported configuration version" in result.output

    def test_bad_rule_exit_2(self, runner: CliRunner, workspace: Path) -> None:
        (workspace / "codewarden.yaml").write_text(
            WARNING_ONLY_CONFIG.replace("type: regex", "type: ast").replace(
                "'fn helper'", "'nonsense_check'"
            )
        )
        result = _invoke(runner, "check", "crate")
        assert result.exit_code == 2
        assert "nonsense_check" in result.output

    def test_missing_path_exit_2(self, runner: CliRunner, workspace: Path) -> None:
        result = _invoke(runner, "check", "nowhere")
        assert result.exit_code == 2
        assert "no such file or directory" in result.output

    def test_cache_file_written(self, runner: CliRunner, workspace: Path) -> None:
        first = _invoke(runner, "check", "crate", "--cache")
        second = _invoke(runner, "check", "crate", "--cache", "--format", "porcelain")

        assert (workspace / ".codewarden" / "cache.json").is_file()
        assert first.exit_code == second.exit_code == 1
        assert "todo_comments" in second.output

    def test_cache_rerun_on_current_directory_stays_clean(
        self, runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "stub.rs").write_text("fn main() {}\n")
        monkeypatch.chdir(tmp_path)

        first = _invoke(runner, "check", ".", "--cache", "--format", "porcelain")
        second = _invoke(runner, "check", ".", "--cache", "--format", "porcelain")

        assert (tmp_path / ".codewarden" / "cache.json").is_file()
        assert (first.exit_code, first.output) == (0, "")
        assert (second.exit_code, second.output) == (0, "")

    def test_check_subdirectory_agrees_with_root(
        self, runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        (tmp_path / "src" / "generated").mkdir(parents=True)
        (tmp_path / "src" / "generated" / "x.rs").write_text("// TODO: regenerate\n")
        (tmp_path / "codewarden.yaml").write_text(
            'version: "1.0"\n'
            "paths:\n"
            '  patterns: ["src/generated/**"]\n'
            "patterns:\n"
            "  markers:\n"
            "    severity: error\n"
            "    rules:\n"
            "      - {id: todo, type: regex, pattern: 'TO[D]O', message: marker}\n"
        )
        monkeypatch.chdir(tmp_path)

        assert _invoke(runner, "check", ".").exit_code == 0
        assert _invoke(runner, "check", "src").exit_code == 0

    def test_corrupt_cache_is_ignored(self, runner: CliRunner, workspace: Path) -> None:
        cache_file = workspace / ".codewarden" / "cache.json"
        cache_file.parent.mkdir()
        cache_file.write_text("{broken")
        result = _invoke(runner, "check", "crate", "--cache", "--format", "porcelain")
        assert result.exit_code == 1
        assert "cache disabled" in result.output


# ---------------------------------------------------------------------------
# rules / explain / validate-config
# ---------------------------------------------------------------------------


class TestRules:
    def test_lists_default_rules(self, runner: CliRunner, workspace: Path) -> None:
        result = _invoke(runner, "rules")
        assert result.exit_code == 0, result.output
        assert "todo_comments" in result.output
        assert "architectural_header_missing" in result.output

    def test_enabled_only(self, runner: CliRunner, workspace: Path) -> None:
        result = _invoke(runner, "rules", "--enabled-only")
        assert "architectural_header_missing" not in result.output
        assert "empty_ok_return" in result.output

    def test_category_filter(self, runner: CliRunner, workspace: Path) -> None:
        result = _invoke(runner, "rules", "--category", "incomplete_implementations")
        assert "empty_ok_return" in result.output
        assert "todo_comments" not in result.output


class TestExplain:
    def test_known_rule(self, runner: CliRunner, workspace: Path) -> None:
        result = _invoke(runner, "explain", "unimplemented_macros")
        assert result.exit_code == 0
        assert "Rule: placeholders.unimplemented_macros" in result.output
        assert "Severity: error" in result.output
        assert "Excluded when annotated: #[test]" in result.output

    def test_qualified_id(self, runner: CliRunner, workspace: Path) -> None:
        result = _invoke(runner, "explain", "architectural_violations.hardcoded_paths")
        assert "Severity: warning" in result.output

    def test_unknown_rule(self, runner: CliRunner, workspace: Path) -> None:
        result = _invoke(runner, "explain", "no_such_rule")
        assert result.exit_code == 1
        assert "unknown rule" in result.output


class TestValidateConfig:
    def test_default_rules(self, runner: CliRunner, workspace: Path) -> None:
        result = _invoke(runner, "validate-config")
        assert result.exit_code == 0
        assert "Configuration valid: 5 rules (3 text, 2 structural)" in result.output
        assert "Fingerprint:" in result.output

    def test_file_argument(self, runner: CliRunner, workspace: Path) -> None:
        config = workspace / "rules.yaml"
        config.write_text(WARNING_ONLY_CONFIG)
        result = _invoke(runner, "validate-config", str(config))
        assert "Configuration valid: 1 rules (1 text, 0 structural)" in result.output

    def test_invalid_file(self, runner: CliRunner, workspace: Path) -> None:
        config = workspace / "rules.yaml"
        config.write_text(WARNING_ONLY_CONFIG.replace("'fn helper'", "'(unclosed'"))
        result = _invoke(runner, "validate-config", str(config))
        assert result.exit_code == 2
        assert "Invalid regex pattern" in result.output


# ---------------------------------------------------------------------------
# cache
# ---------------------------------------------------------------------------


class TestCacheCommands:
    def test_stats_without_cache(self, runner: CliRunner, workspace: Path) -> None:
        result = _invoke(runner, "cache", "stats")
        assert result.exit_code == 0
        assert "No cache at" in result.output

    def test_stats_cleanup_clear(self, runner: CliRunner, workspace: Path) -> None:
        _invoke(runner, "check", "crate", "--cache")

        stats = _invoke(runner, "cache", "stats")
        assert "Cache: 2 files" in stats.output

        (workspace / "crate" / "src" / "lib.rs").unlink()
        cleanup = _invoke(runner, "cache", "cleanup")
        assert "Removed 1 stale entries" in cleanup.output

        clear = _invoke(runner, "cache", "clear")
        assert clear.exit_code == 0
        assert not (workspace / ".codewarden" / "cache.json").exists()


def test_version(runner: CliRunner) -> None:
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output
