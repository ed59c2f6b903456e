"""codewarden CLI entry point."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from codewarden import __version__
from codewarden.report import FORMATS

if TYPE_CHECKING:
    from codewarden.config import WardenConfig
    from codewarden.infrastructure.cache import FileCache

DEFAULT_CACHE_FILE = Path(".codewarden") / "cache.json"


@click.group()
@click.version_option(version=__version__, prog_name="codewarden")
@click.option("--verbose", "-v", is_flag=True, help="Verbose (debug) logging.")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (default: codewarden.yaml in the current directory).",
)
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, config_path: Path | None) -> None:
    """codewarden - declarative code quality gate."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config_path


def _load_config(ctx: click.Context, path: Path | None = None) -> WardenConfig:
    """Explicit path, else discovered file, else the built-in rule set. Exit 2 on error."""
    from codewarden.config import default_config, find_config, load_config
    from codewarden.domain.violations import ConfigError

    path = path or ctx.obj.get("config_path") or find_config(Path.cwd())
    if path is None:
        return default_config()
    try:
        return load_config(path)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------


@main.command()
@click.argument("paths", nargs=-1, type=click.Path(path_type=Path))
@click.option(
    "--format",
    "fmt",
    type=click.Choice(list(FORMATS)),
    default="human",
    help="Output format.",
)
@click.option(
    "--severity",
    type=click.Choice(["info", "warning", "error"]),
    default=None,
    help="Only report violations at or above this severity.",
)
@click.option("--max-violations", type=int, default=None, help="Report at most N violations.")
@click.option("--max-files", type=int, default=None, help="Analyze at most N files.")
@click.option("--exclude", multiple=True, help="Extra exclusion glob (repeatable).")
@click.option("--no-ignore", is_flag=True, default=False, help="Do not read ignore files.")
@click.option("--no-parallel", is_flag=True, default=False, help="Analyze files sequentially.")
@click.option("--fail-fast", is_flag=True, default=False, help="Stop at the first file error.")
@click.option("--cache", "use_cache", is_flag=True, default=False, help="Skip unchanged files.")
@click.option(
    "--cache-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CACHE_FILE,
    show_default=True,
    help="Cache location.",
)
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Exit 1 on any reported violation, not only errors.",
)
@click.pass_context
def check(
    ctx: click.Context,
    paths: tuple[Path, ...],
    *,
    fmt: str,
    severity: str | None,
    max_violations: int | None,
    max_files: int | None,
    exclude: tuple[str, ...],
    no_ignore: bool,
    no_parallel: bool,
    fail_fast: bool,
    use_cache: bool,
    cache_file: Path,
    strict: bool,
) -> None:
    """Check PATHS (default: current directory) against the rule set.

    Exit codes: 0 = clean, 1 = error-severity violations (any violation
    with --strict), 2 = configuration or fatal error.
    """
    from codewarden.analyzer import AnalysisOptions, Analyzer
    from codewarden.domain.violations import CacheError, Severity, WardenError
    from codewarden.infrastructure.cache import FileCache
    from codewarden.report import ReportOptions, format_report, select_violations

    config = _load_config(ctx)
    options = AnalysisOptions(
        parallel=not no_parallel,
        max_files=max_files,
        fail_fast=fail_fast,
        exclude_patterns=exclude,
        ignore_ignore_files=no_ignore,
    )

    cache: FileCache | None = None
    if use_cache:
        cache = FileCache(cache_file)
        try:
            cache.load()
        except CacheError as exc:
            click.echo(f"Warning: cache disabled: {exc}", err=True)
            cache = None

    try:
        analyzer = Analyzer(config)
        report = analyzer.analyze_paths(list(paths) or [Path(".")], options, cache)
    except WardenError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)

    if cache is not None:
        try:
            cache.save()
        except CacheError as exc:
            click.echo(f"Warning: {exc}", err=True)

    report_options = ReportOptions(
        min_severity=Severity.parse(severity) if severity else None,
        max_violations=max_violations,
        use_colors=fmt == "human" and sys.stdout.isatty(),
    )
    output = format_report(report, fmt, report_options)
    if output:
        click.echo(output)

    reported = select_violations(report, ReportOptions(min_severity=report_options.min_severity))
    if any(v.is_blocking for v in reported) or (strict and reported):
        sys.exit(1)


# ---------------------------------------------------------------------------
# rules / explain / validate-config
# ---------------------------------------------------------------------------


@main.command()
@click.option("--enabled-only", is_flag=True, default=False, help="Hide disabled rules.")
@click.option("--category", default=None, help="Only show this category.")
@click.pass_context
def rules(ctx: click.Context, *, enabled_only: bool, category: str | None) -> None:
    """List configured rules."""
    from rich.console import Console
    from rich.table import Table

    config = _load_config(ctx)
    table = Table(title="Rules")
    table.add_column("Category", style="cyan")
    table.add_column("Rule")
    table.add_column("Type")
    table.add_column("Severity")
    table.add_column("Enabled", justify="center")

    for cat in config.categories.values():
        if category is not None and cat.name != category:
            continue
        for rule in cat.rules:
            enabled = cat.enabled and rule.enabled
            if enabled_only and not enabled:
                continue
            table.add_row(
                cat.name,
                rule.id,
                rule.rule_type,
                config.effective_severity(cat, rule).value,
                "yes" if enabled else "no",
            )

    Console().print(table)


@main.command()
@click.argument("rule_id")
@click.pass_context
def explain(ctx: click.Context, rule_id: str) -> None:
    """Show the definition of RULE_ID (``id`` or ``category.id``)."""
    config = _load_config(ctx)
    found = config.find_rule(rule_id)
    if found is None:
        click.echo(f"Error: unknown rule '{rule_id}'", err=True)
        sys.exit(1)
    category, rule = found

    click.echo(f"Rule: {category.name}.{rule.id}")
    click.echo(f"Type: {rule.rule_type}")
    click.echo(f"Severity: {config.effective_severity(category, rule).value}")
    click.echo(f"Enabled: {'yes' if category.enabled and rule.enabled else 'no'}")
    click.echo(f"Pattern: {rule.pattern}")
    click.echo(f"Message: {rule.message}")
    if rule.exclude is not None:
        if rule.exclude.attribute:
            click.echo(f"Excluded when annotated: {rule.exclude.attribute}")
        if rule.exclude.in_tests:
            click.echo("Excluded in test files")
        for pattern in rule.exclude.file_patterns:
            click.echo(f"Excluded paths: {pattern}")


@main.command("validate-config")
@click.argument(
    "config_file",
    required=False,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.pass_context
def validate_config(ctx: click.Context, config_file: Path | None) -> None:
    """Validate a configuration file and compile its rules."""
    from codewarden.domain.violations import WardenError
    from codewarden.patterns.engine import PatternEngine
    from codewarden.patterns.path_filter import PathFilter

    config = _load_config(ctx, config_file)
    try:
        stats = PatternEngine.compile(config.categories).pattern_stats()
        PathFilter(config.paths.patterns, ignore_filename=config.paths.ignore_file)
    except WardenError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)

    click.echo(
        f"Configuration valid: {stats.total_patterns} rules "
        f"({stats.text_patterns} text, {stats.structural_patterns} structural)"
    )
    click.echo(f"Fingerprint: {config.fingerprint()}")


# ---------------------------------------------------------------------------
# cache
# ---------------------------------------------------------------------------


_cache_file_option = click.option(
    "--cache-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CACHE_FILE,
    show_default=True,
    help="Cache location.",
)


@main.group()
def cache() -> None:
    """Inspect or maintain the analysis cache."""


def _open_cache(cache_file: Path) -> FileCache:
    from codewarden.domain.violations import CacheError
    from codewarden.infrastructure.cache import FileCache

    file_cache = FileCache(cache_file)
    try:
        file_cache.load()
    except CacheError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)
    return file_cache


@cache.command("stats")
@_cache_file_option
def cache_stats(cache_file: Path) -> None:
    """Show cache statistics."""
    if not cache_file.exists():
        click.echo(f"No cache at {cache_file}")
        return
    file_cache = _open_cache(cache_file)
    click.echo(file_cache.statistics().format_display())


@cache.command("clear")
@_cache_file_option
def cache_clear(cache_file: Path) -> None:
    """Delete every cache entry and the cache file."""
    from codewarden.domain.violations import CacheError
    from codewarden.infrastructure.cache import FileCache

    try:
        FileCache(cache_file).clear()
    except CacheError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)
    click.echo("Cache cleared")


@cache.command("cleanup")
@_cache_file_option
def cache_cleanup(cache_file: Path) -> None:
    """Drop entries for files that no longer exist."""
    from codewarden.domain.violations import CacheError

    if not cache_file.exists():
        click.echo(f"No cache at {cache_file}")
        return
    file_cache = _open_cache(cache_file)
    removed = file_cache.cleanup()
    try:
        file_cache.save()
    except CacheError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(2)
    click.echo(f"Removed {removed} stale entries")
