"""Analyzer orchestrator: enumerate files, consult the cache, run the engine, merge."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from codewarden.domain.violations import AnalysisError, CacheError, ValidationReport, Violation
from codewarden.infrastructure.cache import content_digest
from codewarden.patterns.engine import PatternEngine, PatternStats, matches_to_violations
from codewarden.patterns.path_filter import PathFilter

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from codewarden.config import WardenConfig
    from codewarden.infrastructure.cache import FileCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisOptions:
    """Knobs for one :meth:`Analyzer.analyze_paths` run."""

    parallel: bool = True
    max_workers: int | None = None
    max_files: int | None = None
    fail_fast: bool = False
    exclude_patterns: tuple[str, ...] = ()
    ignore_ignore_files: bool = False


@dataclass(frozen=True)
class FileResult:
    """Violations for one file and the digest of the bytes they came from."""

    path: Path
    violations: list[Violation]
    content_hash: str


class Analyzer:
    """Runs a compiled :class:`PatternEngine` over files selected by a :class:`PathFilter`.

    Raises :class:`~codewarden.domain.violations.CompileError` or
    :class:`~codewarden.domain.violations.FilterError` at construction when
    the configuration cannot be turned into matchers.
    """

    def __init__(self, config: WardenConfig, root: Path | None = None) -> None:
        self.config = config
        self.root = root
        self.engine = PatternEngine.compile(config.categories)
        self.path_filter = self._build_filter(())
        self.fingerprint = config.fingerprint()
        self._merge_lock = threading.Lock()

    def _build_filter(self, extra: Iterable[str], *, use_ignore_files: bool = True) -> PathFilter:
        patterns = [*self.config.paths.patterns, *extra]
        ignore_file = self.config.paths.ignore_file if use_ignore_files else None
        return PathFilter(patterns, ignore_filename=ignore_file, root=self.root)

    def pattern_stats(self) -> PatternStats:
        return self.engine.pattern_stats()

    # -- single file --------------------------------------------------------

    def analyze_file(self, path: Path) -> list[Violation]:
        """Analyze one file; filtered-out paths yield no violations."""
        path = Path(path)
        if not self.path_filter.should_analyze(path):
            logger.debug("Skipping filtered path %s", path)
            return []
        return self._analyze_path(path).violations

    def _analyze_path(self, path: Path) -> FileResult:
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise AnalysisError(str(path), str(exc)) from exc
        # Undecodable bytes are replaced so binary-ish files never crash a run.
        text = data.decode("utf-8", errors="replace")
        violations = matches_to_violations(self.engine.analyze_file(path, text))
        return FileResult(path, violations, content_digest(data))

    # -- whole run ----------------------------------------------------------

    def collect_files(
        self,
        paths: Iterable[Path],
        options: AnalysisOptions,
        *,
        skip: Iterable[Path] = (),
    ) -> list[Path]:
        """Expand directories and apply filters, keeping first-seen order.

        Files in *skip* (compared by resolved path) are never candidates.
        """
        run_filter = self._build_filter(
            options.exclude_patterns, use_ignore_files=not options.ignore_ignore_files
        )
        files: list[Path] = []
        seen: set[Path] = set()
        skipped = {Path(p).resolve() for p in skip}
        for raw in paths:
            path = Path(raw)
            if path.is_dir():
                candidates = run_filter.find_files(path)
            elif path.is_file():
                candidates = [path] if run_filter.should_analyze(path) else []
            else:
                raise AnalysisError(str(path), "no such file or directory")
            for candidate in candidates:
                if candidate in seen or (skipped and candidate.resolve() in skipped):
                    continue
                seen.add(candidate)
                files.append(candidate)
        if options.max_files is not None:
            files = files[: options.max_files]
        return files

    def analyze_paths(
        self,
        paths: Iterable[Path],
        options: AnalysisOptions | None = None,
        cache: FileCache | None = None,
    ) -> ValidationReport:
        """Analyze every candidate under *paths* and return the sorted report.

        Cache decisions and updates happen on the calling thread only. A
        file is skipped only when the cache says it is unchanged *and* it
        had no violations last time, so cached runs report the same
        violations as uncached ones.
        """
        options = options or AnalysisOptions()
        start = time.monotonic()
        # The cache document must never be analysed as a source file.
        skip = [cache.cache_path] if cache is not None else []
        files = self.collect_files(paths, options, skip=skip)
        to_analyze = self._select_uncached(files, cache)

        report = ValidationReport(config_fingerprint=self.fingerprint)
        analyzed: list[FileResult] = []

        def merge(result: FileResult) -> None:
            with self._merge_lock:
                report.extend(result.violations)
                analyzed.append(result)

        if options.parallel and len(to_analyze) > 1:
            self._run_parallel(to_analyze, options, merge)
        else:
            for path in to_analyze:
                try:
                    merge(self._analyze_path(path))
                except AnalysisError as exc:
                    if options.fail_fast:
                        raise
                    logger.warning("%s", exc)

        if cache is not None:
            self._update_cache(cache, analyzed)

        report.summary.total_files = len(files)
        report.summary.execution_time_ms = int((time.monotonic() - start) * 1000)
        report.sort_violations()
        logger.info(
            "Analyzed %d of %d files: %d violations in %d ms",
            len(analyzed),
            len(files),
            len(report.violations),
            report.summary.execution_time_ms,
        )
        return report

    def _run_parallel(
        self,
        files: list[Path],
        options: AnalysisOptions,
        merge: Callable[[FileResult], None],
    ) -> None:
        with ThreadPoolExecutor(max_workers=options.max_workers) as pool:
            futures = [pool.submit(self._analyze_path, path) for path in files]
            for future in as_completed(futures):
                try:
                    result = future.result()
                except AnalysisError as exc:
                    if options.fail_fast:
                        for pending in futures:
                            pending.cancel()
                        raise
                    logger.warning("%s", exc)
                    continue
                merge(result)

    def _select_uncached(self, files: list[Path], cache: FileCache | None) -> list[Path]:
        if cache is None:
            return list(files)
        selected: list[Path] = []
        for path in files:
            try:
                stale = cache.needs_analysis(path, self.fingerprint)
            except CacheError as exc:
                logger.debug("Cache check failed for %s: %s", path, exc)
                stale = True
            entry = cache.get_entry(path)
            if stale or entry is None or entry.violation_count > 0:
                selected.append(path)
        logger.debug("Cache: %d of %d files need analysis", len(selected), len(files))
        return selected

    def _update_cache(self, cache: FileCache, analyzed: list[FileResult]) -> None:
        cache.set_config_fingerprint(self.fingerprint)
        for result in analyzed:
            try:
                cache.update_entry(
                    result.path,
                    len(result.violations),
                    self.fingerprint,
                    content_hash=result.content_hash,
                )
            except CacheError as exc:
                logger.warning("Cannot update cache entry for %s: %s", result.path, exc)
