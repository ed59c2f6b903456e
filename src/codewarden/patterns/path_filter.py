"""Path filter: gitignore-style decision of which files are analysis candidates."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from codewarden.config import DEFAULT_IGNORE_FILE, DEFAULT_PATH_PATTERNS
from codewarden.domain.violations import FilterError
from codewarden.patterns.globs import GlobSyntaxError, compile_glob

if TYPE_CHECKING:
    import re
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterPattern:
    """One compiled filter line."""

    regex: re.Pattern[str]
    include: bool
    original: str
    directory_only: bool = False
    anchored: bool = False
    has_slash: bool = False

    def matches(self, rel_path: str, *, is_dir: bool) -> bool:
        """Match against *rel_path*, a POSIX path relative to the pattern's base."""
        if self.directory_only:
            parts = PurePosixPath(rel_path).parts
            # Parent components always denote directories; the path itself
            # only when it is one.
            upto = len(parts) if is_dir else len(parts) - 1
            return any(
                self._match_one("/".join(parts[: i + 1]), parts[i]) for i in range(upto)
            )
        return self._match_one(rel_path, PurePosixPath(rel_path).name)

    def _match_one(self, full: str, name: str) -> bool:
        target = full if self.has_slash else name
        return self.regex.fullmatch(target) is not None


def parse_pattern(text: str) -> FilterPattern:
    """Parse one pattern line (``!`` negation, trailing ``/``, leading ``/``).

    Raises :class:`GlobSyntaxError` when the glob is malformed.
    """
    body = text.strip()
    include = body.startswith("!")
    if include:
        body = body[1:]
    directory_only = body.endswith("/")
    if directory_only:
        body = body.rstrip("/")
    anchored = body.startswith("/")
    if anchored:
        body = body.lstrip("/")
    if not body:
        msg = f"empty pattern '{text}'"
        raise GlobSyntaxError(msg)
    return FilterPattern(
        regex=compile_glob(body),
        include=include,
        original=text.strip(),
        directory_only=directory_only,
        anchored=anchored,
        has_slash=anchored or "/" in body,
    )


def load_ignore_file(path: Path) -> list[FilterPattern]:
    """Parse an ignore file; a missing file yields no patterns.

    Blank lines and ``#`` comments are skipped. A malformed line is logged
    and skipped; an unreadable file raises :class:`FilterError`.
    """
    if not path.is_file():
        return []
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        msg = f"cannot read ignore file {path}: {exc}"
        raise FilterError(msg) from exc

    patterns: list[FilterPattern] = []
    for lineno, raw in enumerate(content.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        try:
            patterns.append(parse_pattern(line))
        except GlobSyntaxError as exc:
            logger.warning("Skipping invalid pattern in %s:%d: %s", path, lineno, exc)
    return patterns


def _relative(path: Path, base: Path) -> str:
    if path.is_absolute() != base.is_absolute():
        path = Path(os.path.abspath(path))
        base = Path(os.path.abspath(base))
    try:
        return path.relative_to(base).as_posix()
    except ValueError:
        return path.as_posix()


def _fold(
    patterns: Iterable[FilterPattern], rel_path: str, *, is_dir: bool, excluded: bool
) -> bool:
    """Last matching pattern decides; *excluded* is the incoming decision."""
    for pattern in patterns:
        if pattern.matches(rel_path, is_dir=is_dir):
            excluded = not pattern.include
    return excluded


class PathFilter:
    """Ordered include/exclude patterns plus per-directory ignore files.

    Only :meth:`add_pattern` mutates the filter; evaluation keeps no state
    and may run from several threads at once.
    """

    def __init__(
        self,
        patterns: Iterable[str] = (),
        ignore_filename: str | None = None,
        root: Path | None = None,
    ) -> None:
        self.root = Path(root) if root is not None else Path(".")
        self.ignore_filename = ignore_filename or None
        self._patterns: list[FilterPattern] = []
        for text in patterns:
            self.add_pattern(text)

    @classmethod
    def with_defaults(cls, root: Path | None = None) -> PathFilter:
        """Filter excluding build/vendor directories, honouring ``.wardenignore``."""
        return cls(DEFAULT_PATH_PATTERNS, ignore_filename=DEFAULT_IGNORE_FILE, root=root)

    @property
    def patterns(self) -> list[FilterPattern]:
        return list(self._patterns)

    def add_pattern(self, text: str) -> None:
        """Append a static pattern; it takes precedence over earlier ones."""
        try:
            self._patterns.append(parse_pattern(text))
        except GlobSyntaxError as exc:
            msg = f"invalid path pattern '{text}': {exc}"
            raise FilterError(msg) from exc

    # -- evaluation ---------------------------------------------------------

    def should_analyze(self, path: Path) -> bool:
        """Return ``True`` unless the combined decision excludes *path*."""
        return not self._is_excluded(Path(path), self._read_ignore)

    def filter_paths(self, paths: Iterable[Path]) -> list[Path]:
        return [Path(p) for p in paths if self.should_analyze(p)]

    def find_files(self, root: Path) -> list[Path]:
        """Walk *root* and return candidate regular files.

        Static patterns are evaluated relative to the filter root, not the
        walk root, so the result agrees with :meth:`should_analyze`. Symlinks
        are not followed, each ignore file is read at most once per walk, and
        excluded directories are pruned unless some ``!`` line seen so far
        could re-include a path beneath them.
        """
        loaded: dict[Path, list[FilterPattern]] = {}

        def lookup(directory: Path) -> list[FilterPattern]:
            if directory not in loaded:
                loaded[directory] = self._read_ignore(directory)
            return loaded[directory]

        def may_reinclude() -> bool:
            if any(p.include for p in self._patterns):
                return True
            return any(p.include for group in loaded.values() for p in group)

        root = Path(root)
        if root.is_file():
            return [] if self._is_excluded(root, lookup) else [root]

        found: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
            current = Path(dirpath)
            dirnames.sort()
            if not may_reinclude():
                dirnames[:] = [
                    d
                    for d in dirnames
                    if not self._is_excluded(current / d, lookup, is_dir=True)
                ]
            for name in sorted(filenames):
                path = current / name
                if path.is_symlink() or not path.is_file():
                    continue
                if not self._is_excluded(path, lookup, is_dir=False):
                    found.append(path)
        return found

    def debug_patterns(self, path: Path) -> list[str]:
        """Describe each static pattern and whether it matches *path*."""
        path = Path(path)
        rel = _relative(path, self.root)
        is_dir = path.is_dir()
        lines: list[str] = []
        for pattern in self._patterns:
            matched = pattern.matches(rel, is_dir=is_dir)
            polarity = "include" if pattern.include else "exclude"
            verdict = "MATCH" if matched else "no match"
            lines.append(f"{pattern.original} ({polarity}) -> {verdict}")
        if self.ignore_filename:
            lines.append(f"ignore file: {self.ignore_filename}")
        lines.append(f"decision: {'include' if self.should_analyze(path) else 'exclude'}")
        return lines

    # -- internals ----------------------------------------------------------

    def _read_ignore(self, directory: Path) -> list[FilterPattern]:
        if self.ignore_filename is None:
            return []
        return load_ignore_file(directory / self.ignore_filename)

    def _is_excluded(
        self,
        path: Path,
        lookup: Callable[[Path], list[FilterPattern]],
        *,
        is_dir: bool | None = None,
    ) -> bool:
        if is_dir is None:
            is_dir = path.is_dir()
        # Static patterns are relative to the filter root; ignore files to their directory.
        excluded = _fold(
            self._patterns, _relative(path, self.root), is_dir=is_dir, excluded=False
        )
        if self.ignore_filename is None:
            return excluded

        absolute = Path(os.path.abspath(path))
        # Outermost directory first so deeper ignore files win.
        for directory in reversed(absolute.parents):
            patterns = lookup(directory)
            if patterns:
                rel = absolute.relative_to(directory).as_posix()
                excluded = _fold(patterns, rel, is_dir=is_dir, excluded=excluded)
        return excluded
