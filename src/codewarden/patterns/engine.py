"""Pattern engine: compile rule definitions into matchers and evaluate one file."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import TYPE_CHECKING

from codewarden.config import RuleKind
from codewarden.domain.violations import CompileError, Severity, Violation
from codewarden.patterns.checks import StructuralCheck, parse_descriptor
from codewarden.patterns.globs import GlobSyntaxError, compile_glob
from codewarden.patterns.structural import Candidate, carries_attribute, finder_for
from codewarden.syntax import is_usable, parse_source

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from tree_sitter import Node, Tree

    from codewarden.config import ExclusionPolicy, RuleCategory, RuleDefinition

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PatternMatch:
    """A rule hit in one file, before conversion to a :class:`Violation`."""

    rule_id: str
    file_path: str
    line_number: int | None
    column_number: int | None
    matched_text: str
    message: str
    severity: Severity
    context: str | None = None

    def to_violation(self) -> Violation:
        return Violation(
            rule_id=self.rule_id,
            severity=self.severity,
            file_path=self.file_path,
            message=self.message,
            line_number=self.line_number,
            column_number=self.column_number,
            context=self.context,
        )


@dataclass(frozen=True)
class CompiledExclusion:
    attribute: str | None
    in_tests: bool
    file_globs: tuple[re.Pattern[str], ...]


@dataclass(frozen=True)
class CompiledTextMatcher:
    rule_id: str
    regex: re.Pattern[str]
    message: str
    severity: Severity
    exclusion: CompiledExclusion | None = None


@dataclass(frozen=True)
class CompiledStructuralMatcher:
    rule_id: str
    check: StructuralCheck
    finder: Callable[..., list[Candidate]]
    message: str
    severity: Severity
    exclusion: CompiledExclusion | None = None


CompiledMatcher = CompiledTextMatcher | CompiledStructuralMatcher


@dataclass(frozen=True)
class PatternStats:
    text_patterns: int
    structural_patterns: int

    @property
    def total_patterns(self) -> int:
        return self.text_patterns + self.structural_patterns


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalized_path(path: Path | str) -> PurePath:
    """Collapse ``./`` and ``..`` and make paths under the cwd relative.

    Test-file detection and exclusion globs must not depend on which alias
    of a path was passed in.
    """
    text = os.path.normpath(str(path))
    pure = PurePath(text)
    if pure.is_absolute():
        try:
            return pure.relative_to(Path.cwd())
        except ValueError:
            return pure
    return pure


def is_test_path(path: Path | str) -> bool:
    """``test``/``tests`` directory component, or ``test`` in the file name."""
    pure = normalized_path(path)
    if any(part in ("test", "tests") for part in pure.parts[:-1]):
        return True
    return "test" in pure.name


def render_message(template: str, matched_text: str, values: Mapping[str, str]) -> str:
    message = template.replace("{match}", matched_text)
    for key, value in values.items():
        message = message.replace(f"{{{key}}}", value)
    return message


def _line_context(text: str, start: int) -> tuple[int, int, str]:
    """1-indexed line and character column of *start*, plus the trimmed line."""
    line_start = text.rfind("\n", 0, start) + 1
    line_end = text.find("\n", start)
    if line_end == -1:
        line_end = len(text)
    line = text.count("\n", 0, start) + 1
    return line, start - line_start + 1, text[line_start:line_end].strip()


def _node_position(node: Node, source: bytes) -> tuple[int, int, str]:
    start = node.start_byte
    line_start = source.rfind(b"\n", 0, start) + 1
    line_end = source.find(b"\n", start)
    if line_end == -1:
        line_end = len(source)
    column = len(source[line_start:start].decode("utf-8", errors="replace")) + 1
    context = source[line_start:line_end].decode("utf-8", errors="replace").strip()
    return node.start_point[0] + 1, column, context


def _compile_exclusion(rule_id: str, policy: ExclusionPolicy | None) -> CompiledExclusion | None:
    if policy is None:
        return None
    globs: list[re.Pattern[str]] = []
    for pattern in policy.file_patterns:
        try:
            globs.append(compile_glob(pattern))
        except GlobSyntaxError as exc:
            raise CompileError(rule_id, f"invalid exclusion glob '{pattern}': {exc}") from exc
    return CompiledExclusion(
        attribute=policy.attribute, in_tests=policy.in_tests, file_globs=tuple(globs)
    )


def _excluded_by_path(exclusion: CompiledExclusion | None, path: Path | str) -> bool:
    if exclusion is None:
        return False
    if exclusion.in_tests and is_test_path(path):
        return True
    posix = normalized_path(path).as_posix()
    return any(glob.fullmatch(posix) for glob in exclusion.file_globs)


def _excluded_by_attribute(exclusion: CompiledExclusion | None, node: Node | None) -> bool:
    if exclusion is None or exclusion.attribute is None or node is None:
        return False
    return carries_attribute(node, exclusion.attribute)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class PatternEngine:
    """Registry of compiled matchers; read-only once compilation finishes."""

    def __init__(self) -> None:
        self._matchers: dict[str, CompiledMatcher] = {}

    @classmethod
    def compile(
        cls, categories: Iterable[RuleCategory] | Mapping[str, RuleCategory]
    ) -> PatternEngine:
        """Compile every enabled rule of every enabled category.

        Any bad rule aborts the whole build with :class:`CompileError`.
        """
        if isinstance(categories, Mapping):
            categories = categories.values()
        engine = cls()
        for category in categories:
            if not category.enabled:
                continue
            for rule in category.rules:
                if rule.enabled:
                    severity = rule.severity if rule.severity is not None else category.severity
                    engine.add_rule(rule, severity, category=category.name)
        logger.debug("Compiled %d matchers", len(engine._matchers))
        return engine

    def add_rule(
        self, rule: RuleDefinition, severity: Severity, *, category: str = "default"
    ) -> None:
        """Compile a single rule into the registry."""
        qualified = f"{category}.{rule.id}"
        if qualified in self._matchers:
            raise CompileError(rule.id, f"duplicate rule id in category '{category}'")

        exclusion = _compile_exclusion(rule.id, rule.exclude)
        matcher: CompiledMatcher
        if rule.kind is RuleKind.TEXT:
            flags = 0 if rule.case_sensitive else re.IGNORECASE
            try:
                regex = re.compile(rule.pattern, flags)
            except re.error as exc:
                raise CompileError(rule.id, f"invalid regex: {exc}") from exc
            matcher = CompiledTextMatcher(rule.id, regex, rule.message, severity, exclusion)
        else:
            try:
                check = parse_descriptor(rule.pattern)
            except ValueError as exc:
                raise CompileError(rule.id, str(exc)) from exc
            matcher = CompiledStructuralMatcher(
                rule.id, check, finder_for(check), rule.message, severity, exclusion
            )
        self._matchers[qualified] = matcher

    @property
    def matchers(self) -> dict[str, CompiledMatcher]:
        return dict(self._matchers)

    @property
    def has_structural(self) -> bool:
        return any(isinstance(m, CompiledStructuralMatcher) for m in self._matchers.values())

    def pattern_stats(self) -> PatternStats:
        structural = sum(
            1 for m in self._matchers.values() if isinstance(m, CompiledStructuralMatcher)
        )
        return PatternStats(
            text_patterns=len(self._matchers) - structural, structural_patterns=structural
        )

    # -- evaluation ---------------------------------------------------------

    def analyze_file(self, path: Path | str, text: str) -> list[PatternMatch]:
        """Parse *text* when a grammar is available, then :meth:`evaluate`."""
        tree = parse_source(path, text) if self._matchers else None
        return self.evaluate(path, text, tree)

    def evaluate(
        self, path: Path | str, text: str, tree: Tree | None = None
    ) -> list[PatternMatch]:
        """Run every matcher over one file. Matches are not globally ordered."""
        usable = is_usable(tree)
        if tree is not None and not usable:
            logger.debug("Syntax errors in %s, structural checks skipped", path)
        source = text.encode("utf-8")
        root = tree.root_node if usable and tree is not None else None

        matches: list[PatternMatch] = []
        for qualified, matcher in self._matchers.items():
            try:
                if isinstance(matcher, CompiledTextMatcher):
                    matches.extend(self._apply_text(matcher, path, text, root))
                elif root is not None:
                    matches.extend(self._apply_structural(matcher, path, root, source))
            except Exception as exc:  # noqa: BLE001
                logger.warning("Matcher %s failed on %s: %s", qualified, path, exc)
        logger.debug("%s: %d matches from %d matchers", path, len(matches), len(self._matchers))
        return matches

    def _apply_text(
        self, matcher: CompiledTextMatcher, path: Path | str, text: str, root: Node | None
    ) -> list[PatternMatch]:
        if _excluded_by_path(matcher.exclusion, path):
            return []
        found: list[PatternMatch] = []
        for m in matcher.regex.finditer(text):
            if root is not None and matcher.exclusion is not None and matcher.exclusion.attribute:
                start_byte = len(text[: m.start()].encode("utf-8"))
                end_byte = start_byte + len(m.group(0).encode("utf-8"))
                node = root.descendant_for_byte_range(start_byte, end_byte)
                if _excluded_by_attribute(matcher.exclusion, node):
                    continue
            line, column, context = _line_context(text, m.start())
            matched = m.group(0)
            found.append(
                PatternMatch(
                    rule_id=matcher.rule_id,
                    file_path=str(path),
                    line_number=line,
                    column_number=column,
                    matched_text=matched,
                    message=render_message(matcher.message, matched, {}),
                    severity=matcher.severity,
                    context=context,
                )
            )
        return found

    def _apply_structural(
        self, matcher: CompiledStructuralMatcher, path: Path | str, root: Node, source: bytes
    ) -> list[PatternMatch]:
        if _excluded_by_path(matcher.exclusion, path):
            return []
        found: list[PatternMatch] = []
        for candidate in matcher.finder(matcher.check, root, source):
            if _excluded_by_attribute(matcher.exclusion, candidate.node):
                continue
            if candidate.node is None:
                line, column, context = 1, 1, None
            else:
                line, column, context = _node_position(candidate.node, source)
            found.append(
                PatternMatch(
                    rule_id=matcher.rule_id,
                    file_path=str(path),
                    line_number=line,
                    column_number=column,
                    matched_text=candidate.matched_text,
                    message=render_message(
                        matcher.message, candidate.matched_text, candidate.values
                    ),
                    severity=matcher.severity,
                    context=context,
                )
            )
        return found


def matches_to_violations(matches: Iterable[PatternMatch]) -> list[Violation]:
    return [m.to_violation() for m in matches]
