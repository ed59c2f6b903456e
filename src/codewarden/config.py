"""Rule-set configuration: YAML loading, validation, defaults, fingerprint."""

from __future__ import annotations

import enum
import hashlib
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from codewarden.domain.violations import ConfigError, Severity

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SUPPORTED_VERSIONS: frozenset[str] = frozenset({"1.0"})
CONFIG_FILENAMES: tuple[str, ...] = ("codewarden.yaml", "codewarden.yml", ".codewarden.yaml")
DEFAULT_IGNORE_FILE = ".wardenignore"
DEFAULT_PATH_PATTERNS: tuple[str, ...] = (
    "target/",
    "**/node_modules/",
    "**/.git/",
    "**/*.generated.*",
    ".codewarden/",
)


class RuleKind(enum.Enum):
    TEXT = "text"
    STRUCTURAL = "structural"


# YAML ``type`` value -> matcher family. All structural flavours share one
# descriptor namespace.
RULE_TYPES: dict[str, RuleKind] = {
    "regex": RuleKind.TEXT,
    "ast": RuleKind.STRUCTURAL,
    "semantic": RuleKind.STRUCTURAL,
    "import_analysis": RuleKind.STRUCTURAL,
}

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExclusionPolicy:
    """Conditions under which a match is not reported."""

    attribute: str | None = None
    in_tests: bool = False
    file_patterns: tuple[str, ...] = ()


@dataclass(frozen=True)
class RuleDefinition:
    """One declarative rule as written in the configuration."""

    id: str
    kind: RuleKind
    pattern: str
    message: str
    severity: Severity | None = None
    enabled: bool = True
    case_sensitive: bool = False
    exclude: ExclusionPolicy | None = None
    rule_type: str = "regex"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.rule_type,
            "pattern": self.pattern,
            "message": self.message,
            "severity": self.severity.value if self.severity else None,
            "enabled": self.enabled,
            "case_sensitive": self.case_sensitive,
        }
        if self.exclude is not None:
            data["exclude_if"] = {
                "attribute": self.exclude.attribute,
                "in_tests": self.exclude.in_tests,
                "file_patterns": list(self.exclude.file_patterns),
            }
        return data


@dataclass(frozen=True)
class RuleCategory:
    name: str
    severity: Severity
    enabled: bool = True
    rules: tuple[RuleDefinition, ...] = ()


@dataclass(frozen=True)
class PathConfig:
    patterns: tuple[str, ...] = DEFAULT_PATH_PATTERNS
    ignore_file: str | None = DEFAULT_IGNORE_FILE


@dataclass
class WardenConfig:
    """Top-level configuration."""

    version: str = "1.0"
    paths: PathConfig = field(default_factory=PathConfig)
    categories: dict[str, RuleCategory] = field(default_factory=dict)

    def effective_severity(self, category: RuleCategory, rule: RuleDefinition) -> Severity:
        """Rule override, else the category default."""
        return rule.severity if rule.severity is not None else category.severity

    def enabled_rules(self) -> list[tuple[RuleCategory, RuleDefinition]]:
        return [
            (category, rule)
            for category in self.categories.values()
            if category.enabled
            for rule in category.rules
            if rule.enabled
        ]

    def find_rule(self, rule_id: str) -> tuple[RuleCategory, RuleDefinition] | None:
        """Look up a rule by bare id or ``category.id``."""
        category_name, _, bare = rule_id.rpartition(".")
        for category in self.categories.values():
            if category_name and category.name != category_name:
                continue
            for rule in category.rules:
                if rule.id == bare:
                    return category, rule
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "paths": {
                "patterns": list(self.paths.patterns),
                "ignore_file": self.paths.ignore_file,
            },
            "patterns": {
                name: {
                    "severity": cat.severity.value,
                    "enabled": cat.enabled,
                    "rules": [r.to_dict() for r in cat.rules],
                }
                for name, cat in self.categories.items()
            },
        }

    def fingerprint(self) -> str:
        """Short stable digest of everything that affects analysis results."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]

    def validate(self) -> None:
        """Raise :class:`ConfigError` on inconsistencies."""
        if self.version not in SUPPORTED_VERSIONS:
            msg = (
                f"Unsupported configuration version: {self.version}. "
                f"Supported versions: {', '.join(sorted(SUPPORTED_VERSIONS))}"
            )
            raise ConfigError(msg)
        for category in self.categories.values():
            seen: set[str] = set()
            for rule in category.rules:
                if rule.id in seen:
                    msg = f"Duplicate rule ID '{rule.id}' in category '{category.name}'"
                    raise ConfigError(msg)
                seen.add(rule.id)
                if rule.kind is RuleKind.TEXT:
                    try:
                        re.compile(rule.pattern)
                    except re.error as exc:
                        msg = f"Invalid regex pattern in rule '{rule.id}': {exc}"
                        raise ConfigError(msg) from exc


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _parse_severity(raw: object, where: str) -> Severity:
    try:
        return Severity.parse(str(raw))
    except ValueError as exc:
        msg = f"{where}: {exc}"
        raise ConfigError(msg) from exc


def _parse_exclusion(data: object, where: str) -> ExclusionPolicy | None:
    if data is None:
        return None
    if not isinstance(data, dict):
        msg = f"{where}: 'exclude_if' must be a mapping"
        raise ConfigError(msg)
    attribute = data.get("attribute")
    file_patterns = data.get("file_patterns") or []
    if not isinstance(file_patterns, list):
        msg = f"{where}: 'exclude_if.file_patterns' must be a list"
        raise ConfigError(msg)
    return ExclusionPolicy(
        attribute=str(attribute) if attribute is not None else None,
        in_tests=bool(data.get("in_tests", False)),
        file_patterns=tuple(str(p) for p in file_patterns),
    )


def _parse_rule(data: object, category: str, idx: int) -> RuleDefinition:
    where = f"category '{category}' rule #{idx}"
    if not isinstance(data, dict):
        msg = f"{where}: must be a mapping"
        raise ConfigError(msg)
    for key in ("id", "type", "pattern", "message"):
        if key not in data:
            msg = f"{where}: missing required '{key}' field"
            raise ConfigError(msg)

    rule_id = str(data["id"])
    where = f"rule '{category}.{rule_id}'"
    rule_type = str(data["type"])
    kind = RULE_TYPES.get(rule_type)
    if kind is None:
        msg = f"{where}: unknown type '{rule_type}', must be one of {sorted(RULE_TYPES)}"
        raise ConfigError(msg)

    severity_raw = data.get("severity")
    return RuleDefinition(
        id=rule_id,
        kind=kind,
        pattern=str(data["pattern"]),
        message=str(data["message"]),
        severity=_parse_severity(severity_raw, where) if severity_raw is not None else None,
        enabled=bool(data.get("enabled", True)),
        case_sensitive=bool(data.get("case_sensitive", False)),
        exclude=_parse_exclusion(data.get("exclude_if"), where),
        rule_type=rule_type,
    )


def _parse_category(name: str, data: object) -> RuleCategory:
    if not isinstance(data, dict):
        msg = f"category '{name}' must be a mapping"
        raise ConfigError(msg)
    if "severity" not in data:
        msg = f"category '{name}': missing required 'severity' field"
        raise ConfigError(msg)
    rules_data = data.get("rules", [])
    if not isinstance(rules_data, list):
        msg = f"category '{name}': 'rules' must be a list"
        raise ConfigError(msg)
    return RuleCategory(
        name=name,
        severity=_parse_severity(data["severity"], f"category '{name}'"),
        enabled=bool(data.get("enabled", True)),
        rules=tuple(_parse_rule(r, name, i) for i, r in enumerate(rules_data)),
    )


def parse_config(data: object) -> WardenConfig:
    """Build and validate a :class:`WardenConfig` from parsed YAML."""
    if not isinstance(data, dict):
        msg = "configuration must be a YAML mapping"
        raise ConfigError(msg)

    version = data.get("version")
    if version is None:
        msg = "configuration: missing required 'version' field"
        raise ConfigError(msg)

    paths_data = data.get("paths") or {}
    if not isinstance(paths_data, dict):
        msg = "configuration: 'paths' must be a mapping"
        raise ConfigError(msg)
    patterns = paths_data.get("patterns", list(DEFAULT_PATH_PATTERNS))
    if not isinstance(patterns, list):
        msg = "configuration: 'paths.patterns' must be a list"
        raise ConfigError(msg)
    ignore_file = paths_data.get("ignore_file", DEFAULT_IGNORE_FILE)

    categories_data = data.get("patterns") or {}
    if not isinstance(categories_data, dict):
        msg = "configuration: 'patterns' must be a mapping of categories"
        raise ConfigError(msg)

    config = WardenConfig(
        version=str(version),
        paths=PathConfig(
            patterns=tuple(str(p) for p in patterns),
            ignore_file=str(ignore_file) if ignore_file else None,
        ),
        categories={
            str(name): _parse_category(str(name), cat)
            for name, cat in categories_data.items()
        },
    )
    config.validate()
    return config


def load_config_str(text: str) -> WardenConfig:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        msg = f"Failed to parse config: {exc}"
        raise ConfigError(msg) from exc
    return parse_config(data)


def load_config(path: Path) -> WardenConfig:
    """Load and validate a YAML configuration file."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Failed to read config file '{path}': {exc}"
        raise ConfigError(msg) from exc
    try:
        return load_config_str(text)
    except ConfigError as exc:
        msg = f"{path}: {exc}"
        raise ConfigError(msg) from exc


def find_config(cwd: Path) -> Path | None:
    """Return the first known configuration file name present in *cwd*."""
    for name in CONFIG_FILENAMES:
        candidate = Path(cwd) / name
        if candidate.is_file():
            return candidate
    return None


# ---------------------------------------------------------------------------
# Built-in rule set
# ---------------------------------------------------------------------------

DEVELOPMENT_MARKER_PATTERN = r"\b(TODO|FIXME|HACK|XXX|BUG|REFACTOR)\b"
TEMPORARY_MARKER_PATTERN = r"(?i)\b(for now|temporary|placeholder|stub|dummy|fake)\b"
UNFINISHED_MACRO_PATTERN = "macro_call:unimplemented|todo|panic"


def default_config() -> WardenConfig:
    """The built-in rule set used when no configuration file exists."""
    test_attribute = ExclusionPolicy(attribute="#[test]", in_tests=True)
    placeholders = RuleCategory(
        name="placeholders",
        severity=Severity.ERROR,
        rules=(
            RuleDefinition(
                id="todo_comments",
                kind=RuleKind.TEXT,
                pattern=DEVELOPMENT_MARKER_PATTERN,
                message="Development marker detected: {match}",
            ),
            RuleDefinition(
                id="temporary_markers",
                kind=RuleKind.TEXT,
                pattern=TEMPORARY_MARKER_PATTERN,
                message="Implementation marker found: {match}",
                exclude=ExclusionPolicy(in_tests=True, file_patterns=("**/tests/**",)),
            ),
            RuleDefinition(
                id="unimplemented_macros",
                kind=RuleKind.STRUCTURAL,
                pattern=UNFINISHED_MACRO_PATTERN,
                message="Unfinished macro {macro_name}! found",
                case_sensitive=True,
                exclude=test_attribute,
                rule_type="ast",
            ),
        ),
    )
    incomplete = RuleCategory(
        name="incomplete_implementations",
        severity=Severity.ERROR,
        rules=(
            RuleDefinition(
                id="empty_ok_return",
                kind=RuleKind.STRUCTURAL,
                pattern="return_ok_unit_with_no_logic",
                message="Function returns Ok(()) with no implementation",
                case_sensitive=True,
                exclude=test_attribute,
                rule_type="ast",
            ),
        ),
    )
    architectural = RuleCategory(
        name="architectural_violations",
        severity=Severity.WARNING,
        rules=(
            RuleDefinition(
                id="hardcoded_paths",
                kind=RuleKind.TEXT,
                pattern=r"[\"'](\./|/|\.\./)?(\.rust/)[^\"']*[\"']",
                message="Hardcoded path found - use configuration instead",
                case_sensitive=True,
                exclude=ExclusionPolicy(
                    in_tests=True, file_patterns=("**/tests/**", "**/examples/**")
                ),
            ),
            RuleDefinition(
                id="architectural_header_missing",
                kind=RuleKind.TEXT,
                pattern=r"//!\s*(?:.*\n)*?\s*//!\s*Architecture:",
                message="File missing architectural principle header",
                severity=Severity.INFO,
                enabled=False,
                exclude=ExclusionPolicy(
                    in_tests=True,
                    file_patterns=("**/tests/**", "**/benches/**", "**/examples/**"),
                ),
            ),
        ),
    )
    return WardenConfig(
        categories={
            c.name: c for c in (placeholders, incomplete, architectural)
        },
    )
