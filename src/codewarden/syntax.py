"""Syntax layer: tree-sitter grammar loading and parsing of source files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from tree_sitter import Language, Parser

if TYPE_CHECKING:
    from collections.abc import Callable

    from tree_sitter import Tree

logger = logging.getLogger(__name__)


def _load_rust() -> Language:
    import tree_sitter_rust as tsrust

    return Language(tsrust.language())


# Extension -> loader function mapping.
_EXTENSION_LOADERS: dict[str, Callable[[], Language]] = {
    ".rs": _load_rust,
}

# Cache for loaded grammars (None means "tried and failed / unsupported").
_LANG_CACHE: dict[str, Language | None] = {}


def get_language(extension: str) -> Language | None:
    """Get the grammar for a file extension, or ``None`` if unsupported/unavailable."""
    if extension in _LANG_CACHE:
        return _LANG_CACHE[extension]

    loader = _EXTENSION_LOADERS.get(extension)
    if loader is None:
        _LANG_CACHE[extension] = None
        return None

    try:
        language = loader()
    except ImportError:
        logger.debug("Grammar for %s is not installed", extension)
        _LANG_CACHE[extension] = None
        return None

    _LANG_CACHE[extension] = language
    return language


def parse_source(path: Path | str, text: str) -> Tree | None:
    """Parse *text* with the grammar matching *path*'s extension.

    Returns ``None`` when no grammar is available. A returned tree may still
    contain syntax errors; callers check ``tree.root_node.has_error``.
    """
    language = get_language(Path(path).suffix)
    if language is None:
        return None
    # Parser instances are not shared between threads.
    parser = Parser(language)
    return parser.parse(text.encode("utf-8"))


def is_usable(tree: Tree | None) -> bool:
    """A tree is usable for structural checks when it parsed without errors."""
    return tree is not None and not tree.root_node.has_error
