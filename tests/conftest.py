"""Shared test fixtures for codewarden."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from codewarden import syntax

if TYPE_CHECKING:
    from pathlib import Path

    from tree_sitter import Node


@pytest.fixture()
def rust_project(tmp_path: Path) -> Path:
    """A small crate: one clean module, one with a marker, plus a build dir."""
    project = tmp_path / "crate"
    src = project / "src"
    src.mkdir(parents=True)
    (src / "lib.rs").write_text(
        "pub mod engine;\n\nfn helper() -> u32 {\n    41 + 1\n}\n"
    )
    (src / "engine.rs").write_text(
        "// TODO: wire the scheduler\nfn run() -> u32 {\n    7\n}\n"
    )
    target = project / "target" / "debug"
    target.mkdir(parents=True)
    (target / "build.rs").write_text("// TODO: generated\n")
    return project


@pytest.fixture()
def parse_rust():
    """Parse Rust source text and return ``(root node, source bytes)``."""

    def _parse(text: str) -> tuple[Node, bytes]:
        tree = syntax.parse_source("sample.rs", text)
        assert tree is not None
        assert not tree.root_node.has_error
        return tree.root_node, text.encode("utf-8")

    return _parse
