"""Structural check variants and the descriptor mini-language that selects them.

A structural rule's ``pattern`` is a descriptor such as ``macro_call:todo|panic``
or ``function_lines_gt:80``. Descriptors are parsed once, when rules are
compiled; evaluation only ever sees the resulting frozen check objects.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

# ---------------------------------------------------------------------------
# Check variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MacroCall:
    """Invocation of any of the named macros (``todo!``, ``unimplemented!``...)."""

    names: tuple[str, ...]


@dataclass(frozen=True)
class TrivialSuccessBody:
    """A ``Result``-returning function whose body is only ``Ok(())``."""


@dataclass(frozen=True)
class MissingHeader:
    """File does not contain ``marker`` anywhere."""

    marker: str


@dataclass(frozen=True)
class EmptyFunctionBody:
    pass


@dataclass(frozen=True)
class UnwrapWithoutMessage:
    pass


@dataclass(frozen=True)
class ImportLayering:
    """A ``use`` declaration matching ``regex`` crosses a forbidden layer."""

    regex: re.Pattern[str]


@dataclass(frozen=True)
class CyclomaticComplexity:
    threshold: int


@dataclass(frozen=True)
class PublicWithoutDocs:
    pass


@dataclass(frozen=True)
class FunctionLines:
    threshold: int


@dataclass(frozen=True)
class NestingDepth:
    threshold: int


@dataclass(frozen=True)
class FunctionArgs:
    threshold: int


@dataclass(frozen=True)
class BlockingCallInAsync:
    pass


@dataclass(frozen=True)
class FutureNotAwaited:
    pass


@dataclass(frozen=True)
class SelectWithoutBiased:
    pass


@dataclass(frozen=True)
class GenericWithoutBounds:
    pass


@dataclass(frozen=True)
class TestWithoutAssertion:
    pass


@dataclass(frozen=True)
class ImplWithoutTrait:
    pass


@dataclass(frozen=True)
class UnsafeCode:
    pass


@dataclass(frozen=True)
class IgnoredTest:
    pass


StructuralCheck = (
    MacroCall
    | TrivialSuccessBody
    | MissingHeader
    | EmptyFunctionBody
    | UnwrapWithoutMessage
    | ImportLayering
    | CyclomaticComplexity
    | PublicWithoutDocs
    | FunctionLines
    | NestingDepth
    | FunctionArgs
    | BlockingCallInAsync
    | FutureNotAwaited
    | SelectWithoutBiased
    | GenericWithoutBounds
    | TestWithoutAssertion
    | ImplWithoutTrait
    | UnsafeCode
    | IgnoredTest
)

# ---------------------------------------------------------------------------
# Descriptor parsing
# ---------------------------------------------------------------------------

HEADER_MARKER = "Architectural Principle:"

_SIMPLE_DESCRIPTORS: dict[str, StructuralCheck] = {
    "return_ok_unit_with_no_logic": TrivialSuccessBody(),
    "empty_function_body": EmptyFunctionBody(),
    "unwrap_or_expect_without_message": UnwrapWithoutMessage(),
    "unsafe_block": UnsafeCode(),
    "ignored_test_attribute": IgnoredTest(),
    "public_without_docs": PublicWithoutDocs(),
    "blocking_call_in_async": BlockingCallInAsync(),
    "future_not_awaited": FutureNotAwaited(),
    "select_without_biased": SelectWithoutBiased(),
    "generic_without_bounds": GenericWithoutBounds(),
    "test_fn_without_assertion": TestWithoutAssertion(),
    "impl_without_trait": ImplWithoutTrait(),
}

_THRESHOLD_DESCRIPTORS: dict[str, Callable[[int], StructuralCheck]] = {
    "cyclomatic_complexity_gt:": CyclomaticComplexity,
    "function_lines_gt:": FunctionLines,
    "nesting_depth_gt:": NestingDepth,
    "function_args_gt:": FunctionArgs,
}


def _import_regex(descriptor: str) -> str | None:
    """Map the import-layering naming conventions to a regex source."""
    if descriptor.startswith("use"):
        return descriptor
    if descriptor.startswith("import:"):
        return descriptor[len("import:") :]
    if "_access" in descriptor:
        target = descriptor.replace("direct_", "").replace("_access", "")
        return rf"use\s+.*{target}"
    return None


def parse_descriptor(descriptor: str) -> StructuralCheck:
    """Parse a structural descriptor.

    Raises ``ValueError`` for unknown descriptors, non-integer or negative
    thresholds, empty macro lists, and invalid import regexes.
    """
    descriptor = descriptor.strip()

    if descriptor.startswith("macro_call:"):
        names = tuple(
            n.strip() for n in descriptor[len("macro_call:") :].split("|") if n.strip()
        )
        if not names:
            msg = "macro_call descriptor lists no macro names"
            raise ValueError(msg)
        return MacroCall(names)

    if descriptor.startswith("missing_header:"):
        marker = descriptor[len("missing_header:") :].strip()
        if not marker:
            msg = "missing_header descriptor has an empty marker"
            raise ValueError(msg)
        return MissingHeader(marker)
    if HEADER_MARKER in descriptor:
        return MissingHeader(HEADER_MARKER)

    simple = _SIMPLE_DESCRIPTORS.get(descriptor)
    if simple is not None:
        return simple

    for prefix, check_cls in _THRESHOLD_DESCRIPTORS.items():
        if descriptor.startswith(prefix):
            raw = descriptor[len(prefix) :].strip()
            if not raw.isdigit():
                msg = f"invalid threshold '{raw}' in '{descriptor}'"
                raise ValueError(msg)
            return check_cls(int(raw))

    source = _import_regex(descriptor)
    if source is not None:
        try:
            return ImportLayering(re.compile(source))
        except re.error as exc:
            msg = f"invalid import pattern '{descriptor}': {exc}"
            raise ValueError(msg) from exc

    msg = f"unknown structural pattern '{descriptor}'"
    raise ValueError(msg)
