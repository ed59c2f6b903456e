"""Structural finders: folds over a tree-sitter Rust syntax tree.

Every finder has the signature ``(check, root, source) -> list[Candidate]``
and builds its own result list; nothing is shared between finders or calls,
so one compiled engine can evaluate many files concurrently.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from codewarden.patterns.checks import (
    BlockingCallInAsync,
    CyclomaticComplexity,
    EmptyFunctionBody,
    FunctionArgs,
    FunctionLines,
    FutureNotAwaited,
    GenericWithoutBounds,
    IgnoredTest,
    ImplWithoutTrait,
    ImportLayering,
    MacroCall,
    MissingHeader,
    NestingDepth,
    PublicWithoutDocs,
    SelectWithoutBiased,
    StructuralCheck,
    TestWithoutAssertion,
    TrivialSuccessBody,
    UnsafeCode,
    UnwrapWithoutMessage,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from tree_sitter import Node

COMMENT_TYPES: frozenset[str] = frozenset({"line_comment", "block_comment"})
BLOCKING_METHODS: frozenset[str] = frozenset(
    {"read_to_string", "write_all", "flush", "recv", "send", "lock", "read", "write"}
)
FUTURE_FUNCTIONS: frozenset[str] = frozenset({"spawn", "spawn_blocking", "timeout", "sleep"})
BRANCH_TYPES: frozenset[str] = frozenset(
    {"if_expression", "while_expression", "for_expression", "loop_expression", "try_expression"}
)
NESTING_TYPES: dict[str, str] = {
    "block": "nested block",
    "if_expression": "if statement",
    "match_expression": "match statement",
}
PUBLIC_ITEM_TYPES: dict[str, str] = {
    "function_item": "fn",
    "struct_item": "struct",
    "enum_item": "enum",
    "trait_item": "trait",
}
PARAMETER_TYPES: frozenset[str] = frozenset({"parameter", "self_parameter", "variadic_parameter"})

_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class Candidate:
    """A structural hit before exclusion and message rendering.

    ``node`` is ``None`` for file-level findings, which are reported at 1:1.
    """

    node: Node | None
    matched_text: str
    values: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Tree helpers
# ---------------------------------------------------------------------------


def iter_nodes(root: Node) -> Iterator[Node]:
    """Pre-order traversal without recursion."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def node_text(node: Node | None) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def _normalize(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def _last_segment(node: Node | None) -> str | None:
    """Final identifier of a path-like node (``a::b::c`` -> ``c``)."""
    if node is None:
        return None
    if node.type in ("generic_type", "generic_function"):
        inner = node.child_by_field_name("type") or node.child_by_field_name("function")
        return _last_segment(inner)
    if node.type in ("scoped_identifier", "scoped_type_identifier"):
        return _last_segment(node.child_by_field_name("name"))
    if node.type in ("identifier", "type_identifier", "field_identifier"):
        return node_text(node)
    return None


def function_name(fn_node: Node) -> str:
    return node_text(fn_node.child_by_field_name("name"))


def callee_name(call: Node) -> str | None:
    """Name of a plain function call (``foo()``, ``a::foo()``), else ``None``."""
    func = call.child_by_field_name("function")
    if func is None or func.type == "field_expression":
        return None
    return _last_segment(func)


def method_call(call: Node) -> tuple[str, Node] | None:
    """``(method name, name node)`` for ``recv.method(...)`` calls."""
    func = call.child_by_field_name("function")
    if func is None or func.type != "field_expression":
        return None
    name_node = func.child_by_field_name("field")
    if name_node is None or name_node.type != "field_identifier":
        return None
    return node_text(name_node), name_node


def call_arguments(call: Node) -> list[Node]:
    args = call.child_by_field_name("arguments")
    if args is None:
        return []
    return [c for c in args.named_children if c.type not in COMMENT_TYPES]


def iter_macros(root: Node) -> Iterator[tuple[Node, str, Node | None]]:
    """Yield ``(node, macro name, token tree)`` for every macro invocation.

    Macros nested inside another macro's arguments are only tokens in the
    tree; they are recovered from the ``ident ! (...)`` token sequence.
    """
    for node in iter_nodes(root):
        if node.type == "macro_invocation":
            name_node = node.child_by_field_name("macro")
            if name_node is None and node.named_children:
                name_node = node.named_children[0]
            name = _last_segment(name_node) or node_text(name_node)
            tree = next((c for c in node.children if c.type == "token_tree"), None)
            yield node, name, tree
        elif node.type == "token_tree":
            children = node.children
            for i in range(len(children) - 2):
                ident, bang, args = children[i], children[i + 1], children[i + 2]
                if ident.type == "identifier" and bang.type == "!" and args.type == "token_tree":
                    yield ident, node_text(ident), args


def _body_statements(body: Node) -> list[Node]:
    return [c for c in body.named_children if c.type not in COMMENT_TYPES]


def _preceding_decorations(node: Node) -> Iterator[Node]:
    """Attribute and comment siblings directly above *node*."""
    sibling = node.prev_sibling
    while sibling is not None and (
        sibling.type == "attribute_item" or sibling.type in COMMENT_TYPES
    ):
        yield sibling
        sibling = sibling.prev_sibling


def attributes_of(node: Node) -> list[str]:
    """Whitespace-free attribute bodies above *node* (``#[cfg(test)]`` -> ``cfg(test)``)."""
    attrs: list[str] = []
    for sibling in _preceding_decorations(node):
        if sibling.type != "attribute_item":
            continue
        inner = next((c for c in sibling.named_children if c.type == "attribute"), None)
        attrs.append(_WS_RE.sub("", node_text(inner)))
    return attrs


def normalize_attribute(marker: str) -> str:
    """``#[test]`` / ``test`` -> ``test``."""
    text = _WS_RE.sub("", marker)
    if text.startswith("#[") and text.endswith("]"):
        text = text[2:-1]
    return text


def attribute_matches(attr: str, marker: str) -> bool:
    """Whether an attribute body satisfies *marker* (already normalized).

    ``tokio::test`` satisfies ``test``; so does ``cfg(test)``, which marks a
    test-only module.
    """
    if attr == marker or attr.endswith(f"::{marker}"):
        return True
    return marker == "test" and attr == "cfg(test)"


def is_test_function(fn_node: Node) -> bool:
    return any(attribute_matches(a, "test") and a != "cfg(test)" for a in attributes_of(fn_node))


def is_ignored(fn_node: Node) -> bool:
    return any(a == "ignore" or a.startswith(("ignore=", "ignore(")) for a in attributes_of(fn_node))


def has_modifier(fn_node: Node, keyword: str) -> bool:
    for child in fn_node.children:
        if child.type == "function_modifiers":
            return any(m.type == keyword for m in child.children)
    return False


def carries_attribute(node: Node, marker: str) -> bool:
    """Whether *node* or any enclosing item is annotated with *marker*."""
    wanted = normalize_attribute(marker)
    current: Node | None = node
    while current is not None:
        if any(attribute_matches(a, wanted) for a in attributes_of(current)):
            return True
        current = current.parent
    return False


def _functions(root: Node) -> Iterator[Node]:
    return (n for n in iter_nodes(root) if n.type == "function_item")


# ---------------------------------------------------------------------------
# Finders
# ---------------------------------------------------------------------------


def find_macro_calls(check: MacroCall, root: Node, source: bytes) -> list[Candidate]:
    wanted = set(check.names)
    return [
        Candidate(node, f"{name}!()", {"macro_name": name})
        for node, name, _ in iter_macros(root)
        if name in wanted
    ]


def _is_ok_unit(expr: Node) -> bool:
    if expr.type != "call_expression" or callee_name(expr) != "Ok":
        return False
    args = call_arguments(expr)
    return len(args) == 1 and args[0].type == "unit_expression"


def find_trivial_success(check: TrivialSuccessBody, root: Node, source: bytes) -> list[Candidate]:
    found: list[Candidate] = []
    for fn in _functions(root):
        if _last_segment(fn.child_by_field_name("return_type")) != "Result":
            continue
        body = fn.child_by_field_name("body")
        if body is None:
            continue
        statements = _body_statements(body)
        # Only a lone tail expression counts; any preceding statement is logic.
        if len(statements) == 1 and _is_ok_unit(statements[0]):
            found.append(
                Candidate(statements[0], "Ok(())", {"function_name": function_name(fn)})
            )
    return found


def find_missing_header(check: MissingHeader, root: Node, source: bytes) -> list[Candidate]:
    if check.marker.encode("utf-8") in source:
        return []
    return [Candidate(None, "", {"marker": check.marker})]


def find_empty_bodies(check: EmptyFunctionBody, root: Node, source: bytes) -> list[Candidate]:
    found: list[Candidate] = []
    for fn in _functions(root):
        body = fn.child_by_field_name("body")
        if body is None:
            continue
        statements = _body_statements(body)
        if not statements or (len(statements) == 1 and statements[0].type == "unit_expression"):
            name = function_name(fn)
            found.append(Candidate(fn, f"fn {name}", {"function_name": name}))
    return found


def _weak_expect_message(args: list[Node]) -> bool:
    if not args:
        return True
    if args[0].type != "string_literal":
        return False
    message = "".join(
        node_text(c) for c in args[0].named_children if c.type == "string_content"
    )
    return len(message) < 5 or ("error" in message.lower() and len(message) < 10)


def find_unwraps(check: UnwrapWithoutMessage, root: Node, source: bytes) -> list[Candidate]:
    found: list[Candidate] = []
    for node in iter_nodes(root):
        if node.type != "call_expression":
            continue
        method = method_call(node)
        if method is None:
            continue
        name, name_node = method
        if name == "unwrap" or (name == "expect" and _weak_expect_message(call_arguments(node))):
            found.append(Candidate(name_node, f".{name}()", {"method": name}))
    return found


def find_import_layering(check: ImportLayering, root: Node, source: bytes) -> list[Candidate]:
    found: list[Candidate] = []
    for node in iter_nodes(root):
        if node.type == "use_declaration":
            text = _normalize(node_text(node))
            if check.regex.search(text):
                found.append(Candidate(node, text, {"import": text}))
    return found


def cyclomatic_complexity(fn_node: Node) -> int:
    body = fn_node.child_by_field_name("body")
    if body is None:
        return 1
    complexity = 1
    stack = list(body.children)
    while stack:
        node = stack.pop()
        if node.type == "function_item":
            continue
        if node.type in BRANCH_TYPES:
            complexity += 1
        elif node.type == "match_arm":
            complexity += 1
        stack.extend(node.children)
    return complexity


def find_complex_functions(
    check: CyclomaticComplexity, root: Node, source: bytes
) -> list[Candidate]:
    found: list[Candidate] = []
    for fn in _functions(root):
        value = cyclomatic_complexity(fn)
        if value > check.threshold:
            name = function_name(fn)
            found.append(
                Candidate(fn, f"fn {name}", {"value": str(value), "function_name": name})
            )
    return found


def _has_docs(item: Node) -> bool:
    for sibling in _preceding_decorations(item):
        text = node_text(sibling)
        if sibling.type in COMMENT_TYPES and text.startswith(("///", "/**")):
            return True
        if sibling.type == "attribute_item" and _WS_RE.sub("", text).startswith("#[doc"):
            return True
    return False


def _is_plain_pub(item: Node) -> bool:
    return any(
        c.type == "visibility_modifier" and node_text(c) == "pub" for c in item.children
    )


def find_undocumented_public(
    check: PublicWithoutDocs, root: Node, source: bytes
) -> list[Candidate]:
    found: list[Candidate] = []
    for node in iter_nodes(root):
        keyword = PUBLIC_ITEM_TYPES.get(node.type)
        if keyword is None or not _is_plain_pub(node) or _has_docs(node):
            continue
        name = node_text(node.child_by_field_name("name"))
        found.append(Candidate(node, f"{keyword} {name}", {"item_name": name}))
    return found


def count_body_lines(body: Node) -> int:
    """Non-blank, non-``//`` lines between the body's braces."""
    inner = node_text(body)[1:-1]
    return sum(
        1
        for line in inner.splitlines()
        if line.strip() and not line.strip().startswith("//")
    )


def find_long_functions(check: FunctionLines, root: Node, source: bytes) -> list[Candidate]:
    found: list[Candidate] = []
    for fn in _functions(root):
        body = fn.child_by_field_name("body")
        if body is None:
            continue
        lines = count_body_lines(body)
        if lines > check.threshold:
            name = function_name(fn)
            found.append(
                Candidate(fn, f"fn {name}", {"lines": str(lines), "function_name": name})
            )
    return found


def find_deep_nesting(check: NestingDepth, root: Node, source: bytes) -> list[Candidate]:
    found: list[Candidate] = []
    stack: list[tuple[Node, int]] = [(root, 0)]
    while stack:
        node, depth = stack.pop()
        label = NESTING_TYPES.get(node.type)
        if label is not None:
            depth += 1
            if depth > check.threshold:
                found.append(Candidate(node, label, {"depth": str(depth)}))
        stack.extend((child, depth) for child in reversed(node.children))
    return found


def find_many_args(check: FunctionArgs, root: Node, source: bytes) -> list[Candidate]:
    found: list[Candidate] = []
    for fn in _functions(root):
        params = fn.child_by_field_name("parameters")
        count = sum(1 for p in params.named_children if p.type in PARAMETER_TYPES) if params else 0
        if count > check.threshold:
            name = function_name(fn)
            found.append(
                Candidate(fn, f"fn {name}", {"count": str(count), "function_name": name})
            )
    return found


def _is_awaited(node: Node) -> bool:
    parent = node.parent
    return parent is not None and parent.type == "await_expression"


def find_blocking_in_async(
    check: BlockingCallInAsync, root: Node, source: bytes
) -> list[Candidate]:
    found: list[Candidate] = []
    stack: list[tuple[Node, bool]] = [(root, False)]
    while stack:
        node, in_async = stack.pop()
        if node.type == "function_item":
            # A nested fn has its own asyncness.
            in_async = has_modifier(node, "async")
        elif in_async and node.type == "call_expression" and not _is_awaited(node):
            method = method_call(node)
            if method is not None and method[0] in BLOCKING_METHODS:
                name, name_node = method
                found.append(Candidate(name_node, f".{name}()", {"method": name}))
            elif callee_name(node) == "sleep":
                found.append(Candidate(node, "sleep()", {"method": "sleep"}))
        stack.extend((child, in_async) for child in reversed(node.children))
    return found


def find_unawaited_futures(
    check: FutureNotAwaited, root: Node, source: bytes
) -> list[Candidate]:
    found: list[Candidate] = []
    for node in iter_nodes(root):
        if node.type != "call_expression" or _is_awaited(node):
            continue
        name = callee_name(node)
        if name and (name.endswith("_async") or name in FUTURE_FUNCTIONS):
            found.append(Candidate(node, f"{name}()", {"function_name": name}))
    return found


def find_unbiased_select(
    check: SelectWithoutBiased, root: Node, source: bytes
) -> list[Candidate]:
    return [
        Candidate(node, "tokio::select!", {})
        for node, name, tree in iter_macros(root)
        if name == "select" and "biased" not in node_text(tree)
    ]


def _where_bounded(item: Node) -> set[str]:
    bounded: set[str] = set()
    for child in item.children:
        if child.type != "where_clause":
            continue
        for predicate in child.named_children:
            if predicate.type == "where_predicate":
                bounded.add(node_text(predicate.child_by_field_name("left")))
    return bounded


def _unbounded_parameters(params: Node) -> Iterator[tuple[Node, str]]:
    for param in params.named_children:
        target = param
        if param.type == "optional_type_parameter":
            target = param.child_by_field_name("name") or param
        if target.type == "type_identifier":
            yield target, node_text(target)
        elif target.type == "type_parameter" and target.child_by_field_name("bounds") is None:
            yield target, node_text(target.child_by_field_name("name"))


def find_unbounded_generics(
    check: GenericWithoutBounds, root: Node, source: bytes
) -> list[Candidate]:
    found: list[Candidate] = []
    for node in iter_nodes(root):
        if node.type not in ("function_item", "struct_item"):
            continue
        params = node.child_by_field_name("type_parameters")
        if params is None:
            continue
        bounded = _where_bounded(node)
        for param, name in _unbounded_parameters(params):
            if name not in bounded:
                found.append(Candidate(param, name, {"generic": name}))
    return found


def _asserts(body: Node) -> bool:
    for _, name, _ in iter_macros(body):
        if name.startswith("assert") or name == "panic":
            return True
    for node in iter_nodes(body):
        if node.type == "call_expression":
            name = callee_name(node) or ""
            if name.startswith("assert") or name == "panic":
                return True
    return False


def find_tests_without_assertions(
    check: TestWithoutAssertion, root: Node, source: bytes
) -> list[Candidate]:
    found: list[Candidate] = []
    for fn in _functions(root):
        body = fn.child_by_field_name("body")
        if body is None or not is_test_function(fn) or _asserts(body):
            continue
        name = function_name(fn)
        found.append(Candidate(fn, f"fn {name}", {"function_name": name}))
    return found


def find_inherent_impls(check: ImplWithoutTrait, root: Node, source: bytes) -> list[Candidate]:
    found: list[Candidate] = []
    for node in iter_nodes(root):
        if node.type == "impl_item" and node.child_by_field_name("trait") is None:
            name = _last_segment(node.child_by_field_name("type")) or "Unknown"
            found.append(Candidate(node, f"impl {name}", {"type_name": name}))
    return found


def find_unsafe(check: UnsafeCode, root: Node, source: bytes) -> list[Candidate]:
    found: list[Candidate] = []
    for node in iter_nodes(root):
        if node.type == "unsafe_block":
            found.append(Candidate(node, "unsafe", {}))
        elif node.type == "function_item" and has_modifier(node, "unsafe"):
            name = function_name(node)
            found.append(Candidate(node, f"unsafe fn {name}", {"function_name": name}))
    return found


def find_ignored_tests(check: IgnoredTest, root: Node, source: bytes) -> list[Candidate]:
    found: list[Candidate] = []
    for fn in _functions(root):
        if is_test_function(fn) and is_ignored(fn):
            name = function_name(fn)
            found.append(Candidate(fn, f"#[ignore] fn {name}", {"function_name": name}))
    return found


FINDERS: dict[type, Callable[..., list[Candidate]]] = {
    MacroCall: find_macro_calls,
    TrivialSuccessBody: find_trivial_success,
    MissingHeader: find_missing_header,
    EmptyFunctionBody: find_empty_bodies,
    UnwrapWithoutMessage: find_unwraps,
    ImportLayering: find_import_layering,
    CyclomaticComplexity: find_complex_functions,
    PublicWithoutDocs: find_undocumented_public,
    FunctionLines: find_long_functions,
    NestingDepth: find_deep_nesting,
    FunctionArgs: find_many_args,
    BlockingCallInAsync: find_blocking_in_async,
    FutureNotAwaited: find_unawaited_futures,
    SelectWithoutBiased: find_unbiased_select,
    GenericWithoutBounds: find_unbounded_generics,
    TestWithoutAssertion: find_tests_without_assertions,
    ImplWithoutTrait: find_inherent_impls,
    UnsafeCode: find_unsafe,
    IgnoredTest: find_ignored_tests,
}


def finder_for(check: StructuralCheck) -> Callable[..., list[Candidate]]:
    """Finder bound to *check*'s variant; every variant has exactly one."""
    return FINDERS[type(check)]
