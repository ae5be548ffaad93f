"""Free-identifier analysis and call collection over tree-sitter function nodes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from tree_sitter import Node

from .js_parser import SourceText, is_function

# Global names every module can reach without an import.
BUILTINS = frozenset(
    {
        "Math", "Date", "JSON", "console", "Object", "Array", "Number", "String",
        "Boolean", "Promise", "Set", "Map", "WeakMap", "WeakSet", "Symbol", "Reflect",
        "BigInt", "RegExp", "Error", "TypeError", "RangeError", "SyntaxError",
        "ReferenceError", "Intl", "URL", "URLSearchParams", "TextEncoder",
        "TextDecoder", "AbortController", "fetch", "Headers", "Request", "Response",
        "Buffer", "require", "module", "exports", "process", "__dirname",
        "__filename", "global", "globalThis", "window", "document", "navigator",
        "undefined", "NaN", "Infinity", "arguments", "parseInt", "parseFloat",
        "isNaN", "isFinite", "encodeURIComponent", "decodeURIComponent",
        "encodeURI", "decodeURI", "setTimeout", "clearTimeout", "setInterval",
        "clearInterval", "setImmediate", "queueMicrotask", "structuredClone",
        "ArrayBuffer", "DataView", "Uint8Array", "Int32Array", "Float64Array",
        "Proxy", "eval",
    }
)

_REFERENCE_KINDS = ("identifier", "shorthand_property_identifier")
_DECLARATION_KINDS = ("variable_declarator",)


def binding_names(pattern: Optional[Node], source: SourceText) -> List[str]:
    """Names bound by a declarator or parameter pattern.

    Handles plain identifiers, defaults, rest elements, and object/array
    destructuring.  Default-value expressions bind nothing.
    """
    if pattern is None:
        return []
    kind = pattern.type
    if kind in ("identifier", "shorthand_property_identifier_pattern"):
        return [source.node_text(pattern)]
    if kind == "assignment_pattern":
        return binding_names(pattern.child_by_field_name("left"), source)
    if kind == "object_assignment_pattern":
        return binding_names(pattern.child_by_field_name("left"), source)
    if kind == "pair_pattern":
        return binding_names(pattern.child_by_field_name("value"), source)
    if kind in ("rest_pattern", "object_pattern", "array_pattern", "formal_parameters"):
        names: List[str] = []
        for child in pattern.named_children:
            names.extend(binding_names(child, source))
        return names
    return []


def parameter_names(func: Node, source: SourceText) -> List[str]:
    params = func.child_by_field_name("parameters")
    if params is not None:
        return binding_names(params, source)
    # `x => x + 1` has a single bare parameter.
    single = func.child_by_field_name("parameter")
    return binding_names(single, source)


@dataclass
class ScopeInfo:
    """Identifiers seen inside one function, outside nested function bodies."""

    used: Set[str] = field(default_factory=set)
    params: Set[str] = field(default_factory=set)
    locals: Set[str] = field(default_factory=set)

    @property
    def declared(self) -> Set[str]:
        return self.params | self.locals

    def free(self, exempt: Iterable[str] = ()) -> Set[str]:
        """Used names that are not declared, builtin, or in *exempt*."""
        result = self.used - self.declared - BUILTINS
        return result.difference(exempt)


def _nested_function_name(node: Node, source: SourceText) -> Optional[str]:
    if node.type in ("function_declaration", "generator_function_declaration"):
        name = node.child_by_field_name("name")
        if name is not None:
            return source.node_text(name)
    return None


def collect_scope(func: Node, source: SourceText) -> ScopeInfo:
    """Collect used and declared identifiers of *func*.

    Nested function and arrow bodies are not entered: inner closures do not
    contribute their own identifiers, though a nested function declaration's
    name is declared in this scope.
    """
    info = ScopeInfo(params=set(parameter_names(func, source)))
    roots = [c for c in (func.child_by_field_name("parameters"), func.child_by_field_name("body")) if c]
    stack = list(reversed(roots))
    while stack:
        node = stack.pop()
        if is_function(node):
            nested = _nested_function_name(node, source)
            if nested:
                info.locals.add(nested)
            continue
        kind = node.type
        if kind in _REFERENCE_KINDS:
            info.used.add(source.node_text(node))
        elif kind in _DECLARATION_KINDS:
            info.locals.update(binding_names(node.child_by_field_name("name"), source))
        elif kind == "catch_clause":
            info.locals.update(binding_names(node.child_by_field_name("parameter"), source))
        elif kind == "class_declaration":
            name = node.child_by_field_name("name")
            if name is not None:
                info.locals.add(source.node_text(name))
        stack.extend(reversed(node.children))
    info.locals -= info.params
    return info


def callee_name(call: Node, source: SourceText) -> Optional[str]:
    """``foo()`` → foo; ``a.b.foo()`` → foo; computed member calls → None."""
    target = call.child_by_field_name("function")
    if target is None:
        return None
    if target.type == "identifier":
        return source.node_text(target)
    if target.type == "member_expression":
        prop = target.child_by_field_name("property")
        if prop is not None and prop.type in ("property_identifier", "private_property_identifier"):
            return source.node_text(prop)
    return None


def collect_calls(func: Node, source: SourceText, include_closures: bool = False) -> List[str]:
    """Callee names of every call in *func*'s body, one per occurrence, in source order.

    Calls inside nested functions are skipped unless *include_closures*.
    """
    body = func.child_by_field_name("body")
    if body is None:
        return []
    names: List[str] = []
    stack = [body]
    while stack:
        node = stack.pop()
        if node is not body and is_function(node) and not include_closures:
            continue
        if node.type == "call_expression":
            name = callee_name(node, source)
            if name:
                names.append(name)
        stack.extend(reversed(node.children))
    return names
