"""tree-sitter wrapper: JavaScript parsing, error detection, byte→char offsets."""

from __future__ import annotations

from typing import Iterator, List, Optional

import tree_sitter_javascript as tsjs
from tree_sitter import Language, Node, Parser, Tree

JS_LANGUAGE = Language(tsjs.language())

# Node kinds that open a new function scope.  Free-variable analysis and call
# collection stop at these boundaries.
FUNCTION_KINDS = frozenset(
    {
        "function_declaration",
        "generator_function_declaration",
        "function_expression",
        "function",  # older grammar releases
        "generator_function",
        "arrow_function",
        "method_definition",
    }
)

# Initializers that make `const x = ...` a function-like declaration.
FUNCTION_VALUE_KINDS = frozenset(
    {"function_expression", "function", "generator_function", "arrow_function"}
)

_parser: Optional[Parser] = None


def get_parser() -> Parser:
    global _parser
    if _parser is None:
        _parser = Parser(JS_LANGUAGE)
    return _parser


class SourceText:
    """Decoded source plus its UTF-8 encoding, with byte→char offset mapping."""

    def __init__(self, text: str):
        self.text = text
        self.data = text.encode("utf-8", errors="surrogatepass")
        self._ascii = len(self.data) == len(text)
        self._byte_to_char: Optional[List[int]] = None

    def _build_map(self) -> List[int]:
        mapping = [0] * (len(self.data) + 1)
        b = 0
        for i, ch in enumerate(self.text):
            width = len(ch.encode("utf-8", errors="surrogatepass"))
            for k in range(width):
                mapping[b + k] = i
            b += width
        mapping[b] = len(self.text)
        return mapping

    def char_offset(self, byte_offset: int) -> int:
        if self._ascii:
            return byte_offset
        if self._byte_to_char is None:
            self._byte_to_char = self._build_map()
        return self._byte_to_char[byte_offset]

    def start(self, node: Node) -> int:
        return self.char_offset(node.start_byte)

    def end(self, node: Node) -> int:
        return self.char_offset(node.end_byte)

    def node_text(self, node: Optional[Node]) -> str:
        if node is None:
            return ""
        return self.data[node.start_byte : node.end_byte].decode("utf-8", errors="replace")


def parse(source: SourceText) -> Tree:
    return get_parser().parse(source.data)


def parse_failed(tree: Tree) -> bool:
    """True when statement-level structure is broken and tree ranges are unreliable."""
    root = tree.root_node
    if root.type == "ERROR":
        return True
    return any(child.type == "ERROR" for child in root.children)


def parses_cleanly(snippet: str) -> bool:
    """True when *snippet* parses with no error or missing nodes."""
    tree = get_parser().parse(snippet.encode("utf-8", errors="surrogatepass"))
    return not tree.root_node.has_error


def walk(node: Node) -> Iterator[Node]:
    """Pre-order traversal of *node* and all descendants."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def is_function(node: Node) -> bool:
    return node.type in FUNCTION_KINDS
