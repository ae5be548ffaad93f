"""Brace/string/comment/template-aware lexer and span repair.

Spans reported by a tolerant parse can be approximate, and spans stored in the
facts can drift from the live source.  Repair is layered:

1. quick lexical scan for a balanced boundary,
2. re-parse of candidate slices,
3. snap to the next top-level declaration keyword,
4. end of file.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional

# How far past the reported end the analyzer looks for a balanced boundary.
LOOKAHEAD = 4096
# How far before the reported start to look for missing open braces.
LOOKBEHIND = 1024
# Upper bound on re-parse attempts per span.
MAX_REPARSE_ATTEMPTS = 64

_CODE, _LINE_COMMENT, _BLOCK_COMMENT, _STRING, _TEMPLATE = range(5)

_NEXT_DECL_RE = re.compile(r"\r?\n\s*(function\s+|var\s+|let\s+|const\s+|async\s+function\s+)")


class BraceLexer:
    """Incremental lexer tracking code-level brace depth.

    Skips line and block comments, quoted strings (honouring escapes), and
    template literal text.  ``${...}`` inside a template re-enters code mode
    where braces count again.  Regex literals are not recognised.
    """

    def __init__(self, text: str, start: int = 0):
        self.text = text
        self.pos = start
        self.depth = 0
        self.went_negative = False
        self.mode = _CODE
        self.quote = ""
        # Brace depth saved on entry to each ${ ... } interpolation.
        self._interp: list = []

    def balanced(self) -> bool:
        return (
            self.mode == _CODE
            and not self._interp
            and self.depth == 0
            and not self.went_negative
        )

    def advance_to(self, end: int) -> None:
        end = min(end, len(self.text))
        while self.pos < end:
            self._step()

    def _step(self) -> None:
        text = self.text
        i = self.pos
        c = text[i]
        nxt = text[i + 1] if i + 1 < len(text) else ""
        mode = self.mode

        if mode == _LINE_COMMENT:
            if c in "\r\n":
                self.mode = _CODE
            self.pos = i + 1
            return
        if mode == _BLOCK_COMMENT:
            if c == "*" and nxt == "/":
                self.mode = _CODE
                self.pos = i + 2
            else:
                self.pos = i + 1
            return
        if mode == _STRING:
            if c == "\\":
                self.pos = i + 2
                return
            # Quoted strings cannot span lines.
            if c == self.quote or c in "\r\n":
                self.mode = _CODE
            self.pos = i + 1
            return
        if mode == _TEMPLATE:
            if c == "\\":
                self.pos = i + 2
                return
            if c == "`":
                self.mode = _CODE
            elif c == "$" and nxt == "{":
                self._interp.append(self.depth)
                self.depth = 0
                self.mode = _CODE
                self.pos = i + 2
                return
            self.pos = i + 1
            return

        if c == "/" and nxt == "/":
            self.mode = _LINE_COMMENT
            self.pos = i + 2
            return
        if c == "/" and nxt == "*":
            self.mode = _BLOCK_COMMENT
            self.pos = i + 2
            return
        if c == '"' or c == "'":
            self.mode = _STRING
            self.quote = c
        elif c == "`":
            self.mode = _TEMPLATE
        elif c == "{":
            self.depth += 1
        elif c == "}":
            if self.depth == 0 and self._interp:
                self.depth = self._interp.pop()
                self.mode = _TEMPLATE
            else:
                self.depth -= 1
                if self.depth < 0:
                    self.went_negative = True
        self.pos = i + 1


def is_balanced(text: str, start: int, end: int) -> bool:
    """True when ``text[start:end]`` closes every brace, string and comment it opens."""
    lexer = BraceLexer(text, start)
    lexer.advance_to(end)
    return lexer.pos == end and lexer.balanced()


def find_balanced_end(text: str, start: int, end: int, limit: int) -> Optional[int]:
    """Return the first ``e`` in ``[end, limit]`` where ``text[start:e]`` is balanced."""
    limit = min(limit, len(text))
    lexer = BraceLexer(text, start)
    for e in range(end, limit + 1):
        lexer.advance_to(e)
        if lexer.went_negative:
            return None
        if lexer.pos == e and lexer.balanced():
            return e
    return None


def _pull_back_start(text: str, start: int, end: int) -> int:
    """Move *start* back over enough ``{`` to cover surplus ``}`` in the slice."""
    snippet = text[start:end]
    need = snippet.count("}") - snippet.count("{")
    if need <= 0:
        return start
    floor = max(0, start - LOOKBEHIND)
    found = 0
    for j in range(start - 1, floor - 1, -1):
        if text[j] == "{":
            found += 1
            if found >= need:
                return j
    return start


def _line_start(text: str, idx: int) -> int:
    return text.rfind("\n", 0, idx) + 1


def _first_good_end(
    text: str,
    start: int,
    end: int,
    limit: int,
    reparse: Optional[Callable[[str], bool]],
) -> Optional[int]:
    """First ``e`` in ``[end, limit]`` where ``text[start:e]`` is balanced or re-parses.

    Re-parse is only tried at statement-like boundaries, at most
    MAX_REPARSE_ATTEMPTS times.
    """
    lexer = BraceLexer(text, start)
    attempts = 0
    for e in range(end, limit + 1):
        lexer.advance_to(e)
        if lexer.pos == e and lexer.balanced():
            return e
        if reparse is None or attempts >= MAX_REPARSE_ATTEMPTS:
            continue
        if e == end or text[e - 1] in "};\n":
            attempts += 1
            if reparse(text[start:e]):
                return e
    return None


def validate_end(
    text: str,
    start: int,
    end: int,
    reparse: Optional[Callable[[str], bool]] = None,
) -> int:
    """Return a trustworthy end offset for the span ``[start, end)``.

    Tries progressively longer slices up to LOOKAHEAD characters past *end*:
    a slice is accepted when the lexer finds it balanced or, at statement-like
    boundaries, when *reparse* reports that it parses cleanly.  Falls back to
    the original *end*.
    """
    end = min(end, len(text))
    limit = min(len(text), end + LOOKAHEAD)
    scan_start = _pull_back_start(text, start, end)
    found = _first_good_end(text, scan_start, end, limit, reparse)
    return end if found is None else found


@dataclass
class SliceRepair:
    start: int
    end: int
    # "ok", "backward", "forward", "snap" or "eof"
    method: str

    @property
    def degraded(self) -> bool:
        return self.method in ("snap", "eof")


def repair_slice(
    text: str,
    start: int,
    end: int,
    reparse: Optional[Callable[[str], bool]] = None,
) -> SliceRepair:
    """Re-validate a stored span against the live source text.

    A span the lexer finds balanced, or that *reparse* accepts, is kept as is.
    Surplus closing braces pull the start back to the line holding the
    matching open brace.  An open slice is extended forward to the first end
    that balances or re-parses.  Failing that it is snapped to the next
    top-level declaration keyword so it never swallows the next function, and
    as a last resort extended to EOF.
    """
    start = max(0, start)
    end = min(max(start, end), len(text))

    def _accepted(s: int) -> bool:
        if is_balanced(text, s, end):
            return True
        return reparse is not None and reparse(text[s:end])

    if _accepted(start):
        return SliceRepair(start, end, "ok")

    method = "forward"
    pulled = _pull_back_start(text, start, end)
    if pulled != start:
        start = _line_start(text, pulled)
        method = "backward"
        if _accepted(start):
            return SliceRepair(start, end, method)

    fixed = _first_good_end(text, start, end, len(text), reparse)
    if fixed is not None:
        return SliceRepair(start, fixed, method)

    m = _NEXT_DECL_RE.search(text, end)
    if m:
        return SliceRepair(start, m.start(), "snap")
    return SliceRepair(start, len(text), "eof")


def matching_brace_end(text: str, pos: int) -> Optional[int]:
    """Return the offset just past the brace closing the first ``{`` at or after *pos*."""
    brace = text.find("{", pos)
    if brace < 0:
        return None
    return find_balanced_end(text, brace, brace + 1, len(text))
