"""Analyzer: recover top-level functions, free identifiers, and calls from JS source."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Set

from tree_sitter import Node

from .. import paths
from ..config import AtomizerConfig
from ..errors import AnalysisError
from ..stats import StageWarning
from .facts import ANONYMOUS, CallEdge, Facts, FunctionRecord, ImportRecord, write_facts
from .js_parser import FUNCTION_VALUE_KINDS, SourceText, is_function, parse, parse_failed, parses_cleanly
from .scanner import matching_brace_end, validate_end
from .scope import binding_names, collect_calls, collect_scope

logger = logging.getLogger(__name__)

# Doc comments are looked for this many characters before a declaration.
JSDOC_LOOKBACK = 300
# The fallback scanner looks this far back for an `export` keyword.
EXPORT_LOOKBACK = 80

_IMPORT_RE = re.compile(r"^\s*import\s+(?P<clause>.+?)\s+from\s+['\"](?P<from>[^'\"]+)['\"];?", re.M)
_FUNCTION_RE = re.compile(r"\bfunction\s+(?P<name>[A-Za-z_$][\w$]*)\s*\(")
_VAR_FUNCTION_RE = re.compile(
    r"\b(var|let|const)\s+(?P<name>[A-Za-z_$][\w$]*)\s*=\s*(async\s*)?(function|\(|[A-Za-z_$])"
)
_EXPORT_WORD_RE = re.compile(r"\bexport\b")
_IDENT_RE = re.compile(r"[A-Za-z_$][\w$]*")
_STATEMENT_END_RE = re.compile(r"[;\n]")


@dataclass
class _Candidate:
    """A function found in source, before dedup and id assignment."""

    name: str
    start: int
    end: int
    exported: bool
    moveable: bool
    used: Set[str] = field(default_factory=set)
    free: Set[str] = field(default_factory=set)
    params: Set[str] = field(default_factory=set)
    locals: Set[str] = field(default_factory=set)
    callees: List[str] = field(default_factory=list)


@dataclass
class AnalysisResult:
    """Output of :func:`analyze_source` / :func:`run_analyzer`."""

    facts: Facts
    used_fallback: bool = False
    messages: List[str] = field(default_factory=list)
    warnings: List[StageWarning] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def doc_comment_start(text: str, idx: int) -> Optional[int]:
    """Start of a ``/** ... */`` block separated from *idx* only by whitespace."""
    floor = max(0, idx - JSDOC_LOOKBACK)
    pos = text.rfind("/**", floor, idx)
    if pos < 0:
        return None
    close = text.find("*/", pos + 3)
    if close < 0 or close + 2 > idx:
        return None
    if text[close + 2 : idx].strip():
        return None
    return pos


def looks_exported(text: str, idx: int) -> bool:
    """Heuristic used when no syntax tree is available."""
    return bool(_EXPORT_WORD_RE.search(text[max(0, idx - EXPORT_LOOKBACK) : idx]))


def scan_imports(text: str) -> List[ImportRecord]:
    """Find static ``import ... from '...'`` statements."""
    records = []
    for m in _IMPORT_RE.finditer(text):
        clause = m.group("clause")
        named: List[str] = []
        for part in re.split(r"[{},]", clause):
            part = part.strip()
            if not part:
                continue
            if " as " in part:
                part = part.rsplit(" as ", 1)[1].strip()
            if _IDENT_RE.fullmatch(part):
                named.append(part)
        records.append(ImportRecord(source=m.group("from"), named=named))
    return records


def dedupe(candidates: List[_Candidate]) -> List[_Candidate]:
    """Drop every candidate whose span lies inside an already-kept one.

    Candidates are ordered by start (longest first on ties) so the outer
    span is always seen before anything nested in it.
    """
    kept: List[_Candidate] = []
    for cand in sorted(candidates, key=lambda c: (c.start, -c.end)):
        if any(k.start <= cand.start and cand.end <= k.end for k in kept):
            continue
        kept.append(cand)
    return kept


# ---------------------------------------------------------------------------
# Tree-based extraction
# ---------------------------------------------------------------------------


class _TreeExtractor:
    def __init__(self, source: SourceText, root: Node, attribute_closure_calls: bool):
        self.source = source
        self.text = source.text
        self.root = root
        self.attribute_closure_calls = attribute_closure_calls
        self.top_level: Set[str] = set()
        self.export_clause: Set[str] = set()
        self.candidates: List[_Candidate] = []

    def run(self) -> None:
        for stmt in self.root.named_children:
            self._index_statement(stmt)
        for stmt in self.root.named_children:
            self._visit(stmt, exported=False)

    # -- top-level symbol table ------------------------------------------------

    def _index_statement(self, stmt: Node) -> None:
        kind = stmt.type
        if kind == "export_statement":
            decl = stmt.child_by_field_name("declaration")
            if decl is not None:
                self._index_statement(decl)
            elif stmt.child_by_field_name("source") is None:
                self._index_export_clause(stmt)
            value = stmt.child_by_field_name("value")
            if value is not None and is_function(value):
                self._index_statement(value)
            return
        if kind in ("function_declaration", "generator_function_declaration", "class_declaration"):
            name = stmt.child_by_field_name("name")
            if name is not None:
                self.top_level.add(self.source.node_text(name))
        elif kind in ("lexical_declaration", "variable_declaration"):
            for decl in stmt.named_children:
                if decl.type == "variable_declarator":
                    self.top_level.update(binding_names(decl.child_by_field_name("name"), self.source))

    def _index_export_clause(self, stmt: Node) -> None:
        for clause in stmt.named_children:
            if clause.type != "export_clause":
                continue
            for spec in clause.named_children:
                if spec.type == "export_specifier":
                    name = spec.child_by_field_name("name")
                    if name is not None:
                        self.export_clause.add(self.source.node_text(name))

    # -- function discovery -----------------------------------------------------

    def _visit(self, stmt: Node, exported: bool) -> None:
        kind = stmt.type
        if kind == "export_statement":
            decl = stmt.child_by_field_name("declaration")
            is_default = any(child.type == "default" for child in stmt.children)
            if is_default:
                # Sliced with `export default` kept: the value has no other binding.
                target = decl if decl is not None else stmt.child_by_field_name("value")
                if target is not None and is_function(target):
                    self._add(target, target.child_by_field_name("name"), self.source.start(stmt),
                              self.source.end(stmt), exported=True)
                return
            if decl is not None:
                self._visit(decl, exported=True)
            return

        if kind in ("function_declaration", "generator_function_declaration"):
            name = stmt.child_by_field_name("name")
            self._add(stmt, name, self.source.start(stmt), self._body_end(stmt), exported)
            return

        if kind in ("lexical_declaration", "variable_declaration"):
            declarators = [d for d in stmt.named_children if d.type == "variable_declarator"]
            for decl in declarators:
                name = decl.child_by_field_name("name")
                value = decl.child_by_field_name("value")
                if name is None or name.type != "identifier":
                    continue
                if value is None or value.type not in FUNCTION_VALUE_KINDS:
                    continue
                if len(declarators) == 1:
                    start, end = self.source.start(stmt), self.source.end(stmt)
                else:
                    start, end = self.source.start(decl), self._body_end(value)
                self._add(value, name, start, end, exported)

    def _body_end(self, func: Node) -> int:
        body = func.child_by_field_name("body")
        return self.source.end(body if body is not None else func)

    def _add(self, func: Node, name_node: Optional[Node], start: int, end: int, exported: bool) -> None:
        name = self.source.node_text(name_node) if name_node is not None else ANONYMOUS
        doc = doc_comment_start(self.text, start)
        record_start = doc if doc is not None else start
        record_end = validate_end(self.text, record_start, end, reparse=parses_cleanly)

        info = collect_scope(func, self.source)
        free = info.free(exempt=self.top_level | {name})
        self.candidates.append(
            _Candidate(
                name=name,
                start=record_start,
                end=record_end,
                exported=exported or name in self.export_clause,
                moveable=not free,
                used=info.used,
                free=free,
                params=info.params,
                locals=info.locals,
                callees=collect_calls(func, self.source, include_closures=self.attribute_closure_calls),
            )
        )


# ---------------------------------------------------------------------------
# Regex fallback
# ---------------------------------------------------------------------------


def _fallback_candidates(text: str) -> List[_Candidate]:
    """Approximate discovery used when the syntax tree cannot be trusted.

    Everything found here is conservatively non-moveable.
    """
    found: List[_Candidate] = []
    for m in _FUNCTION_RE.finditer(text):
        start = m.start()
        doc = doc_comment_start(text, start)
        end = matching_brace_end(text, m.end())
        found.append(
            _Candidate(
                name=m.group("name"),
                start=doc if doc is not None else start,
                end=end if end is not None else len(text),
                exported=looks_exported(text, start),
                moveable=False,
            )
        )
    for m in _VAR_FUNCTION_RE.finditer(text):
        start = m.start()
        doc = doc_comment_start(text, start)
        brace = text.find("{", m.end())
        stop = _STATEMENT_END_RE.search(text, m.end())
        if stop is not None and (brace < 0 or stop.start() < brace):
            end = stop.end()
        else:
            end = matching_brace_end(text, m.end()) if brace >= 0 else None
            if end is None:
                end = len(text)
        found.append(
            _Candidate(
                name=m.group("name"),
                start=doc if doc is not None else start,
                end=end,
                exported=looks_exported(text, start),
                moveable=False,
            )
        )
    return found


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def analyze_source(
    text: str,
    source_path: str,
    attribute_closure_calls: bool = False,
) -> AnalysisResult:
    """Analyze *text* and return facts; raise AnalysisError if no function is found."""
    source = SourceText(text)
    tree = parse(source)
    warnings: List[StageWarning] = []
    top_level: Set[str] = set()
    used_fallback = parse_failed(tree)

    if not used_fallback:
        extractor = _TreeExtractor(source, tree.root_node, attribute_closure_calls)
        extractor.run()
        candidates = extractor.candidates
        top_level = extractor.top_level
    else:
        message = "syntax tree has statement-level errors; using regex scanner"
        logger.warning("analyze: %s", message)
        warnings.append(StageWarning("analyze", "ParseDegradation", message))
        candidates = _fallback_candidates(text)
        top_level = {c.name for c in candidates}

    kept = dedupe(candidates)
    if not kept:
        raise AnalysisError(
            f"no functions detected in {source_path}; refusing to build an empty plan"
        )

    functions: List[FunctionRecord] = []
    calls: List[CallEdge] = []
    for n, cand in enumerate(kept):
        fid = f"f{n:04d}"
        functions.append(
            FunctionRecord(
                id=fid,
                name=cand.name,
                start=cand.start,
                end=cand.end,
                exported=cand.exported,
                moveable=cand.moveable,
                used=sorted(cand.used),
                free=sorted(cand.free),
                params=sorted(cand.params),
                locals=sorted(cand.locals),
            )
        )
        calls.extend(CallEdge(caller=fid, callee=callee) for callee in cand.callees)

    facts = Facts(
        source=source_path,
        functions=functions,
        calls=calls,
        imports=scan_imports(text),
        top_level=sorted(top_level),
    )
    return AnalysisResult(facts=facts, used_fallback=used_fallback, warnings=warnings)


def run_analyzer(config: AtomizerConfig) -> AnalysisResult:
    """Analyze the configured source and persist the facts set."""
    src = paths.source_path(config)
    text, read_from = paths.read_original_source(src)
    messages: List[str] = []
    if read_from != src:
        messages.append(f"analyze: {src.name} is a shim; reading backup {read_from.name}")

    result = analyze_source(text, str(src), config.attribute_closure_calls)
    write_facts(paths.facts_dir(config), result.facts)

    facts = result.facts
    moveable = sum(1 for f in facts.functions if f.moveable)
    messages.append(
        f"analyze: {len(facts.functions)} functions ({moveable} moveable), "
        f"{len(facts.imports)} imports, {len(facts.calls)} calls"
    )
    result.messages = messages + result.messages
    return result
