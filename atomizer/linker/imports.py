"""Cross-module import computation and insertion."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Set

from .. import paths
from ..analysis.facts import CallEdge, Facts
from ..config import AtomizerConfig
from ..errors import LLMError
from ..llm_client import call_chat, get_api_key, make_client
from ..planning.plan_model import Plan
from ..stats import StageWarning
from ..writer import IMPORTS_PLACEHOLDER, is_exportable

logger = logging.getLogger(__name__)

PREVIEW_FILE = "imports.preview.json"
PREVIEW_RAW_FILE = "imports.preview.raw.json"
SOURCE_FILE = "imports.source.json"

VALIDATION_PROMPT = (
    "You are a small code assistant. Given candidate import statements per module, "
    "reply with a JSON object {valid:[...], invalid:[...]} naming which imports look "
    "necessary based on token usage. Reply only JSON."
)

_PREVIEW_NAME_RE = re.compile(r"import\s*\{\s*(?P<fn>[A-Za-z_$][\w$]*)\s*\}")


@dataclass
class ModuleLayout:
    """Where each module lives and which names it declares."""

    out_dir: Path
    basename: str
    module_of_id: Dict[str, str] = field(default_factory=dict)  # id → slug
    module_of_name: Dict[str, str] = field(default_factory=dict)  # name → slug (first wins)
    names_in: Dict[str, List[str]] = field(default_factory=dict)  # slug → names, plan order
    slugs: List[str] = field(default_factory=list)
    original_slug: Optional[str] = None

    @classmethod
    def build(cls, plan: Plan, facts: Facts, out_dir: Path, basename: str) -> "ModuleLayout":
        layout = cls(out_dir=out_dir, basename=basename)
        funcs = facts.by_id()
        for module in plan.modules:
            layout.slugs.append(module.slug)
            if module.is_original:
                layout.original_slug = module.slug
            names = layout.names_in.setdefault(module.slug, [])
            for fid in module.functions:
                layout.module_of_id[fid] = module.slug
                rec = funcs.get(fid)
                if rec is None or not rec.name or not is_exportable(rec.name):
                    continue
                if rec.name not in names:
                    names.append(rec.name)
                layout.module_of_name.setdefault(rec.name, module.slug)
        return layout

    def file_for(self, slug: str) -> Path:
        return self.out_dir / paths.module_filename(slug, self.basename)

    def accepts_imports(self, slug: str) -> bool:
        # The original module holds the whole source; every name is already local.
        return slug != self.original_slug

    def import_line(self, importer: str, name: str) -> str:
        target = self.module_of_name[name]
        rel = paths.rel_import(self.file_for(importer).parent, self.file_for(target))
        return f"import {{ {name} }} from '{rel}';"


# ---------------------------------------------------------------------------
# Import computation
# ---------------------------------------------------------------------------


def callgraph_imports(calls: List[CallEdge], layout: ModuleLayout) -> Dict[str, Set[str]]:
    """importer slug → callee names, from call edges crossing module boundaries."""
    needed: Dict[str, Set[str]] = {}
    for edge in calls:
        importer = layout.module_of_id.get(edge.caller)
        target = layout.module_of_name.get(edge.callee)
        if importer is None or target is None or importer == target:
            continue
        if not layout.accepts_imports(importer):
            continue
        if edge.callee in layout.names_in.get(importer, []):
            continue
        needed.setdefault(importer, set()).add(edge.callee)
    return needed


def _inside_quotes(line_prefix: str) -> bool:
    return any(line_prefix.count(q) % 2 == 1 for q in ('"', "'", "`"))


def first_reference(text: str, name: str) -> Optional[int]:
    """Offset of the first whole-word use of *name* not inside same-line quotes."""
    pattern = re.compile(r"(?<![\w$])" + re.escape(name) + r"(?![\w$])")
    for m in pattern.finditer(text):
        line_start = text.rfind("\n", 0, m.start()) + 1
        if _inside_quotes(text[line_start : m.start()]):
            continue
        return m.start()
    return None


def heuristic_preview(layout: ModuleLayout) -> Dict[str, List[str]]:
    """importer slug → proposed import lines, by scanning emitted module text."""
    preview: Dict[str, List[str]] = {}
    for slug in layout.slugs:
        if not layout.accepts_imports(slug):
            continue
        path = layout.file_for(slug)
        if not path.exists():
            continue
        text = paths.read_text(path)
        own = set(layout.names_in.get(slug, []))
        lines: List[str] = []
        for name, target in sorted(layout.module_of_name.items()):
            if target == slug or name in own:
                continue
            if first_reference(text, name) is None:
                continue
            line = layout.import_line(slug, name)
            if line not in lines:
                lines.append(line)
        if lines:
            preview[slug] = lines
    return preview


def preview_to_imports(preview: Dict[str, List[str]]) -> Dict[str, Set[str]]:
    needed: Dict[str, Set[str]] = {}
    for slug, lines in preview.items():
        for line in lines:
            m = _PREVIEW_NAME_RE.search(line)
            if m:
                needed.setdefault(slug, set()).add(m.group("fn"))
    return needed


def validate_preview(preview: Dict[str, List[str]], config: AtomizerConfig, plans_dir: Path) -> str:
    """Ask the LLM whether the heuristic imports look plausible.

    The answer is only recorded in ``imports.preview.raw.json``; the preview
    stands either way.  Raises LLMError on failure.
    """
    llm = config.llm
    api_key = get_api_key(llm.provider, caller="linker")
    client = make_client(llm.provider, api_key, timeout=llm.api_timeout, base_url=llm.endpoint_url)
    reply = call_chat(
        client,
        llm.provider,
        llm.model_name,
        llm.max_tokens,
        0.0,
        VALIDATION_PROMPT,
        [{"role": "user", "content": json.dumps({"preview": preview})}],
        timeout=llm.api_timeout,
        caller="linker",
    )
    raw = {"timestamp": datetime.now(timezone.utc).isoformat(), "body": reply}
    paths.atomic_write_text(plans_dir / PREVIEW_RAW_FILE, json.dumps(raw, indent=2) + "\n")
    return reply


@dataclass
class ImportPlan:
    needed: Dict[str, Set[str]]
    source: str  # "callgraph", "heuristic" or "none"
    preview: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(len(v) for v in self.needed.values())

    def audit(self) -> dict:
        return {
            "source": self.source,
            "total": self.total,
            "modules": {slug: len(names) for slug, names in sorted(self.needed.items())},
        }


def compute_imports(
    facts: Facts,
    layout: ModuleLayout,
    config: AtomizerConfig,
    plans_dir: Path,
    warnings: List[StageWarning],
) -> ImportPlan:
    """Call graph first; scan module text only when the call shard is empty."""
    if facts.calls:
        needed = callgraph_imports(facts.calls, layout)
        return ImportPlan(needed=needed, source="callgraph" if needed else "none")

    preview = heuristic_preview(layout)
    paths.atomic_write_text(plans_dir / PREVIEW_FILE, json.dumps(preview, indent=2) + "\n")
    if preview and config.llm.enabled:
        try:
            validate_preview(preview, config, plans_dir)
        except LLMError as exc:
            msg = f"import preview validation skipped: {exc}"
            logger.warning("link: %s", msg)
            warnings.append(StageWarning("link", "LinkBestEffortFailure", msg))
    needed = preview_to_imports(preview)
    return ImportPlan(needed=needed, source="heuristic" if needed else "none", preview=preview)


# ---------------------------------------------------------------------------
# Insertion
# ---------------------------------------------------------------------------


def _drop_placeholder(lines: List[str]) -> None:
    """Remove the writer's import placeholder line and the blank line after it."""
    for i, line in enumerate(lines):
        if line.strip() == IMPORTS_PLACEHOLDER:
            end = i + 1
            if end < len(lines) and not lines[end].strip():
                end += 1
            del lines[i:end]
            return


def insert_imports(path: Path, import_lines: List[str]) -> int:
    """Insert *import_lines* after the banner line; skip lines already present.

    The placeholder left by the writer is removed once imports go in.

    Returns the number of lines inserted.
    """
    text = paths.read_text(path)
    lines = text.splitlines(keepends=True)
    present = {line.strip() for line in lines}
    new = [line for line in import_lines if line not in present]
    if not new:
        return 0
    newline = "\r\n" if lines and lines[0].endswith("\r\n") else "\n"
    if lines and not lines[0].endswith(("\n", "\r")):
        lines[0] += newline
    lines[1:1] = [line + newline for line in new]
    _drop_placeholder(lines)
    paths.atomic_write_text(path, "".join(lines))
    return len(new)


def apply_imports(plan: ImportPlan, layout: ModuleLayout) -> Dict[str, int]:
    """Rewrite every importing module file; return slug → lines inserted."""
    inserted: Dict[str, int] = {}
    for slug in sorted(plan.needed):
        path = layout.file_for(slug)
        if not path.exists():
            continue
        lines = [layout.import_line(slug, name) for name in sorted(plan.needed[slug])]
        inserted[slug] = insert_imports(path, lines)
    return inserted
