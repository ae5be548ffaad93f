"""Writer stage: emit one module file per plan module by slicing the source."""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Set, Tuple

from . import paths
from .analysis.facts import FunctionRecord, read_facts
from .analysis.js_parser import parses_cleanly
from .analysis.scanner import repair_slice
from .config import AtomizerConfig
from .planning.plan_model import ModuleSpec, read_plan
from .stats import StageWarning

logger = logging.getLogger(__name__)

IMPORTS_PLACEHOLDER = "// imports will be added by linker"
ORIGINAL_EXPORTS_COMMENT = "// explicit exports added by atomizer for original module"
EXPORTS_COMMENT = "// exports"
DEBUG_DIR = "output_debug"

_JS_IDENT_RE = re.compile(r"^[A-Za-z_$][\w$]*$")
_INLINE_EXPORT_RE = re.compile(r"\bexport\s+$")
_DEFAULT_EXPORT_RE = re.compile(r"(?:/\*\*[\s\S]*?\*/\s*)?export\s+default\b")
_JS_RESERVED = frozenset(
    """break case catch class const continue debugger default delete do else enum
    export extends false finally for function if import in instanceof new null
    return super switch this throw true try typeof var void while with yield let
    static implements interface package private protected public await""".split()
)


@dataclass
class WriteResult:
    """Output of :func:`run_writer`."""

    files: Dict[str, Path] = field(default_factory=dict)  # slug → written file
    messages: List[str] = field(default_factory=list)
    warnings: List[StageWarning] = field(default_factory=list)


def is_exportable(name: str) -> bool:
    """True for names that may appear in an ``export { ... }`` list."""
    return bool(_JS_IDENT_RE.match(name)) and name not in _JS_RESERVED


def export_names(records: Iterable[FunctionRecord]) -> List[str]:
    """Exportable names of *records*, first occurrence wins."""
    names: List[str] = []
    for rec in records:
        if is_exportable(rec.name) and rec.name not in names:
            names.append(rec.name)
    return names


def export_statement(names: List[str]) -> str:
    return "export { " + ", ".join(names) + " };"


def strip_inline_exports(source: str, records: Iterable[FunctionRecord]) -> Tuple[str, Set[str]]:
    """Drop the ``export`` keyword in front of each exported declaration in *records*.

    Returns the new text and the names whose keyword was removed.  Names
    exported some other way (an ``export { ... }`` clause, a multi-declarator
    statement) are left untouched.
    """
    cuts: List[Tuple[int, int]] = []
    stripped: Set[str] = set()
    for rec in records:
        if not rec.exported:
            continue
        m = _INLINE_EXPORT_RE.search(source, max(0, rec.start - 32), rec.start)
        if m is None:
            continue
        cuts.append((m.start(), rec.start))
        stripped.add(rec.name)
    for start, end in sorted(cuts, reverse=True):
        source = source[:start] + source[end:]
    return source, stripped


def is_default_export(source: str, rec: FunctionRecord) -> bool:
    return bool(_DEFAULT_EXPORT_RE.match(source, rec.start))


def render_original_module(banner: str, source: str, names: List[str]) -> str:
    """Banner, the whole source, then an explicit export list."""
    parts = [banner, "\n\n", source]
    if names:
        if not source.endswith("\n"):
            parts.append("\n")
        parts.append("\n" + ORIGINAL_EXPORTS_COMMENT + "\n" + export_statement(names) + "\n")
    return "".join(parts)


def render_module(banner: str, slices: List[str], names: List[str]) -> str:
    """Banner, import placeholder, each slice, then the export list."""
    lines = [banner, "", IMPORTS_PLACEHOLDER, ""]
    for text in slices:
        lines.append(text)
        lines.append("")
    if names:
        lines.append(EXPORTS_COMMENT)
        lines.append(export_statement(names))
    return "\n".join(lines) + "\n"


def _module_records(
    module: ModuleSpec, funcs: Dict[str, FunctionRecord], warnings: List[StageWarning]
) -> List[FunctionRecord]:
    records = []
    for fid in module.functions:
        rec = funcs.get(fid)
        if rec is None:
            msg = f"module {module.slug}: unknown function id {fid} skipped"
            logger.warning("write: %s", msg)
            warnings.append(StageWarning("write", "SliceRepairFailure", msg))
            continue
        records.append(rec)
    return records


def slice_functions(
    source: str,
    module: ModuleSpec,
    records: List[FunctionRecord],
    warnings: List[StageWarning],
) -> List[str]:
    """Repaired source text of every record, in plan order."""
    slices = []
    for rec in records:
        repair = repair_slice(source, rec.start, rec.end, reparse=parses_cleanly)
        if repair.degraded:
            msg = (
                f"module {module.slug}: span of {rec.name} ({rec.id}) could not be "
                f"balanced; cut by {repair.method}"
            )
            logger.warning("write: %s", msg)
            warnings.append(StageWarning("write", "SliceRepairFailure", msg))
        slices.append(source[repair.start : repair.end])
    return slices


def _copy_debug(config: AtomizerConfig, path: Path) -> None:
    debug_dir = Path(config.project_root) / DEBUG_DIR
    debug_dir.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(path, debug_dir / path.name)


def run_writer(config: AtomizerConfig) -> WriteResult:
    """Write ``<output>/<basename>.atomized/<slug>.js`` for every non-empty module."""
    src = paths.source_path(config)
    source, read_from = paths.read_original_source(src)
    facts = read_facts(paths.facts_dir(config))
    plan = read_plan(paths.plans_dir(config))
    funcs = facts.by_id()
    basename = paths.source_basename(src)
    out_dir = paths.module_dir(config, src)
    out_dir.mkdir(parents=True, exist_ok=True)

    result = WriteResult()
    if read_from != src:
        result.messages.append(f"write: {src.name} is a shim; slicing backup {read_from.name}")

    for module in plan.modules:
        records = _module_records(module, funcs, result.warnings)
        if not records:
            continue
        target = out_dir / paths.module_filename(module.slug, basename)
        names = export_names(records)
        if module.is_original:
            body, stripped = strip_inline_exports(source, records)
            # Names still exported inside the source must not be exported twice.
            kept_inline = {
                r.name
                for r in records
                if r.exported and r.name not in stripped and not is_default_export(source, r)
            }
            names = [n for n in names if n not in kept_inline]
            text = render_original_module(config.banner_text, body, names)
        else:
            slices = slice_functions(source, module, records, result.warnings)
            text = render_module(config.banner_text, slices, names)
        paths.atomic_write_text(target, text)
        result.files[module.slug] = target
        if config.debug_output_enabled:
            _copy_debug(config, target)
        result.messages.append(f"write: {target.name} ({len(records)} functions)")
    return result
