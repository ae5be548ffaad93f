"""Linker stage: cross-module imports, bridge, CommonJS mirror, backup and shim."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .. import paths
from ..analysis.facts import Facts, read_facts
from ..config import AtomizerConfig
from ..planning.plan_model import Plan, read_plan
from ..stats import StageWarning
from .bridge import (
    EXPORT_NAMES_FILE,
    leading_lines,
    public_names,
    render_bridge,
    render_fallback_bridge,
    render_shim,
)
from .cjs import render_cjs_bridge, to_commonjs
from .imports import SOURCE_FILE, ModuleLayout, apply_imports, compute_imports

logger = logging.getLogger(__name__)

REPORT_FILE = "report.json"


@dataclass
class LinkResult:
    """Output of :func:`run_linker`."""

    import_source: str = "none"
    imports_total: int = 0
    imports_inserted: int = 0
    files: List[Path] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)
    warnings: List[StageWarning] = field(default_factory=list)


def _attempt(result: LinkResult, step: str, func: Callable[..., Any], *args) -> Any:
    """Run one best-effort step; a failure becomes a warning and returns None."""
    try:
        return func(*args)
    except Exception as exc:
        msg = f"{step} failed: {exc}"
        logger.warning("link: %s", msg)
        result.warnings.append(StageWarning("link", "LinkBestEffortFailure", msg))
        return None


def bridge_exports(layout: ModuleLayout) -> List[Tuple[str, List[str]]]:
    """``[(slug, names)]`` for every written module, each name from its first module."""
    exports = []
    for slug in layout.slugs:
        if not layout.file_for(slug).exists():
            continue
        names = [n for n in layout.names_in.get(slug, []) if layout.module_of_name.get(n) == slug]
        if names:
            exports.append((slug, names))
    return exports


def write_bridge(
    config: AtomizerConfig,
    src: Path,
    source: str,
    facts: Facts,
    layout: ModuleLayout,
    exports: List[Tuple[str, List[str]]],
    mapping: Dict[str, str],
) -> Path:
    target = paths.bridge_path(src)
    imports = [(paths.rel_import(src.parent, layout.file_for(slug)), names) for slug, names in exports]
    first = min((f.start for f in facts.functions), default=None)
    text = render_bridge(config.banner_text, imports, mapping, leading_lines(source, first))
    paths.atomic_write_text(target, text)
    return target


def write_fallback_bridge(config: AtomizerConfig, src: Path, backup: Optional[Path]) -> Path:
    target = paths.bridge_path(src)
    origin = backup if backup is not None else src
    rel = paths.rel_import(src.parent, origin)
    paths.atomic_write_text(target, render_fallback_bridge(config.banner_text, rel))
    return target


def write_commonjs(
    config: AtomizerConfig,
    src: Path,
    layout: ModuleLayout,
    exports: List[Tuple[str, List[str]]],
    mapping: Dict[str, str],
) -> List[Path]:
    """Mirror every module as ``.cjs`` and write the CommonJS bridge."""
    cjs_dir = paths.cjs_module_dir(config, src)
    written = []

    def mirror_path(slug: str) -> Path:
        return cjs_dir / paths.module_filename(slug, layout.basename, ".cjs")

    for slug in layout.slugs:
        module_path = layout.file_for(slug)
        if not module_path.exists():
            continue
        text, _ = to_commonjs(paths.read_text(module_path))
        paths.atomic_write_text(mirror_path(slug), text)
        written.append(mirror_path(slug))

    requires = [(paths.rel_import(src.parent, mirror_path(slug)), names) for slug, names in exports]
    bridge = paths.cjs_bridge_path(src)
    paths.atomic_write_text(bridge, render_cjs_bridge(config.banner_text, requires, mapping))
    written.append(bridge)
    return written


def write_shim(config: AtomizerConfig, src: Path) -> Path:
    text = render_shim(config.banner_text, paths.bridge_path(src).name)
    if paths.read_text(src) != text:
        paths.atomic_write_text(src, text)
    return src


def copy_backup(config: AtomizerConfig, src: Path, backup: Path) -> Path:
    """Keep a copy of the real source next to the modules as ``<base>_old<ext>``."""
    target = paths.module_dir(config, src) / paths.canonical_backup_path(src).name
    paths.atomic_write_text(target, paths.read_text(backup))
    return target


def build_report(facts: Facts, plan: Plan) -> List[Dict[str, Any]]:
    owner = plan.module_of()
    return [
        {
            "id": f.id,
            "name": f.name,
            "span": {"start": f.start, "end": f.end},
            "moveable": f.moveable,
            "module": owner.get(f.id),
        }
        for f in facts.functions
    ]


def _write_json(path: Path, doc: Any) -> None:
    paths.atomic_write_text(path, json.dumps(doc, indent=2) + "\n")


def run_linker(config: AtomizerConfig) -> LinkResult:
    """Insert cross-module imports, then write the bridge, mirror, backup and shim.

    Only import insertion is fatal.  The remaining steps are best effort: a
    failure is recorded as a warning and the run continues.  The source is
    replaced by the shim only after a backup and a bridge exist.
    """
    src = paths.source_path(config)
    source, read_from = paths.read_original_source(src)
    facts = read_facts(paths.facts_dir(config))
    plans_dir = paths.plans_dir(config)
    plan = read_plan(plans_dir)
    layout = ModuleLayout.build(
        plan, facts, paths.module_dir(config, src), paths.source_basename(src)
    )

    result = LinkResult()
    if read_from != src:
        result.messages.append(f"link: {src.name} is a shim; using backup {read_from.name}")

    import_plan = compute_imports(facts, layout, config, plans_dir, result.warnings)
    inserted = apply_imports(import_plan, layout)
    _write_json(plans_dir / SOURCE_FILE, import_plan.audit())
    result.import_source = import_plan.source
    result.imports_total = import_plan.total
    result.imports_inserted = sum(inserted.values())
    result.messages.append(
        f"link: {result.imports_inserted} import line(s) inserted ({import_plan.source})"
    )

    exports = bridge_exports(layout)
    mapping = public_names(exports)
    _attempt(result, "export names", _write_json, plans_dir / EXPORT_NAMES_FILE, dict(sorted(mapping.items())))

    backup = _attempt(result, "backup", paths.backup_source, src)
    if backup is not None:
        result.messages.append(f"link: backup at {backup.name}")

    bridge = _attempt(result, "bridge", write_bridge, config, src, source, facts, layout, exports, mapping)
    if bridge is None:
        bridge = _attempt(result, "fallback bridge", write_fallback_bridge, config, src, backup)
    if bridge is not None:
        result.files.append(bridge)

    mirrored = _attempt(result, "CommonJS mirror", write_commonjs, config, src, layout, exports, mapping)
    if mirrored:
        result.files.extend(mirrored)

    if backup is not None and bridge is not None:
        if _attempt(result, "shim", write_shim, config, src) is not None:
            result.files.append(src)
            result.messages.append(f"link: {src.name} now re-exports {bridge.name}")
        copied = _attempt(result, "backup copy", copy_backup, config, src, backup)
        if copied is not None:
            result.files.append(copied)
    else:
        result.messages.append(f"link: {src.name} left unchanged")

    _write_json(plans_dir / REPORT_FILE, build_report(facts, plan))
    return result
