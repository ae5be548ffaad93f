"""Drive the analyze → plan → write → link pipeline and yield progress messages."""

import json
import logging
from typing import Generator, Iterable, Optional

from . import paths
from .analysis.analyzer import run_analyzer
from .config import AtomizerConfig, load_config
from .errors import AtomizerError
from .linker.runner import run_linker
from .planning.runner import run_planner
from .stats import RunStats
from .writer import run_writer

logger = logging.getLogger(__name__)

STAGES = ("analyze", "plan", "write", "link")

WARNINGS_FILE = "warnings.json"


def _analyze(config: AtomizerConfig, stats: RunStats):
    result = run_analyzer(config)
    facts = result.facts
    stats.functions_total = len(facts.functions)
    stats.functions_moveable = sum(1 for f in facts.functions if f.moveable)
    stats.calls_total = len(facts.calls)
    stats.imports_total = len(facts.imports)
    stats.used_fallback_scanner = result.used_fallback
    return result


def _plan(config: AtomizerConfig, stats: RunStats):
    result = run_planner(config)
    stats.plan_source = result.source
    stats.module_sizes = {m.slug: len(m.functions) for m in result.plan.modules}
    stats.llm_calls += result.llm_calls
    return result


def _write(config: AtomizerConfig, stats: RunStats):
    result = run_writer(config)
    stats.files_written.extend(str(p) for p in result.files.values())
    return result


def _link(config: AtomizerConfig, stats: RunStats):
    result = run_linker(config)
    stats.import_source = result.import_source
    stats.imports_inserted = result.imports_inserted
    stats.files_written.extend(str(p) for p in result.files)
    return result


_RUNNERS = {"analyze": _analyze, "plan": _plan, "write": _write, "link": _link}


def persist_warnings(config: AtomizerConfig, stats: RunStats) -> None:
    """Write ``<plans>/warnings.json`` with every warning recorded so far."""
    doc = [w.to_dict() for w in stats.warnings]
    paths.atomic_write_text(paths.plans_dir(config) / WARNINGS_FILE, json.dumps(doc, indent=2) + "\n")


def run_pipeline(
    config: Optional[AtomizerConfig] = None,
    stages: Iterable[str] = STAGES,
    stats: Optional[RunStats] = None,
) -> Generator[str, None, None]:
    """Run *stages* in order and yield each stage's messages.

    Stages communicate only through the persisted artifacts, so any suffix of
    the pipeline can be rerun on its own.  Fatal errors propagate; the
    warnings gathered up to that point are still written.
    """
    if config is None:
        config = load_config()
    _stats = stats if stats is not None else RunStats()
    stages = list(stages)
    unknown = [s for s in stages if s not in _RUNNERS]
    if unknown:
        raise AtomizerError(f"unknown stage(s): {', '.join(unknown)}")

    try:
        for stage in stages:
            logger.debug("starting stage %s", stage)
            result = _RUNNERS[stage](config, _stats)
            _stats.warnings.extend(result.warnings)
            yield from result.messages
    finally:
        persist_warnings(config, _stats)
