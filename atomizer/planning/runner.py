"""Planner stage: LLM path first when enabled, then the heuristic fallback."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .. import paths
from ..analysis.facts import read_facts, read_index
from ..config import AtomizerConfig
from ..errors import LLMError, PlanSchemaError
from ..stats import StageWarning
from .advisor import RAW_FILE, PlanAdvisor
from .heuristic import plan_heuristic
from .plan_model import PLAN_FILE, Plan, validate_plan, write_plan

logger = logging.getLogger(__name__)


@dataclass
class PlanResult:
    """Output of :func:`run_planner`."""

    plan: Plan
    source: str  # "llm" or "heuristic"
    llm_calls: int = 0
    messages: List[str] = field(default_factory=list)
    warnings: List[StageWarning] = field(default_factory=list)


def _warn(warnings: List[StageWarning], kind: str, message: str) -> None:
    logger.warning("plan: %s", message)
    warnings.append(StageWarning("plan", kind, message))


def run_planner(config: AtomizerConfig) -> PlanResult:
    """Produce ``plan.json`` from the persisted facts.

    The LLM path never retries: any failure falls through to the heuristic
    planner, which always succeeds given valid facts.
    """
    facts_dir = paths.facts_dir(config)
    plans_dir = paths.plans_dir(config)
    index = read_index(facts_dir)
    facts = read_facts(facts_dir)
    src = paths.source_path(config)
    basename = paths.source_basename(src)

    messages: List[str] = []
    warnings: List[StageWarning] = []
    plan: Optional[Plan] = None
    source = "heuristic"
    llm_calls = 0

    if config.llm.enabled:
        source_text = None
        if config.llm.send_source_text:
            source_text, _ = paths.read_original_source(src)
        messages.append(f"plan: asking {config.llm.provider} model {config.llm.model_name}")
        advisor = PlanAdvisor(facts, index, config, plans_dir, source_text, basename)
        try:
            outcome = advisor.advise()
        except (LLMError, PlanSchemaError) as exc:
            msg = f"LLM planning failed ({exc}); using heuristic planner"
            _warn(warnings, "PlanningDegradation", msg)
            messages.append(f"plan: {msg}; see {plans_dir / RAW_FILE}")
        else:
            plan = outcome.plan
            source = "llm"
            messages.extend(outcome.messages)
        llm_calls = advisor.calls

    if plan is None:
        plan = plan_heuristic(facts.functions, config.max_files, config.min_cluster_size, basename)
        limit = config.max_files
        if len(plan.modules) > limit:
            # max_files=1 cannot hold both the original module and a moveable one.
            _warn(
                warnings,
                "PlanningDegradation",
                f"max_files={limit} is too small; writing {len(plan.modules)} modules",
            )
            limit = len(plan.modules)
        validate_plan(plan, facts.functions, limit, basename)

    write_plan(plans_dir, plan)
    messages.append(f"plan: {len(plan.modules)} modules ({source}) written to {plans_dir / PLAN_FILE}")
    return PlanResult(
        plan=plan, source=source, llm_calls=llm_calls, messages=messages, warnings=warnings
    )
