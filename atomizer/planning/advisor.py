"""LLM planner: asks the configured model for a module plan, validates the answer."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..analysis.facts import Facts, FactsIndex
from ..config import AtomizerConfig
from ..errors import LLMError, PlanSchemaError
from ..llm_client import call_chat, get_api_key, make_client
from ..paths import ORIGINAL_SLUG, atomic_write_text
from .plan_model import Plan, validate_plan

RAW_FILE = "plan.raw.json"

SYSTEM_PROMPT = (
    "You split one large JavaScript file into modules. Group functions by how they "
    "work together; strong caller/callee stickiness; avoid tiny modules. Reply with "
    "strict JSON only, no prose. You may reply with "
    '{"needs": ["functions", "calls", "imports"]} to request feature packs, or with '
    '{"modules": [{"name": "...", "slug": "...", "functions": ["f0000", ...]}]} '
    "for the final plan."
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.S)

BASE_PACKS = ("functions", "calls", "imports")


@dataclass
class AdvisorOutcome:
    plan: Plan
    rounds: int
    llm_calls: int
    messages: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------


def available_packs(config: AtomizerConfig) -> List[str]:
    packs = list(BASE_PACKS)
    if config.llm.send_source_text:
        packs.append("source")
    return packs


def _constraints(facts: Facts, config: AtomizerConfig) -> Dict[str, Any]:
    return {
        "maxFiles": config.max_files,
        "minClusterSize": config.min_cluster_size,
        "nonMoveable": [f.id for f in facts.functions if not f.moveable],
        "rules": [
            "every function id appears in exactly one module",
            f"all nonMoveable ids form one module with slug '{ORIGINAL_SLUG}'",
            "no other module may use that slug",
            "slugs are short lowercase file names without extension",
        ],
    }


def initial_request(index: FactsIndex, facts: Facts, config: AtomizerConfig) -> str:
    payload = {
        "index": index.to_dict(),
        "constraints": _constraints(facts, config),
        "availablePacks": available_packs(config),
    }
    return json.dumps(payload)


def feature_pack(kind: str, facts: Facts, source_text: Optional[str]) -> Any:
    if kind == "functions":
        return [
            {
                "id": f.id,
                "name": f.name,
                "size": f.size,
                "exported": f.exported,
                "moveable": f.moveable,
            }
            for f in facts.functions
        ]
    if kind == "calls":
        return [c.to_dict() for c in facts.calls]
    if kind == "imports":
        return [i.to_dict() for i in facts.imports]
    if kind == "source":
        return source_text or ""
    raise KeyError(kind)


# ---------------------------------------------------------------------------
# Response handling
# ---------------------------------------------------------------------------


def parse_reply(text: str) -> Any:
    """Decode a JSON reply, tolerating a surrounding markdown code fence."""
    body = text.strip()
    m = _FENCE_RE.match(body)
    if m:
        body = m.group(1)
    try:
        return json.loads(body)
    except ValueError as exc:
        raise PlanSchemaError(f"LLM reply is not valid JSON: {exc}") from exc


def requested_needs(doc: Any) -> Optional[List[str]]:
    if isinstance(doc, dict) and "modules" not in doc and isinstance(doc.get("needs"), list):
        return [str(n) for n in doc["needs"]]
    return None


def _write_audit(plans_dir: Path, audit: Dict[str, Any]) -> None:
    atomic_write_text(plans_dir / RAW_FILE, json.dumps(audit, indent=2) + "\n")


class PlanAdvisor:
    """One LLM planning session; ``calls`` counts chat requests made so far."""

    def __init__(
        self,
        facts: Facts,
        index: FactsIndex,
        config: AtomizerConfig,
        plans_dir: Path,
        source_text: Optional[str] = None,
        basename: Optional[str] = None,
    ):
        self.facts = facts
        self.index = index
        self.config = config
        self.plans_dir = plans_dir
        self.source_text = source_text
        self.basename = basename
        self.calls = 0

    def advise(self) -> AdvisorOutcome:
        """Ask the LLM for a plan, answering ``{needs: [...]}`` requests for feature packs.

        Raises LLMError on transport/API failure and PlanSchemaError on an
        invalid or non-plan answer.  The request/response audit is written to
        ``plan.raw.json`` whatever the outcome.
        """
        llm = self.config.llm
        audit: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "provider": llm.provider,
            "model": llm.model_name,
            "status": "error",
            "rounds": [],
        }
        try:
            return self._converse(audit)
        except (LLMError, PlanSchemaError) as exc:
            audit["error"] = str(exc)
            raise
        finally:
            audit["llmCalls"] = self.calls
            _write_audit(self.plans_dir, audit)

    def _converse(self, audit: Dict[str, Any]) -> AdvisorOutcome:
        llm = self.config.llm
        api_key = get_api_key(llm.provider, caller="planner")
        client = make_client(llm.provider, api_key, timeout=llm.api_timeout, base_url=llm.endpoint_url)
        messages = [
            {"role": "user", "content": initial_request(self.index, self.facts, self.config)}
        ]
        packs = available_packs(self.config)
        rounds = max(1, llm.max_rounds)
        for round_no in range(1, rounds + 1):
            entry: Dict[str, Any] = {"request": messages[-1]["content"]}
            audit["rounds"].append(entry)
            self.calls += 1
            reply = call_chat(
                client,
                llm.provider,
                llm.model_name,
                llm.max_tokens,
                llm.temperature,
                SYSTEM_PROMPT,
                messages,
                timeout=llm.api_timeout,
                caller="planner",
            )
            entry["body"] = reply
            doc = parse_reply(reply)
            needs = requested_needs(doc)
            if needs is None:
                plan = Plan.from_json(doc)
                validate_plan(plan, self.facts.functions, self.config.max_files, self.basename)
                audit["status"] = "ok"
                return AdvisorOutcome(
                    plan=plan,
                    rounds=round_no,
                    llm_calls=self.calls,
                    messages=[f"plan: LLM plan accepted after {round_no} round(s)"],
                )
            if round_no == rounds:
                break
            unknown = [n for n in needs if n not in packs]
            if unknown:
                raise PlanSchemaError(f"LLM requested unavailable feature packs: {unknown}")
            answer = {n: feature_pack(n, self.facts, self.source_text) for n in needs}
            messages.append({"role": "assistant", "content": reply})
            messages.append({"role": "user", "content": json.dumps(answer)})
        raise PlanSchemaError(f"LLM still requesting feature packs after {rounds} round(s)")
