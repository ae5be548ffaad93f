from __future__ import annotations

from pathlib import Path

from atomizer import paths
from atomizer.analysis.facts import CallEdge, Facts, FunctionRecord, write_facts
from atomizer.config import AtomizerConfig
from atomizer.planning.plan_model import ModuleSpec, Plan, write_plan

SCENARIO_A = "export function a(x){return x+1}\nexport function b(y){return a(y)}\n"
SCENARIO_B = "export function a(){return x+1}\nfunction hidden(){return 2}\n"


def _make_config(tmp_path: Path, source: str = SCENARIO_A, name: str = "big.js", **overrides) -> AtomizerConfig:
    """Config rooted at *tmp_path* with *source* written to ``src/<name>``."""
    src_dir = tmp_path / "src"
    src_dir.mkdir(exist_ok=True)
    (src_dir / name).write_text(source, encoding="utf-8", newline="")
    cfg = AtomizerConfig(source_path=f"src/{name}", project_root=tmp_path)
    for key, val in overrides.items():
        setattr(cfg, key, val)
    return cfg


def _record(fid: str, name: str, start: int, end: int, moveable: bool = True, exported: bool = False) -> FunctionRecord:
    return FunctionRecord(id=fid, name=name, start=start, end=end, exported=exported, moveable=moveable)


def _facts(*records: FunctionRecord, calls=()) -> Facts:
    return Facts(
        source="big.js",
        functions=list(records),
        calls=[CallEdge(caller, callee) for caller, callee in calls],
    )


def _plan(*modules) -> Plan:
    """``_plan(("original", ["f0001"]), ("a", ["f0000"]))``."""
    return Plan(modules=[ModuleSpec(name=slug, slug=slug, functions=list(ids)) for slug, ids in modules])


def _stage(cfg: AtomizerConfig, facts: Facts, plan: Plan) -> None:
    """Persist *facts* and *plan* where the later stages look for them."""
    write_facts(paths.facts_dir(cfg), facts)
    write_plan(paths.plans_dir(cfg), plan)


# Spans of SCENARIO_A / SCENARIO_B functions, ``export`` keyword excluded.
A_FUNCS = [
    FunctionRecord("f0000", "a", 7, 32, exported=True, moveable=True, params=["x"]),
    FunctionRecord("f0001", "b", 40, 66, exported=True, moveable=True, params=["y"]),
]
B_FUNCS = [
    FunctionRecord("f0000", "a", 7, 31, exported=True, moveable=False, free=["x"]),
    FunctionRecord("f0001", "hidden", 32, 59, moveable=True),
]
