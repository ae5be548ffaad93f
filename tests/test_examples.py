"""Full-pipeline example tests.

Each example directory holds an ``input.js`` monolith and an
``expected.json`` naming the functions that must stay in the original
module and the public names the bridge must re-export.  The LLM is never
enabled, so the suite runs offline.
"""

from __future__ import annotations

import json
import re
from pathlib import Path

import pytest

from atomizer import paths
from atomizer.engine import run_pipeline

from .helpers import _make_config

EXAMPLES = Path(__file__).parent.parent / "examples"


def _load(name: str) -> tuple[str, dict]:
    base = EXAMPLES / name
    source = (base / "input.js").read_text(encoding="utf-8")
    expected = json.loads((base / "expected.json").read_text(encoding="utf-8"))
    return source, expected


def _plans_json(tmp_path: Path, name: str):
    return json.loads((tmp_path / "plans" / name).read_text(encoding="utf-8"))


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    monkeypatch.delenv(paths.FACTS_DIR_ENV, raising=False)
    monkeypatch.delenv(paths.PLANS_DIR_ENV, raising=False)


@pytest.mark.parametrize("name", sorted(p.name for p in EXAMPLES.iterdir() if p.is_dir()))
def test_example(tmp_path, name):
    source, expected = _load(name)
    cfg = _make_config(tmp_path, source=source, **expected.get("config", {}))
    list(run_pipeline(cfg))

    report = _plans_json(tmp_path, "report.json")
    kept = sorted(r["name"] for r in report if r["module"] == "original")
    assert kept == expected["original"]
    assert sorted(_plans_json(tmp_path, "export-names.json")) == expected["exports"]
    assert _plans_json(tmp_path, "warnings.json") == []

    src = tmp_path / "src" / "big.js"
    assert paths.looks_like_shim(src.read_text(encoding="utf-8"))
    assert (tmp_path / "src" / "big_old.js").read_text(encoding="utf-8") == source

    for mirrored in (tmp_path / "out_cjs").rglob("*.cjs"):
        assert not re.search(r"^\s*export\b", mirrored.read_text(encoding="utf-8"), re.M), mirrored.name
