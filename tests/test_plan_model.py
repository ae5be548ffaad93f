"""Tests for atomizer.planning.plan_model."""

import pytest

from atomizer.errors import ArtifactError, PlanSchemaError
from atomizer.planning.plan_model import (
    ModuleSpec,
    Plan,
    read_plan,
    slugify,
    validate_plan,
    write_plan,
)

from .helpers import _record

FUNCS = [
    _record("f0000", "a", 0, 10),
    _record("f0001", "b", 10, 20),
    _record("f0002", "c", 20, 30, moveable=False),
]


def _plan(*modules) -> Plan:
    return Plan(modules=[ModuleSpec(name=s, slug=s, functions=list(f)) for s, f in modules])


# ---------------------------------------------------------------------------
# slugify
# ---------------------------------------------------------------------------


def test_slugify():
    assert slugify("Data Utils") == "data-utils"
    assert slugify("  __init__ ") == "init"
    assert slugify("$$$") == ""


# ---------------------------------------------------------------------------
# from_json
# ---------------------------------------------------------------------------


def test_from_json_object_and_bare_list():
    doc = [{"name": "Core", "slug": "core", "functions": ["f0000"]}]
    assert Plan.from_json({"modules": doc}) == Plan.from_json(doc)
    assert Plan.from_json(doc).modules[0].slug == "core"


def test_from_json_derives_slug_from_name():
    plan = Plan.from_json([{"name": "String Helpers", "functions": []}, {"functions": []}])
    assert [m.slug for m in plan.modules] == ["string-helpers", "mod2"]


def test_from_json_rejects_missing_modules():
    with pytest.raises(PlanSchemaError, match="modules"):
        Plan.from_json({"needs": ["calls"]})


def test_from_json_rejects_non_list_functions():
    with pytest.raises(PlanSchemaError, match="functions"):
        Plan.from_json([{"slug": "a", "functions": "f0000"}])


def test_from_json_rejects_path_like_slug():
    with pytest.raises(PlanSchemaError, match="valid file name"):
        Plan.from_json([{"slug": "../evil", "functions": []}])


def test_from_json_rejects_duplicate_slug_case_insensitive():
    with pytest.raises(PlanSchemaError, match="duplicate"):
        Plan.from_json([{"slug": "a", "functions": []}, {"slug": "A", "functions": []}])


def test_from_json_rejects_duplicate_id():
    with pytest.raises(PlanSchemaError, match="more than one module"):
        Plan.from_json([{"slug": "a", "functions": ["f1"]}, {"slug": "b", "functions": ["f1"]}])


def test_module_of_and_original():
    plan = _plan(("original", ["f0002"]), ("core", ["f0000", "f0001"]))
    assert plan.module_of() == {"f0002": "original", "f0000": "core", "f0001": "core"}
    assert plan.original().slug == "original"
    assert _plan(("core", [])).original() is None


# ---------------------------------------------------------------------------
# validate_plan
# ---------------------------------------------------------------------------


def test_validate_accepts_good_plan():
    validate_plan(_plan(("original", ["f0002"]), ("core", ["f0000", "f0001"])), FUNCS, 2, "big")


def test_validate_unknown_id():
    with pytest.raises(PlanSchemaError, match="unknown"):
        validate_plan(_plan(("original", ["f0002"]), ("core", ["f0000", "f0001", "f9"])), FUNCS, 5)


def test_validate_unassigned_id():
    with pytest.raises(PlanSchemaError, match="unassigned"):
        validate_plan(_plan(("original", ["f0002"]), ("core", ["f0000"])), FUNCS, 5)


def test_validate_too_many_modules():
    plan = _plan(("original", ["f0002"]), ("a", ["f0000"]), ("b", ["f0001"]))
    with pytest.raises(PlanSchemaError, match="max_files"):
        validate_plan(plan, FUNCS, 2)


def test_validate_requires_original_for_non_moveable():
    with pytest.raises(PlanSchemaError, match="no 'original' module"):
        validate_plan(_plan(("core", ["f0000", "f0001", "f0002"])), FUNCS, 5)


def test_validate_original_must_equal_non_moveable_set():
    plan = _plan(("original", ["f0002", "f0000"]), ("core", ["f0001"]))
    with pytest.raises(PlanSchemaError, match="exactly the non-moveable"):
        validate_plan(plan, FUNCS, 5)


def test_validate_basename_collision():
    plan = _plan(("original", ["f0002"]), ("big", ["f0000", "f0001"]))
    with pytest.raises(PlanSchemaError, match="collides"):
        validate_plan(plan, FUNCS, 5, "big")


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def test_write_then_read(tmp_path):
    plan = _plan(("original", ["f0002"]), ("core", ["f0000", "f0001"]))
    write_plan(tmp_path, plan)
    assert read_plan(tmp_path) == plan


def test_read_plan_missing(tmp_path):
    with pytest.raises(ArtifactError, match="run plan first"):
        read_plan(tmp_path)


def test_read_plan_bad_json(tmp_path):
    (tmp_path / "plan.json").write_text("{", encoding="utf-8")
    with pytest.raises(ArtifactError, match="cannot read"):
        read_plan(tmp_path)
