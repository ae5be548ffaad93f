"""Tests for atomizer.writer."""

from atomizer.analysis.facts import Facts
from atomizer.planning.plan_model import ModuleSpec
from atomizer.writer import (
    DEBUG_DIR,
    export_names,
    is_default_export,
    is_exportable,
    render_module,
    run_writer,
    slice_functions,
    strip_inline_exports,
)

from .helpers import A_FUNCS, B_FUNCS, SCENARIO_A, SCENARIO_B, _make_config, _plan, _record, _stage


def _out(tmp_path, name):
    return (tmp_path / "out" / "big.atomized" / name).read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# Export lists
# ---------------------------------------------------------------------------


def test_is_exportable():
    assert is_exportable("parseRow")
    assert is_exportable("$el")
    assert not is_exportable("<anonymous>")
    assert not is_exportable("default")


def test_export_names_dedupes_and_skips_invalid():
    recs = [_record("f0", "a", 0, 1), _record("f1", "<anonymous>", 1, 2), _record("f2", "a", 2, 3)]
    assert export_names(recs) == ["a"]


def test_strip_inline_exports():
    text, stripped = strip_inline_exports(SCENARIO_A, A_FUNCS)
    assert text == "function a(x){return x+1}\nfunction b(y){return a(y)}\n"
    assert stripped == {"a", "b"}


def test_strip_inline_exports_leaves_clause_exports():
    source = "function a(){}\nexport { a };\n"
    rec = _record("f0000", "a", 0, 14, exported=True)
    assert strip_inline_exports(source, [rec]) == (source, set())


def test_is_default_export():
    source = "export default function main(){return 1}\n"
    assert is_default_export(source, _record("f0000", "main", 0, 41, exported=True))
    assert not is_default_export(SCENARIO_A, A_FUNCS[0])


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def test_render_module_layout():
    text = render_module("'use strict';", ["function a(){}", "function b(){}"], ["a", "b"])
    assert text == (
        "'use strict';\n"
        "\n"
        "// imports will be added by linker\n"
        "\n"
        "function a(){}\n"
        "\n"
        "function b(){}\n"
        "\n"
        "// exports\n"
        "export { a, b };\n"
    )


def test_render_module_without_exportable_names():
    text = render_module("'use strict';", ["x"], [])
    assert "export" not in text


def test_slice_snapped_when_unbalanced():
    source = "function a(){ if (x) {\nfunction b(){ return 2 }\n"
    warnings = []
    module = ModuleSpec("a", "a", ["f0000"])
    slices = slice_functions(source, module, [_record("f0000", "a", 0, 22)], warnings)
    assert slices == ["function a(){ if (x) {"]
    assert [w.kind for w in warnings] == ["SliceRepairFailure"]
    assert "snap" in warnings[0].message


def test_slice_extended_forward_without_warning():
    warnings = []
    module = ModuleSpec("a", "a", ["f0000"])
    slices = slice_functions(SCENARIO_A, module, [_record("f0000", "a", 7, 22)], warnings)
    assert slices == ["function a(x){return x+1}"]
    assert warnings == []


REGEX_SOURCE = (
    "function openOf(s){ return s.split(/\\{/).length; }\n"
    "function closeOf(s){ return s.replace(/\\}$/, ''); }\n"
)


def _regex_records():
    first, second = REGEX_SOURCE.splitlines()
    return [
        _record("f0000", "openOf", 0, len(first)),
        _record("f0001", "closeOf", len(first) + 1, len(first) + 1 + len(second)),
    ]


def test_slice_kept_when_span_parses_despite_regex_braces():
    warnings = []
    module = ModuleSpec("m", "m", ["f0000", "f0001"])
    slices = slice_functions(REGEX_SOURCE, module, _regex_records(), warnings)
    assert slices == REGEX_SOURCE.splitlines()
    assert warnings == []


def test_regex_braces_do_not_leak_into_neighbour_module(tmp_path):
    cfg = _make_config(tmp_path, source=REGEX_SOURCE)
    _stage(cfg, Facts("big.js", _regex_records()), _plan(("openof", ["f0000"]), ("closeof", ["f0001"])))
    result = run_writer(cfg)
    assert "closeOf" not in _out(tmp_path, "openof.js")
    assert _out(tmp_path, "closeof.js").count("function closeOf") == 1
    assert result.warnings == []


# ---------------------------------------------------------------------------
# run_writer
# ---------------------------------------------------------------------------


def test_two_module_split(tmp_path):
    cfg = _make_config(tmp_path)
    _stage(cfg, Facts("big.js", A_FUNCS), _plan(("a", ["f0000"]), ("b", ["f0001"])))
    result = run_writer(cfg)
    assert sorted(result.files) == ["a", "b"]
    b = _out(tmp_path, "b.js")
    assert "function b(y){return a(y)}" in b
    assert "function a(" not in b
    assert b.rstrip().endswith("export { b };")
    assert result.warnings == []


def test_original_module_keeps_source_and_exports_explicitly(tmp_path):
    cfg = _make_config(tmp_path, source=SCENARIO_B)
    _stage(cfg, Facts("big.js", B_FUNCS), _plan(("original", ["f0000"]), ("hidden", ["f0001"])))
    run_writer(cfg)
    original = _out(tmp_path, "big.js")
    assert original.startswith("'use strict';\n\nfunction a(){return x+1}\n")
    assert "export function a" not in original
    assert original.rstrip().endswith("export { a };")
    assert _out(tmp_path, "hidden.js").count("function hidden(){return 2}") == 1


def test_original_module_does_not_repeat_clause_export(tmp_path):
    source = "function a(){return x}\nexport { a };\nfunction b(){return 1}\n"
    cfg = _make_config(tmp_path, source=source)
    funcs = [_record("f0000", "a", 0, 22, moveable=False, exported=True), _record("f0001", "b", 37, 59)]
    _stage(cfg, Facts("big.js", funcs), _plan(("original", ["f0000"]), ("b", ["f0001"])))
    run_writer(cfg)
    original = _out(tmp_path, "big.js")
    assert original.count("export { a }") == 1
    assert "explicit exports" not in original


def test_empty_module_is_not_written(tmp_path):
    cfg = _make_config(tmp_path)
    _stage(cfg, Facts("big.js", A_FUNCS), _plan(("a", ["f0000", "f0001"]), ("empty", [])))
    result = run_writer(cfg)
    assert list(result.files) == ["a"]
    assert not (tmp_path / "out" / "big.atomized" / "empty.js").exists()


def test_unknown_id_is_warned_and_skipped(tmp_path):
    cfg = _make_config(tmp_path)
    _stage(cfg, Facts("big.js", A_FUNCS), _plan(("a", ["f0000", "f0001", "f0099"])))
    result = run_writer(cfg)
    assert [w.kind for w in result.warnings] == ["SliceRepairFailure"]
    assert "f0099" in result.warnings[0].message


def test_debug_copies(tmp_path):
    cfg = _make_config(tmp_path, debug_output_enabled=True)
    _stage(cfg, Facts("big.js", A_FUNCS), _plan(("a", ["f0000"]), ("b", ["f0001"])))
    run_writer(cfg)
    assert sorted(p.name for p in (tmp_path / DEBUG_DIR).iterdir()) == ["a.js", "b.js"]


def test_shim_source_is_sliced_from_backup(tmp_path):
    cfg = _make_config(tmp_path, source="// Shim re-exporting atomized bridge generated by atomizer\n")
    (tmp_path / "src" / "big_old.js").write_text(SCENARIO_A, encoding="utf-8")
    _stage(cfg, Facts("big.js", A_FUNCS), _plan(("a", ["f0000"]), ("b", ["f0001"])))
    result = run_writer(cfg)
    assert "function a(x){return x+1}" in _out(tmp_path, "a.js")
    assert any("big_old.js" in m for m in result.messages)
