"""Tests for atomizer.linker.cjs."""

from atomizer.linker.cjs import render_cjs_bridge, require_specifier, to_commonjs


def test_require_specifier():
    assert require_specifier("./a.js") == "./a.cjs"
    assert require_specifier("../x/b.js") == "../x/b.cjs"
    assert require_specifier("lodash") == "lodash"
    assert require_specifier("./c.mjs") == "./c.mjs"


def test_module_with_import_and_export_list():
    text = (
        "'use strict';\n"
        "import { a } from './a.js';\n"
        "\n"
        "function b(y){return a(y)}\n"
        "\n"
        "// exports\n"
        "export { b };\n"
    )
    body, names = to_commonjs(text)
    assert names == ["b"]
    assert body == (
        "'use strict';\n"
        "const { a } = require('./a.cjs');\n"
        "\n"
        "function b(y){return a(y)}\n"
        "\n"
        "// exports\n"
        "\n"
        "module.exports = { b };\n"
    )


def test_inline_exports_are_stripped_and_collected():
    body, names = to_commonjs("export function a(){}\nexport const K = 1;\nexport async function go(){}\n")
    assert names == ["a", "K", "go"]
    assert "export" not in body.replace("module.exports", "")
    assert body.startswith("function a(){}\nconst K = 1;\nasync function go(){}\n")


def test_aliased_import_becomes_renaming_destructure():
    body, _ = to_commonjs("import { a as b, c } from './a.js';\n")
    assert body.startswith("const { a: b, c } = require('./a.cjs');\n")


def test_re_export_from_is_left_alone():
    body, names = to_commonjs("export { a } from './a.js';\n")
    assert body.startswith("export { a } from './a.js';\n")
    assert names == []


def test_names_are_deduplicated():
    _, names = to_commonjs("export function a(){}\nexport { a };\n")
    assert names == ["a"]


def test_render_cjs_bridge():
    text = render_cjs_bridge(
        "'use strict';",
        [("./big.atomized/a.cjs", ["a"]), ("./big.atomized/b.cjs", ["f0012"])],
        {"a": "a", "f0012": "b1"},
    )
    assert text == (
        "'use strict';\n"
        "\n"
        "const { a } = require('./big.atomized/a.cjs');\n"
        "const { f0012 } = require('./big.atomized/b.cjs');\n"
        "\n"
        "module.exports = { a, b1: f0012 };\n"
    )


def test_named_default_export_is_stripped():
    text = (
        "export default function main(x){return twice(x)}\n"
        "export function twice(y){return y*2}\n"
    )
    body, names = to_commonjs(text)
    assert names == ["main", "twice"]
    assert body == (
        "function main(x){return twice(x)}\n"
        "function twice(y){return y*2}\n"
        "\n"
        "module.exports = { main, twice, default: main };\n"
    )


def test_default_class_and_generator():
    assert to_commonjs("export default class Box {}\n")[0].startswith("class Box {}\n")
    body, names = to_commonjs("export default async function* feed(){}\n")
    assert body.startswith("async function* feed(){}\n")
    assert names == ["feed"]


def test_anonymous_default_export_is_bound():
    body, names = to_commonjs("export default function (x){return x}\n")
    assert names == []
    assert body == (
        "const _default = function (x){return x}\n"
        "\n"
        "module.exports = { default: _default };\n"
    )


def test_default_export_of_identifier():
    body, _ = to_commonjs("function run(){}\nexport default run;\n")
    assert "const _default = run;" in body
    assert body.endswith("module.exports = { default: _default };\n")
