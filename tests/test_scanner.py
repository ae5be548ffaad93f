"""Tests for atomizer.analysis.scanner."""

from atomizer.analysis.scanner import (
    BraceLexer,
    find_balanced_end,
    is_balanced,
    matching_brace_end,
    repair_slice,
    validate_end,
)


# ---------------------------------------------------------------------------
# BraceLexer / is_balanced
# ---------------------------------------------------------------------------


def test_plain_braces_balanced():
    text = "function a() { if (x) { y(); } }"
    assert is_balanced(text, 0, len(text))
    assert not is_balanced(text, 0, len(text) - 1)


def test_braces_in_strings_ignored():
    text = "function a() { return '}' + \"{\"; }"
    assert is_balanced(text, 0, len(text))


def test_braces_in_comments_ignored():
    text = "function a() { // }\n /* { */ return 1; }"
    assert is_balanced(text, 0, len(text))


def test_template_interpolation_counts_braces():
    text = "function a(o) { return `x ${o[{k: 1}.k]} }`; }"
    assert is_balanced(text, 0, len(text))


def test_unterminated_template_is_unbalanced():
    text = "function a() { return `oops }"
    assert not is_balanced(text, 0, len(text))


def test_surplus_close_goes_negative():
    lexer = BraceLexer("} {")
    lexer.advance_to(3)
    assert lexer.went_negative
    assert not lexer.balanced()


def test_escaped_quote_inside_string():
    text = "f('it\\'s {') { }"
    assert is_balanced(text, 0, len(text))


# ---------------------------------------------------------------------------
# find_balanced_end / matching_brace_end
# ---------------------------------------------------------------------------


def test_find_balanced_end_extends():
    text = "function a() { b(); }\nfunction c() {}"
    assert find_balanced_end(text, 0, 14, len(text)) == text.index("}") + 1


def test_find_balanced_end_gives_up_on_negative():
    text = "x } y"
    assert find_balanced_end(text, 0, text.index("}") + 1, len(text)) is None


def test_matching_brace_end():
    text = "const f = (a) => { return { a }; };"
    assert matching_brace_end(text, 0) == text.rindex("}") + 1


def test_matching_brace_end_without_brace():
    assert matching_brace_end("const f = a => a;", 0) is None


# ---------------------------------------------------------------------------
# validate_end
# ---------------------------------------------------------------------------


def test_validate_end_accepts_balanced_span():
    text = "function a() { return 1; }\n"
    assert validate_end(text, 0, 26) == 26


def test_validate_end_extends_short_span():
    text = "function a() { return {x: 1}; }\nfunction b() {}"
    end = text.index("\n")
    assert validate_end(text, 0, 20) == end


def test_validate_end_uses_reparse_when_lexer_cannot_balance():
    # The quote inside the regex literal keeps the lexer from ever balancing.
    text = "function a(s) { return /'/.test(s); }\nconst z = 1;\n"
    short = text.index(";") + 1
    full = text.index("}") + 1
    assert validate_end(text, 0, short) == short
    accepted = validate_end(text, 0, short, reparse=lambda s: s.endswith("); }"))
    assert accepted == full


def test_validate_end_falls_back_to_reported_end():
    text = "function a() { {"
    assert validate_end(text, 0, 14) == 14


# ---------------------------------------------------------------------------
# repair_slice
# ---------------------------------------------------------------------------


def test_repair_ok():
    text = "function a() {}\n"
    r = repair_slice(text, 0, 15)
    assert (r.start, r.end, r.method) == (0, 15, "ok")
    assert not r.degraded


def test_repair_forward():
    text = "function a() { b(); }\nfunction c() {}\n"
    r = repair_slice(text, 0, 12 + 3)
    assert r.method == "forward"
    assert text[r.start : r.end] == "function a() { b(); }"


def test_repair_backward_pulls_start_to_line():
    text = "function a() {\n  return 1;\n}\n"
    start = text.index("return")
    r = repair_slice(text, start, len(text) - 1)
    assert r.method == "backward"
    assert r.start == 0
    assert text[r.start : r.end].endswith("}")


def test_repair_snaps_to_next_declaration():
    text = "function a() { if (x) {\n  y();\nfunction b() { return 2; }\n"
    r = repair_slice(text, 0, 20)
    assert r.method == "snap"
    assert r.degraded
    assert "function b" not in text[r.start : r.end]


def test_repair_eof():
    text = "function a() { {"
    r = repair_slice(text, 0, 14)
    assert r.method == "eof"
    assert r.end == len(text)


def test_repair_clamps_out_of_range_span():
    text = "function a() {}"
    r = repair_slice(text, 0, 999)
    assert r.end == len(text)
    assert r.method == "ok"


def test_repair_keeps_span_that_reparses():
    # The regex literal fools the lexer; the re-parse tier accepts the span as is.
    text = "function openOf(s){ return s.split(/\\{/).length; }\nfunction c() {}\n"
    end = text.index("\n")
    r = repair_slice(text, 0, end, reparse=lambda s: s == text[:end])
    assert (r.start, r.end, r.method) == (0, end, "ok")


def test_repair_forward_uses_reparse_before_snap():
    text = "function a(s){ return /\\{/.test(s); }\nfunction b() {}\n"
    end = text.index("\n")
    r = repair_slice(text, 0, end - 2, reparse=lambda s: s == text[:end])
    assert r.method == "forward"
    assert r.end == end
