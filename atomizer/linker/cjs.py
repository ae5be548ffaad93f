"""CommonJS mirror of the emitted ES modules."""

from __future__ import annotations

import re
from typing import Dict, List, Tuple

_NAMED_IMPORT_RE = re.compile(
    r"""^(?P<indent>[ \t]*)import\s*\{\s*(?P<names>[^}]*)\}\s*from\s*['"](?P<spec>[^'"]+)['"];?""",
    re.M,
)
_EXPORT_LIST_RE = re.compile(
    r"^[ \t]*export\s*\{\s*(?P<names>[^}]*)\}(?![ \t]*from\b)[ \t]*;?[ \t]*\r?\n?", re.M
)
_INLINE_EXPORT_RE = re.compile(
    r"^(?P<indent>[ \t]*)export\s+(?=(?:async\s+)?function\b|class\b|const\b|let\b|var\b)",
    re.M,
)
_DECLARED_RE = re.compile(
    r"(?:async\s+)?function\s*\*?\s*(?P<fn>[A-Za-z_$][\w$]*)"
    r"|(?:class|const|let|var)\s+(?P<var>[A-Za-z_$][\w$]*)"
)
_DEFAULT_EXPORT_RE = re.compile(r"^(?P<indent>[ \t]*)export\s+default\s+", re.M)
_DEFAULT_DECL_RE = re.compile(
    r"(?:async\s+)?function\b\s*\*?\s*(?P<fn>[A-Za-z_$][\w$]*)|class\s+(?P<cls>[A-Za-z_$][\w$]*)"
)
# Binding that holds an anonymous default export.
DEFAULT_BINDING = "_default"


def require_specifier(spec: str) -> str:
    """Relative ``.js`` specifiers point at the ``.cjs`` mirror."""
    if spec.startswith(".") and spec.endswith(".js"):
        return spec[: -len(".js")] + ".cjs"
    return spec


def _split_names(clause: str) -> List[str]:
    return [n.strip() for n in clause.split(",") if n.strip()]


def _destructure(clause: str) -> str:
    parts = []
    for item in _split_names(clause):
        if " as " in item:
            name, alias = (s.strip() for s in item.split(" as ", 1))
            parts.append(f"{name}: {alias}")
        else:
            parts.append(item)
    return ", ".join(parts)


def to_commonjs(text: str) -> Tuple[str, List[str]]:
    """Rewrite ES module *text* as CommonJS.

    Named imports become ``require`` destructuring, export lists and inline
    ``export`` keywords are removed, and a single ``module.exports`` object
    listing every exported name is appended.  ``export default`` in front of
    a named function or class is dropped and the name becomes the ``default``
    entry; any other default value is bound to ``_default`` first.  Returns
    ``(text, names)``.
    """
    exported: List[str] = []
    default: List[str] = []

    def _import(m: re.Match) -> str:
        spec = require_specifier(m.group("spec"))
        return f"{m.group('indent')}const {{ {_destructure(m.group('names'))} }} = require('{spec}');"

    def _export_list(m: re.Match) -> str:
        for item in _split_names(m.group("names")):
            exported.append(item.split(" as ", 1)[0].strip())
        return ""

    def _inline(m: re.Match) -> str:
        decl = _DECLARED_RE.match(m.string, m.end())
        if decl:
            exported.append(decl.group("fn") or decl.group("var"))
        return m.group("indent")

    def _default(m: re.Match) -> str:
        decl = _DEFAULT_DECL_RE.match(m.string, m.end())
        if decl:
            name = decl.group("fn") or decl.group("cls")
            exported.append(name)
            default.append(name)
            return m.group("indent")
        default.append(DEFAULT_BINDING)
        return f"{m.group('indent')}const {DEFAULT_BINDING} = "

    body = _DEFAULT_EXPORT_RE.sub(_default, text)
    body = _INLINE_EXPORT_RE.sub(_inline, body)
    body = _NAMED_IMPORT_RE.sub(_import, body)
    body = _EXPORT_LIST_RE.sub(_export_list, body)

    names: List[str] = []
    for name in exported:
        if name and name not in names:
            names.append(name)
    entries = list(names)
    if default:
        entries.append(f"default: {default[0]}")
    if not body.endswith("\n"):
        body += "\n"
    body += "\nmodule.exports = { " + ", ".join(entries) + " };\n"
    return body, names


def render_cjs_bridge(
    banner: str, requires: List[Tuple[str, List[str]]], mapping: Dict[str, str]
) -> str:
    """CommonJS bridge: require each mirrored module, export public names."""
    out = [banner, ""]
    for spec, names in requires:
        if names:
            out.append(f"const {{ {', '.join(names)} }} = require('{spec}');")
    out.append("")
    entries = []
    for name, pub in sorted(mapping.items(), key=lambda kv: kv[1]):
        entries.append(name if pub == name else f"{pub}: {name}")
    out.append("module.exports = { " + ", ".join(entries) + " };")
    return "\n".join(out) + "\n"
