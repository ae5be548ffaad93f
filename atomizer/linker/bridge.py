"""Bridge, shim and fallback texts written next to the source file."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from ..paths import SHIM_MARKER

BRIDGE_COMMENT = "// re-exports generated by atomizer"
FALLBACK_COMMENT = "// Fallback bridge generated by atomizer"
EXPORT_NAMES_FILE = "export-names.json"

_OPAQUE_RE = re.compile(r"^f\d{3,}$")
_DIRECTIVE_RE = re.compile(r"""^(['"])[^'"]*\1;?$""")


def is_opaque(name: str) -> bool:
    """Generated-looking names such as ``f0012`` get a readable public alias."""
    return bool(_OPAQUE_RE.match(name))


def to_camel(slug: str) -> str:
    """``"data-utils"`` → ``"dataUtils"``."""
    parts = [p for p in re.split(r"[-_.\s]+", slug) if p]
    if not parts:
        return "module"
    head = parts[0].lower()
    camel = head + "".join(p[:1].upper() + p[1:].lower() for p in parts[1:])
    if not re.match(r"^[A-Za-z_$]", camel):
        camel = "m" + camel
    return re.sub(r"[^\w$]", "", camel)


def public_names(exports: List[Tuple[str, List[str]]]) -> Dict[str, str]:
    """Map every exported name to its public name.

    *exports* is ``[(slug, names), ...]`` in plan order.  Ordinary names keep
    themselves; opaque ones become ``<camelSlug><n>`` with *n* counting per
    module.  Collisions get a numeric suffix starting at 2.
    """
    mapping: Dict[str, str] = {}
    taken = {name for _, names in exports for name in names if not is_opaque(name)}
    for _, names in exports:
        for name in names:
            if not is_opaque(name):
                mapping[name] = name
    for slug, names in exports:
        counter = 0
        for name in names:
            if not is_opaque(name):
                continue
            counter += 1
            base = f"{to_camel(slug)}{counter}"
            alias, n = base, 2
            while alias in taken:
                alias, n = f"{base}{n}", n + 1
            taken.add(alias)
            mapping[name] = alias
    return mapping


def leading_lines(source: str, stop_offset: Optional[int] = None) -> List[str]:
    """Header comments, directives and blank lines at the top of *source*.

    Collection stops at the first line of code, so module state is never
    copied into the bridge, and at the line holding *stop_offset* (the first
    function).
    """
    lines: List[str] = []
    pos = 0
    in_block = False
    for line in source.splitlines(keepends=True):
        if stop_offset is not None and pos + len(line) > stop_offset:
            break
        stripped = line.rstrip("\r\n")
        body = stripped.strip()
        if in_block:
            in_block = "*/" not in body
        elif body.startswith("/*"):
            if "*/" not in body[2:]:
                in_block = True
            elif not body.endswith("*/"):
                break
        elif body and not body.startswith("//") and not _DIRECTIVE_RE.match(body):
            break
        lines.append(stripped)
        pos += len(line)
    while lines and not lines[-1].strip():
        lines.pop()
    return lines


def import_clause(names: List[str], mapping: Dict[str, str]) -> str:
    parts = []
    for name in names:
        pub = mapping.get(name, name)
        parts.append(name if pub == name else f"{name} as {pub}")
    return "{ " + ", ".join(parts) + " }"


def render_bridge(
    banner: str,
    imports: List[Tuple[str, List[str]]],
    mapping: Dict[str, str],
    preserved: List[str],
) -> str:
    """ESM bridge: import every module's names, then re-export the public ones.

    *imports* is ``[(relative specifier, names), ...]``.
    """
    out = [banner, ""]
    for rel, names in imports:
        if names:
            out.append(f"import {import_clause(names, mapping)} from '{rel}';")
    out.append("")
    if preserved and preserved[0].strip() == banner.strip():
        preserved = preserved[1:]
    while preserved and not preserved[0].strip():
        preserved = preserved[1:]
    if preserved:
        out.extend(preserved)
        out.append("")
    out.append(BRIDGE_COMMENT)
    publics = sorted(set(mapping[n] for _, names in imports for n in names))
    out.append("export { " + ", ".join(publics) + " };")
    return "\n".join(out) + "\n"


def render_shim(banner: str, bridge_filename: str) -> str:
    return f"{banner}\n\n{SHIM_MARKER}\nexport * from './{bridge_filename}';\n"


def render_fallback_bridge(banner: str, target: str) -> str:
    """Minimal bridge used when the full bridge cannot be built."""
    return f"{banner}\n\n{FALLBACK_COMMENT}\nexport * from '{target}';\n"
