"""Plan / ModuleSpec schema, slug rules, validation, and persistence."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..analysis.facts import FunctionRecord
from ..errors import ArtifactError, PlanSchemaError
from ..paths import ORIGINAL_SLUG, atomic_write_text, read_text

PLAN_FILE = "plan.json"

# Slugs become file names: no separators, no leading dot.
_SLUG_RE = re.compile(r"^[A-Za-z0-9_$][A-Za-z0-9_$.-]*$")


def slugify(name: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to ``-``, trim hyphens."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


@dataclass
class ModuleSpec:
    name: str
    slug: str
    functions: List[str] = field(default_factory=list)

    @property
    def is_original(self) -> bool:
        return self.slug.lower() == ORIGINAL_SLUG

    def to_dict(self) -> dict:
        return {"name": self.name, "slug": self.slug, "functions": list(self.functions)}


@dataclass
class Plan:
    modules: List[ModuleSpec] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"modules": [m.to_dict() for m in self.modules]}

    def module_of(self) -> Dict[str, str]:
        """function id → module slug."""
        return {fid: m.slug for m in self.modules for fid in m.functions}

    def original(self) -> Optional[ModuleSpec]:
        for m in self.modules:
            if m.is_original:
                return m
        return None

    @classmethod
    def from_json(cls, doc) -> "Plan":
        """Build a Plan from ``{modules: [...]}`` or a bare array.

        Raises PlanSchemaError on any shape mismatch.
        """
        if isinstance(doc, dict):
            if "modules" not in doc:
                raise PlanSchemaError("plan object has no 'modules' array")
            doc = doc["modules"]
        if not isinstance(doc, list):
            raise PlanSchemaError("plan must be an array or an object with a 'modules' array")
        modules: List[ModuleSpec] = []
        seen_slugs = set()
        seen_ids = set()
        for n, raw in enumerate(doc, 1):
            if not isinstance(raw, dict):
                raise PlanSchemaError(f"module #{n} is not an object")
            fids = raw.get("functions")
            if not isinstance(fids, list) or not all(isinstance(f, str) for f in fids):
                raise PlanSchemaError(f"module #{n}: 'functions' must be a list of id strings")
            name = raw.get("name")
            slug = raw.get("slug")
            if slug is not None and not isinstance(slug, str):
                raise PlanSchemaError(f"module #{n}: 'slug' must be a string")
            if name is not None and not isinstance(name, str):
                raise PlanSchemaError(f"module #{n}: 'name' must be a string")
            slug = slug or slugify(name or "") or f"mod{n}"
            if not _SLUG_RE.match(slug):
                raise PlanSchemaError(f"module #{n}: slug {slug!r} is not a valid file name")
            if slug.lower() in seen_slugs:
                raise PlanSchemaError(f"duplicate module slug {slug!r}")
            seen_slugs.add(slug.lower())
            for fid in fids:
                if fid in seen_ids:
                    raise PlanSchemaError(f"function {fid} assigned to more than one module")
                seen_ids.add(fid)
            modules.append(ModuleSpec(name=name or slug, slug=slug, functions=list(fids)))
        return cls(modules=modules)


def validate_plan(
    plan: Plan,
    functions: Iterable[FunctionRecord],
    max_files: int,
    basename: Optional[str] = None,
) -> None:
    """Check every plan invariant; raise PlanSchemaError on the first violation.

    - every known function id appears in exactly one module, and no unknown ids;
    - no more than *max_files* modules;
    - a module slugged ``original`` holds exactly the non-moveable functions,
      and must exist when any function is non-moveable;
    - no other module's file name collides with the original module's file.
    """
    funcs = list(functions)
    known = {f.id for f in funcs}
    assigned = [fid for m in plan.modules for fid in m.functions]
    unknown = sorted(set(assigned) - known)
    if unknown:
        raise PlanSchemaError(f"plan references unknown function ids: {', '.join(unknown[:10])}")
    if len(assigned) != len(set(assigned)):
        raise PlanSchemaError("plan assigns a function to more than one module")
    missing = sorted(known - set(assigned))
    if missing:
        raise PlanSchemaError(f"plan leaves functions unassigned: {', '.join(missing[:10])}")
    if len(plan.modules) > max_files:
        raise PlanSchemaError(f"plan has {len(plan.modules)} modules; max_files is {max_files}")

    non_moveable = {f.id for f in funcs if not f.moveable}
    original = plan.original()
    if non_moveable and original is None:
        raise PlanSchemaError("non-moveable functions present but no 'original' module")
    if original is not None and set(original.functions) != non_moveable:
        raise PlanSchemaError("'original' module must hold exactly the non-moveable functions")
    if basename and original is not None:
        for m in plan.modules:
            if not m.is_original and m.slug.lower() == basename.lower():
                raise PlanSchemaError(f"module slug {m.slug!r} collides with the original module file")


def write_plan(plans_dir: Path, plan: Plan) -> Path:
    path = plans_dir / PLAN_FILE
    atomic_write_text(path, json.dumps(plan.to_dict(), indent=2) + "\n")
    return path


def read_plan(plans_dir: Path) -> Plan:
    path = plans_dir / PLAN_FILE
    try:
        doc = json.loads(read_text(path))
    except FileNotFoundError as exc:
        raise ArtifactError(f"{PLAN_FILE} not found in {plans_dir}; run plan first") from exc
    except (OSError, ValueError) as exc:
        raise ArtifactError(f"cannot read {path}: {exc}") from exc
    return Plan.from_json(doc)
