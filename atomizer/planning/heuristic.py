"""Deterministic size-balanced planner.

Non-moveable functions go to a single ``original`` module.  Moveable ones are
spread over buckets by greedy load balancing on span length; call-graph
affinity is not considered here.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Set

from ..analysis.facts import FunctionRecord
from ..paths import ORIGINAL_SLUG
from .plan_model import ModuleSpec, Plan, slugify


def bucket_count(moveable: int, has_original: bool, max_files: int, min_cluster_size: int) -> int:
    """Number of moveable buckets under the module-count and cluster-size limits."""
    if moveable == 0:
        return 0
    reserved = 1 if has_original else 0
    max_moveable = max(1, max_files - reserved)
    desired = math.ceil(moveable / max(1, min_cluster_size))
    return min(max_moveable, desired)


def balance(functions: List[FunctionRecord], groups: int) -> List[List[FunctionRecord]]:
    """Assign each function, largest first, to the currently smallest bucket."""
    buckets: List[List[FunctionRecord]] = [[] for _ in range(groups)]
    loads = [0] * groups
    for f in sorted(functions, key=lambda f: (-f.size, f.start, f.id)):
        target = min(range(groups), key=lambda g: (loads[g], g))
        buckets[target].append(f)
        loads[target] += f.size
    return buckets


def _unique_slug(base: str, taken: Set[str]) -> str:
    slug = base
    n = 2
    while slug in taken:
        slug = f"{base}-{n}"
        n += 1
    taken.add(slug)
    return slug


def plan_heuristic(
    functions: Iterable[FunctionRecord],
    max_files: int,
    min_cluster_size: int,
    basename: Optional[str] = None,
) -> Plan:
    """Build a plan without any network access."""
    funcs = list(functions)
    non_moveable = [f for f in funcs if not f.moveable]
    moveable = [f for f in funcs if f.moveable]

    modules: List[ModuleSpec] = []
    taken = {ORIGINAL_SLUG}
    if basename:
        taken.add(basename.lower())
    if non_moveable:
        modules.append(
            ModuleSpec(
                name=ORIGINAL_SLUG,
                slug=ORIGINAL_SLUG,
                functions=[f.id for f in sorted(non_moveable, key=lambda f: f.start)],
            )
        )

    groups = bucket_count(len(moveable), bool(non_moveable), max_files, min_cluster_size)
    if groups == 0:
        return Plan(modules=modules)
    buckets = balance(moveable, groups)
    if len(buckets) > 1 and len(buckets[-1]) < min_cluster_size:
        buckets[-2].extend(buckets.pop())

    for g, bucket in enumerate(buckets):
        # Emit in source order so slices keep their relative order.
        bucket.sort(key=lambda f: f.start)
        first = bucket[0].name if bucket else ""
        base = slugify(first)
        name = first if base else f"mod{g + 1}"
        slug = _unique_slug(base or f"mod{g + 1}", taken)
        modules.append(ModuleSpec(name=name, slug=slug, functions=[f.id for f in bucket]))
    return Plan(modules=modules)
