"""Typed facts records and their on-disk representation.

Layout of the facts directory::

    facts.json             {"functions": n, "imports": n}
    facts.index.json       FactsIndex manifest (the planner's entry point)
    facts.d/functions.ndjson
    facts.d/imports.ndjson
    facts.d/calls.ndjson
    top-level.json         {"names": [...]}

Every reader validates shape and raises ArtifactError on mismatch.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from ..errors import ArtifactError
from ..paths import atomic_write_text, read_text

FACTS_VERSION = "0.3"
FEATURES = ["imports.esm", "functions.core", "identifiers.body", "callgraph.basic"]

SHARD_DIR = "facts.d"
INDEX_FILE = "facts.index.json"
COUNTS_FILE = "facts.json"
TOP_LEVEL_FILE = "top-level.json"

ANONYMOUS = "<anonymous>"


def _require(d: dict, key: str, kind, what: str):
    val = d.get(key)
    if not isinstance(val, kind) or isinstance(val, bool) and kind is int:
        raise ArtifactError(f"{what}: field {key!r} missing or not {getattr(kind, '__name__', kind)}")
    return val


def _str_list(d: dict, key: str, what: str) -> List[str]:
    val = d.get(key, [])
    if not isinstance(val, list) or not all(isinstance(v, str) for v in val):
        raise ArtifactError(f"{what}: field {key!r} must be a list of strings")
    return list(val)


@dataclass
class FunctionRecord:
    """One top-level function-like declaration."""

    id: str
    name: str
    start: int
    end: int
    exported: bool = False
    moveable: bool = False
    used: List[str] = field(default_factory=list)
    free: List[str] = field(default_factory=list)
    params: List[str] = field(default_factory=list)
    locals: List[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return max(1, self.end - self.start)

    def contains(self, other: "FunctionRecord") -> bool:
        return self.start <= other.start and other.end <= self.end

    def to_dict(self) -> dict:
        return {
            "type": "function",
            "id": self.id,
            "name": self.name,
            "exported": self.exported,
            "span": {"start": self.start, "end": self.end},
            "ext": {
                "identifiers.body": sorted(self.used),
                "identifiers.free": sorted(self.free),
                "declared.params": sorted(self.params),
                "declared.locals": sorted(self.locals),
                "moveable": self.moveable,
            },
        }

    @classmethod
    def from_dict(cls, d: dict) -> "FunctionRecord":
        what = "function record"
        if not isinstance(d, dict) or d.get("type", "function") != "function":
            raise ArtifactError(f"{what}: not a function object")
        span = _require(d, "span", dict, what)
        ext = d.get("ext", {})
        if not isinstance(ext, dict):
            raise ArtifactError(f"{what}: field 'ext' must be an object")
        start = _require(span, "start", int, what)
        end = _require(span, "end", int, what)
        if start < 0 or end < start:
            raise ArtifactError(f"{what}: invalid span [{start}, {end})")
        return cls(
            id=_require(d, "id", str, what),
            name=d.get("name") if isinstance(d.get("name"), str) else ANONYMOUS,
            start=start,
            end=end,
            exported=bool(d.get("exported", False)),
            moveable=bool(ext.get("moveable", False)),
            used=_str_list(ext, "identifiers.body", what),
            free=_str_list(ext, "identifiers.free", what),
            params=_str_list(ext, "declared.params", what),
            locals=_str_list(ext, "declared.locals", what),
        )


@dataclass
class CallEdge:
    caller: str  # function id
    callee: str  # callee name

    def to_dict(self) -> dict:
        return {"type": "call", "caller": self.caller, "callee": self.callee}

    @classmethod
    def from_dict(cls, d: dict) -> "CallEdge":
        what = "call record"
        if not isinstance(d, dict):
            raise ArtifactError(f"{what}: not an object")
        return cls(caller=_require(d, "caller", str, what), callee=_require(d, "callee", str, what))


@dataclass
class ImportRecord:
    source: str  # module specifier
    named: List[str] = field(default_factory=list)
    kind: str = "esm"

    def to_dict(self) -> dict:
        return {"type": "import", "kind": self.kind, "from": self.source, "named": list(self.named)}

    @classmethod
    def from_dict(cls, d: dict) -> "ImportRecord":
        what = "import record"
        if not isinstance(d, dict):
            raise ArtifactError(f"{what}: not an object")
        return cls(
            source=_require(d, "from", str, what),
            named=_str_list(d, "named", what),
            kind=d.get("kind", "esm") if isinstance(d.get("kind"), str) else "esm",
        )


@dataclass
class Shard:
    kind: str
    path: str  # relative to the facts directory
    count: int

    def to_dict(self) -> dict:
        return {"kind": self.kind, "path": self.path, "count": self.count}


@dataclass
class FactsIndex:
    """Run-level manifest; the single entry point read by the planner."""

    source: str
    shards: List[Shard]
    stats: Dict[str, int]
    version: str = FACTS_VERSION
    features: List[str] = field(default_factory=lambda: list(FEATURES))

    def shard(self, kind: str) -> Shard:
        for s in self.shards:
            if s.kind == kind:
                return s
        raise ArtifactError(f"facts index has no {kind!r} shard")

    def to_dict(self) -> dict:
        return {
            "dfpVersion": self.version,
            "source": self.source,
            "features": list(self.features),
            "capabilities": {f: True for f in self.features},
            "shards": [s.to_dict() for s in self.shards],
            "stats": dict(self.stats),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "FactsIndex":
        what = "facts index"
        if not isinstance(d, dict):
            raise ArtifactError(f"{what}: not an object")
        shards = []
        for raw in _require(d, "shards", list, what):
            if not isinstance(raw, dict):
                raise ArtifactError(f"{what}: shard entry is not an object")
            shards.append(
                Shard(
                    kind=_require(raw, "kind", str, what),
                    path=_require(raw, "path", str, what),
                    count=_require(raw, "count", int, what),
                )
            )
        stats = d.get("stats", {})
        return cls(
            source=_require(d, "source", str, what),
            shards=shards,
            stats=stats if isinstance(stats, dict) else {},
            version=str(d.get("dfpVersion", FACTS_VERSION)),
            features=_str_list(d, "features", what),
        )


@dataclass
class Facts:
    """Everything the analyzer produces for one source file."""

    source: str
    functions: List[FunctionRecord] = field(default_factory=list)
    calls: List[CallEdge] = field(default_factory=list)
    imports: List[ImportRecord] = field(default_factory=list)
    top_level: List[str] = field(default_factory=list)

    def by_id(self) -> Dict[str, FunctionRecord]:
        return {f.id: f for f in self.functions}

    def index(self) -> FactsIndex:
        return FactsIndex(
            source=self.source,
            shards=[
                Shard("functions", f"{SHARD_DIR}/functions.ndjson", len(self.functions)),
                Shard("imports", f"{SHARD_DIR}/imports.ndjson", len(self.imports)),
                Shard("calls", f"{SHARD_DIR}/calls.ndjson", len(self.calls)),
            ],
            stats={"functionCount": len(self.functions), "importCount": len(self.imports)},
        )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def _dump(obj) -> str:
    return json.dumps(obj, indent=2) + "\n"


def _ndjson(rows) -> str:
    return "".join(json.dumps(r.to_dict()) + "\n" for r in rows)


def write_facts(facts_dir: Path, facts: Facts) -> FactsIndex:
    """Persist *facts* atomically; return the written index."""
    index = facts.index()
    atomic_write_text(facts_dir / SHARD_DIR / "functions.ndjson", _ndjson(facts.functions))
    atomic_write_text(facts_dir / SHARD_DIR / "imports.ndjson", _ndjson(facts.imports))
    atomic_write_text(facts_dir / SHARD_DIR / "calls.ndjson", _ndjson(facts.calls))
    atomic_write_text(facts_dir / TOP_LEVEL_FILE, _dump({"names": sorted(facts.top_level)}))
    atomic_write_text(
        facts_dir / COUNTS_FILE,
        _dump({"functions": len(facts.functions), "imports": len(facts.imports)}),
    )
    # Index last: its presence marks a complete facts set.
    atomic_write_text(facts_dir / INDEX_FILE, _dump(index.to_dict()))
    return index


def _load_json(path: Path):
    try:
        return json.loads(read_text(path))
    except FileNotFoundError as exc:
        raise ArtifactError(f"{path.name} not found in {path.parent}; run analyze first") from exc
    except (OSError, ValueError) as exc:
        raise ArtifactError(f"cannot read {path}: {exc}") from exc


def _read_ndjson(path: Path, parse) -> list:
    try:
        text = read_text(path)
    except FileNotFoundError:
        return []
    except OSError as exc:
        raise ArtifactError(f"cannot read {path}: {exc}") from exc
    rows = []
    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        try:
            raw = json.loads(line)
        except ValueError as exc:
            raise ArtifactError(f"{path.name}:{lineno}: invalid JSON: {exc}") from exc
        rows.append(parse(raw))
    return rows


def read_index(facts_dir: Path) -> FactsIndex:
    return FactsIndex.from_dict(_load_json(facts_dir / INDEX_FILE))


def read_facts(facts_dir: Path) -> Facts:
    """Load and validate the facts set written by :func:`write_facts`."""
    index = read_index(facts_dir)
    functions = _read_ndjson(facts_dir / index.shard("functions").path, FunctionRecord.from_dict)
    if not functions:
        raise ArtifactError(f"no function records in {facts_dir}; run analyze first")
    calls = _read_ndjson(facts_dir / index.shard("calls").path, CallEdge.from_dict)
    imports = _read_ndjson(facts_dir / index.shard("imports").path, ImportRecord.from_dict)
    top_level: List[str] = []
    tl_path = facts_dir / TOP_LEVEL_FILE
    if tl_path.exists():
        raw = _load_json(tl_path)
        if isinstance(raw, dict):
            top_level = _str_list(raw, "names", "top-level names")
    return Facts(
        source=index.source,
        functions=functions,
        calls=calls,
        imports=imports,
        top_level=top_level,
    )
