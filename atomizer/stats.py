"""Cumulative statistics and degradation warnings for a single atomizer run."""

from dataclasses import asdict, dataclass, field
from typing import Dict, List


@dataclass
class StageWarning:
    """A recovered degradation recorded by one pipeline stage."""

    stage: str  # analyze / plan / write / link
    kind: str  # ParseDegradation, PlanningDegradation, ...
    message: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RunStats:
    """Holds cumulative counts for a single atomizer run."""

    # Analysis
    functions_total: int = 0
    functions_moveable: int = 0
    calls_total: int = 0
    imports_total: int = 0
    used_fallback_scanner: bool = False

    # Planning
    plan_source: str = ""  # "llm" or "heuristic"
    module_sizes: Dict[str, int] = field(default_factory=dict)
    llm_calls: int = 0

    # Writing / linking
    files_written: List[str] = field(default_factory=list)
    import_source: str = "none"
    imports_inserted: int = 0

    warnings: List[StageWarning] = field(default_factory=list)

    @property
    def functions_kept_in_original(self) -> int:
        return self.functions_total - self.functions_moveable

    @property
    def module_count(self) -> int:
        return len(self.module_sizes)

    def top_modules(self, limit: int = 5) -> List[str]:
        ranked = sorted(self.module_sizes.items(), key=lambda kv: (-kv[1], kv[0]))
        return [f"{slug} ({n})" for slug, n in ranked[:limit]]

    def format_summary(self) -> List[str]:
        """Return a list of lines forming the human-readable run summary."""
        lines = ["--- atomizer summary ---"]
        lines.append("functions:")
        lines.append(f"  total:               {self.functions_total}")
        lines.append(f"  moveable:            {self.functions_moveable}")
        lines.append(f"  kept in original:    {self.functions_kept_in_original}")
        if self.used_fallback_scanner:
            lines.append("  (regex fallback scanner used)")
        lines.append("plan:")
        lines.append(f"  source:              {self.plan_source or 'n/a'}")
        lines.append(f"  modules:             {self.module_count}")
        if self.module_sizes:
            lines.append(f"  largest:             {', '.join(self.top_modules())}")
        lines.append("imports:")
        lines.append(f"  source:              {self.import_source}")
        lines.append(f"  inserted:            {self.imports_inserted}")
        lines.append(f"LLM calls: {self.llm_calls}")
        if self.files_written:
            lines.append(f"files written: {len(self.files_written)}")
        else:
            lines.append("files written: none")
        lines.append(f"warnings: {len(self.warnings)}")
        return lines
