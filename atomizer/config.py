"""Load atomizer configuration from pyproject.toml and optional .atomizer.toml."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class LLMSettings:
    """Settings for the optional LLM planner."""

    # Ask the LLM for a plan before falling back to the heuristic planner.
    enabled: bool = False
    # LLM provider: "ollama" (default), "anthropic", "openai", "lmstudio",
    # "deepseek", or "moonshot"
    provider: str = "ollama"
    # Optional base URL override for OpenAI-compatible providers (e.g. an
    # Ollama server on another host).
    endpoint_url: Optional[str] = None
    model_name: str = "llama3.1:8b"
    temperature: float = 0.2
    max_tokens: int = 2048
    # Whether the LLM may request the raw source text as a feature pack.
    send_source_text: bool = False
    # Number of chat rounds allowed for {needs: [...]} feature-pack requests.
    max_rounds: int = 2
    # HTTP timeout in seconds for each LLM call.  A hard wall-clock limit of
    # api_timeout + 5 s is enforced on top of this.
    api_timeout: float = 30.0


@dataclass
class AtomizerConfig:
    """Runtime configuration for atomizer."""

    # The monolithic script to split.
    source_path: Optional[str] = None
    # Output root; modules are written to <root>/<basename>.atomized/ and the
    # CommonJS mirror to <root>_cjs/<basename>.atomized/.
    output_directory: str = "out"
    # First line of every emitted module file.
    banner_text: str = "'use strict';"
    # Maximum number of modules in a plan (including the 'original' module).
    max_files: int = 12
    # Minimum number of functions per generated module.
    min_cluster_size: int = 3
    # Also copy every emitted module into <project>/output_debug/.
    debug_output_enabled: bool = False

    # Explicit artifact directories.  ATOMIZER_FACTS_DIR / ATOMIZER_PLANS_DIR
    # take precedence; the defaults are <project>/facts and <project>/plans.
    facts_dir: Optional[str] = None
    plans_dir: Optional[str] = None

    # Attribute calls made inside nested closures to the enclosing top-level
    # function.  When False those calls are left out of the call graph.
    attribute_closure_calls: bool = False

    llm: LLMSettings = field(default_factory=LLMSettings)

    # Directory that relative paths above are resolved against.
    project_root: Path = field(default_factory=Path.cwd)


def _read_toml(path: Path) -> dict:
    """Read a TOML file; return empty dict if missing or unparseable."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception:
        return {}


def _apply(cfg, d: dict) -> None:
    """Overlay dict values onto cfg, ignoring unknown keys.

    A nested ``llm`` table is overlaid onto ``cfg.llm`` rather than replacing it.
    """
    valid = set(cfg.__dataclass_fields__)
    for key, val in d.items():
        if key not in valid or key == "project_root":
            continue
        if key == "llm":
            if isinstance(val, dict):
                _apply(cfg.llm, val)
            continue
        setattr(cfg, key, val)


def load_config(project_root: Optional[Path] = None) -> AtomizerConfig:
    """Load config from pyproject.toml [tool.atomizer], then .atomizer.toml."""
    if project_root is None:
        project_root = Path.cwd()
    project_root = Path(project_root)
    cfg = AtomizerConfig(project_root=Path(project_root))
    pyproject = _read_toml(project_root / "pyproject.toml")
    _apply(cfg, pyproject.get("tool", {}).get("atomizer", {}))
    local = _read_toml(project_root / ".atomizer.toml")
    _apply(cfg, local)
    return cfg
