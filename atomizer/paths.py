"""Artifact locations, relative import paths, atomic writes, and backup helpers."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from .config import AtomizerConfig
from .errors import AnalysisError, ArtifactError

FACTS_DIR_ENV = "ATOMIZER_FACTS_DIR"
PLANS_DIR_ENV = "ATOMIZER_PLANS_DIR"

ORIGINAL_SLUG = "original"

# Written into the shim so later runs can recognise it.
SHIM_MARKER = "// Shim re-exporting atomized bridge generated by atomizer"


# ---------------------------------------------------------------------------
# Directories
# ---------------------------------------------------------------------------


def _resolve(config: AtomizerConfig, value: str) -> Path:
    path = Path(value)
    if not path.is_absolute():
        path = Path(config.project_root) / path
    return path


def _artifact_dir(config: AtomizerConfig, env_var: str, configured: Optional[str], default: str) -> Path:
    env = os.environ.get(env_var)
    if env:
        path = Path(env)
    elif configured:
        path = _resolve(config, configured)
    else:
        path = Path(config.project_root) / default
    path.mkdir(parents=True, exist_ok=True)
    return path


def facts_dir(config: AtomizerConfig) -> Path:
    """Return (and create) the facts directory."""
    return _artifact_dir(config, FACTS_DIR_ENV, config.facts_dir, "facts")


def plans_dir(config: AtomizerConfig) -> Path:
    """Return (and create) the plans directory."""
    return _artifact_dir(config, PLANS_DIR_ENV, config.plans_dir, "plans")


def source_path(config: AtomizerConfig) -> Path:
    """Return the absolute source path; raise AnalysisError when unset or missing."""
    if not config.source_path:
        raise AnalysisError("source_path is not set")
    path = _resolve(config, config.source_path).resolve()
    if not path.is_file():
        raise AnalysisError(f"source file not found: {path}")
    return path


def source_basename(path: Path) -> str:
    """``/x/big.js`` → ``"big"``."""
    return path.stem or "source"


def output_root(config: AtomizerConfig) -> Path:
    return _resolve(config, config.output_directory)


def module_dir(config: AtomizerConfig, src: Path) -> Path:
    """Grouped module directory: ``<output>/<basename>.atomized``."""
    return output_root(config) / f"{source_basename(src)}.atomized"


def cjs_module_dir(config: AtomizerConfig, src: Path) -> Path:
    """CommonJS mirror directory: ``<output>_cjs/<basename>.atomized``."""
    root = output_root(config)
    return root.with_name(root.name + "_cjs") / f"{source_basename(src)}.atomized"


def module_filename(slug: str, basename: str, ext: str = ".js") -> str:
    """The 'original' module is named after the source basename."""
    if slug.lower() == ORIGINAL_SLUG:
        return basename + ext
    return slug + ext


def bridge_path(src: Path) -> Path:
    """ESM bridge written alongside the source: ``big.js`` → ``big.js.atomized.js``."""
    return src.with_name(src.name + ".atomized.js")


def cjs_bridge_path(src: Path) -> Path:
    """CommonJS bridge written alongside the source: ``big.js`` → ``big.cjs``."""
    path = src.with_name(source_basename(src) + ".cjs")
    if path == src:
        path = src.with_name(src.name + ".atomized.cjs")
    return path


# ---------------------------------------------------------------------------
# Relative paths
# ---------------------------------------------------------------------------


def rel_import(from_dir: Path, target: Path) -> str:
    """Return a POSIX relative path from *from_dir* to *target*.

    The result always starts with ``./`` or ``../`` so it is usable as an ES
    module specifier.
    """
    rel = os.path.relpath(os.path.abspath(target), os.path.abspath(from_dir))
    rel = rel.replace(os.sep, "/")
    if not rel.startswith(("./", "../")):
        rel = "./" + rel
    return rel


# ---------------------------------------------------------------------------
# File IO
# ---------------------------------------------------------------------------


def read_text(path: Path) -> str:
    """Read *path* as UTF-8 without newline translation."""
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def atomic_write_text(path: Path, text: str) -> None:
    """Write *text* to a sibling temp file, then rename it over *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8", newline="") as f:
        f.write(text)
    os.replace(tmp, path)


# ---------------------------------------------------------------------------
# Shim and backups
# ---------------------------------------------------------------------------


def looks_like_shim(text: str) -> bool:
    """Return True if *text* is the re-export shim a previous run left behind."""
    if SHIM_MARKER in text:
        return True
    return ".atomized.js" in text and "export * from" in text and len(text) < 400


def canonical_backup_path(src: Path) -> Path:
    """``big.js`` → ``big_old.js``."""
    return src.with_name(f"{source_basename(src)}_old{src.suffix}")


def _timestamped_backups(src: Path) -> List[Path]:
    pattern = f"{source_basename(src)}_old_*{src.suffix}"
    return sorted(src.parent.glob(pattern), key=lambda p: p.name, reverse=True)


def find_backup(src: Path) -> Optional[Path]:
    """Return the best backup of the pre-shim source, or None.

    Prefers the canonical ``<base>_old<ext>``; otherwise the newest timestamped
    backup.  Backups that are themselves shims are ignored.
    """
    candidates = [canonical_backup_path(src)] + _timestamped_backups(src)
    for candidate in candidates:
        if candidate.is_file() and not looks_like_shim(read_text(candidate)):
            return candidate
    return None


def read_original_source(src: Path) -> Tuple[str, Path]:
    """Return ``(text, path_read)`` for the real, pre-shim source.

    When *src* already holds the generated shim, the text is read from its
    backup instead.  Raises AnalysisError when no usable backup exists.
    """
    try:
        text = read_text(src)
    except (OSError, UnicodeDecodeError) as exc:
        raise AnalysisError(f"cannot read source {src}: {exc}") from exc
    if not looks_like_shim(text):
        return text, src
    backup = find_backup(src)
    if backup is None:
        raise AnalysisError(
            f"{src} is an atomizer shim and no {source_basename(src)}_old backup was"
            " found; restore the original source first"
        )
    return read_text(backup), backup


def timestamped_backup_path(src: Path) -> Path:
    """``big.js`` → ``big_old_<UTC yyyymmddHHMMSS>.js``, unique in its directory."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    base = f"{source_basename(src)}_old_{stamp}"
    path = src.with_name(base + src.suffix)
    n = 1
    while path.exists():
        path = src.with_name(f"{base}_{n}{src.suffix}")
        n += 1
    return path


def backup_source(src: Path) -> Path:
    """Make sure a backup of the real source exists and return it.

    A shim source already has its backup.  When a canonical backup holding
    different text exists, it is moved aside to a timestamped name so the
    canonical backup always matches the newest original.
    """
    text = read_text(src)
    if looks_like_shim(text):
        backup = find_backup(src)
        if backup is None:
            raise ArtifactError(f"{src} is a shim but no backup exists")
        return backup
    canonical = canonical_backup_path(src)
    if canonical.is_file():
        if read_text(canonical) == text:
            return canonical
        os.replace(canonical, timestamped_backup_path(src))
    atomic_write_text(canonical, text)
    return canonical
