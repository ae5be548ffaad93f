"""Tests for atomizer.config."""

from pathlib import Path

from atomizer.config import AtomizerConfig, LLMSettings, _apply, _read_toml, load_config


# ---------------------------------------------------------------------------
# _read_toml
# ---------------------------------------------------------------------------


def test_read_toml_success(tmp_path):
    toml_file = tmp_path / "test.toml"
    toml_file.write_text("[tool.atomizer]\nmax_files = 5\n", encoding="utf-8")
    assert _read_toml(toml_file) == {"tool": {"atomizer": {"max_files": 5}}}


def test_read_toml_missing_file(tmp_path):
    assert _read_toml(tmp_path / "nonexistent.toml") == {}


def test_read_toml_invalid_toml(tmp_path):
    bad_file = tmp_path / "bad.toml"
    bad_file.write_bytes(b"\x80\x81\x82")
    assert _read_toml(bad_file) == {}


# ---------------------------------------------------------------------------
# _apply
# ---------------------------------------------------------------------------


def test_apply_known_key():
    cfg = AtomizerConfig(project_root=Path("/x"))
    _apply(cfg, {"max_files": 4, "banner_text": "// hi"})
    assert cfg.max_files == 4
    assert cfg.banner_text == "// hi"


def test_apply_unknown_key_ignored():
    cfg = AtomizerConfig(project_root=Path("/x"))
    _apply(cfg, {"unknown_option": 999})
    assert cfg == AtomizerConfig(project_root=Path("/x"))


def test_apply_project_root_ignored():
    cfg = AtomizerConfig(project_root=Path("/x"))
    _apply(cfg, {"project_root": "/elsewhere"})
    assert cfg.project_root == Path("/x")


def test_apply_nested_llm_table_overlays():
    cfg = AtomizerConfig()
    _apply(cfg, {"llm": {"enabled": True, "model_name": "qwen2.5"}})
    assert cfg.llm.enabled is True
    assert cfg.llm.model_name == "qwen2.5"
    assert cfg.llm.provider == "ollama"  # untouched default


def test_apply_llm_not_a_table_ignored():
    cfg = AtomizerConfig()
    _apply(cfg, {"llm": "anthropic"})
    assert cfg.llm == LLMSettings()


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


def test_load_config_defaults(tmp_path):
    cfg = load_config(tmp_path)
    assert cfg.project_root == tmp_path
    assert cfg.output_directory == "out"
    assert cfg.banner_text == "'use strict';"
    assert cfg.max_files == 12
    assert cfg.min_cluster_size == 3
    assert cfg.llm.enabled is False
    assert cfg.llm.api_timeout == 30.0


def test_load_config_accepts_str_root(tmp_path):
    cfg = load_config(str(tmp_path))
    assert cfg.project_root == tmp_path


def test_load_config_from_pyproject(tmp_path):
    (tmp_path / "pyproject.toml").write_text(
        '[tool.atomizer]\nsource_path = "app.js"\nmax_files = 3\n'
        '[tool.atomizer.llm]\nenabled = true\nprovider = "anthropic"\n',
        encoding="utf-8",
    )
    cfg = load_config(tmp_path)
    assert cfg.source_path == "app.js"
    assert cfg.max_files == 3
    assert cfg.llm.enabled is True
    assert cfg.llm.provider == "anthropic"


def test_local_toml_overrides_pyproject(tmp_path):
    (tmp_path / "pyproject.toml").write_text(
        "[tool.atomizer]\nmax_files = 3\nmin_cluster_size = 2\n", encoding="utf-8"
    )
    (tmp_path / ".atomizer.toml").write_text("max_files = 7\n", encoding="utf-8")
    cfg = load_config(tmp_path)
    assert cfg.max_files == 7
    assert cfg.min_cluster_size == 2


def test_load_config_uses_cwd_when_root_omitted(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".atomizer.toml").write_text('output_directory = "build"\n', encoding="utf-8")
    cfg = load_config()
    assert cfg.output_directory == "build"
