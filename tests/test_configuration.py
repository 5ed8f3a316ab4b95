"""Tests for the home-aware configuration loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from cinder import configuration


def _prepare_repo_defaults(tmp_path: Path, content: str = "runtime:\n  name: Test\n") -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "10-default.yml").write_text(content, encoding="utf-8")
    return config_dir


def test_resolve_home_dir_uses_env_expansion(tmp_path: Path):
    env = {"CINDER_HOME": str(tmp_path / "home")}
    path = configuration.resolve_home_dir(env=env)
    assert path == tmp_path / "home"


def test_load_runtime_configuration_merges_repo_and_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(
        tmp_path,
        content="watcher:\n  debounce_ms: 200\n  enabled: true\n",
    )
    home_dir = tmp_path / "home"
    overrides_dir = home_dir / "config"
    overrides_dir.mkdir(parents=True)
    (overrides_dir / "20-overrides.yml").write_text(
        "watcher:\n  debounce_ms: 50\n  enabled: false\n",
        encoding="utf-8",
    )

    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(home_dir)

    assert bundle.status == "ready"
    assert bundle.merged["watcher"]["debounce_ms"] == 50
    assert bundle.merged["watcher"]["enabled"] is False
    assert len(bundle.files_loaded) == 2


def test_missing_sections_are_filled_with_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(home_dir)

    assert bundle.section("commands")["directories"] == ["commands"]
    assert bundle.section("watcher")["cooldown_ms"] == 100
    assert bundle.section("remote")["token_env"] == "CINDER_BOT_TOKEN"
    assert bundle.section("reconcile")["batch_window_ms"] == 200


def test_load_runtime_configuration_reports_missing_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    missing_home = tmp_path / "missing"
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(missing_home)

    assert bundle.status == "missing"
    assert any(diag.level == "error" for diag in bundle.diagnostics)


def test_load_runtime_configuration_handles_bad_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    home_dir = tmp_path / "home"
    overrides_dir = home_dir / "config"
    overrides_dir.mkdir(parents=True)
    (overrides_dir / "broken.yml").write_text("runtime: [\n", encoding="utf-8")

    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(home_dir)

    assert bundle.status == "invalid"
    assert any("Failed to parse" in diag.message for diag in bundle.diagnostics)


def test_resolve_path_is_relative_to_home(tmp_path: Path):
    bundle = configuration.ConfigurationBundle(home_dir=tmp_path, status="ready")

    assert bundle.resolve_path("state/commands.db") == tmp_path / "state" / "commands.db"
    assert bundle.resolve_path(str(tmp_path / "abs.db")) == tmp_path / "abs.db"
