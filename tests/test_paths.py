"""Tests for home directory path resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from resilient_cron.paths import CronPaths, resolve_paths


def test_layout(tmp_path: Path) -> None:
    paths = CronPaths(home=tmp_path)
    assert paths.config_path == tmp_path / "config" / "config.json"
    assert paths.logs_dir == tmp_path / "logs"


def test_explicit_home_wins(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RESILIENT_CRON_HOME", str(tmp_path / "env"))
    assert resolve_paths(tmp_path / "explicit").home == (tmp_path / "explicit").resolve()


def test_env_var(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RESILIENT_CRON_HOME", str(tmp_path / "env"))
    assert resolve_paths().home == (tmp_path / "env").resolve()


def test_default_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("RESILIENT_CRON_HOME", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    assert resolve_paths().home == (tmp_path / ".resilient_cron").resolve()
