"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture
def cron_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Temporary ~/.resilient_cron equivalent with the host timezone pinned to UTC."""
    home = tmp_path / ".resilient_cron"
    monkeypatch.setenv("RESILIENT_CRON_HOME", str(home))
    monkeypatch.setenv("TZ", "UTC")
    return home
