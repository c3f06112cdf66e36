"""Tests for configuration models, loading and timezone resolution."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from resilient_cron.config import (
    BreakerSettings,
    JobConfig,
    RetrySettings,
    SchedulerConfig,
    load_config,
    merge_new_defaults,
    resolve_user_timezone,
)
from resilient_cron.resilience.retry import DOWNLOAD_RETRY, NETWORK_RETRY


def _job(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "name": "standings",
        "schedule": "0 18 * * 6",
        "command": ["fetch-standings", "--round", "latest"],
    }
    data.update(overrides)
    return data


# -- Model defaults --


def test_scheduler_config_defaults() -> None:
    cfg = SchedulerConfig()
    assert cfg.log_level == "INFO"
    assert cfg.user_timezone == ""
    assert cfg.shutdown_grace_seconds == 30.0
    assert cfg.retry == {}
    assert cfg.breakers == {}
    assert cfg.jobs == []


def test_breaker_settings_defaults() -> None:
    settings = BreakerSettings()
    assert settings.failure_threshold == 5
    assert settings.recovery_timeout == 60.0


def test_job_config_defaults() -> None:
    job = JobConfig(**_job())
    assert job.enabled is True
    assert job.timeout == 600.0
    assert job.cwd == ""
    assert job.retry is None
    assert job.breaker is None


# -- Validation --


def test_job_rejects_invalid_schedule() -> None:
    with pytest.raises(ValidationError, match="schedule"):
        JobConfig(**_job(schedule="99 * * * *"))


def test_job_rejects_empty_command() -> None:
    with pytest.raises(ValidationError, match="command"):
        JobConfig(**_job(command=[]))


def test_job_rejects_unknown_retry_preset() -> None:
    with pytest.raises(ValidationError, match="unknown retry preset"):
        JobConfig(**_job(retry="aggressive"))


def test_log_level_normalized() -> None:
    assert SchedulerConfig(log_level=" warning ").log_level == "WARNING"


def test_unknown_log_level_rejected() -> None:
    with pytest.raises(ValidationError, match="Unknown log level"):
        SchedulerConfig(log_level="chatty")


def test_breaker_rejects_zero_threshold() -> None:
    with pytest.raises(ValidationError, match="failure_threshold"):
        BreakerSettings(failure_threshold=0)


def test_duplicate_job_names_rejected() -> None:
    with pytest.raises(ValidationError, match="duplicate job name"):
        SchedulerConfig(jobs=[_job(), _job()])  # type: ignore[list-item]


def test_unknown_retry_override_rejected() -> None:
    with pytest.raises(ValidationError, match="unknown preset"):
        SchedulerConfig(retry={"turbo": RetrySettings(max_attempts=2)})


def test_inconsistent_retry_override_rejected() -> None:
    # download preset starts at 5s, so a 1s ceiling is invalid.
    with pytest.raises(ValidationError, match="max_delay"):
        SchedulerConfig(retry={"download": RetrySettings(max_delay=1.0)})


# -- Retry and breaker lookups --


def test_retry_config_without_overrides_is_preset() -> None:
    assert SchedulerConfig().retry_config("network") is NETWORK_RETRY


def test_retry_config_applies_overrides() -> None:
    cfg = SchedulerConfig(retry={"network": RetrySettings(max_attempts=2, jitter=False)})
    merged = cfg.retry_config("network")
    assert merged.max_attempts == 2
    assert merged.jitter is False
    assert merged.initial_delay == NETWORK_RETRY.initial_delay
    assert merged.retryable_kinds == NETWORK_RETRY.retryable_kinds


def test_retry_settings_apply_keeps_unset_fields() -> None:
    merged = RetrySettings(initial_delay=10.0).apply(DOWNLOAD_RETRY)
    assert merged.initial_delay == 10.0
    assert merged.max_attempts == DOWNLOAD_RETRY.max_attempts


def test_breaker_settings_fallback() -> None:
    cfg = SchedulerConfig(breakers={"api": BreakerSettings(failure_threshold=2)})
    assert cfg.breaker_settings("api").failure_threshold == 2
    assert cfg.breaker_settings("other") == BreakerSettings()


# -- merge_new_defaults --


def test_merge_adds_missing_settings() -> None:
    user: dict[str, object] = {"log_level": "DEBUG"}
    defaults: dict[str, object] = {"log_level": "INFO", "user_timezone": ""}
    merged, added = merge_new_defaults(user, defaults)
    assert merged == {"log_level": "DEBUG", "user_timezone": ""}
    assert added == ["user_timezone"]


def test_merge_leaves_complete_file_alone() -> None:
    user: dict[str, object] = {"log_level": "DEBUG", "user_timezone": "Europe/Berlin"}
    defaults: dict[str, object] = {"log_level": "INFO", "user_timezone": ""}
    merged, added = merge_new_defaults(user, defaults)
    assert merged == user
    assert added == []


def test_merge_reports_nested_paths() -> None:
    user: dict[str, object] = {"breakers": {"api": {"failure_threshold": 2}}}
    defaults: dict[str, object] = {
        "breakers": {"api": {"failure_threshold": 5, "recovery_timeout": 60.0}},
    }
    merged, added = merge_new_defaults(user, defaults)
    assert merged["breakers"] == {"api": {"failure_threshold": 2, "recovery_timeout": 60.0}}
    assert added == ["breakers.api.recovery_timeout"]


def test_merge_keeps_user_jobs() -> None:
    user: dict[str, object] = {"jobs": [_job()]}
    merged, added = merge_new_defaults(user, {"jobs": []})
    assert merged["jobs"] == [_job()]
    assert added == []


# -- load_config --


def test_load_config_creates_default_file(tmp_path: Path) -> None:
    path = tmp_path / "config" / "config.json"
    cfg = load_config(path)
    assert path.exists()
    assert cfg == SchedulerConfig()
    assert json.loads(path.read_text(encoding="utf-8"))["jobs"] == []


def test_load_config_preserves_user_jobs(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"jobs": [_job(retry="network")]}), encoding="utf-8")
    cfg = load_config(path)
    assert [j.name for j in cfg.jobs] == ["standings"]
    assert cfg.jobs[0].retry == "network"


def test_load_config_extends_file_with_new_defaults(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"log_level": "DEBUG"}), encoding="utf-8")
    with caplog.at_level("INFO", logger="resilient_cron.config"):
        cfg = load_config(path)
    assert cfg.log_level == "DEBUG"
    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk["log_level"] == "DEBUG"
    assert on_disk["shutdown_grace_seconds"] == 30.0
    assert "shutdown_grace_seconds" in caplog.text


def test_load_config_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(json.JSONDecodeError):
        load_config(path)


def test_load_config_invalid_job(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"jobs": [_job(schedule="* * *")]}), encoding="utf-8")
    with pytest.raises(ValidationError):
        load_config(path)


# -- resolve_user_timezone --


def test_timezone_from_config() -> None:
    assert resolve_user_timezone("Europe/Berlin") == ZoneInfo("Europe/Berlin")


def test_timezone_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TZ", "Asia/Tokyo")
    assert resolve_user_timezone("") == ZoneInfo("Asia/Tokyo")


def test_timezone_from_host_link(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TZ", raising=False)
    monkeypatch.setattr("resilient_cron.config._host_zone_name", lambda: "America/Chicago")
    assert resolve_user_timezone("") == ZoneInfo("America/Chicago")


def test_timezone_defaults_to_utc(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TZ", "Not/AZone")
    monkeypatch.setattr("resilient_cron.config._host_zone_name", lambda: "")
    assert resolve_user_timezone("") == ZoneInfo("UTC")


def test_invalid_timezone_falls_back(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setenv("TZ", "UTC")
    with caplog.at_level("WARNING", logger="resilient_cron.config"):
        tz = resolve_user_timezone("Mars/Olympus_Mons")
    assert tz == ZoneInfo("UTC")
    assert "Ignoring unknown timezone 'Mars/Olympus_Mons' from user_timezone" in caplog.text
