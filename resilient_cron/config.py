"""Application configuration: pydantic models and the config file loader."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from collections.abc import Iterator
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from resilient_cron.cron.expression import CronExpression
from resilient_cron.logging_config import resolve_level
from resilient_cron.resilience.retry import PRESETS, RetryConfig

logger = logging.getLogger(__name__)


class RetrySettings(BaseModel):
    """Overrides applied on top of one named retry preset. Unset fields keep the preset value."""

    max_attempts: int | None = Field(default=None, ge=1)
    initial_delay: float | None = Field(default=None, gt=0)
    max_delay: float | None = Field(default=None, gt=0)
    multiplier: float | None = Field(default=None, gt=1)
    jitter: bool | None = None

    def apply(self, base: RetryConfig) -> RetryConfig:
        return dataclasses.replace(base, **self.model_dump(exclude_none=True))


class BreakerSettings(BaseModel):
    """Settings for the circuit breaker guarding one named resource."""

    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout: float = Field(default=60.0, gt=0)


class JobConfig(BaseModel):
    """A command run on a cron schedule."""

    name: str = Field(min_length=1)
    schedule: str
    command: list[str] = Field(min_length=1)
    cwd: str = ""
    timeout: float = Field(default=600.0, gt=0)
    enabled: bool = True
    retry: str | None = None
    breaker: str | None = None

    @field_validator("schedule")
    @classmethod
    def _check_schedule(cls, value: str) -> str:
        CronExpression.parse(value)
        return value

    @field_validator("retry")
    @classmethod
    def _check_retry_preset(cls, value: str | None) -> str | None:
        if value is not None and value not in PRESETS:
            msg = f"unknown retry preset '{value}' (expected one of {sorted(PRESETS)})"
            raise ValueError(msg)
        return value


class SchedulerConfig(BaseModel):
    """Top-level config file model."""

    log_level: str = "INFO"
    user_timezone: str = ""
    shutdown_grace_seconds: float = Field(default=30.0, ge=0)
    retry: dict[str, RetrySettings] = Field(default_factory=dict)
    breakers: dict[str, BreakerSettings] = Field(default_factory=dict)
    jobs: list[JobConfig] = Field(default_factory=list)

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        resolve_level(value)
        return value.strip().upper()

    @model_validator(mode="after")
    def _check_consistency(self) -> SchedulerConfig:
        for preset in self.retry:
            if preset not in PRESETS:
                msg = f"retry overrides for unknown preset '{preset}'"
                raise ValueError(msg)
            self.retry_config(preset)
        seen: set[str] = set()
        for job in self.jobs:
            if job.name in seen:
                msg = f"duplicate job name '{job.name}'"
                raise ValueError(msg)
            seen.add(job.name)
        return self

    def retry_config(self, preset: str) -> RetryConfig:
        """The named preset with any configured overrides applied."""
        base = PRESETS[preset]
        overrides = self.retry.get(preset)
        return overrides.apply(base) if overrides is not None else base

    def breaker_settings(self, resource: str) -> BreakerSettings:
        return self.breakers.get(resource) or BreakerSettings()


def merge_new_defaults(
    user: dict[str, object],
    defaults: dict[str, object],
    prefix: str = "",
) -> tuple[dict[str, object], list[str]]:
    """Add settings missing from *user* without touching the ones it has.

    Nested sections are merged key by key; lists such as ``jobs`` belong to
    the user and are never merged. Returns the merged data and the dotted
    paths of the added settings, e.g. ``["shutdown_grace_seconds"]``.
    """
    merged: dict[str, object] = dict(user)
    added: list[str] = []
    for key, default in defaults.items():
        path = f"{prefix}{key}"
        current = merged.get(key)
        if key not in merged:
            merged[key] = default
            added.append(path)
        elif isinstance(default, dict) and isinstance(current, dict):
            merged[key], nested = merge_new_defaults(current, default, f"{path}.")
            added.extend(nested)
    return merged, added


def load_config(config_path: Path) -> SchedulerConfig:
    """Read the config file, creating or extending it as needed.

    A missing file is written from the model defaults. Settings introduced
    since the file was written are added to it, so the file always shows
    every option. Raises ``json.JSONDecodeError``, ``OSError`` or
    ``pydantic.ValidationError`` for an unusable file.
    """
    defaults = SchedulerConfig().model_dump(mode="json")

    if not config_path.exists():
        config_path.parent.mkdir(parents=True, exist_ok=True)
        _write_json(config_path, defaults)
        logger.info("Created default config at %s", config_path)

    user_data: dict[str, object] = json.loads(config_path.read_text(encoding="utf-8"))
    merged, added = merge_new_defaults(user_data, defaults)
    if added:
        _write_json(config_path, merged)
        logger.info("Added new settings to %s: %s", config_path, ", ".join(added))

    return SchedulerConfig.model_validate(merged)


def _write_json(path: Path, data: dict[str, object]) -> None:
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def resolve_user_timezone(configured: str = "") -> ZoneInfo:
    """Zone that cron schedules are evaluated in.

    The first known zone name wins: the config's ``user_timezone``, then
    ``$TZ``, then the zone ``/etc/localtime`` links to. Falls back to UTC.
    """
    for source, name in _timezone_candidates(configured):
        if not name:
            continue
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            level = logging.WARNING if source == "user_timezone" else logging.DEBUG
            logger.log(level, "Ignoring unknown timezone %r from %s", name, source)
    return ZoneInfo("UTC")


def _timezone_candidates(configured: str) -> Iterator[tuple[str, str]]:
    yield "user_timezone", configured.strip()
    yield "TZ", os.environ.get("TZ", "").strip()
    yield "/etc/localtime", _host_zone_name()


def _host_zone_name() -> str:
    """IANA name ``/etc/localtime`` points at (``Europe/Berlin``), or ``""``."""
    localtime = Path("/etc/localtime")
    if not localtime.is_symlink():
        return ""
    _, found, name = str(localtime.resolve()).partition("/zoneinfo/")
    return name if found else ""
