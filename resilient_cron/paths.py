"""Central path resolution for the scheduler's home directory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

HOME_ENV_VAR = "RESILIENT_CRON_HOME"


@dataclass(frozen=True)
class CronPaths:
    """Resolved, immutable paths, all derived from ``home`` (default ``~/.resilient_cron``)."""

    home: Path

    @property
    def config_dir(self) -> Path:
        return self.home / "config"

    @property
    def config_path(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def logs_dir(self) -> Path:
        return self.home / "logs"


def resolve_paths(home: str | Path | None = None) -> CronPaths:
    """Build CronPaths from an explicit home, ``$RESILIENT_CRON_HOME``, or the default."""
    if home is not None:
        return CronPaths(home=Path(home).expanduser().resolve())
    raw = os.environ.get(HOME_ENV_VAR, str(Path.home() / ".resilient_cron"))
    return CronPaths(home=Path(raw).expanduser().resolve())
