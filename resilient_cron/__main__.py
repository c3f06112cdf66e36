"""Entry point: python -m resilient_cron."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import NoReturn

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from resilient_cron.app import run_scheduler
from resilient_cron.config import SchedulerConfig, load_config, resolve_user_timezone
from resilient_cron.cron.expression import CronExpression
from resilient_cron.errors import ParseError
from resilient_cron.events import EventLevel
from resilient_cron.logging_config import setup_logging, shutdown_logging
from resilient_cron.paths import resolve_paths

logger = logging.getLogger(__name__)

_console = Console()

_DEFAULT_UPCOMING = 5

_EVENT_STYLES: dict[EventLevel, str] = {
    "info": "cyan",
    "success": "green",
    "warning": "yellow",
    "error": "bold red",
}


def console_event_sink(level: EventLevel, message: str) -> None:
    """Print one scheduler event as a timestamped, level-colored line."""
    style = _EVENT_STYLES.get(level, "white")
    stamp = datetime.now().astimezone().strftime("%H:%M:%S")
    _console.print(f"[dim]{stamp}[/dim] [{style}]{level.upper():<7}[/{style}] {escape(message)}")


def _fail(message: str, code: int = 1) -> NoReturn:
    _console.print(f"[bold red]{escape(message)}[/bold red]")
    sys.exit(code)


# ---------------------------------------------------------------------------
# Config helpers
# ---------------------------------------------------------------------------


def _config_path(override: str | None) -> Path:
    if override:
        return Path(override).expanduser().resolve()
    return resolve_paths().config_path


def _load_config_or_exit(config_path: Path) -> SchedulerConfig:
    try:
        return load_config(config_path)
    except (json.JSONDecodeError, OSError):
        logger.exception("Failed to read config at %s", config_path)
        _fail(f"Could not read config file {config_path}")
    except ValidationError as exc:
        _fail(f"Invalid config {config_path}:\n{exc}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_run(config_path: Path, verbose: bool) -> None:
    """Load config and run the scheduler in the foreground."""
    paths = resolve_paths()
    setup_logging(verbose=verbose, log_dir=paths.logs_dir)
    config = _load_config_or_exit(config_path)
    if not verbose and config.log_level != "INFO":
        setup_logging(config.log_level, log_dir=paths.logs_dir)

    enabled = [job for job in config.jobs if job.enabled]
    _console.print(
        Panel(
            f"Config:  [cyan]{config_path}[/cyan]\n"
            f"Logs:    [cyan]{paths.logs_dir}[/cyan]\n"
            f"Jobs:    [bold]{len(enabled)}[/bold] enabled of {len(config.jobs)}\n\n"
            "[dim]Press Ctrl+C to stop.[/dim]",
            title="[bold]resilient-cron[/bold]",
            border_style="cyan",
            padding=(1, 2),
        ),
    )
    if not enabled:
        _console.print(
            f"[yellow]No enabled jobs. Add some to [bold]{config_path}[/bold].[/yellow]"
        )
    try:
        asyncio.run(run_scheduler(config, console_event_sink))
    finally:
        shutdown_logging()


def _cmd_jobs(config_path: Path) -> None:
    """Print a table of configured jobs and their next run."""
    config = _load_config_or_exit(config_path)
    if not config.jobs:
        _console.print(f"[dim]No jobs configured in {config_path}[/dim]")
        return
    tz = resolve_user_timezone(config.user_timezone)
    now = datetime.now(tz)

    table = Table(title=f"Jobs ({tz.key})", title_style="bold", border_style="blue")
    table.add_column("Name", style="bold green")
    table.add_column("Schedule", style="cyan")
    table.add_column("Command")
    table.add_column("Retry")
    table.add_column("Breaker")
    table.add_column("Next run")

    for job in config.jobs:
        if job.enabled:
            next_run = CronExpression.parse(job.schedule).next_run_after(now)
            next_text = "[yellow]never[/yellow]"
            if next_run is not None:
                next_text = next_run.strftime("%Y-%m-%d %H:%M")
        else:
            next_text = "[dim]disabled[/dim]"
        table.add_row(
            job.name,
            job.schedule,
            escape(" ".join(job.command)),
            job.retry or "-",
            job.breaker or "-",
            next_text,
        )

    _console.print(table)


def _cmd_next(expression: str, count: int) -> None:
    """Print the next *count* fire times of *expression* in the host timezone."""
    try:
        expr = CronExpression.parse(expression)
    except ParseError as exc:
        _fail(f"Invalid cron expression: {exc}")

    tz = resolve_user_timezone()
    times = list(expr.upcoming(datetime.now(tz), count))
    if not times:
        _console.print(f"[yellow]'{escape(expression)}' has no run within a year.[/yellow]")
        return

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="dim", justify="right")
    table.add_column(style="cyan")
    table.add_column()
    for idx, t in enumerate(times, start=1):
        table.add_row(str(idx), t.strftime("%Y-%m-%d %H:%M"), t.strftime("%A"))
    _console.print(
        Panel(
            table,
            title=f"[bold]{escape(expression)}[/bold] ({tz.key})",
            border_style="cyan",
            padding=(1, 1),
        ),
    )


def _print_usage() -> None:
    """Print commands and options."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold green", min_width=28)
    table.add_column()
    table.add_row("resilient-cron [run]", "Run the scheduler in the foreground")
    table.add_row("resilient-cron jobs", "Show configured jobs and their next run")
    table.add_row("resilient-cron next EXPR", "Show upcoming fire times of a cron expression")
    table.add_row("resilient-cron help", "Show this message")
    table.add_row("-n N", f"Number of times for 'next' (default {_DEFAULT_UPCOMING})")
    table.add_row("--config PATH", "Use this config file instead of the default")
    table.add_row("-v, --verbose", "Verbose logging output")

    _console.print()
    _console.print(
        Panel(table, title="[bold]Commands[/bold]", border_style="blue", padding=(1, 0)),
    )
    _console.print()


# ---------------------------------------------------------------------------
# Argument handling
# ---------------------------------------------------------------------------


def _pop_option(args: list[str], *names: str) -> str | None:
    """Remove ``NAME VALUE`` from *args* and return VALUE."""
    for name in names:
        if name in args:
            idx = args.index(name)
            if idx + 1 >= len(args):
                _fail(f"Option {name} needs a value", code=2)
            value = args[idx + 1]
            del args[idx : idx + 2]
            return value
    return None


def _parse_count(raw: str | None) -> int:
    if raw is None:
        return _DEFAULT_UPCOMING
    try:
        count = int(raw)
    except ValueError:
        _fail(f"-n expects a number, got {raw!r}", code=2)
    if count < 1:
        _fail("-n must be at least 1", code=2)
    return count


def main() -> None:
    """CLI entry point."""
    args = sys.argv[1:]
    config_override = _pop_option(args, "--config", "-c")
    count_raw = _pop_option(args, "-n", "--count")
    verbose = "--verbose" in args or "-v" in args
    positional = [a for a in args if not a.startswith("-")]
    command = positional[0] if positional else "run"

    if "--help" in args or "-h" in args or command == "help":
        _print_usage()
        return

    if command == "run":
        _cmd_run(_config_path(config_override), verbose)
    elif command == "jobs":
        _cmd_jobs(_config_path(config_override))
    elif command == "next":
        if len(positional) < 2:
            _fail("Usage: resilient-cron next 'MIN HOUR DAY MONTH WEEKDAY' [-n N]", code=2)
        _cmd_next(positional[1], _parse_count(count_raw))
    else:
        _print_usage()
        _fail(f"Unknown command: {command}", code=2)


if __name__ == "__main__":
    main()
