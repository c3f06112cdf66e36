"""Logging for the scheduler process.

Console lines are short and carry the ``[op:job]`` context from
`resilient_cron.log_context`, highlighted so interleaved job output stays
readable. With a log directory, the same records also go to a rotating
``scheduler.log`` with source locations; the file is written from a
background thread so disk stalls never hold up the tick loop.

``setup_logging`` may be called again once the config's ``log_level`` is
known. ``shutdown_logging`` flushes and closes the file.
"""

from __future__ import annotations

import atexit
import logging
import queue
import sys
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path

from resilient_cron.log_context import ContextFilter

LOG_FILE_NAME = "scheduler.log"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3

CONSOLE_FMT = "%(asctime)s %(levelname)s %(ctx)s%(message)s"
FILE_FMT = "%(asctime)s %(levelname)-8s %(name)s:%(lineno)d %(ctx)s%(message)s"

# Client libraries used inside job bodies. Only shown with --verbose.
QUIET_LOGGERS = ("aiohttp", "asyncio")

_LEVEL_COLORS = {
    "DEBUG": "\x1b[2m",
    "INFO": "\x1b[32m",
    "WARNING": "\x1b[33m",
    "ERROR": "\x1b[31m",
    "CRITICAL": "\x1b[1;31m",
}
_CTX_COLOR = "\x1b[36m"
_RESET = "\x1b[0m"

_file_listener: QueueListener | None = None


def resolve_level(level: int | str) -> int:
    """Accept a level number or a name such as ``"warning"``."""
    if isinstance(level, int):
        return level
    try:
        return logging.getLevelNamesMapping()[level.strip().upper()]
    except KeyError:
        msg = f"Unknown log level: {level!r}"
        raise ValueError(msg) from None


class JobConsoleFormatter(logging.Formatter):
    """Console lines with the level and the job context picked out in color."""

    def __init__(self, *, color: bool) -> None:
        super().__init__(CONSOLE_FMT, datefmt="%H:%M:%S")
        self._color = color

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname
        ctx = getattr(record, "ctx", "")
        if self._color:
            record.levelname = f"{_LEVEL_COLORS.get(level, '')}{level:<8}{_RESET}"
            record.ctx = f"{_CTX_COLOR}{ctx}{_RESET}" if ctx else ""
        else:
            record.levelname = f"{level:<8}"
            record.ctx = ctx
        try:
            return super().format(record)
        finally:
            record.levelname = level
            record.ctx = ctx


def setup_logging(
    level: int | str = logging.INFO,
    *,
    verbose: bool = False,
    log_dir: Path | None = None,
) -> None:
    """Route every record to stderr and, if *log_dir* is set, to ``scheduler.log``.

    *verbose* forces DEBUG and lets the client loggers in `QUIET_LOGGERS`
    through as well. Replaces whatever a previous call installed.
    """
    resolved = logging.DEBUG if verbose else resolve_level(level)
    shutdown_logging()

    ctx_filter = ContextFilter()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(resolved)

    if sys.stderr is not None:
        console = logging.StreamHandler(sys.stderr)
        console.addFilter(ctx_filter)
        use_color = hasattr(sys.stderr, "isatty") and sys.stderr.isatty()
        console.setFormatter(JobConsoleFormatter(color=use_color))
        root.addHandler(console)

    if log_dir is not None:
        root.addHandler(_start_file_log(log_dir, ctx_filter))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET if verbose else logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging initialized (level=%s)", logging.getLevelName(resolved)
    )


def shutdown_logging() -> None:
    """Flush and close the log file, if one is open."""
    global _file_listener  # noqa: PLW0603
    if _file_listener is None:
        return
    listener, _file_listener = _file_listener, None
    listener.stop()
    for handler in listener.handlers:
        handler.close()


def _start_file_log(log_dir: Path, ctx_filter: logging.Filter) -> QueueHandler:
    global _file_listener  # noqa: PLW0603
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(FILE_FMT))

    records: queue.Queue[logging.LogRecord] = queue.Queue()
    queue_handler = QueueHandler(records)
    # The context lives in the caller's ContextVars, so it is read before queueing.
    queue_handler.addFilter(ctx_filter)
    _file_listener = QueueListener(records, file_handler)
    _file_listener.start()
    return queue_handler


atexit.register(shutdown_logging)
