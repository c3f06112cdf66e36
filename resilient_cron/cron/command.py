"""Command-backed job task: run an external program as a cron job body."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

from resilient_cron.errors import CommandFailedError, CommandTimeoutError

logger = logging.getLogger(__name__)

_STDERR_LOG_LIMIT = 500


class CommandTask:
    """Zero-argument async callable that runs *argv* to completion.

    Exit status 0 is success. A non-zero status raises `CommandFailedError`;
    exceeding *timeout* kills the process and raises `CommandTimeoutError`.
    """

    def __init__(
        self,
        argv: list[str],
        *,
        cwd: Path | None = None,
        timeout: float = 600.0,
    ) -> None:
        if not argv:
            msg = "Command must not be empty"
            raise ValueError(msg)
        self.argv = list(argv)
        self.cwd = cwd
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"CommandTask({' '.join(self.argv)!r})"

    async def __call__(self) -> str:
        """Run the command and return its decoded stdout."""
        t0 = time.monotonic()
        logger.debug(
            "Command start cmd=%s cwd=%s timeout=%.0fs",
            " ".join(self.argv[:3]),
            self.cwd,
            self.timeout,
        )
        proc = await asyncio.create_subprocess_exec(
            *self.argv,
            cwd=str(self.cwd) if self.cwd else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            async with asyncio.timeout(self.timeout):
                stdout, stderr = await proc.communicate()
        except TimeoutError:
            logger.warning(
                "Command %s timed out after %.0fs, killing process", self.argv[0], self.timeout
            )
            proc.kill()
            await proc.communicate()
            msg = f"Command {self.argv[0]!r} timed out after {self.timeout:.0f}s"
            raise CommandTimeoutError(msg) from None

        err_text = stderr.decode(errors="replace") if stderr else ""
        if err_text:
            logger.debug("Command stderr (%s): %s", self.argv[0], err_text[:_STDERR_LOG_LIMIT])
        if proc.returncode != 0:
            raise CommandFailedError(self.argv, proc.returncode or -1, err_text)

        elapsed_ms = (time.monotonic() - t0) * 1000
        out_text = stdout.decode(errors="replace") if stdout else ""
        logger.info(
            "Command completed cmd=%s duration_ms=%.0f stdout=%d",
            self.argv[0],
            elapsed_ms,
            len(out_text),
        )
        return out_text
