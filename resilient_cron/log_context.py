"""Logging context: ContextVar-based log enrichment for jobs.

Every log record is automatically enriched with a ``[op:job]`` prefix
via a `ContextFilter` attached to the root logger handlers.

Operation codes: ``tick`` (scheduler loop), ``cron`` (job execution).
Worker threads started with ``asyncio.to_thread`` inherit the context.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar

ctx_operation: ContextVar[str | None] = ContextVar("ctx_operation", default=None)
ctx_job: ContextVar[str | None] = ContextVar("ctx_job", default=None)


class ContextFilter(logging.Filter):
    """Inject ContextVar values into every LogRecord as ``record.ctx``."""

    def filter(self, record: logging.LogRecord) -> bool:
        op = ctx_operation.get(None)
        job = ctx_job.get(None)
        parts: list[str] = []
        if op:
            parts.append(op)
        if job:
            parts.append(job)
        record.ctx = f"[{':'.join(parts)}] " if parts else ""
        return True


def set_log_context(
    *,
    operation: str | None = None,
    job: str | None = None,
) -> None:
    """Set logging context for the current asyncio task.

    Each ``asyncio.create_task()`` copies the current context automatically.
    """
    if operation is not None:
        ctx_operation.set(operation)
    if job is not None:
        ctx_job.set(job)
