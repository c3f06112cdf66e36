"""Wire configured command jobs into a scheduler and run it until signalled."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import signal
import sys
from pathlib import Path

from resilient_cron.config import JobConfig, SchedulerConfig, resolve_user_timezone
from resilient_cron.cron.command import CommandTask
from resilient_cron.cron.job import JobTask
from resilient_cron.cron.scheduler import JobScheduler
from resilient_cron.errors import CommandError
from resilient_cron.events import EventSink
from resilient_cron.resilience.circuit import CircuitBreaker
from resilient_cron.resilience.retry import RetryPolicy

logger = logging.getLogger(__name__)


def build_breakers(config: SchedulerConfig) -> dict[str, CircuitBreaker]:
    """One breaker per resource named in ``breakers`` or referenced by an enabled job."""
    names = set(config.breakers)
    names.update(job.breaker for job in config.jobs if job.enabled and job.breaker)
    breakers: dict[str, CircuitBreaker] = {}
    for name in sorted(names):
        settings = config.breaker_settings(name)
        breakers[name] = CircuitBreaker(
            name,
            failure_threshold=settings.failure_threshold,
            recovery_timeout=settings.recovery_timeout,
        )
    return breakers


def build_job_task(
    job: JobConfig,
    config: SchedulerConfig,
    breakers: dict[str, CircuitBreaker],
) -> JobTask:
    """Compose the job body: retry policy around circuit breaker around the command."""
    command = CommandTask(
        job.command,
        cwd=Path(job.cwd).expanduser() if job.cwd else None,
        timeout=job.timeout,
    )
    breaker = breakers[job.breaker] if job.breaker else None
    policy: RetryPolicy | None = None
    if job.retry is not None:
        retry_config = config.retry_config(job.retry)
        # A failed or timed-out command counts as transient alongside the preset's kinds.
        retry_config = dataclasses.replace(
            retry_config,
            retryable_kinds=(*retry_config.retryable_kinds, CommandError),
        )
        policy = RetryPolicy(retry_config, context=f"job '{job.name}'")

    async def guarded() -> str:
        if breaker is None:
            return await command()
        return await breaker.call_async(command)

    async def run() -> str:
        if policy is None:
            return await guarded()
        return await policy.execute_async(guarded)

    return run


def build_scheduler(
    config: SchedulerConfig,
    event_sink: EventSink | None = None,
) -> JobScheduler:
    """Create a scheduler holding every enabled job of *config*."""
    scheduler = JobScheduler(
        timezone=resolve_user_timezone(config.user_timezone),
        event_sink=event_sink,
    )
    breakers = build_breakers(config)
    for job in config.jobs:
        if not job.enabled:
            logger.info("Skipping disabled job %s", job.name)
            continue
        scheduler.add_job(job.name, job.schedule, build_job_task(job, config, breakers))
    return scheduler


async def run_scheduler(
    config: SchedulerConfig,
    event_sink: EventSink | None = None,
) -> None:
    """Run the scheduler until SIGINT/SIGTERM, then drain in-flight jobs.

    Executions still running after ``shutdown_grace_seconds`` are left to be
    cancelled with the event loop.
    """
    scheduler = build_scheduler(config, event_sink)
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_requested.set)

    await scheduler.start()
    try:
        await stop_requested.wait()
        logger.info("Shutdown requested")
    finally:
        await scheduler.stop()
        remaining = await scheduler.join_running(config.shutdown_grace_seconds)
        if remaining:
            logger.warning(
                "%d job(s) still running after %.0fs grace period",
                remaining,
                config.shutdown_grace_seconds,
            )
        if sys.platform != "win32":
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
