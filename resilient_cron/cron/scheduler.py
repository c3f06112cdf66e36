"""In-process job scheduler: minute-aligned tick loop with concurrent dispatch."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import time
from datetime import datetime, tzinfo

from resilient_cron.cron.expression import ONE_MINUTE, CronExpression, floor_minute
from resilient_cron.cron.job import CronJob, JobTask
from resilient_cron.errors import JobExecutionError, ScheduleExhaustedError
from resilient_cron.events import EVENT_LOG_LEVELS, EventLevel, EventSink
from resilient_cron.log_context import set_log_context

logger = logging.getLogger(__name__)

# A gap this large between ticks means the host was suspended or the loop starved.
_WALL_CLOCK_GAP = 2 * ONE_MINUTE


def seconds_until_next_minute(now: datetime) -> float:
    """Real delay from *now* to the next wall-clock minute boundary."""
    return (floor_minute(now) + ONE_MINUTE - now).total_seconds()


def _fmt(t: datetime | None) -> str:
    if t is None:
        return "never"
    return t.strftime("%Y-%m-%d %H:%M %Z").strip()


class JobScheduler:
    """Runs cron jobs in-process.

    On start, every job is activated and its next run computed, then a
    background task wakes at each minute boundary (``tick``). A tick claims
    each due job for that minute under the job's own lock and dispatches it
    as an independent asyncio task; the loop never waits for job bodies.
    Plain callables run in a worker thread, coroutine functions on the loop.

    A failed execution releases the claim, so the job is eligible again on
    the next matching tick. A job that runs longer than the gap between two
    of its fire times may overlap with itself; claims are per minute, not
    per execution.

    ``stop`` halts future ticks only. Executions already dispatched are not
    cancelled; use ``join_running`` to wait for them.
    """

    def __init__(
        self,
        *,
        timezone: tzinfo | None = None,
        event_sink: EventSink | None = None,
    ) -> None:
        self._tz = timezone
        self._event_sink = event_sink
        self._jobs: list[CronJob] = []
        self._in_flight: set[asyncio.Task[None]] = set()
        self._loop_task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._running = False

    # -- Setup --

    def set_event_sink(self, sink: EventSink | None) -> None:
        """Set the external collaborator that receives scheduler events."""
        self._event_sink = sink

    def add_job(self, name: str, schedule: str | CronExpression, task: JobTask) -> CronJob:
        """Register a job. Raises `ParseError` for an invalid schedule."""
        if self._running:
            msg = "Cannot add jobs while the scheduler is running"
            raise RuntimeError(msg)
        if self.get_job(name) is not None:
            msg = f"Job '{name}' already exists"
            raise ValueError(msg)
        expr = CronExpression.parse(schedule) if isinstance(schedule, str) else schedule
        job = CronJob(name=name, schedule=expr, task=task)
        self._jobs.append(job)
        logger.debug("Job added: %s (%s)", name, expr)
        return job

    @property
    def jobs(self) -> tuple[CronJob, ...]:
        return tuple(self._jobs)

    def get_job(self, name: str) -> CronJob | None:
        return next((j for j in self._jobs if j.name == name), None)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def now(self) -> datetime:
        return datetime.now(self._tz)

    # -- Lifecycle --

    async def start(self) -> None:
        """Activate all jobs and launch the tick loop in the background."""
        if self._running:
            logger.warning("Scheduler already running")
            return
        self._running = True
        self._stop_event.clear()
        now = self.now()
        for job in self._jobs:
            job.active = True
            next_run = self._next_run_for(job, now)
            job.set_next_run(next_run)
            self._emit("info", f"Job '{job.name}' ({job.schedule}) next run: {_fmt(next_run)}")
        self._loop_task = asyncio.create_task(self._tick_loop(now), name="scheduler-tick-loop")
        self._loop_task.add_done_callback(_log_task_crash)
        self._emit("info", f"Scheduler started ({len(self._jobs)} jobs)")

    async def run_forever(self) -> None:
        """Start, then block the caller until ``stop`` is called."""
        await self.start()
        await self._stop_event.wait()

    async def stop(self) -> None:
        """Stop future ticks and wait for the tick loop to exit."""
        if not self._running:
            return
        self._running = False
        for job in self._jobs:
            job.active = False
        self._stop_event.set()
        if self._loop_task is not None:
            task = self._loop_task
            self._loop_task = None
            await asyncio.gather(task, return_exceptions=True)
        self._emit("info", "Scheduler stopped")

    async def join_running(self, timeout: float | None = None) -> int:
        """Wait for dispatched executions; return how many are still running."""
        pending = set(self._in_flight)
        if not pending:
            return 0
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        return len(still_running)

    # -- Tick loop --

    async def _tick_loop(self, started: datetime) -> None:
        """Sleep to the next minute boundary -> tick -> repeat.

        Started exactly on a boundary, the loop ticks that minute at once,
        since ``start`` already reported it as a job's next run.
        """
        set_log_context(operation="tick")
        last_minute: datetime | None = None
        wait = started != floor_minute(started)
        while self._running:
            if wait:
                delay = seconds_until_next_minute(self.now())
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                if not self._running:
                    break
            wait = True

            minute = floor_minute(self.now())
            if last_minute is not None:
                if minute <= last_minute:
                    # Woke a hair before the boundary; go round again.
                    continue
                if minute - last_minute > _WALL_CLOCK_GAP:
                    logger.warning(
                        "Wall-clock gap: %s -> %s (system likely suspended, missed minutes "
                        "are not replayed)",
                        _fmt(last_minute),
                        _fmt(minute),
                    )
            last_minute = minute

            try:
                await self.tick(minute)
            except Exception:
                logger.exception("Scheduler tick failed (continuing)")
        logger.debug("Tick loop exited")

    async def tick(self, now: datetime | None = None) -> list[CronJob]:
        """Claim and dispatch every active job due at the minute of *now*."""
        minute = floor_minute(now if now is not None else self.now())
        dispatched: list[CronJob] = []
        for job in self._jobs:
            if not job.active or not job.schedule.matches(minute):
                continue
            if not job.try_claim(minute):
                logger.debug("Job %s already claimed for %s", job.name, _fmt(minute))
                continue
            self._dispatch(job, minute)
            dispatched.append(job)
        if dispatched:
            logger.debug("Tick %s dispatched %d job(s)", _fmt(minute), len(dispatched))
        return dispatched

    # -- Execution --

    def _dispatch(self, job: CronJob, minute: datetime) -> None:
        task = asyncio.create_task(self._execute(job, minute), name=f"cron:{job.name}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _execute(self, job: CronJob, minute: datetime) -> None:
        """Run one claimed execution. Task errors end here, never in the tick loop."""
        set_log_context(operation="cron", job=job.name)
        self._emit("info", f"Starting job '{job.name}'")
        t0 = time.monotonic()
        try:
            if _is_async_callable(job.task):
                await job.task()
            else:
                result = await asyncio.to_thread(job.task)
                if inspect.isawaitable(result):
                    await result
        except Exception as exc:
            error = JobExecutionError(job.name, exc)
            job.record_failure(self._next_run_for(job, minute + ONE_MINUTE), str(error))
            logger.debug("Job %s traceback", job.name, exc_info=exc)
            self._emit("error", str(error))
            return

        next_run = self._next_run_for(job, minute + ONE_MINUTE)
        job.record_success(next_run)
        elapsed = time.monotonic() - t0
        self._emit(
            "success",
            f"Job '{job.name}' completed in {elapsed:.1f}s, next run: {_fmt(next_run)}",
        )

    def _next_run_for(self, job: CronJob, after: datetime) -> datetime | None:
        try:
            return job.schedule.require_next_run(after)
        except ScheduleExhaustedError as exc:
            self._emit("warning", f"Job '{job.name}': {exc}")
            return None

    def _emit(self, level: EventLevel, message: str) -> None:
        logger.log(EVENT_LOG_LEVELS[level], message)
        if self._event_sink is None:
            return
        try:
            self._event_sink(level, message)
        except Exception:
            logger.exception("Error in scheduler event sink")


def _is_async_callable(obj: object) -> bool:
    return inspect.iscoroutinefunction(obj) or inspect.iscoroutinefunction(
        getattr(obj, "__call__", None)
    )


def _log_task_crash(task: asyncio.Task[None]) -> None:
    """Log if the tick loop crashes unexpectedly."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Scheduler tick loop crashed: %s", exc, exc_info=exc)
