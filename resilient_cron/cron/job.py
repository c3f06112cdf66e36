"""Scheduled job record with its own lock over the claim/run bookkeeping."""

from __future__ import annotations

import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from resilient_cron.cron.expression import CronExpression

# Zero-argument task: a plain callable (runs in a worker thread) or a coroutine function.
JobTask = Callable[[], Any] | Callable[[], Awaitable[Any]]


@dataclass(eq=False)
class CronJob:
    """A job bound to a cron schedule.

    ``last_run`` is the minute this job was last claimed for; ``None`` means
    it may be claimed on the next matching tick. All run bookkeeping is read
    and written under ``_lock`` so the tick loop and finishing executions
    never interleave. Each job has its own lock; unrelated jobs never contend.
    """

    name: str
    schedule: CronExpression
    task: JobTask
    active: bool = False
    last_run: datetime | None = None
    next_run: datetime | None = None
    last_status: str | None = None
    last_error: str | None = None
    run_count: int = 0
    failure_count: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def try_claim(self, minute: datetime) -> bool:
        """Claim this job for *minute*; False if it was already claimed for it."""
        with self._lock:
            if self.last_run is not None and self.last_run >= minute:
                return False
            self.last_run = minute
            return True

    def set_next_run(self, next_run: datetime | None) -> None:
        with self._lock:
            self.next_run = next_run

    def record_success(self, next_run: datetime | None) -> None:
        with self._lock:
            self.next_run = next_run
            self.last_status = "success"
            self.last_error = None
            self.run_count += 1

    def record_failure(self, next_run: datetime | None, error: str) -> None:
        """Release the claim so the job is eligible again on the next tick."""
        with self._lock:
            self.last_run = None
            self.next_run = next_run
            self.last_status = "error"
            self.last_error = error
            self.run_count += 1
            self.failure_count += 1

    def snapshot(self) -> dict[str, Any]:
        """Consistent copy of the job's state for status displays."""
        with self._lock:
            return {
                "name": self.name,
                "schedule": self.schedule.expression,
                "active": self.active,
                "last_run": self.last_run,
                "next_run": self.next_run,
                "last_status": self.last_status,
                "last_error": self.last_error,
                "run_count": self.run_count,
                "failure_count": self.failure_count,
            }
