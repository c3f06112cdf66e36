"""Circuit breaker: fail fast on a resource after repeated failures.

States:
- CLOSED: calls pass through; consecutive failures are counted.
- OPEN: calls are rejected until ``recovery_timeout`` has passed since the
  last failure, then a single trial call is let through.
- HALF_OPEN: the trial is running. Only its own outcome decides: success
  closes the circuit, failure re-opens it, cancellation returns it to OPEN.
  Calls admitted earlier, while CLOSED, only update the counters.

One breaker guards one resource and is shared by every caller of it, so all
state lives behind a lock. The lock is never held while the protected
operation runs.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from resilient_cron.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Tracks consecutive failures of one resource and rejects calls while open.

    Example::

        breaker = CircuitBreaker("tournament-api", failure_threshold=3)
        round_info = breaker.call(client.get_current_round)
    """

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            msg = f"failure_threshold must be >= 1, got {failure_threshold}"
            raise ValueError(msg)
        if recovery_timeout <= 0:
            msg = f"recovery_timeout must be > 0, got {recovery_timeout}"
            raise ValueError(msg)
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    @property
    def last_failure_time(self) -> float:
        with self._lock:
            return self._last_failure_time

    def is_open(self) -> bool:
        """True if a call made now would be rejected (no state change)."""
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                return self._trial_in_flight
            return self._state is CircuitState.OPEN and not self._cooldown_elapsed()

    def call(self, op: Callable[[], T]) -> T:
        """Run *op* through the breaker; its result or exception is passed on unchanged."""
        trial = self._before_call()
        try:
            result = op()
        except Exception:
            self.record_failure(trial=trial)
            raise
        except BaseException:
            self._abandon(trial)
            raise
        self.record_success(trial=trial)
        return result

    async def call_async(self, op: Callable[[], Awaitable[T]]) -> T:
        trial = self._before_call()
        try:
            result = await op()
        except Exception:
            self.record_failure(trial=trial)
            raise
        except BaseException:
            # Cancelled or interrupted: no verdict on the resource.
            self._abandon(trial)
            raise
        self.record_success(trial=trial)
        return result

    def record_success(self, *, trial: bool = False) -> None:
        """Count a success. Only the recovery trial's own outcome closes a HALF_OPEN circuit.

        A success from a call admitted earlier, while CLOSED, says nothing
        about recovery and leaves an OPEN or HALF_OPEN circuit alone.
        """
        with self._lock:
            if trial and self._state is CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._transition(CircuitState.CLOSED)
                self._failure_count = 0
                logger.info("Circuit breaker '%s' closed after successful recovery", self.name)
            elif self._state is CircuitState.CLOSED:
                self._failure_count = 0

    def record_failure(self, *, trial: bool = False) -> None:
        """Count a failure; re-open on a failed trial, open at the threshold when CLOSED."""
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()
            if trial and self._state is CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._transition(CircuitState.OPEN)
                logger.warning("Circuit breaker '%s' re-opened: recovery trial failed", self.name)
            elif (
                self._state is CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._transition(CircuitState.OPEN)
                logger.warning(
                    "Circuit breaker '%s' opened (failures=%d threshold=%d)",
                    self.name,
                    self._failure_count,
                    self.failure_threshold,
                )

    def reset(self) -> None:
        """Force the breaker back to CLOSED with a clean count."""
        with self._lock:
            self._transition(CircuitState.CLOSED)
            self._failure_count = 0
            self._trial_in_flight = False

    # -- Internals --

    def _before_call(self) -> bool:
        """Admit the call or raise `CircuitOpenError`; True if it is the recovery trial."""
        with self._lock:
            if self._state is CircuitState.OPEN:
                if not self._cooldown_elapsed():
                    raise CircuitOpenError(self.name, self._retry_after())
                self._transition(CircuitState.HALF_OPEN)
                logger.info("Circuit breaker '%s' half-open: allowing trial call", self.name)
                self._trial_in_flight = True
                return True
            if self._state is CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(self.name, 0.0)
                self._trial_in_flight = True
                return True
            return False

    def _abandon(self, trial: bool) -> None:
        """Give up an unfinished trial; the next caller after the cooldown gets a new one."""
        if not trial:
            return
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._transition(CircuitState.OPEN)
                logger.info("Circuit breaker '%s' trial abandoned, back to open", self.name)

    def _cooldown_elapsed(self) -> bool:
        return self._clock() - self._last_failure_time > self.recovery_timeout

    def _retry_after(self) -> float:
        return self.recovery_timeout - (self._clock() - self._last_failure_time)

    def _transition(self, new_state: CircuitState) -> None:
        if new_state is not self._state:
            logger.debug(
                "Circuit breaker '%s': %s -> %s", self.name, self._state.value, new_state.value
            )
            self._state = new_state
