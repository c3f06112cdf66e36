"""Retry wrapper with exponential backoff, jitter and error classification.

An error is retried only when it is an instance of ``RetryConfig.retryable_kinds``.
For a matching ``aiohttp.ClientResponseError`` the HTTP status then decides:
4xx other than 429 is final, 429 and 5xx are retried. A preset whose kinds
leave out response errors (``download``) therefore never retries on status.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TypeVar

import aiohttp

from resilient_cron.errors import NonRetryableError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

JITTER_SPREAD = 0.25

ErrorKinds = tuple[type[BaseException], ...]

NETWORK_ERRORS: ErrorKinds = (
    aiohttp.ClientResponseError,
    aiohttp.ClientConnectionError,
    TimeoutError,
)

DOWNLOAD_ERRORS: ErrorKinds = (
    aiohttp.ClientPayloadError,
    aiohttp.ClientConnectionError,
    TimeoutError,
    ConnectionError,
    InterruptedError,
)


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Immutable retry settings. Presets are just instances."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True
    retryable_kinds: ErrorKinds = NETWORK_ERRORS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = f"max_attempts must be >= 1, got {self.max_attempts}"
            raise ValueError(msg)
        if self.initial_delay <= 0:
            msg = f"initial_delay must be > 0, got {self.initial_delay}"
            raise ValueError(msg)
        if self.max_delay < self.initial_delay:
            msg = f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})"
            raise ValueError(msg)
        if self.multiplier <= 1:
            msg = f"multiplier must be > 1, got {self.multiplier}"
            raise ValueError(msg)
        kinds: Iterable[type[BaseException]] = self.retryable_kinds
        object.__setattr__(self, "retryable_kinds", tuple(kinds))


DEFAULT_RETRY = RetryConfig()

NETWORK_RETRY = RetryConfig(
    max_attempts=5,
    initial_delay=2.0,
    max_delay=30.0,
    multiplier=1.5,
    retryable_kinds=NETWORK_ERRORS,
)

DOWNLOAD_RETRY = RetryConfig(
    max_attempts=3,
    initial_delay=5.0,
    max_delay=60.0,
    multiplier=2.0,
    retryable_kinds=DOWNLOAD_ERRORS,
)

PRESETS: dict[str, RetryConfig] = {
    "default": DEFAULT_RETRY,
    "network": NETWORK_RETRY,
    "download": DOWNLOAD_RETRY,
}


def transport_status(exc: BaseException) -> int | None:
    """HTTP status carried by *exc*, if it is a response error."""
    if isinstance(exc, aiohttp.ClientResponseError):
        return exc.status
    return None


def is_retryable(exc: BaseException, config: RetryConfig) -> bool:
    if not isinstance(exc, config.retryable_kinds):
        return False
    status = transport_status(exc)
    if status is not None and 400 <= status <= 499:
        return status == 429
    return True


def compute_delay(
    attempt: int,
    config: RetryConfig,
    rng: Callable[[], float] = random.random,
) -> float:
    """Backoff before attempt ``attempt + 1``, jittered into [1.0, 1.25) of the base."""
    delay = min(config.initial_delay * config.multiplier ** (attempt - 1), config.max_delay)
    if config.jitter:
        delay *= 1.0 + rng() * JITTER_SPREAD
    return delay


class RetryPolicy:
    """Runs a zero-argument operation with bounded, classified retries.

    ``execute`` sleeps with ``time.sleep`` and so blocks only the calling
    thread; ``execute_async`` awaits ``asyncio.sleep`` instead. Both run the
    same attempt loop.
    """

    def __init__(
        self,
        config: RetryConfig = DEFAULT_RETRY,
        *,
        context: str = "operation",
        sleep: Callable[[float], None] = time.sleep,
        async_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.config = config
        self.context = context
        self._sleep = sleep
        self._async_sleep = async_sleep
        self._rng = rng

    def execute(self, op: Callable[[], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            logger.debug(
                "Attempting %s (attempt %d/%d)", self.context, attempt, self.config.max_attempts
            )
            try:
                result = op()
            except Exception as exc:
                self._sleep(self._on_failure(exc, attempt))
                continue
            self._on_success(attempt)
            return result

    async def execute_async(self, op: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            attempt += 1
            logger.debug(
                "Attempting %s (attempt %d/%d)", self.context, attempt, self.config.max_attempts
            )
            try:
                result = await op()
            except Exception as exc:
                await self._async_sleep(self._on_failure(exc, attempt))
                continue
            self._on_success(attempt)
            return result

    def _on_success(self, attempt: int) -> None:
        if attempt > 1:
            logger.info("%s succeeded after %d attempts", self.context, attempt)

    def _on_failure(self, exc: Exception, attempt: int) -> float:
        """Raise if the loop must end, otherwise return the delay before the next attempt."""
        if not is_retryable(exc, self.config):
            logger.error("Non-retryable error in %s: %s", self.context, exc)
            msg = f"{self.context} failed with a non-retryable error: {exc}"
            raise NonRetryableError(msg, attempts=attempt, last_error=exc) from exc

        if attempt >= self.config.max_attempts:
            logger.error("%s failed after %d attempts: %s", self.context, attempt, exc)
            msg = f"{self.context} failed after {attempt} attempts: {exc}"
            raise RetryExhaustedError(msg, attempts=attempt, last_error=exc) from exc

        delay = compute_delay(attempt, self.config, self._rng)
        logger.warning(
            "Retrying %s in %.2fs (attempt %d/%d): %s",
            self.context,
            delay,
            attempt,
            self.config.max_attempts,
            exc,
        )
        return delay


def with_retry(
    op: Callable[[], T],
    config: RetryConfig = DEFAULT_RETRY,
    *,
    context: str = "operation",
) -> T:
    return RetryPolicy(config, context=context).execute(op)


def with_network_retry(op: Callable[[], T], *, context: str = "network request") -> T:
    """Retry for API/GraphQL calls: many attempts, gentle growth."""
    return RetryPolicy(NETWORK_RETRY, context=context).execute(op)


def with_download_retry(op: Callable[[], T], *, context: str = "file download") -> T:
    """Retry for file downloads: few attempts, long initial delay."""
    return RetryPolicy(DOWNLOAD_RETRY, context=context).execute(op)
