"""Resilience: retry with backoff and circuit breakers."""

from resilient_cron.resilience.circuit import CircuitBreaker, CircuitState
from resilient_cron.resilience.retry import (
    DEFAULT_RETRY,
    DOWNLOAD_RETRY,
    NETWORK_RETRY,
    RetryConfig,
    RetryPolicy,
    with_download_retry,
    with_network_retry,
    with_retry,
)

__all__ = [
    "DEFAULT_RETRY",
    "DOWNLOAD_RETRY",
    "NETWORK_RETRY",
    "CircuitBreaker",
    "CircuitState",
    "RetryConfig",
    "RetryPolicy",
    "with_download_retry",
    "with_network_retry",
    "with_retry",
]
