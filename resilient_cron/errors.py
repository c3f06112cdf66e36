"""Project-level exception hierarchy."""

from __future__ import annotations


class ResilientCronError(Exception):
    """Base for all resilient-cron exceptions."""


class ParseError(ResilientCronError, ValueError):
    """Cron expression text is malformed or out of range."""


class ScheduleExhaustedError(ResilientCronError):
    """No matching minute exists within the search horizon."""


class JobExecutionError(ResilientCronError):
    """A job task raised; the original error is the ``__cause__``."""

    def __init__(self, job_name: str, cause: BaseException) -> None:
        super().__init__(f"Job '{job_name}' failed: {type(cause).__name__}: {cause}")
        self.job_name = job_name
        self.__cause__ = cause


class RetryError(ResilientCronError):
    """Base for errors raised by the retry policy."""

    def __init__(self, message: str, *, attempts: int, last_error: BaseException) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class RetryExhaustedError(RetryError):
    """Every attempt failed with a retryable error."""


class NonRetryableError(RetryError):
    """The operation failed with an error that must not be retried."""


class CircuitOpenError(ResilientCronError):
    """Circuit breaker is open; the protected call was not attempted."""

    def __init__(self, name: str, retry_after: float) -> None:
        super().__init__(
            f"Circuit breaker '{name}' is open (retry in {max(retry_after, 0.0):.1f}s)"
        )
        self.name = name
        self.retry_after = retry_after


class CommandError(ResilientCronError):
    """A command-backed job task failed."""


class CommandFailedError(CommandError):
    """Command exited with a non-zero status."""

    def __init__(self, argv: list[str], returncode: int, stderr: str = "") -> None:
        detail = f": {stderr.strip()[:200]}" if stderr.strip() else ""
        super().__init__(f"Command {argv[0]!r} exited with status {returncode}{detail}")
        self.argv = argv
        self.returncode = returncode
        self.stderr = stderr


class CommandTimeoutError(CommandError, TimeoutError):
    """Command did not finish within its timeout and was killed."""
