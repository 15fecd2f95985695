"""Retry policy for warehouse statement failures."""

from __future__ import annotations

from dataclasses import dataclass

from modelops.core.errors import ExecutionError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry for transient warehouse errors.

    Attributes:
        max_retries: Extra attempts allowed after the first one.
        backoff_seconds: Fixed wait between attempts.
    """

    max_retries: int = 1
    backoff_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must be >= 0")

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        """
        Decide whether a failed attempt is retried.

        Args:
            exc: Exception raised by the attempt.
            attempt: 1-based number of the attempt that just failed.
        """
        return is_transient(exc) and attempt <= self.max_retries


def is_transient(exc: BaseException) -> bool:
    """Return True for errors classified as transient (timeouts, rate limits)."""
    return isinstance(exc, ExecutionError) and exc.transient
