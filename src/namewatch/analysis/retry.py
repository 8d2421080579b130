"""Retry policy for analyzer attempts."""

from __future__ import annotations

from dataclasses import dataclass

from namewatch.config.models import RetrySettings

from .errors import ErrorKind


@dataclass(frozen=True, slots=True)
class RetryDecision:
    """Whether to try again and how long to wait first."""

    retry: bool
    delay: float = 0.0


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff for transient errors, no retries for anything else.

    Attributes:
        max_attempts: Total attempts allowed, including the first.
        initial_backoff: Delay after the first failed attempt.
        multiplier: Growth factor per further attempt.
        max_backoff: Upper bound on a single delay.
    """

    max_attempts: int = 3
    initial_backoff: float = 1.0
    multiplier: float = 2.0
    max_backoff: float = 30.0

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            initial_backoff=settings.initial_backoff_seconds,
            multiplier=settings.multiplier,
            max_backoff=settings.max_backoff_seconds,
        )

    def backoff(self, attempt_count: int) -> float:
        """Return the delay after ``attempt_count`` failed attempts."""
        delay = self.initial_backoff * self.multiplier ** max(0, attempt_count - 1)
        return min(delay, self.max_backoff)

    def decide(self, attempt_count: int, error_kind: ErrorKind) -> RetryDecision:
        """Decide what follows a failed attempt.

        Args:
            attempt_count: Attempts made so far, including the one that just failed.
            error_kind: Classification of the failure.

        Returns:
            RetryDecision: ``retry`` is true only for transient errors with attempts left.
        """
        if error_kind is not ErrorKind.TRANSIENT or attempt_count >= self.max_attempts:
            return RetryDecision(retry=False)
        return RetryDecision(retry=True, delay=self.backoff(attempt_count))


__all__ = ["RetryDecision", "RetryPolicy"]
