"""Bounded-concurrency analyzer invocation with retries."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Optional, Protocol

from .errors import AnalysisError, ErrorKind
from .models import AnalysisHints, AnalysisResult
from .retry import RetryPolicy

LOGGER = logging.getLogger(__name__)

EXHAUSTED_REASON = "analysis exhausted"
CANCELLED_REASON = "analysis cancelled"


class SupportsDescribe(Protocol):
    """Anything that can describe a file: a single analyzer or a registry."""

    def describe(self, path: Path, hints: AnalysisHints) -> AnalysisResult: ...


class AnalysisDispatcher:
    """Run analyzer calls under a concurrency limit and a retry policy.

    The dispatcher never touches the filesystem beyond what the analyzer reads and
    never writes history; callers turn the raised :class:`AnalysisError` into
    history entries.
    """

    def __init__(
        self,
        analyzer: SupportsDescribe,
        *,
        max_concurrent: int = 2,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], object] | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            analyzer: Analyzer or registry answering ``describe``.
            max_concurrent: Maximum simultaneous analyzer calls.
            policy: Retry policy; defaults to three attempts with exponential backoff.
            sleep: Backoff sleeper; defaults to an interruptible wait that
                :meth:`cancel` cuts short.
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._analyzer = analyzer
        self._slots = threading.BoundedSemaphore(max_concurrent)
        self._policy = policy or RetryPolicy()
        self._cancelled = threading.Event()
        self._sleep = sleep or self._cancelled.wait
        self._max_concurrent = max_concurrent

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def cancel(self) -> None:
        """Stop pending backoff waits; in-progress analyzer calls are not interrupted."""
        self._cancelled.set()

    def submit(
        self,
        path: Path,
        on_attempt: Optional[Callable[[int], None]] = None,
    ) -> AnalysisResult:
        """Describe ``path``, retrying transient failures.

        Args:
            path: File to analyze.
            on_attempt: Called with the one-based attempt number before each attempt.

        Returns:
            AnalysisResult: Result of the first successful attempt.

        Raises:
            AnalysisError: ``permanent`` errors immediately, ``exhausted`` once the
                retry budget for transient errors is spent.
        """
        attempt = 0
        while True:
            if self._cancelled.is_set():
                raise AnalysisError(CANCELLED_REASON, kind=ErrorKind.PERMANENT, attempts=attempt)
            attempt += 1
            if on_attempt is not None:
                on_attempt(attempt)

            outcome = self._attempt(path, attempt)
            if isinstance(outcome, AnalysisResult):
                return outcome
            error = outcome

            decision = self._policy.decide(attempt, error.kind)
            if not decision.retry:
                if error.kind is ErrorKind.TRANSIENT:
                    LOGGER.warning(
                        "Giving up on %s after %d attempt(s): %s", path, attempt, error
                    )
                    raise AnalysisError(
                        EXHAUSTED_REASON,
                        kind=ErrorKind.EXHAUSTED,
                        attempts=attempt,
                        cause=str(error),
                    ) from error
                error.attempts = attempt
                raise error

            LOGGER.info(
                "Attempt %d for %s failed (%s); retrying in %.1fs",
                attempt,
                path,
                error,
                decision.delay,
            )
            self._sleep(decision.delay)

    def _attempt(self, path: Path, attempt: int) -> AnalysisResult | AnalysisError:
        with self._slots:
            try:
                return self._analyzer.describe(path, AnalysisHints(attempt=attempt))
            except AnalysisError as exc:
                return exc
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Analyzer crashed on %s", path, exc_info=True)
                failure = AnalysisError(
                    f"analyzer error: {exc or type(exc).__name__}", kind=ErrorKind.PERMANENT
                )
                failure.__cause__ = exc
                return failure


__all__ = ["AnalysisDispatcher", "SupportsDescribe", "EXHAUSTED_REASON", "CANCELLED_REASON"]
