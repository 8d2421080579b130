"""Errors raised while analyzing file contents."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification that drives the retry policy."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    EXHAUSTED = "exhausted"


class AnalysisError(Exception):
    """Raised when an analyzer cannot produce a description.

    Attributes:
        kind: Whether the failure may succeed on retry.
        attempts: Number of attempts made before giving up; ``0`` when raised by an
            analyzer rather than the dispatcher.
        cause: Message of the underlying failure for exhausted errors.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.PERMANENT,
        attempts: int = 0,
        cause: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.attempts = attempts
        self.cause = cause

    @property
    def reason(self) -> str:
        """Return the message recorded in history for this failure."""
        return str(self)

    @property
    def transient(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT


__all__ = ["ErrorKind", "AnalysisError"]
