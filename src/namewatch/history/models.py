"""History log data models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class HistoryStatus(str, Enum):
    """Outcome recorded for a rename attempt."""

    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"
    UNDONE = "undone"


class HistoryEntry(BaseModel):
    """Durable record of one rename attempt or one undo.

    Attributes:
        id: Monotonic identifier assigned by the store; ``0`` until appended.
        timestamp: Time the attempt finished.
        original_path: Path of the file before the attempt.
        new_path: Path after the rename, or the proposed path for skipped and failed
            attempts when one was computed.
        status: Outcome of the attempt.
        reason: Human-readable explanation for failed, skipped, and undone entries.
        undoes: Identifier of the applied entry an ``undone`` entry reverses.
        description: Raw analyzer description that produced the name.
        category: Category inferred for the file.
        tags: Tags inferred for the file.
    """

    model_config = ConfigDict(frozen=True)

    id: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    original_path: Path
    new_path: Optional[Path] = None
    status: HistoryStatus
    reason: Optional[str] = None
    undoes: Optional[int] = None
    description: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class HistoryFilter(BaseModel):
    """Selection criteria for :meth:`HistoryStore.list`.

    Attributes:
        path_prefix: Keep entries whose original or new path starts with this prefix.
        since: Keep entries recorded at or after this time.
        status: Keep entries with this status only.
        limit: Maximum number of entries returned, newest first.
    """

    path_prefix: Optional[str] = None
    since: Optional[datetime] = None
    status: Optional[HistoryStatus] = None
    limit: Optional[int] = Field(default=None, ge=1)

    def matches(self, entry: HistoryEntry) -> bool:
        if self.status is not None and entry.status != self.status:
            return False
        if self.since is not None:
            since = self.since if self.since.tzinfo else self.since.replace(tzinfo=timezone.utc)
            if entry.timestamp < since:
                return False
        if self.path_prefix:
            candidates = [str(entry.original_path)]
            if entry.new_path is not None:
                candidates.append(str(entry.new_path))
            if not any(candidate.startswith(self.path_prefix) for candidate in candidates):
                return False
        return True


class UndoSelector(BaseModel):
    """Which applied entries an undo targets: one id, the newest N, or all."""

    id: Optional[int] = None
    count: Optional[int] = Field(default=None, ge=1)
    all: bool = False

    @model_validator(mode="after")
    def _exactly_one(self) -> "UndoSelector":
        chosen = sum([self.id is not None, self.count is not None, self.all])
        if chosen != 1:
            raise ValueError("select exactly one of id, count, or all")
        return self


class UndoOutcome(BaseModel):
    """Result of undoing a single history entry.

    Attributes:
        entry_id: Identifier of the targeted entry.
        result: ``undone`` when reverted, ``noop`` when there was nothing to do,
            ``failed`` when the revert could not be performed, ``would_undo`` in dry runs.
        message: Explanation suitable for display.
        undo_entry_id: Identifier of the ``undone`` entry appended on success.
    """

    entry_id: int
    result: Literal["undone", "noop", "failed", "would_undo"]
    message: str
    original_path: Optional[Path] = None
    new_path: Optional[Path] = None
    undo_entry_id: Optional[int] = None


class UndoReport(BaseModel):
    """Aggregated outcomes of an undo request, newest entry first."""

    outcomes: List[UndoOutcome] = Field(default_factory=list)
    dry_run: bool = False

    def count(self, result: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.result == result)

    @property
    def undone(self) -> int:
        return self.count("undone")

    @property
    def failed(self) -> int:
        return self.count("failed")

    @property
    def noop(self) -> int:
        return self.count("noop")


__all__ = [
    "HistoryStatus",
    "HistoryEntry",
    "HistoryFilter",
    "UndoSelector",
    "UndoOutcome",
    "UndoReport",
]
