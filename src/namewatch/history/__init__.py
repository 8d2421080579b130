"""Append-only rename history with undo support."""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator

from pydantic import ValidationError

from .errors import HistoryError
from .models import (
    HistoryEntry,
    HistoryFilter,
    HistoryStatus,
    UndoOutcome,
    UndoReport,
    UndoSelector,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_HISTORY_PATH = Path("~/.namewatch/history.jsonl")


class HistoryStore:
    """JSON Lines log of every rename attempt.

    Each append is flushed and fsynced before its id is returned, so an entry that a
    caller has seen is guaranteed to survive a crash. Entries are never rewritten;
    undo appends an ``undone`` entry that references the applied one.

    Writers in other processes (a running watcher and a ``namewatch undo``) are
    serialized through an exclusive lock on a sibling ``.lock`` file.
    """

    def __init__(self, path: Path | str = DEFAULT_HISTORY_PATH) -> None:
        """Initialize the store.

        Args:
            path: Location of the JSON Lines log; created on first append.
        """
        self._path = Path(path).expanduser()
        self._lock = threading.RLock()
        self._next_id: int | None = None
        self._known_size = -1
        self._lock_fd: int | None = None
        self._lock_depth = 0

    @property
    def path(self) -> Path:
        """Return the history log location."""
        return self._path

    @property
    def clears_path(self) -> Path:
        """Return the audit log that records every clear operation."""
        return self._path.with_name(f"{self._path.stem}.clears.jsonl")

    @property
    def lock_path(self) -> Path:
        """Return the file locked while this store writes."""
        return self._path.with_name(f"{self._path.stem}.lock")

    # ------------------------------------------------------------------ #
    # Writes                                                             #
    # ------------------------------------------------------------------ #

    def append(self, entry: HistoryEntry) -> int:
        """Durably append ``entry`` and return its assigned id.

        Raises:
            HistoryError: If the entry cannot be written and synced to disk.
        """
        with self._exclusive():
            try:
                entry_id = self._allocate_id()
                stored = entry.model_copy(update={"id": entry_id})
                self._write_line(self._path, stored.model_dump_json())
                self._known_size = self._path.stat().st_size
            except OSError as exc:
                raise HistoryError(f"Could not append to history log {self._path}: {exc}") from exc
            self._next_id = entry_id + 1
            LOGGER.debug(
                "History #%d %s %s -> %s", entry_id, stored.status.value, stored.original_path,
                stored.new_path,
            )
            return entry_id

    def commit(self, entry: HistoryEntry) -> HistoryEntry:
        """Append ``entry`` and return the stored copy carrying its id."""
        entry_id = self.append(entry)
        return entry.model_copy(update={"id": entry_id})

    def clear(self, reason: str = "manual clear") -> int:
        """Empty the log after durably recording the clear itself.

        Ids keep increasing after a clear so references in exported reports stay unique.

        Args:
            reason: Explanation stored in the audit record.

        Returns:
            int: Number of entries that were removed.
        """
        with self._exclusive():
            entries = self.read_all()
            last_id = max((entry.id for entry in entries), default=0)
            last_id = max(last_id, (self._next_id or 1) - 1)
            record = {
                "cleared_at": datetime.now(timezone.utc).isoformat(),
                "entries": len(entries),
                "last_id": last_id,
                "reason": reason,
            }
            try:
                self._write_line(self.clears_path, json.dumps(record))
                if self._path.exists():
                    with self._path.open("w", encoding="utf-8") as handle:
                        handle.flush()
                        os.fsync(handle.fileno())
                    self._known_size = 0
            except OSError as exc:
                raise HistoryError(f"Could not clear history log {self._path}: {exc}") from exc
            self._next_id = last_id + 1
            LOGGER.info("Cleared %d history entries (%s)", len(entries), reason)
            return len(entries)

    # ------------------------------------------------------------------ #
    # Reads                                                              #
    # ------------------------------------------------------------------ #

    def read_all(self) -> list[HistoryEntry]:
        """Return every readable entry in id order.

        Torn or corrupt lines, such as a partial write interrupted by a crash, are
        skipped with a warning.
        """
        entries = [
            entry
            for entry in (self._parse(line, number) for number, line in self._lines(self._path))
            if entry is not None
        ]
        entries.sort(key=lambda entry: entry.id)
        return entries

    def list(
        self,
        criteria: HistoryFilter | None = None,
        **kwargs: Any,
    ) -> list[HistoryEntry]:
        """Return entries matching ``criteria``, newest first.

        Every call re-reads the log, so the result reflects appends made by other
        processes.

        Args:
            criteria: Filter to apply; keyword arguments build one when omitted.
            **kwargs: Fields of :class:`HistoryFilter`.
        """
        criteria = criteria or HistoryFilter(**kwargs)
        selected = [entry for entry in reversed(self.read_all()) if criteria.matches(entry)]
        if criteria.limit is not None:
            selected = selected[: criteria.limit]
        return selected

    def get(self, entry_id: int) -> HistoryEntry | None:
        """Return the entry with ``entry_id`` if present."""
        return next((entry for entry in self.read_all() if entry.id == entry_id), None)

    def fold(self) -> dict[Path, Path]:
        """Replay the log and map each original path to its current on-disk path.

        Applied entries count unless a later ``undone`` entry references them. Chains of
        renames (A -> B, then B -> C) collapse to A -> C.
        """
        return self._fold(self.read_all())

    def current_path(self, original_path: Path | str) -> Path:
        """Return where the file first seen at ``original_path`` lives now."""
        original = Path(original_path)
        return self.fold().get(original, original)

    # ------------------------------------------------------------------ #
    # Undo                                                               #
    # ------------------------------------------------------------------ #

    def undo(self, selector: UndoSelector, *, dry_run: bool = False) -> UndoReport:
        """Reverse selected applied entries, newest first, one entry at a time.

        A failure on one entry is reported and processing moves on to the next. Entries
        that are failed, skipped, or already undone produce ``noop`` outcomes.

        Args:
            selector: Target one id, the newest ``count`` undoable entries, or all of them.
            dry_run: Report what would happen without renaming anything.

        Returns:
            UndoReport: One outcome per targeted entry.
        """
        with self._exclusive():
            entries = self.read_all()
            undone_ids = {entry.undoes for entry in entries if entry.status is HistoryStatus.UNDONE}
            report = UndoReport(dry_run=dry_run)

            if selector.id is not None:
                target = next((entry for entry in entries if entry.id == selector.id), None)
                if target is None:
                    report.outcomes.append(
                        UndoOutcome(
                            entry_id=selector.id,
                            result="failed",
                            message=f"No history entry with id {selector.id}.",
                        )
                    )
                    return report
                targets = [target]
            else:
                undoable = [
                    entry
                    for entry in reversed(entries)
                    if entry.status is HistoryStatus.APPLIED and entry.id not in undone_ids
                ]
                targets = undoable if selector.all else undoable[: selector.count]

            for entry in targets:
                outcome = self._undo_entry(entry, entries, undone_ids, dry_run=dry_run)
                if outcome.result in {"undone", "would_undo"}:
                    undone_ids.add(entry.id)
                report.outcomes.append(outcome)
            return report

    def _undo_entry(
        self,
        entry: HistoryEntry,
        entries: Iterable[HistoryEntry],
        undone_ids: set[int | None],
        *,
        dry_run: bool,
    ) -> UndoOutcome:
        def outcome(result: str, message: str, **extra: Any) -> UndoOutcome:
            return UndoOutcome(
                entry_id=entry.id,
                result=result,  # type: ignore[arg-type]
                message=message,
                original_path=entry.original_path,
                new_path=entry.new_path,
                **extra,
            )

        if entry.status is not HistoryStatus.APPLIED:
            return outcome("noop", f"Entry {entry.id} is {entry.status.value}; nothing to undo.")
        if entry.id in undone_ids:
            return outcome("noop", f"Entry {entry.id} was already undone.")
        assert entry.new_path is not None

        later = next(
            (
                other
                for other in entries
                if other.id > entry.id
                and other.status is HistoryStatus.APPLIED
                and other.id not in undone_ids
                and other.original_path == entry.new_path
            ),
            None,
        )
        if later is not None:
            return outcome(
                "failed",
                f"{entry.new_path.name} was renamed again by entry {later.id}; undo that first.",
            )
        if not entry.new_path.exists():
            return outcome("failed", f"{entry.new_path} no longer exists.")
        if entry.original_path.exists() and not _same_file(entry.original_path, entry.new_path):
            return outcome("failed", f"{entry.original_path} is now occupied by another file.")
        if dry_run:
            return outcome("would_undo", f"Would rename {entry.new_path} -> {entry.original_path}.")

        try:
            os.rename(entry.new_path, entry.original_path)
        except OSError as exc:
            return outcome("failed", f"Rename back failed: {exc}")

        try:
            undo_id = self.append(
                HistoryEntry(
                    original_path=entry.original_path,
                    new_path=entry.new_path,
                    status=HistoryStatus.UNDONE,
                    reason=f"undo of entry {entry.id}",
                    undoes=entry.id,
                    description=entry.description,
                    category=entry.category,
                    tags=list(entry.tags),
                )
            )
        except HistoryError:
            _revert(entry.original_path, entry.new_path)
            raise

        LOGGER.info("Undid entry %d: %s -> %s", entry.id, entry.new_path, entry.original_path)
        return outcome(
            "undone",
            f"Renamed {entry.new_path.name} back to {entry.original_path.name}.",
            undo_entry_id=undo_id,
        )

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Hold the thread lock and, at the outermost level, the inter-process file lock."""
        with self._lock:
            if self._lock_depth == 0:
                try:
                    self._lock_fd = _lock_file(self.lock_path)
                except OSError as exc:
                    raise HistoryError(f"Could not lock {self.lock_path}: {exc}") from exc
            self._lock_depth += 1
            try:
                yield
            finally:
                self._lock_depth -= 1
                if self._lock_depth == 0 and self._lock_fd is not None:
                    _unlock_file(self._lock_fd)
                    self._lock_fd = None

    def _allocate_id(self) -> int:
        current_size = self._path.stat().st_size if self._path.exists() else 0
        if self._next_id is None or current_size != self._known_size:
            # Another process may have appended since our last write.
            highest = max((entry.id for entry in self.read_all()), default=0)
            for _, line in self._lines(self.clears_path):
                try:
                    highest = max(highest, int(json.loads(line).get("last_id", 0)))
                except (ValueError, AttributeError, TypeError):
                    LOGGER.warning("Ignoring malformed clear record in %s", self.clears_path)
            self._next_id = max(self._next_id or 1, highest + 1)
            self._known_size = current_size
        return self._next_id

    def _write_line(self, path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        created = not path.exists()
        with path.open("a+b") as handle:
            handle.seek(0, os.SEEK_END)
            prefix = b""
            if handle.tell() > 0:
                handle.seek(-1, os.SEEK_END)
                if handle.read(1) != b"\n":
                    prefix = b"\n"
                handle.seek(0, os.SEEK_END)
            handle.write(prefix + payload.encode("utf-8") + b"\n")
            handle.flush()
            os.fsync(handle.fileno())
        if created:
            _fsync_directory(path.parent)

    def _lines(self, path: Path) -> Iterable[tuple[int, str]]:
        if not path.exists():
            return []
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise HistoryError(f"Could not read {path}: {exc}") from exc
        return [(number, line) for number, line in enumerate(text.splitlines(), 1) if line.strip()]

    def _parse(self, line: str, number: int) -> HistoryEntry | None:
        try:
            return HistoryEntry.model_validate_json(line)
        except ValidationError as exc:
            LOGGER.warning("Skipping unreadable history line %d in %s: %s", number, self._path, exc)
            return None

    @staticmethod
    def _fold(entries: list[HistoryEntry]) -> dict[Path, Path]:
        undone = {entry.undoes for entry in entries if entry.status is HistoryStatus.UNDONE}
        current: dict[Path, Path] = {}
        origin_of: dict[Path, Path] = {}
        for entry in entries:
            if entry.status is not HistoryStatus.APPLIED or entry.id in undone:
                continue
            if entry.new_path is None:
                continue
            origin = origin_of.pop(entry.original_path, entry.original_path)
            current[origin] = entry.new_path
            origin_of[entry.new_path] = origin
        return current


def _same_file(first: Path, second: Path) -> bool:
    try:
        return os.path.samefile(first, second)
    except OSError:
        return False


def _fsync_directory(directory: Path) -> None:
    if not hasattr(os, "O_DIRECTORY"):
        return
    fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _revert(current: Path, previous: Path) -> None:
    """Move ``current`` back to ``previous`` after a failed append, logging any error."""
    try:
        os.rename(current, previous)
    except OSError as exc:
        LOGGER.error("Could not move %s back to %s: %s", current, previous, exc)


def _lock_file(path: Path) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_CREAT | os.O_RDWR, 0o644)
    try:
        if sys.platform == "win32":
            import msvcrt

            msvcrt.locking(fd, msvcrt.LK_LOCK, 1)
        else:
            import fcntl

            fcntl.flock(fd, fcntl.LOCK_EX)
    except OSError:
        os.close(fd)
        raise
    return fd


def _unlock_file(fd: int) -> None:
    try:
        if sys.platform == "win32":
            import msvcrt

            os.lseek(fd, 0, os.SEEK_SET)
            msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
        else:
            import fcntl

            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


__all__ = [
    "DEFAULT_HISTORY_PATH",
    "HistoryStore",
    "HistoryEntry",
    "HistoryFilter",
    "HistoryStatus",
    "UndoSelector",
    "UndoOutcome",
    "UndoReport",
    "HistoryError",
]
