"""Normalized filesystem events backed by watchdog."""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import WatchError

LOGGER = logging.getLogger(__name__)

TEMPORARY_SUFFIXES = (".tmp", ".part", ".crdownload", ".partial", ".download", ".swp")
SYSTEM_FILENAMES = frozenset({"desktop.ini", "thumbs.db", ".ds_store"})


class EventKind(str, Enum):
    """Kinds of filesystem change the pipeline distinguishes."""

    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"


@dataclass(frozen=True, slots=True)
class WatchEvent:
    """A single normalized filesystem change.

    Attributes:
        path: Absolute path the event refers to (the destination for renames).
        kind: Normalized event kind.
        observed_at: Monotonic timestamp at which the event was observed.
        previous_path: Source path of a rename; ``None`` for other kinds.
    """

    path: Path
    kind: EventKind
    observed_at: float
    previous_path: Optional[Path] = None


def should_process(path: Path) -> bool:
    """Return whether ``path`` names a file the pipeline may rename.

    Hidden files, partial downloads, editor swap files, and OS metadata files are
    ignored.
    """
    name = path.name
    if not name or name.startswith("."):
        return False
    lowered = name.lower()
    if lowered.endswith(TEMPORARY_SUFFIXES):
        return False
    return lowered not in SYSTEM_FILENAMES


class EventSource:
    """Lazy, non-restartable stream of :class:`WatchEvent` for one root."""

    def __init__(
        self,
        root: Path,
        *,
        recursive: bool = False,
        poll_interval: float = 0.5,
        observer_factory: Callable[[], object] | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            root: Directory to watch.
            recursive: Whether subdirectories are watched.
            poll_interval: How often the iterator wakes up to check root health.
            observer_factory: Builds the watchdog observer; defaults to the platform
                observer.
        """
        self._root = root.expanduser().resolve()
        self._recursive = recursive
        self._poll_interval = poll_interval
        self._observer_factory = observer_factory or Observer
        self._observer: object | None = None
        self._queue: queue.Queue[WatchEvent | None] = queue.Queue()
        self._closed = threading.Event()
        self._consumed = False
        self._root_lost = threading.Event()

    @property
    def root(self) -> Path:
        """Return the watched root."""
        return self._root

    def start(self) -> None:
        """Begin receiving native notifications.

        Raises:
            WatchError: If the root is missing, not a directory, or unreadable.
        """
        if self._observer is not None:
            return
        if not self._root.is_dir():
            raise WatchError(f"Watch root {self._root} does not exist or is not a directory.")
        if not os.access(self._root, os.R_OK | os.X_OK):
            raise WatchError(f"Watch root {self._root} is not readable.")

        observer = self._observer_factory()
        handler = _EventForwarder(self._root, self._queue, self._root_lost)
        try:
            observer.schedule(handler, str(self._root), recursive=self._recursive)
            observer.start()
        except OSError as exc:
            raise WatchError(f"Cannot watch {self._root}: {exc}") from exc
        self._observer = observer
        LOGGER.info("Watching %s%s", self._root, " (recursive)" if self._recursive else "")

    def __iter__(self) -> Iterator[WatchEvent]:
        if self._consumed:
            raise RuntimeError("EventSource streams cannot be restarted; create a new source.")
        self._consumed = True
        return self._events()

    def close(self) -> None:
        """Stop the observer and end iteration."""
        self._closed.set()
        observer = self._observer
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)
            self._observer = None
        self._queue.put(None)

    def _events(self) -> Iterator[WatchEvent]:
        self.start()
        while True:
            try:
                event = self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                if self._closed.is_set():
                    return
                self._check_health()
                continue
            if event is None:
                if self._root_lost.is_set() and not self._closed.is_set():
                    raise WatchError(f"Watch root {self._root} was removed.")
                return
            yield event

    def _check_health(self) -> None:
        if self._root_lost.is_set() or not self._root.is_dir():
            raise WatchError(f"Watch root {self._root} was removed.")
        observer = self._observer
        if observer is not None and not observer.is_alive():
            raise WatchError(f"Filesystem observer for {self._root} stopped unexpectedly.")


class _EventForwarder(FileSystemEventHandler):
    """Translate watchdog callbacks into :class:`WatchEvent` objects."""

    def __init__(
        self,
        root: Path,
        queue_handle: queue.Queue[WatchEvent | None],
        root_lost: threading.Event,
    ) -> None:
        self._root = root
        self._queue = queue_handle
        self._root_lost = root_lost

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(event, EventKind.CREATED)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._forward(event, EventKind.MODIFIED)

    def on_closed(self, event: FileSystemEvent) -> None:
        self._forward(event, EventKind.MODIFIED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._forward(event, EventKind.REMOVED)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._forward(event, EventKind.RENAMED)

    def _forward(self, event: FileSystemEvent, kind: EventKind) -> None:
        source = Path(os.fsdecode(event.src_path))
        if event.is_directory:
            if source == self._root and kind in {EventKind.REMOVED, EventKind.RENAMED}:
                self._root_lost.set()
                self._queue.put(None)
            return

        observed_at = time.monotonic()
        if kind is EventKind.RENAMED:
            destination = Path(os.fsdecode(event.dest_path))
            if self._root not in destination.parents:
                # Moved out of the watched tree: nothing left to rename.
                self._queue.put(WatchEvent(source, EventKind.REMOVED, observed_at))
                return
            self._queue.put(WatchEvent(destination, kind, observed_at, previous_path=source))
            return
        self._queue.put(WatchEvent(source, kind, observed_at))


__all__ = [
    "EventKind",
    "WatchEvent",
    "EventSource",
    "should_process",
    "TEMPORARY_SUFFIXES",
    "SYSTEM_FILENAMES",
]
