"""Per-path stability state machine.

A path enters the table on its first event and leaves it when its episode reaches a
terminal phase. A file is considered stable only after the debounce window has
passed without events *and* two size/mtime probes, separated by the confirmation
interval, agree. Large files that are still being written keep changing between
probes and are therefore never dispatched half-written.
"""

from __future__ import annotations

import logging
import os
import stat
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .errors import StabilityAbort
from .events import EventKind, WatchEvent

LOGGER = logging.getLogger(__name__)


class PathPhase(str, Enum):
    """Lifecycle phases of a tracked path."""

    IDLE = "idle"
    PENDING = "pending"
    SETTLING = "settling"
    STABLE = "stable"
    DISPATCHED = "dispatched"
    RECORDED = "recorded"
    SKIPPED = "skipped"
    FAILED = "failed"
    REMOVED = "removed"


TERMINAL_PHASES = frozenset(
    {PathPhase.RECORDED, PathPhase.SKIPPED, PathPhase.FAILED, PathPhase.REMOVED}
)


@dataclass(frozen=True, slots=True)
class FileProbe:
    """Size and modification time observed for a file."""

    size: int
    mtime_ns: int


def probe_file(path: Path) -> FileProbe | None:
    """Return a probe for ``path`` or ``None`` when it is missing or not a regular file."""
    try:
        info = os.stat(path)
    except OSError:
        return None
    if not stat.S_ISREG(info.st_mode):
        return None
    return FileProbe(size=info.st_size, mtime_ns=info.st_mtime_ns)


@dataclass(slots=True)
class PathState:
    """Mutable tracking record for one path, owned by the coordinator.

    Attributes:
        path: Normalized absolute path.
        phase: Current lifecycle phase.
        first_event_at: Clock value of the first event in this episode.
        last_event_at: Clock value of the most recent event.
        stable_since: Clock value at which the file was confirmed stable.
        attempt_count: Analyzer attempts made during this episode.
        last_error: Last error message recorded for the episode.
        last_probe: Most recent size/mtime probe.
        probe_at: Clock value of ``last_probe``.
        removed: A removal arrived while the path was dispatched.
        deferred: Events received while dispatched, replayed after release.
        event_count: Number of events folded into this episode.
    """

    path: Path
    phase: PathPhase = PathPhase.IDLE
    first_event_at: float = 0.0
    last_event_at: float = 0.0
    stable_since: Optional[float] = None
    attempt_count: int = 0
    last_error: Optional[str] = None
    last_probe: Optional[FileProbe] = None
    probe_at: Optional[float] = None
    removed: bool = False
    deferred: list[WatchEvent] = field(default_factory=list)
    event_count: int = 0


class Debouncer:
    """Coalesce bursts of events per path into one stability episode."""

    def __init__(
        self,
        *,
        debounce_seconds: float,
        confirm_seconds: float,
        probe: Callable[[Path], FileProbe | None] = probe_file,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the debouncer.

        Args:
            debounce_seconds: Quiet period required after the last event.
            confirm_seconds: Gap between the two stability probes.
            probe: Function returning a size/mtime probe or ``None`` if the file is gone.
            clock: Monotonic clock used for every timing decision.
        """
        self._debounce = debounce_seconds
        self._confirm = confirm_seconds
        self._probe = probe
        self._clock = clock
        self._states: dict[Path, PathState] = {}

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, path: object) -> bool:
        return path in self._states

    def get(self, path: Path) -> PathState | None:
        return self._states.get(path)

    def states(self) -> list[PathState]:
        """Return the tracked states ordered by first event."""
        return sorted(self._states.values(), key=lambda state: state.first_event_at)

    def observe(self, event: WatchEvent) -> PathState | None:
        """Fold ``event`` into the state table.

        Renames are split: the previous path is treated as removed and the new path as
        created.

        Returns:
            PathState | None: State of ``event.path`` after the event, or ``None`` when
            the path is no longer tracked.
        """
        if event.kind is EventKind.RENAMED and event.previous_path is not None:
            self._observe_one(
                WatchEvent(event.previous_path, EventKind.REMOVED, event.observed_at)
            )
            return self._observe_one(WatchEvent(event.path, EventKind.CREATED, event.observed_at))
        return self._observe_one(event)

    def poll(self) -> list[PathState]:
        """Advance timers and probes, returning every state awaiting dispatch.

        States are returned oldest first so dispatch order follows arrival order.
        """
        now = self._clock()
        for state in list(self._states.values()):
            if state.phase not in (PathPhase.PENDING, PathPhase.SETTLING):
                continue
            if now - state.last_event_at < self._debounce:
                continue
            if state.probe_at is not None and now - state.probe_at < self._confirm:
                continue
            try:
                self._confirm_stability(state, now)
            except StabilityAbort as exc:
                LOGGER.debug("Dropping %s: %s", state.path, exc)
                state.phase = PathPhase.REMOVED
                self._states.pop(state.path, None)

        ready = [state for state in self._states.values() if state.phase is PathPhase.STABLE]
        ready.sort(key=lambda state: (state.stable_since or 0.0, state.first_event_at))
        return ready

    def mark_dispatched(self, path: Path) -> PathState:
        """Move a stable path to ``dispatched``; valid exactly once per episode.

        Raises:
            RuntimeError: If the path is not currently stable.
        """
        state = self._states.get(path)
        if state is None or state.phase is not PathPhase.STABLE:
            phase = state.phase.value if state else "untracked"
            raise RuntimeError(f"Cannot dispatch {path}: phase is {phase}.")
        state.phase = PathPhase.DISPATCHED
        return state

    def release(self, path: Path, phase: PathPhase) -> list[WatchEvent]:
        """End the episode for ``path`` and return the events deferred during it.

        Raises:
            ValueError: If ``phase`` is not terminal.
        """
        if phase not in TERMINAL_PHASES:
            raise ValueError(f"{phase.value} is not a terminal phase.")
        state = self._states.pop(path, None)
        if state is None:
            return []
        state.phase = phase
        return list(state.deferred)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _observe_one(self, event: WatchEvent) -> PathState | None:
        now = self._clock()
        state = self._states.get(event.path)

        if state is not None and state.phase is PathPhase.DISPATCHED:
            state.deferred.append(event)
            if event.kind is EventKind.REMOVED:
                state.removed = True
            return state

        if event.kind is EventKind.REMOVED:
            if state is not None:
                LOGGER.debug("%s removed while %s", event.path, state.phase.value)
                state.phase = PathPhase.REMOVED
                self._states.pop(event.path, None)
            return None

        if state is None:
            state = PathState(
                path=event.path,
                phase=PathPhase.PENDING,
                first_event_at=now,
                last_event_at=now,
                event_count=1,
            )
            self._states[event.path] = state
            return state

        state.phase = PathPhase.SETTLING
        state.last_event_at = now
        state.last_probe = None
        state.probe_at = None
        state.stable_since = None
        state.event_count += 1
        return state

    def _confirm_stability(self, state: PathState, now: float) -> None:
        current = self._probe(state.path)
        if current is None:
            raise StabilityAbort(f"{state.path} disappeared before it settled")
        if state.last_probe is not None and current == state.last_probe:
            state.phase = PathPhase.STABLE
            state.stable_since = now
            LOGGER.debug("%s is stable after %d event(s)", state.path, state.event_count)
            return
        state.last_probe = current
        state.probe_at = now


__all__ = [
    "PathPhase",
    "TERMINAL_PHASES",
    "FileProbe",
    "probe_file",
    "PathState",
    "Debouncer",
]
