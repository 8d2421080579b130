"""Pipeline coordinator tying events, analysis, renames, and history together."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections import Counter, deque
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

from namewatch.analysis import AnalysisDispatcher, AnalysisError, AnalysisResult
from namewatch.config.models import WatchSettings
from namewatch.history import HistoryEntry, HistoryError, HistoryStatus
from namewatch.organization import NamingError, RenameEngine

from .debounce import Debouncer, FileProbe, PathPhase, PathState, probe_file
from .errors import WatchError
from .events import EventKind, EventSource, WatchEvent, should_process

LOGGER = logging.getLogger(__name__)

SOURCE_REMOVED_REASON = "source removed"
DRY_RUN_REASON = "dry-run"
SHUTDOWN_REASON = "shutdown"
_RECENT_FAILURES = 20

EntryCallback = Callable[[HistoryEntry], None]
_FileId = tuple[int, int]


@dataclass(slots=True)
class CoordinatorStatus:
    """Point-in-time view of the pipeline.

    Attributes:
        tracked_paths: Paths currently in the state table.
        in_flight: Episodes dispatched and not yet recorded.
        recent_failures: Most recent failed or skipped entries, oldest first.
        processed: Terminal entries recorded since start.
        phases: Number of tracked paths per phase.
    """

    tracked_paths: int
    in_flight: int
    recent_failures: list[HistoryEntry]
    processed: int
    phases: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class _Episode:
    state: PathState
    future: Optional[Future] = None
    abandoned: bool = False


class PipelineCoordinator:
    """Own every path's lifecycle from first event to terminal history entry.

    Events may arrive from any thread through :meth:`handle_event`. :meth:`tick`
    advances the stability state machine and dispatches stable paths to a bounded
    worker pool. Each worker analyzes its file and then, holding the coordinator lock,
    records exactly one terminal entry for the episode.
    """

    def __init__(
        self,
        *,
        dispatcher: AnalysisDispatcher,
        engine: RenameEngine,
        settings: WatchSettings | None = None,
        dry_run: bool = False,
        on_entry: EntryCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
        probe: Callable[[Path], FileProbe | None] = probe_file,
    ) -> None:
        """Initialize the coordinator.

        Args:
            dispatcher: Runs analyzer calls with retries.
            engine: Derives names, renames files, and writes history.
            settings: Watch settings; defaults to :class:`WatchSettings`.
            dry_run: Record ``skipped "dry-run"`` entries instead of renaming.
            on_entry: Receives every terminal history entry.
            clock: Monotonic clock shared with the debouncer.
            probe: File probe shared with the debouncer.
        """
        self._settings = settings or WatchSettings()
        self._dispatcher = dispatcher
        self._engine = engine
        self._dry_run = dry_run
        self._on_entry = on_entry
        self._clock = clock
        self._debouncer = Debouncer(
            debounce_seconds=self._settings.debounce_seconds,
            confirm_seconds=self._settings.stability_confirm_seconds,
            probe=probe,
            clock=clock,
        )
        self._lock = threading.RLock()
        self._max_in_flight = dispatcher.max_concurrent
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_in_flight, thread_name_prefix="namewatch-analysis"
        )
        self._in_flight: dict[Path, _Episode] = {}
        self._suppressed: dict[Path, tuple[Optional[_FileId], float]] = {}
        self._recent_failures: deque[HistoryEntry] = deque(maxlen=_RECENT_FAILURES)
        self._processed = 0
        self._accepting = True
        self._closed = False
        self._fatal: BaseException | None = None
        self._sources: list[EventSource] = []
        self._stop_event: threading.Event | None = None

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    def handle_event(self, event: WatchEvent) -> None:
        """Route one filesystem event into the state table; safe from any thread."""
        with self._lock:
            if not self._accepting:
                return
            self._route(event)

    def tick(self) -> None:
        """Advance timers and dispatch stable paths while worker slots are free.

        Raises:
            WatchError: If an event source failed.
            HistoryError: If a worker could not record its outcome.
        """
        self._raise_fatal()
        with self._lock:
            if not self._accepting:
                return
            for state in self._debouncer.poll():
                if len(self._in_flight) >= self._max_in_flight:
                    break
                self._dispatch(state)

    def run(
        self,
        sources: Iterable[EventSource],
        stop_event: threading.Event | None = None,
    ) -> None:
        """Consume ``sources`` until ``stop_event`` is set or a fatal error occurs.

        One consumer thread is started per source; the tick loop runs on the calling
        thread. The coordinator is shut down before this method returns.

        Raises:
            WatchError: If a source cannot be started or fails mid-watch.
            HistoryError: If the history log cannot be written.
        """
        stop_event = stop_event or threading.Event()
        self._stop_event = stop_event
        consumers: list[threading.Thread] = []
        try:
            for index, source in enumerate(sources):
                source.start()
                with self._lock:
                    self._sources.append(source)
                consumer = threading.Thread(
                    target=self._consume,
                    args=(source, stop_event),
                    name=f"namewatch-events-{index}",
                    daemon=True,
                )
                consumer.start()
                consumers.append(consumer)

            while not stop_event.is_set():
                self.tick()
                stop_event.wait(self._settings.tick_seconds)
            self._raise_fatal()
        finally:
            self.shutdown()
            for consumer in consumers:
                consumer.join(timeout=1.0)

    def shutdown(self, grace_seconds: float | None = None) -> None:
        """Stop intake and let in-flight work drain until the grace deadline.

        Episodes still analyzing at the deadline are recorded as ``failed "shutdown"``.
        An episode that already started applying its rename completes first, because
        applying holds the coordinator lock.
        """
        grace = self._settings.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._accepting = False
            sources = list(self._sources)
            futures = [ep.future for ep in self._in_flight.values() if ep.future is not None]
            pending = len(self._debouncer)

        for source in sources:
            source.close()
        if futures:
            LOGGER.info("Waiting up to %.1fs for %d analysis job(s)", grace, len(futures))
            wait_futures(futures, timeout=grace)

        abandoned: list[HistoryEntry] = []
        with self._lock:
            for path, episode in list(self._in_flight.items()):
                episode.abandoned = True
                entry = self._engine.record_failure(path, SHUTDOWN_REASON)
                self._complete(episode, entry, PathPhase.FAILED)
                abandoned.append(entry)
        self._dispatcher.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)

        for entry in abandoned:
            self._notify(entry)
        if pending - len(abandoned) > 0:
            LOGGER.info("Dropped %d path(s) that had not settled", pending - len(abandoned))

    def status(self) -> CoordinatorStatus:
        """Return counts describing the current pipeline state."""
        with self._lock:
            phases = Counter(state.phase.value for state in self._debouncer.states())
            return CoordinatorStatus(
                tracked_paths=len(self._debouncer),
                in_flight=len(self._in_flight),
                recent_failures=list(self._recent_failures),
                processed=self._processed,
                phases=dict(phases),
            )

    def process_existing(self, root: Path, *, recursive: bool = False) -> int:
        """Seed ``created`` events for files already present under ``root``.

        Returns:
            int: Number of events seeded.

        Raises:
            WatchError: If ``root`` is not a readable directory.
        """
        root = root.expanduser().resolve()
        if not root.is_dir():
            raise WatchError(f"Watch root {root} does not exist or is not a directory.")
        try:
            candidates = sorted(root.rglob("*") if recursive else root.iterdir())
        except OSError as exc:
            raise WatchError(f"Cannot read {root}: {exc}") from exc

        seeded = 0
        for path in candidates:
            if path.is_file():
                self.handle_event(WatchEvent(path, EventKind.CREATED, self._clock()))
                seeded += 1
        return seeded

    def drain(
        self,
        *,
        sleep: Callable[[float], object] = time.sleep,
        timeout: float | None = None,
    ) -> bool:
        """Tick until every tracked path reached a terminal phase.

        Returns:
            bool: ``True`` when the table emptied, ``False`` if ``timeout`` elapsed.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            self.tick()
            with self._lock:
                if not len(self._debouncer) and not self._in_flight:
                    return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            sleep(self._settings.tick_seconds)

    def wait_for_in_flight(self, timeout: float | None = None) -> bool:
        """Block until the currently dispatched episodes finish."""
        with self._lock:
            futures = [ep.future for ep in self._in_flight.values() if ep.future is not None]
        _, not_done = wait_futures(futures, timeout=timeout)
        self._raise_fatal()
        return not not_done

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _route(self, event: WatchEvent) -> None:
        now = self._clock()
        self._expire_suppressions(now)

        if event.kind is EventKind.RENAMED and event.previous_path is not None:
            keep_new = self._wanted(event.path)
            keep_old = self._wanted(event.previous_path)
            if keep_new and keep_old:
                self._debouncer.observe(event)
            elif keep_new:
                self._debouncer.observe(WatchEvent(event.path, EventKind.CREATED, event.observed_at))
            elif keep_old and not event.previous_path.exists():
                self._debouncer.observe(
                    WatchEvent(event.previous_path, EventKind.REMOVED, event.observed_at)
                )
            return

        if self._wanted(event.path):
            self._debouncer.observe(event)

    def _wanted(self, path: Path) -> bool:
        if not should_process(path):
            return False
        echo = self._suppressed.get(path)
        if echo is None:
            return True
        renamed_id, _ = echo
        current = _file_id(path)
        if current is None or current == renamed_id:
            return False
        # A different file now lives at a name the pipeline just renamed away from.
        del self._suppressed[path]
        return True

    def _expire_suppressions(self, now: float) -> None:
        for path, (_, expiry) in list(self._suppressed.items()):
            if expiry <= now:
                del self._suppressed[path]

    def _suppress_echo(self, entry: HistoryEntry) -> None:
        """Ignore events caused by the rename in ``entry`` for a short window.

        Only the renamed file is ignored: events on either name are dropped while the
        path is missing or still resolves to the renamed file.
        """
        if entry.new_path is None:
            return
        expiry = self._clock() + self._settings.suppress_seconds
        renamed_id = _file_id(entry.new_path)
        for path in (entry.original_path, entry.new_path):
            self._suppressed[path] = (renamed_id, expiry)

    def _dispatch(self, state: PathState) -> None:
        self._debouncer.mark_dispatched(state.path)
        episode = _Episode(state=state)
        self._in_flight[state.path] = episode
        LOGGER.debug("Dispatching %s", state.path)
        episode.future = self._executor.submit(self._run_episode, episode)

    def _run_episode(self, episode: _Episode) -> None:
        state = episode.state

        def count_attempt(attempt: int) -> None:
            with self._lock:
                state.attempt_count = attempt

        try:
            result = self._dispatcher.submit(state.path, on_attempt=count_attempt)
        except AnalysisError as exc:
            self._finish(episode, None, exc)
        else:
            self._finish(episode, result, None)

    def _finish(
        self,
        episode: _Episode,
        result: Optional[AnalysisResult],
        error: Optional[AnalysisError],
    ) -> None:
        with self._lock:
            if episode.abandoned:
                LOGGER.debug("Discarding late outcome for %s", episode.state.path)
                return
            try:
                entry, phase = self._conclude(episode.state, result, error)
            except HistoryError as exc:
                LOGGER.error("History log failure while recording %s: %s", episode.state.path, exc)
                self._fail(exc)
                self._in_flight.pop(episode.state.path, None)
                self._debouncer.release(episode.state.path, PathPhase.FAILED)
                return
            except Exception as exc:
                LOGGER.exception("Unexpected error while finishing %s", episode.state.path)
                self._fail(exc)
                self._in_flight.pop(episode.state.path, None)
                self._debouncer.release(episode.state.path, PathPhase.FAILED)
                return
            deferred = self._complete(episode, entry, phase)
            if self._accepting:
                for event in deferred:
                    self._route(event)
        self._notify(entry)

    def _conclude(
        self,
        state: PathState,
        result: Optional[AnalysisResult],
        error: Optional[AnalysisError],
    ) -> tuple[HistoryEntry, PathPhase]:
        path = state.path
        if state.removed or not path.exists():
            entry = self._engine.record_skip(path, SOURCE_REMOVED_REASON, result=result)
            return entry, PathPhase.SKIPPED

        if error is not None:
            state.last_error = error.reason
            return self._engine.record_skip(path, error.reason), PathPhase.SKIPPED

        assert result is not None
        try:
            decision = self._engine.decide(result)
        except NamingError as exc:
            state.last_error = str(exc)
            return self._engine.record_skip(path, str(exc), result=result), PathPhase.SKIPPED

        if self._dry_run:
            entry = self._engine.record_skip(
                path, DRY_RUN_REASON, proposed=decision.target_path, result=result
            )
            return entry, PathPhase.SKIPPED

        entry = self._engine.apply(decision)
        if entry.status is HistoryStatus.APPLIED:
            self._suppress_echo(entry)
            return entry, PathPhase.RECORDED
        state.last_error = entry.reason
        if entry.status is HistoryStatus.FAILED:
            return entry, PathPhase.FAILED
        return entry, PathPhase.SKIPPED

    def _complete(self, episode: _Episode, entry: HistoryEntry, phase: PathPhase) -> list[WatchEvent]:
        path = episode.state.path
        self._in_flight.pop(path, None)
        self._processed += 1
        if entry.status in {HistoryStatus.FAILED, HistoryStatus.SKIPPED}:
            self._recent_failures.append(entry)
        return self._debouncer.release(path, phase)

    def _notify(self, entry: HistoryEntry) -> None:
        if self._on_entry is not None:
            self._on_entry(entry)

    def _consume(self, source: EventSource, stop_event: threading.Event) -> None:
        try:
            for event in source:
                if stop_event.is_set():
                    break
                self.handle_event(event)
        except WatchError as exc:
            LOGGER.error("%s", exc)
            self._fail(exc)

    def _fail(self, exc: BaseException) -> None:
        with self._lock:
            if self._fatal is None:
                self._fatal = exc
        if self._stop_event is not None:
            self._stop_event.set()

    def _raise_fatal(self) -> None:
        with self._lock:
            fatal = self._fatal
        if fatal is not None:
            raise fatal


def _file_id(path: Path) -> Optional[_FileId]:
    try:
        stat = os.stat(path)
    except OSError:
        return None
    return stat.st_dev, stat.st_ino


__all__ = [
    "PipelineCoordinator",
    "CoordinatorStatus",
    "SOURCE_REMOVED_REASON",
    "DRY_RUN_REASON",
    "SHUTDOWN_REASON",
]
