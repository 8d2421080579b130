"""Stability state machine tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from namewatch.watch import Debouncer, EventKind, FileProbe, PathPhase, WatchEvent, probe_file

from conftest import ManualClock


class FakeProbe:
    """Probe answering from a mutable mapping of path to (size, mtime)."""

    def __init__(self) -> None:
        self.files: dict[Path, FileProbe] = {}

    def __call__(self, path: Path) -> FileProbe | None:
        return self.files.get(path)


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def debouncer(clock: ManualClock, probe: FakeProbe) -> Debouncer:
    return Debouncer(debounce_seconds=2.0, confirm_seconds=0.5, probe=probe, clock=clock)


def _event(path: Path, kind: EventKind = EventKind.MODIFIED, **kwargs) -> WatchEvent:
    return WatchEvent(path, kind, 0.0, **kwargs)


def _settle(debouncer: Debouncer, clock: ManualClock) -> list:
    clock.advance(2.0)
    debouncer.poll()
    clock.advance(0.5)
    return debouncer.poll()


def test_burst_of_events_produces_one_stable_state(
    debouncer: Debouncer, clock: ManualClock, probe: FakeProbe
) -> None:
    path = Path("/inbox/photo.jpg")
    probe.files[path] = FileProbe(size=10, mtime_ns=1)

    first = debouncer.observe(_event(path, EventKind.CREATED))
    assert first is not None and first.phase is PathPhase.PENDING
    for _ in range(4):
        clock.advance(0.3)
        state = debouncer.observe(_event(path))
    assert state is not None and state.phase is PathPhase.SETTLING
    assert state.event_count == 5

    ready = _settle(debouncer, clock)

    assert [item.path for item in ready] == [path]
    assert ready[0].phase is PathPhase.STABLE
    assert len(debouncer) == 1


def test_nothing_is_ready_before_quiet_period(
    debouncer: Debouncer, clock: ManualClock, probe: FakeProbe
) -> None:
    path = Path("/inbox/doc.txt")
    probe.files[path] = FileProbe(size=1, mtime_ns=1)
    debouncer.observe(_event(path, EventKind.CREATED))

    clock.advance(1.9)

    assert debouncer.poll() == []
    assert debouncer.get(path).last_probe is None


def test_growing_file_is_not_stable_until_probes_agree(
    debouncer: Debouncer, clock: ManualClock, probe: FakeProbe
) -> None:
    path = Path("/inbox/big.iso")
    probe.files[path] = FileProbe(size=100, mtime_ns=1)
    debouncer.observe(_event(path, EventKind.CREATED))

    clock.advance(2.0)
    assert debouncer.poll() == []
    probe.files[path] = FileProbe(size=200, mtime_ns=2)
    clock.advance(0.5)
    assert debouncer.poll() == []
    assert debouncer.get(path).phase is PathPhase.PENDING

    clock.advance(0.5)
    ready = debouncer.poll()
    assert [item.path for item in ready] == [path]


def test_removed_before_stable_discards_state(
    debouncer: Debouncer, probe: FakeProbe
) -> None:
    path = Path("/inbox/tmp.jpg")
    probe.files[path] = FileProbe(size=1, mtime_ns=1)
    debouncer.observe(_event(path, EventKind.CREATED))

    assert debouncer.observe(_event(path, EventKind.REMOVED)) is None
    assert path not in debouncer


def test_file_vanishing_before_probe_is_dropped_silently(
    debouncer: Debouncer, clock: ManualClock
) -> None:
    path = Path("/inbox/gone.jpg")
    debouncer.observe(_event(path, EventKind.CREATED))

    assert _settle(debouncer, clock) == []
    assert len(debouncer) == 0


def test_rename_moves_tracking_to_new_path(
    debouncer: Debouncer, clock: ManualClock, probe: FakeProbe
) -> None:
    old = Path("/inbox/movie.mp4.part")
    new = Path("/inbox/movie.mp4")
    probe.files[new] = FileProbe(size=5, mtime_ns=1)
    debouncer.observe(_event(old, EventKind.CREATED))

    state = debouncer.observe(_event(new, EventKind.RENAMED, previous_path=old))

    assert state is not None and state.path == new
    assert old not in debouncer
    assert [item.path for item in _settle(debouncer, clock)] == [new]


def test_dispatch_happens_once_and_defers_events(
    debouncer: Debouncer, clock: ManualClock, probe: FakeProbe
) -> None:
    path = Path("/inbox/photo.jpg")
    probe.files[path] = FileProbe(size=1, mtime_ns=1)
    debouncer.observe(_event(path, EventKind.CREATED))
    _settle(debouncer, clock)

    state = debouncer.mark_dispatched(path)
    with pytest.raises(RuntimeError):
        debouncer.mark_dispatched(path)

    debouncer.observe(_event(path))
    debouncer.observe(_event(path, EventKind.REMOVED))
    assert state.phase is PathPhase.DISPATCHED
    assert state.removed
    assert debouncer.poll() == []

    deferred = debouncer.release(path, PathPhase.SKIPPED)
    assert [event.kind for event in deferred] == [EventKind.MODIFIED, EventKind.REMOVED]
    assert path not in debouncer


def test_release_requires_terminal_phase(
    debouncer: Debouncer, clock: ManualClock, probe: FakeProbe
) -> None:
    path = Path("/inbox/photo.jpg")
    probe.files[path] = FileProbe(size=1, mtime_ns=1)
    debouncer.observe(_event(path, EventKind.CREATED))

    with pytest.raises(ValueError):
        debouncer.release(path, PathPhase.STABLE)


def test_event_after_release_starts_fresh_episode(
    debouncer: Debouncer, clock: ManualClock, probe: FakeProbe
) -> None:
    path = Path("/inbox/photo.jpg")
    probe.files[path] = FileProbe(size=1, mtime_ns=1)
    debouncer.observe(_event(path, EventKind.CREATED))
    _settle(debouncer, clock)
    debouncer.mark_dispatched(path)
    debouncer.release(path, PathPhase.RECORDED)

    state = debouncer.observe(_event(path))

    assert state is not None
    assert state.phase is PathPhase.PENDING
    assert state.attempt_count == 0


def test_probe_file_reports_regular_files_only(tmp_path: Path) -> None:
    target = tmp_path / "file.bin"
    target.write_bytes(b"12345")

    probe = probe_file(target)

    assert probe is not None and probe.size == 5
    assert probe_file(tmp_path) is None
    assert probe_file(tmp_path / "missing") is None
