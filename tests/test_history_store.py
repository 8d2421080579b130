"""History store tests."""

from __future__ import annotations

import json
import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from namewatch.history import (
    HistoryEntry,
    HistoryError,
    HistoryFilter,
    HistoryStatus,
    HistoryStore,
    UndoSelector,
)


def _applied(store: HistoryStore, source: Path, target: Path) -> HistoryEntry:
    """Rename ``source`` to ``target`` on disk and record it as applied.

    Args:
        store: Store receiving the entry.
        source: Existing file.
        target: New location.

    Returns:
        HistoryEntry: The stored entry.
    """
    source.rename(target)
    return store.commit(
        HistoryEntry(original_path=source, new_path=target, status=HistoryStatus.APPLIED)
    )


def test_append_assigns_monotonic_ids(store: HistoryStore, tmp_path: Path) -> None:
    first = store.append(HistoryEntry(original_path=tmp_path / "a", status=HistoryStatus.SKIPPED))
    second = store.append(HistoryEntry(original_path=tmp_path / "b", status=HistoryStatus.FAILED))

    assert (first, second) == (1, 2)
    assert [entry.id for entry in store.read_all()] == [1, 2]


def test_ids_continue_after_restart_and_across_writers(store: HistoryStore, tmp_path: Path) -> None:
    store.append(HistoryEntry(original_path=tmp_path / "a", status=HistoryStatus.SKIPPED))
    other = HistoryStore(store.path)

    other_id = other.append(HistoryEntry(original_path=tmp_path / "b", status=HistoryStatus.SKIPPED))
    mine = store.append(HistoryEntry(original_path=tmp_path / "c", status=HistoryStatus.SKIPPED))

    assert other_id == 2
    assert mine == 3


def test_torn_line_is_skipped_and_next_append_starts_fresh_line(
    store: HistoryStore, tmp_path: Path
) -> None:
    store.append(HistoryEntry(original_path=tmp_path / "a", status=HistoryStatus.SKIPPED))
    with store.path.open("a", encoding="utf-8") as handle:
        handle.write('{"id": 2, "original_pa')

    entry_id = store.append(HistoryEntry(original_path=tmp_path / "b", status=HistoryStatus.SKIPPED))

    entries = store.read_all()
    assert [entry.original_path.name for entry in entries] == ["a", "b"]
    assert entry_id == 2
    assert store.path.read_text(encoding="utf-8").endswith("\n")


def test_append_failure_raises_history_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    store = HistoryStore(blocker / "history.jsonl")

    with pytest.raises(HistoryError):
        store.append(HistoryEntry(original_path=tmp_path / "a", status=HistoryStatus.SKIPPED))


def test_list_filters_newest_first(store: HistoryStore, tmp_path: Path) -> None:
    old = datetime.now(timezone.utc) - timedelta(days=3)
    store.append(
        HistoryEntry(original_path=tmp_path / "old.txt", status=HistoryStatus.SKIPPED, timestamp=old)
    )
    store.append(HistoryEntry(original_path=tmp_path / "x" / "a.txt", status=HistoryStatus.FAILED))
    store.append(HistoryEntry(original_path=tmp_path / "x" / "b.txt", status=HistoryStatus.SKIPPED))

    newest = store.list()
    assert [entry.id for entry in newest] == [3, 2, 1]

    recent = store.list(since=datetime.now(timezone.utc) - timedelta(days=1))
    assert [entry.id for entry in recent] == [3, 2]

    skipped = store.list(HistoryFilter(status=HistoryStatus.SKIPPED, limit=1))
    assert [entry.id for entry in skipped] == [3]

    prefixed = store.list(path_prefix=str(tmp_path / "x"))
    assert {entry.original_path.name for entry in prefixed} == {"a.txt", "b.txt"}


def test_fold_collapses_chains_and_ignores_undone(store: HistoryStore, tmp_path: Path) -> None:
    a, b, c = tmp_path / "a.jpg", tmp_path / "b.jpg", tmp_path / "c.jpg"
    a.write_bytes(b"1")
    _applied(store, a, b)
    _applied(store, b, c)

    assert store.fold() == {a: c}
    assert store.current_path(a) == c

    store.undo(UndoSelector(count=1))
    assert store.fold() == {a: b}
    assert b.exists()


def test_undo_count_restores_newest_rename(store: HistoryStore, tmp_path: Path) -> None:
    source = tmp_path / "vacation.jpg"
    source.write_bytes(b"jpeg")
    applied = _applied(store, source, tmp_path / "beach_at_sunset.jpg")

    report = store.undo(UndoSelector(count=1))

    assert report.undone == 1
    assert source.read_bytes() == b"jpeg"
    assert not (tmp_path / "beach_at_sunset.jpg").exists()
    undo_entry = store.list(limit=1)[0]
    assert undo_entry.status is HistoryStatus.UNDONE
    assert undo_entry.undoes == applied.id


def test_undo_is_idempotent(store: HistoryStore, tmp_path: Path) -> None:
    source = tmp_path / "vacation.jpg"
    source.write_bytes(b"jpeg")
    applied = _applied(store, source, tmp_path / "beach.jpg")
    store.undo(UndoSelector(id=applied.id))
    entries_before = len(store.read_all())

    again = store.undo(UndoSelector(id=applied.id))
    by_count = store.undo(UndoSelector(count=5))

    assert again.noop == 1
    assert by_count.outcomes == []
    assert len(store.read_all()) == entries_before
    assert source.exists()


def test_undo_refuses_to_overwrite_occupied_original(store: HistoryStore, tmp_path: Path) -> None:
    source = tmp_path / "vacation.jpg"
    source.write_bytes(b"first")
    _applied(store, source, tmp_path / "beach.jpg")
    source.write_bytes(b"someone else")

    report = store.undo(UndoSelector(count=1))

    assert report.failed == 1
    assert source.read_bytes() == b"someone else"
    assert (tmp_path / "beach.jpg").read_bytes() == b"first"


def test_undo_reports_missing_file_and_continues(store: HistoryStore, tmp_path: Path) -> None:
    first = tmp_path / "one.txt"
    second = tmp_path / "two.txt"
    first.write_text("1", encoding="utf-8")
    second.write_text("2", encoding="utf-8")
    _applied(store, first, tmp_path / "renamed_one.txt")
    _applied(store, second, tmp_path / "renamed_two.txt")
    (tmp_path / "renamed_two.txt").unlink()

    report = store.undo(UndoSelector(all=True))

    assert [outcome.result for outcome in report.outcomes] == ["failed", "undone"]
    assert first.exists()


def test_undo_dry_run_changes_nothing(store: HistoryStore, tmp_path: Path) -> None:
    source = tmp_path / "vacation.jpg"
    source.write_bytes(b"jpeg")
    _applied(store, source, tmp_path / "beach.jpg")

    report = store.undo(UndoSelector(all=True), dry_run=True)

    assert report.count("would_undo") == 1
    assert (tmp_path / "beach.jpg").exists()
    assert len(store.read_all()) == 1


def test_undo_skips_non_applied_entries(store: HistoryStore, tmp_path: Path) -> None:
    entry_id = store.append(
        HistoryEntry(original_path=tmp_path / "a", status=HistoryStatus.SKIPPED, reason="dry-run")
    )

    report = store.undo(UndoSelector(id=entry_id))

    assert report.noop == 1


def test_clear_writes_audit_record_and_keeps_ids_increasing(
    store: HistoryStore, tmp_path: Path
) -> None:
    store.append(HistoryEntry(original_path=tmp_path / "a", status=HistoryStatus.SKIPPED))
    store.append(HistoryEntry(original_path=tmp_path / "b", status=HistoryStatus.SKIPPED))

    removed = store.clear(reason="test")

    assert removed == 2
    assert store.read_all() == []
    audit = [json.loads(line) for line in store.clears_path.read_text(encoding="utf-8").splitlines()]
    assert audit[0]["entries"] == 2
    assert audit[0]["reason"] == "test"

    fresh = HistoryStore(store.path)
    assert fresh.append(HistoryEntry(original_path=tmp_path / "c", status=HistoryStatus.SKIPPED)) == 3


def test_undo_selector_requires_exactly_one_choice() -> None:
    with pytest.raises(ValueError):
        UndoSelector()
    with pytest.raises(ValueError):
        UndoSelector(id=1, all=True)


def test_concurrent_writers_never_share_an_id(store: HistoryStore, tmp_path: Path) -> None:
    writers = [store, HistoryStore(store.path)]
    errors: list[BaseException] = []

    def _write(writer: HistoryStore, prefix: str) -> None:
        try:
            for number in range(20):
                writer.append(
                    HistoryEntry(
                        original_path=tmp_path / f"{prefix}-{number}", status=HistoryStatus.SKIPPED
                    )
                )
        except HistoryError as exc:
            errors.append(exc)

    threads = [
        threading.Thread(target=_write, args=(writer, f"w{index}"))
        for index, writer in enumerate(writers)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)

    assert errors == []
    assert [entry.id for entry in store.read_all()] == list(range(1, 41))
    assert store.lock_path.exists()


def test_undo_keeps_history_error_when_rename_back_cannot_be_reverted(
    store: HistoryStore, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    source, target = tmp_path / "IMG_1.jpg", tmp_path / "beach.jpg"
    source.write_bytes(b"jpeg")
    _applied(store, source, target)
    real_rename = os.rename
    calls: list[Path] = []

    def _rename_once(src, dst) -> None:
        calls.append(Path(dst))
        if len(calls) > 1:
            raise PermissionError("read-only directory")
        real_rename(src, dst)

    def _broken_append(entry: HistoryEntry) -> int:
        raise HistoryError("disk full")

    monkeypatch.setattr("namewatch.history.os.rename", _rename_once)
    monkeypatch.setattr(store, "append", _broken_append)

    with pytest.raises(HistoryError, match="disk full"):
        store.undo(UndoSelector(count=1))

    assert calls == [source, target]
    assert source.read_bytes() == b"jpeg"
