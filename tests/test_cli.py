"""CLI tests for history, undo, clear, and check."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from namewatch.analysis import AnalysisError, ErrorKind
from namewatch.cli import cli
from namewatch.history import HistoryEntry, HistoryStatus, HistoryStore


def _env_with_home(tmp_path: Path) -> dict[str, str]:
    env = dict(os.environ)
    env["HOME"] = str(tmp_path / "home")
    env["NAMEWATCH__LOGGING__LEVEL"] = "WARNING"
    return env


def _seed(tmp_path: Path) -> tuple[HistoryStore, Path, Path]:
    """Create one applied rename on disk and in a history log."""
    folder = tmp_path / "inbox"
    folder.mkdir()
    original = folder / "IMG_0001.jpg"
    renamed = folder / "beach_at_sunset.jpg"
    renamed.write_bytes(b"pixels")
    store = HistoryStore(tmp_path / "history.jsonl")
    store.commit(
        HistoryEntry(original_path=original, new_path=renamed, status=HistoryStatus.APPLIED)
    )
    store.commit(
        HistoryEntry(
            original_path=folder / "notes.xyz",
            status=HistoryStatus.SKIPPED,
            reason="unsupported file type",
        )
    )
    return store, original, renamed


def test_help_lists_commands() -> None:
    result = CliRunner().invoke(cli, ["--help"])

    assert result.exit_code == 0
    for command in ("watch", "history", "undo", "clear", "check", "config"):
        assert command in result.output


def test_history_json_lists_newest_first(tmp_path: Path) -> None:
    store, original, _ = _seed(tmp_path)

    result = CliRunner().invoke(
        cli, ["history", "--json", "--history-file", str(store.path)], env=_env_with_home(tmp_path)
    )

    assert result.exit_code == 0
    entries = json.loads(result.stdout)["entries"]
    assert [entry["id"] for entry in entries] == [2, 1]
    assert entries[1]["original_path"] == str(original)


def test_history_filters_by_status(tmp_path: Path) -> None:
    store, _, _ = _seed(tmp_path)

    result = CliRunner().invoke(
        cli,
        ["history", "--json", "--status", "skipped", "--history-file", str(store.path)],
        env=_env_with_home(tmp_path),
    )

    entries = json.loads(result.stdout)["entries"]
    assert [entry["reason"] for entry in entries] == ["unsupported file type"]


def test_history_table_output(tmp_path: Path) -> None:
    store, _, _ = _seed(tmp_path)

    result = CliRunner().invoke(
        cli, ["history", "--history-file", str(store.path)], env=_env_with_home(tmp_path)
    )

    assert result.exit_code == 0
    assert "History" in result.output


def test_undo_restores_most_recent_rename(tmp_path: Path) -> None:
    store, original, renamed = _seed(tmp_path)

    result = CliRunner().invoke(
        cli, ["undo", "--json", "--history-file", str(store.path)], env=_env_with_home(tmp_path)
    )

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["counts"]["undone"] == 1
    assert payload["outcomes"][0]["entry_id"] == 1
    assert original.read_bytes() == b"pixels"
    assert not renamed.exists()
    assert store.read_all()[-1].status is HistoryStatus.UNDONE


def test_undo_dry_run_leaves_files(tmp_path: Path) -> None:
    store, original, renamed = _seed(tmp_path)

    result = CliRunner().invoke(
        cli,
        ["undo", "--all", "--dry-run", "--history-file", str(store.path)],
        env=_env_with_home(tmp_path),
    )

    assert result.exit_code == 0
    assert "Would undo 1 rename(s)." in result.output
    assert renamed.exists()
    assert not original.exists()


def test_undo_rejects_multiple_selectors(tmp_path: Path) -> None:
    store, _, _ = _seed(tmp_path)

    result = CliRunner().invoke(
        cli,
        ["undo", "--id", "1", "--all", "--history-file", str(store.path)],
        env=_env_with_home(tmp_path),
    )

    assert result.exit_code != 0
    assert "only one of" in result.output


def test_clear_requires_confirmation(tmp_path: Path) -> None:
    store, _, _ = _seed(tmp_path)
    env = _env_with_home(tmp_path)

    declined = CliRunner().invoke(
        cli, ["clear", "--history-file", str(store.path)], input="n\n", env=env
    )
    assert declined.exit_code == 1
    assert len(store.read_all()) == 2

    accepted = CliRunner().invoke(cli, ["clear", "--yes", "--history-file", str(store.path)], env=env)
    assert accepted.exit_code == 0
    assert "Cleared 2 history entries." in accepted.output
    assert store.read_all() == []
    assert store.clears_path.exists()


class _FakeClient:
    models: list[str] = []
    error: AnalysisError | None = None

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        pass

    def __enter__(self) -> "_FakeClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def health_check(self) -> None:
        if self.error is not None:
            raise self.error

    def list_models(self) -> list[str]:
        return list(self.models)


def test_check_reports_installed_models(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(_FakeClient, "models", ["moondream:latest", "llama3.2:3b"])
    monkeypatch.setattr("namewatch.cli.OllamaClient", _FakeClient)

    result = CliRunner().invoke(cli, ["check", "--json"], env=_env_with_home(tmp_path))

    assert result.exit_code == 0
    report = json.loads(result.stdout)
    assert report["reachable"] is True
    assert report["models"] == {
        "moondream": True,
        "llama3.2:3b": True,
        "deepseek-coder:1.3b": False,
    }


def test_check_fails_when_engine_is_down(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        _FakeClient,
        "error",
        AnalysisError("Cannot connect to Ollama", kind=ErrorKind.TRANSIENT),
    )
    monkeypatch.setattr("namewatch.cli.OllamaClient", _FakeClient)

    result = CliRunner().invoke(cli, ["check"], env=_env_with_home(tmp_path))

    assert result.exit_code == 1
    assert "Cannot connect to Ollama" in result.output
