"""Shared fixtures and fakes for namewatch tests."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Iterable, Union

import pytest

from namewatch.analysis import AnalysisHints, AnalysisResult
from namewatch.history import HistoryStore

Response = Union[str, Exception]


class ManualClock:
    """Monotonic clock advanced explicitly by tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAnalyzer:
    """Scripted analyzer keyed by filename.

    A response may be a description, an exception to raise, or a list consumed one
    item per call (the last item repeats).
    """

    def __init__(
        self,
        responses: dict[str, Union[Response, list[Response]]] | None = None,
        *,
        default: Response = "a beach at sunset",
        extension: str | None = None,
    ) -> None:
        self.responses = {key: list(value) if isinstance(value, list) else value for key, value in (responses or {}).items()}
        self.default = default
        self.extension = extension
        self.calls: list[tuple[Path, int]] = []
        self.gate: threading.Event | None = None
        self.started = threading.Event()
        self._lock = threading.Lock()

    def describe(self, path: Path, hints: AnalysisHints) -> AnalysisResult:
        with self._lock:
            self.calls.append((path, hints.attempt))
            response = self._next(path.name)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        if isinstance(response, Exception):
            raise response
        return AnalysisResult(
            source_path=path,
            description=response,
            tags={"beach", "sunset"},
            category="Images",
            extension=self.extension,
            analyzer="fake",
        )

    def _next(self, name: str) -> Response:
        scripted = self.responses.get(name, self.default)
        if isinstance(scripted, list):
            return scripted.pop(0) if len(scripted) > 1 else scripted[0]
        return scripted


def write_files(root: Path, names: Iterable[str], content: bytes = b"data") -> list[Path]:
    paths = []
    for name in names:
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        paths.append(path)
    return paths


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store(tmp_path: Path) -> HistoryStore:
    return HistoryStore(tmp_path / "state" / "history.jsonl")


@pytest.fixture
def watched(tmp_path: Path) -> Path:
    root = tmp_path / "inbox"
    root.mkdir()
    return root.resolve()
