"""Filesystem intake, per-path stability tracking, and the pipeline coordinator."""

from .debounce import Debouncer, FileProbe, PathPhase, PathState, probe_file
from .errors import StabilityAbort, WatchError
from .events import EventKind, EventSource, WatchEvent, should_process
from .service import CoordinatorStatus, PipelineCoordinator

__all__ = [
    "Debouncer",
    "FileProbe",
    "PathPhase",
    "PathState",
    "probe_file",
    "StabilityAbort",
    "WatchError",
    "EventKind",
    "EventSource",
    "WatchEvent",
    "should_process",
    "CoordinatorStatus",
    "PipelineCoordinator",
]
