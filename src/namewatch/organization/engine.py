"""Collision-free, reversible renames backed by the history log."""

from __future__ import annotations

import logging
import os
from datetime import date
from pathlib import Path
from typing import Callable, Optional

from namewatch.analysis.models import AnalysisResult
from namewatch.config.models import NamingRules
from namewatch.history import HistoryEntry, HistoryError, HistoryStatus, HistoryStore

from .errors import RenameError
from .models import RenameDecision
from .naming import build_stem

LOGGER = logging.getLogger(__name__)

UNCHANGED_REASON = "name unchanged"
SOURCE_MISSING_REASON = "source missing"


class RenameEngine:
    """Derive target names and apply renames, recording exactly one entry per attempt."""

    def __init__(
        self,
        store: HistoryStore,
        rules: NamingRules | None = None,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        """Initialize the engine.

        Args:
            store: History log receiving one entry per attempt.
            rules: Naming rules; defaults to :class:`NamingRules`.
            today: Date source for optional date prefixes.
        """
        self._store = store
        self._rules = rules or NamingRules()
        self._today = today

    @property
    def store(self) -> HistoryStore:
        return self._store

    def decide(self, result: AnalysisResult) -> RenameDecision:
        """Compute the target name for ``result`` without touching the filesystem.

        Raises:
            NamingError: If the description sanitizes to nothing.
        """
        source = result.source_path
        stem = build_stem(result.description, self._rules, today=self._today())
        suffix = f".{result.extension}" if result.extension else source.suffix
        proposed = f"{stem}{suffix}"
        final = self._free_name(source, proposed)
        return RenameDecision(
            source_path=source,
            proposed_name=proposed,
            final_name=final,
            collision_resolved=final != proposed,
            analysis=result,
        )

    def apply(self, decision: RenameDecision) -> HistoryEntry:
        """Perform the rename described by ``decision`` and record the outcome.

        The file is moved with a single ``os.rename``; contents are never read or
        copied. An existing file at the target is never overwritten.

        Returns:
            HistoryEntry: The stored entry (``applied``, ``failed``, or ``skipped``).

        Raises:
            HistoryError: If the applied entry cannot be recorded; the rename is
                reverted first.
        """
        source = decision.source_path
        if not source.exists():
            return self._record(decision, HistoryStatus.FAILED, SOURCE_MISSING_REASON)
        if decision.unchanged:
            return self._record(decision, HistoryStatus.SKIPPED, UNCHANGED_REASON)

        target = decision.target_path
        if _occupied(target, source):
            target = source.with_name(self._free_name(source, decision.proposed_name))

        try:
            target = self._rename(source, target, decision.proposed_name)
        except RenameError as exc:
            return self._record(decision, HistoryStatus.FAILED, f"RenameError: {exc}")
        except OSError as exc:
            LOGGER.warning("Rename of %s failed: %s", source, exc)
            return self._record(decision, HistoryStatus.FAILED, str(exc))

        try:
            entry = self._record(decision, HistoryStatus.APPLIED, None, new_path=target)
        except HistoryError:
            LOGGER.error("Reverting %s -> %s: history append failed", source, target)
            try:
                os.rename(target, source)
            except OSError as exc:
                LOGGER.error("Could not move %s back to %s: %s", target, source, exc)
            raise
        LOGGER.info("Renamed %s -> %s", source.name, target.name)
        return entry

    def record_skip(
        self,
        source: Path,
        reason: str,
        *,
        proposed: Optional[Path] = None,
        result: Optional[AnalysisResult] = None,
    ) -> HistoryEntry:
        """Record a ``skipped`` entry for ``source``."""
        return self._store.commit(
            _entry(source, HistoryStatus.SKIPPED, reason, new_path=proposed, result=result)
        )

    def record_failure(
        self,
        source: Path,
        reason: str,
        *,
        result: Optional[AnalysisResult] = None,
    ) -> HistoryEntry:
        """Record a ``failed`` entry for ``source``."""
        return self._store.commit(_entry(source, HistoryStatus.FAILED, reason, result=result))

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _rename(self, source: Path, target: Path, proposed: str) -> Path:
        try:
            os.rename(source, target)
            return target
        except FileExistsError:
            retry = source.with_name(self._free_name(source, proposed))
            LOGGER.debug("%s appeared during rename; retrying as %s", target.name, retry.name)
        try:
            os.rename(source, retry)
        except FileExistsError as exc:
            raise RenameError(f"{retry.name} is taken") from exc
        return retry

    def _free_name(self, source: Path, proposed: str) -> str:
        candidate = source.with_name(proposed)
        stem, suffix = candidate.stem, candidate.suffix
        counter = 1
        while _occupied(candidate, source):
            candidate = source.with_name(f"{stem}-{counter}{suffix}")
            counter += 1
        return candidate.name

    def _record(
        self,
        decision: RenameDecision,
        status: HistoryStatus,
        reason: Optional[str],
        *,
        new_path: Optional[Path] = None,
    ) -> HistoryEntry:
        return self._store.commit(
            _entry(
                decision.source_path,
                status,
                reason,
                new_path=new_path or decision.target_path,
                result=decision.analysis,
            )
        )


def _occupied(candidate: Path, source: Path) -> bool:
    if not candidate.exists():
        return False
    try:
        return not os.path.samefile(candidate, source)
    except OSError:
        return True


def _entry(
    source: Path,
    status: HistoryStatus,
    reason: Optional[str],
    *,
    new_path: Optional[Path] = None,
    result: Optional[AnalysisResult] = None,
) -> HistoryEntry:
    return HistoryEntry(
        original_path=source,
        new_path=new_path,
        status=status,
        reason=reason,
        description=result.description if result else None,
        category=result.category if result else None,
        tags=sorted(result.tags) if result else [],
    )


__all__ = ["RenameEngine", "UNCHANGED_REASON", "SOURCE_MISSING_REASON"]
