"""Rename decision models."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict

from namewatch.analysis.models import AnalysisResult


class RenameDecision(BaseModel):
    """Outcome of naming a file, before anything is touched on disk.

    Attributes:
        source_path: File to rename.
        proposed_name: Name derived from the description, before collision handling.
        final_name: Name to use after collision handling.
        collision_resolved: Whether a numeric suffix was added.
        analysis: Result the decision was derived from.
    """

    model_config = ConfigDict(frozen=True)

    source_path: Path
    proposed_name: str
    final_name: str
    collision_resolved: bool = False
    analysis: Optional[AnalysisResult] = None

    @property
    def target_path(self) -> Path:
        return self.source_path.with_name(self.final_name)

    @property
    def unchanged(self) -> bool:
        """Return whether the derived name equals the current one."""
        return self.final_name == self.source_path.name


__all__ = ["RenameDecision"]
