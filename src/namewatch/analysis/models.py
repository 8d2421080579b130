"""Data models exchanged between analyzers and the rename engine."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Set

from pydantic import BaseModel, ConfigDict, Field


class ContentType(BaseModel):
    """Probed content type of a file.

    Attributes:
        mime_type: MIME type derived from magic bytes or the filename.
        extension: Canonical extension without the leading dot; empty when unknown.
    """

    model_config = ConfigDict(frozen=True)

    mime_type: str
    extension: str = ""


class AnalysisHints(BaseModel):
    """Context handed to an analyzer for one attempt.

    Attributes:
        content_type: Probed content type, filled by the registry when missing.
        attempt: One-based attempt number within the episode.
    """

    content_type: Optional[ContentType] = None
    attempt: int = 1


class AnalysisResult(BaseModel):
    """Description of a file produced by an analyzer.

    Attributes:
        source_path: File that was analyzed.
        description: Free-form description that becomes the new name.
        tags: Keywords inferred from the description.
        category: Category inferred from the description and extension.
        confidence: Analyzer confidence in the range 0..1 when known.
        extension: True extension when it differs from the current suffix.
        analyzer: Name of the analyzer variant that produced the result.
    """

    model_config = ConfigDict(frozen=True)

    source_path: Path
    description: str
    tags: Set[str] = Field(default_factory=set)
    category: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    extension: Optional[str] = None
    analyzer: str = "unknown"


__all__ = ["ContentType", "AnalysisHints", "AnalysisResult"]
