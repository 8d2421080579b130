"""Filename derivation and the rename engine."""

from .engine import SOURCE_MISSING_REASON, UNCHANGED_REASON, RenameEngine
from .errors import NamingError, RenameError
from .models import RenameDecision
from .naming import build_stem, sanitize_description

__all__ = [
    "RenameEngine",
    "RenameDecision",
    "NamingError",
    "RenameError",
    "build_stem",
    "sanitize_description",
    "SOURCE_MISSING_REASON",
    "UNCHANGED_REASON",
]
