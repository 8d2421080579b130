"""Content analysis: analyzer variants, the Ollama client, and the dispatcher."""

from .analyzers import (
    Analyzer,
    AnalyzerRegistry,
    ArchiveAnalyzer,
    AudioAnalyzer,
    CodeAnalyzer,
    DocumentAnalyzer,
    ImageAnalyzer,
    PdfAnalyzer,
    build_registry,
    detect_content_type,
    extract_tags,
    infer_category,
)
from .client import OllamaClient
from .dispatcher import EXHAUSTED_REASON, AnalysisDispatcher
from .errors import AnalysisError, ErrorKind
from .models import AnalysisHints, AnalysisResult, ContentType
from .retry import RetryDecision, RetryPolicy

__all__ = [
    "Analyzer",
    "AnalyzerRegistry",
    "ArchiveAnalyzer",
    "AudioAnalyzer",
    "CodeAnalyzer",
    "DocumentAnalyzer",
    "ImageAnalyzer",
    "PdfAnalyzer",
    "build_registry",
    "detect_content_type",
    "extract_tags",
    "infer_category",
    "OllamaClient",
    "AnalysisDispatcher",
    "EXHAUSTED_REASON",
    "AnalysisError",
    "ErrorKind",
    "AnalysisHints",
    "AnalysisResult",
    "ContentType",
    "RetryDecision",
    "RetryPolicy",
]
