"""Analyzer variants that describe files through an Ollama model."""

from __future__ import annotations

import base64
import io
import logging
import mimetypes
import re
import tarfile
import zipfile
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import docx
import pymupdf
from docx.opc.exceptions import PackageNotFoundError
from PIL import Image, UnidentifiedImageError
from tinytag import TinyTag, TinyTagException

from namewatch.config.models import NamewatchConfig

from .client import OllamaClient
from .errors import AnalysisError, ErrorKind
from .models import AnalysisHints, AnalysisResult, ContentType

LOGGER = logging.getLogger(__name__)

_SNIFF_BYTES = 512
_DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
_SIGNATURES: Sequence[tuple[bytes, str, str]] = (
    (b"\x89PNG\r\n\x1a\n", "image/png", "png"),
    (b"\xff\xd8\xff", "image/jpeg", "jpg"),
    (b"GIF87a", "image/gif", "gif"),
    (b"GIF89a", "image/gif", "gif"),
    (b"II*\x00", "image/tiff", "tiff"),
    (b"MM\x00*", "image/tiff", "tiff"),
    (b"%PDF-", "application/pdf", "pdf"),
    (b"\x1f\x8b", "application/gzip", "gz"),
    (b"7z\xbc\xaf\x27\x1c", "application/x-7z-compressed", "7z"),
    (b"ID3", "audio/mpeg", "mp3"),
    (b"fLaC", "audio/flac", "flac"),
    (b"OggS", "audio/ogg", "ogg"),
)
_EQUIVALENT_EXTENSIONS = {"jpeg": "jpg", "mpo": "jpg", "tif": "tiff", "markdown": "md", "tgz": "gz"}
_STOP_WORDS = frozenset({"the", "and", "for", "with", "from", "this", "that", "are", "was", "were"})


def detect_content_type(path: Path) -> ContentType:
    """Probe ``path`` by magic bytes, falling back to its name.

    Raises:
        AnalysisError: Permanent error when the file cannot be read.
    """
    try:
        with path.open("rb") as handle:
            head = handle.read(_SNIFF_BYTES)
    except OSError as exc:
        raise AnalysisError(f"cannot read file: {exc}", kind=ErrorKind.PERMANENT) from exc

    for signature, mime_type, extension in _SIGNATURES:
        if head.startswith(signature):
            return ContentType(mime_type=mime_type, extension=extension)
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return ContentType(mime_type="image/webp", extension="webp")
    if head[:4] == b"RIFF" and head[8:12] == b"WAVE":
        return ContentType(mime_type="audio/wav", extension="wav")
    if head.startswith(b"PK\x03\x04"):
        if _is_docx(path):
            return ContentType(mime_type=_DOCX_MIME, extension="docx")
        return ContentType(mime_type="application/zip", extension="zip")
    if head[257:262] == b"ustar":
        return ContentType(mime_type="application/x-tar", extension="tar")

    suffix = _normalize_extension(path.suffix)
    guessed, _ = mimetypes.guess_type(path.name)
    if guessed is None:
        guessed = "text/plain" if _looks_like_text(head) else "application/octet-stream"
    return ContentType(mime_type=guessed, extension=suffix)


def infer_category(name: str, extension: str) -> Optional[str]:
    """Return a coarse category for a suggested name and extension."""
    lowered = name.lower()
    ext = _normalize_extension(extension)
    if ext in {"jpg", "png", "gif", "webp", "heic", "bmp", "tiff"}:
        if "screenshot" in lowered:
            return "Screenshots"
        if "photo" in lowered or "img" in lowered:
            return "Photos"
        if "diagram" in lowered or "chart" in lowered:
            return "Diagrams"
        return "Images"
    if ext == "pdf":
        if "invoice" in lowered or "receipt" in lowered:
            return "Finance"
        if "resume" in lowered or re.search(r"\bcv\b", lowered):
            return "Career"
        if "manual" in lowered or "guide" in lowered:
            return "Manuals"
        return "Documents"
    if ext in {"rs", "py", "js", "ts", "go", "java", "c", "cpp", "h"}:
        return "Code"
    if ext in {"mp3", "wav", "flac", "ogg", "m4a"}:
        if "podcast" in lowered:
            return "Podcasts"
        if "voice" in lowered or "recording" in lowered:
            return "Recordings"
        return "Music"
    if ext in {"zip", "tar", "gz", "7z", "rar"}:
        return "Archives"
    if ext in {"doc", "docx", "odt", "txt", "md", "rst"}:
        return "Documents"
    if ext in {"xls", "xlsx", "csv", "ods"}:
        return "Spreadsheets"
    if ext in {"ppt", "pptx", "odp"}:
        return "Presentations"
    return None


def extract_tags(name: str, extra: Iterable[str] = ()) -> List[str]:
    """Return sorted unique keywords of at least three letters from ``name``."""
    tags = {
        word
        for word in re.split(r"[^0-9a-z]+", name.lower())
        if len(word) >= 3 and word not in _STOP_WORDS
    }
    tags.update(tag for tag in extra if tag)
    return sorted(tags)


class Analyzer:
    """Base class for analyzer variants.

    Subclasses declare the extensions and MIME prefixes they accept and implement
    :meth:`describe`.
    """

    name = "base"
    extensions: frozenset[str] = frozenset()
    mime_prefixes: tuple[str, ...] = ()
    priority = 50

    def can_handle(self, content_type: ContentType) -> bool:
        if content_type.extension and content_type.extension in self.extensions:
            return True
        return bool(self.mime_prefixes) and content_type.mime_type.startswith(self.mime_prefixes)

    def describe(self, path: Path, hints: AnalysisHints) -> AnalysisResult:
        raise NotImplementedError


class ModelAnalyzer(Analyzer):
    """Analyzer that sends a prompt to one Ollama model."""

    def __init__(
        self,
        client: OllamaClient,
        *,
        model: str,
        prompt: str,
        max_text_chars: int = 2000,
    ) -> None:
        self._client = client
        self._model = model
        self._prompt = prompt
        self._max_text_chars = max_text_chars

    @property
    def model(self) -> str:
        return self._model

    def _result(
        self,
        path: Path,
        description: str,
        *,
        confidence: Optional[float] = None,
        extension: Optional[str] = None,
        extra_tags: Iterable[str] = (),
    ) -> AnalysisResult:
        effective_extension = extension or _normalize_extension(path.suffix)
        return AnalysisResult(
            source_path=path,
            description=description.strip(),
            tags=set(extract_tags(description, extra_tags)),
            category=infer_category(description, effective_extension),
            confidence=confidence,
            extension=extension,
            analyzer=self.name,
        )

    def _clip(self, text: str) -> str:
        if len(text) <= self._max_text_chars:
            return text
        return text[: self._max_text_chars] + "..."


class ImageAnalyzer(ModelAnalyzer):
    """Describe images with a vision model."""

    name = "image"
    extensions = frozenset({"jpg", "png", "gif", "webp", "bmp", "tiff"})
    mime_prefixes = ("image/",)
    priority = 80
    max_side = 1024

    def describe(self, path: Path, hints: AnalysisHints) -> AnalysisResult:
        try:
            with Image.open(path) as image:
                detected = _normalize_extension(image.format or "")
                width, height = image.size
                image.thumbnail((self.max_side, self.max_side))
                buffer = io.BytesIO()
                image.convert("RGB").save(buffer, format="JPEG", quality=85)
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise AnalysisError(f"cannot decode image: {exc}", kind=ErrorKind.PERMANENT) from exc

        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
        text = self._client.generate_with_image(self._model, self._prompt, encoded)
        if not text.strip():
            text = f"image {width}x{height}"

        current = _normalize_extension(path.suffix)
        true_extension = detected if detected and detected != current else None
        return self._result(path, text, extension=true_extension)


class DocumentAnalyzer(ModelAnalyzer):
    """Describe prose documents from a text sample."""

    name = "document"
    extensions = frozenset({"txt", "md", "rst", "csv", "docx", "log"})
    mime_prefixes = ("text/", _DOCX_MIME)
    priority = 40

    def describe(self, path: Path, hints: AnalysisHints) -> AnalysisResult:
        content_type = hints.content_type or detect_content_type(path)
        if content_type.extension == "docx":
            text = _docx_text(path)
        else:
            text = _read_text(path, self._max_text_chars * 2)
        if not text.strip():
            raise AnalysisError("document has no text content", kind=ErrorKind.PERMANENT)
        prompt = f"{self._prompt}\n\nDocument content:\n{self._clip(text)}"
        return self._result(path, self._client.generate(self._model, prompt))


class CodeAnalyzer(ModelAnalyzer):
    """Describe source files with a code model."""

    name = "code"
    languages = {
        "py": "Python",
        "rs": "Rust",
        "js": "JavaScript",
        "ts": "TypeScript",
        "go": "Go",
        "java": "Java",
        "c": "C",
        "h": "C",
        "cpp": "C++",
        "hpp": "C++",
        "rb": "Ruby",
        "sh": "Shell",
        "sql": "SQL",
    }
    extensions = frozenset(languages)
    priority = 60

    def describe(self, path: Path, hints: AnalysisHints) -> AnalysisResult:
        sample = _read_text(path, self._max_text_chars)
        if not sample.strip():
            raise AnalysisError("source file is empty", kind=ErrorKind.PERMANENT)
        language = self.languages.get(_normalize_extension(path.suffix), "unknown")
        prompt = f"{self._prompt}\n\nLanguage: {language}\n\n```\n{sample}\n```"
        return self._result(path, self._client.generate(self._model, prompt))


class PdfAnalyzer(ModelAnalyzer):
    """Describe PDFs from their title metadata, or from the first pages' text."""

    name = "pdf"
    extensions = frozenset({"pdf"})
    mime_prefixes = ("application/pdf",)
    priority = 90
    max_pages = 3

    def describe(self, path: Path, hints: AnalysisHints) -> AnalysisResult:
        try:
            with pymupdf.open(path) as document:
                title = ((document.metadata or {}).get("title") or "").strip()
                pages = min(self.max_pages, document.page_count)
                text = "\n".join(document[number].get_text() for number in range(pages))
        except (RuntimeError, ValueError, OSError) as exc:
            raise AnalysisError(f"cannot read PDF: {exc}", kind=ErrorKind.PERMANENT) from exc

        if title and len(title) < 100:
            return self._result(path, title, confidence=0.95)
        if not text.strip():
            raise AnalysisError("PDF has no extractable text", kind=ErrorKind.PERMANENT)
        prompt = f"{self._prompt}\n\nDocument text:\n{self._clip(text)}"
        return self._result(path, self._client.generate(self._model, prompt))


class ArchiveAnalyzer(ModelAnalyzer):
    """Describe archives from their member listing."""

    name = "archive"
    extensions = frozenset({"zip", "tar", "gz"})
    mime_prefixes = ("application/zip", "application/x-tar", "application/gzip")
    priority = 30
    max_members = 50

    def describe(self, path: Path, hints: AnalysisHints) -> AnalysisResult:
        members = self._members(path)
        if not members:
            raise AnalysisError("archive is empty", kind=ErrorKind.PERMANENT)
        listing = "\n".join(members[: self.max_members])
        if len(members) > self.max_members:
            listing += f"\n... and {len(members) - self.max_members} more"
        prompt = f"{self._prompt}\n\nArchive contents:\n{listing}"
        return self._result(path, self._client.generate(self._model, prompt))

    @staticmethod
    def _members(path: Path) -> List[str]:
        try:
            if zipfile.is_zipfile(path):
                with zipfile.ZipFile(path) as archive:
                    return [name for name in archive.namelist() if not name.endswith("/")]
            with tarfile.open(path, "r:*") as archive:
                return [member.name for member in archive.getmembers() if member.isfile()]
        except (zipfile.BadZipFile, tarfile.TarError, OSError) as exc:
            raise AnalysisError(f"cannot list archive: {exc}", kind=ErrorKind.PERMANENT) from exc


class AudioAnalyzer(ModelAnalyzer):
    """Name audio files from their embedded tags.

    Artist and title are used as they are. Files without either are described by
    the text model from the file name and any album, genre, or year tags.
    """

    name = "audio"
    extensions = frozenset({"mp3", "flac", "m4a", "ogg", "opus", "wav", "aiff"})
    mime_prefixes = ("audio/",)
    priority = 70

    def describe(self, path: Path, hints: AnalysisHints) -> AnalysisResult:
        tags = self._tags(path)
        artist, title, album = tags.get("artist"), tags.get("title"), tags.get("album")
        extra = extract_tags(" ".join(filter(None, (tags.get("genre"), artist))))

        if artist and title:
            return self._result(path, f"{artist} - {title}", confidence=0.95, extra_tags=extra)
        if title:
            return self._result(path, title, confidence=0.95, extra_tags=extra)
        if artist:
            described = f"{artist} - {album}" if album else artist
            return self._result(path, described, confidence=0.8, extra_tags=extra)

        lines = [f"File name: {path.stem}"]
        lines.extend(f"{key.title()}: {value}" for key, value in tags.items())
        prompt = f"{self._prompt}\n\n" + "\n".join(lines)
        return self._result(
            path, self._client.generate(self._model, prompt), confidence=0.6, extra_tags=extra
        )

    @staticmethod
    def _tags(path: Path) -> dict[str, str]:
        try:
            tag = TinyTag.get(str(path))
        except (TinyTagException, OSError) as exc:
            LOGGER.debug("No readable tags in %s: %s", path, exc)
            return {}
        fields = {
            "title": tag.title,
            "artist": tag.artist,
            "album": tag.album,
            "genre": tag.genre,
            "year": tag.year,
        }
        values = {key: str(value).strip() for key, value in fields.items() if value is not None}
        return {key: value for key, value in values.items() if value}


class AnalyzerRegistry:
    """Pick the best analyzer for each file and delegate to it.

    The registry exposes the same ``describe`` method as a single analyzer, so the
    dispatcher does not know which variant runs.
    """

    def __init__(self, analyzers: Iterable[Analyzer] = ()) -> None:
        self._analyzers: List[Analyzer] = []
        for analyzer in analyzers:
            self.register(analyzer)

    def register(self, analyzer: Analyzer) -> None:
        self._analyzers.append(analyzer)
        self._analyzers.sort(key=lambda item: item.priority, reverse=True)

    def names(self) -> List[str]:
        return [analyzer.name for analyzer in self._analyzers]

    def __len__(self) -> int:
        return len(self._analyzers)

    def select(self, path: Path) -> tuple[Analyzer, ContentType]:
        """Return the highest-priority analyzer for ``path`` and its probed type.

        Raises:
            AnalysisError: Permanent ``unsupported file type`` when nothing matches.
        """
        content_type = detect_content_type(path)
        for analyzer in self._analyzers:
            if analyzer.can_handle(content_type):
                return analyzer, content_type
        raise AnalysisError("unsupported file type", kind=ErrorKind.PERMANENT)

    def describe(self, path: Path, hints: AnalysisHints) -> AnalysisResult:
        analyzer, content_type = self.select(path)
        LOGGER.debug("Analyzing %s with %s (%s)", path, analyzer.name, content_type.mime_type)
        return analyzer.describe(path, hints.model_copy(update={"content_type": content_type}))


def build_registry(config: NamewatchConfig, client: OllamaClient) -> AnalyzerRegistry:
    """Create a registry holding every analyzer enabled in ``config``."""
    engine = config.engine
    prompts = config.prompts
    toggles = config.analyzers
    limit = config.analysis.max_text_chars

    registry = AnalyzerRegistry()
    if toggles.image:
        registry.register(ImageAnalyzer(client, model=engine.vision_model, prompt=prompts.image))
    if toggles.pdf:
        registry.register(
            PdfAnalyzer(client, model=engine.text_model, prompt=prompts.pdf, max_text_chars=limit)
        )
    if toggles.code:
        registry.register(
            CodeAnalyzer(client, model=engine.code_model, prompt=prompts.code, max_text_chars=limit)
        )
    if toggles.document:
        registry.register(
            DocumentAnalyzer(
                client, model=engine.text_model, prompt=prompts.document, max_text_chars=limit
            )
        )
    if toggles.archive:
        registry.register(ArchiveAnalyzer(client, model=engine.text_model, prompt=prompts.archive))
    if toggles.audio:
        registry.register(AudioAnalyzer(client, model=engine.text_model, prompt=prompts.audio))
    return registry


def _normalize_extension(extension: str) -> str:
    ext = extension.lower().lstrip(".")
    return _EQUIVALENT_EXTENSIONS.get(ext, ext)


def _looks_like_text(head: bytes) -> bool:
    if not head or b"\x00" in head:
        return False
    try:
        head.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return True


def _is_docx(path: Path) -> bool:
    try:
        with zipfile.ZipFile(path) as archive:
            return "word/document.xml" in archive.namelist()
    except (zipfile.BadZipFile, OSError):
        return False


def _docx_text(path: Path) -> str:
    try:
        document = docx.Document(str(path))
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError, OSError) as exc:
        raise AnalysisError(f"cannot read docx: {exc}", kind=ErrorKind.PERMANENT) from exc
    parts = [paragraph.text.strip() for paragraph in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            parts.append(" | ".join(cell.text.strip() for cell in row.cells))
    return "\n".join(part for part in parts if part)


def _read_text(path: Path, limit: int) -> str:
    try:
        with path.open("r", encoding="utf-8", errors="replace") as handle:
            return handle.read(limit)
    except OSError as exc:
        raise AnalysisError(f"cannot read file: {exc}", kind=ErrorKind.PERMANENT) from exc


__all__ = [
    "Analyzer",
    "ModelAnalyzer",
    "ImageAnalyzer",
    "DocumentAnalyzer",
    "CodeAnalyzer",
    "PdfAnalyzer",
    "ArchiveAnalyzer",
    "AudioAnalyzer",
    "AnalyzerRegistry",
    "build_registry",
    "detect_content_type",
    "infer_category",
    "extract_tags",
]
