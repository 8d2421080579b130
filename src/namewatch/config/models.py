"""Configuration models describing namewatch settings."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NamewatchBaseModel(BaseModel):
    """Shared configuration for namewatch Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class EngineSettings(NamewatchBaseModel):
    """Connection settings for the local Ollama service.

    Attributes:
        url: Base URL of the Ollama HTTP API.
        vision_model: Model used for image descriptions.
        text_model: Model used for documents, PDFs, and archives.
        code_model: Model used for source files.
        timeout_seconds: Per-request timeout applied to every analyzer call.
    """

    url: str = "http://localhost:11434"
    vision_model: str = "moondream"
    text_model: str = "llama3.2:3b"
    code_model: str = "deepseek-coder:1.3b"
    timeout_seconds: float = 120.0


class WatchSettings(NamewatchBaseModel):
    """Settings for event intake and the stability state machine.

    Attributes:
        recursive: Whether subdirectories of each root are watched.
        debounce_seconds: Quiet period after the last event before probing a file.
        stability_confirm_seconds: Gap between the two size/mtime probes.
        tick_seconds: Interval of the coordinator's polling loop.
        shutdown_grace_seconds: Time in-flight work may drain after a stop request.
        suppress_seconds: How long events on paths renamed by the pipeline are ignored.
    """

    recursive: bool = False
    debounce_seconds: float = 2.0
    stability_confirm_seconds: float = 0.5
    tick_seconds: float = 0.2
    shutdown_grace_seconds: float = 10.0
    suppress_seconds: float = 5.0

    @field_validator("debounce_seconds", "stability_confirm_seconds", "tick_seconds")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value


class RetrySettings(NamewatchBaseModel):
    """Backoff policy for transient analyzer failures.

    Attributes:
        max_attempts: Total attempts per file, including the first.
        initial_backoff_seconds: Delay before the second attempt.
        multiplier: Growth factor applied to each subsequent delay.
        max_backoff_seconds: Upper bound on a single delay.
    """

    max_attempts: int = Field(default=3, ge=1)
    initial_backoff_seconds: float = Field(default=1.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    max_backoff_seconds: float = Field(default=30.0, ge=0)


class AnalysisSettings(NamewatchBaseModel):
    """Dispatcher settings.

    Attributes:
        max_concurrent_analyses: Upper bound on simultaneous analyzer requests.
        retry: Retry policy for transient failures.
        max_text_chars: Characters of extracted text sent with text prompts.
    """

    max_concurrent_analyses: int = Field(default=2, ge=1)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    max_text_chars: int = Field(default=2000, ge=100)


class NamingRules(NamewatchBaseModel):
    """Rules used to turn a description into a filename.

    Attributes:
        date_prefix: Whether to prefix names with the current date.
        date_format: ``strftime`` format of the date prefix.
        max_length: Maximum length of the name stem, excluding the extension.
        separator: Character joining words of the name.
        lowercase: Whether names are lower-cased.
        strip_articles: Whether leading articles such as "a" or "the" are dropped.
    """

    date_prefix: bool = False
    date_format: str = "%Y-%m-%d"
    max_length: int = Field(default=50, ge=8)
    separator: Literal["_", "-"] = "_"
    lowercase: bool = True
    strip_articles: bool = True


class PromptSettings(NamewatchBaseModel):
    """Prompt templates sent to the analyzer for each content family."""

    image: str = (
        "Analyze this image and generate a concise, descriptive filename (max 5 words). "
        "Use snake_case. Do not include the file extension. Return ONLY the filename."
    )
    document: str = (
        "Summarize this document into a concise filename (max 5 words). "
        "Use snake_case. Return ONLY the filename."
    )
    code: str = (
        "Analyze this code structure and suggest a descriptive filename (max 5 words). "
        "Use snake_case. Return ONLY the filename."
    )
    pdf: str = (
        "Summarize the title or header of this document text into a concise filename "
        "(max 5 words). Use snake_case. Return ONLY the filename."
    )
    archive: str = (
        "Based on these archive contents, suggest a descriptive filename (max 5 words). "
        "Use snake_case. Return ONLY the filename."
    )
    audio: str = (
        "Based on this audio metadata, suggest a descriptive filename (max 5 words). "
        "Use snake_case. Return ONLY the filename."
    )


class AnalyzerToggles(NamewatchBaseModel):
    """Enable or disable individual analyzer variants."""

    image: bool = True
    document: bool = True
    code: bool = True
    pdf: bool = True
    archive: bool = True
    audio: bool = True


class HistorySettings(NamewatchBaseModel):
    """History log location.

    Attributes:
        path: JSON Lines file recording every rename attempt.
    """

    path: str = "~/.namewatch/history.jsonl"


class LoggingSettings(NamewatchBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        file: Optional log file; rotated when set.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "INFO"
    file: Optional[str] = None
    max_size_mb: int = 10
    backup_count: int = 5


class CLIOptions(NamewatchBaseModel):
    """CLI behavior defaults.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        history_limit: Default number of entries shown by ``namewatch history``.
    """

    quiet_default: bool = False
    history_limit: int = 20


class NamewatchConfig(NamewatchBaseModel):
    """Top-level configuration struct for namewatch."""

    engine: EngineSettings = Field(default_factory=EngineSettings)
    watch: WatchSettings = Field(default_factory=WatchSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    naming: NamingRules = Field(default_factory=NamingRules)
    prompts: PromptSettings = Field(default_factory=PromptSettings)
    analyzers: AnalyzerToggles = Field(default_factory=AnalyzerToggles)
    history: HistorySettings = Field(default_factory=HistorySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "NamewatchBaseModel",
    "EngineSettings",
    "WatchSettings",
    "RetrySettings",
    "AnalysisSettings",
    "NamingRules",
    "PromptSettings",
    "AnalyzerToggles",
    "HistorySettings",
    "LoggingSettings",
    "CLIOptions",
    "NamewatchConfig",
]
