"""Configuration management for namewatch."""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .exceptions import ConfigError
from .models import NamewatchConfig
from .resolver import flatten_for_env, parse_env, resolve_with_precedence

DEFAULT_CONFIG_PATH = Path("~/.namewatch/config.yaml")
_CONFIG_HEADER = (
    "# namewatch configuration file\n"
    "# Edit with `namewatch config edit` or `namewatch config set KEY --value VALUE`.\n"
    "# Environment variables named NAMEWATCH__SECTION__KEY override these values.\n"
)


def parse_config_text(text: str) -> dict[str, Any]:
    """Parse YAML configuration text into a mapping.

    Raises:
        ConfigError: If the text is not valid YAML or not a mapping.
    """
    try:
        raw = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse configuration file: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError("Configuration file must contain a mapping at the top level.")
    return raw


class ConfigManager:
    """Read, write, and resolve the namewatch configuration file.

    The file holds only values the user changed or saved; anything missing falls back
    to the model defaults. Environment variables and CLI flags are layered on top at
    load time and are never written back.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        *,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Initialize the manager.

        Args:
            config_path: Configuration file; defaults to ``~/.namewatch/config.yaml``.
            env: Environment used for ``NAMEWATCH__`` overrides; defaults to
                ``os.environ`` read at load time.
        """
        self._path = Path(config_path or DEFAULT_CONFIG_PATH).expanduser()
        self._env = env

    @property
    def config_path(self) -> Path:
        return self._path

    def load(
        self,
        *,
        cli_overrides: Optional[Mapping[str, Any]] = None,
        include_env: bool = True,
        ensure_file: bool = True,
        env_overrides: Optional[Mapping[str, str]] = None,
    ) -> NamewatchConfig:
        """Return the effective configuration.

        Args:
            cli_overrides: Dotted or nested overrides from command-line flags.
            include_env: Whether ``NAMEWATCH__`` environment variables apply.
            ensure_file: Create the configuration file with defaults when missing.
            env_overrides: Environment mapping used instead of the manager's.

        Returns:
            NamewatchConfig: Validated configuration.

        Raises:
            ConfigError: If the file cannot be parsed or values are invalid.
        """
        if ensure_file:
            self.ensure_exists()
        env_layer = None
        if include_env:
            source = env_overrides if env_overrides is not None else self._env
            env_layer = parse_env(os.environ if source is None else source)
        return resolve_with_precedence(
            defaults=NamewatchConfig(),
            file_overrides=self.load_file_overrides(),
            env_overrides=env_layer,
            cli_overrides=cli_overrides,
        )

    def resolve(self, **overrides: Any) -> NamewatchConfig:
        """Resolve configuration without creating files; keyword overrides act as CLI values."""
        return self.load(cli_overrides=overrides or None, ensure_file=False)

    def load_file_overrides(self) -> dict[str, Any]:
        """Return the raw mapping stored on disk, or an empty one when there is no file."""
        text = self.read_text()
        return parse_config_text(text) if text else {}

    def update(self, dotted_key: str, value: Any) -> NamewatchConfig:
        """Store ``value`` at ``dotted_key`` after validating the whole file.

        Args:
            dotted_key: Location such as ``watch.debounce_seconds``.
            value: Parsed value to store.

        Returns:
            NamewatchConfig: Configuration described by the updated file.

        Raises:
            ConfigError: If the key is malformed or the result does not validate; the
                file is left unchanged.
        """
        segments = [segment.strip() for segment in dotted_key.split(".") if segment.strip()]
        if not segments:
            raise ConfigError("KEY must be a dotted path such as 'naming.max_length'.")
        data = self.load_file_overrides()
        node = data
        for segment in segments[:-1]:
            child = node.setdefault(segment, {})
            if not isinstance(child, dict):
                raise ConfigError(f"Cannot assign into '{segment}': it is not a mapping.")
            node = child
        node[segments[-1]] = value
        return self.replace(data)

    def replace(self, data: Mapping[str, Any]) -> NamewatchConfig:
        """Validate ``data`` as the complete file contents and save it.

        Raises:
            ConfigError: If ``data`` does not validate; nothing is written.
        """
        config = resolve_with_precedence(defaults=NamewatchConfig(), file_overrides=data)
        self.save(data)
        return config

    def save(self, config: NamewatchConfig | Mapping[str, Any]) -> None:
        """Atomically write configuration data with the standard header."""
        if isinstance(config, NamewatchConfig):
            data = config.model_dump(mode="python")
        else:
            data = dict(config)
        stamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        text = f"{_CONFIG_HEADER}# Last updated: {stamp}\n" + yaml.safe_dump(data, sort_keys=False)

        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(prefix=".config-", suffix=".yaml", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(temp_name, self._path)
        except OSError as exc:
            Path(temp_name).unlink(missing_ok=True)
            raise ConfigError(f"Could not write {self._path}: {exc}") from exc

    def ensure_exists(self) -> Path:
        """Write the defaults when no configuration file exists yet."""
        if not self._path.exists():
            self.save(NamewatchConfig())
        return self._path

    def read_text(self) -> str:
        """Return the configuration file contents, or ``""`` when it is missing."""
        try:
            return self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
        except OSError as exc:
            raise ConfigError(f"Could not read {self._path}: {exc}") from exc


__all__ = [
    "ConfigManager",
    "DEFAULT_CONFIG_PATH",
    "NamewatchConfig",
    "parse_config_text",
    "resolve_with_precedence",
    "flatten_for_env",
    "parse_env",
    "ConfigError",
]
