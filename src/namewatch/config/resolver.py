"""Layered configuration resolution."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Dict, Iterator, Mapping

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import NamewatchConfig

ENV_PREFIX = "NAMEWATCH__"


def resolve_with_precedence(
    *,
    defaults: NamewatchConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> NamewatchConfig:
    """Merge configuration layers and validate the result.

    Layers are applied in order: defaults, configuration file, environment, CLI.
    Keys inside a layer may be nested mappings or dotted paths (``watch.debounce_seconds``).

    Args:
        defaults: Baseline configuration.
        file_overrides: Values read from the YAML configuration file.
        env_overrides: Values parsed from ``NAMEWATCH__`` environment variables.
        cli_overrides: Values supplied by command-line flags.

    Returns:
        NamewatchConfig: Validated configuration.

    Raises:
        ConfigError: If a layer is malformed or the merged values fail validation.
    """
    merged = defaults.model_dump(mode="python")
    layers = (("file", file_overrides), ("environment", env_overrides), ("cli", cli_overrides))
    for label, layer in layers:
        if layer:
            merged = _deep_merge(merged, _expand(layer, label))

    try:
        return NamewatchConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc


def flatten_for_env(config: NamewatchConfig) -> Dict[str, str]:
    """Render every leaf setting as a ``NAMEWATCH__SECTION__KEY`` variable."""
    flat: Dict[str, str] = {}
    for path, value in _leaves(config.model_dump(mode="python"), []):
        key = ENV_PREFIX + "__".join(part.upper() for part in path)
        if value is None:
            flat[key] = "null"
        elif isinstance(value, bool):
            flat[key] = "true" if value else "false"
        elif isinstance(value, list):
            flat[key] = yaml.safe_dump(value, default_flow_style=True).strip()
        else:
            flat[key] = str(value)
    return flat


def parse_env(env: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``NAMEWATCH__`` variables into a nested override mapping.

    Values are parsed as YAML scalars so ``"true"`` and ``"2.5"`` arrive typed.
    """
    overrides: dict[str, Any] = {}
    for key, raw in env.items():
        if not key.startswith(ENV_PREFIX):
            continue
        segments = [segment.lower() for segment in key[len(ENV_PREFIX) :].split("__") if segment]
        if not segments:
            continue
        try:
            value = yaml.safe_load(raw)
        except yaml.YAMLError:
            value = raw
        _set_path(overrides, segments, value, source="environment")
    return overrides


def _leaves(node: Any, prefix: list[str]) -> Iterator[tuple[list[str], Any]]:
    if isinstance(node, dict):
        for key, child in node.items():
            yield from _leaves(child, prefix + [str(key)])
    else:
        yield prefix, node


def _expand(layer: Mapping[str, Any], label: str) -> dict[str, Any]:
    if not isinstance(layer, MappingABC):
        raise ConfigError(f"{label.capitalize()} overrides must be a mapping.")
    expanded: dict[str, Any] = {}
    for key, value in layer.items():
        if not isinstance(key, str):
            raise ConfigError(f"{label.capitalize()} override keys must be strings.")
        if isinstance(value, MappingABC):
            value = _expand(value, label)
        _set_path(expanded, key.split("."), value, source=label)
    return expanded


def _set_path(target: dict[str, Any], path: list[str], value: Any, *, source: str) -> None:
    node = target
    for segment in path[:-1]:
        child = node.setdefault(segment, {})
        if not isinstance(child, dict):
            raise ConfigError(
                f"{source.capitalize()} override for {'.'.join(path)} conflicts with "
                f"the scalar already set at {segment}."
            )
        node = child
    leaf = path[-1]
    if isinstance(value, dict) and isinstance(node.get(leaf), dict):
        node[leaf] = _deep_merge(node[leaf], value)
    else:
        node[leaf] = value


def _deep_merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = {key: deepcopy(value) for key, value in base.items()}
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(value, MappingABC) and isinstance(current, MappingABC):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


__all__ = ["ENV_PREFIX", "resolve_with_precedence", "flatten_for_env", "parse_env"]
