"""Unit tests for configuration management."""

from pathlib import Path

import pytest

from namewatch.config import (
    ConfigError,
    ConfigManager,
    NamewatchConfig,
    flatten_for_env,
    resolve_with_precedence,
)


def _fresh_manager(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> ConfigManager:
    monkeypatch.setenv("HOME", str(tmp_path))
    return ConfigManager()


def test_ensure_exists_creates_default_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)

    path = manager.ensure_exists()

    assert path == tmp_path / ".namewatch" / "config.yaml"
    text = path.read_text(encoding="utf-8")
    assert "namewatch configuration file" in text
    assert "Last updated:" in text

    config = manager.load(include_env=False)
    assert isinstance(config, NamewatchConfig)
    assert config.watch.debounce_seconds == 2.0


def test_resolve_with_precedence_respects_order(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    manager.ensure_exists()

    manager.save({"engine": {"vision_model": "llava"}, "watch": {"debounce_seconds": 4}})

    env = {
        "NAMEWATCH__WATCH__DEBOUNCE_SECONDS": "3.0",
        "NAMEWATCH__WATCH__RECURSIVE": "true",
        "UNRELATED": "ignored",
    }
    cli = {"watch.debounce_seconds": 1.5}

    config = manager.load(cli_overrides=cli, env_overrides=env)

    assert config.engine.vision_model == "llava"
    assert config.watch.recursive is True
    # CLI overrides take precedence over environment
    assert config.watch.debounce_seconds == pytest.approx(1.5)


def test_invalid_yaml_raises_config_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    manager.ensure_exists()

    manager.config_path.write_text("- not-a-mapping", encoding="utf-8")

    with pytest.raises(ConfigError):
        manager.load()


def test_unknown_keys_are_rejected() -> None:
    with pytest.raises(ConfigError):
        resolve_with_precedence(defaults=NamewatchConfig(), file_overrides={"llm": {"model": "x"}})


def test_flatten_for_env_round_trips_defaults() -> None:
    flat = flatten_for_env(NamewatchConfig())

    assert flat["NAMEWATCH__ENGINE__URL"] == "http://localhost:11434"
    assert flat["NAMEWATCH__ANALYSIS__RETRY__MAX_ATTEMPTS"] == "3"
    assert flat["NAMEWATCH__WATCH__RECURSIVE"] == "false"
    assert flat["NAMEWATCH__LOGGING__FILE"] == "null"


@pytest.mark.parametrize(
    "overrides",
    [
        {"naming": {"max_length": "not-an-int"}},
        {"watch": {"debounce_seconds": 0}},
        {"naming": {"separator": "."}},
    ],
)
def test_resolve_with_precedence_invalid_value_raises(overrides: dict) -> None:
    with pytest.raises(ConfigError):
        resolve_with_precedence(defaults=NamewatchConfig(), file_overrides=overrides)


def test_update_sets_dotted_key_and_keeps_other_values(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    manager.save({"engine": {"vision_model": "llava"}})

    config = manager.update("analysis.retry.max_attempts", 5)

    assert config.analysis.retry.max_attempts == 5
    assert manager.load_file_overrides() == {
        "engine": {"vision_model": "llava"},
        "analysis": {"retry": {"max_attempts": 5}},
    }


def test_update_rejects_invalid_values_without_writing(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    manager = _fresh_manager(tmp_path, monkeypatch)
    manager.ensure_exists()
    before = manager.read_text()

    with pytest.raises(ConfigError):
        manager.update("watch.tick_seconds", -1)
    with pytest.raises(ConfigError):
        manager.update("watch.recursive.deeper", True)
    with pytest.raises(ConfigError):
        manager.update(" . ", 1)

    assert manager.read_text() == before
    assert list(manager.config_path.parent.glob(".config-*")) == []
