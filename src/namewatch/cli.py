"""Command line interface for namewatch."""

from __future__ import annotations

import difflib
import threading
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import click
import yaml
from click.core import ParameterSource
from pydantic import ValidationError
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from namewatch.analysis import (
    AnalysisDispatcher,
    AnalysisError,
    OllamaClient,
    RetryPolicy,
    build_registry,
)
from namewatch.config import ConfigError, ConfigManager, NamewatchConfig, parse_config_text
from namewatch.history import (
    HistoryEntry,
    HistoryError,
    HistoryFilter,
    HistoryStatus,
    HistoryStore,
    UndoOutcome,
    UndoSelector,
)
from namewatch.log import configure_logging
from namewatch.organization import RenameEngine
from namewatch.watch import EventSource, PipelineCoordinator, WatchError

console = Console()

_STATUS_STYLES = {
    HistoryStatus.APPLIED: "green",
    HistoryStatus.FAILED: "red",
    HistoryStatus.SKIPPED: "yellow",
    HistoryStatus.UNDONE: "cyan",
}
_OUTCOME_STYLES = {"undone": "green", "would_undo": "cyan", "noop": "yellow", "failed": "red"}


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Report an error as JSON or as a ``click.ClickException``.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Whether JSON mode is active.
        details: Optional structured details for the JSON payload.
        original: Exception to chain in text mode.

    Raises:
        SystemExit: In JSON mode, after printing the payload.
        click.ClickException: In text mode.
    """
    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original
    raise click.ClickException(message) from original


def _emit_message(message: Any, *, mode: str, quiet: bool) -> None:
    """Print ``message`` unless quiet mode hides it; errors always print."""
    if quiet and mode != "error":
        return
    console.print(message)


def _load_config(
    *,
    json_output: bool,
    cli_overrides: Optional[dict[str, Any]] = None,
) -> NamewatchConfig:
    try:
        return ConfigManager().load(cli_overrides=cli_overrides)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        raise


def _resolve_quiet(ctx: click.Context, quiet: bool, config: NamewatchConfig) -> bool:
    if ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE:
        return quiet
    return config.cli.quiet_default


def _open_store(config: NamewatchConfig, history_file: Optional[str]) -> HistoryStore:
    return HistoryStore(Path(history_file) if history_file else Path(config.history.path))


def _format_entry(entry: HistoryEntry) -> str:
    style = _STATUS_STYLES.get(entry.status, "white")
    target = f" -> {entry.new_path.name}" if entry.new_path is not None else ""
    reason = f" ({entry.reason})" if entry.reason else ""
    return (
        f"[{style}]{entry.status.value:<7}[/{style}] #{entry.id} "
        f"{entry.original_path.name}{target}{reason}"
    )


def _format_outcome(outcome: UndoOutcome) -> str:
    style = _OUTCOME_STYLES.get(outcome.result, "white")
    return f"[{style}]{outcome.result:<10}[/{style}] #{outcome.entry_id} {outcome.message}"


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="namewatch")
def cli() -> None:
    """namewatch renames files in watched folders after what they contain."""


@cli.command()
@click.argument("paths", nargs=-1, type=click.Path(exists=True, file_okay=False, path_type=str))
@click.option("-r", "--recursive", is_flag=True, help="Watch subdirectories too.")
@click.option("--dry-run", is_flag=True, help="Record proposed names without renaming files.")
@click.option("--debounce", type=float, help="Quiet period in seconds before a file is probed.")
@click.option("--once", is_flag=True, help="Process files already present, then exit.")
@click.option("--json", "json_output", is_flag=True, help="Emit history entries as JSON.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.option("--history-file", type=click.Path(dir_okay=False, path_type=str), help="History log to use.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option("--skip-health-check", is_flag=True, help="Start without contacting the engine first.")
@click.pass_context
def watch(
    ctx: click.Context,
    paths: tuple[str, ...],
    recursive: bool,
    dry_run: bool,
    debounce: float | None,
    once: bool,
    json_output: bool,
    quiet: bool,
    history_file: str | None,
    verbose: bool,
    skip_health_check: bool,
) -> None:
    """Watch PATHS and rename files as they settle.

    Args:
        ctx: Click context used to detect explicitly passed flags.
        paths: Directories to watch.
        recursive: Whether subdirectories are watched.
        dry_run: Record ``skipped "dry-run"`` entries instead of renaming.
        debounce: Override for ``watch.debounce_seconds``.
        once: Process current contents once and exit.
        json_output: Emit JSON instead of text.
        quiet: Suppress non-error output.
        history_file: Override for ``history.path``.
        verbose: Enable debug logging.
        skip_health_check: Do not probe the engine before starting.
    """
    if not paths:
        raise click.ClickException("Provide at least one PATH to watch.")
    if debounce is not None and debounce <= 0:
        raise click.ClickException("--debounce must be greater than zero.")
    if json_output and quiet:
        raise click.ClickException("--json cannot be combined with --quiet.")

    overrides: dict[str, Any] = {}
    if recursive:
        overrides["watch.recursive"] = True
    if debounce is not None:
        overrides["watch.debounce_seconds"] = debounce
    if history_file:
        overrides["history.path"] = history_file
    config = _load_config(json_output=json_output, cli_overrides=overrides or None)
    configure_logging(config.logging, verbose=verbose)
    quiet_enabled = _resolve_quiet(ctx, quiet, config) and not json_output

    client = OllamaClient(config.engine.url, timeout=config.engine.timeout_seconds)
    try:
        if not skip_health_check:
            try:
                client.health_check()
            except AnalysisError as exc:
                _handle_cli_error(
                    str(exc), code="engine_unavailable", json_output=json_output, original=exc
                )

        entries: list[HistoryEntry] = []

        def on_entry(entry: HistoryEntry) -> None:
            entries.append(entry)
            if json_output:
                if not once:
                    console.print_json(data=entry.model_dump(mode="json"))
                return
            _emit_message(_format_entry(entry), mode="detail", quiet=quiet_enabled)

        dispatcher = AnalysisDispatcher(
            build_registry(config, client),
            max_concurrent=config.analysis.max_concurrent_analyses,
            policy=RetryPolicy.from_settings(config.analysis.retry),
        )
        coordinator = PipelineCoordinator(
            dispatcher=dispatcher,
            engine=RenameEngine(HistoryStore(Path(config.history.path)), config.naming),
            settings=config.watch,
            dry_run=dry_run,
            on_entry=on_entry,
        )
        roots = [Path(path).expanduser().resolve() for path in paths]

        try:
            if once:
                for root in roots:
                    coordinator.process_existing(root, recursive=config.watch.recursive)
                try:
                    coordinator.drain()
                finally:
                    coordinator.shutdown()
            else:
                _emit_message(
                    f"[cyan]Watching {', '.join(str(root) for root in roots)}"
                    f"{' (dry run)' if dry_run else ''}. Press Ctrl+C to stop.[/cyan]",
                    mode="detail",
                    quiet=quiet_enabled or json_output,
                )
                sources = [EventSource(root, recursive=config.watch.recursive) for root in roots]
                try:
                    coordinator.run(sources, threading.Event())
                except KeyboardInterrupt:
                    _emit_message(
                        "[yellow]Watch stopped by user request.[/yellow]",
                        mode="summary",
                        quiet=quiet_enabled or json_output,
                    )
        except WatchError as exc:
            _handle_cli_error(str(exc), code="watch_error", json_output=json_output, original=exc)
        except HistoryError as exc:
            _handle_cli_error(str(exc), code="history_error", json_output=json_output, original=exc)
    finally:
        client.close()

    counts = Counter(entry.status.value for entry in entries)
    if json_output:
        if once:
            console.print_json(
                data={
                    "entries": [entry.model_dump(mode="json") for entry in entries],
                    "counts": dict(counts),
                    "dry_run": dry_run,
                }
            )
        return
    summary = ", ".join(f"{status.value}={counts.get(status.value, 0)}" for status in HistoryStatus)
    _emit_message(f"[green]Watch summary: {summary}.[/green]", mode="summary", quiet=quiet_enabled)


@cli.command()
@click.option(
    "--status",
    "status_filter",
    type=click.Choice([status.value for status in HistoryStatus]),
    help="Only show entries with this status.",
)
@click.option("--prefix", type=str, help="Only show entries whose path starts with PREFIX.")
@click.option(
    "--since",
    type=click.DateTime(formats=["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]),
    help="Only show entries recorded at or after this time (UTC).",
)
@click.option("--limit", type=click.IntRange(min=1), help="Maximum number of entries.")
@click.option("--json", "json_output", is_flag=True, help="Emit entries as JSON.")
@click.option("--history-file", type=click.Path(dir_okay=False, path_type=str), help="History log to read.")
def history(
    status_filter: str | None,
    prefix: str | None,
    since: datetime | None,
    limit: int | None,
    json_output: bool,
    history_file: str | None,
) -> None:
    """Show recorded rename attempts, newest first."""
    config = _load_config(json_output=json_output)
    store = _open_store(config, history_file)
    criteria = HistoryFilter(
        status=HistoryStatus(status_filter) if status_filter else None,
        path_prefix=str(Path(prefix).expanduser()) if prefix else None,
        since=since,
        limit=limit or config.cli.history_limit,
    )
    try:
        entries = store.list(criteria)
    except HistoryError as exc:
        _handle_cli_error(str(exc), code="history_error", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(data={"entries": [entry.model_dump(mode="json") for entry in entries]})
        return
    if not entries:
        console.print("[yellow]No history entries match.[/yellow]")
        return

    table = Table(title=f"History ({store.path})")
    for column in ("ID", "Time", "Status", "Original", "New", "Reason"):
        table.add_column(column, overflow="fold")
    for entry in entries:
        style = _STATUS_STYLES.get(entry.status, "white")
        table.add_row(
            str(entry.id),
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            f"[{style}]{entry.status.value}[/{style}]",
            str(entry.original_path),
            str(entry.new_path) if entry.new_path else "",
            entry.reason or "",
        )
    console.print(table)


@cli.command()
@click.option("--id", "entry_id", type=int, help="Undo the entry with this id.")
@click.option("--count", type=click.IntRange(min=1), help="Undo the newest COUNT renames.")
@click.option("--all", "undo_all", is_flag=True, help="Undo every rename not yet undone.")
@click.option("--dry-run", is_flag=True, help="Show what would be undone without renaming.")
@click.option("--json", "json_output", is_flag=True, help="Emit outcomes as JSON.")
@click.option("--history-file", type=click.Path(dir_okay=False, path_type=str), help="History log to use.")
def undo(
    entry_id: int | None,
    count: int | None,
    undo_all: bool,
    dry_run: bool,
    json_output: bool,
    history_file: str | None,
) -> None:
    """Rename files back to their original names.

    Without a selector the most recent rename is undone.
    """
    if entry_id is None and count is None and not undo_all:
        count = 1
    try:
        selector = UndoSelector(id=entry_id, count=count, all=undo_all)
    except ValidationError as exc:
        raise click.ClickException("Use only one of --id, --count, or --all.") from exc

    config = _load_config(json_output=json_output)
    store = _open_store(config, history_file)
    try:
        report = store.undo(selector, dry_run=dry_run)
    except HistoryError as exc:
        _handle_cli_error(str(exc), code="history_error", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(
            data={
                "dry_run": report.dry_run,
                "outcomes": [outcome.model_dump(mode="json") for outcome in report.outcomes],
                "counts": {
                    "undone": report.undone,
                    "would_undo": report.count("would_undo"),
                    "noop": report.noop,
                    "failed": report.failed,
                },
            }
        )
        if report.failed:
            raise SystemExit(1)
        return

    if not report.outcomes:
        console.print("[yellow]Nothing to undo.[/yellow]")
        return
    for outcome in report.outcomes:
        console.print(_format_outcome(outcome))
    if report.failed:
        raise click.ClickException(f"{report.failed} undo operation(s) failed.")
    verb = "Would undo" if dry_run else "Undid"
    done = report.count("would_undo") if dry_run else report.undone
    console.print(f"[green]{verb} {done} rename(s).[/green]")


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.option("--history-file", type=click.Path(dir_okay=False, path_type=str), help="History log to clear.")
def clear(yes: bool, history_file: str | None) -> None:
    """Delete all history entries; the clear itself is kept in an audit log."""
    config = _load_config(json_output=False)
    store = _open_store(config, history_file)
    if not yes:
        click.confirm(
            f"Clear {store.path}? Renames recorded there can no longer be undone", abort=True
        )
    try:
        removed = store.clear(reason="cleared from command line")
    except HistoryError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Cleared {removed} history entr{'y' if removed == 1 else 'ies'}.[/green]")


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit the report as JSON.")
def check(json_output: bool) -> None:
    """Check that the engine is reachable and the configured models are installed."""
    config = _load_config(json_output=json_output)
    engine = config.engine
    report: dict[str, Any] = {"url": engine.url, "reachable": False, "models": {}}

    with OllamaClient(engine.url, timeout=engine.timeout_seconds) as client:
        try:
            client.health_check()
            report["reachable"] = True
            installed = client.list_models()
        except AnalysisError as exc:
            report["error"] = str(exc)
            installed = []
    for role in ("vision_model", "text_model", "code_model"):
        model = getattr(engine, role)
        report["models"][model] = any(
            name.startswith(model) or name == f"{model}:latest" for name in installed
        )

    if json_output:
        console.print_json(data=report)
        if not report["reachable"]:
            raise SystemExit(1)
        return

    if not report["reachable"]:
        raise click.ClickException(report.get("error", f"Cannot reach {engine.url}"))
    console.print(f"[green]Engine reachable at {engine.url}.[/green]")
    for model, available in report["models"].items():
        marker = "[green]ok[/green]" if available else f"[yellow]missing[/yellow] (ollama pull {model})"
        console.print(f"  {model}: {marker}")


@cli.group()
def config() -> None:
    """Show and change namewatch configuration."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides.")
def config_view(no_env: bool) -> None:
    """Print the effective configuration as YAML."""
    try:
        effective = ConfigManager().load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    text = yaml.safe_dump(effective.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="YAML literal to store at KEY.")
def config_set(key: str, value: str) -> None:
    """Store VALUE at the dotted KEY, for example ``watch.debounce_seconds``."""
    manager = ConfigManager()
    manager.ensure_exists()
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc

    before = manager.read_text().splitlines()
    try:
        manager.update(key, parsed)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    diff = list(
        difflib.unified_diff(
            before,
            manager.read_text().splitlines(),
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
    )
    changed = [
        line
        for line in diff
        if line.startswith(("+", "-"))
        and not line.startswith(("+++", "---"))
        and "Last updated" not in line
    ]
    if not changed:
        console.print("[yellow]Value already up to date.[/yellow]")
        return
    console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {key}.[/green]")


@config.command("edit")
def config_edit() -> None:
    """Edit the configuration file in $EDITOR and validate the result."""
    manager = ConfigManager()
    manager.ensure_exists()
    original = manager.read_text()
    edited = click.edit(original, extension=".yaml")
    if edited is None or edited == original:
        console.print("[yellow]No changes applied.[/yellow]")
        return
    try:
        manager.replace(parse_config_text(edited))
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    console.print("[green]Configuration updated.[/green]")


def main() -> None:
    """Console script entry point."""
    cli()


if __name__ == "__main__":
    main()
