"""Command-line interface for dotlink."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .batch import BatchOrchestrator, Selection
from .config import Config, ConfigError, expand_target, load_config, save_config
from .detector import StateDetector
from .models import BatchReport, PathState
from .packages import PackageDispatcher, PackageError, parse_method
from .platform import Platform, detect_platform
from .process import CommandRunner
from .restore import RestoreEngine
from .state import StateStore

app = typer.Typer(help="Symlink-based dotfiles manager with package installation")
console = Console()
err_console = Console(stderr=True)


class DotlinkError(RuntimeError):
    """Raised for invalid command-line selections."""


class ProgressSession:
    """Hands the terminal from a rich progress display to a child process."""

    def __init__(self, progress: Progress) -> None:
        self.progress = progress

    @contextmanager
    def suspended(self) -> Iterator[None]:
        self.progress.stop()
        try:
            yield
        finally:
            self.progress.start()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _load(config: Path | None) -> tuple[Config, Platform, StateStore]:
    config_obj = load_config(config)
    return config_obj, detect_platform(), StateStore.load(config_obj.settings.state_path)


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, PermissionError):
        console.print("[red]Permission denied.[/red] Re-run the command with elevated privileges (e.g. `sudo`).")
        raise typer.Exit(code=1)
    if isinstance(exc, ConfigError):
        message = str(exc)
        console.print(f"[red]{message}[/red]")
        if "Expected to find" in message:
            console.print(
                "[yellow]Make sure you pointed to the directory containing the config file, or to the file itself.[/yellow]"
            )
        raise typer.Exit(code=1)
    if isinstance(exc, (DotlinkError, PackageError)):
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    raise exc


def _select(config: Config, app_names: Iterable[str], entry_specs: Iterable[str]) -> Selection:
    """Build a selection from ``--app`` names and ``--entry APP/ENTRY`` specs.

    With neither given every application is selected.
    """

    selection = Selection()
    for name in app_names:
        selection = selection.select_application(_app_index(config, name))

    for spec in entry_specs:
        app_name, sep, entry_name = spec.partition("/")
        if not sep or not entry_name:
            raise DotlinkError(f"Entries must be given as APP/ENTRY, got '{spec}'")
        app_index = _app_index(config, app_name)
        names = [entry.name for entry in config.applications[app_index].entries]
        if entry_name not in names:
            raise DotlinkError(f"Unknown entry '{entry_name}' in application '{app_name}'")
        selection = selection.select_entry(app_index, names.index(entry_name))

    if selection.is_empty:
        for index in range(len(config.applications)):
            selection = selection.select_application(index)
    return selection


def _app_index(config: Config, name: str) -> int:
    try:
        return config.application_index(name)
    except ConfigError as exc:
        raise DotlinkError(str(exc)) from None


def _format_report(report: BatchReport) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Item")
    table.add_column("Result")
    table.add_column("Details", overflow="fold")

    for result in report.results:
        outcome = "[green]ok[/green]" if result.success else "[red]failed[/red]"
        table.add_row(result.name, outcome, result.message)

    console.print(table)
    console.print(f"{report.success_count} succeeded, {report.fail_count} failed")


def _finish(report: BatchReport) -> None:
    _format_report(report)
    if report.fail_count:
        raise typer.Exit(code=1)


STATE_STYLES = {
    PathState.LOADING: "dim",
    PathState.LINKED: "green",
    PathState.MODIFIED: "yellow",
    PathState.OUTDATED: "yellow",
    PathState.READY: "cyan",
    PathState.MISSING: "red",
    PathState.ADOPT: "magenta",
}


@app.command()
def status(
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to dotlink.toml"),
    app_names: list[str] = typer.Option(None, "--app", "-a", help="Limit to specific application(s)"),
) -> None:
    """Show every active entry and the state of its target."""

    try:
        config_obj, platform, store = _load(config)
        detector = StateDetector(config_obj.settings.backup_root, platform.os, store)
        orchestrator = BatchOrchestrator(
            config_obj, platform, RestoreEngine(config_obj.settings.backup_root, platform.os), PackageDispatcher(platform.os)
        )

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Application")
        table.add_column("Entry")
        table.add_column("State")
        table.add_column("Target", overflow="fold")

        pending = 0
        for item in orchestrator.plan(_select(config_obj, app_names or (), ())):
            app_config = config_obj.applications[item.app_index]
            entry = app_config.entries[item.entry_index]
            state = detector.detect(entry, entry_id=item.name)
            if state.needs_action:
                pending += 1
            style = STATE_STYLES[state]
            raw_target = entry.target(platform.os)
            table.add_row(
                app_config.name,
                entry.name,
                f"[{style}]{state.value}[/{style}]",
                str(expand_target(raw_target)) if raw_target else "-",
            )

        console.print(table)
        if pending:
            console.print(f"[yellow]Entries needing attention: {pending}. Run 'dotlink restore' to link them.[/yellow]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def restore(
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to dotlink.toml"),
    app_names: list[str] = typer.Option(None, "--app", "-a", help="Restore specific application(s)"),
    entries: list[str] = typer.Option(None, "--entry", "-e", help="Restore specific APP/ENTRY pair(s)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Describe the changes without making them"),
) -> None:
    """Link backups into place, adopting existing files that are not yet managed."""

    try:
        config_obj, platform, store = _load(config)
        engine = RestoreEngine(config_obj.settings.backup_root, platform.os, store)
        orchestrator = BatchOrchestrator(config_obj, platform, engine, PackageDispatcher(platform.os))
        report = orchestrator.run_restore(_select(config_obj, app_names or (), entries or ()), dry_run=dry_run)
        _finish(report)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def backup(
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to dotlink.toml"),
    app_names: list[str] = typer.Option(None, "--app", "-a", help="Back up specific application(s)"),
    entries: list[str] = typer.Option(None, "--entry", "-e", help="Back up specific APP/ENTRY pair(s)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Describe the copies without making them"),
) -> None:
    """Copy unmanaged targets into the backup directory without linking them."""

    try:
        config_obj, platform, _ = _load(config)
        orchestrator = BatchOrchestrator(
            config_obj,
            platform,
            RestoreEngine(config_obj.settings.backup_root, platform.os),
            PackageDispatcher(platform.os),
        )
        report = orchestrator.run_backup(_select(config_obj, app_names or (), entries or ()), dry_run=dry_run)
        _finish(report)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command("list-packages")
def list_packages(
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to dotlink.toml"),
    app_names: list[str] = typer.Option(None, "--app", "-a", help="Limit to specific application(s)"),
) -> None:
    """Show each configured package and whether it is installed."""

    try:
        config_obj, platform, _ = _load(config)
        dispatcher = PackageDispatcher(platform.os, manager_priority=config_obj.settings.manager_priority)
        orchestrator = BatchOrchestrator(
            config_obj, platform, RestoreEngine(config_obj.settings.backup_root, platform.os), dispatcher
        )

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Entry")
        table.add_column("Method")
        table.add_column("Installed")

        for status_item in orchestrator.package_status(_select(config_obj, app_names or (), ())):
            method = status_item.method.value if status_item.method else "[red]unavailable[/red]"
            installed = "[green]yes[/green]" if status_item.installed else "[yellow]no[/yellow]"
            table.add_row(status_item.name, method, installed)

        console.print(table)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def install(
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to dotlink.toml"),
    app_names: list[str] = typer.Option(None, "--app", "-a", help="Install specific application(s)"),
    entries: list[str] = typer.Option(None, "--entry", "-e", help="Install specific APP/ENTRY pair(s)"),
    method: str | None = typer.Option(None, "--method", "-m", help="Force an installation method, e.g. pacman"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the commands without running them"),
) -> None:
    """Install the packages of the selected entries one at a time."""

    try:
        config_obj, platform, _ = _load(config)
        chosen = parse_method(method) if method else None
        selection = _select(config_obj, app_names or (), entries or ())

        with Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
            transient=True,
        ) as progress:
            dispatcher = PackageDispatcher(
                platform.os,
                CommandRunner(ProgressSession(progress)),
                manager_priority=config_obj.settings.manager_priority,
            )
            orchestrator = BatchOrchestrator(
                config_obj, platform, RestoreEngine(config_obj.settings.backup_root, platform.os), dispatcher
            )
            planned = orchestrator.plan(selection)
            total = sum(
                1
                for item in planned
                if config_obj.applications[item.app_index].entries[item.entry_index].package is not None
            )
            task = progress.add_task("Installing packages", total=total)
            orchestrator.on_result = lambda result: progress.advance(task)
            report = orchestrator.run_install(selection, dry_run=dry_run, method=chosen)

        _finish(report)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def delete(
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to dotlink.toml"),
    app_names: list[str] = typer.Option(None, "--app", "-a", help="Delete specific application(s)"),
    entries: list[str] = typer.Option(None, "--entry", "-e", help="Delete specific APP/ENTRY pair(s)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Remove applications or entries from the configuration file.

    Backups and targets on disk are left untouched.
    """

    try:
        if not app_names and not entries:
            raise DotlinkError("Select what to delete with --app or --entry")

        config_obj, platform, store = _load(config)
        selection = _select(config_obj, app_names or (), entries or ())
        orchestrator = BatchOrchestrator(
            config_obj,
            platform,
            RestoreEngine(config_obj.settings.backup_root, platform.os, store),
            PackageDispatcher(platform.os),
            persist=save_config,
        )
        if not yes:
            count = len(orchestrator.plan_deletion(selection))
            typer.confirm(f"Delete {count} item(s) from '{config_obj.config_path}'?", abort=True)

        _finish(orchestrator.run_delete(selection))
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


def run() -> None:
    """Entry point used for console_script bindings."""

    app()
