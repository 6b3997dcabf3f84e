"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import logging.handlers
import os
import subprocess
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from appsync import __version__
from appsync.core.file_loader import FileLoader
from appsync.core.installer import Installer
from appsync.core.manifest_updater import ManifestUpdater
from appsync.core.reconciler import build_plan, scan_orphans
from appsync.core.transfer_executor import TransferExecutor
from appsync.media.downloader import Downloader, close_connection_pool
from appsync.models.events import TransferEvent
from appsync.models.manifest import ApplicationManifest
from appsync.models.settings import SyncSettings
from appsync.storage.config_manager import ConfigManager
from appsync.storage.manifest_codec import (
    SerializationMode,
    create_template_manifest,
    load_manifest,
    parse_manifest_file,
    write_manifest,
)
from appsync.utils.cancellation import CancellationToken
from appsync.utils.structured_logger import create_structured_logger

from .formatters import (
    print_config,
    print_manifest,
    print_plan_table,
    print_summary_panel,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("appsync")

app = typer.Typer(
    name="appsync",
    help=(
        "Installs and updates an application from its manifest. Use 'appsync"
        " <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)
manifest_app = typer.Typer(help="Create, inspect and regenerate manifests.")
app.add_typer(manifest_app, name="manifest")


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "appsync"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


def _parse_options(values: list[str] | None) -> dict[str, str]:
    options = {}
    for value in values or []:
        key, sep, option = value.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected KEY=VALUE, got '{value}'.")
        options[key.strip()] = option
    return options


def _load_settings(cli_options: dict) -> SyncSettings:
    cli_options = {k: v for k, v in cli_options.items() if v is not None}
    return ConfigManager(CONFIG_FILE).load_or_default(cli_options)


def _attach_file_log(manifest: ApplicationManifest) -> Path | None:
    """Mirrors the 'appsync' logger into the manifest's log file, if one is set."""
    log_filename = manifest.resolved("log_filename")
    if not log_filename:
        return None
    log_file = Path(log_filename).expanduser()
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=1024 * 1024, backupCount=1, encoding="utf-8"
        )
    except OSError as e:
        log.error(f"Cannot create log file '{log_file}': {e}")
        return None
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(threadName)s] %(levelname)-5s %(name)s - %(message)s")
    )
    log.addHandler(handler)
    return log_file


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current settings."
    ),
):
    """Application install and update synchronizer"""
    if version:
        console.print(f"[bold]appsync[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("appsync").setLevel(log_level)

    if show_config:
        settings = _load_settings({})
        print_config(CONFIG_FILE, settings)
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing settings file."
    ),
):
    """Create the settings file with default values."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Settings file already exists. Overwrite it?")
    ):
        raise typer.Abort()
    ConfigManager(CONFIG_FILE).save_new_config()
    console.print(f"[bold green]✓ Settings saved to '{CONFIG_FILE}'[/bold green]")


@app.command(name="sync")
def sync_command(
    location: str = typer.Argument(
        ..., help="Manifest location: a path, file:// URL or http(s):// URL."
    ),
    dest: Path | None = typer.Option(
        None,
        "--dest",
        "-d",
        help="Install into this directory on a first install (no prompt).",
    ),
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Apply updates without asking."
    ),
    workers: int | None = typer.Option(
        None, "-w", "--workers", help="Number of simultaneous transfers."
    ),
    strict: bool | None = typer.Option(
        None,
        "--strict/--no-strict",
        help="Fail when a transferred file does not match its declared hash.",
    ),
    no_launch: bool = typer.Option(
        False, "--no-launch", help="Do not start the application afterwards."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Only show what would be transferred."
    ),
    option: list[str] | None = typer.Option(  # noqa: B008
        None,
        "--option",
        "-o",
        help="Bind a manifest variable, e.g. -o userHome=/home/me.",
        metavar="KEY=VALUE",
    ),
):
    """Install or update the application described by a manifest."""
    settings = _load_settings({"max_workers": workers, "strict_integrity": strict})
    options = _parse_options(option)

    async def _sync_async():
        duration = 0.0
        result = None
        progress_stats = None
        structured = None
        cancel_token = CancellationToken()
        try:
            downloader = Downloader(
                chunk_size=settings.chunk_size,
                max_workers=settings.max_workers,
                connect_timeout=settings.connect_timeout,
                read_timeout=settings.read_timeout,
            )
            manifest = await load_manifest(location, downloader, options)
            if dest is not None:
                manifest.dest_path = str(dest)
                manifest.silent_install = True

            installer = Installer(
                manifest,
                settings,
                choose_directory=lambda default: Path(
                    typer.prompt("Install directory", default=str(default))
                ),
                confirm_update=(lambda _question: True)
                if yes
                else (lambda question: typer.confirm(question, default=True)),
            )

            if dry_run:
                destination = (
                    installer.recorded_destination() or installer.default_destination()
                )
                manifest.set_option("destDir", str(destination))
                manifest.check()
                print_plan_table(installer.plan(destination))
                return

            log_file = _attach_file_log(manifest)
            base_logger, transfer_logger, session_logger = create_structured_logger(
                log_file.parent if log_file else None, enable_json=log_file is not None
            )
            structured = base_logger

            async with ProgressManager(
                console=console, title=manifest.title or "appsync"
            ) as progress_manager:

                def on_event(event: TransferEvent) -> None:
                    progress_manager.on_event(event)
                    transfer_logger.on_event(event)

                installer.executor = TransferExecutor(
                    settings, downloader, on_event=on_event, cancel_token=cancel_token
                )
                progress_manager.initialize_session()
                session_logger.session_started(
                    location, Path(manifest.dest_path or "."), settings.max_workers
                )

                start_time = time.monotonic()
                result = await installer.run()
                duration = time.monotonic() - start_time
                progress_stats = progress_manager.get_statistics()

            outcome = result.transfer.outcome.value if result.transfer else "up_to_date"
            session_logger.session_completed(
                outcome, duration, installer.executor.stats
            )
        except asyncio.CancelledError:
            cancel_token.cancel()
            raise
        finally:
            await close_connection_pool()
            if structured:
                structured.close()

        if result is None:
            return
        if result.transfer:
            print_summary_panel(
                result.transfer.stats,
                duration,
                progress_stats,
                canceled=result.canceled,
            )
            if result.canceled:
                raise typer.Exit(code=130)
        else:
            console.print("[green]✓ Files are up to date.[/green]")

        if result.command and not no_launch:
            console.print(f"[cyan]Starting:[/cyan] {' '.join(result.command)}")
            process = subprocess.Popen(result.command, cwd=result.destination)  # noqa: S603
            if not manifest.exit_after_execute:
                process.wait()

    asyncio.run(_sync_async())


@app.command(name="plan")
def plan_command(
    location: str = typer.Argument(..., help="Manifest location."),
    dest: Path = typer.Argument(..., help="Installation directory to compare."),
    delete: list[str] | None = typer.Option(  # noqa: B008
        None, "--delete", help="Relative path of a file to remove (repeatable)."
    ),
    orphans: bool = typer.Option(
        False, "--orphans", help="Also list undeclared files found in the directory."
    ),
):
    """Show what a sync would change in a directory, without changing it."""

    async def _plan_async():
        try:
            return await load_manifest(location)
        finally:
            await close_connection_pool()

    manifest = asyncio.run(_plan_async())
    manifest.set_option("destDir", str(dest))
    print_plan_table(build_plan(manifest, dest, delete or ()))

    if orphans:
        settings = _load_settings({})
        candidates = scan_orphans(
            manifest, dest, manifest_name=settings.local_manifest_name
        )
        if candidates:
            console.print("\n[bold]Undeclared files (not deleted):[/bold]")
            for relative in candidates:
                console.print(f"  [dim]{relative}[/dim]")
        else:
            console.print("\n[dim]No undeclared files found.[/dim]")


@app.command(name="fetch")
def fetch_command(
    location: str = typer.Argument(..., help="Manifest location."),
    path: str = typer.Argument(..., help="Directory of the file, relative to the install."),
    filename: str = typer.Argument(..., help="Name of the file."),
    dest: Path | None = typer.Option(
        None, "--dest", "-d", help="Installation directory (default: destPath)."
    ),
):
    """Load a single file on demand (for lazily loaded installations)."""
    settings = _load_settings({})

    async def _fetch_async():
        try:
            manifest = await load_manifest(location)
            if dest is not None:
                manifest.set_option("destDir", str(dest))
            loader = FileLoader(manifest, dest, TransferExecutor(settings))
            return await loader.load_file(path, filename)
        finally:
            await close_connection_pool()

    loaded = asyncio.run(_fetch_async())
    console.print(f"[green]✓[/green] {loaded}")


@manifest_app.command(name="init")
def manifest_init(
    target: Path = typer.Argument(..., help="Manifest file to create."),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file."),
):
    """Write a starter manifest with placeholder settings."""
    if target.exists() and not force:
        console.print(f"[red]✗ '{target}' already exists.[/red] Use --force to overwrite.")
        raise typer.Exit(code=1)
    write_manifest(create_template_manifest(), target, backup=True)
    console.print(f"[bold green]✓ Manifest written to '{target}'[/bold green]")


@manifest_app.command(name="show")
def manifest_show(
    location: str = typer.Argument(..., help="Manifest location."),
):
    """Display a manifest's settings and entries."""

    async def _show_async():
        try:
            return await load_manifest(location)
        finally:
            await close_connection_pool()

    print_manifest(asyncio.run(_show_async()), location)


@manifest_app.command(name="refresh")
def manifest_refresh(
    target: Path = typer.Argument(..., help="Manifest file to create or update."),
    app_dir: Path = typer.Argument(..., help="Existing application directory."),
):
    """Regenerate the file entries of a manifest from an application directory."""
    if not app_dir.is_dir():
        console.print(f"[red]✗ '{app_dir}' is not a directory.[/red]")
        raise typer.Exit(code=1)

    settings = _load_settings({})
    if target.exists():
        console.print(f"[dim]READ {target}[/dim]")
        manifest = parse_manifest_file(target)
    else:
        manifest = ApplicationManifest()

    async def _refresh_async():
        try:
            updater = ManifestUpdater(manifest, algorithm=settings.hash_algorithm)
            return await updater.update_from_directory(app_dir)
        finally:
            await close_connection_pool()

    updated = asyncio.run(_refresh_async())
    write_manifest(updated, target, SerializationMode.TEMPLATE, backup=True)
    console.print(
        f"[bold green]✓ SAVED {target}[/bold green] ({len(updated.files)} files)"
    )
