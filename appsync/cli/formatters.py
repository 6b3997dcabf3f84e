"""
Rich renderings of plans, manifests, settings and session summaries.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from appsync.models.manifest import ApplicationManifest
from appsync.models.plan import ReconciliationPlan
from appsync.models.settings import SyncSettings
from appsync.models.stats import SyncStats
from appsync.utils.formatting import format_bool, format_duration, format_size


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "InvalidManifestError": [
            "• Check that the manifest is well-formed XML.",
            "• Every 'file' element needs path, file, hash, size and srcFileUrl.",
            "• Each path and file name may be declared only once.",
            "• Run `appsync manifest show <location>` to inspect what was parsed.",
        ],
        "ValidationError": [
            "• The manifest must set 'destPath' and 'idFilename'.",
            "• With lazy loading enabled, 'configFileUrl' must be set too.",
        ],
        "ConfigurationError": [
            "• Check the settings file, or recreate it with `appsync init`.",
        ],
        "NotFoundError": [
            "• A file declared in the manifest is missing on the server.",
            "• Regenerate the manifest with `appsync manifest refresh`.",
        ],
        "FileNotDeclaredError": [
            "• The requested file is neither a 'file' nor below a 'dir' entry.",
        ],
        "FileIntegrityError": [
            "• A transferred file does not match its declared hash.",
            "• Regenerate the manifest, or run without `--strict`.",
        ],
        "ArchiveError": [
            "• The archive is damaged or contains unsafe entry paths.",
        ],
        "InstallationError": [
            "• The recorded installation directory may have been moved or removed.",
            "• Delete the id file in your home directory to install again.",
        ],
        "TransferError": [
            "• A network connection issue occurred.",
            "• Please try again in a few minutes.",
            "• Try reducing the number of `--workers`.",
        ],
        "TimeoutError": [
            "• A transfer timed out, which may indicate network throttling.",
            "• Try reducing the number of `--workers`.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, settings: SyncSettings):
    """Displays the effective settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()
    for key in sorted(SyncSettings.get_ini_keys()):
        value = getattr(settings, key)
        table.add_row(f"{key}:", format_bool(value) if isinstance(value, bool) else str(value))

    console.print(
        Panel(
            table,
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_manifest(manifest: ApplicationManifest, location: str):
    """Displays the scalar settings and declared entries of a manifest."""
    console = Console()
    settings = Table(show_header=False, box=None, padding=(0, 2))
    settings.add_column(style="bold cyan")
    settings.add_column()
    for key, value in manifest.scalar_settings().items():
        if value is None:
            continue
        settings.add_row(f"{key}:", format_bool(value) if isinstance(value, bool) else str(value))
    console.print(
        Panel(settings, title=f"Manifest ([dim]{location}[/dim])", border_style="cyan")
    )

    if manifest.files:
        files = Table(box=box.ROUNDED)
        files.add_column("Order", justify="right", style="dim")
        files.add_column("File", style="cyan")
        files.add_column("Size", justify="right")
        files.add_column("Hash", style="dim")
        files.add_column("Flags")
        for entry in manifest.files:
            flags = [
                name
                for name, enabled in (
                    ("unzip", entry.archive_expand),
                    ("always", entry.always_load),
                    ("classpath", entry.on_classpath),
                )
                if enabled
            ]
            files.add_row(
                str(entry.rollout_order),
                entry.slash_path_and_filename,
                format_size(entry.size),
                entry.content_hash,
                ", ".join(flags),
            )
        console.print(files)

    for directory in manifest.directories:
        console.print(f"[green]mkdir[/green] {directory.path or '.'}")
    for source_dir in manifest.source_directories:
        console.print(
            f"[magenta]dir[/magenta] {source_dir.path or '.'} "
            f"[dim]<- {source_dir.source_location_template}[/dim]"
        )


def print_plan_table(plan: ReconciliationPlan):
    """Displays a reconciliation plan grouped by rollout phase."""
    console = Console()
    table = Table(title=f"Plan for [cyan]{plan.destination}[/cyan]", box=box.ROUNDED)
    table.add_column("Phase", justify="right", style="dim")
    table.add_column("Action")
    table.add_column("File", style="cyan")
    table.add_column("Size", justify="right")

    actions = (
        ("[green]new[/green]", plan.new_for),
        ("[yellow]changed[/yellow]", plan.changed_for),
        ("[red]delete[/red]", plan.deleted_for),
        ("[magenta]unzip[/magenta]", plan.decompress_for),
    )
    for order in plan.phases():
        for label, select in actions:
            for entry in select(order):
                size = getattr(entry, "size", None)
                table.add_row(
                    str(order),
                    label,
                    str(entry),
                    format_size(size) if size is not None else "",
                )

    if table.row_count:
        console.print(table)
    console.print(
        f"[bold]{len(plan.new_files)}[/bold] new, "
        f"[bold]{len(plan.changed_files)}[/bold] changed, "
        f"[bold]{len(plan.unchanged_files)}[/bold] unchanged, "
        f"[bold]{len(plan.deleted_files)}[/bold] to delete "
        f"({format_size(plan.transfer_bytes())} to transfer)."
    )
    if not plan.is_update_necessary():
        console.print("[green]✓ Files are up to date.[/green]")


def print_summary_panel(
    stats: SyncStats,
    duration_s: float,
    progress_stats: dict[str, Any] | None = None,
    canceled: bool = False,
):
    """Displays the final summary of a sync session."""
    console = Console()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=20)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row("✓ Copied:", f"[bold green]{stats.files_copied}[/bold green]")
    if stats.files_deleted > 0:
        stats_table.add_row("✓ Deleted:", f"[yellow]{stats.files_deleted}[/yellow]")
    if stats.archives_expanded > 0:
        stats_table.add_row(
            "✓ Expanded:",
            f"[cyan]{stats.archives_expanded} archive(s), "
            f"{stats.entries_expanded} entries[/cyan]",
        )
    if stats.directories_created > 0:
        stats_table.add_row("✓ Directories:", str(stats.directories_created))

    # Problems (only show if non-zero)
    if stats.integrity_mismatches > 0:
        stats_table.add_row(
            "⚠ Hash Mismatches:", f"[yellow]{stats.integrity_mismatches}[/yellow]"
        )
    if stats.delete_failures > 0:
        stats_table.add_row(
            "✗ Delete Failures:", f"[bold red]{stats.delete_failures}[/bold red]"
        )

    stats_table.add_row("", "")  # Spacer

    stats_table.add_row(
        "Total Size:", f"[cyan]{format_size(stats.bytes_transferred)}[/cyan]"
    )
    avg_speed = stats.bytes_transferred / duration_s if duration_s > 0 else 0
    stats_table.add_row(
        "Avg. Speed:", f"[magenta]{format_size(int(avg_speed))}/s[/magenta]"
    )
    if stats.peak_speed_bps > 0:
        stats_table.add_row(
            "Peak Speed:",
            f"[magenta]{format_size(int(stats.peak_speed_bps))}/s[/magenta]",
        )
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    if progress_stats:
        stats_table.add_row("", "")  # Spacer
        stats_table.add_row(
            "Peak Concurrent:",
            f"[green]{progress_stats.get('peak_concurrent', 0)}[/green]",
        )

    if canceled:
        title = "⏹ [bold]Sync Canceled[/bold]"
        border_color = "yellow"
    else:
        title = "📦 [bold]Sync Complete![/bold]"
        border_color = "green"

    console.print()
    console.print(
        Panel(
            stats_table,
            title=title,
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()
