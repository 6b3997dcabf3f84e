"""
Manages a Rich Live display fed by the transfer event stream.
Shows overall progress, active transfers and archive expansion, and real-time
statistics.
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table
from rich.text import Text

from appsync.models.events import EventKind, TransferEvent

log = logging.getLogger("appsync")

_FINISHING_EVENTS = {
    EventKind.FILE_COPIED,
    EventKind.FILE_NOT_FOUND,
    EventKind.FILE_DELETED,
    EventKind.DELETE_FAILED,
    EventKind.ARCHIVE_EXPANDED,
}


def _short(description: str, width: int = 55) -> str:
    if len(description) <= width:
        return description
    return "…" + description[-(width - 1) :]


class ProgressManager:
    """
    Renders transfer events. Use the instance itself as the executor's
    'on_event' callback.
    """

    def __init__(self, console: Console, title: str = "appsync", quiet: bool = False):
        self.console = console
        self.title = title
        self.quiet = quiet

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=20),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            DownloadColumn(),
            "•",
            TransferSpeedColumn(),
            "•",
            TimeRemainingColumn(),
            console=console,
            transient=False,
        )

        self.overall_progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            "[progress.percentage]{task.percentage:>3.0f}%",
            console=console,
        )

        self._live: Live | None = None
        self._layout: Layout | None = None

        self._stats = {
            "total_operations": 0,
            "finished_operations": 0,
            "copied": 0,
            "not_found": 0,
            "deleted": 0,
            "delete_failed": 0,
            "expanded_entries": 0,
            "archives": 0,
            "mismatches": 0,
            "directories": 0,
            "active_transfers": 0,
            "peak_concurrent": 0,
            "phase": None,
            "canceled": False,
            "start_time": None,
        }

        self._overall_task_id: TaskID | None = None
        self._active_tasks: dict[tuple, TaskID] = {}

    def __call__(self, event: TransferEvent) -> None:
        self.on_event(event)

    def _create_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="stats", size=8),
            Layout(name="progress", ratio=1),
        )
        return layout

    def _generate_header(self) -> Panel:
        if self._stats["start_time"]:
            elapsed = (datetime.now() - self._stats["start_time"]).total_seconds()
            elapsed_str = (
                f"{int(elapsed // 3600):02d}:"
                f"{int((elapsed % 3600) // 60):02d}:{int(elapsed % 60):02d}"
            )
        else:
            elapsed_str = "00:00:00"
        header_text = Text()
        header_text.append(f"📦 {self.title} ", style="bold cyan")
        header_text.append("│ ", style="dim")
        header_text.append(f"Session: {elapsed_str}", style="yellow")
        if self._stats["phase"] is not None:
            header_text.append(" │ ", style="dim")
            header_text.append(f"Phase {self._stats['phase']}", style="magenta")
        if self._stats["canceled"]:
            header_text.append(" │ ", style="dim")
            header_text.append("Canceled", style="bold yellow")
        return Panel(header_text, border_style="cyan")

    def _generate_stats_panel(self) -> Panel:
        stats_table = Table.grid(padding=(0, 2))
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_row(
            "Copied:",
            f"[green]{self._stats['copied']}[/green]",
            "Deleted:",
            f"[yellow]{self._stats['deleted']}[/yellow]",
        )
        stats_table.add_row(
            "Archives:",
            f"[cyan]{self._stats['archives']}[/cyan]",
            "Entries:",
            f"[cyan]{self._stats['expanded_entries']}[/cyan]",
        )
        stats_table.add_row(
            "Active:",
            f"[cyan]{self._stats['active_transfers']}[/cyan]",
            "Peak:",
            f"[magenta]{self._stats['peak_concurrent']}[/magenta]",
        )
        problems = (
            self._stats["not_found"]
            + self._stats["delete_failed"]
            + self._stats["mismatches"]
        )
        if problems:
            stats_table.add_row(
                "Mismatches:",
                f"[red]{self._stats['mismatches']}[/red]",
                "Failed:",
                f"[red]{self._stats['not_found'] + self._stats['delete_failed']}[/red]",
            )
        combined = Table.grid()
        combined.add_row(stats_table)
        combined.add_row("")
        if self._overall_task_id is not None:
            combined.add_row(self.overall_progress)
        return Panel(
            combined, title="[bold]📊 Session Statistics[/bold]", border_style="blue"
        )

    def _generate_progress_panel(self) -> Panel:
        if not self._active_tasks:
            return Panel(
                Text(
                    "Waiting for transfers to start...",
                    style="dim italic",
                    justify="center",
                ),
                title="[bold]📥 Active Transfers[/bold]",
                border_style="green",
            )
        return Panel(
            self.progress,
            title=f"[bold]📥 Active Transfers ({len(self._active_tasks)})[/bold]",
            border_style="green",
        )

    def _update_display(self):
        if self.quiet or not self._layout:
            return
        self._layout["header"].update(self._generate_header())
        self._layout["stats"].update(self._generate_stats_panel())
        self._layout["progress"].update(self._generate_progress_panel())

    def _advance_overall(self) -> None:
        self._stats["finished_operations"] += 1
        if self._overall_task_id is not None:
            self.overall_progress.update(
                self._overall_task_id, completed=self._stats["finished_operations"]
            )

    def _start_task(self, key: tuple, description: str, total: int | None) -> None:
        task_id = self.progress.add_task(_short(description), total=total, start=True)
        self._active_tasks[key] = task_id
        self._stats["active_transfers"] = len(self._active_tasks)
        self._stats["peak_concurrent"] = max(
            self._stats["peak_concurrent"], self._stats["active_transfers"]
        )

    def _finish_task(self, key: tuple) -> None:
        task_id = self._active_tasks.pop(key, None)
        if task_id is not None:
            self.progress.remove_task(task_id)
        self._stats["active_transfers"] = len(self._active_tasks)

    def on_event(self, event: TransferEvent) -> None:
        key = (event.rollout_order, event.sequence)
        kind = event.kind

        if kind is EventKind.PHASE_STARTED:
            self._stats["phase"] = event.rollout_order
            self._stats["total_operations"] += event.total
            if self._overall_task_id is not None:
                self.overall_progress.update(
                    self._overall_task_id, total=self._stats["total_operations"]
                )
        elif kind is EventKind.FILE_STARTED:
            self._start_task(key, Path(event.destination).name, event.total or None)
        elif kind is EventKind.FILE_PROGRESS:
            task_id = self._active_tasks.get(key)
            if task_id is not None:
                self.progress.update(
                    task_id, completed=event.completed, total=event.total or None
                )
        elif kind is EventKind.ARCHIVE_STARTED:
            self._start_task(key, f"Expanding {Path(event.source).name}", None)
        elif kind is EventKind.ENTRY_EXPANDED:
            self._stats["expanded_entries"] += 1
        elif kind is EventKind.INTEGRITY_MISMATCH:
            self._stats["mismatches"] += 1
            log.warning(f"[yellow]{event.message}[/yellow]")
        elif kind is EventKind.DIRECTORY_CREATED:
            self._stats["directories"] += 1
        elif kind is EventKind.DIRECTORY_FAILED:
            log.warning(f"[yellow]Could not create '{event.destination}'.[/yellow]")
        elif kind is EventKind.CANCELED:
            self._stats["canceled"] = True

        if kind in _FINISHING_EVENTS:
            counter = {
                EventKind.FILE_COPIED: "copied",
                EventKind.FILE_NOT_FOUND: "not_found",
                EventKind.FILE_DELETED: "deleted",
                EventKind.DELETE_FAILED: "delete_failed",
                EventKind.ARCHIVE_EXPANDED: "archives",
            }[kind]
            self._stats[counter] += 1
            self._finish_task(key)
            self._advance_overall()

        self._update_display()

    def initialize_session(self, total_operations: int = 0):
        self._stats["start_time"] = datetime.now()
        if not self.quiet:
            self._overall_task_id = self.overall_progress.add_task(
                "Overall Progress", total=total_operations or None, start=True
            )

    def get_statistics(self) -> dict:
        return self._stats.copy()

    async def __aenter__(self):
        if self.quiet:
            return self
        self._layout = self._create_layout()
        self._update_display()
        self._live = Live(
            self._layout,
            console=self.console,
            refresh_per_second=12,
            vertical_overflow="visible",
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._live and not self.quiet:
            await asyncio.sleep(0.2)
            self._live.stop()
