"""
Manages a Rich Live display for installations, driven by `ProgressEvent`s.
Shows overall progress, active downloads, loader steps and session statistics.
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
)
from rich.table import Table
from rich.text import Text

from craftkit.models.events import EventKind, ProgressEvent
from craftkit.utils.formatting import format_size

log = logging.getLogger("craftkit")


class ProgressManager:
    """
    Live installation view. Instances are callables so they can be registered
    directly as the launcher's event callback.
    """

    def __init__(self, console: Console, quiet: bool = False):
        self.console = console
        self.quiet = quiet

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            console=console,
            transient=False,
        )

        self.overall_progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            "[progress.percentage]{task.percentage:>3.0f}%",
            console=console,
        )

        self._live: Optional[Live] = None
        self._layout: Optional[Layout] = None

        self._stats: dict[str, Any] = {
            "total": 0,
            "downloaded": 0,
            "failed": 0,
            "skipped": 0,
            "active": 0,
            "peak_concurrent": 0,
            "bytes": 0,
            "start_time": None,
            "stage": "Resolving",
        }
        self._overall_task_id: Optional[TaskID] = None
        self._active_tasks: dict[str, TaskID] = {}

    def __call__(self, event: ProgressEvent) -> None:
        if event.stage == "download":
            self._on_download(event)
        elif event.stage == "natives":
            self._stats["stage"] = "Natives extracted"
        elif event.stage == "step":
            self._on_step(event)
        self._update_display()

    def _on_download(self, event: ProgressEvent) -> None:
        if event.kind == EventKind.STARTED:
            self._stats["stage"] = "Downloading"
            self._stats["total"] += 1
            if self._overall_task_id is not None:
                self.overall_progress.update(
                    self._overall_task_id, total=self._stats["total"]
                )
            if not self.quiet:
                name = Path(event.key).name
                if len(name) > 50:
                    name = name[:47] + "..."
                self._active_tasks[event.key] = self.progress.add_task(name)
            self._stats["active"] = len(self._active_tasks)
            self._stats["peak_concurrent"] = max(
                self._stats["peak_concurrent"], self._stats["active"]
            )
            return

        task_id = self._active_tasks.pop(event.key, None)
        if task_id is not None:
            self.progress.remove_task(task_id)
        self._stats["active"] = len(self._active_tasks)
        if event.kind == EventKind.COMPLETED:
            self._stats["downloaded"] += 1
            self._stats["bytes"] += event.size
        elif event.kind == EventKind.SKIPPED:
            self._stats["skipped"] += 1
        else:
            self._stats["failed"] += 1
            log.warning(
                f"[yellow]Failed: {Path(event.key).name}: {event.detail}[/yellow]"
            )
        if self._overall_task_id is not None:
            self.overall_progress.update(
                self._overall_task_id,
                completed=(
                    self._stats["downloaded"]
                    + self._stats["failed"]
                    + self._stats["skipped"]
                ),
            )

    def _on_step(self, event: ProgressEvent) -> None:
        if event.kind == EventKind.STARTED:
            self._stats["stage"] = f"Loader step {event.key}"
        elif event.kind == EventKind.FAILED:
            log.error(f"[red]Loader step {event.key} failed: {event.detail}[/red]")

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
        header_text.append("craftkit ", style="bold cyan")
        header_text.append("│ ", style="dim")
        header_text.append(f"Session: {elapsed_str}", style="yellow")
        header_text.append(" │ ", style="dim")
        header_text.append(self._stats["stage"], style="magenta")
        return Panel(header_text, border_style="cyan")

    def _generate_stats_panel(self) -> Panel:
        stats_table = Table.grid(padding=(0, 2))
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_row(
            "Downloaded:",
            f"[green]{self._stats['downloaded']}[/green]",
            "Failed:",
            f"[red]{self._stats['failed']}[/red]",
        )
        stats_table.add_row(
            "Up to date:",
            f"[yellow]{self._stats['skipped']}[/yellow]",
            "Transferred:",
            f"[cyan]{format_size(self._stats['bytes'])}[/cyan]",
        )
        stats_table.add_row(
            "Active:",
            f"[cyan]{self._stats['active']}[/cyan]",
            "Peak:",
            f"[magenta]{self._stats['peak_concurrent']}[/magenta]",
        )
        combined = Table.grid()
        combined.add_row(stats_table)
        combined.add_row("")
        if self._overall_task_id is not None:
            combined.add_row(self.overall_progress)
        return Panel(
            combined, title="[bold]Session Statistics[/bold]", border_style="blue"
        )

    def _generate_progress_panel(self) -> Panel:
        if not self._active_tasks:
            return Panel(
                Text("Waiting for downloads...", style="dim italic", justify="center"),
                title="[bold]Active Downloads[/bold]",
                border_style="green",
            )
        return Panel(
            self.progress,
            title=f"[bold]Active Downloads ({len(self._active_tasks)})[/bold]",
            border_style="green",
        )

    def _update_display(self) -> None:
        if self.quiet or not self._layout:
            return
        self._layout["header"].update(self._generate_header())
        self._layout["stats"].update(self._generate_stats_panel())
        self._layout["progress"].update(self._generate_progress_panel())

    def get_statistics(self) -> dict[str, Any]:
        return self._stats.copy()

    async def __aenter__(self) -> "ProgressManager":
        self._stats["start_time"] = datetime.now()
        if self.quiet:
            return self
        self._overall_task_id = self.overall_progress.add_task(
            "Overall Progress", total=None, start=True
        )
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

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._live:
            await asyncio.sleep(0.2)
            self._live.stop()
