"""Console rendering and progress helpers for the production upload CLI."""
from __future__ import annotations

import time
from typing import Any, Dict, Iterable, Optional

from rich.console import Console
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

from .models import BatchSummary, TaskProgress, TaskStatus
from .orchestrator.task import UploadTask

console = Console()


def _human_size(value: int) -> str:
    size = float(max(value, 0))
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.2f} {units[unit_idx]}"


def render_configuration_summary(config: Dict[str, Any]) -> None:
    """Render startup configuration summary."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]prod-upload[/bold green]",
        subtitle="[dim]production uploader CLI[/dim]",
        border_style="blue",
    )
    console.print(panel)


class QueueProgressDisplay:
    """Event-based console display for an upload queue run."""

    def __init__(self, out: Optional[Console] = None):
        self._console = out or console
        self._active_tasks: Dict[str, TaskID] = {}
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold green]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=42),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            expand=False,
            console=self._console,
        )
        self._live: Optional[Live] = None

    def _emit_timeline(self, status: str, name: str, detail: Optional[str] = None) -> None:
        stamp = time.strftime("%H:%M:%S")
        palette = {
            "DONE": "green",
            "FAIL": "red",
            "UP": "cyan",
            "WAIT": "yellow",
        }
        color = palette.get(status, "white")
        suffix = f" {detail}" if detail else ""
        self._console.print(f"[dim]{stamp}[/dim] [{color}]{status:<4}[/{color}] {name}{suffix}")

    def _start_live(self) -> None:
        if self._live is not None:
            return
        self._live = Live(
            self._progress,
            console=self._console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()

    def _stop_live(self) -> None:
        if self._live is None:
            return
        self._live.stop()
        self._live = None

    def _drop_bar(self, task_id: str) -> None:
        bar = self._active_tasks.pop(task_id, None)
        if bar is not None:
            self._progress.remove_task(bar)

    def on_task_status(self, task: UploadTask) -> None:
        name = task.display_name or task.source.name
        if task.status is TaskStatus.UPLOADING:
            self._start_live()
            if task.id not in self._active_tasks:
                self._active_tasks[task.id] = self._progress.add_task(
                    "upload",
                    label=task.source.name[:60],
                    total=max(task.source.size, 1),
                )
            self._emit_timeline("UP", task.source.name, f"(attempt {task.attempts})")
            return

        self._drop_bar(task.id)
        if task.status is TaskStatus.COMPLETE:
            self._emit_timeline("DONE", name, _human_size(task.source.size))
        elif task.status is TaskStatus.ERROR:
            kind = task.error_kind.value if task.error_kind else "error"
            self._emit_timeline("FAIL", name, f"[{kind}] {task.error_message}")
        elif task.interruption is not None:
            self._emit_timeline("WAIT", task.source.name, task.interruption.message)

    def on_task_progress(self, task: UploadTask, progress: TaskProgress) -> None:
        bar = self._active_tasks.get(task.id)
        if bar is None:
            return
        self._progress.update(bar, completed=progress.bytes_sent, total=max(progress.bytes_total, 1))

    def on_finish(self, summary: BatchSummary, tasks: Iterable[UploadTask] = ()) -> None:
        self._stop_live()
        self._console.print(
            f"[bold]Finished[/bold] complete={summary.completed_count} "
            f"failed={summary.failed_count} paused={summary.paused_count} "
            f"cancelled={summary.cancelled_count}"
        )
        if summary.auth_required:
            self._console.print("[yellow]Sign-in required:[/yellow] some files were not started")

        failed = [t for t in tasks if t.status is TaskStatus.ERROR and not t.is_orphaned]
        if failed:
            table = Table(title="Failed uploads", border_style="red")
            table.add_column("File")
            table.add_column("Kind")
            table.add_column("Message")
            for task in failed:
                table.add_row(
                    task.source.name,
                    task.error_kind.value if task.error_kind else "-",
                    task.error_message or "-",
                )
            self._console.print(table)

        if summary.has_orphans:
            table = Table.grid(padding=(0, 2))
            table.add_column(style="bold")
            table.add_column(style="cyan")
            table.add_column()
            for warning in summary.orphan_warnings:
                table.add_row(warning.file_name, warning.remote_id, warning.message)
            self._console.print(Panel(
                table,
                title="[bold red]Remote files without records[/bold red]",
                subtitle="[dim]remove or register these manually[/dim]",
                border_style="red",
            ))
