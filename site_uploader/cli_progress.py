"""Console rendering and progress helpers for the site-up CLI."""
from __future__ import annotations

from typing import Any, Dict, Optional
import time

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn
from rich.table import Table

from .models import TrackedFile, UploadStatus, UploadSummary
from .services.compression import compression_percentage


console = Console()

_STATUS_LABELS = {
    UploadStatus.PENDING: "waiting",
    UploadStatus.COMPRESSING: "compressing",
    UploadStatus.UPLOADING: "uploading",
    UploadStatus.COMPLETED: "done",
    UploadStatus.ERROR: "failed",
}


def _echo(message: str) -> None:
    console.print(message)


def format_file_size(value: int) -> str:
    """Human readable size with one decimal: ``1.5 MB``."""
    if value <= 0:
        return "0 B"
    size = float(value)
    units = ["B", "KB", "MB", "GB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    return f"{size:.1f} {units[unit_idx]}"


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
        title="[bold green]site-up[/bold green]",
        subtitle="[dim]site photo uploader[/dim]",
        border_style="blue",
    )
    console.print(panel)


class BatchProgressDisplay:
    """Event-based console display for an upload session."""

    def __init__(self, total: int = 0):
        self._total = total
        self._active_tasks: Dict[str, TaskID] = {}
        self._original_bytes = 0
        self._upload_bytes = 0
        self._overall_task_id: Optional[TaskID] = None
        self._live: Optional[Live] = None

        self._overall_progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=28),
            TextColumn("{task.completed}/{task.total}"),
            TextColumn("[dim]{task.fields[detail]}", justify="left"),
            expand=False,
            console=console,
        )
        self._file_progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold green]{task.fields[label]}", justify="left"),
            TextColumn("[dim]{task.fields[status]}"),
            expand=False,
            console=console,
        )

    def _emit_timeline(self, status: str, name: str, size_bytes: Optional[int] = None, error: Optional[str] = None) -> None:
        stamp = time.strftime("%H:%M:%S")
        size_label = f" {format_file_size(size_bytes)}" if size_bytes and size_bytes > 0 else ""
        error_label = f" cause={error}" if error else ""
        color = {"DONE": "green", "FAIL": "red", "INFO": "blue"}.get(status, "white")
        _echo(f"[dim]{stamp}[/dim] [{color}]{status:<4}[/{color}] file: {name}{size_label}{error_label}")

    def _start_live(self) -> None:
        if self._live is not None:
            return
        self._live = Live(
            Group(self._overall_progress, self._file_progress),
            console=console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        self._overall_task_id = self._overall_progress.add_task(
            "overall",
            label="Overall",
            total=max(self._total, 1),
            completed=0,
            detail="uploaded=0 failed=0",
        )

    def _stop_live(self) -> None:
        if self._live is None:
            return
        self._live.stop()
        self._live = None

    def on_start(self) -> None:
        self._start_live()

    def on_file_status(self, tracked: TrackedFile) -> None:
        self._start_live()
        status = tracked.status
        task_id = self._active_tasks.get(tracked.id)

        if status.is_active:
            label = _STATUS_LABELS[status]
            if status == UploadStatus.UPLOADING and tracked.compressed_size is not None:
                saved = compression_percentage(tracked.original_size, tracked.compressed_size)
                label = f"{label} ({format_file_size(tracked.compressed_size)}, {saved}% saved)"
            if task_id is None:
                self._active_tasks[tracked.id] = self._file_progress.add_task(
                    "file", label=tracked.filename[:60], status=label, total=None
                )
            else:
                self._file_progress.update(task_id, status=label)
            return

        if task_id is not None:
            self._file_progress.remove_task(self._active_tasks.pop(tracked.id))

        if status == UploadStatus.COMPLETED:
            self._original_bytes += tracked.original_size
            self._upload_bytes += tracked.upload_size
            self._emit_timeline("DONE", tracked.filename, size_bytes=tracked.upload_size)
        elif status == UploadStatus.ERROR:
            self._emit_timeline("FAIL", tracked.filename, error=tracked.error)

    def on_progress(self, counts: Dict[UploadStatus, int]) -> None:
        if self._overall_task_id is None:
            return
        uploaded = counts.get(UploadStatus.COMPLETED, 0)
        failed = counts.get(UploadStatus.ERROR, 0)
        total = max(self._total, uploaded + failed, 1)
        self._overall_progress.update(
            self._overall_task_id,
            completed=min(uploaded + failed, total),
            total=total,
            detail=f"uploaded={uploaded} failed={failed}",
        )

    def on_error(self, error: Exception) -> None:
        self._stop_live()
        _echo(f"[red]Error:[/red] {error}")

    def on_finish(self, summary: UploadSummary) -> None:
        self._stop_live()
        render_summary(summary, self._original_bytes, self._upload_bytes)


def render_summary(summary: UploadSummary, original_bytes: int = 0, upload_bytes: int = 0) -> None:
    """Render the final upload summary table."""
    table = Table(title="Upload summary", show_header=True, header_style="bold")
    table.add_column("Total", justify="right")
    table.add_column("Uploaded", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Skipped", justify="right", style="yellow")
    table.add_row(str(summary.total), str(summary.success), str(summary.failed), str(summary.skipped))
    console.print(table)

    if original_bytes > 0:
        saved = compression_percentage(original_bytes, upload_bytes)
        _echo(
            f"Original: {format_file_size(original_bytes)}  "
            f"Uploaded: {format_file_size(upload_bytes)} ({saved}% saved)"
        )
