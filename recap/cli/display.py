"""
Rich display helpers for recap CLI.
All terminal output goes through this module for consistency.
"""
from __future__ import annotations

from datetime import datetime

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..storage.models import AudioChunk, Recording, RecordingStatus

console = Console()

_STATUS_COLORS = {
    RecordingStatus.RECORDING: "yellow",
    RecordingStatus.PAUSED: "yellow",
    RecordingStatus.STOPPED: "dim",
    RecordingStatus.TRANSCRIBING: "blue",
    RecordingStatus.TRANSCRIPTION_COMPLETE: "blue",
    RecordingStatus.TRANSCRIPTION_FAILED: "red",
    RecordingStatus.GENERATING_SUMMARY: "blue",
    RecordingStatus.SUMMARY_COMPLETE: "green",
    RecordingStatus.SUMMARY_FAILED: "red",
    RecordingStatus.ERROR: "red",
}


def _hms(seconds: int) -> str:
    return f"{seconds // 3600:02d}:{(seconds % 3600) // 60:02d}:{seconds % 60:02d}"


# ── Banners ───────────────────────────────────────────────────────────────────

def print_banner() -> None:
    console.print()
    console.print(Panel.fit(
        "[bold]recap[/bold]  ·  record, transcribe, summarize",
        border_style="dim",
        padding=(0, 2),
    ))
    console.print()


def print_recording_status(device: str, title: str) -> None:
    console.print(
        f"[bold green]●[/bold green] Recording · [dim]{title}[/dim]"
    )
    console.print(f"  [dim]Device: {device}[/dim]")
    console.print("  [dim]Ctrl+C to stop · SIGUSR1 pause · SIGUSR2 resume[/dim]")
    console.print()


class ConsoleIndicator:
    """StatusIndicator that writes session state changes to the terminal."""

    def show(self, label: str) -> None:
        if label.startswith("Error"):
            style = "bold red"
        elif label.startswith("Paused"):
            style = "yellow"
        else:
            style = "green"
        console.print(f"[{style}]●[/{style}] {label}")

    def warn(self, message: str) -> None:
        print_warn(message)


def print_chunk_saved(chunk: AudioChunk) -> None:
    offset = chunk.start_ms // 1000
    console.print(
        f"[dim][{offset // 60:02d}:{offset % 60:02d}] "
        f"chunk {chunk.chunk_index} saved ({chunk.duration_ms / 1000:.1f}s)[/dim]"
    )


# ── Processing ────────────────────────────────────────────────────────────────

def print_processing_header(title: str) -> None:
    console.print()
    console.print("─" * 48)
    console.print(f"[bold]Processing:[/bold] {title}")
    console.print()


# ── Recording list ────────────────────────────────────────────────────────────

def print_recording_list(recordings: list[Recording]) -> None:
    if not recordings:
        console.print("[dim]No recordings found. Run 'recap record' to begin.[/dim]")
        return

    table = Table(
        show_header=True,
        header_style="bold",
        box=None,
        padding=(0, 1),
        show_edge=False,
    )
    table.add_column("ID", style="dim", width=8, no_wrap=True)
    table.add_column("Date", width=17, no_wrap=True)
    table.add_column("Title", min_width=24)
    table.add_column("Duration", width=10, no_wrap=True)
    table.add_column("Chunks", width=7, no_wrap=True)
    table.add_column("Status", width=22, no_wrap=True)

    for r in recordings:
        if r.stopped_at:
            duration = _hms(r.duration_seconds)
        elif r.status in (RecordingStatus.RECORDING, RecordingStatus.PAUSED):
            duration = "[blink]●[/blink] live"
        else:
            duration = ""

        table.add_row(
            r.id,
            r.started_at.strftime("%b %d  %H:%M"),
            r.title or "[dim](untitled)[/dim]",
            duration,
            f"{r.transcribed_chunks}/{r.total_chunks}",
            Text(r.status.value, style=_STATUS_COLORS.get(r.status, "white")),
        )

    console.print(table)


# ── Recording detail ──────────────────────────────────────────────────────────

def print_recording(recording: Recording, chunks: list[AudioChunk], full: bool = False) -> None:
    color = _STATUS_COLORS.get(recording.status, "white")
    console.print(Panel.fit(
        f"[bold]{recording.summary_title or recording.title}[/bold]  ·  "
        f"{recording.started_at.strftime('%b %d %Y %H:%M')}  ·  "
        f"[{color}]{recording.status.value}[/{color}]",
        border_style="dim",
    ))
    console.print(
        f"[dim]{recording.id} · {_hms(recording.duration_seconds)} · "
        f"{recording.transcribed_chunks}/{recording.total_chunks} chunks transcribed[/dim]"
    )
    if recording.error_message:
        console.print(f"[red]{recording.error_message}[/red]")
    console.print()

    if recording.summary_body:
        console.print(f"[bold]Summary:[/bold] {recording.summary_body}")
        console.print()

    if recording.action_items:
        console.print("[bold]Action items:[/bold]")
        for item in recording.action_items:
            console.print(f"  [red]→[/red] {item}")
        console.print()

    if recording.key_points:
        console.print("[bold]Key points:[/bold]")
        for point in recording.key_points:
            console.print(f"  · {point}")
        console.print()

    failed = [c for c in chunks if c.error_message]
    for c in failed:
        console.print(
            f"[dim]chunk {c.chunk_index}: {c.transcription_status.value} "
            f"({c.transcription_retries} retries) — {c.error_message}[/dim]"
        )
    if failed:
        console.print()

    if recording.transcript:
        text = recording.transcript if full else recording.transcript[:600]
        console.print("[bold]Transcript:[/bold]")
        console.print(text + ("" if full or len(recording.transcript) <= 600 else " …"))
        console.print()


# ── Search results ────────────────────────────────────────────────────────────

def print_search_results(results: list[dict], query: str) -> None:
    if not results:
        console.print(f"[dim]No results for \"{query}\"[/dim]")
        return

    console.print(f"\n[bold]{len(results)} result(s) for \"{query}\"[/bold]\n")
    for r in results:
        started = datetime.fromisoformat(r["started_at"])
        offset = r.get("start_ms", 0) // 1000
        m, s = offset // 60, offset % 60

        console.print(
            f"[cyan]{started.strftime('%b %d')}[/cyan]  "
            f"[dim]{r.get('title') or '(untitled)'}[/dim]  "
            f"[dim][{m:02d}:{s:02d}][/dim]"
        )
        text = r.get("text", "")
        highlighted = text.replace(query, f"[bold yellow]{query}[/bold yellow]")
        console.print(f"  {highlighted[:200]}")
        console.print()


# ── Doctor ────────────────────────────────────────────────────────────────────

def print_check(label: str, ok: bool, note: str = "") -> None:
    icon = "[green]✓[/green]" if ok else "[red]✗[/red]"
    line = f"  {icon}  {label}"
    if note:
        line += f"  [dim]{note}[/dim]"
    console.print(line)


# ── Utility ───────────────────────────────────────────────────────────────────

def print_error(msg: str) -> None:
    console.print(f"\n[bold red]Error:[/bold red] {msg}\n")


def print_success(msg: str) -> None:
    console.print(f"[bold green]✓[/bold green]  {msg}")


def print_warn(msg: str) -> None:
    console.print(f"[yellow]⚠[/yellow]   {msg}")


def print_info(msg: str) -> None:
    console.print(f"[dim]{msg}[/dim]")
