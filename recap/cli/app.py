"""
recap CLI — all commands.

Commands:
  record        Record from the microphone (blocks until Ctrl+C)
  list          List recent recordings
  show          Show a recording's summary, transcript and chunk errors
  process       Re-run transcription + summary for a recording
  recover       Finish recordings left behind by crashed or interrupted runs
  delete        Delete a recording and its audio
  search        Search across all transcripts
  cleanup       Delete old audio files to free disk space
  doctor        Diagnose setup issues
  config        Show configuration values or the config file path
"""
from __future__ import annotations

import logging
import signal
import subprocess
import time
from datetime import datetime
from typing import Optional

import typer
from rich.console import Console

from ..audio.devices import has_input_device
from ..audio.source import SoundDeviceSource
from ..config import CONFIG_DIR, CONFIG_FILE, Config, load_config
from ..jobs.orchestrator import JobOrchestrator
from ..session.recording import Phase, RecordingSession
from ..session.signals import InterruptSignal, SignalSource
from ..storage.db import Database
from ..storage.disk import check_disk_space
from ..storage.models import Recording, RecordingStatus
from ..summary.ollama_client import OllamaSummarizer
from ..summary.pipeline import SummaryPipeline
from ..transcription.pipeline import TranscriptionPipeline
from ..transcription.whisper_engine import WhisperTranscriber
from . import display

app = typer.Typer(
    name="recap",
    help="Record, transcribe and summarize conversations locally.",
    no_args_is_help=True,
    add_completion=False,
    pretty_exceptions_enable=False,
)
console = Console()
logger = logging.getLogger(__name__)

# Lockfile prevents double-recording
_LOCK_FILE = CONFIG_DIR / "recap.lock"

# Statuses whose next step is the summary job
_SUMMARY_STAGE = {
    RecordingStatus.TRANSCRIPTION_COMPLETE,
    RecordingStatus.GENERATING_SUMMARY,
    RecordingStatus.SUMMARY_FAILED,
}


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _get_db(config: Optional[Config] = None) -> Database:
    cfg = config or load_config()
    return Database(cfg.storage.db_path)


def _build_jobs(config: Config, db: Database) -> JobOrchestrator:
    transcription = TranscriptionPipeline(db, WhisperTranscriber(config.whisper), config.pipeline)
    summary = SummaryPipeline(db, OllamaSummarizer(config.ollama), config.pipeline)
    return JobOrchestrator(db, transcription, summary, config.pipeline)


def _resolve_recording(db: Database, recording_id: Optional[str]) -> Recording:
    if recording_id is None:
        recordings = db.list_recordings(limit=1)
        if not recordings:
            display.print_error("No recordings found.")
            raise typer.Exit(1)
        return recordings[0]

    recording = db.get_recording(recording_id)
    if not recording:
        display.print_error(f"Recording '{recording_id}' not found.")
        raise typer.Exit(1)
    return recording


# ── record ────────────────────────────────────────────────────────────────────

@app.command()
def record(
    title: Optional[str] = typer.Option(
        None, "--title", "-t", help="Recording title (e.g. 'Weekly sync')"
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Don't print each saved chunk"),
) -> None:
    """Record from the microphone. Press Ctrl+C to stop."""
    config = load_config()
    _setup_logging(config.display.log_level)

    display.print_banner()

    # ── Pre-flight checks ─────────────────────────────────────────────
    if _LOCK_FILE.exists():
        display.print_error(
            "Another recap recording appears to be running.\n"
            f"If that's wrong, delete {_LOCK_FILE} and try again."
        )
        raise typer.Exit(1)

    db = _get_db(config)
    if config.storage.auto_delete_audio_days > 0:
        cleaned = db.cleanup_old_audio(config.storage.auto_delete_audio_days)
        if cleaned:
            display.print_info(f"Cleaned audio from {cleaned} old recording(s)")

    incomplete = db.get_incomplete_recordings()
    if incomplete:
        display.print_warn(
            f"{len(incomplete)} unprocessed recording(s) found. "
            "Run 'recap recover' after this one."
        )

    jobs = _build_jobs(config, db)
    session = RecordingSession(
        db,
        config.audio,
        config.recordings_path,
        source_factory=lambda: SoundDeviceSource(config.audio),
        microphone_available=lambda: has_input_device(config.audio.device),
        dispatcher=jobs,
        indicator=display.ConsoleIndicator(),
    )
    if not quiet:
        session.on_chunk_saved(display.print_chunk_saved)

    # ── Interrupt signals ─────────────────────────────────────────────
    signals = SignalSource()
    signals.subscribe(session.handle_signal)
    signal.signal(signal.SIGUSR1, lambda signum, frame: signals.emit(InterruptSignal.MANUAL_PAUSE))
    signal.signal(signal.SIGUSR2, lambda signum, frame: signals.emit(InterruptSignal.MANUAL_RESUME))
    signal.signal(signal.SIGTERM, lambda signum, frame: session.stop())

    # ── Start ─────────────────────────────────────────────────────────
    _LOCK_FILE.parent.mkdir(parents=True, exist_ok=True)
    _LOCK_FILE.write_text(str(time.time()))
    try:
        state = session.start(title)
        if state.phase == Phase.ERROR:
            display.print_error(state.message or "Could not start recording.")
            raise typer.Exit(1)

        recording = db.get_recording(session.recording_id)
        display.print_recording_status(config.audio.device, recording.title)

        try:
            while not session.wait(timeout=0.5):
                pass
        except KeyboardInterrupt:
            display.print_info("\nStopping capture...")
            session.stop()
        # A stop or error already under way elsewhere finishes before we go on
        session.wait()
    finally:
        _LOCK_FILE.unlink(missing_ok=True)

    # ── Post-processing ───────────────────────────────────────────────
    recording_id = session.recording_id
    if session.state.phase == Phase.ERROR:
        display.print_error(session.state.message or "Recording failed.")
        display.print_info(
            f"Audio captured so far is kept. Run 'recap process {recording_id}' to transcribe it."
        )
        jobs.shutdown()
        raise typer.Exit(1)

    recording = db.get_recording(recording_id)
    display.print_processing_header(recording.title)
    display.print_info("Transcribing and summarizing (Ctrl+C to leave it for 'recap recover')...")
    _wait(jobs)
    display.print_recording(db.get_recording(recording_id), db.list_chunks(recording_id))


# ── list ──────────────────────────────────────────────────────────────────────

@app.command(name="list")
def list_recordings(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of recordings to show"),
) -> None:
    """List recent recordings."""
    db = _get_db()
    display.print_recording_list(db.list_recordings(limit=limit))


# ── show ──────────────────────────────────────────────────────────────────────

@app.command()
def show(
    recording_id: Optional[str] = typer.Argument(
        None, help="Recording ID (default: most recent)"
    ),
    full: bool = typer.Option(False, "--full", "-f", help="Print the whole transcript"),
) -> None:
    """Show a recording's summary and transcript."""
    db = _get_db()
    recording = _resolve_recording(db, recording_id)
    display.print_recording(recording, db.list_chunks(recording.id), full=full)


# ── process ───────────────────────────────────────────────────────────────────

@app.command()
def process(
    recording_id: Optional[str] = typer.Argument(
        None, help="Recording ID to process (default: most recent)"
    ),
    retry_failed: bool = typer.Option(
        False, "--retry-failed", help="Give permanently failed chunks a fresh retry budget"
    ),
    resummarize: bool = typer.Option(
        False, "--resummarize", help="Regenerate the summary even if one exists"
    ),
) -> None:
    """Re-run transcription and summary for a recording."""
    config = load_config()
    _setup_logging(config.display.log_level)
    db = _get_db(config)
    recording = _resolve_recording(db, recording_id)

    if recording.status in (RecordingStatus.RECORDING, RecordingStatus.PAUSED):
        display.print_error(f"Recording '{recording.id}' is still being captured.")
        raise typer.Exit(1)

    if retry_failed:
        reset = db.reopen_for_transcription(recording.id)
        display.print_info(f"Reset {reset} failed chunk(s)")
    elif resummarize and recording.transcript:
        db.update_recording(
            recording.id, status=RecordingStatus.TRANSCRIPTION_COMPLETE, error_message=None
        )

    jobs = _build_jobs(config, db)
    display.print_processing_header(recording.title)
    if not _enqueue(db.get_recording(recording.id), jobs):
        display.print_success(f"Recording '{recording.id}' is already summarized.")
        jobs.shutdown()
        return

    _wait(jobs)
    display.print_recording(db.get_recording(recording.id), db.list_chunks(recording.id))


def _enqueue(recording: Recording, jobs: JobOrchestrator) -> bool:
    if recording.status == RecordingStatus.SUMMARY_COMPLETE:
        return False
    if recording.status in _SUMMARY_STAGE:
        return jobs.enqueue_summary(recording.id)
    return jobs.enqueue_transcription(recording.id)


def _wait(jobs: JobOrchestrator) -> None:
    try:
        jobs.join()
    except KeyboardInterrupt:
        display.print_warn("Interrupted. Run 'recap recover' to finish later.")
        jobs.shutdown(wait_for_jobs=False)
        raise typer.Exit(130)
    jobs.shutdown()


# ── recover ───────────────────────────────────────────────────────────────────

@app.command()
def recover() -> None:
    """Finish recordings left incomplete by crashed or interrupted runs."""
    config = load_config()
    _setup_logging(config.display.log_level)
    db = _get_db(config)

    # A capture that died without stopping still has its chunks on disk
    if not _LOCK_FILE.exists():
        for recording in db.list_recordings(limit=500):
            if recording.status in (RecordingStatus.RECORDING, RecordingStatus.PAUSED):
                _finalize_orphan(db, recording)

    incomplete = db.get_incomplete_recordings()
    if not incomplete:
        display.print_success("No incomplete recordings found.")
        return

    display.print_warn(f"Found {len(incomplete)} incomplete recording(s).")
    jobs = _build_jobs(config, db)
    for recording in incomplete:
        console.print(f"[dim]→[/dim] {recording.id}  {recording.title}  [dim]{recording.status.value}[/dim]")
        _enqueue(recording, jobs)

    _wait(jobs)
    display.print_recording_list([db.get_recording(r.id) for r in incomplete])


def _finalize_orphan(db: Database, recording: Recording) -> None:
    chunks = db.list_chunks(recording.id)
    duration_ms = chunks[-1].end_ms if chunks else 0
    db.finalize_recording(
        recording.id,
        stopped_at=datetime.now(),
        duration_ms=duration_ms,
        total_chunks=len(chunks),
        status=RecordingStatus.STOPPED,
    )
    logger.info(f"Recovered interrupted capture {recording.id} ({len(chunks)} chunks)")


# ── delete ────────────────────────────────────────────────────────────────────

@app.command()
def delete(
    recording_id: str = typer.Argument(..., help="Recording ID to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Don't ask for confirmation"),
) -> None:
    """Delete a recording, its chunks and its audio files."""
    db = _get_db()
    recording = _resolve_recording(db, recording_id)

    if not yes and not typer.confirm(f"Delete '{recording.title}' ({recording.id})?"):
        raise typer.Abort()

    if db.delete_recording(recording.id):
        display.print_success(f"Deleted {recording.id}")
    else:
        display.print_error(f"Recording '{recording.id}' not found.")
        raise typer.Exit(1)


# ── search ────────────────────────────────────────────────────────────────────

@app.command()
def search(
    query: str = typer.Argument(..., help="Text to search for in transcripts"),
    limit: int = typer.Option(10, "--limit", "-n"),
) -> None:
    """Search across all transcripts."""
    db = _get_db()
    display.print_search_results(db.search_transcripts(query, limit=limit), query)


# ── cleanup ───────────────────────────────────────────────────────────────────

@app.command()
def cleanup(
    days: int = typer.Option(
        None,
        "--days",
        help="Delete audio older than N days (default: from config)",
    ),
) -> None:
    """Delete audio of processed recordings to free disk space."""
    config = load_config()
    max_days = days if days is not None else config.storage.auto_delete_audio_days

    if max_days <= 0:
        display.print_info("auto_delete_audio_days is 0 — no cleanup configured.")
        return

    cleaned = _get_db(config).cleanup_old_audio(max_days)
    if cleaned:
        display.print_success(f"Cleaned audio from {cleaned} recording(s) older than {max_days} days.")
    else:
        display.print_success("Nothing to clean up.")


# ── doctor ────────────────────────────────────────────────────────────────────

@app.command()
def doctor() -> None:
    """Diagnose recap setup — check all dependencies."""
    config = load_config()
    console.print("\n[bold]recap doctor[/bold]\n")
    all_ok = True

    # Microphone
    mic_ok = has_input_device(config.audio.device)
    display.print_check(
        f"Input device ({config.audio.device})",
        mic_ok,
        "not found — check microphone permissions and 'audio.device'" if not mic_ok else "",
    )
    all_ok = all_ok and mic_ok

    # Ollama
    try:
        result = subprocess.run(
            ["ollama", "list"], capture_output=True, text=True, timeout=5
        )
        ollama_ok = result.returncode == 0
        display.print_check("Ollama installed", ollama_ok)
        if ollama_ok:
            model_ok = config.ollama.model in result.stdout
            display.print_check(
                f"Model {config.ollama.model}",
                model_ok,
                f"not found — run: ollama pull {config.ollama.model}" if not model_ok else "",
            )
            all_ok = all_ok and model_ok
        else:
            all_ok = False
    except FileNotFoundError:
        display.print_check("Ollama installed", False, "see https://ollama.com/download")
        all_ok = False

    # faster-whisper
    try:
        import faster_whisper  # noqa: F401
        display.print_check("faster-whisper installed", True)
    except ImportError:
        display.print_check("faster-whisper installed", False, "run: pip install faster-whisper")
        all_ok = False

    # Disk space
    disk_ok, available = check_disk_space(config.recordings_path, config.audio.min_free_bytes)
    display.print_check(
        f"Disk space ({available / 1024 ** 3:.1f} GB available)",
        disk_ok,
        f"below the {config.audio.min_free_mb} MB floor — recordings will stop" if not disk_ok else "",
    )
    all_ok = all_ok and disk_ok

    # Config
    config_exists = CONFIG_FILE.exists()
    display.print_check(
        f"Config file ({CONFIG_FILE})",
        config_exists,
        "using defaults" if not config_exists else "",
    )

    console.print()
    if all_ok:
        display.print_success("All checks passed. Run 'recap record' to begin.")
    else:
        display.print_error("Some checks failed. Fix issues above, then re-run 'recap doctor'.")


# ── config ────────────────────────────────────────────────────────────────────

config_app = typer.Typer(name="config", help="View configuration.", no_args_is_help=True)
app.add_typer(config_app)


@config_app.command("show")
def config_show() -> None:
    """Print current configuration."""
    config = load_config()
    import yaml
    console.print(yaml.dump(config.model_dump(), default_flow_style=False))


@config_app.command("path")
def config_path() -> None:
    """Show path to the config file."""
    console.print(str(CONFIG_FILE))
