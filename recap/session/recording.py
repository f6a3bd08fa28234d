"""
RecordingSession: the lifecycle of one capture.

State machine:
  IDLE ──(start, mic + storage ok)──► RECORDING
  RECORDING ──(call / focus lost / manual pause)──► PAUSED(reason)
  PAUSED(reason) ──(matching resume only)──► RECORDING
  RECORDING | PAUSED ──(stop)──► STOPPED        (flush, finalize, enqueue transcription)
  any ──(storage exhausted, device failure)──► ERROR(message)

STOPPED and ERROR are terminal. Either is published only after the residual
buffer is flushed and the recording row finalized, and STOPPED only after
transcription is enqueued; wait() blocks until then. A pause releases the
capture handle but keeps the chunker and its buffer, so chunk timing stays
continuous across pauses. A resume always opens a fresh handle after the old
one is closed.

Threading model:
  caller's thread   → start/pause/resume/stop, serialised by _transition
  capture thread    → AudioChunker.pump() on one open handle, with its own
                      halt event; reports faults through _enter_error
                      (never takes _transition). A thread that will not
                      exit on release puts the session into ERROR.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import Callable, Optional, Protocol

from ..audio.chunker import AudioChunker, CaptureOutcome
from ..audio.source import AudioSource
from ..config import AudioConfig
from ..errors import EnvironmentFault, InsufficientStorage
from ..jobs.base import JobDispatcher
from ..storage import disk
from ..storage.db import Database
from ..storage.models import AudioChunk, PauseReason, Recording, RecordingStatus
from .signals import InterruptSignal, pause_reason_for, resume_reason_for

logger = logging.getLogger(__name__)

_JOIN_TIMEOUT = 5.0

_PAUSE_LABELS = {
    PauseReason.CALL: "Paused - phone call",
    PauseReason.AUDIO_FOCUS_LOST: "Paused - audio focus lost",
    PauseReason.MANUAL: "Paused",
}


class Phase(Enum):
    IDLE = auto()
    RECORDING = auto()
    PAUSED = auto()
    STOPPED = auto()
    ERROR = auto()


@dataclass(frozen=True)
class SessionState:
    phase: Phase
    reason: Optional[PauseReason] = None
    message: Optional[str] = None

    @property
    def label(self) -> str:
        if self.phase == Phase.PAUSED:
            return _PAUSE_LABELS.get(self.reason, "Paused")
        if self.phase == Phase.ERROR:
            return f"Error: {self.message}"
        return self.phase.name.capitalize()

    @property
    def is_terminal(self) -> bool:
        return self.phase in (Phase.STOPPED, Phase.ERROR)


class StatusIndicator(Protocol):
    """The ongoing-status surface (notification, tray, terminal line)."""

    def show(self, label: str) -> None: ...

    def warn(self, message: str) -> None: ...


class LogIndicator:
    def show(self, label: str) -> None:
        logger.info(f"Status: {label}")

    def warn(self, message: str) -> None:
        logger.warning(message)


class RecordingSession:
    """
    Usage:
        session = RecordingSession(db, config.audio, config.recordings_path,
                                   source_factory=lambda: SoundDeviceSource(config.audio),
                                   microphone_available=has_input_device,
                                   dispatcher=orchestrator)
        signals.subscribe(session.handle_signal)
        session.start("Weekly sync")
        # ...
        session.stop()
    """

    def __init__(
        self,
        db: Database,
        config: AudioConfig,
        recordings_path: Path,
        source_factory: Callable[[], AudioSource],
        microphone_available: Callable[[], bool],
        dispatcher: Optional[JobDispatcher] = None,
        indicator: Optional[StatusIndicator] = None,
        free_bytes: Callable[[Path], int] = disk.free_bytes,
        clock: Callable[[], float] = time.monotonic,
        join_timeout: float = _JOIN_TIMEOUT,
    ):
        self.db = db
        self.config = config
        self.recordings_path = recordings_path
        self._source_factory = source_factory
        self._microphone_available = microphone_available
        self._dispatcher = dispatcher
        self._indicator = indicator or LogIndicator()
        self._free_bytes = free_bytes
        self._clock = clock
        self._join_timeout = join_timeout

        self._state = SessionState(Phase.IDLE)
        self._state_lock = threading.Lock()
        self._transition = threading.RLock()

        self._recording: Optional[Recording] = None
        self._chunker: Optional[AudioChunker] = None
        self._capture_thread: Optional[threading.Thread] = None
        self._halt: Optional[threading.Event] = None
        # Set once stop or error work has begun; the terminal phase follows it
        self._closing = False
        self._finished = threading.Event()
        self._on_chunk_saved: Optional[Callable[[AudioChunk], None]] = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        with self._state_lock:
            return self._state

    @property
    def recording_id(self) -> Optional[str]:
        return self._recording.id if self._recording else None

    def on_chunk_saved(self, callback: Callable[[AudioChunk], None]) -> None:
        self._on_chunk_saved = callback

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start(self, title: Optional[str] = None) -> SessionState:
        with self._transition:
            if self.state.phase != Phase.IDLE:
                raise RuntimeError("Session already started. Create a new session.")

            if not self._microphone_available():
                self._enter_error("Microphone unavailable or permission not granted")
                return self.state

            floor = self.config.min_free_bytes
            available = self._free_bytes(self.recordings_path)
            if available < floor:
                self._enter_error(str(InsufficientStorage(available, floor)))
                return self.state

            recording = Recording(
                title=title or f"Recording {datetime.now().strftime('%b %d %H:%M')}",
                status=RecordingStatus.RECORDING,
            )
            audio_dir = self.recordings_path / recording.id
            recording.audio_dir = str(audio_dir)
            self.db.create_recording(recording)
            self._recording = recording

            self._chunker = AudioChunker(
                self.config,
                self.db,
                recording.id,
                audio_dir,
                free_bytes=self._free_bytes,
                clock=self._clock,
            )
            self._chunker.on_warning(self._indicator.warn)
            if self._on_chunk_saved:
                self._chunker.on_chunk_saved(self._on_chunk_saved)

            self._set_state(SessionState(Phase.RECORDING))
            logger.info(f"Recording started — {recording.id}: {recording.title}")
            self._open_capture()
            return self.state

    def pause(self, reason: PauseReason) -> bool:
        """Pause an active recording. Returns False if nothing changed."""
        with self._transition:
            with self._state_lock:
                if self._closing or self._state.phase != Phase.RECORDING:
                    logger.debug(f"Ignoring pause ({reason.value}) in {self._state.phase.name}")
                    return False
                self._state = SessionState(Phase.PAUSED, reason=reason)

            if not self._release_capture():
                self._enter_error("Audio device did not release after pause")
                return True

            with self._state_lock:
                # The capture thread may have hit a fault while draining
                if self._closing:
                    return False

            self.db.update_recording(
                self._recording.id,
                status=RecordingStatus.PAUSED,
                pause_reason=reason,
            )
            logger.info(f"Recording paused ({reason.value})")
            self._indicator.show(self.state.label)
            return True

    def resume(self, reason: PauseReason) -> bool:
        """Resume a pause with exactly this reason. Returns False if nothing changed."""
        with self._transition:
            with self._state_lock:
                current = self._state
                if (
                    self._closing
                    or current.phase != Phase.PAUSED
                    or current.reason != reason
                ):
                    logger.debug(
                        f"Ignoring resume ({reason.value}) in {current.phase.name}"
                        + (f"({current.reason.value})" if current.reason else "")
                    )
                    return False
                self._state = SessionState(Phase.RECORDING)

            self.db.update_recording(
                self._recording.id,
                status=RecordingStatus.RECORDING,
                pause_reason=None,
            )
            logger.info(f"Recording resumed ({reason.value})")
            self._indicator.show(self.state.label)
            self._open_capture()
            return self.state.phase == Phase.RECORDING

    def stop(self) -> SessionState:
        """
        Flush, finalize, and hand the recording to transcription.
        STOPPED is published only once all three are done.
        """
        with self._transition:
            with self._state_lock:
                if self._closing or self._state.phase not in (Phase.RECORDING, Phase.PAUSED):
                    return self._state
                self._closing = True

            try:
                if not self._release_capture():
                    logger.warning("Capture thread still running at stop — closing the chunker anyway")
                self._chunker.flush()
                self._chunker.close()

                recording_id = self._recording.id
                total = self.db.count_chunks(recording_id)
                stopped_at = datetime.now()
                self.db.finalize_recording(
                    recording_id,
                    stopped_at=stopped_at,
                    duration_ms=_elapsed_ms(self._recording.started_at, stopped_at),
                    total_chunks=total,
                    status=RecordingStatus.STOPPED,
                )
                logger.info(f"Recording stopped — {recording_id}, {total} chunk(s)")

                if self._dispatcher is not None:
                    self._dispatcher.enqueue_transcription(recording_id)
            finally:
                self._publish(SessionState(Phase.STOPPED))
            return self.state

    def fail(self, message: str) -> SessionState:
        """Force the session into ERROR from outside (unrecoverable fault)."""
        with self._transition:
            self._enter_error(message)
            return self.state

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the session reaches STOPPED or ERROR with all of its
        chunks written and the recording row finalized.
        """
        return self._finished.wait(timeout)

    def handle_signal(self, signal: InterruptSignal) -> None:
        """Subscriber for SignalSource."""
        reason = pause_reason_for(signal)
        if reason is not None:
            self.pause(reason)
            return
        reason = resume_reason_for(signal)
        if reason is not None:
            self.resume(reason)

    # ------------------------------------------------------------------
    # Capture thread
    # ------------------------------------------------------------------

    def _open_capture(self) -> None:
        source = self._source_factory()
        try:
            source.open()
        except EnvironmentFault as exc:
            source.close()
            self._enter_error(str(exc))
            return

        # One halt event per thread, so a stale thread is never revived
        halt = threading.Event()
        self._halt = halt
        self._capture_thread = threading.Thread(
            target=self._capture_loop,
            args=(source, halt),
            daemon=True,
            name="recap-capture",
        )
        self._capture_thread.start()

    def _capture_loop(self, source: AudioSource, halt: threading.Event) -> None:
        try:
            outcome = self._chunker.pump(source, lambda: not halt.is_set())
        except EnvironmentFault as exc:
            outcome = CaptureOutcome(error=str(exc))
        except Exception as exc:
            if halt.is_set() and self._chunker.closed:
                logger.debug(f"Capture thread exited after release: {exc}")
                outcome = CaptureOutcome()
            else:
                logger.error(f"Capture loop crashed: {exc}", exc_info=True)
                outcome = CaptureOutcome(error=f"Capture failed: {exc}")
        finally:
            source.close()

        if outcome.error:
            self._enter_error(outcome.error)
        elif outcome.ended:
            logger.info("Audio stream ended — stopping")
            # stop() joins the capture thread, so it cannot run on it
            threading.Thread(target=self.stop, daemon=True, name="recap-stop").start()

    def _release_capture(self) -> bool:
        """Halt and join the capture thread. False if it is still running."""
        if self._halt is not None:
            self._halt.set()
        thread = self._capture_thread
        self._capture_thread = None
        if thread is None or thread is threading.current_thread():
            return True
        thread.join(timeout=self._join_timeout)
        if thread.is_alive():
            logger.warning(f"Capture thread did not exit within {self._join_timeout:g}s")
            return False
        return True

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        with self._state_lock:
            self._state = state
        self._indicator.show(state.label)

    def _publish(self, state: SessionState) -> None:
        """Make a terminal state visible and wake wait()."""
        self._set_state(state)
        self._finished.set()

    def _enter_error(self, message: str) -> None:
        with self._state_lock:
            if self._closing or self._state.is_terminal:
                return
            self._closing = True

        logger.error(f"Recording error: {message}")
        try:
            self._release_capture()

            if self._chunker is not None:
                self._chunker.flush()
                self._chunker.close()

            if self._recording is not None:
                stopped_at = datetime.now()
                self.db.finalize_recording(
                    self._recording.id,
                    stopped_at=stopped_at,
                    duration_ms=_elapsed_ms(self._recording.started_at, stopped_at),
                    total_chunks=self.db.count_chunks(self._recording.id),
                    status=RecordingStatus.ERROR,
                    error_message=message,
                )
        finally:
            self._publish(SessionState(Phase.ERROR, message=message))


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)
