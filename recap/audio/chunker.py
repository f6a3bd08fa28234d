"""
AudioChunker: slices a live sample stream into overlapping chunk files.

Buffer model:
  every read        → appended to the accumulation buffer
  buffer ≥ 1 chunk  → first `samples_per_chunk` samples written as chunk N,
                      the last `overlap_samples` of that chunk kept as the
                      seed of chunk N+1
  stream end / stop → residual buffer written as one final short chunk

Chunk timestamps are derived from sample offsets (capture-relative), so
chunk[i].end_ms - chunk[i+1].start_ms == overlap exactly.

Storage and silence policies run once per `check_interval` of wall-clock
capture, not per sample. The chunker is the single writer of chunk files
and rows for its recording; indices are written strictly in order.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import numpy as np

from ..config import AudioConfig
from ..errors import InsufficientStorage
from ..storage import disk
from ..storage.db import Database
from ..storage.models import AudioChunk
from .source import AudioSource
from .wav import write_wav

logger = logging.getLogger(__name__)


@dataclass
class CaptureOutcome:
    """Why a pump() call returned."""
    ended: bool = False            # the source reported end-of-stream
    error: Optional[str] = None    # an environmental fault forced a stop


def amplitude(samples: np.ndarray) -> float:
    """Mean absolute amplitude in the int16 sample domain."""
    if samples.size == 0:
        return 0.0
    return float(np.abs(samples.astype(np.int32)).mean())


class AudioChunker:
    """
    Usage:
        chunker = AudioChunker(config, db, recording.id, audio_dir)
        chunker.on_chunk_saved(callback)   # optional
        outcome = chunker.pump(source, running=lambda: not halted)
        chunker.flush()
    """

    def __init__(
        self,
        config: AudioConfig,
        db: Database,
        recording_id: str,
        chunk_dir: Path,
        free_bytes: Callable[[Path], int] = disk.free_bytes,
        clock: Callable[[], float] = time.monotonic,
    ):
        if config.overlap_samples >= config.samples_per_chunk:
            raise ValueError("overlap_duration must be shorter than chunk_duration")

        self.config = config
        self.db = db
        self.recording_id = recording_id
        self.chunk_dir = chunk_dir
        self.chunk_dir.mkdir(parents=True, exist_ok=True)

        self._free_bytes = free_bytes
        self._clock = clock
        self._lock = threading.Lock()

        self._buffer: list[np.ndarray] = []
        self._buffered = 0
        self._buffer_start = 0     # capture-relative sample offset of the buffer head
        self._fresh = 0            # buffered samples not yet part of any written chunk
        self._chunk_index = 0
        self._closed = False

        self._silent_since: Optional[float] = None
        self._on_chunk_saved: Optional[Callable[[AudioChunk], None]] = None
        self._on_warning: Optional[Callable[[str], None]] = None

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def on_chunk_saved(self, callback: Callable[[AudioChunk], None]) -> None:
        """Invoked on the capture thread after each chunk row is persisted. Keep it fast."""
        self._on_chunk_saved = callback

    def on_warning(self, callback: Callable[[str], None]) -> None:
        """Invoked for non-fatal capture warnings (e.g. prolonged silence)."""
        self._on_warning = callback

    @property
    def chunks_written(self) -> int:
        return self._chunk_index

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Buffering
    # ------------------------------------------------------------------

    def feed(self, samples: np.ndarray) -> list[AudioChunk]:
        """Append one read's samples. Returns the chunks this read completed."""
        samples = np.asarray(samples, dtype=np.int16).reshape(-1)
        if samples.size == 0:
            return []

        with self._lock:
            if self._closed:
                raise RuntimeError("Chunker is closed. No further chunks can be written.")

            self._buffer.append(samples)
            self._buffered += samples.size
            self._fresh += samples.size

            saved = []
            per_chunk = self.config.samples_per_chunk
            while self._buffered >= per_chunk:
                audio = np.concatenate(self._buffer)
                saved.append(self._write_chunk(audio[:per_chunk]))

                # Seed the next chunk with the tail of this one
                keep_from = per_chunk - self.config.overlap_samples
                rest = audio[keep_from:]
                self._buffer = [rest]
                self._buffered = rest.size
                self._buffer_start += keep_from
                self._fresh = audio.size - per_chunk

        for chunk in saved:
            self._notify_saved(chunk)
        return saved

    def flush(self) -> Optional[AudioChunk]:
        """
        Write the residual buffer as a final short chunk.
        A buffer holding only the previous chunk's overlap seed is dropped,
        since every one of its samples is already on disk.
        """
        with self._lock:
            if self._closed or self._fresh == 0 or not self._buffer:
                self._reset_buffer()
                return None
            chunk = self._write_chunk(np.concatenate(self._buffer))
            self._buffer_start += self._buffered
            self._reset_buffer()

        self._notify_saved(chunk)
        return chunk

    def close(self) -> None:
        """Refuse any further writes."""
        with self._lock:
            self._closed = True
            self._reset_buffer()

    def _reset_buffer(self) -> None:
        self._buffer = []
        self._buffered = 0
        self._fresh = 0

    # ------------------------------------------------------------------
    # Capture loop
    # ------------------------------------------------------------------

    def pump(self, source: AudioSource, running: Callable[[], bool]) -> CaptureOutcome:
        """
        Blocking capture loop over an open source. Returns when `running()`
        turns false (pause/stop), the source ends, or a policy forces a stop.
        The residual buffer is kept on pause/stop; callers decide when to flush.
        """
        block = self.config.block_frames
        last_check = self._clock()
        self._silent_since = None

        while running():
            samples = source.read(block)
            if samples.size == 0:
                return CaptureOutcome(ended=True)

            self.feed(samples)

            now = self._clock()
            if now - last_check < self.config.check_interval:
                continue
            last_check = now

            try:
                self._check_storage()
            except InsufficientStorage as exc:
                logger.error(f"{exc} — stopping capture")
                self.flush()
                self.close()
                return CaptureOutcome(error=str(exc))

            self._check_silence(samples, now)

        return CaptureOutcome()

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def _check_storage(self) -> None:
        available = self._free_bytes(self.chunk_dir)
        if available < self.config.min_free_bytes:
            raise InsufficientStorage(available, self.config.min_free_bytes)

    def _check_silence(self, samples: np.ndarray, now: float) -> None:
        if amplitude(samples) >= self.config.silence_threshold:
            self._silent_since = None
            return

        if self._silent_since is None:
            self._silent_since = now
        elif now - self._silent_since >= self.config.silence_duration:
            self._warn(
                f"No audio detected for {self.config.silence_duration:.0f}s — "
                "check the microphone"
            )
            # Restart the window so one silent span warns once
            self._silent_since = now

    # ------------------------------------------------------------------
    # Chunk output
    # ------------------------------------------------------------------

    def _write_chunk(self, audio: np.ndarray) -> AudioChunk:
        sr = self.config.sample_rate
        start = self._buffer_start
        end = start + audio.size

        path = self.chunk_dir / f"chunk_{self._chunk_index:04d}.wav"
        size = write_wav(path, audio, sr)

        chunk = AudioChunk(
            recording_id=self.recording_id,
            chunk_index=self._chunk_index,
            file_path=str(path),
            start_ms=start * 1000 // sr,
            end_ms=end * 1000 // sr,
            duration_ms=audio.size * 1000 // sr,
            file_size=size,
            created_at=datetime.now(),
        )
        self.db.insert_chunk(chunk)
        self._chunk_index += 1

        logger.debug(f"Saved {path.name} ({audio.size / sr:.1f}s)")
        return chunk

    def _notify_saved(self, chunk: AudioChunk) -> None:
        if self._on_chunk_saved:
            self._on_chunk_saved(chunk)

    def _warn(self, message: str) -> None:
        logger.warning(message)
        if self._on_warning:
            self._on_warning(message)
