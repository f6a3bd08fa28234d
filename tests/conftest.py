"""
Shared fixtures: temporary database, fake audio source, fake clock,
fake transcriber and summarizer. No audio hardware, network or models.
"""
from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Iterable, Optional, Union

import numpy as np
import pytest

from recap.audio.wav import write_wav
from recap.config import AudioConfig, PipelineConfig
from recap.storage.db import Database
from recap.storage.models import AudioChunk, Recording, RecordingStatus
from recap.summary.base import SummaryUpdate

# Small numbers keep chunk arithmetic readable:
# 1000 Hz, 1 s chunks (1000 samples), 0.2 s overlap (200 samples), 100-sample reads
SAMPLE_RATE = 1000


@pytest.fixture
def audio_config() -> AudioConfig:
    return AudioConfig(
        sample_rate=SAMPLE_RATE,
        chunk_duration=1.0,
        overlap_duration=0.2,
        read_block_ms=100,
        min_free_mb=1,
        silence_threshold=500.0,
        silence_duration=10.0,
        check_interval=1.0,
    )


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    return PipelineConfig(max_attempts=3, max_chunk_retries=3, backoff_seconds=0.0, workers=2)


@pytest.fixture
def db(tmp_path: Path) -> Database:
    return Database(tmp_path / "recap.db")


# ── Fake capture ──────────────────────────────────────────────────────────────

class FakeSource:
    """
    AudioSource stand-in. With `samples` it plays them back once and then
    reports end-of-stream; without, it produces a constant tone until closed.
    """

    def __init__(
        self,
        samples: Optional[np.ndarray] = None,
        level: int = 1000,
        fail_open: Optional[Exception] = None,
        read_delay: float = 0.0,
    ):
        self.samples = None if samples is None else np.asarray(samples, dtype=np.int16)
        self.level = level
        self.fail_open = fail_open
        self.read_delay = read_delay
        self.pos = 0
        self.is_open = False
        self.open_count = 0
        self.close_count = 0

    def open(self) -> None:
        if self.fail_open is not None:
            raise self.fail_open
        self.is_open = True
        self.open_count += 1

    def read(self, frames: int) -> np.ndarray:
        if not self.is_open:
            return np.empty(0, dtype=np.int16)
        if self.read_delay:
            time.sleep(self.read_delay)
        if self.samples is None:
            return np.full(frames, self.level, dtype=np.int16)
        out = self.samples[self.pos:self.pos + frames]
        self.pos += out.size
        return out

    def close(self) -> None:
        self.is_open = False
        self.close_count += 1


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


class FakeFreeSpace:
    """free_bytes() stand-in whose answer tests can change mid-capture."""

    def __init__(self, available: int = 10 * 1024 ** 3):
        self.available = available
        self.calls = 0

    def __call__(self, path: Path) -> int:
        self.calls += 1
        return self.available


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def free_space() -> FakeFreeSpace:
    return FakeFreeSpace()


# ── Fake capabilities ─────────────────────────────────────────────────────────

class FakeTranscriber:
    """
    Returns text per chunk file name; an Exception value is raised instead.
    A list value is consumed one outcome per call.
    """

    def __init__(self, outcomes: Optional[dict] = None, default: str = "text"):
        self.outcomes = outcomes or {}
        self.default = default
        self.calls: list[str] = []

    def transcribe(self, audio_path: Path) -> str:
        self.calls.append(audio_path.name)
        outcome = self.outcomes.get(audio_path.name, self.default)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeSummarizer:
    """Yields a fixed list of updates; an Exception item is raised at that point."""

    def __init__(self, events: Iterable[Union[SummaryUpdate, Exception]]):
        self.events = list(events)
        self.calls = 0

    def summarize(self, transcript: str):
        self.calls += 1
        for event in self.events:
            if isinstance(event, Exception):
                raise event
            yield event


# ── Data helpers ──────────────────────────────────────────────────────────────

def make_recording(
    db: Database,
    audio_dir: Path,
    chunks: int = 3,
    status: RecordingStatus = RecordingStatus.STOPPED,
    title: str = "Test recording",
) -> Recording:
    """A stopped recording with `chunks` real 1 s WAV files on disk."""
    recording = Recording(title=title, status=status)
    recording.audio_dir = str(audio_dir / recording.id)
    db.create_recording(recording)

    chunk_dir = Path(recording.audio_dir)
    chunk_dir.mkdir(parents=True, exist_ok=True)
    for i in range(chunks):
        path = chunk_dir / f"chunk_{i:04d}.wav"
        size = write_wav(path, np.full(SAMPLE_RATE, 100 * (i + 1), dtype=np.int16), SAMPLE_RATE)
        db.insert_chunk(AudioChunk(
            recording_id=recording.id,
            chunk_index=i,
            file_path=str(path),
            start_ms=i * 800,
            end_ms=i * 800 + 1000,
            duration_ms=1000,
            file_size=size,
        ))
    return recording


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.005) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
