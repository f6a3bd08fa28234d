"""
Data models for recordings and their audio chunks.
Plain dataclasses — no ORM, keeps the storage layer simple.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class RecordingStatus(str, Enum):
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"
    TRANSCRIBING = "transcribing"
    TRANSCRIPTION_COMPLETE = "transcription_complete"
    TRANSCRIPTION_FAILED = "transcription_failed"
    GENERATING_SUMMARY = "generating_summary"
    SUMMARY_COMPLETE = "summary_complete"
    SUMMARY_FAILED = "summary_failed"
    ERROR = "error"


class TranscriptionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class PauseReason(str, Enum):
    CALL = "call"
    AUDIO_FOCUS_LOST = "audio_focus_lost"
    MANUAL = "manual"


def _short_id() -> str:
    return str(uuid.uuid4())[:8]


@dataclass
class Recording:
    title: str = ""
    status: RecordingStatus = RecordingStatus.RECORDING
    started_at: datetime = field(default_factory=datetime.now)
    stopped_at: Optional[datetime] = None
    duration_ms: int = 0
    total_chunks: int = 0
    transcribed_chunks: int = 0
    transcript: Optional[str] = None
    summary_title: Optional[str] = None
    summary_body: Optional[str] = None
    summary_action_items: Optional[str] = None   # newline-joined
    summary_key_points: Optional[str] = None     # newline-joined
    pause_reason: Optional[PauseReason] = None
    error_message: Optional[str] = None
    audio_dir: str = ""
    id: str = field(default_factory=_short_id)

    @property
    def duration_seconds(self) -> int:
        if self.stopped_at:
            return self.duration_ms // 1000
        return int((datetime.now() - self.started_at).total_seconds())

    @property
    def action_items(self) -> list[str]:
        return _split_lines(self.summary_action_items)

    @property
    def key_points(self) -> list[str]:
        return _split_lines(self.summary_key_points)


@dataclass
class AudioChunk:
    recording_id: str
    chunk_index: int
    file_path: str
    start_ms: int = 0          # capture-relative
    end_ms: int = 0
    duration_ms: int = 0
    file_size: int = 0
    transcription_status: TranscriptionStatus = TranscriptionStatus.PENDING
    transcription_text: Optional[str] = None
    transcription_retries: int = 0
    retry_base: int = 0        # retries already spent before the last explicit reset
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None


def _split_lines(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [line for line in value.split("\n") if line.strip()]
