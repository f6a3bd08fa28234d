"""
Speech-to-text capability surface.

Any engine (local faster-whisper, a hosted API, a test fake) plugs into the
pipeline by implementing `transcribe(audio_path) -> str`. Raise
AudioFileMissing when the file is gone and TranscriptionError (or any other
exception) when the call itself failed; the pipeline retries only the latter.
"""
from __future__ import annotations

from pathlib import Path
from typing import Protocol

from ..errors import AudioFileMissing, TranscriptionError

__all__ = ["Transcriber", "TranscriptionError", "AudioFileMissing"]


class Transcriber(Protocol):
    def transcribe(self, audio_path: Path) -> str: ...
