"""
Exception types shared across capture and post-processing.

Environmental faults stop a recording outright and are never retried.
Capability faults (transcriber / summarizer) are absorbed by the pipelines
and surface through the retry counters and Recording.status.
"""
from __future__ import annotations


class RecapError(Exception):
    """Base class for all recap errors."""


# ── Environmental faults ──────────────────────────────────────────────────────

class EnvironmentFault(RecapError):
    """The device or host cannot support a recording right now."""


class InsufficientStorage(EnvironmentFault):
    def __init__(self, available_bytes: int, floor_bytes: int):
        self.available_bytes = available_bytes
        self.floor_bytes = floor_bytes
        super().__init__(
            f"Insufficient storage: {available_bytes / 1024 ** 2:.0f} MB free, "
            f"{floor_bytes / 1024 ** 2:.0f} MB required"
        )


class MicrophoneUnavailable(EnvironmentFault):
    """No usable input device, or permission to use it was not granted."""


class AudioDeviceError(EnvironmentFault):
    """The capture device failed to open or failed mid-read."""


# ── Capability faults ─────────────────────────────────────────────────────────

class TranscriptionError(RecapError):
    """A speech-to-text call failed. Retryable."""


class AudioFileMissing(TranscriptionError, FileNotFoundError):
    """The chunk's audio file is gone. Not retryable."""


class SummaryError(RecapError):
    """A summarizer call failed or produced an incomplete summary."""
