"""
Capture handles.

An AudioSource is one open session with the input device: open() acquires
it, read() blocks until the requested frames are available, close() releases
it. RecordingSession opens a fresh handle on every start/resume and always
closes the previous one first, so at most one handle owns the device.

An empty read means the stream has ended.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol

import numpy as np

from ..config import AudioConfig
from ..errors import AudioDeviceError, MicrophoneUnavailable

logger = logging.getLogger(__name__)


class AudioSource(Protocol):
    def open(self) -> None: ...

    def read(self, frames: int) -> np.ndarray: ...

    def close(self) -> None: ...


class SoundDeviceSource:
    """Blocking reader over a sounddevice InputStream, mono int16."""

    def __init__(self, config: AudioConfig):
        self.config = config
        self._stream = None

    def open(self) -> None:
        import sounddevice as sd

        from .devices import find_device_id

        if self._stream is not None:
            raise RuntimeError("Capture handle already open. Call close() first.")

        device_id = find_device_id(self.config.device)
        if device_id is None:
            raise MicrophoneUnavailable(
                f"Audio device '{self.config.device}' not found. Run 'recap doctor'."
            )

        try:
            stream = sd.InputStream(
                device=device_id,
                channels=self.config.channels,
                samplerate=self.config.sample_rate,
                dtype="int16",
                blocksize=self.config.block_frames,
                latency="low",
            )
            stream.start()
        except sd.PortAudioError as exc:
            raise AudioDeviceError(f"Could not open audio device: {exc}") from exc

        self._stream = stream
        logger.info(f"Capture handle opened — device: {self.config.device}")

    def read(self, frames: int) -> np.ndarray:
        import sounddevice as sd

        if self._stream is None:
            return np.empty(0, dtype=np.int16)
        try:
            data, overflowed = self._stream.read(frames)
        except sd.PortAudioError as exc:
            raise AudioDeviceError(f"Audio read failed: {exc}") from exc

        if overflowed:
            logger.warning("Audio input overflow — samples were dropped")

        if data.ndim == 2 and data.shape[1] > 1:
            return data.mean(axis=1).astype(np.int16)
        return data.reshape(-1).copy()

    def close(self) -> None:
        stream: Optional[object] = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        logger.info("Capture handle released")
