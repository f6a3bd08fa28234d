"""
WhisperTranscriber: faster-whisper wrapper for local speech-to-text.

Uses the CTranslate2 backend (Metal on Apple Silicon, CUDA where present).
The VAD filter skips silence, which on chunked recordings is most of the
speedup. The model is loaded once and reused for every chunk.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from ..config import WhisperConfig
from ..errors import AudioFileMissing, TranscriptionError

logger = logging.getLogger(__name__)


@dataclass
class Segment:
    """A single transcribed segment from a chunk."""
    start: float    # seconds from chunk start
    end: float
    text: str
    avg_logprob: float = -0.5  # higher (less negative) = more confident


class WhisperTranscriber:
    """
    Implements the Transcriber protocol on top of faster-whisper.

    The underlying model is not safe for concurrent use, so calls are
    serialised; the pipeline runs chunks sequentially anyway.
    """

    def __init__(self, config: WhisperConfig):
        self.config = config
        self._model = None
        self._lock = threading.Lock()

    def load(self) -> None:
        """Load model into memory. Safe to call multiple times (no-op after first load)."""
        if self._model is not None:
            return

        from faster_whisper import WhisperModel

        logger.info(f"Loading Whisper '{self.config.model}' (compute={self.config.compute_type})")
        self._model = WhisperModel(
            self.config.model,
            device="auto",
            compute_type=self.config.compute_type,
        )
        logger.info("Whisper model ready")

    def segments(self, audio_path: Path) -> list[Segment]:
        if not audio_path.exists():
            raise AudioFileMissing(f"Audio file not found: {audio_path}")

        language = self.config.language if self.config.language != "auto" else None

        with self._lock:
            try:
                self.load()
                segments_iter, info = self._model.transcribe(
                    str(audio_path),
                    beam_size=5,
                    language=language,
                    vad_filter=self.config.vad_filter,
                    vad_parameters={"min_silence_duration_ms": 500},
                    word_timestamps=False,
                )
                segments = [
                    Segment(
                        start=seg.start,
                        end=seg.end,
                        text=seg.text,
                        avg_logprob=seg.avg_logprob,
                    )
                    for seg in segments_iter
                ]
            except FileNotFoundError as exc:
                raise AudioFileMissing(str(exc)) from exc
            except Exception as exc:
                raise TranscriptionError(f"Whisper failed on {audio_path.name}: {exc}") from exc

        logger.debug(
            f"{audio_path.name}: {len(segments)} segments, "
            f"lang={info.language} ({info.language_probability:.0%})"
        )
        return segments

    def transcribe(self, audio_path: Path) -> str:
        """Full text of one chunk, space-joined."""
        return " ".join(s.text.strip() for s in self.segments(audio_path) if s.text.strip())
