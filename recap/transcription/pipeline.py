"""
TranscriptionPipeline: turns a stopped recording's chunks into one transcript.

Per run:
  1. every chunk not yet completed/failed is sent to the Transcriber once
  2. a failed call bumps the chunk's retry counter; below the ceiling the
     chunk goes back to pending for the next run, at the ceiling it fails
  3. completed chunk texts are joined in chunk_index order into the
     recording's transcript (partial progress is always persisted)

Re-running is safe: completed chunks are never sent again, so a second run
over a fully transcribed recording leaves every row unchanged.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ..config import PipelineConfig
from ..errors import AudioFileMissing
from ..jobs.base import JobResult
from ..storage.db import Database
from ..storage.models import AudioChunk, RecordingStatus, TranscriptionStatus
from .base import Transcriber

logger = logging.getLogger(__name__)

# Statuses a transcription run may start from
_RUNNABLE = {
    RecordingStatus.STOPPED,
    RecordingStatus.TRANSCRIBING,
    RecordingStatus.TRANSCRIPTION_FAILED,
    RecordingStatus.TRANSCRIPTION_COMPLETE,
    RecordingStatus.ERROR,
}

# Already handed to the summary stage
_DOWNSTREAM = {
    RecordingStatus.GENERATING_SUMMARY,
    RecordingStatus.SUMMARY_COMPLETE,
    RecordingStatus.SUMMARY_FAILED,
}


class TranscriptionPipeline:
    """
    Usage:
        pipeline = TranscriptionPipeline(db, WhisperTranscriber(config.whisper), config.pipeline)
        result = pipeline.run(recording_id, attempt=1)
    """

    def __init__(self, db: Database, transcriber: Transcriber, config: PipelineConfig):
        self.db = db
        self.transcriber = transcriber
        self.config = config

    def run(self, recording_id: str, attempt: int = 1) -> JobResult:
        recording = self.db.get_recording(recording_id)
        if recording is None:
            logger.info(f"Recording {recording_id} no longer exists — skipping transcription")
            return JobResult.SUCCESS

        if recording.status in _DOWNSTREAM:
            logger.debug(f"Recording {recording_id} already at {recording.status.value}")
            return JobResult.SUCCESS
        if recording.status not in _RUNNABLE:
            logger.warning(
                f"Cannot transcribe {recording_id} while {recording.status.value}"
            )
            return JobResult.FAILURE

        last_attempt = attempt >= self.config.max_attempts
        logger.info(
            f"Transcribing {recording_id} "
            f"(attempt {attempt}/{self.config.max_attempts})"
        )

        try:
            self.db.update_recording_status(recording_id, RecordingStatus.TRANSCRIBING)

            for chunk in self.db.list_chunks(recording_id):
                if self.db.get_recording(recording_id) is None:
                    logger.info(f"Recording {recording_id} deleted mid-run — aborting")
                    return JobResult.SUCCESS
                if chunk.transcription_status in (
                    TranscriptionStatus.COMPLETED,
                    TranscriptionStatus.FAILED,
                ):
                    continue
                self._process_chunk(chunk)

            return self._converge(recording_id, last_attempt)

        except Exception as exc:
            logger.error(f"Transcription run failed for {recording_id}: {exc}", exc_info=True)
            if self.db.get_recording(recording_id) is None:
                return JobResult.SUCCESS
            if not last_attempt:
                return JobResult.RETRY
            self.db.update_recording_status(
                recording_id, RecordingStatus.TRANSCRIPTION_FAILED, error_message=str(exc)
            )
            return JobResult.FAILURE

    # ------------------------------------------------------------------
    # Per-chunk
    # ------------------------------------------------------------------

    def _process_chunk(self, chunk: AudioChunk) -> None:
        self.db.update_chunk_transcription(chunk.id, TranscriptionStatus.IN_PROGRESS)

        path = Path(chunk.file_path)
        if not path.exists():
            self._fail_missing(chunk)
            return

        try:
            text = self.transcriber.transcribe(path)
        except AudioFileMissing:
            self._fail_missing(chunk)
            return
        except Exception as exc:
            self._record_failure(chunk, exc)
            return

        text = (text or "").strip()
        self.db.update_chunk_transcription(
            chunk.id, TranscriptionStatus.COMPLETED, text=text
        )
        logger.debug(f"chunk_{chunk.chunk_index:04d}: {len(text)} chars")

    def _fail_missing(self, chunk: AudioChunk) -> None:
        logger.warning(f"chunk_{chunk.chunk_index:04d}: audio file missing ({chunk.file_path})")
        self.db.update_chunk_transcription(
            chunk.id, TranscriptionStatus.FAILED, error_message="Audio file not found"
        )

    def _record_failure(self, chunk: AudioChunk, exc: Exception) -> None:
        retries = self.db.increment_chunk_retries(chunk.id) - chunk.retry_base
        if retries < self.config.max_chunk_retries:
            logger.warning(
                f"chunk_{chunk.chunk_index:04d}: transcription failed "
                f"({retries}/{self.config.max_chunk_retries}): {exc}"
            )
            self.db.update_chunk_transcription(
                chunk.id, TranscriptionStatus.PENDING, error_message=str(exc)
            )
        else:
            logger.error(
                f"chunk_{chunk.chunk_index:04d}: giving up after {retries} attempts: {exc}"
            )
            self.db.update_chunk_transcription(
                chunk.id, TranscriptionStatus.FAILED, error_message=str(exc)
            )

    # ------------------------------------------------------------------
    # Convergence
    # ------------------------------------------------------------------

    def _converge(self, recording_id: str, last_attempt: bool) -> JobResult:
        chunks = self.db.list_chunks(recording_id)
        pending = [c for c in chunks if c.transcription_status in (
            TranscriptionStatus.PENDING, TranscriptionStatus.IN_PROGRESS,
        )]

        if pending and last_attempt:
            for chunk in pending:
                self.db.update_chunk_transcription(
                    chunk.id,
                    TranscriptionStatus.FAILED,
                    error_message=chunk.error_message or "Retry limit reached",
                )
            chunks = self.db.list_chunks(recording_id)
            pending = []

        completed = [c for c in chunks if c.transcription_status == TranscriptionStatus.COMPLETED]
        failed = [c for c in chunks if c.transcription_status == TranscriptionStatus.FAILED]
        transcript = assemble_transcript(chunks)

        if pending:
            self.db.update_transcript(
                recording_id, transcript, len(completed), RecordingStatus.TRANSCRIBING
            )
            logger.info(
                f"Transcription of {recording_id}: {len(pending)} chunk(s) pending — will retry"
            )
            return JobResult.RETRY

        if transcript and not failed:
            self.db.update_transcript(
                recording_id, transcript, len(completed), RecordingStatus.TRANSCRIPTION_COMPLETE
            )
            logger.info(f"Transcription of {recording_id} complete ({len(completed)} chunks)")
            return JobResult.SUCCESS

        error = _failure_message(len(chunks), len(failed), bool(transcript))
        self.db.update_transcript(
            recording_id,
            transcript,
            len(completed),
            RecordingStatus.TRANSCRIPTION_FAILED,
            error_message=error,
        )
        logger.warning(f"Transcription of {recording_id} failed: {error}")
        return JobResult.FAILURE


def assemble_transcript(chunks: list[AudioChunk]) -> str:
    """Join completed chunk texts in chunk_index order."""
    ordered = sorted(chunks, key=lambda c: c.chunk_index)
    return " ".join(
        c.transcription_text.strip()
        for c in ordered
        if c.transcription_status == TranscriptionStatus.COMPLETED
        and c.transcription_text
        and c.transcription_text.strip()
    )


def _failure_message(total: int, failed: int, partial: bool) -> Optional[str]:
    if total == 0:
        return "No audio chunks were recorded"
    if partial:
        return f"{failed} of {total} chunks failed to transcribe"
    if failed:
        return f"{failed} of {total} chunks failed and no speech was transcribed"
    return "No speech detected"
