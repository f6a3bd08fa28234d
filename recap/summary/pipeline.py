"""
SummaryPipeline: transcript → title, summary, action items, key points.

Every streamed update is persisted, so a restarted process sees the best
partial summary so far. The status stays generating_summary until all four
fields are non-empty at once, then flips to summary_complete.
"""
from __future__ import annotations

import logging

from ..config import PipelineConfig
from ..errors import SummaryError
from ..jobs.base import JobResult
from ..storage.db import Database
from ..storage.models import RecordingStatus
from .base import Summarizer, SummaryUpdate

logger = logging.getLogger(__name__)


class SummaryPipeline:
    """
    Usage:
        pipeline = SummaryPipeline(db, OllamaSummarizer(config.ollama), config.pipeline)
        result = pipeline.run(recording_id, attempt=1)
    """

    def __init__(self, db: Database, summarizer: Summarizer, config: PipelineConfig):
        self.db = db
        self.summarizer = summarizer
        self.config = config

    def run(self, recording_id: str, attempt: int = 1) -> JobResult:
        recording = self.db.get_recording(recording_id)
        if recording is None:
            logger.info(f"Recording {recording_id} no longer exists — skipping summary")
            return JobResult.SUCCESS

        if recording.status == RecordingStatus.SUMMARY_COMPLETE:
            logger.debug(f"Recording {recording_id} already summarized")
            return JobResult.SUCCESS

        transcript = (recording.transcript or "").strip()
        if not transcript:
            self.db.update_recording_status(
                recording_id,
                RecordingStatus.SUMMARY_FAILED,
                error_message="No transcript to summarize",
            )
            return JobResult.FAILURE

        logger.info(
            f"Summarizing {recording_id} (attempt {attempt}/{self.config.max_attempts})"
        )
        self.db.update_recording_status(recording_id, RecordingStatus.GENERATING_SUMMARY)

        best = SummaryUpdate()
        try:
            for update in self.summarizer.summarize(transcript):
                if self.db.get_recording(recording_id) is None:
                    logger.info(f"Recording {recording_id} deleted mid-summary — aborting")
                    return JobResult.SUCCESS
                best = best.merge(update)
                self._persist(recording_id, best)

            if not best.is_complete:
                raise SummaryError(
                    f"Summary incomplete: missing {', '.join(best.missing)}"
                )

        except Exception as exc:
            if self.db.get_recording(recording_id) is None:
                return JobResult.SUCCESS
            if best.is_complete:
                logger.warning(f"Summary stream for {recording_id} broke after completion: {exc}")
                return JobResult.SUCCESS
            if attempt < self.config.max_attempts:
                logger.warning(f"Summary attempt {attempt} for {recording_id} failed: {exc}")
                return JobResult.RETRY
            logger.error(f"Summary for {recording_id} failed after {attempt} attempts: {exc}")
            self.db.update_recording_status(
                recording_id, RecordingStatus.SUMMARY_FAILED, error_message=str(exc)
            )
            return JobResult.FAILURE

        logger.info(f"Summary complete for {recording_id}: {best.title}")
        return JobResult.SUCCESS

    def _persist(self, recording_id: str, best: SummaryUpdate) -> None:
        status = (
            RecordingStatus.SUMMARY_COMPLETE
            if best.is_complete
            else RecordingStatus.GENERATING_SUMMARY
        )
        self.db.update_summary(
            recording_id,
            title=best.title or None,
            body=best.body or None,
            action_items="\n".join(best.action_items) or None,
            key_points="\n".join(best.key_points) or None,
            status=status,
        )
