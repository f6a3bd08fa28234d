"""
JobOrchestrator: in-process background jobs for the post-recording pipelines.

  enqueue_transcription(id) ─► pool ─► TranscriptionPipeline.run(id, attempt)
                                          │ RETRY → tenacity backoff → again
                                          ▼ SUCCESS + transcription_complete
  enqueue_summary(id)       ─► pool ─► SummaryPipeline.run(id, attempt)

At most one job per key (`transcription:<id>`, `summary:<id>`) is active at a
time; a duplicate enqueue while the key is active is a no-op. Attempts are
bounded both here (stop_after_attempt) and inside each pipeline (attempt
number passed in), so whichever ceiling is hit first wins.
"""
from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from ..config import PipelineConfig
from ..storage.db import Database
from ..storage.models import RecordingStatus
from ..summary.pipeline import SummaryPipeline
from ..transcription.pipeline import TranscriptionPipeline
from .base import JobResult, summary_key, transcription_key

logger = logging.getLogger(__name__)

PipelineRun = Callable[[str, int], JobResult]


def _log_before_sleep(state: RetryCallState) -> None:
    outcome = state.outcome
    detail = outcome.exception() if outcome.failed else outcome.result().value
    logger.info(
        f"Attempt {state.attempt_number} ended with {detail} — "
        f"retrying in {state.next_action.sleep:.0f}s"
    )


class JobOrchestrator:
    """
    Implements JobDispatcher for a single process.

    Usage:
        jobs = JobOrchestrator(db, transcription, summary, config.pipeline)
        jobs.enqueue_transcription(recording_id)
        jobs.join()
        jobs.shutdown()
    """

    def __init__(
        self,
        db: Database,
        transcription: TranscriptionPipeline,
        summary: SummaryPipeline,
        config: PipelineConfig,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.transcription = transcription
        self.summary = summary
        self.config = config
        self._sleep = sleep

        self._executor = ThreadPoolExecutor(
            max_workers=config.workers, thread_name_prefix="recap-job"
        )
        self._lock = threading.Lock()
        self._active: dict[str, Future] = {}
        self._cancelled: set[str] = set()

    # ------------------------------------------------------------------
    # Dispatch surface
    # ------------------------------------------------------------------

    def enqueue_transcription(self, recording_id: str) -> bool:
        return self._submit(
            transcription_key(recording_id), recording_id, self._run_transcription
        )

    def enqueue_summary(self, recording_id: str) -> bool:
        return self._submit(summary_key(recording_id), recording_id, self._run_summary)

    def is_active(self, key: str) -> bool:
        with self._lock:
            return key in self._active

    def cancel(self, recording_id: str) -> None:
        """Drop queued jobs and pending retries for a recording (e.g. after delete)."""
        with self._lock:
            self._cancelled.add(recording_id)
            for key in (transcription_key(recording_id), summary_key(recording_id)):
                future = self._active.get(key)
                if future is not None and future.cancel():
                    del self._active[key]
        logger.info(f"Cancelled jobs for {recording_id}")

    def join(self, timeout: float | None = None) -> bool:
        """Block until every queued job (including chained ones) is done."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                futures = list(self._active.values())
            if not futures:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            wait(futures, timeout=remaining)

    def shutdown(self, wait_for_jobs: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_jobs, cancel_futures=not wait_for_jobs)

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def _submit(self, key: str, recording_id: str, job: Callable[[str, str], JobResult]) -> bool:
        with self._lock:
            if key in self._active:
                logger.debug(f"Job {key} already active — ignoring duplicate")
                return False
            self._cancelled.discard(recording_id)
            self._active[key] = self._executor.submit(job, key, recording_id)
        logger.info(f"Queued {key}")
        return True

    def _run_transcription(self, key: str, recording_id: str) -> JobResult:
        try:
            result = self._run_with_retries(key, recording_id, self.transcription.run)
            if result is JobResult.SUCCESS:
                recording = self.db.get_recording(recording_id)
                if recording and recording.status == RecordingStatus.TRANSCRIPTION_COMPLETE:
                    self.enqueue_summary(recording_id)
            return result
        finally:
            self._finish(key)

    def _run_summary(self, key: str, recording_id: str) -> JobResult:
        try:
            return self._run_with_retries(key, recording_id, self.summary.run)
        finally:
            self._finish(key)

    def _finish(self, key: str) -> None:
        with self._lock:
            self._active.pop(key, None)

    def _run_with_retries(self, key: str, recording_id: str, run: PipelineRun) -> JobResult:
        attempts = itertools.count(1)

        def attempt() -> JobResult:
            if recording_id in self._cancelled:
                logger.info(f"{key} cancelled — not running")
                return JobResult.SUCCESS
            return run(recording_id, next(attempts))

        retrying = Retrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(
                multiplier=self.config.backoff_seconds, min=self.config.backoff_seconds
            ),
            retry=(
                retry_if_result(lambda r: r is JobResult.RETRY)
                | retry_if_exception_type(Exception)
            ),
            sleep=self._sleep,
            before_sleep=_log_before_sleep,
        )

        try:
            result = retrying(attempt)
        except RetryError as e:
            last = e.last_attempt
            if last.failed:
                logger.error(f"{key} gave up: {last.exception()}", exc_info=last.exception())
            else:
                logger.error(f"{key} gave up after {last.attempt_number} attempts")
            return JobResult.FAILURE

        logger.info(f"{key} finished: {result.value}")
        return result
