"""
Job outcomes and the dispatch surface the capture side hands work to.
"""
from __future__ import annotations

from enum import Enum
from typing import Protocol


class JobResult(str, Enum):
    """Terminal result a pipeline run reports to its orchestrator."""
    SUCCESS = "success"
    RETRY = "retry"
    FAILURE = "failure"


class JobDispatcher(Protocol):
    def enqueue_transcription(self, recording_id: str) -> bool: ...

    def enqueue_summary(self, recording_id: str) -> bool: ...


def transcription_key(recording_id: str) -> str:
    return f"transcription:{recording_id}"


def summary_key(recording_id: str) -> str:
    return f"summary:{recording_id}"
