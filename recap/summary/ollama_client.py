"""
Ollama client: streamed four-section recording summaries.

The model writes markdown; the cumulative text is re-parsed after every
streamed piece and a SummaryUpdate is yielded whenever any field changed,
so callers can persist partial progress while the model is still writing.
Auto-starts the Ollama daemon if it is not running.
"""
from __future__ import annotations

import logging
import subprocess
import time
from typing import Iterator

from ..config import OllamaConfig
from ..errors import SummaryError
from .base import SummaryUpdate
from .parser import parse_summary_markdown
from .prompts import CURRENT_SUMMARY_PROMPT, CURRENT_SUMMARY_SYSTEM

logger = logging.getLogger(__name__)

# Approximate characters per token for prompt truncation
_CHARS_PER_TOKEN = 4
_MAX_TRANSCRIPT_TOKENS = 6000


# ── Ollama daemon management ──────────────────────────────────────────────────

def _is_responding(client) -> bool:
    import ollama as sdk

    try:
        client.list()
        return True
    except (ConnectionError, sdk.ResponseError) as e:
        logger.debug(f"Ollama not responding: {e}")
        return False


def ensure_ollama_running(host: str = "http://localhost:11434", wait_seconds: int = 30) -> None:
    """Start Ollama if it isn't responding. Waits up to `wait_seconds` for startup."""
    import ollama as sdk

    client = sdk.Client(host=host)
    if _is_responding(client):
        return

    logger.info("Ollama not running — starting it...")
    try:
        subprocess.Popen(
            ["ollama", "serve"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except FileNotFoundError as e:
        raise SummaryError("Ollama is not installed. See https://ollama.com/download") from e

    for _ in range(wait_seconds):
        time.sleep(1)
        if _is_responding(client):
            logger.info("Ollama started")
            return

    raise SummaryError(
        "Could not start Ollama. Run 'ollama serve' in a separate terminal "
        "and try again."
    )


# ── Summarizer ────────────────────────────────────────────────────────────────

class OllamaSummarizer:
    """
    Implements the Summarizer protocol with a streaming Ollama generate call.

    Usage:
        for update in OllamaSummarizer(config.ollama).summarize(transcript):
            ...
    """

    def __init__(self, config: OllamaConfig):
        self.config = config
        self._client = None

    def _get_client(self):
        if self._client is None:
            import ollama as sdk
            self._client = sdk.Client(host=self.config.host)
        return self._client

    def summarize(self, transcript: str) -> Iterator[SummaryUpdate]:
        ensure_ollama_running(self.config.host)

        max_chars = _MAX_TRANSCRIPT_TOKENS * _CHARS_PER_TOKEN
        if len(transcript) > max_chars:
            logger.info(f"Transcript truncated to {max_chars} chars for summary")
            transcript = transcript[:max_chars]

        logger.info(f"Summarizing {len(transcript)} chars with {self.config.model}")

        text = ""
        last = SummaryUpdate()
        try:
            stream = self._get_client().generate(
                model=self.config.model,
                prompt=CURRENT_SUMMARY_PROMPT.format(transcript=transcript),
                system=CURRENT_SUMMARY_SYSTEM,
                stream=True,
                options={
                    "temperature": self.config.temperature,
                    "num_predict": 1024,
                },
            )
            for part in stream:
                piece = part["response"]
                if not piece:
                    continue
                text += piece
                update = parse_summary_markdown(text, default_title=None)
                if update != last:
                    last = update
                    yield update
        except SummaryError:
            raise
        except Exception as e:
            raise SummaryError(f"Ollama summary failed: {e}") from e

        # The title falls back to a default once the stream has finished
        final = parse_summary_markdown(text)
        if final != last:
            yield final
