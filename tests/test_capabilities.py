from types import SimpleNamespace

import numpy as np
import pytest

from recap.audio.wav import write_wav
from recap.config import OllamaConfig, WhisperConfig
from recap.errors import AudioFileMissing, SummaryError, TranscriptionError
from recap.summary import ollama_client
from recap.summary.ollama_client import OllamaSummarizer
from recap.transcription.whisper_engine import WhisperTranscriber

MARKDOWN = "## Title\nDemo\n\n## Summary\nA demo.\n\n## Action Items\n- Follow up\n\n## Key Points\n- Point A\n"


# ── Whisper ───────────────────────────────────────────────────────────────────

class FakeWhisperModel:
    def __init__(self, texts=(), error=None):
        self.texts = texts
        self.error = error
        self.kwargs = None

    def transcribe(self, path, **kwargs):
        self.kwargs = kwargs
        if self.error:
            raise self.error
        segments = (
            SimpleNamespace(start=i, end=i + 1, text=t, avg_logprob=-0.2)
            for i, t in enumerate(self.texts)
        )
        return segments, SimpleNamespace(language="en", language_probability=0.98)


@pytest.fixture
def chunk_file(tmp_path):
    path = tmp_path / "chunk_0000.wav"
    write_wav(path, np.zeros(1600, dtype=np.int16), 16000)
    return path


def test_whisper_joins_segment_text(chunk_file):
    transcriber = WhisperTranscriber(WhisperConfig(language="auto"))
    transcriber._model = FakeWhisperModel([" Hello", " world. ", "  "])

    assert transcriber.transcribe(chunk_file) == "Hello world."
    assert transcriber._model.kwargs["language"] is None
    assert transcriber._model.kwargs["vad_filter"] is True


def test_whisper_missing_file(tmp_path):
    transcriber = WhisperTranscriber(WhisperConfig())
    transcriber._model = FakeWhisperModel()

    with pytest.raises(AudioFileMissing):
        transcriber.transcribe(tmp_path / "gone.wav")


def test_whisper_failure_is_wrapped(chunk_file):
    transcriber = WhisperTranscriber(WhisperConfig())
    transcriber._model = FakeWhisperModel(error=RuntimeError("CUDA out of memory"))

    with pytest.raises(TranscriptionError, match="CUDA out of memory"):
        transcriber.transcribe(chunk_file)


# ── Ollama ────────────────────────────────────────────────────────────────────

class FakeOllamaClient:
    def __init__(self, pieces, error=None):
        self.pieces = pieces
        self.error = error
        self.kwargs = None

    def generate(self, **kwargs):
        self.kwargs = kwargs
        for piece in self.pieces:
            yield {"response": piece}
        if self.error:
            raise self.error


@pytest.fixture
def summarizer(monkeypatch):
    monkeypatch.setattr(ollama_client, "ensure_ollama_running", lambda host: None)

    def factory(pieces, error=None):
        s = OllamaSummarizer(OllamaConfig(model="llama3.2:3b", temperature=0.2))
        s._client = FakeOllamaClient(pieces, error)
        return s

    return factory


def test_streamed_markdown_becomes_cumulative_updates(summarizer):
    pieces = [MARKDOWN[i:i + 7] for i in range(0, len(MARKDOWN), 7)]
    s = summarizer(pieces)

    updates = list(s.summarize("Hello world. Second part."))

    assert updates[-1].title == "Demo"
    assert updates[-1].body == "A demo."
    assert updates[-1].action_items == ("Follow up",)
    assert updates[-1].key_points == ("Point A",)
    assert updates[-1].is_complete
    assert not updates[0].is_complete
    assert len(updates) == len(set(updates))
    assert s._client.kwargs["stream"] is True
    assert "Hello world. Second part." in s._client.kwargs["prompt"]


def test_default_title_only_after_stream_ends(summarizer):
    updates = list(summarizer(["## Summary\nShort.\n"]).summarize("t"))

    assert updates[0].title == ""
    assert updates[-1].title == "Voice Recording"


def test_stream_errors_become_summary_errors(summarizer):
    s = summarizer(["## Title\nDemo\n"], error=ConnectionError("connection refused"))

    with pytest.raises(SummaryError, match="connection refused"):
        list(s.summarize("t"))
