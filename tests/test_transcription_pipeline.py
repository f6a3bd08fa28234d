import os

import pytest

from conftest import FakeTranscriber, make_recording
from recap.errors import TranscriptionError
from recap.jobs.base import JobResult
from recap.storage.models import AudioChunk, RecordingStatus, TranscriptionStatus
from recap.transcription.pipeline import TranscriptionPipeline, assemble_transcript

TEXTS = {
    "chunk_0000.wav": "Hello world.",
    "chunk_0001.wav": "Second",
    "chunk_0002.wav": "part.",
}


@pytest.fixture
def recording(db, tmp_path):
    return make_recording(db, tmp_path, chunks=3)


def _pipeline(db, pipeline_config, transcriber):
    return TranscriptionPipeline(db, transcriber, pipeline_config)


def test_transcribes_every_chunk_in_order(db, pipeline_config, recording):
    pipeline = _pipeline(db, pipeline_config, FakeTranscriber(dict(TEXTS)))

    assert pipeline.run(recording.id) is JobResult.SUCCESS

    stored = db.get_recording(recording.id)
    assert stored.status == RecordingStatus.TRANSCRIPTION_COMPLETE
    assert stored.transcript == "Hello world. Second part."
    assert stored.transcribed_chunks == 3
    assert stored.error_message is None
    assert db.count_chunks(recording.id, TranscriptionStatus.COMPLETED) == 3


def test_rerun_is_idempotent(db, pipeline_config, recording):
    transcriber = FakeTranscriber(dict(TEXTS))
    pipeline = _pipeline(db, pipeline_config, transcriber)

    pipeline.run(recording.id)
    first = db.get_recording(recording.id).transcript
    retries = [c.transcription_retries for c in db.list_chunks(recording.id)]

    assert pipeline.run(recording.id) is JobResult.SUCCESS

    assert db.get_recording(recording.id).transcript == first
    assert [c.transcription_retries for c in db.list_chunks(recording.id)] == retries
    assert len(transcriber.calls) == 3


def test_chunk_failing_three_times_is_excluded(db, pipeline_config, recording):
    outcomes = dict(TEXTS)
    outcomes["chunk_0001.wav"] = TranscriptionError("provider timeout")
    pipeline = _pipeline(db, pipeline_config, FakeTranscriber(outcomes))

    assert pipeline.run(recording.id, attempt=1) is JobResult.RETRY
    middle = db.list_chunks(recording.id)[1]
    assert middle.transcription_status == TranscriptionStatus.PENDING
    assert middle.transcription_retries == 1
    partial = db.get_recording(recording.id)
    assert partial.status == RecordingStatus.TRANSCRIBING
    assert partial.transcript == "Hello world. part."

    assert pipeline.run(recording.id, attempt=2) is JobResult.RETRY
    assert pipeline.run(recording.id, attempt=3) is JobResult.FAILURE

    middle = db.list_chunks(recording.id)[1]
    assert middle.transcription_status == TranscriptionStatus.FAILED
    assert middle.transcription_retries == 3
    assert middle.error_message == "provider timeout"

    stored = db.get_recording(recording.id)
    assert stored.status == RecordingStatus.TRANSCRIPTION_FAILED
    assert stored.transcript == "Hello world. part."
    assert stored.transcribed_chunks == 2
    assert stored.error_message == "1 of 3 chunks failed to transcribe"


def test_reset_chunk_gets_fresh_retries_without_losing_its_count(db, pipeline_config, recording):
    outcomes = dict(TEXTS)
    outcomes["chunk_0001.wav"] = [
        TranscriptionError("provider timeout"),
        TranscriptionError("provider timeout"),
        TranscriptionError("provider timeout"),
        TranscriptionError("still down"),
        "Second",
    ]
    pipeline = _pipeline(db, pipeline_config, FakeTranscriber(outcomes))
    for attempt in (1, 2, 3):
        pipeline.run(recording.id, attempt=attempt)
    assert db.list_chunks(recording.id)[1].transcription_status == TranscriptionStatus.FAILED

    assert db.reset_failed_chunks(recording.id) == 1
    db.update_recording_status(recording.id, RecordingStatus.STOPPED)

    assert pipeline.run(recording.id, attempt=1) is JobResult.RETRY
    middle = db.list_chunks(recording.id)[1]
    assert middle.transcription_status == TranscriptionStatus.PENDING
    assert middle.transcription_retries == 4
    assert middle.error_message == "still down"

    assert pipeline.run(recording.id, attempt=2) is JobResult.SUCCESS
    stored = db.get_recording(recording.id)
    assert stored.transcript == "Hello world. Second part."
    assert db.list_chunks(recording.id)[1].transcription_retries == 4


def test_transient_failure_recovers_on_next_run(db, pipeline_config, recording):
    outcomes = dict(TEXTS)
    outcomes["chunk_0002.wav"] = [TranscriptionError("rate limited"), "part."]
    transcriber = FakeTranscriber(outcomes)
    pipeline = _pipeline(db, pipeline_config, transcriber)

    assert pipeline.run(recording.id, attempt=1) is JobResult.RETRY
    assert pipeline.run(recording.id, attempt=2) is JobResult.SUCCESS

    stored = db.get_recording(recording.id)
    assert stored.transcript == "Hello world. Second part."
    assert stored.status == RecordingStatus.TRANSCRIPTION_COMPLETE
    assert db.list_chunks(recording.id)[2].transcription_retries == 1
    assert transcriber.calls.count("chunk_0000.wav") == 1


def test_missing_audio_file_fails_without_retry(db, pipeline_config, recording):
    chunks = db.list_chunks(recording.id)
    os.remove(chunks[1].file_path)
    transcriber = FakeTranscriber(dict(TEXTS))
    pipeline = _pipeline(db, pipeline_config, transcriber)

    assert pipeline.run(recording.id) is JobResult.FAILURE

    missing = db.list_chunks(recording.id)[1]
    assert missing.transcription_status == TranscriptionStatus.FAILED
    assert missing.transcription_retries == 0
    assert missing.error_message == "Audio file not found"
    assert "chunk_0001.wav" not in transcriber.calls
    assert db.get_recording(recording.id).transcript == "Hello world. part."


def test_everything_failing_retries_then_fails(db, pipeline_config, recording):
    transcriber = FakeTranscriber(default=TranscriptionError("no network"))
    pipeline = _pipeline(db, pipeline_config, transcriber)

    assert pipeline.run(recording.id, attempt=1) is JobResult.RETRY
    assert pipeline.run(recording.id, attempt=2) is JobResult.RETRY
    assert pipeline.run(recording.id, attempt=3) is JobResult.FAILURE

    stored = db.get_recording(recording.id)
    assert stored.status == RecordingStatus.TRANSCRIPTION_FAILED
    assert not stored.transcript
    assert db.count_chunks(recording.id, TranscriptionStatus.FAILED) == 3


def test_last_attempt_fails_remaining_pending_chunks(db, pipeline_config, recording):
    outcomes = dict(TEXTS)
    outcomes["chunk_0001.wav"] = TranscriptionError("flaky")
    pipeline = _pipeline(db, pipeline_config, FakeTranscriber(outcomes))

    # A single run that is already the last allowed attempt
    assert pipeline.run(recording.id, attempt=3) is JobResult.FAILURE

    middle = db.list_chunks(recording.id)[1]
    assert middle.transcription_status == TranscriptionStatus.FAILED
    assert middle.transcription_retries == 1
    assert db.get_recording(recording.id).status == RecordingStatus.TRANSCRIPTION_FAILED


def test_silence_everywhere_is_a_failure(db, pipeline_config, recording):
    pipeline = _pipeline(db, pipeline_config, FakeTranscriber(default="  "))

    assert pipeline.run(recording.id) is JobResult.FAILURE

    stored = db.get_recording(recording.id)
    assert stored.status == RecordingStatus.TRANSCRIPTION_FAILED
    assert stored.error_message == "No speech detected"


def test_recording_without_chunks_fails(db, pipeline_config, tmp_path):
    recording = make_recording(db, tmp_path, chunks=0)
    pipeline = _pipeline(db, pipeline_config, FakeTranscriber())

    assert pipeline.run(recording.id) is JobResult.FAILURE
    assert db.get_recording(recording.id).error_message == "No audio chunks were recorded"


def test_deleted_recording_aborts_quietly(db, pipeline_config, recording):
    transcriber = FakeTranscriber(dict(TEXTS))
    pipeline = _pipeline(db, pipeline_config, transcriber)

    assert pipeline.run("gone") is JobResult.SUCCESS

    original = transcriber.transcribe

    def delete_midway(path):
        db.delete_recording(recording.id)
        return original(path)

    transcriber.transcribe = delete_midway
    assert pipeline.run(recording.id) is JobResult.SUCCESS
    assert transcriber.calls == ["chunk_0000.wav"]
    assert db.get_recording(recording.id) is None


def test_refuses_a_recording_still_capturing(db, pipeline_config, tmp_path):
    recording = make_recording(db, tmp_path, status=RecordingStatus.RECORDING)
    transcriber = FakeTranscriber()

    result = _pipeline(db, pipeline_config, transcriber).run(recording.id)

    assert result is JobResult.FAILURE
    assert transcriber.calls == []
    assert db.get_recording(recording.id).status == RecordingStatus.RECORDING


def test_summary_stage_is_left_alone(db, pipeline_config, tmp_path):
    recording = make_recording(db, tmp_path, status=RecordingStatus.SUMMARY_COMPLETE)
    transcriber = FakeTranscriber()

    assert _pipeline(db, pipeline_config, transcriber).run(recording.id) is JobResult.SUCCESS
    assert transcriber.calls == []


def test_assemble_transcript_orders_by_index():
    chunks = [
        AudioChunk("r", 2, "c", transcription_status=TranscriptionStatus.COMPLETED,
                   transcription_text="three"),
        AudioChunk("r", 0, "a", transcription_status=TranscriptionStatus.COMPLETED,
                   transcription_text=" one "),
        AudioChunk("r", 1, "b", transcription_status=TranscriptionStatus.FAILED,
                   transcription_text="ignored"),
        AudioChunk("r", 3, "d", transcription_status=TranscriptionStatus.COMPLETED,
                   transcription_text=""),
    ]
    assert assemble_transcript(chunks) == "one three"
