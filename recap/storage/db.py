"""
SQLite storage layer for recap.

Uses WAL journal mode for better concurrent read performance.
Every write is a single statement on a single row, so field-level updates
from the capture thread and the pipeline workers are serialised by SQLite.
Schema is applied automatically on startup.
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from .models import (
    AudioChunk,
    PauseReason,
    Recording,
    RecordingStatus,
    TranscriptionStatus,
)

logger = logging.getLogger(__name__)

SCHEMA = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS recordings (
    id                   TEXT PRIMARY KEY,
    title                TEXT NOT NULL DEFAULT '',
    status               TEXT NOT NULL DEFAULT 'recording',
    started_at           TEXT NOT NULL,
    stopped_at           TEXT,
    duration_ms          INTEGER NOT NULL DEFAULT 0,
    total_chunks         INTEGER NOT NULL DEFAULT 0,
    transcribed_chunks   INTEGER NOT NULL DEFAULT 0,
    transcript           TEXT,
    summary_title        TEXT,
    summary_body         TEXT,
    summary_action_items TEXT,
    summary_key_points   TEXT,
    pause_reason         TEXT,
    error_message        TEXT,
    audio_dir            TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS audio_chunks (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    recording_id          TEXT NOT NULL REFERENCES recordings(id) ON DELETE CASCADE,
    chunk_index           INTEGER NOT NULL,
    file_path             TEXT NOT NULL,
    start_ms              INTEGER NOT NULL DEFAULT 0,
    end_ms                INTEGER NOT NULL DEFAULT 0,
    duration_ms           INTEGER NOT NULL DEFAULT 0,
    file_size             INTEGER NOT NULL DEFAULT 0,
    transcription_status  TEXT NOT NULL DEFAULT 'pending',
    transcription_text    TEXT,
    transcription_retries INTEGER NOT NULL DEFAULT 0,
    retry_base            INTEGER NOT NULL DEFAULT 0,
    error_message         TEXT,
    created_at            TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (recording_id, chunk_index)
);

CREATE INDEX IF NOT EXISTS idx_chunks_recording   ON audio_chunks(recording_id, chunk_index);
CREATE INDEX IF NOT EXISTS idx_chunks_status      ON audio_chunks(recording_id, transcription_status);
CREATE INDEX IF NOT EXISTS idx_recordings_started ON recordings(started_at DESC);
"""

# Columns update_recording() is allowed to touch
_RECORDING_FIELDS = {
    "title",
    "status",
    "stopped_at",
    "duration_ms",
    "transcribed_chunks",
    "transcript",
    "summary_title",
    "summary_body",
    "summary_action_items",
    "summary_key_points",
    "pause_reason",
    "error_message",
    "audio_dir",
}

_INCOMPLETE_STATUSES = (
    RecordingStatus.STOPPED,
    RecordingStatus.TRANSCRIBING,
    RecordingStatus.TRANSCRIPTION_COMPLETE,
    RecordingStatus.GENERATING_SUMMARY,
)


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._apply_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _apply_schema(self) -> None:
        with self._conn() as conn:
            conn.executescript(SCHEMA)

    # ------------------------------------------------------------------
    # Recordings
    # ------------------------------------------------------------------

    def create_recording(self, recording: Recording) -> None:
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO recordings
                   (id, title, status, started_at, audio_dir)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    recording.id,
                    recording.title,
                    recording.status.value,
                    recording.started_at.isoformat(),
                    recording.audio_dir,
                ),
            )

    def get_recording(self, recording_id: str) -> Optional[Recording]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM recordings WHERE id = ?", (recording_id,)
            ).fetchone()
            return _row_to_recording(row) if row else None

    def list_recordings(self, limit: int = 20) -> list[Recording]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM recordings ORDER BY started_at DESC LIMIT ?", (limit,)
            ).fetchall()
            return [_row_to_recording(r) for r in rows]

    def get_incomplete_recordings(self) -> list[Recording]:
        """Recordings whose post-processing never reached a terminal status."""
        placeholders = ", ".join("?" for _ in _INCOMPLETE_STATUSES)
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM recordings WHERE status IN ({placeholders}) "
                "ORDER BY started_at DESC",
                [s.value for s in _INCOMPLETE_STATUSES],
            ).fetchall()
            return [_row_to_recording(r) for r in rows]

    def update_recording(self, recording_id: str, **fields) -> None:
        """Atomic single-row update of the given columns."""
        if not fields:
            return
        unknown = set(fields) - _RECORDING_FIELDS
        if unknown:
            raise ValueError(f"Unknown recording fields: {sorted(unknown)}")

        set_clause = ", ".join(f"{k} = ?" for k in fields)
        params = [_to_db(v) for v in fields.values()] + [recording_id]
        with self._conn() as conn:
            conn.execute(f"UPDATE recordings SET {set_clause} WHERE id = ?", params)

    def update_recording_status(
        self,
        recording_id: str,
        status: RecordingStatus,
        error_message: Optional[str] = None,
    ) -> None:
        fields: dict = {"status": status}
        if error_message is not None:
            fields["error_message"] = error_message
        self.update_recording(recording_id, **fields)

    def finalize_recording(
        self,
        recording_id: str,
        stopped_at: datetime,
        duration_ms: int,
        total_chunks: int,
        status: RecordingStatus,
        error_message: Optional[str] = None,
    ) -> None:
        # total_chunks never decreases once set
        with self._conn() as conn:
            conn.execute(
                """UPDATE recordings
                   SET stopped_at = ?, duration_ms = ?,
                       total_chunks = MAX(total_chunks, ?),
                       status = ?, pause_reason = NULL,
                       error_message = COALESCE(?, error_message)
                   WHERE id = ?""",
                (
                    stopped_at.isoformat(),
                    duration_ms,
                    total_chunks,
                    status.value,
                    error_message,
                    recording_id,
                ),
            )

    def update_transcript(
        self,
        recording_id: str,
        transcript: str,
        transcribed_chunks: int,
        status: RecordingStatus,
        error_message: Optional[str] = None,
    ) -> None:
        with self._conn() as conn:
            conn.execute(
                """UPDATE recordings
                   SET transcript = ?,
                       transcribed_chunks = ?,
                       status = ?, error_message = ?
                   WHERE id = ?""",
                (
                    transcript,
                    transcribed_chunks,
                    status.value,
                    error_message,
                    recording_id,
                ),
            )

    def update_summary(
        self,
        recording_id: str,
        title: Optional[str],
        body: Optional[str],
        action_items: Optional[str],
        key_points: Optional[str],
        status: RecordingStatus,
    ) -> None:
        with self._conn() as conn:
            conn.execute(
                """UPDATE recordings
                   SET summary_title = ?, summary_body = ?,
                       summary_action_items = ?, summary_key_points = ?,
                       status = ?
                   WHERE id = ?""",
                (title, body, action_items, key_points, status.value, recording_id),
            )

    def delete_recording(self, recording_id: str) -> bool:
        """Delete a recording, its chunk rows (cascade) and their audio files."""
        with self._conn() as conn:
            paths = [
                r["file_path"]
                for r in conn.execute(
                    "SELECT file_path FROM audio_chunks WHERE recording_id = ?",
                    (recording_id,),
                ).fetchall()
            ]
            row = conn.execute(
                "SELECT audio_dir FROM recordings WHERE id = ?", (recording_id,)
            ).fetchone()
            cursor = conn.execute("DELETE FROM recordings WHERE id = ?", (recording_id,))
            deleted = cursor.rowcount > 0

        for path in paths:
            _remove_file(Path(path))
        if row and row["audio_dir"]:
            audio_dir = Path(row["audio_dir"])
            if audio_dir.is_dir() and not any(audio_dir.iterdir()):
                audio_dir.rmdir()

        if deleted:
            logger.info(f"Deleted recording {recording_id} ({len(paths)} chunk files)")
        return deleted

    # ------------------------------------------------------------------
    # Audio chunks
    # ------------------------------------------------------------------

    def insert_chunk(self, chunk: AudioChunk) -> int:
        with self._conn() as conn:
            cursor = conn.execute(
                """INSERT INTO audio_chunks
                   (recording_id, chunk_index, file_path, start_ms, end_ms,
                    duration_ms, file_size, transcription_status, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    chunk.recording_id,
                    chunk.chunk_index,
                    chunk.file_path,
                    chunk.start_ms,
                    chunk.end_ms,
                    chunk.duration_ms,
                    chunk.file_size,
                    chunk.transcription_status.value,
                    chunk.created_at.isoformat(),
                ),
            )
            chunk.id = cursor.lastrowid
            return chunk.id

    def get_chunk(self, chunk_id: int) -> Optional[AudioChunk]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM audio_chunks WHERE id = ?", (chunk_id,)
            ).fetchone()
            return _row_to_chunk(row) if row else None

    def list_chunks(self, recording_id: str) -> list[AudioChunk]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM audio_chunks WHERE recording_id = ? ORDER BY chunk_index",
                (recording_id,),
            ).fetchall()
            return [_row_to_chunk(r) for r in rows]

    def list_chunks_by_status(
        self, recording_id: str, status: TranscriptionStatus
    ) -> list[AudioChunk]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM audio_chunks "
                "WHERE recording_id = ? AND transcription_status = ? "
                "ORDER BY chunk_index",
                (recording_id, status.value),
            ).fetchall()
            return [_row_to_chunk(r) for r in rows]

    def count_chunks(
        self, recording_id: str, status: Optional[TranscriptionStatus] = None
    ) -> int:
        sql = "SELECT COUNT(*) FROM audio_chunks WHERE recording_id = ?"
        params: list = [recording_id]
        if status is not None:
            sql += " AND transcription_status = ?"
            params.append(status.value)
        with self._conn() as conn:
            return conn.execute(sql, params).fetchone()[0]

    def update_chunk_transcription(
        self,
        chunk_id: int,
        status: TranscriptionStatus,
        text: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        with self._conn() as conn:
            conn.execute(
                """UPDATE audio_chunks
                   SET transcription_status = ?, transcription_text = ?, error_message = ?
                   WHERE id = ?""",
                (status.value, text, error_message, chunk_id),
            )

    def increment_chunk_retries(self, chunk_id: int) -> int:
        """Bump the retry counter and return its new value."""
        with self._conn() as conn:
            conn.execute(
                "UPDATE audio_chunks SET transcription_retries = transcription_retries + 1 "
                "WHERE id = ?",
                (chunk_id,),
            )
            row = conn.execute(
                "SELECT transcription_retries FROM audio_chunks WHERE id = ?", (chunk_id,)
            ).fetchone()
            return row[0] if row else 0

    def reset_failed_chunks(self, recording_id: str) -> int:
        """
        Put permanently failed chunks back to pending. The retry counter keeps
        counting; retry_base marks where the new allowance starts.
        """
        with self._conn() as conn:
            return _reset_failed(conn, recording_id)

    def reopen_for_transcription(self, recording_id: str) -> int:
        """
        Explicit user retry: reset failed chunks and put the recording back
        to stopped with its error cleared, in one transaction.
        Returns the number of chunks reset.
        """
        with self._conn() as conn:
            reset = _reset_failed(conn, recording_id)
            conn.execute(
                "UPDATE recordings SET status = ?, error_message = NULL WHERE id = ?",
                (RecordingStatus.STOPPED.value, recording_id),
            )
            return reset

    def delete_chunk(self, chunk_id: int) -> bool:
        """Delete a chunk row and reclaim its audio file."""
        with self._conn() as conn:
            row = conn.execute(
                "SELECT file_path FROM audio_chunks WHERE id = ?", (chunk_id,)
            ).fetchone()
            if row is None:
                return False
            conn.execute("DELETE FROM audio_chunks WHERE id = ?", (chunk_id,))
        _remove_file(Path(row["file_path"]))
        return True

    def search_transcripts(self, query: str, limit: int = 20) -> list[dict]:
        """Substring search across chunk transcriptions."""
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT c.recording_id, c.chunk_index, c.transcription_text AS text,
                          c.start_ms, r.title, r.started_at
                   FROM audio_chunks c
                   JOIN recordings r ON r.id = c.recording_id
                   WHERE c.transcription_text LIKE ?
                   ORDER BY r.started_at DESC, c.chunk_index
                   LIMIT ?""",
                (f"%{query}%", limit),
            ).fetchall()
            return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Cleanup (auto-delete old audio)
    # ------------------------------------------------------------------

    def cleanup_old_audio(self, max_age_days: int) -> int:
        """
        Delete audio chunk files of post-processed recordings older than
        max_age_days. Rows, transcripts and summaries are kept.
        Returns number of recordings cleaned.
        """
        if max_age_days <= 0:
            return 0

        cutoff = (datetime.now() - timedelta(days=max_age_days)).isoformat()
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT c.recording_id, c.file_path
                   FROM audio_chunks c
                   JOIN recordings r ON r.id = c.recording_id
                   WHERE r.started_at < ? AND r.status IN (?, ?)""",
                (
                    cutoff,
                    RecordingStatus.SUMMARY_COMPLETE.value,
                    RecordingStatus.SUMMARY_FAILED.value,
                ),
            ).fetchall()

        cleaned: set[str] = set()
        for row in rows:
            path = Path(row["file_path"])
            if path.exists():
                _remove_file(path)
                cleaned.add(row["recording_id"])

        for recording_id in cleaned:
            logger.info(f"Cleaned audio files from recording {recording_id}")
        return len(cleaned)


# ------------------------------------------------------------------
# Helpers and row → model converters
# ------------------------------------------------------------------

def _to_db(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _reset_failed(conn: sqlite3.Connection, recording_id: str) -> int:
    cursor = conn.execute(
        """UPDATE audio_chunks
           SET transcription_status = ?, retry_base = transcription_retries,
               error_message = NULL
           WHERE recording_id = ? AND transcription_status = ?""",
        (
            TranscriptionStatus.PENDING.value,
            recording_id,
            TranscriptionStatus.FAILED.value,
        ),
    )
    return cursor.rowcount


def _remove_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not delete {path}: {e}")


def _row_to_recording(row: sqlite3.Row) -> Recording:
    return Recording(
        id=row["id"],
        title=row["title"] or "",
        status=RecordingStatus(row["status"]),
        started_at=datetime.fromisoformat(row["started_at"]),
        stopped_at=datetime.fromisoformat(row["stopped_at"]) if row["stopped_at"] else None,
        duration_ms=row["duration_ms"],
        total_chunks=row["total_chunks"],
        transcribed_chunks=row["transcribed_chunks"],
        transcript=row["transcript"],
        summary_title=row["summary_title"],
        summary_body=row["summary_body"],
        summary_action_items=row["summary_action_items"],
        summary_key_points=row["summary_key_points"],
        pause_reason=PauseReason(row["pause_reason"]) if row["pause_reason"] else None,
        error_message=row["error_message"],
        audio_dir=row["audio_dir"] or "",
    )


def _row_to_chunk(row: sqlite3.Row) -> AudioChunk:
    return AudioChunk(
        id=row["id"],
        recording_id=row["recording_id"],
        chunk_index=row["chunk_index"],
        file_path=row["file_path"],
        start_ms=row["start_ms"],
        end_ms=row["end_ms"],
        duration_ms=row["duration_ms"],
        file_size=row["file_size"],
        transcription_status=TranscriptionStatus(row["transcription_status"]),
        transcription_text=row["transcription_text"],
        transcription_retries=row["transcription_retries"],
        retry_base=row["retry_base"],
        error_message=row["error_message"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )
