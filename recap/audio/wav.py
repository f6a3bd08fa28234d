"""
Canonical RIFF/WAVE writer for chunk files.

Every chunk is a self-contained mono 16-bit PCM file with the classic
44-byte header, little-endian throughout:

  offset  size  field
  0       4     "RIFF"
  4       4     36 + data size
  8       4     "WAVE"
  12      4     "fmt "
  16      4     16 (PCM fmt chunk size)
  20      2     1  (PCM)
  22      2     channels (1)
  24      4     sample rate
  28      4     byte rate  (sample rate × 2)
  32      2     block align (2)
  34      2     bits per sample (16)
  36      4     "data"
  40      4     data size
"""
from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np
import soundfile as sf

HEADER_SIZE = 44
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")

CHANNELS = 1
BITS_PER_SAMPLE = 16
BYTES_PER_SAMPLE = BITS_PER_SAMPLE // 8


@dataclass(frozen=True)
class WavHeader:
    sample_rate: int
    channels: int
    bits_per_sample: int
    byte_rate: int
    block_align: int
    data_size: int
    riff_size: int

    @property
    def num_samples(self) -> int:
        return self.data_size // self.block_align if self.block_align else 0

    @property
    def duration_ms(self) -> int:
        return self.num_samples * 1000 // self.sample_rate if self.sample_rate else 0


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode int16 mono samples as a complete WAV byte string."""
    data = np.asarray(samples, dtype=np.int16).astype("<i2", copy=False).tobytes()
    header = _HEADER.pack(
        b"RIFF",
        36 + len(data),
        b"WAVE",
        b"fmt ",
        16,
        1,
        CHANNELS,
        sample_rate,
        sample_rate * CHANNELS * BYTES_PER_SAMPLE,
        CHANNELS * BYTES_PER_SAMPLE,
        BITS_PER_SAMPLE,
        b"data",
        len(data),
    )
    return header + data


def write_wav(path: Path, samples: np.ndarray, sample_rate: int) -> int:
    """Write a chunk file and return its size in bytes."""
    payload = encode_wav(samples, sample_rate)
    tmp = path.with_suffix(path.suffix + ".part")
    with open(tmp, "wb") as f:
        f.write(payload)
    tmp.replace(path)
    return len(payload)


def read_wav_header(source: Union[Path, bytes]) -> WavHeader:
    """Decode the 44-byte canonical header from a file or a byte string."""
    if isinstance(source, (bytes, bytearray)):
        raw = bytes(source[:HEADER_SIZE])
    else:
        with open(source, "rb") as f:
            raw = f.read(HEADER_SIZE)

    if len(raw) < HEADER_SIZE:
        raise ValueError(f"WAV header truncated ({len(raw)} bytes)")

    (
        riff, riff_size, wave, fmt, fmt_size, audio_format, channels,
        sample_rate, byte_rate, block_align, bits, data_id, data_size,
    ) = _HEADER.unpack(raw)

    if riff != b"RIFF" or wave != b"WAVE" or fmt != b"fmt " or data_id != b"data":
        raise ValueError("Not a canonical RIFF/WAVE file")
    if fmt_size != 16 or audio_format != 1:
        raise ValueError(f"Unsupported WAV encoding (fmt size {fmt_size}, format {audio_format})")

    return WavHeader(
        sample_rate=sample_rate,
        channels=channels,
        bits_per_sample=bits,
        byte_rate=byte_rate,
        block_align=block_align,
        data_size=data_size,
        riff_size=riff_size,
    )


def read_wav(path: Path, dtype: str = "int16") -> tuple[np.ndarray, int]:
    """Load a chunk file's samples. Returns (samples, sample_rate)."""
    samples, sample_rate = sf.read(str(path), dtype=dtype, always_2d=False)
    return samples, sample_rate
