"""
Layered configuration for recap.
Priority: defaults → ~/.recap/config.yaml → environment variables
"""
from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

CONFIG_DIR = Path.home() / ".recap"
CONFIG_FILE = CONFIG_DIR / "config.yaml"


class AudioConfig(BaseModel):
    device: str = "default"
    sample_rate: int = 16000
    channels: int = 1
    chunk_duration: float = 30.0
    overlap_duration: float = 2.0
    read_block_ms: int = 100
    min_free_mb: int = 100
    silence_threshold: float = 500.0   # mean |sample|, int16 domain
    silence_duration: float = 10.0
    check_interval: float = 1.0        # seconds between storage/silence checks

    @property
    def samples_per_chunk(self) -> int:
        return int(self.sample_rate * self.chunk_duration)

    @property
    def overlap_samples(self) -> int:
        return int(self.sample_rate * self.overlap_duration)

    @property
    def block_frames(self) -> int:
        return max(1, self.sample_rate * self.read_block_ms // 1000)

    @property
    def min_free_bytes(self) -> int:
        return self.min_free_mb * 1024 * 1024


class WhisperConfig(BaseModel):
    model: str = "small.en"
    compute_type: str = "int8"
    vad_filter: bool = True
    language: str = "en"


class OllamaConfig(BaseModel):
    model: str = "llama3.2:3b"
    host: str = "http://localhost:11434"
    temperature: float = 0.2


class PipelineConfig(BaseModel):
    max_attempts: int = 3
    max_chunk_retries: int = 3
    backoff_seconds: float = 10.0
    workers: int = 2


class StorageConfig(BaseModel):
    data_dir: str = "~/.recap/data"
    keep_audio: bool = True
    auto_delete_audio_days: int = 30

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def recordings_path(self) -> Path:
        return self.data_path / "recordings"

    @property
    def db_path(self) -> Path:
        return self.data_path / "recap.db"


class DisplayConfig(BaseModel):
    log_level: str = "INFO"


class Config(BaseModel):
    audio: AudioConfig = Field(default_factory=AudioConfig)
    whisper: WhisperConfig = Field(default_factory=WhisperConfig)
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    display: DisplayConfig = Field(default_factory=DisplayConfig)

    @property
    def recordings_path(self) -> Path:
        return self.storage.recordings_path


def load_config(path: Path = CONFIG_FILE) -> Config:
    """Load config from file with safe defaults for any missing key."""
    raw: dict = {}

    if path.exists():
        with open(path) as f:
            loaded = yaml.safe_load(f)
            if isinstance(loaded, dict):
                raw = loaded

    # Environment variable overrides (RECAP_SECTION_KEY format)
    _apply_env_overrides(raw)

    return Config(**raw)


def _apply_env_overrides(raw: dict) -> None:
    mappings = {
        "RECAP_AUDIO_DEVICE": ("audio", "device"),
        "RECAP_SAMPLE_RATE": ("audio", "sample_rate"),
        "RECAP_WHISPER_MODEL": ("whisper", "model"),
        "RECAP_OLLAMA_MODEL": ("ollama", "model"),
        "RECAP_OLLAMA_HOST": ("ollama", "host"),
        "RECAP_MAX_ATTEMPTS": ("pipeline", "max_attempts"),
        "RECAP_DATA_DIR": ("storage", "data_dir"),
        "RECAP_LOG_LEVEL": ("display", "log_level"),
    }
    for env_key, (section, key) in mappings.items():
        val = os.getenv(env_key)
        if val:
            raw.setdefault(section, {})[key] = val
