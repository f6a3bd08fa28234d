"""
Free-space probes for the storage floor checks.
"""
from __future__ import annotations

import shutil
from pathlib import Path


def free_bytes(path: Path) -> int:
    """Bytes available to the current user on the filesystem holding `path`."""
    path.mkdir(parents=True, exist_ok=True)
    return shutil.disk_usage(str(path)).free


def check_disk_space(path: Path, required_bytes: int) -> tuple[bool, int]:
    """
    Check if enough disk space is available at the given path.
    Returns (is_sufficient, available_bytes).
    """
    available = free_bytes(path)
    return available >= required_bytes, available
