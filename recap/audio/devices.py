"""
Audio input device discovery.
"""
from __future__ import annotations

from typing import Optional

import sounddevice as sd


def list_input_devices() -> list[dict]:
    """Return all available audio input devices with their properties."""
    devices = sd.query_devices()
    return [
        {
            "id": i,
            "name": d["name"],
            "channels": d["max_input_channels"],
            "sample_rate": int(d["default_samplerate"]),
        }
        for i, d in enumerate(devices)
        if d["max_input_channels"] > 0
    ]


def find_device_id(device_name: str) -> Optional[int]:
    """
    Return device index for the given name, or None if not found.
    "default" resolves to the host's default input device.
    """
    if device_name.lower() == "default":
        default_input = sd.default.device[0]
        if default_input is not None and default_input >= 0:
            return int(default_input)
        inputs = list_input_devices()
        return inputs[0]["id"] if inputs else None

    for device in list_input_devices():
        if device_name.lower() in device["name"].lower():
            return device["id"]
    return None


def has_input_device(device_name: str = "default") -> bool:
    """True if the configured microphone is visible to the host."""
    try:
        return find_device_id(device_name) is not None
    except sd.PortAudioError:
        return False
