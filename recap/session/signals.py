"""
Interrupt signals.

Platform callbacks (telephony, audio focus, notification buttons, POSIX
signals in the CLI) are all reduced to one typed event stream that
RecordingSession consumes. Each pause signal has exactly one matching resume
signal; a resume only applies to a pause with the same reason.
"""
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from ..storage.models import PauseReason

logger = logging.getLogger(__name__)


class InterruptSignal(str, Enum):
    CALL_STARTED = "call_started"
    CALL_ENDED = "call_ended"
    FOCUS_LOST = "focus_lost"
    FOCUS_GAINED = "focus_gained"
    MANUAL_PAUSE = "manual_pause"
    MANUAL_RESUME = "manual_resume"


PAUSE_SIGNALS = {
    InterruptSignal.CALL_STARTED: PauseReason.CALL,
    InterruptSignal.FOCUS_LOST: PauseReason.AUDIO_FOCUS_LOST,
    InterruptSignal.MANUAL_PAUSE: PauseReason.MANUAL,
}

RESUME_SIGNALS = {
    InterruptSignal.CALL_ENDED: PauseReason.CALL,
    InterruptSignal.FOCUS_GAINED: PauseReason.AUDIO_FOCUS_LOST,
    InterruptSignal.MANUAL_RESUME: PauseReason.MANUAL,
}


def pause_reason_for(signal: InterruptSignal) -> Optional[PauseReason]:
    return PAUSE_SIGNALS.get(signal)


def resume_reason_for(signal: InterruptSignal) -> Optional[PauseReason]:
    return RESUME_SIGNALS.get(signal)


class SignalSource:
    """
    Thread-safe fan-out of interrupt signals to subscribers.
    emit() delivers synchronously on the caller's thread.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[InterruptSignal], None]] = []

    def subscribe(self, callback: Callable[[InterruptSignal], None]) -> Callable[[], None]:
        """Register a subscriber. Returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, signal: InterruptSignal) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        logger.debug(f"Signal {signal.value} → {len(subscribers)} subscriber(s)")
        for callback in subscribers:
            callback(signal)
