from recap.session.recording import Phase, SessionState
from recap.session.signals import (
    InterruptSignal,
    SignalSource,
    pause_reason_for,
    resume_reason_for,
)
from recap.storage.models import PauseReason


def test_each_pause_has_one_matching_resume():
    pairs = [
        (InterruptSignal.CALL_STARTED, InterruptSignal.CALL_ENDED),
        (InterruptSignal.FOCUS_LOST, InterruptSignal.FOCUS_GAINED),
        (InterruptSignal.MANUAL_PAUSE, InterruptSignal.MANUAL_RESUME),
    ]
    for pause, resume in pairs:
        assert pause_reason_for(pause) == resume_reason_for(resume)
        assert resume_reason_for(pause) is None
        assert pause_reason_for(resume) is None


def test_emit_reaches_subscribers_until_unsubscribed():
    source = SignalSource()
    seen = []
    unsubscribe = source.subscribe(seen.append)

    source.emit(InterruptSignal.CALL_STARTED)
    unsubscribe()
    source.emit(InterruptSignal.CALL_ENDED)
    unsubscribe()

    assert seen == [InterruptSignal.CALL_STARTED]


def test_state_labels():
    assert SessionState(Phase.RECORDING).label == "Recording"
    assert SessionState(Phase.PAUSED, reason=PauseReason.CALL).label == "Paused - phone call"
    assert SessionState(Phase.PAUSED, reason=PauseReason.AUDIO_FOCUS_LOST).label == "Paused - audio focus lost"
    assert SessionState(Phase.PAUSED, reason=PauseReason.MANUAL).label == "Paused"
    assert SessionState(Phase.STOPPED).label == "Stopped"
    assert SessionState(Phase.ERROR, message="disk full").label == "Error: disk full"
