from __future__ import annotations

import pytest

pytest.importorskip("webrtcvad")

from mindpod_voice.audio.vad import Endpoint, SpeechEndpointer, VoiceActivityDetector, fit_frame


def test_endpointer_reports_no_speech_after_window() -> None:
    endpointer = SpeechEndpointer(frame_ms=30, silence_ms=90, no_speech_ms=90)
    assert endpointer.push(False) is Endpoint.WAITING
    assert endpointer.push(False) is Endpoint.WAITING
    assert endpointer.push(False) is Endpoint.NO_SPEECH
    assert endpointer.push(True) is Endpoint.NO_SPEECH
    assert endpointer.heard_speech is False


def test_endpointer_ends_after_trailing_silence() -> None:
    endpointer = SpeechEndpointer(frame_ms=30, silence_ms=60, no_speech_ms=30)
    assert endpointer.push(True) is Endpoint.SPEECH
    assert endpointer.push(False) is Endpoint.SPEECH
    assert endpointer.push(True) is Endpoint.SPEECH
    assert endpointer.push(False) is Endpoint.SPEECH
    assert endpointer.push(False) is Endpoint.ENDED
    assert endpointer.heard_speech is True


def test_fit_frame_pads_and_trims() -> None:
    # 16 kHz: 10/20/30 ms frames hold 160/320/480 samples.
    assert len(fit_frame(b"\x01\x00" * 470, 16_000)) == 960
    assert len(fit_frame(b"\x01\x00" * 500, 16_000)) == 960
    assert len(fit_frame(b"\x01\x00" * 170, 16_000)) == 320


def test_detector_rejects_unknown_rate() -> None:
    detector = VoiceActivityDetector(aggressiveness=9)
    assert detector.aggressiveness == 3
    with pytest.raises(ValueError):
        detector.is_speech(b"\x00\x00" * 160, 11_025)
    assert detector.is_speech(b"\x00\x00" * 480, 16_000) is False
