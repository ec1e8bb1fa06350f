"""Voice activity detection and end-of-utterance tracking."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import webrtcvad


_VALID_SAMPLE_RATES = (8000, 16_000, 32_000, 48_000)
_VALID_FRAME_DURATIONS_MS = (10, 20, 30)


class VoiceActivityDetector:
    """Wrapper around the WebRTC VAD implementation."""

    def __init__(self, aggressiveness: int = 2) -> None:
        self.aggressiveness = max(0, min(3, aggressiveness))
        self._vad = webrtcvad.Vad(self.aggressiveness)

    def is_speech(self, frame: bytes, sample_rate: int) -> bool:
        """Return True when the 16-bit mono frame contains speech."""
        if sample_rate not in _VALID_SAMPLE_RATES:
            raise ValueError(f"unsupported sample rate for VAD: {sample_rate}")
        return self._vad.is_speech(fit_frame(frame, sample_rate), sample_rate)


def fit_frame(frame: bytes, sample_rate: int) -> bytes:
    """Pad or trim a PCM frame to the closest duration WebRTC VAD accepts."""
    samples = len(frame) // 2
    if samples == 0:
        return frame
    allowed = [sample_rate * duration // 1000 for duration in _VALID_FRAME_DURATIONS_MS]
    target = min(allowed, key=lambda expected: abs(expected - samples)) * 2
    if len(frame) >= target:
        return frame[:target]
    return frame + bytes(target - len(frame))


class Endpoint(str, Enum):
    WAITING = "waiting"
    SPEECH = "speech"
    ENDED = "ended"
    NO_SPEECH = "no_speech"


@dataclass(slots=True)
class SpeechEndpointer:
    """Decides when a single-shot utterance is over from per-frame VAD flags.

    The session ends after ``silence_ms`` of silence following speech, or
    with ``NO_SPEECH`` when nothing was heard within ``no_speech_ms``.
    """

    frame_ms: int = 30
    silence_ms: int = 800
    no_speech_ms: int = 5000
    _elapsed_ms: int = 0
    _silence_run_ms: int = 0
    _heard: bool = False
    _done: Endpoint | None = None

    @property
    def heard_speech(self) -> bool:
        return self._heard

    def push(self, is_speech: bool) -> Endpoint:
        if self._done is not None:
            return self._done
        self._elapsed_ms += self.frame_ms
        if is_speech:
            self._heard = True
            self._silence_run_ms = 0
            return Endpoint.SPEECH
        if not self._heard:
            if self._elapsed_ms >= self.no_speech_ms:
                self._done = Endpoint.NO_SPEECH
                return self._done
            return Endpoint.WAITING
        self._silence_run_ms += self.frame_ms
        if self._silence_run_ms >= self.silence_ms:
            self._done = Endpoint.ENDED
            return self._done
        return Endpoint.SPEECH
