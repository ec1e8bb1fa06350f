"""Single-shot speech recognition on top of sounddevice, WebRTC VAD and faster-whisper."""

from __future__ import annotations

import asyncio
import math
import threading
from typing import Optional

import numpy as np
import sounddevice as sd
from faster_whisper import WhisperModel

from ..core.config import Settings, get_settings
from ..core.errors import AlreadyActiveError, RecognitionError
from ..core.logger import get_logger
from ..speech.input import RecognitionListener
from ..speech.schemas import RecognitionAlternative, RecognitionErrorKind
from .vad import Endpoint, SpeechEndpointer, VoiceActivityDetector

LOGGER = get_logger("speech")

SAMPLE_RATE = 16_000
FRAME_MS = 30


class WhisperRecognitionBackend:
    """Captures one utterance from the microphone and transcribes it."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.vad = VoiceActivityDetector(self.settings.vad_aggressiveness)
        self._model: Optional[WhisperModel] = None
        self._model_lock = threading.Lock()
        self._lock = threading.Lock()
        self._stream: Optional[sd.RawInputStream] = None
        self._listener: Optional[RecognitionListener] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._endpointer: Optional[SpeechEndpointer] = None
        self._frames: list[bytes] = []
        self._generation = 0
        self._finishing = False
        self._task: Optional[asyncio.Task[None]] = None

    # ------------------------------------------------------------------ #
    # RecognitionBackend
    # ------------------------------------------------------------------ #
    @property
    def available(self) -> bool:
        try:
            sd.query_devices(self.settings.audio_input_device, kind="input")
        except (sd.PortAudioError, ValueError):
            return False
        return True

    def start(self, listener: RecognitionListener) -> None:
        with self._lock:
            if self._stream is not None:
                raise AlreadyActiveError("microphone capture already running")
            self._loop = asyncio.get_running_loop()
            self._listener = listener
            self._frames = []
            self._generation += 1
            self._finishing = False
            self._endpointer = SpeechEndpointer(
                frame_ms=FRAME_MS,
                silence_ms=self.settings.vad_silence_ms,
                no_speech_ms=self.settings.vad_no_speech_ms,
            )
            try:
                stream = sd.RawInputStream(
                    samplerate=SAMPLE_RATE,
                    channels=1,
                    dtype="int16",
                    blocksize=SAMPLE_RATE * FRAME_MS // 1000,
                    callback=self._on_frame,
                    device=self.settings.audio_input_device,
                )
                stream.start()
            except sd.PortAudioError as exc:
                self._listener = None
                raise RecognitionError(RecognitionErrorKind.AUDIO_CAPTURE.value, str(exc)) from exc
            self._stream = stream
        LOGGER.debug("Microphone capture started")
        listener.on_start()

    def stop(self) -> None:
        self._finish(self._generation, transcribe=True)

    def abort(self) -> None:
        with self._lock:
            self._generation += 1
            if self._task is not None and not self._task.done():
                self._task.cancel()
            self._task = None
            self._close_stream()
            self._listener = None
            self._frames = []

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _on_frame(self, indata, frames: int, time, status) -> None:  # type: ignore[override]  # noqa: ANN001
        if status:  # pragma: no cover
            LOGGER.warning("Microphone status: %s", status)
        endpointer = self._endpointer
        loop = self._loop
        if endpointer is None or loop is None or self._finishing:
            return
        frame = bytes(indata)
        state = endpointer.push(self.vad.is_speech(frame, SAMPLE_RATE))
        if endpointer.heard_speech:
            self._frames.append(frame)
        if state in (Endpoint.ENDED, Endpoint.NO_SPEECH):
            self._finishing = True
            generation = self._generation
            loop.call_soon_threadsafe(self._finish, generation, state is Endpoint.ENDED)

    def _finish(self, generation: int, transcribe: bool) -> None:
        with self._lock:
            if generation != self._generation or self._stream is None:
                return
            self._close_stream()
            listener, self._listener = self._listener, None
            frames, self._frames = self._frames, []
        if listener is None:
            return
        if not transcribe or not frames:
            listener.on_error(RecognitionErrorKind.NO_SPEECH)
            listener.on_end()
            return
        assert self._loop is not None
        self._task = self._loop.create_task(self._transcribe(b"".join(frames), listener, generation))
        self._task.add_done_callback(self._on_transcribed)

    def _on_transcribed(self, task: "asyncio.Task[None]") -> None:
        if self._task is task:
            self._task = None
        if not task.cancelled() and task.exception() is not None:
            LOGGER.error("Transcription task failed: %s", task.exception())

    async def _transcribe(self, pcm: bytes, listener: RecognitionListener, generation: int) -> None:
        loop = asyncio.get_running_loop()
        audio = np.frombuffer(pcm, dtype=np.int16).astype(np.float32) / 32768.0
        try:
            alternatives = await loop.run_in_executor(None, self._run_model, audio)
        except Exception:
            LOGGER.exception("Transcription failed")
            if generation == self._generation:
                listener.on_error(RecognitionErrorKind.UNAVAILABLE)
                listener.on_end()
            return
        if generation != self._generation:
            return
        if alternatives:
            listener.on_result(alternatives)
        else:
            listener.on_error(RecognitionErrorKind.NO_SPEECH)
        listener.on_end()

    def _run_model(self, audio: np.ndarray) -> list[RecognitionAlternative]:
        model = self._ensure_model()
        language = self.settings.voice_lang.split("-")[0].lower()
        segments, _info = model.transcribe(audio, language=language, beam_size=5)
        segments = list(segments)
        text = " ".join(segment.text.strip() for segment in segments).strip()
        if not text:
            return []
        avg_logprob = sum(segment.avg_logprob for segment in segments) / len(segments)
        return [RecognitionAlternative(text=text, confidence=min(1.0, math.exp(avg_logprob)))]

    def _ensure_model(self) -> WhisperModel:
        with self._model_lock:
            if self._model is None:
                LOGGER.info("Loading faster-whisper model %s", self.settings.asr_model)
                self._model = WhisperModel(
                    self.settings.asr_model,
                    device=self.settings.asr_device,
                    compute_type=self.settings.asr_compute_type,
                )
            return self._model

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()
            LOGGER.debug("Microphone capture stopped")
