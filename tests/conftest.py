from __future__ import annotations

import asyncio
import os
import tempfile
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="mindpod-logs-"))

import pytest

from mindpod_voice.core.config import Settings
from mindpod_voice.core.errors import AlreadyActiveError
from mindpod_voice.core.store import MemoryStore
from mindpod_voice.runtime.assistant import VoiceAssistant
from mindpod_voice.speech.schemas import RecognitionAlternative, RecognitionErrorKind, Voice

DEFAULT_VOICE = Voice(name="Test Voice", lang="en-US")


@dataclass
class _Playing:
    text: str
    voice: Voice | None
    on_start: Callable[[], None]
    on_end: Callable[[], None]
    on_error: Callable[[str], None]


class FakeSynthesisBackend:
    """Starts utterances immediately; tests finish or fail them explicitly."""

    def __init__(self, voices: Iterable[Voice] | None = None, *, events: list[str] | None = None) -> None:
        self.available = True
        self._voices = list(voices) if voices is not None else [DEFAULT_VOICE]
        self._subscribers: list[Callable[[Sequence[Voice]], None]] = []
        self.events = events if events is not None else []
        self.spoken: list[str] = []
        self.cancel_calls = 0
        self.current: _Playing | None = None

    def voices(self) -> Sequence[Voice]:
        return list(self._voices)

    def on_voices_changed(self, callback: Callable[[Sequence[Voice]], None]) -> None:
        self._subscribers.append(callback)

    def publish(self, voices: Iterable[Voice]) -> None:
        self._voices = list(voices)
        for callback in self._subscribers:
            callback(self.voices())

    def speak(self, text, voice, *, on_start, on_end, on_error) -> None:
        self.spoken.append(text)
        self.events.append(f"speak:{text}")
        self.current = _Playing(text, voice, on_start, on_end, on_error)
        on_start()

    def cancel(self) -> None:
        self.cancel_calls += 1
        self.events.append("cancel")
        self.current = None

    def finish(self) -> None:
        playing, self.current = self.current, None
        assert playing is not None, "nothing is being spoken"
        playing.on_end()

    def fail(self, message: str = "synthesis-failed") -> None:
        playing, self.current = self.current, None
        assert playing is not None, "nothing is being spoken"
        playing.on_error(message)


class FakeRecognitionBackend:
    """Scripted recognition: tests decide what the microphone heard."""

    def __init__(self, *, events: list[str] | None = None) -> None:
        self.available = True
        self.listener = None
        self.events = events if events is not None else []
        self.starts = 0
        self.stops = 0
        self.aborts = 0
        self.end_on_stop = True

    def start(self, listener) -> None:
        if self.listener is not None:
            raise AlreadyActiveError("fake session running")
        self.starts += 1
        self.events.append("listen:start")
        self.listener = listener
        listener.on_start()

    def stop(self) -> None:
        self.stops += 1
        self.events.append("listen:stop")
        if self.end_on_stop and self.listener is not None:
            listener, self.listener = self.listener, None
            listener.on_end()

    def abort(self) -> None:
        self.aborts += 1
        self.events.append("listen:abort")
        self.listener = None

    def say(self, *alternatives: str | tuple[str, float]) -> None:
        listener, self.listener = self.listener, None
        assert listener is not None, "not listening"
        parsed = [
            RecognitionAlternative(text=alt, confidence=0.9) if isinstance(alt, str) else RecognitionAlternative(*alt)
            for alt in alternatives
        ]
        listener.on_result(parsed)
        listener.on_end()

    def hear(self, *alternatives: str) -> None:
        """Deliver a result but keep the session open until ``end``."""
        assert self.listener is not None, "not listening"
        self.listener.on_result([RecognitionAlternative(text=alt, confidence=0.9) for alt in alternatives])

    def end(self) -> None:
        listener, self.listener = self.listener, None
        assert listener is not None, "not listening"
        listener.on_end()

    def error(self, kind: RecognitionErrorKind) -> None:
        listener, self.listener = self.listener, None
        assert listener is not None, "not listening"
        listener.on_error(kind)
        listener.on_end()


class FakeAI:
    def __init__(self, reply: str = "Paris is the capital of France.") -> None:
        self.reply = reply
        self.summary = "A short summary."
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.queries: list[str] = []
        self.summaries: list[str] = []

    async def query(self, text: str) -> str:
        self.queries.append(text)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.reply

    async def summarize(self, text: str) -> str:
        self.summaries.append(text)
        if self.error is not None:
            raise self.error
        return self.summary


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        data_dir=str(tmp_path / "data"),
        listen_timeout_sec=0,
        ai_base_url=None,
        onboarding_max_attempts=3,
    )


@pytest.fixture()
def events() -> list[str]:
    return []


@pytest.fixture()
def synthesis(events) -> FakeSynthesisBackend:
    return FakeSynthesisBackend(events=events)


@pytest.fixture()
def recognition(events) -> FakeRecognitionBackend:
    return FakeRecognitionBackend(events=events)


@pytest.fixture()
def ai() -> FakeAI:
    return FakeAI()


@pytest.fixture()
def durable() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def navigations() -> list:
    return []


@pytest.fixture()
def assistant(settings, synthesis, recognition, ai, durable, navigations) -> VoiceAssistant:
    return VoiceAssistant(
        synthesis=synthesis,
        recognition=recognition,
        settings=settings,
        ai=ai,
        durable=durable,
        navigator=navigations.append,
    )
