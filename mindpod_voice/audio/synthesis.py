"""Speech synthesis with Piper voices played through sounddevice."""

from __future__ import annotations

import asyncio
import json
import re
import threading
import unicodedata
from pathlib import Path
from typing import Callable, Optional, Sequence

import sounddevice as sd
from piper import PiperVoice, SynthesisConfig

from ..core.config import Settings, get_settings
from ..core.errors import SynthesisError
from ..core.logger import get_logger
from ..core.paths import voices_dir
from ..speech.schemas import Voice

LOGGER = get_logger("speech")


class PcmPlayer:
    """Plays one mono int16 buffer and reports when it has drained."""

    def __init__(self, device: str | None = None) -> None:
        self.device = device
        self._lock = threading.Lock()
        self._stream: Optional[sd.RawOutputStream] = None
        self._buffer = b""
        self._offset = 0

    def play(self, pcm: bytes, sample_rate: int, on_finished: Callable[[], None]) -> None:
        self.stop()
        with self._lock:
            self._buffer = pcm
            self._offset = 0
            self._stream = sd.RawOutputStream(
                samplerate=sample_rate,
                channels=1,
                dtype="int16",
                callback=self._on_write,
                finished_callback=on_finished,
                device=self.device,
            )
            self._stream.start()

    def stop(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None
            self._buffer = b""
            self._offset = 0
        if stream is not None:
            stream.abort()
            stream.close()

    def _on_write(self, outdata, frames: int, time, status) -> None:  # type: ignore[override]  # noqa: ANN001
        if status:  # pragma: no cover
            LOGGER.warning("Playback status: %s", status)
        size = len(outdata)
        chunk = self._buffer[self._offset : self._offset + size]
        self._offset += len(chunk)
        outdata[: len(chunk)] = chunk
        if len(chunk) < size:
            outdata[len(chunk) :] = b"\x00" * (size - len(chunk))
            raise sd.CallbackStop


class PiperSynthesisBackend:
    """Synthesis backend whose voice catalog is the set of installed Piper models."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.player = PcmPlayer(self.settings.audio_output_device)
        self._voices: list[Voice] = []
        self._paths: dict[str, Path] = {}
        self._loaded: dict[str, PiperVoice] = {}
        self._load_lock = threading.Lock()
        self._subscribers: list[Callable[[Sequence[Voice]], None]] = []
        self._scan_started = False
        self._generation = 0
        self._task: Optional[asyncio.Task[None]] = None

    # ------------------------------------------------------------------ #
    # SynthesisBackend
    # ------------------------------------------------------------------ #
    @property
    def available(self) -> bool:
        try:
            sd.query_devices(self.settings.audio_output_device, kind="output")
        except (sd.PortAudioError, ValueError):
            return False
        return True

    def voices(self) -> Sequence[Voice]:
        return list(self._voices)

    def on_voices_changed(self, callback: Callable[[Sequence[Voice]], None]) -> None:
        """Subscribe to catalog updates; the first subscriber triggers the scan."""
        self._subscribers.append(callback)
        if self._scan_started:
            return
        self._scan_started = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.discover()
            return
        future = loop.run_in_executor(None, self._scan)
        future.add_done_callback(self._on_scan_done)

    def discover(self) -> list[Voice]:
        """Scan the voices directory now and notify subscribers."""
        self._publish(self._scan())
        return list(self._voices)

    def speak(
        self,
        text: str,
        voice: Voice | None,
        *,
        on_start: Callable[[], None],
        on_end: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None:
        if voice is None:
            raise SynthesisError("no Piper voice installed")
        self.cancel()
        generation = self._generation
        self._task = asyncio.get_running_loop().create_task(
            self._run(generation, text, voice, on_start, on_end, on_error)
        )

    def cancel(self) -> None:
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.player.stop()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _run(
        self,
        generation: int,
        text: str,
        voice: Voice,
        on_start: Callable[[], None],
        on_end: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None:
        loop = asyncio.get_running_loop()
        try:
            pcm, sample_rate = await loop.run_in_executor(None, self._synthesize, text, voice)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.exception("Piper synthesis failed")
            if generation == self._generation:
                on_error(str(exc))
            return
        if generation != self._generation:
            return
        if not pcm:
            on_start()
            on_end()
            return

        def finished() -> None:
            loop.call_soon_threadsafe(self._on_played, generation, on_end)

        on_start()
        try:
            self.player.play(pcm, sample_rate, finished)
        except sd.PortAudioError as exc:
            on_error(str(exc))

    def _on_played(self, generation: int, on_end: Callable[[], None]) -> None:
        if generation == self._generation:
            on_end()

    def _synthesize(self, text: str, voice: Voice) -> tuple[bytes, int]:
        piper_voice = self._load(voice)
        text = sanitize_text(text)
        if not text:
            return b"", 0
        config = SynthesisConfig(length_scale=self.settings.tts_length_scale)
        pcm = bytearray()
        sample_rate = 0
        for chunk in piper_voice.synthesize(text, syn_config=config):
            pcm += chunk.audio_int16_bytes
            sample_rate = chunk.sample_rate
        return bytes(pcm), sample_rate

    def _load(self, voice: Voice) -> PiperVoice:
        with self._load_lock:
            cached = self._loaded.get(voice.name)
            if cached is not None:
                return cached
            model_path = self._paths[voice.name]
            config_path = model_path.with_name(model_path.name + ".json")
            LOGGER.info("Loading Piper voice %s", voice.name)
            loaded = PiperVoice.load(str(model_path), str(config_path))
            self._loaded[voice.name] = loaded
            return loaded

    def _scan(self) -> list[tuple[Voice, Path]]:
        root = voices_dir(self.settings)
        found: list[tuple[Voice, Path]] = []
        if not root.exists():
            LOGGER.warning("Piper voices directory %s does not exist", root)
            return found
        for model_path in sorted(root.rglob("*.onnx")):
            config_path = model_path.with_name(model_path.name + ".json")
            if not config_path.is_file():
                continue
            found.append((Voice(name=model_path.stem, lang=_voice_lang(config_path), identifier=str(model_path)), model_path))
        return found

    def _on_scan_done(self, future: "asyncio.Future[list[tuple[Voice, Path]]]") -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            LOGGER.error("Voice scan failed: %s", exc)
            return
        self._publish(future.result())

    def _publish(self, found: list[tuple[Voice, Path]]) -> None:
        self._paths = {voice.name: path for voice, path in found}
        self._voices = [voice for voice, _path in found]
        LOGGER.info("Found %d Piper voices", len(self._voices))
        for callback in list(self._subscribers):
            callback(self.voices())


def _voice_lang(config_path: Path) -> str:
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "und"
    language = data.get("language") or {}
    code = language.get("code") if isinstance(language, dict) else None
    return str(code or data.get("espeak", {}).get("voice") or "und").replace("_", "-")


def sanitize_text(text: str) -> str:
    """Strip markdown symbols and unsupported combining marks before synthesis."""
    cleaned = re.sub(r"[*_`#<>]", " ", text)
    normalized = unicodedata.normalize("NFD", cleaned)
    stripped = "".join(ch for ch in normalized if unicodedata.category(ch) != "Mn")
    return re.sub(r"\s+", " ", unicodedata.normalize("NFC", stripped)).strip()
