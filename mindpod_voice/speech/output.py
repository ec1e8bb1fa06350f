"""Race-safe wrapper over the platform speech synthesis."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Optional, Protocol, Sequence

from ..core.errors import CapabilityUnavailable, SynthesisError
from ..core.logger import get_logger
from .catalog import VoiceCatalog
from .schemas import UtteranceOutcome, UtteranceRequest, Voice

LOGGER = get_logger("speech")


class SynthesisBackend(Protocol):
    """Platform speech synthesis capability.

    Callbacks passed to :meth:`speak` must be invoked on the event loop thread.
    """

    @property
    def available(self) -> bool: ...

    def voices(self) -> Sequence[Voice]: ...

    def on_voices_changed(self, callback: Callable[[Sequence[Voice]], None]) -> None: ...

    def speak(
        self,
        text: str,
        voice: Voice | None,
        *,
        on_start: Callable[[], None],
        on_end: Callable[[], None],
        on_error: Callable[[str], None],
    ) -> None: ...

    def cancel(self) -> None: ...


@dataclass(slots=True)
class _Utterance:
    request: UtteranceRequest
    future: asyncio.Future[UtteranceOutcome]
    on_start: Optional[Callable[[], None]] = None
    unsubscribe: Callable[[], None] = field(default=lambda: None)
    started: bool = False


class SpeechOutputController:
    """Plays one utterance at a time; the latest request always wins."""

    def __init__(
        self,
        backend: SynthesisBackend | None,
        *,
        lang: str = "en-US",
        preferred_voice: str | None = None,
        catalog: VoiceCatalog | None = None,
    ) -> None:
        self._backend = backend
        self.lang = lang
        self.preferred_voice = preferred_voice
        self.catalog = catalog or VoiceCatalog()
        self._pending: _Utterance | None = None
        self._active: _Utterance | None = None
        if backend is not None and backend.available:
            self.catalog.populate(backend.voices())
            backend.on_voices_changed(self.catalog.populate)

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @property
    def available(self) -> bool:
        return self._backend is not None and self._backend.available

    @property
    def is_speaking(self) -> bool:
        return self._active is not None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def speak(
        self,
        request: UtteranceRequest,
        *,
        on_start: Optional[Callable[[], None]] = None,
    ) -> asyncio.Future[UtteranceOutcome]:
        """Play ``request``, deferring it until the voice catalog is ready.

        Any pending or playing utterance is cancelled first. The returned
        future resolves with the outcome, or raises :class:`SynthesisError`.
        """
        if not self.available:
            raise CapabilityUnavailable("speech synthesis is not available")
        self.cancel()
        future: asyncio.Future[UtteranceOutcome] = asyncio.get_running_loop().create_future()
        utterance = _Utterance(request=request, future=future, on_start=on_start)
        if self.catalog.ready:
            self._start(utterance)
        else:
            LOGGER.debug("Voice catalog not ready, deferring utterance %s", request.id)
            self._pending = utterance
            utterance.unsubscribe = self.catalog.when_ready(partial(self._release_pending, utterance))
        return future

    def cancel(self) -> None:
        """Drop the deferred utterance and stop playback. Safe to repeat."""
        pending, self._pending = self._pending, None
        if pending is not None:
            pending.unsubscribe()
            _resolve(pending, UtteranceOutcome.CANCELLED)
        active, self._active = self._active, None
        if active is not None:
            LOGGER.debug("Cancelling utterance %s", active.request.id)
            _resolve(active, UtteranceOutcome.CANCELLED)
        if self.available:
            self._backend.cancel()  # type: ignore[union-attr]

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _release_pending(self, utterance: _Utterance) -> None:
        if self._pending is not utterance:
            return
        self._pending = None
        self._start(utterance)

    def _start(self, utterance: _Utterance) -> None:
        self._active = utterance
        voice = self.catalog.select(self.lang, self.preferred_voice)
        LOGGER.debug(
            "Speaking utterance %s with voice %s",
            utterance.request.id,
            voice.name if voice else None,
        )
        try:
            self._backend.speak(  # type: ignore[union-attr]
                utterance.request.text,
                voice,
                on_start=partial(self._handle_start, utterance),
                on_end=partial(self._handle_end, utterance),
                on_error=partial(self._handle_error, utterance),
            )
        except Exception as exc:
            if not isinstance(exc, SynthesisError):
                LOGGER.exception("Synthesis backend raised while starting utterance %s", utterance.request.id)
            self._handle_error(utterance, str(exc) or type(exc).__name__)

    def _handle_start(self, utterance: _Utterance) -> None:
        if self._active is not utterance or utterance.started:
            return
        utterance.started = True
        if utterance.on_start is not None:
            utterance.on_start()

    def _handle_end(self, utterance: _Utterance) -> None:
        if self._active is not utterance:
            LOGGER.debug("Ignoring stale end for utterance %s", utterance.request.id)
            return
        self._active = None
        _resolve(utterance, UtteranceOutcome.COMPLETED)
        if utterance.request.on_complete is not None:
            utterance.request.on_complete()

    def _handle_error(self, utterance: _Utterance, message: str) -> None:
        if self._active is not utterance:
            LOGGER.debug("Ignoring stale error for utterance %s: %s", utterance.request.id, message)
            return
        self._active = None
        LOGGER.error("Speech synthesis failed for utterance %s: %s", utterance.request.id, message)
        if not utterance.future.done():
            utterance.future.set_exception(SynthesisError(message))


def _resolve(utterance: _Utterance, outcome: UtteranceOutcome) -> None:
    if not utterance.future.done():
        utterance.future.set_result(outcome)
