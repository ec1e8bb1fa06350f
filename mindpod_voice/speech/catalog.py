"""Readiness gate for the platform voice catalog."""

from __future__ import annotations

from typing import Callable, Iterable

from ..core.logger import get_logger
from .schemas import Voice

LOGGER = get_logger("speech")


class VoiceCatalog:
    """Process-wide voice list, populated once and read-only afterwards.

    Waiters register one-shot callbacks with :meth:`when_ready`. Each callback
    fires exactly once, either immediately when the catalog is already
    populated or when :meth:`populate` first receives a non-empty list.
    """

    def __init__(self) -> None:
        self._voices: tuple[Voice, ...] = ()
        self._waiters: dict[int, Callable[[], None]] = {}
        self._next_token = 0

    @property
    def ready(self) -> bool:
        return bool(self._voices)

    @property
    def voices(self) -> tuple[Voice, ...]:
        return self._voices

    def populate(self, voices: Iterable[Voice]) -> None:
        """Record the platform voices and release every waiter once."""
        if self.ready:
            return
        voices = tuple(voices)
        if not voices:
            return
        self._voices = voices
        LOGGER.info("Voice catalog ready with %d voices", len(voices))
        waiters, self._waiters = self._waiters, {}
        for callback in waiters.values():
            try:
                callback()
            except Exception:
                LOGGER.exception("Voice catalog waiter failed")

    def when_ready(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` once the catalog is populated; returns an unsubscribe."""
        if self.ready:
            callback()
            return lambda: None
        token = self._next_token
        self._next_token += 1
        self._waiters[token] = callback
        return lambda: self._waiters.pop(token, None)

    def select(self, lang: str, preferred: str | None = None) -> Voice | None:
        """Pick the preferred voice, then one matching ``lang``, then the first."""
        if not self._voices:
            return None
        if preferred:
            for voice in self._voices:
                if voice.name == preferred:
                    return voice
        wanted = _normalize_lang(lang)
        for voice in self._voices:
            if _normalize_lang(voice.lang) == wanted:
                return voice
        prefix = wanted.split("-")[0]
        for voice in self._voices:
            if _normalize_lang(voice.lang).split("-")[0] == prefix:
                return voice
        return self._voices[0]


def _normalize_lang(lang: str) -> str:
    return lang.replace("_", "-").lower()
