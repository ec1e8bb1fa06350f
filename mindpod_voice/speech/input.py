"""Single-shot wrapper over the platform speech recognition."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from itertools import count
from typing import Callable, Optional, Protocol, Sequence

from ..core.errors import AlreadyActiveError, CapabilityUnavailable, RecognitionError
from ..core.logger import get_logger
from .schemas import RecognitionAlternative, RecognitionErrorKind, TranscriptEvent

LOGGER = get_logger("speech")

TranscriptCallback = Callable[[TranscriptEvent], None]
SessionEndCallback = Callable[[bool], None]
FailureCallback = Callable[[RecognitionError], None]


class RecognitionListener(Protocol):
    """Events a recognition backend reports for one session."""

    def on_start(self) -> None: ...

    def on_result(self, alternatives: Sequence[RecognitionAlternative]) -> None: ...

    def on_error(self, kind: RecognitionErrorKind) -> None: ...

    def on_end(self) -> None: ...


class RecognitionBackend(Protocol):
    """Platform speech recognition capability.

    ``start`` raises :class:`AlreadyActiveError` when a session is running and
    :class:`RecognitionError` when the device cannot be opened. ``stop`` finishes
    the session and still delivers its result; ``abort`` discards it. Listener
    methods must be invoked on the event loop thread.
    """

    @property
    def available(self) -> bool: ...

    def start(self, listener: RecognitionListener) -> None: ...

    def stop(self) -> None: ...

    def abort(self) -> None: ...


_session_ids = count(1)


@dataclass(slots=True)
class _Session:
    id: int
    stopping: bool = False
    emitted: bool = False
    timer: Optional[asyncio.TimerHandle] = None


class _SessionListener:
    """Routes backend events to the controller, tagged with their session."""

    def __init__(self, controller: "SpeechInputController", session: _Session) -> None:
        self._controller = controller
        self._session = session

    def on_start(self) -> None:
        LOGGER.debug("Recognition session %s started", self._session.id)

    def on_result(self, alternatives: Sequence[RecognitionAlternative]) -> None:
        self._controller._handle_result(self._session, alternatives)

    def on_error(self, kind: RecognitionErrorKind) -> None:
        self._controller._handle_error(self._session, kind)

    def on_end(self) -> None:
        self._controller._handle_end(self._session)


class SpeechInputController:
    """Runs at most one recognition session and emits one transcript per session."""

    def __init__(self, backend: RecognitionBackend | None, *, timeout: float | None = None) -> None:
        self._backend = backend
        self.timeout = timeout if timeout and timeout > 0 else None
        self._session: _Session | None = None
        self._on_transcript: Optional[TranscriptCallback] = None
        self._on_session_end: Optional[SessionEndCallback] = None
        self._on_failure: Optional[FailureCallback] = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def bind(
        self,
        *,
        on_transcript: TranscriptCallback,
        on_session_end: SessionEndCallback,
        on_failure: FailureCallback,
    ) -> None:
        """Register the session event consumers."""
        self._on_transcript = on_transcript
        self._on_session_end = on_session_end
        self._on_failure = on_failure

    @property
    def available(self) -> bool:
        return self._backend is not None and self._backend.available

    @property
    def active(self) -> bool:
        return self._session is not None

    def start(self) -> None:
        """Open a recognition session."""
        if not self.available:
            raise CapabilityUnavailable("speech recognition is not available")
        if self._session is not None:
            raise AlreadyActiveError(f"recognition session {self._session.id} is still running")
        session = _Session(id=next(_session_ids))
        self._session = session
        try:
            self._backend.start(_SessionListener(self, session))  # type: ignore[union-attr]
        except BaseException:
            if self._session is session:
                self._session = None
            raise
        if self.timeout is not None and self._session is session:
            session.timer = asyncio.get_running_loop().call_later(
                self.timeout, self._handle_timeout, session
            )
        LOGGER.debug("Recognition session %s opened", session.id)

    def stop(self) -> None:
        """Ask the backend to finish the running session, if any."""
        session = self._session
        if session is None or session.stopping:
            return
        session.stopping = True
        _cancel_timer(session)
        LOGGER.debug("Stopping recognition session %s", session.id)
        self._backend.stop()  # type: ignore[union-attr]

    def abort(self) -> None:
        """Close the running session at once and drop whatever it would report."""
        session = self._session
        if session is None:
            return
        self._close(session)
        LOGGER.debug("Aborting recognition session %s", session.id)
        self._backend.abort()  # type: ignore[union-attr]

    # ------------------------------------------------------------------ #
    # Backend events
    # ------------------------------------------------------------------ #
    def _handle_result(self, session: _Session, alternatives: Sequence[RecognitionAlternative]) -> None:
        if session is not self._session or session.emitted:
            return
        candidates = [alt for alt in alternatives if alt.text.strip()]
        if not candidates:
            return
        best = max(candidates, key=lambda alt: alt.confidence)
        session.emitted = True
        if self._on_transcript is not None:
            self._on_transcript(TranscriptEvent(text=best.text.strip(), confidence=best.confidence))

    def _handle_error(self, session: _Session, kind: RecognitionErrorKind) -> None:
        if session is not self._session:
            return
        benign = kind.benign or (kind is RecognitionErrorKind.ABORTED and session.stopping)
        self._close(session)
        if benign:
            LOGGER.info("Recognition session %s ended without speech (%s)", session.id, kind.value)
            if self._on_session_end is not None:
                self._on_session_end(True)
            return
        error = RecognitionError(kind.value)
        LOGGER.error("Recognition session %s failed: %s", session.id, kind.value)
        if self._on_failure is not None:
            self._on_failure(error)

    def _handle_end(self, session: _Session) -> None:
        if session is not self._session:
            return
        self._close(session)
        LOGGER.debug("Recognition session %s ended", session.id)
        if self._on_session_end is not None:
            self._on_session_end(False)

    def _handle_timeout(self, session: _Session) -> None:
        if session is not self._session:
            return
        LOGGER.info("Recognition session %s timed out after %.1fs", session.id, self.timeout)
        session.timer = None
        self.stop()

    def _close(self, session: _Session) -> None:
        _cancel_timer(session)
        if self._session is session:
            self._session = None


def _cancel_timer(session: _Session) -> None:
    if session.timer is not None:
        session.timer.cancel()
        session.timer = None
