"""Arbitrates the speech input and output streams behind one status."""

from __future__ import annotations

import asyncio
from functools import partial
from typing import TYPE_CHECKING, Callable, Optional

from ..core.errors import (
    AlreadyActiveError,
    CapabilityError,
    CapabilityUnavailable,
    error_payload,
)
from ..core.logger import get_logger
from ..core.trace import get_trace_id, new_trace_id
from ..speech.input import SpeechInputController
from ..speech.output import SpeechOutputController
from ..speech.schemas import AssistantStatus, TranscriptEvent, UtteranceOutcome, UtteranceRequest
from .router import CommandRouter, ControlKind

if TYPE_CHECKING:
    from .onboarding import OnboardingFlow

LOGGER = get_logger("assistant")

StatusCallback = Callable[[AssistantStatus], None]
TranscriptCallback = Callable[[TranscriptEvent], None]


class AssistantCoordinator:
    """Single authority over :class:`AssistantStatus`.

    Listening and speaking exclude each other: speaking stops the recognition
    session first and listening cancels pending or playing speech first.
    ``error`` is terminal; once reached, every operation is a no-op.
    """

    def __init__(self, output: SpeechOutputController, input_: SpeechInputController) -> None:
        self.output = output
        self.input = input_
        self._status = AssistantStatus.IDLE
        self._status_callbacks: list[StatusCallback] = []
        self._transcript_callback: Optional[TranscriptCallback] = None
        self._router: Optional[CommandRouter] = None
        self._onboarding: Optional["OnboardingFlow"] = None
        self._intent = 0
        self._tasks: set[asyncio.Task[None]] = set()
        self.last_error: dict[str, object] | None = None

        self.input.bind(
            on_transcript=self._handle_transcript,
            on_session_end=self._handle_session_end,
            on_failure=self._fail,
        )
        if not self.input.available:
            self._fail(CapabilityUnavailable("speech recognition is not supported on this platform"))

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @property
    def status(self) -> AssistantStatus:
        return self._status

    def attach(
        self,
        *,
        router: CommandRouter,
        onboarding: Optional["OnboardingFlow"] = None,
        on_transcript: Optional[TranscriptCallback] = None,
    ) -> None:
        """Attach the command router, onboarding flow and transcript observer."""
        self._router = router
        self._onboarding = onboarding
        self._transcript_callback = on_transcript

    def add_status_callback(self, callback: StatusCallback) -> Callable[[], None]:
        """Register a status observer; returns a function removing it."""
        self._status_callbacks.append(callback)

        def _remove() -> None:
            if callback in self._status_callbacks:
                self._status_callbacks.remove(callback)

        return _remove

    def speak(
        self,
        text: str | None,
        on_end: Optional[Callable[[], None]] = None,
    ) -> Optional[asyncio.Future[UtteranceOutcome]]:
        """Say ``text``; ``on_end`` runs after natural completion only."""
        if not text or not text.strip():
            return None
        if self._status is AssistantStatus.ERROR or not self.output.available:
            LOGGER.debug("Ignoring speak request (status=%s)", self._status.value)
            return None
        self._intent += 1
        self.input.abort()
        if self._status is AssistantStatus.LISTENING:
            self._set_status(AssistantStatus.IDLE)
        request = UtteranceRequest(text=text.strip())
        request.on_complete = partial(self._handle_utterance_complete, request, on_end)
        future = self.output.speak(request, on_start=partial(self._handle_utterance_start, request))
        future.add_done_callback(partial(self._handle_utterance_done, request))
        return future

    def start_listening(self) -> None:
        """Cancel any speech, then open a recognition session."""
        if self._status in (AssistantStatus.LISTENING, AssistantStatus.ERROR):
            return
        self._intent += 1
        self.output.cancel()
        self._set_status(AssistantStatus.LISTENING)
        try:
            self.input.start()
        except AlreadyActiveError as exc:
            LOGGER.warning("Start listening ignored: %s", exc)
            if self._status is AssistantStatus.LISTENING:
                self._set_status(AssistantStatus.IDLE)
        except CapabilityError as exc:
            self._fail(exc)

    def stop_listening(self) -> None:
        """Stop the recognition session; its end event returns status to idle."""
        if self._status is not AssistantStatus.LISTENING:
            return
        self._intent += 1
        self.input.stop()

    def stop_speaking(self) -> None:
        """Cancel pending or playing speech."""
        was_pending = self.output.has_pending
        self.output.cancel()
        if self._status is AssistantStatus.SPEAKING or (
            self._status is AssistantStatus.THINKING and was_pending
        ):
            self._set_status(AssistantStatus.IDLE)

    def shutdown(self) -> None:
        """Cancel in-flight work and release both controllers."""
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self.output.cancel()
        self.input.abort()

    # ------------------------------------------------------------------ #
    # Speech output events
    # ------------------------------------------------------------------ #
    def _handle_utterance_start(self, request: UtteranceRequest) -> None:
        if self._status is AssistantStatus.ERROR:
            return
        self.input.abort()
        LOGGER.debug("Utterance %s started", request.id)
        self._set_status(AssistantStatus.SPEAKING)

    def _handle_utterance_complete(
        self,
        request: UtteranceRequest,
        on_end: Optional[Callable[[], None]],
    ) -> None:
        if self._status is AssistantStatus.ERROR:
            return
        LOGGER.debug("Utterance %s completed", request.id)
        if self._status is AssistantStatus.SPEAKING:
            self._set_status(AssistantStatus.IDLE)
        if on_end is not None:
            on_end()

    def _handle_utterance_done(self, request: UtteranceRequest, future: asyncio.Future[UtteranceOutcome]) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            LOGGER.debug("Utterance %s failed", request.id)
            self._fail(exc)

    # ------------------------------------------------------------------ #
    # Speech input events
    # ------------------------------------------------------------------ #
    def _handle_transcript(self, event: TranscriptEvent) -> None:
        if self._status is AssistantStatus.ERROR:
            return
        new_trace_id()
        LOGGER.info("Transcript received (%d chars, confidence=%s)", len(event.text), event.confidence)
        self._emit_transcript(event)
        if self._onboarding is not None and self._onboarding.is_gathering_name:
            self._onboarding.handle_transcript(event.text)
            return
        if self._router is None:
            return
        self._intent += 1
        self._set_status(AssistantStatus.THINKING)
        task = asyncio.get_running_loop().create_task(self._respond(event.text, self._intent))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _handle_session_end(self, no_speech: bool) -> None:
        if self._status is not AssistantStatus.LISTENING:
            LOGGER.debug("Ignoring stale recognition end (status=%s)", self._status.value)
            return
        if no_speech:
            LOGGER.debug("No speech detected, returning to idle")
        self._set_status(AssistantStatus.IDLE)

    async def _respond(self, text: str, intent: int) -> None:
        assert self._router is not None
        try:
            result = await self._router.handle(text)
        except Exception:
            LOGGER.exception("Command routing failed")
            result = None
        if intent != self._intent or self._status is not AssistantStatus.THINKING:
            LOGGER.debug("Dropping superseded reply (status=%s)", self._status.value)
            return
        if result is not None and result.action.control is ControlKind.STOP_LISTENING:
            self.stop_listening()
        elif result is not None and result.action.control is ControlKind.STOP_SPEAKING:
            self.stop_speaking()
        reply = result.reply if result is not None else None
        if not reply or self.speak(reply) is None:
            self._set_status(AssistantStatus.IDLE)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _set_status(self, status: AssistantStatus) -> None:
        if status is self._status or self._status is AssistantStatus.ERROR:
            return
        previous, self._status = self._status, status
        LOGGER.debug("Status %s -> %s", previous.value, status.value)
        for callback in list(self._status_callbacks):
            try:
                callback(status)
            except Exception:
                LOGGER.exception("Status callback failed")

    def _emit_transcript(self, event: TranscriptEvent) -> None:
        if self._transcript_callback:
            try:
                self._transcript_callback(event)
            except Exception:
                LOGGER.exception("Transcript callback failed")

    def _fail(self, exc: BaseException) -> None:
        if self._status is AssistantStatus.ERROR:
            return
        code = getattr(exc, "code", "capability_error")
        LOGGER.error("Assistant capability failure (%s): %s", code, exc)
        self.last_error = error_payload(code, str(exc), trace_id=get_trace_id())
        self._set_status(AssistantStatus.ERROR)
        self.output.cancel()
        self.input.abort()
