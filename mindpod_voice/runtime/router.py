"""Maps recognized commands to actions and computes the spoken reply.

:func:`route` is pure: it lower-cases and trims the transcript, then checks
keyword phrases in a fixed priority order (navigation, document actions,
listening/speaking control, greetings) and falls back to the AI
collaborator. A phrase matches anywhere inside the command, so "hi" also
fires inside "this"; the priority order keeps navigation ahead of greetings.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Literal, Optional, Protocol

from pydantic import BaseModel, ConfigDict

from ..core.errors import CollaboratorError, DocumentUnavailableError
from ..core.logger import get_logger
from ..state.app_state import AppContext, Screen, SessionState

LOGGER = get_logger("router")

FALLBACK_ERROR_REPLY = "I had trouble understanding that. Could you please try again?"
SUMMARY_ERROR_REPLY = "I'm sorry, I couldn't read that document to summarize it."
SUMMARY_NO_DOCUMENT_REPLY = "Please select a document in the reading view first."
SUMMARY_PREFIX = "Here is a summary of the document: "
GREETING_TEMPLATE = "Hello, {name}! How can I help you today?"


class ControlKind(str, Enum):
    STOP_LISTENING = "stop_listening"
    STOP_SPEAKING = "stop_speaking"


class Action(BaseModel):
    """Descriptor of what a transcript asks for."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["navigate", "summarize_document", "control", "greeting", "fallback"]
    text: str
    screen: Optional[Screen] = None
    control: Optional[ControlKind] = None
    reply: Optional[str] = None


@dataclass(slots=True, frozen=True)
class CommandResult:
    action: Action
    reply: str | None


class Collaborator(Protocol):
    async def query(self, text: str) -> str: ...

    async def summarize(self, text: str) -> str: ...


Navigator = Callable[[Screen], None]


_NAVIGATION: tuple[tuple[Screen, tuple[str, ...], str], ...] = (
    (Screen.NOTES, ("open my notes", "show notes", "show my notes", "open notes"), "Opening your notes."),
    (Screen.READING, ("open reading", "show reading"), "Opening the reading view."),
    (Screen.TASKS, ("open my tasks", "show tasks", "show my tasks", "open tasks"), "Here are your tasks."),
    (Screen.PROGRESS, ("show my progress", "show progress"), "Here is your progress report."),
    (Screen.QUIZ, ("start quiz", "open quiz", "start a quiz"), "Opening the quiz section."),
    (Screen.CODE, ("open code", "show code"), "Opening the code editor."),
)
_DOCUMENT_ACTIONS = ("summarize this document", "summarise this document")
_CONTROL: tuple[tuple[ControlKind, tuple[str, ...]], ...] = (
    (ControlKind.STOP_LISTENING, ("stop listening", "be quiet")),
    (ControlKind.STOP_SPEAKING, ("stop speaking",)),
)
_GREETINGS = ("hello", "hi", "hey")


def _mentions(text: str, phrases: tuple[str, ...]) -> bool:
    return any(phrase in text for phrase in phrases)


def normalize(transcript: str) -> str:
    return " ".join(transcript.lower().split())


def route(transcript: str) -> Action:
    """Return the action descriptor for ``transcript``; first match wins."""
    command = normalize(transcript)
    for screen, phrases, reply in _NAVIGATION:
        if _mentions(command, phrases):
            return Action(kind="navigate", text=command, screen=screen, reply=reply)
    if _mentions(command, _DOCUMENT_ACTIONS):
        return Action(kind="summarize_document", text=command)
    for control, phrases in _CONTROL:
        if _mentions(command, phrases):
            return Action(kind="control", text=command, control=control)
    if _mentions(command, _GREETINGS):
        return Action(kind="greeting", text=command)
    return Action(kind="fallback", text=command)


class CommandRouter:
    """Executes routed actions that belong to the application side.

    Control actions are returned with no reply; the coordinator applies them.
    """

    def __init__(
        self,
        ai: Collaborator,
        *,
        state: SessionState,
        context: AppContext | None = None,
        navigator: Navigator | None = None,
        fallback_name: str = "friend",
    ) -> None:
        self.ai = ai
        self.state = state
        self.context = context or AppContext()
        self.navigator = navigator
        self.fallback_name = fallback_name

    async def handle(self, transcript: str) -> CommandResult:
        action = route(transcript)
        LOGGER.info("Routed transcript to %s", action.kind)
        if action.kind == "navigate":
            reply = self._navigate(action)
        elif action.kind == "summarize_document":
            reply = await self._summarize()
        elif action.kind == "control":
            reply = None
        elif action.kind == "greeting":
            reply = GREETING_TEMPLATE.format(name=self.state.display_name or self.fallback_name)
        else:
            reply = await self._ask(transcript.strip())
        return CommandResult(action=action, reply=reply)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _navigate(self, action: Action) -> str | None:
        assert action.screen is not None
        self.context.screen = action.screen
        if self.navigator is not None:
            self.navigator(action.screen)
        return action.reply

    async def _summarize(self) -> str:
        document = self.context.selected_document
        if self.context.screen is not Screen.READING or document is None:
            return SUMMARY_NO_DOCUMENT_REPLY
        try:
            text = document.read_text()
            summary = await self.ai.summarize(text)
        except Exception as exc:
            LOGGER.warning(
                "Summary of document %s failed: %s",
                document.id,
                exc,
                exc_info=not isinstance(exc, (CollaboratorError, DocumentUnavailableError)),
            )
            return SUMMARY_ERROR_REPLY
        return f"{SUMMARY_PREFIX}{summary}"

    async def _ask(self, question: str) -> str:
        try:
            return await self.ai.query(question)
        except Exception as exc:
            LOGGER.warning("AI collaborator failed: %s", exc, exc_info=not isinstance(exc, CollaboratorError))
            return FALLBACK_ERROR_REPLY
