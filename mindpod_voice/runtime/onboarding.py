"""One-time capture of the user's display name."""

from __future__ import annotations

import unicodedata

from ..core.logger import get_logger
from ..core.store import GREETED_KEY, USER_NAME_KEY, KeyValueStore
from ..state.app_state import SessionState
from .coordinator import AssistantCoordinator

LOGGER = get_logger("assistant")

GREETING = "Hi there! To personalize our chat, what should I call you?"
REPROMPT = "I didn't quite catch that. Could you tell me your name again?"
ACKNOWLEDGEMENT = "Nice to meet you, {name}. You can click the microphone to ask for help."
GIVE_UP = "No problem, I'll call you {name} for now. You can click the microphone to ask for help."


def clean_name(transcript: str) -> str:
    """Drop punctuation (hyphens excepted) and surrounding whitespace."""
    kept = "".join(
        ch
        for ch in transcript
        if not unicodedata.category(ch).startswith("P") or unicodedata.category(ch) == "Pd"
    )
    return " ".join(kept.split()).strip("-").strip()


class OnboardingFlow:
    """Greets a new user, asks for a name and stores it.

    While :attr:`is_gathering_name` is true the coordinator hands transcripts
    here instead of to the command router.
    """

    def __init__(
        self,
        coordinator: AssistantCoordinator,
        state: SessionState,
        *,
        durable: KeyValueStore,
        session_flags: KeyValueStore,
        max_attempts: int = 3,
        fallback_name: str = "friend",
    ) -> None:
        self.coordinator = coordinator
        self.state = state
        self.durable = durable
        self.session_flags = session_flags
        self.max_attempts = max(1, max_attempts)
        self.fallback_name = fallback_name
        self._failed_attempts = 0

    @property
    def is_gathering_name(self) -> bool:
        return self.state.is_gathering_name

    @property
    def has_greeted(self) -> bool:
        return self.session_flags.get(GREETED_KEY) == "true"

    def begin(self) -> bool:
        """Ask for a name when none is stored; returns True if the greeting started."""
        if self.state.display_name is not None or self.has_greeted:
            return False
        self.session_flags.set(GREETED_KEY, "true")
        LOGGER.info("Starting onboarding")
        return self.coordinator.speak(GREETING, self._listen_for_name) is not None

    def handle_transcript(self, transcript: str) -> None:
        name = clean_name(transcript)
        if name:
            self._complete(name)
            return
        self._failed_attempts += 1
        if self._failed_attempts >= self.max_attempts:
            LOGGER.warning("No usable name after %d attempts, using fallback", self._failed_attempts)
            self._failed_attempts = 0
            self.state.stop_gathering_name()
            self.coordinator.speak(GIVE_UP.format(name=self.fallback_name))
            return
        LOGGER.info("Empty name, asking again (attempt %d)", self._failed_attempts)
        self.coordinator.speak(REPROMPT, self.coordinator.start_listening)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _listen_for_name(self) -> None:
        if self.state.display_name is not None:
            return
        self.state.start_gathering_name()
        self.coordinator.start_listening()

    def _complete(self, name: str) -> None:
        self.durable.set(USER_NAME_KEY, name)
        self.state.set_display_name(name)
        self._failed_attempts = 0
        LOGGER.info("Display name captured")
        self.coordinator.speak(ACKNOWLEDGEMENT.format(name=name))
